# Overview: Out-of-band customer notifications (fire-and-forget).

from __future__ import annotations

import httpx
from flask import current_app


EVENT_ORDER_CONFIRMED = "order.confirmed"
EVENT_ORDER_CANCELLED = "order.cancelled"
EVENT_ORDER_STATUS_CHANGED = "order.status_changed"


def notify(*, tenant_id: int, event: str, recipient: str | None, payload: dict | None = None) -> bool:
    """
    Hand a notification to the delivery hook.

    Email/SMS rendering and delivery live outside this service; when
    NOTIFIER_WEBHOOK_URL is set the event is POSTed there, otherwise it is
    only logged. Never raises. Returns True when the hook accepted it.
    """
    current_app.logger.info("Notify tenant=%s event=%s recipient=%s", tenant_id, event, recipient)

    url = current_app.config.get("NOTIFIER_WEBHOOK_URL")
    if not url or not recipient:
        return False

    body = {"tenant_id": tenant_id, "event": event, "recipient": recipient, "data": payload or {}}
    try:
        with httpx.Client(
            timeout=current_app.config.get("NOTIFIER_HTTP_TIMEOUT_SECONDS", 5),
            transport=current_app.config.get("NOTIFIER_HTTP_TRANSPORT"),
        ) as client:
            response = client.post(url, json=body)
        response.raise_for_status()
    except httpx.HTTPError as exc:
        current_app.logger.warning("Notification %s for tenant %s failed: %s", event, tenant_id, exc)
        return False
    return True


def notify_order_event(order, event: str) -> bool:
    return notify(
        tenant_id=order.tenant_id,
        event=event,
        recipient=order.customer_email,
        payload={
            "order_number": order.order_number,
            "status": order.status,
            "total": order.total,
            "currency": order.currency,
            "customer_name": order.customer_name,
        },
    )
