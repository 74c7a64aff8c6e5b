# Overview: Request decorators for tenant resolution and admin actor context.

from functools import wraps
from flask import request, jsonify, g, current_app

from .errors import TenantNotFound
from .services.tenant_service import resolve_tenant


ACTOR_HEADER = "X-Actor-Id"


def require_tenant(f):
    """
    Resolve the <tenant> URL segment (slug or domain) into g.tenant.

    MULTI-TENANT: Sets the following Flask g attributes:
    - g.tenant: the resolved TenantContext
    - g.tenant_id: shortcut for g.tenant.tenant_id

    The view no longer receives the raw `tenant` argument; every service
    call downstream takes g.tenant_id.

    Returns 404 TENANT_NOT_FOUND for unknown or inactive tenants.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        key = kwargs.pop("tenant", None) or request.host
        try:
            ctx = resolve_tenant(key)
        except TenantNotFound as e:
            return jsonify(e.to_dict()), e.http_status

        g.tenant = ctx
        g.tenant_id = ctx.tenant_id
        return f(*args, **kwargs)

    return decorated_function


def require_actor(f):
    """
    Require the admin actor id set by the upstream auth gateway.

    SECURITY: Authentication happens before requests reach this service;
    the header only names who acted, for audit rows. Returns 401 when absent.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor_id = (request.headers.get(ACTOR_HEADER) or "").strip()
        if not actor_id:
            current_app.logger.info("Admin request without %s: %s %s", ACTOR_HEADER, request.method, request.path)
            return jsonify({"error": "ACTOR_REQUIRED"}), 401

        g.actor_id = actor_id[:64]
        return f(*args, **kwargs)

    return decorated_function
