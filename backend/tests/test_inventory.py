# Overview: Pytest coverage for the stock ledger, derived stock levels and low-stock alerts.

"""
Inventory Ledger Tests

- Stock is SUM(quantity_delta); there is no stored counter
- Sign rules per movement type
- A manual ADJUSTMENT can never take stock below zero
- A reference makes a movement idempotent
- One open alert per product; acknowledgement is one-way
"""

import pytest

from shopcore.errors import AlertNotFound, InsufficientStock, ProductUnavailable, ValidationError
from shopcore.models import InventoryAlert, StockMovement
from shopcore.services import inventory_service
from shopcore.services.audit_service import list_audit_events


class TestSignRules:
    """quantity_delta sign must match the movement type."""

    @pytest.mark.parametrize("movement_type,delta", [
        ("RECEIVE", 0),
        ("RECEIVE", -5),
        ("SALE", 3),
        ("SALE", 0),
        ("RETURN", -1),
        ("ADJUSTMENT", 0),
    ])
    def test_wrong_sign_rejected(self, db_session, tenant_a, make_product, movement_type, delta):
        product = make_product(tenant_a)
        with pytest.raises(ValidationError):
            inventory_service.record_movement(
                tenant_a.id, product.id, movement_type, delta, "test", actor_id="admin-1"
            )
        assert db_session.query(StockMovement).count() == 0

    def test_unknown_type_rejected(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a)
        with pytest.raises(ValidationError):
            inventory_service.record_movement(tenant_a.id, product.id, "SHRINK", -1, "test", actor_id="admin-1")

    def test_reason_required(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a)
        with pytest.raises(ValidationError):
            inventory_service.record_movement(tenant_a.id, product.id, "RECEIVE", 5, "  ", actor_id="admin-1")

    def test_type_is_case_insensitive(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a)
        movement = inventory_service.record_movement(
            tenant_a.id, product.id, "receive", 5, "Delivery", actor_id="admin-1"
        )
        assert movement.type == "RECEIVE"


class TestStockLevels:
    """Stock derives from the ledger."""

    def test_stock_is_sum_of_movements(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, stock=20)
        inventory_service.record_movement(tenant_a.id, product.id, "ADJUSTMENT", -3, "Damaged", actor_id="admin-1")
        inventory_service.record_movement(tenant_a.id, product.id, "RETURN", 1, "Customer return", actor_id="admin-1")

        assert inventory_service.get_current_stock(tenant_a.id, product.id) == 18

    def test_no_movements_is_zero(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a)
        assert inventory_service.get_current_stock(tenant_a.id, product.id) == 0

    def test_negative_adjustment_cannot_go_below_zero(self, db_session, tenant_a, make_product):
        """Manual corrections never create negative stock."""
        product = make_product(tenant_a, stock=2)

        with pytest.raises(InsufficientStock):
            inventory_service.record_movement(
                tenant_a.id, product.id, "ADJUSTMENT", -3, "Count correction", actor_id="admin-1"
            )

        assert inventory_service.get_current_stock(tenant_a.id, product.id) == 2

    def test_adjustment_to_exactly_zero(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, stock=2)
        inventory_service.record_movement(tenant_a.id, product.id, "ADJUSTMENT", -2, "Write-off", actor_id="admin-1")
        assert inventory_service.get_current_stock(tenant_a.id, product.id) == 0

    def test_other_tenant_product(self, db_session, tenant_a, tenant_b, make_product):
        """Movements cannot target another tenant's product."""
        foreign = make_product(tenant_b)
        with pytest.raises(ProductUnavailable):
            inventory_service.record_movement(tenant_a.id, foreign.id, "RECEIVE", 5, "test", actor_id="admin-1")

    def test_stock_is_tenant_scoped(self, db_session, tenant_a, tenant_b, make_product):
        product = make_product(tenant_a, stock=7)
        assert inventory_service.get_current_stock(tenant_b.id, product.id) == 0

    def test_movement_audited(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a)
        inventory_service.record_movement(tenant_a.id, product.id, "RECEIVE", 5, "Delivery", actor_id="admin-7")

        event = list_audit_events(tenant_a.id, action="STOCK_RECEIVE")[0]
        assert event.actor == "admin-7"
        assert event.meta["quantity_delta"] == 5


class TestReferenceIdempotency:
    """A referenced movement is recorded at most once."""

    def test_duplicate_reference_returns_none(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a)

        first = inventory_service.record_movement(
            tenant_a.id, product.id, "RECEIVE", 10, "PO delivery", actor_id="admin-1", reference="PO-1182"
        )
        second = inventory_service.record_movement(
            tenant_a.id, product.id, "RECEIVE", 10, "PO delivery", actor_id="admin-1", reference="PO-1182"
        )

        assert first is not None
        assert first.reference_line == 0
        assert second is None
        assert inventory_service.get_current_stock(tenant_a.id, product.id) == 10

    def test_same_reference_different_type(self, db_session, tenant_a, make_product):
        """The dedup key includes the movement type."""
        product = make_product(tenant_a)
        inventory_service.record_movement(
            tenant_a.id, product.id, "RECEIVE", 10, "In", actor_id="admin-1", reference="DOC-1"
        )
        adjustment = inventory_service.record_movement(
            tenant_a.id, product.id, "ADJUSTMENT", -1, "Fix", actor_id="admin-1", reference="DOC-1"
        )
        assert adjustment is not None
        assert inventory_service.get_current_stock(tenant_a.id, product.id) == 9

    def test_unreferenced_movements_never_dedup(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a)
        inventory_service.record_movement(tenant_a.id, product.id, "RECEIVE", 4, "Delivery", actor_id="admin-1")
        inventory_service.record_movement(tenant_a.id, product.id, "RECEIVE", 4, "Delivery", actor_id="admin-1")
        assert inventory_service.get_current_stock(tenant_a.id, product.id) == 8


class TestClassification:

    @pytest.mark.parametrize("stock,threshold,expected", [
        (0, 10, ("OUT_OF_STOCK", "CRITICAL")),
        (-4, 10, ("OUT_OF_STOCK", "CRITICAL")),
        (5, 10, ("LOW_STOCK", "HIGH")),
        (6, 10, ("LOW_STOCK", "MEDIUM")),
        (10, 10, ("LOW_STOCK", "MEDIUM")),
        (11, 10, None),
        (2, 5, ("LOW_STOCK", "HIGH")),
        (3, 5, ("LOW_STOCK", "MEDIUM")),
    ])
    def test_classify_stock(self, stock, threshold, expected):
        assert inventory_service.classify_stock(stock, threshold) == expected


class TestAlerts:
    """Low-stock alert creation, dedup and acknowledgement."""

    def test_check_creates_alerts(self, db_session, tenant_a, make_product):
        low = make_product(tenant_a, "Low", stock=6, threshold=10)
        make_product(tenant_a, "Healthy", stock=50, threshold=10)

        created = inventory_service.check_low_stock_alerts(tenant_a.id)

        assert [a.product_id for a in created] == [low.id]
        alert = created[0]
        assert (alert.alert_type, alert.severity, alert.threshold, alert.current_stock_at_alert) == (
            "LOW_STOCK", "MEDIUM", 10, 6
        )

    def test_default_threshold(self, app, db_session, tenant_a, make_product):
        """Products without their own threshold use DEFAULT_LOW_STOCK_THRESHOLD."""
        product = make_product(tenant_a, stock=app.config["DEFAULT_LOW_STOCK_THRESHOLD"])
        created = inventory_service.check_low_stock_alerts(tenant_a.id)
        assert [a.product_id for a in created] == [product.id]

    def test_one_open_alert_per_product(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, stock=1, threshold=10)

        first = inventory_service.check_low_stock_alerts(tenant_a.id)
        second = inventory_service.check_low_stock_alerts(tenant_a.id)

        assert len(first) == 1
        assert second == []
        assert db_session.query(InventoryAlert).filter_by(product_id=product.id).count() == 1

    def test_new_alert_after_acknowledge(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, stock=1, threshold=10)
        alert = inventory_service.check_low_stock_alerts(tenant_a.id)[0]

        inventory_service.acknowledge_alert(tenant_a.id, alert.id, actor_id="admin-1")
        again = inventory_service.check_low_stock_alerts(tenant_a.id)

        assert len(again) == 1
        assert again[0].id != alert.id
        assert db_session.query(InventoryAlert).filter_by(product_id=product.id).count() == 2

    def test_inactive_and_untracked_skipped(self, db_session, tenant_a, make_product):
        make_product(tenant_a, "Retired", is_active=False)
        service_item = make_product(tenant_a, "Gift wrap")
        service_item.track_inventory = False
        db_session.commit()

        assert inventory_service.check_low_stock_alerts(tenant_a.id) == []

    def test_negative_adjustment_triggers_check(self, db_session, tenant_a, make_product):
        """A stock decrease runs the alert check for that product."""
        product = make_product(tenant_a, stock=10, threshold=4)

        inventory_service.record_movement(tenant_a.id, product.id, "ADJUSTMENT", -8, "Breakage", actor_id="admin-1")

        alert = db_session.query(InventoryAlert).filter_by(product_id=product.id).one()
        assert alert.severity == "HIGH"
        assert alert.current_stock_at_alert == 2

    def test_acknowledge(self, db_session, tenant_a, make_product):
        make_product(tenant_a, stock=1, threshold=10)
        alert = inventory_service.check_low_stock_alerts(tenant_a.id)[0]

        acked = inventory_service.acknowledge_alert(tenant_a.id, alert.id, actor_id="admin-9")

        assert acked.acknowledged is True
        assert acked.acknowledged_by == "admin-9"
        assert acked.acknowledged_at is not None

    def test_acknowledge_is_one_way(self, db_session, tenant_a, make_product):
        """Re-acknowledging keeps the first acknowledger."""
        make_product(tenant_a, stock=1, threshold=10)
        alert = inventory_service.check_low_stock_alerts(tenant_a.id)[0]
        inventory_service.acknowledge_alert(tenant_a.id, alert.id, actor_id="admin-1")

        again = inventory_service.acknowledge_alert(tenant_a.id, alert.id, actor_id="admin-2")

        assert again.acknowledged_by == "admin-1"
        assert len(list_audit_events(tenant_a.id, action="INVENTORY_ALERT_ACKNOWLEDGED")) == 1

    def test_acknowledge_other_tenant_alert(self, db_session, tenant_a, tenant_b, make_product):
        make_product(tenant_a, stock=1, threshold=10)
        alert = inventory_service.check_low_stock_alerts(tenant_a.id)[0]

        with pytest.raises(AlertNotFound):
            inventory_service.acknowledge_alert(tenant_b.id, alert.id, actor_id="admin-1")

    def test_list_most_severe_first(self, db_session, tenant_a, make_product):
        make_product(tenant_a, "Medium", stock=8, threshold=10)
        make_product(tenant_a, "Critical")
        make_product(tenant_a, "High", stock=2, threshold=10)
        inventory_service.check_low_stock_alerts(tenant_a.id)

        alerts = inventory_service.list_alerts(tenant_a.id)

        assert [a.severity for a in alerts] == ["CRITICAL", "HIGH", "MEDIUM"]

    def test_list_filters_acknowledged(self, db_session, tenant_a, make_product):
        make_product(tenant_a, "A", stock=1, threshold=10)
        make_product(tenant_a, "B", stock=1, threshold=10)
        first, _ = inventory_service.check_low_stock_alerts(tenant_a.id)
        inventory_service.acknowledge_alert(tenant_a.id, first.id, actor_id="admin-1")

        assert len(inventory_service.list_alerts(tenant_a.id, acknowledged=False)) == 1
        assert [a.id for a in inventory_service.list_alerts(tenant_a.id, acknowledged=True)] == [first.id]


class TestSummaryAndHistory:

    def test_summary(self, db_session, tenant_a, make_product):
        make_product(tenant_a, "Plenty", 1000, stock=20)
        make_product(tenant_a, "Few", 500, stock=3)
        make_product(tenant_a, "None", 700)

        summary = inventory_service.get_inventory_summary(tenant_a.id)

        assert summary == {
            "total_products": 3,
            "low_stock_products": 1,
            "out_of_stock_products": 1,
            "total_value": 20 * 1000 + 3 * 500,
            "recent_movements": 2,
            "open_alerts": 0,
        }

    def test_summary_is_tenant_scoped(self, db_session, tenant_a, tenant_b, make_product):
        make_product(tenant_b, stock=10)
        summary = inventory_service.get_inventory_summary(tenant_a.id)
        assert summary["total_products"] == 0
        assert summary["recent_movements"] == 0

    def test_movements_newest_first(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, stock=10)
        inventory_service.record_movement(tenant_a.id, product.id, "ADJUSTMENT", -1, "Fix", actor_id="admin-1")

        movements = inventory_service.list_movements(tenant_a.id, product_id=product.id)

        assert [m.type for m in movements] == ["ADJUSTMENT", "RECEIVE"]

    def test_movements_limit(self, db_session, tenant_a, make_product):
        product = make_product(tenant_a, stock=10)
        for _ in range(3):
            inventory_service.record_movement(tenant_a.id, product.id, "RECEIVE", 1, "Top-up", actor_id="admin-1")

        assert len(inventory_service.list_movements(tenant_a.id, limit=2)) == 2
