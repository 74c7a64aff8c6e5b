"""
Tests for request validation.

parse_* helpers must coerce strictly: money and quantities are integers,
so decimals, floats, booleans and scientific notation are rejected rather
than silently truncated.
"""

from datetime import datetime

import pytest

from shopcore.errors import ValidationError
from shopcore.models import Coupon
from shopcore.routes.admin_coupons import COUPON_CREATE_POLICY, COUPON_PATCH_POLICY
from shopcore.validation import (
    parse_cart_item,
    parse_checkout,
    parse_int,
    parse_movement,
    validate_payload,
)


class TestParseInt:

    @pytest.mark.parametrize("value,expected", [(5, 5), ("12", 12), (" 7 ", 7), ("-3", -3), (0, 0)])
    def test_accepts_integers(self, value, expected):
        assert parse_int(value, "quantity") == expected

    @pytest.mark.parametrize("value", ["1.5", 1.5, 2.0, "1e3", "1E3", "", "abc", None, True, False, [1]])
    def test_rejects_non_integers(self, value):
        with pytest.raises(ValidationError):
            parse_int(value, "quantity")

    def test_bounds(self):
        assert parse_int("5", "limit", minimum=1, maximum=5) == 5
        with pytest.raises(ValidationError):
            parse_int(0, "limit", minimum=1)
        with pytest.raises(ValidationError):
            parse_int(501, "limit", maximum=500)

    def test_message_names_field(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_int("1.5", "quantity")
        assert "quantity" in str(exc_info.value)
        assert exc_info.value.to_dict()["error"] == "VALIDATION_ERROR"


class TestParseCartItem:

    def test_add_body(self):
        item = parse_cart_item({"product_id": "12", "quantity": 2, "variant_id": " L "})
        assert (item.product_id, item.quantity, item.variant_key) == (12, 2, "L")

    def test_variant_optional(self):
        assert parse_cart_item({"product_id": 1, "quantity": 1}).variant_key == ""

    def test_patch_uses_url_product(self):
        item = parse_cart_item({"quantity": 0}, product_id=9)
        assert (item.product_id, item.quantity) == (9, 0)

    @pytest.mark.parametrize("payload", [
        {"product_id": 1},
        {"product_id": 1, "quantity": "1.5"},
        {"product_id": 0, "quantity": 1},
        {"quantity": 1},
        ["not", "an", "object"],
    ])
    def test_rejects(self, payload):
        with pytest.raises(ValidationError):
            parse_cart_item(payload)


class TestParseCheckout:

    CUSTOMER = {"name": "Sara", "email": "Sara@Example.COM", "phone": "+965"}

    def test_default_redirect_urls(self):
        request = parse_checkout({"customer": self.CUSTOMER}, default_base_url="https://shop.test/")
        assert request.redirect_urls.success == "https://shop.test/checkout/success"
        assert request.redirect_urls.cancel == "https://shop.test/checkout/cancel"
        assert request.redirect_urls.failure == "https://shop.test/checkout/failure"
        assert request.coupon_code is None

    def test_explicit_redirect_urls(self):
        request = parse_checkout(
            {"customer": self.CUSTOMER, "redirect_urls": {"success": "https://app.test/done"}},
            default_base_url="https://shop.test",
        )
        assert request.redirect_urls.success == "https://app.test/done"
        assert request.redirect_urls.failure == "https://shop.test/checkout/failure"

    def test_email_lowercased(self):
        request = parse_checkout({"customer": self.CUSTOMER, "coupon_code": " save10 "}, default_base_url="")
        assert request.customer.email == "sara@example.com"
        assert request.coupon_code == "save10"

    @pytest.mark.parametrize("customer", [
        None,
        {"name": "Sara"},
        {"name": "Sara", "email": "not-an-email"},
        {"name": "  ", "email": "sara@example.com"},
    ])
    def test_rejects_customer(self, customer):
        with pytest.raises(ValidationError):
            parse_checkout({"customer": customer}, default_base_url="https://shop.test")


class TestParseMovement:

    def test_movement_body(self):
        body = parse_movement({"product_id": 3, "type": "receive", "quantity_delta": "50", "reason": "PO"})
        assert (body.product_id, body.type, body.quantity_delta, body.reference) == (3, "RECEIVE", 50, None)

    def test_decimal_delta_rejected(self):
        with pytest.raises(ValidationError):
            parse_movement({"product_id": 3, "type": "RECEIVE", "quantity_delta": 2.5, "reason": "PO"})


class TestValidatePayload:
    """Column-metadata validation for admin coupon payloads."""

    BODY = {
        "code": "SAVE10",
        "type": "PERCENTAGE",
        "value": 10,
        "valid_from": "2026-01-01T00:00:00Z",
        "valid_until": "2026-02-01T00:00:00+03:00",
    }

    def test_create(self):
        fields = validate_payload(model=Coupon, payload=dict(self.BODY), policy=COUPON_CREATE_POLICY, partial=False)
        assert fields["value"] == 10
        assert fields["valid_from"] == datetime(2026, 1, 1)
        assert fields["valid_until"] == datetime(2026, 1, 31, 21, 0)

    def test_missing_required(self):
        body = dict(self.BODY)
        del body["valid_until"]
        with pytest.raises(ValidationError) as exc_info:
            validate_payload(model=Coupon, payload=body, policy=COUPON_CREATE_POLICY, partial=False)
        assert "valid_until" in str(exc_info.value)

    @pytest.mark.parametrize("field", ["usage_count", "reserved_count", "tenant_id", "id"])
    def test_counters_not_writable(self, field):
        with pytest.raises(ValidationError):
            validate_payload(model=Coupon, payload={field: 5}, policy=COUPON_PATCH_POLICY, partial=True)

    def test_patch_validates_only_given_keys(self):
        assert validate_payload(model=Coupon, payload={"value": "15"}, policy=COUPON_PATCH_POLICY, partial=True) == {
            "value": 15
        }

    def test_bad_datetime(self):
        with pytest.raises(ValidationError):
            validate_payload(model=Coupon, payload={"valid_from": "next week"}, policy=COUPON_PATCH_POLICY, partial=True)

    def test_non_nullable_null(self):
        with pytest.raises(ValidationError):
            validate_payload(model=Coupon, payload={"value": None}, policy=COUPON_PATCH_POLICY, partial=True)

    def test_id_lists(self):
        fields = validate_payload(
            model=Coupon,
            payload={"applicable_product_ids": [1, "2"]},
            policy=COUPON_PATCH_POLICY,
            partial=True,
        )
        assert fields["applicable_product_ids"] == [1, 2]

    def test_boolean_strictness(self):
        with pytest.raises(ValidationError):
            validate_payload(model=Coupon, payload={"is_active": "yes"}, policy=COUPON_PATCH_POLICY, partial=True)
