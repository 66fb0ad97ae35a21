import json
from datetime import date
from decimal import Decimal

import pytest

from optical_portal.errors import OrderValidationError
from optical_portal.validation import (
    MAX_LENS_JSON,
    build_draft,
    parse_lens_selections,
    parse_number,
    validate_order,
)


def _fields(exc_info) -> set:
    return {e["field"] for e in exc_info.value.errors}


class TestParseNumber:
    """Numeric input parsing."""

    def test_empty_is_default(self):
        """Blank input becomes zero."""
        assert parse_number("") == Decimal("0")
        assert parse_number(None) == Decimal("0")

    def test_float_keeps_typed_digits(self):
        """Floats convert through their shortest repr."""
        assert parse_number(0.1) == Decimal("0.1")

    @pytest.mark.parametrize("raw", ["abc", "nan", "Infinity", True])
    def test_rejects_non_finite_or_non_numeric(self, raw):
        """Text, NaN, infinity and booleans are refused."""
        with pytest.raises(ValueError):
            parse_number(raw)


class TestValidateOrder:
    """Order-level validation."""

    def test_valid_order(self, order_payload):
        """A complete order is cleaned into Decimals and dates."""
        cleaned = validate_order(order_payload)

        assert cleaned["patient_name"] == "Jane Doe"
        assert cleaned["order_date"] == date(2026, 3, 14)
        assert cleaned["frame_price"] == Decimal("200")
        assert cleaned["lens_selections"]["lens_design"]["insurance_price"] == Decimal("100")
        assert cleaned["payment_mode"] == "with_insurance"
        assert cleaned["status"] == "pending"

    def test_required_fields(self):
        """Patient name and order date are required on create."""
        with pytest.raises(OrderValidationError) as exc:
            validate_order({})
        assert _fields(exc) == {"patient_name", "order_date"}

    def test_non_string_patient_name(self, order_payload):
        """Numbers sent as the patient name are converted to text."""
        order_payload["patient_name"] = 12345
        assert validate_order(order_payload)["patient_name"] == "12345"

    def test_update_allows_partial_input(self):
        """Edits may omit patient name and date."""
        cleaned = validate_order({"payment_today": "50"}, is_update=True)
        assert cleaned["payment_today"] == Decimal("50")

    def test_collects_every_error(self, order_payload):
        """All bad fields are reported together."""
        order_payload.update({
            "frame_price": -1,
            "other_percent_adjustment": 150,
            "iwellness": "maybe",
            "payment_mode": "cash",
            "frame_formula": "wide",
        })
        with pytest.raises(OrderValidationError) as exc:
            validate_order(order_payload)

        assert _fields(exc) == {
            "frame_price", "other_percent_adjustment", "iwellness", "payment_mode", "frame_formula",
        }

    def test_non_numeric_price(self, order_payload):
        """Text in a price field is a field error, not a crash."""
        order_payload["warranty_price"] = "thirty"
        with pytest.raises(OrderValidationError) as exc:
            validate_order(order_payload)
        assert "warranty_price" in _fields(exc)

    def test_price_upper_bound(self, order_payload):
        """Prices above 999999.99 are refused."""
        order_payload["payment_today"] = "1000000"
        with pytest.raises(OrderValidationError) as exc:
            validate_order(order_payload)
        assert "payment_today" in _fields(exc)

    def test_negative_adjustment_allowed(self, order_payload):
        """The flat adjustment may be a credit."""
        order_payload["other_charges_adjustment"] = "-25.50"
        assert validate_order(order_payload)["other_charges_adjustment"] == Decimal("-25.50")

    def test_defaults_for_choices(self, order_payload):
        """Missing warranty and other charge types get their 'none' values."""
        order_payload.pop("warranty_type")
        cleaned = validate_order(order_payload)
        assert cleaned["warranty_type"] == "None"
        assert cleaned["other_charge_1_type"] == "none"
        assert cleaned["iwellness"] == "no"


class TestLensSelections:
    """Lens selection decoding."""

    def test_json_string_accepted(self, order_payload):
        """lens_selections_json is decoded like the object form."""
        lenses = order_payload.pop("lens_selections")
        order_payload["lens_selections_json"] = json.dumps(lenses)
        cleaned = validate_order(order_payload)
        assert cleaned["lens_selections"]["lens_design"]["price"] == Decimal("150")

    def test_invalid_json(self, order_payload):
        """Broken JSON is a lens_selections error."""
        order_payload["lens_selections"] = "{not json"
        with pytest.raises(OrderValidationError) as exc:
            validate_order(order_payload)
        assert "lens_selections" in _fields(exc)

    def test_oversized_json(self):
        """Payloads over the size limit are refused."""
        with pytest.raises(ValueError):
            parse_lens_selections("x" * (MAX_LENS_JSON + 1))

    def test_empty_value_skipped(self, order_payload):
        """A category with no choice is not selected."""
        order_payload["lens_selections"]["ar_coating"] = {"value": "", "price": 99}
        assert "ar_coating" not in validate_order(order_payload)["lens_selections"]

    def test_insurance_price_optional(self, order_payload):
        """A missing insurance price stays None."""
        order_payload["lens_selections"]["ar_coating"] = {"value": "Good", "price": 99}
        cleaned = validate_order(order_payload)
        assert cleaned["lens_selections"]["ar_coating"]["insurance_price"] is None

    def test_negative_lens_price(self, order_payload):
        """Lens prices share the price range check."""
        order_payload["lens_selections"]["lens_design"]["price"] = -10
        with pytest.raises(OrderValidationError) as exc:
            validate_order(order_payload)
        assert "lens_selections.lens_design.price" in _fields(exc)


class TestBuildDraft:
    """Cleaned input to pricing draft."""

    def test_own_frame_zeroes_frame(self, order_payload):
        """Own frame drops list price, allowance and discount."""
        order_payload["use_own_frame"] = "true"
        draft = build_draft(validate_order(order_payload))

        assert draft.frame.uses_own_frame is True
        assert draft.frame.list_price == Decimal("0")
        assert draft.frame.allowance == Decimal("0")

    def test_legacy_prices_need_a_choice(self, order_payload):
        """Flat lens prices count only when their category has a value."""
        order_payload.update({
            "lens_design": "SV- Distance",
            "lens_design_price": 85,
            "ar_coating_price": 99,
        })
        draft = build_draft(validate_order(order_payload))
        assert draft.legacy_lens_prices == {"lens_design": Decimal("85")}

    def test_iwellness_flag(self, order_payload):
        """iwellness=yes selects the flat fee."""
        order_payload["iwellness"] = "yes"
        assert build_draft(validate_order(order_payload)).iwellness_selected is True
