from __future__ import annotations

# =========================================
# validation.py
# Optical Portal - order input boundary
# =========================================
# Everything that reaches pricing.compute_pricing() passes through here first:
#   - numbers are finite Decimals within range (empty -> 0)
#   - percents are within 0..100
#   - lens selections are decoded from JSON and checked per category
# All problems are collected and raised together as OrderValidationError.
# =========================================

import json
import re
from datetime import datetime, date
from decimal import Decimal, InvalidOperation

from .errors import OrderValidationError
from .pricing import (
    FrameInput,
    LensSelection,
    OrderDraft,
    OtherCharge,
    WarrantySelection,
    NO_WARRANTY,
)

MAX_PRICE = Decimal("999999.99")
MAX_ADJUSTMENT = Decimal("99999")
MAX_LENS_JSON = 10000

# Lens categories that existed as flat columns before lens_selections_json
LEGACY_LENS_CATEGORIES = [
    "lens_design",
    "lens_material",
    "ar_coating",
    "blue_light",
    "transition_polarized",
    "aspheric",
    "edge_treatment",
    "prism",
    "other_option",
]

PRICE_FIELDS = [
    "frame_price",
    "frame_allowance",
    "material_copay",
    "warranty_price",
    "other_charge_1_price",
    "other_charge_2_price",
    "payment_today",
] + [f"{key}_price" for key in LEGACY_LENS_CATEGORIES]

PERCENT_FIELDS = ["frame_discount_percent", "other_percent_adjustment"]

TEXT_FIELDS = {
    "account_number": 100,
    "insurance": 200,
    "sold_by": 100,
    "verified_by": 100,
    "od_pd": 10, "os_pd": 10, "binocular_pd": 10,
    "od_seg_height": 10, "os_seg_height": 10,
    "od_sphere": 20, "od_cylinder": 20, "od_axis": 20, "od_prism": 20, "od_base": 20, "od_add": 20,
    "os_sphere": 20, "os_cylinder": 20, "os_axis": 20, "os_prism": 20, "os_base": 20, "os_add": 20,
    "frame_sku": 100,
    "frame_material": 100,
    "frame_name": 200,
    "frame_formula": 50,
    "warranty_type": 100,
    "other_charges_notes": 500,
    "other_charge_1_type": 100,
    "other_charge_2_type": 100,
    "special_notes": 2000,
    **{key: 100 for key in LEGACY_LENS_CATEGORIES},
}

ID_FIELDS = ["doctor_id", "employee_id", "verified_by_employee_id"]

STATUSES = ["pending", "processing", "completed", "cancelled", "deleted"]
PAYMENT_MODES = ["with_insurance", "without_insurance"]

FORMULA_RE = re.compile(r"^\d{2,3}-\d{2,3}-\d{2,3}$")


def as_bool(val) -> bool:
    if isinstance(val, bool):
        return val
    if val is None:
        return False
    return str(val).strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_ymd_date(val):
    """Parse YYYY-MM-DD (also accepts a full ISO timestamp). Returns date or None."""
    if isinstance(val, date):
        return val
    if not val:
        return None
    text = str(val).strip().split("T")[0]
    return datetime.strptime(text, "%Y-%m-%d").date()


def parse_number(raw, default=Decimal("0")) -> Decimal:
    """Raises ValueError for anything that is not a finite number."""
    if raw is None or (isinstance(raw, str) and raw.strip() == ""):
        return default
    if isinstance(raw, bool):
        raise ValueError("must be a number")
    try:
        num = Decimal(repr(raw)) if isinstance(raw, float) else Decimal(str(raw).strip())
    except InvalidOperation:
        raise ValueError("must be a number")
    if not num.is_finite():
        raise ValueError("must be a finite number")
    return num


def parse_lens_selections(raw) -> dict:
    """
    Decode the persisted lens mapping:
      {category_key: {value, price, insurance_price, label}}
    Accepts a JSON string, a dict, or nothing.
    """
    if raw is None or raw == "":
        return {}
    if isinstance(raw, str):
        if len(raw) > MAX_LENS_JSON:
            raise ValueError(f"must be at most {MAX_LENS_JSON} characters")
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            raise ValueError("is not valid JSON")
    if not isinstance(raw, dict):
        raise ValueError("must be a mapping of category to selection")
    return raw


def _clean_lens_selections(raw, errors: list[dict]) -> dict:
    try:
        decoded = parse_lens_selections(raw)
    except ValueError as e:
        errors.append({"field": "lens_selections", "message": f"lens_selections {e}"})
        return {}

    cleaned = {}
    for key, sel in decoded.items():
        field = f"lens_selections.{key}"
        if not isinstance(sel, dict):
            errors.append({"field": field, "message": "Selection must be an object"})
            continue
        value = sel.get("value")
        if not value:
            # an empty choice means the category is not selected
            continue
        try:
            price = parse_number(sel.get("price"))
            insurance_price = sel.get("insurance_price")
            if insurance_price is not None and insurance_price != "":
                insurance_price = parse_number(insurance_price)
            else:
                insurance_price = None
        except ValueError as e:
            errors.append({"field": field, "message": f"Price {e}"})
            continue

        for label, num in (("price", price), ("insurance_price", insurance_price)):
            if num is not None and not (0 <= num <= MAX_PRICE):
                errors.append({"field": f"{field}.{label}", "message": f"Must be between 0 and {MAX_PRICE}"})

        cleaned[str(key)] = {
            "value": str(value),
            "price": price,
            "insurance_price": insurance_price,
            "label": str(sel.get("label") or value),
        }
    return cleaned


def validate_order(data: dict, is_update: bool = False) -> dict:
    """
    Validate and normalise raw order input (form or JSON).
    Returns the cleaned dict; raises OrderValidationError listing every problem.
    """
    errors: list[dict] = []
    cleaned: dict = {}

    # ---- Required identity fields
    raw_name = data.get("patient_name")
    patient_name = "" if raw_name is None else str(raw_name).strip()
    if not patient_name and not is_update:
        errors.append({"field": "patient_name", "message": "Patient name is required"})
    elif len(patient_name) > 200:
        errors.append({"field": "patient_name", "message": "Patient name must be less than 200 characters"})
    cleaned["patient_name"] = patient_name

    try:
        order_date = _parse_ymd_date(data.get("order_date"))
    except ValueError:
        order_date = None
        errors.append({"field": "order_date", "message": "Order date must be in YYYY-MM-DD format"})
    else:
        if order_date is None and not is_update:
            errors.append({"field": "order_date", "message": "Order date is required"})
    cleaned["order_date"] = order_date

    # ---- Foreign keys
    for key in ID_FIELDS:
        raw = data.get(key)
        if raw is None or raw == "":
            cleaned[key] = None
            continue
        try:
            val = int(raw)
        except (TypeError, ValueError):
            val = 0
        if val <= 0:
            errors.append({"field": key, "message": "Must be a positive integer"})
        cleaned[key] = val

    # ---- Text
    for key, max_len in TEXT_FIELDS.items():
        val = data.get(key)
        val = "" if val is None else str(val).strip()
        if len(val) > max_len:
            errors.append({"field": key, "message": f"Must be less than {max_len} characters"})
        cleaned[key] = val

    if cleaned["frame_formula"] and not FORMULA_RE.match(cleaned["frame_formula"]):
        errors.append({"field": "frame_formula", "message": "Format must be: 100-100-100"})

    cleaned["warranty_type"] = cleaned["warranty_type"] or NO_WARRANTY
    cleaned["other_charge_1_type"] = cleaned["other_charge_1_type"] or "none"
    cleaned["other_charge_2_type"] = cleaned["other_charge_2_type"] or "none"

    # ---- Money
    for key in PRICE_FIELDS:
        try:
            num = parse_number(data.get(key))
        except ValueError as e:
            errors.append({"field": key, "message": f"Price {e}"})
            num = Decimal("0")
        if not (0 <= num <= MAX_PRICE):
            errors.append({"field": key, "message": f"Must be between 0 and {MAX_PRICE}"})
        cleaned[key] = num

    for key in PERCENT_FIELDS:
        try:
            num = parse_number(data.get(key))
        except ValueError as e:
            errors.append({"field": key, "message": f"Percent {e}"})
            num = Decimal("0")
        if not (0 <= num <= 100):
            errors.append({"field": key, "message": "Must be between 0 and 100"})
        cleaned[key] = num

    try:
        adj = parse_number(data.get("other_charges_adjustment"))
    except ValueError as e:
        errors.append({"field": "other_charges_adjustment", "message": f"Adjustment {e}"})
        adj = Decimal("0")
    if not (-MAX_ADJUSTMENT <= adj <= MAX_ADJUSTMENT):
        errors.append({"field": "other_charges_adjustment", "message": f"Must be between -{MAX_ADJUSTMENT} and {MAX_ADJUSTMENT}"})
    cleaned["other_charges_adjustment"] = adj

    # ---- Choices
    iwellness = str(data.get("iwellness") or "no").strip().lower()
    if iwellness not in ("yes", "no"):
        errors.append({"field": "iwellness", "message": "Must be 'yes' or 'no'"})
    cleaned["iwellness"] = iwellness

    status = str(data.get("status") or "pending").strip().lower()
    if status not in STATUSES:
        errors.append({"field": "status", "message": f"Must be one of: {', '.join(STATUSES)}"})
    cleaned["status"] = status

    payment_mode = str(data.get("payment_mode") or "with_insurance").strip().lower()
    if payment_mode not in PAYMENT_MODES:
        errors.append({"field": "payment_mode", "message": f"Must be one of: {', '.join(PAYMENT_MODES)}"})
    cleaned["payment_mode"] = payment_mode

    cleaned["use_own_frame"] = as_bool(data.get("use_own_frame"))

    rating = data.get("service_rating")
    if rating is None or rating == "":
        cleaned["service_rating"] = None
    else:
        try:
            rating = int(rating)
        except (TypeError, ValueError):
            rating = 0
        if not 1 <= rating <= 10:
            errors.append({"field": "service_rating", "message": "Must be between 1 and 10"})
        cleaned["service_rating"] = rating

    # ---- Lenses
    raw_lenses = data.get("lens_selections")
    if raw_lenses is None:
        raw_lenses = data.get("lens_selections_json")
    cleaned["lens_selections"] = _clean_lens_selections(raw_lenses, errors)

    if errors:
        raise OrderValidationError(errors)
    return cleaned


def build_draft(cleaned: dict) -> OrderDraft:
    """Turn validate_order() output into the pricing engine's input."""
    lens_selections = {
        key: LensSelection(
            value=sel["value"],
            regular_price=sel["price"],
            insurance_price=sel["insurance_price"],
            label=sel.get("label"),
        )
        for key, sel in cleaned.get("lens_selections", {}).items()
    }

    legacy = {
        key: cleaned[f"{key}_price"]
        for key in LEGACY_LENS_CATEGORIES
        if cleaned.get(key) and cleaned.get(f"{key}_price")
    }

    own_frame = cleaned.get("use_own_frame", False)
    return OrderDraft(
        frame=FrameInput(
            list_price=Decimal("0") if own_frame else cleaned["frame_price"],
            allowance=Decimal("0") if own_frame else cleaned["frame_allowance"],
            discount_percent=Decimal("0") if own_frame else cleaned["frame_discount_percent"],
            uses_own_frame=own_frame,
        ),
        lens_selections=lens_selections,
        warranty=WarrantySelection(
            type=cleaned.get("warranty_type") or NO_WARRANTY,
            price=cleaned["warranty_price"],
        ),
        material_copay=cleaned["material_copay"],
        other_charges_adjustment=cleaned["other_charges_adjustment"],
        other_percent_adjustment=cleaned["other_percent_adjustment"],
        iwellness_selected=cleaned.get("iwellness") == "yes",
        other_charge_1=OtherCharge(cleaned.get("other_charge_1_type") or "none", cleaned["other_charge_1_price"]),
        other_charge_2=OtherCharge(cleaned.get("other_charge_2_type") or "none", cleaned["other_charge_2_price"]),
        payment_today=cleaned["payment_today"],
        legacy_lens_prices=legacy,
    )
