from __future__ import annotations

# =========================================
# orders.py
# Optical Portal - order service
# =========================================
# - Validates raw input, prices it with pricing.compute_pricing(), stores the
#   flattened breakdown on the Order row
# - Totals sent by the client are ignored; they are always recomputed here
# - Every create/edit/status change/delete is written to OrderLog
# =========================================

import json
from datetime import date, datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy import or_

from .errors import NotFoundError, OrderValidationError
from .models import db, Order, OrderLog, Employee
from .pricing import PricingRates, PriceBreakdown, IWELLNESS_FEE, compute_pricing
from .validation import (
    validate_order,
    build_draft,
    parse_lens_selections,
    LEGACY_LENS_CATEGORIES,
    PRICE_FIELDS,
    PERCENT_FIELDS,
    TEXT_FIELDS,
    ID_FIELDS,
    STATUSES,
)

# Fields compared for the edit log
TRACKED_FIELDS = [
    "patient_name", "order_date", "order_number", "frame_sku", "frame_price", "warranty_type",
    "payment_today", "payment_mode", "status", "final_price", "insurance_final_price",
]

LEGACY_LENS_LABELS = {
    "lens_design": "Lens Design",
    "lens_material": "Lens Material",
    "ar_coating": "AR Non-Glare Coating",
    "blue_light": "Blue Light Guard",
    "transition_polarized": "Transition/Polarized",
    "aspheric": "Aspheric",
    "edge_treatment": "Edge Treatment",
    "prism": "Prism",
    "other_option": "Other Add-Ons",
}


# -------------------- Helpers --------------------
def pricing_rates() -> PricingRates:
    cfg = current_app.config
    return PricingRates(
        sales_tax_rate=Decimal(str(cfg.get("SALES_TAX_RATE", "0.0225"))),
        warranty_copay_rate=Decimal(str(cfg.get("WARRANTY_COPAY_RATE", "0.15"))),
    )


def date_key_yyyymmdd(d: date) -> str:
    return d.strftime("%Y%m%d")


def next_order_number(order_date: date) -> tuple[str, int, str]:
    """
    Returns (date_key, seq, order_number) where seq is per order date.
    Format: ORD-YYYYMMDD-NNNN
    """
    key = date_key_yyyymmdd(order_date)

    max_seq = (
        db.session.query(db.func.max(Order.order_seq))
        .filter(Order.order_date_key == key)
        .scalar()
    )
    seq = (max_seq or 0) + 1
    return key, seq, f"ORD-{key}-{seq:04d}"


def log_event(order_id: int, action: str, details: str | None = None, actor: str | None = None):
    entry = OrderLog(order_id=order_id, actor_username=actor, action=action, details=details)
    db.session.add(entry)


def _json_default(val):
    if isinstance(val, Decimal):
        return float(val)
    raise TypeError(f"Object of type {type(val).__name__} is not JSON serializable")


def encode_lens_selections(selections: dict) -> str:
    return json.dumps(selections, default=_json_default)


# -------------------- Row <-> form data --------------------
def order_form_data(order: Order) -> dict:
    """The editable input fields of a stored order, in validate_order() shape."""
    data = {
        "patient_name": order.patient_name,
        "order_date": order.order_date.isoformat() if order.order_date else None,
        "use_own_frame": bool(order.use_own_frame),
        "iwellness": order.iwellness,
        "status": order.status,
        "payment_mode": order.payment_mode,
        "service_rating": order.service_rating,
        "other_charges_adjustment": order.other_charges_adjustment,
    }
    for key in ID_FIELDS:
        data[key] = getattr(order, key)
    for key in TEXT_FIELDS:
        data[key] = getattr(order, key)
    for key in PRICE_FIELDS + PERCENT_FIELDS:
        data[key] = getattr(order, key)

    try:
        data["lens_selections"] = parse_lens_selections(order.lens_selections_json)
    except ValueError:
        current_app.logger.warning("Order %s has unreadable lens_selections_json", order.id)
        data["lens_selections"] = {}
    return data


def _assign_fields(order: Order, cleaned: dict):
    order.patient_name = cleaned["patient_name"]
    order.order_date = cleaned["order_date"]
    for key in ID_FIELDS:
        setattr(order, key, cleaned[key])
    for key in TEXT_FIELDS:
        setattr(order, key, cleaned[key] or None)
    order.warranty_type = cleaned["warranty_type"]
    order.other_charge_1_type = cleaned["other_charge_1_type"]
    order.other_charge_2_type = cleaned["other_charge_2_type"]

    for key in PRICE_FIELDS + PERCENT_FIELDS:
        setattr(order, key, float(cleaned[key]))
    order.other_charges_adjustment = float(cleaned["other_charges_adjustment"])

    order.use_own_frame = 1 if cleaned["use_own_frame"] else 0
    if cleaned["use_own_frame"]:
        order.frame_price = 0.0
        order.frame_allowance = 0.0
        order.frame_discount_percent = 0.0

    order.iwellness = cleaned["iwellness"]
    order.iwellness_price = float(IWELLNESS_FEE) if cleaned["iwellness"] == "yes" else 0.0
    order.status = cleaned["status"]
    order.payment_mode = cleaned["payment_mode"]
    order.service_rating = cleaned["service_rating"]
    order.lens_selections_json = encode_lens_selections(cleaned["lens_selections"])


def apply_breakdown(order: Order, b: PriceBreakdown):
    """Flatten a PriceBreakdown onto the order's stored columns."""
    order.final_frame_price = float(b.final_frame_price)
    order.you_saved = float(b.you_saved)

    order.total_lens_charges = float(b.total_lens_charges_regular)
    order.regular_price = float(b.regular_price)
    order.sales_tax = float(b.sales_tax_regular)
    order.you_pay = float(b.you_pay_regular)
    order.final_price = float(b.final_price_regular)
    order.total_balance_regular = float(b.total_balance_regular)
    order.balance_due_regular = float(b.balance_due_regular)

    order.total_lens_insurance_charges = float(b.total_lens_charges_insurance)
    order.insurance_regular_price = float(b.insurance_regular_price)
    order.insurance_sales_tax = float(b.sales_tax_insurance)
    order.insurance_you_pay = float(b.you_pay_insurance)
    order.insurance_final_price = float(b.final_price_insurance)
    order.total_balance = float(b.total_balance_insurance)
    order.balance_due = float(b.balance_due_insurance)


def price_input(data: dict, is_update: bool = False) -> tuple[dict, PriceBreakdown]:
    cleaned = validate_order(data, is_update=is_update)
    return cleaned, compute_pricing(build_draft(cleaned), pricing_rates())


def recompute_order(order: Order) -> PriceBreakdown:
    """Price a stored order again from its saved inputs."""
    _, breakdown = price_input(order_form_data(order), is_update=True)
    return breakdown


def display_price(order: Order) -> float:
    if order.payment_mode == "without_insurance":
        return order.final_price or 0.0
    return order.insurance_final_price or 0.0


def lens_items(order: Order) -> list[dict]:
    """
    Display rows [{category, label, value, price, insurance_price}].
    Old records without lens_selections_json fall back to the flat columns.
    """
    items = []
    try:
        selections = parse_lens_selections(order.lens_selections_json)
    except ValueError:
        selections = {}

    for key, sel in selections.items():
        if not isinstance(sel, dict) or not sel.get("value"):
            continue
        label = sel.get("label") or key.replace("_", " ").title()
        items.append({
            "category": key,
            "label": label,
            "value": sel["value"],
            "price": float(sel.get("price") or 0),
            # not entered yet shows as 0
            "insurance_price": float(sel.get("insurance_price") or 0),
        })
    if items:
        return items

    for key in LEGACY_LENS_CATEGORIES:
        value = getattr(order, key)
        if value and value != "None":
            price = getattr(order, f"{key}_price") or 0.0
            items.append({
                "category": key,
                "label": LEGACY_LENS_LABELS[key],
                "value": value,
                "price": price,
                "insurance_price": 0.0,
            })
    return items


def order_to_dict(order: Order, include_lenses: bool = True) -> dict:
    out = {c.name: getattr(order, c.name) for c in order.__table__.columns}
    out["order_date"] = order.order_date.isoformat() if order.order_date else None
    out["created_at"] = order.created_at.isoformat(sep=" ") if order.created_at else None
    out["updated_at"] = order.updated_at.isoformat(sep=" ") if order.updated_at else None
    out["use_own_frame"] = bool(order.use_own_frame)
    out["doctor_name"] = order.doctor.name if order.doctor else None
    out["employee_name"] = order.employee.name if order.employee else None
    out["employee_initials"] = order.employee.initials if order.employee else None
    out["display_price"] = display_price(order)
    if include_lenses:
        out["lens_items"] = lens_items(order)
    return out


# -------------------- Operations --------------------
def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def list_orders(limit: int = 100, offset: int = 0) -> list[Order]:
    return (
        Order.query.order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )


def search_orders(term: str) -> list[Order]:
    like = f"%{(term or '').strip()}%"
    return (
        Order.query.outerjoin(Employee, Order.employee_id == Employee.id)
        .filter(or_(
            Order.patient_name.ilike(like),
            Order.order_number.ilike(like),
            Order.account_number.ilike(like),
            Employee.name.ilike(like),
            Employee.initials.ilike(like),
        ))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(100)
        .all()
    )


def create_order(data: dict, actor: str | None = None) -> Order:
    cleaned, breakdown = price_input(data)

    key, seq, number = next_order_number(cleaned["order_date"])
    order = Order(order_date_key=key, order_seq=seq, order_number=number, created_at=datetime.utcnow())
    _assign_fields(order, cleaned)
    apply_breakdown(order, breakdown)

    db.session.add(order)
    db.session.flush()  # need order.id for the log row
    log_event(order.id, "created", f"Created order {order.order_number} for {order.patient_name}", actor)
    db.session.commit()

    current_app.logger.info("Created order %s", order.order_number)
    return order


def update_order(order_id: int, data: dict, actor: str | None = None) -> Order:
    order = get_order(order_id)
    before = {k: getattr(order, k) for k in TRACKED_FIELDS}

    # fields not sent keep their stored value
    merged = {**order_form_data(order), **data}
    if "lens_selections_json" in data and "lens_selections" not in data:
        merged.pop("lens_selections")
    cleaned, breakdown = price_input(merged, is_update=True)
    if not cleaned["patient_name"]:
        cleaned["patient_name"] = order.patient_name
    if cleaned["order_date"] is None:
        cleaned["order_date"] = order.order_date

    # If the order date changed, re-assign the number based on the new date
    if cleaned["order_date"] != order.order_date:
        order.order_date_key, order.order_seq, order.order_number = next_order_number(cleaned["order_date"])

    _assign_fields(order, cleaned)
    apply_breakdown(order, breakdown)

    after = {k: getattr(order, k) for k in TRACKED_FIELDS}
    changes = [f"{k}: {before[k]} → {after[k]}" for k in TRACKED_FIELDS if before[k] != after[k]]
    log_event(order.id, "edited", "; ".join(changes) if changes else "Saved (no changes)", actor)
    db.session.commit()
    return order


def set_order_status(order_id: int, status: str, actor: str | None = None) -> Order:
    order = get_order(order_id)
    new_status = (status or "").strip().lower()
    if new_status not in STATUSES:
        raise OrderValidationError([{"field": "status", "message": f"Must be one of: {', '.join(STATUSES)}"}])

    old = order.status
    order.status = new_status
    log_event(order.id, "status_change", f"Status changed: {old} → {order.status}", actor)
    db.session.commit()
    return order


def delete_order(order_id: int, actor: str | None = None):
    order = get_order(order_id)

    # record deletion before removing the row; the log outlives the order
    log_event(order.id, "deleted", f"Order deleted: {order.order_number}", actor)
    db.session.delete(order)
    db.session.commit()


def order_logs(order_id: int) -> list[OrderLog]:
    return OrderLog.query.filter_by(order_id=order_id).order_by(OrderLog.timestamp.desc(), OrderLog.id.desc()).all()
