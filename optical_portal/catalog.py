from __future__ import annotations

# =========================================
# catalog.py
# Optical Portal - lookup lists behind the order form
# =========================================
# Dropdown options, doctors, insurance providers, employees, lens categories,
# frame inventory and app settings. Removals are soft (is_active = 0) except
# where noted.
# =========================================

import re

from .errors import NotFoundError, ProtectedRecordError
from .models import (
    db,
    AppSetting,
    Doctor,
    DropdownOption,
    Employee,
    Frame,
    InsuranceProvider,
    LensCategory,
    Order,
)
from .validation import parse_number

ALLOWED_SETTINGS = [
    "pdf_save_location",
    "company_name",
    "tax_rate",
    "default_warranty",
    "receipt_footer",
    "auto_backup_enabled",
    "backup_retention_days",
]


def _get_or_404(model, record_id: int):
    record = db.session.get(model, record_id)
    if not record:
        raise NotFoundError(f"{model.__name__} {record_id} not found")
    return record


def clean_name(value, field: str = "Name", max_length: int = 200) -> str:
    if not value or not isinstance(value, str):
        raise ValueError(f"{field} is required")
    trimmed = value.strip()
    if not trimmed:
        raise ValueError(f"{field} cannot be empty")
    if len(trimmed) > max_length:
        raise ValueError(f"{field} must be less than {max_length} characters")
    return trimmed


def normalize_category_key(raw: str) -> str:
    return re.sub(r"[^a-z0-9_]", "_", (raw or "").strip().lower())


def row_to_dict(row) -> dict:
    out = {}
    for col in row.__table__.columns:
        val = getattr(row, col.name)
        if hasattr(val, "isoformat"):
            val = val.isoformat(sep=" ") if hasattr(val, "hour") else val.isoformat()
        out[col.name] = val
    return out


# -------------------- Dropdown options --------------------
def get_dropdown_options(category: str | None = None) -> list[DropdownOption]:
    q = DropdownOption.query.filter_by(is_active=1)
    if category:
        q = q.filter_by(category=category)
    return q.order_by(DropdownOption.category, DropdownOption.sort_order, DropdownOption.label).all()


def find_option(category: str, value: str) -> DropdownOption | None:
    return DropdownOption.query.filter_by(category=category, value=value, is_active=1).first()


def add_dropdown_option(data: dict) -> DropdownOption:
    label = clean_name(data.get("label"), "Label", 120)
    option = DropdownOption(
        category=clean_name(data.get("category"), "Category", 80),
        label=label,
        value=(data.get("value") or label).strip(),
        price=float(parse_number(data.get("price"))),
        sort_order=int(data.get("sort_order") or 0),
    )
    db.session.add(option)
    db.session.commit()
    return option


def update_dropdown_option(option_id: int, data: dict) -> DropdownOption:
    option = _get_or_404(DropdownOption, option_id)
    if "label" in data:
        option.label = clean_name(data.get("label"), "Label", 120)
    if "value" in data:
        option.value = clean_name(data.get("value"), "Value", 120)
    if "price" in data:
        option.price = float(parse_number(data.get("price")))
    if "sort_order" in data:
        option.sort_order = int(data.get("sort_order") or 0)
    db.session.commit()
    return option


def delete_dropdown_option(option_id: int):
    _get_or_404(DropdownOption, option_id).is_active = 0
    db.session.commit()


# -------------------- Doctors / insurance providers --------------------
def _named_list(model):
    return model.query.filter_by(is_active=1).order_by(model.name).all()


def _add_named(model, name):
    record = model(name=clean_name(name))
    db.session.add(record)
    db.session.commit()
    return record


def _rename(model, record_id, name):
    record = _get_or_404(model, record_id)
    record.name = clean_name(name)
    db.session.commit()
    return record


def _deactivate(model, record_id):
    _get_or_404(model, record_id).is_active = 0
    db.session.commit()


def get_doctors():
    return _named_list(Doctor)


def add_doctor(name: str) -> Doctor:
    return _add_named(Doctor, name)


def update_doctor(doctor_id: int, name: str) -> Doctor:
    return _rename(Doctor, doctor_id, name)


def delete_doctor(doctor_id: int):
    _deactivate(Doctor, doctor_id)


def get_insurance_providers():
    return _named_list(InsuranceProvider)


def add_insurance_provider(name: str) -> InsuranceProvider:
    return _add_named(InsuranceProvider, name)


def update_insurance_provider(provider_id: int, name: str) -> InsuranceProvider:
    return _rename(InsuranceProvider, provider_id, name)


def delete_insurance_provider(provider_id: int):
    _deactivate(InsuranceProvider, provider_id)


# -------------------- Employees --------------------
def get_employees(include_inactive: bool = False) -> list[Employee]:
    q = Employee.query
    if not include_inactive:
        q = q.filter_by(is_active=1)
    return q.order_by(Employee.name).all()


def add_employee(name: str, initials: str | None = None) -> Employee:
    employee = Employee(name=clean_name(name, "Employee name", 120), initials=(initials or "").strip() or None)
    db.session.add(employee)
    db.session.commit()
    return employee


def update_employee(employee_id: int, name: str, initials: str | None = None) -> Employee:
    employee = _get_or_404(Employee, employee_id)
    employee.name = clean_name(name, "Employee name", 120)
    employee.initials = (initials or "").strip() or None
    db.session.commit()
    return employee


def set_employee_active(employee_id: int, active: bool):
    _get_or_404(Employee, employee_id).is_active = 1 if active else 0
    db.session.commit()


def hard_delete_employee(employee_id: int):
    employee = _get_or_404(Employee, employee_id)
    count = Order.query.filter(
        (Order.employee_id == employee_id) | (Order.verified_by_employee_id == employee_id)
    ).count()
    if count:
        raise ProtectedRecordError(
            f"Cannot delete employee: they have {count} order(s) associated. Deactivate instead."
        )
    db.session.delete(employee)
    db.session.commit()


# -------------------- Lens categories --------------------
def get_lens_categories(active_only: bool = False) -> list[LensCategory]:
    q = LensCategory.query
    if active_only:
        q = q.filter_by(is_active=1)
    return q.order_by(LensCategory.sort_order, LensCategory.display_label).all()


def add_lens_category(data: dict) -> LensCategory:
    key = normalize_category_key(data.get("category_key"))
    if not key.strip("_"):
        raise ValueError("Category key is required")
    category = LensCategory(
        category_key=key,
        display_label=clean_name(data.get("display_label"), "Display label", 120),
        sort_order=int(data.get("sort_order") or 0),
        is_system=0,  # custom categories are never system categories
    )
    db.session.add(category)
    db.session.commit()
    return category


def _custom_category(category_id: int) -> LensCategory:
    category = _get_or_404(LensCategory, category_id)
    if category.is_system:
        raise ProtectedRecordError(f"Lens category '{category.category_key}' is a system category")
    return category


def update_lens_category(category_id: int, data: dict) -> LensCategory:
    category = _custom_category(category_id)
    if "display_label" in data:
        category.display_label = clean_name(data.get("display_label"), "Display label", 120)
    if "sort_order" in data:
        category.sort_order = int(data.get("sort_order") or 0)
    db.session.commit()
    return category


def delete_lens_category(category_id: int):
    db.session.delete(_custom_category(category_id))
    db.session.commit()


def toggle_lens_category(category_id: int) -> LensCategory:
    category = _get_or_404(LensCategory, category_id)
    category.is_active = 0 if category.is_active else 1
    db.session.commit()
    return category


# -------------------- Frames --------------------
def get_frames() -> list[Frame]:
    return Frame.query.filter_by(is_active=1).order_by(Frame.name).all()


def get_frame_by_sku(sku: str) -> Frame:
    frame = Frame.query.filter_by(sku=(sku or "").strip(), is_active=1).first()
    if not frame:
        raise NotFoundError(f"Frame {sku} not found")
    return frame


def add_frame(data: dict) -> Frame:
    frame = Frame(
        sku=clean_name(data.get("sku"), "SKU", 100),
        name=clean_name(data.get("name"), "Frame name", 200),
        material=(data.get("material") or "").strip() or None,
        description=(data.get("description") or "").strip() or None,
        price=float(parse_number(data.get("price"))),
    )
    db.session.add(frame)
    db.session.commit()
    return frame


# -------------------- Settings --------------------
def get_setting(key: str):
    row = AppSetting.query.filter_by(setting_key=key).first()
    return row.setting_value if row else None


def set_setting(key: str, value) -> AppSetting:
    if key not in ALLOWED_SETTINGS:
        raise ValueError(f"Unknown setting: {key}")
    row = AppSetting.query.filter_by(setting_key=key).first()
    if not row:
        row = AppSetting(setting_key=key)
        db.session.add(row)
    row.setting_value = None if value is None else str(value)
    db.session.commit()
    return row


def get_all_settings() -> dict:
    return {row.setting_key: row.setting_value for row in AppSetting.query.all()}
