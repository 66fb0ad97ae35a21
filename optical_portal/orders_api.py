from __future__ import annotations

# =========================================
# orders_api.py
# Optical Portal - JSON API
# =========================================
# - Orders: pricing preview, create/edit/status/delete, search, PDF
# - Lookup lists behind the order form (catalog.py)
# - Database backups (admin only)
# Every response is {"ok": bool, ...}; errors carry a counter-friendly message.
# =========================================

import os
from io import BytesIO

from flask import Blueprint, current_app, jsonify, request, send_file
from flask_login import login_required, current_user
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.utils import secure_filename

from . import backup_utils, catalog, orders
from .errors import PortalError, BackupError, OrderValidationError, format_error
from .models import db
from .pdf_utils import build_order_pdf_bytes
from .validation import as_bool

orders_api = Blueprint("orders_api", __name__, url_prefix="/api")


@orders_api.before_request
@login_required
def _require_login():
    pass


def _payload() -> dict:
    """JSON body, or form fields when the client posts FormData."""
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict(flat=True)


def _actor() -> str | None:
    return current_user.username if current_user.is_authenticated else None


def _admin_only():
    if not current_user.is_admin():
        return jsonify({"ok": False, "error": "Admin access required"}), 403
    return None


def _error_response(exc, code: int):
    info = format_error(exc)
    body = {"ok": False, "error": info["message"], "code": info["code"], "severity": info["severity"]}
    if isinstance(exc, OrderValidationError):
        body["errors"] = exc.errors
    return jsonify(body), code


# -------------------- Error handlers --------------------
@orders_api.errorhandler(PortalError)
def _portal_error(e: PortalError):
    return _error_response(e, e.status_code)


@orders_api.errorhandler(ValueError)
def _value_error(e: ValueError):
    return jsonify({"ok": False, "error": str(e)}), 400


@orders_api.errorhandler(IntegrityError)
def _integrity_error(e: IntegrityError):
    db.session.rollback()
    current_app.logger.warning("Integrity error: %s", e.orig)
    return _error_response(e.orig, 409)


@orders_api.errorhandler(SQLAlchemyError)
def _db_error(e: SQLAlchemyError):
    db.session.rollback()
    current_app.logger.exception("Database operation failed")
    return _error_response(e, 500)


def _listing(key: str, rows) -> tuple:
    return jsonify({"ok": True, key: [catalog.row_to_dict(r) for r in rows]}), 200


# -------------------- Pricing --------------------
@orders_api.post("/pricing")
def preview_pricing():
    """
    POST /api/pricing
    Same fields as an order; nothing is saved. Patient name and date are optional here.
    """
    _, breakdown = orders.price_input(_payload(), is_update=True)
    return jsonify({"ok": True, "pricing": breakdown.to_dict()}), 200


# -------------------- Orders --------------------
@orders_api.get("/orders")
def list_orders():
    limit = min(request.args.get("limit", 100, type=int), 500)
    offset = max(request.args.get("offset", 0, type=int), 0)
    rows = orders.list_orders(limit=limit, offset=offset)
    return jsonify({"ok": True, "orders": [orders.order_to_dict(o, include_lenses=False) for o in rows]}), 200


@orders_api.get("/orders/search")
def search_orders():
    term = (request.args.get("q") or "").strip()
    if not term:
        return jsonify({"ok": True, "orders": []}), 200
    rows = orders.search_orders(term)
    return jsonify({"ok": True, "orders": [orders.order_to_dict(o, include_lenses=False) for o in rows]}), 200


@orders_api.post("/orders")
def create_order():
    """
    POST /api/orders
    JSON or form fields; lens selections as "lens_selections" (object) or
    "lens_selections_json" (string). Totals are computed here, never taken from the client.
    """
    order = orders.create_order(_payload(), actor=_actor())
    return jsonify({"ok": True, "order": orders.order_to_dict(order)}), 201


@orders_api.get("/orders/<int:order_id>")
def get_order(order_id: int):
    order = orders.get_order(order_id)
    body = {"ok": True, "order": orders.order_to_dict(order)}

    # audit trail is admin-only
    if current_user.is_admin():
        body["logs"] = [catalog.row_to_dict(log) for log in orders.order_logs(order.id)]
    return jsonify(body), 200


@orders_api.put("/orders/<int:order_id>")
def update_order(order_id: int):
    order = orders.update_order(order_id, _payload(), actor=_actor())
    return jsonify({"ok": True, "order": orders.order_to_dict(order)}), 200


@orders_api.post("/orders/<int:order_id>/status")
def set_status(order_id: int):
    status = (_payload().get("status") or "").strip()
    order = orders.set_order_status(order_id, status, actor=_actor())
    return jsonify({"ok": True, "order": orders.order_to_dict(order, include_lenses=False)}), 200


@orders_api.delete("/orders/<int:order_id>")
def delete_order(order_id: int):
    denied = _admin_only()
    if denied:
        return denied
    orders.delete_order(order_id, actor=_actor())
    return jsonify({"ok": True}), 200


@orders_api.get("/orders/<int:order_id>/pdf")
def order_pdf(order_id: int):
    """
    GET /api/orders/<id>/pdf[?save=1]
    save=1 also writes the file to PDF_DIR (or the pdf_save_location setting).
    """
    order = orders.get_order(order_id)
    breakdown = orders.recompute_order(order)
    company = catalog.get_setting("company_name") or current_app.config.get("COMPANY_NAME")

    pdf_bytes = build_order_pdf_bytes(
        orders.order_to_dict(order, include_lenses=False),
        lens_items=orders.lens_items(order),
        breakdown=breakdown,
        company_name=company,
    )
    filename = secure_filename(f"Order_{order.order_number}_{order.patient_name}.pdf") or "order.pdf"

    if as_bool(request.args.get("save")):
        pdf_dir = catalog.get_setting("pdf_save_location") or current_app.config["PDF_DIR"]
        os.makedirs(pdf_dir, exist_ok=True)
        with open(os.path.join(pdf_dir, filename), "wb") as fh:
            fh.write(pdf_bytes)
        current_app.logger.info("Saved PDF %s", filename)

    return send_file(
        BytesIO(pdf_bytes),
        mimetype="application/pdf",
        as_attachment=False,
        download_name=filename,
    )


# -------------------- Dropdown options --------------------
@orders_api.get("/options")
def list_options():
    return _listing("options", catalog.get_dropdown_options(request.args.get("category")))


@orders_api.post("/options")
def add_option():
    option = catalog.add_dropdown_option(_payload())
    return jsonify({"ok": True, "option": catalog.row_to_dict(option)}), 201


@orders_api.put("/options/<int:option_id>")
def update_option(option_id: int):
    option = catalog.update_dropdown_option(option_id, _payload())
    return jsonify({"ok": True, "option": catalog.row_to_dict(option)}), 200


@orders_api.delete("/options/<int:option_id>")
def delete_option(option_id: int):
    catalog.delete_dropdown_option(option_id)
    return jsonify({"ok": True}), 200


# -------------------- Doctors / insurance providers --------------------
@orders_api.get("/doctors")
def list_doctors():
    return _listing("doctors", catalog.get_doctors())


@orders_api.post("/doctors")
def add_doctor():
    doctor = catalog.add_doctor(_payload().get("name"))
    return jsonify({"ok": True, "doctor": catalog.row_to_dict(doctor)}), 201


@orders_api.put("/doctors/<int:doctor_id>")
def update_doctor(doctor_id: int):
    doctor = catalog.update_doctor(doctor_id, _payload().get("name"))
    return jsonify({"ok": True, "doctor": catalog.row_to_dict(doctor)}), 200


@orders_api.delete("/doctors/<int:doctor_id>")
def delete_doctor(doctor_id: int):
    catalog.delete_doctor(doctor_id)
    return jsonify({"ok": True}), 200


@orders_api.get("/insurance-providers")
def list_insurance_providers():
    return _listing("providers", catalog.get_insurance_providers())


@orders_api.post("/insurance-providers")
def add_insurance_provider():
    provider = catalog.add_insurance_provider(_payload().get("name"))
    return jsonify({"ok": True, "provider": catalog.row_to_dict(provider)}), 201


@orders_api.put("/insurance-providers/<int:provider_id>")
def update_insurance_provider(provider_id: int):
    provider = catalog.update_insurance_provider(provider_id, _payload().get("name"))
    return jsonify({"ok": True, "provider": catalog.row_to_dict(provider)}), 200


@orders_api.delete("/insurance-providers/<int:provider_id>")
def delete_insurance_provider(provider_id: int):
    catalog.delete_insurance_provider(provider_id)
    return jsonify({"ok": True}), 200


# -------------------- Employees --------------------
@orders_api.get("/employees")
def list_employees():
    include_inactive = as_bool(request.args.get("include_inactive"))
    return _listing("employees", catalog.get_employees(include_inactive=include_inactive))


@orders_api.post("/employees")
def add_employee():
    data = _payload()
    employee = catalog.add_employee(data.get("name"), data.get("initials"))
    return jsonify({"ok": True, "employee": catalog.row_to_dict(employee)}), 201


@orders_api.put("/employees/<int:employee_id>")
def update_employee(employee_id: int):
    data = _payload()
    employee = catalog.update_employee(employee_id, data.get("name"), data.get("initials"))
    return jsonify({"ok": True, "employee": catalog.row_to_dict(employee)}), 200


@orders_api.post("/employees/<int:employee_id>/activate")
def activate_employee(employee_id: int):
    catalog.set_employee_active(employee_id, True)
    return jsonify({"ok": True}), 200


@orders_api.post("/employees/<int:employee_id>/deactivate")
def deactivate_employee(employee_id: int):
    catalog.set_employee_active(employee_id, False)
    return jsonify({"ok": True}), 200


@orders_api.delete("/employees/<int:employee_id>")
def delete_employee(employee_id: int):
    denied = _admin_only()
    if denied:
        return denied
    catalog.hard_delete_employee(employee_id)
    return jsonify({"ok": True}), 200


# -------------------- Lens categories --------------------
@orders_api.get("/lens-categories")
def list_lens_categories():
    active_only = as_bool(request.args.get("active_only"))
    return _listing("categories", catalog.get_lens_categories(active_only=active_only))


@orders_api.post("/lens-categories")
def add_lens_category():
    category = catalog.add_lens_category(_payload())
    return jsonify({"ok": True, "category": catalog.row_to_dict(category)}), 201


@orders_api.put("/lens-categories/<int:category_id>")
def update_lens_category(category_id: int):
    category = catalog.update_lens_category(category_id, _payload())
    return jsonify({"ok": True, "category": catalog.row_to_dict(category)}), 200


@orders_api.delete("/lens-categories/<int:category_id>")
def delete_lens_category(category_id: int):
    catalog.delete_lens_category(category_id)
    return jsonify({"ok": True}), 200


@orders_api.post("/lens-categories/<int:category_id>/toggle")
def toggle_lens_category(category_id: int):
    category = catalog.toggle_lens_category(category_id)
    return jsonify({"ok": True, "category": catalog.row_to_dict(category)}), 200


# -------------------- Frames --------------------
@orders_api.get("/frames")
def list_frames():
    return _listing("frames", catalog.get_frames())


@orders_api.get("/frames/<sku>")
def get_frame(sku: str):
    return jsonify({"ok": True, "frame": catalog.row_to_dict(catalog.get_frame_by_sku(sku))}), 200


@orders_api.post("/frames")
def add_frame():
    frame = catalog.add_frame(_payload())
    return jsonify({"ok": True, "frame": catalog.row_to_dict(frame)}), 201


# -------------------- Settings --------------------
@orders_api.get("/settings")
def list_settings():
    return jsonify({"ok": True, "settings": catalog.get_all_settings()}), 200


@orders_api.put("/settings/<key>")
def update_setting(key: str):
    denied = _admin_only()
    if denied:
        return denied
    catalog.set_setting(key, _payload().get("value"))
    return jsonify({"ok": True, "settings": catalog.get_all_settings()}), 200


# -------------------- Backups (admin) --------------------
def _backup_paths() -> tuple[str, str]:
    db_path = current_app.config.get("DATABASE_PATH")
    if not db_path:
        raise BackupError("Backups need a file-based SQLite database")
    return db_path, current_app.config["BACKUP_DIR"]


@orders_api.get("/backups")
def list_backups():
    denied = _admin_only()
    if denied:
        return denied
    _, backup_dir = _backup_paths()
    return jsonify({"ok": True, "backups": [b.to_dict() for b in backup_utils.list_backups(backup_dir)]}), 200


@orders_api.post("/backups")
def create_backup():
    denied = _admin_only()
    if denied:
        return denied
    db_path, backup_dir = _backup_paths()
    reason = (_payload().get("reason") or "manual").strip().lower()
    try:
        info = backup_utils.create_backup(db_path, backup_dir, reason=reason)
    except OSError as e:
        current_app.logger.exception("Backup failed")
        return _error_response(e, 500)
    return jsonify({"ok": True, "backup": info.to_dict()}), 201


@orders_api.post("/backups/<filename>/restore")
def restore_backup(filename: str):
    denied = _admin_only()
    if denied:
        return denied
    db_path, backup_dir = _backup_paths()

    # release pooled connections so the file can be replaced
    db.session.remove()
    db.engine.dispose()
    try:
        pre_restore = backup_utils.restore_backup(db_path, backup_dir, filename)
    except OSError as e:
        current_app.logger.exception("Restore failed")
        return _error_response(e, 500)
    db.engine.dispose()

    current_app.logger.warning("Database restored from %s by %s", filename, _actor())
    return jsonify({
        "ok": True,
        "restored": filename,
        "pre_restore_backup": pre_restore.to_dict() if pre_restore else None,
    }), 200


@orders_api.delete("/backups/<filename>")
def delete_backup(filename: str):
    denied = _admin_only()
    if denied:
        return denied
    _, backup_dir = _backup_paths()
    backup_utils.delete_backup(backup_dir, filename)
    return jsonify({"ok": True}), 200
