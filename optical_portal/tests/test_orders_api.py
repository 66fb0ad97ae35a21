import os

import pytest

from optical_portal import orders
from optical_portal.models import Employee, Order, OrderLog, db
from optical_portal.pdf_utils import frame_discount_amount, pricing_rows


def _create(client, payload):
    response = client.post("/api/orders", json=payload)
    assert response.status_code == 201, response.get_json()
    return response.get_json()["order"]


# =============================================================================
# Access
# =============================================================================

class TestAccess:
    """Login requirements."""

    def test_api_requires_login(self, client):
        """Anonymous requests get 401 JSON."""
        response = client.get("/api/orders")
        assert response.status_code == 401
        assert response.get_json()["ok"] is False

    def test_staff_cannot_delete(self, staff_client, order_payload):
        """Deleting orders is admin-only."""
        order = _create(staff_client, order_payload)
        response = staff_client.delete(f"/api/orders/{order['id']}")
        assert response.status_code == 403


# =============================================================================
# Pricing preview
# =============================================================================

class TestPricingPreview:
    """POST /api/pricing"""

    def test_preview_returns_breakdown(self, staff_client, order_payload):
        """The worked example prices without saving."""
        response = staff_client.post("/api/pricing", json=order_payload)

        assert response.status_code == 200
        pricing = response.get_json()["pricing"]
        assert pricing["final_price_regular"] == 413.33
        assert pricing["final_price_insurance"] == 295.74
        assert pricing["warranty_copay"]["frame_replacement_copay"] == 30.0

        assert staff_client.get("/api/orders").get_json()["orders"] == []

    def test_preview_validation_error(self, staff_client):
        """Bad numbers come back as field errors."""
        response = staff_client.post("/api/pricing", json={"frame_price": "abc"})

        assert response.status_code == 400
        body = response.get_json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["errors"][0]["field"] == "frame_price"


# =============================================================================
# Order lifecycle
# =============================================================================

class TestCreateOrder:
    """POST /api/orders"""

    def test_create_stores_computed_totals(self, staff_client, order_payload):
        """Both paths are priced and flattened onto the order."""
        order = _create(staff_client, order_payload)

        assert order["order_number"] == "ORD-20260314-0001"
        assert order["final_frame_price"] == 135.0
        assert order["final_price"] == 413.33
        assert order["insurance_final_price"] == 295.74
        assert order["balance_due"] == 195.74
        assert order["balance_due_regular"] == 313.33
        assert order["display_price"] == 295.74
        assert order["lens_items"][0]["value"] == "Progressive- Light DX"

    def test_client_totals_ignored(self, staff_client, order_payload):
        """Totals sent by the client are recomputed."""
        order_payload["final_price"] = 1
        order_payload["insurance_final_price"] = 1
        order = _create(staff_client, order_payload)
        assert order["final_price"] == 413.33

    def test_sequence_per_day(self, staff_client, order_payload):
        """Order numbers count up within a date and restart on a new one."""
        _create(staff_client, order_payload)
        second = _create(staff_client, order_payload)
        order_payload["order_date"] = "2026-03-15"
        other_day = _create(staff_client, order_payload)

        assert second["order_number"] == "ORD-20260314-0002"
        assert other_day["order_number"] == "ORD-20260315-0001"

    def test_display_price_without_insurance(self, staff_client, order_payload):
        """Self-pay orders show the regular final price."""
        order_payload["payment_mode"] = "without_insurance"
        assert _create(staff_client, order_payload)["display_price"] == 413.33

    def test_form_data_accepted(self, staff_client):
        """FormData posts with lens_selections_json work too."""
        response = staff_client.post("/api/orders", data={
            "patient_name": "Sam Lee",
            "order_date": "2026-03-14",
            "frame_price": "120",
            "lens_selections_json": '{"lens_material": {"value": "Poly", "price": 50, "insurance_price": 25}}',
        })
        assert response.status_code == 201
        order = response.get_json()["order"]
        assert order["total_lens_charges"] == 50.0
        assert order["total_lens_insurance_charges"] == 25.0

    def test_missing_fields(self, staff_client):
        """Patient name and date are required."""
        response = staff_client.post("/api/orders", json={})
        assert response.status_code == 400
        assert {e["field"] for e in response.get_json()["errors"]} == {"patient_name", "order_date"}

    def test_numeric_patient_name(self, staff_client, order_payload):
        """A JSON number for the patient name is stored as text."""
        order_payload["patient_name"] = 12345
        assert _create(staff_client, order_payload)["patient_name"] == "12345"

    def test_oversized_non_string_name(self, staff_client, order_payload):
        """Non-string names still go through the length check."""
        order_payload["patient_name"] = ["x" * 50] * 10
        response = staff_client.post("/api/orders", json=order_payload)

        assert response.status_code == 400
        assert response.get_json()["errors"][0]["field"] == "patient_name"


class TestLegacyLensRows:
    """Orders saved with only the flat lens columns."""

    def test_rows_match_totals(self, app_ctx):
        """Displayed lens prices add up to the priced totals on both paths."""
        order = Order(
            order_date_key="20260314", order_seq=1, order_number="ORD-20260314-0001",
            patient_name="Jane Doe", lens_design="SV- Distance", lens_design_price=85,
            ar_coating="Crizal", ar_coating_price=99,
        )
        db.session.add(order)
        db.session.commit()

        items = orders.lens_items(order)
        breakdown = orders.recompute_order(order)

        assert [i["value"] for i in items] == ["SV- Distance", "Crizal"]
        assert sum(i["price"] for i in items) == float(breakdown.total_lens_charges_regular) == 184.0
        assert sum(i["insurance_price"] for i in items) == float(breakdown.total_lens_charges_insurance) == 0.0


class TestUpdateOrder:
    """PUT /api/orders/<id>"""

    def test_update_recomputes(self, staff_client, order_payload):
        """Changing the payment recomputes the balance."""
        order = _create(staff_client, order_payload)
        response = staff_client.put(f"/api/orders/{order['id']}", json={"payment_today": 295.74})

        assert response.status_code == 200
        updated = response.get_json()["order"]
        assert updated["balance_due"] == 0.0
        assert updated["patient_name"] == "Jane Doe"
        assert updated["order_number"] == order["order_number"]

    def test_date_change_renumbers(self, staff_client, order_payload):
        """Moving the order date assigns a number for the new day."""
        order = _create(staff_client, order_payload)
        response = staff_client.put(f"/api/orders/{order['id']}", json={"order_date": "2026-04-01"})
        assert response.get_json()["order"]["order_number"] == "ORD-20260401-0001"

    def test_update_logs_changes(self, admin_client, order_payload):
        """Edits are written to the audit log."""
        order = _create(admin_client, order_payload)
        admin_client.put(f"/api/orders/{order['id']}", json={"patient_name": "Jane Smith"})

        logs = admin_client.get(f"/api/orders/{order['id']}").get_json()["logs"]
        assert [log["action"] for log in logs] == ["edited", "created"]
        assert "Jane Doe → Jane Smith" in logs[0]["details"]

    def test_update_missing_order(self, staff_client):
        """Unknown ids are 404."""
        response = staff_client.put("/api/orders/999", json={"payment_today": 1})
        assert response.status_code == 404


class TestStatusAndDelete:
    """Status changes and deletion."""

    def test_status_change(self, staff_client, order_payload):
        """Status moves to a known value."""
        order = _create(staff_client, order_payload)
        response = staff_client.post(f"/api/orders/{order['id']}/status", json={"status": "completed"})
        assert response.get_json()["order"]["status"] == "completed"

    def test_invalid_status(self, staff_client, order_payload):
        """Unknown statuses are refused."""
        order = _create(staff_client, order_payload)
        response = staff_client.post(f"/api/orders/{order['id']}/status", json={"status": "shipped"})
        assert response.status_code == 400

    def test_delete_keeps_log(self, app, admin_client, order_payload):
        """Deleted orders are gone but their log remains."""
        order = _create(admin_client, order_payload)
        response = admin_client.delete(f"/api/orders/{order['id']}")

        assert response.status_code == 200
        assert admin_client.get(f"/api/orders/{order['id']}").status_code == 404
        with app.app_context():
            actions = {log.action for log in OrderLog.query.filter_by(order_id=order["id"])}
        assert actions == {"created", "deleted"}


class TestSearch:
    """GET /api/orders/search"""

    def test_search_by_patient_and_number(self, staff_client, order_payload):
        """Patient name and order number both match."""
        _create(staff_client, order_payload)
        order_payload["patient_name"] = "Bob Stone"
        _create(staff_client, order_payload)

        by_name = staff_client.get("/api/orders/search?q=stone").get_json()["orders"]
        by_number = staff_client.get("/api/orders/search?q=20260314-0001").get_json()["orders"]

        assert [o["patient_name"] for o in by_name] == ["Bob Stone"]
        assert [o["patient_name"] for o in by_number] == ["Jane Doe"]

    def test_search_by_employee_initials(self, app, staff_client, order_payload):
        """Orders can be found by the selling employee."""
        with app.app_context():
            employee = Employee(name="Maria Lopez", initials="ML")
            db.session.add(employee)
            db.session.commit()
            order_payload["employee_id"] = employee.id
        _create(staff_client, order_payload)

        found = staff_client.get("/api/orders/search?q=ML").get_json()["orders"]
        assert found[0]["employee_name"] == "Maria Lopez"

    def test_blank_search(self, staff_client):
        """An empty query returns nothing."""
        assert staff_client.get("/api/orders/search?q=").get_json()["orders"] == []


class TestOrderPdf:
    """GET /api/orders/<id>/pdf"""

    def test_pdf_bytes(self, staff_client, order_payload):
        """The order sheet is served as a PDF."""
        order = _create(staff_client, order_payload)
        response = staff_client.get(f"/api/orders/{order['id']}/pdf")

        assert response.status_code == 200
        assert response.mimetype == "application/pdf"
        assert response.data.startswith(b"%PDF")

    def test_pdf_saved_to_disk(self, app, staff_client, order_payload):
        """save=1 writes a copy to PDF_DIR."""
        order = _create(staff_client, order_payload)
        staff_client.get(f"/api/orders/{order['id']}/pdf?save=1")

        saved = os.listdir(app.config["PDF_DIR"])
        assert saved == ["Order_ORD-20260314-0001_Jane_Doe.pdf"]

    def test_pdf_long_notes_own_frame(self, staff_client, order_payload):
        """Long notes wrap across pages without errors."""
        order_payload["use_own_frame"] = True
        order_payload["special_notes"] = "Check fit at pickup. " * 90
        order_payload["iwellness"] = "yes"
        order_payload["other_percent_adjustment"] = 10
        order = _create(staff_client, order_payload)

        response = staff_client.get(f"/api/orders/{order['id']}/pdf")
        assert response.data.startswith(b"%PDF")

    def test_discount_dollars(self, staff_client, order_payload):
        """The insurance discount line shows what it took off the frame."""
        order = _create(staff_client, order_payload)
        assert str(frame_discount_amount(order)) == "15.00"
        assert order["final_frame_price"] == 200 - 50 - 15

    def test_savings_only_on_insurance_column(self, app, staff_client, order_payload):
        """The regular column pays list price, so it shows no savings."""
        created = _create(staff_client, order_payload)
        with app.app_context():
            order = orders.get_order(created["id"])
            rows = {label: (regular, yours) for label, regular, yours
                    in pricing_rows(orders.order_to_dict(order), orders.recompute_order(order))}

        assert rows["You Saved Today"][0] == 0
        assert float(rows["You Saved Today"][1]) == 65.0

    def test_pdf_missing_order(self, staff_client):
        """Unknown order ids are 404."""
        assert staff_client.get("/api/orders/42/pdf").status_code == 404


@pytest.mark.parametrize("limit", [1, 2])
def test_list_orders_limit(staff_client, order_payload, limit):
    """The list honours the limit argument."""
    for _ in range(3):
        _create(staff_client, order_payload)
    rows = staff_client.get(f"/api/orders?limit={limit}").get_json()["orders"]
    assert len(rows) == limit
