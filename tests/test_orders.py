"""
API tests for checkout, order reads and the fulfillment workflow
"""

from datetime import datetime, timedelta

import pytest

from conftest import auth_headers, checkout_payload
from app.auth.auth_handler import Identity, CUSTOMER
from app.models.order import Order
from app.services.order_service import OrderService

PDF_BYTES = b"%PDF-1.4\n1 0 obj<<>>endobj\ntrailer<<>>\n%%EOF"


def place_order(client, identity, test_id, **kwargs):
    response = client.post("/api/v1/cart/items", json={"test_id": test_id}, headers=auth_headers(identity))
    assert response.status_code == 200
    return client.post("/api/v1/orders/checkout", json=checkout_payload(**kwargs), headers=auth_headers(identity))


def set_status(client, staff, order_id, status, notes=None):
    body = {"status": status}
    if notes:
        body["notes"] = notes
    return client.put(f"/api/v1/orders/{order_id}/status", json=body, headers=auth_headers(staff))


def upload(client, staff, order_id, filename="report.pdf", content=PDF_BYTES, content_type="application/pdf"):
    return client.post(
        f"/api/v1/orders/{order_id}/report",
        files={"report": (filename, content, content_type)},
        headers=auth_headers(staff),
    )


class TestCheckout:
    """Test cases for turning a cart into an order"""

    def test_checkout_creates_pending_order(self, client, catalog, customer, notifier):
        response = place_order(client, customer, catalog[1].id, date="2025-01-10")
        assert response.status_code == 201

        data = response.json()
        assert data["status"] == "pending"
        assert data["total_price"] == 500
        assert data["pricing"]["home_collection_charge"] == 0
        assert data["appointment"] == {"date": "2025-01-10", "time_window": "08:00-09:00", "service_area": "560001"}
        assert data["items"] == [
            {"test_id": catalog[1].id, "test_name": "Lipid Profile", "lab": "Metro Labs", "price": 500, "quantity": 1}
        ]
        assert data["patient_info"]["user_id"] == customer.id
        assert data["order_number"].startswith("LAB-")
        assert notifier.kinds() == ["order_placed"]

        cart = client.get("/api/v1/cart", headers=auth_headers(customer)).json()
        assert cart["items"] == []
        assert cart["total"] == 0

    def test_home_collection_adds_surcharge(self, client, catalog, customer):
        response = place_order(client, customer, catalog[1].id, address="12 Lake Road", city="Bengaluru")
        assert response.status_code == 201
        assert response.json()["pricing"] == {"subtotal": 500, "home_collection_charge": 100, "total_price": 600}

    def test_quantity_multiplies_price(self, client, catalog, customer):
        client.post("/api/v1/cart/items", json={"test_id": catalog[0].id}, headers=auth_headers(customer))
        response = place_order(client, customer, catalog[0].id)
        assert response.status_code == 201
        assert response.json()["items"][0]["quantity"] == 2
        assert response.json()["total_price"] == 600

    def test_second_checkout_for_same_slot_conflicts(self, client, catalog, customer, other_customer):
        first = place_order(client, customer, catalog[1].id)
        assert first.status_code == 201

        second = place_order(client, other_customer, catalog[0].id)
        assert second.status_code == 409
        assert second.json()["error"]["code"] == "SLOT_CONFLICT"

        # the losing cart is left for a retry with another slot
        cart = client.get("/api/v1/cart", headers=auth_headers(other_customer)).json()
        assert len(cart["items"]) == 1

        retry = client.post(
            "/api/v1/orders/checkout",
            json=checkout_payload(window="09:00-10:00"),
            headers=auth_headers(other_customer),
        )
        assert retry.status_code == 201

    def test_same_window_in_other_area_is_free(self, client, catalog, customer, other_customer):
        assert place_order(client, customer, catalog[1].id, area="560001").status_code == 201
        assert place_order(client, other_customer, catalog[1].id, area="560002").status_code == 201

    def test_empty_cart_is_rejected(self, client, catalog, customer):
        response = client.post("/api/v1/orders/checkout", json=checkout_payload(), headers=auth_headers(customer))
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_STATE"

    def test_invalid_slot_is_rejected(self, client, catalog, customer):
        client.post("/api/v1/cart/items", json={"test_id": catalog[0].id}, headers=auth_headers(customer))
        for payload in [
            checkout_payload(date="10/01/2030"),
            checkout_payload(window="9-10"),
            checkout_payload(window="10:00-09:00"),
            checkout_payload(payment_method="Cheque"),
        ]:
            response = client.post("/api/v1/orders/checkout", json=payload, headers=auth_headers(customer))
            assert response.status_code == 422

    def test_staff_cannot_checkout(self, client, catalog, labtech):
        response = client.post("/api/v1/orders/checkout", json=checkout_payload(), headers=auth_headers(labtech))
        assert response.status_code == 403

    def test_line_items_survive_catalog_edits(self, client, catalog, customer, admin):
        order_id = place_order(client, customer, catalog[1].id).json()["id"]

        edit = client.put(
            f"/api/v1/catalog/tests/{catalog[1].id}",
            json={"name": "Lipid Profile Plus", "price": 999},
            headers=auth_headers(admin),
        )
        assert edit.status_code == 200
        assert edit.json()["price"] == 999

        order = client.get(f"/api/v1/orders/{order_id}", headers=auth_headers(customer)).json()
        assert order["items"][0]["test_name"] == "Lipid Profile"
        assert order["items"][0]["price"] == 500
        assert order["total_price"] == 500


class TestSlots:

    def test_taken_window_is_flagged(self, client, catalog, customer):
        place_order(client, customer, catalog[0].id)

        response = client.get(
            "/api/v1/orders/slots?date=2030-01-10&area=560001", headers=auth_headers(customer)
        )
        assert response.status_code == 200
        slots = {s["time_window"]: s["available"] for s in response.json()["slots"]}
        assert slots["08:00-09:00"] is False
        assert all(available for window, available in slots.items() if window != "08:00-09:00")

    def test_bad_date_is_rejected(self, client, customer):
        response = client.get("/api/v1/orders/slots?date=tomorrow&area=560001", headers=auth_headers(customer))
        assert response.status_code == 422


class TestOrderAccess:
    """Who may read which order"""

    def test_owner_reads_order(self, client, catalog, customer):
        order_id = place_order(client, customer, catalog[0].id).json()["id"]
        response = client.get(f"/api/v1/orders/{order_id}", headers=auth_headers(customer))
        assert response.status_code == 200
        assert response.json()["id"] == order_id

    def test_other_customer_is_forbidden(self, client, catalog, customer, other_customer):
        order_id = place_order(client, customer, catalog[0].id).json()["id"]
        response = client.get(f"/api/v1/orders/{order_id}", headers=auth_headers(other_customer))
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    def test_backup_email_grants_access(self, client, catalog, customer):
        order_id = place_order(
            client, customer, catalog[0].id, email="alice.backup@example.com"
        ).json()["id"]

        # a second account whose email is the patient email on the order
        backup = Identity(id="303", email="Alice.Backup@example.com", role=CUSTOMER)
        response = client.get(f"/api/v1/orders/{order_id}", headers=auth_headers(backup))
        assert response.status_code == 200

        mine = client.get("/api/v1/orders/mine", headers=auth_headers(backup)).json()
        assert [o["id"] for o in mine["orders"]] == [order_id]

    def test_staff_reads_any_order(self, client, catalog, customer, labtech):
        order_id = place_order(client, customer, catalog[0].id).json()["id"]
        assert client.get(f"/api/v1/orders/{order_id}", headers=auth_headers(labtech)).status_code == 200

    def test_missing_order(self, client, customer):
        response = client.get("/api/v1/orders/99999", headers=auth_headers(customer))
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"

    def test_requires_token(self, client):
        response = client.get("/api/v1/orders/1")
        assert response.status_code in (401, 403)

    def test_mine_lists_only_own_orders(self, client, catalog, customer, other_customer):
        own = place_order(client, customer, catalog[0].id).json()["id"]
        place_order(client, other_customer, catalog[0].id, window="09:00-10:00")

        data = client.get("/api/v1/orders/mine", headers=auth_headers(customer)).json()
        assert data["count"] == 1
        assert data["orders"][0]["id"] == own


class TestFulfillmentWorkflow:
    """Order lifecycle driven through the API"""

    def test_full_lifecycle(self, client, catalog, customer, labtech, blob_store, notifier):
        order_id = place_order(client, customer, catalog[1].id).json()["id"]

        approved = client.put(
            f"/api/v1/orders/{order_id}/approve", json={"notes": "ok"}, headers=auth_headers(labtech)
        )
        assert approved.status_code == 200
        assert approved.json()["status"] == "approved"
        assert approved.json()["technician_notes"] == "ok"
        assert approved.json()["approved_by"] == labtech.id

        denied = client.put(f"/api/v1/orders/{order_id}/deny", headers=auth_headers(labtech))
        assert denied.status_code == 409
        assert denied.json()["error"]["code"] == "INVALID_TRANSITION"

        assert set_status(client, labtech, order_id, "Sample Collected").json()["status"] == "sample_collected"
        assert set_status(client, labtech, order_id, "processing").json()["status"] == "processing"

        response = upload(client, labtech, order_id)
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["order"]["status"] == "report_submitted"
        assert data["report"]["url"].startswith("http://testserver/uploads/reports/")
        assert data["report"]["url"].endswith(".pdf")
        assert data["order"]["report"] == data["report"]
        assert blob_store.list() == [data["report"]["filename"]]

        completed = set_status(client, labtech, order_id, "completed")
        assert completed.json()["status"] == "completed"

        order = client.get(f"/api/v1/orders/{order_id}", headers=auth_headers(customer)).json()
        assert order["status"] == "completed"
        assert order["report"]["url"] == data["report"]["url"]
        assert notifier.kinds() == ["order_placed", "order_approved", "report_submitted"]

    def test_report_for_missing_order_leaves_no_blob(self, client, labtech, blob_store):
        response = upload(client, labtech, 99999)
        assert response.status_code == 404
        assert blob_store.list() == []

    def test_report_before_processing_leaves_no_blob(self, client, catalog, customer, labtech, blob_store):
        order_id = place_order(client, customer, catalog[0].id).json()["id"]
        response = upload(client, labtech, order_id)
        assert response.status_code == 409
        assert blob_store.list() == []

    @pytest.mark.parametrize("filename,content,content_type", [
        ("notes.txt", b"plain text", "text/plain"),
        ("report.exe", PDF_BYTES, "application/pdf"),
        ("report.pdf", b"", "application/pdf"),
    ])
    def test_report_upload_filter(self, client, labtech, blob_store, filename, content, content_type):
        response = upload(client, labtech, 1, filename, content, content_type)
        assert response.status_code == 400
        assert blob_store.list() == []

    def test_png_report_accepted(self, client, catalog, customer, labtech):
        order_id = place_order(client, customer, catalog[0].id).json()["id"]
        client.put(f"/api/v1/orders/{order_id}/approve", headers=auth_headers(labtech))
        set_status(client, labtech, order_id, "sample_collected")
        set_status(client, labtech, order_id, "processing")

        response = upload(client, labtech, order_id, "scan.png", b"\x89PNG\r\n\x1a\nfake", "image/png")
        assert response.status_code == 200
        assert response.json()["report"]["url"].endswith(".png")

    def test_customer_cannot_upload(self, client, customer):
        assert upload(client, customer, 1).status_code == 403

    def test_report_submitted_only_via_upload(self, client, catalog, customer, labtech):
        order_id = place_order(client, customer, catalog[0].id).json()["id"]
        client.put(f"/api/v1/orders/{order_id}/approve", headers=auth_headers(labtech))
        set_status(client, labtech, order_id, "sample_collected")
        set_status(client, labtech, order_id, "processing")

        response = set_status(client, labtech, order_id, "report_submitted")
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_STATE"

    def test_unknown_status_is_rejected(self, client, catalog, customer, labtech):
        order_id = place_order(client, customer, catalog[0].id).json()["id"]
        assert set_status(client, labtech, order_id, "shipped").status_code == 422

    def test_owner_cancels_and_frees_slot(self, client, catalog, customer, other_customer):
        order_id = place_order(client, customer, catalog[0].id).json()["id"]

        response = client.put(f"/api/v1/orders/{order_id}/cancel", headers=auth_headers(customer))
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["technician_notes"] == "Cancelled by user"

        assert place_order(client, other_customer, catalog[0].id).status_code == 201

    def test_cancel_after_approval_is_rejected(self, client, catalog, customer, labtech):
        order_id = place_order(client, customer, catalog[0].id).json()["id"]
        client.put(f"/api/v1/orders/{order_id}/approve", headers=auth_headers(labtech))

        response = client.put(f"/api/v1/orders/{order_id}/cancel", headers=auth_headers(customer))
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_STATE"

    def test_staff_cannot_cancel(self, client, catalog, customer, labtech):
        order_id = place_order(client, customer, catalog[0].id).json()["id"]
        response = client.put(f"/api/v1/orders/{order_id}/cancel", headers=auth_headers(labtech))
        assert response.status_code == 403

    def test_customer_cannot_approve(self, client, catalog, customer):
        order_id = place_order(client, customer, catalog[0].id).json()["id"]
        response = client.put(f"/api/v1/orders/{order_id}/approve", headers=auth_headers(customer))
        assert response.status_code == 403

    def test_customer_cannot_advance_via_status(self, client, catalog, customer):
        order_id = place_order(client, customer, catalog[0].id).json()["id"]
        response = set_status(client, customer, order_id, "approved")
        assert response.status_code == 403


class TestStaffListings:

    def _place_three(self, client, catalog, customer):
        return [
            place_order(client, customer, catalog[0].id, window=window).json()["id"]
            for window in ("07:00-08:00", "08:00-09:00", "09:00-10:00")
        ]

    def test_paginated_listing(self, client, catalog, customer, labtech):
        self._place_three(client, catalog, customer)

        response = client.get("/api/v1/orders/?page=1&page_size=2", headers=auth_headers(labtech))
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 3
        assert len(data["orders"]) == 2
        assert data["total_pages"] == 2

        second_page = client.get("/api/v1/orders/?page=2&page_size=2", headers=auth_headers(labtech)).json()
        assert len(second_page["orders"]) == 1

    def test_listing_requires_staff(self, client, customer):
        assert client.get("/api/v1/orders/", headers=auth_headers(customer)).status_code == 403

    def test_pending_and_working(self, client, catalog, customer, labtech):
        ids = self._place_three(client, catalog, customer)
        client.put(f"/api/v1/orders/{ids[0]}/approve", headers=auth_headers(labtech))

        pending = client.get("/api/v1/orders/pending", headers=auth_headers(labtech)).json()
        working = client.get("/api/v1/orders/working", headers=auth_headers(labtech)).json()
        assert pending["count"] == 2
        assert [o["id"] for o in working["orders"]] == [ids[0]]

        approved = client.get("/api/v1/orders/?status=Approved", headers=auth_headers(labtech)).json()
        assert approved["total"] == 1

    def test_invalid_status_filter(self, client, labtech):
        response = client.get("/api/v1/orders/?status=shipped", headers=auth_headers(labtech))
        assert response.status_code == 400


class TestOrderStats:
    """Staff dashboard counts and revenue"""

    def _place_three(self, client, catalog, customer, labtech):
        pending = place_order(client, customer, catalog[0].id, window="07:00-08:00").json()
        approved = place_order(client, customer, catalog[1].id, window="08:00-09:00").json()
        denied = place_order(client, customer, catalog[0].id, window="09:00-10:00").json()
        client.put(f"/api/v1/orders/{approved['id']}/approve", headers=auth_headers(labtech))
        client.put(f"/api/v1/orders/{denied['id']}/deny", headers=auth_headers(labtech))
        return pending, approved, denied

    def test_counts_and_revenue_by_status(self, client, catalog, customer, labtech):
        self._place_three(client, catalog, customer, labtech)

        response = client.get("/api/v1/orders/stats", headers=auth_headers(labtech))
        assert response.status_code == 200
        data = response.json()

        by_status = {entry["status"]: entry for entry in data["by_status"]}
        assert len(by_status) == 8
        assert (by_status["pending"]["count"], by_status["pending"]["revenue"]) == (1, 300)
        assert (by_status["approved"]["count"], by_status["approved"]["revenue"]) == (1, 500)
        assert (by_status["denied"]["count"], by_status["denied"]["revenue"]) == (1, 300)
        assert by_status["completed"]["count"] == 0
        assert data["total_orders"] == 3
        assert data["total_revenue"] == 800

        [today] = data["daily_trends"]
        assert (today["orders"], today["revenue"]) == (3, 1100)

    def test_created_range_filters_counts_not_trends(self, client, catalog, customer, labtech):
        self._place_three(client, catalog, customer, labtech)

        data = client.get(
            "/api/v1/orders/stats?start_date=2999-01-01T00:00:00", headers=auth_headers(labtech)
        ).json()
        assert data["total_orders"] == 0
        assert data["total_revenue"] == 0
        assert data["daily_trends"][0]["orders"] == 3

    def test_reversed_range_is_rejected(self, client, labtech):
        response = client.get(
            "/api/v1/orders/stats?start_date=2030-02-01T00:00:00&end_date=2030-01-01T00:00:00",
            headers=auth_headers(labtech),
        )
        assert response.status_code == 400

    def test_requires_staff(self, client, customer):
        assert client.get("/api/v1/orders/stats", headers=auth_headers(customer)).status_code == 403

    def test_trends_cover_the_last_30_days(self, db_session, make_order, customer):
        old = make_order(customer, window="07:00-08:00")
        make_order(customer, window="09:00-10:00")
        db_session.query(Order).filter(Order.id == old.id).update(
            {Order.created_at: datetime.utcnow() - timedelta(days=45)}
        )
        db_session.commit()

        stats = OrderService(db_session).stats()
        assert stats["total_orders"] == 2
        assert sum(day["orders"] for day in stats["daily_trends"]) == 1
