"""
HTTP API tests.

Verifies:
- Requests without an actor return 401, wrong role returns 403
- Conflicts return 409 with current_status in the body
- Capacity overruns return 409 with their own code
- Lists use the paged response shape
"""

import pytest


class TestAuthentication:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/orders"),
            ("POST", "/api/orders"),
            ("POST", "/api/orders/1/confirm-payment"),
            ("POST", "/api/orders/1/release"),
            ("POST", "/api/orders/1/confirm-truck-exit"),
            ("POST", "/api/orders/assign-pfi"),
            ("GET", "/api/pfis"),
            ("POST", "/api/pfis"),
            ("GET", "/api/order-audit"),
            ("GET", "/api/bank-accounts"),
            ("GET", "/api/locations"),
        ],
    )
    def test_requires_actor(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_unknown_actor_rejected(self, client, db_session):
        resp = client.get("/api/orders", headers={"X-User-Id": "999"})
        assert resp.status_code == 401

    def test_non_numeric_actor_rejected(self, client, db_session):
        resp = client.get("/api/orders", headers={"X-User-Id": "admin"})
        assert resp.status_code == 401

    def test_health_is_public(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "healthy"


class TestPermissions:

    def test_security_cannot_confirm_payment(self, client, make_order, headers_for):
        order = make_order()
        resp = client.post(f"/api/orders/{order.id}/confirm-payment", json={}, headers=headers_for("security"))
        assert resp.status_code == 403
        assert resp.get_json()["required_permission"] == "CONFIRM_PAYMENT"

    def test_auditor_cannot_create_pfi(self, client, depot, pms, headers_for):
        resp = client.post(
            "/api/pfis",
            json={"pfi_number": "PFI-1", "location": depot.id, "product": pms.id, "starting_qty_litres": 1000},
            headers=headers_for("auditor"),
        )
        assert resp.status_code == 403

    def test_sales_cannot_read_audit_log(self, client, headers_for):
        resp = client.get("/api/order-audit", headers=headers_for("sales"))
        assert resp.status_code == 403


class TestOrderEndpoints:

    def test_create_order(self, client, depot, pms, headers_for):
        resp = client.post(
            "/api/orders",
            json={
                "location": depot.id,
                "products": [{"product_id": pms.id, "quantity": "33,000"}],
                "customer_name": "Dangote Haulage",
            },
            headers=headers_for("sales"),
        )
        assert resp.status_code == 201
        order = resp.get_json()["order"]
        assert order["status"] == "pending"
        assert order["quantity_litres"] == 33000
        assert order["products"][0]["quantity"] == 33000

    def test_create_order_without_lines(self, client, depot, headers_for):
        resp = client.post("/api/orders", json={"location": depot.id, "products": []}, headers=headers_for("sales"))
        assert resp.status_code == 400
        assert "products" in resp.get_json()["fields"]

    def test_double_payment_returns_409_with_current_status(self, client, make_order, headers_for):
        order = make_order()
        first = client.post(f"/api/orders/{order.id}/confirm-payment", json={"narration": "Teller 1"}, headers=headers_for("finance"))
        assert first.status_code == 200
        assert first.get_json()["order"]["status"] == "paid"

        second = client.post(f"/api/orders/{order.id}/confirm-payment", json={}, headers=headers_for("finance"))
        assert second.status_code == 409
        body = second.get_json()
        assert body["current_status"] == "paid"
        assert body["code"] == "invalid_order_status"
        assert body["id"] == order.id

    def test_release_and_exit(self, client, make_paid_order, release_details, headers_for):
        order = make_paid_order()
        resp = client.post(
            f"/api/orders/{order.id}/release",
            json={"release_details": release_details},
            headers=headers_for("release_officer"),
        )
        assert resp.status_code == 200
        assert resp.get_json()["order"]["release_details"]["truck_number"] == "KJA-123XY"

        exit_resp = client.post(f"/api/orders/{order.id}/confirm-truck-exit", headers=headers_for("security"))
        assert exit_resp.status_code == 200
        assert exit_resp.get_json()["order"]["truck_exited"] is True

        again = client.post(f"/api/orders/{order.id}/confirm-truck-exit", headers=headers_for("security"))
        assert again.status_code == 409
        assert again.get_json()["code"] == "order_already_exited"

    def test_release_missing_details_is_400(self, client, make_paid_order, headers_for):
        order = make_paid_order()
        resp = client.post(
            f"/api/orders/{order.id}/release",
            json={"release_details": {"truck_number": "KJA-1"}},
            headers=headers_for("release_officer"),
        )
        assert resp.status_code == 400
        assert set(resp.get_json()["fields"]) == {"driver_name", "driver_phone"}

    def test_release_over_capacity_is_409(self, client, make_paid_order, depot, pms, release_details, headers_for):
        created = client.post(
            "/api/pfis",
            json={"pfi_number": "PFI-1", "location": depot.id, "product": pms.id, "starting_qty_litres": "1,000"},
            headers=headers_for("release_officer"),
        )
        assert created.status_code == 201
        pfi_id = created.get_json()["pfi"]["id"]

        order = make_paid_order(1500)
        resp = client.post(
            f"/api/orders/{order.id}/release",
            json={"release_details": release_details, "pfi_id": pfi_id},
            headers=headers_for("release_officer"),
        )
        assert resp.status_code == 409
        body = resp.get_json()
        assert body["code"] == "pfi_capacity_exceeded"
        assert body["remaining_litres"] == 1000

        status = client.get(f"/api/orders/{order.id}", headers=headers_for("auditor"))
        assert status.get_json()["order"]["status"] == "paid"

    def test_unknown_order_is_404(self, client, headers_for):
        resp = client.post("/api/orders/999/cancel", json={}, headers=headers_for("sales"))
        assert resp.status_code == 404

    def test_order_history(self, client, make_released_order, headers_for):
        order = make_released_order()
        resp = client.get(f"/api/orders/{order.id}/audit", headers=headers_for("auditor"))
        assert resp.status_code == 200
        body = resp.get_json()
        assert [ev["action"] for ev in body["events"]] == ["payment_confirmation", "release"]

    def test_list_orders_is_paged(self, client, make_order, headers_for):
        make_order()
        make_order()
        resp = client.get("/api/orders?page_size=1", headers=headers_for("auditor"))
        assert resp.status_code == 200
        body = resp.get_json()
        assert set(body) == {"count", "page", "page_size", "next", "previous", "results"}
        assert body["count"] == 2
        assert body["next"] == 2

    def test_list_orders_bad_status_is_400(self, client, headers_for):
        resp = client.get("/api/orders?status=shipped", headers=headers_for("auditor"))
        assert resp.status_code == 400


class TestPfiEndpoints:

    def test_duplicate_active_pfi_is_409(self, client, depot, pms, headers_for):
        payload = {"pfi_number": "PFI-1", "location": depot.id, "product": pms.id, "starting_qty_litres": 5000}
        assert client.post("/api/pfis", json=payload, headers=headers_for("release_officer")).status_code == 201

        resp = client.post("/api/pfis", json=dict(payload, pfi_number="PFI-2"), headers=headers_for("release_officer"))
        assert resp.status_code == 409
        assert resp.get_json()["code"] == "active_pfi_exists"

    def test_null_location_id_falls_back_to_location(self, client, depot, pms, headers_for):
        resp = client.post(
            "/api/pfis",
            json={
                "pfi_number": "PFI-1",
                "location_id": None,
                "location": depot.id,
                "product_id": "",
                "product": pms.id,
                "starting_qty_litres": 5000,
            },
            headers=headers_for("release_officer"),
        )
        assert resp.status_code == 201
        pfi = resp.get_json()["pfi"]
        assert (pfi["location"], pfi["product"]) == (depot.id, pms.id)

    def test_finish_and_list(self, client, depot, pms, headers_for):
        created = client.post(
            "/api/pfis",
            json={"pfi_number": "PFI-1", "location": depot.id, "product": pms.id, "starting_qty_litres": 5000},
            headers=headers_for("release_officer"),
        ).get_json()["pfi"]

        resp = client.post(f"/api/pfis/{created['id']}/finish", headers=headers_for("release_officer"))
        assert resp.status_code == 200
        assert resp.get_json()["pfi"]["status"] == "finished"

        listing = client.get("/api/pfis?status=finished", headers=headers_for("auditor")).get_json()
        assert listing["count"] == 1
        assert listing["results"][0]["remaining_qty_litres"] == 5000

    def test_assign_pfi(self, client, depot, pms, make_released_order, headers_for):
        pfi = client.post(
            "/api/pfis",
            json={"pfi_number": "PFI-1", "location": depot.id, "product": pms.id, "starting_qty_litres": 5000},
            headers=headers_for("release_officer"),
        ).get_json()["pfi"]
        order = make_released_order(2000)

        resp = client.post(
            "/api/orders/assign-pfi",
            json={"order_ids": [order.id], "pfi_id": pfi["id"]},
            headers=headers_for("release_officer"),
        )
        assert resp.status_code == 200
        assert resp.get_json()["assigned"] == [order.id]

        detail = client.get(f"/api/pfis/{pfi['id']}", headers=headers_for("auditor")).get_json()["pfi"]
        assert detail["sold_qty_litres"] == 2000

    def test_assign_requires_order_ids(self, client, headers_for):
        resp = client.post("/api/orders/assign-pfi", json={"pfi_id": 1}, headers=headers_for("release_officer"))
        assert resp.status_code == 400


class TestAuditAndBankEndpoints:

    def test_audit_filters(self, client, make_paid_order, headers_for):
        make_paid_order()
        resp = client.get("/api/order-audit?action=payment_confirmation&user_email=ADMIN@depot.example", headers=headers_for("auditor"))
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["count"] == 1
        assert body["results"][0]["order"]["reference"] == "ORD-000001"

    def test_audit_bad_date_is_400(self, client, headers_for):
        resp = client.get("/api/order-audit?start=yesterday", headers=headers_for("auditor"))
        assert resp.status_code == 400

    def test_bank_account_crud(self, client, depot, headers_for):
        created = client.post(
            "/api/bank-accounts",
            json={"acct_no": "0123456789", "bank_name": "First Bank", "account_name": "Apapa", "location_id": depot.id},
            headers=headers_for("finance"),
        )
        assert created.status_code == 201
        account_id = created.get_json()["bank_account"]["id"]

        patched = client.patch(f"/api/bank-accounts/{account_id}", json={"account_name": "Apapa Main"}, headers=headers_for("finance"))
        assert patched.get_json()["bank_account"]["account_name"] == "Apapa Main"

        listing = client.get(f"/api/bank-accounts?location_id={depot.id}", headers=headers_for("sales")).get_json()
        assert listing["count"] == 1

        deactivated = client.post(f"/api/bank-accounts/{account_id}/deactivate", headers=headers_for("finance"))
        assert deactivated.get_json()["bank_account"]["is_active"] is False

    def test_reference_data(self, client, depot, pms, headers_for):
        locations = client.get("/api/locations", headers=headers_for("sales")).get_json()["locations"]
        products = client.get("/api/products", headers=headers_for("sales")).get_json()["products"]
        assert [loc["code"] for loc in locations] == ["APP"]
        assert [p["abbreviation"] for p in products] == ["PMS"]
