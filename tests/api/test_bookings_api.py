"""
HTTP tests for the customer booking endpoints and the payment webhook.
"""

import hashlib
import hmac
import json
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from app.api.deps import get_gateway
from app.core.config import settings
from app.core.errors import GatewayUnavailable
from app.main import app

from conftest import auth_headers, batch_count, make_batch, make_trek, make_user


@pytest.fixture
def client(gateway):
    app.dependency_overrides[get_gateway] = lambda: gateway
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def customer(db):
    return make_user(db, email="asha@treks.local")


@pytest.fixture
def batch(db):
    return make_batch(db, make_trek(db), max_participants=5, price="1000")


def _payload(batch, participants=2):
    return {
        "trekId": batch.trek_id,
        "batchId": batch.id,
        "participants": participants,
        "contactInfo": {"name": "Asha Rao", "email": "asha@treks.local", "phone": "9999999999"},
        "participantDetails": [{"name": f"Trekker {i + 1}", "age": 28} for i in range(participants)],
    }


def _create(client, customer, batch, participants=2):
    r = client.post("/api/v1/bookings", json=_payload(batch, participants), headers=auth_headers(customer))
    assert r.status_code == 201, r.text
    return r.json()


def _confirm(client, customer, booking, payment_id="pay_1"):
    body = {"orderId": "order_1", "paymentId": payment_id, "signature": "sig"}
    return client.post(f"/api/v1/bookings/{booking['id']}/confirm-payment", json=body, headers=auth_headers(customer))


class TestAuth:
    def test_login_and_me(self, client, customer):
        r = client.post("/api/v1/auth/login", json={"email": "asha@treks.local", "password": "password123"})
        assert r.status_code == 200
        token = r.json()["access_token"]

        me = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json()["email"] == "asha@treks.local"

    def test_wrong_password(self, client, customer):
        r = client.post("/api/v1/auth/login", json={"email": "asha@treks.local", "password": "nope"})
        assert r.status_code == 401

    def test_bookings_need_a_token(self, client, batch):
        assert client.post("/api/v1/bookings", json=_payload(batch)).status_code == 401


class TestCreateAndRead:
    def test_create_booking(self, client, db, customer, batch):
        data = _create(client, customer, batch, 2)
        assert data["status"] == "pending_payment"
        assert Decimal(data["totalPrice"]) == Decimal("2000")
        assert [p["name"] for p in data["participants"]] == ["Trekker 1", "Trekker 2"]
        assert batch_count(db, batch.id) == 2

    def test_capacity_error_body(self, client, customer, batch):
        _create(client, customer, batch, 4)
        r = client.post("/api/v1/bookings", json=_payload(batch, 2), headers=auth_headers(customer))
        assert r.status_code == 400
        detail = r.json()["detail"]
        assert detail["code"] == "capacity_exceeded"
        assert detail["remaining"] == 1

    def test_invalid_participant_details(self, client, customer, batch):
        payload = _payload(batch, 2)
        payload["participantDetails"] = payload["participantDetails"][:1]
        r = client.post("/api/v1/bookings", json=payload, headers=auth_headers(customer))
        assert r.status_code == 400
        assert r.json()["detail"]["code"] == "invalid_participant_count"

    def test_read_own_booking(self, client, customer, batch):
        data = _create(client, customer, batch, 1)
        r = client.get(f"/api/v1/bookings/{data['id']}", headers=auth_headers(customer))
        assert r.status_code == 200
        assert r.json()["bookingRef"] == data["bookingRef"]

        listing = client.get("/api/v1/bookings", headers=auth_headers(customer)).json()
        assert listing["total"] == 1

    def test_other_customer_gets_403(self, client, db, customer, batch):
        data = _create(client, customer, batch, 1)
        r = client.get(f"/api/v1/bookings/{data['id']}", headers=auth_headers(make_user(db)))
        assert r.status_code == 403

    def test_unknown_booking_404(self, client, customer):
        r = client.get("/api/v1/bookings/missing", headers=auth_headers(customer))
        assert r.status_code == 404
        assert r.json()["detail"]["code"] == "not_found"


class TestPayment:
    def test_order_then_confirm(self, client, customer, batch, gateway):
        data = _create(client, customer, batch, 1)
        order = client.post(f"/api/v1/bookings/{data['id']}/payment-order", headers=auth_headers(customer))
        assert order.status_code == 200
        assert order.json()["orderId"] == "order_1"
        assert order.json()["amountMinor"] == 100000

        r = _confirm(client, customer, data)
        assert r.status_code == 200
        assert r.json()["status"] == "confirmed"
        assert Decimal(r.json()["amountPaid"]) == Decimal("1000")

    def test_declined_payment_400(self, client, customer, batch, gateway):
        data = _create(client, customer, batch, 1)
        gateway.verify_result = False
        r = _confirm(client, customer, data)
        assert r.status_code == 400
        assert r.json()["detail"]["code"] == "payment_verification_failed"

    def test_gateway_outage_502(self, client, customer, batch, gateway):
        data = _create(client, customer, batch, 1)
        gateway.verify_error = GatewayUnavailable("down", operation="fetch_payment")
        r = _confirm(client, customer, data)
        assert r.status_code == 502
        assert r.json()["detail"]["code"] == "gateway_unavailable"


class TestCustomerCancel:
    def test_cancel_whole_booking(self, client, db, customer, batch, gateway):
        data = _create(client, customer, batch, 2)
        _confirm(client, customer, data)

        r = client.post(f"/api/v1/bookings/{data['id']}/cancel", json={"reason": "injury"}, headers=auth_headers(customer))
        assert r.status_code == 200
        body = r.json()
        assert body["booking"]["status"] == "cancelled"
        assert Decimal(body["refundAmount"]) == Decimal("1800")
        assert body["refundStatus"] == "success"
        assert batch_count(db, batch.id) == 0

        again = client.post(f"/api/v1/bookings/{data['id']}/cancel", headers=auth_headers(customer))
        assert again.status_code == 400
        assert again.json()["detail"]["code"] == "conflicting_state"

    def test_cancel_one_participant(self, client, db, customer, batch, gateway):
        data = _create(client, customer, batch, 2)
        _confirm(client, customer, data)
        pid = data["participants"][0]["id"]

        r = client.post(f"/api/v1/bookings/{data['id']}/participants/{pid}/cancel", headers=auth_headers(customer))
        assert r.status_code == 200
        body = r.json()
        assert body["booking"]["status"] == "confirmed"
        assert Decimal(body["refundAmount"]) == Decimal("900")
        assert body["booking"]["participants"][0]["isCancelled"] is True
        assert batch_count(db, batch.id) == 1

    def test_abandon_unpaid_booking(self, client, db, customer, batch):
        data = _create(client, customer, batch, 2)
        r = client.post(f"/api/v1/bookings/{data['id']}/abandon", headers=auth_headers(customer))
        assert r.status_code == 200
        assert r.json()["failureReason"] == "user_cancelled"
        assert batch_count(db, batch.id) == 0


class TestPaymentWebhook:
    def _post(self, client, payload, secret=None):
        body = json.dumps(payload).encode("utf-8")
        sig = hmac.new((secret or settings.RAZORPAY_WEBHOOK_SECRET).encode("utf-8"), body, hashlib.sha256).hexdigest()
        return client.post(
            "/api/v1/webhooks/payments",
            content=body,
            headers={"Content-Type": "application/json", "X-Razorpay-Signature": sig},
        )

    def _captured(self, order_id, amount):
        return {
            "event": "payment.captured",
            "payload": {"payment": {"entity": {"id": "pay_hook", "order_id": order_id, "amount": amount}}},
        }

    def test_captured_event_confirms_booking(self, client, customer, batch):
        data = _create(client, customer, batch, 1)
        order = client.post(f"/api/v1/bookings/{data['id']}/payment-order", headers=auth_headers(customer)).json()

        r = self._post(client, self._captured(order["orderId"], 100000))
        assert r.status_code == 200
        assert r.json()["applied"] is True

        booking = client.get(f"/api/v1/bookings/{data['id']}", headers=auth_headers(customer)).json()
        assert booking["status"] == "confirmed"
        assert booking["paymentId"] == "pay_hook"

        replay = self._post(client, self._captured(order["orderId"], 100000))
        assert replay.json()["applied"] is True

    def test_short_payment_not_applied(self, client, customer, batch):
        data = _create(client, customer, batch, 1)
        order = client.post(f"/api/v1/bookings/{data['id']}/payment-order", headers=auth_headers(customer)).json()

        r = self._post(client, self._captured(order["orderId"], 500))
        assert r.status_code == 200
        assert r.json()["applied"] is False
        assert r.json()["reason"] == "payment_verification_failed"

    def test_bad_signature_rejected(self, client):
        r = self._post(client, self._captured("order_1", 100), secret="someone-else")
        assert r.status_code == 401

    @pytest.mark.parametrize("body", [b"{not json", b"[1, 2]"])
    def test_malformed_body_400(self, client, body):
        sig = hmac.new(settings.RAZORPAY_WEBHOOK_SECRET.encode("utf-8"), body, hashlib.sha256).hexdigest()
        r = client.post(
            "/api/v1/webhooks/payments",
            content=body,
            headers={"Content-Type": "application/json", "X-Razorpay-Signature": sig},
        )
        assert r.status_code == 400

    def test_unknown_order_ignored(self, client):
        r = self._post(client, self._captured("order_unknown", 100))
        assert r.status_code == 200
        assert r.json()["ignored"] is True
