"""
Unit tests for the payment gateway adapter and the Razorpay REST client.
"""

import hashlib
import hmac
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
import requests

from app.core.config import settings
from app.core.errors import GatewayUnavailable, ValidationError
from app.services.payment_gateway import (
    CapturedPayment,
    RazorpayGateway,
    SandboxGateway,
    get_payment_gateway,
    to_minor_units,
    verify_webhook_signature,
)
from app.services.razorpay_client import RazorpayClient, RazorpayConfig, RazorpayError, hmac_sha256_hex, verify_signature

SECRET = "rzp_secret"


def _signed(order_id="order_1", payment_id="pay_1"):
    return hmac_sha256_hex(SECRET, f"{order_id}|{payment_id}")


def _gateway(client=None):
    return RazorpayGateway(client or MagicMock(), SECRET, max_retries=3, backoff_seconds=0)


def _captured(amount=100000, order_id="order_1", status="captured"):
    return {"id": "pay_1", "order_id": order_id, "amount": amount, "status": status}


class TestMinorUnits:
    def test_converts_to_paise(self):
        assert to_minor_units(Decimal("1000")) == 100000
        assert to_minor_units(Decimal("999.99")) == 99999
        assert to_minor_units("0.015") == 2

    def test_negative_rejected(self):
        with pytest.raises(ValidationError):
            to_minor_units(Decimal("-0.01"))


class TestSignatures:
    def test_checkout_signature(self):
        assert verify_signature(SECRET, "order_1", "pay_1", _signed())
        assert not verify_signature(SECRET, "order_1", "pay_2", _signed())
        assert not verify_signature(SECRET, "order_1", "pay_1", "")

    def test_webhook_signature(self):
        body = b'{"event":"payment.captured"}'
        sig = hmac.new(b"whsec", body, hashlib.sha256).hexdigest()
        assert verify_webhook_signature(body, sig, secret="whsec")
        assert not verify_webhook_signature(body + b" ", sig, secret="whsec")
        assert not verify_webhook_signature(body, sig, secret="")


class TestVerifyPayment:
    def test_valid_payment(self):
        client = MagicMock()
        client.fetch_payment.return_value = _captured()
        assert _gateway(client).verify_payment("order_1", "pay_1", _signed(), Decimal("1000"))
        client.fetch_payment.assert_called_once_with("pay_1")

    def test_bad_signature_skips_fetch(self):
        client = MagicMock()
        assert not _gateway(client).verify_payment("order_1", "pay_1", "forged", Decimal("1000"))
        client.fetch_payment.assert_not_called()

    def test_amount_below_expected(self):
        client = MagicMock()
        client.fetch_payment.return_value = _captured(amount=99999)
        assert not _gateway(client).verify_payment("order_1", "pay_1", _signed(), Decimal("1000"))

    def test_payment_for_another_order(self):
        client = MagicMock()
        client.fetch_payment.return_value = _captured(order_id="order_9")
        assert not _gateway(client).verify_payment("order_1", "pay_1", _signed(), Decimal("1000"))

    def test_failed_payment_status(self):
        client = MagicMock()
        client.fetch_payment.return_value = _captured(status="failed")
        assert not _gateway(client).verify_payment("order_1", "pay_1", _signed(), Decimal("1000"))

    def test_unknown_payment_is_a_decline(self):
        client = MagicMock()
        client.fetch_payment.side_effect = RazorpayError("not found", status_code=404)
        assert not _gateway(client).verify_payment("order_1", "pay_1", _signed(), Decimal("1000"))
        assert client.fetch_payment.call_count == 1

    def test_transient_failure_retried(self):
        client = MagicMock()
        client.fetch_payment.side_effect = [requests.ConnectionError("reset"), _captured()]
        assert _gateway(client).verify_payment("order_1", "pay_1", _signed(), Decimal("1000"))
        assert client.fetch_payment.call_count == 2

    def test_persistent_timeouts_raise_unavailable(self):
        client = MagicMock()
        client.fetch_payment.side_effect = requests.Timeout("slow")
        with pytest.raises(GatewayUnavailable) as exc:
            _gateway(client).verify_payment("order_1", "pay_1", _signed(), Decimal("1000"))
        assert client.fetch_payment.call_count == 3
        assert exc.value.status_code == 502
        assert exc.value.details["operation"] == "fetch_payment"


class TestOrdersAndRefunds:
    def test_create_order_sends_minor_units(self):
        client = MagicMock()
        client.create_order.return_value = {"id": "order_abc"}
        assert _gateway(client).create_order(Decimal("1234.50"), "INR", "TRK-ABCDEFGH") == "order_abc"
        client.create_order.assert_called_once_with(amount_minor=123450, currency="INR", receipt="TRK-ABCDEFGH")

    def test_create_order_rejected(self):
        client = MagicMock()
        client.create_order.side_effect = RazorpayError("bad amount", status_code=400)
        with pytest.raises(ValidationError):
            _gateway(client).create_order(Decimal("1"), "INR", "TRK-1")

    def test_refund_success(self):
        client = MagicMock()
        client.refund_payment.return_value = {"id": "rfnd_1"}
        result = _gateway(client).refund("pay_1", Decimal("900"))
        assert result.success
        assert result.refund_ref == "rfnd_1"
        client.refund_payment.assert_called_once_with(payment_id="pay_1", amount_minor=90000)

    def test_refund_declined(self):
        client = MagicMock()
        client.refund_payment.side_effect = RazorpayError("fully refunded", status_code=400)
        result = _gateway(client).refund("pay_1", Decimal("900"))
        assert not result.success
        assert "fully refunded" in result.error
        assert client.refund_payment.call_count == 1

    def test_refund_server_errors_retried_then_unavailable(self):
        client = MagicMock()
        client.refund_payment.side_effect = RazorpayError("bad gateway", status_code=502)
        with pytest.raises(GatewayUnavailable):
            _gateway(client).refund("pay_1", Decimal("900"))
        assert client.refund_payment.call_count == 3


class TestRazorpayClient:
    def _client(self):
        return RazorpayClient(RazorpayConfig(host="api.razorpay.test", key_id="rzp_key", key_secret=SECRET, timeout=5))

    def test_request_uses_basic_auth(self):
        response = MagicMock(status_code=200, text='{"id": "order_1"}')
        response.json.return_value = {"id": "order_1"}
        with patch("app.services.razorpay_client.requests.request", return_value=response) as req:
            data = self._client().create_order(amount_minor=100, currency="INR", receipt="TRK-1")

        assert data == {"id": "order_1"}
        kwargs = req.call_args.kwargs
        assert kwargs["method"] == "POST"
        assert kwargs["url"] == "https://api.razorpay.test/v1/orders"
        assert kwargs["auth"] == ("rzp_key", SECRET)
        assert kwargs["json"]["amount"] == 100

    def test_error_status_raises(self):
        response = MagicMock(status_code=400, text='{"error": {}}')
        response.json.return_value = {"error": {}}
        with patch("app.services.razorpay_client.requests.request", return_value=response):
            with pytest.raises(RazorpayError) as exc:
                self._client().fetch_payment("pay_1")
        assert exc.value.status_code == 400


class TestSandboxAndCaptured:
    def test_sandbox_round_trip(self):
        sandbox = SandboxGateway("local")
        order_id = sandbox.create_order(Decimal("10"), "INR", "TRK-1")
        assert order_id.startswith("order_sbx_")
        assert sandbox.verify_payment(order_id, "pay_x", sandbox.sign(order_id, "pay_x"), Decimal("10"))
        assert not sandbox.verify_payment(order_id, "pay_x", "nope", Decimal("10"))
        assert sandbox.refund("pay_x", Decimal("5")).success

    def test_captured_payment_checks_amount(self):
        captured = CapturedPayment("order_1", 100000)
        assert captured.verify_payment("order_1", "pay_1", "", Decimal("1000"))
        assert not captured.verify_payment("order_1", "pay_1", "", Decimal("1000.01"))
        assert not captured.verify_payment("order_2", "pay_1", "", Decimal("1"))


class TestGatewayFactory:
    def test_sandbox_setting(self, monkeypatch):
        monkeypatch.setattr(settings, "PAYMENT_SANDBOX", True)
        assert isinstance(get_payment_gateway(), SandboxGateway)

    def test_unconfigured_razorpay(self, monkeypatch):
        monkeypatch.setattr(settings, "PAYMENT_SANDBOX", False)
        monkeypatch.setattr(settings, "RAZORPAY_KEY_ID", "")
        with pytest.raises(RuntimeError):
            get_payment_gateway()

    def test_configured_razorpay(self, monkeypatch):
        monkeypatch.setattr(settings, "PAYMENT_SANDBOX", False)
        monkeypatch.setattr(settings, "RAZORPAY_KEY_ID", "rzp_key")
        monkeypatch.setattr(settings, "RAZORPAY_KEY_SECRET", SECRET)
        assert isinstance(get_payment_gateway(), RazorpayGateway)
