"""Payment gateway adapter.

The booking engine talks to the gateway only through ``PaymentGateway``.
Amounts cross this boundary as Decimals in major units and are converted to
minor units (paise) here, in exactly one place.
"""
import hashlib
import hmac
import logging
import time
import uuid
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Protocol

import requests

from app.core.config import settings
from app.core.errors import GatewayUnavailable, ValidationError
from app.services.razorpay_client import RazorpayClient, RazorpayConfig, RazorpayError, hmac_sha256_hex, verify_signature

logger = logging.getLogger(__name__)

MINOR_UNITS = Decimal("100")
CAPTURED_STATES = ("authorized", "captured")


@dataclass
class RefundResult:
    success: bool
    refund_ref: str | None = None
    error: str | None = None


class PaymentGateway(Protocol):
    def create_order(self, amount: Decimal, currency: str, receipt: str) -> str: ...

    def verify_payment(self, order_ref: str, payment_ref: str, signature: str, expected_amount: Decimal) -> bool: ...

    def refund(self, payment_ref: str, amount: Decimal) -> RefundResult: ...


def to_minor_units(amount) -> int:
    amount = Decimal(amount)
    if amount < 0:
        raise ValidationError("amount cannot be negative")
    return int((amount * MINOR_UNITS).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _is_transient(exc: Exception) -> bool:
    if isinstance(exc, (requests.Timeout, requests.ConnectionError)):
        return True
    if isinstance(exc, RazorpayError):
        return exc.status_code is None or exc.status_code >= 500
    return False


class RazorpayGateway:
    def __init__(self, client: RazorpayClient, key_secret: str, max_retries: int | None = None, backoff_seconds: float | None = None):
        self.client = client
        self.key_secret = key_secret
        self.max_retries = max_retries if max_retries is not None else settings.GATEWAY_MAX_RETRIES
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.GATEWAY_BACKOFF_SECONDS

    def _call(self, op: str, fn, *args, **kwargs):
        """Run a gateway call, retrying transient failures with exponential backoff."""
        last_error = None
        for attempt in range(self.max_retries):
            try:
                return fn(*args, **kwargs)
            except (requests.RequestException, RazorpayError) as e:
                if not _is_transient(e):
                    raise
                last_error = e
                if attempt < self.max_retries - 1:
                    wait = self.backoff_seconds * (2 ** attempt)
                    logger.warning("Gateway %s failed (attempt %s/%s), retrying in %.2fs: %s", op, attempt + 1, self.max_retries, wait, e)
                    time.sleep(wait)
        logger.error("Gateway %s unavailable after %s attempts: %s", op, self.max_retries, last_error)
        raise GatewayUnavailable("Payment gateway is unavailable, please try again shortly", operation=op)

    def create_order(self, amount: Decimal, currency: str, receipt: str) -> str:
        try:
            data = self._call("create_order", self.client.create_order, amount_minor=to_minor_units(amount), currency=currency, receipt=receipt)
        except RazorpayError as e:
            raise ValidationError(f"Could not create payment order: {e}") from e
        return data["id"]

    def verify_payment(self, order_ref: str, payment_ref: str, signature: str, expected_amount: Decimal) -> bool:
        if not verify_signature(self.key_secret, order_ref, payment_ref, signature):
            logger.warning("Payment signature mismatch for order %s payment %s", order_ref, payment_ref)
            return False
        try:
            payment = self._call("fetch_payment", self.client.fetch_payment, payment_ref)
        except RazorpayError as e:
            logger.warning("Payment %s could not be fetched: %s", payment_ref, e)
            return False
        if payment.get("order_id") and payment["order_id"] != order_ref:
            logger.warning("Payment %s belongs to order %s, not %s", payment_ref, payment["order_id"], order_ref)
            return False
        if payment.get("status") not in CAPTURED_STATES:
            logger.warning("Payment %s is %s", payment_ref, payment.get("status"))
            return False
        if int(payment.get("amount") or 0) < to_minor_units(expected_amount):
            logger.warning("Payment %s amount %s below expected %s", payment_ref, payment.get("amount"), to_minor_units(expected_amount))
            return False
        return True

    def refund(self, payment_ref: str, amount: Decimal) -> RefundResult:
        try:
            data = self._call("refund", self.client.refund_payment, payment_id=payment_ref, amount_minor=to_minor_units(amount))
        except RazorpayError as e:
            logger.error("Refund of %s on payment %s declined: %s", amount, payment_ref, e)
            return RefundResult(success=False, error=str(e))
        return RefundResult(success=True, refund_ref=data.get("id"))


class SandboxGateway:
    """In-process gateway for local runs. Signatures use the same HMAC scheme."""

    def __init__(self, secret: str):
        self.secret = secret

    def create_order(self, amount: Decimal, currency: str, receipt: str) -> str:
        to_minor_units(amount)
        return f"order_sbx_{uuid.uuid4().hex[:14]}"

    def sign(self, order_ref: str, payment_ref: str) -> str:
        return hmac_sha256_hex(self.secret, f"{order_ref}|{payment_ref}")

    def verify_payment(self, order_ref: str, payment_ref: str, signature: str, expected_amount: Decimal) -> bool:
        return verify_signature(self.secret, order_ref, payment_ref, signature)

    def refund(self, payment_ref: str, amount: Decimal) -> RefundResult:
        to_minor_units(amount)
        return RefundResult(success=True, refund_ref=f"rfnd_sbx_{uuid.uuid4().hex[:14]}")


def verify_webhook_signature(body: bytes, signature: str, secret: str | None = None) -> bool:
    secret = secret if secret is not None else settings.RAZORPAY_WEBHOOK_SECRET
    if not secret or not signature:
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


def get_payment_gateway() -> PaymentGateway:
    if settings.PAYMENT_SANDBOX:
        return SandboxGateway(settings.RAZORPAY_KEY_SECRET or settings.SECRET_KEY)
    if not (settings.RAZORPAY_KEY_ID and settings.RAZORPAY_KEY_SECRET):
        raise RuntimeError("Razorpay is not configured (RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET)")
    client = RazorpayClient(
        RazorpayConfig(
            host=settings.RAZORPAY_HOST,
            key_id=settings.RAZORPAY_KEY_ID,
            key_secret=settings.RAZORPAY_KEY_SECRET,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
        )
    )
    return RazorpayGateway(client, settings.RAZORPAY_KEY_SECRET)


class CapturedPayment:
    """Verification for a payment the gateway has already reported as captured.

    Used for webhooks, whose body signature is checked before this is built;
    only the captured amount is compared with what the booking expects.
    """

    def __init__(self, order_ref: str, amount_minor: int):
        self.order_ref = order_ref
        self.amount_minor = int(amount_minor)

    def verify_payment(self, order_ref: str, payment_ref: str, signature: str, expected_amount: Decimal) -> bool:
        return order_ref == self.order_ref and self.amount_minor >= to_minor_units(expected_amount)
