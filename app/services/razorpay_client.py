import hashlib
import hmac
from dataclasses import dataclass

import requests


@dataclass
class RazorpayConfig:
    host: str               # api.razorpay.com
    key_id: str             # basic-auth username, also sent to the checkout widget
    key_secret: str         # basic-auth password and payment-signature key
    timeout: int = 20


class RazorpayError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def hmac_sha256_hex(secret: str, msg: str) -> str:
    return hmac.new(secret.encode("utf-8"), msg.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_signature(secret: str, order_id: str, payment_id: str, signature: str) -> bool:
    # Checkout signs "<order_id>|<payment_id>" with the key secret.
    expected = hmac_sha256_hex(secret, f"{order_id}|{payment_id}")
    return hmac.compare_digest(expected, signature or "")


class RazorpayClient:
    def __init__(self, cfg: RazorpayConfig):
        self.cfg = cfg

    def request(self, method: str, path: str, payload: dict | None = None) -> dict:
        url = f"https://{self.cfg.host}/v1{path}"
        r = requests.request(
            method=method.upper(),
            url=url,
            json=payload if payload is not None else None,
            auth=(self.cfg.key_id, self.cfg.key_secret),
            headers={"Accept": "application/json"},
            timeout=self.cfg.timeout,
        )
        try:
            data = r.json() if r.text else {}
        except ValueError:
            data = {"raw": r.text}
        if r.status_code >= 400:
            raise RazorpayError(f"Razorpay {r.status_code}: {data}", status_code=r.status_code)
        return data

    def create_order(self, *, amount_minor: int, currency: str, receipt: str, notes: dict | None = None) -> dict:
        payload = {"amount": amount_minor, "currency": currency, "receipt": receipt, "notes": notes or {}}
        return self.request("POST", "/orders", payload)

    def fetch_payment(self, payment_id: str) -> dict:
        return self.request("GET", f"/payments/{payment_id}")

    def refund_payment(self, *, payment_id: str, amount_minor: int, notes: dict | None = None) -> dict:
        payload = {"amount": amount_minor, "notes": notes or {}}
        return self.request("POST", f"/payments/{payment_id}/refund", payload)
