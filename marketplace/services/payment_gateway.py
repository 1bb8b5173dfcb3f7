import hashlib
import hmac
from decimal import Decimal
from typing import Dict, Optional

import requests

from ..errors import PaymentFailure
from ..utils.money import as_str
from .logging import log_event


def sign_payload(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: Optional[str]) -> bool:
    if not signature or not secret:
        return False
    expected = sign_payload(secret, body)
    provided = signature.split("=", 1)[-1].strip()
    return hmac.compare_digest(expected, provided)


class PaymentGateway:
    """Thin HTTP client for the card processor.

    Every call carries the configured timeout; transport errors and non-2xx
    responses surface as ``PaymentFailure``.
    """

    provider = "gateway"

    def __init__(self, base_url: str, api_key: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._http = session or requests.Session()

    def _post(self, path: str, payload: Dict, idempotency_key: Optional[str] = None) -> Dict:
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        url = f"{self.base_url}{path}"
        try:
            response = self._http.post(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.Timeout:
            log_event("error", "payment.gateway_timeout", url=url, timeout=self.timeout)
            raise PaymentFailure("Payment gateway timed out", timeout=self.timeout)
        except requests.RequestException as exc:
            log_event("error", "payment.gateway_error", url=url, error=str(exc))
            raise PaymentFailure("Payment gateway unreachable", error=str(exc))
        if response.status_code >= 400:
            log_event("error", "payment.gateway_rejected", url=url, status=response.status_code, body=response.text[:500])
            raise PaymentFailure("Payment gateway rejected the request", status=response.status_code)
        try:
            return response.json()
        except ValueError:
            raise PaymentFailure("Payment gateway returned an invalid response", status=response.status_code)

    def create_intent(self, order_id: str, amount: Decimal, currency: str) -> Dict:
        data = self._post(
            "/payment_intents",
            {"amount": as_str(amount), "currency": currency.lower(), "metadata": {"order_id": order_id}},
            idempotency_key=f"intent:{order_id}",
        )
        if not data.get("id"):
            raise PaymentFailure("Payment gateway returned no intent id", order_id=order_id)
        return {"id": data["id"], "client_secret": data.get("client_secret"), "status": data.get("status")}

    def refund(self, provider_reference: str, amount: Decimal, operation_key: str) -> Dict:
        data = self._post(
            "/refunds",
            {"payment_intent": provider_reference, "amount": as_str(amount)},
            idempotency_key=f"refund:{operation_key}",
        )
        return {"id": data.get("id"), "status": data.get("status", "succeeded")}
