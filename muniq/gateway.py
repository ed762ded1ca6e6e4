from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple, TypedDict
import hashlib
import hmac
import logging
import os
import uuid

import httpx

from .errors import GatewayFailure, InvalidRequest

log = logging.getLogger(__name__)

BACKEND = os.getenv("GATEWAY_BACKEND", "razorpay").lower()  # 'razorpay' | 'mock'

RAZORPAY_API_URL = os.environ.get(
    "RAZORPAY_API_URL", "https://api.razorpay.com/v1"
)
RAZORPAY_KEY_ID = os.environ.get("RAZORPAY_KEY_ID", "")
RAZORPAY_KEY_SECRET = os.environ.get("RAZORPAY_KEY_SECRET", "")
MOCK_SECRET = os.environ.get("MOCK_SECRET", "supersecret")


def sign(secret: str, order_id: str, payment_id: str) -> str:
    """HMAC-SHA256 hex over `order_id|payment_id`, Razorpay's checkout scheme."""
    msg = f"{order_id}|{payment_id}".encode()
    return hmac.new(secret.encode(), msg, hashlib.sha256).hexdigest()


def make_receipt(registration_id: str, now_ms: int) -> str:
    # Razorpay caps receipts at 40 chars
    return f"{registration_id[-8:]}_{str(now_ms)[-6:]}"


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class Order(TypedDict):
    id: str
    amount: int  # paise
    currency: str


class GatewayPayment(TypedDict):
    id: str
    order_id: Optional[str]
    amount: int  # paise
    currency: str
    status: str


class PaymentAdapter(ABC):
    key_id: str = ""

    @abstractmethod
    def secret(self) -> str: ...

    @abstractmethod
    async def create_order(
        self, amount: int, currency: str, receipt: str, notes: dict
    ) -> Order: ...

    @abstractmethod
    async def fetch_payment(self, payment_id: str) -> GatewayPayment: ...

    async def aclose(self) -> None:
        return None

    def verify_signature(
        self, order_id: str, payment_id: str, signature: str
    ) -> bool:
        if not signature or not isinstance(signature, str):
            return False
        expected = sign(self.secret(), order_id, payment_id)
        return hmac.compare_digest(expected.encode(), signature.encode())


# ----------------------------
# Razorpay implementation
# ----------------------------
class RazorpayGateway(PaymentAdapter):

    def __init__(self, key_id: str, key_secret: str,
                 base_url: str = RAZORPAY_API_URL,
                 http: Optional[httpx.AsyncClient] = None):
        self.key_id = key_id
        self._key_secret = key_secret
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(
            base_url=base_url,
            auth=(key_id, key_secret),
            timeout=10.0,
        )

    def secret(self) -> str:
        return self._key_secret

    async def _call(self, method: str, path: str, **kw) -> dict:
        try:
            resp = await self.http.request(method, path, **kw)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            log.error("razorpay %s %s -> %s: %s", method, path,
                      e.response.status_code, e.response.text)
            raise GatewayFailure()
        except httpx.HTTPError as e:
            log.error("razorpay %s %s failed: %s", method, path, e)
            raise GatewayFailure()

    async def create_order(
        self, amount: int, currency: str, receipt: str, notes: dict
    ) -> Order:
        body = await self._call("POST", "/orders", json={
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "payment_capture": 1,
            "notes": notes,
        })
        return {
            "id": body["id"],
            "amount": int(body["amount"]),
            "currency": body["currency"],
        }

    async def fetch_payment(self, payment_id: str) -> GatewayPayment:
        body = await self._call("GET", f"/payments/{payment_id}")
        return {
            "id": body["id"],
            "order_id": body.get("order_id"),
            "amount": int(body["amount"]),
            "currency": body["currency"],
            "status": body.get("status", ""),
        }

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()


# ----------------------------
# MockPay implementation
# ----------------------------
class MockGateway(PaymentAdapter):
    """In-memory stand-in for local development and tests."""

    key_id = "rzp_test_mock"

    def __init__(self, secret: str = MOCK_SECRET):
        self._secret = secret
        self.orders: Dict[str, Order] = {}
        self.payments: Dict[str, GatewayPayment] = {}

    def secret(self) -> str:
        return self._secret

    async def create_order(
        self, amount: int, currency: str, receipt: str, notes: dict
    ) -> Order:
        order_id = f"order_{uuid.uuid4().hex[:14]}"
        order: Order = {"id": order_id, "amount": amount, "currency": currency}
        self.orders[order_id] = order
        return order

    def complete(self, order_id: str) -> Tuple[str, str]:
        """Pay an order; returns (payment_id, signature) like the checkout."""
        order = self.orders.get(order_id)
        if order is None:
            raise InvalidRequest("order not found")
        payment_id = f"pay_{uuid.uuid4().hex[:14]}"
        self.payments[payment_id] = {
            "id": payment_id,
            "order_id": order_id,
            "amount": order["amount"],
            "currency": order["currency"],
            "status": "captured",
        }
        return payment_id, sign(self._secret, order_id, payment_id)

    async def fetch_payment(self, payment_id: str) -> GatewayPayment:
        payment = self.payments.get(payment_id)
        if payment is None:
            log.error("mockpay: unknown payment %s", payment_id)
            raise GatewayFailure()
        return payment


def new_gateway() -> PaymentAdapter:
    if BACKEND == "mock":
        return MockGateway()
    if not RAZORPAY_KEY_ID or not RAZORPAY_KEY_SECRET:
        raise RuntimeError(
            "GATEWAY_BACKEND=razorpay requires RAZORPAY_KEY_ID and "
            "RAZORPAY_KEY_SECRET"
        )
    return RazorpayGateway(RAZORPAY_KEY_ID, RAZORPAY_KEY_SECRET)
