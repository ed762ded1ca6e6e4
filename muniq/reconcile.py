"""
Payment reconciliation.

Decides whether a claimed payment may be attached to a registration and
writes the single payment record. Three ways in:

- gateway: the checkout hands back order id, payment id and an HMAC
  signature; the signature is checked before anything else and the amount
  is taken from the gateway, never from the client.
- screenshot: an uploaded QR-payment screenshot is accepted on trust and
  recorded as completed. There is no review step.
- manual: an admin records a payment taken outside both flows.

All three rely on the unique registration_id constraint in the payments
table for the at-most-one-payment rule; the lookup before the insert only
gives an early, friendlier answer.
"""
from __future__ import annotations
import logging
import os
from typing import Any, Dict, Optional

from .errors import (
    DuplicatePayment, InvalidFile, InvalidRequest, MissingFields,
    RegistrationNotFound, SignatureMismatch,
)
from .gateway import PaymentAdapter
from .helpers import now_ms, to_paise
from .model import Payment, Store
from .storage import ScreenshotStorage, screenshot_path

log = logging.getLogger(__name__)

MAX_SCREENSHOT_BYTES = 10 * 1024 * 1024
QR_PAYMENT_AMOUNT = float(os.environ.get("QR_PAYMENT_AMOUNT", "11"))  # rupees
QR_PAYMENT_CURRENCY = "INR"

METHOD_GATEWAY = "razorpay"
METHOD_QR = "qr_code"
METHOD_MANUAL = "manual"


async def _ensure_payable(store: Store, registration_id: str) -> None:
    registration = await store.get_registration(registration_id)
    if registration is None:
        raise RegistrationNotFound()
    if await store.get_payment_by_registration(registration_id) is not None:
        raise DuplicatePayment()


def _missing(**fields) -> list:
    return [name for name, value in fields.items() if not value]


# ----------------------------
# gateway path
# ----------------------------
async def verify_gateway_payment(
    store: Store,
    gateway: PaymentAdapter,
    order_id: Optional[str],
    payment_id: Optional[str],
    signature: Optional[str],
    registration_id: Optional[str],
    course_details: Optional[Dict[str, Any]] = None,
) -> Payment:
    missing = _missing(
        razorpay_order_id=order_id,
        razorpay_payment_id=payment_id,
        razorpay_signature=signature,
        registrationId=registration_id,
    )
    if missing:
        raise MissingFields(
            missing,
            message="Missing required payment verification fields",
        )

    if not gateway.verify_signature(order_id, payment_id, signature):
        log.warning("signature mismatch for order %s payment %s",
                    order_id, payment_id)
        raise SignatureMismatch()

    await _ensure_payable(store, registration_id)

    details = await gateway.fetch_payment(payment_id)

    payment = await store.create_payment({
        "registration_id": registration_id,
        "payment_id": payment_id,
        "order_id": order_id,
        "signature": signature,
        "amount": int(details["amount"]),
        "currency": details["currency"],
        "status": "completed",
        "method": METHOD_GATEWAY,
        "course_details": course_details,
    })
    log.info("payment %s verified for registration %s",
             payment.id, registration_id)
    return payment


# ----------------------------
# screenshot (QR) path
# ----------------------------
def check_screenshot(content_type: Optional[str], size: int) -> None:
    if not content_type or not content_type.startswith("image/"):
        raise InvalidFile()
    if size > MAX_SCREENSHOT_BYTES:
        raise InvalidFile("File size must be less than 10MB")


async def accept_screenshot_payment(
    store: Store,
    storage: ScreenshotStorage,
    filename: Optional[str],
    content_type: Optional[str],
    data: Optional[bytes],
    registration_id: Optional[str],
) -> Payment:
    if not filename or data is None:
        raise MissingFields(["screenshot"],
                            message="No screenshot file provided")
    if not registration_id:
        raise MissingFields(["registrationId"],
                            message="Registration ID is required")

    # file checks come before any lookup
    check_screenshot(content_type, len(data))

    await _ensure_payable(store, registration_id)

    ts = now_ms()
    url = await storage.put(
        screenshot_path(registration_id, ts, filename), data, content_type
    )

    payment = await store.create_payment({
        "registration_id": registration_id,
        "payment_id": f"qr_{ts}_{registration_id[-8:]}",
        "amount": to_paise(QR_PAYMENT_AMOUNT),
        "currency": QR_PAYMENT_CURRENCY,
        "status": "completed",
        "method": METHOD_QR,
        "screenshot_url": url,
    })
    log.info("screenshot payment %s saved for registration %s",
             payment.id, registration_id)
    return payment


# ----------------------------
# admin manual record
# ----------------------------
async def record_manual_payment(
    store: Store,
    registration_id: Optional[str],
    amount: Any,
    currency: Optional[str] = None,
    payment_id: Optional[str] = None,
) -> Payment:
    missing = _missing(registrationId=registration_id, amount=amount)
    if missing:
        raise MissingFields(missing)
    try:
        paise = to_paise(amount)
    except (TypeError, ValueError, OverflowError):
        raise InvalidRequest("amount must be a number")
    if paise <= 0:
        raise InvalidRequest("amount must be positive")

    await _ensure_payable(store, registration_id)

    payment = await store.create_payment({
        "registration_id": registration_id,
        "payment_id": payment_id or f"manual_{now_ms()}_{registration_id[-8:]}",
        "amount": paise,
        "currency": currency or "INR",
        "status": "completed",
        "method": METHOD_MANUAL,
    })
    log.info("manual payment %s recorded for registration %s",
             payment.id, registration_id)
    return payment
