from __future__ import annotations
import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import DuplicatePayment
from ..helpers import now_ts, to_iso, to_rupees
from .orm import Payment, Registration

log = logging.getLogger(__name__)

MAX_LIST_LIMIT = 10000


class Store:
    """
    Registration/payment access on one AsyncSession.

    Every call runs in its own short transaction, so calls can be chained
    freely inside one request.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def ping(self) -> bool:
        async with self.db.begin():
            result = await self.db.execute(text("SELECT 1"))
        return result.scalar() == 1

    # ---
    # registrations
    # ---
    async def create_registration(self, fields: Dict[str, Any]) -> Registration:
        ts = now_ts()
        reg = Registration(
            id=uuid.uuid4().hex,
            created_at=ts,
            updated_at=ts,
            **fields,
        )
        async with self.db.begin():
            self.db.add(reg)
        return reg

    async def get_registration(self, registration_id: str) -> Optional[Registration]:
        async with self.db.begin():
            return await self.db.get(Registration, registration_id)

    async def list_registrations(self, limit: int = MAX_LIST_LIMIT) -> List[Dict[str, Any]]:
        async with self.db.begin():
            result = await self.db.execute(
                select(Registration)
                .order_by(Registration.created_at.desc())
                .limit(max(1, min(limit, MAX_LIST_LIMIT)))
            )
            rows = result.scalars().all()
        return [registration_as_dict(r) for r in rows]

    # ---
    # payments
    # ---
    async def get_payment(self, payment_id: str) -> Optional[Payment]:
        async with self.db.begin():
            return await self.db.get(Payment, payment_id)

    async def get_payment_by_registration(
            self, registration_id: str
    ) -> Optional[Payment]:
        async with self.db.begin():
            result = await self.db.execute(
                select(Payment).where(
                    Payment.registration_id == registration_id
                )
            )
            return result.scalars().first()

    async def create_payment(self, fields: Dict[str, Any]) -> Payment:
        """
        Insert the one payment of a registration.

        The unique constraint on registration_id makes this the
        authoritative check: a concurrent insert for the same
        registration loses with DuplicatePayment.
        """
        ts = now_ts()
        payment = Payment(
            id=uuid.uuid4().hex,
            created_at=ts,
            updated_at=ts,
            **fields,
        )
        try:
            async with self.db.begin():
                self.db.add(payment)
        except IntegrityError:
            await self.db.rollback()
            log.info("duplicate payment for registration %s",
                     fields.get("registration_id"))
            raise DuplicatePayment()
        return payment

    async def list_payments(self, limit: int = MAX_LIST_LIMIT) -> List[Dict[str, Any]]:
        async with self.db.begin():
            result = await self.db.execute(
                text("""
                    SELECT p.id, p.registration_id, p.payment_id, p.order_id,
                           p.amount, p.currency, p.status, p.method,
                           p.screenshot_url, p.created_at,
                           r.first_name, r.last_name, r.email
                    FROM payments p
                    JOIN registrations r ON r.id = p.registration_id
                    ORDER BY p.created_at DESC
                    LIMIT :limit
                """),
                {"limit": max(1, min(limit, MAX_LIST_LIMIT))},
            )
            rows = result.mappings().all()
        items = []
        for r in rows:
            items.append({
                "id": r["id"],
                "registration_id": r["registration_id"],
                "payment_id": r["payment_id"],
                "order_id": r["order_id"],
                "amount": to_rupees(r["amount"]),
                "currency": r["currency"],
                "status": r["status"],
                "payment_method": r["method"],
                "payment_screenshot_url": r["screenshot_url"],
                "created_at": to_iso(r["created_at"]),
                "registrations": {
                    "first_name": r["first_name"],
                    "last_name": r["last_name"],
                    "email": r["email"],
                },
            })
        return items


def registration_as_dict(r: Registration) -> Dict[str, Any]:
    return {
        "id": r.id,
        "first_name": r.first_name,
        "last_name": r.last_name,
        "email": r.email,
        "contact": r.contact,
        "dob": r.dob,
        "standard": r.standard,
        "institution": r.institution,
        "mun_experience": r.mun_experience,
        "workshop_slot": r.workshop_slot,
        "course_id": r.course_id,
        "course_name": r.course_name,
        "course_price": r.course_price,
        "created_at": to_iso(r.created_at),
        "updated_at": to_iso(r.updated_at),
    }


def payment_as_dict(p: Payment) -> Dict[str, Any]:
    return {
        "id": p.id,
        "registrationId": p.registration_id,
        "paymentId": p.payment_id,
        "orderId": p.order_id,
        "amount": to_rupees(p.amount),
        "currency": p.currency,
        "status": p.status,
        "paymentMethod": p.method,
        "screenshotUrl": p.screenshot_url,
        "createdAt": to_iso(p.created_at),
    }
