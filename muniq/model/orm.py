from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    ForeignKey,
    JSON,
    UniqueConstraint,
    CheckConstraint,
)


Base = declarative_base()

PAYMENT_STATUSES = ("pending", "completed", "failed")
PAYMENT_METHODS = ("razorpay", "qr_code", "manual")


def _one_of(column: str, values) -> str:
    return "{} IN ({})".format(column, ", ".join(f"'{v}'" for v in values))


# ----------------------------
# ORM models
# ----------------------------
class Registration(Base):
    __tablename__ = "registrations"
    id = Column(String, primary_key=True)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False)
    email = Column(String, nullable=False, index=True)  # not unique
    contact = Column(String, nullable=True)
    dob = Column(String, nullable=True)
    standard = Column(String, nullable=False)
    institution = Column(String, nullable=True)
    mun_experience = Column(String, nullable=False)
    workshop_slot = Column(String, nullable=True)

    course_id = Column(String, nullable=False)
    course_name = Column(String, nullable=False)
    course_price = Column(Integer, nullable=False)  # rupees

    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)

    payment = relationship("Payment", back_populates="registration",
                           uselist=False)


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        UniqueConstraint("registration_id",
                         name="uq_payments_registration_id"),
        CheckConstraint(_one_of("status", PAYMENT_STATUSES),
                        name="ck_payments_status"),
        CheckConstraint(_one_of("method", PAYMENT_METHODS),
                        name="ck_payments_method"),
    )
    id = Column(String, primary_key=True)
    registration_id = Column(
        String, ForeignKey("registrations.id"), nullable=False
    )

    # gateway identifiers; absent for screenshot/manual payments
    payment_id = Column(String, nullable=True)
    order_id = Column(String, nullable=True)
    signature = Column(String, nullable=True)

    amount = Column(Integer, nullable=False)  # paise
    currency = Column(String, nullable=False, default="INR")

    # pending | completed | failed
    status = Column(String, nullable=False, default="pending")
    # razorpay | qr_code | manual
    method = Column(String, nullable=False)

    screenshot_url = Column(String, nullable=True)
    course_details = Column(JSON, nullable=True)

    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)

    registration = relationship("Registration", back_populates="payment")
