"""Payment model: local mirror of a payment intent held by Stripe."""

from sqlalchemy import JSON, Column, DateTime, Integer, String

from ptsa.database import Base
from ptsa.utils.dates import utcnow

PAYMENT_STATUSES = ("pending", "processing", "succeeded", "failed", "canceled")
TERMINAL_PAYMENT_STATUSES = frozenset({"succeeded", "failed", "canceled"})


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    # Replaced by an anonymized id on account deletion, so no foreign key
    user_id = Column(String(255), nullable=True, index=True)
    stripe_payment_intent_id = Column(String(255), unique=True, nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False, default="usd")
    status = Column(String(20), nullable=False, default="pending")
    payment_type = Column(String(20), nullable=False)
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stripe_payment_intent_id": self.stripe_payment_intent_id,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status,
            "payment_type": self.payment_type,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
