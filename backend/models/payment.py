# backend/models/payment.py
import enum
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, Enum, JSON
from sqlalchemy.orm import relationship
from database import Base
from utils.clock import utcnow


class IntentPurpose(str, enum.Enum):
    ORDER = "order"
    DOWNPAYMENT = "downpayment"
    BALANCE = "balance"


class IntentTarget(str, enum.Enum):
    ORDER = "order"
    CUSTOM_CAKE = "custom_cake"
    IMAGE_ORDER = "image_order"


class IntentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    EXPIRED = "expired"


def _values(e):
    return [m.value for m in e]


# One redirect-based payment at the external processor.
# `external_id` is unique, so a processor reference can only ever settle one aggregate.
class PaymentIntent(Base):
    __tablename__ = "payment_intents"

    id = Column(Integer, primary_key=True, index=True)
    external_id = Column(String, unique=True, nullable=True, index=True)
    token = Column(String(64), unique=True, nullable=False, index=True)
    checkout_url = Column(String, nullable=True)

    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    purpose = Column(Enum(IntentPurpose, values_callable=_values), nullable=False)
    target_type = Column(Enum(IntentTarget, values_callable=_values), nullable=False)
    target_id = Column(Integer, nullable=False)

    amount = Column(Integer, nullable=False) # minor units
    currency = Column(String(3), nullable=False, default="PHP")
    status = Column(Enum(IntentStatus, values_callable=_values), nullable=False,
                    default=IntentStatus.PENDING, index=True)
    refund_required = Column(Boolean, nullable=False, default=False)
    failure_reason = Column(String, nullable=True)

    # Lines and delivery details needed to rebuild the order if the held one is gone
    snapshot = Column(JSON, nullable=True)

    # Order produced (or held) by this intent
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    settled_at = Column(DateTime, nullable=True)

    order = relationship("Order", back_populates="payment_intents")
    user = relationship("User")
