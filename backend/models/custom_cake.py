# backend/models/custom_cake.py
import enum
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import (
    Column, Integer, String, Text, Numeric, ForeignKey, DateTime, Boolean, Enum, CheckConstraint,
)
from sqlalchemy.orm import declared_attr, relationship, validates
from database import Base
from utils.clock import utcnow


# Persisted verbatim; staff dashboards match on these strings
class CakeStatus(str, enum.Enum):
    PENDING_REVIEW = "Pending Review"
    FEASIBLE = "Feasible"
    NOT_FEASIBLE = "Not Feasible"
    READY_FOR_DOWNPAYMENT = "Ready for Downpayment"
    DOWNPAYMENT_PAID = "Downpayment Paid"
    IN_PROGRESS = "In Progress"
    READY_FOR_PICKUP_DELIVERY = "Ready for Pickup/Delivery"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class CakePaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class FinalPaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"


DOWNPAYMENT_RATE = Decimal("0.5")
CENTS = Decimal("0.01")


def _values(e):
    return [m.value for m in e]


# Status, pricing and payment bookkeeping shared by 3D and image-based orders
class CakeOrderMixin:
    id = Column(Integer, primary_key=True, index=True)

    @declared_attr
    def user_id(cls):
        return Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    @declared_attr
    def owner(cls):
        return relationship("User")

    status = Column(Enum(CakeStatus, values_callable=_values), nullable=False,
                    default=CakeStatus.PENDING_REVIEW, index=True)

    price = Column(Numeric(10, 2), nullable=True)
    downpayment_amount = Column(Numeric(10, 2), nullable=True)
    remaining_balance = Column(Numeric(10, 2), nullable=True)

    payment_status = Column(Enum(CakePaymentStatus, values_callable=_values), nullable=False,
                            default=CakePaymentStatus.PENDING)
    is_downpayment_paid = Column(Boolean, nullable=False, default=False)
    downpayment_paid_at = Column(DateTime, nullable=True)
    final_payment_status = Column(Enum(FinalPaymentStatus, values_callable=_values), nullable=False,
                                  default=FinalPaymentStatus.PENDING)

    delivery_method = Column(String, nullable=False, default="pickup")
    delivery_address = Column(Text, nullable=True)
    delivery_date = Column(DateTime, nullable=True)

    # Stock ledger slot: a design can be committed to production exactly once
    slot_available = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    updated_by = Column(Integer, nullable=True)

    @validates("is_downpayment_paid")
    def _validate_downpayment_flag(self, key, value):
        if self.is_downpayment_paid and not value:
            raise ValueError("is_downpayment_paid cannot be reset once the downpayment is recorded")
        return value

    def apply_price(self, price):
        """Set the price and split it into downpayment and remaining balance."""
        price = Decimal(str(price)).quantize(CENTS, rounding=ROUND_HALF_UP)
        if price <= 0:
            raise ValueError("price must be positive")
        downpayment = (price * DOWNPAYMENT_RATE).quantize(CENTS, rounding=ROUND_HALF_UP)
        self.price = price
        self.downpayment_amount = downpayment
        self.remaining_balance = price - downpayment

    @property
    def balance_consistent(self) -> bool:
        if self.price is None:
            return True
        return Decimal(self.downpayment_amount) + Decimal(self.remaining_balance) == Decimal(self.price)


_BALANCE_CHECK = (
    "price IS NULL OR "
    "(downpayment_amount IS NOT NULL AND remaining_balance IS NOT NULL "
    "AND downpayment_amount + remaining_balance = price)"
)


# Cake designed in the 3D configurator
class CustomCakeOrder(CakeOrderMixin, Base):
    __tablename__ = "custom_cake_orders"

    customer_name = Column(String, nullable=True)
    customer_email = Column(String, nullable=True)
    customer_phone = Column(String, nullable=True)

    size = Column(String, nullable=False)
    cake_color = Column(String, nullable=False)
    icing_style = Column(String, nullable=False)
    icing_color = Column(String, nullable=False)
    filling = Column(String, nullable=False, default="none")
    bottom_border = Column(String, nullable=False, default="none")
    top_border = Column(String, nullable=False, default="none")
    bottom_border_color = Column(String, nullable=True)
    top_border_color = Column(String, nullable=True)
    decorations = Column(String, nullable=False, default="none")
    flower_type = Column(String, nullable=False, default="none")
    message_choice = Column(String, nullable=False, default="none")
    custom_text = Column(String, nullable=True)
    toppings_color = Column(String, nullable=True)
    reference_image_url = Column(String, nullable=True)
    design_image_url = Column(String, nullable=True)

    __table_args__ = (
        CheckConstraint(_BALANCE_CHECK, name="ck_custom_cake_balance"),
        CheckConstraint("slot_available >= 0 AND slot_available <= 1", name="ck_custom_cake_slot"),
    )

    display_name = "3D Custom Cake"


# Cake ordered from an uploaded reference picture
class ImageBasedOrder(CakeOrderMixin, Base):
    __tablename__ = "image_based_orders"

    image_path = Column(String, nullable=False)
    flavor = Column(String, nullable=False)
    size = Column(String, nullable=True)
    message = Column(String, nullable=True)
    event_date = Column(DateTime, nullable=False)
    notes = Column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(_BALANCE_CHECK, name="ck_image_order_balance"),
        CheckConstraint("slot_available >= 0 AND slot_available <= 1", name="ck_image_order_slot"),
    )

    display_name = "Custom Image Cake"
