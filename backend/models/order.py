# backend/models/order.py
import enum
from decimal import Decimal

from sqlalchemy import (
    Column, Integer, String, Numeric, ForeignKey, DateTime, Date, Boolean, Enum, CheckConstraint,
)
from sqlalchemy.orm import relationship
from database import Base
from utils.clock import utcnow


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    PENDING_PAYMENT = "pending_payment"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    GCASH = "gcash"


class DeliveryMethod(str, enum.Enum):
    PICKUP = "pickup"
    DELIVERY = "delivery"


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status = Column(Enum(OrderStatus, values_callable=lambda e: [m.value for m in e]),
                    nullable=False, default=OrderStatus.PENDING, index=True)
    total_amount = Column(Numeric(10, 2), CheckConstraint("total_amount >= 0"), nullable=False)

    payment_method = Column(Enum(PaymentMethod, values_callable=lambda e: [m.value for m in e]), nullable=False)
    payment_verified = Column(Boolean, nullable=False, default=False)
    # True once the stock ledger has been debited for this order's lines
    stock_committed = Column(Boolean, nullable=False, default=False)

    delivery_method = Column(Enum(DeliveryMethod, values_callable=lambda e: [m.value for m in e]),
                             nullable=False, default=DeliveryMethod.PICKUP)
    delivery_address = Column(String, nullable=True)
    scheduled_date = Column(Date, nullable=True)

    # Contact snapshot taken at checkout
    customer_name = Column(String, nullable=True)
    customer_email = Column(String, nullable=True)
    customer_phone = Column(String, nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan",
                         order_by="OrderItem.id")
    payment_intents = relationship("PaymentIntent", back_populates="order")

    @property
    def line_total_sum(self) -> Decimal:
        return sum((Decimal(it.line_total) for it in self.items), Decimal("0.00"))

    def check_total(self):
        """Raise OrderTotalMismatch unless the lines add up to the header total."""
        from services.errors import OrderTotalMismatch

        expected = self.line_total_sum
        if Decimal(self.total_amount) != expected:
            raise OrderTotalMismatch(Decimal(self.total_amount), expected)


# Snapshot of a purchased line; never rewritten after the order is created,
# so later menu edits cannot alter order history.
class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)

    menu_item_id = Column(Integer, ForeignKey("menu_items.id"), nullable=True, index=True)
    size_id = Column(Integer, ForeignKey("item_sizes.id"), nullable=True)
    custom_cake_id = Column(Integer, ForeignKey("custom_cake_orders.id"), nullable=True)
    image_order_id = Column(Integer, ForeignKey("image_based_orders.id"), nullable=True)

    item_name = Column(String, nullable=False)
    size_name = Column(String, nullable=True)
    qty = Column(Integer, CheckConstraint("qty >= 1"), nullable=False)
    unit_price = Column(Numeric(10, 2), CheckConstraint("unit_price >= 0"), nullable=False)
    line_total = Column(Numeric(10, 2), nullable=False)

    order = relationship("Order", back_populates="items")
