# backend/models/stock.py
import enum
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Enum, func
from sqlalchemy.orm import relationship
from database import Base


class MovementType(str, enum.Enum):
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"
    ADJUSTMENT = "ADJUSTMENT"


# Journal of every stock ledger mutation
class StockMovement(Base):
    __tablename__ = "stock_movements"

    id = Column(Integer, primary_key=True, index=True)

    # Unit reference: exactly one of these is set
    menu_item_id = Column(Integer, ForeignKey("menu_items.id"), nullable=True, index=True)
    size_id = Column(Integer, ForeignKey("item_sizes.id"), nullable=True, index=True)
    custom_cake_id = Column(Integer, ForeignKey("custom_cake_orders.id"), nullable=True)
    image_order_id = Column(Integer, ForeignKey("image_based_orders.id"), nullable=True)

    # Signed quantity (negative for debits)
    qty = Column(Integer, nullable=False)
    type = Column(Enum(MovementType), nullable=False)
    reason = Column(String, nullable=True)
    balance_after = Column(Integer, nullable=True)

    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime, server_default=func.now(), nullable=False)

    menu_item = relationship("MenuItem")
    size = relationship("ItemSize")
    user = relationship("User")
