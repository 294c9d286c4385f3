# backend/models/menu.py
from sqlalchemy import Column, Integer, String, ForeignKey, Boolean, Numeric, CheckConstraint
from sqlalchemy.orm import relationship
from database import Base

# Menu item offered in the storefront.
# Items without sizes keep their purchasable count in `stock`;
# items with `has_sizes` keep it per ItemSize row instead.
class MenuItem(Base):
    __tablename__ = "menu_items"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, index=True)
    category = Column(String, nullable=False, default="Cakes")
    description = Column(String, nullable=True)
    image_url = Column(String, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    has_sizes = Column(Boolean, nullable=False, default=False)
    base_price = Column(Numeric(10, 2), CheckConstraint("base_price >= 0"), nullable=False, default=0)

    # Mutated only through services.stock_ledger
    stock = Column(Integer, CheckConstraint("stock >= 0"), nullable=False, default=0)

    sizes = relationship("ItemSize", back_populates="menu_item", cascade="all, delete-orphan",
                         order_by="ItemSize.id")


# A size variant (S/M/L, 6", 8"...) with its own price and stock
class ItemSize(Base):
    __tablename__ = "item_sizes"

    id = Column(Integer, primary_key=True, index=True)
    menu_item_id = Column(Integer, ForeignKey("menu_items.id"), nullable=False, index=True)
    size_name = Column(String, nullable=False)
    price = Column(Numeric(10, 2), CheckConstraint("price >= 0"), nullable=False)
    stock = Column(Integer, CheckConstraint("stock >= 0"), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)

    menu_item = relationship("MenuItem", back_populates="sizes")
