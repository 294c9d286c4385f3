# backend/models/cart.py
from sqlalchemy import Column, Integer, ForeignKey, DateTime, Numeric, UniqueConstraint, CheckConstraint, func
from sqlalchemy.orm import relationship
from database import Base

# The customer's shopping cart (one per user)
class Cart(Base):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, index=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    # One-to-many relationship with cart items
    items = relationship("CartItem", back_populates="cart", cascade="all, delete-orphan",
                         order_by="CartItem.id")


# A single (menu item, size, quantity) intent within a cart.
# Holds no reservation: availability is re-checked on every mutation and at checkout.
class CartItem(Base):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(Integer, ForeignKey("carts.id"), index=True, nullable=False)
    menu_item_id = Column(Integer, ForeignKey("menu_items.id"), index=True, nullable=False)
    size_id = Column(Integer, ForeignKey("item_sizes.id"), index=True, nullable=True)
    qty = Column(Integer, CheckConstraint("qty >= 1"), nullable=False, default=1)
    unit_price_snapshot = Column(Numeric(10, 2), nullable=False) # Unit price at the moment of addition
    # Set when another customer's purchase sold out this line; the line is dropped on the next cart view
    swept_at = Column(DateTime, nullable=True)

    cart = relationship("Cart", back_populates="items")
    menu_item = relationship("MenuItem")
    size = relationship("ItemSize")

    __table_args__ = (
        # Same item + size must be merged into one line
        UniqueConstraint("cart_id", "menu_item_id", "size_id", name="uq_cartitem_cart_item_size"),
    )
