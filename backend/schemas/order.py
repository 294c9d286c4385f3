from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import date, datetime

from models.order import PaymentMethod, DeliveryMethod


# Output schema for an individual order line item
class OrderItemOut(BaseModel):
    id: int
    menu_item_id: Optional[int] = None
    size_id: Optional[int] = None
    custom_cake_id: Optional[int] = None
    image_order_id: Optional[int] = None
    item_name: str
    size_name: Optional[str] = None
    qty: int
    unit_price: float
    line_total: float

    class Config:
        from_attributes = True


# Input schema for checking out the current cart
class CheckoutPayload(BaseModel):
    payment_method: PaymentMethod
    delivery_method: DeliveryMethod = DeliveryMethod.PICKUP
    delivery_address: Optional[str] = Field(None, max_length=500)
    scheduled_date: Optional[date] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None


# Output schema representing the full order details
class OrderResponse(BaseModel):
    id: int
    status: str
    next_status: Optional[str] = None
    total_amount: float
    payment_method: str
    payment_verified: bool
    stock_committed: bool
    delivery_method: str
    delivery_address: Optional[str] = None
    scheduled_date: Optional[date] = None
    customer_name: Optional[str] = None
    created_at: Optional[datetime] = None
    items: List[OrderItemOut]


# Schema for paginated order lists
class OrdersPage(BaseModel):
    items: List[OrderResponse]
    total: int
    page: int
    page_size: int


# Staff request to move an order forward
class OrderAdvance(BaseModel):
    status: Optional[str] = None
