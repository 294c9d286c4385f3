from pydantic import BaseModel, Field, ConfigDict
from typing import List, Optional
from datetime import datetime
from decimal import Decimal


# Design chosen in the 3D configurator
class CustomCakeCreate(BaseModel):
    size: str
    cake_color: str
    icing_style: str
    icing_color: str
    filling: str = "none"
    bottom_border: str = "none"
    top_border: str = "none"
    bottom_border_color: Optional[str] = None
    top_border_color: Optional[str] = None
    decorations: str = "none"
    flower_type: str = "none"
    message_choice: str = "none"
    custom_text: Optional[str] = Field(None, max_length=100)
    toppings_color: Optional[str] = None
    reference_image_url: Optional[str] = None
    design_image_url: Optional[str] = None

    delivery_method: str = Field("pickup", pattern="^(pickup|delivery)$")
    delivery_address: Optional[str] = None
    delivery_date: Optional[datetime] = None

    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None

    # Designs with a configurator price skip staff review
    requires_review: bool = True
    price: Optional[Decimal] = Field(None, gt=0)


# Cake ordered from an uploaded reference picture
class ImageOrderCreate(BaseModel):
    image_path: str
    flavor: str
    size: Optional[str] = None
    message: Optional[str] = Field(None, max_length=100)
    event_date: datetime
    notes: Optional[str] = None

    delivery_method: str = Field("pickup", pattern="^(pickup|delivery)$")
    delivery_address: Optional[str] = None
    delivery_date: Optional[datetime] = None


# Staff feasibility decision
class CakeReview(BaseModel):
    feasible: bool


# Staff pricing request
class CakePrice(BaseModel):
    price: Decimal = Field(gt=0)


# Output schema shared by both custom-cake kinds
class CustomCakeOut(BaseModel):
    id: int
    kind: str
    user_id: int
    status: str
    next_status: Optional[str] = None
    price: Optional[float] = None
    downpayment_amount: Optional[float] = None
    remaining_balance: Optional[float] = None
    payment_status: str
    is_downpayment_paid: bool
    downpayment_paid_at: Optional[datetime] = None
    final_payment_status: str
    delivery_method: str
    delivery_address: Optional[str] = None
    delivery_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    design: dict = {}

    model_config = ConfigDict(from_attributes=True)


class CustomCakeList(BaseModel):
    items: List[CustomCakeOut]
    total: int
