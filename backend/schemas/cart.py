from pydantic import BaseModel, Field
from typing import List, Optional

# Request schema for adding an item to the cart
class CartAddItem(BaseModel):
    menu_item_id: int
    size_id: Optional[int] = None
    qty: int = Field(gt=0)

# Request schema for updating cart item quantity
class CartUpdateItem(BaseModel):
    qty: int = Field(gt=0)

# Response schema for a single cart line item
class CartItemOut(BaseModel):
    id: int
    menu_item_id: int
    size_id: Optional[int] = None
    name: str
    size_name: Optional[str] = None
    qty: int
    available: int
    unit_price: float
    line_total: float

    class Config:
        from_attributes = True

# Lines changed because stock ran out since they were added
class CartAdjustment(BaseModel):
    cart_item_id: int
    old_quantity: Optional[int] = None
    new_quantity: int = 0

# Response schema for the entire cart summary
class CartOut(BaseModel):
    items: List[CartItemOut]
    total: float
    adjustments: List[CartAdjustment] = []
