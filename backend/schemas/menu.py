from pydantic import BaseModel
from typing import List, Optional

# Size variant with its own price and availability
class ItemSizeOut(BaseModel):
    id: int
    size_name: str
    price: float
    stock: int

    class Config:
        from_attributes = True

# Schema for a menu item shown in the storefront
class MenuItemOut(BaseModel):
    id: int
    name: str
    category: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    has_sizes: bool
    base_price: float
    stock: int
    sizes: List[ItemSizeOut] = []

    class Config:
        from_attributes = True
