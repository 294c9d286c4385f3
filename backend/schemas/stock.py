# backend/schemas/stock.py
from pydantic import BaseModel, Field, ConfigDict, model_validator
from datetime import datetime
from typing import List, Optional, Literal

# Define allowed types for stock movements
StockMovementType = Literal["DEBIT", "CREDIT", "ADJUSTMENT"]

# Schema for a staff correction of a menu unit's stock
class StockAdjustCreate(BaseModel):
    menu_item_id: Optional[int] = None
    size_id: Optional[int] = None
    qty: int = Field(alias="quantity_change")
    reason: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @model_validator(mode="after")
    def _one_unit(self):
        if (self.menu_item_id is None) == (self.size_id is None):
            raise ValueError("Provide exactly one of menu_item_id or size_id")
        if self.qty == 0:
            raise ValueError("quantity_change cannot be zero")
        return self

# Schema for returning stock movement details
class StockMovementResponse(BaseModel):
    id: int
    created_at: Optional[datetime] = None
    menu_item_id: Optional[int] = None
    size_id: Optional[int] = None
    custom_cake_id: Optional[int] = None
    image_order_id: Optional[int] = None
    qty: int
    type: StockMovementType
    reason: Optional[str] = None
    balance_after: Optional[int] = None
    order_id: Optional[int] = None
    user_id: Optional[int] = None
    item_name: Optional[str] = None
    user_email: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)

# Paginated response for stock movement history
class StockMovementPage(BaseModel):
    items: List[StockMovementResponse]
    total: int
    page: int
    page_size: int
