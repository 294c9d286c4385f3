from pydantic import BaseModel, model_validator
from typing import Literal, Optional
from datetime import datetime

from models.order import PaymentMethod


# Request schema for starting a payment; exactly one target is given
class PaymentIntentCreate(BaseModel):
    order_id: Optional[int] = None
    custom_cake_id: Optional[int] = None
    kind: Literal["3d", "image"] = "3d"
    is_downpayment: bool = True
    payment_method: PaymentMethod = PaymentMethod.GCASH
    # Optional client-side amount in centavos, checked against the server's figure
    amount: Optional[int] = None

    @model_validator(mode="after")
    def _one_target(self):
        if (self.order_id is None) == (self.custom_cake_id is None):
            raise ValueError("Provide exactly one of order_id or custom_cake_id")
        return self


# Response schema for a created intent, including the polling contract
class PaymentIntentOut(BaseModel):
    intent_id: int
    token: str
    checkout_url: Optional[str] = None
    amount: int
    currency: str
    status: str
    expires_at: datetime
    poll_interval_seconds: int
    max_polls: int


# Current reconciliation state for a polling client
class PaymentStatusOut(BaseModel):
    intent_id: int
    status: str
    duplicate: bool = False
    refund_required: bool = False
    order_id: Optional[int] = None
