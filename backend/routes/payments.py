# backend/routes/payments.py
import logging
from typing import Optional
from fastapi import APIRouter, Request, Depends, Header, status
from sqlalchemy.orm import Session

from database import get_db
from models.order import PaymentMethod
from models.users import User
from schemas.payment import PaymentIntentCreate, PaymentIntentOut, PaymentStatusOut
from services import checkout, custom_cakes, reconciler
from services.errors import NotFound, PaymentNotAllowed
from utils.audit import write_log
from utils.paymongo_client import PayMongoClient, get_payment_client
from utils.tokenJWT import get_current_user

router = APIRouter(prefix="/payments", tags=["Payments"])
logger = logging.getLogger(__name__)


def _status_out(result: reconciler.ReconcileResult) -> PaymentStatusOut:
    return PaymentStatusOut(intent_id=result.intent_id, status=result.status.value, duplicate=result.duplicate,
                            refund_required=result.refund_required, order_id=result.order_id)


# Start (or restart) an online payment for a held order or a custom cake
@router.post("/intents", response_model=PaymentIntentOut, status_code=status.HTTP_201_CREATED)
async def create_payment_intent(
    payload: PaymentIntentCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    client: PayMongoClient = Depends(get_payment_client),
):
    if payload.payment_method != PaymentMethod.GCASH:
        raise PaymentNotAllowed("Online payments must use GCash; cash balances are recorded by staff at pickup")

    if payload.order_id is not None:
        order = checkout.get_order(db, payload.order_id)
        if order.user_id != current_user.id:
            raise NotFound("Order", payload.order_id)
        intent = await reconciler.open_order_intent(db, client, order, current_user)
    else:
        cake = custom_cakes.get_cake(db, payload.kind, payload.custom_cake_id)
        if cake.user_id != current_user.id:
            raise NotFound(cake.display_name, payload.custom_cake_id)
        intent = await reconciler.open_cake_intent(db, client, cake, current_user,
                                                   is_downpayment=payload.is_downpayment, amount=payload.amount)

    write_log(db, user_id=current_user.id, action="PAYMENT_INTENT_CREATE", resource="payments",
              resource_id=intent.id, ip=request.client.host,
              meta={"purpose": intent.purpose.value, "target_type": intent.target_type.value,
                    "target_id": intent.target_id, "amount": intent.amount, "external_id": intent.external_id})
    return reconciler.polling_contract(intent)


# Polled by the client after the redirect back from the processor
@router.get("/status/{token}", response_model=PaymentStatusOut)
async def payment_status(
    token: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    client: PayMongoClient = Depends(get_payment_client),
):
    intent = reconciler.get_by_token(db, token)
    if intent.user_id != current_user.id:
        raise NotFound("Payment", token)
    result = await reconciler.poll(db, client, token)
    return _status_out(result)


# Processor event callback
@router.post("/webhook")
async def payment_webhook(
    request: Request,
    db: Session = Depends(get_db),
    paymongo_signature: Optional[str] = Header(None, alias="Paymongo-Signature"),
):
    body = await request.body()
    result = reconciler.handle_webhook(db, body, paymongo_signature)
    if result is None:
        return {"status": "ignored"}
    return {"status": "ok", "payment": _status_out(result).model_dump()}
