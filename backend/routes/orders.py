# backend/routes/orders.py
from typing import List, Optional, Union
from fastapi import APIRouter, Depends, HTTPException, Request, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, selectinload

from database import get_db
import logging
from utils.tokenJWT import get_current_user, is_staff, staff_required
from utils.audit import write_log
from utils.paymongo_client import PayMongoClient, get_payment_client
from utils import notifier
from models.users import User
from models.order import Order, OrderStatus
from schemas.order import OrderResponse, OrdersPage, OrderItemOut, CheckoutPayload, OrderAdvance
from schemas.payment import PaymentIntentOut
from services import checkout, reconciler, state_machine
from services.cart_sweep import sweep_after_purchase
from services.checkout import CheckoutDetails, CommitMode
from services.errors import NotFound

router = APIRouter(prefix="/orders", tags=["Orders"])
logger = logging.getLogger(__name__)


# Map Order model to OrderResponse schema
def _order_to_out(order: Order) -> OrderResponse:
    items: List[OrderItemOut] = [OrderItemOut.model_validate(it) for it in order.items]
    nxt = state_machine.next_status(order.status)
    return OrderResponse(
        id=order.id,
        status=order.status.value,
        next_status=nxt.value if nxt else None,
        total_amount=float(order.total_amount),
        payment_method=order.payment_method.value,
        payment_verified=order.payment_verified,
        stock_committed=order.stock_committed,
        delivery_method=order.delivery_method.value,
        delivery_address=order.delivery_address,
        scheduled_date=order.scheduled_date,
        customer_name=order.customer_name,
        created_at=order.created_at,
        items=items,
    )


# Owners see their own orders; staff see every order
def _get_visible_order(db: Session, order_id: int, user: User) -> Order:
    order = db.query(Order).options(selectinload(Order.items)).filter(Order.id == order_id).first()
    if not order or (order.user_id != user.id and not is_staff(user)):
        raise NotFound("Order", order_id)
    return order


def _notify_status(order: Order, old_status: OrderStatus):
    notifier.notify("order_status_changed", {
        "order_id": order.id, "user_id": order.user_id,
        "old_status": old_status.value, "new_status": order.status.value,
    })


# Check out the current cart. Cash orders are committed now; online payments get an intent.
@router.post("/checkout", response_model=Union[OrderResponse, PaymentIntentOut],
             status_code=status.HTTP_201_CREATED)
async def checkout_cart(
    payload: CheckoutPayload,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    client: PayMongoClient = Depends(get_payment_client),
):
    details = CheckoutDetails(**payload.model_dump())
    mode = checkout.commit_mode_for(details.payment_method)

    if mode == CommitMode.COMMIT_NOW:
        order, units = checkout.place_cash_order(db, current_user, details)
        write_log(db, user_id=current_user.id, action="ORDER_CHECKOUT", resource="orders", resource_id=order.id,
                  ip=request.client.host, commit=False,
                  meta={"payment_method": details.payment_method.value, "total": str(order.total_amount)})
        db.commit()

        sweep_after_purchase(db, units, buyer_id=current_user.id)
        db.refresh(order)
        notifier.notify("order_placed", {"order_id": order.id, "user_id": order.user_id,
                                         "total": str(order.total_amount)})
        return _order_to_out(order)

    order = checkout.hold_async_order(db, current_user, details)
    intent = await reconciler.open_order_intent(db, client, order, current_user)
    write_log(db, user_id=current_user.id, action="ORDER_PAYMENT_STARTED", resource="orders",
              resource_id=order.id, ip=request.client.host,
              meta={"intent_id": intent.id, "external_id": intent.external_id, "amount": intent.amount})
    return JSONResponse(status_code=status.HTTP_202_ACCEPTED,
                        content=PaymentIntentOut(**reconciler.polling_contract(intent)).model_dump(mode="json"))


# List user orders (staff see all orders)
@router.get("", response_model=OrdersPage)
def list_orders(
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    q = db.query(Order).options(selectinload(Order.items))
    if not is_staff(current_user):
        q = q.filter(Order.user_id == current_user.id)
    if status_filter is not None:
        q = q.filter(Order.status == status_filter)
    q = q.order_by(Order.created_at.desc(), Order.id.desc())

    total = q.count()
    rows = q.offset((page - 1) * page_size).limit(page_size).all()
    return {"items": [_order_to_out(o) for o in rows], "total": total, "page": page, "page_size": page_size}


# Get details of a specific order
@router.get("/{order_id}", response_model=OrderResponse)
def get_order_detail(
    order_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return _order_to_out(_get_visible_order(db, order_id, current_user))


# Move an order to its next status (staff only)
@router.post("/{order_id}/advance", response_model=OrderResponse)
def advance_order(
    order_id: int,
    request: Request,
    payload: Optional[OrderAdvance] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(staff_required)
):
    order = checkout.get_order(db, order_id)
    old_status = order.status

    target = None
    if payload is not None and payload.status:
        try:
            target = OrderStatus(payload.status)
        except ValueError:
            raise HTTPException(status_code=422, detail=f"Unknown order status '{payload.status}'")

    checkout.advance_order(db, order, target)
    db.commit()
    write_log(db, user_id=current_user.id, action="ORDER_STATUS_CHANGE", resource="orders", resource_id=order.id,
              ip=request.client.host, meta={"old": old_status.value, "new": order.status.value})
    _notify_status(order, old_status)
    return _order_to_out(order)


# Cancel an order (staff only); committed stock goes back to the ledger
@router.post("/{order_id}/cancel", response_model=OrderResponse)
def cancel_order(
    order_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(staff_required)
):
    order = checkout.get_order(db, order_id)
    old_status = order.status
    restocked = order.stock_committed

    checkout.cancel_order(db, order, actor_id=current_user.id)
    db.commit()
    write_log(db, user_id=current_user.id, action="ORDER_CANCEL", resource="orders", resource_id=order.id,
              ip=request.client.host, meta={"old": old_status.value, "restocked": restocked})
    _notify_status(order, old_status)
    return _order_to_out(order)
