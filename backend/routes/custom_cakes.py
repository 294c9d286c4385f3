# backend/routes/custom_cakes.py
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request, Query, status
from sqlalchemy.orm import Session

from database import get_db
from utils.tokenJWT import get_current_user, is_staff, staff_required
from utils.audit import write_log
from utils import notifier
from models.users import User
from models.custom_cake import CustomCakeOrder, ImageBasedOrder, CakeStatus
from schemas.custom_cake import (
    CustomCakeCreate, ImageOrderCreate, CakeReview, CakePrice, CustomCakeOut, CustomCakeList,
)
from services import custom_cakes, state_machine
from services.errors import CheckoutValidationError, NotFound

router = APIRouter(prefix="/custom-cakes", tags=["Custom Cakes"])

_DESIGN_FIELDS = {
    "3d": ("size", "cake_color", "icing_style", "icing_color", "filling", "bottom_border", "top_border",
           "bottom_border_color", "top_border_color", "decorations", "flower_type", "message_choice",
           "custom_text", "toppings_color", "reference_image_url", "design_image_url"),
    "image": ("image_path", "flavor", "size", "message", "event_date", "notes"),
}


def _cake_to_out(cake) -> CustomCakeOut:
    kind = custom_cakes.kind_of(cake)
    nxt = state_machine.next_status(cake.status)
    return CustomCakeOut(
        id=cake.id,
        kind=kind,
        user_id=cake.user_id,
        status=cake.status.value,
        next_status=nxt.value if nxt else None,
        price=float(cake.price) if cake.price is not None else None,
        downpayment_amount=float(cake.downpayment_amount) if cake.downpayment_amount is not None else None,
        remaining_balance=float(cake.remaining_balance) if cake.remaining_balance is not None else None,
        payment_status=cake.payment_status.value,
        is_downpayment_paid=cake.is_downpayment_paid,
        downpayment_paid_at=cake.downpayment_paid_at,
        final_payment_status=cake.final_payment_status.value,
        delivery_method=cake.delivery_method,
        delivery_address=cake.delivery_address,
        delivery_date=cake.delivery_date,
        created_at=cake.created_at,
        design={f: getattr(cake, f) for f in _DESIGN_FIELDS[kind]},
    )


def _get_visible_cake(db: Session, kind: str, cake_id: int, user: User):
    cake = custom_cakes.get_cake(db, kind, cake_id)
    if cake.user_id != user.id and not is_staff(user):
        raise NotFound(cake.display_name, cake_id)
    return cake


def _check_delivery(method: str, address: Optional[str]):
    if method == "delivery" and not (address or "").strip():
        raise CheckoutValidationError("A delivery address is required for delivery orders")


def _log_and_notify(db: Session, request: Request, user: User, action: str, cake, old_status):
    write_log(db, user_id=user.id, action=action, resource="custom_cakes", resource_id=cake.id,
              ip=request.client.host,
              meta={"kind": custom_cakes.kind_of(cake), "old": old_status.value, "new": cake.status.value})
    if old_status != cake.status:
        notifier.notify("custom_cake_status_changed", {
            "kind": custom_cakes.kind_of(cake), "id": cake.id, "user_id": cake.user_id,
            "old_status": old_status.value, "new_status": cake.status.value,
        })


# Submit a 3D-configured cake
@router.post("", response_model=CustomCakeOut, status_code=status.HTTP_201_CREATED)
def create_custom_cake(
    payload: CustomCakeCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    _check_delivery(payload.delivery_method, payload.delivery_address)
    design = payload.model_dump(exclude={"requires_review", "price"})
    price = None if payload.requires_review else payload.price
    if not payload.requires_review and price is None:
        raise CheckoutValidationError("A price is required when the design skips review")

    cake = custom_cakes.create_3d(db, current_user, design, price=price)
    db.commit()
    db.refresh(cake)
    write_log(db, user_id=current_user.id, action="CUSTOM_CAKE_CREATE", resource="custom_cakes",
              resource_id=cake.id, ip=request.client.host, meta={"kind": "3d", "status": cake.status.value})
    return _cake_to_out(cake)


# Submit a cake based on an uploaded picture
@router.post("/image-orders", response_model=CustomCakeOut, status_code=status.HTTP_201_CREATED)
def create_image_order(
    payload: ImageOrderCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    _check_delivery(payload.delivery_method, payload.delivery_address)
    cake = custom_cakes.create_image_order(db, current_user, payload.model_dump())
    db.commit()
    db.refresh(cake)
    write_log(db, user_id=current_user.id, action="CUSTOM_CAKE_CREATE", resource="custom_cakes",
              resource_id=cake.id, ip=request.client.host, meta={"kind": "image"})
    return _cake_to_out(cake)


# List custom cakes (own for customers, all for staff)
@router.get("", response_model=CustomCakeList)
def list_custom_cakes(
    status_filter: Optional[str] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    wanted = None
    if status_filter:
        try:
            wanted = CakeStatus(status_filter)
        except ValueError:
            raise HTTPException(status_code=422, detail=f"Unknown custom cake status '{status_filter}'")

    items = []
    for model in (CustomCakeOrder, ImageBasedOrder):
        q = db.query(model)
        if not is_staff(current_user):
            q = q.filter(model.user_id == current_user.id)
        if wanted is not None:
            q = q.filter(model.status == wanted)
        items.extend(q.all())
    items.sort(key=lambda c: (c.created_at is not None, c.created_at, c.id), reverse=True)
    return {"items": [_cake_to_out(c) for c in items], "total": len(items)}


@router.get("/{kind}/{cake_id}", response_model=CustomCakeOut)
def get_custom_cake(
    kind: str,
    cake_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return _cake_to_out(_get_visible_cake(db, kind, cake_id, current_user))


# Staff feasibility triage
@router.post("/{kind}/{cake_id}/review", response_model=CustomCakeOut)
def review_custom_cake(
    kind: str,
    cake_id: int,
    payload: CakeReview,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(staff_required)
):
    cake = custom_cakes.get_cake(db, kind, cake_id)
    old_status = cake.status
    custom_cakes.review(db, cake, payload.feasible, actor_id=current_user.id)
    db.commit()
    _log_and_notify(db, request, current_user, "CUSTOM_CAKE_REVIEW", cake, old_status)
    return _cake_to_out(cake)


# Staff pricing; sets the downpayment split
@router.post("/{kind}/{cake_id}/price", response_model=CustomCakeOut)
def price_custom_cake(
    kind: str,
    cake_id: int,
    payload: CakePrice,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(staff_required)
):
    cake = custom_cakes.get_cake(db, kind, cake_id)
    old_status = cake.status
    custom_cakes.set_price(db, cake, payload.price, actor_id=current_user.id)
    db.commit()
    _log_and_notify(db, request, current_user, "CUSTOM_CAKE_PRICE", cake, old_status)
    return _cake_to_out(cake)


@router.post("/{kind}/{cake_id}/advance", response_model=CustomCakeOut)
def advance_custom_cake(
    kind: str,
    cake_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(staff_required)
):
    cake = custom_cakes.get_cake(db, kind, cake_id)
    old_status = cake.status
    custom_cakes.advance(db, cake, actor_id=current_user.id)
    db.commit()
    _log_and_notify(db, request, current_user, "CUSTOM_CAKE_STATUS_CHANGE", cake, old_status)
    return _cake_to_out(cake)


@router.post("/{kind}/{cake_id}/cancel", response_model=CustomCakeOut)
def cancel_custom_cake(
    kind: str,
    cake_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(staff_required)
):
    cake = custom_cakes.get_cake(db, kind, cake_id)
    old_status = cake.status
    custom_cakes.cancel(db, cake, actor_id=current_user.id)
    db.commit()
    _log_and_notify(db, request, current_user, "CUSTOM_CAKE_CANCEL", cake, old_status)
    return _cake_to_out(cake)


# Record a remaining balance paid in cash at pickup/delivery
@router.post("/{kind}/{cake_id}/confirm-balance", response_model=CustomCakeOut)
def confirm_balance(
    kind: str,
    cake_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(staff_required)
):
    cake = custom_cakes.get_cake(db, kind, cake_id)
    order = custom_cakes.confirm_cash_balance(db, cake, actor_id=current_user.id)
    db.commit()
    write_log(db, user_id=current_user.id, action="CUSTOM_CAKE_BALANCE_CASH", resource="custom_cakes",
              resource_id=cake.id, ip=request.client.host,
              meta={"kind": custom_cakes.kind_of(cake), "order_id": order.id,
                    "amount": str(cake.remaining_balance)})
    return _cake_to_out(cake)
