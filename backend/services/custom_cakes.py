# backend/services/custom_cakes.py
"""Custom-cake funnel: creation, staff triage, pricing and fulfillment steps.

Payments against a cake (downpayment, balance) are settled by the reconciler;
the helpers it shares live here too.
"""
import logging
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy.orm import Session

from models.custom_cake import (
    CustomCakeOrder, ImageBasedOrder, CakeStatus, CakePaymentStatus, FinalPaymentStatus,
)
from models.order import Order, OrderItem, OrderStatus, PaymentMethod, DeliveryMethod
from models.payment import IntentTarget
from models.users import User
from services import stock_ledger, state_machine
from services.errors import InvalidStatusTransition, NotFound, PaymentNotAllowed
from services.stock_ledger import StockUnit
from utils.clock import utcnow

logger = logging.getLogger(__name__)

CakeOrder = Union[CustomCakeOrder, ImageBasedOrder]

KIND_MODELS = {"3d": CustomCakeOrder, "image": ImageBasedOrder}
TARGET_MODELS = {IntentTarget.CUSTOM_CAKE: CustomCakeOrder, IntentTarget.IMAGE_ORDER: ImageBasedOrder}

# Statuses in which a downpayment may be started
DOWNPAYMENT_OPEN = (CakeStatus.FEASIBLE, CakeStatus.READY_FOR_DOWNPAYMENT)


def target_of(cake: CakeOrder) -> IntentTarget:
    return IntentTarget.IMAGE_ORDER if isinstance(cake, ImageBasedOrder) else IntentTarget.CUSTOM_CAKE


def kind_of(cake: CakeOrder) -> str:
    return "image" if isinstance(cake, ImageBasedOrder) else "3d"


def slot_of(cake: CakeOrder) -> StockUnit:
    if isinstance(cake, ImageBasedOrder):
        return StockUnit.image_order(cake.id)
    return StockUnit.custom_cake(cake.id)


def get_cake(db: Session, kind: str, cake_id: int) -> CakeOrder:
    model = KIND_MODELS.get(kind)
    if model is None:
        raise NotFound("Custom cake kind", kind)
    cake = db.get(model, cake_id)
    if cake is None:
        raise NotFound(model.display_name, cake_id)
    return cake


def get_target(db: Session, target: IntentTarget, target_id: int) -> CakeOrder:
    model = TARGET_MODELS[target]
    cake = db.get(model, target_id)
    if cake is None:
        raise NotFound(model.display_name, target_id)
    return cake


def create_3d(db: Session, user: User, design: dict, price=None) -> CustomCakeOrder:
    """A design with a price goes straight to downpayment; otherwise staff review it first."""
    cake = CustomCakeOrder(user_id=user.id, **design)
    cake.customer_name = cake.customer_name or user.full_name
    cake.customer_email = cake.customer_email or user.email
    cake.customer_phone = cake.customer_phone or user.phone
    if price is not None:
        cake.apply_price(price)
        cake.status = CakeStatus.READY_FOR_DOWNPAYMENT
    else:
        cake.status = CakeStatus.PENDING_REVIEW
    db.add(cake)
    db.flush()
    logger.info("3D custom cake %s created by user %s (%s)", cake.id, user.id, cake.status.value)
    return cake


def create_image_order(db: Session, user: User, data: dict) -> ImageBasedOrder:
    cake = ImageBasedOrder(user_id=user.id, status=CakeStatus.PENDING_REVIEW, **data)
    db.add(cake)
    db.flush()
    logger.info("Image-based order %s created by user %s", cake.id, user.id)
    return cake


def _move(cake: CakeOrder, target: CakeStatus, actor_id: Optional[int]):
    state_machine.check_transition(cake.status, target)
    old = cake.status
    cake.status = target
    cake.updated_by = actor_id
    cake.updated_at = utcnow()
    logger.info("%s %s: %s -> %s", cake.display_name, cake.id, old.value, target.value)


def review(db: Session, cake: CakeOrder, feasible: bool, actor_id: Optional[int] = None) -> CakeOrder:
    _move(cake, CakeStatus.FEASIBLE if feasible else CakeStatus.NOT_FEASIBLE, actor_id)
    db.flush()
    return cake


def set_price(db: Session, cake: CakeOrder, price, actor_id: Optional[int] = None) -> CakeOrder:
    """Price a feasible cake (or re-price one still waiting for its downpayment)."""
    if cake.status == CakeStatus.READY_FOR_DOWNPAYMENT and not cake.is_downpayment_paid:
        cake.apply_price(price)
        cake.updated_by = actor_id
    elif cake.status == CakeStatus.FEASIBLE:
        cake.apply_price(price)
        _move(cake, CakeStatus.READY_FOR_DOWNPAYMENT, actor_id)
    else:
        raise InvalidStatusTransition(cake.status, CakeStatus.READY_FOR_DOWNPAYMENT,
                                      state_machine.CAKE_TRANSITIONS[cake.status])
    db.flush()
    logger.info("%s %s priced at %s (downpayment %s)", cake.display_name, cake.id,
                cake.price, cake.downpayment_amount)
    return cake


def advance(db: Session, cake: CakeOrder, actor_id: Optional[int] = None) -> CakeOrder:
    target = state_machine.next_status(cake.status)
    state_machine.check_staff_advance(cake.status, target)
    if target == CakeStatus.COMPLETED and cake.final_payment_status != FinalPaymentStatus.PAID:
        raise PaymentNotAllowed("The remaining balance must be paid before the order is completed")
    _move(cake, target, actor_id)
    db.flush()
    return cake


def cancel(db: Session, cake: CakeOrder, actor_id: Optional[int] = None) -> CakeOrder:
    state_machine.check_cancel(cake.status)
    _move(cake, CakeStatus.CANCELLED, actor_id)
    # Release the production slot taken by a paid downpayment
    if stock_ledger.available(db, slot_of(cake)) < stock_ledger.SLOT_CAPACITY:
        stock_ledger.credit(db, slot_of(cake), 1, user_id=actor_id,
                            reason=f"{kind_of(cake)} cake #{cake.id} cancelled")
    db.flush()
    return cake


def check_downpayment_allowed(cake: CakeOrder):
    if cake.is_downpayment_paid:
        raise PaymentNotAllowed("The downpayment has already been paid")
    if cake.status not in DOWNPAYMENT_OPEN:
        raise PaymentNotAllowed(f"A downpayment cannot be made while the order is '{cake.status.value}'")
    if cake.price is None:
        raise PaymentNotAllowed("The order has not been priced yet")


def check_balance_allowed(cake: CakeOrder):
    if not cake.is_downpayment_paid:
        raise PaymentNotAllowed("The remaining balance can only be paid after the downpayment")
    if cake.final_payment_status != FinalPaymentStatus.PENDING:
        raise PaymentNotAllowed("The remaining balance has already been paid")
    if state_machine.is_terminal(cake.status):
        raise PaymentNotAllowed(f"Payments are closed for orders in '{cake.status.value}'")


def record_downpayment(db: Session, cake: CakeOrder, user_id: Optional[int] = None):
    """Debit the production slot and mark the downpayment paid. The caller commits."""
    check_downpayment_allowed(cake)
    state_machine.check_transition(cake.status, CakeStatus.DOWNPAYMENT_PAID)
    stock_ledger.debit(db, slot_of(cake), 1, user_id=user_id,
                       reason=f"{kind_of(cake)} cake #{cake.id} downpayment")
    cake.is_downpayment_paid = True
    cake.downpayment_paid_at = utcnow()
    cake.status = CakeStatus.DOWNPAYMENT_PAID
    cake.updated_at = utcnow()
    db.flush()


def record_balance(db: Session, cake: CakeOrder, payment_method: PaymentMethod) -> Order:
    """Mark the balance paid and write the order that makes it visible in history."""
    check_balance_allowed(cake)
    cake.final_payment_status = FinalPaymentStatus.PAID
    cake.payment_status = CakePaymentStatus.PAID
    cake.updated_at = utcnow()

    amount = Decimal(cake.remaining_balance)
    line = OrderItem(item_name=cake.display_name, size_name=cake.size, qty=1,
                     unit_price=amount, line_total=amount)
    if isinstance(cake, ImageBasedOrder):
        line.image_order_id = cake.id
    else:
        line.custom_cake_id = cake.id

    owner = cake.owner
    order = Order(
        user_id=cake.user_id,
        status=OrderStatus.PROCESSING,
        total_amount=amount,
        payment_method=payment_method,
        payment_verified=True,
        # The production slot was committed with the downpayment
        stock_committed=True,
        delivery_method=DeliveryMethod(cake.delivery_method or "pickup"),
        delivery_address=cake.delivery_address,
        scheduled_date=cake.delivery_date.date() if cake.delivery_date else None,
        customer_name=owner.full_name if owner else None,
        customer_email=owner.email if owner else None,
        customer_phone=owner.phone if owner else None,
        items=[line],
    )
    order.check_total()
    db.add(order)
    db.flush()
    logger.info("Balance of %s recorded for %s %s (order %s)", amount, cake.display_name, cake.id, order.id)
    return order


def confirm_cash_balance(db: Session, cake: CakeOrder, actor_id: Optional[int] = None) -> Order:
    order = record_balance(db, cake, PaymentMethod.CASH)
    cake.updated_by = actor_id
    return order
