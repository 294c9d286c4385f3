# backend/services/checkout.py
"""Turning carts into orders, and the staff side of the order lifecycle.

Each payment method has exactly one commit mode:

* ``COMMIT_NOW`` (cash): stock is debited while the order is written.
* ``COMMIT_ON_CONFIRM`` (gcash): checkout only writes a held
  ``pending_payment`` order; the reconciler performs the create+debit once
  the processor reports the payment as paid.
"""
import enum
import logging
from dataclasses import dataclass, asdict
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from models.cart import Cart, CartItem
from models.menu import MenuItem, ItemSize
from models.order import Order, OrderItem, OrderStatus, PaymentMethod, DeliveryMethod
from models.users import User
from services import stock_ledger, state_machine
from services.errors import CheckoutValidationError, InsufficientStock, InvalidStatusTransition, NotFound
from services.stock_ledger import StockUnit
from utils.clock import utcnow

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


class CommitMode(str, enum.Enum):
    COMMIT_NOW = "commit_now"
    COMMIT_ON_CONFIRM = "commit_on_confirm"


COMMIT_MODES = {
    PaymentMethod.CASH: CommitMode.COMMIT_NOW,
    PaymentMethod.GCASH: CommitMode.COMMIT_ON_CONFIRM,
}


@dataclass
class CheckoutDetails:
    payment_method: PaymentMethod
    delivery_method: DeliveryMethod = DeliveryMethod.PICKUP
    delivery_address: Optional[str] = None
    scheduled_date: Optional[date] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None

    def to_snapshot(self) -> dict:
        data = asdict(self)
        data["payment_method"] = self.payment_method.value
        data["delivery_method"] = self.delivery_method.value
        data["scheduled_date"] = self.scheduled_date.isoformat() if self.scheduled_date else None
        return data

    @classmethod
    def from_snapshot(cls, data: dict) -> "CheckoutDetails":
        data = dict(data)
        data["payment_method"] = PaymentMethod(data["payment_method"])
        data["delivery_method"] = DeliveryMethod(data["delivery_method"])
        if data.get("scheduled_date"):
            data["scheduled_date"] = date.fromisoformat(data["scheduled_date"])
        return cls(**data)


# One priced line, ready to become an OrderItem
@dataclass
class LineDraft:
    menu_item_id: int
    size_id: Optional[int]
    item_name: str
    size_name: Optional[str]
    qty: int
    unit_price: Decimal
    cart_item_id: Optional[int] = None

    @property
    def unit(self) -> StockUnit:
        return StockUnit.for_line(self.menu_item_id, self.size_id)

    @property
    def line_total(self) -> Decimal:
        return (self.unit_price * self.qty).quantize(CENTS)

    def to_snapshot(self) -> dict:
        data = asdict(self)
        data["unit_price"] = str(self.unit_price)
        return data

    @classmethod
    def from_snapshot(cls, data: dict) -> "LineDraft":
        data = dict(data)
        data["unit_price"] = Decimal(data["unit_price"])
        return cls(**data)


def commit_mode_for(payment_method: PaymentMethod) -> CommitMode:
    return COMMIT_MODES[PaymentMethod(payment_method)]


def validate_details(details: CheckoutDetails, today: Optional[date] = None):
    today = today or utcnow().date()
    if details.delivery_method == DeliveryMethod.DELIVERY and not (details.delivery_address or "").strip():
        raise CheckoutValidationError("A delivery address is required for delivery orders")
    if details.scheduled_date is not None and details.scheduled_date < today:
        raise CheckoutValidationError("Scheduled date cannot be in the past")


def get_cart(db: Session, user_id: int) -> Optional[Cart]:
    return db.query(Cart).filter(Cart.user_id == user_id).first()


# Price every cart line at the current catalog price and reject what cannot be sold
def price_cart(db: Session, cart: Optional[Cart]) -> List[LineDraft]:
    if cart is None or not cart.items:
        raise CheckoutValidationError("Cart is empty")

    lines = []
    for ci in cart.items:
        item = db.get(MenuItem, ci.menu_item_id)
        size = db.get(ItemSize, ci.size_id) if ci.size_id is not None else None
        unit = StockUnit.for_line(ci.menu_item_id, ci.size_id)
        sellable = item is not None and stock_ledger.is_sellable(db, unit)
        current = stock_ledger.available(db, unit) if sellable else 0
        # A swept line stays blocked until its stock comes back
        if not sellable or (ci.swept_at is not None and current < ci.qty):
            raise InsufficientStock(unit, ci.qty, current, name=item.name if item else None,
                                    size=size.size_name if size else None, line_id=ci.id)
        price = Decimal(size.price if size is not None else item.base_price)
        lines.append(LineDraft(
            menu_item_id=item.id, size_id=size.id if size else None,
            item_name=item.name, size_name=size.size_name if size else None,
            qty=ci.qty, unit_price=price, cart_item_id=ci.id,
        ))
    return lines


# Early, non-authoritative availability check; the debit is what actually decides
def precheck_lines(db: Session, lines: Iterable[LineDraft]):
    for line in lines:
        current = stock_ledger.available(db, line.unit)
        if current < line.qty:
            raise InsufficientStock(line.unit, line.qty, current, name=line.item_name,
                                    size=line.size_name, line_id=line.cart_item_id)


def build_order(db: Session, user_id: int, lines: List[LineDraft], details: CheckoutDetails,
                status: OrderStatus, total_amount: Optional[Decimal] = None) -> Order:
    """Write an order with snapshotted lines. ``total_amount`` defaults to the line sum."""
    items = [
        OrderItem(menu_item_id=l.menu_item_id, size_id=l.size_id, item_name=l.item_name,
                  size_name=l.size_name, qty=l.qty, unit_price=l.unit_price, line_total=l.line_total)
        for l in lines
    ]
    computed = sum((it.line_total for it in items), Decimal("0.00"))
    order = Order(
        user_id=user_id,
        status=status,
        total_amount=computed if total_amount is None else Decimal(total_amount),
        payment_method=details.payment_method,
        delivery_method=details.delivery_method,
        delivery_address=details.delivery_address,
        scheduled_date=details.scheduled_date,
        customer_name=details.customer_name,
        customer_email=details.customer_email,
        customer_phone=details.customer_phone,
        items=items,
    )
    order.check_total()
    db.add(order)
    db.flush()
    return order


def debit_lines(db: Session, order: Order, lines: List[LineDraft], user_id: Optional[int]) -> List[StockUnit]:
    """Debit every line in the caller's transaction; the first shortfall aborts."""
    units = []
    for line in lines:
        try:
            stock_ledger.debit(db, line.unit, line.qty, order_id=order.id, user_id=user_id,
                               reason=f"order #{order.id}")
        except InsufficientStock as e:
            raise e.for_line(name=line.item_name, size=line.size_name, line_id=line.cart_item_id)
        units.append(line.unit)
    order.stock_committed = True
    return units


# Remove (or shrink) the buyer's cart lines covered by a purchase
def clear_purchased(db: Session, user_id: int, lines: Iterable[LineDraft]):
    cart = get_cart(db, user_id)
    if cart is None:
        return
    for line in lines:
        ci = (
            db.query(CartItem)
            .filter(CartItem.cart_id == cart.id, CartItem.menu_item_id == line.menu_item_id,
                    CartItem.size_id.is_(None) if line.size_id is None else CartItem.size_id == line.size_id)
            .first()
        )
        if ci is None:
            continue
        if ci.qty > line.qty:
            ci.qty -= line.qty
        else:
            db.delete(ci)
    db.flush()


def lines_from_order(order: Order) -> List[LineDraft]:
    return [
        LineDraft(menu_item_id=it.menu_item_id, size_id=it.size_id, item_name=it.item_name,
                  size_name=it.size_name, qty=it.qty, unit_price=Decimal(it.unit_price))
        for it in order.items if it.menu_item_id is not None
    ]


def details_from_order(order: Order) -> CheckoutDetails:
    return CheckoutDetails(
        payment_method=order.payment_method, delivery_method=order.delivery_method,
        delivery_address=order.delivery_address, scheduled_date=order.scheduled_date,
        customer_name=order.customer_name, customer_email=order.customer_email,
        customer_phone=order.customer_phone,
    )


def order_snapshot(order: Order) -> dict:
    return {
        "lines": [l.to_snapshot() for l in lines_from_order(order)],
        "details": details_from_order(order).to_snapshot(),
    }


def _contact_defaults(details: CheckoutDetails, user: User):
    details.customer_name = details.customer_name or user.full_name
    details.customer_email = details.customer_email or user.email
    details.customer_phone = details.customer_phone or user.phone


def place_cash_order(db: Session, user: User, details: CheckoutDetails):
    """Commit-now checkout. Returns (order, debited units); the caller commits."""
    validate_details(details)
    _contact_defaults(details, user)
    lines = price_cart(db, get_cart(db, user.id))

    order = build_order(db, user.id, lines, details, OrderStatus.PENDING)
    units = debit_lines(db, order, lines, user.id)
    clear_purchased(db, user.id, lines)
    logger.info("Cash order %s placed by user %s (total %s)", order.id, user.id, order.total_amount)
    return order, units


def hold_async_order(db: Session, user: User, details: CheckoutDetails) -> Order:
    """Commit-on-confirm checkout: a held order with no stock debited. The caller commits."""
    validate_details(details)
    _contact_defaults(details, user)
    lines = price_cart(db, get_cart(db, user.id))
    precheck_lines(db, lines)

    order = build_order(db, user.id, lines, details, OrderStatus.PENDING_PAYMENT)
    logger.info("Held order %s for user %s awaiting payment (total %s)", order.id, user.id, order.total_amount)
    return order


def get_order(db: Session, order_id: int) -> Order:
    order = db.get(Order, order_id)
    if order is None:
        raise NotFound("Order", order_id)
    return order


def _cas_status(db: Session, order: Order, current: OrderStatus, target: OrderStatus, **values) -> bool:
    stmt = (
        update(Order)
        .where(Order.id == order.id, Order.status == current)
        .values(status=target, updated_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    changed = db.execute(stmt).rowcount == 1
    db.refresh(order)
    return changed


def advance_order(db: Session, order: Order, target: Optional[OrderStatus] = None) -> Order:
    """Move an order one step along the staff table. The caller commits."""
    current = order.status
    target = target or state_machine.next_status(current)
    state_machine.check_staff_advance(current, target)
    state_machine.check_transition(current, target)

    extra = {}
    if current == OrderStatus.PENDING and order.payment_method == PaymentMethod.CASH:
        extra["payment_verified"] = True
    if not _cas_status(db, order, current, target, **extra):
        raise InvalidStatusTransition(order.status, target,
                                                    state_machine.ORDER_TRANSITIONS[order.status])
    logger.info("Order %s advanced %s -> %s", order.id, current.value, target.value)
    return order


def cancel_order(db: Session, order: Order, actor_id: Optional[int] = None) -> Order:
    """Cancel a non-terminal order, crediting stock back if it was committed. The caller commits."""
    current = order.status
    state_machine.check_cancel(current)
    was_committed = order.stock_committed

    if not _cas_status(db, order, current, OrderStatus.CANCELLED, stock_committed=False):
        raise InvalidStatusTransition(order.status, OrderStatus.CANCELLED,
                                                    state_machine.ORDER_TRANSITIONS[order.status])

    if was_committed:
        for it in order.items:
            if it.menu_item_id is None:
                continue
            stock_ledger.credit(db, StockUnit.for_line(it.menu_item_id, it.size_id), it.qty,
                                order_id=order.id, user_id=actor_id, reason=f"order #{order.id} cancelled")
    elif current == OrderStatus.PENDING_PAYMENT:
        # Held lines were never authoritative
        for it in list(order.items):
            db.delete(it)
        db.flush()
        db.expire(order, ["items"])
    logger.info("Order %s cancelled from %s (restocked=%s)", order.id, current.value, was_committed)
    return order
