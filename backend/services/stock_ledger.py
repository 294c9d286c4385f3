# backend/services/stock_ledger.py
"""Authoritative inventory counts.

Every change to a purchasable quantity goes through :func:`debit` or
:func:`credit`. Both are single compare-and-swap UPDATE statements, so two
concurrent debits can never both succeed against the same last unit. Neither
function commits: the caller owns the transaction.
"""
import enum
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from models.menu import MenuItem, ItemSize
from models.custom_cake import CustomCakeOrder, ImageBasedOrder
from models.stock import StockMovement, MovementType
from services.errors import InsufficientStock

logger = logging.getLogger(__name__)


class UnitKind(str, enum.Enum):
    ITEM = "item"
    SIZE = "size"
    CUSTOM_CAKE = "custom_cake"
    IMAGE_ORDER = "image_order"


@dataclass(frozen=True)
class StockUnit:
    kind: UnitKind
    id: int

    @classmethod
    def item(cls, menu_item_id: int) -> "StockUnit":
        return cls(UnitKind.ITEM, menu_item_id)

    @classmethod
    def size(cls, size_id: int) -> "StockUnit":
        return cls(UnitKind.SIZE, size_id)

    @classmethod
    def custom_cake(cls, cake_id: int) -> "StockUnit":
        return cls(UnitKind.CUSTOM_CAKE, cake_id)

    @classmethod
    def image_order(cls, order_id: int) -> "StockUnit":
        return cls(UnitKind.IMAGE_ORDER, order_id)

    @classmethod
    def for_line(cls, menu_item_id: int, size_id: Optional[int]) -> "StockUnit":
        # Sized items keep their stock on the size row
        return cls.size(size_id) if size_id is not None else cls.item(menu_item_id)

    def __str__(self):
        return f"{self.kind.value}:{self.id}"


# Custom-cake slots never hold more than one unit
SLOT_CAPACITY = 1


def _quantity_column(unit: StockUnit):
    if unit.kind == UnitKind.ITEM:
        return MenuItem, MenuItem.stock
    if unit.kind == UnitKind.SIZE:
        return ItemSize, ItemSize.stock
    if unit.kind == UnitKind.CUSTOM_CAKE:
        return CustomCakeOrder, CustomCakeOrder.slot_available
    return ImageBasedOrder, ImageBasedOrder.slot_available


def _sellable_criteria(unit: StockUnit):
    """Extra WHERE clauses a unit must satisfy to be debited."""
    if unit.kind == UnitKind.ITEM:
        return [MenuItem.is_active.is_(True)]
    if unit.kind == UnitKind.SIZE:
        active_items = select(MenuItem.id).where(MenuItem.is_active.is_(True))
        return [ItemSize.is_active.is_(True), ItemSize.menu_item_id.in_(active_items)]
    return []


def available(db: Session, unit: StockUnit) -> int:
    """Current count for the unit; 0 if it does not exist."""
    model, column = _quantity_column(unit)
    value = db.execute(select(column).where(model.id == unit.id)).scalar_one_or_none()
    return int(value or 0)


def is_sellable(db: Session, unit: StockUnit) -> bool:
    model, _ = _quantity_column(unit)
    stmt = select(model.id).where(model.id == unit.id, *_sellable_criteria(unit))
    return db.execute(stmt).scalar_one_or_none() is not None


def describe(db: Session, unit: StockUnit) -> Tuple[Optional[str], Optional[str]]:
    """(item name, size name) for messages."""
    if unit.kind == UnitKind.SIZE:
        size = db.get(ItemSize, unit.id)
        if size is None:
            return None, None
        return (size.menu_item.name if size.menu_item else None), size.size_name
    if unit.kind == UnitKind.ITEM:
        item = db.get(MenuItem, unit.id)
        return (item.name if item else None), None
    model, _ = _quantity_column(unit)
    return model.display_name, None


def _journal(db: Session, unit: StockUnit, qty: int, type_: MovementType, balance_after: int,
             order_id=None, user_id=None, reason=None):
    movement = StockMovement(qty=qty, type=type_, balance_after=balance_after,
                             order_id=order_id, user_id=user_id, reason=reason)
    if unit.kind == UnitKind.ITEM:
        movement.menu_item_id = unit.id
    elif unit.kind == UnitKind.SIZE:
        movement.size_id = unit.id
        movement.menu_item_id = db.execute(
            select(ItemSize.menu_item_id).where(ItemSize.id == unit.id)
        ).scalar_one_or_none()
    elif unit.kind == UnitKind.CUSTOM_CAKE:
        movement.custom_cake_id = unit.id
    else:
        movement.image_order_id = unit.id
    db.add(movement)
    return movement


def debit(db: Session, unit: StockUnit, qty: int, *, order_id=None, user_id=None, reason=None,
          movement_type: MovementType = MovementType.DEBIT) -> int:
    """Consume ``qty`` units and return the new available count.

    Raises InsufficientStock when fewer than ``qty`` units are available, or
    when the unit is unknown or no longer sold.
    """
    if qty <= 0:
        raise ValueError("debit quantity must be positive")

    model, column = _quantity_column(unit)
    stmt = (
        update(model)
        .where(model.id == unit.id, column >= qty, *_sellable_criteria(unit))
        .values({column: column - qty})
        .execution_options(synchronize_session="fetch")
    )
    result = db.execute(stmt)
    if result.rowcount != 1:
        current = available(db, unit) if is_sellable(db, unit) else 0
        name, size = describe(db, unit)
        logger.info("Debit rejected for %s: requested=%s available=%s", unit, qty, current)
        raise InsufficientStock(unit, qty, current, name=name, size=size)

    new_available = available(db, unit)
    _journal(db, unit, -qty, movement_type, new_available, order_id, user_id, reason)
    logger.debug("Debited %s x%s -> %s left", unit, qty, new_available)
    return new_available


def credit(db: Session, unit: StockUnit, qty: int, *, order_id=None, user_id=None, reason=None,
           movement_type: MovementType = MovementType.CREDIT) -> int:
    """Return ``qty`` units to stock and return the new available count."""
    if qty <= 0:
        raise ValueError("credit quantity must be positive")

    model, column = _quantity_column(unit)
    criteria = [model.id == unit.id]
    if unit.kind in (UnitKind.CUSTOM_CAKE, UnitKind.IMAGE_ORDER):
        criteria.append(column + qty <= SLOT_CAPACITY)
    stmt = (
        update(model)
        .where(*criteria)
        .values({column: column + qty})
        .execution_options(synchronize_session="fetch")
    )
    result = db.execute(stmt)
    if result.rowcount != 1:
        raise ValueError(f"Cannot credit {qty} to {unit}")

    new_available = available(db, unit)
    _journal(db, unit, qty, movement_type, new_available, order_id, user_id, reason)
    return new_available
