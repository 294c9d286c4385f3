# backend/services/cart_sweep.py
"""Post-purchase repair of other customers' carts.

Carts hold no reservations, so after a purchase drains a unit, other carts may
still ask for it. The sweep shrinks those lines, or marks them as swept when
nothing is left. A swept line fails that customer's checkout with
InsufficientStock and is dropped the next time they view the cart.

The sweep is best effort: each line runs in its own savepoint and errors are
logged and collected, never raised to the purchase that triggered it.
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from models.cart import Cart, CartItem
from services import stock_ledger
from services.stock_ledger import StockUnit, UnitKind
from utils.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    removed: List[dict] = field(default_factory=list)
    reduced: List[dict] = field(default_factory=list)
    errors: List[dict] = field(default_factory=list)

    @property
    def actions(self) -> int:
        return len(self.removed) + len(self.reduced)

    def merge(self, other: "SweepResult"):
        self.removed.extend(other.removed)
        self.reduced.extend(other.reduced)
        self.errors.extend(other.errors)


def _lines_for_unit(db: Session, unit: StockUnit, exclude_user_id: Optional[int]):
    q = db.query(CartItem).join(Cart).filter(CartItem.swept_at.is_(None))
    if unit.kind == UnitKind.SIZE:
        q = q.filter(CartItem.size_id == unit.id)
    else:
        q = q.filter(CartItem.menu_item_id == unit.id, CartItem.size_id.is_(None))
    if exclude_user_id is not None:
        q = q.filter(Cart.user_id != exclude_user_id)
    return q.order_by(CartItem.id).all()


def _repair_line(db: Session, line: CartItem, available: int, result: SweepResult, mark: bool = False):
    allowed = max(0, available)
    if line.qty <= allowed:
        return
    entry = {
        "cart_item_id": line.id,
        "user_id": line.cart.user_id,
        "menu_item_id": line.menu_item_id,
        "size_id": line.size_id,
    }
    if allowed == 0:
        entry["quantity"] = line.qty
        if mark:
            line.swept_at = utcnow()
            logger.info("Swept cart item %s for user %s (qty %s)", line.id, entry["user_id"], line.qty)
        else:
            db.delete(line)
            logger.info("Removed cart item %s for user %s (qty %s)", line.id, entry["user_id"], line.qty)
        db.flush()
        result.removed.append(entry)
    else:
        entry.update(old_quantity=line.qty, new_quantity=allowed)
        line.qty = allowed
        db.flush()
        result.reduced.append(entry)
        logger.info("Reduced cart item %s for user %s from %s to %s",
                    line.id, entry["user_id"], entry["old_quantity"], allowed)


def sweep_unit(db: Session, unit: StockUnit, exclude_user_id: Optional[int] = None) -> SweepResult:
    result = SweepResult()
    if unit.kind not in (UnitKind.ITEM, UnitKind.SIZE):
        return result

    available = stock_ledger.available(db, unit)
    for line in _lines_for_unit(db, unit, exclude_user_id):
        line_id = line.id
        try:
            with db.begin_nested():
                _repair_line(db, line, available, result, mark=True)
        except Exception as e:
            logger.exception("Cart sweep failed for cart item %s (%s)", line_id, unit)
            result.errors.append({"cart_item_id": line_id, "unit": str(unit), "error": str(e)})
    return result


def sweep_after_purchase(db: Session, units: Iterable[StockUnit], buyer_id: Optional[int]) -> SweepResult:
    """Repair other carts for every unit the purchase exhausted, then commit.

    Call only after the purchase itself has been committed.
    """
    total = SweepResult()
    for unit in dict.fromkeys(units):
        try:
            if stock_ledger.available(db, unit) > 0:
                continue
            total.merge(sweep_unit(db, unit, exclude_user_id=buyer_id))
        except Exception as e:
            logger.exception("Cart sweep aborted for %s", unit)
            total.errors.append({"unit": str(unit), "error": str(e)})
    try:
        db.commit()
    except Exception as e:
        db.rollback()
        logger.exception("Cart sweep commit failed")
        total.errors.append({"error": str(e)})

    if total.actions:
        logger.info("Cart sweep completed: removed=%s reduced=%s errors=%s",
                    len(total.removed), len(total.reduced), len(total.errors))
    if total.errors:
        logger.error("Cart sweep errors: %s", total.errors)
    return total


def validate_cart(db: Session, cart: Cart) -> SweepResult:
    """Bring one customer's cart in line with current stock (does not commit)."""
    result = SweepResult()
    for line in list(cart.items):
        unit = StockUnit.for_line(line.menu_item_id, line.size_id)
        line_id = line.id
        try:
            with db.begin_nested():
                if line.swept_at is not None or not stock_ledger.is_sellable(db, unit):
                    current = 0
                else:
                    current = stock_ledger.available(db, unit)
                _repair_line(db, line, current, result)
        except Exception as e:
            logger.exception("Cart validation failed for cart item %s", line_id)
            result.errors.append({"cart_item_id": line_id, "unit": str(unit), "error": str(e)})
    if result.removed:
        db.expire(cart, ["items"])
    return result
