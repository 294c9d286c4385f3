# backend/routes/cart.py
from decimal import Decimal
from fastapi import APIRouter, Depends, status, Request
from sqlalchemy.orm import Session

from database import get_db
from utils.tokenJWT import get_current_user
from utils.audit import write_log
from models.users import User
from models.menu import MenuItem, ItemSize
from models.cart import Cart, CartItem
from schemas.cart import CartAddItem, CartUpdateItem, CartOut, CartItemOut, CartAdjustment
from services import stock_ledger
from services.cart_sweep import validate_cart
from services.errors import CheckoutValidationError, InsufficientStock, NotFound
from services.stock_ledger import StockUnit

router = APIRouter(prefix="/cart", tags=["Cart"])


def _get_cart(db: Session, user_id: int) -> Cart:
    # Retrieve the customer's cart or create a new one
    cart = db.query(Cart).filter(Cart.user_id == user_id).first()
    if not cart:
        cart = Cart(user_id=user_id)
        db.add(cart)
        db.commit()
        db.refresh(cart)
    return cart


def _resolve_unit(db: Session, menu_item_id: int, size_id):
    """Return (item, size, unit) for a sellable menu unit."""
    item = db.get(MenuItem, menu_item_id)
    if item is None or not item.is_active:
        raise NotFound("Menu item", menu_item_id)
    size = None
    if item.has_sizes:
        if size_id is None:
            raise CheckoutValidationError(f"Choose a size for {item.name}")
        size = db.get(ItemSize, size_id)
        if size is None or size.menu_item_id != item.id or not size.is_active:
            raise NotFound("Size", size_id)
    elif size_id is not None:
        raise CheckoutValidationError(f"{item.name} is not sold in sizes")
    return item, size, StockUnit.for_line(item.id, size.id if size else None)


def _check_available(db: Session, unit: StockUnit, qty: int, item, size, line_id=None):
    current = stock_ledger.available(db, unit)
    if qty > current:
        raise InsufficientStock(unit, qty, current, name=item.name,
                                size=size.size_name if size else None, line_id=line_id)


def _cart_to_out(db: Session, cart: Cart, adjustments=None) -> CartOut:
    items_out = []
    total = Decimal("0.00")
    for it in cart.items:
        if it.swept_at is not None:
            continue
        price = Decimal(it.unit_price_snapshot)
        line_total = price * it.qty
        total += line_total
        items_out.append(CartItemOut(
            id=it.id,
            menu_item_id=it.menu_item_id,
            size_id=it.size_id,
            name=it.menu_item.name if it.menu_item else "",
            size_name=it.size.size_name if it.size else None,
            qty=it.qty,
            available=stock_ledger.available(db, StockUnit.for_line(it.menu_item_id, it.size_id)),
            unit_price=float(price),
            line_total=float(line_total),
        ))
    return CartOut(items=items_out, total=float(total), adjustments=adjustments or [])


# View the cart; lines that can no longer be satisfied are repaired first
@router.get("", response_model=CartOut)
def get_cart(
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    cart = _get_cart(db, current_user.id)
    result = validate_cart(db, cart)
    db.commit()
    db.refresh(cart)

    adjustments = [CartAdjustment(cart_item_id=r["cart_item_id"], old_quantity=r["quantity"], new_quantity=0)
                   for r in result.removed]
    adjustments += [CartAdjustment(cart_item_id=r["cart_item_id"], old_quantity=r["old_quantity"],
                                   new_quantity=r["new_quantity"]) for r in result.reduced]
    out = _cart_to_out(db, cart, adjustments)

    if adjustments:
        write_log(db, user_id=current_user.id, action="CART_REPAIR", resource="cart",
                  ip=request.client.host, meta={"adjustments": len(adjustments)})
    return out


@router.post("/add", response_model=CartOut, status_code=status.HTTP_200_OK)
def add_to_cart(
    payload: CartAddItem,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    cart = _get_cart(db, current_user.id)
    item, size, unit = _resolve_unit(db, payload.menu_item_id, payload.size_id)

    line = db.query(CartItem).filter(
        CartItem.cart_id == cart.id,
        CartItem.menu_item_id == item.id,
        CartItem.size_id.is_(None) if size is None else CartItem.size_id == size.id,
    ).first()

    # Same item + size merges into the existing line; a swept line starts over
    kept = line.qty if line is not None and line.swept_at is None else 0
    new_qty = payload.qty + kept
    _check_available(db, unit, new_qty, item, size, line.id if line else None)

    price = size.price if size is not None else item.base_price
    if line:
        line.qty = new_qty
        line.unit_price_snapshot = price
        line.swept_at = None
    else:
        line = CartItem(cart_id=cart.id, menu_item_id=item.id, size_id=size.id if size else None,
                        qty=new_qty, unit_price_snapshot=price)
        db.add(line)

    db.commit()
    db.refresh(cart)

    out = _cart_to_out(db, cart)
    write_log(
        db,
        user_id=current_user.id,
        action="CART_ADD",
        resource="cart",
        ip=request.client.host,
        meta={"menu_item_id": item.id, "size_id": payload.size_id, "qty": payload.qty, "total": out.total},
    )
    return out


@router.put("/items/{item_id}", response_model=CartOut)
def update_cart_item(
    item_id: int,
    payload: CartUpdateItem,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    cart = _get_cart(db, current_user.id)
    line = db.query(CartItem).filter(CartItem.id == item_id, CartItem.cart_id == cart.id).first()
    if not line:
        raise NotFound("Cart item", item_id)

    # Validate stock for the new quantity
    item, size, unit = _resolve_unit(db, line.menu_item_id, line.size_id)
    _check_available(db, unit, payload.qty, item, size, line.id)

    line.qty = payload.qty
    line.swept_at = None
    db.commit()
    db.refresh(cart)

    out = _cart_to_out(db, cart)
    write_log(db, user_id=current_user.id, action="CART_UPDATE", resource="cart", ip=request.client.host,
              meta={"item_id": item_id, "qty": payload.qty, "total": out.total})
    return out


@router.delete("/items/{item_id}", response_model=CartOut)
def delete_cart_item(
    item_id: int,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    cart = _get_cart(db, current_user.id)
    line = db.query(CartItem).filter(CartItem.id == item_id, CartItem.cart_id == cart.id).first()
    if not line:
        raise NotFound("Cart item", item_id)

    db.delete(line)
    db.commit()
    db.refresh(cart)

    out = _cart_to_out(db, cart)
    write_log(db, user_id=current_user.id, action="CART_DELETE", resource="cart", ip=request.client.host,
              meta={"item_id": item_id, "cart_items": len(out.items), "total": out.total})
    return out
