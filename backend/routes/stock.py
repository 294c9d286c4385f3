# backend/routes/stock.py
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session
from typing import Optional

from database import get_db
from models.stock import StockMovement, MovementType
from models.menu import MenuItem, ItemSize
from models.users import User
from utils.tokenJWT import staff_required
from utils.audit import write_log
from services import stock_ledger
from services.cart_sweep import sweep_after_purchase
from services.errors import NotFound
from services.stock_ledger import StockUnit
import schemas.stock as stock_schemas

router = APIRouter(prefix="/stock", tags=["Stock"])


def _movement_to_out(m: StockMovement) -> dict:
    name = m.menu_item.name if m.menu_item else None
    if m.size is not None:
        name = f"{name} ({m.size.size_name})" if name else m.size.size_name
    return {
        "id": m.id, "created_at": m.created_at, "menu_item_id": m.menu_item_id, "size_id": m.size_id,
        "custom_cake_id": m.custom_cake_id, "image_order_id": m.image_order_id,
        "qty": m.qty, "type": m.type.value, "reason": m.reason, "balance_after": m.balance_after,
        "order_id": m.order_id, "user_id": m.user_id,
        "item_name": name, "user_email": m.user.email if m.user else "System",
    }


# Ledger journal, newest first
@router.get("/movements", response_model=stock_schemas.StockMovementPage)
def list_movements(
    menu_item_id: Optional[int] = Query(None),
    type: Optional[MovementType] = Query(None),
    order_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(staff_required),
):
    query = db.query(StockMovement)
    if menu_item_id is not None:
        query = query.filter(StockMovement.menu_item_id == menu_item_id)
    if type is not None:
        query = query.filter(StockMovement.type == type)
    if order_id is not None:
        query = query.filter(StockMovement.order_id == order_id)

    total = query.count()
    rows = (query.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
            .offset((page - 1) * page_size).limit(page_size).all())
    return {"items": [_movement_to_out(m) for m in rows], "total": total, "page": page, "page_size": page_size}


# Staff correction (restock, waste, recount) through the ledger
@router.post("/adjust", response_model=stock_schemas.StockMovementResponse)
def adjust_stock(
    payload: stock_schemas.StockAdjustCreate,
    request: Request,
    db: Session = Depends(get_db),
    current_user: User = Depends(staff_required),
):
    if payload.size_id is not None:
        if db.get(ItemSize, payload.size_id) is None:
            raise NotFound("Size", payload.size_id)
        unit = StockUnit.size(payload.size_id)
    else:
        if db.get(MenuItem, payload.menu_item_id) is None:
            raise NotFound("Menu item", payload.menu_item_id)
        unit = StockUnit.item(payload.menu_item_id)

    reason = payload.reason or "manual adjustment"
    if payload.qty > 0:
        stock_ledger.credit(db, unit, payload.qty, user_id=current_user.id, reason=reason,
                            movement_type=MovementType.ADJUSTMENT)
    else:
        # Removing stock is a debit like any other, so it can never go negative
        stock_ledger.debit(db, unit, -payload.qty, user_id=current_user.id, reason=reason,
                           movement_type=MovementType.ADJUSTMENT)
    db.commit()

    movement = (db.query(StockMovement).filter(StockMovement.user_id == current_user.id)
                .order_by(StockMovement.id.desc()).first())
    write_log(db, user_id=current_user.id, action="STOCK_ADJUSTMENT", resource="stock", resource_id=movement.id,
              ip=request.client.host, meta={"unit": str(unit), "qty": payload.qty})

    if payload.qty < 0:
        sweep_after_purchase(db, [unit], buyer_id=None)
    return _movement_to_out(movement)
