# backend/routes/menu.py
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session, selectinload

from database import get_db
from models.menu import MenuItem
from schemas.menu import MenuItemOut, ItemSizeOut

router = APIRouter(prefix="/menu", tags=["Menu"])


# Only active sizes are sellable, so hide the rest
def _item_to_out(item: MenuItem) -> MenuItemOut:
    return MenuItemOut(
        id=item.id, name=item.name, category=item.category, description=item.description,
        image_url=item.image_url, has_sizes=item.has_sizes, base_price=float(item.base_price),
        stock=item.stock,
        sizes=[ItemSizeOut(id=s.id, size_name=s.size_name, price=float(s.price), stock=s.stock)
               for s in item.sizes if s.is_active],
    )


# Active menu items with their sizes and current availability
@router.get("", response_model=List[MenuItemOut])
def list_menu(
    category: Optional[str] = Query(None),
    available_only: bool = Query(False),
    db: Session = Depends(get_db),
):
    query = db.query(MenuItem).options(selectinload(MenuItem.sizes)).filter(MenuItem.is_active.is_(True))
    if category:
        query = query.filter(MenuItem.category.ilike(category))
    items = [_item_to_out(it) for it in query.order_by(MenuItem.category, MenuItem.name).all()]

    if available_only:
        items = [it for it in items if (any(s.stock > 0 for s in it.sizes) if it.has_sizes else it.stock > 0)]
    return items


@router.get("/categories", response_model=List[str])
def list_categories(db: Session = Depends(get_db)):
    rows = db.query(MenuItem.category).filter(MenuItem.is_active.is_(True)).distinct().all()
    return sorted(c[0] for c in rows)
