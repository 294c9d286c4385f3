"""Seed a development database with a small bakery menu and a staff account.

Usage: python populate_db.py [--staff-email EMAIL] [--staff-password PASSWORD]
"""
import argparse
import logging
from decimal import Decimal

from database import SessionLocal, init_db
from models.menu import MenuItem, ItemSize
from models.users import User
from utils.hashing import get_password_hash

logger = logging.getLogger(__name__)

# (name, category, base price, stock, [(size, price, stock), ...])
MENU = [
    ("Chocolate Cake", "Cakes", "0", 0, [("S", "650.00", 5), ("M", "850.00", 5), ("L", "1200.00", 3)]),
    ("Ube Cheesecake", "Cakes", "0", 0, [("M", "900.00", 4), ("L", "1350.00", 2)]),
    ("Red Velvet Cupcake", "Cupcakes", "75.00", 24, []),
    ("Ensaymada", "Pastries", "55.00", 30, []),
    ("Butter Croissant", "Pastries", "65.00", 20, []),
    ("Iced Latte", "Drinks", "120.00", 50, []),
]


def seed_menu(db) -> int:
    created = 0
    for name, category, base_price, stock, sizes in MENU:
        if db.query(MenuItem).filter(MenuItem.name == name).first():
            continue
        item = MenuItem(name=name, category=category, base_price=Decimal(base_price), stock=stock,
                        has_sizes=bool(sizes), is_active=True)
        item.sizes = [ItemSize(size_name=s, price=Decimal(p), stock=q, is_active=True) for s, p, q in sizes]
        db.add(item)
        created += 1
    db.commit()
    return created


def seed_staff(db, email: str, password: str) -> bool:
    if db.query(User).filter(User.email == email).first():
        return False
    db.add(User(email=email, password_hash=get_password_hash(password), role="staff",
                first_name="Bakery", last_name="Staff"))
    db.commit()
    return True


def main():
    parser = argparse.ArgumentParser(description="Seed the bakery database")
    parser.add_argument("--staff-email", default="staff@bakery.local")
    parser.add_argument("--staff-password", default="change-me")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO)
    init_db()
    db = SessionLocal()
    try:
        items = seed_menu(db)
        staff = seed_staff(db, args.staff_email.lower(), args.staff_password)
        logger.info("Seeded %s menu item(s); staff account %s", items, "created" if staff else "already present")
    finally:
        db.close()


if __name__ == "__main__":
    main()
