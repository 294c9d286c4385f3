# backend/services/reaper.py
"""Abandoned-checkout reaper.

Held ``pending_payment`` orders never debited stock, so cancelling them needs
no compensation: the held lines are dropped and the open intents expire. A
payment that still arrives later is settled from the intent snapshot.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from config import settings
from models.order import Order, OrderItem, OrderStatus
from models.payment import PaymentIntent, IntentStatus
from utils.audit import write_log
from utils.clock import utcnow

logger = logging.getLogger(__name__)


def cancel_abandoned_orders(db: Session, now: Optional[datetime] = None,
                            timeout_minutes: Optional[int] = None) -> List[int]:
    """Cancel held orders older than the timeout. Returns the cancelled order ids."""
    now = now or utcnow()
    timeout_minutes = timeout_minutes if timeout_minutes is not None else settings.ABANDONED_ORDER_TIMEOUT_MINUTES
    cutoff = now - timedelta(minutes=timeout_minutes)

    stale_ids = [
        oid for (oid,) in db.query(Order.id)
        .filter(Order.status == OrderStatus.PENDING_PAYMENT, Order.created_at < cutoff)
        .order_by(Order.id)
        .all()
    ]

    cancelled = []
    for order_id in stale_ids:
        # A reconciliation may have promoted the order since the select
        changed = db.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == OrderStatus.PENDING_PAYMENT)
            .values(status=OrderStatus.CANCELLED, updated_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount
        if changed != 1:
            db.rollback()
            continue

        db.query(OrderItem).filter(OrderItem.order_id == order_id).delete(synchronize_session=False)
        db.execute(
            update(PaymentIntent)
            .where(PaymentIntent.order_id == order_id, PaymentIntent.status == IntentStatus.PENDING)
            .values(status=IntentStatus.EXPIRED)
            .execution_options(synchronize_session=False)
        )
        write_log(db, user_id=None, action="ORDER_ABANDONED", resource="orders", resource_id=order_id,
                  meta={"cutoff": cutoff.isoformat()}, commit=False)
        db.commit()
        cancelled.append(order_id)

    if cancelled:
        logger.info("Reaper cancelled %s abandoned order(s): %s", len(cancelled), cancelled)
    db.expire_all()
    return cancelled


async def run_reaper_forever(session_factory, interval_seconds: Optional[int] = None):
    interval = interval_seconds or settings.REAPER_INTERVAL_SECONDS
    logger.info("Reaper started (every %ss, timeout %s min)", interval, settings.ABANDONED_ORDER_TIMEOUT_MINUTES)
    while True:
        db = session_factory()
        try:
            cancel_abandoned_orders(db)
        except Exception:
            db.rollback()
            logger.exception("Reaper pass failed")
        finally:
            db.close()
        await asyncio.sleep(interval)
