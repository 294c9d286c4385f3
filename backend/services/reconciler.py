# backend/services/reconciler.py
"""Payment intents and their reconciliation into local state.

An intent is created before the customer is redirected to the processor.
Its outcome arrives later, by webhook or by client polling, and is applied by
:func:`apply_outcome`. The first trigger to flip the intent out of ``pending``
wins; every later trigger for the same intent is a no-op that reports the
already settled state.
"""
import json
import logging
import secrets
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from config import settings
from models.order import Order, OrderStatus, PaymentMethod
from models.payment import PaymentIntent, IntentPurpose, IntentTarget, IntentStatus
from models.custom_cake import CakePaymentStatus
from models.users import User
from services import cart_sweep, checkout, custom_cakes
from services.errors import (
    AmountBelowMinimum, InsufficientStock, InvalidStatusTransition, InvalidWebhookPayload,
    InvalidWebhookSignature, NotFound, PaymentAmountMismatch, PaymentNotAllowed, PaymentProcessorError,
    PaymentVerificationFailed,
)
from services.stock_ledger import StockUnit
from utils import notifier
from utils.audit import write_log
from utils.clock import utcnow
from utils.paymongo_client import (
    PayMongoClient, PAID, FAILED, PAID_EVENTS, FAILED_EVENTS, verify_webhook_signature,
)

logger = logging.getLogger(__name__)

SETTLEABLE = (IntentStatus.PENDING, IntentStatus.EXPIRED)

# Settlement problems that mean "paid, but nothing to apply it to"
REFUNDABLE_ERRORS = (InsufficientStock, InvalidStatusTransition, PaymentNotAllowed)


@dataclass
class ReconcileResult:
    intent_id: int
    status: IntentStatus
    duplicate: bool = False
    refund_required: bool = False
    order_id: Optional[int] = None
    swept: dict = field(default_factory=dict)


def to_minor(amount) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1")))


def ensure_minimum(amount: int):
    if amount < settings.PAYMENT_MIN_AMOUNT:
        raise AmountBelowMinimum(amount, settings.PAYMENT_MIN_AMOUNT)


def get_by_token(db: Session, token: str) -> PaymentIntent:
    intent = db.query(PaymentIntent).filter(PaymentIntent.token == token).first()
    if intent is None:
        raise NotFound("Payment", token)
    return intent


def polling_contract(intent: PaymentIntent) -> dict:
    return {
        "intent_id": intent.id,
        "token": intent.token,
        "checkout_url": intent.checkout_url,
        "amount": intent.amount,
        "currency": intent.currency,
        "status": intent.status.value,
        "expires_at": intent.expires_at,
        "poll_interval_seconds": settings.POLL_INTERVAL_SECONDS,
        "max_polls": settings.MAX_POLLS,
    }


async def _open_intent(db: Session, client: PayMongoClient, *, user: User, purpose: IntentPurpose,
                       target_type: IntentTarget, target_id: int, amount: int, description: str,
                       snapshot: Optional[dict] = None, order_id: Optional[int] = None) -> PaymentIntent:
    token = secrets.token_urlsafe(32)
    metadata = {
        "reconciliation_token": token,
        "purpose": purpose.value,
        "target_type": target_type.value,
        "target_id": target_id,
        "user_id": user.id,
    }
    source = await client.create_source(
        amount=amount, currency=settings.PAYMENT_CURRENCY, description=description, metadata=metadata,
        remarks=f"{description} for user {user.id}",
        customer={"name": user.full_name, "email": user.email},
    )

    now = utcnow()
    intent = PaymentIntent(
        external_id=source["id"],
        token=token,
        checkout_url=source["checkout_url"],
        user_id=user.id,
        purpose=purpose,
        target_type=target_type,
        target_id=target_id,
        amount=amount,
        currency=settings.PAYMENT_CURRENCY,
        status=IntentStatus.PENDING,
        snapshot=snapshot,
        order_id=order_id,
        created_at=now,
        expires_at=now + timedelta(minutes=settings.RECONCILIATION_TOKEN_TTL_MINUTES),
    )
    db.add(intent)
    db.flush()
    logger.info("Payment intent %s (%s) opened for %s %s: %s %s", intent.id, source["id"],
                target_type.value, target_id, amount, settings.PAYMENT_CURRENCY)
    return intent


async def open_order_intent(db: Session, client: PayMongoClient, order: Order, user: User) -> PaymentIntent:
    """Open an intent for a held order. Commits the held order before calling out."""
    if order.status != OrderStatus.PENDING_PAYMENT:
        raise PaymentNotAllowed(f"Order {order.id} is not awaiting payment")
    amount = to_minor(order.total_amount)
    ensure_minimum(amount)
    snapshot = checkout.order_snapshot(order)
    db.commit()

    try:
        intent = await _open_intent(
            db, client, user=user, purpose=IntentPurpose.ORDER, target_type=IntentTarget.ORDER,
            target_id=order.id, amount=amount, description=f"Order #{order.id}",
            snapshot=snapshot, order_id=order.id,
        )
    except PaymentProcessorError:
        db.rollback()
        # The processor never saw a payment, so the held order can go
        checkout.cancel_order(db, order)
        db.commit()
        raise
    db.commit()
    return intent


async def open_cake_intent(db: Session, client: PayMongoClient, cake, user: User, is_downpayment: bool,
                           amount: Optional[int] = None) -> PaymentIntent:
    if is_downpayment:
        custom_cakes.check_downpayment_allowed(cake)
        expected = to_minor(cake.downpayment_amount)
        purpose = IntentPurpose.DOWNPAYMENT
    else:
        custom_cakes.check_balance_allowed(cake)
        expected = to_minor(cake.remaining_balance)
        purpose = IntentPurpose.BALANCE

    if amount is not None and int(amount) != expected:
        raise PaymentAmountMismatch(expected, int(amount))
    ensure_minimum(expected)

    label = "Downpayment" if is_downpayment else "Balance"
    intent = await _open_intent(
        db, client, user=user, purpose=purpose, target_type=custom_cakes.target_of(cake),
        target_id=cake.id, amount=expected, description=f"{cake.display_name} #{cake.id} {label}",
    )
    db.commit()
    return intent


def _claim(db: Session, intent_id: int, outcome: IntentStatus, **values) -> bool:
    stmt = (
        update(PaymentIntent)
        .where(PaymentIntent.id == intent_id, PaymentIntent.status.in_(SETTLEABLE))
        .values(status=outcome, settled_at=utcnow(), **values)
        .execution_options(synchronize_session=False)
    )
    return db.execute(stmt).rowcount == 1


def _release_held_order(db: Session, order_id: Optional[int]):
    order = db.get(Order, order_id) if order_id else None
    if order is not None and order.status == OrderStatus.PENDING_PAYMENT:
        checkout.cancel_order(db, order)


def _settle_order(db: Session, intent: PaymentIntent) -> List[StockUnit]:
    lines = [checkout.LineDraft.from_snapshot(l) for l in (intent.snapshot or {}).get("lines", [])]
    order = db.get(Order, intent.order_id) if intent.order_id else None

    promoted = False
    if order is not None:
        promoted = db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == OrderStatus.PENDING_PAYMENT)
            .values(status=OrderStatus.PROCESSING, payment_verified=True, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        ).rowcount == 1
        db.refresh(order)

    if not promoted:
        # The held order was reaped or cancelled meanwhile: rebuild it from the snapshot
        details = checkout.CheckoutDetails.from_snapshot(intent.snapshot["details"])
        order = checkout.build_order(db, intent.user_id, lines, details, OrderStatus.PROCESSING)
        order.payment_verified = True
        intent.order_id = order.id
        logger.warning("Held order for intent %s was gone; rebuilt as order %s", intent.id, order.id)

    units = checkout.debit_lines(db, order, lines, intent.user_id)
    checkout.clear_purchased(db, intent.user_id, lines)
    return units


def _settle_paid(db: Session, intent: PaymentIntent) -> List[StockUnit]:
    if intent.purpose == IntentPurpose.ORDER:
        return _settle_order(db, intent)

    cake = custom_cakes.get_target(db, intent.target_type, intent.target_id)
    if intent.purpose == IntentPurpose.DOWNPAYMENT:
        custom_cakes.record_downpayment(db, cake, user_id=intent.user_id)
        return [custom_cakes.slot_of(cake)]

    order = custom_cakes.record_balance(db, cake, PaymentMethod.GCASH)
    intent.order_id = order.id
    return []


def _settle_failed(db: Session, intent: PaymentIntent):
    if intent.purpose == IntentPurpose.ORDER:
        _release_held_order(db, intent.order_id)
        return
    if intent.purpose == IntentPurpose.DOWNPAYMENT:
        cake = custom_cakes.get_target(db, intent.target_type, intent.target_id)
        if not cake.is_downpayment_paid:
            cake.payment_status = CakePaymentStatus.FAILED


def _flag_refund(db: Session, intent_id: int, error: Exception) -> ReconcileResult:
    """Paid money that could not be applied: keep the record and ask staff to refund."""
    if not _claim(db, intent_id, IntentStatus.PAID, refund_required=True, failure_reason=str(error)[:500]):
        db.rollback()
        return _settled_result(db, intent_id)

    intent = db.get(PaymentIntent, intent_id, populate_existing=True)
    if intent.purpose == IntentPurpose.ORDER:
        _release_held_order(db, intent.order_id)
    write_log(db, user_id=intent.user_id, action="PAYMENT_REFUND_REQUIRED", resource="payments",
              resource_id=intent.id, status="FAIL",
              meta={"external_id": intent.external_id, "reason": str(error)}, commit=False)
    db.commit()

    logger.error("Payment %s for %s %s was paid but could not be applied: %s",
                 intent.external_id, intent.target_type.value, intent.target_id, error)
    notifier.notify("payment_refund_required", {
        "intent_id": intent.id, "external_id": intent.external_id, "amount": intent.amount,
        "target_type": intent.target_type.value, "target_id": intent.target_id, "reason": str(error),
    })
    return ReconcileResult(intent.id, IntentStatus.PAID, refund_required=True, order_id=intent.order_id)


def _settled_result(db: Session, intent_id: int) -> ReconcileResult:
    intent = db.get(PaymentIntent, intent_id, populate_existing=True)
    if intent is None:
        raise NotFound("Payment", intent_id)
    return ReconcileResult(intent.id, intent.status, duplicate=intent.status not in SETTLEABLE,
                           refund_required=intent.refund_required, order_id=intent.order_id)


def apply_outcome(db: Session, intent_id: int, outcome: IntentStatus, reason: Optional[str] = None) -> ReconcileResult:
    """Apply a processor outcome to an intent exactly once."""
    if outcome not in (IntentStatus.PAID, IntentStatus.FAILED):
        return _settled_result(db, intent_id)

    if not _claim(db, intent_id, outcome, failure_reason=reason):
        db.rollback()
        result = _settled_result(db, intent_id)
        logger.info("Intent %s already settled as %s; ignoring %s", intent_id, result.status.value, outcome.value)
        return result

    intent = db.get(PaymentIntent, intent_id, populate_existing=True)
    units = []
    try:
        if outcome == IntentStatus.PAID:
            units = _settle_paid(db, intent)
        else:
            _settle_failed(db, intent)
        write_log(db, user_id=intent.user_id, action=f"PAYMENT_{outcome.value.upper()}", resource="payments",
                  resource_id=intent.id, status="SUCCESS" if outcome == IntentStatus.PAID else "FAIL",
                  meta={"external_id": intent.external_id, "purpose": intent.purpose.value,
                        "target_type": intent.target_type.value, "target_id": intent.target_id,
                        "order_id": intent.order_id},
                  commit=False)
        db.commit()
    except REFUNDABLE_ERRORS as e:
        db.rollback()
        return _flag_refund(db, intent_id, e)

    logger.info("Intent %s settled as %s (%s %s)", intent.id, outcome.value,
                intent.target_type.value, intent.target_id)
    result = ReconcileResult(intent.id, outcome, order_id=intent.order_id)

    if outcome == IntentStatus.PAID:
        notifier.notify("payment_confirmed", {
            "intent_id": intent.id, "purpose": intent.purpose.value, "amount": intent.amount,
            "target_type": intent.target_type.value, "target_id": intent.target_id,
            "order_id": intent.order_id,
        })
        if units:
            swept = cart_sweep.sweep_after_purchase(db, units, buyer_id=intent.user_id)
            result.swept = {"removed": len(swept.removed), "reduced": len(swept.reduced),
                            "errors": len(swept.errors)}
    return result


def outcome_for_status(status: str) -> IntentStatus:
    if status == PAID:
        return IntentStatus.PAID
    if status == FAILED:
        return IntentStatus.FAILED
    return IntentStatus.PENDING


async def poll(db: Session, client: PayMongoClient, token: str) -> ReconcileResult:
    """Client-triggered reconciliation: ask the processor and apply what it says."""
    intent = get_by_token(db, token)
    if intent.status not in SETTLEABLE:
        return _settled_result(db, intent.id)
    if intent.expires_at < utcnow():
        # Token past its lifetime: report, but leave settling to the webhook
        return ReconcileResult(intent.id, IntentStatus.EXPIRED, order_id=intent.order_id)

    try:
        remote = await client.get_payment(intent.external_id)
    except PaymentProcessorError as e:
        logger.warning("Verification of payment %s failed: %s", intent.external_id, e)
        raise PaymentVerificationFailed(intent.external_id, str(e))

    outcome = outcome_for_status(remote["status"])
    if outcome == IntentStatus.PAID and remote.get("amount") is not None and int(remote["amount"]) != intent.amount:
        raise PaymentAmountMismatch(intent.amount, int(remote["amount"]))
    return apply_outcome(db, intent.id, outcome)


def _find_intent_for_event(db: Session, resource: dict) -> Optional[PaymentIntent]:
    attributes = resource.get("attributes") or {}
    candidates = [resource.get("id"), attributes.get("link_id")]
    for external_id in filter(None, candidates):
        intent = db.query(PaymentIntent).filter(PaymentIntent.external_id == external_id).first()
        if intent is not None:
            return intent
    token = (attributes.get("metadata") or {}).get("reconciliation_token")
    if token:
        return db.query(PaymentIntent).filter(PaymentIntent.token == token).first()
    return None


def handle_webhook(db: Session, body: bytes, signature: Optional[str]) -> Optional[ReconcileResult]:
    """Verify and apply a processor event. Unknown events and intents are acknowledged and ignored."""
    if settings.VERIFY_WEBHOOK_SIGNATURE and not verify_webhook_signature(
            signature, body, settings.PAYMONGO_WEBHOOK_SECRET):
        logger.warning("Webhook signature verification failed. header=%s", signature)
        raise InvalidWebhookSignature("Signature verification failed")

    try:
        event = json.loads(body)
    except ValueError as e:
        logger.warning("Webhook body is not valid JSON: %s", e)
        raise InvalidWebhookPayload("Webhook body is not a valid JSON event")
    if not isinstance(event, dict):
        raise InvalidWebhookPayload("Webhook body is not a valid JSON event")
    attributes = (event.get("data") or {}).get("attributes") or {}
    event_type = attributes.get("type")
    resource = attributes.get("data") or {}
    logger.info("Webhook received: %s for %s", event_type, resource.get("id"))

    if event_type in PAID_EVENTS:
        outcome = IntentStatus.PAID
    elif event_type in FAILED_EVENTS:
        outcome = IntentStatus.FAILED
    else:
        return None

    intent = _find_intent_for_event(db, resource)
    if intent is None:
        logger.warning("Webhook %s for unknown payment %s", event_type, resource.get("id"))
        return None
    reason = None
    if outcome == IntentStatus.FAILED:
        reason = ((resource.get("attributes") or {}).get("failed_message") or event_type)[:500]
    return apply_outcome(db, intent.id, outcome, reason=reason)
