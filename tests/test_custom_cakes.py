"""Tests for the custom-cake funnel and its downpayment/balance payments."""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest

from models.custom_cake import CakeStatus, CakePaymentStatus, FinalPaymentStatus
from models.order import Order, OrderStatus, PaymentMethod
from models.payment import IntentPurpose, IntentStatus, IntentTarget
from services import custom_cakes, reconciler, stock_ledger
from services.errors import (
    InvalidStatusTransition, PaymentAmountMismatch, PaymentNotAllowed,
)
from utils.clock import utcnow

DESIGN = {"size": "8in", "cake_color": "white", "icing_style": "buttercream", "icing_color": "pink"}


def image_order(db, user):
    return custom_cakes.create_image_order(db, user, {
        "image_path": "uploads/cake-ref.jpg",
        "flavor": "ube",
        "size": "10in",
        "event_date": utcnow() + timedelta(days=14),
    })


def priced_image_order(db, user, price="1000.00"):
    """An image-based order judged feasible with its price set, not yet paid."""
    cake = image_order(db, user)
    custom_cakes.review(db, cake, feasible=True)
    cake.apply_price(Decimal(price))
    db.commit()
    return cake


def pay(db, client, fake_paymongo, intent):
    fake_paymongo.pay(intent.external_id)
    return asyncio.run(reconciler.poll(db, client, intent.token))


class TestCreation:
    def test_3d_design_without_price_waits_for_review(self, db, customer):
        cake = custom_cakes.create_3d(db, customer, dict(DESIGN))

        assert cake.status == CakeStatus.PENDING_REVIEW
        assert cake.price is None
        assert cake.customer_email == customer.email

    def test_3d_design_with_price_skips_review(self, db, customer):
        cake = custom_cakes.create_3d(db, customer, dict(DESIGN), price=Decimal("1499.99"))

        assert cake.status == CakeStatus.READY_FOR_DOWNPAYMENT
        assert cake.downpayment_amount == Decimal("750.00")
        assert cake.remaining_balance == Decimal("749.99")
        assert cake.balance_consistent

    def test_unknown_kind(self, db):
        from services.errors import NotFound

        with pytest.raises(NotFound):
            custom_cakes.get_cake(db, "cupcake", 1)


class TestStaffSteps:
    def test_review_then_price(self, db, customer):
        cake = image_order(db, customer)

        custom_cakes.review(db, cake, feasible=True)
        custom_cakes.set_price(db, cake, Decimal("1200"))

        assert cake.status == CakeStatus.READY_FOR_DOWNPAYMENT
        assert cake.downpayment_amount + cake.remaining_balance == cake.price

    def test_not_feasible_is_terminal(self, db, customer):
        cake = image_order(db, customer)
        custom_cakes.review(db, cake, feasible=False)

        with pytest.raises(InvalidStatusTransition):
            custom_cakes.set_price(db, cake, Decimal("900"))
        with pytest.raises(InvalidStatusTransition):
            custom_cakes.cancel(db, cake)

    def test_cannot_price_before_review(self, db, customer):
        cake = image_order(db, customer)
        with pytest.raises(InvalidStatusTransition):
            custom_cakes.set_price(db, cake, Decimal("900"))

    def test_reprice_while_waiting_for_downpayment(self, db, customer):
        cake = custom_cakes.create_3d(db, customer, dict(DESIGN), price=Decimal("1000"))

        custom_cakes.set_price(db, cake, Decimal("800"))

        assert cake.status == CakeStatus.READY_FOR_DOWNPAYMENT
        assert cake.downpayment_amount == Decimal("400.00")

    def test_staff_cannot_skip_the_downpayment(self, db, customer):
        cake = custom_cakes.create_3d(db, customer, dict(DESIGN), price=Decimal("1000"))
        with pytest.raises(InvalidStatusTransition):
            custom_cakes.advance(db, cake)


class TestDownpaymentAndBalance:
    def test_downpayment_then_balance(self, db, customer, payment_client, fake_paymongo):
        cake = priced_image_order(db, customer)
        assert cake.status == CakeStatus.FEASIBLE

        down = asyncio.run(reconciler.open_cake_intent(db, payment_client, cake, customer, is_downpayment=True))
        assert down.amount == 50000
        assert down.purpose == IntentPurpose.DOWNPAYMENT
        assert down.target_type == IntentTarget.IMAGE_ORDER

        # No balance before the downpayment lands
        with pytest.raises(PaymentNotAllowed):
            asyncio.run(reconciler.open_cake_intent(db, payment_client, cake, customer, is_downpayment=False))

        result = pay(db, payment_client, fake_paymongo, down)
        assert result.status == IntentStatus.PAID
        db.refresh(cake)
        assert cake.is_downpayment_paid is True
        assert cake.downpayment_paid_at is not None
        assert cake.final_payment_status == FinalPaymentStatus.PENDING
        assert cake.status == CakeStatus.DOWNPAYMENT_PAID
        assert stock_ledger.available(db, custom_cakes.slot_of(cake)) == 0

        balance = asyncio.run(reconciler.open_cake_intent(db, payment_client, cake, customer,
                                                          is_downpayment=False, amount=50000))
        result = pay(db, payment_client, fake_paymongo, balance)

        assert result.status == IntentStatus.PAID
        db.refresh(cake)
        assert cake.final_payment_status == FinalPaymentStatus.PAID
        assert cake.payment_status == CakePaymentStatus.PAID
        assert cake.downpayment_amount == Decimal("500.00")
        assert cake.balance_consistent

        order = db.get(Order, result.order_id)
        assert order.status == OrderStatus.PROCESSING
        assert order.total_amount == Decimal("500.00")
        assert order.items[0].image_order_id == cake.id

    def test_client_amount_must_match(self, db, customer, payment_client, fake_paymongo):
        cake = priced_image_order(db, customer)

        with pytest.raises(PaymentAmountMismatch) as exc:
            asyncio.run(reconciler.open_cake_intent(db, payment_client, cake, customer,
                                                    is_downpayment=True, amount=49999))
        assert exc.value.expected == 50000
        assert fake_paymongo.api_calls() == []

    def test_second_downpayment_needs_refund(self, db, customer, payment_client, fake_paymongo):
        cake = priced_image_order(db, customer)
        first = asyncio.run(reconciler.open_cake_intent(db, payment_client, cake, customer, is_downpayment=True))
        second = asyncio.run(reconciler.open_cake_intent(db, payment_client, cake, customer, is_downpayment=True))

        pay(db, payment_client, fake_paymongo, first)
        result = pay(db, payment_client, fake_paymongo, second)

        assert result.status == IntentStatus.PAID
        assert result.refund_required is True
        db.refresh(cake)
        assert cake.is_downpayment_paid is True
        assert cake.status == CakeStatus.DOWNPAYMENT_PAID

    def test_failed_downpayment_marks_cake(self, db, customer, payment_client, fake_paymongo):
        cake = priced_image_order(db, customer)
        intent = asyncio.run(reconciler.open_cake_intent(db, payment_client, cake, customer, is_downpayment=True))
        fake_paymongo.fail(intent.external_id)

        asyncio.run(reconciler.poll(db, payment_client, intent.token))

        db.refresh(cake)
        assert cake.payment_status == CakePaymentStatus.FAILED
        assert cake.is_downpayment_paid is False
        assert cake.status == CakeStatus.FEASIBLE

    def test_downpayment_flag_cannot_be_reset(self, db, customer):
        cake = priced_image_order(db, customer)
        custom_cakes.record_downpayment(db, cake, user_id=customer.id)
        db.commit()

        with pytest.raises(ValueError):
            cake.is_downpayment_paid = False

    def test_completion_requires_balance(self, db, customer, staff):
        cake = priced_image_order(db, customer)
        custom_cakes.record_downpayment(db, cake)
        custom_cakes.advance(db, cake, actor_id=staff.id)
        custom_cakes.advance(db, cake, actor_id=staff.id)
        assert cake.status == CakeStatus.READY_FOR_PICKUP_DELIVERY

        with pytest.raises(PaymentNotAllowed):
            custom_cakes.advance(db, cake, actor_id=staff.id)

        order = custom_cakes.confirm_cash_balance(db, cake, actor_id=staff.id)
        custom_cakes.advance(db, cake, actor_id=staff.id)
        db.commit()

        assert cake.status == CakeStatus.COMPLETED
        assert order.payment_method == PaymentMethod.CASH
        with pytest.raises(PaymentNotAllowed):
            custom_cakes.check_balance_allowed(cake)

    def test_cancel_after_downpayment_frees_slot(self, db, customer, staff):
        cake = priced_image_order(db, customer)
        custom_cakes.record_downpayment(db, cake)
        slot = custom_cakes.slot_of(cake)
        assert stock_ledger.available(db, slot) == 0

        custom_cakes.cancel(db, cake, actor_id=staff.id)
        db.commit()

        assert cake.status == CakeStatus.CANCELLED
        assert stock_ledger.available(db, slot) == 1
        with pytest.raises(PaymentNotAllowed):
            custom_cakes.check_downpayment_allowed(cake)
