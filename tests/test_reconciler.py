"""Tests for payment intents, reconciliation and the webhook entry point."""

import asyncio
import json
import threading
from datetime import timedelta
from decimal import Decimal

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from conftest import FakePayMongo, make_user, put_in_cart
from config import settings
from database import Base
from models.cart import CartItem
from models.log import AuditLog
from models.menu import MenuItem
from models.order import Order, OrderItem, OrderStatus, PaymentMethod
from models.payment import PaymentIntent, IntentStatus
from models.stock import StockMovement
from services import checkout, reaper, reconciler, stock_ledger
from services.checkout import CheckoutDetails
from services.errors import (
    AmountBelowMinimum, InvalidWebhookPayload, InvalidWebhookSignature, PaymentNotAllowed,
    PaymentProcessorError, PaymentVerificationFailed,
)
from services.stock_ledger import StockUnit
from utils import notifier
from utils.clock import utcnow
from utils.paymongo_client import PayMongoClient, sign_webhook


def gcash():
    return CheckoutDetails(payment_method=PaymentMethod.GCASH)


def start_gcash_checkout(db, client, user):
    order = checkout.hold_async_order(db, user, gcash())
    intent = asyncio.run(reconciler.open_order_intent(db, client, order, user))
    return order, intent


def webhook_event(event_type, resource_id, **attributes):
    return json.dumps({
        "data": {
            "id": "evt_test",
            "attributes": {"type": event_type, "data": {"id": resource_id, "attributes": attributes}},
        }
    }).encode()


def signed(body):
    return sign_webhook(body, settings.PAYMONGO_WEBHOOK_SECRET, timestamp=1760000000)


class TestOpenIntent:
    def test_intent_carries_polling_contract(self, db, customer, menu, payment_client, fake_paymongo):
        put_in_cart(db, customer, menu["croissant"], 2)

        order, intent = start_gcash_checkout(db, payment_client, customer)

        assert intent.amount == 13000
        assert intent.currency == "PHP"
        assert intent.order_id == order.id
        assert intent.checkout_url.startswith("https://pm.link/test/")
        assert intent.expires_at > utcnow()
        assert fake_paymongo.links[intent.external_id]["metadata"]["reconciliation_token"] == intent.token
        contract = reconciler.polling_contract(intent)
        assert contract["poll_interval_seconds"] == settings.POLL_INTERVAL_SECONDS
        assert contract["max_polls"] == settings.MAX_POLLS

    def test_below_minimum_never_reaches_processor(self, db, customer, menu, payment_client, fake_paymongo):
        put_in_cart(db, customer, menu["candy"], 1)
        order = checkout.hold_async_order(db, customer, gcash())

        with pytest.raises(AmountBelowMinimum) as exc:
            asyncio.run(reconciler.open_order_intent(db, payment_client, order, customer))

        assert exc.value.amount == 1500
        assert exc.value.minimum == 2000
        assert fake_paymongo.api_calls() == []

    def test_processor_rejection_cancels_held_order(self, db, customer, menu, payment_client, fake_paymongo):
        put_in_cart(db, customer, menu["croissant"], 1)
        fake_paymongo.reject_create = True
        order = checkout.hold_async_order(db, customer, gcash())

        with pytest.raises(PaymentProcessorError):
            asyncio.run(reconciler.open_order_intent(db, payment_client, order, customer))

        db.refresh(order)
        assert order.status == OrderStatus.CANCELLED
        assert db.query(PaymentIntent).count() == 0
        # A 4xx is not retried
        assert len(fake_paymongo.api_calls()) == 1

    def test_only_held_orders_accept_intents(self, db, customer, menu, payment_client):
        put_in_cart(db, customer, menu["croissant"], 1)
        order, _ = checkout.place_cash_order(db, customer, CheckoutDetails(payment_method=PaymentMethod.CASH))
        db.commit()

        with pytest.raises(PaymentNotAllowed):
            asyncio.run(reconciler.open_order_intent(db, payment_client, order, customer))


class TestPollReconciliation:
    def test_paid_poll_promotes_and_debits(self, db, customer, menu, payment_client, fake_paymongo):
        put_in_cart(db, customer, menu["croissant"], 2)
        order, intent = start_gcash_checkout(db, payment_client, customer)
        fake_paymongo.pay(intent.external_id)

        result = asyncio.run(reconciler.poll(db, payment_client, intent.token))

        assert result.status == IntentStatus.PAID
        assert result.duplicate is False
        assert result.order_id == order.id
        db.refresh(order)
        assert order.status == OrderStatus.PROCESSING
        assert order.payment_verified is True
        assert order.stock_committed is True
        assert stock_ledger.available(db, StockUnit.item(menu["croissant"].id)) == 3
        assert db.query(CartItem).count() == 0

    def test_unpaid_poll_is_a_no_op(self, db, customer, menu, payment_client):
        put_in_cart(db, customer, menu["croissant"], 2)
        order, intent = start_gcash_checkout(db, payment_client, customer)

        result = asyncio.run(reconciler.poll(db, payment_client, intent.token))

        assert result.status == IntentStatus.PENDING
        db.refresh(order)
        assert order.status == OrderStatus.PENDING_PAYMENT
        assert stock_ledger.available(db, StockUnit.item(menu["croissant"].id)) == 5

    def test_reconciling_twice_changes_nothing(self, db, customer, menu, payment_client, fake_paymongo):
        put_in_cart(db, customer, menu["croissant"], 2)
        _, intent = start_gcash_checkout(db, payment_client, customer)
        fake_paymongo.pay(intent.external_id)

        first = asyncio.run(reconciler.poll(db, payment_client, intent.token))
        second = asyncio.run(reconciler.poll(db, payment_client, intent.token))
        third = reconciler.apply_outcome(db, intent.id, IntentStatus.PAID)

        assert first.duplicate is False
        assert second.duplicate is True and third.duplicate is True
        assert second.status == IntentStatus.PAID
        assert db.query(Order).count() == 1
        assert db.query(StockMovement).count() == 1
        assert stock_ledger.available(db, StockUnit.item(menu["croissant"].id)) == 3

    def test_failed_payment_releases_held_order(self, db, customer, menu, payment_client, fake_paymongo):
        put_in_cart(db, customer, menu["croissant"], 2)
        order, intent = start_gcash_checkout(db, payment_client, customer)
        fake_paymongo.fail(intent.external_id)

        result = asyncio.run(reconciler.poll(db, payment_client, intent.token))

        assert result.status == IntentStatus.FAILED
        db.refresh(order)
        assert order.status == OrderStatus.CANCELLED
        assert db.query(OrderItem).filter(OrderItem.order_id == order.id).count() == 0
        assert stock_ledger.available(db, StockUnit.item(menu["croissant"].id)) == 5
        # The customer can try again from the same cart
        assert db.query(CartItem).count() == 1

    def test_processor_outage_is_a_soft_failure(self, db, customer, menu, payment_client, fake_paymongo):
        put_in_cart(db, customer, menu["croissant"], 2)
        order, intent = start_gcash_checkout(db, payment_client, customer)
        fake_paymongo.pay(intent.external_id)
        fake_paymongo.fail_next = 10
        before = len(fake_paymongo.api_calls())

        with pytest.raises(PaymentVerificationFailed) as exc:
            asyncio.run(reconciler.poll(db, payment_client, intent.token))

        assert exc.value.to_detail()["status"] == "unverified"
        # One attempt plus two retries
        assert len(fake_paymongo.api_calls()) - before == 3
        db.refresh(intent)
        assert intent.status == IntentStatus.PENDING
        db.refresh(order)
        assert order.status == OrderStatus.PENDING_PAYMENT

    def test_transient_errors_are_retried(self, db, customer, menu, payment_client, fake_paymongo):
        put_in_cart(db, customer, menu["croissant"], 2)
        _, intent = start_gcash_checkout(db, payment_client, customer)
        fake_paymongo.pay(intent.external_id)
        fake_paymongo.fail_next = 2

        result = asyncio.run(reconciler.poll(db, payment_client, intent.token))
        assert result.status == IntentStatus.PAID

    def test_expired_token_is_not_settled_by_poll(self, db, customer, menu, payment_client, fake_paymongo):
        put_in_cart(db, customer, menu["croissant"], 2)
        _, intent = start_gcash_checkout(db, payment_client, customer)
        fake_paymongo.pay(intent.external_id)
        intent.expires_at = utcnow() - timedelta(minutes=1)
        db.commit()
        before = len(fake_paymongo.api_calls())

        result = asyncio.run(reconciler.poll(db, payment_client, intent.token))

        assert result.status == IntentStatus.EXPIRED
        assert len(fake_paymongo.api_calls()) == before


class TestLateAndConflictingPayments:
    def test_payment_after_reaping_rebuilds_order(self, db, customer, menu, payment_client, fake_paymongo):
        put_in_cart(db, customer, menu["croissant"], 2)
        order, intent = start_gcash_checkout(db, payment_client, customer)
        order.created_at = utcnow() - timedelta(hours=2)
        db.commit()

        assert reaper.cancel_abandoned_orders(db) == [order.id]
        db.refresh(intent)
        assert intent.status == IntentStatus.EXPIRED

        fake_paymongo.pay(intent.external_id)
        result = asyncio.run(reconciler.poll(db, payment_client, intent.token))

        assert result.status == IntentStatus.PAID
        assert result.order_id != order.id
        rebuilt = db.get(Order, result.order_id)
        assert rebuilt.status == OrderStatus.PROCESSING
        assert rebuilt.total_amount == order.total_amount
        assert [(it.item_name, it.qty) for it in rebuilt.items] == [("Butter Croissant", 2)]
        assert stock_ledger.available(db, StockUnit.item(menu["croissant"].id)) == 3

    def test_stock_gone_at_reconcile_flags_refund(self, db, customer, other_customer, menu, payment_client,
                                                  fake_paymongo):
        put_in_cart(db, customer, menu["chocolate"], 1, size=menu["medium"])
        order, intent = start_gcash_checkout(db, payment_client, customer)

        # Someone pays cash for the last cake while the first customer is at the processor
        put_in_cart(db, other_customer, menu["chocolate"], 1, size=menu["medium"])
        checkout.place_cash_order(db, other_customer, CheckoutDetails(payment_method=PaymentMethod.CASH))
        db.commit()

        fake_paymongo.pay(intent.external_id)
        result = asyncio.run(reconciler.poll(db, payment_client, intent.token))

        assert result.status == IntentStatus.PAID
        assert result.refund_required is True
        db.refresh(intent)
        assert intent.refund_required is True
        assert "Insufficient stock" in intent.failure_reason
        db.refresh(order)
        assert order.status == OrderStatus.CANCELLED
        assert stock_ledger.available(db, StockUnit.size(menu["medium"].id)) == 0
        assert db.query(AuditLog).filter(AuditLog.action == "PAYMENT_REFUND_REQUIRED").count() == 1

        again = asyncio.run(reconciler.poll(db, payment_client, intent.token))
        assert again.duplicate is True and again.refund_required is True


class TestWebhook:
    def test_paid_event_settles_intent(self, db, customer, menu, payment_client):
        put_in_cart(db, customer, menu["croissant"], 2)
        order, intent = start_gcash_checkout(db, payment_client, customer)
        body = webhook_event("link.payment.paid", intent.external_id, status="paid", amount=13000)

        result = reconciler.handle_webhook(db, body, signed(body))

        assert result.status == IntentStatus.PAID
        db.refresh(order)
        assert order.status == OrderStatus.PROCESSING

    def test_webhook_then_poll_is_duplicate(self, db, customer, menu, payment_client, fake_paymongo):
        put_in_cart(db, customer, menu["croissant"], 2)
        _, intent = start_gcash_checkout(db, payment_client, customer)
        body = webhook_event("link.payment.paid", intent.external_id)
        reconciler.handle_webhook(db, body, signed(body))
        fake_paymongo.pay(intent.external_id)

        result = asyncio.run(reconciler.poll(db, payment_client, intent.token))

        assert result.duplicate is True
        assert db.query(StockMovement).count() == 1

    def test_matches_by_reconciliation_token(self, db, customer, menu, payment_client):
        put_in_cart(db, customer, menu["croissant"], 2)
        _, intent = start_gcash_checkout(db, payment_client, customer)
        body = webhook_event("payment.paid", "pay_abc123", metadata={"reconciliation_token": intent.token})

        result = reconciler.handle_webhook(db, body, signed(body))
        assert result.intent_id == intent.id

    def test_failed_event_records_reason(self, db, customer, menu, payment_client):
        put_in_cart(db, customer, menu["croissant"], 2)
        _, intent = start_gcash_checkout(db, payment_client, customer)
        body = webhook_event("payment.failed", "pay_x", link_id=intent.external_id,
                             failed_message="Insufficient GCash balance")

        result = reconciler.handle_webhook(db, body, signed(body))

        assert result.status == IntentStatus.FAILED
        db.refresh(intent)
        assert intent.failure_reason == "Insufficient GCash balance"

    def test_bad_signature_rejected(self, db, customer, menu, payment_client):
        put_in_cart(db, customer, menu["croissant"], 2)
        _, intent = start_gcash_checkout(db, payment_client, customer)
        body = webhook_event("link.payment.paid", intent.external_id)
        tampered = body.replace(b"link.payment.paid", b"payment.paid")

        with pytest.raises(InvalidWebhookSignature):
            reconciler.handle_webhook(db, tampered, signed(body))
        with pytest.raises(InvalidWebhookSignature):
            reconciler.handle_webhook(db, body, None)
        db.refresh(intent)
        assert intent.status == IntentStatus.PENDING

    def test_unknown_events_and_payments_are_ignored(self, db):
        body = webhook_event("checkout_session.payment.paid", "cs_1")
        assert reconciler.handle_webhook(db, body, signed(body)) is None

        body = webhook_event("link.payment.paid", "link_unknown")
        assert reconciler.handle_webhook(db, body, signed(body)) is None

    @pytest.mark.parametrize("body", [b"{not json", b"", b'"just a string"', b"[1, 2]"])
    def test_signed_garbage_is_rejected(self, db, body):
        with pytest.raises(InvalidWebhookPayload):
            reconciler.handle_webhook(db, body, signed(body))


class TestConcurrentReconciliation:
    def test_simultaneous_confirmations_apply_once(self, tmp_path):
        engine = create_engine(
            f"sqlite:///{tmp_path / 'reconcile.db'}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        Base.metadata.create_all(bind=engine)
        Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        processor = FakePayMongo()
        client = PayMongoClient(api_url="https://api.paymongo.test", secret_key="sk_test_fake", timeout=1.0,
                                max_retries=2, backoff=0, transport=httpx.MockTransport(processor.handler))

        with Session() as setup:
            buyer = make_user(setup, "cara@example.com")
            item = MenuItem(name="Pandesal", category="Breads", base_price=Decimal("25.00"), stock=5)
            setup.add(item)
            setup.commit()
            put_in_cart(setup, buyer, item, 2)
            _, intent = start_gcash_checkout(setup, client, buyer)
            setup.commit()
            intent_id, unit = intent.id, StockUnit.item(item.id)

        results = []
        lock = threading.Lock()
        start = threading.Barrier(6)

        # A webhook and several polls all report the same payment as paid
        def confirm():
            session = Session()
            try:
                start.wait()
                result = reconciler.apply_outcome(session, intent_id, IntentStatus.PAID)
            finally:
                session.close()
            with lock:
                results.append(result)

        threads = [threading.Thread(target=confirm) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 6
        assert [r.duplicate for r in results].count(False) == 1
        assert all(r.status == IntentStatus.PAID for r in results)
        with Session() as check:
            assert check.query(Order).count() == 1
            assert check.query(StockMovement).count() == 1
            assert stock_ledger.available(check, unit) == 3
            assert check.query(AuditLog).filter(AuditLog.action == "PAYMENT_PAID").count() == 1
        engine.dispose()


class TestNotifications:
    def test_slow_hook_does_not_hold_up_confirmation(self, db, customer, menu, payment_client, fake_paymongo,
                                                     monkeypatch):
        put_in_cart(db, customer, menu["croissant"], 2)
        _, intent = start_gcash_checkout(db, payment_client, customer)
        fake_paymongo.pay(intent.external_id)
        monkeypatch.setattr(settings, "NOTIFY_WEBHOOK_URL", "https://hooks.bakery.test/events")

        async def confirm_while_hook_hangs():
            release = asyncio.Event()
            delivered = []

            async def hanging_hook(request):
                await release.wait()
                delivered.append(json.loads(request.content)["event"])
                return httpx.Response(204)

            monkeypatch.setattr(notifier, "transport", httpx.MockTransport(hanging_hook))
            result = await reconciler.poll(db, payment_client, intent.token)
            # The payment is settled while the notification is still waiting on the hook
            assert result.status == IntentStatus.PAID
            assert delivered == []
            release.set()
            await notifier.drain()
            return delivered

        assert asyncio.run(confirm_while_hook_hangs()) == ["payment_confirmed"]
