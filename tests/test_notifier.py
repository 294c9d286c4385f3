"""Tests for outbound event notifications."""

import asyncio
import json

import httpx
import pytest

from config import settings
from utils import notifier

HOOK_URL = "https://hooks.bakery.test/events"


@pytest.fixture
def hook(monkeypatch):
    """Send notifications to an in-memory hook and collect what it receives."""
    received = []

    def handler(request):
        received.append(json.loads(request.content))
        return httpx.Response(204)

    monkeypatch.setattr(settings, "NOTIFY_WEBHOOK_URL", HOOK_URL)
    monkeypatch.setattr(notifier, "transport", httpx.MockTransport(handler))
    return received


class TestNotify:
    def test_without_a_hook_only_logs(self, monkeypatch):
        monkeypatch.setattr(settings, "NOTIFY_WEBHOOK_URL", None)
        assert notifier.notify("order_placed", {"order_id": 1}) is False

    def test_sync_callers_deliver_in_place(self, hook):
        assert notifier.notify("order_placed", {"order_id": 1}) is True
        assert hook == [{"event": "order_placed", "data": {"order_id": 1}}]

    def test_async_callers_get_control_back_first(self, hook):
        async def scenario():
            assert notifier.notify("payment_confirmed", {"intent_id": 7}) is True
            # Queued on the loop, not sent yet
            assert hook == []
            await notifier.drain()

        asyncio.run(scenario())
        assert hook == [{"event": "payment_confirmed", "data": {"intent_id": 7}}]

    def test_hanging_hook_does_not_block_other_work(self, monkeypatch):
        monkeypatch.setattr(settings, "NOTIFY_WEBHOOK_URL", HOOK_URL)

        async def scenario():
            release = asyncio.Event()
            order = []

            async def hanging_hook(request):
                await release.wait()
                order.append("delivered")
                return httpx.Response(200)

            async def other_request():
                order.append("other request served")
                release.set()

            monkeypatch.setattr(notifier, "transport", httpx.MockTransport(hanging_hook))
            notifier.notify("order_status_changed", {"order_id": 3})
            await asyncio.sleep(0)
            await other_request()
            await notifier.drain()
            return order

        assert asyncio.run(scenario()) == ["other request served", "delivered"]


class TestDeliveryFailures:
    def test_server_error_is_logged_not_raised(self, monkeypatch, caplog):
        monkeypatch.setattr(notifier, "transport", httpx.MockTransport(lambda request: httpx.Response(500)))

        assert asyncio.run(notifier.deliver("order_placed", {"order_id": 1}, HOOK_URL)) is False
        assert "Failed to deliver order_placed notification" in caplog.text

    def test_unreachable_hook_is_logged_not_raised(self, monkeypatch):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        monkeypatch.setattr(settings, "NOTIFY_WEBHOOK_URL", HOOK_URL)
        monkeypatch.setattr(notifier, "transport", httpx.MockTransport(refuse))

        assert notifier.notify("order_placed", {"order_id": 1}) is False

    def test_failed_background_delivery_stays_quiet(self, monkeypatch):
        monkeypatch.setattr(settings, "NOTIFY_WEBHOOK_URL", HOOK_URL)
        monkeypatch.setattr(notifier, "transport", httpx.MockTransport(lambda request: httpx.Response(503)))

        async def scenario():
            notifier.notify("payment_refund_required", {"intent_id": 2})
            await notifier.drain()

        asyncio.run(scenario())
        assert not notifier._pending
