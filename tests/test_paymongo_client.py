"""Tests for the PayMongo HTTP client and webhook signatures."""

import asyncio
import base64
import json

import httpx
import pytest

from services.errors import PaymentProcessorError
from utils.paymongo_client import PayMongoClient, sign_webhook, verify_webhook_signature

SECRET = "whsk_unit"


def make_client(handler, max_retries=2):
    return PayMongoClient(api_url="https://api.paymongo.test", secret_key="sk_test_abc", timeout=1.0,
                          max_retries=max_retries, backoff=0, transport=httpx.MockTransport(handler))


class TestCreateSource:
    def test_request_shape(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"data": {"id": "link_9", "attributes": {
                "checkout_url": "https://pm.link/test/link_9", "status": "unpaid"}}})

        source = asyncio.run(make_client(handler).create_source(
            amount=25000, currency="PHP", description="Order #7", metadata={"reconciliation_token": "tok"}))

        assert source == {"id": "link_9", "checkout_url": "https://pm.link/test/link_9", "status": "unpaid"}
        assert seen["auth"] == "Basic " + base64.b64encode(b"sk_test_abc:").decode()
        attributes = seen["body"]["data"]["attributes"]
        assert attributes["amount"] == 25000
        assert attributes["payment_method_allowed"] == ["gcash"]
        assert attributes["metadata"] == {"reconciliation_token": "tok"}

    def test_incomplete_response_is_an_error(self):
        def handler(request):
            return httpx.Response(200, json={"data": {"id": "link_1", "attributes": {}}})

        with pytest.raises(PaymentProcessorError):
            asyncio.run(make_client(handler).create_source(2000, "PHP", "x", {}))


class TestRetries:
    def test_gives_up_after_budget(self):
        attempts = []

        def handler(request):
            attempts.append(1)
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(PaymentProcessorError):
            asyncio.run(make_client(handler, max_retries=3).get_payment("link_1"))
        assert len(attempts) == 4

    def test_rate_limit_is_retried(self):
        responses = [httpx.Response(429), httpx.Response(200, json={"data": {"attributes": {
            "status": "paid", "amount": 2000, "currency": "PHP"}}})]

        def handler(request):
            return responses.pop(0)

        payment = asyncio.run(make_client(handler).get_payment("link_1"))
        assert payment == {"id": "link_1", "status": "paid", "amount": 2000, "currency": "PHP"}

    def test_client_errors_are_not_retried(self):
        attempts = []

        def handler(request):
            attempts.append(1)
            return httpx.Response(401, json={"errors": [{"detail": "bad key"}]})

        with pytest.raises(PaymentProcessorError):
            asyncio.run(make_client(handler).get_payment("link_1"))
        assert len(attempts) == 1


class TestWebhookSignature:
    def test_test_mode_signature(self):
        body = b'{"data": {}}'
        header = sign_webhook(body, SECRET, 1760000000)
        assert header.startswith("t=1760000000,te=")
        assert verify_webhook_signature(header, body, SECRET)

    def test_live_mode_signature(self):
        body = b'{"data": {}}'
        assert verify_webhook_signature(sign_webhook(body, SECRET, 1760000000, live=True), body, SECRET)

    @pytest.mark.parametrize("header", [None, "", "garbage", "t=1,te=", "t=1,te=deadbeef,li="])
    def test_rejects_malformed_or_wrong(self, header):
        assert not verify_webhook_signature(header, b"{}", SECRET)

    def test_rejects_other_secret(self):
        body = b"{}"
        assert not verify_webhook_signature(sign_webhook(body, "other", 1), body, SECRET)
