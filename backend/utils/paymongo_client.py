# backend/utils/paymongo_client.py
import asyncio
import base64
import hashlib
import hmac
import logging
from typing import Optional
from urllib.parse import urljoin

import httpx

from config import settings
from services.errors import PaymentProcessorError

logger = logging.getLogger(__name__)

# Link statuses reported by the processor, mapped to our intent outcomes
PAID = "paid"
UNPAID = "unpaid"
FAILED = "failed"

PAID_EVENTS = {"link.payment.paid", "payment.paid", "source.chargeable"}
FAILED_EVENTS = {"payment.failed"}


class PayMongoClient:
    def __init__(self, api_url: str = None, secret_key: str = None, timeout: float = None,
                 max_retries: int = None, backoff: float = None, transport: httpx.AsyncBaseTransport = None):
        # Initialize configuration and callback URLs
        self.api_url = api_url or settings.PAYMONGO_API_URL
        self.secret_key = secret_key or settings.PAYMONGO_SECRET_KEY
        self.timeout = timeout if timeout is not None else settings.PAYMENT_TIMEOUT_SECONDS
        self.max_retries = max_retries if max_retries is not None else settings.PAYMENT_MAX_RETRIES
        self.backoff = backoff if backoff is not None else settings.PAYMENT_RETRY_BACKOFF_SECONDS
        self.transport = transport
        self.success_url = urljoin(settings.FRONTEND_URL, "/payment/success")
        self.failed_url = urljoin(settings.FRONTEND_URL, "/payment/failed")

    def _headers(self) -> dict:
        # Secret key as the basic-auth user name, empty password
        token = base64.b64encode(f"{self.secret_key}:".encode()).decode()
        return {
            "Authorization": f"Basic {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _request(self, method: str, path: str, json: dict = None) -> dict:
        """Send a request, retrying transport errors and 5xx/429 with exponential backoff."""
        url = urljoin(self.api_url, path)
        last_error = None
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            for attempt in range(self.max_retries + 1):
                try:
                    response = await client.request(method, url, json=json, headers=self._headers())
                    if response.status_code == 429 or response.status_code >= 500:
                        response.raise_for_status()
                    if response.status_code >= 400:
                        logger.error("PayMongo %s %s rejected: %s %s", method, path,
                                     response.status_code, response.text[:500])
                        raise PaymentProcessorError(
                            f"Payment processor rejected the request ({response.status_code})"
                        )
                    return response.json()
                except (httpx.RequestError, httpx.HTTPStatusError) as e:
                    last_error = e
                    logger.warning("PayMongo %s %s failed (attempt %s/%s): %s", method, path,
                                   attempt + 1, self.max_retries + 1, e)
                    if attempt < self.max_retries:
                        await asyncio.sleep(self.backoff * (2 ** attempt))

        logger.error("PayMongo %s %s gave up after %s attempts", method, path, self.max_retries + 1)
        raise PaymentProcessorError(f"Payment processor unavailable: {last_error}")

    async def create_source(self, amount: int, currency: str, description: str,
                            metadata: dict, remarks: Optional[str] = None,
                            customer: Optional[dict] = None) -> dict:
        """Create a GCash payment link. Returns ``{"id", "checkout_url", "status"}``."""
        payload = {
            "data": {
                "attributes": {
                    "amount": int(amount),
                    "currency": currency,
                    "description": description,
                    "remarks": remarks or description,
                    "payment_method_allowed": ["gcash"],
                    "redirect": {"success": self.success_url, "failed": self.failed_url},
                    "metadata": metadata,
                }
            }
        }
        if customer:
            payload["data"]["attributes"]["checkout"] = customer

        body = await self._request("POST", "/v1/links", json=payload)
        data = body.get("data") or {}
        attributes = data.get("attributes") or {}
        if not data.get("id") or not attributes.get("checkout_url"):
            logger.error("PayMongo link response missing id/checkout_url: %s", body)
            raise PaymentProcessorError("Payment processor returned an incomplete response")
        return {"id": data["id"], "checkout_url": attributes["checkout_url"],
                "status": attributes.get("status", UNPAID)}

    async def get_payment(self, external_id: str) -> dict:
        """Current state of a payment link. Returns ``{"id", "status", "amount", "currency"}``."""
        body = await self._request("GET", f"/v1/links/{external_id}")
        attributes = (body.get("data") or {}).get("attributes") or {}
        return {
            "id": external_id,
            "status": attributes.get("status", UNPAID),
            "amount": attributes.get("amount"),
            "currency": attributes.get("currency"),
        }


def verify_webhook_signature(header_signature: str, request_body: bytes, secret: str) -> bool:
    """Check a ``Paymongo-Signature: t=<ts>,te=<test sig>,li=<live sig>`` header."""
    if not header_signature:
        return False
    try:
        parts = dict(p.split("=", 1) for p in header_signature.split(","))
    except ValueError:
        return False

    timestamp = parts.get("t")
    received = parts.get("li") or parts.get("te")
    if not timestamp or not received:
        return False

    signed = timestamp.encode("utf-8") + b"." + request_body
    expected = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, received)


def sign_webhook(request_body: bytes, secret: str, timestamp: int, live: bool = False) -> str:
    """Build a signature header the way the processor does (used by tooling and tests)."""
    signed = str(timestamp).encode("utf-8") + b"." + request_body
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},te={'' if live else digest},li={digest if live else ''}"


paymongo_client = PayMongoClient()


# FastAPI dependency; tests override it with a client on a mock transport
def get_payment_client() -> PayMongoClient:
    return paymongo_client
