# backend/utils/notifier.py
import asyncio
import logging
from typing import Optional

import httpx

from config import settings

logger = logging.getLogger(__name__)

NOTIFY_TIMEOUT_SECONDS = 3.0

# Overridable in tests; None means the default network transport
transport: Optional[httpx.AsyncBaseTransport] = None

# Deliveries still in flight; asyncio only keeps weak references to tasks
_pending = set()


async def deliver(event: str, payload: dict, url: str) -> bool:
    """POST one event to the notification hook. Failures are logged, never raised."""
    try:
        async with httpx.AsyncClient(timeout=NOTIFY_TIMEOUT_SECONDS, transport=transport) as client:
            response = await client.post(url, json={"event": event, "data": payload})
            response.raise_for_status()
        return True
    except Exception as e:
        logger.error("Failed to deliver %s notification: %s", event, e)
        return False


# Fire-and-forget event delivery; never lets a failure reach the caller
def notify(event: str, payload: dict) -> bool:
    logger.info("Notify %s: %s", event, payload)
    url = settings.NOTIFY_WEBHOOK_URL
    if not url:
        return False

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        # Worker thread (sync route) or script: no event loop to hold up
        return asyncio.run(deliver(event, payload, url))

    task = loop.create_task(deliver(event, payload, url))
    _pending.add(task)
    task.add_done_callback(_pending.discard)
    return True


async def drain():
    """Wait for every queued delivery to finish."""
    while _pending:
        await asyncio.gather(*list(_pending))
