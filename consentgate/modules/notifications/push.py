import logging
import httpx
from consentgate.core.config import settings

logger = logging.getLogger(__name__)

async def deliver_push(payload: dict) -> bool:
    """POST the notification to the push gateway; False when unset or failed."""
    if not settings.PUSH_WEBHOOK_URL:
        logger.debug("PUSH_WEBHOOK_URL is not set; notification kept in-app only")
        return False
    try:
        async with httpx.AsyncClient() as client:
            resp = await client.post(settings.PUSH_WEBHOOK_URL, json=payload, timeout=settings.PUSH_TIMEOUT_SECONDS)
            resp.raise_for_status()
        return True
    except httpx.HTTPError as e:
        logger.warning(f"Push delivery failed: {e}")
        return False
