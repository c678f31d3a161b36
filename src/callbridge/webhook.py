import asyncio
import logging
from datetime import datetime, timezone

import httpx

from callbridge.config import WebhookConfig

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class WebhookClient:
    """HTTP client for delivering post-call reports.

    Retries with linearly increasing backoff (attempt * base delay) and
    never raises; callers inspect the returned result dict.
    """

    def __init__(
        self,
        config: WebhookConfig | None = None,
        client: httpx.AsyncClient | None = None,
        sleep=asyncio.sleep,
    ):
        self.config = config or WebhookConfig()
        self._client = client
        self._sleep = sleep

    async def _post(self, url: str, payload: dict) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(url, json=payload, timeout=self.config.timeout_s)
        async with httpx.AsyncClient(timeout=self.config.timeout_s) as client:
            return await client.post(url, json=payload)

    async def post_with_retry(self, url: str, payload: dict, label: str = "Webhook") -> dict:
        attempts_allowed = max(1, self.config.retry_attempts)
        last_error = "unknown error"
        for attempt in range(1, attempts_allowed + 1):
            try:
                resp = await self._post(url, payload)
                resp.raise_for_status()
                logger.info("%s delivered on attempt %d (status %d)", label, attempt, resp.status_code)
                return {
                    "success": True,
                    "status": resp.status_code,
                    "attempts": attempt,
                    "timestamp": _now_iso(),
                }
            except httpx.HTTPStatusError as e:
                last_error = f"HTTP {e.response.status_code}"
                logger.error(
                    "%s attempt %d/%d returned %s: %s",
                    label, attempt, attempts_allowed, e.response.status_code, e.response.text,
                )
            except Exception as e:
                last_error = str(e) or type(e).__name__
                logger.error("%s attempt %d/%d failed: %s", label, attempt, attempts_allowed, e)
            if attempt < attempts_allowed:
                await self._sleep(self.config.retry_delay_s * attempt)

        logger.error("%s failed after %d attempts", label, attempts_allowed)
        return {
            "success": False,
            "error": last_error,
            "attempts": attempts_allowed,
            "timestamp": _now_iso(),
        }

    async def deliver(self, payload: dict, url: str | None = None) -> dict:
        """Send a report to url (default: the main webhook URL)."""
        if not self.config.enabled:
            logger.info("Webhooks disabled, not sending report for call %s", payload.get("callSid"))
            return {"success": False, "reason": "webhooks_disabled", "attempts": 0}
        target = url or self.config.url
        if not target:
            logger.warning("No webhook URL configured, skipping report")
            return {"success": False, "reason": "no_webhook_url", "attempts": 0}
        return await self.post_with_retry(target, payload, f"Report for call {payload.get('callSid', '?')}")
