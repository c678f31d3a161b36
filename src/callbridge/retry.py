import asyncio
import logging
import time
from typing import Awaitable, Callable

import httpx

from callbridge.circuit_breaker import CircuitBreaker
from callbridge.config import RetryConfig
from callbridge.registry import (
    ALREADY_SCHEDULED,
    CLAIMED,
    MAX_RETRIES_REACHED,
    NOT_NEEDED,
    SessionRegistry,
)
from callbridge.session import RetryState

logger = logging.getLogger(__name__)

_VERDICT_ERRORS = {
    ALREADY_SCHEDULED: "Retry already scheduled",
    NOT_NEEDED: "No retry needed",
    MAX_RETRIES_REACHED: "Maximum retries reached",
}


def lead_phone_number(state: RetryState) -> str:
    info = state.lead_info or {}
    return state.phone_number or info.get("phoneNumber") or info.get("number") or ""


class RetryScheduler:
    """Requests another attempt for a lead, bounded by max_retries.

    The preferred channel is a scheduling webhook that places the redial
    later on its own.  When it is unset, failing or circuit-broken, the
    scheduler waits the retry delay itself and redials directly.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        config: RetryConfig | None = None,
        redial: Callable[[RetryState], Awaitable[dict]] | None = None,
        client: httpx.AsyncClient | None = None,
        sleep=asyncio.sleep,
    ):
        self.registry = registry
        self.config = config or RetryConfig()
        self.redial = redial
        self._client = client
        self._sleep = sleep
        self._circuit = CircuitBreaker(
            failure_threshold=3,
            cooldown_seconds=300.0,
            label="retry scheduling webhook",
        )

    async def schedule(self, lead_id: str) -> dict:
        # Check-and-set of the guard happens before the first await
        verdict, state = self.registry.claim_retry(lead_id)
        if state is None:
            logger.error("Cannot schedule retry: no state for lead %s", lead_id)
            return {"success": False, "error": "No state for lead"}
        if verdict != CLAIMED:
            logger.info("Not scheduling retry for lead %s: %s", lead_id, _VERDICT_ERRORS[verdict])
            return {
                "success": False,
                "error": _VERDICT_ERRORS[verdict],
                "retryCount": state.retry_count,
            }

        logger.info("Scheduling retry for lead %s (attempt %d, reason %s)", lead_id, state.retry_count, state.retry_reason)

        if self.config.webhook_url and self._circuit.should_try():
            result = await self._request_via_webhook(state)
            if result["success"]:
                return result
            logger.warning("Falling back to direct redial for lead %s", lead_id)
        elif self.config.webhook_url:
            logger.warning("Scheduling webhook circuit open, redialing lead %s directly", lead_id)

        return await self._direct_redial(state)

    async def _post(self, payload: dict) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self.config.webhook_url, json=payload, timeout=self.config.timeout_s)
        async with httpx.AsyncClient(timeout=self.config.timeout_s) as client:
            return await client.post(self.config.webhook_url, json=payload)

    async def _request_via_webhook(self, state: RetryState) -> dict:
        delay_ms = int(self.config.retry_delay_s * 1000)
        payload = {
            "type": "retry_call",
            "leadId": state.lead_id,
            "phoneNumber": lead_phone_number(state),
            "retryCount": state.retry_count,
            "retryReason": state.retry_reason,
            "retryDelayMs": delay_ms,
            "leadInfo": state.lead_info,
        }
        try:
            resp = await self._post(payload)
            resp.raise_for_status()
        except Exception as e:
            self._circuit.record_failure()
            logger.error("Retry scheduling webhook failed for lead %s: %s", state.lead_id, e)
            return {"success": False, "error": str(e), "method": "webhook"}
        self._circuit.record_success()
        logger.info("Retry for lead %s handed to scheduling webhook (status %d)", state.lead_id, resp.status_code)
        return {
            "success": True,
            "method": "webhook",
            "retryCount": state.retry_count,
            "retryTimestamp": time.time() + self.config.retry_delay_s,
        }

    async def _direct_redial(self, state: RetryState) -> dict:
        if self.redial is None:
            logger.error("No direct redial available for lead %s", state.lead_id)
            self.registry.release_retry_claim(state.lead_id)
            return {"success": False, "error": "No telephony client", "method": "direct"}
        if not lead_phone_number(state):
            logger.error("No phone number available for lead %s", state.lead_id)
            self.registry.release_retry_claim(state.lead_id)
            return {"success": False, "error": "No phone number", "method": "direct"}

        logger.info("Waiting %.0fs before redialing lead %s", self.config.retry_delay_s, state.lead_id)
        await self._sleep(self.config.retry_delay_s)

        try:
            result = await self.redial(state)
        except Exception as e:
            logger.error("Direct redial for lead %s raised: %s", state.lead_id, e)
            result = {"success": False, "error": str(e)}

        if not result.get("success"):
            self.registry.release_retry_claim(state.lead_id)
            return {"success": False, "error": result.get("error", "redial failed"), "method": "direct"}

        logger.info("Redial placed for lead %s: call %s", state.lead_id, result.get("call_sid"))
        return {
            "success": True,
            "method": "direct",
            "retryCount": state.retry_count,
            "callSid": result.get("call_sid"),
        }
