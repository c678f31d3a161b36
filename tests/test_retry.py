import json

import httpx
import pytest
import respx
from unittest.mock import AsyncMock

from callbridge.config import RetryConfig
from callbridge.outcome import record_attempt
from callbridge.registry import SessionRegistry
from callbridge.retry import RetryScheduler, lead_phone_number
from callbridge.session import RetryState
from callbridge.states import CallStatus, RetryPhase

RETRY_HOOK = "https://hooks.example.com/retry"


def _failed_attempt(registry, call_id, lead_id="lead_1"):
    state = registry.track_call(lead_id, call_id, "+15125551234", {"leadName": "Ann"})
    record_attempt(state, call_id, CallStatus.NO_ANSWER)
    return state


@pytest.fixture
def registry():
    return SessionRegistry(max_retries=2)


class TestLeadPhoneNumber:
    def test_prefers_state_number(self):
        state = RetryState(lead_id="l", max_retries=2, phone_number="+1", lead_info={"phoneNumber": "+2"})
        assert lead_phone_number(state) == "+1"

    def test_falls_back_to_lead_info(self):
        state = RetryState(lead_id="l", max_retries=2, lead_info={"number": "+3"})
        assert lead_phone_number(state) == "+3"


class TestScheduleGuards:
    @pytest.mark.asyncio
    async def test_no_state(self, registry):
        scheduler = RetryScheduler(registry, RetryConfig())
        result = await scheduler.schedule("ghost")
        assert result == {"success": False, "error": "No state for lead"}

    @pytest.mark.asyncio
    async def test_not_needed(self, registry):
        registry.track_call("lead_1", "CA1")
        scheduler = RetryScheduler(registry, RetryConfig())
        result = await scheduler.schedule("lead_1")
        assert result["error"] == "No retry needed"

    @pytest.mark.asyncio
    async def test_already_scheduled(self, registry, no_sleep):
        _failed_attempt(registry, "CA1")
        redial = AsyncMock(return_value={"success": True, "call_sid": "CA2"})
        scheduler = RetryScheduler(registry, RetryConfig(retry_delay_s=0), redial=redial, sleep=no_sleep)
        first = await scheduler.schedule("lead_1")
        second = await scheduler.schedule("lead_1")
        assert first["success"] is True
        assert second == {"success": False, "error": "Retry already scheduled", "retryCount": 1}
        redial.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_max_retries(self, registry, no_sleep):
        call_ids = iter(["CA2", "CA3"])

        async def redial(state):
            call_sid = next(call_ids)
            registry.track_call(state.lead_id, call_sid)
            return {"success": True, "call_sid": call_sid}

        scheduler = RetryScheduler(registry, RetryConfig(retry_delay_s=0), redial=redial, sleep=no_sleep)

        _failed_attempt(registry, "CA1")
        assert (await scheduler.schedule("lead_1"))["retryCount"] == 1
        record_attempt(registry.get_retry("lead_1"), "CA2", CallStatus.BUSY)
        assert (await scheduler.schedule("lead_1"))["retryCount"] == 2
        record_attempt(registry.get_retry("lead_1"), "CA3", CallStatus.NO_ANSWER)
        result = await scheduler.schedule("lead_1")

        assert result == {"success": False, "error": "Maximum retries reached", "retryCount": 2}
        state = registry.get_retry("lead_1")
        assert state.phase == RetryPhase.RETRY_EXHAUSTED
        assert len(state.call_history) == 3


class TestWebhookChannel:
    @respx.mock
    @pytest.mark.asyncio
    async def test_webhook_success(self, registry):
        route = respx.post(RETRY_HOOK).mock(return_value=httpx.Response(200))
        _failed_attempt(registry, "CA1")
        redial = AsyncMock()
        scheduler = RetryScheduler(registry, RetryConfig(webhook_url=RETRY_HOOK, retry_delay_s=60), redial=redial)
        result = await scheduler.schedule("lead_1")

        assert result["success"] is True
        assert result["method"] == "webhook"
        assert result["retryCount"] == 1
        redial.assert_not_awaited()
        body = json.loads(route.calls[0].request.content)
        assert body["type"] == "retry_call"
        assert body["leadId"] == "lead_1"
        assert body["phoneNumber"] == "+15125551234"
        assert body["retryReason"] == "no-answer"
        assert body["retryDelayMs"] == 60000
        assert body["leadInfo"] == {"leadName": "Ann"}

    @respx.mock
    @pytest.mark.asyncio
    async def test_webhook_failure_falls_back_to_redial(self, registry, no_sleep):
        respx.post(RETRY_HOOK).mock(return_value=httpx.Response(500))
        _failed_attempt(registry, "CA1")
        redial = AsyncMock(return_value={"success": True, "call_sid": "CA2"})
        scheduler = RetryScheduler(
            registry, RetryConfig(webhook_url=RETRY_HOOK, retry_delay_s=0), redial=redial, sleep=no_sleep,
        )
        result = await scheduler.schedule("lead_1")
        assert result == {"success": True, "method": "direct", "retryCount": 1, "callSid": "CA2"}

    @respx.mock
    @pytest.mark.asyncio
    async def test_breaker_skips_webhook(self, no_sleep):
        route = respx.post(RETRY_HOOK).mock(return_value=httpx.Response(503))
        redial = AsyncMock(return_value={"success": True, "call_sid": "CAx"})
        registry = SessionRegistry(max_retries=10)
        scheduler = RetryScheduler(
            registry, RetryConfig(webhook_url=RETRY_HOOK, retry_delay_s=0), redial=redial, sleep=no_sleep,
        )
        for i in range(4):
            _failed_attempt(registry, f"CA{i}", lead_id=f"lead_{i}")
            await scheduler.schedule(f"lead_{i}")
        assert route.call_count == 3
        assert redial.await_count == 4


class TestDirectRedial:
    @pytest.mark.asyncio
    async def test_waits_retry_delay(self, registry):
        _failed_attempt(registry, "CA1")
        sleep = AsyncMock()
        redial = AsyncMock(return_value={"success": True, "call_sid": "CA2"})
        scheduler = RetryScheduler(registry, RetryConfig(retry_delay_s=60), redial=redial, sleep=sleep)
        await scheduler.schedule("lead_1")
        sleep.assert_awaited_once_with(60)

    @pytest.mark.asyncio
    async def test_no_redial_releases_claim(self, registry):
        _failed_attempt(registry, "CA1")
        scheduler = RetryScheduler(registry, RetryConfig())
        result = await scheduler.schedule("lead_1")
        assert result["success"] is False
        state = registry.get_retry("lead_1")
        assert state.retry_scheduled is False
        assert state.phase == RetryPhase.RETRY_NEEDED

    @pytest.mark.asyncio
    async def test_failed_redial_releases_claim(self, registry, no_sleep):
        _failed_attempt(registry, "CA1")
        redial = AsyncMock(return_value={"success": False, "error": "HTTP 400"})
        scheduler = RetryScheduler(registry, RetryConfig(retry_delay_s=0), redial=redial, sleep=no_sleep)
        result = await scheduler.schedule("lead_1")
        assert result == {"success": False, "error": "HTTP 400", "method": "direct"}
        state = registry.get_retry("lead_1")
        assert state.retry_scheduled is False
        assert state.retry_count == 1

    @pytest.mark.asyncio
    async def test_redial_exception_releases_claim(self, registry, no_sleep):
        _failed_attempt(registry, "CA1")
        redial = AsyncMock(side_effect=RuntimeError("network down"))
        scheduler = RetryScheduler(registry, RetryConfig(retry_delay_s=0), redial=redial, sleep=no_sleep)
        result = await scheduler.schedule("lead_1")
        assert result["success"] is False
        assert registry.get_retry("lead_1").retry_scheduled is False

    @pytest.mark.asyncio
    async def test_missing_phone(self, no_sleep):
        registry = SessionRegistry()
        state = registry.track_call("lead_1", "CA1")
        record_attempt(state, "CA1", CallStatus.BUSY)
        redial = AsyncMock()
        scheduler = RetryScheduler(registry, RetryConfig(), redial=redial, sleep=no_sleep)
        result = await scheduler.schedule("lead_1")
        assert result["error"] == "No phone number"
        redial.assert_not_awaited()
