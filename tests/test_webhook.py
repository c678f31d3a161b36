import httpx
import pytest
import respx
from unittest.mock import AsyncMock

from callbridge.config import WebhookConfig
from callbridge.webhook import WebhookClient

HOOK = "https://hooks.example.com/report"


class TestPostWithRetry:
    @respx.mock
    @pytest.mark.asyncio
    async def test_first_attempt(self):
        route = respx.post(HOOK).mock(return_value=httpx.Response(200))
        sleep = AsyncMock()
        client = WebhookClient(WebhookConfig(url=HOOK), sleep=sleep)
        result = await client.post_with_retry(HOOK, {"callSid": "CA1"})
        assert result["success"] is True
        assert result["status"] == 200
        assert result["attempts"] == 1
        assert "timestamp" in result
        assert route.called
        sleep.assert_not_awaited()

    @respx.mock
    @pytest.mark.asyncio
    async def test_succeeds_on_third_attempt(self):
        respx.post(HOOK).mock(side_effect=[
            httpx.Response(500),
            httpx.Response(500),
            httpx.Response(200),
        ])
        sleep = AsyncMock()
        client = WebhookClient(WebhookConfig(url=HOOK, retry_delay_s=1.0), sleep=sleep)
        result = await client.post_with_retry(HOOK, {"callSid": "CA1"})
        assert result["success"] is True
        assert result["attempts"] == 3
        # Linear backoff: 1s then 2s
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @respx.mock
    @pytest.mark.asyncio
    async def test_gives_up(self):
        respx.post(HOOK).mock(return_value=httpx.Response(502))
        client = WebhookClient(WebhookConfig(url=HOOK), sleep=AsyncMock())
        result = await client.post_with_retry(HOOK, {"callSid": "CA1"})
        assert result["success"] is False
        assert result["error"] == "HTTP 502"
        assert result["attempts"] == 3

    @respx.mock
    @pytest.mark.asyncio
    async def test_network_error(self):
        respx.post(HOOK).mock(side_effect=httpx.ConnectError("refused"))
        client = WebhookClient(WebhookConfig(url=HOOK, retry_attempts=1), sleep=AsyncMock())
        result = await client.post_with_retry(HOOK, {})
        assert result["success"] is False
        assert result["attempts"] == 1
        assert "refused" in result["error"]


class TestDeliver:
    @pytest.mark.asyncio
    async def test_disabled(self):
        client = WebhookClient(WebhookConfig(url=HOOK, enabled=False))
        result = await client.deliver({"callSid": "CA1"})
        assert result == {"success": False, "reason": "webhooks_disabled", "attempts": 0}

    @pytest.mark.asyncio
    async def test_no_url(self):
        client = WebhookClient(WebhookConfig())
        result = await client.deliver({"callSid": "CA1"})
        assert result == {"success": False, "reason": "no_webhook_url", "attempts": 0}

    @respx.mock
    @pytest.mark.asyncio
    async def test_explicit_url_wins(self):
        other = respx.post("https://hooks.example.com/voicemail").mock(return_value=httpx.Response(200))
        client = WebhookClient(WebhookConfig(url=HOOK))
        result = await client.deliver({"callSid": "CA1"}, "https://hooks.example.com/voicemail")
        assert result["success"] is True
        assert other.called
