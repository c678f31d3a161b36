import asyncio

import pytest

from callbridge.config import Settings, WebhookConfig, RetryConfig
from callbridge.registry import SessionRegistry
from callbridge.session import CallSession


class FakeLeg:
    """Queue-backed duplex leg. Push frames in with feed(), read sends from .sent."""

    def __init__(self):
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.sent: list[dict] = []
        self.is_open = True
        self.closed = False

    def feed(self, message: dict | None) -> None:
        self.inbox.put_nowait(message)

    def end(self) -> None:
        self.inbox.put_nowait(None)

    async def receive(self):
        if not self.is_open:
            return None
        message = await self.inbox.get()
        if message is None:
            self.is_open = False
        return message

    async def send_json(self, message: dict) -> None:
        if not self.is_open:
            raise RuntimeError("leg closed")
        self.sent.append(message)

    async def close(self) -> None:
        self.is_open = False
        self.closed = True
        self.inbox.put_nowait(None)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def settings():
    return Settings(
        twilio_account_sid="AC123",
        twilio_auth_token="token",
        twilio_phone_number="+15550001111",
        elevenlabs_api_key="xi-key",
        elevenlabs_agent_id="agent_1",
        public_host="bridge.example.com",
        retry=RetryConfig(max_retries=2, retry_delay_s=0.0),
        webhook=WebhookConfig(url="https://hooks.example.com/report", retry_delay_s=0.0),
    )


@pytest.fixture
def session():
    return CallSession(lead_id="lead_1", call_id="CA100", phone_number="+15125551234")


@pytest.fixture
def registry():
    return SessionRegistry(max_retries=2)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_leg():
    return FakeLeg


async def _no_sleep(_seconds):
    return None


@pytest.fixture
def no_sleep():
    return _no_sleep
