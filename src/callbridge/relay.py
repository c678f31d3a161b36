"""Bidirectional frame pump between the telephony media stream and the AI leg.

The relay owns both connections for one call.  Everything else hooks in
through ordered subscriber lists (start, caller transcript, caller audio,
close) and periodic timers; subscribers run inside a per-frame error
boundary so a failing classifier never stops the pump.
"""

import asyncio
import base64
import binascii
import json
import logging
from typing import Awaitable, Callable, Optional

import aiohttp
from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from callbridge.config import RelayConfig

logger = logging.getLogger(__name__)

CALLER_ROLES = {"user", "lead"}


class TelephonyLeg:
    """The vendor's media stream, accepted on our FastAPI websocket route."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket
        self._closed = False

    @property
    def is_open(self) -> bool:
        return not self._closed and self.websocket.client_state == WebSocketState.CONNECTED

    async def receive(self) -> Optional[dict]:
        """Next JSON event, or None once the stream has ended."""
        while True:
            try:
                raw = await self.websocket.receive_text()
            except WebSocketDisconnect:
                self._closed = True
                return None
            try:
                return json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Dropping non-JSON telephony frame")

    async def send_json(self, message: dict) -> None:
        await self.websocket.send_text(json.dumps(message))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.websocket.client_state == WebSocketState.CONNECTED:
            await self.websocket.close()


class AILeg:
    """Client websocket to the conversational AI, opened with aiohttp."""

    def __init__(self, session: aiohttp.ClientSession, ws: aiohttp.ClientWebSocketResponse):
        self._session = session
        self._ws = ws

    @classmethod
    async def connect(cls, url: str, heartbeat: float = 20.0) -> "AILeg":
        session = aiohttp.ClientSession()
        try:
            ws = await session.ws_connect(url, heartbeat=heartbeat, max_msg_size=2**23)
        except Exception:
            await session.close()
            raise
        return cls(session, ws)

    @property
    def is_open(self) -> bool:
        return not self._ws.closed

    async def receive(self) -> Optional[dict]:
        while True:
            msg = await self._ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                try:
                    return json.loads(msg.data)
                except json.JSONDecodeError:
                    logger.warning("Dropping non-JSON AI frame")
                    continue
            if msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                return None
            if msg.type == aiohttp.WSMsgType.ERROR:
                logger.error("AI websocket error: %s", self._ws.exception())
                return None

    async def send_json(self, message: dict) -> None:
        await self._ws.send_json(message)

    async def close(self) -> None:
        try:
            await self._ws.close()
        finally:
            await self._session.close()


def ai_audio_chunk(message: dict) -> str:
    """Base64 audio from either of the AI leg's two audio message shapes."""
    audio = message.get("audio") or {}
    if audio.get("chunk"):
        return audio["chunk"]
    event = message.get("audio_event") or {}
    return event.get("audio_base_64") or ""


def ai_transcript(message: dict) -> tuple[str, str] | None:
    """(role, text) carried by a transcript-bearing AI message, if any."""
    kind = message.get("type")
    if kind == "transcript":
        body = message.get("transcript") or {}
        text = (body.get("text") or "").strip()
        return (body.get("speaker") or "user", text) if text else None
    if kind == "user_transcript":
        text = ((message.get("user_transcription_event") or {}).get("user_transcript") or "").strip()
        return ("user", text) if text else None
    if kind == "agent_response":
        text = ((message.get("agent_response_event") or {}).get("agent_response") or "").strip()
        return ("agent", text) if text else None
    return None


class MediaRelay:
    def __init__(
        self,
        telephony,
        connect_ai: Callable[["MediaRelay"], Awaitable[object]],
        config: RelayConfig | None = None,
    ):
        self.telephony = telephony
        self.ai = None
        self.config = config or RelayConfig()
        self._connect_ai = connect_ai

        self.stream_sid = ""
        self.call_sid = ""
        self.custom_parameters: dict = {}
        self.conversation_id = ""
        self.session = None
        self.closed = False

        self._init_sent = False
        self._timers: list[tuple[float, Callable]] = []
        self._tasks: list[asyncio.Task] = []

        self.on_start: list[Callable] = []
        self.on_caller_transcript: list[Callable] = []
        self.on_caller_audio: list[Callable] = []
        self.on_close: list[Callable] = []

    def add_timer(self, interval: float, callback: Callable[[], Awaitable[None]]) -> None:
        self._timers.append((interval, callback))

    # --- Sending ---

    async def _send(self, leg, message: dict, label: str) -> bool:
        if leg is None or not leg.is_open:
            logger.debug("%s leg not open, dropping %s", label, message.get("type") or message.get("event"))
            return False
        try:
            await leg.send_json(message)
            return True
        except Exception as e:
            logger.error("Send to %s leg failed: %s", label, e)
            return False

    async def send_ai(self, message: dict) -> bool:
        return await self._send(self.ai, message, "AI")

    async def send_telephony(self, message: dict) -> bool:
        return await self._send(self.telephony, message, "telephony")

    async def send_init(self, config: dict) -> bool:
        """Send the conversation configuration; only the first call has effect."""
        if self._init_sent:
            return False
        self._init_sent = True
        return await self.send_ai(config)

    async def clear_playback(self) -> bool:
        if not self.stream_sid:
            return False
        return await self.send_telephony({"event": "clear", "streamSid": self.stream_sid})

    # --- Main loop ---

    async def run(self) -> None:
        try:
            if not await self._await_start():
                return
            try:
                self.ai = await self._connect_ai(self)
            except Exception as e:
                logger.error("Failed to connect AI leg for call %s: %s", self.call_sid, e)
                return
            if self.ai is None:
                return

            for callback in self.on_start:
                await self._notify(callback, self)

            pumps = [
                asyncio.create_task(self._pump_telephony(), name="telephony-pump"),
                asyncio.create_task(self._pump_ai(), name="ai-pump"),
            ]
            timers = [asyncio.create_task(self._run_timer(i, cb)) for i, cb in self._timers]
            self._tasks = pumps + timers

            done, _ = await asyncio.wait(pumps, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    logger.error("%s ended with error: %s", task.get_name(), task.exception())
        finally:
            await self.teardown()

    async def _await_start(self) -> bool:
        while True:
            message = await self.telephony.receive()
            if message is None:
                logger.info("Telephony stream closed before start")
                return False
            if not isinstance(message, dict):
                continue
            event = message.get("event")
            if event == "start":
                start = message.get("start") or {}
                self.stream_sid = start.get("streamSid", "")
                self.call_sid = start.get("callSid", "")
                self.custom_parameters = dict(start.get("customParameters") or {})
                logger.info("Stream started: streamSid=%s callSid=%s", self.stream_sid, self.call_sid)
                return True
            if event == "stop":
                return False
            # "connected" and any early media are ignored

    async def _pump_telephony(self) -> None:
        while True:
            message = await self.telephony.receive()
            if message is None:
                logger.info("Telephony leg disconnected (call %s)", self.call_sid)
                return
            if not isinstance(message, dict):
                logger.warning("Dropping malformed telephony frame (call %s)", self.call_sid)
                continue
            event = message.get("event")
            if event == "stop":
                logger.info("Stream %s stopped", self.stream_sid)
                return
            try:
                if event == "media":
                    await self._relay_caller_audio(message)
            except Exception as e:
                logger.error("Error handling telephony %s event: %s", event, e)

    async def _relay_caller_audio(self, message: dict) -> None:
        payload = (message.get("media") or {}).get("payload", "")
        for callback in self.on_caller_audio:
            await self._notify(callback, payload)
        await self.send_ai({"user_audio_chunk": payload})

    async def _pump_ai(self) -> None:
        while True:
            message = await self.ai.receive()
            if message is None:
                logger.info("AI leg disconnected (call %s)", self.call_sid)
                return
            if not isinstance(message, dict):
                logger.warning("Dropping malformed AI frame (call %s)", self.call_sid)
                continue
            kind = message.get("type")
            try:
                await self._handle_ai_message(message)
            except Exception as e:
                logger.error("Error handling AI message %s: %s", kind, e)

    async def _handle_ai_message(self, message: dict) -> None:
        kind = message.get("type")

        if kind == "conversation_initiation_metadata":
            event = message.get("conversation_initiation_metadata_event") or {}
            self.conversation_id = event.get("conversation_id", "")
            if self.session is not None:
                self.session.conversation_id = self.conversation_id
            logger.info("Conversation %s started for call %s", self.conversation_id, self.call_sid)

        elif kind == "audio":
            chunk = ai_audio_chunk(message)
            if chunk and self.stream_sid and not self._is_hold_marker(chunk):
                await self.send_telephony({
                    "event": "media",
                    "streamSid": self.stream_sid,
                    "media": {"payload": chunk},
                })

        elif kind == "interruption":
            await self.clear_playback()

        elif kind == "ping":
            event_id = (message.get("ping_event") or {}).get("event_id")
            if event_id is not None:
                await self.send_ai({"type": "pong", "event_id": event_id})

        else:
            transcript = ai_transcript(message)
            if transcript is None:
                return
            role, text = transcript
            is_caller = role in CALLER_ROLES
            if self.session is not None:
                self.session.append_transcript("user" if is_caller else "agent", text)
            if is_caller:
                for callback in self.on_caller_transcript:
                    await self._notify(callback, text)

    def _is_hold_marker(self, chunk: str) -> bool:
        try:
            size = len(base64.b64decode(chunk))
        except (binascii.Error, ValueError):
            return False
        return size < self.config.min_ai_audio_bytes

    async def _run_timer(self, interval: float, callback) -> None:
        while True:
            await asyncio.sleep(interval)
            await self._notify(callback)

    async def _notify(self, callback, *args) -> None:
        try:
            await callback(*args)
        except Exception as e:
            logger.error("Relay subscriber %s failed: %s", getattr(callback, "__name__", callback), e)

    async def teardown(self) -> None:
        if self.closed:
            return
        self.closed = True
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        for leg, label in ((self.ai, "AI"), (self.telephony, "telephony")):
            if leg is None:
                continue
            try:
                await leg.close()
            except Exception as e:
                logger.warning("Closing %s leg failed: %s", label, e)
        for callback in self.on_close:
            await self._notify(callback, self)
        logger.info("Relay torn down for call %s", self.call_sid)
