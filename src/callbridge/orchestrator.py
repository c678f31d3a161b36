"""Per-call orchestration: placement, outcome callbacks, live relay and finalisation.

A call is finalised exactly once, when both of these hold: the telephony
vendor has reported a terminal status, and the call's media relay (if one
ever started) has torn down.  Whichever of the two happens last triggers
the report.
"""

import asyncio
import logging
import time
import uuid

from callbridge.config import Settings
from callbridge.convai import ConvAIClient
from callbridge.dispatcher import InstructionDispatcher
from callbridge.intent_detector import IntentClassifier
from callbridge.interruption import InterruptionClassifier
from callbridge.outcome import record_attempt
from callbridge.prompts import build_init_config
from callbridge.quality import QualityMonitor
from callbridge.registry import SessionRegistry
from callbridge.relay import AILeg, MediaRelay, TelephonyLeg
from callbridge.report import Reporter
from callbridge.retry import RetryScheduler, lead_phone_number
from callbridge.session import CallSession, RetryState
from callbridge.states import CallStatus, RetryPhase, is_machine_answer
from callbridge.telephony import TwilioClient
from callbridge.transcript import chunk_transcript_dump, to_timestamped_dump
from callbridge.validation import validate_lead_id, validate_phone, validate_text
from callbridge.webhook import WebhookClient

logger = logging.getLogger(__name__)

LEAD_TEXT_FIELDS = (
    "leadName",
    "LeadName",
    "PoC",
    "careNeededFor",
    "CareNeededFor",
    "careReason",
    "CareReason",
    "email",
    "first_message",
)


class CallOrchestrator:
    def __init__(
        self,
        settings: Settings,
        telephony: TwilioClient | None = None,
        convai: ConvAIClient | None = None,
        webhook: WebhookClient | None = None,
        registry: SessionRegistry | None = None,
        connect_ai=None,
        sleep=asyncio.sleep,
    ):
        self.settings = settings
        self.registry = registry or SessionRegistry(max_retries=settings.retry.max_retries)
        self.telephony = telephony
        self.convai = convai
        self.intents = IntentClassifier(settings.intent)
        self.interruptions = InterruptionClassifier()
        self.quality = QualityMonitor(settings.quality)
        self.reporter = Reporter(
            webhook or WebhookClient(settings.webhook),
            self.quality,
            self.intents,
            convai,
        )
        self.scheduler = RetryScheduler(
            self.registry,
            settings.retry,
            redial=self._redial if telephony is not None else None,
            sleep=sleep,
        )
        self._connect_ai = connect_ai or self._default_connect_ai
        self._dispatchers: dict[str, InstructionDispatcher] = {}
        self._tasks: set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, settings: Settings) -> "CallOrchestrator":
        telephony = TwilioClient(
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            from_number=settings.twilio_phone_number,
            public_host=settings.public_host,
        )
        convai = ConvAIClient(settings.elevenlabs_api_key, settings.elevenlabs_agent_id)
        return cls(settings, telephony=telephony, convai=convai)

    async def close(self) -> None:
        await self.wait_idle()
        for client in (self.telephony, self.convai):
            if client is not None:
                await client.close()

    # --- Background work ---

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait for every background task (including ones they spawn)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # --- Placement ---

    async def place_call(self, lead: dict) -> dict:
        number = validate_phone(lead.get("number") or lead.get("phoneNumber") or lead.get("PhoneNumber"))
        if not number:
            return {"success": False, "error": "invalid_number"}
        if self.telephony is None:
            return {"success": False, "error": "telephony_unavailable"}

        lead_id = validate_lead_id(lead.get("leadId") or lead.get("LeadId")) or uuid.uuid4().hex
        lead_info = {"phoneNumber": number, "leadId": lead_id}
        for key in LEAD_TEXT_FIELDS:
            value = validate_text(lead.get(key))
            if value:
                lead_info[key] = value
        prompt = validate_text(lead.get("prompt"), max_length=20000)
        if prompt:
            lead_info["prompt"] = prompt

        result = await self.telephony.create_call(number, lead_id=lead_id)
        if not result.get("success"):
            return {"success": False, "error": result.get("error", "call_failed")}

        call_sid = result["call_sid"]
        self.registry.create(lead_id, call_sid, number, lead_info)
        self.registry.track_call(lead_id, call_sid, number, lead_info)
        return {"success": True, "callSid": call_sid, "leadId": lead_id}

    async def _redial(self, state: RetryState) -> dict:
        result = await self.place_call({
            **state.lead_info,
            "number": lead_phone_number(state),
            "leadId": state.lead_id,
        })
        if not result["success"]:
            return result
        return {"success": True, "call_sid": result["callSid"]}

    # --- Vendor callbacks ---

    def handle_status_callback(self, form) -> dict:
        call_sid = form.get("CallSid")
        raw_status = form.get("CallStatus")
        status = CallStatus.parse(raw_status)
        if not call_sid or status is None:
            logger.warning("Malformed status callback: CallSid=%r CallStatus=%r", call_sid, raw_status)
            return {"success": False, "error": "invalid_callback"}

        session = self.registry.get(call_sid)
        if session is None:
            logger.warning("Status %s for unknown call %s", status.value, call_sid)
            return {"success": False, "error": "unknown_call"}
        if session.status.is_terminal:
            logger.info("Call %s already %s, ignoring %s", call_sid, session.status.value, status.value)
            return {"success": True, "status": session.status.value, "ignored": True}

        if form.get("AnsweredBy"):
            session.answered_by = form["AnsweredBy"]
        if form.get("SipResponseCode"):
            session.sip_response_code = str(form["SipResponseCode"])
        session.status = status
        session.touch()
        logger.info("Call %s status: %s", call_sid, status.value)

        retry_state = self.registry.get_retry(session.lead_id)
        if retry_state is not None:
            record_attempt(retry_state, call_sid, status, session.answered_by)

        if status.is_terminal:
            if retry_state is not None and retry_state.phase == RetryPhase.RETRY_NEEDED:
                self._spawn(self._schedule_retry(session.lead_id), f"retry-{session.lead_id}")
            self._maybe_finalize(session)
        return {"success": True, "status": status.value}

    def handle_amd_callback(self, form) -> dict:
        call_sid = form.get("CallSid")
        answered_by = form.get("AnsweredBy")
        if not call_sid or not answered_by:
            logger.warning("Malformed AMD callback: CallSid=%r AnsweredBy=%r", call_sid, answered_by)
            return {"success": False, "error": "invalid_callback"}

        session = self.registry.get(call_sid)
        if session is None:
            logger.warning("AMD result for unknown call %s", call_sid)
            return {"success": False, "error": "unknown_call"}

        session.answered_by = answered_by
        session.touch()
        if session.status.is_terminal:
            # Too late to change the retry decision; kept for the report only
            logger.info("Late AMD result %s for call %s", answered_by, call_sid)
            return {"success": True, "answeredBy": answered_by, "late": True}

        logger.info("AMD result for call %s: %s", call_sid, answered_by)
        dispatcher = self._dispatchers.get(call_sid)
        if dispatcher is not None and is_machine_answer(answered_by):
            self._spawn(dispatcher.dispatch_voicemail(session), f"voicemail-{call_sid}")
        return {"success": True, "answeredBy": answered_by}

    # --- Retry ---

    async def _schedule_retry(self, lead_id: str) -> dict:
        result = await self.scheduler.schedule(lead_id)
        self._clear_retry_if_done(lead_id)
        return result

    def _clear_retry_if_done(self, lead_id: str) -> None:
        state = self.registry.get_retry(lead_id)
        if state is None or not state.phase.is_terminal:
            return
        if self.registry.find_by_lead(lead_id) is not None:
            return
        self.registry.clear_retry(lead_id)

    def retry_info(self, lead_id: str) -> dict | None:
        state = self.registry.get_retry(lead_id)
        return state.to_dict() if state else None

    def clear_retry(self, lead_id: str) -> bool:
        return self.registry.clear_retry(lead_id)

    # --- Media stream ---

    async def run_media_stream(self, websocket) -> None:
        relay = MediaRelay(TelephonyLeg(websocket), self._connect_ai, self.settings.relay)
        relay.on_start.append(self._on_stream_start)
        relay.on_close.append(self._on_relay_closed)
        await relay.run()

    async def _default_connect_ai(self, relay: MediaRelay):
        if self.convai is None:
            logger.error("No speech AI client configured")
            return None
        signed_url = await self.convai.get_signed_url()
        if not signed_url:
            logger.error("Could not get signed URL for call %s", relay.call_sid)
            return None
        return await AILeg.connect(signed_url)

    def _bind_session(self, relay: MediaRelay) -> CallSession:
        session = self.registry.get(relay.call_sid)
        lead_id = relay.custom_parameters.get("leadId", "")
        if session is None and lead_id:
            session = self.registry.find_by_lead(lead_id)
        if session is None:
            logger.warning("Media stream for untracked call %s", relay.call_sid)
            session = self.registry.create(lead_id or relay.call_sid, relay.call_sid)
        return session

    async def _on_stream_start(self, relay: MediaRelay) -> None:
        session = self._bind_session(relay)
        session.stream_sid = relay.stream_sid
        session.relay_active = True
        if session.status in (CallStatus.INITIATING, CallStatus.RINGING):
            session.status = CallStatus.IN_PROGRESS
        relay.session = session
        self.quality.start(session.quality)

        dispatcher = InstructionDispatcher(relay.ai, self.intents, self.interruptions, self.quality)
        self._dispatchers[session.call_id] = dispatcher

        async def classify_intent(text: str) -> None:
            result = self.intents.classify(session.intent, text)
            if result["intent_detected"]:
                await dispatcher.dispatch_intent(session)

        async def detect_interruption(text: str) -> None:
            result = self.interruptions.process(session.interruption, text)
            if result["interruption_detected"]:
                await relay.clear_playback()
            await dispatcher.dispatch_interruption(session, result)

        async def observe_audio(payload: str) -> None:
            self.quality.observe(session.quality, payload)

        async def check_quality() -> None:
            await dispatcher.dispatch_quality(session)

        relay.on_caller_transcript.extend([classify_intent, detect_interruption])
        relay.on_caller_audio.append(observe_audio)
        relay.add_timer(self.settings.quality.check_interval_s, check_quality)

        voicemail = is_machine_answer(session.answered_by)
        if voicemail:
            session.voicemail_instructions_sent = True
        await relay.send_init(build_init_config(session.lead_info, voicemail=voicemail))

    async def _on_relay_closed(self, relay: MediaRelay) -> None:
        session = relay.session
        if session is None:
            return
        session.relay_active = False
        self._dispatchers.pop(session.call_id, None)
        self._maybe_finalize(session)

    # --- Finalisation ---

    def _maybe_finalize(self, session: CallSession) -> None:
        if session.finalized or session.relay_active or not session.status.is_terminal:
            return
        session.finalized = True
        self._spawn(self._finalize(session), f"finalize-{session.call_id}")

    async def _finalize(self, session: CallSession) -> None:
        try:
            retry_state = self.registry.get_retry(session.lead_id)
            await self.reporter.report(session, retry_state)
        except Exception as e:
            logger.error("Report for call %s failed: %s", session.call_id, e)
        finally:
            dump = to_timestamped_dump(
                session.transcript_log,
                session.created_at,
                session.call_id,
                session.lead_id,
                session.status.value,
            )
            for line in chunk_transcript_dump(dump):
                logger.info(line)
            self.registry.release(session.call_id)
            self._clear_retry_if_done(session.lead_id)
            logger.info(
                "Call %s finalized after %.0fs",
                session.call_id, time.time() - session.created_at,
            )
