import logging

from callbridge.intent_detector import IntentClassifier
from callbridge.interruption import InterruptionClassifier
from callbridge.prompts import voicemail_instructions
from callbridge.quality import QualityMonitor
from callbridge.session import CallSession

logger = logging.getLogger(__name__)


class InstructionDispatcher:
    """Turns classifier output into directives on the AI leg.

    Every directive is marked as sent before the send is awaited, so two
    tasks racing on the same call can never both deliver it.  A directive
    aimed at a closed leg is dropped, never queued.
    """

    def __init__(
        self,
        leg,
        intents: IntentClassifier,
        interruptions: InterruptionClassifier,
        quality: QualityMonitor,
    ):
        self.leg = leg
        self.intents = intents
        self.interruptions = interruptions
        self.quality = quality
        self.sent: list[dict] = []

    async def send(self, text: str, kind: str) -> bool:
        if self.leg is None or not self.leg.is_open:
            logger.warning("AI leg not open, dropping %s instruction", kind)
            return False
        try:
            await self.leg.send_json({"type": "instruction", "instruction": text})
        except Exception as e:
            logger.error("Failed to send %s instruction: %s", kind, e)
            return False
        self.sent.append({"kind": kind, "instruction": text})
        logger.info("Sent %s instruction", kind)
        return True

    async def dispatch_intent(self, session: CallSession) -> bool:
        text = self.intents.pending_instructions(session.intent)
        if text is None:
            return False
        session.intent.instructions_sent = True
        return await self.send(text, f"intent:{session.intent.primary.name}")

    async def dispatch_interruption(self, session: CallSession, result: dict) -> bool:
        pending = self.interruptions.pending_instruction(session.interruption, result)
        if pending is None:
            return False
        kind, text = pending
        self.interruptions.mark_sent(session.interruption, kind, text)
        return await self.send(text, f"interruption:{kind}")

    async def dispatch_quality(self, session: CallSession) -> bool:
        pending = self.quality.pending_instruction(session.quality)
        if pending is None:
            return False
        issue, text = pending
        self.quality.mark_sent(session.quality, issue, text)
        return await self.send(text, f"quality:{issue}")

    async def dispatch_voicemail(self, session: CallSession) -> bool:
        if session.voicemail_instructions_sent:
            return False
        session.voicemail_instructions_sent = True
        return await self.send(voicemail_instructions(session.lead_info), "voicemail")
