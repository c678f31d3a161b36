"""Caller interruption and reschedule detection.

Works on the same caller transcript fragments as the intent classifier but
tracks conversational flow rather than intent: a request to be called back
later, or a temporary pause ("hold on, someone's at the door").
"""

import logging
import re
import time

from callbridge.session import InterruptionState

logger = logging.getLogger(__name__)

RESCHEDULE_PHRASES = (
    "call back",
    "call me back",
    "call later",
    "not a good time",
    "busy right now",
    "in a meeting",
    "driving",
    "can't talk",
    "bad time",
    "another time",
    "tomorrow",
    "next week",
    "later today",
    "later on",
    "in the afternoon",
    "in the morning",
    "schedule",
    "reschedule",
)

INTERRUPTION_PHRASES = (
    "hold on",
    "just a minute",
    "just a moment",
    "one moment",
    "one second",
    "hold please",
    "excuse me",
    "wait a moment",
    "wait a second",
    "give me a second",
    "someone's at the door",
    "someone's calling",
    "need to answer",
    "doorbell",
    "phone's ringing",
)

# A fragment at least this long with no pause phrase means the caller is back
RESUME_MIN_CHARS = 20

_SPECIFIC_TIME = re.compile(r"(\d{1,2})(:\d{2})?\s*(am|pm)", re.IGNORECASE)

# Checked in order; the first phrase found wins
_RELATIVE_TIMES = (
    ("tomorrow", {"type": "day", "offset": 1}),
    ("tonight", {"type": "period", "value": "evening", "day": 0}),
    ("this afternoon", {"type": "period", "value": "afternoon", "day": 0}),
    ("this evening", {"type": "period", "value": "evening", "day": 0}),
    ("morning", {"type": "period", "value": "morning", "day": 0}),
    ("afternoon", {"type": "period", "value": "afternoon", "day": 0}),
    ("evening", {"type": "period", "value": "evening", "day": 0}),
    ("next week", {"type": "week", "offset": 1}),
    ("next monday", {"type": "weekday", "value": 1}),
    ("next tuesday", {"type": "weekday", "value": 2}),
    ("next wednesday", {"type": "weekday", "value": 3}),
    ("next thursday", {"type": "weekday", "value": 4}),
    ("next friday", {"type": "weekday", "value": 5}),
    ("monday", {"type": "weekday", "value": 1}),
    ("tuesday", {"type": "weekday", "value": 2}),
    ("wednesday", {"type": "weekday", "value": 3}),
    ("thursday", {"type": "weekday", "value": 4}),
    ("friday", {"type": "weekday", "value": 5}),
)

_WEEKDAYS = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

RESCHEDULE = "reschedule"
INTERRUPTION = "interruption"
RESUMED = "resumed"


def extract_time_info(text: str) -> dict | None:
    """Pull a preferred callback time out of free text.

    A clock time ("3pm", "10:30 am") wins over relative phrases.
    """
    match = _SPECIFIC_TIME.search(text)
    if match:
        return {
            "type": "specific_time",
            "value": match.group(0),
            "hour": int(match.group(1)),
            "minute": int(match.group(2)[1:]) if match.group(2) else 0,
            "period": match.group(3).lower(),
        }

    lowered = text.lower()
    for phrase, info in _RELATIVE_TIMES:
        if phrase in lowered:
            return {"type": info["type"], "value": phrase, **info}
    return None


def _time_context(preferred: dict | None) -> str:
    if not preferred:
        return ""
    kind = preferred.get("type")
    if kind == "specific_time":
        return f" for {preferred['value']}"
    if kind == "period":
        value = preferred.get("value")
        if value == "evening":
            return " this evening"
        if value == "afternoon":
            return " this afternoon"
        return " tomorrow morning"
    if kind == "weekday":
        return f" on {_WEEKDAYS[preferred['value']]}"
    return ""


class InterruptionClassifier:
    def process(self, state: InterruptionState, text: str) -> dict:
        now = time.time()
        normalized = (text or "").lower().strip()

        has_reschedule = any(p in normalized for p in RESCHEDULE_PHRASES)
        has_interruption = any(p in normalized for p in INTERRUPTION_PHRASES)

        reschedule_detected = False
        interruption_detected = False
        resumed = False
        time_info = None

        if has_reschedule and not state.reschedule_detected:
            reschedule_detected = True
            state.reschedule_detected = True
            state.reschedule_count += 1
            time_info = extract_time_info(normalized)
            if time_info:
                state.preferred_callback_time = time_info
            state.log.append({
                "type": "reschedule_request",
                "timestamp": now,
                "transcript": normalized,
                "extracted_time": time_info,
            })
            logger.info("Reschedule request detected (time: %s)", time_info)

        if has_interruption and not state.active_pause:
            interruption_detected = True
            state.active_pause = True
            state.interruption_count += 1
            state.log.append({"type": "interruption", "timestamp": now, "transcript": normalized})
            logger.info("Caller interruption detected")

        if (
            state.active_pause
            and len(normalized) > RESUME_MIN_CHARS
            and not has_interruption
            and not has_reschedule
        ):
            state.active_pause = False
            resumed = True
            state.log.append({"type": "interruption_resolved", "timestamp": now})

        return {
            "timestamp": now,
            "reschedule_detected": reschedule_detected,
            "interruption_detected": interruption_detected,
            "resumed": resumed,
            "active_pause": state.active_pause,
            "interruption_count": state.interruption_count,
            "reschedule_count": state.reschedule_count,
            "preferred_callback_time": time_info or state.preferred_callback_time,
        }

    def pending_instruction(self, state: InterruptionState, result: dict) -> tuple[str, str] | None:
        """The (kind, text) directive this result calls for, if not already sent."""
        if result.get("reschedule_detected") and RESCHEDULE not in state.instructions_sent:
            context = _time_context(state.preferred_callback_time)
            return RESCHEDULE, (
                "I understand this isn't a good time to talk. "
                f"I'd be happy to reschedule{context}. Would that work for you?"
            )
        # A pause opened alongside a reschedule request still gets its directive
        # on a later fragment
        pausing = result.get("interruption_detected") or state.active_pause
        if pausing and INTERRUPTION not in state.instructions_sent:
            return INTERRUPTION, "I understand you need a moment. Take your time, I'll wait."
        if INTERRUPTION in state.instructions_sent and not state.active_pause:
            return RESUMED, "Thanks for coming back. Should we continue where we left off?"
        return None

    def mark_sent(self, state: InterruptionState, kind: str, text: str) -> None:
        if kind == RESUMED:
            # Re-arm so a later pause gets its own directive
            state.instructions_sent.discard(INTERRUPTION)
        else:
            state.instructions_sent.add(kind)
        state.log.append({"type": f"{kind}_instructions_sent", "timestamp": time.time(), "instructions": text})


def interruption_report(state: InterruptionState) -> dict:
    return {
        "interruptionCount": state.interruption_count,
        "rescheduleCount": state.reschedule_count,
        "rescheduleDetected": state.reschedule_detected,
        "preferredCallbackTime": state.preferred_callback_time,
        "interruptionLog": list(state.log),
    }
