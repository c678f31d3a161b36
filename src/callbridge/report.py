import logging
import time
from datetime import datetime, timezone

from callbridge.intent_detector import (
    IntentClassifier,
    has_negative_intent,
    has_scheduling_intent,
    intent_report,
)
from callbridge.interruption import interruption_report
from callbridge.quality import QualityMonitor
from callbridge.session import CallSession, RetryState
from callbridge.states import RetryPhase, is_machine_answer
from callbridge.transcript import to_json_array

logger = logging.getLogger(__name__)

_WEEKDAYS = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


def describe_callback_time(time_info: dict | None) -> str:
    if not time_info:
        return ""
    kind = time_info.get("type")
    if kind == "specific_time":
        return f"at {time_info['value']}"
    if kind == "period":
        return f"in the {time_info['value']}"
    if kind == "weekday":
        return f"on {_WEEKDAYS[time_info['value']]}"
    if kind == "day" and time_info.get("offset") == 1:
        return "tomorrow"
    if kind == "week" and time_info.get("offset") == 1:
        return "next week"
    return ""


def generate_summary(session: CallSession, payload: dict) -> dict:
    """Derive outcome, follow-up and key points from the call's final state.

    Later rules override earlier ones: exhausted retries beat a pending retry,
    which beats urgent care, then a negative intent, then a callback request.
    """
    outcome = "completed"
    follow_up_needed = False
    follow_up_type = None
    urgency = "normal"

    interruption = payload.get("interruptionData") or {}
    intent = payload.get("intentData") or {}
    quality = payload.get("qualityMetrics") or {}
    retry = payload.get("retryInfo") or {}

    if has_scheduling_intent(session.intent):
        outcome = "needs_callback"
        follow_up_needed = True
        follow_up_type = "scheduled_callback"
        if interruption.get("preferredCallbackTime"):
            follow_up_type = "scheduled_at_specific_time"

    if has_negative_intent(session.intent):
        outcome = "not_interested"
        follow_up_needed = False

    primary = intent.get("primaryIntent") or {}
    if primary.get("name") == "needs_immediate_care":
        outcome = "urgent_care_needed"
        follow_up_needed = True
        follow_up_type = "immediate_care_coordination"
        urgency = "high"

    if retry.get("retryNeeded"):
        outcome = "needs_retry"
        follow_up_needed = True
        follow_up_type = "automatic_retry"

    if retry.get("phase") == RetryPhase.RETRY_EXHAUSTED.value:
        outcome = "retries_exhausted"
        follow_up_needed = True
        follow_up_type = "manual_follow_up"

    key_points = []
    for record in intent.get("detectedIntents", []):
        key_points.append(
            f"Intent detected: {record['name']} (confidence: {round(record['confidence'] * 100)}%)"
        )

    if interruption.get("interruptionCount", 0) > 0:
        key_points.append(f"Call had {interruption['interruptionCount']} interruption(s)")
    if interruption.get("rescheduleCount", 0) > 0:
        key_points.append(f"Lead requested to reschedule {interruption['rescheduleCount']} time(s)")
        when = describe_callback_time(interruption.get("preferredCallbackTime"))
        if when:
            key_points.append(f"Preferred callback time: {when}")

    if quality.get("silenceRunCount", 0) > 2:
        key_points.append(f"Call had {quality['silenceRunCount']} periods of silence")
    if quality.get("lowAudioRunCount", 0) > 0:
        key_points.append("Call had audio quality issues")

    if retry.get("retryCount", 0) > 0:
        key_points.append(f"Call has been retried {retry['retryCount']} time(s)")
    if retry.get("retryNeeded"):
        key_points.append(f"Call needs to be retried (reason: {retry.get('retryReason')})")
    if retry.get("phase") == RetryPhase.RETRY_EXHAUSTED.value:
        key_points.append(f"Maximum retries reached ({retry.get('retryCount', 0)} of {retry.get('maxRetries')})")

    return {
        "outcome": outcome,
        "followUpNeeded": follow_up_needed,
        "followUpType": follow_up_type,
        "urgency": urgency,
        "keyPoints": key_points,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def build_report(
    session: CallSession,
    retry_state: RetryState | None,
    quality_metrics: dict,
    transcript_data: dict | None = None,
    summary_data: dict | None = None,
) -> dict:
    """Aggregate one call's state into the outbound report payload."""
    payload = {
        "callSid": session.call_id,
        "leadId": session.lead_id,
        "conversationId": session.conversation_id or None,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "enhanced": True,
        "callStatus": session.status.value,
        "answeredBy": session.answered_by or "unknown",
        "isVoicemail": is_machine_answer(session.answered_by),
        "sipResponseCode": session.sip_response_code or None,
        "phoneNumber": session.phone_number,
        "leadInfo": dict(session.lead_info),
        "durationSeconds": int(time.time() - session.created_at),
        "qualityMetrics": quality_metrics,
        "interruptionData": interruption_report(session.interruption),
        "intentData": intent_report(session.intent),
    }

    # Vendor transcript when available, otherwise what the relay captured
    if transcript_data:
        payload["transcript"] = transcript_data
    elif session.transcript_log:
        payload["transcript"] = {
            "conversation_id": session.conversation_id or None,
            "transcripts": to_json_array(session.transcript_log),
        }

    if summary_data:
        payload["conversationSummary"] = summary_data
        for key in ("success_criteria", "data_collection"):
            if summary_data.get(key):
                payload[key] = summary_data[key]

    if retry_state is not None:
        payload["retryInfo"] = retry_state.to_dict()

    payload["summary"] = generate_summary(session, payload)
    return payload


def _criteria_from_summary(summary_data: dict | None):
    if not summary_data:
        return None
    if summary_data.get("success_criteria"):
        return summary_data["success_criteria"]
    analysis = summary_data.get("analysis") or {}
    return analysis.get("evaluation_criteria_results")


class Reporter:
    """Fetches AI artifacts, builds the report and delivers it."""

    def __init__(self, webhook, quality: QualityMonitor, intents: IntentClassifier, convai=None):
        self.webhook = webhook
        self.quality = quality
        self.intents = intents
        self.convai = convai

    async def report(self, session: CallSession, retry_state: RetryState | None = None) -> dict:
        transcript_data = None
        summary_data = None
        if self.convai is not None and session.conversation_id:
            transcript_data = await self.convai.fetch_transcript(session.conversation_id)
            summary_data = await self.convai.fetch_summary(session.conversation_id)

        criteria = _criteria_from_summary(summary_data)
        if criteria:
            self.intents.apply_external_criteria(session.intent, criteria)

        payload = build_report(
            session,
            retry_state,
            self.quality.metrics(session.quality),
            transcript_data,
            summary_data,
        )
        url = self.webhook.config.url_for(
            is_voicemail=payload["isVoicemail"],
            callback_requested=(
                session.interruption.reschedule_detected or has_scheduling_intent(session.intent)
            ),
        )
        result = await self.webhook.deliver(payload, url)
        logger.info(
            "Report for call %s: outcome=%s delivered=%s",
            session.call_id, payload["summary"]["outcome"], result.get("success"),
        )
        return {**result, "outcome": payload["summary"]["outcome"]}
