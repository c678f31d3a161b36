import logging
import time

from callbridge.session import RetryState
from callbridge.states import CallStatus, RetryPhase, is_machine_answer

logger = logging.getLogger(__name__)


def retry_verdict(status: CallStatus, answered_by: str = "") -> tuple[bool, str]:
    """Decide whether a terminal disposition calls for another attempt.

    Any answering-machine variant wins, whatever the disposition, because
    the vendor reports a voicemail pickup as "completed".
    """
    if is_machine_answer(answered_by):
        return True, "voicemail"
    if status.is_retryable:
        return True, status.value
    return False, ""


def record_attempt(state: RetryState, call_id: str, status: CallStatus, answered_by: str = "") -> bool:
    """Apply one status transition of a call attempt to the lead's retry state.

    Returns False when the update was ignored: the call is not the lead's
    current attempt, or the lead has already reached a terminal phase.
    """
    if state.current_call_id and call_id != state.current_call_id:
        logger.warning("Call %s is not the current call for lead %s, ignoring", call_id, state.lead_id)
        return False
    if state.phase.is_terminal:
        logger.info("Lead %s already %s, ignoring %s", state.lead_id, state.phase.value, status.value)
        return False

    state.last_call_time = time.time()
    if not status.is_terminal:
        if state.phase == RetryPhase.NO_HISTORY:
            state.phase = RetryPhase.TRACKING
        return True

    state.call_history.append({
        "callSid": call_id,
        "status": status.value,
        "answeredBy": answered_by or None,
        "timestamp": state.last_call_time,
    })
    # The attempt the scheduler was waiting on has finished
    state.retry_scheduled = False

    needed, reason = retry_verdict(status, answered_by)
    if needed:
        state.retry_needed = True
        state.retry_reason = reason
        state.phase = RetryPhase.RETRY_NEEDED
        logger.info("Lead %s needs a retry (%s)", state.lead_id, reason)
    else:
        state.retry_needed = False
        state.phase = RetryPhase.RETRY_SUCCEEDED
        logger.info("Lead %s reached by call %s", state.lead_id, call_id)
    return True
