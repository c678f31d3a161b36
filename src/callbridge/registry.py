"""In-memory store of live call sessions and per-lead retry state.

One registry is owned by the orchestrator and handed to every component that
needs session access.  Nothing here awaits, so each accessor runs to
completion within a single event-loop step.
"""

import logging
import time

from callbridge.session import CallSession, RetryState
from callbridge.states import RetryPhase

logger = logging.getLogger(__name__)

CLAIMED = "claimed"
ALREADY_SCHEDULED = "already_scheduled"
NOT_NEEDED = "not_needed"
MAX_RETRIES_REACHED = "max_retries_reached"
NO_STATE = "no_state"


class SessionRegistry:
    def __init__(self, max_retries: int = 2):
        self.max_retries = max_retries
        self._sessions: dict[str, CallSession] = {}
        self._retry: dict[str, RetryState] = {}

    # --- Call sessions ---

    def create(
        self,
        lead_id: str,
        call_id: str,
        phone_number: str = "",
        lead_info: dict | None = None,
    ) -> CallSession:
        session = CallSession(
            lead_id=lead_id,
            call_id=call_id,
            phone_number=phone_number,
            lead_info=dict(lead_info or {}),
        )
        self._sessions[call_id] = session
        logger.info("Session created for call %s (lead %s)", call_id, lead_id)
        return session

    def get(self, call_id: str | None) -> CallSession | None:
        if not call_id:
            return None
        return self._sessions.get(call_id)

    def find_by_lead(self, lead_id: str) -> CallSession | None:
        """Most recently created live session for a lead."""
        matches = [s for s in self._sessions.values() if s.lead_id == lead_id]
        if not matches:
            return None
        return max(matches, key=lambda s: s.created_at)

    def release(self, call_id: str) -> bool:
        if self._sessions.pop(call_id, None) is None:
            return False
        logger.info("Session released for call %s", call_id)
        return True

    def __len__(self) -> int:
        return len(self._sessions)

    # --- Retry state (keyed by lead) ---

    def track_call(
        self,
        lead_id: str,
        call_id: str,
        phone_number: str = "",
        lead_info: dict | None = None,
    ) -> RetryState:
        """Register a new call attempt for a lead, creating its retry state."""
        state = self._retry.get(lead_id)
        if state is None:
            state = RetryState(lead_id=lead_id, max_retries=self.max_retries)
            self._retry[lead_id] = state
        state.current_call_id = call_id
        state.last_call_time = time.time()
        if phone_number:
            state.phone_number = phone_number
        if lead_info:
            state.lead_info = dict(lead_info)
        if state.phase == RetryPhase.NO_HISTORY:
            state.phase = RetryPhase.TRACKING
        logger.info("Tracking call %s for lead %s (retries so far: %d)", call_id, lead_id, state.retry_count)
        return state

    def get_retry(self, lead_id: str | None) -> RetryState | None:
        if not lead_id:
            return None
        return self._retry.get(lead_id)

    def clear_retry(self, lead_id: str) -> bool:
        if self._retry.pop(lead_id, None) is None:
            return False
        logger.info("Retry state cleared for lead %s", lead_id)
        return True

    def claim_retry(self, lead_id: str) -> tuple[str, RetryState | None]:
        """Check-and-set the scheduling guard for a lead in one step.

        Returns (verdict, state).  Only a CLAIMED verdict increments the retry
        count and sets retry_scheduled; every other verdict leaves the guard
        untouched, except MAX_RETRIES_REACHED which moves the lead to the
        exhausted phase.
        """
        state = self._retry.get(lead_id)
        if state is None:
            return NO_STATE, None
        if state.retry_scheduled:
            return ALREADY_SCHEDULED, state
        if not state.retry_needed:
            return NOT_NEEDED, state
        if state.retry_count >= state.max_retries:
            state.phase = RetryPhase.RETRY_EXHAUSTED
            state.retry_needed = False
            return MAX_RETRIES_REACHED, state
        state.retry_count += 1
        state.retry_scheduled = True
        state.phase = RetryPhase.RETRY_SCHEDULED
        return CLAIMED, state

    def release_retry_claim(self, lead_id: str) -> None:
        """Drop the scheduling guard after a failed delivery attempt."""
        state = self._retry.get(lead_id)
        if state is not None and state.retry_scheduled:
            state.retry_scheduled = False
            state.phase = RetryPhase.RETRY_NEEDED
