from enum import Enum

TERMINAL_STATUSES = {"completed", "failed", "busy", "no-answer", "canceled"}
RETRYABLE_STATUSES = {"failed", "busy", "no-answer", "canceled"}

MACHINE_ANSWERS = {
    "machine_start",
    "machine_end_beep",
    "machine_end_silence",
    "machine_end_other",
}


class CallStatus(Enum):
    INITIATING = "initiating"
    RINGING = "ringing"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"
    BUSY = "busy"
    NO_ANSWER = "no-answer"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self.value in TERMINAL_STATUSES

    @property
    def is_retryable(self) -> bool:
        return self.value in RETRYABLE_STATUSES

    @classmethod
    def parse(cls, raw: str | None) -> "CallStatus | None":
        """Map a vendor status string to a CallStatus, or None if unknown.

        The vendor reports "initiated" and "queued" before ringing; both are
        folded into INITIATING.
        """
        if not raw:
            return None
        value = raw.strip().lower()
        if value in ("initiated", "queued"):
            return cls.INITIATING
        try:
            return cls(value)
        except ValueError:
            return None


class RetryPhase(Enum):
    NO_HISTORY = "no-history"
    TRACKING = "tracking"
    RETRY_NEEDED = "retry-needed"
    RETRY_SCHEDULED = "retry-scheduled"
    RETRY_EXHAUSTED = "retry-exhausted"
    RETRY_SUCCEEDED = "retry-succeeded"

    @property
    def is_terminal(self) -> bool:
        return self in (RetryPhase.RETRY_EXHAUSTED, RetryPhase.RETRY_SUCCEEDED)


def is_machine_answer(answered_by: str | None) -> bool:
    """True for any answering-machine variant reported by AMD."""
    if not answered_by:
        return False
    return answered_by in MACHINE_ANSWERS or answered_by.startswith("machine")
