import time
from dataclasses import dataclass, field
from typing import Optional

from callbridge.states import CallStatus, RetryPhase


@dataclass
class IntentRecord:
    name: str
    priority: int
    confidence: float
    timestamp: float = field(default_factory=time.time)


@dataclass
class IntentState:
    # name -> most recent record for that intent
    detected: dict = field(default_factory=dict)
    primary: Optional[IntentRecord] = None
    # Dispatch state for the current primary intent
    instructions_sent: bool = False
    intent_log: list = field(default_factory=list)
    first_detection_time: Optional[float] = None
    last_update_time: Optional[float] = None

    @property
    def detected_names(self) -> set[str]:
        return set(self.detected)


@dataclass
class QualityState:
    started_at: float = 0.0
    last_audio_at: float = 0.0
    silence_started_at: float = 0.0

    silence_active: bool = False
    silence_run_count: int = 0
    total_silence_s: float = 0.0

    low_audio_active: bool = False
    low_audio_run_count: int = 0

    issue_log: list = field(default_factory=list)
    # Issue types whose instruction has already been dispatched
    instructions_sent: set = field(default_factory=set)


@dataclass
class InterruptionState:
    interruption_count: int = 0
    reschedule_count: int = 0
    active_pause: bool = False
    reschedule_detected: bool = False
    preferred_callback_time: Optional[dict] = None
    log: list = field(default_factory=list)
    instructions_sent: set = field(default_factory=set)


@dataclass
class CallSession:
    lead_id: str
    call_id: str
    phone_number: str = ""
    lead_info: dict = field(default_factory=dict)

    status: CallStatus = CallStatus.INITIATING
    answered_by: str = ""
    sip_response_code: str = ""

    # Media stream metadata (set when the telephony leg starts)
    stream_sid: str = ""
    conversation_id: str = ""

    transcript_log: list = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    intent: IntentState = field(default_factory=IntentState)
    quality: QualityState = field(default_factory=QualityState)
    interruption: InterruptionState = field(default_factory=InterruptionState)
    voicemail_instructions_sent: bool = False

    # Lifecycle flags
    relay_active: bool = False
    finalized: bool = False

    def touch(self) -> None:
        self.updated_at = time.time()

    def append_transcript(self, role: str, content: str) -> None:
        self.transcript_log.append({
            "role": role,
            "content": content,
            "timestamp": time.time(),
        })
        self.touch()


@dataclass
class RetryState:
    lead_id: str
    max_retries: int
    phone_number: str = ""
    lead_info: dict = field(default_factory=dict)
    current_call_id: str = ""

    phase: RetryPhase = RetryPhase.NO_HISTORY
    retry_count: int = 0
    retry_needed: bool = False
    retry_reason: str = ""
    retry_scheduled: bool = False
    call_history: list = field(default_factory=list)
    last_call_time: float = 0.0

    def to_dict(self) -> dict:
        return {
            "leadId": self.lead_id,
            "phase": self.phase.value,
            "retryCount": self.retry_count,
            "maxRetries": self.max_retries,
            "retryNeeded": self.retry_needed,
            "retryReason": self.retry_reason,
            "retryScheduled": self.retry_scheduled,
            "lastCallTime": self.last_call_time,
            "callHistory": list(self.call_history),
        }
