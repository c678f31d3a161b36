"""Heuristic call-quality monitor for inbound caller audio.

There is no signal analysis here: the size of each media payload stands in
for its energy.  Tiny frames count as silence and small ones as low signal,
which is enough to notice a caller who has gone quiet or faded out.
"""

import logging
import time
from typing import Callable

from callbridge.config import QualityConfig
from callbridge.session import QualityState

logger = logging.getLogger(__name__)

SILENCE = "silence"
EXTENDED_SILENCE = "extended_silence"
LOW_AUDIO = "low_audio"
PERSISTENT_LOW_AUDIO = "persistent_low_audio"

SEVERITY = {
    EXTENDED_SILENCE: "high",
    SILENCE: "medium",
    PERSISTENT_LOW_AUDIO: "medium",
    LOW_AUDIO: "low",
}

INSTRUCTIONS = {
    EXTENDED_SILENCE: (
        "I notice there's been no response for some time. If you're still there, "
        "please let me know. Otherwise, I'll call back at a better time. Would you "
        "like me to call back later?"
    ),
    SILENCE: (
        "I'm having trouble hearing you. If you're speaking, your audio might not "
        "be coming through clearly. Can you please speak a bit louder?"
    ),
    PERSISTENT_LOW_AUDIO: (
        "Your audio is still very faint on my end. If you can, please move closer "
        "to the phone or somewhere quieter. Otherwise I'm happy to call you back "
        "at a better time."
    ),
    LOW_AUDIO: (
        "I'm having a little trouble hearing you clearly. Could you please speak a "
        "bit louder or move to a quieter location if possible?"
    ),
}

# Sending one of these also retires the listed lower-severity instructions
SUPERSEDES = {EXTENDED_SILENCE: (SILENCE,)}


class QualityMonitor:
    def __init__(self, config: QualityConfig | None = None, clock: Callable[[], float] = time.monotonic):
        self.config = config or QualityConfig()
        self.clock = clock

    def start(self, state: QualityState) -> None:
        now = self.clock()
        state.started_at = now
        state.last_audio_at = now

    def observe(self, state: QualityState, payload) -> dict:
        """Update rolling flags from one inbound media payload."""
        now = self.clock()
        if not state.started_at:
            self.start(state)

        level = len(payload or "")
        is_silent = level < self.config.silence_level
        is_low = not is_silent and level < self.config.low_audio_threshold

        if not is_silent:
            if state.silence_active:
                duration = now - state.last_audio_at
                state.total_silence_s += duration
                state.silence_active = False
                self._log(state, {"type": "silence_ended", "timestamp": now, "duration_s": duration})
            state.last_audio_at = now
        elif not state.silence_active:
            state.silence_active = True
            state.silence_started_at = now
            state.silence_run_count += 1
            self._log(state, {"type": "silence_started", "timestamp": now})

        if is_low and not state.low_audio_active:
            state.low_audio_active = True
            state.low_audio_run_count += 1
            self._log(state, {"type": "low_audio_started", "timestamp": now, "audio_level": level})
        elif not is_low and state.low_audio_active:
            state.low_audio_active = False
            self._log(state, {"type": "low_audio_ended", "timestamp": now})

        assessment = self.assess(state)
        return {
            "audio_level": level,
            "is_silent": is_silent,
            "is_low_audio": is_low,
            "silence_run_count": state.silence_run_count,
            "low_audio_run_count": state.low_audio_run_count,
            **assessment,
        }

    def assess(self, state: QualityState) -> dict:
        now = self.clock()
        cfg = self.config
        issue = None

        if state.silence_active and state.silence_run_count >= cfg.min_silence_runs:
            silent_for = now - state.last_audio_at
            if silent_for > cfg.extended_silence_threshold_s:
                issue = EXTENDED_SILENCE
            elif silent_for > cfg.silence_threshold_s:
                issue = SILENCE

        if issue is None and state.low_audio_active:
            if state.low_audio_run_count >= cfg.persistent_low_audio_runs:
                issue = PERSISTENT_LOW_AUDIO
            else:
                issue = LOW_AUDIO

        if issue is None:
            return {"has_issue": False, "issue_type": None, "severity": "none"}

        recent = any(
            entry["type"] == issue and now - entry["timestamp"] < cfg.issue_cooldown_s
            for entry in state.issue_log
        )
        if not recent:
            self._log(state, {"type": issue, "timestamp": now, "severity": SEVERITY[issue]})
            logger.info("Quality issue detected: %s", issue)

        return {"has_issue": True, "issue_type": issue, "severity": SEVERITY[issue]}

    def pending_instruction(self, state: QualityState) -> tuple[str, str] | None:
        """(issue_type, text) for the current issue, unless already sent this call."""
        assessment = self.assess(state)
        issue = assessment["issue_type"]
        if issue is None or issue in state.instructions_sent:
            return None
        return issue, INSTRUCTIONS[issue]

    def mark_sent(self, state: QualityState, issue: str, text: str) -> None:
        state.instructions_sent.add(issue)
        state.instructions_sent.update(SUPERSEDES.get(issue, ()))
        self._log(state, {"type": f"{issue}_instructions_sent", "timestamp": self.clock(), "instructions": text})

    def metrics(self, state: QualityState) -> dict:
        now = self.clock()
        return {
            "callDurationS": round(now - state.started_at, 1) if state.started_at else 0.0,
            "silenceRunCount": state.silence_run_count,
            "totalSilenceDurationS": round(state.total_silence_s, 1),
            "lowAudioRunCount": state.low_audio_run_count,
            "qualityIssuesDetected": any(e["type"] in SEVERITY for e in state.issue_log),
            "instructionsSent": sorted(state.instructions_sent),
            "qualityLog": list(state.issue_log),
        }

    def _log(self, state: QualityState, entry: dict) -> None:
        state.issue_log.append(entry)
        limit = self.config.max_log_entries
        if len(state.issue_log) > limit:
            del state.issue_log[:-limit]
