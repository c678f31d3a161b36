import pytest

from callbridge.config import QualityConfig
from callbridge.quality import (
    EXTENDED_SILENCE,
    INSTRUCTIONS,
    LOW_AUDIO,
    PERSISTENT_LOW_AUDIO,
    SILENCE,
    QualityMonitor,
)
from callbridge.session import QualityState

LOUD = "A" * 200
FAINT = "A" * 50


@pytest.fixture
def monitor(clock):
    return QualityMonitor(QualityConfig(), clock=clock)


@pytest.fixture
def state(monitor):
    s = QualityState()
    monitor.start(s)
    return s


def _two_silence_runs(monitor, state):
    monitor.observe(state, "")
    monitor.observe(state, LOUD)
    monitor.observe(state, "")


class TestObserve:
    def test_loud_frame(self, monitor, state):
        result = monitor.observe(state, LOUD)
        assert result["is_silent"] is False
        assert result["is_low_audio"] is False
        assert result["has_issue"] is False

    def test_empty_frame_is_silent(self, monitor, state):
        result = monitor.observe(state, "")
        assert result["is_silent"] is True
        assert state.silence_run_count == 1

    def test_silence_level_boundary_counts_as_low(self, monitor, state):
        result = monitor.observe(state, "A" * 10)
        assert result["is_silent"] is False
        assert result["is_low_audio"] is True

    def test_consecutive_silence_is_one_run(self, monitor, state):
        for _ in range(5):
            monitor.observe(state, "")
        assert state.silence_run_count == 1

    def test_silence_duration_accumulates(self, monitor, state, clock):
        monitor.observe(state, "")
        clock.advance(4)
        monitor.observe(state, LOUD)
        assert state.total_silence_s == pytest.approx(4)
        assert state.silence_active is False

    def test_low_audio_runs(self, monitor, state):
        monitor.observe(state, FAINT)
        monitor.observe(state, FAINT)
        monitor.observe(state, LOUD)
        monitor.observe(state, FAINT)
        assert state.low_audio_run_count == 2


class TestAssess:
    def test_single_silence_run_is_not_an_issue(self, monitor, state, clock):
        monitor.observe(state, "")
        clock.advance(20)
        assert monitor.assess(state)["has_issue"] is False

    def test_silence_after_threshold(self, monitor, state, clock):
        _two_silence_runs(monitor, state)
        clock.advance(6)
        result = monitor.assess(state)
        assert result["issue_type"] == SILENCE
        assert result["severity"] == "medium"

    def test_extended_silence(self, monitor, state, clock):
        _two_silence_runs(monitor, state)
        clock.advance(13)
        result = monitor.assess(state)
        assert result["issue_type"] == EXTENDED_SILENCE
        assert result["severity"] == "high"

    def test_low_audio(self, monitor, state):
        monitor.observe(state, FAINT)
        assert monitor.assess(state)["issue_type"] == LOW_AUDIO

    def test_persistent_low_audio(self, monitor, state):
        for _ in range(2):
            monitor.observe(state, FAINT)
            monitor.observe(state, LOUD)
        monitor.observe(state, FAINT)
        assert monitor.assess(state)["issue_type"] == PERSISTENT_LOW_AUDIO

    def test_issue_logged_once_per_cooldown(self, monitor, state, clock):
        monitor.observe(state, FAINT)
        monitor.assess(state)
        monitor.assess(state)
        assert [e["type"] for e in state.issue_log].count(LOW_AUDIO) == 1
        clock.advance(31)
        monitor.assess(state)
        assert [e["type"] for e in state.issue_log].count(LOW_AUDIO) == 2


class TestPendingInstruction:
    def test_nothing_when_healthy(self, monitor, state):
        monitor.observe(state, LOUD)
        assert monitor.pending_instruction(state) is None

    def test_sent_once(self, monitor, state):
        monitor.observe(state, FAINT)
        issue, text = monitor.pending_instruction(state)
        assert issue == LOW_AUDIO
        assert text == INSTRUCTIONS[LOW_AUDIO]
        monitor.mark_sent(state, issue, text)
        assert monitor.pending_instruction(state) is None

    def test_persistent_low_audio_has_own_instruction(self, monitor, state):
        monitor.observe(state, FAINT)
        monitor.mark_sent(state, *monitor.pending_instruction(state))
        monitor.observe(state, LOUD)
        monitor.observe(state, FAINT)
        monitor.observe(state, LOUD)
        monitor.observe(state, FAINT)
        issue, text = monitor.pending_instruction(state)
        assert issue == PERSISTENT_LOW_AUDIO
        assert text != INSTRUCTIONS[LOW_AUDIO]
        monitor.mark_sent(state, issue, text)
        monitor.observe(state, LOUD)
        monitor.observe(state, FAINT)
        assert monitor.pending_instruction(state) is None

    def test_extended_silence_retires_silence(self, monitor, state, clock):
        _two_silence_runs(monitor, state)
        clock.advance(13)
        monitor.mark_sent(state, *monitor.pending_instruction(state))
        assert SILENCE in state.instructions_sent


class TestMetrics:
    def test_fields(self, monitor, state, clock):
        monitor.observe(state, FAINT)
        clock.advance(42)
        m = monitor.metrics(state)
        assert m["callDurationS"] == 42.0
        assert m["lowAudioRunCount"] == 1
        assert m["qualityIssuesDetected"] is True
        assert m["instructionsSent"] == []
        assert isinstance(m["qualityLog"], list)

    def test_not_started(self, monitor):
        assert monitor.metrics(QualityState())["callDurationS"] == 0.0

    def test_log_bounded(self, clock):
        monitor = QualityMonitor(QualityConfig(max_log_entries=4), clock=clock)
        s = QualityState()
        monitor.start(s)
        for _ in range(10):
            monitor.observe(s, "")
            monitor.observe(s, LOUD)
        assert len(s.issue_log) == 4
