import pytest

from callbridge.interruption import (
    INTERRUPTION,
    RESCHEDULE,
    RESUMED,
    InterruptionClassifier,
    extract_time_info,
    interruption_report,
)
from callbridge.session import InterruptionState


@pytest.fixture
def classifier():
    return InterruptionClassifier()


@pytest.fixture
def state():
    return InterruptionState()


class TestExtractTimeInfo:
    def test_specific_time(self):
        info = extract_time_info("call me at 3pm")
        assert info["type"] == "specific_time"
        assert info["hour"] == 3
        assert info["minute"] == 0
        assert info["period"] == "pm"

    def test_specific_time_with_minutes(self):
        info = extract_time_info("maybe 10:30 am works")
        assert info["hour"] == 10
        assert info["minute"] == 30

    def test_specific_time_wins_over_relative(self):
        assert extract_time_info("tomorrow at 9 am")["type"] == "specific_time"

    def test_tomorrow(self):
        assert extract_time_info("try tomorrow") == {"type": "day", "value": "tomorrow", "offset": 1}

    def test_weekday(self):
        info = extract_time_info("next friday is better")
        assert info["type"] == "weekday"
        assert info["value"] == 5

    def test_period(self):
        info = extract_time_info("this afternoon")
        assert info["type"] == "period"
        assert info["value"] == "afternoon"

    def test_nothing(self):
        assert extract_time_info("I don't know") is None


class TestProcess:
    def test_reschedule_detected_once(self, classifier, state):
        first = classifier.process(state, "Can you call me back tomorrow?")
        second = classifier.process(state, "Really, call me back later")
        assert first["reschedule_detected"] is True
        assert second["reschedule_detected"] is False
        assert state.reschedule_count == 1
        assert state.preferred_callback_time["type"] == "day"

    def test_interruption_pauses(self, classifier, state):
        result = classifier.process(state, "Hold on, someone's at the door")
        assert result["interruption_detected"] is True
        assert result["active_pause"] is True
        assert state.interruption_count == 1

    def test_no_double_count_while_paused(self, classifier, state):
        classifier.process(state, "hold on")
        result = classifier.process(state, "one second")
        assert result["interruption_detected"] is False
        assert state.interruption_count == 1

    def test_short_reply_does_not_resume(self, classifier, state):
        classifier.process(state, "hold on")
        result = classifier.process(state, "okay")
        assert result["resumed"] is False
        assert state.active_pause is True

    def test_long_reply_resumes(self, classifier, state):
        classifier.process(state, "hold on")
        result = classifier.process(state, "Sorry about that, I'm back now and can talk")
        assert result["resumed"] is True
        assert state.active_pause is False

    def test_second_pause_counts_again(self, classifier, state):
        classifier.process(state, "hold on")
        classifier.process(state, "Sorry about that, I'm back now and can talk")
        classifier.process(state, "just a moment")
        assert state.interruption_count == 2

    def test_neutral_text(self, classifier, state):
        result = classifier.process(state, "Yes, that's right")
        assert not result["reschedule_detected"]
        assert not result["interruption_detected"]
        assert state.log == []


class TestPendingInstruction:
    def test_reschedule_with_time(self, classifier, state):
        result = classifier.process(state, "not a good time, try 3pm")
        kind, text = classifier.pending_instruction(state, result)
        assert kind == RESCHEDULE
        assert "for 3pm" in text

    def test_reschedule_sent_once(self, classifier, state):
        result = classifier.process(state, "not a good time")
        kind, text = classifier.pending_instruction(state, result)
        classifier.mark_sent(state, kind, text)
        assert classifier.pending_instruction(state, result) is None

    def test_interruption_then_resume(self, classifier, state):
        result = classifier.process(state, "hold on")
        kind, text = classifier.pending_instruction(state, result)
        assert kind == INTERRUPTION
        classifier.mark_sent(state, kind, text)

        # Still paused: nothing to say
        result = classifier.process(state, "ok")
        assert classifier.pending_instruction(state, result) is None

        result = classifier.process(state, "Sorry about that, I'm back now and can talk")
        kind, text = classifier.pending_instruction(state, result)
        assert kind == RESUMED
        classifier.mark_sent(state, kind, text)
        assert classifier.pending_instruction(state, result) is None

    def test_resume_rearms_interruption(self, classifier, state):
        result = classifier.process(state, "hold on")
        classifier.mark_sent(state, *classifier.pending_instruction(state, result))
        result = classifier.process(state, "Sorry about that, I'm back now and can talk")
        classifier.mark_sent(state, *classifier.pending_instruction(state, result))

        result = classifier.process(state, "wait a second")
        kind, _ = classifier.pending_instruction(state, result)
        assert kind == INTERRUPTION

    def test_pause_with_reschedule_gets_wait_directive_next(self, classifier, state):
        result = classifier.process(state, "hold on, call me back tomorrow")
        kind, text = classifier.pending_instruction(state, result)
        assert kind == RESCHEDULE
        classifier.mark_sent(state, kind, text)

        result = classifier.process(state, "ok")
        assert result["interruption_detected"] is False
        kind, _ = classifier.pending_instruction(state, result)
        assert kind == INTERRUPTION

    def test_mark_sent_logs(self, classifier, state):
        classifier.mark_sent(state, RESCHEDULE, "text")
        assert state.log[-1]["type"] == "reschedule_instructions_sent"


class TestReport:
    def test_report_fields(self, classifier, state):
        classifier.process(state, "hold on")
        classifier.process(state, "call me back tomorrow")
        report = interruption_report(state)
        assert report["interruptionCount"] == 1
        assert report["rescheduleCount"] == 1
        assert report["rescheduleDetected"] is True
        assert report["preferredCallbackTime"]["value"] == "tomorrow"
        assert len(report["interruptionLog"]) == 2
