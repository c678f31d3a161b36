import logging
import time

from callbridge.config import IntentConfig
from callbridge.intents import (
    ALL_CATEGORIES,
    BY_NAME,
    EXTERNAL_CRITERIA,
    EXTERNAL_CRITERIA_CONFIDENCE,
    NEGATIVE_INTENTS,
    SCHEDULE_CALLBACK,
)
from callbridge.session import IntentRecord, IntentState

logger = logging.getLogger(__name__)


def confidence_for(match_count: int, pattern_count: int) -> float:
    """Saturating ratio: three matching patterns (or all of them) is full confidence."""
    if pattern_count <= 0:
        return 0.0
    return min(1.0, match_count / min(3, pattern_count))


class IntentClassifier:
    """Pattern-based intent classifier over caller transcript fragments.

    The classifier itself is stateless; all per-call state lives in the
    IntentState passed to classify(), so one instance serves every call.
    """

    def __init__(self, config: IntentConfig | None = None, categories=ALL_CATEGORIES):
        self.config = config or IntentConfig()
        self.categories = tuple(categories)

    def match(self, text: str) -> list[IntentRecord]:
        """Every category matching text, ranked by priority then confidence."""
        if not text:
            return []
        now = time.time()
        matched = []
        for category in self.categories:
            count = category.match_count(text)
            if count >= self.config.minimum_match_count:
                matched.append(IntentRecord(
                    name=category.name,
                    priority=category.priority,
                    confidence=confidence_for(count, len(category.patterns)),
                    timestamp=now,
                ))
        matched.sort(key=lambda r: (r.priority, r.confidence), reverse=True)
        return matched

    def classify(self, state: IntentState, text: str) -> dict:
        matched = self.match(text)
        if not matched:
            return {"intent_detected": False, "detected_intents": []}

        ambiguous = (
            len(matched) > 1
            and (matched[0].confidence - matched[1].confidence) < self.config.ambiguity_threshold
        )
        changed = self._update_state(state, matched, text)
        result = {
            "intent_detected": True,
            "detected_intents": [r.name for r in matched],
            "top_intent": matched[0].name,
            "primary_intent": state.primary.name if state.primary else None,
            "confidence": matched[0].confidence,
            "primary_changed": changed,
        }
        if ambiguous:
            result["ambiguous"] = True
            result["possible_intents"] = [r.name for r in matched]
        return result

    def apply_external_criteria(self, state: IntentState, criteria_results) -> dict:
        """Fold vendor success-criteria verdicts into the call's intent state.

        Accepts either {"results": [{"title": ..., "result": bool}]} or the
        vendor summary shape {criteria_id: {"result": "success"}}.
        """
        positives = []
        for title, passed in _iter_criteria(criteria_results):
            name = EXTERNAL_CRITERIA.get(title)
            if passed and name:
                category = BY_NAME[name]
                positives.append(IntentRecord(
                    name=name,
                    priority=category.priority,
                    confidence=EXTERNAL_CRITERIA_CONFIDENCE,
                ))
        if not positives:
            return {"intent_detected": False, "source": "external"}

        self._update_state(state, positives, "[external criteria]", candidate=positives[0])
        return {
            "intent_detected": True,
            "detected_intents": [r.name for r in positives],
            "primary_intent": state.primary.name if state.primary else None,
            "confidence": EXTERNAL_CRITERIA_CONFIDENCE,
            "source": "external",
        }

    def _update_state(
        self,
        state: IntentState,
        matched: list[IntentRecord],
        text: str,
        candidate: IntentRecord | None = None,
    ) -> bool:
        now = time.time()
        if state.first_detection_time is None:
            state.first_detection_time = now
        state.last_update_time = now

        for record in matched:
            state.detected[record.name] = record

        candidate = candidate or matched[0]
        changed = False
        # Priority is the only override criterion once a primary exists
        if state.primary is None or candidate.priority > state.primary.priority:
            state.primary = candidate
            state.instructions_sent = False
            changed = True
            logger.info("Primary intent set to %s (confidence %.2f)", candidate.name, candidate.confidence)

        state.intent_log.append({
            "timestamp": now,
            "detected_intents": [{"name": r.name, "confidence": r.confidence} for r in matched],
            "transcript": text,
        })
        limit = self.config.max_intents_to_track
        if len(state.intent_log) > limit:
            del state.intent_log[:-limit]
        return changed

    def pending_instructions(self, state: IntentState) -> str | None:
        """Instruction text for the primary intent, if not yet dispatched."""
        if state.primary is None or state.instructions_sent:
            return None
        category = BY_NAME.get(state.primary.name)
        return category.instructions if category else None


def has_scheduling_intent(state: IntentState) -> bool:
    return SCHEDULE_CALLBACK.name in state.detected


def has_negative_intent(state: IntentState) -> bool:
    return any(name in NEGATIVE_INTENTS for name in state.detected)


def intent_report(state: IntentState) -> dict:
    return {
        "primaryIntent": _record_dict(state.primary) if state.primary else None,
        "detectedIntents": [_record_dict(r) for r in state.detected.values()],
        "intentLog": list(state.intent_log),
        "firstDetectionTime": state.first_detection_time,
        "lastUpdateTime": state.last_update_time,
        "hasSchedulingIntent": has_scheduling_intent(state),
        "hasNegativeIntent": has_negative_intent(state),
    }


def _record_dict(record: IntentRecord) -> dict:
    return {
        "name": record.name,
        "priority": record.priority,
        "confidence": record.confidence,
        "timestamp": record.timestamp,
    }


def _iter_criteria(criteria_results):
    if not criteria_results:
        return
    if isinstance(criteria_results, dict) and isinstance(criteria_results.get("results"), list):
        for item in criteria_results["results"]:
            if isinstance(item, dict):
                yield item.get("title", ""), item.get("result") is True
        return
    if isinstance(criteria_results, dict):
        for title, value in criteria_results.items():
            if isinstance(value, dict):
                yield title, value.get("result") in (True, "success")
            else:
                yield title, value in (True, "success")
