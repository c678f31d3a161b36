"""Intent categories recognised in caller speech.

Each category carries a static priority, the phrases that signal it and the
directive sent to the AI agent once it becomes the primary intent.
"""

import re
from dataclasses import dataclass, field


@dataclass(frozen=True)
class IntentCategory:
    name: str
    priority: int
    instructions: str
    patterns: tuple = field(default_factory=tuple)

    def match_count(self, text: str) -> int:
        return sum(1 for p in self.patterns if p.search(text))


def _compile(*patterns: str) -> tuple:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


CANT_TALK_NOW = IntentCategory(
    name="cant_talk_now",
    priority=2,
    instructions=(
        "User cannot talk now. Apologize for the inconvenience, ask when would "
        "be a better time to call back, and prepare to end the call."
    ),
    patterns=_compile(
        r"busy right now",
        r"can'?t talk( right)? now",
        r"driving( right)? now",
        r"in a meeting",
        r"at work",
        r"call (me )?(back )?(later|another time)",
        r"not a good time",
        r"middle of something",
    ),
)

NO_INTEREST = IntentCategory(
    name="no_interest",
    priority=4,
    instructions=(
        "User has expressed no interest. Acknowledge their preference politely, "
        "thank them for their time, and end the call."
    ),
    patterns=_compile(
        r"not interested",
        r"don'?t want",
        r"no thank(s| you)",
        r"no,? (I'?m )?not",
        r"stop calling",
        r"leave me alone",
        r"do not call",
        r"take me off",
        r"remove (me|my number)",
        r"remove from (call|contact) list",
    ),
)

SERVICE_INTEREST = IntentCategory(
    name="service_interest",
    priority=4,
    instructions=(
        "User is interested in services. Provide relevant information and "
        "prepare for handoff to a human agent."
    ),
    patterns=_compile(
        r"interested",
        r"sounds good",
        r"tell me more",
        r"want to (know|learn) more",
        r"would like to",
        r"sign( me)? up",
        r"how (do|can|would) I",
        r"what (is|are) the (cost|price|fee)",
        r"how much (does it|do you|would it) cost",
    ),
)

ALREADY_HAVE_CARE = IntentCategory(
    name="already_have_care",
    priority=3,
    instructions=(
        "User already has care or service. Acknowledge this, briefly mention how "
        "your service might be different or complementary if appropriate, and "
        "respect their current arrangement."
    ),
    patterns=_compile(
        r"already have",
        r"already (using|with)",
        r"already (got|getting)",
        r"current(ly)? (have|using|with)",
        r"have my own",
        r"working with",
        r"am (with|using)",
    ),
)

WRONG_PERSON = IntentCategory(
    name="wrong_person",
    priority=5,
    instructions=(
        "Wrong person or number. Apologize for the confusion, confirm if you have "
        "the wrong contact, and prepare to end the call."
    ),
    patterns=_compile(
        r"wrong (person|number|name)",
        r"don'?t know what",
        r"not (sure )?who",
        r"who (is this|are you)",
        r"I'?m not",
        r"you'?ve got the wrong",
        r"no one (here|by that name)",
        r"there'?s no",
        r"doesn'?t live here",
    ),
)

CONFUSED = IntentCategory(
    name="confused",
    priority=1,
    instructions=(
        "User is confused about the call. Clearly reintroduce yourself, explain "
        "the purpose of the call, and ask if they would like more information."
    ),
    patterns=_compile(
        r"confused",
        r"don'?t understand",
        r"what (is this|are you) (about|regarding)",
        r"what (is this|are you) (calling|referring) (to|about)",
        r"why (are you|did you) call",
        r"what'?s (this|that) (about|for)",
        r"what (company|organization|service)",
        r"who (is this|are you)",
        r"where are you from",
        r"what (exactly )?(is|are|do) you",
    ),
)

NEEDS_MORE_INFO = IntentCategory(
    name="needs_more_info",
    priority=1,
    instructions=(
        "User needs more information. Provide details about your services, "
        "costs, benefits, and process clearly and concisely."
    ),
    patterns=_compile(
        r"tell me more",
        r"(would|could) you (please )?(explain|tell me)",
        r"more (information|details|specifics)",
        r"how (much|does it|do you)",
        r"what (is|are) the",
        r"send me (information|details)",
        r"interested",
        r"how (does it|do you) work",
        r"what (exactly|specifically)",
    ),
)

SCHEDULE_CALLBACK = IntentCategory(
    name="schedule_callback",
    priority=2,
    instructions=(
        "User wants to schedule a callback. Ask about and confirm a specific date "
        "and time that works for them, and assure them you will call back at "
        "that time."
    ),
    patterns=_compile(
        r"call (me )?back",
        r"call (me )?(on|at|tomorrow|later)",
        r"(could|can) you call( me)?( back)?",
        r"call another time",
        r"reschedule",
        r"schedule (a )?call",
        r"contact me",
        r"reach (me|out)",
        r"(later|another) (time|day)",
    ),
)

NEEDS_IMMEDIATE_CARE = IntentCategory(
    name="needs_immediate_care",
    priority=5,
    instructions=(
        "User needs immediate care. Gather necessary details about their "
        "situation, express understanding of urgency, and inform them about the "
        "quickest next steps."
    ),
    patterns=_compile(
        r"need (help|care|assistance|service) (now|right now|immediately|asap|today)",
        r"(right now|immediately|asap|today)",
        r"urgent",
        r"emergency",
        r"as soon as",
        r"need (it|someone|this) (now|today|asap)",
        r"can'?t wait",
        r"(how|when) (fast|quickly|soon) can",
    ),
)

ALL_CATEGORIES = (
    CANT_TALK_NOW,
    NO_INTEREST,
    SERVICE_INTEREST,
    ALREADY_HAVE_CARE,
    WRONG_PERSON,
    CONFUSED,
    NEEDS_MORE_INFO,
    SCHEDULE_CALLBACK,
    NEEDS_IMMEDIATE_CARE,
)

BY_NAME = {c.name: c for c in ALL_CATEGORIES}

POSITIVE_INTENTS = frozenset({
    SERVICE_INTEREST.name,
    NEEDS_MORE_INFO.name,
    SCHEDULE_CALLBACK.name,
    NEEDS_IMMEDIATE_CARE.name,
})
NEGATIVE_INTENTS = frozenset({NO_INTEREST.name, WRONG_PERSON.name})
NEUTRAL_INTENTS = frozenset(BY_NAME) - POSITIVE_INTENTS - NEGATIVE_INTENTS

# Success criteria published to the speech-AI vendor, mapped to local intents
EXTERNAL_CRITERIA = {
    "positive_intent": SERVICE_INTEREST.name,
    "negative_intent": NO_INTEREST.name,
}
EXTERNAL_CRITERIA_CONFIDENCE = 0.9


def external_success_criteria() -> list[dict]:
    """Success-criteria definitions in the vendor's format."""
    return [
        {
            "title": "positive_intent",
            "prompt": "The caller has expressed clear interest in proceeding with care services",
        },
        {
            "title": "negative_intent",
            "prompt": "The caller has explicitly declined interest in care services",
        },
    ]
