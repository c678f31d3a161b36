PERSONA = """You are Heather, a friendly and warm care coordinator for First Light Home Care, a home healthcare company. You're calling to follow up on care service inquiries with a calm and reassuring voice, using natural pauses to make the conversation feel more human-like.

GOALS
1. Verify the details submitted in the care request from the Point of Contact for the 'Care Needed For'.
2. Show empathy for the care situation.
3. Confirm interest in receiving care services for the 'Care Needed For'.
4. Set expectations for next steps, which are to discuss with a care specialist.

STYLE
- Casual, friendly language. No jargon or technical terms.
- Listen carefully and address concerns with empathy. Build rapport.
- If asked about pricing: a care specialist will discuss detailed pricing options soon.
- If the person is not interested, thank them for their time and end the call politely.

FOLLOW-UP
- If a care specialist is not available, say they will reach out soon.
- Verify phone number and/or email match what we have on file.
- Ask if there's a preferred time for follow-up. Confirm everything before ending the call.

OPENING
When the call connects, wait for the person to say hello before you speak. If they say nothing within 2-3 seconds, begin with a warm greeting and pause briefly before your introduction."""

CALLBACK_NUMBER = "(555) 123-4567"

GENERIC_FIRST_MESSAGE = (
    "Hello, this is Heather from First Light Home Care. I'm calling about the "
    "care services inquiry. Am I speaking with the right person?"
)


def _field(lead_info: dict, *keys: str) -> str:
    """First non-empty value among keys. Lead payloads arrive in either casing."""
    for key in keys:
        value = lead_info.get(key)
        if value:
            return str(value).strip()
    return ""


def lead_name(lead_info: dict) -> str:
    return _field(lead_info, "LeadName", "leadName", "PoC", "poc")


def care_needed_for(lead_info: dict) -> str:
    return _field(lead_info, "CareNeededFor", "careNeededFor")


def care_reason(lead_info: dict) -> str:
    return _field(lead_info, "CareReason", "careReason")


def build_prompt(lead_info: dict) -> str:
    contact = _field(lead_info, "PoC", "poc", "LeadName", "leadName")
    needed_for = care_needed_for(lead_info)
    reason = care_reason(lead_info)
    if not (contact or needed_for or reason):
        return PERSONA

    details = []
    if contact:
        details.append(f"The Point of Contact is {contact}.")
    if needed_for:
        details.append(f"Care is needed for {needed_for}.")
    if reason:
        details.append(f"The reason for care is: {reason}.")
    return f"{PERSONA}\n\nTHIS CALL\n{' '.join(details)}"


def build_first_message(lead_info: dict) -> str:
    name = lead_name(lead_info)
    needed_for = care_needed_for(lead_info)
    if not (name or needed_for):
        return GENERIC_FIRST_MESSAGE
    return (
        "Hello, this is Heather from First Light Home Care. I'm calling about the "
        f"care services inquiry for {needed_for or 'your loved one'}. "
        f"Is this {name or 'the right person'}?"
    )


def voicemail_instructions(lead_info: dict) -> str:
    name = lead_name(lead_info)
    needed_for = care_needed_for(lead_info)
    reason = care_reason(lead_info)

    if not (name or needed_for or reason):
        return (
            "IMPORTANT: This call has reached a voicemail. Wait for the beep, then leave "
            "a message: \"Hello, I'm calling from First Light Home Care regarding the care "
            f"services inquiry. Please call us back at {CALLBACK_NUMBER} at your earliest "
            "convenience to discuss how we can help. Thank you.\" Keep it concise, warm "
            "and professional."
        )

    greeting = f"Hello {name}," if name else "Hello,"
    inquiry = "the care services inquiry"
    if needed_for:
        inquiry += f" for {needed_for}"
    if reason:
        inquiry += f" who needs {reason}"
    return (
        "IMPORTANT: This call has reached a voicemail. Wait for the beep, then leave a "
        f"personalized message like: \"{greeting} I'm calling from First Light Home Care "
        f"regarding {inquiry}. Please call us back at {CALLBACK_NUMBER} at your earliest "
        "convenience to discuss how we can help. Thank you.\" Make it sound natural, not "
        "like a template. Be concise as voicemails often have time limits."
    )


def build_init_config(lead_info: dict | None = None, voicemail: bool = False) -> dict:
    """The one-per-session configuration message for the AI leg.

    A caller-supplied "prompt" replaces the generated one entirely.
    """
    lead_info = lead_info or {}
    prompt = lead_info.get("prompt") or build_prompt(lead_info)
    if voicemail and not lead_info.get("prompt"):
        prompt = f"{prompt}\n\n{voicemail_instructions(lead_info)}"
    first_message = lead_info.get("first_message") or build_first_message(lead_info)
    return {
        "type": "conversation_initiation_client_data",
        "conversation_config_override": {
            "agent": {
                "prompt": {"prompt": prompt},
                "first_message": first_message,
            },
        },
    }
