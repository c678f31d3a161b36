import json


def to_plain_text(log: list[dict]) -> str:
    """Convert transcript log to plain text format.

    Agent lines prefixed with "Agent:", caller lines with "Caller:".
    """
    if not log:
        return ""

    lines = []
    for entry in log:
        role = entry.get("role", "")
        if role == "agent":
            lines.append(f"Agent: {entry['content']}")
        elif role == "user":
            lines.append(f"Caller: {entry['content']}")
    return "\n".join(lines)


def to_json_array(log: list[dict]) -> list[dict]:
    """Convert transcript log to a list of {role, content} dicts for the report."""
    if not log:
        return []
    return [
        {"role": entry["role"], "content": entry["content"]}
        for entry in log
        if entry.get("role") in ("agent", "user")
    ]


def to_timestamped_dump(
    log: list[dict],
    start_time: float,
    call_sid: str,
    lead_id: str,
    final_status: str,
) -> dict:
    """Build a timestamped transcript dump dict for structured logging.

    Timestamps are converted to relative seconds from call start.
    If start_time is 0, uses the first entry's timestamp as base.
    Entries missing a timestamp key are skipped.
    """
    base_time = start_time
    if base_time <= 0 and log:
        for entry in log:
            if "timestamp" in entry:
                base_time = entry["timestamp"]
                break

    entries = []
    for entry in log:
        if "timestamp" not in entry:
            continue
        entries.append({
            "t": round(entry["timestamp"] - base_time, 1),
            "role": entry.get("role", ""),
            "content": entry.get("content", ""),
        })

    return {
        "call_sid": call_sid,
        "lead_id": lead_id,
        "final_status": final_status,
        "entries": entries,
    }


def chunk_transcript_dump(dump: dict, max_bytes: int = 3500) -> list[str]:
    """Split a transcript dump into chunks that fit within log line limits.

    Each chunk is a string: TRANSCRIPT_DUMP|N/M|{json}
    The first chunk contains header fields + as many entries as fit.
    Subsequent chunks contain only entries.
    """
    header = {k: v for k, v in dump.items() if k != "entries"}
    entries = dump.get("entries", [])

    if not entries:
        payload = json.dumps({**header, "entries": []})
        return [f"TRANSCRIPT_DUMP|1/1|{payload}"]

    chunks: list[list[dict]] = []
    current: list[dict] = []
    # The first chunk also carries the header
    current_size = len(json.dumps({**header, "entries": []}).encode("utf-8"))

    for entry in entries:
        entry_size = len(json.dumps(entry).encode("utf-8")) + 2  # comma + bracket

        if current and (current_size + entry_size) > max_bytes:
            chunks.append(current)
            current = []
            current_size = len(json.dumps({"entries": []}).encode("utf-8"))

        current.append(entry)
        current_size += entry_size

    if current:
        chunks.append(current)

    total = len(chunks)
    result = []
    for i, chunk_entries in enumerate(chunks):
        if i == 0:
            payload = json.dumps({**header, "entries": chunk_entries})
        else:
            payload = json.dumps({"entries": chunk_entries})
        result.append(f"TRANSCRIPT_DUMP|{i + 1}/{total}|{payload}")
    return result
