#!/usr/bin/env python3
"""Reassemble a call's timestamped transcript from service logs.

Usage:
    python scripts/call_transcript.py app.log                 # last call, human-readable
    python scripts/call_transcript.py app.log --raw           # last call, raw JSON
    python scripts/call_transcript.py app.log --call-sid CA...
    python scripts/call_transcript.py app.log --lead-id lead_42 --all
    docker logs callbridge 2>&1 | python scripts/call_transcript.py -
"""

import argparse
import json
import sys


def parse_transcript_lines(
    lines: list[str],
    call_sid: str | None = None,
    lead_id: str | None = None,
) -> list[dict]:
    """Parse TRANSCRIPT_DUMP lines from log output into transcript dicts.

    Handles multi-chunk reassembly. Returns list of complete transcripts
    (most recent last), optionally filtered to one call or one lead.
    """
    chunk_groups: dict[int, dict[int, str]] = {}
    group_counter = 0

    for line in lines:
        if "TRANSCRIPT_DUMP|" not in line:
            continue

        idx = line.index("TRANSCRIPT_DUMP|")
        parts = line[idx:].rstrip("\n").split("|", 2)
        if len(parts) < 3:
            continue

        try:
            chunk_num, total = (int(n) for n in parts[1].split("/"))
        except ValueError:
            continue

        if chunk_num == 1:
            group_counter += 1
        chunk_groups.setdefault(group_counter, {})[chunk_num] = parts[2]

    transcripts = []
    for group_id in sorted(chunk_groups):
        chunks = chunk_groups[group_id]
        try:
            first = json.loads(chunks.get(1, "{}"))
        except json.JSONDecodeError:
            continue

        if call_sid and first.get("call_sid") != call_sid:
            continue
        if lead_id and first.get("lead_id") != lead_id:
            continue

        entries = list(first.get("entries", []))
        for i in sorted(chunks):
            if i == 1:
                continue
            try:
                entries.extend(json.loads(chunks[i]).get("entries", []))
            except json.JSONDecodeError:
                continue

        first["entries"] = entries
        transcripts.append(first)

    return transcripts


def format_transcript(transcript: dict, gap_threshold: float = 2.0) -> str:
    """Format a transcript dict into human-readable output with gap annotations."""
    sid = transcript.get("call_sid", "unknown")
    lead = transcript.get("lead_id") or "unknown"
    status = transcript.get("final_status", "unknown")
    entries = transcript.get("entries", [])
    duration = entries[-1].get("t", 0.0) if entries else 0.0

    lines = [f"Call {sid} | lead {lead} | {status}", "═" * 55, ""]

    prev_t = None
    for entry in entries:
        t = entry.get("t", 0.0)
        if prev_t is not None:
            gap = t - prev_t
            if gap >= 5.0:
                lines.append(f"      ┆ +{gap:.1f}s ⚠ SLOW")
            elif gap >= gap_threshold:
                lines.append(f"      ┆ +{gap:.1f}s")

        role = entry.get("role", "")
        speaker = {"agent": "Agent", "user": "Caller"}.get(role, role or "?")
        lines.append(f"{t:5.1f}s {speaker}: {entry.get('content', '')}")
        prev_t = t

    if entries:
        lines.append(f"{duration:5.1f}s ☎ Call ended ({status})")

    return "\n".join(lines)


def main():
    parser = argparse.ArgumentParser(description="Reassemble call transcripts from service logs")
    parser.add_argument("logfile", help="Log file to scan, or - for stdin")
    parser.add_argument("--raw", action="store_true", help="Output raw JSON")
    parser.add_argument("--call-sid", type=str, default=None, help="Filter by call SID")
    parser.add_argument("--lead-id", type=str, default=None, help="Filter by lead ID")
    parser.add_argument("--all", action="store_true", help="Print every matching call, not just the last")
    parser.add_argument("--gap-threshold", type=float, default=2.0, help="Gap threshold in seconds (default: 2.0)")
    args = parser.parse_args()

    try:
        if args.logfile == "-":
            lines = sys.stdin.readlines()
        else:
            with open(args.logfile, encoding="utf-8", errors="replace") as f:
                lines = f.readlines()
    except OSError as e:
        print(f"Error: cannot read {args.logfile}: {e}", file=sys.stderr)
        sys.exit(1)

    transcripts = parse_transcript_lines(lines, call_sid=args.call_sid, lead_id=args.lead_id)
    if not transcripts:
        print("No matching calls found in the log.", file=sys.stderr)
        sys.exit(1)

    selected = transcripts if args.all else transcripts[-1:]
    for transcript in selected:
        if args.raw:
            print(json.dumps(transcript, indent=2))
        else:
            print(format_transcript(transcript, gap_threshold=args.gap_threshold))
            print()


if __name__ == "__main__":
    main()
