"""Parse extracted SRT and ASS/SSA text into timed cues."""

from __future__ import annotations

import logging
import re
from typing import List, Sequence, Tuple

from domain.media_items import SUBTITLE_PARSE_CODE, Cue, SubtitleDocument

LOGGER = logging.getLogger("mkv_subtitles.subtitle_document")

FORMAT_SRT = "srt"
FORMAT_ASS = "ass"
FORMAT_UNKNOWN = "unknown"
KNOWN_HINTS = {"srt": FORMAT_SRT, "ass": FORMAT_ASS, "ssa": FORMAT_ASS}
ASS_SECTION_MARKERS = ("[Script Info]", "[V4+ Styles]")
DEFAULT_PREVIEW_LIMIT = 100

SRT_BLOCK_SEPARATOR = re.compile(r"\n[ \t]*\n")
SRT_TIME_RANGE_PATTERN = re.compile(
    r"^\s*(?P<start>\d{2}:\d{2}:\d{2},\d{3})\s*-->\s*(?P<end>\d{2}:\d{2}:\d{2},\d{3})"
)
ASS_SECTION_PATTERN = re.compile(r"^\[[^\]]+\]$")
ASS_OVERRIDE_PATTERN = re.compile(r"\{[^}]*\}")


def resolve_format(text_value: str, hint_format: str | None) -> str:
    """Pick the grammar for the content, trusting a known hint first."""
    if hint_format:
        normalized = hint_format.strip().lower()
        if normalized in KNOWN_HINTS:
            return KNOWN_HINTS[normalized]
    if any(marker in text_value for marker in ASS_SECTION_MARKERS):
        return FORMAT_ASS
    return FORMAT_SRT


def parse_subtitle_document(
    text_value: str | None, hint_format: str | None = None
) -> SubtitleDocument:
    """Parse subtitle text; failures become an empty, annotated document."""
    if not text_value:
        hinted = KNOWN_HINTS.get((hint_format or "").strip().lower(), FORMAT_UNKNOWN)
        return SubtitleDocument(format=hinted, entries=())

    resolved = FORMAT_UNKNOWN
    try:
        resolved = resolve_format(text_value, hint_format)
        if resolved == FORMAT_ASS:
            entries = parse_ass_events(text_value)
        else:
            entries = parse_srt_blocks(text_value)
    except Exception as exc:
        LOGGER.warning("%s: %s", SUBTITLE_PARSE_CODE, str(exc).strip())
        return SubtitleDocument(format=resolved, entries=(), error=str(exc))
    return SubtitleDocument(format=resolved, entries=entries)


def normalize_newlines(text_value: str) -> str:
    return text_value.replace("\ufeff", "").replace("\r\n", "\n").replace("\r", "\n")


def parse_srt_blocks(text_value: str) -> Tuple[Cue, ...]:
    """Parse SubRip blocks, skipping any block that is not well formed."""
    normalized = normalize_newlines(text_value).strip()
    cues: List[Cue] = []
    for block in SRT_BLOCK_SEPARATOR.split(normalized):
        lines = block.split("\n")
        if len(lines) < 3:
            continue
        match = SRT_TIME_RANGE_PATTERN.match(lines[1])
        if not match:
            continue
        cues.append(
            Cue(
                start_time=match.group("start"),
                end_time=match.group("end"),
                text="\n".join(lines[2:]),
            )
        )
    return tuple(cues)


def split_ass_fields(line_value: str, max_fields: int | None = None) -> List[str]:
    """Split on commas that sit outside double-quoted runs.

    When max_fields is given, the last field keeps the remainder of the line,
    so commas inside the dialogue text survive.
    """
    fields: List[str] = []
    current: List[str] = []
    in_quotes = False
    for position, character in enumerate(line_value):
        if max_fields is not None and len(fields) == max_fields - 1:
            fields.append(line_value[position:].strip())
            return fields
        if character == "," and not in_quotes:
            fields.append("".join(current).strip())
            current = []
            continue
        if character == '"':
            in_quotes = not in_quotes
        current.append(character)
    if current or fields:
        fields.append("".join(current).strip())
    return fields


def strip_ass_overrides(text_value: str) -> str:
    """Remove {...} style override blocks."""
    return ASS_OVERRIDE_PATTERN.sub("", text_value)


def parse_ass_events(text_value: str) -> Tuple[Cue, ...]:
    """Parse Dialogue lines from the [Events] section."""
    cues: List[Cue] = []
    in_events = False
    columns: Sequence[str] | None = None
    start_index = end_index = text_index = -1

    for raw_line in normalize_newlines(text_value).split("\n"):
        line = raw_line.strip()
        if ASS_SECTION_PATTERN.match(line):
            in_events = line.lower() == "[events]"
            columns = None
            continue
        if not in_events:
            continue
        if line.startswith("Format:"):
            columns = [name.strip() for name in line[len("Format:") :].split(",")]
            start_index = _column_position(columns, "Start")
            end_index = _column_position(columns, "End")
            text_index = _column_position(columns, "Text")
            continue
        if columns is None or not line.startswith("Dialogue:"):
            continue
        if min(start_index, end_index, text_index) < 0:
            continue
        fields = split_ass_fields(line[len("Dialogue:") :], len(columns))
        if len(fields) <= max(start_index, end_index, text_index):
            continue
        cues.append(
            Cue(
                start_time=fields[start_index],
                end_time=fields[end_index],
                text=strip_ass_overrides(fields[text_index]),
            )
        )
    return tuple(cues)


def _column_position(columns: Sequence[str], name: str) -> int:
    try:
        return list(columns).index(name)
    except ValueError:
        return -1


def preview_entries(
    document: SubtitleDocument, limit: int = DEFAULT_PREVIEW_LIMIT
) -> Tuple[Tuple[Cue, ...], int]:
    """Return the first cues for display and how many were left out."""
    if limit < 0:
        limit = 0
    shown = document.entries[:limit]
    return shown, len(document.entries) - len(shown)
