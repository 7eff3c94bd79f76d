"""Read subtitle tracks and attachments out of ffprobe's diagnostic text."""

from __future__ import annotations

import logging
import re
from typing import List, Tuple

from domain.media_items import (
    UNKNOWN_LANGUAGE,
    AnalysisResult,
    AttachmentDescriptor,
    MediaValidationError,
    TrackDescriptor,
    is_relevant_attachment_name,
)
from service.media_config import MediaConfig
from service.tool_runner import ToolRunner, run_tool_command

LOGGER = logging.getLogger("mkv_subtitles.probe_output")

TRACK_PATTERN = re.compile(
    r"Stream #\d+:(?P<index>\d+)(?:\((?P<language>[^)]+)\))?: Subtitle: (?P<codec>[^,]+)"
)
TRACK_FALLBACK_PATTERN = re.compile(
    r"Stream #\d+:(?P<index>\d+)(?:\[[^\]]*\])?(?:\((?P<language>[^)]+)\))?"
    r":\s*Subtitle:?\s+(?P<codec>[^,]+)"
)
ATTACHMENT_PATTERN = re.compile(
    r"\s*Attachment:\s+(?P<filename>[^,]+),\s+mimetype:\s+(?P<mime>[^,\s]+)",
    re.IGNORECASE,
)
ATTACHMENT_LOCALIZED_PATTERN = re.compile(
    r"^\s*(?P<filename>[^(]+?)\s*\([^)]*(?:附件|attachment)[^)]*,\s*mimetype:\s*(?P<mime>[^)]+)\)",
    re.IGNORECASE,
)
ATTACHMENT_STREAM_PATTERN = re.compile(
    r"Stream #\d+:\d+(?:\[[^\]]*\])?(?:\([^)]+\))?: Attachment\b"
)
STREAM_LINE_PATTERN = re.compile(r"^\s*(?:Stream|Input|Output) #")
METADATA_HEADER_PATTERN = re.compile(r"^\s+Metadata:\s*$")
METADATA_FIELD_PATTERN = re.compile(
    r"^\s+(?P<key>[^:]+?)\s*:\s*(?P<value>.*?)\s*$"
)
ANALYSIS_ARGS = (
    "-v",
    "verbose",
    "-show_streams",
    "-show_format",
    "-print_format",
    "json",
)


def match_track_line(line: str) -> TrackDescriptor | None:
    """Match a subtitle stream declaration, trying the strict shape first."""
    match = TRACK_PATTERN.search(line) or TRACK_FALLBACK_PATTERN.search(line)
    if not match:
        return None
    codec = match.group("codec").strip()
    if not codec:
        return None
    return TrackDescriptor(
        index=int(match.group("index")),
        language=match.group("language") or UNKNOWN_LANGUAGE,
        format=codec,
    )


def match_attachment_line(line: str) -> Tuple[str, str] | None:
    """Match a single-line attachment declaration."""
    match = ATTACHMENT_PATTERN.search(line) or ATTACHMENT_LOCALIZED_PATTERN.search(
        line
    )
    if not match:
        return None
    return match.group("filename").strip(), match.group("mime").strip()


class _AttachmentStreamBlock:
    """Collects filename/mimetype metadata under an attachment stream line."""

    def __init__(self) -> None:
        self.filename: str | None = None
        self.mime_type: str = ""

    def accept(self, line: str) -> bool:
        if STREAM_LINE_PATTERN.match(line):
            return False
        if METADATA_HEADER_PATTERN.match(line):
            return True
        match = METADATA_FIELD_PATTERN.match(line)
        if not match:
            return False
        key = match.group("key").strip().lower()
        if key == "filename":
            self.filename = match.group("value")
        elif key == "mimetype":
            self.mime_type = match.group("value")
        return True


def parse_probe_output(
    diagnostic_text: str,
) -> Tuple[Tuple[TrackDescriptor, ...], Tuple[AttachmentDescriptor, ...]]:
    """Parse tracks and relevant attachments, in the order they appear."""
    tracks: List[TrackDescriptor] = []
    attachments: List[AttachmentDescriptor] = []
    block: _AttachmentStreamBlock | None = None

    def keep_attachment(filename: str | None, mime_type: str) -> None:
        if not filename or not is_relevant_attachment_name(filename):
            return
        try:
            attachments.append(
                AttachmentDescriptor.from_declaration(filename, mime_type)
            )
        except MediaValidationError as exc:
            LOGGER.debug("skipped attachment %r (%s)", filename, exc)

    for line in diagnostic_text.splitlines():
        if block is not None:
            if block.accept(line):
                continue
            keep_attachment(block.filename, block.mime_type)
            block = None

        track = match_track_line(line)
        if track is not None:
            tracks.append(track)
            continue

        declared = match_attachment_line(line)
        if declared is not None:
            keep_attachment(*declared)
            continue

        if ATTACHMENT_STREAM_PATTERN.search(line):
            block = _AttachmentStreamBlock()

    if block is not None:
        keep_attachment(block.filename, block.mime_type)

    return tuple(tracks), tuple(attachments)


def build_analysis_command(ffprobe_path: str, media_path: str) -> Tuple[str, ...]:
    return (ffprobe_path, *ANALYSIS_ARGS, "-i", media_path)


def analyze_media(
    media_path: str,
    config: MediaConfig,
    runner: ToolRunner = run_tool_command,
) -> AnalysisResult:
    """Run ffprobe and parse its diagnostic stream.

    ffprobe writes the stream dump to stderr even on success, so the exit
    status alone does not decide anything here.
    """
    command = build_analysis_command(config.ffprobe_path, media_path)
    result = runner(
        command,
        timeout_seconds=config.probe_timeout_seconds,
        max_output_bytes=config.max_output_bytes,
    )
    if result.return_code != 0:
        LOGGER.warning(
            "ffprobe exited with %d for %s", result.return_code, media_path
        )
    tracks, attachments = parse_probe_output(result.stderr)
    analysis = AnalysisResult(
        path=media_path,
        tracks=tracks,
        attachments=attachments,
        diagnostics=result.stderr,
        return_code=result.return_code,
    )
    if analysis.is_empty:
        LOGGER.info("no subtitle content found in %s", media_path)
    else:
        LOGGER.info(
            "found %d tracks and %d attachments in %s",
            len(tracks),
            len(attachments),
            media_path,
        )
    return analysis
