"""Domain types and error codes for mkv_subtitles."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import os
from typing import Iterator, Sequence, Tuple, Union

INVALID_FILENAME_CODE = "mkv_subtitles.input.invalid_filename"
INPUT_FILE_CODE = "mkv_subtitles.input.file_error"
INVALID_TRACK_CODE = "mkv_subtitles.input.invalid_track"
INVALID_CONFIG_CODE = "mkv_subtitles.config.invalid"
MISSING_DIRECTORY_CODE = "mkv_subtitles.config.missing_directory"
PATH_NOT_FOUND_CODE = "mkv_subtitles.resolve.not_found"
TOOL_NOT_FOUND_CODE = "mkv_subtitles.tool.not_found"
TOOL_TIMEOUT_CODE = "mkv_subtitles.tool.timeout"
TOOL_OUTPUT_LIMIT_CODE = "mkv_subtitles.tool.output_limit"
EXTRACTION_FAILED_CODE = "mkv_subtitles.extract.failed"
SUBTITLE_PARSE_CODE = "mkv_subtitles.parse.failed"

UNKNOWN_LANGUAGE = "unknown"
SUBTITLE_EXTENSIONS = (".srt", ".ass", ".ssa", ".vtt")
FONT_EXTENSIONS = (".ttf", ".otf")
SUBTITLE_MIME_TYPES = {
    "application/x-subrip",
    "text/x-ssa",
    "text/x-ass",
    "text/vtt",
}
FONT_MIME_TYPES = {
    "application/x-truetype-font",
    "application/x-font-ttf",
    "application/x-font-otf",
    "application/vnd.ms-opentype",
    "application/font-sfnt",
    "font/ttf",
    "font/otf",
    "font/sfnt",
}


class MediaValidationError(ValueError):
    """Validation error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class MediaPipelineError(RuntimeError):
    """Runtime error with a stable error code."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


class ToolOutputLimitError(MediaPipelineError):
    """Raised when a tool writes more than the captured output bound."""

    def __init__(self, command: Sequence[str], limit_bytes: int) -> None:
        super().__init__(
            TOOL_OUTPUT_LIMIT_CODE,
            f"{command[0]} produced more than {limit_bytes} bytes of output",
        )
        self.command = tuple(command)
        self.limit_bytes = limit_bytes


class ExtractionTimeout(MediaPipelineError):
    """Raised when a tool invocation exceeds its timeout."""

    def __init__(self, command: Sequence[str], timeout_seconds: float) -> None:
        super().__init__(
            TOOL_TIMEOUT_CODE,
            f"{command[0]} did not finish within {timeout_seconds:g}s",
        )
        self.command = tuple(command)
        self.timeout_seconds = timeout_seconds


@dataclass(frozen=True)
class FailedAttempt:
    """One extraction command that produced no usable output."""

    command: Tuple[str, ...]
    return_code: int
    diagnostics: str


class ExtractionError(MediaPipelineError):
    """Raised when every extraction command variant failed.

    The first attempt is the primary command; any further attempts are the
    alternate forms, in the order they ran.
    """

    def __init__(self, message: str, attempts: Sequence[FailedAttempt]) -> None:
        super().__init__(EXTRACTION_FAILED_CODE, message)
        self.attempts = tuple(attempts)

    @property
    def diagnostics(self) -> str:
        return self.attempts[0].diagnostics if self.attempts else ""

    @property
    def alternate_diagnostics(self) -> str | None:
        if len(self.attempts) < 2:
            return None
        return self.attempts[1].diagnostics


class ItemKind(str, Enum):
    """Discriminator for selectable container items."""

    TRACK = "track"
    ATTACHMENT = "attachment"


@dataclass(frozen=True)
class TrackDescriptor:
    """A subtitle stream as reported by ffprobe."""

    index: int
    language: str
    format: str
    kind: ItemKind = field(default=ItemKind.TRACK, init=False)

    def __post_init__(self) -> None:
        if isinstance(self.index, bool) or not isinstance(self.index, int):
            raise MediaValidationError(
                INVALID_TRACK_CODE, f"track index must be an integer: {self.index!r}"
            )
        if self.index < 0:
            raise MediaValidationError(
                INVALID_TRACK_CODE, "track index must be non-negative"
            )
        if not self.format.strip():
            raise MediaValidationError(
                INVALID_TRACK_CODE, "track format must be non-empty"
            )

    def describe(self) -> str:
        return f"Track {self.index + 1}: {self.language} ({self.format})"

    def to_payload(self) -> dict[str, object]:
        return {
            "type": self.kind.value,
            "index": self.index,
            "language": self.language,
            "format": self.format,
            "description": self.describe(),
        }


@dataclass(frozen=True)
class AttachmentDescriptor:
    """A file embedded in the container."""

    filename: str
    mime_type: str
    is_subtitle: bool
    is_font: bool
    kind: ItemKind = field(default=ItemKind.ATTACHMENT, init=False)

    def __post_init__(self) -> None:
        validate_leaf_name(self.filename)

    @classmethod
    def from_declaration(cls, filename: str, mime_type: str) -> "AttachmentDescriptor":
        """Build a descriptor, classifying by extension then MIME type."""
        is_subtitle, is_font = classify_attachment(filename, mime_type)
        return cls(
            filename=filename,
            mime_type=mime_type,
            is_subtitle=is_subtitle,
            is_font=is_font,
        )

    def describe(self) -> str:
        if self.is_subtitle:
            label = "subtitle"
        elif self.is_font:
            label = "font"
        else:
            label = self.mime_type
        return f"Attachment: {self.filename} ({label})"

    def to_payload(self) -> dict[str, object]:
        return {
            "type": self.kind.value,
            "filename": self.filename,
            "mimetype": self.mime_type,
            "isSubtitle": self.is_subtitle,
            "isFont": self.is_font,
            "description": self.describe(),
        }


SelectionItem = Union[TrackDescriptor, AttachmentDescriptor]


@dataclass(frozen=True)
class Cue:
    """One timed subtitle entry."""

    start_time: str
    end_time: str
    text: str

    def to_payload(self) -> dict[str, str]:
        return {
            "startTime": self.start_time,
            "endTime": self.end_time,
            "text": self.text,
        }


@dataclass(frozen=True)
class SubtitleDocument:
    """Parsed subtitle content; error is set when parsing was abandoned."""

    format: str
    entries: Tuple[Cue, ...]
    error: str | None = None

    def to_payload(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "format": self.format,
            "entries": [cue.to_payload() for cue in self.entries],
        }
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True)
class PathNotFound:
    """Resolution miss, carrying the roots that were searched."""

    filename: str
    search_roots: Tuple[str, ...]

    def describe(self) -> str:
        roots = ", ".join(self.search_roots) or "(none configured)"
        return f"{self.filename} not found in media directories: {roots}"


@dataclass(frozen=True)
class AnalysisResult:
    """Tracks and attachments found in a container."""

    path: str
    tracks: Tuple[TrackDescriptor, ...]
    attachments: Tuple[AttachmentDescriptor, ...]
    diagnostics: str
    return_code: int

    @property
    def is_empty(self) -> bool:
        return not self.tracks and not self.attachments

    @property
    def items(self) -> Iterator[SelectionItem]:
        yield from self.tracks
        yield from self.attachments

    def to_payload(self) -> dict[str, object]:
        return {
            "path": self.path,
            "tracks": [track.to_payload() for track in self.tracks],
            "attachments": [
                attachment.to_payload() for attachment in self.attachments
            ],
        }


@dataclass(frozen=True)
class FontSummary:
    """Family and style names read from a font file."""

    family: str
    style: str


@dataclass(frozen=True)
class TrackExtraction:
    """Decoded text of an extracted subtitle track."""

    text: str
    output_path: str
    command: Tuple[str, ...]


@dataclass(frozen=True)
class AttachmentExtraction:
    """Content of an extracted attachment; bytes when not text."""

    content: str | bytes
    is_text: bool
    output_path: str
    command: Tuple[str, ...]
    font: FontSummary | None = None


def validate_leaf_name(filename: str) -> str:
    """Reject names that are empty or carry directory components."""
    if not filename or not filename.strip():
        raise MediaValidationError(INVALID_FILENAME_CODE, "filename must be non-empty")
    if filename in (".", ".."):
        raise MediaValidationError(
            INVALID_FILENAME_CODE, f"invalid filename: {filename!r}"
        )
    separators = {"/", "\\", os.sep}
    if os.altsep:
        separators.add(os.altsep)
    if any(separator in filename for separator in separators) or "\x00" in filename:
        raise MediaValidationError(
            INVALID_FILENAME_CODE, f"filename must not contain a path: {filename!r}"
        )
    return filename


def classify_attachment(filename: str, mime_type: str) -> Tuple[bool, bool]:
    """Return (is_subtitle, is_font); the extension decides before the MIME type."""
    extension = os.path.splitext(filename)[1].lower()
    if extension in SUBTITLE_EXTENSIONS:
        return True, False
    if extension in FONT_EXTENSIONS:
        return False, True
    normalized_mime = mime_type.strip().lower()
    if normalized_mime in SUBTITLE_MIME_TYPES:
        return True, False
    if normalized_mime in FONT_MIME_TYPES or normalized_mime.startswith("font/"):
        return False, True
    return False, False


def is_relevant_attachment_name(filename: str) -> bool:
    """Return True for attachment names worth listing."""
    extension = os.path.splitext(filename)[1].lower()
    return extension in SUBTITLE_EXTENSIONS or extension in FONT_EXTENSIONS
