"""Pull one subtitle track or attachment out of a container with ffmpeg."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os
import time
import uuid
from typing import Sequence, Tuple

from domain.media_items import (
    INVALID_TRACK_CODE,
    AttachmentExtraction,
    ExtractionError,
    FailedAttempt,
    MediaValidationError,
    TrackExtraction,
    classify_attachment,
    validate_leaf_name,
)
from service.media_config import MediaConfig
from service.tool_runner import ToolRunner, run_tool_command

LOGGER = logging.getLogger("mkv_subtitles.extraction")

COPY_FORMATS = {"ass", "ssa"}
UTF8_BOM = b"\xef\xbb\xbf"
REPLACEMENT_CHARACTER = "\ufffd"


@dataclass(frozen=True)
class CommandVariant:
    """One way of asking ffmpeg for the same output file."""

    label: str
    command: Tuple[str, ...]
    cwd: str | None = None


def track_output_extension(requested_format: str | None) -> str:
    """ASS/SSA requests keep the codec; everything else becomes SRT.

    Probe formats carry dispositions after the codec name, as in
    "ass (default)", so only the first word counts.
    """
    words = (requested_format or "").strip().lower().split()
    codec = words[0] if words else ""
    return "ass" if codec in COPY_FORMATS else "srt"


def unique_token() -> str:
    return f"{time.time_ns()}_{uuid.uuid4().hex[:8]}"


def build_track_variants(
    ffmpeg_path: str,
    media_path: str,
    track_index: int,
    extension: str,
    output_path: str,
) -> Tuple[CommandVariant, ...]:
    """Primary and alternate commands for a track extraction."""
    base = (ffmpeg_path, "-y", "-i", media_path, "-map", f"0:{track_index}")
    if extension == "ass":
        primary = base + ("-c", "copy", output_path)
        alternate = base + ("-c:s", "ass", output_path)
    else:
        primary = base + ("-f", "srt", output_path)
        alternate = base + ("-c:s", "srt", output_path)
    return (
        CommandVariant(label="primary", command=primary),
        CommandVariant(label="alternate", command=alternate),
    )


def build_attachment_variants(
    ffmpeg_path: str,
    media_path: str,
    attachment_name: str,
    request_dir: str,
    output_path: str,
) -> Tuple[CommandVariant, ...]:
    """Primary and alternate commands for an attachment dump.

    ffmpeg exits non-zero after a dump-only run because no output file is
    given; the written file is what decides success.
    """
    primary = (
        ffmpeg_path,
        "-y",
        f"-dump_attachment:m:filename:{attachment_name}",
        output_path,
        "-i",
        media_path,
    )
    alternate = (ffmpeg_path, "-y", "-dump_attachment:t", "", "-i", media_path)
    return (
        CommandVariant(label="primary", command=primary),
        CommandVariant(label="alternate", command=alternate, cwd=request_dir),
    )


def has_output(output_path: str) -> bool:
    return os.path.isfile(output_path) and os.path.getsize(output_path) > 0


def decode_text_output(data: bytes, label: str) -> str:
    """Decode tool output as UTF-8, tolerating a BOM and bad bytes."""
    if data.startswith(UTF8_BOM):
        data = data[len(UTF8_BOM) :]
    text = data.decode("utf-8", errors="replace")
    if REPLACEMENT_CHARACTER in text:
        LOGGER.warning("%s contains bytes that are not valid UTF-8", label)
    return text


def read_output(output_path: str) -> bytes:
    with open(output_path, "rb") as file_handle:
        return file_handle.read()


class ExtractionDispatcher:
    """Runs extraction commands and falls back to their alternate forms."""

    def __init__(self, config: MediaConfig, runner: ToolRunner = run_tool_command) -> None:
        self._config = config
        self._runner = runner

    def extract_track(
        self, media_path: str, track_index: int, requested_format: str | None = "srt"
    ) -> TrackExtraction:
        if isinstance(track_index, bool) or not isinstance(track_index, int):
            raise MediaValidationError(
                INVALID_TRACK_CODE, f"track index must be an integer: {track_index!r}"
            )
        if track_index < 0:
            raise MediaValidationError(
                INVALID_TRACK_CODE, "track index must be non-negative"
            )
        extension = track_output_extension(requested_format)
        os.makedirs(self._config.output_dir, exist_ok=True)
        output_path = os.path.join(
            self._config.output_dir, f"subtitle_{unique_token()}.{extension}"
        )
        LOGGER.info(
            "extracting track %d from %s as %s", track_index, media_path, extension
        )
        variants = build_track_variants(
            self._config.ffmpeg_path, media_path, track_index, extension, output_path
        )
        variant = self._run_variants(variants, output_path, f"track {track_index}")
        text = decode_text_output(read_output(output_path), output_path)
        return TrackExtraction(
            text=text, output_path=output_path, command=variant.command
        )

    def extract_attachment(
        self, media_path: str, attachment_name: str, mime_type: str = ""
    ) -> AttachmentExtraction:
        validate_leaf_name(attachment_name)
        is_subtitle, _ = classify_attachment(attachment_name, mime_type)
        # Each request gets its own directory because the dumped file keeps
        # the attachment's own name.
        request_dir = os.path.join(
            self._config.output_dir, f"attachment_{unique_token()}"
        )
        os.makedirs(request_dir, exist_ok=False)
        output_path = os.path.join(request_dir, attachment_name)
        LOGGER.info("extracting attachment %s from %s", attachment_name, media_path)
        variants = build_attachment_variants(
            self._config.ffmpeg_path,
            media_path,
            attachment_name,
            request_dir,
            output_path,
        )
        variant = self._run_variants(
            variants, output_path, f"attachment {attachment_name}"
        )
        data = read_output(output_path)
        content: str | bytes
        if is_subtitle:
            content = decode_text_output(data, output_path)
        else:
            content = data
        return AttachmentExtraction(
            content=content,
            is_text=is_subtitle,
            output_path=output_path,
            command=variant.command,
        )

    def _run_variants(
        self, variants: Sequence[CommandVariant], output_path: str, label: str
    ) -> CommandVariant:
        attempts: list[FailedAttempt] = []
        for variant in variants:
            if os.path.isfile(output_path) and not has_output(output_path):
                os.remove(output_path)
            result = self._runner(
                variant.command,
                timeout_seconds=self._config.extract_timeout_seconds,
                max_output_bytes=self._config.max_output_bytes,
                cwd=variant.cwd,
            )
            if has_output(output_path):
                if result.return_code != 0:
                    LOGGER.warning(
                        "%s command for %s exited with %d but wrote %s",
                        variant.label,
                        label,
                        result.return_code,
                        output_path,
                    )
                return variant
            LOGGER.warning(
                "%s command for %s produced no output (exit %d)",
                variant.label,
                label,
                result.return_code,
            )
            attempts.append(
                FailedAttempt(
                    command=variant.command,
                    return_code=result.return_code,
                    diagnostics=result.stderr,
                )
            )
        raise ExtractionError(f"extraction of {label} failed", attempts)
