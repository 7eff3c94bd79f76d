#!/usr/bin/env -S uv run
# /// script
# requires-python = ">=3.11"
# dependencies = [
#   "pillow>=10"
# ]
# ///
"""Find MKV subtitle tracks and attachments, extract them, and preview cues."""

from __future__ import annotations

import argparse
from dataclasses import dataclass, replace
import json
import logging
import os
import sys
from typing import Callable, Sequence

from domain.media_items import (
    INPUT_FILE_CODE,
    PATH_NOT_FOUND_CODE,
    ExtractionError,
    MediaPipelineError,
    MediaValidationError,
    PathNotFound,
)
from domain.subtitle_document import DEFAULT_PREVIEW_LIMIT, preview_entries
from service.media_config import (
    DEFAULT_CONFIG_FILENAME,
    MediaConfig,
    add_search_root,
    load_media_config,
    save_media_config,
    with_search_roots,
)
from service.pipeline import MediaPipeline

LOGGER = logging.getLogger("mkv_subtitles")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_NOT_FOUND = 2
DIAGNOSTIC_TAIL_LINES = 20


@dataclass(frozen=True)
class CliRequest:
    """Parsed CLI request with its resolved configuration."""

    command: str
    config_path: str
    config: MediaConfig
    arguments: argparse.Namespace


def configure_logging(verbose: bool = False) -> None:
    """Configure logging for CLI output."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO, format="%(message)s"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mkv_subtitles.py", add_help=True)
    parser.add_argument("--config", default=DEFAULT_CONFIG_FILENAME)
    parser.add_argument(
        "--search-root",
        action="append",
        default=None,
        help="media directory to search (repeatable, replaces configured roots)",
    )
    parser.add_argument("--output-dir", default=None)
    parser.add_argument("--ffmpeg", default=None)
    parser.add_argument("--ffprobe", default=None)
    parser.add_argument("--timeout", type=float, default=None)
    parser.add_argument("--verbose", action="store_true")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("roots")

    add_root = commands.add_parser("add-root")
    add_root.add_argument("directory")

    resolve = commands.add_parser("resolve")
    resolve.add_argument("filename")

    analyze = commands.add_parser("analyze")
    analyze.add_argument("filename")

    extract_track = commands.add_parser("extract-track")
    extract_track.add_argument("filename")
    extract_track.add_argument("index", type=int)
    extract_track.add_argument("--format", default="srt", choices=("srt", "ass"))
    extract_track.add_argument("--print", dest="print_text", action="store_true")

    extract_attachment = commands.add_parser("extract-attachment")
    extract_attachment.add_argument("filename")
    extract_attachment.add_argument("attachment")
    extract_attachment.add_argument(
        "--print", dest="print_text", action="store_true"
    )

    preview = commands.add_parser("preview")
    preview.add_argument("subtitle_file")
    preview.add_argument("--format", default=None)
    preview.add_argument("--limit", type=int, default=DEFAULT_PREVIEW_LIMIT)
    return parser


def parse_args(argv: Sequence[str]) -> CliRequest:
    """Parse CLI arguments and layer flags over the config file."""
    parsed = build_parser().parse_args(argv)
    configure_logging(parsed.verbose)

    config = load_media_config(parsed.config)
    if parsed.search_root:
        config = with_search_roots(config, parsed.search_root)
    overrides: dict[str, object] = {}
    if parsed.output_dir is not None:
        overrides["output_dir"] = parsed.output_dir
    if parsed.ffmpeg is not None:
        overrides["ffmpeg_path"] = parsed.ffmpeg
    if parsed.ffprobe is not None:
        overrides["ffprobe_path"] = parsed.ffprobe
    if parsed.timeout is not None:
        overrides["probe_timeout_seconds"] = parsed.timeout
        overrides["extract_timeout_seconds"] = parsed.timeout
    if overrides:
        config = replace(config, **overrides)
    return CliRequest(
        command=parsed.command,
        config_path=parsed.config,
        config=config,
        arguments=parsed,
    )


def write_json(payload: object) -> None:
    sys.stdout.write(json.dumps(payload, ensure_ascii=False, indent=2))
    sys.stdout.write("\n")


def report_not_found(missing: PathNotFound) -> int:
    LOGGER.error("%s: %s", PATH_NOT_FOUND_CODE, missing.describe())
    write_json(
        {
            "error": PATH_NOT_FOUND_CODE,
            "filename": missing.filename,
            "mediaDirectories": list(missing.search_roots),
        }
    )
    return EXIT_NOT_FOUND


def run_roots(request: CliRequest, pipeline: MediaPipeline) -> int:
    write_json({"mediaDirectories": list(request.config.search_roots)})
    return EXIT_OK


def run_add_root(request: CliRequest, pipeline: MediaPipeline) -> int:
    # Command-line overrides apply to this run only and are never saved.
    stored = load_media_config(request.config_path)
    updated = add_search_root(stored, request.arguments.directory)
    if updated is not stored:
        save_media_config(updated, request.config_path)
        LOGGER.info("saved media directories to %s", request.config_path)
    write_json({"mediaDirectories": list(updated.search_roots)})
    return EXIT_OK


def run_resolve(request: CliRequest, pipeline: MediaPipeline) -> int:
    resolved = pipeline.resolve_path(request.arguments.filename)
    if isinstance(resolved, PathNotFound):
        return report_not_found(resolved)
    sys.stdout.write(resolved + "\n")
    return EXIT_OK


def run_analyze(request: CliRequest, pipeline: MediaPipeline) -> int:
    analysis = pipeline.analyze_file(request.arguments.filename)
    if isinstance(analysis, PathNotFound):
        return report_not_found(analysis)
    payload = analysis.to_payload()
    if analysis.is_empty:
        payload["message"] = "no subtitle content found"
    write_json(payload)
    return EXIT_OK


def run_extract_track(request: CliRequest, pipeline: MediaPipeline) -> int:
    resolved = pipeline.resolve_path(request.arguments.filename)
    if isinstance(resolved, PathNotFound):
        return report_not_found(resolved)
    extraction = pipeline.extract_track(
        resolved, request.arguments.index, request.arguments.format
    )
    if request.arguments.print_text:
        sys.stdout.write(extraction.text)
        return EXIT_OK
    document = pipeline.parse_subtitle_document(
        extraction.text, request.arguments.format
    )
    write_json(
        {
            "outputPath": extraction.output_path,
            "format": document.format,
            "cues": len(document.entries),
        }
    )
    return EXIT_OK


def run_extract_attachment(request: CliRequest, pipeline: MediaPipeline) -> int:
    resolved = pipeline.resolve_path(request.arguments.filename)
    if isinstance(resolved, PathNotFound):
        return report_not_found(resolved)
    extraction = pipeline.extract_attachment(resolved, request.arguments.attachment)
    if request.arguments.print_text and isinstance(extraction.content, str):
        sys.stdout.write(extraction.content)
        return EXIT_OK
    payload: dict[str, object] = {
        "outputPath": extraction.output_path,
        "isText": extraction.is_text,
    }
    if extraction.font is not None:
        payload["fontFamily"] = extraction.font.family
        payload["fontStyle"] = extraction.font.style
    write_json(payload)
    return EXIT_OK


def run_preview(request: CliRequest, pipeline: MediaPipeline) -> int:
    subtitle_path = request.arguments.subtitle_file
    try:
        with open(subtitle_path, "rb") as file_handle:
            raw_bytes = file_handle.read()
    except OSError as exc:
        raise MediaValidationError(
            INPUT_FILE_CODE, f"subtitle file not readable: {subtitle_path}"
        ) from exc
    hint = request.arguments.format
    if hint is None:
        hint = os.path.splitext(subtitle_path)[1].lstrip(".")
    text_value = raw_bytes.decode("utf-8-sig", errors="replace")
    document = pipeline.parse_subtitle_document(text_value, hint)
    shown, omitted = preview_entries(document, request.arguments.limit)
    payload = document.to_payload()
    payload["entries"] = [cue.to_payload() for cue in shown]
    payload["total"] = len(document.entries)
    if omitted:
        payload["note"] = (
            f"showing first {len(shown)} of {len(document.entries)} entries"
        )
    write_json(payload)
    return EXIT_OK


COMMAND_HANDLERS: dict[str, Callable[[CliRequest, MediaPipeline], int]] = {
    "roots": run_roots,
    "add-root": run_add_root,
    "resolve": run_resolve,
    "analyze": run_analyze,
    "extract-track": run_extract_track,
    "extract-attachment": run_extract_attachment,
    "preview": run_preview,
}


def log_extraction_failure(exc: ExtractionError) -> None:
    for attempt in exc.attempts:
        LOGGER.error(
            "command (exit %d): %s", attempt.return_code, " ".join(attempt.command)
        )
        tail = attempt.diagnostics.strip().splitlines()[-DIAGNOSTIC_TAIL_LINES:]
        for line in tail:
            LOGGER.error("  %s", line)


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entrypoint."""
    try:
        request = parse_args(sys.argv[1:] if argv is None else argv)
        pipeline = MediaPipeline(request.config)
        return COMMAND_HANDLERS[request.command](request, pipeline)
    except MediaValidationError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return EXIT_ERROR
    except ExtractionError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        log_extraction_failure(exc)
        return EXIT_ERROR
    except MediaPipelineError as exc:
        LOGGER.error("%s: %s", exc.code, str(exc).strip())
        return EXIT_ERROR
    except Exception as exc:
        LOGGER.error("mkv_subtitles.unhandled_error: %s", str(exc).strip())
        return EXIT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
