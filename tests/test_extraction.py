"""Tests for track and attachment extraction with fallback commands."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, Sequence

import pytest

from domain.media_items import (
    EXTRACTION_FAILED_CODE,
    INVALID_FILENAME_CODE,
    INVALID_TRACK_CODE,
    ExtractionError,
    ExtractionTimeout,
    MediaValidationError,
)
from service.extraction import ExtractionDispatcher, track_output_extension
from service.media_config import MediaConfig
from service.tool_runner import CommandResult

SRT_BODY = "1\n00:00:01,000 --> 00:00:02,000\nHi\n"

Behaviour = Callable[..., tuple]


class FakeFfmpeg:
    """Plays back one scripted behaviour per invocation."""

    def __init__(self, *behaviours: Behaviour) -> None:
        self.behaviours = list(behaviours)
        self.calls: list[tuple[tuple[str, ...], str | None]] = []

    def __call__(
        self,
        command: Sequence[str],
        *,
        timeout_seconds: float,
        max_output_bytes: int,
        cwd: str | None = None,
    ) -> CommandResult:
        argv = tuple(command)
        self.calls.append((argv, cwd))
        behaviour = self.behaviours[len(self.calls) - 1]
        return_code, stderr = behaviour(argv, cwd)
        return CommandResult(command=argv, return_code=return_code, stdout="", stderr=stderr)


def write_last_argument(data: bytes, return_code: int = 0) -> Behaviour:
    def behaviour(argv: tuple, cwd: str | None) -> tuple:
        Path(argv[-1]).write_bytes(data)
        return return_code, "written"

    return behaviour


def fail_with(message: str, return_code: int = 1) -> Behaviour:
    def behaviour(argv: tuple, cwd: str | None) -> tuple:
        return return_code, message

    return behaviour


def _dispatcher(tmp_path: Path, runner: FakeFfmpeg) -> ExtractionDispatcher:
    config = MediaConfig(output_dir=str(tmp_path / "output"), ffmpeg_path="ffmpeg")
    return ExtractionDispatcher(config, runner)


def test_nonzero_exit_with_output_is_success(tmp_path: Path) -> None:
    """Accept the file ffmpeg wrote even when it exits non-zero."""
    runner = FakeFfmpeg(write_last_argument(SRT_BODY.encode("utf-8"), return_code=1))

    extraction = _dispatcher(tmp_path, runner).extract_track("/m/movie.mkv", 2, "srt")

    assert extraction.text == SRT_BODY
    assert len(runner.calls) == 1
    command = runner.calls[0][0]
    assert command[command.index("-map") + 1] == "0:2"
    assert command[-3:-1] == ("-f", "srt")
    assert extraction.output_path.endswith(".srt")
    assert os.path.dirname(extraction.output_path) == str(tmp_path / "output")


def test_ass_request_copies_the_codec(tmp_path: Path) -> None:
    """Copy ASS tracks and name the output .ass."""
    runner = FakeFfmpeg(write_last_argument(b"[Script Info]\n"))

    extraction = _dispatcher(tmp_path, runner).extract_track("/m/movie.mkv", 0, "ass")

    command = runner.calls[0][0]
    assert ("-c", "copy") == command[-3:-1]
    assert extraction.output_path.endswith(".ass")


def test_alternate_runs_when_primary_writes_nothing(tmp_path: Path) -> None:
    """Try the alternate command when the primary leaves no output."""
    runner = FakeFfmpeg(fail_with("primary failed"), write_last_argument(b"text"))

    extraction = _dispatcher(tmp_path, runner).extract_track("/m/movie.mkv", 3, "srt")

    assert len(runner.calls) == 2
    assert "-c:s" in runner.calls[1][0]
    assert extraction.command == runner.calls[1][0]
    assert extraction.text == "text"


def test_empty_output_counts_as_failure(tmp_path: Path) -> None:
    """Treat a zero-byte file as no output."""
    runner = FakeFfmpeg(write_last_argument(b""), write_last_argument(b"ok"))

    extraction = _dispatcher(tmp_path, runner).extract_track("/m/movie.mkv", 1, "srt")

    assert len(runner.calls) == 2
    assert extraction.text == "ok"


def test_both_commands_failing_carries_diagnostics(tmp_path: Path) -> None:
    """Raise with the diagnostics of the primary and alternate commands."""
    runner = FakeFfmpeg(fail_with("primary failed"), fail_with("alternate failed", 2))

    with pytest.raises(ExtractionError) as excinfo:
        _dispatcher(tmp_path, runner).extract_track("/m/movie.mkv", 4, "srt")

    error = excinfo.value
    assert error.code == EXTRACTION_FAILED_CODE
    assert error.diagnostics == "primary failed"
    assert error.alternate_diagnostics == "alternate failed"
    assert [attempt.return_code for attempt in error.attempts] == [1, 2]


def test_timeout_is_not_retried(tmp_path: Path) -> None:
    """Propagate a timeout without running the alternate command."""

    def time_out(argv: tuple, cwd: str | None) -> tuple:
        raise ExtractionTimeout(argv, 1)

    runner = FakeFfmpeg(time_out, write_last_argument(b"late"))

    with pytest.raises(ExtractionTimeout):
        _dispatcher(tmp_path, runner).extract_track("/m/movie.mkv", 1, "srt")

    assert len(runner.calls) == 1


def test_each_extraction_gets_a_unique_output(tmp_path: Path) -> None:
    """Never reuse an output path across requests."""
    runner = FakeFfmpeg(write_last_argument(b"a"), write_last_argument(b"b"))
    dispatcher = _dispatcher(tmp_path, runner)

    first = dispatcher.extract_track("/m/movie.mkv", 1, "srt")
    second = dispatcher.extract_track("/m/movie.mkv", 1, "srt")

    assert first.output_path != second.output_path
    assert (first.text, second.text) == ("a", "b")


def test_text_output_is_decoded_leniently(tmp_path: Path) -> None:
    """Strip a BOM and replace bytes that are not UTF-8."""
    runner = FakeFfmpeg(write_last_argument(b"\xef\xbb\xbfHi \xff there"))

    extraction = _dispatcher(tmp_path, runner).extract_track("/m/movie.mkv", 1, "srt")

    assert extraction.text == "Hi \ufffd there"


@pytest.mark.parametrize("track_index", [-1, True, "2"])
def test_invalid_track_index_is_rejected(tmp_path: Path, track_index: object) -> None:
    """Validate the index before running anything."""
    runner = FakeFfmpeg()

    with pytest.raises(MediaValidationError) as excinfo:
        _dispatcher(tmp_path, runner).extract_track("/m/movie.mkv", track_index, "srt")

    assert excinfo.value.code == INVALID_TRACK_CODE
    assert runner.calls == []


def dump_to_primary_output(data: bytes, return_code: int = 1) -> Behaviour:
    def behaviour(argv: tuple, cwd: str | None) -> tuple:
        Path(argv[3]).write_bytes(data)
        return return_code, "At least one output file must be specified"

    return behaviour


def test_attachment_requests_use_separate_directories(tmp_path: Path) -> None:
    """Keep same-named attachments from different requests apart."""
    runner = FakeFfmpeg(
        dump_to_primary_output(b"[Script Info]\nfirst\n"),
        dump_to_primary_output(b"[Script Info]\nsecond\n"),
    )
    dispatcher = _dispatcher(tmp_path, runner)

    first = dispatcher.extract_attachment("/m/movie.mkv", "extra.ass")
    second = dispatcher.extract_attachment("/m/movie.mkv", "extra.ass")

    assert os.path.dirname(first.output_path) != os.path.dirname(second.output_path)
    assert os.path.basename(first.output_path) == "extra.ass"
    assert first.is_text is True
    assert first.content == "[Script Info]\nfirst\n"
    assert second.content == "[Script Info]\nsecond\n"
    assert runner.calls[0][0][2] == "-dump_attachment:m:filename:extra.ass"


def test_attachment_alternate_dumps_into_request_directory(tmp_path: Path) -> None:
    """Fall back to dumping every attachment into the request directory."""

    def dump_all(argv: tuple, cwd: str | None) -> tuple:
        assert cwd is not None
        Path(cwd, "Arial.ttf").write_bytes(b"\x00\x01font")
        Path(cwd, "other.ttf").write_bytes(b"other")
        return 1, "At least one output file must be specified"

    runner = FakeFfmpeg(fail_with("no match"), dump_all)

    extraction = _dispatcher(tmp_path, runner).extract_attachment(
        "/m/movie.mkv", "Arial.ttf", "application/x-truetype-font"
    )

    assert extraction.is_text is False
    assert extraction.content == b"\x00\x01font"
    assert "-dump_attachment:t" in runner.calls[1][0]
    assert runner.calls[1][1] == os.path.dirname(extraction.output_path)


def test_attachment_name_must_be_a_leaf(tmp_path: Path) -> None:
    """Refuse attachment names that would escape the request directory."""
    with pytest.raises(MediaValidationError) as excinfo:
        _dispatcher(tmp_path, FakeFfmpeg()).extract_attachment(
            "/m/movie.mkv", "../evil.ass"
        )

    assert excinfo.value.code == INVALID_FILENAME_CODE


@pytest.mark.parametrize(
    ("requested_format", "expected"),
    [
        ("ass", "ass"),
        ("ssa", "ass"),
        ("ass (default)", "ass"),
        ("ASS (ssa) (default)", "ass"),
        ("subrip", "srt"),
        ("subrip (default)", "srt"),
        (None, "srt"),
    ],
)
def test_output_extension_follows_codec_name(
    requested_format: str | None, expected: str
) -> None:
    """Decide on the codec name and ignore trailing dispositions."""
    assert track_output_extension(requested_format) == expected


def test_default_ass_track_is_copied(tmp_path: Path) -> None:
    """Copy a track probed as "ass (default)" instead of converting it."""
    runner = FakeFfmpeg(write_last_argument(b"[Script Info]\n"))

    extraction = _dispatcher(tmp_path, runner).extract_track(
        "/m/movie.mkv", 2, "ass (default)"
    )

    assert runner.calls[0][0][-3:-1] == ("-c", "copy")
    assert extraction.output_path.endswith(".ass")
