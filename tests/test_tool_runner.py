"""Tests for bounded tool execution."""

from __future__ import annotations

import os
from pathlib import Path
import sys

import pytest

from domain.media_items import (
    TOOL_NOT_FOUND_CODE,
    TOOL_OUTPUT_LIMIT_CODE,
    ExtractionTimeout,
    MediaPipelineError,
    ToolOutputLimitError,
)
from service.tool_runner import run_tool_command


def test_captures_exit_code_and_streams() -> None:
    """Return both streams and the exit status without raising."""
    result = run_tool_command(
        [
            sys.executable,
            "-c",
            "import sys; print('out'); sys.stderr.write('diag'); sys.exit(3)",
        ],
        timeout_seconds=30,
    )

    assert result.return_code == 3
    assert result.stdout.strip() == "out"
    assert result.stderr == "diag"


def test_runs_in_requested_directory(tmp_path: Path) -> None:
    """Start the tool in the given working directory."""
    result = run_tool_command(
        [sys.executable, "-c", "import os; print(os.getcwd())"],
        timeout_seconds=30,
        cwd=str(tmp_path),
    )

    assert os.path.realpath(result.stdout.strip()) == os.path.realpath(tmp_path)


def test_timeout_raises_extraction_timeout() -> None:
    """Kill the tool and raise when it runs past its timeout."""
    with pytest.raises(ExtractionTimeout) as excinfo:
        run_tool_command(
            [sys.executable, "-c", "import time; time.sleep(30)"],
            timeout_seconds=0.5,
        )

    assert excinfo.value.timeout_seconds == 0.5


def test_output_over_bound_is_rejected() -> None:
    """Refuse output larger than the configured bound."""
    with pytest.raises(ToolOutputLimitError) as excinfo:
        run_tool_command(
            [sys.executable, "-c", "print('x' * 5000)"],
            timeout_seconds=30,
            max_output_bytes=100,
        )

    assert excinfo.value.code == TOOL_OUTPUT_LIMIT_CODE
    assert excinfo.value.limit_bytes == 100


def test_endless_output_is_stopped_at_the_bound() -> None:
    """Kill a tool that keeps writing once it passes the bound."""
    with pytest.raises(ToolOutputLimitError) as excinfo:
        run_tool_command(
            [
                sys.executable,
                "-c",
                "import sys\nwhile True:\n    sys.stdout.buffer.write(b'x' * 65536)",
            ],
            timeout_seconds=60,
            max_output_bytes=1024,
        )

    assert excinfo.value.limit_bytes == 1024


def test_output_at_the_bound_is_kept() -> None:
    """Return output that fits within the bound, split across both streams."""
    result = run_tool_command(
        [
            sys.executable,
            "-c",
            "import sys; sys.stdout.write('o' * 60); sys.stderr.write('e' * 40)",
        ],
        timeout_seconds=30,
        max_output_bytes=100,
    )

    assert result.stdout == "o" * 60
    assert result.stderr == "e" * 40


def test_missing_tool_has_stable_code(tmp_path: Path) -> None:
    """Report a missing executable with its own error code."""
    with pytest.raises(MediaPipelineError) as excinfo:
        run_tool_command([str(tmp_path / "no-such-ffmpeg")], timeout_seconds=5)

    assert excinfo.value.code == TOOL_NOT_FOUND_CODE
