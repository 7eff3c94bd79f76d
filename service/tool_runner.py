"""Bounded, timed execution of ffmpeg and ffprobe."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import subprocess
import threading
from typing import IO, Callable, List, Sequence, Tuple

from domain.media_items import (
    TOOL_NOT_FOUND_CODE,
    ExtractionTimeout,
    MediaPipelineError,
    ToolOutputLimitError,
)

LOGGER = logging.getLogger("mkv_subtitles.tool_runner")

DEFAULT_MAX_OUTPUT_BYTES = 10 * 1024 * 1024
READ_CHUNK_BYTES = 64 * 1024


@dataclass(frozen=True)
class CommandResult:
    """Exit status and captured streams of one tool invocation."""

    command: Tuple[str, ...]
    return_code: int
    stdout: str
    stderr: str


ToolRunner = Callable[..., CommandResult]


@dataclass
class BoundedCapture:
    """Byte budget shared by the stdout and stderr readers of one process."""

    process: subprocess.Popen
    max_output_bytes: int
    captured_bytes: int = 0
    exceeded: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock)

    def drain(self, stream: IO[bytes], chunks: List[bytes]) -> None:
        """Read a pipe until EOF; kill the process once the budget is spent."""
        while True:
            chunk = stream.read1(READ_CHUNK_BYTES)
            if not chunk:
                return
            with self.lock:
                if self.exceeded:
                    return
                self.captured_bytes += len(chunk)
                if self.captured_bytes > self.max_output_bytes:
                    self.exceeded = True
                    self.process.kill()
                    return
            chunks.append(chunk)


def run_tool_command(
    command: Sequence[str],
    *,
    timeout_seconds: float,
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
    cwd: str | None = None,
) -> CommandResult:
    """Run a tool to completion, enforcing the timeout and output bound.

    Both pipes are read while the tool runs, so no more than
    max_output_bytes of its output is ever held in memory.
    """
    argv = tuple(command)
    LOGGER.debug("run: %s", subprocess.list2cmdline(argv))
    try:
        process = subprocess.Popen(
            argv,
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise MediaPipelineError(
            TOOL_NOT_FOUND_CODE, f"{argv[0]} could not be executed"
        ) from exc

    capture = BoundedCapture(process=process, max_output_bytes=max_output_bytes)
    stdout_chunks: List[bytes] = []
    stderr_chunks: List[bytes] = []
    readers = [
        threading.Thread(
            target=capture.drain, args=(process.stdout, stdout_chunks), daemon=True
        ),
        threading.Thread(
            target=capture.drain, args=(process.stderr, stderr_chunks), daemon=True
        ),
    ]
    with process:
        for reader in readers:
            reader.start()
        try:
            process.wait(timeout=timeout_seconds)
        except subprocess.TimeoutExpired as exc:
            process.kill()
            process.wait()
            for reader in readers:
                reader.join()
            raise ExtractionTimeout(argv, timeout_seconds) from exc
        for reader in readers:
            reader.join()

    if capture.exceeded:
        raise ToolOutputLimitError(argv, max_output_bytes)

    return CommandResult(
        command=argv,
        return_code=process.returncode,
        stdout=b"".join(stdout_chunks).decode("utf-8", errors="replace"),
        stderr=b"".join(stderr_chunks).decode("utf-8", errors="replace"),
    )
