"""Search-root configuration and its JSON persistence."""

from __future__ import annotations

from dataclasses import dataclass, replace
import json
import logging
import os
from typing import Any, Mapping, Sequence, Tuple

from domain.media_items import (
    INVALID_CONFIG_CODE,
    MISSING_DIRECTORY_CODE,
    MediaValidationError,
)
from service.tool_runner import DEFAULT_MAX_OUTPUT_BYTES

LOGGER = logging.getLogger("mkv_subtitles.config")

DEFAULT_CONFIG_FILENAME = "config.json"
DEFAULT_OUTPUT_DIR = "output"
DEFAULT_FFMPEG = "ffmpeg"
DEFAULT_FFPROBE = "ffprobe"
DEFAULT_PROBE_TIMEOUT_SECONDS = 60.0
DEFAULT_EXTRACT_TIMEOUT_SECONDS = 600.0


@dataclass(frozen=True)
class MediaConfig:
    """Injected settings for the media pipeline."""

    search_roots: Tuple[str, ...] = ()
    output_dir: str = DEFAULT_OUTPUT_DIR
    ffmpeg_path: str = DEFAULT_FFMPEG
    ffprobe_path: str = DEFAULT_FFPROBE
    probe_timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS
    extract_timeout_seconds: float = DEFAULT_EXTRACT_TIMEOUT_SECONDS
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES

    def __post_init__(self) -> None:
        if not self.output_dir.strip():
            raise MediaValidationError(
                INVALID_CONFIG_CODE, "output_dir must be non-empty"
            )
        if not self.ffmpeg_path.strip() or not self.ffprobe_path.strip():
            raise MediaValidationError(
                INVALID_CONFIG_CODE, "tool paths must be non-empty"
            )
        if self.probe_timeout_seconds <= 0 or self.extract_timeout_seconds <= 0:
            raise MediaValidationError(
                INVALID_CONFIG_CODE, "timeouts must be positive"
            )
        if self.max_output_bytes <= 0:
            raise MediaValidationError(
                INVALID_CONFIG_CODE, "max_output_bytes must be positive"
            )
        for root in self.search_roots:
            if not isinstance(root, str) or not root.strip():
                raise MediaValidationError(
                    INVALID_CONFIG_CODE, f"invalid search root: {root!r}"
                )

    def to_payload(self) -> dict[str, Any]:
        return {
            "mediaDirectories": list(self.search_roots),
            "outputDirectory": self.output_dir,
            "ffmpegPath": self.ffmpeg_path,
            "ffprobePath": self.ffprobe_path,
            "probeTimeoutSeconds": self.probe_timeout_seconds,
            "extractTimeoutSeconds": self.extract_timeout_seconds,
            "maxOutputBytes": self.max_output_bytes,
        }


def _expect_type(payload: Mapping[str, Any], key: str, expected: type | tuple) -> Any:
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, expected):
        raise MediaValidationError(
            INVALID_CONFIG_CODE, f"config field {key} has invalid type"
        )
    return value


def media_config_from_payload(payload: Mapping[str, Any]) -> MediaConfig:
    """Build a config from the JSON payload, keeping defaults for absent keys."""
    if not isinstance(payload, Mapping):
        raise MediaValidationError(INVALID_CONFIG_CODE, "config must be an object")
    overrides: dict[str, Any] = {}
    if "mediaDirectories" in payload:
        roots = _expect_type(payload, "mediaDirectories", list)
        if not all(isinstance(root, str) for root in roots):
            raise MediaValidationError(
                INVALID_CONFIG_CODE, "mediaDirectories must contain strings"
            )
        overrides["search_roots"] = tuple(roots)
    if "outputDirectory" in payload:
        overrides["output_dir"] = _expect_type(payload, "outputDirectory", str)
    if "ffmpegPath" in payload:
        overrides["ffmpeg_path"] = _expect_type(payload, "ffmpegPath", str)
    if "ffprobePath" in payload:
        overrides["ffprobe_path"] = _expect_type(payload, "ffprobePath", str)
    if "probeTimeoutSeconds" in payload:
        overrides["probe_timeout_seconds"] = float(
            _expect_type(payload, "probeTimeoutSeconds", (int, float))
        )
    if "extractTimeoutSeconds" in payload:
        overrides["extract_timeout_seconds"] = float(
            _expect_type(payload, "extractTimeoutSeconds", (int, float))
        )
    if "maxOutputBytes" in payload:
        overrides["max_output_bytes"] = _expect_type(payload, "maxOutputBytes", int)
    return MediaConfig(**overrides)


def load_media_config(config_path: str) -> MediaConfig:
    """Load settings from disk; unreadable files fall back to defaults."""
    if not os.path.isfile(config_path):
        return MediaConfig()
    try:
        with open(config_path, "r", encoding="utf-8") as file_handle:
            payload = json.load(file_handle)
    except (OSError, json.JSONDecodeError) as exc:
        LOGGER.error(
            "%s: failed to read %s (%s)",
            INVALID_CONFIG_CODE,
            config_path,
            str(exc).strip(),
        )
        return MediaConfig()
    config = media_config_from_payload(payload)
    LOGGER.info("loaded config: %s", config_path)
    return config


def save_media_config(config: MediaConfig, config_path: str) -> None:
    """Write settings as indented JSON."""
    parent_dir = os.path.dirname(os.path.abspath(config_path))
    os.makedirs(parent_dir, exist_ok=True)
    with open(config_path, "w", encoding="utf-8") as file_handle:
        json.dump(config.to_payload(), file_handle, indent=2, ensure_ascii=False)
        file_handle.write("\n")


def add_search_root(config: MediaConfig, directory: str) -> MediaConfig:
    """Return a config that also searches directory; duplicates are ignored."""
    if not directory or not directory.strip():
        raise MediaValidationError(
            MISSING_DIRECTORY_CODE, "directory must be non-empty"
        )
    if not os.path.isdir(directory):
        raise MediaValidationError(
            MISSING_DIRECTORY_CODE, f"directory does not exist: {directory}"
        )
    if directory in config.search_roots:
        return config
    return replace(config, search_roots=config.search_roots + (directory,))


def with_search_roots(config: MediaConfig, search_roots: Sequence[str]) -> MediaConfig:
    """Replace the configured roots, as the CLI does for --search-root."""
    return replace(config, search_roots=tuple(search_roots))
