"""Upward API over path resolution, analysis, extraction and parsing."""

from __future__ import annotations

from dataclasses import replace
import logging

from domain.media_items import (
    AnalysisResult,
    AttachmentExtraction,
    ItemKind,
    PathNotFound,
    SelectionItem,
    SubtitleDocument,
    TrackExtraction,
    classify_attachment,
)
from domain.subtitle_document import parse_subtitle_document
from service.extraction import ExtractionDispatcher
from service.font_inspection import describe_font
from service.media_config import MediaConfig
from service.path_resolver import resolve_media_path
from service.probe_output import analyze_media
from service.tool_runner import ToolRunner, run_tool_command

LOGGER = logging.getLogger("mkv_subtitles.pipeline")


class MediaPipeline:
    """Stateless per request; holds only the injected configuration."""

    def __init__(self, config: MediaConfig, runner: ToolRunner = run_tool_command) -> None:
        self.config = config
        self._runner = runner
        self._dispatcher = ExtractionDispatcher(config, runner)

    def resolve_path(self, filename: str) -> str | PathNotFound:
        return resolve_media_path(filename, self.config.search_roots)

    def analyze(self, media_path: str) -> AnalysisResult:
        return analyze_media(media_path, self.config, self._runner)

    def analyze_file(self, filename: str) -> AnalysisResult | PathNotFound:
        """Resolve a bare filename, then analyze it."""
        resolved = self.resolve_path(filename)
        if isinstance(resolved, PathNotFound):
            LOGGER.warning(resolved.describe())
            return resolved
        return self.analyze(resolved)

    def extract_track(
        self, media_path: str, track_index: int, requested_format: str | None = "srt"
    ) -> TrackExtraction:
        return self._dispatcher.extract_track(media_path, track_index, requested_format)

    def extract_attachment(
        self, media_path: str, attachment_name: str, mime_type: str = ""
    ) -> AttachmentExtraction:
        extraction = self._dispatcher.extract_attachment(
            media_path, attachment_name, mime_type
        )
        _, is_font = classify_attachment(attachment_name, mime_type)
        if not is_font or not isinstance(extraction.content, bytes):
            return extraction
        font = describe_font(extraction.content, attachment_name)
        if font is None:
            return extraction
        return replace(extraction, font=font)

    def extract_selection(
        self,
        media_path: str,
        item: SelectionItem,
        requested_format: str | None = None,
    ) -> TrackExtraction | AttachmentExtraction:
        """Run the extraction path the selected item's kind calls for.

        Tracks keep their own codec unless a format is requested.
        """
        if item.kind == ItemKind.TRACK:
            if requested_format is None:
                requested_format = item.format
            return self.extract_track(media_path, item.index, requested_format)
        return self.extract_attachment(media_path, item.filename, item.mime_type)

    def parse_subtitle_document(
        self, text_value: str | None, hint_format: str | None = None
    ) -> SubtitleDocument:
        return parse_subtitle_document(text_value, hint_format)
