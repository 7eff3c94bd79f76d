"""Read family and style names from extracted font attachments."""

from __future__ import annotations

from io import BytesIO
import logging

from PIL import ImageFont

from domain.media_items import FontSummary

LOGGER = logging.getLogger("mkv_subtitles.font_inspection")

FONT_LOAD_CODE = "mkv_subtitles.font.unloadable"
SAMPLE_FONT_SIZE = 16


def describe_font(font_bytes: bytes, label: str = "font") -> FontSummary | None:
    """Return the font's names, or None when FreeType cannot load it."""
    if not font_bytes:
        LOGGER.warning("%s: %s is empty", FONT_LOAD_CODE, label)
        return None
    try:
        font = ImageFont.truetype(
            BytesIO(font_bytes),
            size=SAMPLE_FONT_SIZE,
            layout_engine=ImageFont.Layout.BASIC,
        )
    except Exception as exc:
        LOGGER.warning(
            "%s: skipped font %s (%s)", FONT_LOAD_CODE, label, str(exc).strip()
        )
        return None
    family, style = font.getname()
    return FontSummary(family=family or "", style=style or "")
