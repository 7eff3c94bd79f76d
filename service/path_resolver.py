"""Map a bare media filename onto the configured search roots."""

from __future__ import annotations

import logging
import os
from typing import Sequence

from domain.media_items import PathNotFound, validate_leaf_name

LOGGER = logging.getLogger("mkv_subtitles.path_resolver")

SEARCH_DEPTH = 2


def resolve_media_path(
    filename: str, search_roots: Sequence[str]
) -> str | PathNotFound:
    """Return the first path whose leaf name equals filename.

    Direct children of each root are checked first, in configured order; only
    then are the roots scanned recursively, SEARCH_DEPTH levels deep (the root
    itself and its immediate subdirectories).
    """
    validate_leaf_name(filename)

    for root in search_roots:
        candidate = os.path.join(root, filename)
        if os.path.isfile(candidate):
            LOGGER.info("found %s", candidate)
            return candidate

    for root in search_roots:
        if not os.path.isdir(root):
            continue
        found = search_directory(root, filename, SEARCH_DEPTH)
        if found is not None:
            LOGGER.info("found %s in a subdirectory", found)
            return found

    return PathNotFound(filename=filename, search_roots=tuple(search_roots))


def search_directory(directory: str, filename: str, depth: int) -> str | None:
    """Depth-limited scan; unreadable directories are skipped."""
    if depth <= 0:
        return None
    try:
        with os.scandir(directory) as iterator:
            entries = sorted(iterator, key=lambda entry: entry.name)
    except OSError as exc:
        LOGGER.debug("skipped %s (%s)", directory, str(exc).strip())
        return None

    for entry in entries:
        try:
            is_dir = entry.is_dir()
        except OSError:
            continue
        if is_dir:
            found = search_directory(entry.path, filename, depth - 1)
            if found is not None:
                return found
        elif entry.name == filename:
            return entry.path
    return None
