"""Extraction of post-render notes from the rendered files of a chart.

`NOTES.txt` is rendered like any other template but is neither a resource nor
a hook, so it is pulled out of the rendered files before they are sorted.
"""

from collections.abc import Mapping
import logging
import posixpath

__all__ = [
    "NOTES_SUFFIX",
    "extract_notes",
]

_LOGGER = logging.getLogger(__name__)

NOTES_SUFFIX = "NOTES.txt"


def extract_notes(
    files: Mapping[str, str], chart_name: str, sub_notes: bool = False
) -> tuple[str, dict[str, str]]:
    """Return the notes text and the rendered files without any notes.

    Only the notes of the top level chart are kept unless `sub_notes` is set,
    in which case the notes of every sub-chart are included too. Notes are
    joined with a single blank line, in the order they were rendered.
    """
    root_notes = posixpath.join(chart_name, "templates", NOTES_SUFFIX)
    contributions: list[str] = []
    remaining: dict[str, str] = {}
    for path, content in files.items():
        if not path.endswith(NOTES_SUFFIX):
            remaining[path] = content
            continue
        if sub_notes or path == root_notes:
            contributions.append(content)
        else:
            _LOGGER.debug("Discarding notes from sub-chart %s", path)
    notes = ""
    for content in contributions:
        if notes:
            notes = notes.rstrip("\n") + "\n\n"
        notes += content
    return notes, remaining
