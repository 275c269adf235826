"""Representation of the rendered resource documents of a chart.

Templates may render any number of YAML documents. Each document becomes a
`Manifest` that remembers the template path it came from and enough of the
resource header to classify and order it.
"""

from dataclasses import dataclass, field
import logging
import re
from typing import Any

import yaml

from .exceptions import ManifestParseError

__all__ = [
    "Manifest",
    "SimpleHead",
    "parse_head",
    "parse_manifests",
    "split_manifests",
    "SOURCE_TEMPLATE",
]

_LOGGER = logging.getLogger(__name__)

# Prefix written ahead of each document in an aggregated manifest
SOURCE_TEMPLATE = "---\n# Source: {name}\n{content}\n"

HOOK_ANNOTATION = "helm.sh/hook"
HOOK_WEIGHT_ANNOTATION = "helm.sh/hook-weight"
HOOK_DELETE_ANNOTATION = "helm.sh/hook-delete-policy"
RESOURCE_POLICY_ANNOTATION = "helm.sh/resource-policy"
KEEP_POLICY = "keep"

_SEPARATOR_RE = re.compile(r"(?:^|\s*\n)---[ \t]*(?:\n|$)")
_SOURCE_RE = re.compile(r"^# Source: (.*)$", re.MULTILINE)


@dataclass(frozen=True)
class SimpleHead:
    """The header fields of a resource used to classify it."""

    version: str = ""
    """The apiVersion of the resource."""

    kind: str = ""
    """The kind of the resource."""

    name: str = ""
    """The metadata.name of the resource."""

    annotations: dict[str, str] = field(default_factory=dict)
    """The metadata.annotations of the resource."""

    def __str__(self) -> str:
        return f"{self.kind}/{self.name}"


@dataclass(frozen=True)
class Manifest:
    """A single rendered resource document."""

    name: str
    """The template path that rendered the document."""

    content: str
    """The raw document text."""

    head: SimpleHead
    """The parsed resource header."""


def split_manifests(text: str) -> list[str]:
    """Split a multi-document YAML text into its non-empty documents, in order."""
    return [doc for doc in _SEPARATOR_RE.split(text) if doc.strip()]


def parse_manifests(text: str) -> list[Manifest]:
    """Parse an aggregated manifest buffer back into its resource documents.

    The template path is recovered from the `# Source:` marker of each
    document when present.
    """
    manifests: list[Manifest] = []
    for doc in split_manifests(text):
        name = ""
        if (match := _SOURCE_RE.match(doc)) is not None:
            name = match.group(1).strip()
        if (head := parse_head(name, doc)) is None:
            continue
        manifests.append(Manifest(name=name, content=doc, head=head))
    return manifests


def _as_str_dict(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): "" if v is None else str(v) for k, v in value.items()}


def parse_head(path: str, content: str) -> SimpleHead | None:
    """Parse the header of a single resource document.

    Returns None for a document holding only comments.
    """
    try:
        doc = yaml.safe_load(content)
    except yaml.YAMLError as err:
        raise ManifestParseError(path, str(err)) from err
    if doc is None:
        return None
    if not isinstance(doc, dict):
        raise ManifestParseError(
            path, f"expected a resource mapping but found {type(doc).__name__}"
        )
    metadata = doc.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}
    return SimpleHead(
        version=str(doc.get("apiVersion") or ""),
        kind=str(doc.get("kind") or ""),
        name=str(metadata.get("name") or ""),
        annotations=_as_str_dict(metadata.get("annotations")),
    )
