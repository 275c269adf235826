"""Stamping of a tracking label onto rendered resources.

The label is written into the object metadata of the supported kinds. For
workloads that manage pods through a selector and a pod template, the label is
also written into the selector and the template so that the pods carry it:

- `metadata.labels`
- `spec.selector.matchLabels`
- `spec.template.metadata.labels`

The documents are handled as generic YAML trees, so partially populated or
unconventional resources are tolerated, and stamping an already stamped
document yields the same text.

A stamped document is serialized again with `yaml.dump`, so its comments are
dropped and its scalars may be quoted differently than in the template.
Documents of unsupported kinds are passed through untouched.
"""

from collections.abc import Iterable
from dataclasses import dataclass, replace
import logging
from typing import Any

import yaml

from .manifest import Manifest

__all__ = [
    "LabelStamp",
    "TRACKING_LABEL",
    "stamp_content",
    "stamp_manifests",
]

_LOGGER = logging.getLogger(__name__)

TRACKING_LABEL = "release-engine.io/release"

_METADATA_LABELS = ("metadata", "labels")
_SELECTOR_LABELS = ("spec", "selector", "matchLabels")
_TEMPLATE_LABELS = ("spec", "template", "metadata", "labels")

_WORKLOAD_PATHS = (_METADATA_LABELS, _SELECTOR_LABELS, _TEMPLATE_LABELS)
_SIMPLE_PATHS = (_METADATA_LABELS,)

_STAMP_PATHS: dict[tuple[str, str], tuple[tuple[str, ...], ...]] = {
    **{
        ("apps/v1", kind): _WORKLOAD_PATHS
        for kind in ("Deployment", "ReplicaSet", "StatefulSet", "DaemonSet")
    },
    **{
        ("v1", kind): _SIMPLE_PATHS
        for kind in (
            "Pod",
            "Service",
            "PersistentVolumeClaim",
            "PersistentVolume",
            "ConfigMap",
            "Secret",
            "ServiceAccount",
        )
    },
    **{("batch/v1", kind): _SIMPLE_PATHS for kind in ("Job", "CronJob")},
    **{
        ("networking.k8s.io/v1", kind): _SIMPLE_PATHS
        for kind in ("Ingress", "NetworkPolicy")
    },
}


@dataclass(frozen=True)
class LabelStamp:
    """A label to stamp onto the rendered resources."""

    value: str
    """The label value, typically the release name."""

    key: str = TRACKING_LABEL
    """The label key."""


def _upsert(doc: dict[str, Any], path: tuple[str, ...], key: str, value: str) -> None:
    """Set `key` in the mapping at `path`, creating missing mappings."""
    node = doc
    for part in path:
        child = node.get(part)
        if child is None:
            child = {}
            node[part] = child
        elif not isinstance(child, dict):
            _LOGGER.warning(
                "Unable to stamp label at %s: %s is a %s",
                ".".join(path),
                part,
                type(child).__name__,
            )
            return
        node = child
    node[key] = value


def _stamp_paths(doc: Any) -> tuple[tuple[str, ...], ...]:
    if not isinstance(doc, dict):
        return ()
    return _STAMP_PATHS.get((str(doc.get("apiVersion")), str(doc.get("kind"))), ())


def stamp_content(content: str, stamp: LabelStamp) -> str:
    """Return the document text with the label stamped, if the kind is supported.

    Content of unsupported kinds is returned unchanged.
    """
    docs = list(yaml.safe_load_all(content))
    stamped = False
    for doc in docs:
        for path in _stamp_paths(doc):
            _upsert(doc, path, stamp.key, stamp.value)
            stamped = True
    if not stamped:
        return content
    if len(docs) == 1:
        return yaml.dump(docs[0], sort_keys=False)
    return yaml.dump_all(docs, sort_keys=False, explicit_start=True)


def stamp_manifests(manifests: Iterable[Manifest], stamp: LabelStamp) -> list[Manifest]:
    """Return the manifests with the label stamped onto supported kinds."""
    return [replace(m, content=stamp_content(m.content, stamp)) for m in manifests]
