"""Classification and ordering of rendered manifests.

Rendered files are split into documents, documents annotated as hooks are
separated from ordinary resources, and both lists are ordered so that they
can be applied deterministically:

```python
from release_engine.sorter import sort_manifests, INSTALL_ORDER

hooks, manifests = sort_manifests(files, caps.api_versions, INSTALL_ORDER)
```
"""

from collections.abc import Mapping
import logging
import posixpath

from .capabilities import VersionSet
from .manifest import (
    Manifest,
    parse_head,
    split_manifests,
    HOOK_ANNOTATION,
    HOOK_DELETE_ANNOTATION,
    HOOK_WEIGHT_ANNOTATION,
)
from .release import Hook, HookDeletePolicy, HookEvent

__all__ = [
    "INSTALL_ORDER",
    "UNINSTALL_ORDER",
    "sort_manifests",
    "sort_manifests_by_kind",
    "sort_hooks",
]

_LOGGER = logging.getLogger(__name__)


# Kinds are created in this order: namespaces and policy objects first,
# then configuration, storage and access control, then workloads, and the
# objects that expose workloads last.
INSTALL_ORDER: tuple[str, ...] = (
    "Namespace",
    "NetworkPolicy",
    "ResourceQuota",
    "LimitRange",
    "PodSecurityPolicy",
    "PodDisruptionBudget",
    "ServiceAccount",
    "Secret",
    "SecretList",
    "ConfigMap",
    "StorageClass",
    "PersistentVolume",
    "PersistentVolumeClaim",
    "CustomResourceDefinition",
    "ClusterRole",
    "ClusterRoleList",
    "ClusterRoleBinding",
    "ClusterRoleBindingList",
    "Role",
    "RoleList",
    "RoleBinding",
    "RoleBindingList",
    "DaemonSet",
    "Pod",
    "ReplicationController",
    "ReplicaSet",
    "Deployment",
    "HorizontalPodAutoscaler",
    "StatefulSet",
    "Job",
    "CronJob",
    "Service",
    "Ingress",
    "APIService",
)

# Teardown removes objects in the reverse order of creation.
UNINSTALL_ORDER: tuple[str, ...] = tuple(reversed(INSTALL_ORDER))


def _kind_key(kind: str, ordering: tuple[str, ...]) -> tuple[int, str]:
    """Rank a kind by the ordering, unknown kinds last in alphabetical order."""
    try:
        return (ordering.index(kind), "")
    except ValueError:
        return (len(ordering), kind)


def sort_manifests_by_kind(
    manifests: list[Manifest], ordering: tuple[str, ...] = INSTALL_ORDER
) -> list[Manifest]:
    """Order manifests by kind, then template path, then resource name.

    Manifests that compare equal keep the order they were encountered in.
    """
    return sorted(
        manifests,
        key=lambda m: (_kind_key(m.head.kind, ordering), m.name, m.head.name),
    )


def sort_hooks(hooks: list[Hook]) -> list[Hook]:
    """Order hooks by ascending weight then resource name, stable otherwise."""
    return sorted(hooks, key=lambda h: (h.weight, h.name))


def _hook_weight(value: str | None) -> int:
    if value is None:
        return 0
    try:
        return int(value.strip())
    except ValueError:
        return 0


def _to_hook(manifest: Manifest, hook_types: str) -> Hook | None:
    """Build a Hook from an annotated manifest, None if an event is unknown."""
    events: list[HookEvent] = []
    for hook_type in hook_types.split(","):
        if (event := HookEvent.parse(hook_type)) is None:
            _LOGGER.info("Skipping unknown hook: %r", hook_types)
            return None
        events.append(event)
    annotations = manifest.head.annotations
    delete_policies: list[HookDeletePolicy] = []
    for value in annotations.get(HOOK_DELETE_ANNOTATION, "").split(","):
        if not (value := value.strip()):
            continue
        try:
            delete_policies.append(HookDeletePolicy(value))
        except ValueError:
            _LOGGER.info("Ignoring unknown hook delete policy %r on %s", value, manifest.head)
    return Hook(
        name=manifest.head.name,
        kind=manifest.head.kind,
        path=manifest.name,
        manifest=manifest.content,
        events=events,
        weight=_hook_weight(annotations.get(HOOK_WEIGHT_ANNOTATION)),
        delete_policies=delete_policies,
    )


def sort_manifests(
    files: Mapping[str, str],
    api_versions: VersionSet,
    ordering: tuple[str, ...] = INSTALL_ORDER,
) -> tuple[list[Hook], list[Manifest]]:
    """Split rendered files into sorted hooks and sorted ordinary manifests.

    Files are visited in path order and documents in the order they appear,
    so the result does not depend on the iteration order of `files`.
    Partials (templates whose name starts with `_`) and empty documents are
    dropped. Raises ManifestParseError if any document is not a valid resource.
    """
    hooks: list[Hook] = []
    generic: list[Manifest] = []
    for path in sorted(files):
        content = files[path]
        if posixpath.basename(path).startswith("_"):
            continue
        if not content.strip():
            continue
        for doc in split_manifests(content):
            if (head := parse_head(path, doc)) is None:
                _LOGGER.debug("Skipping document without a resource in %s", path)
                continue
            if head.version and not api_versions.has(head.version):
                _LOGGER.debug(
                    "Resource %s in %s uses %s which is not served by the cluster",
                    head,
                    path,
                    head.version,
                )
            manifest = Manifest(name=path, content=doc, head=head)
            if (hook_types := head.annotations.get(HOOK_ANNOTATION)) is None:
                generic.append(manifest)
                continue
            if (hook := _to_hook(manifest, hook_types)) is not None:
                hooks.append(hook)
    return sort_hooks(hooks), sort_manifests_by_kind(generic, ordering)
