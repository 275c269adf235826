"""Cluster capabilities advertised to charts.

Capabilities describe the cluster version and the set of resource API versions
it serves. They are negotiated with the cluster by
`release_engine.discovery.CapabilityNegotiator` or, when rendering without a
cluster, taken from `DEFAULT_CAPABILITIES`.
"""

from dataclasses import dataclass, field
import functools
import logging
import re

__all__ = [
    "Capabilities",
    "KubeVersion",
    "VersionSet",
    "SemVer",
    "DEFAULT_CAPABILITIES",
    "DEFAULT_VERSION_SET",
    "is_compatible_range",
]

_LOGGER = logging.getLogger(__name__)


_VERSION_RE = re.compile(
    r"^v?(?P<major>\d+|[xX*])(?:\.(?P<minor>\d+|[xX*]))?(?:\.(?P<patch>\d+|[xX*]))?"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?(?:\+(?P<build>[0-9A-Za-z.-]+))?$"
)
_TERM_RE = re.compile(r"^(?P<op>!=|>=|=>|<=|=<|~>|>|<|=|~|\^)?\s*(?P<ver>\S+)$")
_HYPHEN_RE = re.compile(r"(\S+)\s+-\s+(\S+)")
_WILDCARDS = {"x", "X", "*"}


class VersionSet(tuple[str, ...]):
    """The set of `group/version` and `group/version/Kind` ids served by a cluster."""

    def has(self, api_version: str) -> bool:
        """Return True if the cluster serves the specified API version."""
        return api_version in self


DEFAULT_VERSION_SET = VersionSet(
    [
        "v1",
        "admissionregistration.k8s.io/v1",
        "apiextensions.k8s.io/v1",
        "apiregistration.k8s.io/v1",
        "apps/v1",
        "authentication.k8s.io/v1",
        "authorization.k8s.io/v1",
        "autoscaling/v1",
        "autoscaling/v2",
        "batch/v1",
        "certificates.k8s.io/v1",
        "coordination.k8s.io/v1",
        "discovery.k8s.io/v1",
        "events.k8s.io/v1",
        "networking.k8s.io/v1",
        "node.k8s.io/v1",
        "policy/v1",
        "rbac.authorization.k8s.io/v1",
        "scheduling.k8s.io/v1",
        "storage.k8s.io/v1",
    ]
)


@dataclass(frozen=True)
class KubeVersion:
    """The version of the cluster control plane."""

    version: str
    """Full version string, e.g. `v1.28.3`."""

    major: str
    """Major version component as reported by the server."""

    minor: str
    """Minor version component as reported by the server."""

    def __str__(self) -> str:
        return self.version


@dataclass(frozen=True)
class Capabilities:
    """Describes the capabilities of the cluster."""

    kube_version: KubeVersion
    """The cluster version."""

    api_versions: VersionSet = field(default=DEFAULT_VERSION_SET)
    """The API versions served by the cluster."""


DEFAULT_CAPABILITIES = Capabilities(
    kube_version=KubeVersion(version="v1.20.0", major="1", minor="20"),
    api_versions=DEFAULT_VERSION_SET,
)


def _prerelease_key(pre: tuple[str, ...]) -> tuple:
    if not pre:
        return (1,)
    return (
        0,
        tuple((0, int(part), "") if part.isdigit() else (1, 0, part) for part in pre),
    )


@functools.total_ordering
@dataclass(frozen=True)
class SemVer:
    """A semantic version, build metadata is ignored."""

    major: int
    minor: int = 0
    patch: int = 0
    prerelease: tuple[str, ...] = ()

    @classmethod
    def parse(cls, text: str) -> "SemVer":
        """Parse a version such as `v1.20.3` or `1.21.0-gke.100`."""
        if not (match := _VERSION_RE.match(text.strip())):
            raise ValueError(f"Invalid semantic version: {text}")
        parts = [match.group(name) for name in ("major", "minor", "patch")]
        if any(part in _WILDCARDS for part in parts if part is not None):
            raise ValueError(f"Invalid semantic version: {text}")
        pre = match.group("pre")
        return cls(
            major=int(parts[0]),
            minor=int(parts[1] or 0),
            patch=int(parts[2] or 0),
            prerelease=tuple(pre.split(".")) if pre else (),
        )

    def _key(self) -> tuple:
        return (self.major, self.minor, self.patch, _prerelease_key(self.prerelease))

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, SemVer):
            return NotImplemented
        return self._key() < other._key()

    def __str__(self) -> str:
        base = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            return f"{base}-{'.'.join(self.prerelease)}"
        return base


@dataclass(frozen=True)
class _Term:
    """A single comparison within a constraint, e.g. `>=1.20.0-0` or `~1.2`."""

    op: str
    parts: tuple[int | None, int | None, int | None]
    prerelease: tuple[str, ...]

    @classmethod
    def parse(cls, text: str) -> "_Term":
        if not (term := _TERM_RE.match(text.strip())):
            raise ValueError(f"Invalid constraint: {text}")
        if not (match := _VERSION_RE.match(term.group("ver"))):
            raise ValueError(f"Invalid constraint: {text}")
        parts: list[int | None] = []
        for name in ("major", "minor", "patch"):
            value = match.group(name)
            # Components after a wildcard are wildcards too
            if value is None or value in _WILDCARDS or (parts and parts[-1] is None):
                parts.append(None)
            else:
                parts.append(int(value))
        pre = match.group("pre")
        op = term.group("op") or "="
        op = {"=>": ">=", "=<": "<=", "~>": "~"}.get(op, op)
        return cls(op, (parts[0], parts[1], parts[2]), tuple(pre.split(".")) if pre else ())

    @property
    def exact(self) -> bool:
        return None not in self.parts

    @property
    def lower(self) -> SemVer:
        major, minor, patch = (p or 0 for p in self.parts)
        return SemVer(major, minor, patch, self.prerelease)

    @property
    def wildcard_upper(self) -> SemVer | None:
        """Exclusive upper bound of the wildcard range, None if unbounded."""
        major, minor, _ = self.parts
        if major is None:
            return None
        if minor is None:
            return SemVer(major + 1)
        return SemVer(major, minor + 1)

    def _in_wildcard(self, version: SemVer) -> bool:
        if self.exact:
            return version == self.lower
        upper = self.wildcard_upper
        return version >= self.lower and (upper is None or version < upper)

    def check(self, version: SemVer) -> bool:
        if version.prerelease and not self.prerelease:
            return False
        major, minor, patch = self.parts
        match self.op:
            case "=":
                return self._in_wildcard(version)
            case "!=":
                return not self._in_wildcard(version)
            case ">":
                if self.exact:
                    return version > self.lower
                upper = self.wildcard_upper
                return upper is not None and version >= upper
            case ">=":
                return version >= self.lower
            case "<":
                return version < self.lower
            case "<=":
                if self.exact:
                    return version <= self.lower
                upper = self.wildcard_upper
                return upper is None or version < upper
            case "~":
                if major is None:
                    return True
                upper = SemVer(major + 1) if minor is None else SemVer(major, minor + 1)
                return self.lower <= version < upper
            case "^":
                if major is None:
                    return True
                if major > 0 or minor is None:
                    upper = SemVer(major + 1)
                elif minor > 0 or patch is None:
                    upper = SemVer(0, minor + 1)
                else:
                    upper = SemVer(0, 0, patch + 1)
                return self.lower <= version < upper
        raise ValueError(f"Unsupported constraint operator: {self.op}")


def _parse_constraint(constraint: str) -> list[list[_Term]]:
    """Parse a constraint into a disjunction of conjunctions of terms."""
    groups: list[list[_Term]] = []
    for group in constraint.split("||"):
        group = _HYPHEN_RE.sub(r">= \1, <= \2", group)
        # Operators may be separated from versions by whitespace
        group = re.sub(r"(!=|>=|=>|<=|=<|~>|>|<|=|~|\^)\s+", r"\1", group)
        terms = [t for t in re.split(r"[\s,]+", group.strip()) if t]
        if not terms:
            raise ValueError(f"Invalid constraint: {constraint}")
        groups.append([_Term.parse(term) for term in terms])
    return groups


def is_compatible_range(constraint: str, version: str) -> bool:
    """Return True if the version satisfies the SemVer constraint.

    Invalid constraints or versions are never compatible.
    """
    try:
        ver = SemVer.parse(version)
        groups = _parse_constraint(constraint)
    except ValueError as err:
        _LOGGER.debug("Unable to check version %s against %s: %s", version, constraint, err)
        return False
    return any(all(term.check(ver) for term in group) for group in groups)
