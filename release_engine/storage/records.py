"""Encoding of release records for backends that store opaque text.

Records are serialized to JSON, gzip compressed and base64 encoded. Each
record also carries a set of labels used to query it without decoding.
"""

import base64
import binascii
import gzip
import json

from release_engine.exceptions import StorageException
from release_engine.release import Release

__all__ = [
    "OWNER",
    "SYSTEM_LABELS",
    "decode_release",
    "encode_release",
    "record_labels",
    "user_labels",
]

OWNER = "release-engine"

SYSTEM_LABELS = frozenset({"name", "owner", "status", "version"})

_GZIP_MAGIC = b"\x1f\x8b"


def encode_release(rls: Release) -> str:
    """Encode a release as base64 gzipped JSON."""
    data = json.dumps(rls.to_dict()).encode("utf-8")
    return base64.b64encode(gzip.compress(data)).decode("ascii")


def decode_release(data: str) -> Release:
    """Decode a release encoded by `encode_release`.

    Records that were stored without compression are also accepted.
    """
    try:
        raw = base64.b64decode(data)
        if raw[:2] == _GZIP_MAGIC:
            raw = gzip.decompress(raw)
        return Release.from_dict(json.loads(raw))
    except (binascii.Error, OSError, LookupError, ValueError) as err:
        raise StorageException(f"unable to decode release record: {err}") from err


def record_labels(rls: Release) -> dict[str, str]:
    """Return the labels stored with a record, system labels taking precedence."""
    return {
        **rls.labels,
        "name": rls.name,
        "owner": OWNER,
        "status": str(rls.status),
        "version": str(rls.version),
    }


def user_labels(labels: dict[str, str]) -> dict[str, str]:
    """Return the labels of a stored record that were supplied by the user."""
    return {k: v for k, v in labels.items() if k not in SYSTEM_LABELS}
