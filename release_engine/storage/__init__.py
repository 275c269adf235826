"""Persistent history of release revisions.

A `Storage` wraps one of the drivers, selected once per session:

- `SecretsDriver` and `ConfigMapsDriver` keep records as cluster objects
- `MemoryDriver` keeps records in process memory
- `SQLDriver` keeps records in a relational database
"""

from .driver import Driver, DriverKind, make_key
from .kube import ConfigMapsDriver, SecretsDriver
from .memory import MemoryDriver
from .sql import SQLDriver
from .storage import Storage

__all__ = [
    "ConfigMapsDriver",
    "Driver",
    "DriverKind",
    "MemoryDriver",
    "SQLDriver",
    "SecretsDriver",
    "Storage",
    "make_key",
]
