"""
.. include:: ../README.md
"""

__all__ = [
    "action",
    "capabilities",
    "chart",
    "discovery",
    "exceptions",
    "hooks",
    "install",
    "kube",
    "labels",
    "manifest",
    "notes",
    "release",
    "render",
    "rollback",
    "sorter",
    "storage",
    "uninstall",
    "upgrade",
]
