"""Version metadata for the live poll scoring engine.

Import-safe: no side effects, so the entrypoint and the API can both
report the running version.
"""

from __future__ import annotations

PROJECT_NAME = "Live Poll Scoring Engine"
VERSION = "0.3.0"
BUILD = "2026.10"
SNAPSHOT_SCHEMA = "v1"

__all__ = [
    "PROJECT_NAME",
    "VERSION",
    "BUILD",
    "SNAPSHOT_SCHEMA",
    "as_dict",
    "as_string",
]


def as_dict() -> dict[str, str]:
    return {
        "project": PROJECT_NAME,
        "version": VERSION,
        "build": BUILD,
        "snapshot_schema": SNAPSHOT_SCHEMA,
    }


def as_string() -> str:
    """Return a concise version string."""

    return f"{PROJECT_NAME} {VERSION} (Build {BUILD})"
