"""Contribution storage package.

Holds the SQLite-backed store for polls, candidates, provisioned contributors
and the append-only contribution rows the scoring core aggregates.
"""

from .store import DEFAULT_DB_PATH, ContributionStore

__all__ = ["ContributionStore", "DEFAULT_DB_PATH"]
