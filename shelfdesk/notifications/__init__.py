"""Snapshot publishing for books, users and transactions."""

from .notifier import (
    COLLECTIONS,
    ChangeNotifier,
    Snapshot,
    Subscription,
    repository_sources,
)

__all__ = [
    "COLLECTIONS",
    "ChangeNotifier",
    "Snapshot",
    "Subscription",
    "repository_sources",
]
