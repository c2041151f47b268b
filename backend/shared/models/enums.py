"""Domain enumerations for the Telelistings aggregator."""
from __future__ import annotations

from enum import Enum


class SourceId(str, Enum):
    """
    Upstream sources, declared in aggregation priority order.

    Fixture-metadata sources come first, broadcast-channel-only sources after.
    """
    THESPORTSDB = "thesportsdb"
    FOOTBALLDATA_ICS = "footballdata_ics"
    REMOTE_BROADCAST = "remote_broadcast"
    BBC = "bbc"
    SKYSPORTS = "skysports"
    TNT = "tnt"
    LIVEFOOTBALLONTV = "livefootballontv"
    WIKI = "wiki"

    @property
    def priority(self) -> int:
        return list(SourceId).index(self)


class CacheStatus(str, Enum):
    FRESH = "fresh"
    REFRESHED = "refreshed"
    STALE_FALLBACK = "stale_fallback"


class AdapterState(str, Enum):
    """Per-adapter lifecycle within one aggregate() call. No backtracking."""
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED_AND_SKIPPED = "failed_and_skipped"
