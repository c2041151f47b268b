"""
Pydantic v2 domain models shared by the aggregator and its source adapters.
These are the canonical internal representations handed between components.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shared.utils.dates import ensure_utc


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class FrozenModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True, frozen=True)


def _utc_or_none(value: Optional[datetime]) -> Optional[datetime]:
    return ensure_utc(value) if value is not None else None


# ── Request ─────────────────────────────────────────────────────────────
class RequestedMatch(FrozenModel):
    """Immutable input to one aggregation call."""
    home_team: str
    away_team: str
    date: datetime
    known_kickoff_utc: Optional[datetime] = None
    league_hint: Optional[str] = None

    @field_validator("date")
    @classmethod
    def _date_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @field_validator("known_kickoff_utc")
    @classmethod
    def _kickoff_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _utc_or_none(value)

    @property
    def reference_time(self) -> datetime:
        """Best known kickoff: the confirmed time when present, else the requested date."""
        return self.known_kickoff_utc or self.date


# ── Channels ────────────────────────────────────────────────────────────
class ChannelEntry(FrozenModel):
    region: str
    channel_name: str
    source_id: str = ""

    @property
    def identity(self) -> tuple[str, str]:
        """Dedup identity; source_id is provenance only."""
        return (self.region.strip().lower(), self.channel_name.strip().lower())


# ── Candidate ───────────────────────────────────────────────────────────
class CandidateFixture(FrozenModel):
    """One source's raw hit. Consumed by the scorer and merge engine only."""
    home_team: str
    away_team: str
    date_time: Optional[datetime] = None
    league: Optional[str] = None
    venue: Optional[str] = None
    channels: tuple[ChannelEntry, ...] = ()
    summary: str = ""
    source_id: str = ""

    @field_validator("date_time")
    @classmethod
    def _date_time_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _utc_or_none(value)


# ── Canonical record ────────────────────────────────────────────────────
class FixtureRecord(DomainModel):
    """Canonical fixture handed by value to the caller after aggregation."""
    home_team: str
    away_team: str
    kickoff_utc: Optional[datetime] = None
    league: Optional[str] = None
    venue: Optional[str] = None
    channels: list[ChannelEntry] = Field(default_factory=list)
    sources_used: dict[str, bool] = Field(default_factory=dict)
    kickoff_local: Optional[str] = None
    stations_flat: list[str] = Field(default_factory=list)

    @property
    def has_data(self) -> bool:
        return any(self.sources_used.values())


# ── Cache ───────────────────────────────────────────────────────────────
class CacheEntry(FrozenModel):
    key: str
    payload: str
    stored_at: datetime

    @field_validator("stored_at")
    @classmethod
    def _stored_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    def age(self, now: datetime) -> timedelta:
        return now - self.stored_at

    def is_fresh(self, ttl_s: float, now: datetime) -> bool:
        return self.age(now) <= timedelta(seconds=ttl_s)


# ── Calendar ────────────────────────────────────────────────────────────
class CalendarEvent(FrozenModel):
    start: datetime
    summary: str
    location: str = ""
    description: str = ""

    @field_validator("start")
    @classmethod
    def _start_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)
