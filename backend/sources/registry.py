"""
Closed registry of source adapters.
Builds one adapter per enabled SourceId, each with its own HTTP client and the shared cache.
"""
from __future__ import annotations

from typing import Iterable, Optional

import httpx

from shared.config import Settings, get_settings
from shared.models.enums import SourceId
from shared.utils.cache import TTLCache
from shared.utils.http_client import SourceHTTPClient
from shared.utils.logging import get_logger

from sources.base import BaseSource
from sources.calendar_feed import CalendarFeedSource
from sources.html_fixtures import (
    BBCFixturesSource,
    LiveFootballOnTVSource,
    SkySportsSource,
    TNTSportsSource,
)
from sources.remote_broadcast import RemoteBroadcastSource
from sources.thesportsdb import TSDB_BASE_URL, SportsDatabaseSource
from sources.wiki_broadcasters import WIKI_BASE_URL, EncyclopediaBroadcasterSource

logger = get_logger(__name__)

SOURCE_CLASSES: dict[SourceId, type[BaseSource]] = {
    SourceId.THESPORTSDB: SportsDatabaseSource,
    SourceId.FOOTBALLDATA_ICS: CalendarFeedSource,
    SourceId.REMOTE_BROADCAST: RemoteBroadcastSource,
    SourceId.BBC: BBCFixturesSource,
    SourceId.SKYSPORTS: SkySportsSource,
    SourceId.TNT: TNTSportsSource,
    SourceId.LIVEFOOTBALLONTV: LiveFootballOnTVSource,
    SourceId.WIKI: EncyclopediaBroadcasterSource,
}


def parse_source_ids(names: Iterable[str]) -> set[SourceId]:
    """Known source ids among ``names``; unknown names are logged and dropped."""
    known = {s.value: s for s in SourceId}
    selected: set[SourceId] = set()
    for name in names:
        key = (name or "").strip().lower()
        if not key:
            continue
        if key in known:
            selected.add(known[key])
        else:
            logger.warning("unknown_source_ignored", source=name)
    return selected


def _http_client_for(
    source_id: SourceId,
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport],
) -> SourceHTTPClient:
    base_url = ""
    timeout_s: float | None = None
    headers: dict[str, str] = {}
    if source_id is SourceId.THESPORTSDB:
        base_url = TSDB_BASE_URL
        headers["Accept"] = "application/json"
    elif source_id is SourceId.REMOTE_BROADCAST:
        base_url = settings.remote_broadcast_url
        timeout_s = settings.remote_broadcast_timeout_s
    elif source_id is SourceId.WIKI:
        base_url = WIKI_BASE_URL
        headers["Accept"] = "text/html,application/xhtml+xml"
    elif source_id is not SourceId.FOOTBALLDATA_ICS:
        base_url = getattr(SOURCE_CLASSES[source_id], "base_url", "")
        headers["Accept"] = "text/html,application/xhtml+xml"
        headers["Accept-Language"] = "en-GB,en;q=0.9"
    return SourceHTTPClient(
        source_name=source_id.value,
        base_url=base_url,
        headers=headers,
        timeout_s=timeout_s,
        transport=transport,
    )


def build_sources(
    cache: TTLCache,
    settings: Settings | None = None,
    enabled: Iterable[SourceId] | None = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> list[BaseSource]:
    """Adapters for ``enabled`` (default: configured sources), in priority order."""
    settings = settings or get_settings()
    wanted = set(enabled) if enabled is not None else parse_source_ids(settings.enabled_sources)
    sources: list[BaseSource] = []
    for source_id in SourceId:
        if source_id not in wanted:
            continue
        cls = SOURCE_CLASSES[source_id]
        sources.append(cls(_http_client_for(source_id, settings, transport), cache, settings))
    logger.info("sources_built", sources=[s.name for s in sources])
    return sources
