"""
Aggregator command-line entrypoint.
Looks up one fixture (or the upcoming fixtures of several teams) across the
enabled sources and prints the result as JSON.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Sequence

# Ensure backend root is on path when run as python -m aggregator.main
_backend = Path(__file__).resolve().parent.parent
if str(_backend) not in sys.path:
    sys.path.insert(0, str(_backend))

from shared.config import get_settings
from shared.errors import ConfigurationMissing
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server

from aggregator.orchestrator import aggregate_fixture, team_fixtures

logger = get_logger(__name__)


def _parse_date(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"not an ISO date: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _split(value: Optional[str]) -> Optional[list[str]]:
    if value is None:
        return None
    return [s.strip() for s in value.split(",") if s.strip()]


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="aggregator",
        description="Aggregate kickoff, league and TV channels for one fixture, or list fixtures for teams.",
    )
    ap.add_argument("--home", default=None, help="Home team name")
    ap.add_argument("--away", default=None, help="Away team name")
    ap.add_argument("--date", default=None, type=_parse_date, help="Match date or kickoff (ISO 8601, UTC)")
    ap.add_argument("--league", default=None, help="League hint, e.g. 'Premier League'")
    ap.add_argument(
        "--teams",
        default=None,
        help="Comma-separated team names; lists their upcoming fixtures instead of one match",
    )
    ap.add_argument("--days", type=int, default=None, help="Lookahead for --teams; defaults to TL_TEAM_DAYS_AHEAD")
    ap.add_argument(
        "--sources",
        default=None,
        help="Comma-separated source ids; defaults to TL_ENABLED_SOURCES",
    )
    return ap


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    ap = build_parser()
    args = ap.parse_args(argv)
    if args.teams is None and not (args.home and args.away and args.date):
        ap.error("--home, --away and --date are required unless --teams is given")
    return args


async def run(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging("aggregator")
    start_metrics_server()
    settings = get_settings()

    enabled = _split(args.sources)
    try:
        if args.teams is not None:
            records = await team_fixtures(
                _split(args.teams) or [],
                days_ahead=args.days,
                enabled_sources=enabled,
                settings=settings,
            )
            print(json.dumps([r.model_dump(mode="json") for r in records], indent=2))
            return 0

        record = await aggregate_fixture(
            args.home,
            args.away,
            args.date,
            league_hint=args.league,
            enabled_sources=enabled,
            settings=settings,
        )
    except ConfigurationMissing as exc:
        logger.error("aggregation_not_configured", error=str(exc))
        return 2

    print(record.model_dump_json(indent=2))
    return 0


def main() -> None:
    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
