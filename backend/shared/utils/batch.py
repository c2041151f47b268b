"""
Rate-limited batch fetching.

Runs a bounded list of upstream calls one after another with a politeness
delay between them. An HTTP 429 from any call stops the rest of the batch;
other failures are logged and skipped.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, Sequence, TypeVar

from shared.errors import UpstreamRateLimited, classify
from shared.utils.logging import get_logger
from shared.utils.metrics import BATCH_ABORTS

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RateLimitState:
    """Per-batch progress. ``stopped`` is terminal for the batch that owns it."""
    calls_made: int = 0
    stopped: bool = False


@dataclass
class BatchResult(Generic[T]):
    results: list[T] = field(default_factory=list)
    state: RateLimitState = field(default_factory=RateLimitState)


class BatchFetcher:
    """Sequential executor bounded by ``max_items`` with ``inter_delay_ms`` between calls."""

    def __init__(
        self,
        max_items: int,
        inter_delay_ms: int,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        name: str = "batch",
    ) -> None:
        self._max_items = max(0, max_items)
        self._delay_s = max(0, inter_delay_ms) / 1000.0
        self._sleep = sleep
        self._name = name

    async def run(self, tasks: Sequence[Callable[[], Awaitable[T]]]) -> BatchResult[T]:
        batch: BatchResult[T] = BatchResult()
        state = batch.state
        selected = list(tasks)[: self._max_items]

        for index, task in enumerate(selected):
            if index > 0 and self._delay_s:
                await self._sleep(self._delay_s)

            state.calls_made += 1
            try:
                batch.results.append(await task())
            except UpstreamRateLimited as exc:
                state.stopped = True
                BATCH_ABORTS.labels(batch=self._name).inc()
                logger.warning(
                    "batch_rate_limited",
                    batch=self._name,
                    item=index + 1,
                    remaining=len(selected) - index - 1,
                    error=str(exc),
                )
                break
            except Exception as exc:
                logger.warning(
                    "batch_item_failed",
                    batch=self._name,
                    item=index + 1,
                    error_kind=classify(exc).value,
                    error=str(exc),
                )

        logger.debug(
            "batch_complete",
            batch=self._name,
            calls_made=state.calls_made,
            collected=len(batch.results),
            stopped=state.stopped,
        )
        return batch
