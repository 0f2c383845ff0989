from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import AsyncIterable, AsyncIterator, Iterable
from dataclasses import dataclass, field

from .backend import DocumentBackend, build_backend
from .config import Settings, get_settings
from .handlers.core import register_core_handlers
from .handlers.dispatcher import Dispatcher, Outcome
from .ratelimit import RateLimiter, run_cleanup
from .state.store import Store


@dataclass
class RunReport:
    store: Store
    outcomes: Counter = field(default_factory=Counter)
    saved: bool = False

    @property
    def changed(self) -> bool:
        return self.outcomes[Outcome.APPLIED] > 0


async def _iterate(events: AsyncIterable[dict] | Iterable[dict]) -> AsyncIterator[dict]:
    if isinstance(events, AsyncIterable):
        async for event in events:
            yield event
    else:
        for event in events:
            yield event


async def run(
    settings: Settings | None = None,
    events: AsyncIterable[dict] | Iterable[dict] = (),
    *,
    backend: DocumentBackend | None = None,
    limiter: RateLimiter | None = None,
) -> RunReport:
    """Load the store, apply ``events`` in order, and save once if anything changed.

    A background task prunes the rate limiter while events are processed.
    Persistence and decryption errors propagate to the caller; when saving
    fails the in-memory store in the report still holds every change.
    """

    settings = settings or get_settings()
    backend = backend or build_backend(settings)
    limiter = limiter or RateLimiter(settings.rate_limit, settings.rate_window_s)
    dispatcher = register_core_handlers(Dispatcher(limiter))
    log = logging.getLogger(__name__)

    store = await backend.load()
    report = RunReport(store=store)
    log.info(
        "session_started",
        extra={"event_type": "session_started", "count": len(store)},
    )

    stop = asyncio.Event()
    cleanup_task = asyncio.create_task(run_cleanup(limiter, settings.cleanup_interval_s, stop))
    try:
        async for event in _iterate(events):
            report.outcomes[await dispatcher.dispatch(store, event)] += 1
    finally:
        stop.set()
        await cleanup_task

    if report.changed:
        await backend.save(store)
        report.saved = True
    log.info(
        "session_finished",
        extra={"event_type": "session_finished", "count": sum(report.outcomes.values())},
    )
    return report
