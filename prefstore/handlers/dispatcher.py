from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable
from enum import Enum

from ..errors import ErrorCategory, NotFoundError, ValidationError
from ..metrics import events_rejected_total
from ..ratelimit import RateLimiter
from ..state.store import Store

Handler = Callable[[Store, dict], "bool | Awaitable[bool]"]


class Outcome(str, Enum):
    APPLIED = "applied"
    UNCHANGED = "unchanged"
    RATE_LIMITED = "rate_limited"
    REJECTED = "rejected"
    IGNORED = "ignored"


def get_type(ev: dict) -> str:
    return ev.get("type", "")


class Dispatcher:
    """Route store events to handlers, one at a time.

    Each event carries a ``type`` and the ``key`` of the user it concerns.
    Events are admitted through the rate limiter by key before the handler
    runs. Handlers return ``True`` when they changed the store; validation and
    lookup failures are reported as :attr:`Outcome.REJECTED` and never reach
    the caller. Unknown event types are ignored.
    """

    def __init__(self, limiter: RateLimiter | None = None) -> None:
        self.limiter = limiter
        self._handlers: dict[str, Handler] = {}

    def on(
        self, event_type: str, handler: Handler | None = None
    ) -> Handler | Callable[[Handler], Handler]:
        """Register ``handler`` for ``event_type``.

        If ``handler`` is ``None`` this functions as a decorator factory.
        """

        if handler is not None:
            self._handlers[event_type] = handler
            return handler

        def decorator(func: Handler) -> Handler:
            self._handlers[event_type] = func
            return func

        return decorator

    register = on

    def event_types(self) -> list[str]:
        return sorted(self._handlers)

    async def dispatch(self, store: Store, event: dict) -> Outcome:
        log = logging.getLogger(__name__)
        etype = get_type(event)
        handler = self._handlers.get(etype)
        if handler is None:
            log.debug("unknown_event", extra={"event_type": etype})
            return Outcome.IGNORED

        key = event.get("key")
        if not isinstance(key, str) or not key:
            events_rejected_total.inc()
            log.warning(
                "event_without_key",
                extra={"event_type": etype, "error_category": ErrorCategory.VALIDATION.value},
            )
            return Outcome.REJECTED

        if self.limiter is not None and not self.limiter.allow(key):
            return Outcome.RATE_LIMITED

        try:
            result = handler(store, event)
            if inspect.isawaitable(result):
                result = await result
        except (ValidationError, NotFoundError) as exc:
            events_rejected_total.inc()
            log.info(
                "event_rejected",
                extra={
                    "event_type": etype,
                    "user_key": key,
                    "error_category": ErrorCategory.VALIDATION.value,
                    "reason": str(exc),
                },
            )
            return Outcome.REJECTED
        return Outcome.APPLIED if result else Outcome.UNCHANGED
