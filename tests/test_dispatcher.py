import asyncio
import json
from datetime import datetime, timezone

import pytest

from prefstore.handlers.core import CORE_HANDLERS, register_core_handlers
from prefstore.handlers.dispatcher import Dispatcher, Outcome
from prefstore.metrics import events_rejected_total
from prefstore.ratelimit import RateLimiter
from prefstore.state.record import DigestMode, ItemStatus
from prefstore.state.store import Store

NOW = datetime(2026, 3, 4, 15, 30, tzinfo=timezone.utc)


def _store() -> Store:
    return Store(clock=lambda: NOW)


def _core(limiter: RateLimiter | None = None) -> Dispatcher:
    return register_core_handlers(Dispatcher(limiter))


def _apply(dispatcher: Dispatcher, store: Store, *events: dict) -> list[Outcome]:
    async def main():
        return [await dispatcher.dispatch(store, ev) for ev in events]

    return asyncio.run(main())


def test_on_registers_handlers():
    async def main():
        dispatcher = Dispatcher()
        called: list[str] = []

        @dispatcher.on("decorated")
        async def decorated(store, ev):
            called.append(ev["msg"])
            return True

        def direct(store, ev):
            called.append(ev["msg"])
            return False

        dispatcher.on("direct", direct)

        store = _store()
        assert await dispatcher.dispatch(store, {"type": "decorated", "key": "u", "msg": "a"}) is Outcome.APPLIED
        assert await dispatcher.dispatch(store, {"type": "direct", "key": "u", "msg": "b"}) is Outcome.UNCHANGED
        assert called == ["a", "b"]
        assert dispatcher.event_types() == ["decorated", "direct"]

    asyncio.run(main())


def test_unknown_and_keyless_events():
    dispatcher = _core()
    store = _store()
    outcomes = _apply(
        dispatcher,
        store,
        {"type": "teleport", "key": "u1"},
        {"type": "subscribe", "region": "NV"},
        {"type": "subscribe", "key": "", "region": "NV"},
    )
    assert outcomes == [Outcome.IGNORED, Outcome.REJECTED, Outcome.REJECTED]
    assert len(store) == 0


def test_rate_limit_is_per_key():
    now = [0.0]
    limiter = RateLimiter(2, 60.0, clock=lambda: now[0])
    dispatcher = _core(limiter)
    store = _store()
    outcomes = _apply(
        dispatcher,
        store,
        *({"type": "subscribe", "key": "u1", "region": r} for r in ("NV", "CA", "OR")),
        {"type": "subscribe", "key": "u2", "region": "OR"},
    )
    assert outcomes == [Outcome.APPLIED, Outcome.APPLIED, Outcome.RATE_LIMITED, Outcome.APPLIED]
    assert store.get_or_create("u1").subscriptions == ["NV", "CA"]


def test_validation_failures_are_rejected_without_changes():
    events_rejected_total.value = 0
    dispatcher = _core()
    store = _store()
    store.get_or_create("u1")
    outcomes = _apply(
        dispatcher,
        store,
        {"type": "subscribe", "key": "u1", "region": "XX"},
        {"type": "item.status", "key": "u1", "item_id": "e1", "status": "attending"},
        {"type": "item.note", "key": "u1", "item_id": "e1", "text": "x" * 501},
        {"type": "digest", "key": "u1", "mode": "daily", "hour": 24},
        {"type": "reminders", "key": "u1", "offsets": [1, "3"]},
        {"type": "sharing", "key": "u1", "enabled": "yes"},
        {"type": "join", "key": "u1", "code": "nobody"},
    )
    assert outcomes == [Outcome.REJECTED] * 7
    assert events_rejected_total.value == 7
    record = store.get_or_create("u1")
    assert record.subscriptions == []
    assert record.item_statuses == {}
    assert record.item_notes == {}
    assert record.digest_mode is DigestMode.IMMEDIATE
    assert record.digest_hour == 9


def test_core_handlers_apply_changes():
    dispatcher = _core()
    store = _store()
    owner = store.get_or_create("1000123456")
    outcomes = _apply(
        dispatcher,
        store,
        {"type": "subscribe", "key": "u1", "region": "nv"},
        {"type": "subscribe", "key": "u1", "region": "NV"},
        {"type": "item.status", "key": "u1", "item_id": "e1", "status": "registered"},
        {"type": "item.note", "key": "u1", "item_id": "e1", "text": "tee time 8am"},
        {"type": "item.seen", "key": "u1", "item_id": "e1"},
        {"type": "item.seen", "key": "u1", "item_id": "e1"},
        {"type": "items.viewed", "key": "u1", "count": 3},
        {"type": "digest", "key": "u1", "mode": "weekly", "hour": 0, "weekday": 5},
        {"type": "reminders", "key": "u1", "offsets": [7, 1]},
        {"type": "sharing", "key": "u1", "enabled": True},
        {"type": "join", "key": "u1", "code": owner.invite_code},
        {"type": "join", "key": "u1", "code": owner.invite_code},
    )
    assert outcomes == [
        Outcome.APPLIED,
        Outcome.UNCHANGED,
        Outcome.APPLIED,
        Outcome.APPLIED,
        Outcome.APPLIED,
        Outcome.UNCHANGED,
        Outcome.APPLIED,
        Outcome.APPLIED,
        Outcome.APPLIED,
        Outcome.APPLIED,
        Outcome.APPLIED,
        Outcome.UNCHANGED,
    ]
    record = store.get_or_create("u1")
    assert record.subscriptions == ["NV"]
    assert record.get_item_status("e1") is ItemStatus.REGISTERED
    assert record.get_note("e1") == "tee time 8am"
    assert record.has_seen("e1")
    assert record.weekly_stats.items_viewed == 3
    assert record.weekly_stats.items_registered == 1
    assert (record.digest_mode, record.digest_hour, record.digest_weekday) == (DigestMode.WEEKLY, 0, 5)
    assert record.reminder_offsets == [1, 7]
    assert record.share_events is True
    assert store.is_friend("u1", "1000123456") and store.is_friend("1000123456", "u1")


def test_clear_and_unfriend_handlers():
    dispatcher = _core()
    store = _store()
    store.get_or_create("u1").set_note("e1", "note")
    store.get_or_create("u1").set_item_status("e1", "maybe")
    store.get_or_create("u2")
    store.add_friend("u1", "u2")
    outcomes = _apply(
        dispatcher,
        store,
        {"type": "item.note.clear", "key": "u1", "item_id": "e1"},
        {"type": "item.status.clear", "key": "u1", "item_id": "e1"},
        {"type": "item.status.clear", "key": "u1", "item_id": "e1"},
        {"type": "unfriend", "key": "u1", "friend_key": "u2"},
        {"type": "unsubscribe", "key": "u1", "region": "NV"},
        {"type": "active", "key": "u1", "enabled": False},
    )
    assert outcomes == [
        Outcome.APPLIED,
        Outcome.APPLIED,
        Outcome.UNCHANGED,
        Outcome.APPLIED,
        Outcome.UNCHANGED,
        Outcome.APPLIED,
    ]
    assert store.is_friend("u2", "u1")
    assert store.get_or_create("u1").active is False


@pytest.mark.parametrize("count", [0, -2, "3", True])
def test_items_viewed_rejects_bad_counts(count):
    store = _store()
    outcomes = _apply(_core(), store, {"type": "items.viewed", "key": "u1", "count": count})
    assert outcomes == [Outcome.REJECTED]


def test_core_handlers_are_all_registered():
    assert _core().event_types() == sorted(CORE_HANDLERS)


def test_note_with_unpaired_surrogate_is_rejected():
    event = json.loads('{"type": "item.note", "key": "u1", "item_id": "e1", "text": "hi \\ud800"}')
    store = _store()
    assert _apply(_core(), store, event) == [Outcome.REJECTED]
    assert store.get_or_create("u1").item_notes == {}
