"""Handlers applying structured events to the store."""

from __future__ import annotations

from typing import Any

from ..errors import ValidationError
from ..state.store import Store
from .dispatcher import Dispatcher


def _field(event: dict, name: str, kind: type | tuple[type, ...], *, required: bool = True) -> Any:
    value = event.get(name)
    if value is None:
        if required:
            raise ValidationError(f"missing field {name!r}")
        return None
    if isinstance(value, bool) and kind is not bool:
        raise ValidationError(f"field {name!r} has the wrong type")
    if not isinstance(value, kind):
        raise ValidationError(f"field {name!r} has the wrong type")
    return value


def handle_subscribe(store: Store, event: dict) -> bool:
    return store.add_subscription(event["key"], _field(event, "region", str))


def handle_unsubscribe(store: Store, event: dict) -> bool:
    return store.remove_subscription(event["key"], _field(event, "region", str))


def handle_item_status(store: Store, event: dict) -> bool:
    record = store.get_or_create(event["key"])
    item_id = _field(event, "item_id", str)
    status = record.set_item_status(item_id, _field(event, "status", str))
    record.increment_item_status(status)
    return True


def handle_item_status_clear(store: Store, event: dict) -> bool:
    return store.get_or_create(event["key"]).clear_item_status(_field(event, "item_id", str))


def handle_item_note(store: Store, event: dict) -> bool:
    record = store.get_or_create(event["key"])
    record.set_note(_field(event, "item_id", str), _field(event, "text", str))
    return True


def handle_item_note_clear(store: Store, event: dict) -> bool:
    return store.get_or_create(event["key"]).remove_note(_field(event, "item_id", str))


def handle_item_seen(store: Store, event: dict) -> bool:
    record = store.get_or_create(event["key"])
    item_id = _field(event, "item_id", str)
    if record.has_seen(item_id):
        return False
    record.mark_seen(item_id)
    return True


def handle_items_viewed(store: Store, event: dict) -> bool:
    count = _field(event, "count", int, required=False)
    count = 1 if count is None else count
    if count < 1:
        raise ValidationError("count must be positive")
    record = store.get_or_create(event["key"])
    if not record.stats_enabled:
        return False
    record.increment_items_viewed(count)
    return True


def handle_digest(store: Store, event: dict) -> bool:
    record = store.get_or_create(event["key"])
    mode = _field(event, "mode", str)
    hour = _field(event, "hour", int, required=False)
    weekday = _field(event, "weekday", int, required=False)
    # Check the schedule before touching the mode so a bad hour changes nothing.
    if hour is not None and not 0 <= hour <= 23:
        raise ValidationError(f"digest hour must be between 0 and 23, got {hour}")
    if weekday is not None and not 0 <= weekday <= 6:
        raise ValidationError(f"digest weekday must be between 0 and 6, got {weekday}")
    record.set_digest_mode(mode)
    record.set_digest_schedule(hour=hour, weekday=weekday)
    return True


def handle_reminders(store: Store, event: dict) -> bool:
    offsets = _field(event, "offsets", list)
    if any(isinstance(v, bool) or not isinstance(v, int) for v in offsets):
        raise ValidationError("reminder offsets must be integers")
    store.get_or_create(event["key"]).set_reminder_offsets(offsets)
    return True


def handle_sharing(store: Store, event: dict) -> bool:
    record = store.get_or_create(event["key"])
    enabled = _field(event, "enabled", bool)
    if record.share_events == enabled:
        return False
    record.share_events = enabled
    return True


def handle_active(store: Store, event: dict) -> bool:
    record = store.get_or_create(event["key"])
    enabled = _field(event, "enabled", bool)
    if record.active == enabled:
        return False
    record.active = enabled
    return True


def handle_join(store: Store, event: dict) -> bool:
    _, changed = store.join_by_invite(event["key"], _field(event, "code", str))
    return changed


def handle_unfriend(store: Store, event: dict) -> bool:
    return store.remove_friend(event["key"], _field(event, "friend_key", str))


CORE_HANDLERS = {
    "subscribe": handle_subscribe,
    "unsubscribe": handle_unsubscribe,
    "item.status": handle_item_status,
    "item.status.clear": handle_item_status_clear,
    "item.note": handle_item_note,
    "item.note.clear": handle_item_note_clear,
    "item.seen": handle_item_seen,
    "items.viewed": handle_items_viewed,
    "digest": handle_digest,
    "reminders": handle_reminders,
    "sharing": handle_sharing,
    "active": handle_active,
    "join": handle_join,
    "unfriend": handle_unfriend,
}


def register_core_handlers(dispatcher: Dispatcher) -> Dispatcher:
    for event_type, handler in CORE_HANDLERS.items():
        dispatcher.on(event_type, handler)
    return dispatcher
