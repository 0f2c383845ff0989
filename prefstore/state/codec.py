"""Conversion between preference records and the persisted JSON document.

The document is a single JSON object keyed by user key. Fields that are unset
on a record are omitted rather than written as ``null``; every field that is
set is written, including ``false``, ``0`` and empty containers, so that an
explicit value is never mistaken for a missing one on the next load.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from ..errors import MalformedDocumentError, ValidationError
from .record import DigestMode, ItemStatus, UserRecord, WeeklyStats, utcnow
from .store import Store

_BOOL_FIELDS = (
    "active",
    "hide_past_items",
    "notify_on_change",
    "notify_on_removal",
    "stats_enabled",
    "share_events",
)
_INT_FIELDS = ("digest_hour", "digest_weekday", "days_ahead")

# Serialized field order.
_FIELD_ORDER = (
    "subscriptions",
    "active",
    "seen_ids",
    "digest_mode",
    "digest_hour",
    "digest_weekday",
    "pending_items",
    "days_ahead",
    "hide_past_items",
    "item_statuses",
    "item_notes",
    "reminder_offsets",
    "notify_on_change",
    "notify_on_removal",
    "weekly_stats",
    "stats_history",
    "stats_enabled",
    "friend_keys",
    "share_events",
    "invite_code",
)


def _format_time(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_time(value: Any, where: str) -> datetime:
    if not isinstance(value, str):
        raise MalformedDocumentError(f"{where}: expected a timestamp string")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        moment = datetime.fromisoformat(text)
    except ValueError:
        raise MalformedDocumentError(f"{where}: invalid timestamp") from None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


def _expect(value: Any, kind: type | tuple[type, ...], where: str) -> Any:
    # bool is an int subclass; never accept it where a number is expected.
    if isinstance(value, bool) and kind is not bool:
        raise MalformedDocumentError(f"{where}: unexpected type bool")
    if not isinstance(value, kind):
        raise MalformedDocumentError(f"{where}: unexpected type {type(value).__name__}")
    return value


def stats_to_dict(stats: WeeklyStats) -> dict[str, Any]:
    return {
        "week_start": _format_time(stats.week_start),
        "items_viewed": stats.items_viewed,
        "items_marked": dict(stats.items_marked),
        "items_registered": stats.items_registered,
    }


def stats_from_dict(data: Any, where: str) -> WeeklyStats:
    _expect(data, dict, where)
    marked = _expect(data.get("items_marked", {}), dict, f"{where}.items_marked")
    return WeeklyStats(
        week_start=_parse_time(data.get("week_start"), f"{where}.week_start"),
        items_viewed=_expect(data.get("items_viewed", 0), int, f"{where}.items_viewed"),
        items_marked={
            str(k): _expect(v, int, f"{where}.items_marked.{k}") for k, v in marked.items()
        },
        items_registered=_expect(
            data.get("items_registered", 0), int, f"{where}.items_registered"
        ),
    )


def record_to_dict(record: UserRecord) -> dict[str, Any]:
    """Return a JSON-ready copy of ``record`` that shares no containers with it."""

    out: dict[str, Any] = {}
    for name in _FIELD_ORDER:
        value = getattr(record, name)
        if value is None:
            continue
        if name == "digest_mode":
            value = value.value
        elif name == "item_statuses":
            value = {item_id: status.value for item_id, status in value.items()}
        elif name == "weekly_stats":
            value = stats_to_dict(value)
        elif name == "stats_history":
            value = {week: stats_to_dict(stats) for week, stats in value.items()}
        elif name == "pending_items":
            value = json.loads(json.dumps(value))
        elif isinstance(value, (list, dict)):
            value = value.copy()
        out[name] = value
    return out


def record_from_dict(data: Any, key: str) -> UserRecord:
    """Build a record from its persisted form.

    Missing fields stay ``None`` for :func:`migrate_record` to fill. Unknown
    fields are ignored.
    """

    where = f"users[{key!r}]"
    _expect(data, dict, where)
    record = UserRecord()

    for name in _BOOL_FIELDS:
        if name in data:
            setattr(record, name, _expect(data[name], bool, f"{where}.{name}"))
    for name in _INT_FIELDS:
        if name in data:
            setattr(record, name, _expect(data[name], int, f"{where}.{name}"))

    if "subscriptions" in data:
        subs = _expect(data["subscriptions"], list, f"{where}.subscriptions")
        record.subscriptions = []
        for code in subs:
            normalized = _expect(code, str, f"{where}.subscriptions").strip().upper()
            if normalized not in record.subscriptions:
                record.subscriptions.append(normalized)
    if "seen_ids" in data:
        seen = _expect(data["seen_ids"], dict, f"{where}.seen_ids")
        record.seen_ids = {
            str(k): _expect(v, int, f"{where}.seen_ids.{k}") for k, v in seen.items()
        }
    if "digest_mode" in data:
        try:
            record.digest_mode = DigestMode.parse(
                _expect(data["digest_mode"], str, f"{where}.digest_mode")
            )
        except ValidationError as exc:
            raise MalformedDocumentError(f"{where}.digest_mode: {exc}") from None
    if "pending_items" in data:
        pending = _expect(data["pending_items"], list, f"{where}.pending_items")
        record.pending_items = [_expect(i, dict, f"{where}.pending_items") for i in pending]
    if "item_statuses" in data:
        statuses = _expect(data["item_statuses"], dict, f"{where}.item_statuses")
        record.item_statuses = {}
        for item_id, status in statuses.items():
            try:
                record.item_statuses[str(item_id)] = ItemStatus.parse(
                    _expect(status, str, f"{where}.item_statuses.{item_id}")
                )
            except ValidationError as exc:
                raise MalformedDocumentError(f"{where}.item_statuses: {exc}") from None
    if "item_notes" in data:
        notes = _expect(data["item_notes"], dict, f"{where}.item_notes")
        record.item_notes = {
            str(k): _expect(v, str, f"{where}.item_notes.{k}") for k, v in notes.items()
        }
    if "reminder_offsets" in data:
        offsets = _expect(data["reminder_offsets"], list, f"{where}.reminder_offsets")
        record.reminder_offsets = [_expect(v, int, f"{where}.reminder_offsets") for v in offsets]
    if "weekly_stats" in data:
        record.weekly_stats = stats_from_dict(data["weekly_stats"], f"{where}.weekly_stats")
    if "stats_history" in data:
        history = _expect(data["stats_history"], dict, f"{where}.stats_history")
        record.stats_history = {
            str(week): stats_from_dict(stats, f"{where}.stats_history.{week}")
            for week, stats in history.items()
        }
    if "friend_keys" in data:
        friends = _expect(data["friend_keys"], list, f"{where}.friend_keys")
        record.friend_keys = [_expect(f, str, f"{where}.friend_keys") for f in friends]
    if "invite_code" in data:
        record.invite_code = _expect(data["invite_code"], str, f"{where}.invite_code")
    return record


def store_to_document(store: Store) -> dict[str, Any]:
    return {key: record_to_dict(record) for key, record in store.items()}


def store_from_document(document: Any, *, clock: Callable[[], datetime] = utcnow) -> Store:
    if not isinstance(document, dict):
        raise MalformedDocumentError("preference document must be a JSON object")
    store = Store(clock=clock)
    for key, data in document.items():
        store.put(str(key), record_from_dict(data, str(key)))
    return store


def dumps(document: dict[str, Any]) -> str:
    return json.dumps(document, indent=2, ensure_ascii=False)


def loads(content: str) -> Any:
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        raise MalformedDocumentError("preference document is not valid JSON") from None
