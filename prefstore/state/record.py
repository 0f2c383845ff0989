from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum

from ..errors import ValidationError
from ..sanitize import sanitize_note

ALL_REGIONS = "ALL"

REGION_NAMES: dict[str, str] = {
    "AL": "Alabama", "AK": "Alaska", "AZ": "Arizona", "AR": "Arkansas",
    "CA": "California", "CO": "Colorado", "CT": "Connecticut", "DE": "Delaware",
    "FL": "Florida", "GA": "Georgia", "HI": "Hawaii", "ID": "Idaho",
    "IL": "Illinois", "IN": "Indiana", "IA": "Iowa", "KS": "Kansas",
    "KY": "Kentucky", "LA": "Louisiana", "ME": "Maine", "MD": "Maryland",
    "MA": "Massachusetts", "MI": "Michigan", "MN": "Minnesota", "MS": "Mississippi",
    "MO": "Missouri", "MT": "Montana", "NE": "Nebraska", "NV": "Nevada",
    "NH": "New Hampshire", "NJ": "New Jersey", "NM": "New Mexico", "NY": "New York",
    "NC": "North Carolina", "ND": "North Dakota", "OH": "Ohio", "OK": "Oklahoma",
    "OR": "Oregon", "PA": "Pennsylvania", "RI": "Rhode Island", "SC": "South Carolina",
    "SD": "South Dakota", "TN": "Tennessee", "TX": "Texas", "UT": "Utah",
    "VT": "Vermont", "VA": "Virginia", "WA": "Washington", "WV": "West Virginia",
    "WI": "Wisconsin", "WY": "Wyoming", "DC": "Washington, D.C.",
    ALL_REGIONS: "All States",
}  # fmt: skip

REMINDER_OFFSETS = (1, 3, 7, 14)
DEFAULT_DIGEST_HOUR = 9
DEFAULT_DIGEST_WEEKDAY = 1  # Monday
INVITE_CODE_LENGTH = 6


class DigestMode(str, Enum):
    IMMEDIATE = "immediate"
    DAILY = "daily"
    WEEKLY = "weekly"

    @classmethod
    def parse(cls, value: str | DigestMode) -> DigestMode:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(f"invalid digest mode {value!r}") from None


class ItemStatus(str, Enum):
    INTERESTED = "interested"
    REGISTERED = "registered"
    MAYBE = "maybe"
    SKIP = "skip"

    @classmethod
    def parse(cls, value: str | ItemStatus) -> ItemStatus:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(f"invalid item status {value!r}") from None


# Statuses a friend with sharing enabled exposes to other friends.
SHARED_STATUSES = frozenset({ItemStatus.INTERESTED, ItemStatus.REGISTERED})


def normalize_region(code: str) -> str:
    """Return the canonical form of ``code`` or raise :class:`ValidationError`."""
    normalized = code.strip().upper()
    if normalized not in REGION_NAMES:
        raise ValidationError(f"invalid region code {code!r}")
    return normalized


def region_name(code: str) -> str:
    normalized = code.strip().upper()
    return REGION_NAMES.get(normalized, normalized)


def generate_invite_code(key: str) -> str:
    """Invite codes are the last six characters of the user key."""
    if len(key) >= INVITE_CODE_LENGTH:
        return key[-INVITE_CODE_LENGTH:]
    return key


def week_key(moment: datetime) -> str:
    """ISO-8601 week identifier, e.g. ``2026-W01``."""
    year, week, _ = moment.isocalendar()
    return f"{year}-W{week:02d}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def start_of_day(moment: datetime) -> datetime:
    moment = moment.astimezone(timezone.utc)
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


@dataclass
class WeeklyStats:
    week_start: datetime
    items_viewed: int = 0
    items_marked: dict[str, int] = field(default_factory=dict)
    items_registered: int = 0

    @classmethod
    def fresh(cls, now: datetime | None = None) -> WeeklyStats:
        return cls(week_start=start_of_day(now or utcnow()))

    def copy(self) -> WeeklyStats:
        return WeeklyStats(
            week_start=self.week_start,
            items_viewed=self.items_viewed,
            items_marked=dict(self.items_marked),
            items_registered=self.items_registered,
        )

    def absorb(self, other: WeeklyStats) -> None:
        """Add ``other``'s counters into this snapshot."""
        self.items_viewed += other.items_viewed
        self.items_registered += other.items_registered
        for status, count in other.items_marked.items():
            self.items_marked[status] = self.items_marked.get(status, 0) + count


@dataclass
class UserRecord:
    """Preferences of a single user.

    Every field is optional so that records written by older versions load
    unchanged; :func:`migrate_record` fills in whatever is missing. Records
    handed out by :class:`~prefstore.state.store.Store` are always migrated,
    and the mutation methods below assume that.
    """

    subscriptions: list[str] | None = None
    active: bool | None = None

    # item id -> epoch seconds when first seen
    seen_ids: dict[str, int] | None = None

    digest_mode: DigestMode | None = None
    digest_hour: int | None = None
    digest_weekday: int | None = None
    pending_items: list[dict] | None = None

    days_ahead: int | None = None
    hide_past_items: bool | None = None

    item_statuses: dict[str, ItemStatus] | None = None
    item_notes: dict[str, str] | None = None
    reminder_offsets: list[int] | None = None

    notify_on_change: bool | None = None
    notify_on_removal: bool | None = None

    weekly_stats: WeeklyStats | None = None
    stats_history: dict[str, WeeklyStats] | None = None
    stats_enabled: bool | None = None

    friend_keys: list[str] | None = None
    share_events: bool | None = None
    invite_code: str | None = None

    @classmethod
    def new(cls, key: str, now: datetime | None = None) -> UserRecord:
        record = cls(
            active=True,
            hide_past_items=True,
            notify_on_change=True,
            stats_enabled=True,
        )
        migrate_record(record, key, now)
        return record

    # Subscriptions ---------------------------------------------------------

    def covers_region(self, code: str) -> bool:
        normalized = code.strip().upper()
        return normalized in self.subscriptions or ALL_REGIONS in self.subscriptions

    # Seen history ----------------------------------------------------------

    def mark_seen(self, item_id: str, now: datetime | None = None) -> None:
        self.seen_ids[item_id] = int((now or utcnow()).timestamp())

    def has_seen(self, item_id: str) -> bool:
        return item_id in self.seen_ids

    def prune_seen(self, max_age_days: int, now: datetime | None = None) -> int:
        """Forget items first seen more than ``max_age_days`` ago."""
        cutoff = int(((now or utcnow()) - timedelta(days=max_age_days)).timestamp())
        stale = [item_id for item_id, ts in self.seen_ids.items() if ts < cutoff]
        for item_id in stale:
            del self.seen_ids[item_id]
        return len(stale)

    # Digest ----------------------------------------------------------------

    def set_digest_mode(self, mode: str | DigestMode) -> DigestMode:
        self.digest_mode = DigestMode.parse(mode)
        return self.digest_mode

    def set_digest_schedule(self, hour: int | None = None, weekday: int | None = None) -> None:
        if hour is not None and not 0 <= hour <= 23:
            raise ValidationError(f"digest hour must be between 0 and 23, got {hour}")
        if weekday is not None and not 0 <= weekday <= 6:
            raise ValidationError(f"digest weekday must be between 0 and 6, got {weekday}")
        if hour is not None:
            self.digest_hour = hour
        if weekday is not None:
            self.digest_weekday = weekday

    def queue_pending(self, item: dict) -> None:
        self.pending_items.append(item)

    def drain_pending(self) -> list[dict]:
        """Return queued digest items and clear the queue."""
        items, self.pending_items = self.pending_items, []
        return items

    # Display filters -------------------------------------------------------

    def set_days_ahead(self, days: int) -> None:
        if days < 0:
            raise ValidationError(f"days ahead must not be negative, got {days}")
        self.days_ahead = days

    # Item statuses and notes -----------------------------------------------

    def set_item_status(self, item_id: str, status: str | ItemStatus) -> ItemStatus:
        parsed = ItemStatus.parse(status)
        self.item_statuses[item_id] = parsed
        return parsed

    def get_item_status(self, item_id: str) -> ItemStatus | None:
        return self.item_statuses.get(item_id)

    def clear_item_status(self, item_id: str) -> bool:
        return self.item_statuses.pop(item_id, None) is not None

    def items_with_status(self, status: str | ItemStatus) -> list[str]:
        wanted = ItemStatus.parse(status)
        return sorted(item_id for item_id, s in self.item_statuses.items() if s is wanted)

    def set_note(self, item_id: str, text: str) -> str:
        note = sanitize_note(text)
        self.item_notes[item_id] = note
        return note

    def get_note(self, item_id: str) -> str:
        return self.item_notes.get(item_id, "")

    def remove_note(self, item_id: str) -> bool:
        return self.item_notes.pop(item_id, None) is not None

    # Reminders -------------------------------------------------------------

    def set_reminder_offsets(self, offsets: Iterable[int]) -> list[int]:
        values = list(offsets)
        invalid = [v for v in values if v not in REMINDER_OFFSETS]
        if invalid:
            raise ValidationError(
                f"reminder offsets must be drawn from {list(REMINDER_OFFSETS)}, got {invalid}"
            )
        self.reminder_offsets = sorted(set(values))
        return self.reminder_offsets

    def has_reminder_offset(self, days: int) -> bool:
        return days in self.reminder_offsets

    # Friends ---------------------------------------------------------------

    def add_friend_key(self, key: str) -> bool:
        if key in self.friend_keys:
            return False
        self.friend_keys.append(key)
        return True

    def remove_friend_key(self, key: str) -> bool:
        if key not in self.friend_keys:
            return False
        self.friend_keys.remove(key)
        return True

    def is_friend(self, key: str) -> bool:
        return key in self.friend_keys

    def friend_count(self) -> int:
        return len(self.friend_keys)

    # Statistics ------------------------------------------------------------

    def increment_items_viewed(self, count: int = 1) -> None:
        if not self.stats_enabled:
            return
        self.weekly_stats.items_viewed += count

    def increment_item_status(self, status: str | ItemStatus) -> None:
        parsed = ItemStatus.parse(status)
        if not self.stats_enabled:
            return
        marked = self.weekly_stats.items_marked
        marked[parsed.value] = marked.get(parsed.value, 0) + 1
        if parsed is ItemStatus.REGISTERED:
            self.weekly_stats.items_registered += 1

    def archive_current_week(self, now: datetime | None = None) -> str:
        """Move the live week into ``stats_history`` and start a new week.

        Archiving twice within the same ISO week adds the second snapshot to
        the first instead of replacing it.
        """
        key = week_key(self.weekly_stats.week_start)
        snapshot = self.weekly_stats.copy()
        existing = self.stats_history.get(key)
        if existing is None:
            self.stats_history[key] = snapshot
        else:
            existing.absorb(snapshot)
        self.weekly_stats = WeeklyStats.fresh(now)
        return key

    def all_time_stats(self) -> WeeklyStats:
        total = self.weekly_stats.copy()
        for snapshot in self.stats_history.values():
            total.absorb(snapshot)
        return total


def migrate_record(record: UserRecord, key: str, now: datetime | None = None) -> list[str]:
    """Fill every missing field of ``record`` with its default.

    Steps run in a fixed order because some defaults depend on fields that an
    earlier step may have filled. Fields already present are never touched, so
    running this on a migrated record changes nothing. Returns the names of the
    fields that were filled.
    """

    filled: list[str] = []

    def fill(name: str, default) -> None:  # noqa: ANN001 - any field type
        if getattr(record, name) is None:
            setattr(record, name, default() if callable(default) else default)
            filled.append(name)

    fill("active", True)
    fill("subscriptions", list)
    fill("seen_ids", dict)
    fill("digest_mode", DigestMode.IMMEDIATE)
    fill("digest_hour", DEFAULT_DIGEST_HOUR)
    fill("digest_weekday", DEFAULT_DIGEST_WEEKDAY)
    fill("pending_items", list)
    fill("days_ahead", 0)
    # Older records predate the filter; keep showing them everything.
    fill("hide_past_items", False)
    fill("item_statuses", dict)
    fill("item_notes", dict)
    fill("reminder_offsets", list)
    fill("notify_on_change", lambda: bool(record.item_statuses))
    fill("notify_on_removal", False)
    fill("weekly_stats", lambda: WeeklyStats.fresh(now))
    fill("stats_history", dict)
    fill("stats_enabled", lambda: bool(record.subscriptions))
    fill("friend_keys", list)
    fill("share_events", False)
    if not record.invite_code:
        record.invite_code = generate_invite_code(key)
        filled.append("invite_code")

    if filled:
        logging.getLogger(__name__).debug(
            "record_migrated",
            extra={"event_type": "record_migrated", "user_key": key, "count": len(filled)},
        )
    return filled
