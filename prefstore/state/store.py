from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from datetime import datetime

from ..errors import InviteCodeAmbiguousError, NotFoundError, ValidationError
from ..metrics import store_users
from .record import SHARED_STATUSES, UserRecord, migrate_record, normalize_region, utcnow


class Store:
    """In-memory mapping from user key to :class:`UserRecord`.

    Records are migrated on every access through :meth:`get_or_create` and
    :meth:`get`, so a record loaded from an older document is upgraded the
    first time anything looks at it.

    The store is not thread-safe. It is meant to be mutated by a single
    request-processing context between a load and a save.
    """

    def __init__(
        self,
        records: dict[str, UserRecord] | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._records: dict[str, UserRecord] = dict(records or {})
        self._clock = clock
        store_users.set(len(self._records))

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def keys(self) -> list[str]:
        return list(self._records)

    def items(self) -> Iterator[tuple[str, UserRecord]]:
        """Iterate over stored records as they are, without migrating them."""
        return iter(list(self._records.items()))

    def put(self, key: str, record: UserRecord) -> None:
        self._records[key] = record
        store_users.set(len(self._records))

    # Access ----------------------------------------------------------------

    def get_or_create(self, key: str) -> UserRecord:
        record = self._records.get(key)
        if record is None:
            record = UserRecord.new(key, self._clock())
            self.put(key, record)
            logging.getLogger(__name__).info(
                "user_created", extra={"event_type": "user_created", "user_key": key}
            )
            return record
        migrate_record(record, key, self._clock())
        return record

    def get(self, key: str) -> UserRecord | None:
        """Like :meth:`get_or_create` but never creates a record."""
        if key not in self._records:
            return None
        return self.get_or_create(key)

    def _require(self, key: str) -> UserRecord:
        record = self.get(key)
        if record is None:
            raise NotFoundError(f"unknown user {key!r}")
        return record

    # Subscriptions ---------------------------------------------------------

    def all_active_keys_with_subscriptions(self) -> list[str]:
        return sorted(
            key
            for key in self._records
            if (record := self.get_or_create(key)).active and record.subscriptions
        )

    def keys_for_region(self, code: str) -> list[str]:
        """Active users whose subscriptions cover ``code``, including ``ALL`` subscribers."""
        normalized = normalize_region(code)
        return [
            key
            for key in self.all_active_keys_with_subscriptions()
            if self._records[key].covers_region(normalized)
        ]

    def add_subscription(self, key: str, code: str) -> bool:
        normalized = normalize_region(code)
        record = self.get_or_create(key)
        if normalized in record.subscriptions:
            return False
        record.subscriptions.append(normalized)
        return True

    def remove_subscription(self, key: str, code: str) -> bool:
        record = self.get(key)
        normalized = code.strip().upper()
        if record is None or normalized not in record.subscriptions:
            return False
        record.subscriptions.remove(normalized)
        return True

    def clear_subscriptions(self, key: str) -> int:
        record = self.get(key)
        if record is None:
            return 0
        removed = len(record.subscriptions)
        record.subscriptions = []
        return removed

    # Friends ---------------------------------------------------------------

    def add_friend(self, key: str, friend_key: str) -> bool:
        """Make ``key`` and ``friend_key`` friends of each other.

        Both records must already exist. Returns ``False`` when the two were
        already friends on both sides; a one-sided friendship is completed.
        """
        if key == friend_key:
            raise ValidationError("a user cannot befriend themselves")
        user = self._require(key)
        friend = self._require(friend_key)
        if user.is_friend(friend_key) and friend.is_friend(key):
            return False
        user.add_friend_key(friend_key)
        friend.add_friend_key(key)
        logging.getLogger(__name__).info(
            "friend_added", extra={"event_type": "friend_added", "user_key": key}
        )
        return True

    def remove_friend(self, key: str, friend_key: str) -> bool:
        """Remove ``friend_key`` from ``key``'s friends only; the other side is kept."""
        record = self.get(key)
        if record is None:
            return False
        return record.remove_friend_key(friend_key)

    def is_friend(self, key: str, friend_key: str) -> bool:
        record = self.get(key)
        return record is not None and record.is_friend(friend_key)

    def keys_for_invite_code(self, code: str) -> list[str]:
        wanted = code.strip()
        return sorted(
            key for key in self._records if self.get_or_create(key).invite_code == wanted
        )

    def join_by_invite(self, key: str, code: str) -> tuple[str, bool]:
        """Befriend the owner of invite ``code``.

        Returns the owner's key and whether the friendship changed; joining an
        existing friend reports ``False`` unless a one-sided link was repaired.

        Raises :class:`NotFoundError` when no other user owns the code,
        :class:`InviteCodeAmbiguousError` when several do, and
        :class:`ValidationError` when the code is the caller's own.
        """
        user = self.get_or_create(key)
        wanted = code.strip()
        if not wanted:
            raise ValidationError("invite code cannot be empty")
        if user.invite_code == wanted:
            raise ValidationError("you cannot use your own invite code")
        owners = [k for k in self.keys_for_invite_code(wanted) if k != key]
        if not owners:
            raise NotFoundError(f"invalid invite code {wanted!r}")
        if len(owners) > 1:
            raise InviteCodeAmbiguousError(wanted, len(owners))
        changed = self.add_friend(key, owners[0])
        return owners[0], changed

    def friends_interested_in(self, key: str, item_id: str) -> list[str]:
        """Friends who marked ``item_id`` as interested or registered.

        Both sides must have sharing enabled and must still list each other as
        friends. Anything missing yields an empty result.
        """
        user = self.get(key)
        if user is None or not user.share_events:
            return []
        result: list[str] = []
        for friend_key in user.friend_keys:
            friend = self.get(friend_key)
            if friend is None or not friend.share_events or not friend.is_friend(key):
                continue
            if friend.get_item_status(item_id) in SHARED_STATUSES:
                result.append(friend_key)
        return result

    # Housekeeping ----------------------------------------------------------

    def archive_all_weeks(self, now: datetime | None = None) -> list[str]:
        """Archive the live week of every user with statistics enabled."""
        now = now or self._clock()
        archived: list[str] = []
        for key in list(self._records):
            record = self.get_or_create(key)
            if not record.stats_enabled:
                continue
            record.archive_current_week(now)
            archived.append(key)
        logging.getLogger(__name__).info(
            "weekly_stats_archived",
            extra={"event_type": "weekly_stats_archived", "count": len(archived)},
        )
        return archived

    def prune_seen(self, max_age_days: int, now: datetime | None = None) -> int:
        now = now or self._clock()
        removed = sum(
            self.get_or_create(key).prune_seen(max_age_days, now) for key in list(self._records)
        )
        logging.getLogger(__name__).info(
            "seen_history_pruned", extra={"event_type": "seen_history_pruned", "count": removed}
        )
        return removed
