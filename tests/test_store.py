import json
from datetime import datetime, timedelta, timezone

import pytest

from prefstore.errors import InviteCodeAmbiguousError, NotFoundError, ValidationError
from prefstore.state.codec import record_to_dict
from prefstore.state.record import ItemStatus, UserRecord
from prefstore.state.store import Store

NOW = datetime(2026, 3, 4, 15, 30, tzinfo=timezone.utc)


def _store() -> Store:
    return Store(clock=lambda: NOW)


def _friends(store: Store, *keys: str, share: bool = True) -> None:
    for key in keys:
        store.get_or_create(key).share_events = share
    for other in keys[1:]:
        store.add_friend(keys[0], other)


def test_get_or_create_returns_same_record():
    store = _store()
    record = store.get_or_create("u1")
    assert store.get_or_create("u1") is record
    assert len(store) == 1
    assert "u1" in store


def test_new_user_scenario():
    record = _store().get_or_create("u1")
    assert record.digest_mode.value == "immediate"
    assert record.hide_past_items is True
    assert record.days_ahead == 0
    assert record.subscriptions == [] and record.item_statuses == {} and record.friend_keys == []
    assert record.invite_code


def test_access_migrates_loaded_records_once():
    store = _store()
    store.put("123456789", UserRecord(subscriptions=["NV"], active=True))
    record = store.get_or_create("123456789")
    assert record.item_notes == {}
    assert record.invite_code == "456789"
    first = json.dumps(record_to_dict(record), sort_keys=True)
    assert json.dumps(record_to_dict(store.get_or_create("123456789")), sort_keys=True) == first


def test_get_does_not_create():
    store = _store()
    assert store.get("ghost") is None
    assert len(store) == 0


def test_active_keys_with_subscriptions():
    store = _store()
    store.add_subscription("a", "nv")
    store.add_subscription("b", "CA")
    store.get_or_create("b").active = False
    store.get_or_create("c")
    assert store.all_active_keys_with_subscriptions() == ["a"]


def test_subscriptions_are_case_insensitive_and_deduplicated():
    store = _store()
    assert store.add_subscription("a", "nv")
    assert not store.add_subscription("a", " NV ")
    assert store.get_or_create("a").subscriptions == ["NV"]
    assert store.remove_subscription("a", "Nv")
    assert not store.remove_subscription("a", "NV")


def test_invalid_region_creates_nothing():
    store = _store()
    with pytest.raises(ValidationError):
        store.add_subscription("a", "XX")
    assert len(store) == 0


def test_remove_subscription_does_not_create():
    store = _store()
    assert not store.remove_subscription("ghost", "NV")
    assert store.clear_subscriptions("ghost") == 0
    assert len(store) == 0


def test_keys_for_region_includes_wildcard_subscribers():
    store = _store()
    store.add_subscription("nv", "NV")
    store.add_subscription("all", "ALL")
    store.add_subscription("ca", "CA")
    assert store.keys_for_region("nv") == ["all", "nv"]


def test_add_friend_is_symmetric_and_reports_existing():
    store = _store()
    store.get_or_create("u1")
    store.get_or_create("u2")
    assert store.add_friend("u1", "u2")
    assert store.is_friend("u1", "u2") and store.is_friend("u2", "u1")
    assert not store.add_friend("u1", "u2")
    assert store.get_or_create("u1").friend_count() == 1
    assert store.get_or_create("u2").friend_count() == 1


def test_remove_friend_is_one_sided():
    store = _store()
    _friends(store, "u1", "u2")
    assert store.remove_friend("u1", "u2")
    assert not store.is_friend("u1", "u2")
    assert store.is_friend("u2", "u1")
    # Adding again completes the friendship without duplicating u2's side.
    assert store.add_friend("u1", "u2")
    assert store.get_or_create("u2").friend_keys == ["u1"]


def test_add_friend_requires_both_records():
    store = _store()
    store.get_or_create("u1")
    with pytest.raises(NotFoundError):
        store.add_friend("u1", "ghost")
    assert store.get_or_create("u1").friend_keys == []
    assert "ghost" not in store
    with pytest.raises(ValidationError):
        store.add_friend("u1", "u1")


def test_friends_interested_requires_both_to_share():
    store = _store()
    _friends(store, "me", "f1", "f2", "f3")
    store.get_or_create("f1").set_item_status("evt", "registered")
    store.get_or_create("f2").set_item_status("evt", "interested")
    store.get_or_create("f3").set_item_status("evt", ItemStatus.SKIP)
    assert store.friends_interested_in("me", "evt") == ["f1", "f2"]

    store.get_or_create("f1").share_events = False
    assert store.friends_interested_in("me", "evt") == ["f2"]

    store.get_or_create("me").share_events = False
    assert store.friends_interested_in("me", "evt") == []


def test_friends_interested_ignores_one_sided_friendships():
    store = _store()
    _friends(store, "me", "f1")
    store.get_or_create("f1").set_item_status("evt", "registered")
    store.remove_friend("f1", "me")
    assert store.friends_interested_in("me", "evt") == []


def test_friends_interested_for_unknown_user_is_empty():
    store = _store()
    assert store.friends_interested_in("ghost", "evt") == []
    assert len(store) == 0


def test_join_by_invite():
    store = _store()
    owner = store.get_or_create("1000123456")
    assert store.join_by_invite("2000999999", owner.invite_code) == ("1000123456", True)
    assert store.is_friend("1000123456", "2000999999")
    assert store.is_friend("2000999999", "1000123456")
    assert store.join_by_invite("2000999999", owner.invite_code) == ("1000123456", False)


def test_join_by_invite_repairs_one_sided_friendship():
    store = _store()
    store.get_or_create("user-bbbbbb")
    store.get_or_create("user-aaaaaa").add_friend_key("user-bbbbbb")
    assert store.join_by_invite("user-aaaaaa", "bbbbbb") == ("user-bbbbbb", True)
    assert store.get_or_create("user-bbbbbb").friend_keys == ["user-aaaaaa"]
    assert store.get_or_create("user-aaaaaa").friend_keys == ["user-bbbbbb"]


def test_join_by_invite_errors():
    store = _store()
    store.get_or_create("1000123456")
    with pytest.raises(ValidationError):
        store.join_by_invite("1000123456", "123456")
    with pytest.raises(NotFoundError):
        store.join_by_invite("1000123456", "nope00")
    with pytest.raises(ValidationError):
        store.join_by_invite("1000123456", "  ")


def test_invite_code_collision_is_ambiguous_not_fatal():
    store = _store()
    store.get_or_create("a-777777")
    store.get_or_create("b-777777")
    assert store.keys_for_invite_code("777777") == ["a-777777", "b-777777"]
    with pytest.raises(InviteCodeAmbiguousError) as exc_info:
        store.join_by_invite("joiner", "777777")
    assert exc_info.value.matches == 2
    assert store.get_or_create("joiner").friend_keys == []


def test_archive_all_weeks_skips_disabled_stats():
    store = _store()
    store.get_or_create("on").increment_items_viewed(2)
    off = store.get_or_create("off")
    off.stats_enabled = False
    assert store.archive_all_weeks(NOW + timedelta(days=7)) == ["on"]
    assert store.get_or_create("on").stats_history["2026-W10"].items_viewed == 2
    assert off.stats_history == {}


def test_prune_seen_across_store():
    store = _store()
    store.get_or_create("a").mark_seen("old", NOW - timedelta(days=200))
    store.get_or_create("b").mark_seen("old", NOW - timedelta(days=100))
    store.get_or_create("b").mark_seen("new", NOW)
    assert store.prune_seen(90) == 2
    assert store.get_or_create("b").seen_ids.keys() == {"new"}
