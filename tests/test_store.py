import json
import pytest
from datetime import timedelta

from listing_alerts.models import NotificationRecord, TriggerType
from listing_alerts.store import NotificationStore


@pytest.fixture
def store(kv_store, clock):
    return NotificationStore(kv_store, clock=clock)


def make_record(store, trigger=TriggerType.HOT_ZONE, when=None):
    return NotificationRecord(
        id=store.next_id(),
        timestamp=when or store.clock(),
        trigger_type=trigger,
        listing_ids=["a"],
    )


def test_ids_strictly_increase(store):
    first = store.next_id()
    second = store.next_id()
    assert second > first
    assert first == int(store.clock().timestamp() * 1000)


def test_newest_first(store, clock):
    older = store.save(make_record(store))
    clock.advance(minutes=1)
    newer = store.save(make_record(store))

    assert [r.id for r in store.get_notifications()] == [newer.id, older.id]
    assert store.latest().id == newer.id


def test_mark_read_is_idempotent(store, clock):
    record = store.save(make_record(store))
    assert store.mark_read(record.id)
    read_at = store.get(record.id).read_at

    clock.advance(minutes=5)
    assert store.mark_read(record.id)
    assert store.get(record.id).read_at == read_at
    assert store.get_unread_count() == 0


def test_mark_read_unknown_id(store):
    assert not store.mark_read(999)


def test_unread_count_is_derived(store):
    records = [store.save(make_record(store)) for _ in range(4)]
    store.mark_read(records[0].id)
    assert store.get_unread_count() == 3

    assert store.mark_all_read() == 3
    assert store.get_unread_count() == 0
    assert store.mark_all_read() == 0


def test_entry_cap_evicts_oldest(store, clock):
    ids = []
    for _ in range(105):
        ids.append(store.save(make_record(store)).id)
        clock.advance(seconds=1)

    assert len(store) == 100
    remaining = {r.id for r in store.get_notifications()}
    assert remaining == set(ids[5:])


def test_age_ceiling_on_write(store, clock):
    old = store.save(make_record(store))
    clock.advance(days=7, seconds=1)
    store.save(make_record(store))

    assert store.get(old.id) is None
    assert len(store) == 1


def test_sweep_expired(store, clock):
    store.save(make_record(store))
    clock.advance(days=6)
    store.save(make_record(store))

    clock.advance(days=1, seconds=1)
    assert store.sweep_expired() == 1
    assert len(store) == 1
    assert store.sweep_expired() == 0


def test_delete_and_clear(store):
    first = store.save(make_record(store))
    store.save(make_record(store))

    assert store.delete(first.id)
    assert not store.delete(first.id)
    assert len(store) == 1

    store.clear_all()
    assert store.get_notifications() == []


def test_persisted_and_reloaded(store, kv_store, clock):
    record = store.save(make_record(store, trigger=TriggerType.DWELL))
    store.mark_read(record.id)

    reloaded = NotificationStore(kv_store, clock=clock)
    assert reloaded.load() == 1
    restored = reloaded.get(record.id)
    assert restored.read
    assert restored.trigger_type == TriggerType.DWELL
    # Ids keep increasing across restarts
    assert reloaded.next_id() > record.id


def test_load_skips_malformed_records(kv_store, clock):
    kv_store.set("notifications", '[{"id": 1, "timestamp": "2024-06-03T09:00:00"}, {"bogus": true}]')
    store = NotificationStore(kv_store, clock=clock)
    assert store.load() == 1


def test_load_skips_records_with_bad_timestamps(kv_store, clock):
    kv_store.set("notifications", json.dumps({"records": [
        {"id": 1, "timestamp": "not-a-date"},
        {"id": 2, "timestamp": None},
        {"id": 3, "timestamp": "2024-06-03T09:00:00"},
    ]}))
    store = NotificationStore(kv_store, clock=clock)

    assert store.load() == 1
    assert [r.id for r in store.get_notifications()] == [3]


def test_import_skips_records_with_bad_timestamps(store, clock):
    data = {"notifications": [
        {"id": 1, "timestamp": "yesterday"},
        {"id": 2, "timestamp": clock().isoformat()},
    ]}
    assert store.import_records(data) == 1


def test_load_ignores_garbage(kv_store, clock):
    kv_store.set("notifications", "not json")
    store = NotificationStore(kv_store, clock=clock)
    assert store.load() == 0


def test_queries(store, clock):
    store.save(make_record(store, trigger=TriggerType.DWELL))
    clock.advance(hours=2)
    cutoff = clock()
    store.save(make_record(store))

    assert len(store.get_by_trigger_type(TriggerType.DWELL)) == 1
    assert store.count_since(cutoff) == 1
    assert store.count_since(cutoff, inclusive=False) == 0
    assert len(store.get_recent(days=1)) == 2

    stats = store.get_stats()
    assert stats == {
        "total": 2,
        "unread": 2,
        "read": 0,
        "by_trigger_type": {"dwell": 1, "hot_zone": 1},
    }


def test_export_and_import(store, kv_store, clock):
    store.save(make_record(store))
    exported = store.export()

    other = NotificationStore(kv_store, key="backup", clock=clock)
    assert other.import_records(exported) == 1

    with pytest.raises(ValueError):
        other.import_records({"notifications": "nope"})


def test_separate_keys_are_independent(kv_store, clock):
    inbox = NotificationStore(kv_store, clock=clock)
    log = NotificationStore(kv_store, key="notification_history", clock=clock)
    record = log.save(make_record(log))
    inbox.save(NotificationRecord(record.id, record.timestamp, record.trigger_type, ["a"]))

    inbox.delete(record.id)
    assert len(log) == 1
    assert log.count_since(clock() - timedelta(hours=1)) == 1
