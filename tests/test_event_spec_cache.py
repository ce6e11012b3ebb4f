"""Tests for the event spec cache."""

from conftest import make_spec

from inspector_sdk.event_spec.cache import MAX_EVENT_COUNT, TTL_SECONDS, EventSpecCache


def test_set_and_get(clock):
    cache = EventSpecCache(clock=clock)
    spec = make_spec()

    cache.set("k1", "s1", "e1", spec)

    assert cache.get("k1", "s1", "e1") is spec
    assert cache.get("k1", "s1", "e2") is None
    assert cache.size() == 1


def test_entry_expires_after_ttl(clock):
    cache = EventSpecCache(clock=clock)
    cache.set("k1", "s1", "e1", make_spec())

    clock.advance(TTL_SECONDS)
    assert cache.get("k1", "s1", "e1") is not None

    clock.advance(0.001)
    assert cache.get("k1", "s1", "e1") is None
    assert cache.size() == 0


def test_set_replaces_entry_and_resets_hit_count(clock):
    cache = EventSpecCache(clock=clock)
    first, second = make_spec(base_event_id="a"), make_spec(base_event_id="b")
    cache.set("k1", "s1", "e1", first)
    cache.get("k1", "s1", "e1")

    cache.set("k1", "s1", "e1", second)

    assert cache.get("k1", "s1", "e1") is second
    assert cache.get_stats()["entries"][0]["event_count"] == 1


def test_global_rotation_evicts_oldest_entry(clock):
    cache = EventSpecCache(clock=clock)
    cache.set("k1", "s1", "old", make_spec())
    clock.advance(1)
    cache.set("k1", "s1", "new", make_spec())

    for _ in range(MAX_EVENT_COUNT - 1):
        assert cache.get("k1", "s1", "new") is not None
    assert cache.global_event_count == MAX_EVENT_COUNT - 1
    assert cache.size() == 2

    assert cache.get("k1", "s1", "new") is not None

    assert cache.global_event_count == 0
    assert cache.size() == 1
    assert cache.get("k1", "s1", "old") is None


def test_hits_across_keys_count_towards_rotation(clock):
    cache = EventSpecCache(clock=clock)
    for name in ("e1", "e2", "e3"):
        cache.set("k1", "s1", name, make_spec())
        clock.advance(1)

    for i in range(MAX_EVENT_COUNT):
        cache.get("k1", "s1", ("e2", "e3")[i % 2])

    assert cache.global_event_count == 0
    assert cache.get("k1", "s1", "e1") is None
    assert cache.size() == 2


def test_single_entry_is_returned_on_fiftieth_hit_then_evicted(clock):
    cache = EventSpecCache(clock=clock)
    spec = make_spec()
    cache.set("k1", "s1", "e1", spec)

    results = [cache.get("k1", "s1", "e1") for _ in range(MAX_EVENT_COUNT)]

    assert all(result is spec for result in results)
    assert cache.size() == 0
    assert cache.get("k1", "s1", "e1") is None


def test_expired_entry_is_removed_without_counting(clock):
    cache = EventSpecCache(clock=clock)
    cache.set("k1", "s1", "e1", make_spec())
    clock.advance(TTL_SECONDS + 1)

    assert cache.get("k1", "s1", "e1") is None
    assert cache.global_event_count == 0


def test_key_does_not_include_branch(clock):
    cache = EventSpecCache(clock=clock)
    main_spec = make_spec()
    feature_spec = make_spec()
    feature_spec.metadata.branch_id = "feature"

    cache.set("k1", "s1", "e1", main_spec)
    cache.set("k1", "s1", "e1", feature_spec)

    assert cache.size() == 1
    assert cache.get("k1", "s1", "e1").metadata.branch_id == "feature"


def test_clear_and_stats(clock):
    cache = EventSpecCache(clock=clock)
    cache.set("k1", "s1", "e1", make_spec())
    clock.advance(10)
    cache.get("k1", "s1", "e1")

    stats = cache.get_stats()
    assert stats["size"] == 1
    assert stats["global_event_count"] == 1
    assert stats["entries"] == [{"key": "k1:s1:e1", "age": 10, "event_count": 1}]

    cache.clear()
    assert cache.size() == 0
    assert cache.global_event_count == 0
