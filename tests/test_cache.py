"""Result cache tests."""
import pytest

from common_lib.cache import ResultCache


def test_round_trip_within_ttl(cache, clock):
    cache.set("x", {"v": 1})
    clock.advance(3599)
    assert cache.get("x") == {"v": 1}
    assert cache.has("x")


def test_expired_entry_reads_absent_but_stays_stored(cache, clock):
    cache.set("x", "value")
    clock.advance(3601)

    assert cache.get("x") is None
    assert not cache.has("x")
    assert cache.size() == 1

    cache.set("x", "fresh")
    assert cache.get("x") == "fresh"
    assert cache.size() == 1


def test_per_entry_ttl(cache, clock):
    cache.set("short", 1, ttl=900)
    cache.set("long", 2)
    clock.advance(901)
    assert cache.get("short") is None
    assert cache.get("long") == 2


def test_clear_and_stats(cache):
    cache.set("a", 1)
    cache.get("a")
    cache.get("missing")
    assert cache.stats()["hits"] == 1
    assert cache.stats()["misses"] == 1

    cache.clear()
    assert cache.size() == 0
    assert cache.get("a") is None


def test_rejects_non_positive_ttl():
    with pytest.raises(ValueError):
        ResultCache(ttl_seconds=0)


@pytest.mark.parametrize("ttl", [0, 0.0, -5])
def test_set_rejects_non_positive_entry_ttl(cache, ttl):
    with pytest.raises(ValueError):
        cache.set("x", 1, ttl=ttl)
    assert cache.size() == 0
