"""Sheet cache tests — invalidation-driven freshness with a TTL backstop."""

from sheetlink.services.sheet_cache import CacheState, SheetCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_set_then_get():
    cache = SheetCache()
    cache.set("42", {"rows": []}, version="3")
    assert cache.get("42") == {"rows": []}
    assert cache.status("42") is CacheState.VALID


def test_miss_on_unknown_sheet():
    assert SheetCache().get("nope") is None


def test_invalidate_marks_stale():
    cache = SheetCache()
    cache.set("42", {"rows": []})
    cache.invalidate("42")
    assert cache.get("42") is None
    assert cache.status("42") is CacheState.INVALIDATED


def test_invalidate_is_idempotent():
    cache = SheetCache()
    cache.set("42", {"rows": []})
    cache.invalidate("42")
    cache.invalidate("42")
    assert cache.status("42") is CacheState.INVALIDATED
    assert cache.stats() == {"size": 1, "valid": 0, "invalidated": 1}


def test_invalidate_absent_key_stays_absent():
    cache = SheetCache()
    cache.invalidate("ghost")
    assert cache.status("ghost") is None
    assert cache.stats()["size"] == 0


def test_set_after_invalidate_revalidates():
    cache = SheetCache()
    cache.set("42", {"v": 1})
    cache.invalidate("42")
    cache.set("42", {"v": 2})
    assert cache.get("42") == {"v": 2}


def test_ttl_expiry():
    clock = FakeClock()
    cache = SheetCache(ttl_seconds=10, clock=clock)
    cache.set("42", {"v": 1})
    clock.now += 5
    assert cache.get("42") == {"v": 1}
    clock.now += 6
    assert cache.get("42") is None
    assert cache.status("42") is CacheState.INVALIDATED


def test_zero_ttl_never_expires():
    clock = FakeClock()
    cache = SheetCache(ttl_seconds=0, clock=clock)
    cache.set("42", {"v": 1})
    clock.now += 10 ** 6
    assert cache.get("42") == {"v": 1}


def test_stale_fetch_not_stored_after_invalidation():
    """A snapshot fetched before an invalidation must not land in the cache."""
    cache = SheetCache()
    generation = cache.generation("42")
    cache.invalidate("42")  # webhook arrives mid-fetch
    assert cache.set("42", {"v": "old"}, generation=generation) is False
    assert cache.get("42") is None

    generation = cache.generation("42")
    assert cache.set("42", {"v": "new"}, generation=generation) is True
    assert cache.get("42") == {"v": "new"}


def test_invalidation_is_per_sheet():
    cache = SheetCache()
    cache.set("1", {"v": 1})
    cache.set("2", {"v": 2})
    cache.invalidate("1")
    assert cache.get("1") is None
    assert cache.get("2") == {"v": 2}


def test_clear():
    cache = SheetCache()
    cache.set("1", {})
    cache.clear()
    assert cache.stats()["size"] == 0
