"""
Unit tests for the TTL cache and its key builder.
"""
from immodiag.ttl_cache import TTLCache, make_cache_key


def make_cache(clock, **kwargs):
    return TTLCache(clock=clock.now, **kwargs)


class TestExpiry:
    """Lazy expiry on read."""

    def test_get_within_ttl(self, clock):
        """A stored value is returned until the TTL passes."""
        cache = make_cache(clock, ttl=600)
        cache.set("k", {"v": 1})
        clock.advance(599)
        assert cache.get("k") == {"v": 1}

    def test_get_after_ttl_removes_entry(self, clock):
        """An expired read returns None and drops the entry."""
        cache = make_cache(clock, ttl=600)
        cache.set("k", "value")
        clock.advance(601)
        assert cache.get("k") is None
        assert "k" not in cache
        assert len(cache) == 0

    def test_missing_key(self, clock):
        """Unknown keys read as None."""
        assert make_cache(clock).get("nope") is None

    def test_overwrite_refreshes_timestamp(self, clock):
        """Setting an existing key restarts its lifetime."""
        cache = make_cache(clock, ttl=10)
        cache.set("k", 1)
        clock.advance(8)
        cache.set("k", 2)
        clock.advance(8)
        assert cache.get("k") == 2


class TestEviction:
    """Capacity bound."""

    def test_oldest_entry_is_evicted_first(self, clock):
        """Inserting past capacity drops the entry with the oldest timestamp."""
        cache = make_cache(clock, max_entries=3)
        for key in ("a", "b", "c"):
            cache.set(key, key)
            clock.advance(1)
        cache.set("d", "d")
        assert "a" not in cache
        assert all(k in cache for k in ("b", "c", "d"))

    def test_size_never_exceeds_capacity(self, clock):
        """The cache holds at most ``max_entries`` values."""
        cache = make_cache(clock, max_entries=5)
        for i in range(20):
            cache.set(f"k{i}", i)
            clock.advance(0.5)
            assert len(cache) <= 5

    def test_overwrite_at_capacity_does_not_evict(self, clock):
        """Replacing an existing key keeps the other entries."""
        cache = make_cache(clock, max_entries=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 3)
        assert cache.get("a") == 3
        assert cache.get("b") == 2


class TestCacheKey:
    """Key normalization."""

    def test_case_and_whitespace_insensitive(self):
        """Keys ignore case and surrounding spaces."""
        assert make_cache_key("summary", city=" Paris ") == make_cache_key("summary", city="paris")

    def test_field_order_does_not_matter(self):
        """GET params and POST bodies with the same fields share a key."""
        a = make_cache_key("summary", city="Lyon", postcode="69001")
        b = make_cache_key("summary", postcode="69001", city="Lyon")
        assert a == b == "summary|city=lyon|postcode=69001"

    def test_namespaces_are_distinct(self):
        """Different endpoints never collide."""
        assert make_cache_key("gpu", insee="75056") != make_cache_key("georisques", insee="75056")

    def test_none_is_blank(self):
        """Missing values read as empty strings."""
        assert make_cache_key("dvf", insee="75056", parcel_id=None) == "dvf|insee=75056|parcel_id="
