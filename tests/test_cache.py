"""TTL cache tests: expiry, pattern invalidation, key derivation and the decorator."""
from storefront.cache import TTLCache, cache_key, cached, store_cache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_get_returns_value_within_ttl():
    clock = FakeClock()
    c = TTLCache(clock=clock)
    c.set("products_all", [1, 2], ttl_minutes=5)
    clock.now += 299
    assert c.get("products_all") == [1, 2]


def test_expired_entry_is_dropped_on_read():
    clock = FakeClock()
    c = TTLCache(clock=clock)
    c.set("products_all", [1], ttl_minutes=1)
    clock.now += 61
    assert c.get("products_all") is None
    assert len(c) == 0


def test_missing_key_is_none():
    assert TTLCache().get("nope") is None


def test_invalidate_by_pattern_only_touches_matching_keys():
    c = TTLCache()
    c.set("products_load_products", 1)
    c.set("products_load_products_abc", 2)
    c.set("categories_load_categories", 3)
    assert c.invalidate_by_pattern("products") == 2
    assert c.keys() == ["categories_load_categories"]


def test_delete_and_clear():
    c = TTLCache()
    c.set("a", 1)
    c.set("b", 2)
    c.delete("a")
    c.delete("missing")
    assert c.keys() == ["b"]
    c.clear()
    assert len(c) == 0


def test_cache_key_without_params():
    assert cache_key("products", "load_products") == "products_load_products"


def test_cache_key_params_are_order_independent():
    a = cache_key("orders", "list", {"user": "x", "status": "pending"})
    b = cache_key("orders", "list", {"status": "pending", "user": "x"})
    assert a == b
    assert a.startswith("orders_list_")
    assert len(a) == len("orders_list_") + 20
    assert a != cache_key("orders", "list", {"user": "y", "status": "pending"})


def test_cached_decorator_reuses_result(app):
    calls = []

    @cached("widgets")
    def load_widgets(flag=False):
        calls.append(flag)
        return ["w"]

    with app.app_context():
        assert load_widgets() == ["w"]
        assert load_widgets() == ["w"]
        load_widgets(flag=True)
        assert calls == [False, True]
        store_cache.invalidate_by_pattern("widgets")
        load_widgets()
        assert calls == [False, True, False]


def test_cached_empty_result_is_still_cached(app):
    calls = []

    @cached("empties")
    def load_empty():
        calls.append(1)
        return []

    with app.app_context():
        load_empty()
        load_empty()
    assert calls == [1]


def test_expired_entries_can_be_deleted_and_invalidated():
    clock = FakeClock()
    c = TTLCache(clock=clock)
    c.set("products_a", 1, ttl_minutes=1)
    c.set("products_b", 2, ttl_minutes=10)
    clock.now += 120
    c.delete("products_a")
    assert c.invalidate_by_pattern("products") == 1
    assert c.keys() == []


def test_concurrent_readers_and_writers_do_not_raise():
    import threading

    c = TTLCache(maxsize=8)
    errors = []

    def worker(n):
        try:
            for i in range(300):
                key = f"products_{(n + i) % 20}"
                c.set(key, i, ttl_minutes=0.0001)
                c.get(key)
                if i % 7 == 0:
                    c.invalidate_by_pattern("products")
                len(c)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert errors == []
    assert len(c) <= 8
