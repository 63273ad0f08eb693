import threading
import typing

from resumable_upload.coordination import CoordinationStore, MemoryCoordinationStore, RedisCoordinationStore


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_set_if_absent_only_first_caller_wins() -> None:
    store = MemoryCoordinationStore()
    assert store.set_if_absent("marker", "a", ttl_seconds=10) is True
    assert store.set_if_absent("marker", "b", ttl_seconds=10) is False
    assert store.get("marker") == "a"


def test_keys_expire_passively() -> None:
    clock = _Clock()
    store = MemoryCoordinationStore(clock=clock)
    store.set("k", "v", ttl_seconds=5)
    store.set_add("s", "1", ttl_seconds=5)

    clock.now += 4.9
    assert store.get("k") == "v"
    clock.now += 0.2
    assert store.get("k") is None
    assert store.set_members("s") == set()
    assert store.set_if_absent("k", "again", ttl_seconds=5) is True


def test_expire_refreshes_deadline() -> None:
    clock = _Clock()
    store = MemoryCoordinationStore(clock=clock)
    store.set("k", "v", ttl_seconds=5)
    clock.now += 4
    assert store.expire("k", 5) is True
    clock.now += 4
    assert store.exists("k")
    assert store.expire("missing", 5) is False


def test_set_add_returns_cardinality_and_ignores_duplicates() -> None:
    store = MemoryCoordinationStore()
    assert store.set_add("s", "1") == 1
    assert store.set_add("s", "1") == 1
    assert store.set_add("s", "0") == 2
    assert store.set_members("s") == {"0", "1"}


def test_concurrent_set_add_observes_each_cardinality_once() -> None:
    store = MemoryCoordinationStore()
    results: list[int] = []
    lock = threading.Lock()

    def _add(member: int) -> None:
        count = store.set_add("s", str(member), ttl_seconds=60)
        with lock:
            results.append(count)

    threads = [threading.Thread(target=_add, args=(i,)) for i in range(50)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(results) == list(range(1, 51))


def test_incr_and_delete() -> None:
    store = MemoryCoordinationStore()
    assert store.incr("n", ttl_seconds=60) == 1
    assert store.incr("n") == 2
    store.delete("n", "unknown")
    assert store.get("n") is None
    assert store.incr("n") == 1


def test_set_members_annotations_resolve_to_builtin_set() -> None:
    for cls in (CoordinationStore, MemoryCoordinationStore, RedisCoordinationStore):
        assert typing.get_type_hints(cls.set_members)["return"] == set[str]
