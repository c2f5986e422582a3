"""Index entry store tests."""

import sqlite3
import threading
from datetime import UTC, datetime
from pathlib import Path

import pytest

from unisearch.search.errors import NotFoundError, StorageError, ValidationError
from unisearch.search.schemas import Projection
from unisearch.search.store import IndexStore

FIXED = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def frozen_store() -> IndexStore:
    """Store whose clock never moves."""
    index = IndexStore(":memory:", clock=lambda: FIXED)
    index.initialize()
    return index


def test_upsert_creates_entry(store: IndexStore) -> None:
    """A first upsert creates one entry with the projected fields."""
    entry = store.upsert("post", 1, {"title": "Hello", "body": "World"})

    assert entry.origin_type == "post"
    assert entry.origin_id == "1"
    assert entry.title == "Hello"
    assert entry.body == "World"
    assert store.count() == 1
    assert store.find(entry.id) == entry


def test_upsert_same_origin_updates_in_place(store: IndexStore) -> None:
    """A second upsert for the same origin keeps the id and changes the text."""
    first = store.upsert("post", 1, Projection(title="Hello", body="World"))
    second = store.upsert("post", "1", Projection(title="Hello2", body="World"))

    assert second.id == first.id
    assert second.title == "Hello2"
    assert second.body == "World"
    assert second.updated_at > first.updated_at
    assert store.count() == 1


def test_updated_at_advances_with_frozen_clock(frozen_store: IndexStore) -> None:
    """updated_at strictly advances even when the clock does not."""
    first = frozen_store.upsert("post", 1, {"title": "a", "body": ""})
    second = frozen_store.upsert("post", 1, {"title": "b", "body": ""})

    assert first.updated_at == FIXED
    assert second.updated_at > first.updated_at
    assert frozen_store.find(first.id).updated_at == second.updated_at


def test_unchanged_projection_is_noop(store: IndexStore) -> None:
    """Re-applying the same projection leaves the entry untouched."""
    first = store.upsert("post", 1, {"title": "Hello", "body": "World"})
    again = store.upsert("post", 1, {"title": " Hello ", "body": "World"})

    assert again == first
    assert store.find(first.id).updated_at == first.updated_at


def test_same_id_different_types_are_distinct(store: IndexStore) -> None:
    """Origin ids are namespaced by origin type."""
    post = store.upsert("post", 1, {"title": "p", "body": ""})
    person = store.upsert("person", 1, {"title": "q", "body": ""})

    assert post.id != person.id
    assert store.keys() == {("post", "1"), ("person", "1")}
    assert store.origin_types() == ["person", "post"]


@pytest.mark.parametrize(
    "projection",
    [
        {"title": None, "body": "x"},
        {"title": "x"},
        {"title": "x", "body": 42},
        "not a projection",
    ],
)
def test_upsert_rejects_malformed_projection(store: IndexStore, projection: object) -> None:
    """Malformed projections raise ValidationError and write nothing."""
    with pytest.raises(ValidationError):
        store.upsert("post", 1, projection)
    assert store.count() == 0


@pytest.mark.parametrize("origin_type,origin_id", [("", 1), ("post", ""), ("post", None)])
def test_upsert_rejects_blank_origin(
    store: IndexStore, origin_type: str, origin_id: object
) -> None:
    """Blank origin keys are rejected."""
    with pytest.raises(ValidationError):
        store.upsert(origin_type, origin_id, {"title": "t", "body": "b"})


def test_remove_is_idempotent(store: IndexStore) -> None:
    """Removing twice reports False the second time and never raises."""
    store.upsert("post", 1, {"title": "Hello", "body": "World"})

    assert store.remove("post", 1) is True
    assert store.remove("post", 1) is False
    assert store.find_by_origin("post", 1) is None


def test_find_missing_raises_not_found(store: IndexStore) -> None:
    """find on an unknown id raises NotFoundError."""
    with pytest.raises(NotFoundError) as exc_info:
        store.find(999)
    assert exc_info.value.entry_id == 999


def test_search_is_case_insensitive_substring(store: IndexStore) -> None:
    """Keywords match substrings of title or body regardless of case."""
    store.upsert("post", 1, {"title": "Learning RAILS", "body": ""})
    store.upsert("post", 2, {"title": "Other", "body": "nothing here"})

    entries, total = store.search("rails")
    assert total == 1
    assert entries[0].origin_id == "1"

    entries, total = store.search("AIL")
    assert total == 1


def test_search_requires_every_keyword(store: IndexStore) -> None:
    """Multi-word queries match only entries containing all keywords."""
    store.upsert("post", 1, {"title": "Rails guide", "body": "routing basics"})
    store.upsert("post", 2, {"title": "Rails news", "body": "release notes"})

    entries, total = store.search("rails routing")

    assert total == 1
    assert entries[0].origin_id == "1"


def test_search_matches_unicode_casefold(store: IndexStore) -> None:
    """Non-ASCII text is matched case-insensitively."""
    store.upsert("person", 7, {"title": "Jürgen STRASSE", "body": ""})

    _, total = store.search("jürgen")
    assert total == 1
    _, total = store.search("straße")
    assert total == 1


def test_search_orders_recent_first_with_id_tiebreak(frozen_store: IndexStore) -> None:
    """Equal timestamps fall back to descending id; updates move to the front."""
    a = frozen_store.upsert("post", 1, {"title": "topic a", "body": ""})
    b = frozen_store.upsert("post", 2, {"title": "topic b", "body": ""})
    c = frozen_store.upsert("post", 3, {"title": "topic c", "body": ""})

    entries, _ = frozen_store.search("topic")
    assert [e.id for e in entries] == [c.id, b.id, a.id]

    frozen_store.upsert("post", 1, {"title": "topic a2", "body": ""})
    entries, _ = frozen_store.search("topic")
    assert [e.id for e in entries] == [a.id, c.id, b.id]


def test_search_pagination_and_type_filter(store: IndexStore) -> None:
    """Limit, offset and origin type filter apply after matching."""
    for i in range(5):
        store.upsert("post", i, {"title": f"match {i}", "body": ""})
    store.upsert("person", 1, {"title": "match person", "body": ""})

    entries, total = store.search("match", limit=2, offset=1)
    assert total == 6
    assert len(entries) == 2

    entries, total = store.search("match", origin_type="person")
    assert total == 1
    assert entries[0].origin_type == "person"


def test_blank_query_matches_nothing(store: IndexStore) -> None:
    """Whitespace-only queries return no results."""
    store.upsert("post", 1, {"title": "anything", "body": ""})
    assert store.search("   ") == ([], 0)


def test_concurrent_upserts_converge_to_one_entry(store: IndexStore) -> None:
    """Parallel upserts for one origin never create duplicates."""
    errors: list[Exception] = []

    def worker(n: int) -> None:
        try:
            store.upsert("post", 1, {"title": f"t{n}", "body": ""})
        except Exception as e:  # noqa: BLE001
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert store.count() == 1


def test_uninitialized_store_raises_storage_error() -> None:
    """Using a store before initialize() surfaces StorageError."""
    index = IndexStore()
    with pytest.raises(StorageError):
        index.count()


def test_closed_store_is_not_ready(store: IndexStore) -> None:
    """ping reports False once the store is closed."""
    assert store.ping() is True
    store.close()
    assert store.ping() is False


def test_sqlite_failure_rolls_back(store: IndexStore) -> None:
    """A failing statement surfaces as StorageError with nothing applied."""
    store.upsert("post", 1, {"title": "kept", "body": ""})
    with store._locked("test") as conn:  # noqa: SLF001
        conn.execute(
            "CREATE TRIGGER block_updates BEFORE UPDATE ON index_entries "
            "BEGIN SELECT RAISE(ABORT, 'disk full'); END"
        )

    with pytest.raises(StorageError):
        store.upsert("post", 1, {"title": "lost", "body": ""})
    assert store.find_by_origin("post", 1).title == "kept"


def test_initialize_collapses_legacy_duplicates(tmp_path: Path) -> None:
    """Opening a database with duplicate origins keeps the newest entry."""
    path = tmp_path / "index.db"
    conn = sqlite3.connect(path)
    conn.execute(
        "CREATE TABLE index_entries (id INTEGER PRIMARY KEY AUTOINCREMENT, "
        "title TEXT NOT NULL, body TEXT NOT NULL, origin_type TEXT NOT NULL, "
        "origin_id TEXT NOT NULL, updated_at TEXT NOT NULL)"
    )
    rows = [
        ("old", "", "post", "1", "2026-01-01T00:00:00.000000+00:00"),
        ("new", "", "post", "1", "2026-01-02T00:00:00.000000+00:00"),
        ("other", "", "post", "2", "2026-01-01T00:00:00.000000+00:00"),
    ]
    conn.executemany(
        "INSERT INTO index_entries (title, body, origin_type, origin_id, updated_at) "
        "VALUES (?, ?, ?, ?, ?)",
        rows,
    )
    conn.commit()
    conn.close()

    index = IndexStore(str(path))
    violations = index.initialize()

    assert len(violations) == 1
    assert violations[0].kind == "duplicate"
    assert violations[0].origin_id == "1"
    assert index.count() == 2
    assert index.find_by_origin("post", 1).title == "new"

    with pytest.raises(StorageError):
        with index._locked("test") as locked, locked:  # noqa: SLF001
            locked.execute(
                "INSERT INTO index_entries "
                "(title, body, origin_type, origin_id, updated_at) "
                "VALUES ('dup', '', 'post', '2', '2026-01-03T00:00:00.000000+00:00')"
            )
    index.close()


def test_lock_wait_beyond_timeout_raises_storage_error() -> None:
    """An operation that cannot get the store within its timeout fails fast."""
    index = IndexStore(timeout=0.05)
    index.initialize()
    held = threading.Event()
    release = threading.Event()

    def hold_store() -> None:
        with index._lock:  # noqa: SLF001
            held.set()
            release.wait(timeout=5.0)

    holder = threading.Thread(target=hold_store)
    holder.start()
    try:
        assert held.wait(timeout=5.0)
        with pytest.raises(StorageError) as exc_info:
            index.upsert("post", 1, {"title": "blocked", "body": ""})
        assert exc_info.value.operation == "upsert"
    finally:
        release.set()
        holder.join()

    assert index.find_by_origin("post", 1) is None
    index.close()


def test_initialize_twice_keeps_open_connection(store: IndexStore) -> None:
    """A second initialize() is a no-op and keeps existing entries."""
    store.upsert("post", 1, {"title": "kept", "body": ""})

    assert store.initialize() == []
    assert store.count() == 1
