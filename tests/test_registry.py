"""Tests for the file-based name store."""

import json
import tempfile
import threading
from pathlib import Path

import pytest

from virt.registrar.errors import Conflict, StorageUnavailable
from virt.registry.models import NameRecord, SearchQuery, Tag
from virt.registry.store import NameStore


def _record(label: str = "myapp", tag: str = "vc", **overrides) -> NameRecord:
    return NameRecord(
        label=label,
        tag=tag,
        target=overrides.pop("target", "https://example.com"),
        secret_digest=overrides.pop("secret_digest", "pbkdf2_sha256$1$00$00"),
        **overrides,
    )


def test_insert_and_find():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = NameStore(tmpdir)
        store.insert(_record(title="My App"))

        found = store.find("myapp", "vc")
        assert found is not None
        assert found.tag is Tag.vc
        assert found.title == "My App"
        assert found.name == "myapp.vc"
        assert store.exists("myapp", "vc")
        assert not store.exists("myapp", "at")


def test_same_label_different_tags():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = NameStore(tmpdir)
        store.insert(_record(tag="vc"))
        store.insert(_record(tag="lit"))
        assert len(store) == 2


def test_insert_conflict():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = NameStore(tmpdir)
        store.insert(_record())
        with pytest.raises(Conflict):
            store.insert(_record(target="https://other.example"))
        assert store.find("myapp", "vc").target == "https://example.com"


def test_records_survive_reopen():
    with tempfile.TemporaryDirectory() as tmpdir:
        NameStore(tmpdir).insert(_record(keywords=["tools"]))
        reopened = NameStore(tmpdir)
        record = reopened.find("myapp", "vc")
        assert record is not None
        assert record.keywords == ["tools"]


def test_save_and_remove():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = NameStore(tmpdir)
        record = store.insert(_record())
        record.target = "https://changed.example"
        store.save(record)
        assert store.find("myapp", "vc").target == "https://changed.example"

        assert store.remove(record.id)
        assert store.find("myapp", "vc") is None
        assert not store.remove(record.id)


def test_find_returns_copies():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = NameStore(tmpdir)
        store.insert(_record())
        store.find("myapp", "vc").target = "https://not-saved.example"
        assert store.find("myapp", "vc").target == "https://example.com"


def test_corrupt_index_is_fatal():
    with tempfile.TemporaryDirectory() as tmpdir:
        (Path(tmpdir) / NameStore.INDEX_FILE).write_text("{not json")
        with pytest.raises(StorageUnavailable):
            NameStore(tmpdir)


def test_unusable_data_dir_is_fatal():
    with tempfile.TemporaryDirectory() as tmpdir:
        blocker = Path(tmpdir) / "file"
        blocker.write_text("")
        with pytest.raises(StorageUnavailable):
            NameStore(blocker / "registry")


def test_index_file_is_a_list():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = NameStore(tmpdir)
        store.insert(_record())
        data = json.loads(store.index_path.read_text())
        assert isinstance(data, list)
        assert data[0]["label"] == "myapp"


def test_concurrent_inserts_single_winner():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = NameStore(tmpdir)
        barrier = threading.Barrier(8)
        outcomes = []

        def _insert():
            barrier.wait()
            try:
                store.insert(_record())
                outcomes.append("ok")
            except Conflict:
                outcomes.append("conflict")

        threads = [threading.Thread(target=_insert) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("ok") == 1
        assert outcomes.count("conflict") == 7


def test_search_title_outranks_body():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = NameStore(tmpdir)
        store.insert(_record("bodysite", body_text="a page about gardening tips"))
        store.insert(_record("other", title="Cooking"))
        store.insert(_record("titlesite", title="Gardening"))

        results = store.search("gardening")
        assert [r.label for r in results] == ["titlesite", "bodysite"]


def test_search_weights():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = NameStore(tmpdir)
        store.insert(_record("body", body_text="rust"))
        store.insert(_record("desc", description="rust"))
        store.insert(_record("keyword", keywords=["rust"]))
        store.insert(_record("title", title="Rust"))

        assert [r.label for r in store.search("rust")] == ["title", "keyword", "desc", "body"]


def test_search_ties_keep_insertion_order():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = NameStore(tmpdir)
        for label in ("first", "second", "third"):
            store.insert(_record(label, title="Same Title"))
        assert [r.label for r in store.search("title")] == ["first", "second", "third"]


def test_search_limit_and_empty_query():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = NameStore(tmpdir)
        for i in range(25):
            store.insert(_record(f"site{i:02d}", title="blog"))
        assert len(store.search("blog")) == 20
        assert len(store.search(SearchQuery(text="blog", limit=5))) == 5
        assert store.search("   ") == []
        assert store.search("nomatch") == []


def _failing_writes(store: NameStore, monkeypatch) -> None:
    def _fail():
        raise OSError("disk full")

    monkeypatch.setattr(store, "_save_index", _fail)


def test_failed_save_keeps_previous_record(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        store = NameStore(tmpdir)
        record = store.insert(_record())
        _failing_writes(store, monkeypatch)

        record.target = "https://changed.example"
        with pytest.raises(OSError):
            store.save(record)
        assert store.find("myapp", "vc").target == "https://example.com"


def test_failed_remove_keeps_record_and_order(monkeypatch):
    with tempfile.TemporaryDirectory() as tmpdir:
        store = NameStore(tmpdir)
        first = store.insert(_record("first"))
        store.insert(_record("second"))
        _failing_writes(store, monkeypatch)

        with pytest.raises(OSError):
            store.remove(first.id)
        assert [r.label for r in store.list_all()] == ["first", "second"]


def test_transaction_locks_do_not_grow():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = NameStore(tmpdir)
        for i in range(500):
            with store.transaction(f"nobody{i}", "vc") as record:
                assert record is None
        assert len(store._record_locks) == NameStore.LOCK_STRIPES


def test_touch_defers_index_write():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = NameStore(tmpdir, access_flush_interval=3600)
        store.insert(_record(last_accessed="2020-01-01T00:00:00+00:00"))

        touched = store.touch("myapp", "vc")
        assert touched.last_accessed > "2020-01-01T00:00:00+00:00"
        assert store.find("myapp", "vc").last_accessed == touched.last_accessed
        on_disk = json.loads(store.index_path.read_text())[0]
        assert on_disk["last_accessed"] == "2020-01-01T00:00:00+00:00"

        store.flush()
        on_disk = json.loads(store.index_path.read_text())[0]
        assert on_disk["last_accessed"] == touched.last_accessed
        assert store.touch("missing", "vc") is None


def test_touch_flushes_when_interval_elapsed():
    with tempfile.TemporaryDirectory() as tmpdir:
        store = NameStore(tmpdir, access_flush_interval=0)
        store.insert(_record(last_accessed="2020-01-01T00:00:00+00:00"))
        touched = store.touch("myapp", "vc")
        assert NameStore(tmpdir).find("myapp", "vc").last_accessed == touched.last_accessed
