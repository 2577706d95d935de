"""Unit tests for cluster stores."""

from __future__ import annotations

import json
from concurrent.futures import ThreadPoolExecutor

import pytest

from adhar_cli.errors import StoreCorruptError
from adhar_cli.models import Cluster, ClusterStatus
from adhar_cli.providers.store import FileClusterStore, MemoryClusterStore


def _cluster(name: str) -> Cluster:
    return Cluster(id=f"kind-{name}", name=name, provider="kind", status=ClusterStatus.RUNNING)


class TestFileClusterStore:
    """Tests for FileClusterStore."""

    def test_load_missing_file(self, tmp_path):
        """Test a missing file is an empty store."""
        assert FileClusterStore(tmp_path / "clusters.json").load() == {}

    def test_load_empty_file(self, tmp_path):
        """Test an empty file is an empty store."""
        path = tmp_path / "clusters.json"
        path.write_text("")
        assert FileClusterStore(path).load() == {}

    def test_save_and_load(self, tmp_path):
        """Test records persist as camelCase JSON keyed by id."""
        path = tmp_path / "clusters.json"
        store = FileClusterStore(path)
        store.save({"kind-a": _cluster("a")})

        data = json.loads(path.read_text())
        assert data["kind-a"]["provider"] == "kind"
        assert "createdAt" in data["kind-a"]
        assert store.load()["kind-a"].status is ClusterStatus.RUNNING

    def test_update(self, tmp_path):
        """Test update is read-modify-write and returns fn's result."""
        store = FileClusterStore(tmp_path / "clusters.json")
        store.save({"kind-a": _cluster("a")})

        def add(clusters):
            clusters["kind-b"] = _cluster("b")
            return len(clusters)

        assert store.update(add) == 2
        assert set(store.load()) == {"kind-a", "kind-b"}

    def test_update_failure_writes_nothing(self, tmp_path):
        """Test an exception in fn leaves the file untouched."""
        store = FileClusterStore(tmp_path / "clusters.json")
        store.save({"kind-a": _cluster("a")})

        def broken(clusters):
            clusters.clear()
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            store.update(broken)
        assert set(store.load()) == {"kind-a"}

    def test_corrupt_file(self, tmp_path):
        """Test unparseable content raises StoreCorruptError."""
        path = tmp_path / "clusters.json"
        path.write_text("{not json")
        with pytest.raises(StoreCorruptError, match="unreadable"):
            FileClusterStore(path).load()

    def test_wrong_shape(self, tmp_path):
        """Test a non-object document is corrupt."""
        path = tmp_path / "clusters.json"
        path.write_text("[]")
        with pytest.raises(StoreCorruptError):
            FileClusterStore(path).load()

    def test_concurrent_updates(self, tmp_path):
        """Test concurrent updates from separate store objects lose no writes."""
        path = tmp_path / "clusters.json"

        def add(index):
            def put(clusters):
                clusters[f"kind-c{index}"] = _cluster(f"c{index}")

            FileClusterStore(path).update(put)

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(add, range(20)))
        assert len(FileClusterStore(path).load()) == 20


class TestMemoryClusterStore:
    """Tests for MemoryClusterStore."""

    def test_records_are_copied(self):
        """Test callers cannot mutate stored records through returned objects."""
        store = MemoryClusterStore({"kind-a": _cluster("a")})
        loaded = store.load()
        loaded["kind-a"].status = ClusterStatus.ERROR
        assert store.load()["kind-a"].status is ClusterStatus.RUNNING

    def test_update(self):
        """Test update mutates and persists."""
        store = MemoryClusterStore()
        store.update(lambda clusters: clusters.setdefault("kind-a", _cluster("a")))
        assert list(store.load()) == ["kind-a"]
