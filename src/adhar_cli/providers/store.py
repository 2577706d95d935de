"""Cluster stores: where providers without a durable listing API keep their records.

The kind runtime cannot tell us which clusters adhar created, so the kind
provider keeps a map of cluster id -> Cluster in a ClusterStore. Two
implementations exist: FileClusterStore (a JSON document shared by every CLI
process on the machine) and MemoryClusterStore (tests, dry runs).

Every mutation is a read-modify-write inside `update()` under an exclusive
lock; `load()` takes a shared lock.
"""

from __future__ import annotations

import fcntl
import json
import os
import tempfile
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Protocol, TypeVar

from ..errors import StoreCorruptError
from ..models import Cluster
from ..shared.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

ClusterMap = dict[str, Cluster]


class ClusterStore(Protocol):
    """Persistence for cluster records keyed by id."""

    def load(self) -> ClusterMap:
        """Return every stored cluster; empty when nothing was ever saved."""
        ...

    def save(self, clusters: ClusterMap) -> None:
        """Replace the stored clusters."""
        ...

    def update(self, fn: Callable[[ClusterMap], T]) -> T:
        """Load, let `fn` mutate the map in place, then save - atomically.

        If `fn` raises, nothing is written and the error propagates.
        """
        ...


class ReadWriteLock:
    """Many readers or one writer, for threads of this process."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


# One lock per store file, shared by every FileClusterStore in the process
_LOCKS: dict[Path, ReadWriteLock] = {}
_LOCKS_GUARD = threading.Lock()


def _lock_for(path: Path) -> ReadWriteLock:
    with _LOCKS_GUARD:
        lock = _LOCKS.get(path)
        if lock is None:
            lock = _LOCKS[path] = ReadWriteLock()
        return lock


class FileClusterStore:
    """JSON-file store guarded by a process-wide RW lock plus an flock for other processes."""

    def __init__(self, path: str | Path):
        """Initialize store.

        Args:
            path: JSON document holding the cluster map
        """
        self.path = Path(path).expanduser().resolve()
        self._lock = _lock_for(self.path)
        self._lock_path = self.path.with_name(self.path.name + ".lock")

    @contextmanager
    def _file_lock(self, exclusive: bool) -> Iterator[None]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._lock_path, "a") as handle:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
            try:
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)

    def _read(self) -> ClusterMap:
        try:
            raw = self.path.read_text()
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise StoreCorruptError(path=str(self.path), reason=str(e)) from e

        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("top-level value is not an object")
            return {cluster_id: Cluster.from_dict(item) for cluster_id, item in data.items()}
        except (ValueError, KeyError, TypeError) as e:
            raise StoreCorruptError(path=str(self.path), reason=str(e)) from e

    def _write(self, clusters: ClusterMap) -> None:
        payload = {cluster_id: cluster.to_dict() for cluster_id, cluster in clusters.items()}
        fd, tmp_name = tempfile.mkstemp(prefix=self.path.name, dir=self.path.parent)
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(payload, f, indent=2, sort_keys=True)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def load(self) -> ClusterMap:
        with self._lock.read(), self._file_lock(exclusive=False):
            return self._read()

    def save(self, clusters: ClusterMap) -> None:
        with self._lock.write(), self._file_lock(exclusive=True):
            self._write(clusters)

    def update(self, fn: Callable[[ClusterMap], T]) -> T:
        with self._lock.write(), self._file_lock(exclusive=True):
            clusters = self._read()
            result = fn(clusters)
            self._write(clusters)
            logger.debug("cluster store updated", path=str(self.path), count=len(clusters))
            return result


class MemoryClusterStore:
    """In-process store; records are copied in and out so callers cannot alias them."""

    def __init__(self, clusters: ClusterMap | None = None):
        self._lock = ReadWriteLock()
        self._data: dict[str, dict] = {}
        if clusters:
            self.save(clusters)

    def load(self) -> ClusterMap:
        with self._lock.read():
            return {cluster_id: Cluster.from_dict(item) for cluster_id, item in self._data.items()}

    def save(self, clusters: ClusterMap) -> None:
        with self._lock.write():
            self._data = {cluster_id: cluster.to_dict() for cluster_id, cluster in clusters.items()}

    def update(self, fn: Callable[[ClusterMap], T]) -> T:
        with self._lock.write():
            clusters = {cid: Cluster.from_dict(item) for cid, item in self._data.items()}
            result = fn(clusters)
            self._data = {cid: cluster.to_dict() for cid, cluster in clusters.items()}
            return result
