"""
Transient buffers - AI Module
Scoped ownership of the encoding buffers built for a single fit call.

    with pool.scope() as scope:
        xs = scope.stack(features)
        ys = scope.one_hot(indices, num_classes)
        model.fit(xs.array, ys.array, ...)
    # every buffer allocated in the scope is disposed here, on any exit path

pool.num_live is the leak counter (0 whenever no fit is in flight).
"""

import threading
from contextlib import contextmanager
from typing import Iterator, List

import numpy as np


class TransientBuffer:

    def __init__(self, pool: "BufferPool", name: str, array: np.ndarray):
        self._pool = pool
        self.name = name
        self._array = array

    @property
    def array(self) -> np.ndarray:
        if self._array is None:
            raise RuntimeError(f"Buffer '{self.name}' used after dispose")
        return self._array

    @property
    def disposed(self) -> bool:
        return self._array is None

    @property
    def nbytes(self) -> int:
        return 0 if self._array is None else int(self._array.nbytes)

    def dispose(self):
        if self._array is None:
            return
        self._array = None
        self._pool._release(self)


class BufferScope:

    def __init__(self, pool: "BufferPool"):
        self.pool = pool
        self.buffers: List[TransientBuffer] = []

    def allocate(self, name: str, array: np.ndarray) -> TransientBuffer:
        buf = self.pool.allocate(name, array)
        self.buffers.append(buf)
        return buf

    def stack(self, features: np.ndarray, name: str = "features") -> TransientBuffer:
        """Stacked (N, d) float32 feature matrix."""
        return self.allocate(name, np.ascontiguousarray(np.asarray(features, dtype=np.float32)))

    def one_hot(self, indices: np.ndarray, num_classes: int, name: str = "one_hot") -> TransientBuffer:
        """(N, num_classes) one-hot label matrix. Raises ValueError on out-of-range indices."""
        indices = np.asarray(indices, dtype=np.int64)
        if indices.size and (indices.min() < 0 or indices.max() >= num_classes):
            raise ValueError(f"Label index out of range for {num_classes} classes")
        return self.allocate(name, np.eye(num_classes, dtype=np.float32)[indices])

    def dispose_all(self):
        for buf in self.buffers:
            buf.dispose()
        self.buffers.clear()


class BufferPool:

    def __init__(self):
        self._live = set()
        self._lock = threading.Lock()
        self.total_allocated = 0

    def allocate(self, name: str, array: np.ndarray) -> TransientBuffer:
        buf = TransientBuffer(self, name, array)
        with self._lock:
            self._live.add(buf)
            self.total_allocated += 1
        return buf

    def _release(self, buf: TransientBuffer):
        with self._lock:
            self._live.discard(buf)

    @property
    def num_live(self) -> int:
        with self._lock:
            return len(self._live)

    @contextmanager
    def scope(self) -> Iterator[BufferScope]:
        scope = BufferScope(self)
        try:
            yield scope
        finally:
            scope.dispose_all()
