"""Copying the data of one array into another with a different encoding."""

from __future__ import annotations

import functools
import itertools
import math
import os
import threading
import time
from collections import OrderedDict, deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Iterator, Protocol, Sequence

import numpy as np

from .progress import Progress, ProgressStats

CHUNK_CONCURRENT_MINIMUM = 4

Subset = tuple[slice, ...]


class SourceArray(Protocol):
    """An array that can be read. Chunks are exchanged clipped to the array bounds."""

    shape: Sequence[int]
    chunk_shape: Sequence[int]
    data_type: str

    def retrieve_chunk(self, chunk_indices: tuple[int, ...]) -> np.ndarray: ...

    def retrieve_array_subset(self, subset: Subset) -> np.ndarray: ...


class TargetArray(Protocol):
    """An array that can be written. ``chunk_shape`` is the shard shape when sharded."""

    shape: Sequence[int]
    chunk_shape: Sequence[int]
    data_type: str
    is_sharded: bool

    def store_chunk(self, chunk_indices: tuple[int, ...], data: np.ndarray) -> None: ...

    def retrieve_chunk(self, chunk_indices: tuple[int, ...]) -> np.ndarray: ...

    def store_array_subset(self, subset: Subset, data: np.ndarray) -> None: ...


class CacheUnit(Enum):
    BYTES = "bytes"
    CHUNKS = "chunks"


@dataclass(frozen=True)
class CacheSize:
    """The limit of the decoded chunk cache used while reading the input."""

    limit: int
    unit: CacheUnit
    per_thread: bool = False

    def __post_init__(self) -> None:
        if self.limit < 0:
            raise ValueError(f"cache limit must be non-negative, got {self.limit}")

    @classmethod
    def size_total(cls, size: int) -> CacheSize:
        return cls(size, CacheUnit.BYTES)

    @classmethod
    def size_per_thread(cls, size: int) -> CacheSize:
        return cls(size, CacheUnit.BYTES, per_thread=True)

    @classmethod
    def chunks_total(cls, chunks: int) -> CacheSize:
        return cls(chunks, CacheUnit.CHUNKS)

    @classmethod
    def chunks_per_thread(cls, chunks: int) -> CacheSize:
        return cls(chunks, CacheUnit.CHUNKS, per_thread=True)


@dataclass(frozen=True)
class ReencodeResult:
    """Timings in seconds and the number of decoded bytes of a re-encode."""

    duration: float
    duration_read: float
    duration_write: float
    bytes_decoded: int


class _Lru:
    def __init__(self, size: CacheSize) -> None:
        self._limit = size.limit
        self._by_bytes = size.unit is CacheUnit.BYTES
        self._entries: OrderedDict[tuple[int, ...], np.ndarray] = OrderedDict()
        self._total = 0
        self._lock = threading.Lock()

    def _weight(self, value: np.ndarray) -> int:
        return value.nbytes if self._by_bytes else 1

    def get(self, key: tuple[int, ...], load: Callable[[], np.ndarray]) -> np.ndarray:
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                return self._entries[key]
        value = load()
        with self._lock:
            if key not in self._entries:
                self._entries[key] = value
                self._total += self._weight(value)
                while self._entries and self._total > self._limit:
                    _, old = self._entries.popitem(last=False)
                    self._total -= self._weight(old)
        return value


class _ChunkCache:
    """Reads array subsets through an LRU cache of decoded input chunks."""

    def __init__(self, size: CacheSize) -> None:
        self._size = size
        self._shared = None if size.per_thread else _Lru(size)
        self._local = threading.local()

    def _lru(self) -> _Lru:
        if self._shared is not None:
            return self._shared
        lru = getattr(self._local, "lru", None)
        if lru is None:
            lru = self._local.lru = _Lru(self._size)
        return lru

    def retrieve(self, array: SourceArray, subset: Subset) -> np.ndarray:
        lru = self._lru()
        chunk_shape = tuple(int(c) for c in array.chunk_shape)
        ranges = [range(s.start // c, -(-s.stop // c)) for s, c in zip(subset, chunk_shape)]
        out_shape = tuple(s.stop - s.start for s in subset)
        out: np.ndarray | None = None
        for indices in itertools.product(*ranges):
            chunk = lru.get(indices, functools.partial(_load_chunk, array, indices))
            if out is None:
                out = np.empty(out_shape, dtype=chunk.dtype)
            origins = [i * c for i, c in zip(indices, chunk_shape)]
            bounds = [
                (max(s.start, o), min(s.stop, o + c)) for s, o, c in zip(subset, origins, chunk_shape)
            ]
            source = tuple(slice(lo - o, hi - o) for (lo, hi), o in zip(bounds, origins))
            target = tuple(slice(lo - s.start, hi - s.start) for (lo, hi), s in zip(bounds, subset))
            out[target] = chunk[source]
        if out is None:
            return np.asarray(array.retrieve_array_subset(subset))
        return out


def _load_chunk(array: SourceArray, indices: tuple[int, ...]) -> np.ndarray:
    return np.asarray(array.retrieve_chunk(indices))


def _grid_shape(shape: Sequence[int], chunk_shape: Sequence[int]) -> tuple[int, ...]:
    return tuple(-(-s // c) for s, c in zip(shape, chunk_shape))


def _chunk_subset(indices: Sequence[int], chunk_shape: Sequence[int], shape: Sequence[int]) -> Subset:
    return tuple(slice(i * c, min((i + 1) * c, s)) for i, c, s in zip(indices, chunk_shape, shape))


def _blocks(subset: Subset, block_shape: Sequence[int]) -> Iterator[Subset]:
    """Yield the parts of ``subset`` cut by a grid of ``block_shape`` anchored at the origin."""
    ranges = [range(s.start // b, -(-s.stop // b)) for s, b in zip(subset, block_shape)]
    for indices in itertools.product(*ranges):
        yield tuple(
            slice(max(s.start, i * b), min(s.stop, (i + 1) * b)) for s, i, b in zip(subset, indices, block_shape)
        )


def calculate_chunk_and_codec_concurrency(
    concurrent_target: int,
    concurrent_chunks: int | None,
    codec_concurrency: tuple[int, int],
    num_chunks: int,
) -> tuple[int, int]:
    """Split ``concurrent_target`` between chunks processed at once and codec work per chunk.

    ``codec_concurrency`` is the codecs' recommended (minimum, maximum) concurrency.
    Returns ``(chunk_limit, codec_limit)``.
    """
    inner_min, inner_max = (int(c) for c in codec_concurrency)
    if inner_min > inner_max:
        raise ValueError(f"invalid codec concurrency range {codec_concurrency}")
    inner_min, inner_max = max(inner_min, 1), max(inner_max, 1)
    if concurrent_chunks is not None:
        outer_min = outer_max = max(min(num_chunks, concurrent_chunks), 1)
    else:
        outer_min = max(min(num_chunks, CHUNK_CONCURRENT_MINIMUM), 1)
        outer_max = math.inf

    inner, outer = inner_min, outer_min
    if inner * outer < concurrent_target:
        inner = min(-(-concurrent_target // outer), inner_max)
    if inner * outer < concurrent_target:
        outer = int(min(-(-concurrent_target // inner), outer_max))
    return outer, inner


def _run(limit: int, items: Iterable[Any], task: Callable[[Any], None]) -> None:
    if limit <= 1:
        for item in items:
            task(item)
        return
    with ThreadPoolExecutor(max_workers=limit) as pool:
        futures = [pool.submit(task, item) for item in items]
        try:
            for future in futures:
                future.result()
        except BaseException:
            for future in futures:
                future.cancel()
            raise


def do_reencode(
    array_in: SourceArray,
    array_out: TargetArray,
    validate: bool = False,
    concurrent_chunks: int | None = None,
    progress_callback: Callable[[ProgressStats], None] | None = None,
    cache_size: CacheSize | None = None,
    write_shape: Sequence[int] | None = None,
) -> ReencodeResult:
    """Copy every chunk of ``array_out``'s grid from ``array_in`` into ``array_out``.

    With a sharded output and a ``write_shape``, each shard is written in blocks of that
    shape. ``validate`` reads every written chunk back and compares it with what was read.
    """
    out_shape = tuple(int(s) for s in array_out.shape)
    out_chunk_shape = tuple(int(c) for c in array_out.chunk_shape)
    if write_shape is not None:
        write_shape = tuple(int(w) for w in write_shape)
        if len(write_shape) != len(out_chunk_shape):
            raise ValueError("Write shape dimensionality does not match chunk grid dimensionality")
        if any(w <= 0 for w in write_shape):
            raise ValueError(f"write shape must be positive, got {list(write_shape)}")
    if array_in.data_type != array_out.data_type:
        raise ValueError(
            f"data type conversion from {array_in.data_type} to {array_out.data_type} is not supported"
        )

    start = time.perf_counter()
    cache = _ChunkCache(cache_size) if cache_size is not None else None
    chunk_indices = list(itertools.product(*(range(g) for g in _grid_shape(out_shape, out_chunk_shape))))

    chunk_limit, _ = calculate_chunk_and_codec_concurrency(
        os.cpu_count() or 1, concurrent_chunks, (1, 1), len(chunk_indices)
    )

    if not array_out.is_sharded:
        write_shape = None
    if write_shape is not None:
        num_iterations = sum(
            sum(1 for _ in _blocks(_chunk_subset(indices, out_chunk_shape, out_shape), write_shape))
            for indices in chunk_indices
        )
    else:
        num_iterations = len(chunk_indices)

    if progress_callback is None:
        # Without a caller-supplied callback, only the latest stats are retained.
        latest_stats: deque[ProgressStats] = deque(maxlen=1)
        progress_callback = latest_stats.append
    progress = Progress(num_iterations, progress_callback)
    decoded_lock = threading.Lock()
    bytes_decoded = 0

    def retrieve(subset: Subset) -> np.ndarray:
        if cache is not None:
            return cache.retrieve(array_in, subset)
        return np.asarray(array_in.retrieve_array_subset(subset))

    def count(data: np.ndarray) -> None:
        nonlocal bytes_decoded
        with decoded_lock:
            bytes_decoded += data.nbytes

    def reencode_chunk(indices: tuple[int, ...]) -> None:
        subset = _chunk_subset(indices, out_chunk_shape, out_shape)
        if write_shape is not None:
            for block in _blocks(subset, write_shape):
                data = progress.read(functools.partial(retrieve, block))
                count(data)
                progress.write(functools.partial(array_out.store_array_subset, block, data))
                progress.next()
            return
        data = progress.read(functools.partial(retrieve, subset))
        count(data)
        if validate:
            progress.write(functools.partial(array_out.store_chunk, indices, data.copy()))
            stored = np.asarray(array_out.retrieve_chunk(indices))
            if stored.shape != data.shape or stored.tobytes() != data.tobytes():
                raise RuntimeError(f"validation failed for chunk {list(indices)}")
        else:
            progress.write(functools.partial(array_out.store_chunk, indices, data))
        progress.next()

    _run(chunk_limit, chunk_indices, reencode_chunk)

    duration = time.perf_counter() - start
    stats = progress.stats()
    read_write = stats.read + stats.write
    if read_write > 0:
        duration_read = stats.read * duration / read_write
        duration_write = stats.write * duration / read_write
    else:
        duration_read = duration_write = 0.0
    return ReencodeResult(duration, duration_read, duration_write, bytes_decoded)