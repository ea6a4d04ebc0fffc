import threading

import numpy as np
import pytest

from zarr_tools.reencode import (
    CacheSize,
    CacheUnit,
    calculate_chunk_and_codec_concurrency,
    do_reencode,
)


class MemoryArray:
    def __init__(self, data, chunk_shape, *, is_sharded=False):
        self.data = data
        self.shape = data.shape
        self.chunk_shape = tuple(chunk_shape)
        self.is_sharded = is_sharded
        self.data_type = str(data.dtype)
        self.chunk_reads = 0
        self.subset_reads = 0
        self.chunk_writes = 0
        self.subset_writes = 0
        self._lock = threading.Lock()

    def _subset(self, indices):
        return tuple(
            slice(i * c, min((i + 1) * c, s)) for i, c, s in zip(indices, self.chunk_shape, self.shape)
        )

    def retrieve_chunk(self, chunk_indices):
        with self._lock:
            self.chunk_reads += 1
        return self.data[self._subset(chunk_indices)].copy()

    def retrieve_array_subset(self, subset):
        with self._lock:
            self.subset_reads += 1
        return self.data[subset].copy()

    def store_chunk(self, chunk_indices, data):
        with self._lock:
            self.chunk_writes += 1
        self.data[self._subset(chunk_indices)] = data

    def store_array_subset(self, subset, data):
        with self._lock:
            self.subset_writes += 1
        self.data[subset] = data


class CorruptingArray(MemoryArray):
    def retrieve_chunk(self, chunk_indices):
        return np.zeros_like(super().retrieve_chunk(chunk_indices))


def source(shape=(6, 5), chunk_shape=(4, 4)):
    data = (np.arange(np.prod(shape), dtype=np.int32) + 1).reshape(shape)
    return MemoryArray(data, chunk_shape)


def target(shape=(6, 5), chunk_shape=(2, 3), **kwargs):
    return MemoryArray(np.zeros(shape, dtype=np.int32), chunk_shape, **kwargs)


def test_copies_all_data():
    array_in, array_out = source(), target()
    result = do_reencode(array_in, array_out)
    np.testing.assert_array_equal(array_out.data, array_in.data)
    assert result.bytes_decoded == array_in.data.nbytes


def test_progress_reports_every_step():
    seen = []
    array_out = target()
    do_reencode(source(), array_out, progress_callback=seen.append, concurrent_chunks=1)
    assert seen[0].step == 0
    assert seen[-1].step == seen[-1].num_steps == len(seen) - 1
    assert seen[-1].num_steps == array_out.chunk_writes


def test_durations_are_consistent():
    result = do_reencode(source(), target())
    assert result.duration >= 0
    assert result.duration_read + result.duration_write == pytest.approx(result.duration)


def test_validate_passes_for_faithful_output():
    array_in, array_out = source(), target()
    do_reencode(array_in, array_out, validate=True)
    np.testing.assert_array_equal(array_out.data, array_in.data)


def test_validate_detects_bad_output():
    array_out = CorruptingArray(np.zeros((6, 5), dtype=np.int32), (2, 3))
    with pytest.raises(RuntimeError, match="validation failed"):
        do_reencode(source(), array_out, validate=True, concurrent_chunks=1)


def test_write_shape_on_sharded_output():
    seen = []
    array_in = source()
    array_out = target(chunk_shape=(6, 5), is_sharded=True)
    do_reencode(array_in, array_out, write_shape=[2, 2], progress_callback=seen.append)
    np.testing.assert_array_equal(array_out.data, array_in.data)
    assert array_out.chunk_writes == 0
    assert array_out.subset_writes == seen[-1].num_steps


def test_write_shape_ignored_when_not_sharded():
    array_in, array_out = source(), target()
    do_reencode(array_in, array_out, write_shape=[1, 1])
    assert array_out.subset_writes == 0
    np.testing.assert_array_equal(array_out.data, array_in.data)


def test_write_shape_dimensionality_checked():
    with pytest.raises(ValueError, match="dimensionality"):
        do_reencode(source(), target(is_sharded=True), write_shape=[2])


def test_data_type_mismatch_raises():
    array_out = MemoryArray(np.zeros((6, 5), dtype=np.float64), (2, 3))
    with pytest.raises(ValueError, match="data type conversion"):
        do_reencode(source(), array_out)


@pytest.mark.parametrize(
    "cache_size",
    [
        CacheSize.size_total(1 << 20),
        CacheSize.size_per_thread(1 << 20),
        CacheSize.chunks_total(2),
        CacheSize.chunks_per_thread(2),
    ],
)
def test_cached_reads_copy_all_data(cache_size):
    array_in, array_out = source(), target()
    do_reencode(array_in, array_out, cache_size=cache_size)
    np.testing.assert_array_equal(array_out.data, array_in.data)
    assert array_in.subset_reads == 0


def test_cache_reuses_input_chunks():
    array_in = source(shape=(4, 4), chunk_shape=(4, 4))
    array_out = target(shape=(4, 4), chunk_shape=(2, 2))
    do_reencode(array_in, array_out, concurrent_chunks=1, cache_size=CacheSize.chunks_total(1))
    assert array_in.chunk_reads == 1
    np.testing.assert_array_equal(array_out.data, array_in.data)


def test_empty_cache_reads_every_time():
    array_in = source(shape=(4, 4), chunk_shape=(4, 4))
    array_out = target(shape=(4, 4), chunk_shape=(2, 2))
    do_reencode(array_in, array_out, concurrent_chunks=1, cache_size=CacheSize.chunks_total(0))
    assert array_in.chunk_reads == array_out.chunk_writes


def test_no_cache_reads_subsets():
    array_in, array_out = source(), target()
    do_reencode(array_in, array_out)
    assert array_in.subset_reads == array_out.chunk_writes
    assert array_in.chunk_reads == 0


def test_cache_size_rejects_negative():
    with pytest.raises(ValueError):
        CacheSize(-1, CacheUnit.BYTES)


def test_cache_size_constructors():
    assert CacheSize.chunks_per_thread(3) == CacheSize(3, CacheUnit.CHUNKS, per_thread=True)
    assert CacheSize.size_total(5) == CacheSize(5, CacheUnit.BYTES, per_thread=False)


@pytest.mark.parametrize("concurrent_chunks", [1, 3, 10, 30])
def test_explicit_chunk_concurrency_is_capped(concurrent_chunks):
    outer, inner = calculate_chunk_and_codec_concurrency(8, concurrent_chunks, (1, 1), 10)
    assert outer == min(10, concurrent_chunks)
    assert inner == 1


def test_codec_concurrency_fills_target():
    outer, inner = calculate_chunk_and_codec_concurrency(8, 2, (1, 100), 10)
    assert outer == 2
    assert outer * inner >= 8
    assert inner <= 100


def test_default_chunk_concurrency_fills_target():
    outer, inner = calculate_chunk_and_codec_concurrency(8, None, (1, 1), 100)
    assert outer * inner >= 8
    assert inner == 1


def test_invalid_codec_concurrency_raises():
    with pytest.raises(ValueError):
        calculate_chunk_and_codec_concurrency(8, None, (4, 2), 10)