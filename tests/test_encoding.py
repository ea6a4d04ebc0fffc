import json

import pytest

from zarr_tools.builder import DEFAULT_BYTES_CODEC, SHARDING_INDEX_CODECS
from zarr_tools.codecs import CodecError
from zarr_tools.encoding import ZarrEncodingArgs, get_array_builder


def _metadata(args, shape=(100, 50), data_type="uint16", dimension_names=None):
    return get_array_builder(args, list(shape), data_type, dimension_names).to_metadata()


def test_default_encoding():
    metadata = _metadata(ZarrEncodingArgs(fill_value=0, chunk_shape=[10, 0]))
    assert metadata["shape"] == [100, 50]
    assert metadata["data_type"] == "uint16"
    assert metadata["chunk_grid"]["configuration"]["chunk_shape"] == [10, 50]
    assert metadata["codecs"] == [DEFAULT_BYTES_CODEC]
    assert metadata["fill_value"] == 0
    assert metadata["chunk_key_encoding"]["configuration"]["separator"] == "/"
    assert "attributes" not in metadata


def test_chunk_shape_may_exceed_array_shape_without_sharding():
    metadata = _metadata(ZarrEncodingArgs(fill_value=0, chunk_shape=[200, 5]))
    assert metadata["chunk_grid"]["configuration"]["chunk_shape"] == [200, 5]


def test_shard_shape_is_clamped_and_a_multiple_of_chunk_shape():
    args = ZarrEncodingArgs(fill_value=0, chunk_shape=[32, 0], shard_shape=[0, 0])
    metadata = _metadata(args)
    grid = metadata["chunk_grid"]["configuration"]["chunk_shape"]
    sharding = metadata["codecs"][0]["configuration"]
    assert grid == [128, 50]
    assert sharding["chunk_shape"] == [32, 50]
    assert all(g % c == 0 and g >= a for g, c, a in zip(grid, sharding["chunk_shape"], [100, 50]))


def test_shard_shape_smaller_than_array():
    args = ZarrEncodingArgs(fill_value=0, chunk_shape=[10, 10], shard_shape=[40, 1000])
    metadata = _metadata(args)
    assert metadata["chunk_grid"]["configuration"]["chunk_shape"] == [40, 50]


def test_sharding_wraps_given_codecs():
    args = ZarrEncodingArgs(
        fill_value=0,
        chunk_shape=[10, 10],
        shard_shape=[20, 20],
        array_to_array_codecs='[{"name": "transpose", "configuration": {"order": [1, 0]}}]',
        bytes_to_bytes_codecs='[{"name": "gzip", "configuration": {"level": 9}}]',
    )
    codecs = _metadata(args)["codecs"]
    assert [c["name"] for c in codecs] == ["sharding_indexed"]
    configuration = codecs[0]["configuration"]
    assert [c["name"] for c in configuration["codecs"]] == ["transpose", "bytes", "gzip"]
    assert configuration["index_codecs"] == list(SHARDING_INDEX_CODECS)
    assert configuration["index_location"] == "end"


def test_explicit_codecs_without_sharding():
    args = ZarrEncodingArgs(
        fill_value=0,
        chunk_shape=[10, 10],
        array_to_bytes_codec='{"name": "bytes", "configuration": {"endian": "big"}}',
        bytes_to_bytes_codecs='[{"name": "crc32c"}]',
    )
    codecs = _metadata(args)["codecs"]
    assert codecs == [{"name": "bytes", "configuration": {"endian": "big"}}, {"name": "crc32c"}]


@pytest.mark.parametrize(
    "field, text",
    [
        ("array_to_array_codecs", '[{"name": "gzip"}]'),
        ("array_to_bytes_codec", '{"name": "transpose"}'),
        ("bytes_to_bytes_codecs", '[{"name": "bytes"}]'),
        ("bytes_to_bytes_codecs", "[{"),
    ],
)
def test_misplaced_or_malformed_codecs_raise(field, text):
    args = ZarrEncodingArgs(fill_value=0, chunk_shape=[10, 10], **{field: text})
    with pytest.raises(CodecError):
        _metadata(args)


def test_attributes_and_dimension_names():
    attributes = {"units": "m", "scale": [1, 2]}
    args = ZarrEncodingArgs(fill_value=0, chunk_shape=[10, 10], attributes=json.dumps(attributes))
    metadata = _metadata(args, dimension_names=["y", "x"])
    assert metadata["attributes"] == attributes
    assert metadata["dimension_names"] == ["y", "x"]


@pytest.mark.parametrize("text", ["not json", "[1, 2]"])
def test_invalid_attributes_raise(text):
    args = ZarrEncodingArgs(fill_value=0, chunk_shape=[10, 10], attributes=text)
    with pytest.raises(ValueError, match="Attributes are invalid"):
        _metadata(args)


def test_dot_separator():
    metadata = _metadata(ZarrEncodingArgs(fill_value=0, chunk_shape=[10, 10], separator="."))
    assert metadata["chunk_key_encoding"]["configuration"]["separator"] == "."


def test_invalid_separator_raises():
    with pytest.raises(ValueError):
        _metadata(ZarrEncodingArgs(fill_value=0, chunk_shape=[10, 10], separator="-"))


def test_fill_value_must_match_data_type():
    with pytest.raises(ValueError):
        _metadata(ZarrEncodingArgs(fill_value=-100, chunk_shape=[10, 10]), data_type="uint8")


def test_float_fill_value():
    metadata = _metadata(ZarrEncodingArgs(fill_value="NaN", chunk_shape=[10, 10]), data_type="float32")
    assert metadata["fill_value"] == "NaN"


def test_unknown_data_type_raises():
    with pytest.raises(ValueError):
        _metadata(ZarrEncodingArgs(fill_value=0, chunk_shape=[10, 10]), data_type="int7")


def test_zero_sized_dimension_cannot_be_sharded():
    args = ZarrEncodingArgs(fill_value=0, chunk_shape=[0, 10], shard_shape=[0, 10])
    with pytest.raises(ValueError):
        _metadata(args, shape=(0, 50))