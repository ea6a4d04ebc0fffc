"""Array encoding settings and the array builder they produce."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Sequence

from .builder import DEFAULT_BYTES_CODEC, ArrayBuilder, sharding_codec
from .codecs import CodecKind, parse_codec, parse_codec_list, parse_data_type
from .fill_value import fill_value_from_metadata


@dataclass
class ZarrEncodingArgs:
    """How a new array is to be encoded.

    A zero in ``chunk_shape`` or ``shard_shape`` means the full array size along that
    dimension. Codecs and attributes are given as JSON text. A shard shape selects the
    sharding codec, with the given codecs applied to the inner chunks.
    """

    fill_value: Any
    chunk_shape: list[int]
    separator: str = "/"
    shard_shape: list[int] | None = None
    array_to_array_codecs: str | None = None
    array_to_bytes_codec: str | None = None
    bytes_to_bytes_codecs: str | None = None
    attributes: str | None = None


def _next_multiple_of(value: int, factor: int) -> int:
    if factor == 0:
        raise ValueError("chunk shape must not be zero along a dimension")
    return -(-value // factor) * factor


def _parse_attributes(text: str) -> dict[str, Any]:
    try:
        attributes = json.loads(text)
    except json.JSONDecodeError as err:
        raise ValueError("Attributes are invalid.") from err
    if not isinstance(attributes, dict):
        raise ValueError("Attributes are invalid.")
    return attributes


def get_array_builder(
    encoding_args: ZarrEncodingArgs,
    array_shape: Sequence[int],
    data_type: str,
    dimension_names: Sequence[str | None] | None,
) -> ArrayBuilder:
    """Return a builder for an array of ``array_shape`` and ``data_type`` encoded as requested."""
    array_shape = [int(a) for a in array_shape]

    chunk_shape = [a if c == 0 else c for c, a in zip(encoding_args.chunk_shape, array_shape)]
    shard_shape = None
    if encoding_args.shard_shape is not None:
        clamped = [a if s == 0 else min(s, a) for s, a in zip(encoding_args.shard_shape, array_shape)]
        shard_shape = [_next_multiple_of(s, c) for s, c in zip(clamped, chunk_shape)]
    block_shape = shard_shape if shard_shape is not None else chunk_shape

    array_to_array = (
        parse_codec_list(encoding_args.array_to_array_codecs, CodecKind.ARRAY_TO_ARRAY)
        if encoding_args.array_to_array_codecs is not None
        else []
    )
    array_to_bytes = (
        parse_codec(encoding_args.array_to_bytes_codec, CodecKind.ARRAY_TO_BYTES)
        if encoding_args.array_to_bytes_codec is not None
        else dict(DEFAULT_BYTES_CODEC, configuration=dict(DEFAULT_BYTES_CODEC["configuration"]))
    )
    bytes_to_bytes = (
        parse_codec_list(encoding_args.bytes_to_bytes_codecs, CodecKind.BYTES_TO_BYTES)
        if encoding_args.bytes_to_bytes_codecs is not None
        else []
    )

    data_type = parse_data_type(data_type)
    fill_value = fill_value_from_metadata(data_type, encoding_args.fill_value)
    attributes = _parse_attributes(encoding_args.attributes) if encoding_args.attributes is not None else {}

    if shard_shape is not None:
        array_to_bytes = sharding_codec(chunk_shape, [*array_to_array, array_to_bytes, *bytes_to_bytes])
        array_to_array, bytes_to_bytes = [], []

    return ArrayBuilder(
        shape=array_shape,
        data_type=data_type,
        chunk_shape=list(block_shape),
        fill_value=fill_value,
        dimension_names=list(dimension_names) if dimension_names is not None else None,
        attributes=attributes,
        separator=encoding_args.separator,
        array_to_array_codecs=array_to_array,
        array_to_bytes_codec=array_to_bytes,
        bytes_to_bytes_codecs=bytes_to_bytes,
    )