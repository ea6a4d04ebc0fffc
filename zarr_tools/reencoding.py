"""Settings for re-encoding an existing array and the array builder they produce."""

from __future__ import annotations

import json
from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Sequence

from .builder import ArrayBuilder, sharding_codec, split_codec_chain
from .codecs import CodecKind, parse_codec, parse_codec_list, parse_data_type
from .fill_value import convert_fill_value, fill_value_from_metadata


class ZarrReEncodingChangeType(Enum):
    """How much of an array a set of re-encoding settings changes."""

    NONE = "none"
    METADATA = "metadata"
    METADATA_AND_CHUNKS = "metadata and chunks"


@dataclass
class ZarrReencodingArgs:
    """Overrides applied to an existing array's encoding.

    Every field left as ``None`` (or ``False``) keeps the input array's setting. A zero
    in ``chunk_shape`` or ``shard_shape`` means the full array size along that dimension.
    Codecs and attributes are given as JSON text.
    """

    data_type: str | None = None
    fill_value: Any = None
    separator: str | None = None
    chunk_shape: list[int] | None = None
    shard_shape: list[int] | None = None
    ignore_input_sharding: bool = False
    array_to_array_codecs: str | None = None
    array_to_bytes_codec: str | None = None
    bytes_to_bytes_codecs: str | None = None
    dimension_names: list[str] | None = None
    attributes: str | None = None
    attributes_append: str | None = None

    def change_type(self) -> ZarrReEncodingChangeType:
        """Return whether these settings touch nothing, only metadata, or the chunks too."""
        if (
            self.data_type is not None
            or self.fill_value is not None
            or self.separator is not None
            or self.chunk_shape is not None
            or self.shard_shape is not None
            or self.ignore_input_sharding
            or self.array_to_array_codecs is not None
            or self.array_to_bytes_codec is not None
            or self.bytes_to_bytes_codecs is not None
        ):
            return ZarrReEncodingChangeType.METADATA_AND_CHUNKS
        if self.dimension_names is not None or self.attributes is not None or self.attributes_append is not None:
            return ZarrReEncodingChangeType.METADATA
        return ZarrReEncodingChangeType.NONE

    def to_json(self) -> str:
        """Serialise the settings that are set, leaving out unset ones."""
        document: dict[str, Any] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if item.name == "ignore_input_sharding":
                if value:
                    document[item.name] = True
            elif value is not None:
                document[item.name] = value
        return json.dumps(document)


def _parse_object(text: str, message: str) -> dict[str, Any]:
    try:
        value = json.loads(text)
    except json.JSONDecodeError as err:
        raise ValueError(message) from err
    if not isinstance(value, dict):
        raise ValueError(message)
    return value


def _next_multiple_of(value: int, factor: int) -> int:
    if factor == 0:
        raise ValueError("chunk shape must not be zero along a dimension")
    return -(-value // factor) * factor


def get_array_builder_reencode(
    encoding_args: ZarrReencodingArgs,
    array_metadata: dict[str, Any],
    array_shape: Sequence[int] | None = None,
) -> ArrayBuilder:
    """Return a builder for the array described by ``array_metadata`` with the overrides applied.

    ``array_shape`` replaces the array shape when given.
    """
    builder = ArrayBuilder.from_metadata(array_metadata)
    input_shape = list(builder.shape)
    original_data_type = builder.data_type
    original_fill_value = builder.fill_value

    if builder.is_sharded:
        configuration = builder.array_to_bytes_codec["configuration"]
        chunk_shape = [int(c) for c in configuration["chunk_shape"]]
        shard_shape = None if encoding_args.ignore_input_sharding else list(builder.chunk_shape)
        array_to_array, array_to_bytes, bytes_to_bytes = split_codec_chain(configuration["codecs"])
    else:
        chunk_shape = list(builder.chunk_shape)
        shard_shape = None
        array_to_array = builder.array_to_array_codecs
        array_to_bytes = builder.array_to_bytes_codec
        bytes_to_bytes = builder.bytes_to_bytes_codecs

    if encoding_args.chunk_shape is not None:
        chunk_shape = [a if c == 0 else c for c, a in zip(encoding_args.chunk_shape, input_shape)]
    if encoding_args.shard_shape is not None:
        shard_shape = [a if s == 0 else min(s, a) for s, a in zip(encoding_args.shard_shape, input_shape)]
    if shard_shape is not None:
        shard_shape = [_next_multiple_of(s, c) for s, c in zip(shard_shape, chunk_shape)]

    if encoding_args.array_to_array_codecs is not None:
        array_to_array = parse_codec_list(encoding_args.array_to_array_codecs, CodecKind.ARRAY_TO_ARRAY)
    if encoding_args.array_to_bytes_codec is not None:
        array_to_bytes = parse_codec(encoding_args.array_to_bytes_codec, CodecKind.ARRAY_TO_BYTES)
    if encoding_args.bytes_to_bytes_codecs is not None:
        bytes_to_bytes = parse_codec_list(encoding_args.bytes_to_bytes_codecs, CodecKind.BYTES_TO_BYTES)

    if encoding_args.attributes is not None:
        builder.attributes = _parse_object(encoding_args.attributes, "Attributes are invalid.")
    if encoding_args.attributes_append is not None:
        builder.attributes.update(_parse_object(encoding_args.attributes_append, "Attributes append are invalid."))

    if encoding_args.separator is not None:
        builder.set_separator(encoding_args.separator)
    if array_shape is not None:
        builder.shape = [int(a) for a in array_shape]
    if encoding_args.data_type is not None:
        builder.data_type = parse_data_type(encoding_args.data_type)
    if encoding_args.dimension_names is not None:
        builder.dimension_names = list(encoding_args.dimension_names)

    if encoding_args.fill_value is not None:
        builder.fill_value = fill_value_from_metadata(builder.data_type, encoding_args.fill_value)
    elif encoding_args.data_type is not None:
        builder.fill_value = convert_fill_value(original_data_type, original_fill_value, builder.data_type)

    if shard_shape is not None:
        builder.chunk_shape = shard_shape
        builder.array_to_array_codecs = []
        builder.array_to_bytes_codec = sharding_codec(chunk_shape, [*array_to_array, array_to_bytes, *bytes_to_bytes])
        builder.bytes_to_bytes_codecs = []
    else:
        builder.chunk_shape = chunk_shape
        builder.array_to_array_codecs = list(array_to_array)
        builder.array_to_bytes_codec = array_to_bytes
        builder.bytes_to_bytes_codecs = list(bytes_to_bytes)

    return builder