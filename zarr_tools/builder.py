"""Construction of Zarr V3 array metadata."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Iterable

from .codecs import CodecError, CodecKind, codec_kind

SHARDING_CODEC_NAME = "sharding_indexed"
DEFAULT_BYTES_CODEC: dict[str, Any] = {"name": "bytes", "configuration": {"endian": "little"}}
SHARDING_INDEX_CODECS: tuple[dict[str, Any], ...] = (
    {"name": "bytes", "configuration": {"endian": "little"}},
    {"name": "crc32c"},
)
SEPARATORS = frozenset({".", "/"})


def _check_separator(separator: str) -> str:
    if separator not in SEPARATORS:
        raise ValueError(f"chunk key separator must be '.' or '/', got {separator!r}")
    return separator


def _check_chunk_shape(chunk_shape: Iterable[int], what: str) -> list[int]:
    shape = [int(s) for s in chunk_shape]
    if not shape or any(s <= 0 for s in shape):
        raise ValueError(f"{what} must be a non-empty list of positive sizes, got {shape}")
    return shape


def sharding_codec(chunk_shape: Iterable[int], inner_codecs: Iterable[dict[str, Any]]) -> dict[str, Any]:
    """Return sharding codec metadata with a crc32c-checked index at the end of each shard."""
    return {
        "name": SHARDING_CODEC_NAME,
        "configuration": {
            "chunk_shape": _check_chunk_shape(chunk_shape, "inner chunk shape"),
            "codecs": [copy.deepcopy(c) for c in inner_codecs],
            "index_codecs": copy.deepcopy(list(SHARDING_INDEX_CODECS)),
            "index_location": "end",
        },
    }


def split_codec_chain(
    codecs: Iterable[dict[str, Any]],
) -> tuple[list[dict[str, Any]], dict[str, Any], list[dict[str, Any]]]:
    """Split a codec list into its array-to-array, array-to-bytes and bytes-to-bytes parts."""
    array_to_array: list[dict[str, Any]] = []
    array_to_bytes: dict[str, Any] | None = None
    bytes_to_bytes: list[dict[str, Any]] = []
    for codec in codecs:
        kind = codec_kind(codec["name"])
        if kind is CodecKind.ARRAY_TO_ARRAY:
            if array_to_bytes is not None:
                raise CodecError(f"array to array codec {codec['name']!r} after the array to bytes codec")
            array_to_array.append(copy.deepcopy(codec))
        elif kind is CodecKind.ARRAY_TO_BYTES:
            if array_to_bytes is not None:
                raise CodecError("codec chain has more than one array to bytes codec")
            array_to_bytes = copy.deepcopy(codec)
        else:
            if array_to_bytes is None:
                raise CodecError(f"bytes to bytes codec {codec['name']!r} before the array to bytes codec")
            bytes_to_bytes.append(copy.deepcopy(codec))
    if array_to_bytes is None:
        raise CodecError("codec chain has no array to bytes codec")
    return array_to_array, array_to_bytes, bytes_to_bytes


@dataclass
class ArrayBuilder:
    """The settings of a Zarr V3 array with a regular chunk grid."""

    shape: list[int]
    data_type: str
    chunk_shape: list[int]
    fill_value: Any
    dimension_names: list[str | None] | None = None
    attributes: dict[str, Any] = field(default_factory=dict)
    separator: str = "/"
    array_to_array_codecs: list[dict[str, Any]] = field(default_factory=list)
    array_to_bytes_codec: dict[str, Any] = field(default_factory=lambda: copy.deepcopy(DEFAULT_BYTES_CODEC))
    bytes_to_bytes_codecs: list[dict[str, Any]] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.shape = [int(s) for s in self.shape]
        self.chunk_shape = [int(s) for s in self.chunk_shape]
        if self.dimension_names is not None:
            self.dimension_names = list(self.dimension_names)
        self._validate()

    def _validate(self) -> None:
        if any(s < 0 for s in self.shape):
            raise ValueError(f"array shape must be non-negative, got {self.shape}")
        _check_chunk_shape(self.chunk_shape, "chunk grid shape")
        if len(self.chunk_shape) != len(self.shape):
            raise ValueError(
                f"chunk grid dimensionality {len(self.chunk_shape)} does not match array dimensionality {len(self.shape)}"
            )
        if self.dimension_names is not None and len(self.dimension_names) != len(self.shape):
            raise ValueError(
                f"{len(self.dimension_names)} dimension names given for an array of dimensionality {len(self.shape)}"
            )
        _check_separator(self.separator)

    @classmethod
    def from_metadata(cls, metadata: dict[str, Any]) -> ArrayBuilder:
        """Create a builder holding the settings of existing array metadata."""
        grid = metadata["chunk_grid"]
        if grid.get("name") != "regular":
            raise ValueError(f"unsupported chunk grid: {grid.get('name')!r}")
        encoding = metadata.get("chunk_key_encoding", {"name": "default"})
        if encoding.get("name") != "default":
            raise ValueError(f"unsupported chunk key encoding: {encoding.get('name')!r}")
        separator = encoding.get("configuration", {}).get("separator", "/")
        array_to_array, array_to_bytes, bytes_to_bytes = split_codec_chain(metadata["codecs"])
        return cls(
            shape=list(metadata["shape"]),
            data_type=metadata["data_type"],
            chunk_shape=list(grid["configuration"]["chunk_shape"]),
            fill_value=copy.deepcopy(metadata["fill_value"]),
            dimension_names=metadata.get("dimension_names"),
            attributes=copy.deepcopy(metadata.get("attributes", {})),
            separator=separator,
            array_to_array_codecs=array_to_array,
            array_to_bytes_codec=array_to_bytes,
            bytes_to_bytes_codecs=bytes_to_bytes,
        )

    @property
    def codecs(self) -> list[dict[str, Any]]:
        """The whole codec chain in order."""
        return [*self.array_to_array_codecs, self.array_to_bytes_codec, *self.bytes_to_bytes_codecs]

    @property
    def is_sharded(self) -> bool:
        return self.array_to_bytes_codec.get("name") == SHARDING_CODEC_NAME

    def set_separator(self, separator: str) -> None:
        """Set the chunk key separator, which must be '.' or '/'."""
        self.separator = _check_separator(separator)

    def to_metadata(self) -> dict[str, Any]:
        """Return the array metadata document."""
        self._validate()
        metadata: dict[str, Any] = {
            "zarr_format": 3,
            "node_type": "array",
            "shape": list(self.shape),
            "data_type": self.data_type,
            "chunk_grid": {"name": "regular", "configuration": {"chunk_shape": list(self.chunk_shape)}},
            "chunk_key_encoding": {"name": "default", "configuration": {"separator": self.separator}},
            "fill_value": copy.deepcopy(self.fill_value),
            "codecs": copy.deepcopy(self.codecs),
        }
        if self.attributes:
            metadata["attributes"] = copy.deepcopy(self.attributes)
        if self.dimension_names is not None:
            metadata["dimension_names"] = list(self.dimension_names)
        return metadata