"""Parsing of codec, data type and fill value metadata given as JSON text."""

from __future__ import annotations

import json
import re
from enum import Enum
from typing import Any


class CodecKind(Enum):
    """The stage of a codec chain a codec belongs to."""

    ARRAY_TO_ARRAY = "array to array"
    ARRAY_TO_BYTES = "array to bytes"
    BYTES_TO_BYTES = "bytes to bytes"


class CodecError(ValueError):
    """Raised for malformed, unknown or misplaced codec metadata."""


_A2A = CodecKind.ARRAY_TO_ARRAY
_A2B = CodecKind.ARRAY_TO_BYTES
_B2B = CodecKind.BYTES_TO_BYTES

_CODEC_KINDS: dict[str, CodecKind] = {
    "transpose": _A2A,
    "bitround": _A2A,
    "numcodecs.bitround": _A2A,
    "squeeze": _A2A,
    "fixedscaleoffset": _A2A,
    "numcodecs.fixedscaleoffset": _A2A,
    "bytes": _A2B,
    "sharding_indexed": _A2B,
    "pcodec": _A2B,
    "numcodecs.pcodec": _A2B,
    "zfp": _A2B,
    "zfpy": _A2B,
    "numcodecs.zfpy": _A2B,
    "packbits": _A2B,
    "vlen": _A2B,
    "vlen-utf8": _A2B,
    "vlen-bytes": _A2B,
    "vlen-array": _A2B,
    "blosc": _B2B,
    "bz2": _B2B,
    "numcodecs.bz2": _B2B,
    "crc32c": _B2B,
    "gzip": _B2B,
    "zlib": _B2B,
    "numcodecs.zlib": _B2B,
    "zstd": _B2B,
    "fletcher32": _B2B,
    "numcodecs.fletcher32": _B2B,
    "adler32": _B2B,
    "numcodecs.adler32": _B2B,
    "shuffle": _B2B,
    "numcodecs.shuffle": _B2B,
    "gdeflate": _B2B,
}

DATA_TYPES: frozenset[str] = frozenset(
    {
        "bool",
        "int8",
        "int16",
        "int32",
        "int64",
        "uint8",
        "uint16",
        "uint32",
        "uint64",
        "float16",
        "float32",
        "float64",
        "bfloat16",
        "complex64",
        "complex128",
    }
)

_RAW_BITS = re.compile(r"r([1-9][0-9]*)")
_METADATA_KEYS = frozenset({"name", "configuration", "must_understand"})


def codec_kind(name: str) -> CodecKind:
    """Return the chain stage of the codec called ``name``."""
    try:
        return _CODEC_KINDS[name]
    except KeyError:
        raise CodecError(f"unsupported codec: {name!r}") from None


def _normalise(value: Any) -> dict[str, Any]:
    if isinstance(value, str):
        return {"name": value}
    if not isinstance(value, dict):
        raise CodecError(f"codec metadata must be a name or an object, got {value!r}")
    name = value.get("name")
    if not isinstance(name, str):
        raise CodecError("codec metadata is missing a string 'name'")
    unknown = set(value) - _METADATA_KEYS
    if unknown:
        raise CodecError(f"unexpected keys in codec metadata: {sorted(unknown)}")
    result: dict[str, Any] = {"name": name}
    if "configuration" in value:
        configuration = value["configuration"]
        if not isinstance(configuration, dict):
            raise CodecError(f"configuration of codec {name!r} must be an object")
        result["configuration"] = dict(configuration)
    if "must_understand" in value:
        result["must_understand"] = value["must_understand"]
    return result


def _loads(text: str, what: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError as err:
        raise CodecError(f"invalid {what} JSON: {err}") from err


def parse_codec(metadata: str | dict[str, Any], expected_kind: CodecKind) -> dict[str, Any]:
    """Parse one codec's metadata and check it belongs to ``expected_kind``.

    ``metadata`` is either JSON text or an already decoded object.
    """
    value = _loads(metadata, "codec") if isinstance(metadata, str) else metadata
    codec = _normalise(value)
    kind = codec_kind(codec["name"])
    if kind is not expected_kind:
        raise CodecError(f"Must be an {expected_kind.value} codec, got {codec['name']!r}")
    return codec


def parse_codec_list(text: str, expected_kind: CodecKind) -> list[dict[str, Any]]:
    """Parse a JSON array of codec metadata, all of kind ``expected_kind``."""
    value = _loads(text, "codec list")
    if not isinstance(value, list):
        raise CodecError("codec list must be a JSON array")
    return [parse_codec(item, expected_kind) for item in value]


def parse_data_type(text: str) -> str:
    """Validate a data type name such as ``uint16`` or ``r24``."""
    if text in DATA_TYPES:
        return text
    raw = _RAW_BITS.fullmatch(text)
    if raw and int(raw.group(1)) % 8 == 0:
        return text
    raise ValueError(f"unsupported data type: {text!r}")


def _reject_constant(name: str) -> Any:
    raise ValueError(f"bare {name} is not valid JSON; quote it")


def parse_fill_value(text: str) -> Any:
    """Parse fill value metadata given as strict JSON."""
    try:
        return json.loads(text, parse_constant=_reject_constant)
    except json.JSONDecodeError as err:
        raise ValueError(f"invalid fill value JSON: {err}") from err