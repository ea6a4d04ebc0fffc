"""Validation of fill value metadata and casting of fill values between data types."""

from __future__ import annotations

import math
import re
import struct
from typing import Any

import numpy as np

from .codecs import parse_data_type

_INTEGER_TYPES: dict[str, tuple[int, bool]] = {
    "int8": (8, True),
    "int16": (16, True),
    "int32": (32, True),
    "int64": (64, True),
    "uint8": (8, False),
    "uint16": (16, False),
    "uint32": (32, False),
    "uint64": (64, False),
}
_FLOAT_SIZES: dict[str, int] = {"bfloat16": 2, "float16": 2, "float32": 4, "float64": 8}
_COMPLEX_PARTS: dict[str, str] = {"complex64": "float32", "complex128": "float64"}
_SPECIAL_FLOATS: dict[str, float] = {"NaN": math.nan, "Infinity": math.inf, "-Infinity": -math.inf}
_CONVERTIBLE = frozenset({"bool", *_INTEGER_TYPES, *_FLOAT_SIZES})
_HEX = re.compile(r"0x([0-9a-fA-F]+)")
_RAW_BITS = re.compile(r"r([0-9]+)")


def _integer_range(bits: int, signed: bool) -> tuple[int, int]:
    if signed:
        return -(1 << (bits - 1)), (1 << (bits - 1)) - 1
    return 0, (1 << bits) - 1


def _is_integer(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _float_from_hex(data_type: str, text: str) -> float:
    match = _HEX.fullmatch(text)
    size = _FLOAT_SIZES[data_type]
    if match is None or len(match.group(1)) != 2 * size:
        raise ValueError(f"fill value {text!r} is not a {2 * size}-digit hex bit pattern for {data_type}")
    bits = int(match.group(1), 16)
    if data_type == "float64":
        return struct.unpack(">d", bits.to_bytes(8, "big"))[0]
    if data_type == "float32":
        return struct.unpack(">f", bits.to_bytes(4, "big"))[0]
    if data_type == "float16":
        return struct.unpack(">e", bits.to_bytes(2, "big"))[0]
    return struct.unpack(">f", (bits << 16).to_bytes(4, "big"))[0]


def _decode_float(data_type: str, metadata: Any) -> float:
    if isinstance(metadata, str):
        if metadata in _SPECIAL_FLOATS:
            return _SPECIAL_FLOATS[metadata]
        return _float_from_hex(data_type, metadata)
    if isinstance(metadata, (int, float)) and not isinstance(metadata, bool):
        return float(metadata)
    raise ValueError(f"fill value {metadata!r} is incompatible with data type {data_type}")


def _check_float(data_type: str, metadata: Any) -> Any:
    value = _decode_float(data_type, metadata)
    if isinstance(metadata, str):
        return metadata
    return value


def fill_value_from_metadata(data_type: str, metadata: Any) -> Any:
    """Check that ``metadata`` is a valid fill value for ``data_type`` and return it normalised.

    Raises ValueError when the data type is unknown or the fill value does not fit it.
    """
    data_type = parse_data_type(data_type)
    if data_type == "bool":
        if isinstance(metadata, bool):
            return metadata
        raise ValueError(f"fill value {metadata!r} is incompatible with data type bool")
    if data_type in _INTEGER_TYPES:
        low, high = _integer_range(*_INTEGER_TYPES[data_type])
        if _is_integer(metadata) and low <= metadata <= high:
            return metadata
        raise ValueError(f"fill value {metadata!r} is incompatible with data type {data_type}")
    if data_type in _FLOAT_SIZES:
        return _check_float(data_type, metadata)
    if data_type in _COMPLEX_PARTS:
        part_type = _COMPLEX_PARTS[data_type]
        if isinstance(metadata, list) and len(metadata) == 2:
            return [_check_float(part_type, part) for part in metadata]
        raise ValueError(f"fill value {metadata!r} is incompatible with data type {data_type}")
    raw = _RAW_BITS.fullmatch(data_type)
    if raw is not None:
        size = int(raw.group(1)) // 8
        if (
            isinstance(metadata, list)
            and len(metadata) == size
            and all(_is_integer(b) and 0 <= b <= 255 for b in metadata)
        ):
            return list(metadata)
        raise ValueError(f"fill value {metadata!r} is incompatible with data type {data_type}")
    raise ValueError(f"unsupported data type: {data_type!r}")


def _cast_integer(value: int | float, bits: int, signed: bool) -> int:
    """Cast like a native numeric conversion: integers wrap, floats truncate and saturate."""
    low, high = _integer_range(bits, signed)
    if isinstance(value, float):
        if math.isnan(value):
            return 0
        if value <= low:
            return low
        if value >= high:
            return high
        return int(value)
    value &= (1 << bits) - 1
    if signed and value > high:
        value -= 1 << bits
    return value


def _round_bfloat16(value: float) -> float:
    if math.isnan(value):
        return math.nan
    with np.errstate(over="ignore"):
        single = np.array([value], dtype=np.float32)
    bits = int(single.view(np.uint32)[0])
    rounded = ((bits + 0x7FFF + ((bits >> 16) & 1)) >> 16) & 0xFFFF
    return float(np.array([rounded << 16], dtype=np.uint32).view(np.float32)[0])


def _round_float(data_type: str, value: float) -> float:
    with np.errstate(over="ignore"):
        if data_type == "float64":
            return float(value)
        if data_type == "float32":
            return float(np.float32(value))
        if data_type == "float16":
            return float(np.float16(value))
    return _round_bfloat16(float(value))


def _float_metadata(value: float) -> Any:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    return value


def _numeric_value(data_type: str, metadata: Any) -> int | float:
    if data_type == "bool":
        return int(metadata)
    if data_type in _INTEGER_TYPES:
        return metadata
    return _decode_float(data_type, metadata)


def convert_fill_value(data_type_in: str, fill_value_in: Any, data_type_out: str) -> Any:
    """Cast a fill value of ``data_type_in`` to ``data_type_out``, returning its metadata.

    Only boolean, integer and real floating point data types can be converted.
    """
    for data_type in (data_type_in, data_type_out):
        if data_type not in _CONVERTIBLE:
            raise ValueError(f"cannot convert fill values of data type {data_type!r}")
    value = _numeric_value(data_type_in, fill_value_from_metadata(data_type_in, fill_value_in))
    if data_type_out == "bool":
        return _cast_integer(value, 8, False) != 0
    if data_type_out in _INTEGER_TYPES:
        return _cast_integer(value, *_INTEGER_TYPES[data_type_out])
    return _float_metadata(_round_float(data_type_out, float(value)))