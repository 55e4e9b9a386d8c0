"""Type codec: bit-width inference and buffer <-> value conversion.

Topology rows only record a bit length, so the decoded type is a best-effort
guess from `_WIDTH_TYPES`. Callers that know better override the type via the
explicit tag configuration or `InterfaceConfig.type_overrides`.
"""

from __future__ import annotations

import struct
from typing import Any

from revpi_tags.domain.errors import TagValueError, UnsupportedTypeError
from revpi_tags.domain.model.tags import TagDescriptor, TagScalar, TagType

# Width in bits -> decoded type
_WIDTH_TYPES: dict[int, TagType] = {
    1: TagType.BOOLEAN,
    8: TagType.UINT8,
    16: TagType.INT16LE,
    32: TagType.INT32LE,
}

# Numeric type -> struct format (byte order prefix + code)
_FORMATS: dict[TagType, str] = {
    TagType.UINT8: "<B",
    TagType.INT8: "<b",
    TagType.UINT16LE: "<H",
    TagType.INT16LE: "<h",
    TagType.UINT16BE: ">H",
    TagType.INT16BE: ">h",
    TagType.UINT32LE: "<I",
    TagType.INT32LE: "<i",
    TagType.UINT32BE: ">I",
    TagType.INT32BE: ">i",
    TagType.FLOATLE: "<f",
    TagType.FLOATBE: ">f",
    TagType.DOUBLELE: "<d",
    TagType.DOUBLEBE: ">d",
}

_TRUE_STRINGS = frozenset({"1", "true", "on", "yes"})
_FALSE_STRINGS = frozenset({"0", "false", "off", "no", ""})


def infer_type(bit_length: int) -> TagType | None:
    """Guess the tag type from its bit length; None if the width is unknown."""
    return _WIDTH_TYPES.get(bit_length)


def resolve_type(tag_type: TagType | str, tag: str | None = None) -> TagType:
    """Normalize a type name, raising UnsupportedTypeError if unknown."""
    if isinstance(tag_type, TagType):
        return tag_type
    try:
        return TagType(tag_type)
    except ValueError:
        raise UnsupportedTypeError(tag_type, tag) from None


def byte_length(tag_type: TagType | str) -> int:
    """Number of bytes occupied by a value of the given type."""
    resolved = resolve_type(tag_type)
    if resolved is TagType.BOOLEAN:
        return 1
    return struct.calcsize(_FORMATS[resolved])


def decode(buffer: bytes, tag: TagDescriptor) -> TagScalar:
    """Decode a buffer read at the tag's byte offset.

    For boolean tags the buffer is the single containing byte and the
    tag's bit index selects the value.
    """
    tag_type = resolve_type(tag.type, tag.name)
    if tag_type is TagType.BOOLEAN:
        return bool((buffer[0] >> tag.bit_index) & 0x01)
    fmt = _FORMATS[tag_type]
    size = struct.calcsize(fmt)
    if len(buffer) < size:
        raise TagValueError(
            tag.name, bytes(buffer), f"Need {size} bytes to decode {tag_type.value}, got {len(buffer)}"
        )
    return struct.unpack(fmt, bytes(buffer[:size]))[0]


def encode(tag: TagDescriptor, value: TagScalar | None = None) -> bytes:
    """Encode the tag's value (or an explicit value) for a buffer write.

    Boolean tags produce an empty payload: bits are written through the
    read-modify-write path of the process image, never as a whole byte.
    """
    tag_type = resolve_type(tag.type, tag.name)
    if tag_type is TagType.BOOLEAN:
        return b""
    raw = tag.value if value is None else value
    try:
        return struct.pack(_FORMATS[tag_type], raw)
    except (struct.error, TypeError) as e:
        raise TagValueError(tag.name, raw, f"Cannot encode {raw!r} as {tag_type.value}: {e}") from e


def coerce_value(value: Any, tag_type: TagType | str, tag: str | None = None) -> TagScalar:
    """Convert an inbound value (often text from a command) to the tag's Python type."""
    resolved = resolve_type(tag_type, tag)
    target = resolved.python_type()
    if target is bool:
        return _coerce_bool(value, tag)

    try:
        if target is float:
            return float(value)
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, float):
            if not value.is_integer():
                raise ValueError("fractional value")
            return int(value)
        if isinstance(value, str):
            text = value.strip()
            try:
                return int(text, 0)
            except ValueError:
                as_float = float(text)
                if not as_float.is_integer():
                    raise
                return int(as_float)
        return int(value)
    except (TypeError, ValueError) as e:
        raise TagValueError(tag, value, f"Cannot convert {value!r} to {resolved.value}") from e


def _coerce_bool(value: Any, tag: str | None) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    raise TagValueError(tag, value, f"Cannot convert {value!r} to boolean")
