"""Tag domain models for revpi-tags.

A tag is a named, typed window into the process image. Each tag has:
- A type that fixes how many bytes are read and how they are decoded
- An address (byte offset plus, for booleans, a bit index)
- The last known decoded value
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

TagScalar = bool | int | float


class TagType(str, Enum):
    """Value encodings supported by the codec.

    Values are lower-case; lookups are case-insensitive so that the
    mixed-case names used by topology tools ("UInt8", "Int16LE") resolve.
    """

    BOOLEAN = "boolean"
    UINT8 = "uint8"
    INT8 = "int8"
    UINT16LE = "uint16le"
    INT16LE = "int16le"
    UINT16BE = "uint16be"
    INT16BE = "int16be"
    UINT32LE = "uint32le"
    INT32LE = "int32le"
    UINT32BE = "uint32be"
    INT32BE = "int32be"
    FLOATLE = "floatle"
    FLOATBE = "floatbe"
    DOUBLELE = "doublele"
    DOUBLEBE = "doublebe"

    @classmethod
    def _missing_(cls, value: object) -> TagType | None:
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return None

    @property
    def is_boolean(self) -> bool:
        return self is TagType.BOOLEAN

    @property
    def is_float(self) -> bool:
        return self.value.startswith(("float", "double"))

    def python_type(self) -> type:
        """Get corresponding Python type."""
        if self.is_boolean:
            return bool
        if self.is_float:
            return float
        return int


@dataclass(frozen=True, slots=True)
class Address:
    """Location of a tag inside the process image.

    Attributes:
        byte_offset: Absolute byte index into the image
        bit_index: Bit within that byte (0-7) for boolean tags, else None
    """

    byte_offset: int
    bit_index: int | None = None

    def __post_init__(self) -> None:
        if self.byte_offset < 0:
            raise ValueError(f"byte_offset must be >= 0, got {self.byte_offset}")
        if self.bit_index is not None and not 0 <= self.bit_index <= 7:
            raise ValueError(f"bit_index must be in 0..7, got {self.bit_index}")

    @classmethod
    def from_legacy(cls, offset: Any, *, boolean: bool) -> Address:
        """Parse a "byte.bit" decimal offset such as 13.2.

        The fractional digit is the bit index. Parsing goes through Decimal
        on the textual form so 13.2 never becomes 13.199999.
        """
        try:
            number = Decimal(str(offset))
        except InvalidOperation as e:
            raise ValueError(f"Offset is not a number: {offset!r}") from e
        if number < 0:
            raise ValueError(f"Offset must be >= 0, got {offset!r}")

        byte_offset = int(number)
        fraction = number - byte_offset
        if not boolean:
            if fraction:
                raise ValueError(f"Only boolean tags may carry a bit offset, got {offset!r}")
            return cls(byte_offset)

        scaled = fraction * 10
        if scaled != scaled.to_integral_value():
            raise ValueError(f"Bit offset must be a single digit, got {offset!r}")
        bit_index = int(scaled)
        if bit_index > 7:
            raise ValueError(f"Bit offset must be in 0..7, got {offset!r}")
        return cls(byte_offset, bit_index)

    @property
    def legacy(self) -> float | int:
        """Render as the "byte.bit" decimal form used by explicit tag configs."""
        if self.bit_index is None:
            return self.byte_offset
        return float(f"{self.byte_offset}.{self.bit_index}")

    def __str__(self) -> str:
        if self.bit_index is None:
            return str(self.byte_offset)
        return f"{self.byte_offset}.{self.bit_index}"


@dataclass(slots=True)
class TagDescriptor:
    """A named tag and its last known value.

    Identity (name, type, address) is fixed once the tag set is built;
    only `value` changes during a session.
    """

    name: str
    type: TagType
    address: Address
    value: TagScalar | None = None
    comment: str = ""

    @property
    def byte_offset(self) -> int:
        return self.address.byte_offset

    @property
    def bit_index(self) -> int:
        return self.address.bit_index or 0

    def to_config(self) -> dict[str, Any]:
        """Serialize to the explicit tag configuration shape."""
        return {
            "value": self.value,
            "type": self.type.value,
            "offset": self.address.legacy,
            "comment": self.comment,
        }


TagSet = dict[str, TagDescriptor]
