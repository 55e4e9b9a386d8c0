"""Unit tests for the type codec."""

from __future__ import annotations

import math

import pytest

from revpi_tags.domain.codec import (
    byte_length,
    coerce_value,
    decode,
    encode,
    infer_type,
    resolve_type,
)
from revpi_tags.domain.errors import TagValueError, UnsupportedTypeError
from revpi_tags.domain.model.tags import Address, TagDescriptor, TagType


def make_tag(tag_type: TagType | str, value: object = None, bit: int | None = None) -> TagDescriptor:
    return TagDescriptor(name="T", type=tag_type, address=Address(0, bit), value=value)  # type: ignore[arg-type]


class TestInference:
    """Tests for width -> type inference."""

    def test_known_widths(self) -> None:
        assert infer_type(1) is TagType.BOOLEAN
        assert infer_type(8) is TagType.UINT8
        assert infer_type(16) is TagType.INT16LE
        assert infer_type(32) is TagType.INT32LE

    def test_unknown_width(self) -> None:
        assert infer_type(64) is None
        assert infer_type(0) is None

    def test_byte_length(self) -> None:
        assert byte_length(TagType.BOOLEAN) == 1
        assert byte_length(TagType.INT8) == 1
        assert byte_length(TagType.UINT16BE) == 2
        assert byte_length(TagType.INT32LE) == 4
        assert byte_length(TagType.FLOATBE) == 4
        assert byte_length(TagType.DOUBLELE) == 8
        assert byte_length("Int16LE") == 2

    def test_resolve_unknown_type(self) -> None:
        with pytest.raises(UnsupportedTypeError):
            resolve_type("string")


class TestDecode:
    """Tests for buffer -> value decoding."""

    def test_boolean_selects_bit(self) -> None:
        buffer = bytes([0b00000100])
        assert decode(buffer, make_tag(TagType.BOOLEAN, bit=2)) is True
        assert decode(buffer, make_tag(TagType.BOOLEAN, bit=1)) is False

    def test_little_endian(self) -> None:
        assert decode(b"\x34\x12", make_tag(TagType.UINT16LE)) == 0x1234
        assert decode(b"\xff\xff", make_tag(TagType.INT16LE)) == -1
        assert decode(b"\x01\x00\x00\x80", make_tag(TagType.INT32LE)) == -(2**31) + 1

    def test_big_endian(self) -> None:
        assert decode(b"\x12\x34", make_tag(TagType.UINT16BE)) == 0x1234
        assert decode(b"\x80\x00\x00\x00", make_tag(TagType.UINT32BE)) == 2**31

    def test_int8(self) -> None:
        assert decode(b"\xfe", make_tag(TagType.INT8)) == -2
        assert decode(b"\xfe", make_tag(TagType.UINT8)) == 254

    def test_short_buffer(self) -> None:
        with pytest.raises(TagValueError):
            decode(b"\x01", make_tag(TagType.INT32LE))

    def test_unsupported_type(self) -> None:
        with pytest.raises(UnsupportedTypeError):
            decode(b"\x00", make_tag("string"))


class TestEncode:
    """Tests for value -> buffer encoding."""

    def test_boolean_has_no_payload(self) -> None:
        assert encode(make_tag(TagType.BOOLEAN, True, bit=3)) == b""

    def test_uses_tag_value(self) -> None:
        assert encode(make_tag(TagType.INT16LE, -2)) == b"\xfe\xff"

    def test_explicit_value_overrides(self) -> None:
        assert encode(make_tag(TagType.UINT16BE, 0), 0x0102) == b"\x01\x02"

    def test_out_of_range(self) -> None:
        with pytest.raises(TagValueError):
            encode(make_tag(TagType.UINT8, 300))

    def test_unsupported_type(self) -> None:
        with pytest.raises(UnsupportedTypeError):
            encode(make_tag("string", 1))

    @pytest.mark.parametrize(
        ("tag_type", "value"),
        [
            (TagType.UINT8, 255),
            (TagType.INT8, -128),
            (TagType.INT16LE, -32768),
            (TagType.UINT16BE, 65535),
            (TagType.INT32BE, -123456),
            (TagType.UINT32LE, 2**32 - 1),
            (TagType.FLOATLE, 1.5),
            (TagType.DOUBLEBE, -0.1),
        ],
    )
    def test_round_trip(self, tag_type: TagType, value: float) -> None:
        tag = make_tag(tag_type, value)
        assert decode(encode(tag), tag) == value

    def test_float_precision_is_single(self) -> None:
        tag = make_tag(TagType.FLOATBE, 0.1)
        assert math.isclose(decode(encode(tag), tag), 0.1, rel_tol=1e-6)


class TestCoerce:
    """Tests for inbound value conversion."""

    def test_bool_from_text(self) -> None:
        assert coerce_value("true", TagType.BOOLEAN) is True
        assert coerce_value("1", TagType.BOOLEAN) is True
        assert coerce_value("0", TagType.BOOLEAN) is False
        assert coerce_value("False", TagType.BOOLEAN) is False

    def test_bool_from_number(self) -> None:
        assert coerce_value(5, TagType.BOOLEAN) is True
        assert coerce_value(0, TagType.BOOLEAN) is False

    def test_bool_rejects_garbage(self) -> None:
        with pytest.raises(TagValueError):
            coerce_value("maybe", TagType.BOOLEAN)

    def test_int_from_text(self) -> None:
        assert coerce_value("42", TagType.UINT8) == 42
        assert coerce_value("-7", TagType.INT16LE) == -7
        assert coerce_value("0x10", TagType.UINT8) == 16
        assert coerce_value("08", TagType.UINT8) == 8
        assert coerce_value("3.0", TagType.UINT8) == 3

    def test_int_rejects_fraction(self) -> None:
        with pytest.raises(TagValueError):
            coerce_value("1.5", TagType.INT16LE)
        with pytest.raises(TagValueError):
            coerce_value(1.5, TagType.INT16LE)

    def test_float_from_text(self) -> None:
        assert coerce_value("1.5", TagType.FLOATLE) == 1.5
        assert isinstance(coerce_value(2, TagType.DOUBLEBE), float)

    def test_error_carries_tag(self) -> None:
        with pytest.raises(TagValueError) as exc_info:
            coerce_value("abc", TagType.UINT8, "OutputValue_1")
        assert exc_info.value.tag == "OutputValue_1"
