"""Unit tests for tag domain models."""

from __future__ import annotations

import pytest

from revpi_tags.domain.model.tags import Address, TagDescriptor, TagType


class TestTagType:
    """Tests for TagType enum."""

    def test_lookup_is_case_insensitive(self) -> None:
        assert TagType("Int16LE") is TagType.INT16LE
        assert TagType("UInt8") is TagType.UINT8
        assert TagType("BOOLEAN") is TagType.BOOLEAN

    def test_unknown_type_raises(self) -> None:
        with pytest.raises(ValueError):
            TagType("int24le")

    def test_python_type(self) -> None:
        assert TagType.BOOLEAN.python_type() is bool
        assert TagType.UINT32BE.python_type() is int
        assert TagType.FLOATLE.python_type() is float
        assert TagType.DOUBLEBE.python_type() is float


class TestAddress:
    """Tests for the byte/bit address."""

    def test_from_legacy_boolean(self) -> None:
        address = Address.from_legacy(13.2, boolean=True)
        assert address == Address(13, 2)

    def test_from_legacy_boolean_without_fraction_is_bit_zero(self) -> None:
        assert Address.from_legacy(5, boolean=True) == Address(5, 0)

    def test_from_legacy_every_bit_is_exact(self) -> None:
        for bit in range(8):
            assert Address.from_legacy(float(f"100.{bit}"), boolean=True).bit_index == bit

    def test_from_legacy_byte_tag(self) -> None:
        assert Address.from_legacy(42, boolean=False) == Address(42)
        assert Address.from_legacy("42", boolean=False) == Address(42)

    def test_byte_tag_rejects_fraction(self) -> None:
        with pytest.raises(ValueError, match="Only boolean"):
            Address.from_legacy(4.5, boolean=False)

    def test_bit_out_of_range(self) -> None:
        with pytest.raises(ValueError, match="0..7"):
            Address.from_legacy(3.8, boolean=True)

    def test_multi_digit_fraction_rejected(self) -> None:
        with pytest.raises(ValueError, match="single digit"):
            Address.from_legacy(3.25, boolean=True)

    def test_negative_rejected(self) -> None:
        with pytest.raises(ValueError):
            Address(-1)
        with pytest.raises(ValueError):
            Address.from_legacy(-2, boolean=False)

    def test_invalid_bit_index(self) -> None:
        with pytest.raises(ValueError):
            Address(0, 8)

    def test_legacy_round_trip(self) -> None:
        assert Address(13, 2).legacy == 13.2
        assert Address(7).legacy == 7
        assert str(Address(13, 2)) == "13.2"
        assert str(Address(7)) == "7"


class TestTagDescriptor:
    """Tests for TagDescriptor."""

    def test_offsets(self) -> None:
        tag = TagDescriptor(name="X", type=TagType.BOOLEAN, address=Address(13, 2))
        assert tag.byte_offset == 13
        assert tag.bit_index == 2

    def test_byte_tag_bit_index_defaults_to_zero(self) -> None:
        tag = TagDescriptor(name="AI", type=TagType.INT16LE, address=Address(14))
        assert tag.bit_index == 0

    def test_to_config(self) -> None:
        tag = TagDescriptor(
            name="X",
            type=TagType.BOOLEAN,
            address=Address(13, 2),
            value=True,
            comment="door",
        )
        assert tag.to_config() == {
            "value": True,
            "type": "boolean",
            "offset": 13.2,
            "comment": "door",
        }
