"""Control byte operations: status LEDs, relay and watchdog.

The control byte packs independent fields, so every write is a
read-modify-write that only touches its own bits:

    bit  7     6     5..4   3..2   1..0
         WD    RLY   LED3   LED2   LED1
"""

from __future__ import annotations

import asyncio
from enum import IntEnum

import structlog

from revpi_tags.adapters.process_image import ProcessImage
from revpi_tags.domain.errors import ControlByteUnavailableError

logger = structlog.get_logger(__name__)


class LEDState(IntEnum):
    """Two-bit LED states."""

    OFF = 0x00
    GREEN = 0x01
    RED = 0x02
    ORANGE = 0x03


class RelayState(IntEnum):
    """Relay output states."""

    CLOSED = 0x00
    OPEN = 0x01


LED1_BIT = 0
LED2_BIT = 2
LED3_BIT = 4
RELAY_BIT = 6
WATCHDOG_BIT = 7


def clear_mask(bit_offset: int, width: int) -> int:
    """Mask that keeps every bit except the `width` bits at `bit_offset`."""
    return ~(((1 << width) - 1) << bit_offset) & 0xFF


class ControlByte:
    """Bit-field writer for the control byte of one process image."""

    def __init__(
        self,
        image: ProcessImage,
        offset: int | None,
        *,
        watchdog_grace_s: float = 0.1,
    ) -> None:
        """Initialize the control byte.

        Args:
            image: Open process image
            offset: Byte offset of the control byte, None if the topology has none
            watchdog_grace_s: Delay between clearing and setting the watchdog bit
        """
        self._image = image
        self._offset = offset
        self._watchdog_grace_s = watchdog_grace_s

    @property
    def offset(self) -> int | None:
        return self._offset

    def _require_offset(self) -> int:
        if self._offset is None:
            raise ControlByteUnavailableError()
        return self._offset

    def read(self) -> int:
        """Read the raw control byte."""
        return self._image.read_bytes(self._require_offset(), 1)[0]

    def write_field(self, bit_offset: int, mask: int, value: int) -> int:
        """Write `value` at `bit_offset`, keeping the bits selected by `mask`.

        Returns:
            The control byte as written
        """
        offset = self._require_offset()
        written = self._image.update_byte(offset, mask, (int(value) << bit_offset) & ~mask & 0xFF)
        logger.debug("Control byte written", offset=offset, bit=bit_offset, value=int(value), byte=written)
        return written

    def set_led1(self, state: LEDState | int) -> None:
        self.write_field(LED1_BIT, clear_mask(LED1_BIT, 2), LEDState(state))

    def set_led2(self, state: LEDState | int) -> None:
        self.write_field(LED2_BIT, clear_mask(LED2_BIT, 2), LEDState(state))

    def set_led3(self, state: LEDState | int) -> None:
        self.write_field(LED3_BIT, clear_mask(LED3_BIT, 2), LEDState(state))

    def set_relay(self, state: RelayState | int) -> None:
        self.write_field(RELAY_BIT, clear_mask(RELAY_BIT, 1), RelayState(state))

    async def kick_watchdog(self) -> None:
        """Toggle the watchdog bit: clear it, wait the grace delay, set it again.

        Not kicking lets the hardware watchdog reboot the device.
        """
        mask = clear_mask(WATCHDOG_BIT, 1)
        self.write_field(WATCHDOG_BIT, mask, 0)
        await asyncio.sleep(self._watchdog_grace_s)
        self.write_field(WATCHDOG_BIT, mask, 1)
