"""Positioned access to the shared process image.

The image (normally /dev/piControl0) is opened once, read and written with
absolute offsets via os.pread/os.pwrite, and closed exactly once. There is no
stream cursor, so interleaved calls never disturb each other's position.

Reads and writes are not atomic against other processes mutating the image;
only one writer per image is supported.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import structlog

from revpi_tags.domain.errors import ProcessImageError

logger = structlog.get_logger(__name__)


class ProcessImage:
    """Read/write handle to the process image file."""

    def __init__(self, path: Path | str) -> None:
        """Open the image read-write.

        Args:
            path: Path to the image device or file

        Raises:
            ProcessImageError: If the image cannot be opened
        """
        self._path = Path(path)
        try:
            self._fd: int | None = os.open(self._path, os.O_RDWR)
        except OSError as e:
            raise ProcessImageError(f"Cannot open process image {self._path}: {e}", cause=e) from e
        logger.debug("Process image opened", path=str(self._path))

    @property
    def path(self) -> Path:
        return self._path

    @property
    def closed(self) -> bool:
        return self._fd is None

    def _require_fd(self) -> int:
        if self._fd is None:
            raise ProcessImageError(f"Process image {self._path} is closed")
        return self._fd

    def read_bytes(self, byte_offset: int, length: int) -> bytes:
        """Read `length` bytes starting at `byte_offset`."""
        fd = self._require_fd()
        try:
            data = os.pread(fd, length, byte_offset)
        except OSError as e:
            raise ProcessImageError(
                f"Read of {length} byte(s) at {byte_offset} failed: {e}",
                offset=byte_offset,
                length=length,
                cause=e,
            ) from e
        if len(data) != length:
            raise ProcessImageError(
                f"Short read at {byte_offset}: wanted {length} byte(s), got {len(data)}",
                offset=byte_offset,
                length=length,
            )
        return data

    def write_bytes(self, byte_offset: int, buffer: bytes) -> None:
        """Write `buffer` starting at `byte_offset`."""
        fd = self._require_fd()
        try:
            written = os.pwrite(fd, buffer, byte_offset)
        except OSError as e:
            raise ProcessImageError(
                f"Write of {len(buffer)} byte(s) at {byte_offset} failed: {e}",
                offset=byte_offset,
                length=len(buffer),
                cause=e,
            ) from e
        if written != len(buffer):
            raise ProcessImageError(
                f"Short write at {byte_offset}: wrote {written} of {len(buffer)} byte(s)",
                offset=byte_offset,
                length=len(buffer),
            )

    def read_bit(self, byte_offset: int, bit_index: int) -> bool:
        """Read a single bit."""
        return bool((self.read_bytes(byte_offset, 1)[0] >> bit_index) & 0x01)

    def write_bit(self, byte_offset: int, bit_index: int, value: bool) -> None:
        """Set or clear one bit, leaving the other seven bits of the byte as they are."""
        mask = 0x01 << bit_index
        current = self.read_bytes(byte_offset, 1)[0]
        updated = current | mask if value else current & ~mask & 0xFF
        self.write_bytes(byte_offset, bytes([updated]))

    def update_byte(self, byte_offset: int, clear_mask: int, set_bits: int) -> int:
        """Read-modify-write one byte as `(old & clear_mask) | set_bits`.

        Returns:
            The byte value written
        """
        current = self.read_bytes(byte_offset, 1)[0]
        updated = ((current & clear_mask) | set_bits) & 0xFF
        self.write_bytes(byte_offset, bytes([updated]))
        return updated

    def close(self) -> None:
        """Close the image. Safe to call more than once."""
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            os.close(fd)
        except OSError as e:
            logger.warning("Error closing process image", path=str(self._path), error=str(e))
        else:
            logger.debug("Process image closed", path=str(self._path))

    def __enter__(self) -> ProcessImage:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
