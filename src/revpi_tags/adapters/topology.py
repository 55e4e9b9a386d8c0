"""Topology description (PiCtory .rsc) parsing and persistence.

The topology is an ordered list of devices, each with a structural byte
`offset` and three row groups (`inp`, `out`, `mem`). Every row is a
fixed-arity list:

    [name, default, bitLength, rowOffset, exported, sortOrder, comment, bitPosition?]

Rows are turned into TagDescriptors here. The raw document is kept as-is so
unknown fields survive when default values are rewritten.
"""

from __future__ import annotations

import asyncio
import gzip
import json
import os
import shutil
import tempfile
from collections.abc import Iterable, Iterator, Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from revpi_tags.domain.codec import coerce_value, infer_type
from revpi_tags.domain.errors import TagValueError, TopologyError
from revpi_tags.domain.model.tags import Address, TagDescriptor, TagSet, TagType

logger = structlog.get_logger(__name__)

ROW_GROUPS = ("inp", "out", "mem")
CONTROL_BYTE_ROW = "RevPiLED"

# Row field indices
NAME, DEFAULT, BIT_LENGTH, ROW_OFFSET, EXPORTED, SORT_ORDER, COMMENT, BIT_POSITION = range(8)

_BACKUP_CHUNK_SIZE = 64 * 1024


def _as_int(raw: Any) -> int:
    if isinstance(raw, bool):
        raise ValueError(f"Expected integer, got {raw!r}")
    if isinstance(raw, int):
        return raw
    return int(str(raw).strip())


def _device_offset(device: Mapping[str, Any]) -> int:
    try:
        return _as_int(device.get("offset", 0))
    except (TypeError, ValueError) as e:
        raise TopologyError(f"Device {device.get('id', '?')!r} has an invalid offset: {e}") from e


def _bit_position(row: list[Any]) -> int | None:
    if len(row) <= BIT_POSITION:
        return None
    raw = row[BIT_POSITION]
    if raw is None or raw == "":
        return None
    return _as_int(raw)


def _row_name(row: Any) -> Any:
    """The row's name field, or None for anything that is not a non-empty list."""
    if isinstance(row, list) and row:
        return row[NAME]
    return None


def _iter_rows(rows: Mapping[str, Any] | Iterable[Any] | None) -> Iterator[Any]:
    if rows is None:
        return iter(())
    if isinstance(rows, Mapping):
        return iter(rows.values())
    return iter(rows)


def resolve_address(row: list[Any], device_offset: int = 0) -> Address:
    """Compute a row's absolute address.

    `byte = deviceOffset + rowOffset`; a bit position adds `bitPosition // 8`
    bytes and selects bit `bitPosition % 8`.
    """
    byte_offset = device_offset + _as_int(row[ROW_OFFSET])
    bit_position = _bit_position(row)
    if bit_position is None:
        return Address(byte_offset)
    return Address(byte_offset + bit_position // 8, bit_position % 8)


def parse_row(row: list[Any], device_offset: int = 0) -> TagDescriptor | None:
    """Parse one row record; None if it cannot be read as a tag."""
    if not isinstance(row, list):
        logger.debug("Dropping non-list row", row=row)
        return None
    try:
        name = str(row[NAME])
        bit_length = _as_int(row[BIT_LENGTH])
        address = resolve_address(row, device_offset)
    except (IndexError, TypeError, ValueError) as e:
        logger.debug("Dropping malformed row", row=row, error=str(e))
        return None

    if address.bit_index is not None:
        tag_type: TagType | None = TagType.BOOLEAN
    else:
        tag_type = infer_type(bit_length)
        if tag_type is None:
            logger.debug("Dropping row with unsupported width", tag=name, bit_length=bit_length)
            return None
        if tag_type is TagType.BOOLEAN:
            address = Address(address.byte_offset, 0)

    try:
        value = coerce_value(row[DEFAULT], tag_type, name)
    except TagValueError:
        value = None

    comment = row[COMMENT] if len(row) > COMMENT and row[COMMENT] is not None else ""
    return TagDescriptor(name=name, type=tag_type, address=address, value=value, comment=str(comment))


def parse_rows(rows: Mapping[str, Any] | Iterable[Any] | None, device_offset: int = 0) -> TagSet:
    """Parse a row group into a tag set, dropping unreadable rows."""
    tags: TagSet = {}
    for row in _iter_rows(rows):
        tag = parse_row(row, device_offset)
        if tag is None:
            continue
        if tag.name in tags:
            raise TopologyError(f"Duplicate tag name {tag.name!r} in row group")
        tags[tag.name] = tag
    return tags


class Topology:
    """In-memory topology document bound to its file path."""

    def __init__(self, document: dict[str, Any], path: Path | str | None = None) -> None:
        if not isinstance(document.get("Devices"), list):
            raise TopologyError("Topology has no 'Devices' list")
        self._document = document
        self._path = Path(path) if path is not None else None

    @classmethod
    def load(cls, path: Path | str) -> Topology:
        """Read and parse a topology file.

        Raises:
            TopologyError: If the file cannot be read or is not valid JSON
        """
        path = Path(path)
        try:
            with path.open("r", encoding="utf-8") as f:
                document = json.load(f)
        except OSError as e:
            raise TopologyError(f"Cannot read topology file {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise TopologyError(f"Invalid JSON in topology file {path}: {e}") from e
        if not isinstance(document, dict):
            raise TopologyError(f"Topology must be a JSON object, got {type(document).__name__}")
        topology = cls(document, path)
        logger.info("Topology loaded", path=str(path), devices=len(topology.devices))
        return topology

    @property
    def path(self) -> Path | None:
        return self._path

    @property
    def document(self) -> dict[str, Any]:
        return self._document

    @property
    def devices(self) -> list[dict[str, Any]]:
        return self._document["Devices"]

    @property
    def app_info(self) -> dict[str, Any]:
        app = self._document.get("App")
        return app if isinstance(app, dict) else {}

    def iter_rows(self) -> Iterator[tuple[dict[str, Any], str, list[Any]]]:
        """Yield (device, group name, row) for every row of every device."""
        for device in self.devices:
            for group in ROW_GROUPS:
                for row in _iter_rows(device.get(group)):
                    yield device, group, row

    def build_tag_set(self) -> TagSet:
        """Parse every device's row groups into one tag set.

        Raises:
            TopologyError: If two rows share a name
        """
        tags: TagSet = {}
        for device in self.devices:
            device_offset = _device_offset(device)
            for group in ROW_GROUPS:
                for name, tag in parse_rows(device.get(group), device_offset).items():
                    if name in tags:
                        raise TopologyError(
                            f"Duplicate tag name {name!r} in device {device.get('id', '?')!r}"
                        )
                    tags[name] = tag
        logger.debug("Tag set built from topology", tag_count=len(tags))
        return tags

    def find_control_byte(self) -> int | None:
        """Locate the control byte via the RevPiLED output row; the last match wins."""
        offset: int | None = None
        for device in self.devices:
            device_offset = _device_offset(device)
            for row in _iter_rows(device.get("out")):
                if _row_name(row) == CONTROL_BYTE_ROW:
                    offset = resolve_address(row, device_offset).byte_offset
        if offset is None:
            logger.warning("No control byte row in topology", row_name=CONTROL_BYTE_ROW)
        else:
            logger.debug("Control byte located", offset=offset)
        return offset

    def has_row(self, name: str) -> bool:
        return any(_row_name(row) == name for _, _, row in self.iter_rows())

    def set_default(self, name: str, value: Any) -> int:
        """Overwrite the default value of every row named `name`.

        Returns:
            Number of rows updated
        """
        text = str(int(value)) if isinstance(value, bool) else str(value)
        updated = 0
        for _, _, row in self.iter_rows():
            if _row_name(row) == name:
                row[DEFAULT] = text
                updated += 1
        return updated

    def _require_path(self, path: Path | str | None) -> Path:
        target = Path(path) if path is not None else self._path
        if target is None:
            raise TopologyError("Topology has no file path")
        return target

    def save(self, path: Path | str | None = None) -> Path:
        """Write the document to its file via a temp file and atomic replace.

        An existing file keeps its permission bits and, where the process
        may change it, its owner and group.
        """
        target = self._require_path(path)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", dir=target.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._document, f)
            if target.exists():
                _copy_ownership(target, Path(tmp_name))
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.info("Topology saved", path=str(target))
        return target

    async def backup(self, path: Path | str | None = None) -> Path:
        """Stream the topology file into `<path>_<YYYYMMDDHHmmss>.gz`.

        An existing backup is never overwritten: a name already taken within
        the same second gets a `_1`, `_2`, ... suffix before `.gz`. Yields to
        the event loop between chunks. Returns the backup path.
        """
        source = self._require_path(path)
        stamp = datetime.now(UTC).strftime("%Y%m%d%H%M%S")
        with source.open("rb") as src:
            target, dst = _create_backup(source, stamp)
            with dst:
                while chunk := src.read(_BACKUP_CHUNK_SIZE):
                    dst.write(chunk)
                    await asyncio.sleep(0)
        logger.info("Topology backed up", source=str(source), backup=str(target))
        return target


def _create_backup(source: Path, stamp: str) -> tuple[Path, gzip.GzipFile]:
    """Exclusively create the first free backup name for `stamp`."""
    attempt = 0
    while True:
        suffix = f"_{attempt}" if attempt else ""
        target = source.with_name(f"{source.name}_{stamp}{suffix}.gz")
        try:
            return target, gzip.GzipFile(target, "xb")
        except FileExistsError:
            attempt += 1


def _copy_ownership(source: Path, target: Path) -> None:
    shutil.copymode(source, target)
    st = source.stat()
    try:
        os.chown(target, st.st_uid, st.st_gid)
    except PermissionError as e:
        logger.debug("Cannot copy topology file owner", path=str(source), error=str(e))
