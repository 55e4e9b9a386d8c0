"""Process-image tag interface.

Owns the tag set and the open process image, polls all tags for changes and
routes writes through the codec. Polling runs as one asyncio task; writes,
control-byte operations and default updates are invoked between ticks on the
same event loop.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Callable, Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any

import structlog

from revpi_tags.adapters.process_image import ProcessImage
from revpi_tags.adapters.topology import Topology
from revpi_tags.application.control import ControlByte, LEDState, RelayState
from revpi_tags.config.schema import InterfaceConfig
from revpi_tags.config.schema_export import load_tag_config
from revpi_tags.domain.codec import byte_length, coerce_value, decode, encode, resolve_type
from revpi_tags.domain.errors import (
    BatchWriteError,
    RevPiTagsError,
    TagValueError,
    TopologyError,
    UnknownTagError,
    UnsupportedTypeError,
)
from revpi_tags.domain.model.tags import TagDescriptor, TagScalar, TagSet, TagType

logger = structlog.get_logger(__name__)

TagsChangedHandler = Callable[[dict[str, TagScalar]], None]
WriteCompletedHandler = Callable[[str, TagScalar], None]
BatchWriteCompletedHandler = Callable[[], None]


def _changed(old: TagScalar | None, new: TagScalar) -> bool:
    if isinstance(old, float) and isinstance(new, float) and math.isnan(old) and math.isnan(new):
        return False
    return old is None or type(old) is not type(new) or old != new


class RevPiInterface:
    """Named, typed access to the tags of one process image.

    Responsibilities:
    - Build the tag set from the topology or an explicit tag configuration
    - Poll every tag and emit one batch of changed values per tick
    - Write tags synchronously or as coroutines
    - Drive the control byte (LEDs, relay, watchdog)
    - Persist new tag default values back to the topology file
    """

    def __init__(
        self,
        config: InterfaceConfig,
        tags: Mapping[str, Any] | str | Path | None = None,
        *,
        topology: Topology | None = None,
    ) -> None:
        """Initialize the interface and open the process image.

        Args:
            config: Interface configuration
            tags: Explicit tag configuration (mapping, JSON text or path);
                defaults to `config.tags_path`, then to the topology rows
            topology: Pre-loaded topology; read from `config.topology_path` if omitted

        Raises:
            ConfigValidationError: If the explicit tag configuration is invalid
            TopologyError: If the topology cannot be read or has duplicate tags
            ProcessImageError: If the image cannot be opened
        """
        self._config = config
        self._topology = topology if topology is not None else Topology.load(config.topology_path)

        if tags is None and config.tags_path is not None:
            tags = config.tags_path
        self._tags: TagSet = self._build_tags(tags)

        control_offset = self._topology.find_control_byte()
        self._image = ProcessImage(config.image_path)
        self._control = ControlByte(
            self._image,
            control_offset,
            watchdog_grace_s=config.watchdog_grace_ms / 1000,
        )

        self._poll_interval_ms = config.poll_interval_ms
        self._poll_task: asyncio.Task[None] | None = None
        self._tags_changed_handlers: list[TagsChangedHandler] = []
        self._write_completed_handlers: list[WriteCompletedHandler] = []
        self._batch_write_completed_handlers: list[BatchWriteCompletedHandler] = []
        self._default_lock = asyncio.Lock()

        logger.info(
            "Interface initialized",
            image=str(config.image_path),
            tag_count=len(self._tags),
            control_byte=control_offset,
        )

    def _build_tags(self, tags: Mapping[str, Any] | str | Path | None) -> TagSet:
        if tags is not None:
            tag_set = load_tag_config(tags)
            logger.debug("Tag set loaded from explicit configuration", tag_count=len(tag_set))
            return tag_set

        tag_set = self._topology.build_tag_set()
        for name, tag_type in self._config.type_overrides.items():
            tag = tag_set.get(name)
            if tag is None:
                logger.warning("Type override for unknown tag", tag=name)
                continue
            if tag.type.is_boolean != tag_type.is_boolean:
                raise TopologyError(
                    f"Cannot override {name!r} from {tag.type.value} to {tag_type.value}"
                )
            tag.type = tag_type
            try:
                tag.value = None if tag.value is None else coerce_value(tag.value, tag_type, name)
            except TagValueError:
                tag.value = None
        return tag_set

    # -------------------------------------------------------------------------
    # Properties and lookup
    # -------------------------------------------------------------------------

    @property
    def config(self) -> InterfaceConfig:
        return self._config

    @property
    def topology(self) -> Topology:
        return self._topology

    @property
    def tags(self) -> Mapping[str, TagDescriptor]:
        return MappingProxyType(self._tags)

    @property
    def control(self) -> ControlByte:
        return self._control

    @property
    def control_byte_offset(self) -> int | None:
        return self._control.offset

    @property
    def poll_interval_ms(self) -> int:
        return self._poll_interval_ms

    @property
    def is_subscribed(self) -> bool:
        return self._poll_task is not None

    @property
    def closed(self) -> bool:
        return self._image.closed

    def get_tag(self, name: str) -> TagDescriptor:
        """Get a tag descriptor, raising UnknownTagError if absent."""
        tag = self._tags.get(name)
        if tag is None:
            raise UnknownTagError(name)
        return tag

    # -------------------------------------------------------------------------
    # Event handlers
    # -------------------------------------------------------------------------

    def on_tags_changed(self, handler: TagsChangedHandler) -> None:
        """Register a handler receiving each tick's batch of changed values."""
        self._tags_changed_handlers.append(handler)

    def on_write_completed(self, handler: WriteCompletedHandler) -> None:
        """Register a handler called with (name, value) after each async write."""
        self._write_completed_handlers.append(handler)

    def on_batch_write_completed(self, handler: BatchWriteCompletedHandler) -> None:
        """Register a handler called once a batch of async writes has finished."""
        self._batch_write_completed_handlers.append(handler)

    def remove_handler(self, handler: Callable[..., None]) -> None:
        """Remove a handler from every event it is registered for."""
        for handlers in (
            self._tags_changed_handlers,
            self._write_completed_handlers,
            self._batch_write_completed_handlers,
        ):
            if handler in handlers:
                handlers.remove(handler)

    def _emit(self, event: str, handlers: list[Callable[..., None]], *args: Any) -> None:
        for handler in list(handlers):
            try:
                handler(*args)
            except Exception as e:
                logger.warning("Event handler error", event=event, error=str(e))

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def _read_value(self, tag: TagDescriptor) -> TagScalar:
        if resolve_type(tag.type, tag.name) is TagType.BOOLEAN:
            return self._image.read_bit(tag.byte_offset, tag.bit_index)
        buffer = self._image.read_bytes(tag.byte_offset, byte_length(tag.type))
        return decode(buffer, tag)

    def read_raw(self, byte_offset: int, length: int) -> bytes:
        """Read raw bytes from the process image."""
        return self._image.read_bytes(byte_offset, length)

    def read_tag(self, name: str) -> TagScalar | None:
        """Read a tag from the image, store and return its value.

        Returns None (and logs) when the tag's type has no codec mapping.
        """
        tag = self.get_tag(name)
        try:
            value = self._read_value(tag)
        except UnsupportedTypeError as e:
            logger.error("Cannot decode tag", tag=name, error=str(e))
            return None
        tag.value = value
        return value

    def read_all(self) -> dict[str, TagScalar | None]:
        """Read every tag and return a name -> value snapshot."""
        return {name: self.read_tag(name) for name in self._tags}

    # -------------------------------------------------------------------------
    # Polling
    # -------------------------------------------------------------------------

    def poll_once(self) -> dict[str, TagScalar]:
        """Run one polling tick.

        Re-reads every tag, stores the new values and emits one
        `tags changed` batch if any value differs from the previous tick.

        Returns:
            The changed tags (name -> new value)
        """
        changed: dict[str, TagScalar] = {}
        for name, tag in self._tags.items():
            try:
                value = self._read_value(tag)
            except RevPiTagsError as e:
                logger.warning("Tag read failed", tag=name, offset=tag.address, error=str(e))
                continue
            if _changed(tag.value, value):
                changed[name] = value
            tag.value = value

        if changed:
            logger.debug("Tags changed", count=len(changed))
            self._emit("tags_changed", self._tags_changed_handlers, dict(changed))
        return changed

    async def _poll_loop(self, interval_s: float) -> None:
        logger.debug("Starting poll loop", interval_ms=self._poll_interval_ms, tag_count=len(self._tags))
        while True:
            await asyncio.sleep(interval_s)
            try:
                self.poll_once()
            except Exception as e:
                logger.error("Poll tick error", error=str(e))

    def subscribe(self) -> None:
        """Start polling at the configured interval.

        Must be called from a running event loop. Calling it while already
        subscribed does nothing.
        """
        if self._poll_task is not None:
            return
        loop = asyncio.get_running_loop()
        self._poll_task = loop.create_task(
            self._poll_loop(self._poll_interval_ms / 1000),
            name="revpi_poll",
        )
        logger.info("Tag subscription started", interval_ms=self._poll_interval_ms)

    def unsubscribe(self) -> None:
        """Stop polling. Safe to call when not subscribed."""
        if self._poll_task is None:
            return
        task, self._poll_task = self._poll_task, None
        task.cancel()
        logger.info("Tag subscription stopped")

    def set_polling_interval(self, interval_ms: int) -> None:
        """Change the polling interval and restart polling."""
        if interval_ms <= 0:
            raise ValueError(f"Polling interval must be positive, got {interval_ms}")
        self.unsubscribe()
        self._poll_interval_ms = interval_ms
        self.subscribe()

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _prepare_write(self, name: str, value: Any) -> tuple[TagDescriptor, TagScalar, bytes]:
        """Coerce and encode a value; the returned value is what the image will hold."""
        tag = self.get_tag(name)
        coerced = coerce_value(value, tag.type, name)
        payload = encode(tag, coerced)
        if payload:
            # Stored value must equal what a later read decodes (float32 rounds)
            coerced = decode(payload, tag)
        return tag, coerced, payload

    def _write(self, tag: TagDescriptor, value: TagScalar, payload: bytes) -> None:
        if tag.type.is_boolean:
            self._image.write_bit(tag.byte_offset, tag.bit_index, bool(value))
        else:
            self._image.write_bytes(tag.byte_offset, payload)

    def write_tag_sync(self, name: str, value: Any) -> TagScalar:
        """Write a tag and block until the image has been updated.

        Returns:
            The value written, converted to the tag's type

        Raises:
            UnknownTagError: If the tag is not in the tag set
            TagValueError: If the value cannot be converted or encoded
            ProcessImageError: If the write fails
        """
        tag, coerced, payload = self._prepare_write(name, value)
        tag.value = coerced
        self._write(tag, coerced, payload)
        logger.debug("Tag written", tag=name, value=coerced, offset=tag.address)
        return coerced

    def write_tags_sync(self, values: Mapping[str, Any]) -> dict[str, TagScalar]:
        """Write several tags synchronously; the first failure propagates."""
        return {name: self.write_tag_sync(name, value) for name, value in values.items()}

    async def write_tag(self, name: str, value: Any) -> TagScalar:
        """Write a tag without blocking other work on the event loop.

        Emits `write completed` with (name, value) once the image is updated.
        """
        tag, coerced, payload = self._prepare_write(name, value)
        tag.value = coerced
        await asyncio.sleep(0)
        self._write(tag, coerced, payload)
        logger.debug("Tag written", tag=name, value=coerced, offset=tag.address)
        self._emit("write_completed", self._write_completed_handlers, name, coerced)
        return coerced

    async def write_tags(self, values: Mapping[str, Any]) -> dict[str, TagScalar]:
        """Write several tags concurrently.

        Emits `batch write completed` once every write has finished.

        Raises:
            BatchWriteError: If any tag failed; carries each failure by name
        """
        names = list(values)
        results = await asyncio.gather(
            *(self.write_tag(name, values[name]) for name in names),
            return_exceptions=True,
        )

        written: dict[str, TagScalar] = {}
        failures: dict[str, BaseException] = {}
        for name, result in zip(names, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning("Tag write failed", tag=name, value=values[name], error=str(result))
                failures[name] = result
            else:
                written[name] = result

        self._emit("batch_write_completed", self._batch_write_completed_handlers)
        if failures:
            raise BatchWriteError(failures, written)
        return written

    # -------------------------------------------------------------------------
    # Control byte
    # -------------------------------------------------------------------------

    def set_led1(self, state: LEDState | int) -> None:
        self._control.set_led1(state)

    def set_led2(self, state: LEDState | int) -> None:
        self._control.set_led2(state)

    def set_led3(self, state: LEDState | int) -> None:
        self._control.set_led3(state)

    def set_relay(self, state: RelayState | int) -> None:
        self._control.set_relay(state)

    async def kick_watchdog(self) -> None:
        await self._control.kick_watchdog()

    # -------------------------------------------------------------------------
    # Default persistence
    # -------------------------------------------------------------------------

    async def set_tag_default(self, name: str, value: Any) -> int:
        """Persist a new power-on default for a tag in the topology file.

        The current topology file is first streamed into a gzip backup named
        `<path>_<YYYYMMDDHHmmss>.gz`; only then is the document updated and
        rewritten. The running tag's value is left untouched. Calls are
        serialized so every update gets its own backup of the state it replaces.

        Returns:
            Number of topology rows updated

        Raises:
            UnknownTagError: If no topology row has this name
        """
        if not self._topology.has_row(name):
            raise UnknownTagError(name, f"No topology row named {name!r}")
        tag = self._tags.get(name)
        if tag is not None:
            coerce_value(value, tag.type, name)

        async with self._default_lock:
            backup = await self._topology.backup()
            updated = self._topology.set_default(name, value)
            self._topology.save()
        logger.info("Tag default updated", tag=name, value=value, rows=updated, backup=str(backup))
        return updated

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Stop polling and close the process image."""
        self.unsubscribe()
        self._image.close()

    def __enter__(self) -> RevPiInterface:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
