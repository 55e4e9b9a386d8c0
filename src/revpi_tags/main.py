"""Main entry point for the revpi-tags runtime."""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

import structlog

from revpi_tags.application.bridge import LoggingPublisher, MessagePublisher, TagBridge
from revpi_tags.application.interface import RevPiInterface
from revpi_tags.config.loader import load_config
from revpi_tags.observability.logging import LogContext, setup_logging

if TYPE_CHECKING:
    from pathlib import Path

    from revpi_tags.config.schema import InterfaceConfig

logger = structlog.get_logger(__name__)


class InterfaceRuntime:
    """Runtime orchestrator for one process image.

    Coordinates the lifecycle of:
    - The tag interface (image handle, polling)
    - The message bridge (change publishing, inbound commands)
    - The optional watchdog heartbeat
    """

    def __init__(self, config: InterfaceConfig, publisher: MessagePublisher | None = None) -> None:
        self.config = config
        self._publisher = publisher if publisher is not None else LoggingPublisher()
        self._shutdown_event = asyncio.Event()
        self._interface: RevPiInterface | None = None
        self._bridge: TagBridge | None = None
        self._watchdog_task: asyncio.Task[None] | None = None

    @property
    def interface(self) -> RevPiInterface | None:
        return self._interface

    @property
    def bridge(self) -> TagBridge | None:
        return self._bridge

    async def start(self) -> None:
        """Open the interface, start the bridge and begin polling."""
        logger.info("Starting revpi-tags", image=str(self.config.image_path))

        self._interface = RevPiInterface(self.config)
        self._bridge = TagBridge(
            self._interface,
            self._publisher,
            self.config.bridge,
            on_restart=self.request_shutdown,
        )
        self._bridge.start()
        self._interface.subscribe()

        if self.config.watchdog_kick_interval_ms is not None:
            self._watchdog_task = asyncio.create_task(self._watchdog_loop(), name="revpi_watchdog")

        logger.info("revpi-tags started", tags=len(self._interface.tags))

    async def stop(self) -> None:
        """Stop the runtime gracefully."""
        logger.info("Stopping revpi-tags")

        if self._watchdog_task:
            self._watchdog_task.cancel()
            await asyncio.gather(self._watchdog_task, return_exceptions=True)
            self._watchdog_task = None

        if self._bridge:
            self._bridge.stop()

        if self._interface:
            self._interface.close()

        logger.info("revpi-tags stopped")

    async def run_until_shutdown(self) -> None:
        """Run until shutdown signal received."""
        await self._shutdown_event.wait()

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()

    async def _watchdog_loop(self) -> None:
        """Kick the watchdog periodically so the hardware does not reboot."""
        if self._interface is None or self.config.watchdog_kick_interval_ms is None:
            return
        interval_s = self.config.watchdog_kick_interval_ms / 1000
        while not self._shutdown_event.is_set():
            try:
                await self._interface.kick_watchdog()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning("Watchdog kick failed", error=str(e))
            try:
                await asyncio.sleep(interval_s)
            except asyncio.CancelledError:
                break


async def run_interface(
    config_path: Path,
    override_path: Path | None = None,
    *,
    log_level: str | None = None,
    log_format: str | None = None,
) -> None:
    """Main entry point for running the interface.

    Logging is configured from the loaded file's `logging` section unless
    `log_level`/`log_format` (or their environment variables) override it.
    """
    config = load_config(config_path, override_path=override_path)
    setup_logging(log_level, log_format, config=config.logging)

    runtime = InterfaceRuntime(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, runtime.request_shutdown)

    with LogContext(namespace=config.bridge.namespace):
        try:
            await runtime.start()
            await runtime.run_until_shutdown()
        finally:
            await runtime.stop()


def main() -> None:
    """CLI entry point - delegates to typer app."""
    from revpi_tags.cli.app import app  # noqa: PLC0415

    app()


if __name__ == "__main__":
    main()
