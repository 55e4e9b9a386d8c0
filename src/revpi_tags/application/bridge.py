"""Message bridge between a RevPiInterface and a pub/sub transport.

Publishes tag changes and device info, and turns inbound command messages
into synchronous tag writes. The transport itself (connection, retry,
authentication) is supplied by the caller as a MessagePublisher.

Topic layout under the configured namespace:
- <ns>/tags/out/<tag>  changed tag values
- <ns>/tags/in/<tag>   inbound write commands
- <ns>/STATE           ONLINE / OFFLINE
- <ns>/logs            write errors
- <ns>/info/<key>      topology version, save timestamp, device GUIDs
"""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import structlog

from revpi_tags.domain.errors import RevPiTagsError

if TYPE_CHECKING:
    from revpi_tags.application.interface import RevPiInterface
    from revpi_tags.config.schema import BridgeConfig
    from revpi_tags.domain.model.tags import TagScalar

logger = structlog.get_logger(__name__)

RESTART_COMMAND = "RESTART_APP"
STATE_ONLINE = "ONLINE"
STATE_OFFLINE = "OFFLINE"


@runtime_checkable
class MessagePublisher(Protocol):
    """Outbound side of a pub/sub transport."""

    def publish(self, topic: str, payload: str, *, qos: int = 0, retain: bool = False) -> None:
        """Publish a text payload to a topic."""
        ...


class LoggingPublisher:
    """Publisher that writes every message to the structured log."""

    def publish(self, topic: str, payload: str, *, qos: int = 0, retain: bool = False) -> None:
        logger.info("Publish", topic=topic, payload=payload, qos=qos, retain=retain)


def format_payload(value: TagScalar | None) -> str:
    """Render a tag value as message text ("true"/"false" for booleans)."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class TagBridge:
    """Connects tag change events and inbound commands to a publisher."""

    def __init__(
        self,
        interface: RevPiInterface,
        publisher: MessagePublisher,
        config: BridgeConfig,
        *,
        on_restart: Callable[[], None] | None = None,
    ) -> None:
        self._interface = interface
        self._publisher = publisher
        self._namespace = config.namespace
        self._publish_info = config.publish_info
        self._on_restart = on_restart
        self._started = False

    @property
    def state_topic(self) -> str:
        return f"{self._namespace}/STATE"

    @property
    def logs_topic(self) -> str:
        return f"{self._namespace}/logs"

    @property
    def incoming_prefix(self) -> str:
        return f"{self._namespace}/tags/in/"

    @property
    def outgoing_prefix(self) -> str:
        return f"{self._namespace}/tags/out/"

    @property
    def command_filter(self) -> str:
        """Subscription filter for inbound commands."""
        return f"{self.incoming_prefix}#"

    def start(self) -> None:
        """Announce the bridge and start forwarding tag changes."""
        if self._started:
            return
        self._started = True
        self._publisher.publish(self.state_topic, STATE_ONLINE)
        if self._publish_info:
            self.publish_info()
        self._interface.on_tags_changed(self._handle_tags_changed)
        logger.info("Bridge started", namespace=self._namespace, commands=self.command_filter)

    def stop(self) -> None:
        """Stop forwarding and mark the device offline."""
        if not self._started:
            return
        self._started = False
        self._interface.remove_handler(self._handle_tags_changed)
        self._publisher.publish(self.state_topic, STATE_OFFLINE, retain=True)
        logger.info("Bridge stopped", namespace=self._namespace)

    def device_info(self) -> dict[str, str]:
        """Collect topology metadata published under <ns>/info/."""
        topology = self._interface.topology
        app = topology.app_info
        info: dict[str, Any] = {
            "PiCtoryVersion": app.get("version", ""),
            "PiCtoryTimeStamp": app.get("saveTS", ""),
            "PiCtoryConfiguration": json.dumps(topology.document, indent=4),
        }
        for device in topology.devices:
            if "id" in device:
                info[str(device["id"])] = device.get("GUID", "")
        return {key: str(value) for key, value in info.items()}

    def publish_info(self) -> None:
        for key, value in self.device_info().items():
            self._publisher.publish(f"{self._namespace}/info/{key}", value, qos=1)

    def _handle_tags_changed(self, changed: dict[str, TagScalar]) -> None:
        for name, value in changed.items():
            self._publisher.publish(f"{self.outgoing_prefix}{name}", format_payload(value), qos=1)

    def handle_message(self, topic: str, payload: bytes | str) -> bool:
        """Handle an inbound message.

        Returns:
            True if a tag write (or restart request) was carried out
        """
        if not topic.startswith(self.incoming_prefix):
            logger.debug("Ignoring message outside command topics", topic=topic)
            return False

        name = topic[len(self.incoming_prefix) :]
        value = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        logger.info("Incoming tag write", tag=name, value=value)

        if name == RESTART_COMMAND:
            self._publisher.publish(self.state_topic, STATE_OFFLINE, retain=True)
            if self._on_restart is not None:
                self._on_restart()
            return True

        try:
            self._interface.write_tag_sync(name, value)
        except RevPiTagsError as e:
            logger.warning("Error writing tag", tag=name, value=value, error=str(e))
            self._publisher.publish(self.logs_topic, str(e))
            return False

        logger.debug("Tag written", tag=name)
        return True
