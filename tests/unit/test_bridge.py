"""Unit tests for the message bridge."""

from __future__ import annotations

import json
from dataclasses import dataclass, field

import pytest

from revpi_tags.application.bridge import (
    LoggingPublisher,
    MessagePublisher,
    TagBridge,
    format_payload,
)
from revpi_tags.application.interface import RevPiInterface
from revpi_tags.config.schema import BridgeConfig


@dataclass
class RecordingPublisher:
    messages: list[tuple[str, str, int, bool]] = field(default_factory=list)

    def publish(self, topic: str, payload: str, *, qos: int = 0, retain: bool = False) -> None:
        self.messages.append((topic, payload, qos, retain))

    def topics(self) -> list[str]:
        return [m[0] for m in self.messages]

    def payloads(self, topic: str) -> list[str]:
        return [m[1] for m in self.messages if m[0] == topic]


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def bridge(interface: RevPiInterface, publisher: RecordingPublisher) -> TagBridge:
    return TagBridge(interface, publisher, BridgeConfig(namespace="cell1"))


class TestFormatPayload:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [(True, "true"), (False, "false"), (42, "42"), (-1.5, "-1.5"), (None, "None")],
    )
    def test_format(self, value: object, expected: str) -> None:
        assert format_payload(value) == expected  # type: ignore[arg-type]


class TestPublishers:
    def test_protocol(self, publisher: RecordingPublisher) -> None:
        assert isinstance(publisher, MessagePublisher)
        assert isinstance(LoggingPublisher(), MessagePublisher)


class TestTagBridge:
    """Tests for publishing and inbound command handling."""

    def test_topics(self, bridge: TagBridge) -> None:
        assert bridge.state_topic == "cell1/STATE"
        assert bridge.logs_topic == "cell1/logs"
        assert bridge.outgoing_prefix == "cell1/tags/out/"
        assert bridge.command_filter == "cell1/tags/in/#"

    def test_start_publishes_state_and_info(
        self, bridge: TagBridge, publisher: RecordingPublisher
    ) -> None:
        bridge.start()
        bridge.start()

        assert publisher.messages[0] == ("cell1/STATE", "ONLINE", 0, False)
        assert publisher.payloads("cell1/STATE") == ["ONLINE"]
        assert publisher.payloads("cell1/info/PiCtoryVersion") == ["2.0.0"]
        assert publisher.payloads("cell1/info/PiCtoryTimeStamp") == ["20260101120000"]
        assert publisher.payloads("cell1/info/device_DIO_20260101_1_001") == [
            "a1b2c3d4-0000-0000-0000-000000000002"
        ]
        config_text = publisher.payloads("cell1/info/PiCtoryConfiguration")[0]
        assert json.loads(config_text)["App"]["version"] == "2.0.0"

    def test_start_without_info(
        self, interface: RevPiInterface, publisher: RecordingPublisher
    ) -> None:
        TagBridge(interface, publisher, BridgeConfig(publish_info=False)).start()
        assert publisher.topics() == ["revpi/STATE"]

    def test_changes_are_published(
        self, bridge: TagBridge, interface: RevPiInterface, publisher: RecordingPublisher
    ) -> None:
        bridge.start()
        publisher.messages.clear()

        interface.poll_once()

        assert ("cell1/tags/out/O_2", "false", 1, False) in publisher.messages
        assert ("cell1/tags/out/OutputValue_1", "0", 1, False) in publisher.messages
        assert ("cell1/tags/out/Mem_1", "0", 1, False) in publisher.messages
        assert len(publisher.messages) == 3

    def test_stop(
        self, bridge: TagBridge, interface: RevPiInterface, publisher: RecordingPublisher
    ) -> None:
        bridge.start()
        bridge.stop()
        bridge.stop()
        publisher.messages.clear()

        interface.poll_once()
        assert publisher.messages == []

    def test_stop_publishes_offline_retained(
        self, bridge: TagBridge, publisher: RecordingPublisher
    ) -> None:
        bridge.start()
        bridge.stop()
        assert publisher.messages[-1] == ("cell1/STATE", "OFFLINE", 0, True)

    def test_inbound_write(self, bridge: TagBridge, interface: RevPiInterface) -> None:
        assert bridge.handle_message("cell1/tags/in/OutputValue_1", b"33") is True
        assert interface.read_raw(18, 1) == b"\x21"
        assert bridge.handle_message("cell1/tags/in/O_1", "true") is True
        assert interface.read_tag("O_1") is True

    def test_inbound_write_error_goes_to_logs(
        self, bridge: TagBridge, publisher: RecordingPublisher
    ) -> None:
        assert bridge.handle_message("cell1/tags/in/Nope", "1") is False
        assert bridge.handle_message("cell1/tags/in/OutputValue_1", "999") is False
        logs = publisher.payloads("cell1/logs")
        assert len(logs) == 2
        assert "Nope" in logs[0]

    def test_foreign_topic_ignored(self, bridge: TagBridge, publisher: RecordingPublisher) -> None:
        assert bridge.handle_message("other/tags/in/O_1", "1") is False
        assert publisher.messages == []

    def test_restart_command(
        self, interface: RevPiInterface, publisher: RecordingPublisher
    ) -> None:
        restarts: list[None] = []
        bridge = TagBridge(
            interface, publisher, BridgeConfig(), on_restart=lambda: restarts.append(None)
        )

        assert bridge.handle_message("revpi/tags/in/RESTART_APP", "") is True
        assert restarts == [None]
        assert publisher.messages == [("revpi/STATE", "OFFLINE", 0, True)]
