from __future__ import annotations

import json
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from revpi_tags.application.interface import RevPiInterface
from revpi_tags.config.schema import InterfaceConfig

IMAGE_SIZE = 64


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    for item in items:
        item.add_marker(pytest.mark.unit)


def make_topology() -> dict[str, Any]:
    """A core module at offset 0 and a DIO module at offset 10."""
    return {
        "App": {"name": "PiCtory", "version": "2.0.0", "saveTS": "20260101120000"},
        "Devices": [
            {
                "GUID": "a1b2c3d4-0000-0000-0000-000000000001",
                "id": "device_RevPiCore_20260101_1_001",
                "type": "BASE",
                "offset": 0,
                "inp": {
                    "0": ["Core_Temperature", "0", "8", "1", True, "0000", "", ""],
                },
                "out": {
                    "0": ["RevPiLED", "0", "8", "0", True, "0001", "", ""],
                },
                "mem": {},
            },
            {
                "GUID": "a1b2c3d4-0000-0000-0000-000000000002",
                "id": "device_DIO_20260101_1_001",
                "type": "LEFT_RIGHT",
                "offset": 10,
                "inp": {
                    "0": ["I_1", "0", "1", "0", True, "0000", "", "0"],
                    "1": ["X", "0", "1", "3", True, "0001", "", "2"],
                    "2": ["InputValue_1", "0", "16", "4", True, "0002", "analog in", ""],
                    "3": ["Counter_1", "0", "32", "16", True, "0003", "", ""],
                },
                "out": {
                    "0": ["O_1", "0", "1", "6", True, "0010", "", "0"],
                    "1": ["O_2", "1", "1", "6", True, "0011", "", "9"],
                    "2": ["OutputValue_1", "7", "8", "8", True, "0012", "", ""],
                },
                "mem": {
                    "0": ["Mem_1", "100", "16", "20", False, "0020", "", ""],
                    "1": ["Wide_1", "0", "64", "22", False, "0021", "", ""],
                    "2": ["Broken"],
                },
            },
        ],
        "Summary": {"inpTotal": 32, "outTotal": 16},
    }


@pytest.fixture
def topology_doc() -> dict[str, Any]:
    return make_topology()


@pytest.fixture
def topology_file(tmp_path: Path, topology_doc: dict[str, Any]) -> Path:
    path = tmp_path / "config.rsc"
    path.write_text(json.dumps(topology_doc), encoding="utf-8")
    return path


@pytest.fixture
def image_file(tmp_path: Path) -> Path:
    path = tmp_path / "piControl0"
    path.write_bytes(bytes(IMAGE_SIZE))
    return path


@pytest.fixture
def config(image_file: Path, topology_file: Path) -> InterfaceConfig:
    return InterfaceConfig(
        image_path=image_file,
        topology_path=topology_file,
        poll_interval_ms=20,
        watchdog_grace_ms=10,
    )


@pytest.fixture
def interface(config: InterfaceConfig) -> Iterator[RevPiInterface]:
    revpi = RevPiInterface(config)
    yield revpi
    revpi.close()


@pytest.fixture
def poke(image_file: Path) -> Callable[[int, bytes], None]:
    """Mutate the image behind the interface's back, like the I/O driver would."""

    def _poke(offset: int, data: bytes) -> None:
        with image_file.open("r+b") as f:
            f.seek(offset)
            f.write(data)

    return _poke


@pytest.fixture
def peek(image_file: Path) -> Callable[..., bytes]:
    def _peek(offset: int, length: int = 1) -> bytes:
        return image_file.read_bytes()[offset : offset + length]

    return _peek
