"""revpi-tags - Named tag access to the Revolution Pi process image.

This package provides:
- Tag maps derived from a PiCtory topology or an explicit JSON tag configuration
- Bit-exact reads and writes of typed tags in the shared process image
- Change detection by polling, with batched change events
- Control byte operations (status LEDs, relay, watchdog)
- Persistence of tag default values with compressed backups
"""

__version__ = "0.1.0"

__author__ = "revpi-tags developers"

from revpi_tags.application.control import LEDState, RelayState
from revpi_tags.application.interface import RevPiInterface
from revpi_tags.config.schema import InterfaceConfig
from revpi_tags.domain.errors import (
    ConfigValidationError,
    UnknownTagError,
    UnsupportedTypeError,
)
from revpi_tags.domain.model.tags import Address, TagDescriptor, TagType

__all__ = [
    "Address",
    "ConfigValidationError",
    "InterfaceConfig",
    "LEDState",
    "RelayState",
    "RevPiInterface",
    "TagDescriptor",
    "TagType",
    "UnknownTagError",
    "UnsupportedTypeError",
    "__version__",
]
