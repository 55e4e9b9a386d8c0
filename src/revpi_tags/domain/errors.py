"""Exception taxonomy for the tag-access layer.

Every error raised by the package derives from RevPiTagsError so that
callers handling inbound commands can report per-tag failures uniformly.
"""

from __future__ import annotations

from typing import Any


class RevPiTagsError(Exception):
    """Base exception for revpi-tags."""


class ConfigValidationError(RevPiTagsError):
    """Raised when an explicit tag configuration does not match the schema."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class TopologyError(RevPiTagsError):
    """Raised when the topology description cannot produce a consistent tag set."""


class UnsupportedTypeError(RevPiTagsError):
    """Raised when a tag type has no codec mapping."""

    def __init__(self, tag_type: object, tag: str | None = None) -> None:
        self.tag_type = tag_type
        self.tag = tag
        where = f" for tag {tag!r}" if tag else ""
        super().__init__(f"Unsupported tag type {tag_type!r}{where}")


class UnknownTagError(RevPiTagsError):
    """Raised when a tag name is not part of the tag set."""

    def __init__(self, tag: str, message: str | None = None) -> None:
        self.tag = tag
        super().__init__(message or f"Unknown tag: {tag!r}")


class TagValueError(RevPiTagsError):
    """Raised when a value cannot be coerced to or encoded as the tag's type."""

    def __init__(self, tag: str | None, value: Any, message: str) -> None:
        self.tag = tag
        self.value = value
        super().__init__(message)


class ProcessImageError(RevPiTagsError):
    """Raised when a positioned read or write on the process image fails."""

    def __init__(
        self,
        message: str,
        *,
        offset: int | None = None,
        length: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.offset = offset
        self.length = length
        self.cause = cause
        super().__init__(message)


class ControlByteUnavailableError(RevPiTagsError):
    """Raised when the topology defines no control byte (no RevPiLED output)."""

    def __init__(self) -> None:
        super().__init__("No RevPiLED control byte found in topology")


class BatchWriteError(RevPiTagsError):
    """Raised after a batch write in which one or more tags failed.

    Attributes:
        failures: Exception per failing tag name
        written: Values of the tags that were written successfully
    """

    def __init__(self, failures: dict[str, BaseException], written: dict[str, Any]) -> None:
        self.failures = failures
        self.written = written
        names = ", ".join(sorted(failures))
        super().__init__(f"Failed to write {len(failures)} tag(s): {names}")
