"""Configuration schema for revpi-tags.

Uses Pydantic v2 for validation, serialization, and documentation.
Runtime configuration is loaded from YAML; explicit tag configurations are
JSON documents validated against `TagSetConfig`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, RootModel, field_validator, model_validator

from revpi_tags.domain.codec import coerce_value
from revpi_tags.domain.errors import TagValueError
from revpi_tags.domain.model.tags import Address, TagDescriptor, TagSet, TagType

# =============================================================================
# EXPLICIT TAG CONFIGURATION
# =============================================================================


class TagConfig(BaseModel):
    """Configuration for a single tag, mirroring the tag descriptor shape."""

    model_config = ConfigDict(extra="forbid")

    type: TagType = Field(..., description="Value encoding (boolean, uint8, int16le, floatbe, ...)")
    offset: float = Field(
        ...,
        ge=0,
        description="Byte offset; for boolean tags the single fractional digit is the bit (13.2)",
    )
    value: bool | int | float | None = Field(default=None, description="Initial value")
    comment: str = Field(default="", description="Free-text comment")

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v: Any) -> Any:
        """Accept mixed-case type names such as "Int16LE"."""
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @model_validator(mode="after")
    def validate_tag(self) -> TagConfig:
        """Check the offset encodes a valid byte (and bit, for booleans) and the value fits the type."""
        self.address()
        if self.value is not None:
            try:
                self.value = coerce_value(self.value, self.type)
            except TagValueError as e:
                raise ValueError(str(e)) from e
        return self

    def address(self) -> Address:
        return Address.from_legacy(self.offset, boolean=self.type.is_boolean)

    def to_descriptor(self, name: str) -> TagDescriptor:
        return TagDescriptor(
            name=name,
            type=self.type,
            address=self.address(),
            value=self.value,
            comment=self.comment,
        )


class TagSetConfig(RootModel[dict[str, TagConfig]]):
    """Explicit tag configuration: tag name -> tag definition."""

    def to_tag_set(self) -> TagSet:
        return {name: tag.to_descriptor(name) for name, tag in self.root.items()}


# =============================================================================
# RUNTIME CONFIGURATION
# =============================================================================


class BridgeConfig(BaseModel):
    """Topic layout for the message bridge."""

    model_config = ConfigDict(extra="forbid")

    namespace: str = Field(default="revpi", min_length=1, description="Topic namespace")
    publish_info: bool = Field(default=True, description="Publish topology info on start")

    @field_validator("namespace")
    @classmethod
    def strip_namespace(cls, v: str) -> str:
        stripped = v.strip().strip("/")
        if not stripped:
            raise ValueError("Namespace cannot be empty")
        return stripped


class LoggingConfig(BaseModel):
    """Log output settings; REVPI_LOG_LEVEL and REVPI_LOG_FORMAT take precedence."""

    model_config = ConfigDict(extra="forbid")

    level: str = Field(default="INFO", description="DEBUG, INFO, WARNING or ERROR")
    format: Literal["console", "json"] = Field(default="console", description="Renderer")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v!r}")
        return level


class InterfaceConfig(BaseModel):
    """Root configuration for a process-image interface."""

    model_config = ConfigDict(extra="forbid")

    image_path: Path = Field(
        default=Path("/dev/piControl0"),
        description="Process image device or file",
    )
    topology_path: Path = Field(
        default=Path("/etc/revpi/config.rsc"),
        description="Topology description (PiCtory .rsc)",
    )
    tags_path: Path | None = Field(
        default=None,
        description="Optional explicit tag configuration (JSON); replaces topology-derived tags",
    )
    poll_interval_ms: int = Field(
        default=1000,
        ge=10,
        le=60000,
        description="Tag polling interval in milliseconds",
    )
    watchdog_grace_ms: int = Field(
        default=100,
        ge=0,
        le=10000,
        description="Delay between clearing and setting the watchdog bit",
    )
    watchdog_kick_interval_ms: int | None = Field(
        default=None,
        ge=100,
        description="Kick the watchdog at this interval while running (None disables)",
    )
    type_overrides: dict[str, TagType] = Field(
        default_factory=dict,
        description="Tag name -> type, replacing the width-inferred type",
    )
    bridge: BridgeConfig = Field(default_factory=BridgeConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("type_overrides", mode="before")
    @classmethod
    def normalize_override_types(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {k: t.strip().lower() if isinstance(t, str) else t for k, t in v.items()}
        return v

    @model_validator(mode="after")
    def validate_watchdog(self) -> InterfaceConfig:
        """The kick interval must leave room for the grace delay."""
        if (
            self.watchdog_kick_interval_ms is not None
            and self.watchdog_kick_interval_ms <= self.watchdog_grace_ms
        ):
            raise ValueError("watchdog_kick_interval_ms must exceed watchdog_grace_ms")
        return self
