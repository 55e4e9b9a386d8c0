"""JSON Schema export and validation for explicit tag configurations.

The exported schema is the published contract for `tags_path` files and for
configurations passed directly to RevPiInterface.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from revpi_tags.config.loader import format_validation_errors
from revpi_tags.config.schema import TagSetConfig
from revpi_tags.domain.errors import ConfigValidationError
from revpi_tags.domain.model.tags import TagSet

# Schema version tracks breaking changes to the tag configuration format
SCHEMA_VERSION = "1.0.0"


def export_json_schema(
    *,
    version: str | None = None,
    include_metadata: bool = True,
) -> dict[str, Any]:
    """Export TagSetConfig as JSON Schema with optional metadata.

    Args:
        version: Schema version to embed. Defaults to SCHEMA_VERSION.
        include_metadata: Whether to include $schema, title, and metadata.

    Returns:
        JSON Schema dictionary compatible with JSON Schema Draft 2020-12.
    """
    schema = TagSetConfig.model_json_schema(mode="validation")

    if include_metadata:
        schema_version = version or SCHEMA_VERSION
        schema["$schema"] = "https://json-schema.org/draft/2020-12/schema"
        schema["title"] = "RevPi Tag Configuration Schema"
        schema["description"] = (
            "Explicit tag set for revpi-tags: tag name mapped to type, "
            "byte.bit offset, initial value and comment."
        )
        schema["x-revpi-tags"] = {
            "version": schema_version,
            "generated_at": datetime.now(UTC).isoformat(),
            "generator": "revpi-tags",
        }

    return schema


def export_json_schema_string(
    *,
    version: str | None = None,
    include_metadata: bool = True,
    indent: int = 2,
) -> str:
    """Export the tag configuration schema as a formatted JSON string."""
    schema = export_json_schema(version=version, include_metadata=include_metadata)
    return json.dumps(schema, indent=indent, sort_keys=False)


def get_schema_version() -> str:
    return SCHEMA_VERSION


def validate_tag_config(config: Mapping[str, Any] | str) -> list[str]:
    """Validate an explicit tag configuration.

    Returns:
        List of validation error messages. Empty if valid.
    """
    try:
        load_tag_config(config)
    except ConfigValidationError as e:
        if not e.errors:
            return [str(e)]
        messages = []
        for err in e.errors:
            loc = ".".join(str(x) for x in err.get("loc", ()))
            messages.append(f"{loc}: {err['msg']}" if loc else err["msg"])
        return messages
    return []


def load_tag_config(config: Mapping[str, Any] | str | Path) -> TagSet:
    """Validate an explicit tag configuration and build its tag set.

    Args:
        config: Mapping, JSON text, or a Path to a JSON file

    Raises:
        ConfigValidationError: Carrying the first validation error message
    """
    if isinstance(config, Path):
        try:
            config = config.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigValidationError(f"Cannot read tag configuration {config}: {e}") from e

    if isinstance(config, str):
        try:
            config = json.loads(config)
        except json.JSONDecodeError as e:
            raise ConfigValidationError(f"Tag configuration is not valid JSON: {e}") from e

    try:
        validated = TagSetConfig.model_validate(config)
    except ValidationError as e:
        first = format_validation_errors(e)[0]
        raise ConfigValidationError(
            f"Tag configuration does not match schema: {first}",
            errors=[dict(err) for err in e.errors()],
        ) from e

    return validated.to_tag_set()
