"""Runtime configuration loading for revpi-tags.

A configuration is one YAML mapping, optionally deep-merged with an
override file (for example a per-device file next to a shared base).
String values may reference environment variables as `${VAR}` or
`${VAR:-default}`; a reference to an unset variable without a default is
left as written so validation reports it against the right field.
"""

from __future__ import annotations

import os
import re
from typing import TYPE_CHECKING, Any, cast

import structlog
import yaml
from pydantic import ValidationError

from revpi_tags.config.schema import InterfaceConfig

if TYPE_CHECKING:
    from pathlib import Path

logger = structlog.get_logger(__name__)

_ENV_REFERENCE = re.compile(r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<default>[^}]*))?\}")


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Read one YAML mapping; an empty file is an empty mapping.

    Raises:
        ConfigurationError: If the file is missing, unreadable, not YAML or not a mapping
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigurationError(f"Configuration file not found: {path}") from e
    except IsADirectoryError as e:
        raise ConfigurationError(f"Configuration path is not a file: {path}") from e
    except OSError as e:
        raise ConfigurationError(f"Cannot read configuration file {path}: {e}") from e

    try:
        content = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ConfigurationError(
            f"Configuration in {path} must be a YAML mapping, got {type(content).__name__}"
        )
    return content


def _expand_string(text: str) -> str:
    def substitute(match: re.Match[str]) -> str:
        value = os.environ.get(match["name"])
        if value is not None:
            return value
        if match["default"] is not None:
            return match["default"]
        return match[0]

    return _ENV_REFERENCE.sub(substitute, text)


def expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Expand `${VAR}` and `${VAR:-default}` in every string, at any depth."""

    def walk(node: Any) -> Any:
        if isinstance(node, str):
            return _expand_string(node)
        if isinstance(node, dict):
            return {key: walk(value) for key, value in node.items()}
        if isinstance(node, list):
            return [walk(item) for item in node]
        return node

    return cast("dict[str, Any]", walk(config))


def merge_configs(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep-merge `override` into `base`; nested mappings merge, anything else is replaced."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = merge_configs(current, value)
        else:
            merged[key] = value
    return merged


def format_validation_errors(exc: ValidationError) -> list[str]:
    """Render pydantic errors as "loc: msg" lines."""
    lines = []
    for error in exc.errors():
        loc = ".".join(str(x) for x in error["loc"])
        lines.append(f"{loc}: {error['msg']}" if loc else error["msg"])
    return lines


def load_config(
    config_path: Path,
    *,
    override_path: Path | None = None,
    expand_env: bool = True,
) -> InterfaceConfig:
    """Load, merge and validate the runtime configuration.

    Raises:
        ConfigurationError: If a file cannot be loaded or validation fails
    """
    raw = load_yaml_file(config_path)
    if override_path is not None:
        raw = merge_configs(raw, load_yaml_file(override_path))
    if expand_env:
        raw = expand_env_vars(raw)

    try:
        config = InterfaceConfig.model_validate(raw)
    except ValidationError as e:
        lines = format_validation_errors(e)
        raise ConfigurationError(
            f"Invalid configuration in {config_path}:\n" + "\n".join(f"  - {line}" for line in lines),
            errors=cast("list[dict[str, Any]]", e.errors()),
        ) from e

    logger.info(
        "Configuration loaded",
        path=str(config_path),
        override=str(override_path) if override_path else None,
        image=str(config.image_path),
        topology=str(config.topology_path),
        explicit_tags=config.tags_path is not None,
    )
    return config


def generate_example_config() -> str:
    """Render an example configuration as YAML."""
    example = {
        "image_path": "/dev/piControl0",
        "topology_path": "${REVPI_TOPOLOGY:-/etc/revpi/config.rsc}",
        "tags_path": None,
        "poll_interval_ms": 1000,
        "watchdog_grace_ms": 100,
        "watchdog_kick_interval_ms": 1000,
        "type_overrides": {"InputValue_1": "uint16le"},
        "bridge": {"namespace": "revpi", "publish_info": True},
        "logging": {"level": "INFO", "format": "console"},
    }
    return yaml.safe_dump(example, sort_keys=False)
