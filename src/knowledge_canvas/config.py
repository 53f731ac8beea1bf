"""Unified configuration for knowledge-canvas.

CanvasConfig provides a clean way to configure all components:
- Geometry save debouncing
- Neighborhood expansion
- Domain graph fetch filters
- Link styling
- Backend connection

Configuration can be built directly, read from environment variables
with CanvasConfig.from_env(), or loaded from a YAML file:

    canvas:
      save:
        debounce_seconds: 0.5
      expansion:
        page_size: 30
        inferred: true
      backend:
        url: "https://opencti.local/graphql"
        token: "${CANVAS_BACKEND_TOKEN}"
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILES = [
    "canvas.yaml",
    "canvas.yml",
    ".canvas.yaml",
]


@dataclass
class SaveConfig:
    """Configuration for debounced view blob persistence."""

    enabled: bool = True
    debounce_seconds: float = 1.0


@dataclass
class ExpansionConfig:
    """Configuration for neighborhood expansion."""

    page_size: int = 30
    inferred: bool = True

    # Role metadata sent with the batched attach mutation
    from_role: str = "knowledge_aggregation"
    to_role: str = "so"
    through: str = "object_refs"


@dataclass
class FetchConfig:
    """Filters applied when fetching the domain graph."""

    to_types: list[str] | None = None
    first_seen_start: str | None = None
    first_seen_stop: str | None = None
    last_seen_start: str | None = None
    last_seen_stop: str | None = None
    weights: list[int] | None = None
    inferred: bool | None = None
    count: int = 50

    def to_variables(self) -> dict[str, Any]:
        """Query variables for the non-empty filters."""
        variables: dict[str, Any] = {"first": self.count}
        if self.to_types:
            variables["toTypes"] = self.to_types
        if self.first_seen_start:
            variables["firstSeenStart"] = self.first_seen_start
        if self.first_seen_stop:
            variables["firstSeenStop"] = self.first_seen_stop
        if self.last_seen_start:
            variables["lastSeenStart"] = self.last_seen_start
        if self.last_seen_stop:
            variables["lastSeenStop"] = self.last_seen_stop
        if self.weights:
            variables["weights"] = self.weights
        if self.inferred is not None:
            variables["inferred"] = self.inferred
        return variables


@dataclass
class StyleConfig:
    """Link colors used by first-seen year highlighting."""

    default_link_color: str = "#00bcd4"
    highlight_link_color: str = "#ff3d00"


@dataclass
class BackendConfig:
    """Configuration for the GraphQL backend."""

    url: str = "http://localhost:4000/graphql"
    token: str | None = None
    timeout_seconds: int = 30


@dataclass
class CanvasConfig:
    """Main configuration for knowledge-canvas.

    Create from environment variables:
        config = CanvasConfig.from_env()

    Or specify directly:
        config = CanvasConfig(
            save=SaveConfig(debounce_seconds=0.5),
            expansion=ExpansionConfig(page_size=10),
        )
    """

    save: SaveConfig = field(default_factory=SaveConfig)
    expansion: ExpansionConfig = field(default_factory=ExpansionConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    style: StyleConfig = field(default_factory=StyleConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Check value ranges.

        Raises:
            ConfigurationError: If any setting is out of range
        """
        if self.save.debounce_seconds < 0:
            raise ConfigurationError(
                f"save.debounce_seconds must be >= 0, got {self.save.debounce_seconds}"
            )
        if self.expansion.page_size <= 0:
            raise ConfigurationError(
                f"expansion.page_size must be > 0, got {self.expansion.page_size}"
            )
        if self.fetch.count <= 0:
            raise ConfigurationError(f"fetch.count must be > 0, got {self.fetch.count}")
        if self.backend.timeout_seconds <= 0:
            raise ConfigurationError(
                f"backend.timeout_seconds must be > 0, got {self.backend.timeout_seconds}"
            )

    @classmethod
    def from_env(cls) -> "CanvasConfig":
        """Load configuration from environment variables.

        Environment variables:
        - CANVAS_SAVE_ENABLED: true/false
        - CANVAS_SAVE_DEBOUNCE_SECONDS: Quiet window before a view save
        - CANVAS_EXPANSION_PAGE_SIZE: Relations fetched per expansion
        - CANVAS_EXPANSION_INFERRED: true/false
        - CANVAS_FETCH_COUNT: Relations fetched at mount
        - CANVAS_FETCH_TO_TYPES: Comma-separated entity type allow-list
        - CANVAS_BACKEND_URL: GraphQL endpoint
        - CANVAS_BACKEND_TOKEN: Bearer token
        - CANVAS_BACKEND_TIMEOUT: Request timeout in seconds
        """
        try:
            to_types = os.getenv("CANVAS_FETCH_TO_TYPES")
            return cls(
                save=SaveConfig(
                    enabled=os.getenv("CANVAS_SAVE_ENABLED", "true").lower() == "true",
                    debounce_seconds=float(
                        os.getenv("CANVAS_SAVE_DEBOUNCE_SECONDS", "1.0")
                    ),
                ),
                expansion=ExpansionConfig(
                    page_size=int(os.getenv("CANVAS_EXPANSION_PAGE_SIZE", "30")),
                    inferred=os.getenv(
                        "CANVAS_EXPANSION_INFERRED", "true"
                    ).lower() == "true",
                ),
                fetch=FetchConfig(
                    to_types=[t.strip() for t in to_types.split(",") if t.strip()]
                    if to_types
                    else None,
                    count=int(os.getenv("CANVAS_FETCH_COUNT", "50")),
                ),
                backend=BackendConfig(
                    url=os.getenv("CANVAS_BACKEND_URL", "http://localhost:4000/graphql"),
                    token=os.getenv("CANVAS_BACKEND_TOKEN"),
                    timeout_seconds=int(os.getenv("CANVAS_BACKEND_TIMEOUT", "30")),
                ),
            )
        except ValueError as e:
            raise ConfigurationError("Invalid numeric environment setting", cause=e)

    @classmethod
    def default(cls) -> "CanvasConfig":
        """Create a default configuration (same as no-arg constructor)."""
        return cls()


def load_config(path: str | Path | None = None) -> CanvasConfig:
    """Load configuration from a YAML file.

    Args:
        path: Explicit config path. When omitted, canvas.yaml is searched for
            in the current and parent directories; defaults are used if none
            is found.

    Returns:
        Parsed configuration.

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")
    else:
        config_path = _find_config_file()
        if config_path is None:
            logger.debug("No config file found, using defaults")
            return CanvasConfig()

    try:
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load config file {config_path}", cause=e)

    return _parse_config(raw)


def _find_config_file() -> Path | None:
    """Search for a config file in current and parent directories."""
    current = Path.cwd()

    for _ in range(5):
        for filename in DEFAULT_CONFIG_FILES:
            config_path = current / filename
            if config_path.exists():
                logger.debug(f"Found config file: {config_path}")
                return config_path

        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


_SECTIONS = {
    "save": SaveConfig,
    "expansion": ExpansionConfig,
    "fetch": FetchConfig,
    "style": StyleConfig,
    "backend": BackendConfig,
}


def _parse_config(raw: dict[str, Any]) -> CanvasConfig:
    """Parse a raw YAML dict into CanvasConfig.

    Accepts the settings either at top level or nested under a
    ``canvas`` key. Unknown keys are logged and ignored.
    """
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config root must be a mapping, got {type(raw).__name__}")

    data = _expand_env_vars(raw.get("canvas", raw))
    sections: dict[str, Any] = {}

    for name, section_cls in _SECTIONS.items():
        section_raw = data.get(name) or {}
        if not isinstance(section_raw, dict):
            raise ConfigurationError(f"Config section '{name}' must be a mapping")

        known = {f.name for f in fields(section_cls)}
        for key in section_raw:
            if key not in known:
                logger.warning(f"Ignoring unknown config key '{name}.{key}'")

        try:
            sections[name] = section_cls(
                **{k: v for k, v in section_raw.items() if k in known}
            )
        except TypeError as e:
            raise ConfigurationError(f"Invalid config section '{name}'", cause=e)

    return CanvasConfig(**sections)


def _expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR} references in config values."""
    if isinstance(data, dict):
        return {k: _expand_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        return os.path.expandvars(data)
    else:
        return data
