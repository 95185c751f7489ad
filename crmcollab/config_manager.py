"""ConfigManager — layered collaboration settings and environment profiles."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from crmcollab.config import (
    DEFAULT_ACTIVITY_PAGE_SIZE,
    DEFAULT_MAX_DEPTH,
    DEFAULT_SUGGESTION_LIMIT,
    MENTION_BASE_URL,
)

logger = logging.getLogger(__name__)

# Key -> default, description, secret flag
_CONFIG_KEYS: dict[str, dict[str, Any]] = {
    "CRMCOLLAB_ENV": {"default": "development", "description": "Environment profile"},
    "CRMCOLLAB_LOG_LEVEL": {"default": "INFO", "description": "Logging level"},
    "CRMCOLLAB_DB": {"default": "collaboration.db", "description": "SQLite store path"},
    "CRMCOLLAB_MAX_DEPTH": {"default": DEFAULT_MAX_DEPTH, "description": "Deepest reply level"},
    "CRMCOLLAB_SUGGESTION_LIMIT": {
        "default": DEFAULT_SUGGESTION_LIMIT,
        "description": "Mention suggestions shown",
    },
    "CRMCOLLAB_ACTIVITY_PAGE_SIZE": {
        "default": DEFAULT_ACTIVITY_PAGE_SIZE,
        "description": "Activity log page size",
    },
    "CRMCOLLAB_MENTION_BASE_URL": {
        "default": MENTION_BASE_URL,
        "description": "Link prefix for rendered mentions",
    },
    "CRMCOLLAB_WEBHOOK_URL": {
        "default": "",
        "description": "Notification webhook URL",
        "secret": True,
    },
}

_PROFILES: dict[str, dict[str, str]] = {
    "development": {
        "CRMCOLLAB_ENV": "development",
        "CRMCOLLAB_LOG_LEVEL": "DEBUG",
    },
    "production": {
        "CRMCOLLAB_ENV": "production",
        "CRMCOLLAB_LOG_LEVEL": "WARNING",
    },
    "testing": {
        "CRMCOLLAB_ENV": "testing",
        "CRMCOLLAB_LOG_LEVEL": "DEBUG",
        "CRMCOLLAB_DB": ":memory:",
    },
}

# CollabSettings field -> config key
_FIELD_KEYS: dict[str, str] = {
    "env": "CRMCOLLAB_ENV",
    "log_level": "CRMCOLLAB_LOG_LEVEL",
    "db_path": "CRMCOLLAB_DB",
    "max_depth": "CRMCOLLAB_MAX_DEPTH",
    "suggestion_limit": "CRMCOLLAB_SUGGESTION_LIMIT",
    "activity_page_size": "CRMCOLLAB_ACTIVITY_PAGE_SIZE",
    "mention_base_url": "CRMCOLLAB_MENTION_BASE_URL",
    "webhook_url": "CRMCOLLAB_WEBHOOK_URL",
}


class CollabSettings(BaseModel):
    """Typed, validated view of the merged configuration.

    Consumed by ``CollaborationService.from_settings`` and the
    ``from_settings`` constructors of the view controllers.
    """

    env: str = "development"
    log_level: str = "INFO"
    db_path: str = "collaboration.db"
    max_depth: int = Field(default=DEFAULT_MAX_DEPTH, ge=0)
    suggestion_limit: int = Field(default=DEFAULT_SUGGESTION_LIMIT, ge=0)
    activity_page_size: int = Field(default=DEFAULT_ACTIVITY_PAGE_SIZE, ge=1)
    mention_base_url: str = MENTION_BASE_URL
    webhook_url: str = ""

    @field_validator("env")
    @classmethod
    def _known_env(cls, value: str) -> str:
        if value not in _PROFILES:
            raise ValueError(f"unknown environment '{value}'")
        return value

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        if not isinstance(logging.getLevelName(value.upper()), int):
            raise ValueError(f"unknown log level '{value}'")
        return value.upper()

    @classmethod
    def from_config(cls, config: Mapping[str, str]) -> CollabSettings:
        """Build settings from a flat ``CRMCOLLAB_*`` mapping."""
        return cls.model_validate(
            {field: config[key] for field, key in _FIELD_KEYS.items() if key in config}
        )


def _read_json_layer(path: Path) -> dict[str, str]:
    if not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError):
        logger.warning("Ignoring unreadable %s", path, exc_info=True)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring %s: expected a JSON object", path)
        return {}
    return {str(k): str(v) for k, v in data.items()}


def _read_env_file(path: Path) -> dict[str, str]:
    """Parse ``KEY=value`` lines; ``export`` prefixes and matching quotes are dropped."""
    if not path.is_file():
        return {}
    try:
        text = path.read_text(encoding="utf-8")
    except OSError:
        logger.warning("Ignoring unreadable %s", path, exc_info=True)
        return {}

    values: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export "):]
        key, value = (part.strip() for part in line.split("=", 1))
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
            value = value[1:-1]
        values[key] = value
    return values


class ConfigManager:
    """Layered configuration for one deployment directory.

    Layers, lowest precedence first: key defaults, the environment profile
    named by ``CRMCOLLAB_ENV``, ``.crmcollab/config.json``, ``.env`` and the
    process environment.

    Parameters
    ----------
    environ:
        Environment mapping to read; defaults to ``os.environ``.
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None) -> None:
        self._environ = os.environ if environ is None else environ

    def generate_env_template(self, project_path: str | Path) -> Path:
        """Write ``.env.example`` listing every key, secrets last and blank.

        Returns the path to the generated file.
        """
        settings = [k for k, info in _CONFIG_KEYS.items() if not info.get("secret")]
        secrets = [k for k, info in _CONFIG_KEYS.items() if info.get("secret")]

        lines = ["# crmcollab settings; copy to .env and adjust", ""]
        for key in settings:
            lines += [f"# {_CONFIG_KEYS[key]['description']}", f"{key}={_CONFIG_KEYS[key]['default']}", ""]
        lines += ["# --- secrets (never commit real values) ---", ""]
        for key in secrets:
            lines += [f"# {_CONFIG_KEYS[key]['description']}", f"{key}=", ""]

        env_path = Path(project_path) / ".env.example"
        env_path.write_text("\n".join(lines), encoding="utf-8")
        return env_path

    def load_config(self, project_path: str | Path) -> dict[str, str]:
        """Merged flat configuration for *project_path*."""
        config, _ = self._merge(Path(project_path))
        return config

    def config_sources(self, project_path: str | Path) -> dict[str, str]:
        """Name of the layer that supplied each key's final value."""
        _, origin = self._merge(Path(project_path))
        return origin

    def load_settings(self, project_path: str | Path) -> CollabSettings:
        """Merged configuration as validated CollabSettings.

        Raises pydantic's ``ValidationError`` on invalid values.
        """
        return CollabSettings.from_config(self.load_config(project_path))

    def validate_config(self, config: Mapping[str, str]) -> list[str]:
        """Return a list of problems with a merged config (empty if valid)."""
        try:
            CollabSettings.from_config(config)
        except ValidationError as exc:
            return [
                f"{_FIELD_KEYS.get(str(err['loc'][0]), err['loc'][0])}: {err['msg']}"
                for err in exc.errors()
            ]
        return []

    def _merge(self, root: Path) -> tuple[dict[str, str], dict[str, str]]:
        env_name = self._environ.get("CRMCOLLAB_ENV", str(_CONFIG_KEYS["CRMCOLLAB_ENV"]["default"]))
        if env_name not in _PROFILES:
            logger.warning("Unknown environment profile '%s'; using defaults only", env_name)

        layers: list[tuple[str, Mapping[str, str]]] = [
            ("default", {k: str(info["default"]) for k, info in _CONFIG_KEYS.items()}),
            (f"profile:{env_name}", _PROFILES.get(env_name, {})),
            ("config.json", _read_json_layer(root / ".crmcollab" / "config.json")),
            (".env", _read_env_file(root / ".env")),
            ("environment", {k: self._environ[k] for k in _CONFIG_KEYS if k in self._environ}),
        ]

        config: dict[str, str] = {}
        origin: dict[str, str] = {}
        for name, values in layers:
            for key, value in values.items():
                config[key] = value
                origin[key] = name
        return config, origin


def configure_logging(level: str | int = "INFO") -> None:
    """Set the level of the ``crmcollab`` logger hierarchy."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.getLogger("crmcollab").setLevel(level)
