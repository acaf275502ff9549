# src/hecship/core/config.py
"""
Exporter configuration schema, key/value store and loading.

Uses Pydantic for validation and Dynaconf for file + environment loading.
Settings are frozen (immutable) after construction: the controller swaps
whole snapshots on reconfigure and every flush cycle reads one snapshot
by value.
"""

import os
import re
import threading
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, Field, field_validator

from hecship.errors import ConfigurationIncomplete

# Store keys for each settings field. The first eight are the keys the
# enclosing application persists; the last two are exporter-only tuning.
SETTING_KEYS: Mapping[str, str] = {
    "url": "splunk.url",
    "hec_token": "splunk.hecToken",
    "index": "splunk.index",
    "delay_seconds": "splunk.delaySeconds",
    "filter": "splunk.filter",
    "autostart_global": "splunk.autostartGlobal",
    "autostart_project": "splunk.autostartProject",
    "filter_project_previous": "splunk.filterProjectPrevious",
    "request_timeout": "splunk.requestTimeout",
    "verify_tls": "splunk.verifyTls",
}

MIN_DELAY_SECONDS = 10
MAX_DELAY_SECONDS = 99_999
DELAY_STEP_SECONDS = 10


class ConfigStore(Protocol):
    """Key/value settings store owned by the enclosing application.

    Keys are the dotted names in SETTING_KEYS. Missing keys return None.
    """

    def get_setting(self, key: str) -> Any:
        """Return the stored value for key, or None if unset."""
        ...

    def set_setting(self, key: str, value: Any) -> None:
        """Store value under key."""
        ...


class MemoryConfigStore:
    """Thread-safe in-memory ConfigStore.

    Key lookup is case-insensitive so values loaded from environment
    variables (which Dynaconf may upper-case) resolve to the same keys.
    """

    def __init__(self, values: Mapping[str, Any] | None = None) -> None:
        self._lock = threading.Lock()
        self._values: dict[str, Any] = {}
        for key, value in (values or {}).items():
            self._values[key.lower()] = value

    def get_setting(self, key: str) -> Any:
        with self._lock:
            return self._values.get(key.lower())

    def set_setting(self, key: str, value: Any) -> None:
        with self._lock:
            self._values[key.lower()] = value

    def as_dict(self) -> dict[str, Any]:
        """Return a copy of all stored values (lower-cased keys)."""
        with self._lock:
            return dict(self._values)


class ExporterSettings(BaseModel):
    """Exporter configuration snapshot.

    Example YAML:
        splunk:
          url: https://splunk.example.com:8088/services/collector
          hecToken: ${SPLUNK_HEC_TOKEN}
          index: web
          delaySeconds: 30
          filter: "record['hostname'] == 'api.example.com'"
    """

    model_config = {"frozen": True}

    url: str = Field(default="", description="HTTP Event Collector endpoint URL")
    hec_token: str = Field(default="", repr=False, description="HEC token sent as 'Authorization: Splunk <token>'")
    index: str = Field(default="", description="Target index written into every event")
    delay_seconds: int = Field(
        default=120,
        ge=MIN_DELAY_SECONDS,
        le=MAX_DELAY_SECONDS,
        description="Flush interval in seconds",
    )
    filter: str | None = Field(default=None, description="Filter expression; empty admits everything")
    autostart_global: bool = Field(default=False, description="Start automatically in every project")
    autostart_project: bool = Field(default=False, description="Start automatically in this project")
    filter_project_previous: str | None = Field(
        default=None,
        description="Last filter confirmed for this project (change detection in the settings UI)",
    )
    request_timeout: float = Field(default=30.0, gt=0, description="Per-request timeout in seconds")
    verify_tls: bool = Field(default=True, description="Verify the collector's TLS certificate")

    @field_validator("url", "hec_token", "index", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        """Stores hold None for unset strings."""
        return "" if v is None else v

    @field_validator("url", "hec_token", "index")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        return v.strip()

    @field_validator("filter", "filter_project_previous")
    @classmethod
    def blank_filter_to_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()

    def missing_required(self) -> tuple[str, ...]:
        """Return the names of required settings that are blank."""
        missing = []
        if not self.url:
            missing.append("url")
        if not self.hec_token:
            missing.append("hec_token")
        return tuple(missing)

    @property
    def is_complete(self) -> bool:
        """Whether URL and token are both set."""
        return not self.missing_required()

    def require_complete(self) -> None:
        """Raise ConfigurationIncomplete if URL or token is blank."""
        missing = self.missing_required()
        if missing:
            raise ConfigurationIncomplete(missing)

    @classmethod
    def from_store(cls, store: ConfigStore) -> "ExporterSettings":
        """Read a settings snapshot from a ConfigStore.

        Unset keys fall back to field defaults.

        Raises:
            ValidationError: If a stored value is invalid (e.g. delay out of range)
        """
        values: dict[str, Any] = {}
        for field_name, key in SETTING_KEYS.items():
            value = store.get_setting(key)
            if value is not None:
                values[field_name] = value
        return cls(**values)

    def to_store(self, store: ConfigStore) -> None:
        """Write every field of this snapshot into a ConfigStore."""
        for field_name, key in SETTING_KEYS.items():
            store.set_setting(key, getattr(self, field_name))

    def to_display_dict(self) -> dict[str, Any]:
        """Return store-keyed settings with the token masked, for display."""
        display: dict[str, Any] = {}
        for field_name, key in SETTING_KEYS.items():
            display[key] = getattr(self, field_name)
        token = self.hec_token
        display[SETTING_KEYS["hec_token"]] = f"****{token[-4:]}" if len(token) > 8 else ("****" if token else "")
        return display


# Regex pattern for ${VAR} or ${VAR:-default} syntax
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")


def _expand_env_vars(value: Any) -> Any:
    """Recursively expand ${VAR} and ${VAR:-default} patterns."""

    def replacer(match: re.Match[str]) -> str:
        env_value = os.environ.get(match.group(1))
        if env_value is not None:
            return env_value
        default = match.group(2)
        if default is not None:
            return default
        # No env var and no default - keep original (validation will flag it)
        return match.group(0)

    if isinstance(value, str):
        return _ENV_VAR_PATTERN.sub(replacer, value)
    if isinstance(value, Mapping):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env_vars(item) for item in value]
    return value


def _flatten(prefix: str, value: Any, out: dict[str, Any]) -> None:
    if isinstance(value, Mapping):
        for key, sub_value in value.items():
            _flatten(f"{prefix}.{key}" if prefix else str(key), sub_value, out)
    else:
        out[prefix] = value


def load_store(config_path: Path) -> MemoryConfigStore:
    """Load a ConfigStore from a YAML file with environment overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (HECSHIP_*) - highest priority
    2. Config file
    3. Defaults from ExporterSettings - lowest priority

    Environment variable format: HECSHIP_SPLUNK__URL for nested keys.

    Raises:
        FileNotFoundError: If the config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="HECSHIP",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k.lower(): v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    raw_config = _expand_env_vars(raw_config)

    flat: dict[str, Any] = {}
    _flatten("", raw_config, flat)
    return MemoryConfigStore(flat)


def load_settings(config_path: Path) -> ExporterSettings:
    """Load and validate an ExporterSettings snapshot from a YAML file."""
    return ExporterSettings.from_store(load_store(config_path))
