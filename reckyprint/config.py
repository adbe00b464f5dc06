"""Configuration management for the Recky Print agent.

The configuration is read once at startup and never mutated afterwards:
every component receives the same frozen ``AgentConfig`` value.
"""

import json
import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".config" / "reckyprint"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.json"

DEFAULT_SERVER_URL = "wss://ws.reckonnt.net:9090/ws"

AUTH_MODES = ("ack", "optimistic", "manual")

# Keys written by the legacy settings.js, mapped to (field, divisor).
# A divisor of 1000 converts milliseconds to seconds.
_LEGACY_KEYS = {
    "serverUrl": ("server_url", None),
    "agentKey": ("agent_key", None),
    "agentName": ("agent_name", None),
    "authMode": ("auth_mode", None),
    "reconnectTimeout": ("reconnect_delay", 1000),
    "reconnectMaxAttempts": ("reconnect_max_attempts", None),
    "keepaliveInterval": ("keepalive_interval", 1000),
    "keepaliveTimeout": ("keepalive_timeout", 1000),
    "jobPause": ("job_pause", 1000),
    "tempDir": ("temp_dir", None),
    "tempFileCleanupDelay": ("temp_file_cleanup_delay", 1000),
    "sumatraPath": ("sumatra_path", None),
    "defaultPrinter": ("default_printer", None),
    "logLevel": ("log_level", None),
    "logFile": ("log_file", None),
    "controlHost": ("control_host", None),
    "controlPort": ("control_port", None),
}

_FEATURE_KEYS = {
    "defaultMode": "mode",
    "default_mode": "mode",
    "delayMs": "delay_ms",
    "feedLines": "feed_lines",
}


class ConfigError(Exception):
    """Configuration file could not be read or is invalid."""

    pass


@dataclass(frozen=True)
class FeatureSettings:
    """Settings for one post-print feature (cut or beep).

    Every field is optional: ``None`` means "not set here", so the
    resolver falls through to the next level.
    """

    enabled: bool | None = None
    mode: str | None = None
    feed_lines: int | None = None
    count: int | None = None
    duration: int | None = None
    delay_ms: int | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FeatureSettings":
        names = {f.name for f in fields(cls)}
        values = {}
        for key, value in data.items():
            key = _FEATURE_KEYS.get(key, key)
            if key in names:
                values[key] = value
        return cls(**values)


@dataclass(frozen=True)
class FeatureConfig:
    """Global defaults for a feature plus per-printer overrides."""

    defaults: FeatureSettings = field(default_factory=FeatureSettings)
    per_printer: Mapping[str, FeatureSettings] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "FeatureConfig":
        if not data:
            return cls()
        if not isinstance(data, Mapping):
            raise ConfigError("cut and beep settings must be objects")
        data = dict(data)
        overrides = data.pop("per_printer", None) or data.pop("perPrinter", None) or {}
        if not isinstance(overrides, Mapping):
            raise ConfigError("per_printer must be an object keyed by printer name")
        per_printer = {}
        for name, entry in overrides.items():
            if entry is None:
                entry = {}
            if not isinstance(entry, Mapping):
                raise ConfigError(f"per_printer entry for '{name}' must be an object")
            per_printer[name] = FeatureSettings.from_dict(entry)
        return cls(
            defaults=FeatureSettings.from_dict(data),
            per_printer=MappingProxyType(per_printer),
        )

    def to_dict(self) -> dict:
        data = {k: v for k, v in asdict(self.defaults).items() if v is not None}
        if self.per_printer:
            data["per_printer"] = {
                name: {k: v for k, v in asdict(entry).items() if v is not None}
                for name, entry in self.per_printer.items()
            }
        return data


@dataclass(frozen=True)
class AgentConfig:
    """Configuration for the Recky Print agent.

    Connection:
        server_url: Websocket URL of the Recky server.
        agent_key: Credential sent in the authentication message.
        agent_name: Agent name sent alongside the credential.
        auth_mode: 'ack' waits for the server's 'authenticated' reply,
            'optimistic' assumes success once the credential is sent,
            'manual' waits for a credential from the control endpoint.
        reconnect_delay: Seconds between reconnection attempts.
        reconnect_max_attempts: Attempts before giving up.
        keepalive_interval: Seconds between keep-alive probes.
        keepalive_timeout: Seconds to wait for a probe's answer.

    Printing:
        job_pause: Seconds to wait between two jobs.
        temp_dir: Spool directory (None = system temp dir).
        temp_file_cleanup_delay: Seconds before a printed file is deleted.
        sumatra_path: Path to SumatraPDF.exe (Windows only).
        default_printer: Printer used when a job names none.
        cut: Paper cut settings.
        beep: Buzzer settings.

    Misc:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
        log_file: Optional log file, in addition to stderr.
        control_host: Bind address of the control endpoint.
        control_port: Port of the control endpoint (None = disabled).
    """

    server_url: str = ""
    agent_key: str = ""
    agent_name: str = "silentPrint"
    auth_mode: str = "ack"
    reconnect_delay: float = 5.0
    reconnect_max_attempts: int = 10
    keepalive_interval: float = 60.0
    keepalive_timeout: float = 15.0
    job_pause: float = 0.5
    temp_dir: str | None = None
    temp_file_cleanup_delay: float = 3.0
    sumatra_path: str = ""
    default_printer: str | None = None
    log_level: str = "INFO"
    log_file: str | None = None
    control_host: str = "127.0.0.1"
    control_port: int | None = None
    cut: FeatureConfig = field(default_factory=FeatureConfig)
    beep: FeatureConfig = field(default_factory=FeatureConfig)

    def __post_init__(self):
        if self.auth_mode not in AUTH_MODES:
            raise ConfigError(
                f"auth_mode must be one of {', '.join(AUTH_MODES)}, got {self.auth_mode!r}"
            )

    def is_configured(self) -> bool:
        """Check if the agent has been configured.

        Returns:
            bool: True if server_url is set and, unless the credential
                comes from the control endpoint, agent_key too.
        """
        if self.auth_mode == "manual":
            return bool(self.server_url)
        return bool(self.server_url and self.agent_key)

    def to_dict(self) -> dict:
        data = {f.name: getattr(self, f.name) for f in fields(self) if f.name not in ("cut", "beep")}
        data["cut"] = self.cut.to_dict()
        data["beep"] = self.beep.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AgentConfig":
        """Build a configuration from a settings dict.

        Accepts snake_case keys and the camelCase keys of the legacy
        settings.js (with millisecond timings).

        Raises:
            ConfigError: If a value is invalid.
        """
        names = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for key, value in data.items():
            if key in _LEGACY_KEYS:
                key, divisor = _LEGACY_KEYS[key]
                if divisor and value is not None:
                    value = value / divisor
            if key in ("cut", "beep"):
                values[key] = FeatureConfig.from_dict(value)
            elif key in names:
                values[key] = value
        return cls(**values)

    def save(self, config_path: Path | None = None) -> None:
        """Save configuration to file.

        Args:
            config_path: Path to config file (default: ~/.config/reckyprint/config.json).
        """
        path = config_path or DEFAULT_CONFIG_FILE
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

        # Secure the config file (contains the agent key)
        os.chmod(path, 0o600)

    def with_credentials(self, server_url: str, agent_key: str) -> "AgentConfig":
        """Return a copy with a new server URL and agent key."""
        return replace(self, server_url=server_url, agent_key=agent_key)

    @classmethod
    def load(cls, config_path: Path | None = None) -> "AgentConfig":
        """Load configuration from file.

        Args:
            config_path: Path to config file.

        Returns:
            AgentConfig: Loaded configuration, or defaults if the file is missing.

        Raises:
            ConfigError: If the file exists but cannot be parsed.
        """
        path = config_path or DEFAULT_CONFIG_FILE

        if not path.exists():
            return cls()

        try:
            with open(path) as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Error loading {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"{path} must contain a JSON object")

        try:
            return cls.from_dict(data)
        except TypeError as e:
            raise ConfigError(f"Invalid value in {path}: {e}") from e


def get_config(config_path: Path | None = None) -> AgentConfig:
    """Get the current configuration.

    Args:
        config_path: Optional custom config path.

    Returns:
        AgentConfig: Current configuration.
    """
    return AgentConfig.load(config_path)
