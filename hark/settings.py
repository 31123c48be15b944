"""Engine tunables: the immutable EngineConfig snapshot and its JSON-backed store.

The config is replaced wholesale on every update; the engine never reads a
half-updated value because a running session keeps the snapshot it started
with until the stop/start cycle.
"""

import logging
import threading
from dataclasses import asdict, dataclass, replace
from typing import Any, Optional, Protocol

from hark.config import DEFAULT_ENGINE_CONFIG, ENGINE_CONFIG_FILE, SENSITIVITY_THRESHOLDS
from hark.errors import ConfigError
from hark.utils.json_file import read_json_object, write_json_atomic

logger = logging.getLogger("hark.settings")

# Persisted (camelCase) key -> dataclass field
_PERSISTED_KEYS = {
    "enabled": "enabled",
    "wakeWord": "wake_word",
    "autoStart": "auto_start",
    "sensitivity": "sensitivity",
    "language": "language",
    "commandTimeoutSeconds": "command_timeout_seconds",
    "commandTimeout": "command_timeout_seconds",  # legacy name
}
_FIELD_TO_PERSISTED = {
    "enabled": "enabled",
    "wake_word": "wakeWord",
    "auto_start": "autoStart",
    "sensitivity": "sensitivity",
    "language": "language",
    "command_timeout_seconds": "commandTimeoutSeconds",
}


@dataclass(frozen=True)
class EngineConfig:
    enabled: bool = DEFAULT_ENGINE_CONFIG["enabled"]
    wake_word: str = DEFAULT_ENGINE_CONFIG["wake_word"]
    auto_start: bool = DEFAULT_ENGINE_CONFIG["auto_start"]
    sensitivity: str = DEFAULT_ENGINE_CONFIG["sensitivity"]
    language: str = DEFAULT_ENGINE_CONFIG["language"]
    command_timeout_seconds: int = DEFAULT_ENGINE_CONFIG["command_timeout_seconds"]

    def __post_init__(self):
        for name in ("enabled", "auto_start"):
            if not isinstance(getattr(self, name), bool):
                raise ConfigError(f"{name} must be true or false, got {getattr(self, name)!r}")

        if not isinstance(self.wake_word, str):
            raise ConfigError(f"wake_word must be a string, got {self.wake_word!r}")
        wake_word = self.wake_word.strip().lower()
        if not wake_word:
            raise ConfigError("wake_word must not be empty")
        object.__setattr__(self, "wake_word", wake_word)

        if not isinstance(self.sensitivity, str) or self.sensitivity not in SENSITIVITY_THRESHOLDS:
            raise ConfigError(
                f"sensitivity must be one of {sorted(SENSITIVITY_THRESHOLDS)}, got {self.sensitivity!r}"
            )

        # bool is an int subclass; a True timeout is a bug, not one second
        timeout = self.command_timeout_seconds
        if isinstance(timeout, bool) or not isinstance(timeout, int) or timeout <= 0:
            raise ConfigError(f"command_timeout_seconds must be a positive integer, got {timeout!r}")

        if not isinstance(self.language, str) or not self.language.strip():
            raise ConfigError(f"language must be a non-empty string, got {self.language!r}")

    @property
    def confidence_threshold(self) -> float:
        return SENSITIVITY_THRESHOLDS[self.sensitivity]

    def merged(self, patch: dict) -> "EngineConfig":
        """Return a new config with patch applied. Accepts snake_case or camelCase keys."""
        return replace(self, **normalize_patch(patch))

    def to_dict(self) -> dict:
        """Persisted (camelCase) form."""
        return {_FIELD_TO_PERSISTED[k]: v for k, v in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: dict) -> "EngineConfig":
        return cls().merged(data)


def field_name(key: str) -> Optional[str]:
    """Dataclass field for a snake_case or camelCase key, None if unknown."""
    return key if key in EngineConfig.__dataclass_fields__ else _PERSISTED_KEYS.get(key)


def normalize_patch(patch: dict) -> dict[str, Any]:
    """Map a user patch onto dataclass field names. Unknown keys raise ConfigError."""
    out = {}
    for key, value in patch.items():
        name = field_name(key)
        if name is None:
            raise ConfigError(f"Unknown config key: {key!r}")
        out[name] = value
    return out


class ConfigStore(Protocol):
    """Where EngineConfig lives between runs."""

    def load(self) -> EngineConfig:
        ...

    def save(self, config: EngineConfig) -> None:
        ...


class JsonConfigStore:
    """ConfigStore backed by an atomic JSON file."""

    def __init__(self, file_path: Optional[str] = None):
        self._path = file_path or ENGINE_CONFIG_FILE
        self._lock = threading.Lock()

    def load(self) -> EngineConfig:
        """Stored values over defaults, key by key.

        Unknown keys and invalid values are skipped with a warning; the
        remaining keys still apply.
        """
        with self._lock:
            raw = read_json_object(self._path)
        config = EngineConfig()
        for key, value in raw.items():
            name = field_name(key)
            if name is None:
                logger.warning("Ignoring unknown key %r in %s", key, self._path)
                continue
            try:
                config = replace(config, **{name: value})
            except ConfigError as e:
                logger.warning("Ignoring stored %s=%r (%s)", key, value, e)
        if raw:
            logger.info(
                "Engine config loaded: wake_word=%r sensitivity=%s language=%s timeout=%ds",
                config.wake_word,
                config.sensitivity,
                config.language,
                config.command_timeout_seconds,
            )
        return config

    def save(self, config: EngineConfig) -> None:
        with self._lock:
            write_json_atomic(self._path, config.to_dict())
        logger.info("Engine config saved to %s", self._path)
