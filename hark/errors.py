"""Exception hierarchy for the listening engine.

Start-time failures (PermissionDenied, BackendUnavailable, ConfigError) are
raised to the caller. Failures during a live session never escape the
engine; they end up in the status snapshot instead.
"""


class HarkError(Exception):
    """Base class for all engine errors."""


class PermissionDenied(HarkError):
    """The user has not granted microphone / speech recognition access."""


class BackendUnavailable(HarkError):
    """No usable recognition backend on this platform, or it could not be (re)started."""


class TransientRecognitionError(HarkError):
    """Recoverable recognition hiccup (no speech, audio capture glitch). Handled by restart."""


class ProviderFailure(HarkError):
    """A single response provider failed. Caught inside the cascade."""

    def __init__(self, provider: str, reason: str):
        super().__init__(f"{provider}: {reason}")
        self.provider = provider
        self.reason = reason


class ConfigError(HarkError, ValueError):
    """Invalid engine configuration value or unknown config key."""
