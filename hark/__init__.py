"""Hark: always-listening wake-word detection and voice-command dispatch."""

__version__ = "0.1.0"
