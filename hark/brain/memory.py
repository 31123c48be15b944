"""
Command memory: one entry per answered voice command.

Each turn is tagged with coarse topics from a fixed keyword table so later
consumers can group what the user asks about. Entries are appended to a
JSON file, keeping only the newest MEMORY_MAX_ENTRIES.
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional, Protocol

from hark.config import COMMAND_MEMORY_FILE, MEMORY_MAX_ENTRIES
from hark.utils.json_file import read_json_object, write_json_atomic

if TYPE_CHECKING:
    from hark.brain.cascade import CommandResult

logger = logging.getLogger("hark.memory")

TOPIC_KEYWORDS = {
    "social": ("post", "social", "instagram", "tiktok", "youtube", "twitter"),
    "content": ("generate", "create", "write", "content", "image"),
    "monetization": ("revenue", "money", "monetize", "earn", "profit"),
    "iot": ("device", "printer", "3d", "smart home", "iot"),
    "analytics": ("analytics", "stats", "metrics", "performance"),
    "code": ("code", "debug", "optimize", "fix", "improve"),
}
DEFAULT_TOPIC = "general"


def _keyword_pattern(keywords: tuple[str, ...]) -> re.Pattern:
    alternatives = (r"\s+".join(re.escape(part) for part in kw.split()) for kw in keywords)
    return re.compile(r"\b(?:" + "|".join(alternatives) + r")\b", re.IGNORECASE)


_TOPIC_PATTERNS = {topic: _keyword_pattern(keywords) for topic, keywords in TOPIC_KEYWORDS.items()}


def classify_topics(text: str) -> list[str]:
    """Topics whose keywords appear in text as whole words, in table order. ["general"] if none."""
    topics = [topic for topic, pattern in _TOPIC_PATTERNS.items() if pattern.search(text or "")]
    return topics or [DEFAULT_TOPIC]


@dataclass(frozen=True)
class MemoryEntry:
    command_text: str
    response_text: str
    topics: list[str] = field(default_factory=lambda: [DEFAULT_TOPIC])
    timestamp: str = ""  # ISO-8601, UTC
    provider: Optional[str] = None  # None = templated answer
    confidence: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> MemoryEntry:
        known = cls.__dataclass_fields__
        return cls(**{k: v for k, v in data.items() if k in known})


def build_memory_entry(result: CommandResult, now: datetime = None) -> MemoryEntry:
    now = now or datetime.now(timezone.utc)
    return MemoryEntry(
        command_text=result.command_text,
        response_text=result.response_text,
        topics=classify_topics(result.command_text),
        timestamp=now.isoformat(),
        provider=result.provider,
        confidence=result.confidence,
    )


class MemoryStore(Protocol):
    def record(self, entry: MemoryEntry) -> None:
        ...


class CommandMemory:
    """Bounded command history in a JSON file: {"commands": [entry, ...]}, oldest first."""

    _KEY = "commands"

    def __init__(self, file_path: str = None, max_entries: int = MEMORY_MAX_ENTRIES):
        self._path = file_path or COMMAND_MEMORY_FILE
        self._max_entries = max_entries
        self._lock = threading.Lock()
        stored = read_json_object(self._path).get(self._KEY)
        if stored is not None and not isinstance(stored, list):
            logger.warning("Ignoring %r in %s: not a list", self._KEY, self._path)
            stored = None
        self._entries: list = list(stored or [])[-max_entries:]

    def record(self, entry: MemoryEntry) -> None:
        with self._lock:
            self._entries.append(entry.to_dict())
            del self._entries[: -self._max_entries]
            write_json_atomic(self._path, {self._KEY: self._entries})
        logger.debug("Recorded command %r (topics: %s)", entry.command_text, ", ".join(entry.topics))

    def recent(self, n: int = 10) -> list[MemoryEntry]:
        """Last n entries, oldest first."""
        if n <= 0:
            return []
        with self._lock:
            raw = self._entries[-n:]
        entries = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            try:
                entries.append(MemoryEntry.from_dict(item))
            except TypeError as e:
                logger.debug("Skipping malformed memory entry: %s", e)
        return entries
