"""
Persona configuration: every phrase the engine says on its own.

Loads a persona from YAML presets (hark/personalities/*.yaml) or uses the
built-in defaults. The persona is passed explicitly to the engine and the
cascade; there is no module-level active persona.
"""

import logging
import random
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger("hark.persona")

PERSONALITIES_DIR = Path(__file__).parent / "personalities"

_DEFAULT_ACKNOWLEDGEMENTS = [
    "Yes, sir?",
    "At your service, sir.",
    "How may I help you, sir?",
    "I'm here, sir.",
    "Yes, sir. I'm listening.",
    "Ready, sir.",
]

_DEFAULT_GREETINGS = [
    "Good day, sir. At your service.",
    "Hello, sir. All systems operational.",
    "Greetings, sir. Ready to assist.",
]

_DEFAULT_CONFIRMATIONS = [
    "Right away, sir.",
    "Consider it done, sir.",
    "On it, sir.",
    "Processing your request now, sir.",
    "As you wish, sir.",
]


@dataclass
class Persona:
    name: str = "Jarvis"
    honorific: str = "sir"
    formal_titles: bool = True  # Append the honorific to responses that lack it
    acknowledgements: list[str] = field(default_factory=lambda: list(_DEFAULT_ACKNOWLEDGEMENTS))
    greetings: list[str] = field(default_factory=lambda: list(_DEFAULT_GREETINGS))
    confirmations: list[str] = field(default_factory=lambda: list(_DEFAULT_CONFIRMATIONS))
    status_reply: str = "All systems operational, sir."
    thanks_reply: str = "My pleasure, sir."
    fallback_reply: str = "Acknowledged, sir."

    def acknowledgement(self, rng: random.Random = None) -> str:
        """Uniformly random wake acknowledgement."""
        return _pick(self.acknowledgements, self.fallback_reply, rng)

    def greeting(self, rng: random.Random = None) -> str:
        return _pick(self.greetings, self.fallback_reply, rng)

    def confirmation(self, rng: random.Random = None) -> str:
        return _pick(self.confirmations, self.fallback_reply, rng)


def _pick(options: list[str], default: str, rng: random.Random = None) -> str:
    if not options:
        return default
    return (rng or random).choice(options)


def load_persona(name_or_path: str) -> Persona:
    """Load a persona from a YAML preset name or file path.

    Looks for hark/personalities/{name}.yaml first, then treats the arg
    as a direct file path. Missing fields fall back to dataclass defaults;
    unknown fields are ignored.
    """
    yaml_path = PERSONALITIES_DIR / f"{name_or_path}.yaml"
    if not yaml_path.is_file():
        yaml_path = Path(name_or_path)
    if not yaml_path.is_file():
        available = [f.stem for f in PERSONALITIES_DIR.glob("*.yaml")]
        raise FileNotFoundError(f"Persona '{name_or_path}' not found. Available: {', '.join(available) or 'none'}")

    with open(yaml_path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    known_fields = Persona.__dataclass_fields__
    unknown = sorted(k for k in data if k not in known_fields)
    if unknown:
        logger.warning("Ignoring unknown persona fields in %s: %s", yaml_path.name, ", ".join(unknown))

    persona = Persona(**{k: v for k, v in data.items() if k in known_fields})
    logger.info(
        "Persona loaded: %s (honorific=%r, %d acknowledgements)",
        persona.name,
        persona.honorific,
        len(persona.acknowledgements),
    )
    return persona
