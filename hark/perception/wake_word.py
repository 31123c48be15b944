"""Wake-word matching on recognised text.

Pure functions, no state. WAKE_VARIANTS is the single list of accepted
phrasings; it is fixed and not user-configurable.

Matching is token-boundary aware: the wake word "jarvis" matches
"hey jarvis", "Jarvis, lights on" and "ok jarvis?" but not "jarvisson".
Pass boundary=False to get plain substring containment instead.
"""

import re

COURTESY_PREFIXES = ("hey", "ok", "yo")
TRAILING_PUNCTUATION = (",", ".", "!", "?")

WAKE_VARIANTS = (
    "{w}",
    *(f"{prefix} {{w}}" for prefix in COURTESY_PREFIXES),
    *(f"{{w}}{mark}" for mark in TRAILING_PUNCTUATION),
)


def normalize(text: str) -> str:
    """Lower-case, trim, collapse runs of whitespace."""
    return " ".join((text or "").lower().split())


def render_variants(wake_word: str) -> list[str]:
    """All accepted phrasings of wake_word, in WAKE_VARIANTS order."""
    word = normalize(wake_word)
    return [template.format(w=word) for template in WAKE_VARIANTS]


def _bounded(fragment: str) -> re.Pattern:
    # A trailing boundary only makes sense when the fragment ends in a word char
    tail = r"(?!\w)" if fragment[-1].isalnum() else ""
    return re.compile(r"(?<!\w)" + re.escape(fragment) + tail)


def match(transcript: str, wake_word: str, boundary: bool = True) -> bool:
    """True if transcript addresses the assistant by wake_word."""
    text = normalize(transcript)
    word = normalize(wake_word)
    if not text or not word:
        return False

    if text == word:
        return True

    if not boundary:
        return text.startswith(word) or any(v in text for v in render_variants(word))

    # Starts with it / contains it as a standalone token
    if _bounded(word).search(text):
        return True
    return any(_bounded(variant).search(text) for variant in render_variants(word))


def strip_wake_word(transcript: str, wake_word: str) -> str:
    """Remove the wake phrase (with courtesy prefix, possessive 's and trailing punctuation) and return the rest.

    Casing of the remaining text is preserved.
    """
    word = normalize(wake_word)
    text = " ".join((transcript or "").split())
    if not word or not text:
        return text

    word_pattern = r"\s+".join(re.escape(part) for part in word.split())
    prefix = r"(?:(?:" + "|".join(COURTESY_PREFIXES) + r")[\s,]+)?"
    pattern = re.compile(r"(?<!\w)" + prefix + word_pattern + r"(?!\w)(?:['\u2019]s(?!\w))?[,.!?]*", re.IGNORECASE)

    remainder = pattern.sub(" ", text)
    return " ".join(remainder.split()).strip(" ,;:")
