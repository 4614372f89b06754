"""Token canonicalization and hit counting for recognized speech.

Recognized phrases arrive as free text in Latin or Devanagari script. Every
match decision goes through :func:`canonicalize`, so ``"Ram"``, ``"raam"``,
``"rama"``, ``"राम"`` and ``"श्रीराम"`` all compare equal.
"""

from __future__ import annotations

import re
import unicodedata

from models import RecognitionEvent

# Known Devanagari surface forms, longest first. Matched by containment on the
# NFC, lower-cased token before combining marks are dropped.
DEVANAGARI_SURFACE_FORMS: tuple[tuple[str, str], ...] = (
    ("श्रीराम", "ram"),
    ("राम", "ram"),
)

_DEVANAGARI_FIRST = "\u0900"
_DEVANAGARI_LAST = "\u097f"
_A_RUN = re.compile(r"a+")


def _is_devanagari(ch: str) -> bool:
    return _DEVANAGARI_FIRST <= ch <= _DEVANAGARI_LAST


def _is_mark(ch: str) -> bool:
    return unicodedata.category(ch).startswith("M")


def _is_letter(ch: str) -> bool:
    return unicodedata.category(ch).startswith("L")


def tokenize(phrase: str) -> list[str]:
    """Split ``phrase`` into lower-cased letter runs.

    A run is a letter followed by any mix of letters and combining marks, so
    Devanagari vowel signs stay attached to their consonants. Everything else
    (digits, punctuation, whitespace) is a delimiter.
    """
    tokens: list[str] = []
    current: list[str] = []
    for ch in phrase:
        if _is_letter(ch) or (current and _is_mark(ch)):
            current.append(ch)
            continue
        if current:
            tokens.append("".join(current).lower())
            current = []
    if current:
        tokens.append("".join(current).lower())
    return tokens


def canonicalize(token: str) -> str:
    """Return the comparable form of a single recognized word.

    The result is a possibly empty string of lower-case Latin and Devanagari
    letters. An empty result never matches anything.
    """
    text = unicodedata.normalize("NFC", token).lower()
    has_devanagari = any(_is_devanagari(ch) for ch in text)
    if has_devanagari:
        for form, canonical in DEVANAGARI_SURFACE_FORMS:
            if form in text:
                return canonical

    decomposed = unicodedata.normalize("NFKD", text)
    bare = "".join(ch for ch in decomposed if not _is_mark(ch))

    if has_devanagari:
        return "".join(
            ch for ch in bare if ("a" <= ch <= "z") or (_is_devanagari(ch) and _is_letter(ch))
        )

    latin = "".join(ch for ch in bare if "a" <= ch <= "z")
    latin = _A_RUN.sub("a", latin)
    return latin.rstrip("a")


def _alternative_hits(transcript: str, target_canonical: str) -> int:
    return sum(1 for token in tokenize(transcript.strip()) if canonicalize(token) == target_canonical)


def count_hits(event: RecognitionEvent, target_canonical: str) -> int:
    """Count occurrences of ``target_canonical`` in the new results of ``event``.

    Only results from ``event.result_index`` onward are new. Alternatives of one
    result are competing hypotheses for the same utterance, so a result
    contributes the maximum over its alternatives; results are summed.
    """
    if not target_canonical:
        return 0
    total = 0
    for result in event.results[max(event.result_index, 0):]:
        total += max(
            (_alternative_hits(alt.transcript, target_canonical) for alt in result.alternatives),
            default=0,
        )
    return total


def top_transcript(event: RecognitionEvent) -> str:
    """Top alternative of the latest new result that has any text."""
    heard = ""
    for result in event.results[max(event.result_index, 0):]:
        if not result.alternatives:
            continue
        text = result.alternatives[0].transcript.strip()
        if text:
            heard = text
    return heard
