"""Text normalization for catalog matching and platform-safe text.

Hey future me - two very different jobs live here:

- normalize_text() is the matching key. "Señorita", "senorita" and "Se-ñorita!" all collapse to
  "senorita". It is used for BOTH titles and artist names so comparisons stay symmetric, and it is
  idempotent: normalize_text(normalize_text(x)) == normalize_text(x).
- sanitize_platform_text() makes user/LLM text safe to send to the streaming platform (ASCII only,
  no quotes or backslashes, capped length). It is NOT a matching key.

Examples:
    >>> normalize_text("Don't Stop Me Now")
    'dontstopmenow'
    >>> normalize_text("Beyoncé")
    'beyonce'
    >>> sanitize_platform_text('Chill "Vibes" ☕', max_length=100)
    'Chill Vibes'
"""

import unicodedata

# Characters removed from matching keys (whitespace is removed separately via str.isspace)
STRIPPED_PUNCTUATION: frozenset[str] = frozenset(".,'\":_-!?")

# Characters the platform API chokes on inside JSON string fields
UNSAFE_PLATFORM_CHARS: frozenset[str] = frozenset("\"'\\`")

ELLIPSIS = "..."


def _strip_diacritics(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_text(text: str | None) -> str:
    """Build the comparison key for a title or artist name.

    Lowercases, removes diacritics ("é" -> "e") and strips punctuation
    (``. , ' " : _ - ! ?``) and all whitespace. Total function: None and
    empty input yield "".

    Args:
        text: Raw title or artist name

    Returns:
        Normalized matching key
    """
    if not text:
        return ""
    # lower() runs before AND after decomposition: some uppercase letters ("İ") lowercase into a
    # base letter plus a combining mark, which must be stripped too
    folded = _strip_diacritics(text.lower()).lower()
    return "".join(
        ch for ch in folded if ch not in STRIPPED_PUNCTUATION and not ch.isspace()
    )


def ascii_fold(text: str) -> str:
    """Fold text to ASCII, keeping base letters of accented characters."""
    decomposed = unicodedata.normalize("NFKD", text)
    return decomposed.encode("ascii", "ignore").decode("ascii")


def sanitize_platform_text(
    text: str | None,
    max_length: int,
    fallback: str = "",
) -> str:
    """Make text safe for a streaming-platform metadata field.

    ASCII-folds, drops quotes/backslashes and control characters, collapses
    whitespace and caps the length (truncated text ends with "...").

    Args:
        text: Raw text (title or description)
        max_length: Platform limit for this field
        fallback: Value returned when nothing survives sanitizing

    Returns:
        Sanitized text, or ``fallback`` if the result is empty
    """
    if not text:
        return fallback

    cleaned = "".join(
        ch
        for ch in ascii_fold(text)
        if ch not in UNSAFE_PLATFORM_CHARS and (ch.isprintable() or ch.isspace())
    )
    cleaned = " ".join(cleaned.split())
    if not cleaned:
        return fallback

    if len(cleaned) > max_length:
        if max_length <= len(ELLIPSIS):
            return cleaned[:max_length]
        cleaned = cleaned[: max_length - len(ELLIPSIS)].rstrip() + ELLIPSIS
    return cleaned
