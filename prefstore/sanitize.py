"""Input hygiene for free text stored in preference records."""

from __future__ import annotations

from .errors import ValidationError

MAX_NOTE_LENGTH = 500

# Control characters that are allowed to survive sanitizing.
_ALLOWED_CONTROL = frozenset("\n\t")


def strip_control(text: str) -> str:
    """Return ``text`` without control characters other than newline and tab."""
    return "".join(ch for ch in text if ch in _ALLOWED_CONTROL or (ord(ch) >= 32 and ord(ch) != 127))


def sanitize_text(text: str, *, max_length: int, field_name: str) -> str:
    """Trim, bound and clean user supplied ``text``.

    Raises :class:`ValidationError` when the text is empty, longer than
    ``max_length`` characters, holds unpaired surrogates (which cannot be
    encoded as UTF-8), or consists only of control characters.
    """
    trimmed = text.strip()
    if not trimmed:
        raise ValidationError(f"{field_name} cannot be empty")
    if len(trimmed) > max_length:
        raise ValidationError(
            f"{field_name} is too long (max {max_length} characters, got {len(trimmed)})"
        )
    if any(0xD800 <= ord(ch) <= 0xDFFF for ch in trimmed):
        raise ValidationError(f"{field_name} contains invalid characters")
    cleaned = strip_control(trimmed).strip()
    if not cleaned:
        raise ValidationError(f"{field_name} contains only invalid characters")
    return cleaned


def sanitize_note(text: str) -> str:
    return sanitize_text(text, max_length=MAX_NOTE_LENGTH, field_name="Note")
