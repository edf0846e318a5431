from __future__ import annotations


# Polish letters are the only non-ASCII letters the verifier endpoints reject.
_DIACRITICS = str.maketrans(
    {
        "ą": "a", "ć": "c", "ę": "e", "ł": "l", "ń": "n", "ó": "o", "ś": "s", "ź": "z", "ż": "z",
        "Ą": "A", "Ć": "C", "Ę": "E", "Ł": "L", "Ń": "N", "Ó": "O", "Ś": "S", "Ź": "Z", "Ż": "Z",
    }
)


def strip_diacritics(s: str) -> str:
    return (s or "").translate(_DIACRITICS)


def normalize(s: str) -> str:
    """Canonical key for a free-form identifier: ASCII letters, upper case, trimmed.

    normalize("łukasz") == "LUKASZ"; the function is idempotent and never raises.
    """
    return strip_diacritics(s).upper().strip()


def first_token(s: str) -> str:
    """Normalized first whitespace-delimited token ("Barbara Zawadzka" -> "BARBARA")."""
    parts = normalize(s).split()
    return parts[0] if parts else ""
