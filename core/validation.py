"""
core/validation.py -- Input validation and filename sanitization helpers.

Pure functions, no I/O. Shared by the API models (field validators), the
upload validator, the file-backed rate limiter, and the admin CLI.

Layer rule: no imports from api/, auth/, activity/, cache/ or uploads/.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping

MIN_PASSWORD_LENGTH = 6

# One "@", no whitespace, a dot in the domain part.
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_SEPARATOR_RUN = re.compile(r"[._-]{2,}")
_SEPARATORS = "._-"


def validate_email(email: str | None) -> bool:
    """Return True if the string looks like an email address."""
    if not email or len(email) > 255:
        return False
    return _EMAIL_RE.match(email) is not None


def validate_password(password: str | None) -> bool:
    return bool(password) and len(password) >= MIN_PASSWORD_LENGTH


def validate_required(data: Mapping, fields: Iterable[str]) -> list[str]:
    """Return one "<Field> is required" message per missing or blank field."""
    errors: list[str] = []
    for field in fields:
        value = data.get(field)
        if value is None or (isinstance(value, str) and not value.strip()):
            errors.append(f"{field[:1].upper()}{field[1:]} is required")
    return errors


def _collapse_separators(match: re.Match) -> str:
    # Keep the dot when the run has one so "name_.png" keeps its extension.
    run = match.group(0)
    if "." in run:
        return "."
    if "-" in run:
        return "-"
    return "_"


def sanitize_filename(name: str) -> str:
    """Reduce a client-supplied filename to [A-Za-z0-9._-].

    Unsafe characters (path separators, spaces, punctuation, non-ASCII) become
    "_", runs of separator characters collapse to one, and leading/trailing
    separators are trimmed. "../" sequences cannot survive, so the result is
    always a plain basename. May return "" -- callers choose a fallback.

        >>> sanitize_filename("My File!@#.PNG")
        'My_File.PNG'
    """
    clean = _UNSAFE_FILENAME_CHARS.sub("_", name or "")
    clean = _SEPARATOR_RUN.sub(_collapse_separators, clean)
    return clean.strip(_SEPARATORS)
