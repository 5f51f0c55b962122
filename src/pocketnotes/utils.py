"""Utility functions for PocketNotes."""
import re
from typing import Optional

_MARKDOWN_HEADING = re.compile(r"^\s{0,3}#{1,6}\s+(.+?)\s*#*\s*$", re.MULTILINE)
_UUID = re.compile(r"^[0-9a-fA-F]{8}(-[0-9a-fA-F]{4}){3}-[0-9a-fA-F]{12}$")
_LONG_TOKEN = re.compile(r"^[A-Za-z0-9._-]{16,}$")


def escape_like_pattern(value: str) -> str:
    """Escape SQL LIKE wildcards to treat them as literals.

    Prevents SQL LIKE pattern injection where user input containing
    '%' or '_' could match unintended patterns.

    Args:
        value: User input string that may contain LIKE wildcards

    Returns:
        String with '%', '_', and '\\' escaped for safe use in LIKE clauses

    Example:
        >>> escape_like_pattern("100% complete")
        '100\\% complete'
        >>> escape_like_pattern("file_name")
        'file\\_name'
    """
    escape_table = str.maketrans(
        {
            "\\": "\\\\",  # Escape backslash first
            "%": "\\%",
            "_": "\\_",
        }
    )
    return value.translate(escape_table)


def extract_markdown_title(text: str) -> Optional[str]:
    """Return the text of the first ATX heading (``# Title``) in ``text``."""
    match = _MARKDOWN_HEADING.search(text or "")
    if not match:
        return None
    title = match.group(1).strip()
    return title or None


def looks_like_random_id(title: str) -> bool:
    """Whether a title is really a UUID or a long opaque token (e.g. a file id)."""
    candidate = title.strip()
    return bool(_UUID.match(candidate) or _LONG_TOKEN.match(candidate))
