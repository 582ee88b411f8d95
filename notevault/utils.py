"""
Input sanitization helpers for NoteVault.

Notes are decrypted and handed to a browser-based editor, so anything
that arrives through the HTTP surface is cleaned before it is encrypted.
These functions help prevent stored XSS (OWASP A03:2021).
"""

import bleach


# Only basic formatting survives in note content
ALLOWED_TAGS = ['b', 'i', 'u', 'em', 'strong', 'p', 'br']
ALLOWED_ATTRIBUTES = {}  # No attributes allowed - prevents onclick, onerror, etc.

MAX_TAG_LENGTH = 50


def sanitize_input(text):
    """
    Sanitize note content.

    Uses bleach to strip dangerous HTML tags and attributes, keeping the
    small formatting whitelist above.
    """
    if text is None:
        return None

    return bleach.clean(
        text,
        tags=ALLOWED_TAGS,
        attributes=ALLOWED_ATTRIBUTES,
        strip=True  # Remove disallowed tags entirely
    )


def sanitize_strict(text):
    """
    Strictly sanitize input - remove ALL HTML.

    Use this for fields that should never contain HTML, like note titles
    and tags.
    """
    if text is None:
        return None

    cleaned = bleach.clean(text, tags=[], strip=True)

    # Also strip any remaining angle brackets just to be safe
    cleaned = cleaned.replace('<', '').replace('>', '')

    return cleaned.strip()


def sanitize_tags(tags):
    """
    Clean a list of tags, keeping their order.

    Blank tags are dropped and each tag is capped at MAX_TAG_LENGTH.

    Raises:
        ValueError: If tags is not a list of strings
    """
    if tags is None:
        return []
    if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
        raise ValueError("Tags must be a list of strings")

    cleaned = []
    for tag in tags:
        tag = sanitize_strict(tag)[:MAX_TAG_LENGTH]
        if tag:
            cleaned.append(tag)
    return cleaned
