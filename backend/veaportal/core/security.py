# core/security.py
import re
from typing import Any

_SCRIPT_BLOCK = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_JS_SCHEME = re.compile(r"javascript:", re.IGNORECASE)
_INLINE_HANDLER = re.compile(r"on\w+\s*=", re.IGNORECASE)
# ASCII control characters except tab and newline
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f]")


def sanitize_input(value: Any) -> str:
    """
    Strip script blocks, javascript: schemes, inline event handlers and
    control characters, then trim. Never raises; None becomes "".
    """
    if value is None:
        return ""
    text = value if isinstance(value, str) else str(value)

    # Removing one pattern can splice together another, so loop to a fixed point
    previous = None
    while previous != text:
        previous = text
        text = _SCRIPT_BLOCK.sub("", text)
        text = _JS_SCHEME.sub("", text)
        text = _INLINE_HANDLER.sub("", text)
        text = _CONTROL_CHARS.sub("", text)
        text = text.strip()
    return text


def sanitize_metadata(metadata: Any) -> dict:
    """Shallow-sanitize a metadata bag: drop None values, clean strings."""
    if not isinstance(metadata, dict):
        return {}

    cleaned = {}
    for key, value in metadata.items():
        if value is None:
            continue
        cleaned[str(key)] = sanitize_input(value) if isinstance(value, str) else value
    return cleaned
