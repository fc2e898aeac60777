from __future__ import annotations

from ..httpclient import redact


def _trim(value: str, limit: int) -> str:
    """Trim a string to a maximum length, appending '...' if truncated."""
    stripped = value.strip()
    if len(stripped) <= limit:
        return stripped
    if limit <= 3:
        return stripped[:limit]
    return stripped[: limit - 3] + "..."


def _excerpt_body(body: bytes, limit: int = 200) -> str:
    """Short, printable excerpt of a response body for error messages."""
    text = body.decode("utf-8", errors="replace")
    return _trim(redact(text) or "<empty>", limit)
