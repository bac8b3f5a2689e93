"""Text cleanup for request payloads and model output."""

from __future__ import annotations

import re
import unicodedata
from typing import Any, Iterable

_WHITESPACE_RE = re.compile(r"\s+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")


def _drop_control_chars(value: str, *, keep_newlines: bool) -> str:
    return "".join(
        ch for ch in value if (keep_newlines and ch == "\n") or unicodedata.category(ch) != "Cc"
    )


def clean_text(value: Any, *, allow_newlines: bool = False) -> str:
    if value is None:
        return ""
    text = value if isinstance(value, str) else str(value)
    text = _drop_control_chars(text.replace("\r\n", "\n").replace("\r", "\n"), keep_newlines=allow_newlines).strip()
    if not allow_newlines:
        return _WHITESPACE_RE.sub(" ", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    return _BLANK_LINES_RE.sub("\n\n", text)


def clean_single_line(value: Any) -> str:
    return clean_text(value, allow_newlines=False)


def clean_multiline(value: Any) -> str:
    return clean_text(value, allow_newlines=True)


def clean_list(
    values: Iterable[Any] | str | None,
    *,
    max_items: int | None = None,
    item_max_length: int | None = None,
    truncate: bool = False,
) -> list[str]:
    """Single-line, case-insensitively unique items.

    Request payloads raise ``ValueError`` on oversized input; model output is
    cut down instead (``truncate=True``).
    """
    if values is None:
        return []
    if isinstance(values, str):
        values = [values]
    cleaned: list[str] = []
    seen: set[str] = set()
    for item in values:
        text = clean_single_line(item)
        if not text:
            continue
        if item_max_length and len(text) > item_max_length:
            if not truncate:
                raise ValueError("item_too_long")
            text = text[:item_max_length].rstrip()
        key = text.casefold()
        if key in seen:
            continue
        seen.add(key)
        cleaned.append(text)
    if max_items is not None and len(cleaned) > max_items:
        if not truncate:
            raise ValueError("too_many_items")
        cleaned = cleaned[:max_items]
    return cleaned
