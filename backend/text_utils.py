"""HTML text helpers shared by scoring and Notion sync."""

from __future__ import annotations

import re

_TAG_RE = re.compile(r"<[^>]*>")
_STYLE_ATTR_RE = re.compile(r'\s*style="[^"]*"', re.IGNORECASE)
_DATA_ATTR_RE = re.compile(r'\s*data-[a-z-]+="[^"]*"', re.IGNORECASE)
_CLASS_ATTR_RE = re.compile(r'\s*class="[^"]*"', re.IGNORECASE)
_EMPTY_ATTRS_RE = re.compile(r"<(\w+)\s+>")
_BARE_SPAN_RE = re.compile(r"<span>(.*?)</span>", re.IGNORECASE | re.DOTALL)


def strip_tags(html: str) -> str:
    """Remove every ``<...>`` tag, leaving text and entities untouched."""
    return _TAG_RE.sub("", html)


def sanitize_html(html: str) -> str:
    """Strip editor noise from rich-text HTML.

    Removes inline styles, ``data-*`` and ``class`` attributes and the bare
    ``<span>`` wrappers they leave behind. Semantic tags (b/i/u/s, lists,
    paragraphs) are kept.
    """
    clean = _STYLE_ATTR_RE.sub("", html)
    clean = _DATA_ATTR_RE.sub("", clean)
    clean = _CLASS_ATTR_RE.sub("", clean)
    clean = _EMPTY_ATTRS_RE.sub(r"<\1>", clean)
    return _BARE_SPAN_RE.sub(r"\1", clean)
