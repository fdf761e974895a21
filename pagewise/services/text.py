"""
Plain-text helpers shared by extraction and pagination.

sanitize_text() must run on every string that ends up in a JSON column:
PostgreSQL rejects NUL and other C0 controls, and lone surrogates cannot be
encoded as UTF-8 at all.
"""

import re

# C0 controls except \t \n \r, plus the UTF-16 surrogate block.
_ILLEGAL_CHARS = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff]")

_HEADING_MAX_CHARS = 100
_SHORT_HEADING_CHARS = 50


def sanitize_text(text: str) -> str:
    """Strip storage-illegal characters. Idempotent."""
    if not text:
        return ""
    return _ILLEGAL_CHARS.sub("", text)


def normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def split_paragraphs(text: str) -> list[str]:
    """Split on blank lines; single newlines inside a paragraph become spaces."""
    paragraphs = []
    for para in normalize_newlines(text).split("\n\n"):
        para = para.replace("\n", " ").strip()
        if para:
            paragraphs.append(para)
    return paragraphs


def is_heading(text: str) -> bool:
    """
    Best-effort heading detection: single line, under 100 chars, and either
    all uppercase (more than 3 chars) or under 50 chars. It is a heuristic and
    mislabels short sentences.
    """
    text = text.strip()
    if not text or "\n" in text:
        return False
    if len(text) >= _HEADING_MAX_CHARS:
        return False
    if text == text.upper() and len(text) > 3:
        return True
    return len(text) < _SHORT_HEADING_CHARS


def word_count(text: str) -> int:
    return len(text.split())
