"""
Blocks → dense page-string array, plus synthetic pagination for formats that
have no pages of their own (TXT, MD, EPUB).

Consumers index pages by number, so the page array never shrinks below the
declared page count and empty pages stay as "".
"""

import hashlib
import json

from ..domain import BlockKind, TextBlock
from .text import is_heading, sanitize_text, split_paragraphs, word_count

MAX_PAGE_CHARS = 2600


def to_optimized_pages(blocks: list[TextBlock], page_count: int = 0) -> list[str]:
    """Concatenate each page's blocks. Length = max(page_count, highest page)."""
    ordered = sorted(blocks, key=lambda b: (b.page_number, b.position))

    pages = [""] * max(page_count, 0)
    parts: dict[int, list[str]] = {}
    for block in ordered:
        if block.page_number < 1:
            continue
        while len(pages) < block.page_number:
            pages.append("")
        text = sanitize_text(block.content).strip()
        if text:
            parts.setdefault(block.page_number, []).append(text)

    for page_number, texts in parts.items():
        pages[page_number - 1] = "\n\n".join(texts)
    return pages


def pack_paragraphs(paragraphs: list[str], max_chars: int = MAX_PAGE_CHARS) -> list[str]:
    """
    Greedy packing of paragraphs into pages of at most max_chars. A paragraph
    longer than the budget gets a page to itself and is never split.
    """
    pages: list[str] = []
    current: list[str] = []
    current_len = 0

    for para in paragraphs:
        para = sanitize_text(para).strip()
        if not para:
            continue

        if not current and len(para) > max_chars:
            pages.append(para)
            continue

        if current and current_len + 2 + len(para) > max_chars:
            pages.append("\n\n".join(current))
            current, current_len = [], 0

        current_len += len(para) + (2 if current else 0)
        current.append(para)

    if current:
        pages.append("\n\n".join(current))
    return pages


def blocks_from_text(text: str, max_chars: int = MAX_PAGE_CHARS) -> tuple[list[TextBlock], int, int]:
    """Returns (blocks, page_count, word_count). Every page has at least one block."""
    normalized = text.strip()
    if not normalized:
        return [TextBlock(content="", page_number=1, position=0)], 1, 0

    pages = pack_paragraphs(split_paragraphs(normalized), max_chars) or [""]

    blocks: list[TextBlock] = []
    for page_number, page_text in enumerate(pages, start=1):
        position = 0
        for para in page_text.split("\n\n"):
            para = para.strip()
            if not para:
                continue
            heading = is_heading(para)
            blocks.append(
                TextBlock(
                    content=sanitize_text(para),
                    kind=BlockKind.HEADING if heading else BlockKind.PARAGRAPH,
                    heading_level=1 if heading else 0,
                    page_number=page_number,
                    position=position,
                )
            )
            position += 1
        if position == 0:
            blocks.append(TextBlock(content="", page_number=page_number, position=0))

    return blocks, len(pages), word_count(normalized)


def _encode(payload) -> bytes:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def fingerprint(payload) -> tuple[str, int]:
    """(sha256 hex, byte size) of the canonical JSON encoding."""
    raw = _encode(payload)
    return hashlib.sha256(raw).hexdigest(), len(raw)


def pages_checksum(pages: list[str]) -> tuple[str, int]:
    return fingerprint(pages)


def blocks_checksum(blocks: list[TextBlock]) -> tuple[str, int]:
    return fingerprint([b.to_dict() for b in blocks])
