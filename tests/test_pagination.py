"""Blocks → page arrays, synthetic pagination and checksums."""

import hashlib
import json

from pagewise.domain import BlockKind, TextBlock
from pagewise.services.pagination import (
    blocks_checksum,
    blocks_from_text,
    pack_paragraphs,
    pages_checksum,
    to_optimized_pages,
)


def _block(content, page, position=0):
    return TextBlock(content=content, page_number=page, position=position)


class TestOptimizedPages:
    def test_length_covers_declared_count_with_empty_pages(self):
        pages = to_optimized_pages([_block("one", 1), _block("three", 3)], page_count=5)
        assert pages == ["one", "", "three", "", ""]

    def test_length_grows_past_declared_count(self):
        pages = to_optimized_pages([_block("four", 4)], page_count=2)
        assert len(pages) == 4
        assert pages[3] == "four"

    def test_blocks_resorted_by_page_then_position(self):
        blocks = [_block("b", 1, 1), _block("c", 2, 0), _block("a", 1, 0)]
        assert to_optimized_pages(blocks) == ["a\n\nb", "c"]

    def test_ignores_blank_blocks_and_bad_page_numbers(self):
        blocks = [_block("  ", 1, 0), _block("text", 1, 1), _block("ghost", 0)]
        assert to_optimized_pages(blocks) == ["text"]

    def test_sanitizes_page_text(self):
        assert to_optimized_pages([_block("a\x00b", 1)]) == ["ab"]


class TestPackParagraphs:
    def test_greedy_packing(self):
        paras = ["a" * 40, "b" * 40, "c" * 40]
        pages = pack_paragraphs(paras, max_chars=90)
        assert pages == ["a" * 40 + "\n\n" + "b" * 40, "c" * 40]

    def test_oversized_paragraph_gets_its_own_page(self):
        paras = ["short", "x" * 200, "tail"]
        pages = pack_paragraphs(paras, max_chars=50)
        assert pages == ["short", "x" * 200, "tail"]


class TestBlocksFromText:
    def test_empty_text_yields_one_empty_page(self):
        blocks, page_count, words = blocks_from_text("   ")
        assert page_count == 1
        assert words == 0
        assert blocks == [TextBlock(content="", page_number=1, position=0)]

    def test_every_page_has_blocks_in_order(self):
        text = "\n\n".join(f"Paragraph number {i} " + "word " * 60 for i in range(10))
        blocks, page_count, words = blocks_from_text(text, max_chars=700)
        assert page_count > 1
        assert {b.page_number for b in blocks} == set(range(1, page_count + 1))
        assert words == len(text.split())
        for page in range(1, page_count + 1):
            positions = [b.position for b in blocks if b.page_number == page]
            assert positions == list(range(len(positions)))

    def test_heading_detection_applies(self):
        blocks, _, _ = blocks_from_text("INTRODUCTION\n\n" + "A long body paragraph. " * 10)
        assert blocks[0].kind is BlockKind.HEADING
        assert blocks[0].heading_level == 1
        assert blocks[1].kind is BlockKind.PARAGRAPH


class TestChecksums:
    def test_pages_checksum_is_sha256_of_compact_json(self):
        pages = ["é", ""]
        raw = json.dumps(pages, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
        assert pages_checksum(pages) == (hashlib.sha256(raw).hexdigest(), len(raw))

    def test_checksum_changes_with_content(self):
        assert pages_checksum(["a"])[0] != pages_checksum(["b"])[0]

    def test_blocks_checksum_uses_block_dicts(self):
        block = _block("hello", 1)
        raw = json.dumps([block.to_dict()], ensure_ascii=False, separators=(",", ":")).encode("utf-8")
        assert blocks_checksum([block])[0] == hashlib.sha256(raw).hexdigest()
