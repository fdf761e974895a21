"""Text helpers: sanitization, paragraph split, heading heuristic."""

import json

from pagewise.services.text import is_heading, sanitize_text, split_paragraphs, word_count


class TestSanitize:
    def test_removes_c0_controls_but_keeps_whitespace(self):
        raw = "a\x00b\x07c\td\ne\rf\x1fg"
        assert sanitize_text(raw) == "abc\td\ne\rfg"

    def test_removes_lone_surrogates(self):
        assert sanitize_text("ok\ud800done\udfff") == "okdone"

    def test_keeps_multibyte_characters(self):
        raw = "Café naïve 日本語 🙂"
        assert sanitize_text(raw) == raw

    def test_idempotent(self):
        raw = "x\x00\ud801y\x0bz"
        once = sanitize_text(raw)
        assert sanitize_text(once) == once

    def test_result_is_json_and_utf8_safe(self):
        cleaned = sanitize_text("page\x00one\ud800")
        json.dumps(cleaned, ensure_ascii=False).encode("utf-8")

    def test_empty(self):
        assert sanitize_text("") == ""


class TestSplitParagraphs:
    def test_blank_lines_split_and_single_newlines_join(self):
        text = "first line\nsame para\n\nsecond\r\n\r\nthird"
        assert split_paragraphs(text) == ["first line same para", "second", "third"]

    def test_drops_empty_paragraphs(self):
        assert split_paragraphs("\n\n\n\n  \n\nonly") == ["only"]


class TestHeading:
    def test_short_line_is_heading(self):
        assert is_heading("Chapter One")

    def test_uppercase_line_is_heading(self):
        assert is_heading("THE WHALE AND THE SEA, A LONGER UPPERCASE TITLE LINE THAT RUNS ON")

    def test_long_sentence_is_paragraph(self):
        assert not is_heading("This sentence is clearly a paragraph of prose because it keeps going on.")

    def test_multiline_and_empty_are_not_headings(self):
        assert not is_heading("Two\nlines")
        assert not is_heading("   ")


def test_word_count():
    assert word_count("  one two\nthree\t four ") == 4
