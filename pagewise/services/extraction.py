"""
Text extraction. Raw upload bytes → ordered TextBlocks + format metadata.

- PDF: pdfplumber, page by page. Each page has a hard timeout; a page that
  hangs or throws becomes an empty block instead of failing the document.
- EPUB: container.xml → OPF package → spine order → markup stripped to text.
- TXT / MD: decoded as UTF-8, title from the filename.

Formats without native pages are packed into synthetic pages by the
paginator. Every block is sanitized before it leaves this module.
"""

import asyncio
import io
import logging
import posixpath
import zipfile
import xml.etree.ElementTree as ET
from html.parser import HTMLParser
from pathlib import PurePosixPath
from typing import Awaitable, Callable, Optional, Protocol
from urllib.parse import unquote

import pdfplumber
from pdfminer.pdfdocument import PDFPasswordIncorrect

from ..core.errors import ProcessingFailed, ValidationError
from ..domain import (
    BlockKind,
    DocumentFormat,
    ExtractionMetadata,
    ExtractionResult,
    RawUpload,
    TextBlock,
)
from .pagination import blocks_from_text, to_optimized_pages
from .text import is_heading, normalize_newlines, sanitize_text, split_paragraphs, word_count

logger = logging.getLogger(__name__)

PAGE_TIMEOUT_SECONDS = 90.0

OnMeta = Callable[[ExtractionMetadata], Awaitable[None]]
OnPage = Callable[[int, str], Awaitable[None]]

_EXTENSIONS = {
    ".pdf": DocumentFormat.PDF,
    ".epub": DocumentFormat.EPUB,
    ".txt": DocumentFormat.TXT,
    ".text": DocumentFormat.TXT,
    ".md": DocumentFormat.MD,
    ".markdown": DocumentFormat.MD,
}


def detect_format(filename: str, data: bytes) -> DocumentFormat:
    """Extension first, then magic bytes."""
    fmt = _EXTENSIONS.get(PurePosixPath(filename or "").suffix.lower())
    if fmt:
        return fmt
    if data.startswith(b"%PDF"):
        return DocumentFormat.PDF
    if data.startswith(b"PK") and b"application/epub+zip" in data[:128]:
        return DocumentFormat.EPUB
    raise ValidationError("unsupported format", field="file")


def title_from_filename(filename: str) -> str:
    return PurePosixPath(filename or "").stem.strip()


# ── PDF backend ──────────────────────────────────────────────────────


class PdfSource(Protocol):
    page_count: int
    title: str
    author: str
    encrypted: bool

    def page_text(self, index: int) -> str: ...

    def close(self) -> None: ...


class PlumberPdf:
    """pdfplumber-backed PdfSource. All methods are blocking."""

    def __init__(self, data: bytes):
        self._pdf = pdfplumber.open(io.BytesIO(data))
        info = self._pdf.metadata or {}
        self.title = _info_str(info.get("Title"))
        self.author = _info_str(info.get("Author"))
        self.page_count = len(self._pdf.pages)
        self.encrypted = getattr(self._pdf.doc, "encryption", None) is not None

    def page_text(self, index: int) -> str:
        page = self._pdf.pages[index]
        try:
            return page.extract_text() or ""
        finally:
            page.close()

    def close(self) -> None:
        self._pdf.close()


def _info_str(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="ignore")
    return sanitize_text(str(value)).strip()


def _is_password_error(exc: BaseException) -> bool:
    if isinstance(exc, PDFPasswordIncorrect):
        return True
    return any(isinstance(arg, PDFPasswordIncorrect) for arg in getattr(exc, "args", ()))


def open_pdf(data: bytes) -> PdfSource:
    try:
        return PlumberPdf(data)
    except Exception as e:
        if _is_password_error(e):
            raise ProcessingFailed("document is password protected", cause=e)
        raise ProcessingFailed(f"failed to open PDF: {e}", cause=e)


# ── EPUB ─────────────────────────────────────────────────────────────


_BLOCK_TAGS = {
    "p", "div", "section", "article",
    "h1", "h2", "h3", "h4", "h5", "h6",
    "li", "ul", "ol", "blockquote",
}
_SKIP_TAGS = {"script", "style", "head", "title", "nav"}


class _MarkupText(HTMLParser):
    """Collects visible text; block elements become paragraph breaks."""

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self._parts: list[str] = []
        self._skip_depth = 0

    def _tail(self) -> str:
        return self._parts[-1] if self._parts else ""

    def handle_starttag(self, tag, attrs):
        tag = tag.lower()
        if tag in _SKIP_TAGS:
            self._skip_depth += 1
        elif tag == "br":
            self._parts.append("\n")
        elif tag in _BLOCK_TAGS:
            self._parts.append("\n\n")

    def handle_startendtag(self, tag, attrs):
        if tag.lower() == "br":
            self._parts.append("\n")

    def handle_endtag(self, tag):
        tag = tag.lower()
        if tag in _SKIP_TAGS:
            self._skip_depth = max(0, self._skip_depth - 1)
        elif tag in _BLOCK_TAGS:
            self._parts.append("\n\n")

    def handle_data(self, data):
        if self._skip_depth:
            return
        text = data.strip()
        if not text:
            return
        tail = self._tail()
        if tail and not tail.endswith(("\n", " ")):
            self._parts.append(" ")
        self._parts.append(text)

    def text(self) -> str:
        return "".join(self._parts)


def markup_to_text(markup: bytes) -> str:
    parser = _MarkupText()
    parser.feed(markup.decode("utf-8", errors="ignore"))
    parser.close()
    return parser.text()


def normalize_text(text: str) -> str:
    """Trim lines, collapse runs of blank lines to at most two."""
    out: list[str] = []
    blank = 0
    for line in normalize_newlines(text).replace("\u00a0", " ").split("\n"):
        line = line.strip()
        if not line:
            blank += 1
            if blank <= 2:
                out.append("")
            continue
        blank = 0
        out.append(line)
    return "\n".join(out).strip()


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1].lower()


def _read_member(archive: zipfile.ZipFile, name: str) -> Optional[bytes]:
    names = archive.namelist()
    if name in names:
        return archive.read(name)
    lowered = name.lower()
    for candidate in names:
        if candidate.lower() == lowered:
            return archive.read(candidate)
    return None


def _package_path(container_xml: bytes) -> str:
    root = ET.fromstring(container_xml)
    for el in root.iter():
        if _local(el.tag) == "rootfile":
            path = (el.get("full-path") or "").strip()
            if path:
                return path
    return ""


def _parse_package(opf: bytes) -> tuple[str, str, list[str]]:
    """(title, author, spine hrefs in reading order)."""
    root = ET.fromstring(opf)
    title = author = ""
    manifest: dict[str, str] = {}
    spine: list[str] = []

    for el in root.iter():
        name = _local(el.tag)
        if name == "title" and not title:
            title = "".join(el.itertext()).strip()
        elif name == "creator" and not author:
            author = "".join(el.itertext()).strip()
        elif name == "item":
            item_id, href = el.get("id"), el.get("href")
            if item_id and href:
                manifest[item_id] = href
        elif name == "itemref":
            idref = el.get("idref")
            if idref:
                spine.append(idref)

    hrefs = [manifest[i] for i in spine if manifest.get(i)]
    return title, author, hrefs


def extract_epub(data: bytes, filename: str) -> tuple[str, str, str]:
    """Returns (title, author, text). Blocking."""
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        raise ValidationError(f"invalid epub: {e}", field="file")

    with archive:
        container = _read_member(archive, "META-INF/container.xml")
        if container is None:
            raise ValidationError("invalid epub (missing container.xml)", field="file")
        try:
            opf_path = _package_path(container)
        except ET.ParseError as e:
            raise ValidationError(f"invalid epub container: {e}", field="file")
        if not opf_path:
            raise ValidationError("invalid epub (missing package path)", field="file")

        opf = _read_member(archive, opf_path)
        if opf is None:
            raise ValidationError("invalid epub (missing package file)", field="file")
        try:
            title, author, hrefs = _parse_package(opf)
        except ET.ParseError as e:
            raise ValidationError(f"invalid epub package: {e}", field="file")

        opf_dir = posixpath.dirname(opf_path)
        chapters = []
        for href in hrefs:
            href = unquote(href.strip())
            if not href:
                continue
            member = posixpath.normpath(posixpath.join(opf_dir, href))
            markup = _read_member(archive, member)
            if markup is None:
                logger.debug("EPUB spine item missing: %s", member)
                continue
            chapter = normalize_text(markup_to_text(markup))
            if chapter:
                chapters.append(chapter)

    return (
        sanitize_text(title or title_from_filename(filename)),
        sanitize_text(author),
        "\n\n".join(chapters).strip(),
    )


def extract_plain(data: bytes, filename: str) -> tuple[str, str, str]:
    text = data.decode("utf-8", errors="ignore").strip()
    return title_from_filename(filename), "", text


# ── Extractor ────────────────────────────────────────────────────────


def page_blocks(text: str, page_number: int) -> list[TextBlock]:
    """Blocks for one native page. Always at least one (possibly empty) block."""
    blocks = []
    for para in split_paragraphs(text.strip()):
        content = sanitize_text(para)
        if not content:
            continue
        heading = is_heading(content)
        blocks.append(
            TextBlock(
                content=content,
                kind=BlockKind.HEADING if heading else BlockKind.PARAGRAPH,
                heading_level=1 if heading else 0,
                page_number=page_number,
                position=len(blocks),
            )
        )
    if not blocks:
        blocks.append(TextBlock(content="", page_number=page_number, position=0))
    return blocks


class _PageReader:
    """
    Reads PDF pages in worker threads against one open PdfSource.

    A page that overruns its timeout leaves its thread running inside the
    source. That source is closed only once the thread finishes,
    and the remaining pages are read from a freshly opened one, so no two
    threads ever touch the same pdfminer document.
    """

    def __init__(self, opener: Callable[[bytes], PdfSource], data: bytes, timeout: float):
        self._opener = opener
        self._data = data
        self._timeout = timeout
        self._source: Optional[PdfSource] = None

    async def open(self) -> PdfSource:
        self._source = await asyncio.to_thread(self._opener, self._data)
        return self._source

    async def text(self, index: int) -> str:
        task = asyncio.ensure_future(asyncio.to_thread(self._source.page_text, index))
        try:
            done, _ = await asyncio.wait({task}, timeout=self._timeout)
        except asyncio.CancelledError:
            self._abandon(task)
            raise

        if not done:
            logger.warning(
                "PDF page %d timed out after %.0fs; using empty page", index + 1, self._timeout
            )
            self._abandon(task)
            await self.open()
            return ""

        try:
            return task.result()
        except Exception as e:
            logger.warning("PDF page %d extraction failed: %s", index + 1, e)
            return ""

    def _abandon(self, task: asyncio.Future) -> None:
        source, self._source = self._source, None

        def release(finished: asyncio.Future) -> None:
            if not finished.cancelled() and finished.exception() is not None:
                logger.debug("Abandoned PDF page failed: %s", finished.exception())
            source.close()

        task.add_done_callback(release)

    def close(self) -> None:
        if self._source is not None:
            self._source.close()
            self._source = None


class Extractor:
    def __init__(
        self,
        pdf_opener: Callable[[bytes], PdfSource] = open_pdf,
        page_timeout: float = PAGE_TIMEOUT_SECONDS,
    ):
        self._open_pdf = pdf_opener
        self._page_timeout = page_timeout

    async def extract(
        self,
        upload: RawUpload,
        on_meta: Optional[OnMeta] = None,
        on_page: Optional[OnPage] = None,
    ) -> ExtractionResult:
        if upload.format is DocumentFormat.PDF:
            return await self._extract_pdf(upload, on_meta, on_page)

        if upload.format is DocumentFormat.EPUB:
            title, author, text = await asyncio.to_thread(extract_epub, upload.data, upload.filename)
        else:
            title, author, text = extract_plain(upload.data, upload.filename)
        return await self._paginate_text(title, author, text, on_meta, on_page)

    async def _extract_pdf(
        self,
        upload: RawUpload,
        on_meta: Optional[OnMeta],
        on_page: Optional[OnPage],
    ) -> ExtractionResult:
        reader = _PageReader(self._open_pdf, upload.data, self._page_timeout)
        source = await reader.open()
        try:
            meta = ExtractionMetadata(
                title=source.title,
                author=source.author,
                page_count=source.page_count,
                has_password=source.encrypted,
            )
            if on_meta:
                await on_meta(meta)

            blocks: list[TextBlock] = []
            words = 0
            for index in range(meta.page_count):
                page_number = index + 1
                logger.debug("PDF page %d/%d", page_number, meta.page_count)
                text = await reader.text(index)

                current = page_blocks(text, page_number)
                blocks.extend(current)
                page_text = "\n\n".join(b.content for b in current if b.content)
                words += word_count(page_text)
                if on_page:
                    await on_page(page_number, page_text)

            meta.word_count = words
            return ExtractionResult(blocks=blocks, metadata=meta)
        finally:
            reader.close()

    async def _paginate_text(
        self,
        title: str,
        author: str,
        text: str,
        on_meta: Optional[OnMeta],
        on_page: Optional[OnPage],
    ) -> ExtractionResult:
        blocks, page_count, words = blocks_from_text(text)
        meta = ExtractionMetadata(
            title=title,
            author=author,
            page_count=page_count,
            word_count=words,
        )
        if on_meta:
            await on_meta(meta)
        if on_page:
            for page_number, page in enumerate(to_optimized_pages(blocks, page_count), start=1):
                await on_page(page_number, page)
        return ExtractionResult(blocks=blocks, metadata=meta)
