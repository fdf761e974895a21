"""
Document lifecycle: upload → processing → ready | failed.

Small uploads are processed before upload() returns. Larger ones are handed
to the TaskRunner and the caller gets the `processing` document right away;
readers then see progressively more pages through partial optimized
snapshots until the terminal write lands.
"""

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Callable, Optional

from ..core.errors import AccessDenied, NotFound, StorageLimitExceeded, ValidationError
from ..core.storage import StorageBackend
from ..domain import (
    Document,
    DocumentMetadata,
    ExtractionMetadata,
    OptimizedDocument,
    ProcessingStatus,
    RawUpload,
    Representation,
)
from ..repositories.documents import DocumentRepository
from ..repositories.preferences import PreferencesRepository
from . import realtime
from .extraction import Extractor, detect_format, title_from_filename
from .pagination import blocks_checksum, pages_checksum, to_optimized_pages
from .quota import storage_limit
from .tasks import TaskRunner
from .text import sanitize_text

logger = logging.getLogger(__name__)

ASYNC_THRESHOLD_BYTES = 2 * 1024 * 1024
SNAPSHOT_INTERVAL_PAGES = 12
OPTIMIZED_VERSION = 1


@dataclass
class OptimizedRead:
    """Outcome of the optimized read contract: 200, 202 or 304."""

    status_code: int
    etag: Optional[str] = None
    document: Optional[OptimizedDocument] = None
    partial: bool = False


def etag_matches(if_none_match: Optional[str], checksum: Optional[str]) -> bool:
    if not if_none_match or not checksum:
        return False
    for candidate in if_none_match.split(","):
        candidate = candidate.strip()
        if candidate == "*":
            return True
        if candidate.startswith("W/"):
            candidate = candidate[2:]
        if candidate.strip('"') == checksum:
            return True
    return False


class _Snapshots:
    """Page accumulator for one processing run."""

    def __init__(self):
        self.pages: list[str] = []
        self.page_count = 0
        self.last_written = 0

    def set_page(self, page_number: int, text: str) -> None:
        if len(self.pages) < page_number:
            self.pages.extend([""] * (page_number - len(self.pages)))
        self.pages[page_number - 1] = sanitize_text(text)

    def due(self, page_number: int) -> bool:
        return page_number == 1 or page_number - self.last_written >= SNAPSHOT_INTERVAL_PAGES

    def current(self) -> list[str]:
        pages = list(self.pages)
        if len(pages) < self.page_count:
            pages.extend([""] * (self.page_count - len(pages)))
        return pages


class DocumentLifecycleManager:
    def __init__(
        self,
        documents: DocumentRepository,
        storage: StorageBackend,
        preferences: PreferencesRepository,
        tasks: TaskRunner,
        extractor: Optional[Extractor] = None,
        async_threshold: int = ASYNC_THRESHOLD_BYTES,
        clock: Callable[[], datetime] = None,
    ):
        self._documents = documents
        self._storage = storage
        self._preferences = preferences
        self._tasks = tasks
        self._extractor = extractor or Extractor()
        self._async_threshold = async_threshold
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ── Upload ───────────────────────────────────────────────────────

    async def upload(
        self, owner_id: str, data: bytes, filename: str, title: Optional[str] = None
    ) -> Document:
        if not data:
            raise ValidationError("file is empty", field="file")
        fmt = detect_format(filename, data)
        upload = RawUpload.from_bytes(data, filename, fmt)

        prefs = await self._preferences.get(owner_id)
        limit = storage_limit(prefs)
        used = await self._documents.total_original_bytes(owner_id)
        if used + upload.size > limit:
            raise StorageLimitExceeded(
                f"storage limit exceeded: {used + upload.size} of {limit} bytes"
            )

        document_id = str(uuid.uuid4())
        ext = PurePosixPath(filename).suffix.lower() or f".{fmt.value}"
        path = await self._storage.upload(data, f"{owner_id}/{document_id}{ext}")

        doc = await self._documents.create(
            Document(
                id=document_id,
                owner_id=owner_id,
                title=(title or "").strip() or title_from_filename(filename),
                processing_status=ProcessingStatus.PROCESSING,
                metadata=DocumentMetadata(file_size=upload.size, format=fmt.value),
                optimized=Representation(version=OPTIMIZED_VERSION),
                original_storage_path=path,
                original_filename=filename,
                original_mime_type=upload.mime_type,
                original_size_bytes=upload.size,
                original_checksum=upload.checksum,
            )
        )
        logger.info(
            "Document %s uploaded by %s (%s, %d bytes)", doc.id, owner_id, fmt.value, upload.size
        )
        await realtime.document_processing(owner_id, doc.id, ProcessingStatus.PROCESSING.value)

        if upload.size < self._async_threshold:
            await self.process(doc.id, upload)
            return await self._documents.get(doc.id) or doc

        self._tasks.spawn(self.process(doc.id, upload), name=f"process-document-{doc.id}")
        return doc

    # ── Processing ───────────────────────────────────────────────────

    async def process(self, document_id: str, upload: RawUpload) -> None:
        doc = await self._documents.get(document_id)
        if doc is None:
            raise NotFound(f"document {document_id} not found")
        if doc.processing_status is not ProcessingStatus.PROCESSING:
            logger.info("Document %s already %s; skipping", document_id, doc.processing_status.value)
            return

        snapshots = _Snapshots()

        async def on_meta(meta: ExtractionMetadata) -> None:
            snapshots.page_count = meta.page_count

        async def on_page(page_number: int, text: str) -> None:
            snapshots.set_page(page_number, text)
            if not snapshots.due(page_number):
                return
            snapshots.last_written = page_number
            pages = snapshots.current()
            checksum, size = pages_checksum(pages)
            try:
                await self._documents.update_partial(document_id, pages, checksum, size)
                await realtime.document_progress(
                    doc.owner_id, document_id, page_number, snapshots.page_count
                )
            except Exception as e:
                logger.warning(
                    "Partial snapshot for document %s at page %d failed: %s",
                    document_id, page_number, e,
                )

        try:
            result = await self._extractor.extract(upload, on_meta=on_meta, on_page=on_page)
        except Exception as e:
            logger.error("Processing document %s failed: %s", document_id, e)
            await self._documents.mark_failed(document_id, str(e) or type(e).__name__)
            await realtime.document_processing(
                doc.owner_id, document_id, ProcessingStatus.FAILED.value, str(e)
            )
            return

        meta = result.metadata
        pages = to_optimized_pages(result.blocks, meta.page_count)
        rich_checksum, rich_size = blocks_checksum(result.blocks)
        opt_checksum, opt_size = pages_checksum(pages)

        title = doc.title
        if meta.title and doc.title == title_from_filename(doc.original_filename or ""):
            title = meta.title

        final = replace(
            doc,
            title=title,
            author=meta.author or doc.author,
            metadata=replace(
                doc.metadata,
                original_title=meta.title,
                original_author=meta.author,
                page_count=len(pages),
                word_count=meta.word_count,
                has_password=meta.has_password,
            ),
            blocks=result.blocks,
            rich=Representation(checksum=rich_checksum, size_bytes=rich_size, version=doc.rich.version),
            pages=pages,
            optimized=Representation(
                checksum=opt_checksum, size_bytes=opt_size, version=OPTIMIZED_VERSION
            ),
            processing_status=ProcessingStatus.READY,
            processing_error=None,
            processed_at=self._clock(),
        )
        try:
            updated = await self._documents.mark_ready(final)
        except Exception as e:
            logger.exception("Terminal write for document %s failed", document_id)
            error = f"terminal write failed: {e}"
            try:
                if await self._documents.mark_failed(document_id, error):
                    await realtime.document_processing(
                        doc.owner_id, document_id, ProcessingStatus.FAILED.value, error
                    )
            except Exception as mark_error:
                logger.error("Marking document %s failed did not land: %s", document_id, mark_error)
            raise
        if not updated:
            return

        logger.info(
            "Document %s ready (%d pages, %d words)", document_id, len(pages), meta.word_count
        )
        await realtime.document_processing(doc.owner_id, document_id, ProcessingStatus.READY.value)

    # ── Reads ────────────────────────────────────────────────────────

    async def get_document(self, document_id: str, owner_id: str) -> Document:
        doc = await self._documents.get(document_id)
        if doc is None:
            raise NotFound(f"document {document_id} not found")
        if doc.owner_id != owner_id:
            raise AccessDenied()
        return doc

    async def list_documents(self, owner_id: str) -> list[Document]:
        return await self._documents.list_by_owner(owner_id)

    async def search_documents(self, owner_id: str, query: str) -> list[Document]:
        query = (query or "").strip()
        if not query:
            raise ValidationError("search query is required", field="q")
        return await self._documents.search(owner_id, query)

    async def delete_document(self, document_id: str, owner_id: str) -> None:
        """Delete the row with its pages and embeddings, then the stored original."""
        doc = await self.get_document(document_id, owner_id)
        if not await self._documents.delete(document_id):
            raise NotFound(f"document {document_id} not found")
        logger.info("Document %s deleted by %s", document_id, owner_id)

        if doc.original_storage_path:
            try:
                await self._storage.delete(doc.original_storage_path)
            except Exception as e:
                logger.warning(
                    "Stored original %s of document %s was not removed: %s",
                    doc.original_storage_path, document_id, e,
                )

    async def get_optimized(
        self, document_id: str, owner_id: str, include_pages: bool = True
    ) -> OptimizedDocument:
        doc = await self._documents.get_optimized(document_id, include_pages=include_pages)
        if doc is None:
            raise NotFound(f"document {document_id} not found")
        if doc.owner_id != owner_id:
            raise AccessDenied()
        return doc

    async def read_optimized(
        self,
        document_id: str,
        owner_id: str,
        if_none_match: Optional[str] = None,
        include_pages: bool = True,
    ) -> OptimizedRead:
        doc = await self.get_optimized(document_id, owner_id, include_pages=True)
        etag = f'"{doc.optimized_checksum}"' if doc.optimized_checksum else None

        readable = doc.processing_status is ProcessingStatus.READY or (
            doc.processing_status is ProcessingStatus.PROCESSING and doc.has_page_text
        )
        if readable and etag_matches(if_none_match, doc.optimized_checksum):
            return OptimizedRead(status_code=304, etag=etag)

        if not readable:
            status_code, partial = 202, False
        else:
            status_code = 200
            partial = doc.processing_status is ProcessingStatus.PROCESSING
            if not partial and doc.processed_at is None:
                doc.processed_at = self._clock()
                await self._documents.fill_processed_at(document_id, doc.processed_at)

        if not include_pages:
            doc.pages = []
        return OptimizedRead(status_code=status_code, etag=etag, document=doc, partial=partial)
