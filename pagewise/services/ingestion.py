"""
Retrieval ingestion: optimized pages → page rows → page embeddings.

Two bounded phases. A page that fails to persist or embed is logged and
skipped; the rest of the batch carries on. Cancellation aborts the batch.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Optional

from ..core.errors import AccessDenied, NotFound, ProcessingFailed, ServiceUnavailable
from ..domain import DocumentPage, PageEmbedding
from ..repositories.documents import DocumentRepository
from ..repositories.retrieval import RetrievalRepository
from . import realtime
from .embeddings import Embedder
from .quota import QuotaGate

logger = logging.getLogger(__name__)

PAGE_WORKERS = 15
EMBED_WORKERS = 8


@dataclass(frozen=True)
class IngestionReport:
    pages_total: int
    pages_saved: int
    embeddings_saved: int

    def to_dict(self) -> dict:
        return asdict(self)


class IngestionPipeline:
    def __init__(
        self,
        documents: DocumentRepository,
        retrieval: RetrievalRepository,
        embedder: Embedder,
        quota: QuotaGate,
    ):
        self._documents = documents
        self._retrieval = retrieval
        self._embedder = embedder
        self._quota = quota

    async def ingest(self, owner_id: str, document_id: str) -> IngestionReport:
        await self._quota.require_entitlement(owner_id)

        doc = await self._documents.get_optimized(document_id, include_pages=True)
        if doc is None:
            raise NotFound(f"document {document_id} not found")
        if doc.owner_id != owner_id:
            raise AccessDenied()
        if not doc.has_page_text:
            raise ProcessingFailed("document has no content to ingest")

        try:
            await self._retrieval.delete_by_document(document_id)
        except Exception as e:
            logger.error("Cleanup of retrieval rows for %s failed: %s", document_id, e)
            raise ServiceUnavailable("could not clear previous retrieval data", cause=e) from e

        saved = await self._save_pages(document_id, doc.pages)
        embedded = await self._embed_pages(document_id, saved)

        report = IngestionReport(
            pages_total=len(doc.pages),
            pages_saved=len(saved),
            embeddings_saved=embedded,
        )
        logger.info(
            "Ingested document %s: %d/%d pages saved, %d embeddings",
            document_id, report.pages_saved, report.pages_total, report.embeddings_saved,
        )
        await realtime.ingestion_completed(owner_id, document_id, report.to_dict())
        return report

    async def _save_pages(self, document_id: str, pages: list[str]) -> list[DocumentPage]:
        sem = asyncio.Semaphore(PAGE_WORKERS)

        async def save(page_number: int, text: str) -> Optional[DocumentPage]:
            async with sem:
                try:
                    return await self._retrieval.save_page(document_id, page_number, text)
                except Exception as e:
                    logger.error(
                        "Saving page %d of document %s failed: %s", page_number, document_id, e
                    )
                    return None

        results = await asyncio.gather(
            *(save(n, text) for n, text in enumerate(pages, start=1) if text.strip())
        )
        return [page for page in results if page is not None]

    async def _embed_pages(self, document_id: str, pages: list[DocumentPage]) -> int:
        sem = asyncio.Semaphore(EMBED_WORKERS)

        async def embed(page: DocumentPage) -> bool:
            async with sem:
                try:
                    vector = await self._embedder.embed(page.text)
                    if not vector:
                        logger.warning(
                            "Empty embedding for page %d of document %s",
                            page.page_number, document_id,
                        )
                        return False
                    await self._retrieval.save_embedding(
                        PageEmbedding(
                            document_id=document_id,
                            page_id=page.id,
                            page_number=page.page_number,
                            vector=vector,
                        )
                    )
                    return True
                except Exception as e:
                    logger.error(
                        "Embedding page %d of document %s failed: %s",
                        page.page_number, document_id, e,
                    )
                    return False

        results = await asyncio.gather(*(embed(page) for page in pages))
        return sum(1 for ok in results if ok)
