"""
Document rows ↔ domain Documents.

Partial snapshots and terminal writes are conditional on the row still being
`processing`, so a ready/failed document is never rewritten.
"""

import logging
from typing import Optional

from sqlalchemy import delete, func, or_, select, update

from ..domain import (
    Document,
    DocumentMetadata,
    OptimizedDocument,
    ProcessingStatus,
    Representation,
    TextBlock,
)
from ..models import ChatSession as SessionRow, Document as DocumentRow
from ..models import DocumentPage as PageRow, PageEmbedding as EmbeddingRow
from .base import Repository, aware

logger = logging.getLogger(__name__)

_PROCESSING = ProcessingStatus.PROCESSING.value


def _to_domain(row: DocumentRow) -> Document:
    return Document(
        id=row.id,
        owner_id=row.owner_id,
        title=row.title,
        processing_status=ProcessingStatus(row.processing_status),
        metadata=DocumentMetadata.from_dict(row.doc_metadata),
        author=row.author,
        description=row.description,
        blocks=[TextBlock.from_dict(b) for b in (row.content or [])],
        rich=Representation(
            checksum=row.content_checksum_sha256,
            size_bytes=row.content_size_bytes,
            version=row.content_version,
        ),
        pages=list(row.optimized_content or []),
        optimized=Representation(
            checksum=row.optimized_checksum_sha256,
            size_bytes=row.optimized_size_bytes,
            version=row.optimized_version,
        ),
        original_storage_path=row.original_storage_path,
        original_filename=row.original_file_name,
        original_mime_type=row.original_mime_type,
        original_size_bytes=row.original_size_bytes,
        original_checksum=row.original_checksum_sha256,
        processing_error=row.processing_error,
        processed_at=aware(row.processed_at),
        created_at=aware(row.created_at),
        updated_at=aware(row.updated_at),
    )


class DocumentRepository(Repository):
    async def create(self, doc: Document) -> Document:
        row = DocumentRow(
            id=doc.id,
            owner_id=doc.owner_id,
            title=doc.title,
            author=doc.author,
            description=doc.description,
            doc_metadata=doc.metadata.to_dict(),
            content=[b.to_dict() for b in doc.blocks],
            content_checksum_sha256=doc.rich.checksum,
            content_size_bytes=doc.rich.size_bytes,
            content_version=doc.rich.version,
            optimized_content=list(doc.pages),
            optimized_checksum_sha256=doc.optimized.checksum,
            optimized_size_bytes=doc.optimized.size_bytes,
            optimized_version=doc.optimized.version,
            original_storage_path=doc.original_storage_path,
            original_file_name=doc.original_filename,
            original_mime_type=doc.original_mime_type,
            original_size_bytes=doc.original_size_bytes,
            original_checksum_sha256=doc.original_checksum,
            processing_status=doc.processing_status.value,
            processing_error=doc.processing_error,
            processed_at=doc.processed_at,
        )
        async with self.session() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return _to_domain(row)

    async def get(self, document_id: str) -> Optional[Document]:
        async with self.session() as session:
            row = await session.get(DocumentRow, document_id)
            return _to_domain(row) if row else None

    async def get_optimized(
        self, document_id: str, include_pages: bool = True
    ) -> Optional[OptimizedDocument]:
        columns = [
            DocumentRow.id,
            DocumentRow.owner_id,
            DocumentRow.processing_status,
            DocumentRow.optimized_version,
            DocumentRow.optimized_checksum_sha256,
            DocumentRow.optimized_size_bytes,
            DocumentRow.processed_at,
            DocumentRow.processing_error,
        ]
        if include_pages:
            columns.append(DocumentRow.optimized_content)

        async with self.session() as session:
            result = await session.execute(select(*columns).where(DocumentRow.id == document_id))
            row = result.one_or_none()

        if row is None:
            return None
        return OptimizedDocument(
            document_id=row.id,
            owner_id=row.owner_id,
            processing_status=ProcessingStatus(row.processing_status),
            optimized_version=row.optimized_version,
            optimized_checksum=row.optimized_checksum_sha256,
            optimized_size_bytes=row.optimized_size_bytes,
            processed_at=aware(row.processed_at),
            processing_error=row.processing_error,
            pages=list(row.optimized_content or []) if include_pages else [],
        )

    async def list_by_owner(self, owner_id: str) -> list[Document]:
        """Owner's documents, newest first."""
        async with self.session() as session:
            result = await session.execute(
                select(DocumentRow)
                .where(DocumentRow.owner_id == owner_id)
                .order_by(DocumentRow.created_at.desc())
            )
            return [_to_domain(row) for row in result.scalars().all()]

    async def search(self, owner_id: str, query: str) -> list[Document]:
        """Case-insensitive substring match on title or author within one owner."""
        async with self.session() as session:
            result = await session.execute(
                select(DocumentRow)
                .where(DocumentRow.owner_id == owner_id)
                .where(
                    or_(
                        DocumentRow.title.icontains(query, autoescape=True),
                        DocumentRow.author.icontains(query, autoescape=True),
                    )
                )
                .order_by(DocumentRow.created_at.desc())
            )
            return [_to_domain(row) for row in result.scalars().all()]

    async def delete(self, document_id: str) -> bool:
        """
        Remove a document with its pages and embeddings in one transaction.
        Chat sessions stay and lose their document link. False if absent.
        """
        async with self.session() as session:
            await session.execute(delete(EmbeddingRow).where(EmbeddingRow.document_id == document_id))
            await session.execute(delete(PageRow).where(PageRow.document_id == document_id))
            await session.execute(
                update(SessionRow)
                .where(SessionRow.document_id == document_id)
                .values(document_id=None)
            )
            result = await session.execute(delete(DocumentRow).where(DocumentRow.id == document_id))
            await session.commit()
            return result.rowcount > 0

    async def total_original_bytes(self, owner_id: str) -> int:
        async with self.session() as session:
            result = await session.execute(
                select(func.coalesce(func.sum(DocumentRow.original_size_bytes), 0))
                .where(DocumentRow.owner_id == owner_id)
            )
            return int(result.scalar_one())

    async def _update_processing(self, document_id: str, **values) -> bool:
        async with self.session() as session:
            result = await session.execute(
                update(DocumentRow)
                .where(DocumentRow.id == document_id)
                .where(DocumentRow.processing_status == _PROCESSING)
                .values(**values)
            )
            await session.commit()
            return result.rowcount > 0

    async def update_partial(
        self, document_id: str, pages: list[str], checksum: str, size_bytes: int
    ) -> bool:
        """Write an in-progress optimized snapshot. Status stays processing."""
        return await self._update_processing(
            document_id,
            optimized_content=list(pages),
            optimized_checksum_sha256=checksum,
            optimized_size_bytes=size_bytes,
        )

    async def mark_ready(self, doc: Document) -> bool:
        """processing → ready with the final content. False if already terminal."""
        updated = await self._update_processing(
            doc.id,
            title=doc.title,
            author=doc.author,
            doc_metadata=doc.metadata.to_dict(),
            content=[b.to_dict() for b in doc.blocks],
            content_checksum_sha256=doc.rich.checksum,
            content_size_bytes=doc.rich.size_bytes,
            content_version=doc.rich.version,
            optimized_content=list(doc.pages),
            optimized_checksum_sha256=doc.optimized.checksum,
            optimized_size_bytes=doc.optimized.size_bytes,
            optimized_version=doc.optimized.version,
            processing_status=ProcessingStatus.READY.value,
            processing_error=None,
            processed_at=doc.processed_at,
        )
        if not updated:
            logger.warning("Document %s was not processing; ready write skipped", doc.id)
        return updated

    async def mark_failed(self, document_id: str, error: str) -> bool:
        """processing → failed. False if already terminal."""
        updated = await self._update_processing(
            document_id,
            processing_status=ProcessingStatus.FAILED.value,
            processing_error=error,
        )
        if not updated:
            logger.warning("Document %s was not processing; failed write skipped", document_id)
        return updated

    async def fill_processed_at(self, document_id: str, processed_at) -> None:
        """Backfill processed_at on a ready row that is missing it."""
        async with self.session() as session:
            await session.execute(
                update(DocumentRow)
                .where(DocumentRow.id == document_id)
                .where(DocumentRow.processing_status == ProcessingStatus.READY.value)
                .where(DocumentRow.processed_at.is_(None))
                .values(processed_at=processed_at)
            )
            await session.commit()
