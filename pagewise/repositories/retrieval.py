"""
Retrieval rows: one page row per (document, page_number) and one embedding per
page. Similarity search is cosine over a single document's vectors.
"""

import logging
from typing import Optional

import numpy as np
from sqlalchemy import delete, func, select

from ..domain import DocumentPage, PageEmbedding, SearchHit
from ..models import DocumentPage as PageRow, PageEmbedding as EmbeddingRow
from ..models.base import new_uuid, utcnow
from .base import Repository, dialect_insert

logger = logging.getLogger(__name__)


def cosine_scores(query: list[float], vectors: list[list[float]]) -> np.ndarray:
    """Cosine similarity of query against each row of vectors."""
    q = np.asarray(query, dtype="float32")
    m = np.asarray(vectors, dtype="float32")
    q_norm = np.linalg.norm(q)
    norms = np.linalg.norm(m, axis=1)
    norms[norms == 0] = 1.0
    if q_norm == 0:
        return np.zeros(len(vectors), dtype="float32")
    return (m @ q) / (norms * q_norm)


class RetrievalRepository(Repository):
    async def delete_by_document(self, document_id: str) -> None:
        async with self.session() as session:
            await session.execute(delete(EmbeddingRow).where(EmbeddingRow.document_id == document_id))
            await session.execute(delete(PageRow).where(PageRow.document_id == document_id))
            await session.commit()

    async def save_page(self, document_id: str, page_number: int, text: str) -> DocumentPage:
        """Upsert by (document_id, page_number)."""
        async with self.session() as session:
            stmt = dialect_insert(session, PageRow).values(
                id=new_uuid(),
                document_id=document_id,
                page_number=page_number,
                text=text,
                created_at=utcnow(),
                updated_at=utcnow(),
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["document_id", "page_number"],
                set_={"text": stmt.excluded.text, "updated_at": stmt.excluded.updated_at},
            )
            await session.execute(stmt)
            await session.commit()

            result = await session.execute(
                select(PageRow.id)
                .where(PageRow.document_id == document_id)
                .where(PageRow.page_number == page_number)
            )
            page_id = result.scalar_one()
        return DocumentPage(id=page_id, document_id=document_id, page_number=page_number, text=text)

    async def save_embedding(self, embedding: PageEmbedding) -> None:
        """Upsert by (page_id, chunk_index)."""
        async with self.session() as session:
            stmt = dialect_insert(session, EmbeddingRow).values(
                id=new_uuid(),
                document_id=embedding.document_id,
                page_id=embedding.page_id,
                page_number=embedding.page_number,
                chunk_index=embedding.chunk_index,
                embedding=[float(x) for x in embedding.vector],
                created_at=utcnow(),
                updated_at=utcnow(),
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["page_id", "chunk_index"],
                set_={"embedding": stmt.excluded.embedding, "updated_at": stmt.excluded.updated_at},
            )
            await session.execute(stmt)
            await session.commit()

    async def search_similar(
        self, document_id: str, query_vector: list[float], top_k: int = 5
    ) -> list[SearchHit]:
        """Top-k pages of one document by cosine similarity to query_vector."""
        async with self.session() as session:
            result = await session.execute(
                select(EmbeddingRow.page_id, EmbeddingRow.page_number, EmbeddingRow.embedding, PageRow.text)
                .join(PageRow, PageRow.id == EmbeddingRow.page_id)
                .where(EmbeddingRow.document_id == document_id)
            )
            rows = [r for r in result.all() if r.embedding and len(r.embedding) == len(query_vector)]

        if not rows or not query_vector:
            return []

        scores = cosine_scores(query_vector, [r.embedding for r in rows])
        order = np.argsort(-scores)[:top_k]
        return [
            SearchHit(
                page_id=rows[i].page_id,
                page_number=rows[i].page_number,
                text=rows[i].text,
                score=float(scores[i]),
            )
            for i in order
        ]

    async def get_page_text(self, document_id: str, page_number: int) -> Optional[str]:
        async with self.session() as session:
            result = await session.execute(
                select(PageRow.text)
                .where(PageRow.document_id == document_id)
                .where(PageRow.page_number == page_number)
            )
            return result.scalar_one_or_none()

    async def counts(self, document_id: str) -> tuple[int, int]:
        """(page rows, embedding rows) for a document."""
        async with self.session() as session:
            pages = await session.execute(
                select(func.count()).select_from(PageRow).where(PageRow.document_id == document_id)
            )
            embeddings = await session.execute(
                select(func.count()).select_from(EmbeddingRow).where(EmbeddingRow.document_id == document_id)
            )
            return int(pages.scalar_one()), int(embeddings.scalar_one())
