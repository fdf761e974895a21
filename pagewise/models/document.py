"""
Documents and their retrieval rows.

A document carries two content representations side by side:
  - content            rich form, JSON list of text blocks
  - optimized_content  lightweight form, JSON list of page strings
each with its own checksum / size / version.
"""

from datetime import datetime

from sqlalchemy import (
    BigInteger, DateTime, ForeignKey, Integer, JSON, String, Text, UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import OwnedBase, RecordBase


class Document(OwnedBase):
    __tablename__ = "documents"

    title: Mapped[str] = mapped_column(String, nullable=False)
    author: Mapped[str] = mapped_column(String, nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=True)
    doc_metadata: Mapped[dict] = mapped_column("metadata", JSON, nullable=True, default=dict)
    # page_count, word_count, file_size, format, source, has_password, ...

    # Rich representation
    content: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    content_checksum_sha256: Mapped[str] = mapped_column(String, nullable=True)
    content_size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=True)
    content_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Optimized representation
    optimized_content: Mapped[list] = mapped_column(JSON, nullable=True)
    optimized_checksum_sha256: Mapped[str] = mapped_column(String, nullable=True)
    optimized_size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=True)
    optimized_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Original upload
    original_storage_path: Mapped[str] = mapped_column(Text, nullable=True)
    original_file_name: Mapped[str] = mapped_column(String, nullable=True)
    original_mime_type: Mapped[str] = mapped_column(String, nullable=True)
    original_size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=True)
    original_checksum_sha256: Mapped[str] = mapped_column(String, nullable=True)

    processing_status: Mapped[str] = mapped_column(
        String, nullable=False, default="processing", index=True
    )  # processing, ready, failed
    processing_error: Mapped[str] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)


class DocumentPage(RecordBase):
    __tablename__ = "document_pages"
    __table_args__ = (
        UniqueConstraint("document_id", "page_number", name="uq_document_pages_doc_page"),
    )

    document_id: Mapped[str] = mapped_column(
        String, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    page_number: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False, default="")


class PageEmbedding(RecordBase):
    __tablename__ = "page_embeddings"
    __table_args__ = (
        UniqueConstraint("page_id", "chunk_index", name="uq_page_embeddings_page_chunk"),
    )

    document_id: Mapped[str] = mapped_column(
        String, ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    page_id: Mapped[str] = mapped_column(
        String, ForeignKey("document_pages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    page_number: Mapped[int] = mapped_column(Integer, nullable=False)
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    embedding: Mapped[list] = mapped_column(JSON, nullable=False)
