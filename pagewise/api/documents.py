"""
Document upload and read endpoints.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Header, Query, Response, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..core.auth import AuthenticatedUser
from ..core.dependencies import get_lifecycle, get_user
from ..domain import Document, OptimizedDocument
from ..services.lifecycle import DocumentLifecycleManager

logger = logging.getLogger(__name__)

documents_router = APIRouter(tags=["documents"])


class DocumentResponse(BaseModel):
    id: str
    title: str
    author: Optional[str] = None
    description: Optional[str] = None
    processing_status: str
    processing_error: Optional[str] = None
    processed_at: Optional[datetime] = None
    metadata: dict = {}
    content: list[dict] = []
    content_checksum: Optional[str] = None
    content_size_bytes: Optional[int] = None
    optimized_checksum: Optional[str] = None
    optimized_version: int = 1
    original_file_name: Optional[str] = None
    original_mime_type: Optional[str] = None
    original_size_bytes: Optional[int] = None
    original_checksum: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, doc: Document, include_content: bool = True) -> "DocumentResponse":
        return cls(
            id=doc.id,
            title=doc.title,
            author=doc.author,
            description=doc.description,
            processing_status=doc.processing_status.value,
            processing_error=doc.processing_error,
            processed_at=doc.processed_at,
            metadata=doc.metadata.to_dict(),
            content=[b.to_dict() for b in doc.blocks] if include_content else [],
            content_checksum=doc.rich.checksum,
            content_size_bytes=doc.rich.size_bytes,
            optimized_checksum=doc.optimized.checksum,
            optimized_version=doc.optimized.version,
            original_file_name=doc.original_filename,
            original_mime_type=doc.original_mime_type,
            original_size_bytes=doc.original_size_bytes,
            original_checksum=doc.original_checksum,
            created_at=doc.created_at,
        )


class OptimizedResponse(BaseModel):
    document_id: str
    processing_status: str
    optimized_version: int
    optimized_checksum: Optional[str] = None
    optimized_size_bytes: Optional[int] = None
    processed_at: Optional[datetime] = None
    processing_error: Optional[str] = None
    partial: bool = False
    pages: list[str] = []

    @classmethod
    def from_domain(cls, doc: OptimizedDocument, partial: bool) -> "OptimizedResponse":
        return cls(
            document_id=doc.document_id,
            processing_status=doc.processing_status.value,
            optimized_version=doc.optimized_version,
            optimized_checksum=doc.optimized_checksum,
            optimized_size_bytes=doc.optimized_size_bytes,
            processed_at=doc.processed_at,
            processing_error=doc.processing_error,
            partial=partial,
            pages=doc.pages,
        )


@documents_router.post("/documents/upload", response_model=DocumentResponse, status_code=201)
async def upload_document(
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
    user: AuthenticatedUser = Depends(get_user),
    lifecycle: DocumentLifecycleManager = Depends(get_lifecycle),
):
    """Upload a document. Small files come back ready; large ones come back processing."""
    data = await file.read()
    doc = await lifecycle.upload(user.user_id, data, file.filename or "document", title=title)
    return DocumentResponse.from_domain(doc, include_content=False)


@documents_router.get("/documents", response_model=list[DocumentResponse])
async def list_documents(
    user: AuthenticatedUser = Depends(get_user),
    lifecycle: DocumentLifecycleManager = Depends(get_lifecycle),
):
    docs = await lifecycle.list_documents(user.user_id)
    return [DocumentResponse.from_domain(d, include_content=False) for d in docs]


@documents_router.get("/documents/search", response_model=list[DocumentResponse])
async def search_documents(
    q: str = Query(""),
    user: AuthenticatedUser = Depends(get_user),
    lifecycle: DocumentLifecycleManager = Depends(get_lifecycle),
):
    """Title/author search within the caller's documents."""
    docs = await lifecycle.search_documents(user.user_id, q)
    return [DocumentResponse.from_domain(d, include_content=False) for d in docs]


@documents_router.get("/documents/{document_id}", response_model=DocumentResponse)
async def get_document(
    document_id: str,
    user: AuthenticatedUser = Depends(get_user),
    lifecycle: DocumentLifecycleManager = Depends(get_lifecycle),
):
    doc = await lifecycle.get_document(document_id, user.user_id)
    return DocumentResponse.from_domain(doc)


@documents_router.delete("/documents/{document_id}")
async def delete_document(
    document_id: str,
    user: AuthenticatedUser = Depends(get_user),
    lifecycle: DocumentLifecycleManager = Depends(get_lifecycle),
):
    await lifecycle.delete_document(document_id, user.user_id)
    return {"message": "Document deleted successfully"}


@documents_router.get("/documents/{document_id}/optimized")
async def get_optimized_document(
    document_id: str,
    include_pages: bool = Query(True),
    if_none_match: Optional[str] = Header(default=None),
    user: AuthenticatedUser = Depends(get_user),
    lifecycle: DocumentLifecycleManager = Depends(get_lifecycle),
):
    """
    Lightweight page-array read.

    200 ready (or partial while processing), 202 nothing readable yet,
    304 when If-None-Match carries the current checksum.
    """
    result = await lifecycle.read_optimized(
        document_id, user.user_id, if_none_match=if_none_match, include_pages=include_pages
    )
    headers = {"ETag": result.etag} if result.etag else {}
    if result.status_code == 304:
        return Response(status_code=304, headers=headers)

    body = OptimizedResponse.from_domain(result.document, result.partial)
    return JSONResponse(
        status_code=result.status_code,
        content=body.model_dump(mode="json"),
        headers=headers,
    )
