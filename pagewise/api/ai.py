"""
Reading-assistant endpoints: retrieval ingestion, chat, chat history.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..core.auth import AuthenticatedUser
from ..core.dependencies import get_chat, get_ingestion, get_user
from ..services.chat import ChatOrchestrator, ChatRequest
from ..services.ingestion import IngestionPipeline

logger = logging.getLogger(__name__)

ai_router = APIRouter(prefix="/ai", tags=["ai"])


class IngestResponse(BaseModel):
    document_id: str
    pages_total: int
    pages_saved: int
    embeddings_saved: int


class ChatBody(BaseModel):
    prompt: str = ""
    document_id: str = ""
    session_id: Optional[str] = None
    current_page: Optional[int] = None
    total_pages: Optional[int] = None


class ChatReply(BaseModel):
    session_id: str
    message: str
    citations: list[int] = []


class MessageOut(BaseModel):
    id: str
    role: str
    content: str
    citations: list[int] = []
    token_count: int = 0
    created_at: Optional[datetime] = None


class SessionOut(BaseModel):
    id: str
    title: str
    document_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class HistoryOut(BaseModel):
    session: SessionOut
    messages: list[MessageOut]


@ai_router.post("/documents/{document_id}/ingest", response_model=IngestResponse)
async def ingest_document(
    document_id: str,
    user: AuthenticatedUser = Depends(get_user),
    pipeline: IngestionPipeline = Depends(get_ingestion),
):
    """(Re)build the document's page rows and embeddings."""
    report = await pipeline.ingest(user.user_id, document_id)
    return IngestResponse(document_id=document_id, **report.to_dict())


@ai_router.post("/chat", response_model=ChatReply)
async def chat(
    body: ChatBody,
    user: AuthenticatedUser = Depends(get_user),
    orchestrator: ChatOrchestrator = Depends(get_chat),
):
    resp = await orchestrator.ask(
        user.user_id,
        ChatRequest(
            prompt=body.prompt,
            document_id=body.document_id,
            session_id=body.session_id,
            current_page=body.current_page,
            total_pages=body.total_pages,
        ),
    )
    return ChatReply(session_id=resp.session_id, message=resp.message, citations=resp.citations)


@ai_router.get("/chat/{session_id}", response_model=HistoryOut)
async def chat_history(
    session_id: str,
    user: AuthenticatedUser = Depends(get_user),
    orchestrator: ChatOrchestrator = Depends(get_chat),
):
    history = await orchestrator.history(user.user_id, session_id)
    s = history.session
    return HistoryOut(
        session=SessionOut(
            id=s.id,
            title=s.title,
            document_id=s.document_id,
            created_at=s.created_at,
            updated_at=s.updated_at,
        ),
        messages=[
            MessageOut(
                id=m.id,
                role=m.role.value,
                content=m.content,
                citations=list(m.citations),
                token_count=m.token_count,
                created_at=m.created_at,
            )
            for m in history.messages
        ],
    )
