"""
FastAPI dependencies. Injected into route handlers.
"""

from fastapi import Depends, Header, HTTPException, status

from ..repositories.chat import ChatRepository
from ..repositories.documents import DocumentRepository
from ..repositories.preferences import PreferencesRepository
from ..repositories.retrieval import RetrievalRepository
from ..repositories.usage import UsageRepository
from ..services.account_status import AccountStatusService, get_account_status_service
from ..services.chat import ChatOrchestrator
from ..services.embeddings import GeminiEmbedder
from ..services.ingestion import IngestionPipeline
from ..services.lifecycle import DocumentLifecycleManager
from ..services.llm import HttpLLMClient
from ..services.quota import QuotaGate
from ..services.tasks import get_task_runner
from .auth import AuthenticatedUser, get_current_user
from .storage import get_storage


def get_account_status() -> AccountStatusService:
    return get_account_status_service()


async def get_user(
    authorization: str = Header(default=""),
    account_status: AccountStatusService = Depends(get_account_status),
) -> AuthenticatedUser:
    """
    Resolve authenticated user from Authorization header.
    Returns dev user if FF_USE_AUTH=false.
    """
    try:
        return await get_current_user(authorization, is_disabled=account_status.is_disabled)
    except PermissionError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_quota_gate() -> QuotaGate:
    return QuotaGate(PreferencesRepository(), UsageRepository())


def get_lifecycle() -> DocumentLifecycleManager:
    return DocumentLifecycleManager(
        documents=DocumentRepository(),
        storage=get_storage(),
        preferences=PreferencesRepository(),
        tasks=get_task_runner(),
    )


def get_ingestion(quota: QuotaGate = Depends(get_quota_gate)) -> IngestionPipeline:
    return IngestionPipeline(
        documents=DocumentRepository(),
        retrieval=RetrievalRepository(),
        embedder=GeminiEmbedder(),
        quota=quota,
    )


def get_chat(quota: QuotaGate = Depends(get_quota_gate)) -> ChatOrchestrator:
    return ChatOrchestrator(
        chats=ChatRepository(),
        documents=DocumentRepository(),
        retrieval=RetrievalRepository(),
        embedder=GeminiEmbedder(),
        llm=HttpLLMClient(),
        quota=quota,
    )
