"""
Document-scoped reading assistant.

ask(): quota gate → document ownership → session → persist user turn → embed
query → retrieve pages of the current document → build context → model call →
persist answer and usage.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from ..core.errors import AccessDenied, NotFound, ServiceUnavailable, ValidationError
from ..domain import ChatMessage, ChatRole, ChatSession, SearchHit
from ..repositories.chat import ChatRepository
from ..repositories.documents import DocumentRepository
from ..repositories.retrieval import RetrievalRepository
from .embeddings import Embedder
from .llm import LLMClient
from .quota import QuotaGate, QuotaStatus

logger = logging.getLogger(__name__)

TOP_K = 5
MAX_PROMPT_CHARS = 2000
CHAT_TEMPERATURE = 0.5

DEFAULT_SESSION_TITLE = "New Chat"
DOCUMENT_SESSION_TITLE = "Chat about document"

REFUSAL = (
    "I can only answer questions about this document. "
    "Please ask something related to the text you're reading."
)

SEPARATOR = "---------------------\n"

RULES = (
    "RULES: Answer the user's question using ONLY the document context above. "
    "Allowed questions include: what the document is about, summary, main topic, themes, "
    "specific passages, characters, plot, or any question that can be answered from the text. "
    "Only refuse if the question is clearly unrelated (e.g. coding, math, other books, or "
    "topics that cannot be answered from this document). "
    f'If you must refuse, say: "{REFUSAL}" '
    "Do not write code, role-play, or use outside knowledge. "
    "If the context is empty, say you don't have enough of the document to answer.\n"
)

# Stored roles → OpenAI-compatible roles
_ROLE_MAP = {ChatRole.USER: "user", ChatRole.MODEL: "assistant"}


@dataclass
class ChatRequest:
    prompt: str
    document_id: str
    session_id: Optional[str] = None
    current_page: Optional[int] = None
    total_pages: Optional[int] = None

    def validated(self) -> "ChatRequest":
        prompt = (self.prompt or "").strip()
        if not prompt:
            raise ValidationError("prompt is required", field="prompt")
        if len(prompt) > MAX_PROMPT_CHARS:
            raise ValidationError(
                f"prompt must be at most {MAX_PROMPT_CHARS} characters", field="prompt"
            )
        document_id = (self.document_id or "").strip()
        if not document_id:
            raise ValidationError("document_id is required", field="document_id")
        return ChatRequest(
            prompt=prompt,
            document_id=document_id,
            session_id=(self.session_id or "").strip() or None,
            current_page=self.current_page,
            total_pages=self.total_pages,
        )


@dataclass(frozen=True)
class ChatResponse:
    session_id: str
    message: str
    citations: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class ChatHistory:
    session: ChatSession
    messages: list[ChatMessage]


def build_context(
    hits: list[SearchHit],
    current_page: Optional[int] = None,
    current_page_text: Optional[str] = None,
    total_pages: Optional[int] = None,
) -> tuple[str, list[int]]:
    """Returns (context text, citations). The current page, if any, is cited first."""
    parts: list[str] = []
    citations: list[int] = []

    if current_page and current_page > 0:
        if current_page_text and current_page_text.strip():
            parts.append(f"Current page the user is viewing (page {current_page}):\n")
            parts.append(current_page_text)
            parts.append("\n\n" + SEPARATOR)
            citations.append(current_page)
        if total_pages and total_pages > 0:
            parts.append(f"The user is currently viewing page {current_page} of {total_pages}.\n")
        else:
            parts.append(f"The user is currently viewing page {current_page}.\n")

    parts.append("Additional context from the document:\n" + SEPARATOR)
    for hit in hits:
        if current_page and hit.page_number == current_page:
            continue
        parts.append(f"Page {hit.page_number}: {hit.text}\n\n")
        citations.append(hit.page_number)
    parts.append(SEPARATOR)
    parts.append(RULES)
    return "".join(parts), citations


class ChatOrchestrator:
    def __init__(
        self,
        chats: ChatRepository,
        documents: DocumentRepository,
        retrieval: RetrievalRepository,
        embedder: Embedder,
        llm: LLMClient,
        quota: QuotaGate,
        top_k: int = TOP_K,
    ):
        self._chats = chats
        self._documents = documents
        self._retrieval = retrieval
        self._embedder = embedder
        self._llm = llm
        self._quota = quota
        self._top_k = top_k

    async def _owned_session(self, owner_id: str, session_id: str) -> ChatSession:
        session = await self._chats.get_session(session_id)
        if session is None:
            raise NotFound(f"chat session {session_id} not found")
        if session.owner_id != owner_id:
            raise AccessDenied()
        return session

    async def _check_document(self, owner_id: str, document_id: str) -> None:
        doc = await self._documents.get_optimized(document_id, include_pages=False)
        if doc is None:
            raise NotFound(f"document {document_id} not found")
        if doc.owner_id != owner_id:
            raise AccessDenied()

    async def ask(self, owner_id: str, request: ChatRequest) -> ChatResponse:
        request = request.validated()
        status: QuotaStatus = await self._quota.check(owner_id)
        await self._check_document(owner_id, request.document_id)

        if request.session_id:
            session = await self._owned_session(owner_id, request.session_id)
            if session.document_id != request.document_id:
                raise ValidationError("session belongs to another document", field="session_id")
        else:
            session = await self._chats.create_session(
                owner_id,
                title=DOCUMENT_SESSION_TITLE if request.document_id else DEFAULT_SESSION_TITLE,
                document_id=request.document_id or None,
            )
            logger.info("Created chat session %s for %s", session.id, owner_id)

        user_msg: Optional[ChatMessage] = None
        try:
            user_msg = await self._chats.add_message(session.id, ChatRole.USER, request.prompt)
        except Exception as e:
            logger.warning("Failed to log user message in session %s: %s", session.id, e)

        query_vector = await self._embedder.embed(request.prompt)
        if not query_vector:
            raise ServiceUnavailable("failed to embed query")

        hits: list[SearchHit] = []
        try:
            hits = await self._retrieval.search_similar(
                request.document_id, query_vector, self._top_k
            )
        except Exception as e:
            logger.warning("Vector search for document %s failed: %s", request.document_id, e)

        current_text = None
        if request.current_page and request.current_page > 0:
            try:
                current_text = await self._retrieval.get_page_text(
                    request.document_id, request.current_page
                )
            except Exception as e:
                logger.warning(
                    "Loading page %d of %s failed: %s", request.current_page, request.document_id, e
                )

        context, citations = build_context(
            hits, request.current_page, current_text, request.total_pages
        )

        messages = await self._history_messages(session.id, exclude_id=user_msg.id if user_msg else None)
        messages.append({"role": "user", "content": context + "\nQuery: " + request.prompt})

        completion = await self._llm.complete(messages, temperature=CHAT_TEMPERATURE)
        if not completion.text:
            raise ServiceUnavailable("empty response from model")

        try:
            await self._chats.add_message(
                session.id,
                ChatRole.MODEL,
                completion.text,
                citations=citations,
                token_count=completion.total_tokens,
            )
        except Exception as e:
            logger.warning("Failed to save model response in session %s: %s", session.id, e)

        try:
            await self._quota.record(
                owner_id, completion.prompt_tokens, completion.completion_tokens, limit=status.limit
            )
        except Exception as e:
            logger.warning("Failed to record usage for %s: %s", owner_id, e)

        return ChatResponse(session_id=session.id, message=completion.text, citations=citations)

    async def _history_messages(self, session_id: str, exclude_id: Optional[str]) -> list[dict]:
        try:
            history = await self._chats.list_messages(session_id)
        except Exception as e:
            logger.warning("Loading history for session %s failed: %s", session_id, e)
            return []
        return [
            {"role": _ROLE_MAP[m.role], "content": m.content}
            for m in history
            if m.id != exclude_id
        ]

    async def history(self, owner_id: str, session_id: str) -> ChatHistory:
        await self._quota.require_entitlement(owner_id)
        session = await self._owned_session(owner_id, session_id)
        messages = await self._chats.list_messages(session_id)
        return ChatHistory(session=session, messages=messages)
