"""
Chat sessions and their append-only message log.
"""

from typing import Optional, Sequence

from sqlalchemy import select, update

from ..domain import ChatMessage, ChatRole, ChatSession
from ..models import ChatMessage as MessageRow, ChatSession as SessionRow
from ..models.base import utcnow
from .base import Repository, aware


def _session(row: SessionRow) -> ChatSession:
    return ChatSession(
        id=row.id,
        owner_id=row.owner_id,
        title=row.title,
        document_id=row.document_id,
        created_at=aware(row.created_at),
        updated_at=aware(row.updated_at),
    )


def _message(row: MessageRow) -> ChatMessage:
    return ChatMessage(
        id=row.id,
        session_id=row.session_id,
        role=ChatRole(row.role),
        content=row.content,
        citations=tuple(int(c) for c in (row.citations or [])),
        token_count=row.token_count or 0,
        created_at=aware(row.created_at),
    )


class ChatRepository(Repository):
    async def create_session(
        self, owner_id: str, title: str, document_id: Optional[str] = None
    ) -> ChatSession:
        row = SessionRow(owner_id=owner_id, title=title, document_id=document_id)
        async with self.session() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return _session(row)

    async def get_session(self, session_id: str) -> Optional[ChatSession]:
        async with self.session() as session:
            row = await session.get(SessionRow, session_id)
            return _session(row) if row else None

    async def add_message(
        self,
        session_id: str,
        role: ChatRole,
        content: str,
        citations: Sequence[int] = (),
        token_count: int = 0,
    ) -> ChatMessage:
        row = MessageRow(
            session_id=session_id,
            role=role.value,
            content=content,
            citations=list(citations),
            token_count=token_count,
        )
        async with self.session() as session:
            session.add(row)
            await session.execute(
                update(SessionRow).where(SessionRow.id == session_id).values(updated_at=utcnow())
            )
            await session.commit()
            await session.refresh(row)
            return _message(row)

    async def list_messages(self, session_id: str) -> list[ChatMessage]:
        """Messages in creation order."""
        async with self.session() as session:
            result = await session.execute(
                select(MessageRow)
                .where(MessageRow.session_id == session_id)
                .order_by(MessageRow.created_at, MessageRow.id)
            )
            return [_message(r) for r in result.scalars().all()]
