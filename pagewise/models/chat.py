"""
Chat sessions and messages. Messages are append-only and read back in
creation order.
"""

from sqlalchemy import ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import OwnedBase, RecordBase


class ChatSession(OwnedBase):
    __tablename__ = "chat_sessions"

    document_id: Mapped[str] = mapped_column(
        String, ForeignKey("documents.id", ondelete="SET NULL"), nullable=True, index=True
    )
    title: Mapped[str] = mapped_column(String, nullable=False, default="New Chat")

    messages: Mapped[list["ChatMessage"]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="ChatMessage.created_at",
    )


class ChatMessage(RecordBase):
    __tablename__ = "chat_messages"

    session_id: Mapped[str] = mapped_column(
        String, ForeignKey("chat_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    role: Mapped[str] = mapped_column(String, nullable=False)  # user, model
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    citations: Mapped[list] = mapped_column(JSON, nullable=True, default=list)
    token_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    session: Mapped["ChatSession"] = relationship(back_populates="messages")
