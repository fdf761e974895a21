"""
All database models. Imported here so Base.metadata sees them for create_all().
"""

from .base import OwnedBase, RecordBase
from .user import UserPreferences
from .document import Document, DocumentPage, PageEmbedding
from .chat import ChatSession, ChatMessage
from .usage import UsageLedger

__all__ = [
    "OwnedBase", "RecordBase",
    "UserPreferences",
    "Document", "DocumentPage", "PageEmbedding",
    "ChatSession", "ChatMessage",
    "UsageLedger",
]
