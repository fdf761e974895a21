"""
Typed domain objects. Services speak these; only repositories touch ORM rows
and the JSON columns behind them.
"""

import hashlib
import mimetypes
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional


class ProcessingStatus(str, Enum):
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


# processing → ready | failed; nothing leaves a terminal state
ALLOWED_TRANSITIONS = {
    ProcessingStatus.PROCESSING: {ProcessingStatus.READY, ProcessingStatus.FAILED},
    ProcessingStatus.READY: set(),
    ProcessingStatus.FAILED: set(),
}


def can_transition(current: ProcessingStatus, target: ProcessingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class BlockKind(str, Enum):
    PARAGRAPH = "paragraph"
    HEADING = "heading"


class DocumentFormat(str, Enum):
    PDF = "pdf"
    EPUB = "epub"
    TXT = "txt"
    MD = "md"

    @property
    def paginated(self) -> bool:
        """True when the source format carries its own page boundaries."""
        return self is DocumentFormat.PDF


class ChatRole(str, Enum):
    USER = "user"
    MODEL = "model"


# ── Uploads & extraction ─────────────────────────────────────────────


@dataclass(frozen=True)
class RawUpload:
    data: bytes
    filename: str
    mime_type: str
    checksum: str
    size: int
    format: DocumentFormat

    @classmethod
    def from_bytes(cls, data: bytes, filename: str, fmt: DocumentFormat) -> "RawUpload":
        mime = mimetypes.guess_type(filename)[0]
        if not mime:
            mime = {
                DocumentFormat.PDF: "application/pdf",
                DocumentFormat.EPUB: "application/epub+zip",
                DocumentFormat.MD: "text/markdown",
            }.get(fmt, "text/plain")
        return cls(
            data=data,
            filename=filename,
            mime_type=mime,
            checksum=hashlib.sha256(data).hexdigest(),
            size=len(data),
            format=fmt,
        )


@dataclass(frozen=True)
class TextBlock:
    content: str
    kind: BlockKind = BlockKind.PARAGRAPH
    heading_level: int = 0
    page_number: int = 1
    position: int = 0

    def to_dict(self) -> dict:
        return {
            "type": self.kind.value,
            "content": self.content,
            "level": self.heading_level,
            "page_number": self.page_number,
            "position": self.position,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "TextBlock":
        return cls(
            content=raw.get("content") or "",
            kind=BlockKind(raw.get("type") or BlockKind.PARAGRAPH.value),
            heading_level=int(raw.get("level") or 0),
            page_number=int(raw.get("page_number") or 1),
            position=int(raw.get("position") or 0),
        )


@dataclass
class ExtractionMetadata:
    title: str = ""
    author: str = ""
    page_count: int = 0
    word_count: int = 0
    has_password: bool = False


@dataclass
class ExtractionResult:
    blocks: list[TextBlock]
    metadata: ExtractionMetadata


# ── Documents ────────────────────────────────────────────────────────


@dataclass
class DocumentMetadata:
    original_title: str = ""
    original_author: str = ""
    page_count: int = 0
    word_count: int = 0
    file_size: int = 0
    format: str = ""
    source: str = "upload"
    has_password: bool = False

    def to_dict(self) -> dict:
        return {
            "original_title": self.original_title,
            "original_author": self.original_author,
            "page_count": self.page_count,
            "word_count": self.word_count,
            "file_size": self.file_size,
            "format": self.format,
            "source": self.source,
            "has_password": self.has_password,
        }

    @classmethod
    def from_dict(cls, raw: Optional[dict]) -> "DocumentMetadata":
        raw = raw or {}
        return cls(
            original_title=raw.get("original_title") or "",
            original_author=raw.get("original_author") or "",
            page_count=int(raw.get("page_count") or 0),
            word_count=int(raw.get("word_count") or 0),
            file_size=int(raw.get("file_size") or 0),
            format=raw.get("format") or "",
            source=raw.get("source") or "upload",
            has_password=bool(raw.get("has_password")),
        )


@dataclass
class Representation:
    """Checksum/size/version of one content representation."""

    checksum: Optional[str] = None
    size_bytes: Optional[int] = None
    version: int = 1


@dataclass
class Document:
    id: str
    owner_id: str
    title: str
    processing_status: ProcessingStatus
    metadata: DocumentMetadata = field(default_factory=DocumentMetadata)
    author: Optional[str] = None
    description: Optional[str] = None
    blocks: list[TextBlock] = field(default_factory=list)
    rich: Representation = field(default_factory=Representation)
    pages: list[str] = field(default_factory=list)
    optimized: Representation = field(default_factory=Representation)
    original_storage_path: Optional[str] = None
    original_filename: Optional[str] = None
    original_mime_type: Optional[str] = None
    original_size_bytes: Optional[int] = None
    original_checksum: Optional[str] = None
    processing_error: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class OptimizedDocument:
    document_id: str
    owner_id: str
    processing_status: ProcessingStatus
    optimized_version: int = 1
    optimized_checksum: Optional[str] = None
    optimized_size_bytes: Optional[int] = None
    processed_at: Optional[datetime] = None
    processing_error: Optional[str] = None
    pages: list[str] = field(default_factory=list)

    @property
    def has_page_text(self) -> bool:
        return any(p.strip() for p in self.pages)


# ── Retrieval ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class DocumentPage:
    id: str
    document_id: str
    page_number: int
    text: str


@dataclass(frozen=True)
class PageEmbedding:
    document_id: str
    page_id: str
    page_number: int
    vector: list[float]
    chunk_index: int = 0


@dataclass(frozen=True)
class SearchHit:
    page_id: str
    page_number: int
    text: str
    score: float


# ── Chat ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ChatSession:
    id: str
    owner_id: str
    title: str
    document_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class ChatMessage:
    id: str
    session_id: str
    role: ChatRole
    content: str
    citations: tuple[int, ...] = ()
    token_count: int = 0
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class UsageLedger:
    id: str
    owner_id: str
    period_start: date
    tokens_in: int = 0
    tokens_out: int = 0
    request_count: int = 0

    @property
    def tokens_used(self) -> int:
        return self.tokens_in + self.tokens_out


@dataclass(frozen=True)
class UserPreferences:
    owner_id: str
    subscription_plan: str = "free"
    storage_limit_bytes: int = 0
    account_disabled: bool = False
