"""Shared fixtures: a temp-file SQLite database, repositories and in-memory fakes."""

import zlib
from typing import Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from pagewise.core.database import init_db
from pagewise.core.errors import NotFound
from pagewise.core.flags import get_flags
from pagewise.core.storage import StorageBackend
from pagewise.domain import UserPreferences
from pagewise.repositories.chat import ChatRepository
from pagewise.repositories.documents import DocumentRepository
from pagewise.repositories.preferences import PreferencesRepository
from pagewise.repositories.retrieval import RetrievalRepository
from pagewise.repositories.usage import UsageRepository
from pagewise.services.llm import Completion
from pagewise.services.quota import QuotaGate
from pagewise.services.tasks import TaskRunner

EMBED_DIMS = 32


@pytest.fixture(autouse=True)
def _local_flags(monkeypatch):
    """No Redis, no S3, dev auth."""
    monkeypatch.setenv("FF_USE_REDIS", "false")
    monkeypatch.setenv("FF_USE_S3", "false")
    monkeypatch.setenv("FF_USE_AUTH", "false")
    get_flags.cache_clear()
    yield
    get_flags.cache_clear()


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pagewise.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def documents(session_factory) -> DocumentRepository:
    return DocumentRepository(session_factory)


@pytest.fixture
def retrieval(session_factory) -> RetrievalRepository:
    return RetrievalRepository(session_factory)


@pytest.fixture
def chats(session_factory) -> ChatRepository:
    return ChatRepository(session_factory)


@pytest.fixture
def usage(session_factory) -> UsageRepository:
    return UsageRepository(session_factory)


@pytest.fixture
def preferences(session_factory) -> PreferencesRepository:
    return PreferencesRepository(session_factory)


@pytest.fixture
def quota(preferences, usage) -> QuotaGate:
    return QuotaGate(preferences, usage)


@pytest.fixture
def tasks() -> TaskRunner:
    return TaskRunner()


@pytest.fixture
async def pro_user(preferences) -> str:
    await preferences.save(UserPreferences(owner_id="reader-pro", subscription_plan="pro_monthly"))
    return "reader-pro"


# ── Fakes ────────────────────────────────────────────────────────────


class MemoryStorage(StorageBackend):
    def __init__(self, fail: bool = False):
        self.objects: dict[str, bytes] = {}
        self.fail = fail

    async def upload(self, data: bytes, path: str) -> str:
        if self.fail:
            raise RuntimeError("storage offline")
        self.objects[path] = data
        return path

    async def read(self, path: str) -> bytes:
        if path not in self.objects:
            raise NotFound(path)
        return self.objects[path]

    async def delete(self, path: str) -> None:
        if self.fail:
            raise RuntimeError("storage offline")
        self.objects.pop(path, None)


class FakeEmbedder:
    """Bag-of-words hashed into a small vector. Texts containing a poison word fail."""

    def __init__(self, poison: Optional[str] = None):
        self.poison = poison
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.poison and self.poison in text:
            raise RuntimeError("embedding backend error")
        words = text.lower().split()
        if not words:
            return []
        vector = [0.0] * EMBED_DIMS
        for word in words:
            vector[zlib.crc32(word.strip(".,!?").encode()) % EMBED_DIMS] += 1.0
        return vector


class FakeLLM:
    def __init__(self, text: str = "It is about whales.", prompt_tokens: int = 100, completion_tokens: int = 20):
        self.text = text
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.calls: list[list[dict]] = []

    async def complete(self, messages, temperature=None, max_tokens=None) -> Completion:
        self.calls.append([dict(m) for m in messages])
        return Completion(
            text=self.text,
            prompt_tokens=self.prompt_tokens,
            completion_tokens=self.completion_tokens,
            total_tokens=self.prompt_tokens + self.completion_tokens,
            model="fake",
        )


class FakePdf:
    """PdfSource over canned page texts; an Exception entry makes that page throw."""

    def __init__(self, pages, title: str = "", author: str = "", encrypted: bool = False):
        self.pages = pages
        self.page_count = len(pages)
        self.title = title
        self.author = author
        self.encrypted = encrypted
        self.closed = False

    def page_text(self, index: int) -> str:
        value = self.pages[index]
        if isinstance(value, Exception):
            raise value
        return value

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()
