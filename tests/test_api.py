"""HTTP surface: routing, error mapping, ETag handling and auth."""

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt

from pagewise.core.config import get_settings
from pagewise.core.dependencies import get_account_status, get_chat, get_lifecycle
from pagewise.core.flags import get_flags
from pagewise.domain import UserPreferences
from pagewise.factory import create_app
from pagewise.services.account_status import AccountStatusService
from pagewise.services.chat import ChatOrchestrator
from pagewise.services.lifecycle import DocumentLifecycleManager

SECRET = "test-secret"


@pytest.fixture
def app(documents, storage, preferences, tasks, chats, retrieval, embedder, llm, quota):
    app = create_app()
    app.dependency_overrides[get_lifecycle] = lambda: DocumentLifecycleManager(
        documents=documents, storage=storage, preferences=preferences, tasks=tasks
    )
    app.dependency_overrides[get_chat] = lambda: ChatOrchestrator(
        chats, documents, retrieval, embedder, llm, quota
    )
    app.dependency_overrides[get_account_status] = lambda: AccountStatusService(preferences)
    return app


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


async def _upload(client, body: bytes = b"Hello reader.", name: str = "note.txt"):
    return await client.post(
        "/v1/documents/upload", files={"file": (name, body, "text/plain")}
    )


class TestDocuments:
    async def test_upload_then_read(self, client):
        resp = await _upload(client)
        assert resp.status_code == 201
        doc = resp.json()
        assert doc["processing_status"] == "ready"
        assert doc["title"] == "note"

        full = await client.get(f"/v1/documents/{doc['id']}")
        assert full.status_code == 200
        assert full.json()["content"][0]["content"] == "Hello reader."

    async def test_optimized_etag_and_304(self, client):
        doc = (await _upload(client)).json()

        first = await client.get(f"/v1/documents/{doc['id']}/optimized")
        assert first.status_code == 200
        etag = first.headers["etag"]
        assert etag == f'"{doc["optimized_checksum"]}"'
        assert first.json()["pages"] == ["Hello reader."]

        again = await client.get(
            f"/v1/documents/{doc['id']}/optimized", headers={"If-None-Match": etag}
        )
        assert again.status_code == 304
        assert again.headers["etag"] == etag
        assert again.content == b""

    async def test_optimized_without_pages(self, client):
        doc = (await _upload(client)).json()
        resp = await client.get(f"/v1/documents/{doc['id']}/optimized", params={"include_pages": "false"})
        assert resp.status_code == 200
        assert resp.json()["pages"] == []

    async def test_errors_use_stable_codes(self, client):
        missing = await client.get("/v1/documents/nope")
        assert missing.status_code == 404
        assert missing.json()["code"] == "not_found"

        empty = await _upload(client, body=b"")
        assert empty.status_code == 400
        assert empty.json()["code"] == "validation"

    async def test_list_and_search(self, client):
        whales = (await _upload(client, b"Call me Ishmael.", "moby-dick.txt")).json()
        (await _upload(client, b"It is a truth.", "pride-and-prejudice.txt")).json()

        listed = await client.get("/v1/documents")
        assert listed.status_code == 200
        assert {d["title"] for d in listed.json()} == {"moby-dick", "pride-and-prejudice"}
        assert all(d["content"] == [] for d in listed.json())

        found = await client.get("/v1/documents/search", params={"q": "MOBY"})
        assert found.status_code == 200
        assert [d["id"] for d in found.json()] == [whales["id"]]

        none = await client.get("/v1/documents/search", params={"q": "war and peace"})
        assert none.status_code == 200
        assert none.json() == []

        blank = await client.get("/v1/documents/search", params={"q": "  "})
        assert blank.status_code == 400

    async def test_delete_removes_document_and_original(self, client, storage):
        doc = (await _upload(client)).json()
        assert f"dev-user/{doc['id']}.txt" in storage.objects

        resp = await client.delete(f"/v1/documents/{doc['id']}")
        assert resp.status_code == 200
        assert resp.json() == {"message": "Document deleted successfully"}

        assert (await client.get(f"/v1/documents/{doc['id']}")).status_code == 404
        assert (await client.get("/v1/documents")).json() == []
        assert storage.objects == {}

        again = await client.delete(f"/v1/documents/{doc['id']}")
        assert again.status_code == 404


class TestChat:
    async def test_free_plan_gets_402(self, client, llm):
        resp = await client.post("/v1/ai/chat", json={"prompt": "hi", "document_id": "d1"})
        assert resp.status_code == 402
        assert resp.json() == {
            "error": "your plan does not include the AI assistant",
            "code": "upgrade_required",
        }
        assert llm.calls == []

    async def test_chat_and_history(self, client, preferences):
        await preferences.save(UserPreferences(owner_id="dev-user", subscription_plan="founder_lifetime"))
        doc = (await _upload(client)).json()

        reply = await client.post(
            "/v1/ai/chat", json={"prompt": "What is it?", "document_id": doc["id"]}
        )
        assert reply.status_code == 200
        body = reply.json()
        assert body["message"] == "It is about whales."

        history = await client.get(f"/v1/ai/chat/{body['session_id']}")
        assert history.status_code == 200
        roles = [m["role"] for m in history.json()["messages"]]
        assert roles == ["user", "model"]

    async def test_blank_prompt_is_400(self, client, preferences):
        await preferences.save(UserPreferences(owner_id="dev-user", subscription_plan="pro_monthly"))
        resp = await client.post("/v1/ai/chat", json={"prompt": "  ", "document_id": "d1"})
        assert resp.status_code == 400


class TestAuth:
    @pytest.fixture(autouse=True)
    def _jwt(self, monkeypatch):
        monkeypatch.setenv("FF_USE_AUTH", "true")
        monkeypatch.setenv("JWT_SECRET", SECRET)
        get_flags.cache_clear()
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()

    @staticmethod
    def _token(sub: str) -> str:
        return jwt.encode({"sub": sub, "aud": "authenticated"}, SECRET, algorithm="HS256")

    async def test_missing_token_is_401(self, client):
        resp = await client.get("/v1/documents/anything")
        assert resp.status_code == 401

    async def test_bad_token_is_401(self, client):
        resp = await client.get(
            "/v1/documents/anything", headers={"Authorization": "Bearer not-a-jwt"}
        )
        assert resp.status_code == 401

    async def test_valid_token_scopes_ownership(self, client):
        headers = {"Authorization": f"Bearer {self._token('alice')}"}
        doc = (
            await client.post(
                "/v1/documents/upload",
                files={"file": ("a.txt", b"Alice's notes.", "text/plain")},
                headers=headers,
            )
        ).json()

        own = await client.get(f"/v1/documents/{doc['id']}", headers=headers)
        assert own.status_code == 200

        other = await client.get(
            f"/v1/documents/{doc['id']}",
            headers={"Authorization": f"Bearer {self._token('mallory')}"},
        )
        assert other.status_code == 403
        assert other.json()["code"] == "access_denied"

        mallory = {"Authorization": f"Bearer {self._token('mallory')}"}
        assert (await client.get("/v1/documents", headers=mallory)).json() == []
        denied = await client.delete(f"/v1/documents/{doc['id']}", headers=mallory)
        assert denied.status_code == 403
        assert (await client.get(f"/v1/documents/{doc['id']}", headers=headers)).status_code == 200

    async def test_chat_on_foreign_document_is_403(self, client, preferences):
        await preferences.save(UserPreferences(owner_id="mallory", subscription_plan="pro_monthly"))
        alice = {"Authorization": f"Bearer {self._token('alice')}"}
        doc = (
            await client.post(
                "/v1/documents/upload",
                files={"file": ("a.txt", b"Alice's private notes.", "text/plain")},
                headers=alice,
            )
        ).json()

        resp = await client.post(
            "/v1/ai/chat",
            json={"prompt": "What do the notes say?", "document_id": doc["id"], "current_page": 1},
            headers={"Authorization": f"Bearer {self._token('mallory')}"},
        )
        assert resp.status_code == 403
        assert "Alice" not in resp.text

    async def test_disabled_account_is_403(self, client, preferences):
        await preferences.save(UserPreferences(owner_id="bob", account_disabled=True))
        resp = await client.get(
            "/v1/documents/anything", headers={"Authorization": f"Bearer {self._token('bob')}"}
        )
        assert resp.status_code == 403
        assert resp.json()["error"] == "account is disabled"
