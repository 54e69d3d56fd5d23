from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from memoria.db.connection import get_conn
from memoria.db.queries import insert_turn
from memoria.errors import EmbeddingError
from memoria.main import create_app
from memoria.memory.long_term import LongTermMemory
from memoria.memory.types import Turn, TurnRole


@pytest.fixture
def client() -> Iterator[TestClient]:
    with TestClient(create_app()) as test_client:
        yield test_client


def test_healthz_ok(client: TestClient) -> None:
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_readyz_reports_applied_migrations(client: TestClient) -> None:
    response = client.get("/readyz")
    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is True
    assert data["migrations"] >= 1


def test_add_get_and_delete_memory(client: TestClient) -> None:
    created = client.post(
        "/agents/main/memory",
        json={"content": "User prefers tea", "kind": "preference", "importance": 0.8},
    )
    assert created.status_code == 201
    body = created.json()
    assert body["deduplicated"] is False
    entry_id = body["id"]

    fetched = client.get(f"/agents/main/memory/{entry_id}")
    assert fetched.status_code == 200
    assert fetched.json()["kind"] == "preference"
    assert fetched.json()["importance"] == 0.8

    assert client.delete(f"/agents/main/memory/{entry_id}").json() == {"deleted": entry_id}
    assert client.get(f"/agents/main/memory/{entry_id}").status_code == 404
    assert client.delete(f"/agents/main/memory/{entry_id}").status_code == 404


def test_add_duplicate_returns_existing_id(client: TestClient) -> None:
    first = client.post("/agents/main/memory", json={"content": "User prefers tea"}).json()
    second = client.post("/agents/main/memory", json={"content": "User prefers tea"}).json()

    assert second["deduplicated"] is True
    assert second["id"] == first["id"]
    assert second["similarity"] == pytest.approx(1.0)


def test_add_rejects_invalid_body(client: TestClient) -> None:
    assert client.post("/agents/main/memory", json={"content": ""}).status_code == 422
    assert client.post("/agents/main/memory", json={"content": "   "}).status_code == 422
    assert (
        client.post(
            "/agents/main/memory", json={"content": "x", "importance": 1.5}
        ).status_code
        == 422
    )


def test_search_returns_scored_items(client: TestClient) -> None:
    client.post("/agents/main/memory", json={"content": "User prefers tea"})
    client.post("/agents/main/memory", json={"content": "User lives in Berlin"})

    response = client.get("/agents/main/memory", params={"q": "User prefers tea", "limit": 1})
    assert response.status_code == 200
    items = response.json()["items"]
    assert len(items) == 1
    assert items[0]["content"] == "User prefers tea"
    assert items[0]["similarity"] == pytest.approx(1.0)
    assert items[0]["access_count"] == 1

    assert client.get("/agents/main/memory", params={"q": "  "}).json() == {"items": []}


def test_memory_is_scoped_per_agent(client: TestClient) -> None:
    client.post("/agents/alpha/memory", json={"content": "Alpha secret"})

    response = client.get("/agents/beta/memory", params={"q": "Alpha secret"})
    assert response.json() == {"items": []}


def test_list_by_kind(client: TestClient) -> None:
    client.post("/agents/main/memory", json={"content": "Knows Rust", "kind": "skill"})
    client.post("/agents/main/memory", json={"content": "Likes tea", "kind": "preference"})

    response = client.get("/agents/main/memory/kind/skill")
    assert [item["content"] for item in response.json()["items"]] == ["Knows Rust"]
    assert client.get("/agents/main/memory/kind/unknown").status_code == 422


def test_stats_counts_unsummarized_turns(client: TestClient) -> None:
    with get_conn() as conn:
        insert_turn(conn, "main", Turn(id="trn_1", role=TurnRole.USER, content="a" * 40))
        insert_turn(conn, "main", Turn(id="trn_2", role=TurnRole.AGENT, content="b" * 40))
    client.post("/agents/main/memory", json={"content": "User prefers tea"})

    stats = client.get("/agents/main/memory/stats").json()
    assert stats["unsummarized_turns"] == 2
    assert stats["unsummarized_tokens"] == 32
    assert stats["long_term_entries"] == 1
    assert stats["summaries"] == 0
    assert stats["token_budget"] == 50000


def test_retryable_memory_error_maps_to_503(
    client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    def unavailable(self, query, k=5, min_similarity=None):
        del self, query, k, min_similarity
        raise EmbeddingError("embedding backend unavailable")

    monkeypatch.setattr(LongTermMemory, "search_text", unavailable)

    response = client.get("/agents/main/memory", params={"q": "tea"})
    assert response.status_code == 503
    assert response.json() == {
        "error": "EmbeddingError",
        "detail": "embedding backend unavailable",
        "retryable": True,
    }
