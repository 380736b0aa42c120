from __future__ import annotations

import os
from typing import Any

import pytest
from fastapi.testclient import TestClient

import tierlist.core.security as security
from tierlist.core.config import get_settings
from tierlist.main import app
from tierlist.services.content import ReviewFactor
from tierlist.services.repository import get_repository
from tierlist.services.storage import AssetStorage, get_asset_storage

AUTH = {"Authorization": "Bearer token"}


@pytest.fixture
def api_client(fake_repository, storage: AssetStorage) -> TestClient:
    os.environ["TL_AUTH_URL"] = "https://auth.example.test"
    os.environ["TL_AUTH_ANON_KEY"] = "anon-key"
    get_settings.cache_clear()

    app.dependency_overrides[get_repository] = lambda: fake_repository
    app.dependency_overrides[get_asset_storage] = lambda: storage

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
    os.environ.pop("TL_AUTH_URL", None)
    os.environ.pop("TL_AUTH_ANON_KEY", None)
    get_settings.cache_clear()


def _mock_identity(monkeypatch: pytest.MonkeyPatch, user: dict[str, Any]) -> None:
    async def _fake_fetch(**_: Any) -> dict[str, Any]:
        return user

    monkeypatch.setattr(security, "_fetch_identity_user", _fake_fetch)


def _tier_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "name": "Ramen",
        "paragraphs": [{"type": "text", "body": "best bowls", "isChanged": False}],
        "pointType": "score",
        "evaluationParameters": [
            {"name": "Soup", "isPoint": True, "weight": 50, "oldIndex": -1},
            {"name": "Noodles", "isPoint": True, "weight": 30, "oldIndex": -1},
            {"name": "Notes", "isPoint": False, "weight": 0, "oldIndex": -1},
        ],
        "pullingUp": 0,
        "pullingDown": 0,
        "imageIsChanged": False,
        "imageBase64": "",
    }
    payload.update(overrides)
    return payload


def test_requests_without_token_are_rejected(api_client: TestClient) -> None:
    response = api_client.post("/tiers", json=_tier_payload())

    assert response.status_code == 401
    assert response.json()["code"] == "gen0-001-00"


def test_create_and_read_tier(api_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    _mock_identity(monkeypatch, {"id": "user-1"})

    created = api_client.post("/tiers", json=_tier_payload(), headers=AUTH)

    assert created.status_code == 201
    tier_id = created.text
    response = api_client.get(f"/tiers/{tier_id}")
    assert response.status_code == 200
    body = response.json()
    assert body["tierId"] == tier_id
    assert body["userId"] == "user-1"
    assert body["pointType"] == "score"
    assert [p["name"] for p in body["evaluationParameters"]] == ["Soup", "Noodles", "Notes"]
    assert all(p["id"] for p in body["evaluationParameters"])
    assert body["reviews"] == []


def test_invalid_tier_returns_validation_code(api_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    _mock_identity(monkeypatch, {"id": "user-1"})

    response = api_client.post("/tiers", json=_tier_payload(evaluationParameters=[]), headers=AUTH)

    assert response.status_code == 400
    assert response.json()["code"] == "vtir-009"


def test_unreadable_body_returns_common_code(api_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    _mock_identity(monkeypatch, {"id": "user-1"})

    response = api_client.post("/tiers", json=_tier_payload(evaluationParameters="nope"), headers=AUTH)

    assert response.status_code == 400
    assert response.json()["code"] == "gen0-002-00"


def test_missing_tier_is_not_found(api_client: TestClient) -> None:
    response = api_client.get("/tiers/nope")

    assert response.status_code == 404
    assert response.json()["code"] == "gen0-004-00"


def test_only_the_owner_may_edit(api_client: TestClient, fake_repository, monkeypatch: pytest.MonkeyPatch) -> None:
    fake_repository.seed_tier(user_id="user-1")
    _mock_identity(monkeypatch, {"id": "user-2"})

    response = api_client.patch("/tiers/tier-a", json=_tier_payload(), headers=AUTH)

    assert response.status_code == 403
    assert response.json()["code"] == "gen0-003-00"


def test_schema_edit_remaps_reviews(api_client: TestClient, fake_repository, monkeypatch: pytest.MonkeyPatch) -> None:
    fake_repository.seed_tier(user_id="user-1")
    fake_repository.seed_review(review_id="r1", factors=[("", 10), ("", 20), ("note", 0)])
    _mock_identity(monkeypatch, {"id": "user-1"})

    response = api_client.patch(
        "/tiers/tier-a",
        json=_tier_payload(
            evaluationParameters=[
                {"id": "pb", "name": "B", "isPoint": True, "weight": 20, "oldIndex": 1},
                {"name": "C", "isPoint": False, "weight": 0, "oldIndex": 2},
                {"name": "D", "isPoint": True, "weight": 5, "oldIndex": -1},
            ]
        ),
        headers=AUTH,
    )

    assert response.status_code == 200
    assert response.text == "tier-a"
    assert fake_repository.reviews["r1"].review_factors == [
        ReviewFactor(info="", point=20),
        ReviewFactor(info="note", point=0),
        ReviewFactor(info="", point=0),
    ]
    review = api_client.get("/reviews/r1").json()
    assert [f["point"] for f in review["reviewFactors"]] == [20, 0, 0]


def test_stale_edit_is_a_conflict(api_client: TestClient, fake_repository, monkeypatch: pytest.MonkeyPatch) -> None:
    fake_repository.seed_tier(user_id="user-1")
    _mock_identity(monkeypatch, {"id": "user-1"})

    async def _stale_get_tier(tier_id: str):
        snapshot = await real_get_tier(tier_id)
        fake_repository.tiers[tier_id].updated_at = fake_repository._tick()
        return snapshot

    real_get_tier = fake_repository.get_tier
    monkeypatch.setattr(fake_repository, "get_tier", _stale_get_tier)

    response = api_client.patch("/tiers/tier-a", json=_tier_payload(), headers=AUTH)

    assert response.status_code == 409
    assert response.json()["code"] == "gen0-005-00"


def test_create_review_requires_tier_owner(
    api_client: TestClient,
    fake_repository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    fake_repository.seed_tier(user_id="user-1")
    _mock_identity(monkeypatch, {"id": "user-2"})
    payload = {
        "tierId": "tier-a",
        "name": "Shop",
        "title": "",
        "reviewFactors": [{"point": 50}, {"point": 40}, {"info": "ok"}],
        "sections": [],
    }

    denied = api_client.post("/reviews", json=payload, headers=AUTH)
    assert denied.status_code == 403

    _mock_identity(monkeypatch, {"id": "user-1"})
    created = api_client.post("/reviews", json=payload, headers=AUTH)
    assert created.status_code == 201
    assert fake_repository.reviews[created.text].tier_id == "tier-a"

    deleted = api_client.delete(f"/reviews/{created.text}", headers=AUTH)
    assert deleted.status_code == 200
    assert fake_repository.reviews == {}


def test_review_without_tier_is_rejected(api_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    _mock_identity(monkeypatch, {"id": "user-1"})

    response = api_client.post("/reviews", json={"name": "Shop"}, headers=AUTH)

    assert response.status_code == 400
    assert response.json()["code"] == "prev-001"


def test_user_files_are_served_with_whitelisted_paths(api_client: TestClient, storage: AssetStorage) -> None:
    directory = storage.entity_dir("user-1", "tier", "tier-a")
    directory.mkdir(parents=True)
    (directory / "parag_ABC.jpg").write_bytes(b"\xff\xd8\xff\xd9")

    served = api_client.get("/userfile/user-1/tier/tier-a/parag_ABC.jpg")
    assert served.status_code == 200
    assert served.headers["content-type"] == "image/jpeg"
    assert served.content == b"\xff\xd8\xff\xd9"

    assert api_client.get("/userfile/user-1/tier/tier-a/missing.jpg").status_code == 404
    invalid = api_client.get("/userfile/user-1/secrets/tier-a/parag_ABC.jpg")
    assert invalid.status_code == 400
    assert invalid.json()["code"] == "gen0-008-00"
    assert api_client.get("/userfile/user-1/tier/tier-a/.hidden").status_code == 400
