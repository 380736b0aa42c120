from __future__ import annotations

import os
from typing import Any

import pytest
from fastapi.testclient import TestClient

import tierlist.core.security as security
from tierlist.core.config import get_settings
from tierlist.main import app
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


def _mock_identity(monkeypatch: pytest.MonkeyPatch, user_id: str) -> None:
    async def _fake_fetch(**_: Any) -> dict[str, Any]:
        return {"id": user_id}

    monkeypatch.setattr(security, "_fetch_identity_user", _fake_fetch)


def test_profile_lifecycle(
    api_client: TestClient,
    fake_repository,
    storage: AssetStorage,
    monkeypatch: pytest.MonkeyPatch,
    image_factory,
) -> None:
    _mock_identity(monkeypatch, "user-1")

    created = api_client.post(
        "/users",
        json={
            "name": "Taro",
            "profile": "ramen",
            "accept": True,
            "iconIsChanged": True,
            "iconBase64": image_factory(64, 64),
        },
        headers=AUTH,
    )

    assert created.status_code == 201
    assert created.text == "user-1"
    body = api_client.get("/users/user-1").json()
    assert body["name"] == "Taro"
    assert body["iconUrl"].endswith(fake_repository.users["user-1"].icon_url)
    assert "/user-1/user/user-1/icon_" in body["iconUrl"]

    edited = api_client.patch("/users/user-1", json={"name": "Taro", "profile": "udon"}, headers=AUTH)
    assert edited.status_code == 200
    assert fake_repository.users["user-1"].profile == "udon"

    again = api_client.post("/users", json={"name": "Taro", "accept": True}, headers=AUTH)
    assert again.status_code == 409
    assert again.json()["code"] == "gen0-005-00"

    deleted = api_client.delete("/users/user-1", headers=AUTH)
    assert deleted.status_code == 200
    assert fake_repository.users == {}
    assert not (storage.root / "user-1").exists()


def test_profile_without_terms_is_rejected(api_client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    _mock_identity(monkeypatch, "user-1")

    response = api_client.post("/users", json={"name": "Taro"}, headers=AUTH)

    assert response.status_code == 400
    assert response.json()["code"] == "vusr-001"


def test_only_the_user_may_edit_or_delete_their_profile(
    api_client: TestClient,
    fake_repository,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    fake_repository.seed_user(user_id="user-1")
    _mock_identity(monkeypatch, "user-2")

    edited = api_client.patch("/users/user-1", json={"name": "Mallory"}, headers=AUTH)
    deleted = api_client.delete("/users/user-1", headers=AUTH)

    assert edited.status_code == 403
    assert deleted.status_code == 403
    assert edited.json()["code"] == "gen0-003-00"
    assert fake_repository.users["user-1"].name == "User user-1"


def test_missing_profile_is_not_found(api_client: TestClient) -> None:
    response = api_client.get("/users/nobody")

    assert response.status_code == 404
    assert response.json()["code"] == "gen0-004-00"
