from typing import Any

import httpx
from fastapi import Depends, Header, HTTPException, status

from tierlist.core.auth import Principal
from tierlist.core.config import Settings, get_settings

AUTH_ERROR_CODE = "gen0-001-00"


def _auth_error(status_code: int, message: str) -> HTTPException:
    return HTTPException(status_code=status_code, detail={"code": AUTH_ERROR_CODE, "message": message})


async def get_human_principal(
    settings: Settings = Depends(get_settings),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Principal:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise _auth_error(status.HTTP_401_UNAUTHORIZED, "bearer token is required")

    token = authorization.split(" ", maxsplit=1)[1].strip()
    if not token:
        raise _auth_error(status.HTTP_401_UNAUTHORIZED, "empty bearer token")

    if not settings.auth_url or not settings.auth_anon_key:
        raise _auth_error(status.HTTP_503_SERVICE_UNAVAILABLE, "identity provider is not configured")

    user = await _fetch_identity_user(
        auth_url=settings.auth_url,
        auth_anon_key=settings.auth_anon_key,
        token=token,
        timeout_seconds=settings.auth_timeout_seconds,
    )
    user_id = user.get("id")
    if not isinstance(user_id, str) or not user_id:
        raise _auth_error(status.HTTP_401_UNAUTHORIZED, "invalid bearer token")

    return Principal(subject=user_id)


async def _fetch_identity_user(
    *,
    auth_url: str,
    auth_anon_key: str,
    token: str,
    timeout_seconds: float,
) -> dict[str, Any]:
    headers = {
        "Authorization": f"Bearer {token}",
        "apikey": auth_anon_key,
    }
    url = f"{auth_url.rstrip('/')}/auth/v1/user"

    try:
        async with httpx.AsyncClient(timeout=timeout_seconds) as client:
            response = await client.get(url, headers=headers)
    except httpx.HTTPError as exc:  # pragma: no cover - network dependent
        raise _auth_error(status.HTTP_503_SERVICE_UNAVAILABLE, "identity verification unavailable") from exc

    if response.status_code in {401, 403}:
        raise _auth_error(status.HTTP_401_UNAUTHORIZED, "invalid bearer token")
    if response.status_code != 200:
        raise _auth_error(status.HTTP_503_SERVICE_UNAVAILABLE, "identity verification failed")

    return response.json()
