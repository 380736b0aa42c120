from fastapi import Depends, HTTPException, Request, status

from tierlist.api.errors import USER_NOT_EQUAL_CODE
from tierlist.core.auth import Principal
from tierlist.core.limits import EditLimits, get_edit_limits
from tierlist.services.coordinator import EditCoordinator
from tierlist.services.repository import get_repository
from tierlist.services.storage import AssetStorage, get_asset_storage


def get_edit_coordinator(
    repository=Depends(get_repository),
    storage: AssetStorage = Depends(get_asset_storage),
    limits: EditLimits = Depends(get_edit_limits),
) -> EditCoordinator:
    return EditCoordinator(repository=repository, storage=storage, limits=limits)


def require_owner(principal: Principal, owner_id: str) -> None:
    try:
        principal.require_owner(owner_id)
    except PermissionError as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": USER_NOT_EQUAL_CODE, "message": str(exc)},
        ) from exc


def client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None
