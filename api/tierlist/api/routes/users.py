from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import PlainTextResponse

from tierlist.api.deps import client_ip, get_edit_coordinator, require_owner
from tierlist.api.routes.tiers import ERROR_RESPONSES
from tierlist.core.config import Settings, get_settings
from tierlist.core.security import get_human_principal
from tierlist.schemas.users import UserEditIn, UserOut
from tierlist.services.repository import get_repository

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED, response_class=PlainTextResponse, responses=ERROR_RESPONSES)
async def create_user(
    payload: UserEditIn,
    request: Request,
    principal=Depends(get_human_principal),
    coordinator=Depends(get_edit_coordinator),
) -> str:
    return await coordinator.create_user(
        user_id=principal.subject,
        edit=payload.to_edit(),
        ip_address=client_ip(request),
    )


@router.get("/{user_id}", response_model=UserOut, responses=ERROR_RESPONSES)
async def get_user(
    user_id: str,
    repository=Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> UserOut:
    user = await repository.get_user(user_id)
    return UserOut.from_snapshot(user, public_base_url=settings.public_base_url)


@router.patch("/{user_id}", response_class=PlainTextResponse, responses=ERROR_RESPONSES)
async def edit_user(
    user_id: str,
    payload: UserEditIn,
    request: Request,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    coordinator=Depends(get_edit_coordinator),
) -> str:
    require_owner(principal, user_id)
    snapshot = await repository.get_user(user_id)
    return await coordinator.edit_user(snapshot=snapshot, edit=payload.to_edit(), ip_address=client_ip(request))


@router.delete("/{user_id}", response_class=PlainTextResponse, responses=ERROR_RESPONSES)
async def delete_user(
    user_id: str,
    request: Request,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    coordinator=Depends(get_edit_coordinator),
) -> str:
    require_owner(principal, user_id)
    snapshot = await repository.get_user(user_id)
    await coordinator.delete_user(snapshot=snapshot, ip_address=client_ip(request))
    return user_id
