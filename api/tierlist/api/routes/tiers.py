from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import PlainTextResponse

from tierlist.api.deps import client_ip, get_edit_coordinator, require_owner
from tierlist.core.config import Settings, get_settings
from tierlist.core.limits import EditLimits, get_edit_limits
from tierlist.core.security import get_human_principal
from tierlist.schemas.common import ErrorOut
from tierlist.schemas.tiers import TierEditIn, TierOut
from tierlist.services.repository import get_repository

router = APIRouter()

ERROR_RESPONSES = {
    400: {"model": ErrorOut},
    403: {"model": ErrorOut},
    404: {"model": ErrorOut},
    409: {"model": ErrorOut},
    503: {"model": ErrorOut},
}


@router.post("", status_code=status.HTTP_201_CREATED, response_class=PlainTextResponse, responses=ERROR_RESPONSES)
async def create_tier(
    payload: TierEditIn,
    request: Request,
    principal=Depends(get_human_principal),
    coordinator=Depends(get_edit_coordinator),
) -> str:
    return await coordinator.create_tier(
        user_id=principal.subject,
        edit=payload.to_edit(),
        ip_address=client_ip(request),
    )


@router.get("/{tier_id}", response_model=TierOut, responses=ERROR_RESPONSES)
async def get_tier(
    tier_id: str,
    repository=Depends(get_repository),
    settings: Settings = Depends(get_settings),
    limits: EditLimits = Depends(get_edit_limits),
) -> TierOut:
    tier = await repository.get_tier(tier_id)
    reviews = await repository.list_tier_reviews(tier_id, limit=limits.review.reviews_per_tier_max)
    return TierOut.from_snapshot(tier, reviews, public_base_url=settings.public_base_url)


@router.patch("/{tier_id}", response_class=PlainTextResponse, responses=ERROR_RESPONSES)
async def edit_tier(
    tier_id: str,
    payload: TierEditIn,
    request: Request,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    coordinator=Depends(get_edit_coordinator),
) -> str:
    snapshot = await repository.get_tier(tier_id)
    require_owner(principal, snapshot.user_id)
    return await coordinator.edit_tier(snapshot=snapshot, edit=payload.to_edit(), ip_address=client_ip(request))


@router.delete("/{tier_id}", response_class=PlainTextResponse, responses=ERROR_RESPONSES)
async def delete_tier(
    tier_id: str,
    request: Request,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    coordinator=Depends(get_edit_coordinator),
) -> str:
    snapshot = await repository.get_tier(tier_id)
    require_owner(principal, snapshot.user_id)
    await coordinator.delete_tier(snapshot=snapshot, ip_address=client_ip(request))
    return tier_id
