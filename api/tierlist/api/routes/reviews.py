from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import PlainTextResponse

from tierlist.api.deps import client_ip, get_edit_coordinator, require_owner
from tierlist.api.routes.tiers import ERROR_RESPONSES
from tierlist.core.config import Settings, get_settings
from tierlist.core.security import get_human_principal
from tierlist.schemas.reviews import ReviewEditIn, ReviewOut
from tierlist.services.errors import ValidationError
from tierlist.services.repository import get_repository

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED, response_class=PlainTextResponse, responses=ERROR_RESPONSES)
async def create_review(
    payload: ReviewEditIn,
    request: Request,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    coordinator=Depends(get_edit_coordinator),
) -> str:
    if not payload.tier_id:
        raise ValidationError("prev-001", "a review needs the tier it belongs to")
    tier = await repository.get_tier(payload.tier_id)
    require_owner(principal, tier.user_id)
    return await coordinator.create_review(
        user_id=principal.subject,
        tier=tier,
        edit=payload.to_edit(),
        ip_address=client_ip(request),
    )


@router.get("/{review_id}", response_model=ReviewOut, responses=ERROR_RESPONSES)
async def get_review(
    review_id: str,
    repository=Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> ReviewOut:
    review = await repository.get_review(review_id)
    return ReviewOut.from_snapshot(review, public_base_url=settings.public_base_url)


@router.patch("/{review_id}", response_class=PlainTextResponse, responses=ERROR_RESPONSES)
async def edit_review(
    review_id: str,
    payload: ReviewEditIn,
    request: Request,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    coordinator=Depends(get_edit_coordinator),
) -> str:
    review = await repository.get_review(review_id)
    require_owner(principal, review.user_id)
    tier = await repository.get_tier(review.tier_id)
    require_owner(principal, tier.user_id)
    return await coordinator.edit_review(
        snapshot=review,
        tier=tier,
        edit=payload.to_edit(),
        ip_address=client_ip(request),
    )


@router.delete("/{review_id}", response_class=PlainTextResponse, responses=ERROR_RESPONSES)
async def delete_review(
    review_id: str,
    request: Request,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    coordinator=Depends(get_edit_coordinator),
) -> str:
    review = await repository.get_review(review_id)
    require_owner(principal, review.user_id)
    await coordinator.delete_review(snapshot=review, ip_address=client_ip(request))
    return review_id
