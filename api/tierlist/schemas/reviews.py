from datetime import datetime

from pydantic import Field

from tierlist.schemas.common import CamelModel, SectionIn, SectionOut, public_url
from tierlist.services.content import ReviewEdit, ReviewFactor, ReviewSnapshot


class ReviewFactorIn(CamelModel):
    info: str = ""
    point: float = 0.0

    def to_factor(self) -> ReviewFactor:
        return ReviewFactor(info=self.info, point=self.point)


class ReviewEditIn(CamelModel):
    tier_id: str | None = None
    title: str = ""
    name: str = ""
    icon_is_changed: bool = False
    icon_base64: str = ""
    review_factors: list[ReviewFactorIn] = Field(default_factory=list)
    sections: list[SectionIn] = Field(default_factory=list)

    def to_edit(self) -> ReviewEdit:
        return ReviewEdit(
            name=self.name,
            title=self.title,
            review_factors=tuple(f.to_factor() for f in self.review_factors),
            sections=tuple(s.to_edit() for s in self.sections),
            icon_is_changed=self.icon_is_changed,
            icon_base64=self.icon_base64,
            tier_id=self.tier_id,
        )


class ReviewFactorOut(CamelModel):
    info: str
    point: float


class ReviewOut(CamelModel):
    review_id: str
    user_id: str
    tier_id: str
    title: str
    name: str
    icon_url: str = ""
    review_factors: list[ReviewFactorOut] = Field(default_factory=list)
    sections: list[SectionOut] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_snapshot(cls, review: ReviewSnapshot, *, public_base_url: str) -> "ReviewOut":
        return cls(
            review_id=review.review_id,
            user_id=review.user_id,
            tier_id=review.tier_id,
            title=review.title,
            name=review.name,
            icon_url=public_url(public_base_url, review.icon_url),
            review_factors=[ReviewFactorOut(info=f.info, point=f.point) for f in review.review_factors],
            sections=[SectionOut.from_section(s) for s in review.sections],
            created_at=review.created_at,
            updated_at=review.updated_at,
        )
