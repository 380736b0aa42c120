from datetime import datetime

from pydantic import Field

from tierlist.schemas.common import CamelModel, ParagraphIn, ParagraphOut, public_url
from tierlist.schemas.reviews import ReviewOut
from tierlist.services.content import EvaluationParameter, ParameterEdit, ReviewSnapshot, TierEdit, TierSnapshot


class EvaluationParameterIn(CamelModel):
    id: str | None = None
    name: str = ""
    is_point: bool = False
    weight: int = 0
    old_index: int = -1

    def to_edit(self) -> ParameterEdit:
        return ParameterEdit(
            name=self.name,
            is_point=self.is_point,
            weight=self.weight,
            old_index=self.old_index,
            id=self.id,
        )


class TierEditIn(CamelModel):
    name: str = ""
    paragraphs: list[ParagraphIn] = Field(default_factory=list)
    point_type: str = ""
    evaluation_parameters: list[EvaluationParameterIn] = Field(default_factory=list)
    pulling_up: int = 0
    pulling_down: int = 0
    image_is_changed: bool = False
    image_base64: str = ""

    def to_edit(self) -> TierEdit:
        return TierEdit(
            name=self.name,
            paragraphs=tuple(p.to_edit() for p in self.paragraphs),
            point_type=self.point_type,
            evaluation_parameters=tuple(p.to_edit() for p in self.evaluation_parameters),
            pulling_up=self.pulling_up,
            pulling_down=self.pulling_down,
            image_is_changed=self.image_is_changed,
            image_base64=self.image_base64,
        )


class EvaluationParameterOut(CamelModel):
    id: str
    name: str
    is_point: bool
    weight: int

    @classmethod
    def from_parameter(cls, param: EvaluationParameter) -> "EvaluationParameterOut":
        return cls(id=param.id, name=param.name, is_point=param.is_point, weight=param.weight)


class TierOut(CamelModel):
    tier_id: str
    user_id: str
    name: str
    image_url: str = ""
    paragraphs: list[ParagraphOut] = Field(default_factory=list)
    point_type: str
    evaluation_parameters: list[EvaluationParameterOut] = Field(default_factory=list)
    pulling_up: int = 0
    pulling_down: int = 0
    reviews: list[ReviewOut] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_snapshot(
        cls,
        tier: TierSnapshot,
        reviews: list[ReviewSnapshot],
        *,
        public_base_url: str,
    ) -> "TierOut":
        return cls(
            tier_id=tier.tier_id,
            user_id=tier.user_id,
            name=tier.name,
            image_url=public_url(public_base_url, tier.image_url),
            paragraphs=[ParagraphOut.from_paragraph(p) for p in tier.paragraphs],
            point_type=tier.point_type,
            evaluation_parameters=[EvaluationParameterOut.from_parameter(p) for p in tier.evaluation_parameters],
            pulling_up=tier.pulling_up,
            pulling_down=tier.pulling_down,
            reviews=[ReviewOut.from_snapshot(r, public_base_url=public_base_url) for r in reviews],
            created_at=tier.created_at,
            updated_at=tier.updated_at,
        )
