from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

IMAGE_LINK = "imageLink"


@dataclass(frozen=True, slots=True)
class Paragraph:
    type: str
    body: str


@dataclass(frozen=True, slots=True)
class Section:
    title: str
    paragraphs: tuple[Paragraph, ...] = ()


@dataclass(frozen=True, slots=True)
class EvaluationParameter:
    id: str
    name: str
    is_point: bool
    weight: int


@dataclass(frozen=True, slots=True)
class ReviewFactor:
    info: str = ""
    point: float = 0.0


@dataclass(frozen=True, slots=True)
class ParagraphEdit:
    """A paragraph as sent by the client.

    For ``imageLink`` paragraphs ``body`` is a stored reference when
    ``is_changed`` is false and a base64 encoded image when it is true.
    """

    type: str
    body: str
    is_changed: bool = False


@dataclass(frozen=True, slots=True)
class SectionEdit:
    title: str
    paragraphs: tuple[ParagraphEdit, ...] = ()


@dataclass(frozen=True, slots=True)
class ParameterEdit:
    name: str
    is_point: bool
    weight: int
    old_index: int = -1
    id: str | None = None


@dataclass(frozen=True, slots=True)
class TierEdit:
    name: str
    paragraphs: tuple[ParagraphEdit, ...]
    point_type: str
    evaluation_parameters: tuple[ParameterEdit, ...]
    pulling_up: int = 0
    pulling_down: int = 0
    image_is_changed: bool = False
    image_base64: str = ""


@dataclass(frozen=True, slots=True)
class ReviewEdit:
    name: str
    title: str
    review_factors: tuple[ReviewFactor, ...]
    sections: tuple[SectionEdit, ...]
    icon_is_changed: bool = False
    icon_base64: str = ""
    tier_id: str | None = None


@dataclass(frozen=True, slots=True)
class UserEdit:
    name: str
    profile: str
    icon_is_changed: bool = False
    icon_base64: str = ""
    accept: bool = False


@dataclass(slots=True)
class TierSnapshot:
    tier_id: str
    user_id: str
    name: str
    image_url: str
    paragraphs: list[Paragraph]
    point_type: str
    evaluation_parameters: list[EvaluationParameter]
    pulling_up: int
    pulling_down: int
    created_at: Any = None
    updated_at: Any = None


@dataclass(slots=True)
class ReviewSnapshot:
    review_id: str
    user_id: str
    tier_id: str
    title: str
    name: str
    icon_url: str
    review_factors: list[ReviewFactor]
    sections: list[Section]
    created_at: Any = None
    updated_at: Any = None


@dataclass(slots=True)
class UserSnapshot:
    user_id: str
    name: str
    profile: str
    icon_url: str
    created_at: Any = None
    updated_at: Any = None


def sanitize_text(value: str) -> str:
    """Escape the characters that could open markup.

    ``&`` is left alone so sanitizing already sanitized text is a no-op.
    """
    return value.replace("<", "&lt;").replace(">", "&gt;")


def image_references(paragraphs: list[Paragraph] | tuple[Paragraph, ...]) -> set[str]:
    return {paragraph.body for paragraph in paragraphs if paragraph.type == IMAGE_LINK and paragraph.body}


def section_image_references(sections: list[Section] | tuple[Section, ...]) -> set[str]:
    refs: set[str] = set()
    for section in sections:
        refs |= image_references(section.paragraphs)
    return refs


def paragraphs_to_json(paragraphs: list[Paragraph] | tuple[Paragraph, ...]) -> str:
    return json.dumps([paragraph_to_dict(paragraph) for paragraph in paragraphs], ensure_ascii=False)


def sections_to_json(sections: list[Section] | tuple[Section, ...]) -> str:
    return json.dumps([section_to_dict(section) for section in sections], ensure_ascii=False)


def parameters_to_json(params: list[EvaluationParameter] | tuple[EvaluationParameter, ...]) -> str:
    return json.dumps(
        [{"id": p.id, "name": p.name, "isPoint": p.is_point, "weight": p.weight} for p in params],
        ensure_ascii=False,
    )


def factors_to_json(factors: list[ReviewFactor] | tuple[ReviewFactor, ...]) -> str:
    return json.dumps([{"info": f.info, "point": f.point} for f in factors], ensure_ascii=False)


def paragraph_to_dict(paragraph: Paragraph) -> dict[str, str]:
    return {"type": paragraph.type, "body": paragraph.body}


def section_to_dict(section: Section) -> dict[str, Any]:
    return {"title": section.title, "paragraphs": [paragraph_to_dict(p) for p in section.paragraphs]}


def paragraphs_from_json(value: Any) -> list[Paragraph]:
    return [
        Paragraph(type=str(item.get("type") or ""), body=str(item.get("body") or ""))
        for item in _json_list(value)
    ]


def sections_from_json(value: Any) -> list[Section]:
    return [
        Section(
            title=str(item.get("title") or ""),
            paragraphs=tuple(paragraphs_from_json(item.get("paragraphs"))),
        )
        for item in _json_list(value)
    ]


def parameters_from_json(value: Any) -> list[EvaluationParameter]:
    params: list[EvaluationParameter] = []
    for index, item in enumerate(_json_list(value)):
        params.append(
            EvaluationParameter(
                # Rows written before parameters had ids fall back to their position.
                id=str(item.get("id") or f"p{index}"),
                name=str(item.get("name") or ""),
                is_point=bool(item.get("isPoint")),
                weight=int(item.get("weight") or 0),
            )
        )
    return params


def factors_from_json(value: Any) -> list[ReviewFactor]:
    factors: list[ReviewFactor] = []
    for item in _json_list(value):
        try:
            point = float(item.get("point") or 0)
        except (TypeError, ValueError):
            point = 0.0
        factors.append(ReviewFactor(info=str(item.get("info") or ""), point=point))
    return factors


def _json_list(value: Any) -> list[dict[str, Any]]:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return []
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]
