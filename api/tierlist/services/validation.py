from __future__ import annotations

import math
import re
from collections.abc import Sequence

from tierlist.core.limits import PARAGRAPH_TYPES, POINT_TYPES, EditLimits
from tierlist.services.content import IMAGE_LINK, EvaluationParameter, ParagraphEdit, ReviewEdit, TierEdit, UserEdit
from tierlist.services.errors import ValidationError

SERVICE_LINK_RE = re.compile(r"^https?://")


def validate_text(
    title: str,
    code: str,
    text: str,
    *,
    required: bool = False,
    min_len: int = -1,
    max_len: int = -1,
    pattern: re.Pattern[str] | None = None,
    pattern_message: str = "",
) -> None:
    """Length and format checks for one text field; negative bounds are not checked."""
    if required and not text:
        raise ValidationError(f"{code}-000", f"{title} is required")
    if min_len > 0 and len(text) < min_len:
        raise ValidationError(f"{code}-001", f"{title} must be at least {min_len} characters")
    if max_len > 0 and len(text) > max_len:
        raise ValidationError(f"{code}-002", f"{title} must be at most {max_len} characters")
    if pattern is not None and text and not pattern.match(text):
        raise ValidationError(f"{code}-003", f"{title} must be {pattern_message}")


def validate_number(title: str, code: str, value: float, *, minimum: float, maximum: float) -> None:
    if math.isnan(value) or value < minimum:
        raise ValidationError(f"{code}-000", f"{title} must be at least {minimum}")
    if value > maximum:
        raise ValidationError(f"{code}-001", f"{title} must be at most {maximum}")


def validate_paragraphs(paragraphs: Sequence[ParagraphEdit], limits: EditLimits) -> None:
    section = limits.section
    if len(paragraphs) > section.paragraphs_len_max:
        raise ValidationError("vpgs-001", f"at most {section.paragraphs_len_max} paragraphs are allowed")

    for paragraph in paragraphs:
        if paragraph.type not in PARAGRAPH_TYPES:
            raise ValidationError("vpgs-002", f"unknown paragraph type: {paragraph.type}")
        if paragraph.type == "text":
            validate_text("paragraph text", "vpgs-003", paragraph.body, max_len=section.text_len_max)
        elif paragraph.type == "serviceLink":
            validate_text(
                "link",
                "vpgs-004",
                paragraph.body,
                max_len=section.link_len_max,
                pattern=SERVICE_LINK_RE,
                pattern_message="an http(s) URL",
            )
        elif paragraph.type == IMAGE_LINK:
            if paragraph.is_changed:
                if not paragraph.body:
                    raise ValidationError("vpgs-006", "a changed image paragraph needs image data")
                if len(paragraph.body) > limits.paragraph_image.max_base64_length:
                    raise ValidationError("vpgs-005", "image is too large")
            elif not paragraph.body:
                raise ValidationError("vpgs-007", "an image paragraph needs a stored image reference")


def validate_tier_edit(edit: TierEdit, limits: EditLimits) -> None:
    tier = limits.tier
    validate_text("tier name", "vtir-001", edit.name, required=True, max_len=tier.name_len_max)
    validate_paragraphs(edit.paragraphs, limits)

    if edit.point_type not in POINT_TYPES:
        raise ValidationError("vtir-007", f"unknown point type: {edit.point_type}")

    if edit.image_is_changed and len(edit.image_base64) > limits.tier_image.max_base64_length:
        raise ValidationError("vtir-008", "image is too large")

    if not edit.evaluation_parameters:
        raise ValidationError("vtir-009", "evaluation parameters are required")
    if len(edit.evaluation_parameters) > tier.params_len_max:
        raise ValidationError("vtir-013", f"at most {tier.params_len_max} evaluation parameters are allowed")
    if not any(param.is_point for param in edit.evaluation_parameters):
        raise ValidationError("vtir-010", "at least one evaluation parameter must be a point")

    for param in edit.evaluation_parameters:
        validate_text(
            "evaluation parameter name",
            "vtir-011",
            param.name,
            required=True,
            max_len=tier.param_name_len_max,
        )
        if param.is_point:
            validate_number(
                "evaluation parameter weight",
                "vtir-012",
                param.weight,
                minimum=tier.weight_min,
                maximum=tier.weight_max,
            )


def validate_review_edit(
    edit: ReviewEdit,
    params: Sequence[EvaluationParameter],
    point_type: str,
    limits: EditLimits,
) -> None:
    review = limits.review
    validate_text("review name", "vrev-001", edit.name, required=True, max_len=review.name_len_max)
    validate_text("review title", "vrev-002", edit.title, max_len=review.title_len_max)

    if len(edit.review_factors) != len(params):
        raise ValidationError("vrev-003", "review factors do not match the tier's evaluation parameters")
    for factor, param in zip(edit.review_factors, params):
        if param.is_point:
            if point_type != "unlimited":
                validate_number(
                    "review point",
                    "vrev-004",
                    factor.point,
                    minimum=review.point_min,
                    maximum=review.point_max,
                )
            elif not math.isfinite(factor.point):
                raise ValidationError("vrev-004-002", "review point must be a finite number")
        else:
            validate_text("review factor info", "vrev-005", factor.info, max_len=review.factor_info_len_max)

    if len(edit.sections) > review.sections_len_max:
        raise ValidationError("vrev-006", f"at most {review.sections_len_max} sections are allowed")
    for section in edit.sections:
        validate_text("section title", "vrev-007", section.title, max_len=limits.section.title_len_max)
        validate_paragraphs(section.paragraphs, limits)

    if edit.icon_is_changed and len(edit.icon_base64) > limits.review_icon.max_base64_length:
        raise ValidationError("vrev-008", "icon is too large")


def validate_user_edit(edit: UserEdit, limits: EditLimits, *, creating: bool) -> None:
    if creating and not edit.accept:
        raise ValidationError("vusr-001", "the terms of service must be accepted")
    validate_text("display name", "vusr-002", edit.name, required=True, max_len=limits.user.name_len_max)
    validate_text("profile", "vusr-003", edit.profile, max_len=limits.user.profile_len_max)
    if edit.icon_is_changed and len(edit.icon_base64) > limits.user_icon.max_base64_length:
        raise ValidationError("vusr-004", "icon is too large")
