from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from tierlist.core.config import Settings, get_settings

POINT_TYPES = ("stars", "rank7", "rank14", "score", "point", "unlimited")
PARAGRAPH_TYPES = ("text", "serviceLink", "imageLink")
ASSET_CATEGORIES = ("tier", "review", "user")


@dataclass(frozen=True, slots=True)
class ImageProfile:
    """How one kind of uploaded image is checked and re-encoded.

    ``aspect_ratio`` of ``None`` disables the aspect check entirely, as does a
    negative ``aspect_tolerance``. Images with more than ``max_pixels`` pixels
    are rejected before their pixel data is decoded.
    """

    max_bytes: int
    max_edge: int
    aspect_ratio: float | None
    aspect_tolerance: float
    quality: int
    max_pixels: int = 40_000_000

    @property
    def max_base64_length(self) -> int:
        return self.max_bytes * 8 // 6


@dataclass(frozen=True, slots=True)
class SectionLimits:
    title_len_max: int = 100
    paragraphs_len_max: int = 16
    text_len_max: int = 2000
    link_len_max: int = 400


@dataclass(frozen=True, slots=True)
class TierLimits:
    name_len_max: int = 100
    params_len_max: int = 16
    param_name_len_max: int = 16
    weight_min: int = 0
    weight_max: int = 100


@dataclass(frozen=True, slots=True)
class ReviewLimits:
    name_len_max: int = 50
    title_len_max: int = 100
    sections_len_max: int = 8
    factor_info_len_max: int = 16
    point_min: float = 0.0
    point_max: float = 100.0
    reviews_per_tier_max: int = 255


@dataclass(frozen=True, slots=True)
class UserLimits:
    name_len_max: int = 50
    profile_len_max: int = 400


@dataclass(frozen=True, slots=True)
class EditLimits:
    tier: TierLimits
    review: ReviewLimits
    section: SectionLimits
    tier_image: ImageProfile
    review_icon: ImageProfile
    paragraph_image: ImageProfile
    user: UserLimits
    user_icon: ImageProfile
    save_retry_count: int = 3
    id_retry_count: int = 3


def build_edit_limits(settings: Settings) -> EditLimits:
    tolerance = settings.image_aspect_tolerance
    return EditLimits(
        tier=TierLimits(),
        review=ReviewLimits(),
        section=SectionLimits(),
        tier_image=ImageProfile(
            max_bytes=5000 * 1024,
            max_edge=1080,
            aspect_ratio=10.0 / 3.0,
            aspect_tolerance=tolerance,
            quality=80,
        ),
        review_icon=ImageProfile(
            max_bytes=5000 * 1024,
            max_edge=256,
            aspect_ratio=1.0,
            aspect_tolerance=tolerance,
            quality=92,
        ),
        paragraph_image=ImageProfile(
            max_bytes=5000 * 1024,
            max_edge=1080,
            aspect_ratio=None,
            aspect_tolerance=tolerance,
            quality=60,
        ),
        user=UserLimits(),
        user_icon=ImageProfile(
            max_bytes=5000 * 1024,
            max_edge=256,
            aspect_ratio=1.0,
            aspect_tolerance=tolerance,
            quality=92,
        ),
        save_retry_count=max(1, settings.image_save_retry_count),
        id_retry_count=max(1, settings.id_create_retry_count),
    )


@lru_cache
def get_edit_limits() -> EditLimits:
    return build_edit_limits(get_settings())
