from __future__ import annotations

import base64
import io
from collections.abc import Callable, Sequence
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest
from PIL import Image

from tierlist.core.config import Settings
from tierlist.core.limits import EditLimits, build_edit_limits
from tierlist.services.content import (
    EvaluationParameter,
    Paragraph,
    ReviewFactor,
    ReviewSnapshot,
    Section,
    TierSnapshot,
    UserSnapshot,
)
from tierlist.services.remap import remap_factors
from tierlist.services.repository import RepositoryConflictError, RepositoryNotFoundError
from tierlist.services.storage import AssetStorage
from tierlist.services.transcoder import ImageTranscoder


class FakeEditRepository:
    """In-memory stand-in for ``PostgresRepository`` with switchable commit failures."""

    def __init__(self) -> None:
        self.tiers: dict[str, TierSnapshot] = {}
        self.reviews: dict[str, ReviewSnapshot] = {}
        self.users: dict[str, UserSnapshot] = {}
        self.operations: list[str] = []
        self.commit_error: Exception | None = None
        self._next_id = 0
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    def _new_id(self, prefix: str) -> str:
        self._next_id += 1
        return f"{prefix}{self._next_id:04d}"

    def _maybe_fail(self) -> None:
        if self.commit_error is not None:
            raise self.commit_error

    def _check_tier(self, tier_id: str, expected_updated_at: datetime | None, factor_count: int) -> None:
        tier = self.tiers.get(tier_id)
        if tier is None:
            raise RepositoryNotFoundError("tier not found")
        if expected_updated_at is not None and tier.updated_at != expected_updated_at:
            raise RepositoryConflictError("tier was modified during the edit")
        if len(tier.evaluation_parameters) != factor_count:
            raise RepositoryConflictError("tier evaluation parameters changed during the edit")

    async def close(self) -> None:
        return None

    async def allocate_tier_id(self, user_id: str) -> str:
        return self._new_id("tier")

    async def allocate_review_id(self, user_id: str, tier_id: str) -> str:
        return self._new_id("review")

    async def get_tier(self, tier_id: str) -> TierSnapshot:
        if tier_id not in self.tiers:
            raise RepositoryNotFoundError("tier not found")
        return replace(self.tiers[tier_id])

    async def get_review(self, review_id: str) -> ReviewSnapshot:
        if review_id not in self.reviews:
            raise RepositoryNotFoundError("review not found")
        return replace(self.reviews[review_id])

    async def list_tier_reviews(self, tier_id: str, limit: int) -> list[ReviewSnapshot]:
        return [review for review in self.reviews.values() if review.tier_id == tier_id][:limit]

    async def insert_tier(self, *, tier_id: str, user_id: str, ip_address: str | None = None, **fields) -> None:
        self._maybe_fail()
        now = self._tick()
        self.tiers[tier_id] = TierSnapshot(
            tier_id=tier_id,
            user_id=user_id,
            name=fields["name"],
            image_url=fields["image_url"],
            paragraphs=list(fields["paragraphs"]),
            point_type=fields["point_type"],
            evaluation_parameters=list(fields["evaluation_parameters"]),
            pulling_up=fields["pulling_up"],
            pulling_down=fields["pulling_down"],
            created_at=now,
            updated_at=now,
        )
        self.operations.append(f"create tier({tier_id})")

    async def commit_tier_edit(
        self,
        *,
        tier_id: str,
        user_id: str,
        expected_updated_at: datetime | None,
        factor_sources: Sequence[int],
        ip_address: str | None = None,
        **fields,
    ) -> int:
        self._maybe_fail()
        tier = self.tiers.get(tier_id)
        if tier is None:
            raise RepositoryNotFoundError("tier not found")
        if expected_updated_at is not None and tier.updated_at != expected_updated_at:
            raise RepositoryConflictError("tier was modified by another request")

        remapped = 0
        for review in self.reviews.values():
            if review.tier_id == tier_id:
                review.review_factors = remap_factors(factor_sources, review.review_factors)
                remapped += 1

        tier.name = fields["name"]
        tier.image_url = fields["image_url"]
        tier.paragraphs = list(fields["paragraphs"])
        tier.point_type = fields["point_type"]
        tier.evaluation_parameters = list(fields["evaluation_parameters"])
        tier.pulling_up = fields["pulling_up"]
        tier.pulling_down = fields["pulling_down"]
        tier.updated_at = self._tick()
        self.operations.append(f"update tier({tier_id})")
        return remapped

    async def delete_tier(self, *, tier_id: str, user_id: str, ip_address: str | None = None) -> list[tuple[str, str]]:
        self._maybe_fail()
        if tier_id not in self.tiers:
            raise RepositoryNotFoundError("tier not found")
        deleted = [(r.review_id, r.user_id) for r in self.reviews.values() if r.tier_id == tier_id]
        for review_id, _ in deleted:
            del self.reviews[review_id]
        del self.tiers[tier_id]
        self.operations.append(f"delete tier({tier_id})")
        return deleted

    async def insert_review(
        self,
        *,
        review_id: str,
        user_id: str,
        tier_id: str,
        max_reviews_per_tier: int,
        expected_tier_updated_at: datetime | None = None,
        ip_address: str | None = None,
        **fields,
    ) -> None:
        self._maybe_fail()
        self._check_tier(tier_id, expected_tier_updated_at, len(fields["review_factors"]))
        now = self._tick()
        self.reviews[review_id] = ReviewSnapshot(
            review_id=review_id,
            user_id=user_id,
            tier_id=tier_id,
            title=fields["title"],
            name=fields["name"],
            icon_url=fields["icon_url"],
            review_factors=list(fields["review_factors"]),
            sections=list(fields["sections"]),
            created_at=now,
            updated_at=now,
        )
        self.operations.append(f"create review({review_id})")

    async def commit_review_edit(
        self,
        *,
        review_id: str,
        user_id: str,
        expected_updated_at: datetime | None,
        expected_tier_updated_at: datetime | None = None,
        ip_address: str | None = None,
        **fields,
    ) -> None:
        self._maybe_fail()
        review = self.reviews.get(review_id)
        if review is None:
            raise RepositoryNotFoundError("review not found")
        self._check_tier(review.tier_id, expected_tier_updated_at, len(fields["review_factors"]))
        if expected_updated_at is not None and review.updated_at != expected_updated_at:
            raise RepositoryConflictError("review was modified by another request")
        review.title = fields["title"]
        review.name = fields["name"]
        review.icon_url = fields["icon_url"]
        review.review_factors = list(fields["review_factors"])
        review.sections = list(fields["sections"])
        review.updated_at = self._tick()
        self.operations.append(f"update review({review_id})")

    async def delete_review(self, *, review_id: str, user_id: str, ip_address: str | None = None) -> None:
        self._maybe_fail()
        if self.reviews.pop(review_id, None) is None:
            raise RepositoryNotFoundError("review not found")
        self.operations.append(f"delete review({review_id})")

    async def get_user(self, user_id: str) -> UserSnapshot:
        if user_id not in self.users:
            raise RepositoryNotFoundError("user not found")
        return replace(self.users[user_id])

    async def insert_user(self, *, user_id: str, ip_address: str | None = None, **fields) -> None:
        self._maybe_fail()
        if user_id in self.users:
            raise RepositoryConflictError("user profile already exists")
        now = self._tick()
        self.users[user_id] = UserSnapshot(user_id=user_id, created_at=now, updated_at=now, **fields)
        self.operations.append(f"create user({user_id})")

    async def commit_user_edit(
        self,
        *,
        user_id: str,
        expected_updated_at: datetime | None,
        ip_address: str | None = None,
        **fields,
    ) -> None:
        self._maybe_fail()
        user = self.users.get(user_id)
        if user is None:
            raise RepositoryNotFoundError("user not found")
        if expected_updated_at is not None and user.updated_at != expected_updated_at:
            raise RepositoryConflictError("user was modified by another request")
        user.name = fields["name"]
        user.profile = fields["profile"]
        user.icon_url = fields["icon_url"]
        user.updated_at = self._tick()
        self.operations.append(f"update user({user_id})")

    async def delete_user(self, *, user_id: str, ip_address: str | None = None) -> list[tuple[str, str]]:
        self._maybe_fail()
        if self.users.pop(user_id, None) is None:
            raise RepositoryNotFoundError("user not found")
        tier_ids = {tier_id for tier_id, tier in self.tiers.items() if tier.user_id == user_id}
        deleted = [r for r in self.reviews.values() if r.tier_id in tier_ids or r.user_id == user_id]
        for review in deleted:
            del self.reviews[review.review_id]
        for tier_id in tier_ids:
            del self.tiers[tier_id]
        self.operations.append(f"delete user({user_id})")
        return [(r.review_id, r.user_id) for r in deleted if r.user_id != user_id]

    def seed_tier(
        self,
        *,
        tier_id: str = "tier-a",
        user_id: str = "user-1",
        params: Sequence[tuple[str, str, bool]] = (("pa", "A", True), ("pb", "B", True), ("pc", "C", False)),
        paragraphs: Sequence[Paragraph] = (),
        image_url: str = "",
    ) -> TierSnapshot:
        now = self._tick()
        tier = TierSnapshot(
            tier_id=tier_id,
            user_id=user_id,
            name="Seeded tier",
            image_url=image_url,
            paragraphs=list(paragraphs),
            point_type="score",
            evaluation_parameters=[
                EvaluationParameter(id=param_id, name=name, is_point=is_point, weight=10)
                for param_id, name, is_point in params
            ],
            pulling_up=0,
            pulling_down=0,
            created_at=now,
            updated_at=now,
        )
        self.tiers[tier_id] = tier
        return replace(tier)

    def seed_review(
        self,
        *,
        review_id: str,
        tier_id: str = "tier-a",
        user_id: str = "user-1",
        factors: Sequence[tuple[str, float]] = (),
        sections: Sequence[Section] = (),
        icon_url: str = "",
    ) -> ReviewSnapshot:
        now = self._tick()
        review = ReviewSnapshot(
            review_id=review_id,
            user_id=user_id,
            tier_id=tier_id,
            title="",
            name=f"Review {review_id}",
            icon_url=icon_url,
            review_factors=[ReviewFactor(info=info, point=point) for info, point in factors],
            sections=list(sections),
            created_at=now,
            updated_at=now,
        )
        self.reviews[review_id] = review
        return replace(review)


    def seed_user(self, *, user_id: str = "user-1", icon_url: str = "") -> UserSnapshot:
        now = self._tick()
        user = UserSnapshot(
            user_id=user_id,
            name=f"User {user_id}",
            profile="",
            icon_url=icon_url,
            created_at=now,
            updated_at=now,
        )
        self.users[user_id] = user
        return replace(user)


def encode_image(width: int, height: int, *, color: tuple[int, int, int] = (200, 40, 40), fmt: str = "PNG") -> str:
    image = Image.new("RGB", (width, height), color)
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return base64.b64encode(buffer.getvalue()).decode("ascii")


@pytest.fixture
def image_factory() -> Callable[..., str]:
    return encode_image


@pytest.fixture
def limits() -> EditLimits:
    return build_edit_limits(Settings())


@pytest.fixture
def storage(tmp_path) -> AssetStorage:
    return AssetStorage(tmp_path / "userfiles")


@pytest.fixture
def transcoder(storage: AssetStorage) -> ImageTranscoder:
    return ImageTranscoder(storage, retry_count=3)


@pytest.fixture
def fake_repository() -> FakeEditRepository:
    return FakeEditRepository()
