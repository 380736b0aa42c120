from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import replace

from tierlist.core.limits import EditLimits, ImageProfile
from tierlist.core.telemetry import edit_span, set_edit_attributes
from tierlist.services.content import (
    ReviewEdit,
    ReviewSnapshot,
    TierEdit,
    TierSnapshot,
    UserEdit,
    UserSnapshot,
    sanitize_text,
)
from tierlist.services.errors import EditError, TransactionError
from tierlist.services.reconcile import reconcile_paragraphs, reconcile_sections
from tierlist.services.remap import resolve_parameters
from tierlist.services.repository import PostgresRepository, RepositoryError
from tierlist.services.storage import AssetStorage
from tierlist.services.transcoder import AssetContext, ImageTranscoder
from tierlist.services.validation import validate_review_edit, validate_tier_edit, validate_user_edit

logger = logging.getLogger(__name__)

ICON_PREFIX = "icon_"


class AssetStage:
    """Files written for one edit that the database does not know about yet.

    ``compensate`` removes them when the edit fails; ``finalize`` removes the
    files the committed edit made obsolete. Neither touches the other set.
    """

    def __init__(self, storage: AssetStorage) -> None:
        self.storage = storage
        self.created: list[str] = []
        self.obsolete: set[str] = set()

    def stage(self, created: Iterable[str] = (), obsolete: Iterable[str] = ()) -> None:
        self.created.extend(ref for ref in created if ref)
        self.obsolete.update(ref for ref in obsolete if ref)

    def compensate(self) -> None:
        if not self.created:
            return
        failed = self.storage.delete_many(self.created)
        logger.info("asset stage compensated created=%s failed=%s", len(self.created), len(failed))
        self.created = []

    def finalize(self) -> None:
        if not self.obsolete:
            return
        failed = self.storage.delete_many(self.obsolete)
        logger.info("asset stage finalized obsolete=%s failed=%s", len(self.obsolete), len(failed))
        self.obsolete = set()


class EditCoordinator:
    def __init__(
        self,
        repository: PostgresRepository,
        storage: AssetStorage,
        limits: EditLimits,
        transcoder: ImageTranscoder | None = None,
    ) -> None:
        self.repository = repository
        self.storage = storage
        self.limits = limits
        self.transcoder = transcoder or ImageTranscoder(storage, retry_count=limits.save_retry_count)

    async def create_tier(self, *, user_id: str, edit: TierEdit, ip_address: str | None = None) -> str:
        validate_tier_edit(edit, self.limits)
        edit = replace(edit, name=sanitize_text(edit.name))
        tier_id = await self.repository.allocate_tier_id(user_id)
        context = AssetContext(owner_id=user_id, category="tier", entity_id=tier_id)
        stage = AssetStage(self.storage)

        with edit_span("tier.create.reconcile", tier_id=tier_id) as span:
            result = await asyncio.to_thread(
                reconcile_paragraphs,
                edit.paragraphs,
                (),
                transcoder=self.transcoder,
                context=context,
                profile=self.limits.paragraph_image,
            )
            set_edit_attributes(span, created=len(result.created))
        stage.stage(created=result.created)

        try:
            image_url = ""
            if edit.image_is_changed:
                image_url = await self._store_icon(
                    context, edit.image_base64, self.limits.tier_image, error_code="ptir-007"
                )
                stage.stage(created=[image_url])
            params, _ = resolve_parameters((), edit.evaluation_parameters)

            with edit_span("tier.create.transaction", tier_id=tier_id, parameters=len(params)):
                await self.repository.insert_tier(
                    tier_id=tier_id,
                    user_id=user_id,
                    name=edit.name,
                    image_url=image_url,
                    paragraphs=result.paragraphs,
                    point_type=edit.point_type,
                    evaluation_parameters=params,
                    pulling_up=edit.pulling_up,
                    pulling_down=edit.pulling_down,
                    ip_address=ip_address,
                )
        except (EditError, RepositoryError):
            await asyncio.to_thread(stage.compensate)
            raise
        except Exception as exc:
            await asyncio.to_thread(stage.compensate)
            raise TransactionError("ptir-008", "failed to save the tier") from exc

        logger.info("tier created tier_id=%s user_id=%s images=%s", tier_id, user_id, len(stage.created))
        return tier_id

    async def edit_tier(
        self,
        *,
        snapshot: TierSnapshot,
        edit: TierEdit,
        ip_address: str | None = None,
    ) -> str:
        """Apply a content and schema edit to ``snapshot``, remapping every review of the tier."""
        validate_tier_edit(edit, self.limits)
        edit = replace(edit, name=sanitize_text(edit.name))
        context = AssetContext(owner_id=snapshot.user_id, category="tier", entity_id=snapshot.tier_id)
        stage = AssetStage(self.storage)

        with edit_span("tier.edit.reconcile", tier_id=snapshot.tier_id) as span:
            result = await asyncio.to_thread(
                reconcile_paragraphs,
                edit.paragraphs,
                snapshot.paragraphs,
                transcoder=self.transcoder,
                context=context,
                profile=self.limits.paragraph_image,
            )
            set_edit_attributes(span, created=len(result.created), orphaned=len(result.orphaned))
        stage.stage(created=result.created, obsolete=result.orphaned)

        try:
            image_url = snapshot.image_url
            if edit.image_is_changed:
                image_url = await self._store_icon(
                    context, edit.image_base64, self.limits.tier_image, error_code="utir-007"
                )
                stage.stage(created=[image_url], obsolete=[snapshot.image_url])
            params, sources = resolve_parameters(snapshot.evaluation_parameters, edit.evaluation_parameters)

            with edit_span("tier.edit.transaction", tier_id=snapshot.tier_id, parameters=len(params)) as span:
                remapped = await self.repository.commit_tier_edit(
                    tier_id=snapshot.tier_id,
                    user_id=snapshot.user_id,
                    expected_updated_at=snapshot.updated_at,
                    name=edit.name,
                    image_url=image_url,
                    paragraphs=result.paragraphs,
                    point_type=edit.point_type,
                    evaluation_parameters=params,
                    factor_sources=sources,
                    pulling_up=edit.pulling_up,
                    pulling_down=edit.pulling_down,
                    ip_address=ip_address,
                )
                set_edit_attributes(span, reviews_remapped=remapped)
        except (EditError, RepositoryError):
            await asyncio.to_thread(stage.compensate)
            raise
        except Exception as exc:
            await asyncio.to_thread(stage.compensate)
            raise TransactionError("utir-008", "failed to save the tier") from exc

        with edit_span("tier.edit.cleanup", tier_id=snapshot.tier_id, obsolete=len(stage.obsolete)):
            await asyncio.to_thread(stage.finalize)
        logger.info(
            "tier edited tier_id=%s reviews_remapped=%s created=%s orphaned=%s",
            snapshot.tier_id,
            remapped,
            len(result.created),
            len(result.orphaned),
        )
        return snapshot.tier_id

    async def delete_tier(self, *, snapshot: TierSnapshot, ip_address: str | None = None) -> list[str]:
        with edit_span("tier.delete.transaction", tier_id=snapshot.tier_id):
            deleted_reviews = await self.repository.delete_tier(
                tier_id=snapshot.tier_id,
                user_id=snapshot.user_id,
                ip_address=ip_address,
            )

        with edit_span("tier.delete.cleanup", tier_id=snapshot.tier_id, reviews=len(deleted_reviews)):
            await asyncio.to_thread(self.storage.delete_entity_dir, snapshot.user_id, "tier", snapshot.tier_id)
            for review_id, owner_id in deleted_reviews:
                await asyncio.to_thread(self.storage.delete_entity_dir, owner_id, "review", review_id)
        logger.info("tier deleted tier_id=%s reviews=%s", snapshot.tier_id, len(deleted_reviews))
        return [review_id for review_id, _ in deleted_reviews]

    async def create_review(
        self,
        *,
        user_id: str,
        tier: TierSnapshot,
        edit: ReviewEdit,
        ip_address: str | None = None,
    ) -> str:
        validate_review_edit(edit, tier.evaluation_parameters, tier.point_type, self.limits)
        edit = replace(edit, name=sanitize_text(edit.name), title=sanitize_text(edit.title))
        review_id = await self.repository.allocate_review_id(user_id, tier.tier_id)
        context = AssetContext(owner_id=user_id, category="review", entity_id=review_id)
        stage = AssetStage(self.storage)

        with edit_span("review.create.reconcile", review_id=review_id, tier_id=tier.tier_id) as span:
            result = await asyncio.to_thread(
                reconcile_sections,
                edit.sections,
                (),
                transcoder=self.transcoder,
                context=context,
                profile=self.limits.paragraph_image,
            )
            set_edit_attributes(span, created=len(result.created))
        stage.stage(created=result.created)

        try:
            icon_url = ""
            if edit.icon_is_changed:
                icon_url = await self._store_icon(
                    context, edit.icon_base64, self.limits.review_icon, error_code="prev-009"
                )
                stage.stage(created=[icon_url])

            with edit_span("review.create.transaction", review_id=review_id, tier_id=tier.tier_id):
                await self.repository.insert_review(
                    review_id=review_id,
                    user_id=user_id,
                    tier_id=tier.tier_id,
                    title=edit.title,
                    name=edit.name,
                    icon_url=icon_url,
                    review_factors=edit.review_factors,
                    sections=result.sections,
                    max_reviews_per_tier=self.limits.review.reviews_per_tier_max,
                    expected_tier_updated_at=tier.updated_at,
                    ip_address=ip_address,
                )
        except (EditError, RepositoryError):
            await asyncio.to_thread(stage.compensate)
            raise
        except Exception as exc:
            await asyncio.to_thread(stage.compensate)
            raise TransactionError("prev-010", "failed to save the review") from exc

        logger.info("review created review_id=%s tier_id=%s user_id=%s", review_id, tier.tier_id, user_id)
        return review_id

    async def edit_review(
        self,
        *,
        snapshot: ReviewSnapshot,
        tier: TierSnapshot,
        edit: ReviewEdit,
        ip_address: str | None = None,
    ) -> str:
        validate_review_edit(edit, tier.evaluation_parameters, tier.point_type, self.limits)
        edit = replace(edit, name=sanitize_text(edit.name), title=sanitize_text(edit.title))
        context = AssetContext(owner_id=snapshot.user_id, category="review", entity_id=snapshot.review_id)
        stage = AssetStage(self.storage)

        with edit_span("review.edit.reconcile", review_id=snapshot.review_id, tier_id=tier.tier_id) as span:
            result = await asyncio.to_thread(
                reconcile_sections,
                edit.sections,
                snapshot.sections,
                transcoder=self.transcoder,
                context=context,
                profile=self.limits.paragraph_image,
            )
            set_edit_attributes(span, created=len(result.created), orphaned=len(result.orphaned))
        stage.stage(created=result.created, obsolete=result.orphaned)

        try:
            icon_url = snapshot.icon_url
            if edit.icon_is_changed:
                icon_url = await self._store_icon(
                    context, edit.icon_base64, self.limits.review_icon, error_code="urev-006"
                )
                stage.stage(created=[icon_url], obsolete=[snapshot.icon_url])

            with edit_span("review.edit.transaction", review_id=snapshot.review_id, tier_id=tier.tier_id):
                await self.repository.commit_review_edit(
                    review_id=snapshot.review_id,
                    user_id=snapshot.user_id,
                    expected_updated_at=snapshot.updated_at,
                    expected_tier_updated_at=tier.updated_at,
                    title=edit.title,
                    name=edit.name,
                    icon_url=icon_url,
                    review_factors=edit.review_factors,
                    sections=result.sections,
                    ip_address=ip_address,
                )
        except (EditError, RepositoryError):
            await asyncio.to_thread(stage.compensate)
            raise
        except Exception as exc:
            await asyncio.to_thread(stage.compensate)
            raise TransactionError("urev-007", "failed to save the review") from exc

        with edit_span("review.edit.cleanup", review_id=snapshot.review_id, obsolete=len(stage.obsolete)):
            await asyncio.to_thread(stage.finalize)
        logger.info(
            "review edited review_id=%s created=%s orphaned=%s",
            snapshot.review_id,
            len(result.created),
            len(result.orphaned),
        )
        return snapshot.review_id

    async def delete_review(self, *, snapshot: ReviewSnapshot, ip_address: str | None = None) -> None:
        with edit_span("review.delete.transaction", review_id=snapshot.review_id, tier_id=snapshot.tier_id):
            await self.repository.delete_review(
                review_id=snapshot.review_id,
                user_id=snapshot.user_id,
                ip_address=ip_address,
            )
        with edit_span("review.delete.cleanup", review_id=snapshot.review_id):
            await asyncio.to_thread(
                self.storage.delete_entity_dir, snapshot.user_id, "review", snapshot.review_id
            )
        logger.info("review deleted review_id=%s", snapshot.review_id)

    async def create_user(self, *, user_id: str, edit: UserEdit, ip_address: str | None = None) -> str:
        validate_user_edit(edit, self.limits, creating=True)
        edit = replace(edit, name=sanitize_text(edit.name), profile=sanitize_text(edit.profile))
        context = AssetContext(owner_id=user_id, category="user", entity_id=user_id)
        stage = AssetStage(self.storage)

        try:
            icon_url = ""
            if edit.icon_is_changed:
                icon_url = await self._store_icon(
                    context, edit.icon_base64, self.limits.user_icon, error_code="pusr-004"
                )
                stage.stage(created=[icon_url])

            with edit_span("user.create.transaction", user_id=user_id):
                await self.repository.insert_user(
                    user_id=user_id,
                    name=edit.name,
                    profile=edit.profile,
                    icon_url=icon_url,
                    ip_address=ip_address,
                )
        except (EditError, RepositoryError):
            await asyncio.to_thread(stage.compensate)
            raise
        except Exception as exc:
            await asyncio.to_thread(stage.compensate)
            raise TransactionError("pusr-006", "failed to create the user") from exc

        logger.info("user created user_id=%s icon=%s", user_id, bool(icon_url))
        return user_id

    async def edit_user(self, *, snapshot: UserSnapshot, edit: UserEdit, ip_address: str | None = None) -> str:
        validate_user_edit(edit, self.limits, creating=False)
        edit = replace(edit, name=sanitize_text(edit.name), profile=sanitize_text(edit.profile))
        context = AssetContext(owner_id=snapshot.user_id, category="user", entity_id=snapshot.user_id)
        stage = AssetStage(self.storage)

        try:
            icon_url = snapshot.icon_url
            if edit.icon_is_changed:
                icon_url = await self._store_icon(
                    context, edit.icon_base64, self.limits.user_icon, error_code="uusr-006"
                )
                stage.stage(created=[icon_url], obsolete=[snapshot.icon_url])

            with edit_span("user.edit.transaction", user_id=snapshot.user_id):
                await self.repository.commit_user_edit(
                    user_id=snapshot.user_id,
                    expected_updated_at=snapshot.updated_at,
                    name=edit.name,
                    profile=edit.profile,
                    icon_url=icon_url,
                    ip_address=ip_address,
                )
        except (EditError, RepositoryError):
            await asyncio.to_thread(stage.compensate)
            raise
        except Exception as exc:
            await asyncio.to_thread(stage.compensate)
            raise TransactionError("uusr-007", "failed to update the user") from exc

        with edit_span("user.edit.cleanup", user_id=snapshot.user_id, obsolete=len(stage.obsolete)):
            await asyncio.to_thread(stage.finalize)
        logger.info("user edited user_id=%s icon_changed=%s", snapshot.user_id, edit.icon_is_changed)
        return snapshot.user_id

    async def delete_user(self, *, snapshot: UserSnapshot, ip_address: str | None = None) -> None:
        """Delete the user, everything they posted and reviews others wrote on their tiers.

        Folder removal runs after commit and failures there are only logged.
        """
        with edit_span("user.delete.transaction", user_id=snapshot.user_id):
            foreign_reviews = await self.repository.delete_user(user_id=snapshot.user_id, ip_address=ip_address)

        with edit_span("user.delete.cleanup", user_id=snapshot.user_id, reviews=len(foreign_reviews)):
            await asyncio.to_thread(self.storage.delete_owner_dir, snapshot.user_id)
            for review_id, owner_id in foreign_reviews:
                await asyncio.to_thread(self.storage.delete_entity_dir, owner_id, "review", review_id)
        logger.info("user deleted user_id=%s foreign_reviews=%s", snapshot.user_id, len(foreign_reviews))

    async def _store_icon(
        self,
        context: AssetContext,
        encoded_payload: str,
        profile: ImageProfile,
        *,
        error_code: str,
    ) -> str:
        # An empty payload clears the icon.
        if not encoded_payload:
            return ""
        with edit_span("asset.icon.transcode", category=context.category, entity_id=context.entity_id):
            return await asyncio.to_thread(
                self.transcoder.transcode,
                context,
                ICON_PREFIX,
                encoded_payload,
                profile,
                error_code=error_code,
            )
