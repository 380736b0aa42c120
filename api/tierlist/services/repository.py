from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from functools import lru_cache

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from tierlist.core.config import get_settings
from tierlist.core.limits import get_edit_limits
from tierlist.services.content import (
    EvaluationParameter,
    Paragraph,
    ReviewFactor,
    ReviewSnapshot,
    Section,
    TierSnapshot,
    UserSnapshot,
    factors_from_json,
    factors_to_json,
    paragraphs_from_json,
    paragraphs_to_json,
    parameters_from_json,
    parameters_to_json,
    sections_from_json,
    sections_to_json,
)
from tierlist.services.ids import make_random_code
from tierlist.services.remap import remap_factors

ENTITY_ID_SIZE = 16


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when an operation races another write or violates a constraint."""


class RepositoryForbiddenError(RepositoryError):
    """Raised when an operation is not permitted for the actor."""


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""


class PostgresRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
        id_retry_count: int = 3,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.id_retry_count = max(1, id_retry_count)
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def get_tier(self, tier_id: str) -> TierSnapshot:
        pool = await self._get_pool()
        row = await self._fetch_tier_row(conn=pool, tier_id=tier_id)
        if not row:
            raise RepositoryNotFoundError("tier not found")
        return self._tier_row_to_snapshot(row)

    async def list_tier_reviews(self, tier_id: str, limit: int) -> list[ReviewSnapshot]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            """
            select
              review_id,
              user_id,
              tier_id,
              title,
              name,
              icon_url,
              review_factors,
              sections,
              created_at,
              updated_at
            from reviews
            where tier_id = $1
            order by updated_at desc
            limit $2
            """,
            tier_id,
            limit,
        )
        return [self._review_row_to_snapshot(row) for row in rows]

    async def get_review(self, review_id: str) -> ReviewSnapshot:
        pool = await self._get_pool()
        row = await self._fetch_review_row(conn=pool, review_id=review_id)
        if not row:
            raise RepositoryNotFoundError("review not found")
        return self._review_row_to_snapshot(row)

    async def allocate_tier_id(self, user_id: str) -> str:
        return await self._allocate_id(table="tiers", column="tier_id", seed=user_id)

    async def allocate_review_id(self, user_id: str, tier_id: str) -> str:
        return await self._allocate_id(table="reviews", column="review_id", seed=user_id + tier_id)

    async def insert_tier(
        self,
        *,
        tier_id: str,
        user_id: str,
        name: str,
        image_url: str,
        paragraphs: Sequence[Paragraph],
        point_type: str,
        evaluation_parameters: Sequence[EvaluationParameter],
        pulling_up: int,
        pulling_down: int,
        ip_address: str | None = None,
    ) -> None:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(
                        """
                        insert into tiers (
                          tier_id,
                          user_id,
                          name,
                          image_url,
                          paragraphs,
                          point_type,
                          evaluation_parameters,
                          pulling_up,
                          pulling_down
                        )
                        values ($1, $2, $3, $4, $5::jsonb, $6, $7::jsonb, $8, $9)
                        """,
                        tier_id,
                        user_id,
                        name,
                        image_url,
                        paragraphs_to_json(paragraphs),
                        point_type,
                        parameters_to_json(evaluation_parameters),
                        pulling_up,
                        pulling_down,
                    )
                    await self._write_operation_log(
                        conn=conn,
                        user_id=user_id,
                        ip_address=ip_address,
                        operation="create_tier",
                        content=f"create tier({tier_id})",
                    )
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryConflictError("tier id already exists") from exc

    async def commit_tier_edit(
        self,
        *,
        tier_id: str,
        user_id: str,
        expected_updated_at: datetime | None,
        name: str,
        image_url: str,
        paragraphs: Sequence[Paragraph],
        point_type: str,
        evaluation_parameters: Sequence[EvaluationParameter],
        factor_sources: Sequence[int],
        pulling_up: int,
        pulling_down: int,
        ip_address: str | None = None,
    ) -> int:
        """Remap every review of the tier and update the tier row in one transaction.

        Returns the number of reviews whose factors were rewritten.
        """
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                await self._lock_for_update(
                    conn=conn,
                    table="tiers",
                    column="tier_id",
                    entity_id=tier_id,
                    expected_updated_at=expected_updated_at,
                    label="tier",
                )

                review_rows = await conn.fetch(
                    """
                    select review_id, review_factors
                    from reviews
                    where tier_id = $1
                    order by review_id
                    for update
                    """,
                    tier_id,
                )
                for review_row in review_rows:
                    factors = remap_factors(factor_sources, factors_from_json(review_row["review_factors"]))
                    await conn.execute(
                        """
                        update reviews
                        set review_factors = $2::jsonb
                        where review_id = $1
                        """,
                        review_row["review_id"],
                        factors_to_json(factors),
                    )

                await conn.execute(
                    """
                    update tiers
                    set
                      name = $2,
                      image_url = $3,
                      paragraphs = $4::jsonb,
                      point_type = $5,
                      evaluation_parameters = $6::jsonb,
                      pulling_up = $7,
                      pulling_down = $8,
                      updated_at = now()
                    where tier_id = $1
                    """,
                    tier_id,
                    name,
                    image_url,
                    paragraphs_to_json(paragraphs),
                    point_type,
                    parameters_to_json(evaluation_parameters),
                    pulling_up,
                    pulling_down,
                )
                await self._write_operation_log(
                    conn=conn,
                    user_id=user_id,
                    ip_address=ip_address,
                    operation="update_tier",
                    content=f"update tier({tier_id})",
                )
                return len(review_rows)

    async def delete_tier(
        self,
        *,
        tier_id: str,
        user_id: str,
        ip_address: str | None = None,
    ) -> list[tuple[str, str]]:
        """Delete the tier and its reviews; returns ``(review_id, owner_id)`` of every deleted review."""
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                await self._lock_for_update(
                    conn=conn,
                    table="tiers",
                    column="tier_id",
                    entity_id=tier_id,
                    expected_updated_at=None,
                    label="tier",
                )
                rows = await conn.fetch(
                    "delete from reviews where tier_id = $1 returning review_id, user_id",
                    tier_id,
                )
                await conn.execute("delete from tiers where tier_id = $1", tier_id)
                await self._write_operation_log(
                    conn=conn,
                    user_id=user_id,
                    ip_address=ip_address,
                    operation="delete_tier",
                    content=f"delete tier({tier_id})",
                )
                return [(row["review_id"], row["user_id"]) for row in rows]

    async def insert_review(
        self,
        *,
        review_id: str,
        user_id: str,
        tier_id: str,
        title: str,
        name: str,
        icon_url: str,
        review_factors: Sequence[ReviewFactor],
        sections: Sequence[Section],
        max_reviews_per_tier: int,
        expected_tier_updated_at: datetime | None = None,
        ip_address: str | None = None,
    ) -> None:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    tier_row = await conn.fetchrow(
                        """
                        select evaluation_parameters, updated_at
                        from tiers
                        where tier_id = $1
                        for share
                        """,
                        tier_id,
                    )
                    if not tier_row:
                        raise RepositoryNotFoundError("tier not found")
                    self._check_tier_schema(tier_row, expected_tier_updated_at, len(review_factors))
                    count = await conn.fetchval("select count(*) from reviews where tier_id = $1", tier_id)
                    if int(count or 0) >= max_reviews_per_tier:
                        raise RepositoryValidationError(
                            f"a tier can hold at most {max_reviews_per_tier} reviews",
                        )

                    await conn.execute(
                        """
                        insert into reviews (
                          review_id,
                          user_id,
                          tier_id,
                          title,
                          name,
                          icon_url,
                          review_factors,
                          sections
                        )
                        values ($1, $2, $3, $4, $5, $6, $7::jsonb, $8::jsonb)
                        """,
                        review_id,
                        user_id,
                        tier_id,
                        title,
                        name,
                        icon_url,
                        factors_to_json(review_factors),
                        sections_to_json(sections),
                    )
                    await self._write_operation_log(
                        conn=conn,
                        user_id=user_id,
                        ip_address=ip_address,
                        operation="create_review",
                        content=f"create review({review_id})",
                    )
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryConflictError("review id already exists") from exc

    async def commit_review_edit(
        self,
        *,
        review_id: str,
        user_id: str,
        expected_updated_at: datetime | None,
        expected_tier_updated_at: datetime | None = None,
        title: str,
        name: str,
        icon_url: str,
        review_factors: Sequence[ReviewFactor],
        sections: Sequence[Section],
        ip_address: str | None = None,
    ) -> None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                tier_id = await conn.fetchval("select tier_id from reviews where review_id = $1", review_id)
                if tier_id is None:
                    raise RepositoryNotFoundError("review not found")
                # Tier before review, the same order tier edits lock in.
                tier_row = await conn.fetchrow(
                    """
                    select evaluation_parameters, updated_at
                    from tiers
                    where tier_id = $1
                    for share
                    """,
                    tier_id,
                )
                if not tier_row:
                    raise RepositoryNotFoundError("tier not found")
                await self._lock_for_update(
                    conn=conn,
                    table="reviews",
                    column="review_id",
                    entity_id=review_id,
                    expected_updated_at=expected_updated_at,
                    label="review",
                )
                self._check_tier_schema(tier_row, expected_tier_updated_at, len(review_factors))

                await conn.execute(
                    """
                    update reviews
                    set
                      title = $2,
                      name = $3,
                      icon_url = $4,
                      review_factors = $5::jsonb,
                      sections = $6::jsonb,
                      updated_at = now()
                    where review_id = $1
                    """,
                    review_id,
                    title,
                    name,
                    icon_url,
                    factors_to_json(review_factors),
                    sections_to_json(sections),
                )
                await self._write_operation_log(
                    conn=conn,
                    user_id=user_id,
                    ip_address=ip_address,
                    operation="update_review",
                    content=f"update review({review_id})",
                )

    async def delete_review(self, *, review_id: str, user_id: str, ip_address: str | None = None) -> None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                deleted = await conn.fetchval(
                    "delete from reviews where review_id = $1 returning review_id",
                    review_id,
                )
                if not deleted:
                    raise RepositoryNotFoundError("review not found")
                await self._write_operation_log(
                    conn=conn,
                    user_id=user_id,
                    ip_address=ip_address,
                    operation="delete_review",
                    content=f"delete review({review_id})",
                )

    async def get_user(self, user_id: str) -> UserSnapshot:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            select user_id, name, profile, icon_url, created_at, updated_at
            from users
            where user_id = $1
            """,
            user_id,
        )
        if not row:
            raise RepositoryNotFoundError("user not found")
        return self._user_row_to_snapshot(row)

    async def insert_user(
        self,
        *,
        user_id: str,
        name: str,
        profile: str,
        icon_url: str,
        ip_address: str | None = None,
    ) -> None:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(
                        """
                        insert into users (user_id, name, profile, icon_url)
                        values ($1, $2, $3, $4)
                        """,
                        user_id,
                        name,
                        profile,
                        icon_url,
                    )
                    await self._write_operation_log(
                        conn=conn,
                        user_id=user_id,
                        ip_address=ip_address,
                        operation="create_user",
                        content=f"create user({user_id})",
                    )
        except pg_exc.UniqueViolationError as exc:
            raise RepositoryConflictError("user profile already exists") from exc

    async def commit_user_edit(
        self,
        *,
        user_id: str,
        expected_updated_at: datetime | None,
        name: str,
        profile: str,
        icon_url: str,
        ip_address: str | None = None,
    ) -> None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                await self._lock_for_update(
                    conn=conn,
                    table="users",
                    column="user_id",
                    entity_id=user_id,
                    expected_updated_at=expected_updated_at,
                    label="user",
                )
                await conn.execute(
                    """
                    update users
                    set name = $2, profile = $3, icon_url = $4, updated_at = now()
                    where user_id = $1
                    """,
                    user_id,
                    name,
                    profile,
                    icon_url,
                )
                await self._write_operation_log(
                    conn=conn,
                    user_id=user_id,
                    ip_address=ip_address,
                    operation="update_user",
                    content=f"update user({user_id})",
                )

    async def delete_user(self, *, user_id: str, ip_address: str | None = None) -> list[tuple[str, str]]:
        """Delete the user with their tiers and reviews.

        Returns ``(review_id, owner_id)`` of reviews other users had written on
        the deleted tiers, whose folders live under those owners.
        """
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                await self._lock_for_update(
                    conn=conn,
                    table="users",
                    column="user_id",
                    entity_id=user_id,
                    expected_updated_at=None,
                    label="user",
                )
                tier_ids = [
                    row["tier_id"]
                    for row in await conn.fetch(
                        "select tier_id from tiers where user_id = $1 order by tier_id for update",
                        user_id,
                    )
                ]
                rows = await conn.fetch(
                    """
                    delete from reviews
                    where tier_id = any($1::text[]) or user_id = $2
                    returning review_id, user_id
                    """,
                    tier_ids,
                    user_id,
                )
                await conn.execute("delete from tiers where user_id = $1", user_id)
                await conn.execute("delete from users where user_id = $1", user_id)
                await self._write_operation_log(
                    conn=conn,
                    user_id=user_id,
                    ip_address=ip_address,
                    operation="delete_user",
                    content=f"delete user({user_id}) tiers={len(tier_ids)} reviews={len(rows)}",
                )
                return [(row["review_id"], row["user_id"]) for row in rows if row["user_id"] != user_id]

    async def _allocate_id(self, *, table: str, column: str, seed: str) -> str:
        pool = await self._get_pool()
        for _ in range(self.id_retry_count):
            candidate = make_random_code(ENTITY_ID_SIZE, seed)
            exists = await pool.fetchval(f"select 1 from {table} where {column} = $1", candidate)
            if not exists:
                return candidate
        raise RepositoryConflictError(f"failed to allocate a new {column}")

    async def _lock_for_update(
        self,
        *,
        conn: asyncpg.Connection,
        table: str,
        column: str,
        entity_id: str,
        expected_updated_at: datetime | None,
        label: str,
    ) -> None:
        row = await conn.fetchrow(
            f"""
            select updated_at
            from {table}
            where {column} = $1
            for update
            """,
            entity_id,
        )
        if not row:
            raise RepositoryNotFoundError(f"{label} not found")
        if expected_updated_at is not None and row["updated_at"] != expected_updated_at:
            raise RepositoryConflictError(f"{label} was modified by another request")

    @staticmethod
    def _check_tier_schema(
        tier_row: asyncpg.Record,
        expected_updated_at: datetime | None,
        factor_count: int,
    ) -> None:
        # Review factors were validated against this version of the tier schema.
        if expected_updated_at is not None and tier_row["updated_at"] != expected_updated_at:
            raise RepositoryConflictError("tier was modified during the edit")
        if len(parameters_from_json(tier_row["evaluation_parameters"])) != factor_count:
            raise RepositoryConflictError("tier evaluation parameters changed during the edit")

    async def _write_operation_log(
        self,
        *,
        conn: asyncpg.Connection,
        user_id: str,
        ip_address: str | None,
        operation: str,
        content: str,
    ) -> None:
        await conn.execute(
            """
            insert into operation_logs (user_id, ip_address, operation, content)
            values ($1, coalesce($2, '0.0.0.0'), $3, $4)
            """,
            user_id,
            ip_address,
            operation,
            content,
        )

    async def _fetch_tier_row(
        self,
        *,
        conn: asyncpg.Connection | asyncpg.Pool,
        tier_id: str,
    ) -> asyncpg.Record | None:
        return await conn.fetchrow(
            """
            select
              tier_id,
              user_id,
              name,
              image_url,
              paragraphs,
              point_type,
              evaluation_parameters,
              pulling_up,
              pulling_down,
              created_at,
              updated_at
            from tiers
            where tier_id = $1
            """,
            tier_id,
        )

    async def _fetch_review_row(
        self,
        *,
        conn: asyncpg.Connection | asyncpg.Pool,
        review_id: str,
    ) -> asyncpg.Record | None:
        return await conn.fetchrow(
            """
            select
              review_id,
              user_id,
              tier_id,
              title,
              name,
              icon_url,
              review_factors,
              sections,
              created_at,
              updated_at
            from reviews
            where review_id = $1
            """,
            review_id,
        )

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("TL_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _tier_row_to_snapshot(row: asyncpg.Record) -> TierSnapshot:
        return TierSnapshot(
            tier_id=row["tier_id"],
            user_id=row["user_id"],
            name=row["name"],
            image_url=row["image_url"] or "",
            paragraphs=paragraphs_from_json(row["paragraphs"]),
            point_type=row["point_type"],
            evaluation_parameters=parameters_from_json(row["evaluation_parameters"]),
            pulling_up=int(row["pulling_up"] or 0),
            pulling_down=int(row["pulling_down"] or 0),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _review_row_to_snapshot(row: asyncpg.Record) -> ReviewSnapshot:
        return ReviewSnapshot(
            review_id=row["review_id"],
            user_id=row["user_id"],
            tier_id=row["tier_id"],
            title=row["title"],
            name=row["name"],
            icon_url=row["icon_url"] or "",
            review_factors=factors_from_json(row["review_factors"]),
            sections=sections_from_json(row["sections"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


    @staticmethod
    def _user_row_to_snapshot(row: asyncpg.Record) -> UserSnapshot:
        return UserSnapshot(
            user_id=row["user_id"],
            name=row["name"],
            profile=row["profile"],
            icon_url=row["icon_url"] or "",
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
        id_retry_count=get_edit_limits().id_retry_count,
    )
