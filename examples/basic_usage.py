"""Basic sqla-relation-joins usage examples.

Demonstrates initialization, relationship joins, callbacks, dotted paths,
aliases and "through" joins.

NOTE: This file is illustrative and won't run standalone
without a database and seeded data.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from sqla_relation_joins import ModelQuery, get_node, init_node, new_query

from .models import Base, Post, User


# ── 1. Initialize once at startup ────────────────────────────────────

engine = create_async_engine("sqlite+aiosqlite:///:memory:")


async def setup() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Call once: builds the registry of every model's relations
    init_node(get_node(Base))


async def fetch_all(session: AsyncSession, query: ModelQuery[Any]) -> list[dict[str, Any]]:
    result = await session.execute(query.to_select())
    return [dict(row) for row in result.mappings()]


# ── 2. Simple joins ──────────────────────────────────────────────────


async def get_authors(session: AsyncSession) -> list[dict[str, Any]]:
    # SELECT users.* FROM users
    # JOIN posts ON posts.deleted_at IS NULL AND users.id = posts.author_id
    query = new_query(User).join_relation("posts")
    result = await session.execute(query.to_select().distinct())
    return [dict(row) for row in result.mappings()]


async def get_users_with_published_posts(session: AsyncSession) -> list[dict[str, Any]]:
    # the callback's predicates end up grouped in the join's ON clause
    query = new_query(User).left_join_relation(
        "posts", lambda q: q.where("published", True)
    )
    return await fetch_all(session, query)


# ── 3. Dotted paths and aliases ──────────────────────────────────────


async def get_users_with_approved_comments(session: AsyncSession) -> list[dict[str, Any]]:
    query = new_query(User).join_relation(
        "posts as p.comments as c", lambda q: q.where("approved", True)
    )
    return await fetch_all(session, query)


async def get_python_posts(session: AsyncSession) -> list[dict[str, Any]]:
    # taggables is joined first, filtered on taggable_type = 'post'
    query = new_query(Post).join_relation("tags", lambda q: q.where("name", "python"))
    return await fetch_all(session, query)


# ── 4. Through joins ─────────────────────────────────────────────────


async def get_users_with_comments_on_published_posts(session: AsyncSession) -> list[dict[str, Any]]:
    # posts is already joined, so only the comments hop is materialized
    query = (
        new_query(User)
        .join_relation("posts", lambda q: q.where("published", True))
        .join_through_relation("posts.comments")
    )
    return await fetch_all(session, query)
