from __future__ import annotations

from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from sqla_relation_joins import ModelQuery, add_conditions, new_query

from ..models import Base, Category, Country, Post, Role, User


pytestmark = pytest.mark.anyio


async def fetch(session: AsyncSession, query: ModelQuery[Any], column: str = "name") -> set[Any]:
    result = await session.execute(query.to_select())
    return {row[column] for row in result.mappings()}


class TestHasMany:
    async def test_inner_join(self, session: AsyncSession, seed_data: dict[str, list[Base]]) -> None:
        names = await fetch(session, new_query(User).join_relation("posts"))

        assert names == {"alice", "bob"}

    async def test_callback_filters_join(self, session: AsyncSession, seed_data: dict[str, list[Base]]) -> None:
        query = new_query(User).join_relation("posts", lambda q: q.where("title", "Bob Post 1"))

        assert await fetch(session, query) == {"bob"}

    async def test_left_join_keeps_unmatched_rows(
        self, session: AsyncSession, seed_data: dict[str, list[Base]]
    ) -> None:
        query = (
            new_query(User)
            .left_join_relation("posts", lambda q: q.where("title", "Bob Post 1"))
            .where_null("posts.id")
        )

        assert await fetch(session, query) == {"alice", "charlie"}

    async def test_or_in_callback_does_not_escape(
        self, session: AsyncSession, seed_data: dict[str, list[Base]]
    ) -> None:
        query = new_query(User).join_relation(
            "posts", lambda q: q.where("title", "Alice Post 1").or_where("title", "Bob Post 1")
        )

        assert await fetch(session, query) == {"alice", "bob"}

    async def test_leading_or_in_callback_does_not_escape(
        self, session: AsyncSession, seed_data: dict[str, list[Base]]
    ) -> None:
        query = new_query(User).join_relation("posts", lambda q: q.or_where("title", "Bob Post 1"))

        assert await fetch(session, query) == {"bob"}

    async def test_soft_deleted_rows_are_not_joined(
        self, session: AsyncSession, seed_data: dict[str, list[Base]]
    ) -> None:
        query = new_query(User).join_relation("posts", lambda q: q.where("title", "Alice Post 3"))

        assert await fetch(session, query) == set()

    async def test_alias(self, session: AsyncSession, seed_data: dict[str, list[Base]]) -> None:
        query = new_query(User).join_relation("posts as p", lambda q: q.where("title", "like", "Bob%"))

        assert await fetch(session, query) == {"bob"}

    async def test_add_conditions(self, session: AsyncSession, seed_data: dict[str, list[Base]]) -> None:
        query = new_query(User).join_relation(
            "posts", add_conditions(("published", False), ("title", "like", "Alice%"))
        )

        assert await fetch(session, query) == {"alice"}

    async def test_exists_in_callback(self, session: AsyncSession, seed_data: dict[str, list[Base]]) -> None:
        query = new_query(Post).join_relation(
            "author",
            lambda q: q.where_exists(
                lambda e: e.select_from("profiles").where_column("profiles.user_id", "users.id")
            ),
        )

        assert await fetch(session, query, "title") == {
            "Alice Post 1",
            "Alice Post 2",
            "Bob Post 1",
        }


class TestBelongsTo:
    async def test_join_owner(self, session: AsyncSession, seed_data: dict[str, list[Base]]) -> None:
        query = new_query(Post).join_relation("author", lambda q: q.where("name", "bob"))

        assert await fetch(session, query, "title") == {"Bob Post 1"}

    async def test_self_referential(self, session: AsyncSession, seed_data: dict[str, list[Base]]) -> None:
        query = new_query(Category).join_relation("parent", lambda q: q.where("name", "root"))

        assert await fetch(session, query) == {"child_1", "child_2"}

    async def test_self_referential_chain(self, session: AsyncSession, seed_data: dict[str, list[Base]]) -> None:
        query = new_query(Category).join_relation("parent.parent")

        assert await fetch(session, query) == {"grandchild"}


class TestManyToMany:
    async def test_belongs_to_many(self, session: AsyncSession, seed_data: dict[str, list[Base]]) -> None:
        query = new_query(User).join_relation("roles", lambda q: q.where("name", "admin"))

        assert await fetch(session, query) == {"alice"}

    async def test_related_global_scope_applies(
        self, session: AsyncSession, seed_data: dict[str, list[Base]]
    ) -> None:
        query = new_query(User).join_relation("roles", lambda q: q.where("name", "banned"))

        assert await fetch(session, query) == set()

    async def test_global_scope_with_or_keeps_link(
        self,
        session: AsyncSession,
        seed_data: dict[str, list[Base]],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setattr(
            Role, "__scopes__", (lambda q: q.where("name", "admin").or_where("name", "viewer"),)
        )
        query = new_query(User).join_relation("roles")

        assert await fetch(session, query) == {"alice", "bob"}

    async def test_morph_to_many(self, session: AsyncSession, seed_data: dict[str, list[Base]]) -> None:
        query = new_query(Post).join_relation("tags", lambda q: q.where("name", "testing"))

        assert await fetch(session, query, "title") == {"Bob Post 1"}

    async def test_morph_to_many_left(self, session: AsyncSession, seed_data: dict[str, list[Base]]) -> None:
        query = new_query(Post).left_join_relation("tags").where_null("tags.id")

        assert await fetch(session, query, "title") == set()


class TestMorph:
    async def test_morph_many(self, session: AsyncSession, seed_data: dict[str, list[Base]]) -> None:
        query = new_query(Post).join_relation("attachments")

        assert await fetch(session, query, "title") == {"Alice Post 1"}

    async def test_morph_one(self, session: AsyncSession, seed_data: dict[str, list[Base]]) -> None:
        query = new_query(User).join_relation("avatar")

        assert await fetch(session, query) == {"alice"}


class TestThroughRelations:
    async def test_has_many_through(self, session: AsyncSession, seed_data: dict[str, list[Base]]) -> None:
        query = new_query(Country).join_relation("posts")

        assert await fetch(session, query) == {"Netherlands", "Belgium"}

    async def test_has_many_through_callback(
        self, session: AsyncSession, seed_data: dict[str, list[Base]]
    ) -> None:
        query = new_query(Country).join_relation("posts", lambda q: q.where("published", False))

        assert await fetch(session, query) == {"Netherlands"}

    async def test_has_one_through(self, session: AsyncSession, seed_data: dict[str, list[Base]]) -> None:
        query = new_query(Post).join_relation("author_profile", lambda q: q.where("bio", "Bob bio"))

        assert await fetch(session, query, "title") == {"Bob Post 1"}

    async def test_relation_constraints(self, session: AsyncSession, seed_data: dict[str, list[Base]]) -> None:
        query = new_query(Post).join_relation("approved_comments")

        assert await fetch(session, query, "title") == {"Alice Post 1", "Bob Post 1"}


class TestNested:
    async def test_two_hops(self, session: AsyncSession, seed_data: dict[str, list[Base]]) -> None:
        query = new_query(User).join_relation("posts.comments", lambda q: q.where("approved", False))

        assert await fetch(session, query) == {"alice"}

    async def test_soft_deleted_intermediate_hop(
        self, session: AsyncSession, seed_data: dict[str, list[Base]]
    ) -> None:
        query = new_query(User).join_relation(
            "posts.comments", lambda q: q.where("text", "On a deleted post")
        )

        assert await fetch(session, query) == set()

    async def test_three_hops(self, session: AsyncSession, seed_data: dict[str, list[Base]]) -> None:
        query = new_query(User).join_relation("posts.comments.reactions")

        assert await fetch(session, query) == {"alice"}

    async def test_join_through_relation(self, session: AsyncSession, seed_data: dict[str, list[Base]]) -> None:
        query = (
            new_query(User)
            .join_relation("posts", lambda q: q.where("published", True))
            .join_through_relation("posts.comments", lambda q: q.where("approved", True))
        )

        assert await fetch(session, query) == {"alice", "bob"}

    async def test_related_query(self, session: AsyncSession, seed_data: dict[str, list[Base]]) -> None:
        query = new_query(User)
        posts = query.join_relation("posts", related_query=query)
        query.join_relation("comments", lambda q: q.where("text", "Nice work"), related_query=posts)

        assert await fetch(session, query) == {"bob"}
