from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy import orm

from sqla_relation_joins import SoftDeletes, morph_to_many


class Base(orm.DeclarativeBase):
    pass


taggables = sa.Table(
    "taggables",
    Base.metadata,
    sa.Column("tag_id", sa.Integer, sa.ForeignKey("tags.id"), primary_key=True),
    sa.Column("taggable_id", sa.Integer, primary_key=True),
    sa.Column("taggable_type", sa.String(50), primary_key=True),
)


class User(Base):
    __tablename__ = "users"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    name: orm.Mapped[str] = orm.mapped_column(sa.String(100))

    # relationships
    posts: orm.Mapped[list[Post]] = orm.relationship(back_populates="author", lazy="raise")


class Post(SoftDeletes, Base):
    __tablename__ = "posts"
    __relations__ = {
        "tags": morph_to_many("Tag", "taggable"),
    }

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    title: orm.Mapped[str] = orm.mapped_column(sa.String(200))
    published: orm.Mapped[bool] = orm.mapped_column(default=False)
    author_id: orm.Mapped[int] = orm.mapped_column(sa.ForeignKey("users.id"))

    # relationships
    author: orm.Mapped[User] = orm.relationship(back_populates="posts", lazy="raise")
    comments: orm.Mapped[list[Comment]] = orm.relationship(back_populates="post", lazy="raise")


class Comment(Base):
    __tablename__ = "comments"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    text: orm.Mapped[str] = orm.mapped_column(sa.Text)
    approved: orm.Mapped[bool] = orm.mapped_column(default=False)
    post_id: orm.Mapped[int] = orm.mapped_column(sa.ForeignKey("posts.id"))

    # relationships
    post: orm.Mapped[Post] = orm.relationship(back_populates="comments", lazy="raise")


class Tag(Base):
    __tablename__ = "tags"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    name: orm.Mapped[str] = orm.mapped_column(sa.String(50))
