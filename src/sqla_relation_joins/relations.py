"""Relation descriptors.

Each relation kind is a frozen dataclass tagged with a ``RelationKind``.
Descriptors are normally produced by ``get_node``: SQLAlchemy
``relationship()`` properties are converted automatically, and kinds SQLAlchemy
has no notion of (polymorphic and "through" relations) are declared on the
model with the helpers at the bottom of this module::

    class Post(Base):
        __tablename__ = "posts"
        __relations__ = {
            "attachments": morph_many("Attachment", "attachable"),
            "tags": morph_to_many("Tag", "taggable"),
        }
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

from sqlalchemy import orm

from .tools import get_primary_key


if TYPE_CHECKING:
    from .builder import ModelQuery
    from .node import Node


Constraint = Callable[["ModelQuery[Any]"], Any]


class RelationKind(str, Enum):
    BELONGS_TO = "belongs_to"
    HAS_ONE = "has_one"
    HAS_MANY = "has_many"
    BELONGS_TO_MANY = "belongs_to_many"
    HAS_ONE_THROUGH = "has_one_through"
    HAS_MANY_THROUGH = "has_many_through"
    MORPH_ONE = "morph_one"
    MORPH_MANY = "morph_many"
    MORPH_TO_MANY = "morph_to_many"
    MORPH_TO = "morph_to"


@dataclass(frozen=True, slots=True, kw_only=True)
class Relation:
    """Common part of every relation: where it is declared and what it points at.

    ``constraints`` are callbacks applied to the relation's own query, e.g.
    ``lambda q: q.where("published", True)`` for a "published posts" relation.
    """

    kind: ClassVar[RelationKind]

    name: str
    parent: type[orm.DeclarativeBase]
    related: type[orm.DeclarativeBase]
    constraints: tuple[Constraint, ...] = ()

    def get_related(self) -> type[orm.DeclarativeBase]:
        return self.related

    def get_query(self, node: Node | None = None, *, from_: str | None = None) -> ModelQuery[Any]:
        """Return the related model's query carrying only this relation's constraints.

        Global scopes are not applied here; *from_* lets the caller qualify the
        constraints against an aliased table.
        """
        from .builder import ModelQuery
        from .query import Query

        query = ModelQuery(self.related, node=node, query=Query(from_) if from_ else None)
        for constraint in self.constraints:
            query.apply_scope(constraint)

        return query


@dataclass(frozen=True, slots=True, kw_only=True)
class BelongsTo(Relation):
    """The parent holds ``foreign_key`` pointing at the related ``owner_key``."""

    kind: ClassVar[RelationKind] = RelationKind.BELONGS_TO

    foreign_key: str
    owner_key: str


@dataclass(frozen=True, slots=True, kw_only=True)
class HasOneOrMany(Relation):
    """The related model holds ``foreign_key`` pointing at the parent ``local_key``."""

    foreign_key: str
    local_key: str


@dataclass(frozen=True, slots=True, kw_only=True)
class HasOne(HasOneOrMany):
    kind: ClassVar[RelationKind] = RelationKind.HAS_ONE


@dataclass(frozen=True, slots=True, kw_only=True)
class HasMany(HasOneOrMany):
    kind: ClassVar[RelationKind] = RelationKind.HAS_MANY


@dataclass(frozen=True, slots=True, kw_only=True)
class MorphOneOrMany(HasOneOrMany):
    """A has-one/many whose related rows also record the parent's type in ``morph_type``."""

    morph_type: str
    morph_class: str


@dataclass(frozen=True, slots=True, kw_only=True)
class MorphOne(MorphOneOrMany):
    kind: ClassVar[RelationKind] = RelationKind.MORPH_ONE


@dataclass(frozen=True, slots=True, kw_only=True)
class MorphMany(MorphOneOrMany):
    kind: ClassVar[RelationKind] = RelationKind.MORPH_MANY


@dataclass(frozen=True, slots=True, kw_only=True)
class BelongsToMany(Relation):
    """Many-to-many through the pivot ``table``."""

    kind: ClassVar[RelationKind] = RelationKind.BELONGS_TO_MANY

    table: str
    foreign_pivot_key: str
    related_pivot_key: str
    parent_key: str
    related_key: str


@dataclass(frozen=True, slots=True, kw_only=True)
class MorphToMany(BelongsToMany):
    """Many-to-many whose pivot also records the parent's type in ``morph_type``."""

    kind: ClassVar[RelationKind] = RelationKind.MORPH_TO_MANY

    morph_type: str
    morph_class: str


@dataclass(frozen=True, slots=True, kw_only=True)
class HasOneOrManyThrough(Relation):
    """``parent -> through -> related``.

    ``through.first_key`` points at ``parent.local_key`` and
    ``related.second_key`` points at ``through.second_local_key``.
    """

    through: type[orm.DeclarativeBase]
    first_key: str
    second_key: str
    local_key: str
    second_local_key: str


@dataclass(frozen=True, slots=True, kw_only=True)
class HasOneThrough(HasOneOrManyThrough):
    kind: ClassVar[RelationKind] = RelationKind.HAS_ONE_THROUGH


@dataclass(frozen=True, slots=True, kw_only=True)
class HasManyThrough(HasOneOrManyThrough):
    kind: ClassVar[RelationKind] = RelationKind.HAS_MANY_THROUGH


@dataclass(frozen=True, slots=True, kw_only=True)
class MorphTo(Relation):
    """The inverse of a morph relation: the related table depends on each row's type."""

    kind: ClassVar[RelationKind] = RelationKind.MORPH_TO

    related: type[orm.DeclarativeBase] | None = None  # type: ignore[assignment]
    morph_type: str
    foreign_key: str


# declarations


def snake_case(name: str) -> str:
    """``"PostTag"`` -> ``"post_tag"``"""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def _foreign_key_for(model: type[orm.DeclarativeBase]) -> str:
    return f"{snake_case(model.__name__)}_id"


def _pk_name(model: type[orm.DeclarativeBase]) -> str:
    return get_primary_key(model).name


@dataclass(frozen=True, slots=True)
class RelationDeclaration:
    """A relation declared in ``__relations__`` before the model graph is complete.

    ``related`` and ``through`` may be class names; ``resolve`` binds them
    against the declarative registry and fills in conventional key names.
    """

    kind: RelationKind
    related: str | type[orm.DeclarativeBase] | None
    options: Mapping[str, Any] = field(default_factory=dict)

    def resolve(
        self,
        name: str,
        parent: type[orm.DeclarativeBase],
        lookup: Callable[[str | type[orm.DeclarativeBase]], type[orm.DeclarativeBase]],
    ) -> Relation:
        opts = dict(self.options)
        constraints = _as_constraints(opts.pop("constraints", ()))

        if self.kind is RelationKind.MORPH_TO:
            morph_name = opts.get("morph_name") or name
            return MorphTo(
                name=name,
                parent=parent,
                constraints=constraints,
                morph_type=opts.get("morph_type") or f"{morph_name}_type",
                foreign_key=opts.get("foreign_key") or f"{morph_name}_id",
            )

        assert self.related is not None
        related = lookup(self.related)
        common: dict[str, Any] = {
            "name": name,
            "parent": parent,
            "related": related,
            "constraints": constraints,
        }

        match self.kind:
            case RelationKind.BELONGS_TO:
                return BelongsTo(
                    **common,
                    foreign_key=opts.get("foreign_key") or f"{name}_id",
                    owner_key=opts.get("owner_key") or _pk_name(related),
                )
            case RelationKind.HAS_ONE | RelationKind.HAS_MANY:
                factory = HasOne if self.kind is RelationKind.HAS_ONE else HasMany
                return factory(
                    **common,
                    foreign_key=opts.get("foreign_key") or _foreign_key_for(parent),
                    local_key=opts.get("local_key") or _pk_name(parent),
                )
            case RelationKind.MORPH_ONE | RelationKind.MORPH_MANY:
                factory = MorphOne if self.kind is RelationKind.MORPH_ONE else MorphMany
                morph_name = opts["morph_name"]
                return factory(
                    **common,
                    foreign_key=opts.get("foreign_key") or f"{morph_name}_id",
                    local_key=opts.get("local_key") or _pk_name(parent),
                    morph_type=opts.get("morph_type") or f"{morph_name}_type",
                    morph_class=opts.get("morph_class") or morph_class_of(parent),
                )
            case RelationKind.BELONGS_TO_MANY:
                return BelongsToMany(
                    **common,
                    table=opts.get("table") or "_".join(
                        sorted((snake_case(parent.__name__), snake_case(related.__name__)))
                    ),
                    foreign_pivot_key=opts.get("foreign_pivot_key") or _foreign_key_for(parent),
                    related_pivot_key=opts.get("related_pivot_key") or _foreign_key_for(related),
                    parent_key=opts.get("parent_key") or _pk_name(parent),
                    related_key=opts.get("related_key") or _pk_name(related),
                )
            case RelationKind.MORPH_TO_MANY:
                morph_name = opts["morph_name"]
                return MorphToMany(
                    **common,
                    table=opts.get("table") or f"{morph_name}s",
                    foreign_pivot_key=opts.get("foreign_pivot_key") or f"{morph_name}_id",
                    related_pivot_key=opts.get("related_pivot_key") or _foreign_key_for(related),
                    parent_key=opts.get("parent_key") or _pk_name(parent),
                    related_key=opts.get("related_key") or _pk_name(related),
                    morph_type=opts.get("morph_type") or f"{morph_name}_type",
                    morph_class=opts.get("morph_class") or morph_class_of(parent),
                )
            case RelationKind.HAS_ONE_THROUGH | RelationKind.HAS_MANY_THROUGH:
                factory = HasOneThrough if self.kind is RelationKind.HAS_ONE_THROUGH else HasManyThrough
                through = lookup(opts["through"])
                return factory(
                    **common,
                    through=through,
                    first_key=opts.get("first_key") or _foreign_key_for(parent),
                    second_key=opts.get("second_key") or _foreign_key_for(through),
                    local_key=opts.get("local_key") or _pk_name(parent),
                    second_local_key=opts.get("second_local_key") or _pk_name(through),
                )

        raise ValueError(f"Unknown relation kind: {self.kind}")


def morph_class_of(model: type[orm.DeclarativeBase]) -> str:
    """The value stored in morph type columns for *model*.

    Defaults to the snake-cased class name; override with ``__morph_class__``.
    """
    return getattr(model, "__morph_class__", None) or snake_case(model.__name__)


def _as_constraints(value: Constraint | Sequence[Constraint]) -> tuple[Constraint, ...]:
    if callable(value):
        return (value,)

    return tuple(value)


def belongs_to(
    related: str | type[orm.DeclarativeBase],
    foreign_key: str | None = None,
    owner_key: str | None = None,
    *,
    constraints: Constraint | Sequence[Constraint] = (),
) -> RelationDeclaration:
    return RelationDeclaration(
        RelationKind.BELONGS_TO,
        related,
        {"foreign_key": foreign_key, "owner_key": owner_key, "constraints": constraints},
    )


def has_one(
    related: str | type[orm.DeclarativeBase],
    foreign_key: str | None = None,
    local_key: str | None = None,
    *,
    constraints: Constraint | Sequence[Constraint] = (),
) -> RelationDeclaration:
    return RelationDeclaration(
        RelationKind.HAS_ONE,
        related,
        {"foreign_key": foreign_key, "local_key": local_key, "constraints": constraints},
    )


def has_many(
    related: str | type[orm.DeclarativeBase],
    foreign_key: str | None = None,
    local_key: str | None = None,
    *,
    constraints: Constraint | Sequence[Constraint] = (),
) -> RelationDeclaration:
    return RelationDeclaration(
        RelationKind.HAS_MANY,
        related,
        {"foreign_key": foreign_key, "local_key": local_key, "constraints": constraints},
    )


def morph_one(
    related: str | type[orm.DeclarativeBase],
    name: str,
    morph_type: str | None = None,
    foreign_key: str | None = None,
    local_key: str | None = None,
    *,
    morph_class: str | None = None,
    constraints: Constraint | Sequence[Constraint] = (),
) -> RelationDeclaration:
    return RelationDeclaration(
        RelationKind.MORPH_ONE,
        related,
        {
            "morph_name": name,
            "morph_type": morph_type,
            "foreign_key": foreign_key,
            "local_key": local_key,
            "morph_class": morph_class,
            "constraints": constraints,
        },
    )


def morph_many(
    related: str | type[orm.DeclarativeBase],
    name: str,
    morph_type: str | None = None,
    foreign_key: str | None = None,
    local_key: str | None = None,
    *,
    morph_class: str | None = None,
    constraints: Constraint | Sequence[Constraint] = (),
) -> RelationDeclaration:
    return RelationDeclaration(
        RelationKind.MORPH_MANY,
        related,
        {
            "morph_name": name,
            "morph_type": morph_type,
            "foreign_key": foreign_key,
            "local_key": local_key,
            "morph_class": morph_class,
            "constraints": constraints,
        },
    )


def belongs_to_many(
    related: str | type[orm.DeclarativeBase],
    table: str | None = None,
    foreign_pivot_key: str | None = None,
    related_pivot_key: str | None = None,
    parent_key: str | None = None,
    related_key: str | None = None,
    *,
    constraints: Constraint | Sequence[Constraint] = (),
) -> RelationDeclaration:
    return RelationDeclaration(
        RelationKind.BELONGS_TO_MANY,
        related,
        {
            "table": table,
            "foreign_pivot_key": foreign_pivot_key,
            "related_pivot_key": related_pivot_key,
            "parent_key": parent_key,
            "related_key": related_key,
            "constraints": constraints,
        },
    )


def morph_to_many(
    related: str | type[orm.DeclarativeBase],
    name: str,
    table: str | None = None,
    foreign_pivot_key: str | None = None,
    related_pivot_key: str | None = None,
    *,
    morph_class: str | None = None,
    constraints: Constraint | Sequence[Constraint] = (),
) -> RelationDeclaration:
    return RelationDeclaration(
        RelationKind.MORPH_TO_MANY,
        related,
        {
            "morph_name": name,
            "table": table,
            "foreign_pivot_key": foreign_pivot_key,
            "related_pivot_key": related_pivot_key,
            "morph_class": morph_class,
            "constraints": constraints,
        },
    )


def has_one_through(
    related: str | type[orm.DeclarativeBase],
    through: str | type[orm.DeclarativeBase],
    first_key: str | None = None,
    second_key: str | None = None,
    local_key: str | None = None,
    second_local_key: str | None = None,
    *,
    constraints: Constraint | Sequence[Constraint] = (),
) -> RelationDeclaration:
    return RelationDeclaration(
        RelationKind.HAS_ONE_THROUGH,
        related,
        {
            "through": through,
            "first_key": first_key,
            "second_key": second_key,
            "local_key": local_key,
            "second_local_key": second_local_key,
            "constraints": constraints,
        },
    )


def has_many_through(
    related: str | type[orm.DeclarativeBase],
    through: str | type[orm.DeclarativeBase],
    first_key: str | None = None,
    second_key: str | None = None,
    local_key: str | None = None,
    second_local_key: str | None = None,
    *,
    constraints: Constraint | Sequence[Constraint] = (),
) -> RelationDeclaration:
    return RelationDeclaration(
        RelationKind.HAS_MANY_THROUGH,
        related,
        {
            "through": through,
            "first_key": first_key,
            "second_key": second_key,
            "local_key": local_key,
            "second_local_key": second_local_key,
            "constraints": constraints,
        },
    )


def morph_to(
    name: str | None = None,
    morph_type: str | None = None,
    foreign_key: str | None = None,
) -> RelationDeclaration:
    return RelationDeclaration(
        RelationKind.MORPH_TO,
        None,
        {"morph_name": name, "morph_type": morph_type, "foreign_key": foreign_key},
    )


def from_relationship_property(
    prop: orm.RelationshipProperty[Any],
) -> Relation:
    """Convert a configured SQLAlchemy ``relationship()`` into a relation descriptor.

    Only the column pairs of the join condition are used; extra criteria in a
    custom ``primaryjoin`` are not carried over (declare such relations in
    ``__relations__`` instead).
    """
    parent = prop.parent.class_
    related = prop.mapper.class_
    common: dict[str, Any] = {"name": prop.key, "parent": parent, "related": related}

    if prop.direction is orm.MANYTOONE:
        local, remote = prop.local_remote_pairs[0]
        return BelongsTo(**common, foreign_key=local.name, owner_key=remote.name)

    if prop.direction is orm.ONETOMANY:
        local, remote = prop.local_remote_pairs[0]
        factory = HasMany if prop.uselist else HasOne
        return factory(**common, foreign_key=remote.name, local_key=local.name)

    assert prop.secondary is not None
    assert prop.secondary_synchronize_pairs is not None
    parent_col, foreign_pivot = prop.synchronize_pairs[0]
    related_col, related_pivot = prop.secondary_synchronize_pairs[0]
    return BelongsToMany(
        **common,
        table=prop.secondary.name,  # type: ignore[attr-defined]
        foreign_pivot_key=foreign_pivot.name,
        related_pivot_key=related_pivot.name,
        parent_key=parent_col.name,
        related_key=related_col.name,
    )
