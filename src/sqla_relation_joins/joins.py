"""Relationship joins: turn ``"posts.comments as c"`` into JOIN clauses.

For every hop of a relationship path a *join query* is built on the related
table: it starts from the related model's scoped query (global scopes and
soft deletes) and receives the relation's linking predicate.  The join
query's predicates then become the ``ON`` list of a single join clause on
the enclosing query, so the related model's own constraints filter the join
instead of being rendered as correlated sub-selects.

Flow::

    join_relation ─┬─> join_nested_relation ──(one hop per segment)──┐
                   └──────────────────────────────────────────────> _join_segment
                                                                       │
        get_relation_join_query (dispatch by RelationKind) <───────────┤
        add_join_relation_where ─> replace_nested_wheres_with_joins <──┘
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any, Final, NamedTuple

from .clauses import NestedWhere, Where
from .errors import UnsupportedRelationError
from .mixins import get_soft_delete_column
from .query import JoinClause, JoinKind, check_join_kind
from .relations import (
    BelongsTo,
    BelongsToMany,
    HasOneOrMany,
    HasOneOrManyThrough,
    MorphOneOrMany,
    MorphToMany,
    Relation,
    RelationKind,
)
from .tools import get_table_name, split_alias


if TYPE_CHECKING:
    from .builder import ModelQuery, Scope

logger = logging.getLogger(__name__)


class RelationSegment(NamedTuple):
    """One hop of a relationship path: the relation name and an optional alias."""

    name: str
    alias: str | None = None


def parse_relation_path(path: str) -> tuple[RelationSegment, ...]:
    """Split a dotted relationship path into segments.

    Each segment may carry its own ``as <alias>`` suffix, matched
    case-insensitively.  Empty segments are kept; the relation lookup
    rejects them.

    Example:
        >>> parse_relation_path("comments.author AS a")
        (RelationSegment(name='comments', alias=None), RelationSegment(name='author', alias='a'))
    """
    return tuple(RelationSegment(*split_alias(segment)) for segment in path.split("."))


# public entry point


def join_relation(
    query: ModelQuery[Any],
    relation: str,
    callback: Scope | None = None,
    kind: JoinKind = "inner",
    through: bool = False,
    related_query: ModelQuery[Any] | None = None,
) -> ModelQuery[Any]:
    """Add the join(s) for *relation* to *query*; see ``ModelQuery.join_relation``."""
    check_join_kind(kind)

    if "." in relation:
        return join_nested_relation(query, relation, callback, kind, through)

    (segment,) = parse_relation_path(relation)
    return _join_segment(query, segment, callback, kind, through, related_query)


def join_nested_relation(
    query: ModelQuery[Any],
    relations: str,
    callback: Scope | None = None,
    kind: JoinKind = "inner",
    through: bool = False,
) -> ModelQuery[Any]:
    """Join every hop of a dotted path, each against the previous hop's join query.

    The callback only applies to the last hop.  With *through*, every hop
    but the last is resolved without being joined.
    """
    segments = parse_relation_path(relations)
    related_query = query

    for position, segment in enumerate(segments, start=1):
        is_last = position == len(segments)
        related_query = _join_segment(
            query,
            segment,
            callback if is_last else None,
            kind,
            through and not is_last,
            related_query,
        )

    return query


def _join_segment(
    query: ModelQuery[Any],
    segment: RelationSegment,
    callback: Scope | None,
    kind: JoinKind,
    through: bool,
    related_query: ModelQuery[Any] | None,
) -> ModelQuery[Any]:
    context = related_query if related_query is not None else query
    relation = context.get_relation_without_constraints(segment.name)

    join_query = get_relation_join_query(relation, context, kind, segment.alias)

    if through:
        logger.debug(
            "Passing through %s.%s without joining", relation.parent.__name__, relation.name
        )
        return join_query

    if callback is not None:
        join_query.call_scope(callback)

    add_join_relation_where(query, join_query, relation, kind)
    logger.debug(
        "Joined %s.%s (%s join on %s)",
        relation.parent.__name__,
        relation.name,
        kind,
        join_query.to_base().from_,
    )

    return join_query if related_query is not None else query


# join queries per relation kind


def get_relation_join_query(
    relation: Relation,
    parent_query: ModelQuery[Any],
    kind: JoinKind = "inner",
    alias: str | None = None,
) -> ModelQuery[Any]:
    """Build the join query for one hop: the related table plus its linking predicate.

    Raises:
        UnsupportedRelationError: For morph-to relations.
    """
    return _JOIN_QUERY_BUILDERS[relation.kind](relation, parent_query, kind, alias)


def _related_query(
    relation: Relation,
    parent_query: ModelQuery[Any],
    alias: str | None,
) -> ModelQuery[Any]:
    """Scoped query on the related table.

    A relation pointing back at the parent model is aliased
    ``<parent alias>_<relation>`` unless an alias was requested.
    """
    if alias is None and relation.related is parent_query.get_model():
        alias = f"{parent_query.to_base().get_table_alias()}_{relation.name}"

    return parent_query.new_related_query(relation.related, alias)


def _belongs_to(
    relation: BelongsTo,
    parent_query: ModelQuery[Any],
    kind: JoinKind,
    alias: str | None,
) -> ModelQuery[Any]:
    query = _related_query(relation, parent_query, alias)
    return query.where_column(
        parent_query.qualify_column(relation.foreign_key),
        "=",
        query.qualify_column(relation.owner_key),
    )


def _has_one_or_many(
    relation: HasOneOrMany,
    parent_query: ModelQuery[Any],
    kind: JoinKind,
    alias: str | None,
) -> ModelQuery[Any]:
    query = _related_query(relation, parent_query, alias)
    return query.where_column(
        parent_query.qualify_column(relation.local_key),
        "=",
        query.qualify_column(relation.foreign_key),
    )


def _morph_one_or_many(
    relation: MorphOneOrMany,
    parent_query: ModelQuery[Any],
    kind: JoinKind,
    alias: str | None,
) -> ModelQuery[Any]:
    query = _has_one_or_many(relation, parent_query, kind, alias)
    return query.where(relation.morph_type, "=", relation.morph_class)


def _belongs_to_many(
    relation: BelongsToMany,
    parent_query: ModelQuery[Any],
    kind: JoinKind,
    alias: str | None,
) -> ModelQuery[Any]:
    """The pivot becomes a join of the join query, linked to the parent.

    It is merged into the enclosing query ahead of the related table, whose
    ``ON`` then links it to the pivot.
    """
    query = _related_query(relation, parent_query, alias)
    pivot = relation.table

    def on_pivot(join: JoinClause) -> None:
        join.on(
            parent_query.qualify_column(relation.parent_key),
            "=",
            f"{pivot}.{relation.foreign_pivot_key}",
        )
        if isinstance(relation, MorphToMany):
            join.where(f"{pivot}.{relation.morph_type}", "=", relation.morph_class)

    query.join(pivot, on_pivot, kind=kind)
    return query.where_column(
        query.qualify_column(relation.related_key),
        "=",
        f"{pivot}.{relation.related_pivot_key}",
    )


def _has_one_or_many_through(
    relation: HasOneOrManyThrough,
    parent_query: ModelQuery[Any],
    kind: JoinKind,
    alias: str | None,
) -> ModelQuery[Any]:
    query = _related_query(relation, parent_query, alias)
    through = get_table_name(relation.through)

    def on_through(join: JoinClause) -> None:
        join.on(
            parent_query.qualify_column(relation.local_key),
            "=",
            f"{through}.{relation.first_key}",
        )
        if (column := get_soft_delete_column(relation.through)) is not None:
            join.where_null(f"{through}.{column}")

    query.join(through, on_through, kind=kind)
    return query.where_column(
        f"{through}.{relation.second_local_key}",
        "=",
        query.qualify_column(relation.second_key),
    )


def _reject_morph_to(
    relation: Relation,
    parent_query: ModelQuery[Any],
    kind: JoinKind,
    alias: str | None,
) -> ModelQuery[Any]:
    raise UnsupportedRelationError("join_relation() does not support MorphTo relationships.")


_JOIN_QUERY_BUILDERS: Final[dict[RelationKind, Callable[..., ModelQuery[Any]]]] = {
    RelationKind.BELONGS_TO: _belongs_to,
    RelationKind.HAS_ONE: _has_one_or_many,
    RelationKind.HAS_MANY: _has_one_or_many,
    RelationKind.MORPH_ONE: _morph_one_or_many,
    RelationKind.MORPH_MANY: _morph_one_or_many,
    RelationKind.BELONGS_TO_MANY: _belongs_to_many,
    RelationKind.MORPH_TO_MANY: _belongs_to_many,
    RelationKind.HAS_ONE_THROUGH: _has_one_or_many_through,
    RelationKind.HAS_MANY_THROUGH: _has_one_or_many_through,
    RelationKind.MORPH_TO: _reject_morph_to,
}


# merging a join query into the enclosing query


def add_join_relation_where(
    query: ModelQuery[Any],
    join_query: ModelQuery[Any],
    relation: Relation,
    kind: JoinKind,
) -> ModelQuery[Any]:
    """Merge *join_query* into *query* as one join clause.

    The relation's own constraints are merged into the join query first.
    Joins the join query carries (pivot or through tables) are added to
    *query* before the new clause, which references them.
    """
    base_join_query = join_query.to_base()
    if base_join_query.from_ is None:
        raise ValueError(f"Join query for relation {relation.name!r} has no FROM table")

    join_query.merge_constraints_from(
        relation.get_query(join_query.node, from_=base_join_query.from_)
    )

    if base_join_query.joins:
        logger.debug("Merging %d nested join(s) of %s", len(base_join_query.joins), relation.name)
        query.to_base().merge_joins(base_join_query.joins, base_join_query.bindings["join"])

    wheres = replace_nested_wheres_with_joins(base_join_query.wheres)
    where_bindings = base_join_query.bindings["where"]

    query.to_base().join(
        base_join_query.from_,
        lambda join: join.merge_wheres(wheres, where_bindings),
        kind=kind,
    )

    return query


def replace_nested_wheres_with_joins(wheres: Sequence[Where]) -> list[Where]:
    """Return *wheres* with every nested query group turned into a join clause group.

    Groups already wrapping a ``JoinClause`` and ``EXISTS`` tests are returned
    as they are, so rewriting twice changes nothing.  The input is not mutated.
    """
    return [_replace_nested_where(where) for where in wheres]


def _replace_nested_where(where: Where) -> Where:
    if not isinstance(where, NestedWhere) or isinstance(where.query, JoinClause):
        return where

    nested = where.query
    join = JoinClause(nested.from_)
    join.merge_wheres(
        replace_nested_wheres_with_joins(nested.wheres),
        list(nested.bindings["where"]),
    )

    return dataclasses.replace(where, query=join)
