from __future__ import annotations

import sys
from collections.abc import Callable, Iterable
from typing import Any, Generic, TypeVar


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

import sqlalchemy as sa
from sqlalchemy import orm

from . import joins
from .clauses import Boolean, NestedWhere, where_bindings
from .mixins import get_soft_delete_column
from .node import Node
from .query import DEFAULT_JOIN_KIND, JoinClause, JoinKind, Query
from .relations import Relation
from .tools import get_table_name, qualify


T = TypeVar("T", bound=orm.DeclarativeBase)

Scope = Callable[["ModelQuery[Any]"], Any]


class ModelQuery(Generic[T]):
    """A ``Query`` bound to a model, able to resolve and join the model's relations.

    Column names passed to the ``where*`` helpers are qualified with the
    query's table (or alias) unless they already contain a dot.

    Example:
        >>> query = new_query(User).left_join_relation(
        ...     "posts.comments", lambda q: q.where("approved", True)
        ... )
        >>> session.execute(query.to_select())
    """

    __slots__ = ("model", "node", "query")

    def __init__(
        self,
        model: type[T],
        node: Node | None = None,
        query: Query | None = None,
    ) -> None:
        if orm.DeclarativeBase in getattr(model, "__bases__", ()) or model is orm.DeclarativeBase:
            raise TypeError("model must not be orm.DeclarativeBase")

        self.model = model
        self.node = node if node is not None else Node()
        self.query = query if query is not None else Query(get_table_name(model))

    def __repr__(self) -> str:
        return f"<ModelQuery {self.model.__name__} {self.query!r}>"

    def to_base(self) -> Query:
        return self.query

    def get_model(self) -> type[T]:
        return self.model

    def alias(self, alias: str) -> Self:
        """Select from the model's table under *alias*."""
        self.query.select_from(get_table_name(self.model), alias)
        return self

    def qualify_column(self, column: str) -> str:
        return qualify(self.query.get_table_alias(), column)

    def new_related_query(self, model: type[orm.DeclarativeBase], alias: str | None = None) -> ModelQuery[Any]:
        """Start a scoped query for *model* sharing this query's relation registry."""
        return new_query(model, self.node, alias=alias)

    def get_relation_without_constraints(self, name: str) -> Relation:
        """Look up the relation *name* on this query's model.

        Only the relation descriptor is returned; nothing is added to any query.

        Raises:
            RelationNotFoundError: If the model declares no such relation.
        """
        return self.node.get_relation(self.model, name)

    # where clauses

    def where(
        self,
        column: str | Scope,
        operator: Any = None,
        value: Any = None,
        boolean: Boolean = "and",
    ) -> Self:
        if callable(column):
            return self.where_nested(column, boolean)

        self.query.where(self.qualify_column(column), operator, value, boolean)
        return self

    def or_where(self, column: str | Scope, operator: Any = None, value: Any = None) -> Self:
        return self.where(column, operator, value, "or")

    def where_column(self, first: str, operator: str, second: str | None = None, boolean: Boolean = "and") -> Self:
        self.query.where_column(first, operator, second, boolean)
        return self

    def where_null(self, column: str, boolean: Boolean = "and", *, negated: bool = False) -> Self:
        self.query.where_null(self.qualify_column(column), boolean, negated=negated)
        return self

    def where_not_null(self, column: str, boolean: Boolean = "and") -> Self:
        return self.where_null(column, boolean, negated=True)

    def where_in(self, column: str, values: Iterable[Any], boolean: Boolean = "and", *, negated: bool = False) -> Self:
        self.query.where_in(self.qualify_column(column), values, boolean, negated=negated)
        return self

    def where_not_in(self, column: str, values: Iterable[Any], boolean: Boolean = "and") -> Self:
        return self.where_in(column, values, boolean, negated=True)

    def where_nested(self, callback: Scope, boolean: Boolean = "and", *, negated: bool = False) -> Self:
        nested = ModelQuery(self.model, self.node, self.query.for_nested_where())
        callback(nested)
        self.query.add_nested_where_query(nested.query, boolean, negated=negated)
        return self

    def where_exists(
        self,
        callback: Callable[[Query], Any] | Query,
        boolean: Boolean = "and",
        *,
        negated: bool = False,
    ) -> Self:
        self.query.where_exists(callback, boolean, negated=negated)
        return self

    def where_not_exists(self, callback: Callable[[Query], Any] | Query, boolean: Boolean = "and") -> Self:
        return self.where_exists(callback, boolean, negated=True)

    def join(
        self,
        table: str,
        first: str | Callable[[JoinClause], Any] | None = None,
        operator: str | None = None,
        second: str | None = None,
        kind: JoinKind = DEFAULT_JOIN_KIND,
    ) -> Self:
        self.query.join(table, first, operator, second, kind)
        return self

    # scopes

    def call_scope(self, scope: Scope, *args: Any, **kwargs: Any) -> Self:
        """Call *scope* on this query, grouping the predicates it adds.

        Whatever the scope adds to ``wheres`` is moved into one parenthesised
        group joined with ``and``, so an ``or_where`` inside the scope (even
        a leading one) cannot escape into the conditions already present.
        """
        original_count = len(self.query.wheres)
        scope(self, *args, **kwargs)

        if len(self.query.wheres) > original_count:
            self._add_new_wheres_within_group(original_count)

        return self

    def apply_scope(self, scope: Scope) -> Self:
        """Call a global scope or relation constraint on this query.

        Its predicates stay flat unless one of them is joined with ``or``;
        then they are grouped the way ``call_scope`` groups them.
        """
        original_count = len(self.query.wheres)
        scope(self)

        if any(where.boolean == "or" for where in self.query.wheres[original_count:]):
            self._add_new_wheres_within_group(original_count)

        return self

    def _add_new_wheres_within_group(self, original_count: int) -> None:
        added = self.query.wheres[original_count:]
        added_bindings = where_bindings(added)

        del self.query.wheres[original_count:]
        if added_bindings:
            del self.query.bindings["where"][-len(added_bindings):]

        group = self.query.for_nested_where()
        group.merge_wheres(added, added_bindings)
        self.query.add_where(NestedWhere(group, "and"))

    def apply_scopes(self) -> Self:
        """Apply the model's global scopes: the soft-delete filter, then ``__scopes__``."""
        if (column := get_soft_delete_column(self.model)) is not None:
            self.where_null(column)

        for scope in getattr(self.model, "__scopes__", ()):
            self.apply_scope(scope)

        return self

    def merge_constraints_from(self, other: ModelQuery[Any]) -> Self:
        """Copy the where predicates (and their bindings) of *other* onto this query."""
        base = other.to_base()
        self.query.merge_wheres(base.wheres, base.bindings["where"])
        return self

    # relationship joins

    def join_relation(
        self,
        relation: str,
        callback: Scope | None = None,
        kind: JoinKind = DEFAULT_JOIN_KIND,
        through: bool = False,
        related_query: ModelQuery[Any] | None = None,
    ) -> ModelQuery[Any]:
        """Join a relationship path such as ``"posts.comments as c"``.

        Args:
            relation: Relation name or dotted path; any segment may carry
                ``as <alias>``.
            callback: Scope applied to the final hop's join query; the
                predicates it adds end up grouped in the join's ``ON``.
            kind: ``"inner"``, ``"left"``, ``"right"`` or ``"cross"``.
            through: Resolve the hop (or, for a dotted path, the intermediate
                hops) without adding a join.
            related_query: Resolve the relation against this hop's join query
                instead of ``self`` and return the new join query.

        Returns:
            ``self``, or the hop's join query when *related_query* is given or
            a single hop is resolved with *through*.

        Raises:
            UnsupportedRelationError: If a hop is a morph-to relation.
            RelationNotFoundError: If a segment names no relation.
        """
        return joins.join_relation(self, relation, callback, kind, through, related_query)

    def left_join_relation(self, relation: str, callback: Scope | None = None, through: bool = False) -> ModelQuery[Any]:
        return self.join_relation(relation, callback, "left", through)

    def right_join_relation(self, relation: str, callback: Scope | None = None, through: bool = False) -> ModelQuery[Any]:
        return self.join_relation(relation, callback, "right", through)

    def cross_join_relation(self, relation: str, callback: Scope | None = None, through: bool = False) -> ModelQuery[Any]:
        return self.join_relation(relation, callback, "cross", through)

    def join_through_relation(
        self,
        relation: str,
        callback: Scope | None = None,
        kind: JoinKind = DEFAULT_JOIN_KIND,
    ) -> ModelQuery[Any]:
        """Join the last hop of *relation*, passing through the ones before it.

        The intermediate tables are expected to be joined already.
        """
        return self.join_relation(relation, callback, kind, True)

    def left_join_through_relation(self, relation: str, callback: Scope | None = None) -> ModelQuery[Any]:
        return self.join_relation(relation, callback, "left", True)

    def right_join_through_relation(self, relation: str, callback: Scope | None = None) -> ModelQuery[Any]:
        return self.join_relation(relation, callback, "right", True)

    def cross_join_through_relation(self, relation: str, callback: Scope | None = None) -> ModelQuery[Any]:
        return self.join_relation(relation, callback, "cross", True)

    # rendering

    def to_select(self) -> sa.Select[Any]:
        return self.query.to_select()

    def get_bindings(self) -> list[Any]:
        return self.query.get_bindings()


def new_query(
    model: type[T],
    node: Node | None = None,
    *,
    alias: str | None = None,
) -> ModelQuery[T]:
    """Start a query for *model* with its global scopes applied.

    Pass *alias* to select from the model's table under another name; the
    scopes are qualified with the alias.
    """
    query = ModelQuery(model, node)
    if alias:
        query.alias(alias)

    return query.apply_scopes()
