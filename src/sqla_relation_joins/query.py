"""Mutable query representation and its rendering to SQLAlchemy Core.

``Query`` stores the pieces a relationship join manipulates directly: the
``from_`` table expression (``"posts"`` or ``"posts as p"``), the ordered
``wheres`` predicate tree, the ordered ``joins`` and the flat ``bindings``
lists.  ``to_select()`` turns it into a ``sa.Select`` that can be compiled
or executed by any SQLAlchemy engine or session.
"""

from __future__ import annotations

import itertools
import sys
from collections.abc import Callable, Iterable, Sequence
from typing import Any, Final, Literal

import sqlalchemy as sa
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql import operators
from sqlalchemy.sql.elements import Grouping, UnaryExpression
from sqlalchemy.sql.expression import Join
from sqlalchemy.sql.visitors import InternalTraversal


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

from .clauses import (
    OPERATORS,
    BasicWhere,
    Boolean,
    ColumnWhere,
    ExistsWhere,
    InWhere,
    NestedWhere,
    NullWhere,
    Where,
    where_bindings,
)
from .tools import split_alias


JoinKind = Literal["inner", "left", "right", "cross"]
BindingType = Literal["join", "where"]

JOIN_KINDS: Final[frozenset[str]] = frozenset({"inner", "left", "right", "cross"})
DEFAULT_JOIN_KIND: Final[JoinKind] = "inner"


def check_join_kind(kind: str) -> None:
    if kind not in JOIN_KINDS:
        raise ValueError(f"Unknown join kind: {kind!r}. Expected one of {sorted(JOIN_KINDS)}")


class Query:
    """A minimal, mutable SELECT description: FROM, JOINs, WHEREs and bindings."""

    __slots__ = ("bindings", "from_", "joins", "wheres")

    def __init__(self, from_: str | None = None) -> None:
        self.from_ = from_
        self.wheres: list[Where] = []
        self.joins: list[JoinClause] = []
        self.bindings: dict[BindingType, list[Any]] = {"join": [], "where": []}

    def __repr__(self) -> str:
        return f"<{type(self).__name__} from={self.from_!r} wheres={len(self.wheres)} joins={len(self.joins)}>"

    def new_query(self) -> Query:
        """Create an empty query of the same flavour."""
        return Query()

    def for_nested_where(self) -> Query:
        """Create an empty query sharing this query's table, used for ``(...)`` groups."""
        query = self.new_query()
        query.from_ = self.from_
        return query

    def select_from(self, table: str, alias: str | None = None) -> Self:
        self.from_ = f"{table} as {alias}" if alias else table
        return self

    def get_table(self) -> str:
        if self.from_ is None:
            raise ValueError("Query has no FROM table")

        return split_alias(self.from_)[0]

    def get_table_alias(self) -> str:
        """Return the name columns of the FROM table are qualified with."""
        if self.from_ is None:
            raise ValueError("Query has no FROM table")

        table, alias = split_alias(self.from_)
        return alias or table

    # where clauses

    def add_where(self, where: Where) -> Self:
        self.wheres.append(where)
        self.add_binding(where_bindings((where,)), "where")
        return self

    def where(
        self,
        column: str | Callable[[Query], Any],
        operator: Any = None,
        value: Any = None,
        boolean: Boolean = "and",
    ) -> Self:
        """Add a basic where clause.

        ``where("name", "alice")`` is shorthand for ``where("name", "=", "alice")``;
        a ``None`` value becomes ``IS NULL`` (``IS NOT NULL`` for ``!=``/``<>``).
        A callable *column* adds a parenthesised group instead.
        """
        if callable(column):
            return self.where_nested(column, boolean)

        if value is None and not (isinstance(operator, str) and operator.lower() in OPERATORS):
            operator, value = "=", operator

        if value is None:
            return self.where_null(column, boolean, negated=operator in ("!=", "<>"))

        if not isinstance(operator, str) or operator.lower() not in OPERATORS:
            raise ValueError(f"Invalid operator: {operator}")

        return self.add_where(BasicWhere(column, operator.lower(), value, boolean))

    def or_where(
        self,
        column: str | Callable[[Query], Any],
        operator: Any = None,
        value: Any = None,
    ) -> Self:
        return self.where(column, operator, value, "or")

    def where_column(
        self,
        first: str,
        operator: str,
        second: str | None = None,
        boolean: Boolean = "and",
    ) -> Self:
        """Compare two columns; ``where_column(a, b)`` means ``a = b``."""
        if second is None:
            operator, second = "=", operator

        if operator.lower() not in OPERATORS:
            raise ValueError(f"Invalid operator: {operator}")

        return self.add_where(ColumnWhere(first, operator.lower(), second, boolean))

    def or_where_column(self, first: str, operator: str, second: str | None = None) -> Self:
        return self.where_column(first, operator, second, "or")

    def where_null(self, column: str, boolean: Boolean = "and", *, negated: bool = False) -> Self:
        return self.add_where(NullWhere(column, boolean, negated))

    def where_not_null(self, column: str, boolean: Boolean = "and") -> Self:
        return self.where_null(column, boolean, negated=True)

    def where_in(
        self,
        column: str,
        values: Iterable[Any],
        boolean: Boolean = "and",
        *,
        negated: bool = False,
    ) -> Self:
        return self.add_where(InWhere(column, tuple(values), boolean, negated))

    def where_not_in(self, column: str, values: Iterable[Any], boolean: Boolean = "and") -> Self:
        return self.where_in(column, values, boolean, negated=True)

    def where_nested(
        self,
        callback: Callable[[Query], Any],
        boolean: Boolean = "and",
        *,
        negated: bool = False,
    ) -> Self:
        query = self.for_nested_where()
        callback(query)
        return self.add_nested_where_query(query, boolean, negated=negated)

    def add_nested_where_query(
        self,
        query: Query,
        boolean: Boolean = "and",
        *,
        negated: bool = False,
    ) -> Self:
        """Wrap the predicates of *query* in a single parenthesised group.

        Empty groups are dropped.
        """
        if query.wheres:
            self.add_where(NestedWhere(query, boolean, negated))

        return self

    def where_exists(
        self,
        callback: Callable[[Query], Any] | Query,
        boolean: Boolean = "and",
        *,
        negated: bool = False,
    ) -> Self:
        if isinstance(callback, Query):
            query = callback
        else:
            query = Query()
            callback(query)

        return self.add_where(ExistsWhere(query, boolean, negated))

    def where_not_exists(self, callback: Callable[[Query], Any] | Query, boolean: Boolean = "and") -> Self:
        return self.where_exists(callback, boolean, negated=True)

    # joins

    def join(
        self,
        table: str,
        first: str | Callable[[JoinClause], Any] | None = None,
        operator: str | None = None,
        second: str | None = None,
        kind: JoinKind = DEFAULT_JOIN_KIND,
    ) -> Self:
        """Add a join clause.

        *first* is either the left column of a single ``ON`` condition or a
        callback receiving the ``JoinClause`` to configure.  Without either,
        the join is added with an empty ``ON`` list.
        """
        check_join_kind(kind)
        join = JoinClause(table, kind)

        if callable(first):
            first(join)
        elif first is not None:
            join.on(first, operator, second)

        self.joins.append(join)
        self.add_binding(join.get_bindings(), "join")

        return self

    def left_join(
        self,
        table: str,
        first: str | Callable[[JoinClause], Any] | None = None,
        operator: str | None = None,
        second: str | None = None,
    ) -> Self:
        return self.join(table, first, operator, second, "left")

    def right_join(
        self,
        table: str,
        first: str | Callable[[JoinClause], Any] | None = None,
        operator: str | None = None,
        second: str | None = None,
    ) -> Self:
        return self.join(table, first, operator, second, "right")

    def cross_join(
        self,
        table: str,
        first: str | Callable[[JoinClause], Any] | None = None,
        operator: str | None = None,
        second: str | None = None,
    ) -> Self:
        return self.join(table, first, operator, second, "cross")

    # merging

    def merge_wheres(self, wheres: Sequence[Where], bindings: Sequence[Any]) -> Self:
        """Append already-built predicates together with their where bindings."""
        self.wheres.extend(wheres)
        self.bindings["where"].extend(bindings)
        return self

    def merge_joins(self, joins: Sequence[JoinClause], bindings: Sequence[Any]) -> Self:
        """Append already-built join clauses, in order, together with their join bindings."""
        self.joins.extend(joins)
        self.bindings["join"].extend(bindings)
        return self

    def add_binding(self, value: Any, type: BindingType = "where") -> Self:  # noqa: A002
        if type not in self.bindings:
            raise ValueError(f"Invalid binding type: {type}")

        if isinstance(value, list):
            self.bindings[type].extend(value)
        else:
            self.bindings[type].append(value)

        return self

    def get_bindings(self) -> list[Any]:
        """Flatten the bindings in rendering order: joins first, then wheres."""
        return [*self.bindings["join"], *self.bindings["where"]]

    # rendering

    def to_select(self) -> sa.Select[Any]:
        """Render this query as ``SELECT <alias>.* FROM ... JOIN ... WHERE ...``."""
        if self.from_ is None:
            raise ValueError("Query has no FROM table")

        source: sa.FromClause = _from_clause(self.from_)
        for join in self.joins:
            source = RelationJoin(
                source,
                _from_clause(join.table),
                render_wheres(join.wheres),
                kind=join.kind,
            )

        query = sa.select(sa.literal_column(f"{self.get_table_alias()}.*")).select_from(source)
        if (criteria := render_wheres(self.wheres)) is not None:
            query = query.where(criteria)

        return query


class JoinClause(Query):
    """One ``JOIN <table> ON ...`` entry; its ``wheres`` are the ON predicates."""

    __slots__ = ("kind",)

    def __init__(self, table: str | None, kind: JoinKind = DEFAULT_JOIN_KIND) -> None:
        super().__init__(table)
        self.kind: JoinKind = kind

    def __repr__(self) -> str:
        return f"<JoinClause {self.kind} {self.from_!r} on={len(self.wheres)}>"

    @property
    def table(self) -> str:
        if self.from_ is None:
            raise ValueError("JoinClause has no table")

        return self.from_

    def new_query(self) -> JoinClause:
        return JoinClause(self.table, self.kind)

    def on(
        self,
        first: str | Callable[[JoinClause], Any],
        operator: str | None = None,
        second: str | None = None,
        boolean: Boolean = "and",
    ) -> Self:
        """Add an ``ON`` condition comparing two columns, or a nested group."""
        if callable(first):
            return self.where_nested(first, boolean)  # type: ignore[arg-type]

        if operator is None:
            raise ValueError("on() needs an operator when comparing columns")

        return self.where_column(first, operator, second, boolean)

    def or_on(
        self,
        first: str | Callable[[JoinClause], Any],
        operator: str | None = None,
        second: str | None = None,
    ) -> Self:
        return self.on(first, operator, second, "or")


class RelationJoin(Join):
    """``sa.Join`` that also renders ``RIGHT`` and ``CROSS`` joins.

    A join built without ``ON`` predicates gets a constant true condition,
    except a cross join which is rendered bare.
    """

    inherit_cache = True
    _traverse_internals = [
        *Join._traverse_internals,
        ("kind", InternalTraversal.dp_string),
        ("bare", InternalTraversal.dp_boolean),
    ]

    def __init__(
        self,
        left: sa.FromClause,
        right: sa.FromClause,
        onclause: sa.ColumnElement[bool] | None,
        kind: JoinKind = DEFAULT_JOIN_KIND,
    ) -> None:
        self.kind = kind
        self.bare = onclause is None
        super().__init__(
            left,
            right,
            sa.true() if onclause is None else onclause,
            isouter=kind == "left",
        )


_JOIN_KEYWORDS: Final[dict[str, str]] = {
    "right": " RIGHT OUTER JOIN ",
    "cross": " CROSS JOIN ",
}


@compiles(RelationJoin)
def _compile_relation_join(element: RelationJoin, compiler: Any, **kw: Any) -> str:
    if element.kind not in _JOIN_KEYWORDS:
        return compiler.visit_join(element, **kw)

    kw.pop("asfrom", None)
    from_linter = kw.pop("from_linter", None)
    if from_linter is not None:
        from_linter.edges.update(
            itertools.product(element.left._from_objects, element.right._from_objects)  # noqa: SLF001
        )

    sql = (
        compiler.process(element.left, asfrom=True, from_linter=from_linter, **kw)
        + _JOIN_KEYWORDS[element.kind]
        + compiler.process(element.right, asfrom=True, from_linter=from_linter, **kw)
    )
    if element.kind == "cross" and element.bare:
        return sql

    return sql + " ON " + compiler.process(element.onclause, from_linter=from_linter, **kw)


def _from_clause(expression: str) -> sa.FromClause:
    table, alias = split_alias(expression)
    clause = sa.table(table)
    return clause.alias(alias) if alias else clause


def _render_where(where: Where) -> sa.ColumnElement[bool] | None:
    match where:
        case BasicWhere(column=column, operator=operator, value=value):
            return sa.literal_column(column).op(operator, is_comparison=True)(sa.literal(value))
        case ColumnWhere(first=first, operator=operator, second=second):
            return sa.literal_column(first).op(operator, is_comparison=True)(sa.literal_column(second))
        case NullWhere(column=column, negated=negated):
            col = sa.literal_column(column)
            return col.is_not(None) if negated else col.is_(None)
        case InWhere(column=column, values=values, negated=negated):
            col = sa.literal_column(column)
            return col.not_in(values) if negated else col.in_(values)
        case NestedWhere(query=query, negated=negated):
            if (inner := render_wheres(query.wheres)) is None:
                return None
            group = Grouping(inner)
            return UnaryExpression(group, operator=operators.inv, type_=sa.Boolean()) if negated else group
        case ExistsWhere(query=query, negated=negated):
            exists = query.to_select().exists()
            return ~exists if negated else exists

    raise TypeError(f"Unknown where clause: {where!r}")


def render_wheres(wheres: Sequence[Where]) -> sa.ColumnElement[bool] | None:
    """Render a predicate list with SQL precedence: ``AND`` binds tighter than ``OR``.

    Returns ``None`` for an empty list.
    """
    groups: list[list[sa.ColumnElement[bool]]] = []
    for where in wheres:
        if (element := _render_where(where)) is None:
            continue

        if where.boolean == "or" or not groups:
            groups.append([element])
        else:
            groups[-1].append(element)

    if not groups:
        return None

    terms = [group[0] if len(group) == 1 else sa.and_(*group) for group in groups]
    return terms[0] if len(terms) == 1 else sa.or_(*terms)
