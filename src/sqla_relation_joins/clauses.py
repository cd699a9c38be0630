"""Predicate tree nodes stored in ``Query.wheres`` and ``JoinClause.wheres``.

Every node carries the boolean connective that links it to the previous
node in the list.  ``NestedWhere`` groups a whole query's predicates in
parentheses. ``ExistsWhere`` is a correlated ``EXISTS`` sub-select and stays
one when predicates are moved into a join's ``ON`` list.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final, Literal, Union


if TYPE_CHECKING:
    from .query import Query

Boolean = Literal["and", "or"]

OPERATORS: Final[frozenset[str]] = frozenset({
    "=", "!=", "<>", "<", ">", "<=", ">=",
    "like", "not like", "ilike", "not ilike",
})


@dataclass(frozen=True, slots=True)
class BasicWhere:
    """``column <operator> :value``"""

    column: str
    operator: str
    value: Any
    boolean: Boolean = "and"


@dataclass(frozen=True, slots=True)
class ColumnWhere:
    """``first <operator> second``, both sides are column references."""

    first: str
    operator: str
    second: str
    boolean: Boolean = "and"


@dataclass(frozen=True, slots=True)
class NullWhere:
    column: str
    boolean: Boolean = "and"
    negated: bool = False


@dataclass(frozen=True, slots=True)
class InWhere:
    column: str
    values: tuple[Any, ...]
    boolean: Boolean = "and"
    negated: bool = False


@dataclass(frozen=True, slots=True)
class NestedWhere:
    """A parenthesised group holding the predicates of ``query``.

    Inside a ``JoinClause`` the wrapped query is itself a ``JoinClause``.
    """

    query: Query
    boolean: Boolean = "and"
    negated: bool = False


@dataclass(frozen=True, slots=True)
class ExistsWhere:
    """``[NOT] EXISTS (select ...)``, kept as a sub-select even inside joins."""

    query: Query
    boolean: Boolean = "and"
    negated: bool = False


Where = Union[BasicWhere, ColumnWhere, NullWhere, InWhere, NestedWhere, ExistsWhere]


def where_bindings(wheres: Sequence[Where]) -> list[Any]:
    """Collect the bound values of *wheres* in rendering order."""
    out: list[Any] = []
    for where in wheres:
        match where:
            case BasicWhere(value=value):
                out.append(value)
            case InWhere(values=values):
                out.extend(values)
            case NestedWhere(query=query):
                out.extend(query.bindings["where"])
            case ExistsWhere(query=query):
                out.extend(query.get_bindings())

    return out
