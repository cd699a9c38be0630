from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from functools import lru_cache
from typing import TYPE_CHECKING, Any, Final, TypeVar

import sqlalchemy as sa
from sqlalchemy import orm


if TYPE_CHECKING:
    from .builder import ModelQuery

T = TypeVar("T", bound=orm.DeclarativeBase)

_ALIAS_SEPARATOR: Final[re.Pattern[str]] = re.compile(r"\s+as\s+", re.IGNORECASE)


@lru_cache
def _get_primary_key(model: type[T]) -> sa.ColumnElement[Any]:
    """Return the first primary-key column element for *model* (cached)."""
    return next(iter(model.__table__.primary_key))


@lru_cache
def _get_table_name(model: type[T]) -> str:
    """Return the table name for *model*, preferring ``__tablename__`` (cached)."""
    result = getattr(
        model,
        "__tablename__",
        model.__table__.description,
    )
    if not result:
        raise ValueError(f"Cannot determine tablename for {model}")

    return result


def get_table_name(model: type[T]) -> str:
    """Get the table name for a SQLAlchemy model.

    Raises:
        ValueError: If the table name cannot be determined.
    """
    return _get_table_name(model)


def get_primary_key(model: type[T]) -> sa.ColumnElement[Any]:
    """Get the primary key column for a SQLAlchemy model."""
    return _get_primary_key(model)


def split_alias(expression: str) -> tuple[str, str | None]:
    """Split ``"name as alias"`` into ``("name", "alias")``.

    The ``as`` keyword is matched case-insensitively and may be surrounded
    by any amount of whitespace.  Without an alias the second item is ``None``.

    Example:
        >>> split_alias("author AS a")
        ('author', 'a')
        >>> split_alias("posts")
        ('posts', None)
    """
    name, *rest = _ALIAS_SEPARATOR.split(expression.strip(), maxsplit=1)
    return name, (rest[0] if rest else None)


def qualify(table: str, column: str) -> str:
    """Prefix *column* with *table* unless it is already qualified."""
    return column if "." in column else f"{table}.{column}"


def get_table_names(query: sa.Select[Any]) -> Sequence[str]:
    """Extract all table names (or aliases) from a rendered select query.

    Traverses the FROM clause, descending into joins, and returns names in
    the order they are joined.
    """
    seen: set[str] = set()
    out: list[str] = []

    def add(name: str | None) -> None:
        if name and name not in seen:
            seen.add(name)
            out.append(name)

    for root in query.get_final_froms():
        stack: list[Any] = [root]
        while stack:
            node = stack.pop()

            if isinstance(node, sa.Join):
                stack.extend([node.right, node.left])
                continue

            add(getattr(node, "name", None))

    return out


def add_conditions(
    *conditions: tuple[Any, ...],
) -> Callable[[ModelQuery[Any]], None]:
    """Create a join callback that adds ``where`` conditions to the join query.

    Each condition is a ``(column, value)`` or ``(column, operator, value)``
    tuple, exactly as accepted by ``ModelQuery.where``.

    Example:
        >>> query.join_relation(
        ...     "posts", add_conditions(("published", True), ("views", ">", 10))
        ... )
    """

    def _add(query: ModelQuery[Any]) -> None:
        for condition in conditions:
            query.where(*condition)

    return _add
