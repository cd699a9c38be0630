from __future__ import annotations

import datetime
from typing import ClassVar

import sqlalchemy as sa
from sqlalchemy import orm


class SoftDeletes:
    """Declarative mixin for models whose rows are hidden once ``deleted_at`` is set.

    Every query built with ``new_query`` for such a model, including the join
    query of a relationship join, gets ``deleted_at IS NULL`` applied.
    """

    __soft_delete_column__: ClassVar[str] = "deleted_at"

    deleted_at: orm.Mapped[datetime.datetime | None] = orm.mapped_column(
        sa.DateTime, nullable=True, default=None
    )


def get_soft_delete_column(model: type) -> str | None:
    """Return the soft-delete column of *model*, or ``None`` if it does not soft delete."""
    return getattr(model, "__soft_delete_column__", None)
