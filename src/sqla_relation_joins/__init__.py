"""Relationship joins for SQLAlchemy models.

sqla_relation_joins turns dotted relationship paths such as
``"posts.comments as c"`` into SQL JOIN clauses.  Each related model's own
constraints (global scopes, soft deletes, relation constraints and the
callback's conditions) are merged into the join's ``ON`` list instead of being
rendered as correlated sub-selects.  Initialize the relation registry once at
startup with ``init_node(get_node(Base))``, then build queries with
``new_query(Model).join_relation(...)`` and execute ``query.to_select()``.
"""

from ._version import __version__, __version_tuple__
from .builder import ModelQuery, new_query
from .errors import RelationJoinError, RelationNotFoundError, UnsupportedRelationError
from .joins import RelationSegment, parse_relation_path, replace_nested_wheres_with_joins
from .mixins import SoftDeletes
from .node import Node, get_node, init_node
from .query import JOIN_KINDS, JoinClause, Query
from .relations import (
    Relation,
    RelationKind,
    belongs_to,
    belongs_to_many,
    has_many,
    has_many_through,
    has_one,
    has_one_through,
    morph_many,
    morph_one,
    morph_to,
    morph_to_many,
)
from .tools import add_conditions, get_primary_key, get_table_name, get_table_names


__all__ = (
    "JOIN_KINDS",
    "JoinClause",
    "ModelQuery",
    "Node",
    "Query",
    "Relation",
    "RelationJoinError",
    "RelationKind",
    "RelationNotFoundError",
    "RelationSegment",
    "SoftDeletes",
    "UnsupportedRelationError",
    "__version__",
    "__version_tuple__",
    "add_conditions",
    "belongs_to",
    "belongs_to_many",
    "get_node",
    "get_primary_key",
    "get_table_name",
    "get_table_names",
    "has_many",
    "has_many_through",
    "has_one",
    "has_one_through",
    "init_node",
    "morph_many",
    "morph_one",
    "morph_to",
    "morph_to_many",
    "new_query",
    "parse_relation_path",
    "replace_nested_wheres_with_joins",
)
