from __future__ import annotations


class RelationJoinError(Exception):
    """Base class for errors raised while joining relationships."""


class UnsupportedRelationError(RelationJoinError, RuntimeError):
    """Raised when a relation kind cannot be expressed as a join (``morph_to``)."""


class RelationNotFoundError(RelationJoinError, ValueError):
    """Raised by the model layer when a relation name is not declared on a model."""
