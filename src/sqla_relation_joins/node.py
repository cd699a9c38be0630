from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
from typing import ClassVar, final

from sqlalchemy import orm

from .errors import RelationNotFoundError
from .relations import Relation, RelationDeclaration, from_relationship_property


RelationMap = Mapping[type[orm.DeclarativeBase], Mapping[str, Relation]]


@final
class Node:
    """Singleton registry of the relations declared on every model.

    ``ModelQuery`` resolves relation names through this registry, so it must
    be initialized once at startup with ``init_node(get_node(Base))``.
    """

    __instance: ClassVar[Node | None] = None
    _node: RelationMap

    def __new__(cls, node: RelationMap | None = None) -> Node:
        if cls.__instance is None:
            instance = super().__new__(cls)
            if node is not None:
                instance.set_node(node)

            cls.__instance = instance

        if not getattr(cls.__instance, "_node", None):
            raise RuntimeError("Node is not initialized or empty")

        return cls.__instance

    def get(self, model: type[orm.DeclarativeBase]) -> Mapping[str, Relation]:
        """Get relations for a model, returning an empty mapping if not found."""
        return self.node.get(model, MappingProxyType({}))

    def __getitem__(self, model: type[orm.DeclarativeBase]) -> Mapping[str, Relation]:
        """Look up relations for *model*, raising ``KeyError`` if not found."""
        return self.node[model]

    def get_relation(self, model: type[orm.DeclarativeBase], name: str) -> Relation:
        """Look up the relation *name* declared on *model*.

        Raises:
            RelationNotFoundError: If *model* declares no such relation.
        """
        try:
            return self.get(model)[name]
        except KeyError:
            raise RelationNotFoundError(f"No relationship '{name}' on {model.__name__}") from None

    @property
    def node(self) -> RelationMap:
        """The underlying model-to-relations mapping (read-only)."""
        return self._node

    def set_node(self, node: RelationMap) -> None:
        self._node = node

    @classmethod
    def reset(cls) -> None:
        """Destroy the singleton, allowing re-initialization (primarily for tests)."""
        cls._node = {}
        cls.__instance = None


def get_node(base: type[orm.DeclarativeBase]) -> RelationMap:
    """Build the relation registry from a SQLAlchemy declarative base.

    Every mapped ``relationship()`` becomes a belongs-to, has-one, has-many or
    belongs-to-many relation.  Entries of a model's ``__relations__`` mapping
    are resolved next and take precedence over a mapped relationship of the
    same name.

    Raises:
        AssertionError: If base is not a subclass of orm.DeclarativeBase.
        KeyError: If a declaration references an unknown model name.
    """
    assert orm.DeclarativeBase in getattr(base, "__bases__", ()), (
        "base must be a subclass of orm.DeclarativeBase"
    )

    base.registry.configure()
    classes = {mapper.class_.__name__: mapper.class_ for mapper in base.registry.mappers}

    def lookup(model: str | type[orm.DeclarativeBase]) -> type[orm.DeclarativeBase]:
        return classes[model] if isinstance(model, str) else model

    out: dict[type[orm.DeclarativeBase], Mapping[str, Relation]] = {}
    for mapper in base.registry.mappers:
        model = mapper.class_
        relations: dict[str, Relation] = {
            prop.key: from_relationship_property(prop) for prop in mapper.relationships
        }
        declared: Mapping[str, RelationDeclaration] = getattr(model, "__relations__", {})
        for name, declaration in declared.items():
            relations[name] = declaration.resolve(name, model, lookup)

        out[model] = MappingProxyType(relations)

    return MappingProxyType(out)


def init_node(node: RelationMap) -> None:
    """Initialize the global Node singleton with the relation registry.

    Example:
        >>> from myapp.models import Base
        >>> init_node(get_node(Base))
    """
    Node(node)
