from __future__ import annotations

import warnings
from collections.abc import Mapping
from dataclasses import dataclass
from typing import ClassVar, final

import sqlalchemy as sa
from sqlalchemy import orm
from sqlalchemy.sql import operators, visitors
from sqlalchemy.sql.elements import BinaryExpression

from .association import Association, JoinAssociation, ThroughAssociation
from .condition import JoinCondition
from .datastructures import frozendict
from .query import JoinQuery


Model = type[orm.DeclarativeBase]


@dataclass(frozen=True, slots=True)
class Edge:
    """An association declared on a model, and the model it leads to."""

    association: Association
    target: Model


Graph = Mapping[Model, Mapping[str, Edge]]


@final
class Node:
    """Singleton holding the association graph of the mapped models.

    Maps every model to its associations by key. ``sqla_request`` walks
    this graph to resolve load paths such as ``"posts.comments"``.
    """

    __instance: ClassVar[Node | None] = None
    _node: Graph

    def __new__(cls, node: Graph | None = None) -> Node:
        if cls.__instance is None:
            instance = super().__new__(cls)
            if node is not None:
                instance.set_node(node)

            cls.__instance = instance

        if not getattr(cls.__instance, "_node", None):
            raise RuntimeError("Node is not initialized or empty")

        return cls.__instance

    def get(self, model: Model) -> Mapping[str, Edge]:
        """Associations of *model* by key, empty if the model is unknown."""
        return self.node.get(model, frozendict())

    def __getitem__(self, model: Model) -> Mapping[str, Edge]:
        """Associations of *model* by key, raising ``KeyError`` if unknown."""
        return self.node[model]

    @property
    def node(self) -> Graph:
        return self._node

    def set_node(self, node: Graph) -> None:
        self._node = node

    @classmethod
    def reset(cls) -> None:
        """Destroy the singleton, allowing re-initialization (primarily for tests)."""
        cls._node = {}
        cls.__instance = None


def association_for(relationship: orm.RelationshipProperty[orm.DeclarativeBase]) -> Association | None:
    """Translate an ORM relationship into an association.

    Many-to-one relationships become belongs-to joins, one-to-many become
    has-many joins, and relationships with a ``secondary`` table become a
    :class:`ThroughAssociation` over that table.

    Returns:
        The association keyed by the relationship key, or ``None`` when the
        relationship is not joined on plain column equalities.
    """
    joins = [relationship.primaryjoin]
    if relationship.secondaryjoin is not None:
        joins.append(relationship.secondaryjoin)
    if not all(_is_key_mapping(clause) for clause in joins):
        return None

    target_table = relationship.mapper.local_table
    if relationship.secondary is not None:
        pivot = JoinAssociation(
            key=relationship.secondary.name,
            query=JoinQuery.of(relationship.secondary),
            condition=JoinCondition(
                tuple((pivot_col.key, parent_col.key) for parent_col, pivot_col in relationship.synchronize_pairs),
                origin_is_left=False,
            ),
        )
        target = JoinAssociation(
            key=relationship.key,
            query=JoinQuery.of(target_table),
            condition=JoinCondition(
                tuple(
                    (pivot_col.key, target_col.key)
                    for target_col, pivot_col in relationship.secondary_synchronize_pairs
                ),
                origin_is_left=True,
            ),
        )
        return ThroughAssociation(pivot=pivot, target=target)

    pairs = relationship.local_remote_pairs
    if relationship.direction is orm.RelationshipDirection.MANYTOONE:
        condition = JoinCondition(
            tuple((local.key, remote.key) for local, remote in pairs), origin_is_left=True
        )
    else:
        condition = JoinCondition(
            tuple((remote.key, local.key) for local, remote in pairs), origin_is_left=False
        )

    return JoinAssociation(key=relationship.key, query=JoinQuery.of(target_table), condition=condition)


def _is_key_mapping(clause: sa.ColumnElement[bool]) -> bool:
    binaries = [
        element for element in visitors.iterate(clause) if isinstance(element, BinaryExpression)
    ]
    return bool(binaries) and all(
        binary.operator is operators.eq
        and isinstance(binary.left, sa.Column)
        and isinstance(binary.right, sa.Column)
        for binary in binaries
    )


def get_node(base: type[orm.DeclarativeBase]) -> Graph:
    """Build the association graph of every model mapped by *base*.

    Relationships that can't be expressed as associations (custom joins
    with literal criteria, for example) are skipped with a warning.

    Raises:
        AssertionError: If base is not a subclass of orm.DeclarativeBase.
    """
    assert orm.DeclarativeBase in getattr(base, "__bases__", ()), (
        "base must be a subclass of orm.DeclarativeBase"
    )

    graph: dict[Model, frozendict[str, Edge]] = {}
    for mapper in base.registry.mappers:
        edges: dict[str, Edge] = {}
        for relationship in mapper.relationships.values():
            association = association_for(relationship)
            if association is None:
                warnings.warn(
                    f"Skipping relationship {mapper.class_.__name__}.{relationship.key}: "
                    "only column equality joins are supported",
                    stacklevel=2,
                )
                continue

            edges[relationship.key] = Edge(association=association, target=relationship.mapper.class_)

        graph[mapper.class_] = frozendict(edges)

    return frozendict(graph)


def init_node(node: Graph) -> None:
    """Initialize the global Node singleton with an association graph.

    Call it once at startup::

        >>> init_node(get_node(Base))
    """
    Node(node)
