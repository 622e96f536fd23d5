"""Composable association joins for SQLAlchemy.

sqla_associations declares relationships between tables (belongs-to,
has-many, has-one-through a pivot) and composes them into a single
``SELECT`` that fetches a root row together with its associated rows.
Associations requested several times are merged into one join, every
table gets a collision-free alias, and a ``RowAdapter`` tells which
columns of the flat result row belong to which association.

Declare associations by hand with ``belongs_to`` / ``has_many`` /
``has_many_through``, or derive them from your ORM relationships with
``init_node(get_node(Base))`` and call ``sqla_request(model=..., loads=(...))``.
"""

from ._version import __version__, __version_tuple__
from .adapter import RowAdapter, ScopedRow
from .alias import AliasColumn, TableAlias
from .association import (
    Association,
    JoinAssociation,
    ThroughAssociation,
    belongs_to,
    has_many,
    has_many_through,
    has_one,
    has_one_through,
)
from .condition import JoinCondition, JoinKind, foreign_key_mapping
from .core import sqla_cache_clear, sqla_cache_info, sqla_request, sqla_select
from .datastructures import frozendict
from .errors import (
    AmbiguousAliasError,
    AmbiguousAssociationKeyError,
    AssociationError,
    ForeignKeyError,
    UnboundTableError,
    UnsupportedCompositionError,
)
from .node import Edge, Node, get_node, init_node
from .query import Join, JoinQuery
from .request import PreparedRequest, QueryRequest, SelectBuilder
from .tools import get_table_name, get_table_names, table_of


__all__ = (
    "AliasColumn",
    "AmbiguousAliasError",
    "AmbiguousAssociationKeyError",
    "Association",
    "AssociationError",
    "Edge",
    "ForeignKeyError",
    "Join",
    "JoinAssociation",
    "JoinCondition",
    "JoinKind",
    "JoinQuery",
    "Node",
    "PreparedRequest",
    "QueryRequest",
    "RowAdapter",
    "ScopedRow",
    "SelectBuilder",
    "TableAlias",
    "ThroughAssociation",
    "UnboundTableError",
    "UnsupportedCompositionError",
    "__version__",
    "__version_tuple__",
    "belongs_to",
    "foreign_key_mapping",
    "frozendict",
    "get_node",
    "get_table_name",
    "get_table_names",
    "has_many",
    "has_many_through",
    "has_one",
    "has_one_through",
    "init_node",
    "sqla_cache_clear",
    "sqla_cache_info",
    "sqla_request",
    "sqla_select",
    "table_of",
)
