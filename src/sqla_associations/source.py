from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, TypeVar

import sqlalchemy as sa
from sqlalchemy.sql import visitors
from sqlalchemy.sql.elements import ColumnClause
from sqlalchemy.sql.util import ClauseAdapter

from .alias import AliasColumn, TableAlias
from .errors import UnboundTableError
from .tools import table_of


E = TypeVar("E", bound=sa.ClauseElement)
AliasResolver = Callable[[TableAlias], sa.FromClause]


@dataclass(frozen=True, slots=True, eq=False)
class Source:
    """The table (or subquery) a join query reads from, plus its alias."""

    selectable: sa.FromClause
    alias: TableAlias | None = None

    @classmethod
    def of(cls, source: Any) -> Source:
        """Build a source from a table, an ORM class, a subquery or a ``Select``."""
        if isinstance(source, Source):
            return source
        if isinstance(source, sa.Select):
            return cls(source.subquery("anon"))

        return cls(table_of(source))

    @property
    def name(self) -> str:
        return getattr(self.selectable, "name", None) or "anon"

    @property
    def columns(self) -> tuple[sa.ColumnElement[Any], ...]:
        return tuple(self.selectable.c)

    def qualified(self, alias: TableAlias) -> Source:
        return Source(self.selectable, alias)

    def merged(self, other: Source) -> Source | None:
        """Return the merged source, or ``None`` if both read different tables."""
        if self.selectable is not other.selectable:
            return None
        if self.alias is None or other.alias is None:
            return Source(self.selectable, self.alias or other.alias)
        if (alias := self.alias.merged(other.alias)) is None:
            return None

        return Source(self.selectable, alias)

    def from_clause(self, name: str) -> sa.FromClause:
        """Render this source under *name*.

        A source whose name already matches is used as is. Under another
        name, tables are aliased and subqueries rebuilt.
        """
        if name == self.name:
            return self.selectable
        if isinstance(self.selectable, sa.Subquery):
            return self.selectable.element.subquery(name)

        return self.selectable.alias(name)


def qualify(
    element: E,
    from_clause: sa.FromClause,
    *,
    selectable: sa.FromClause | None = None,
    tables: Mapping[sa.FromClause, sa.FromClause] | None = None,
    resolve: AliasResolver | None = None,
) -> E:
    """Point the column references of *element* at *from_clause*.

    Args:
        element: Expression to rewrite (ORM attributes are coerced).
        from_clause: The rendered table the expression belongs to.
        selectable: The table or subquery *from_clause* was built from.
            Its columns are remapped with a ``ClauseAdapter``, or by key
            when the adapter can't follow them (a rebuilt subquery).
        tables: Rendered table of other tables of the request, for tables
            joined once: columns of theirs are bound to it.
        resolve: Finds the rendered table of a :class:`TableAlias`, for
            columns obtained with ``alias["column"]``.

    Table-less columns (``sa.column("name")``) are bound by key.

    Raises:
        UnboundTableError: If an aliased column can't be found.
    """
    clause_element = getattr(element, "__clause_element__", None)
    if clause_element is not None:
        element = clause_element()

    adapted = ClauseAdapter(from_clause).traverse(element)
    rebuilt = selectable is not None and selectable is not from_clause

    def is_unbound(node: Any) -> bool:
        if not isinstance(node, ColumnClause) or node.is_literal:
            return False

        if node.table is None or (rebuilt and node.table is selectable):
            return True

        return tables is not None and node.table in tables

    if not any(is_unbound(node) for node in visitors.iterate(adapted)):
        return adapted

    def bind(node: Any) -> Any:
        if isinstance(node, AliasColumn):
            if resolve is None:
                return None
            return _aliased_column(resolve(node.table_alias), node)
        if not is_unbound(node):
            return None
        if node.table is None or node.table is selectable:
            return from_clause.c.get(node.key)
        if tables is not None:
            return tables[node.table].c.get(node.key)

        return None

    return visitors.replacement_traverse(adapted, {}, bind)


def _aliased_column(from_clause: sa.FromClause, column: AliasColumn) -> sa.ColumnElement[Any]:
    if (bound := from_clause.c.get(column.key)) is None:
        raise UnboundTableError(f"No column {column.key!r} in {column.table_alias!r}")

    return bound
