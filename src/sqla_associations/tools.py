from __future__ import annotations

from collections.abc import Sequence
from functools import lru_cache
from typing import Any

import sqlalchemy as sa


def table_of(model: Any) -> sa.FromClause:
    """Return the selectable behind *model*.

    Accepts Core tables and other from-clauses unchanged, and ORM classes
    through their ``__table__``.

    Raises:
        TypeError: If *model* is neither a from-clause nor a mapped class.
    """
    if isinstance(model, sa.FromClause):
        return model

    table = getattr(model, "__table__", None)
    if not isinstance(table, sa.FromClause):
        raise TypeError(f"Cannot determine table for {model!r}")

    return table


@lru_cache
def _get_table_name(model: Any) -> str:
    """Return the table name for *model*, preferring ``__tablename__`` (cached)."""
    result = getattr(model, "__tablename__", None) or getattr(table_of(model), "name", None)
    if not result:
        raise ValueError(f"Cannot determine tablename for {model}")

    return result


def get_table_name(model: Any) -> str:
    """Get the table name for a mapped class or a Core table.

    Raises:
        ValueError: If the table name cannot be determined.
    """
    return _get_table_name(model)


def get_table_names(query: sa.Select[Any]) -> Sequence[str]:
    """List the table and alias names of the FROM tree of *query*, left to right.

    Aliased tables are reported under their alias name, so a self join of
    ``category`` shows up as ``["category1", "category2"]``.
    """
    out: list[str] = []

    def walk(node: Any) -> None:
        if isinstance(node, sa.Join):
            walk(node.left)
            walk(node.right)
            return

        if (name := getattr(node, "name", None)) and name not in out:
            out.append(name)

    for root in query.get_final_froms():
        walk(root)

    return out
