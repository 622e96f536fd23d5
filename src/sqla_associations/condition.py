from __future__ import annotations

import enum
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import sqlalchemy as sa

from .errors import ForeignKeyError
from .tools import table_of


ColumnMapping = tuple[tuple[str, str], ...]


class JoinKind(enum.Enum):
    """How a joined table participates in the request.

    ``REQUIRED`` renders as an inner ``JOIN``: rows without a match are
    dropped. ``OPTIONAL`` renders as ``LEFT OUTER JOIN``.

    Kinds nest hierarchically. ``A.including_optional(A.b.including_required(B.c))``
    means "all As, with their B granted that B has a C". Two left joins and a
    ``WHERE NOT ((b.id IS NOT NULL) AND (c.id IS NULL))`` guard would express
    it, but this is not implemented: emitting such a request raises
    ``UnsupportedCompositionError``.
    """

    REQUIRED = "required"
    OPTIONAL = "optional"


@dataclass(frozen=True, slots=True)
class JoinCondition:
    """The equality condition that links two joined tables.

    ``mapping`` holds ``(origin_column, destination_column)`` pairs of a
    foreign key: the origin table holds the foreign key, the destination
    table holds the referenced key. ``origin_is_left`` tells which side of
    the join the origin table stands on.

    Two associations merge only if their conditions are equal::

        >>> JoinCondition((("team_id", "id"),), origin_is_left=True) == JoinCondition(
        ...     (("team_id", "id"),), origin_is_left=True
        ... )
        True
    """

    mapping: ColumnMapping
    origin_is_left: bool

    def sql_expression(
        self, left: sa.FromClause, right: sa.FromClause
    ) -> sa.ColumnElement[bool]:
        """Build ``right.x = left.y AND ...`` for the two aliased tables."""
        if self.origin_is_left:
            pairs = [(origin, destination) for origin, destination in self.mapping]
        else:
            pairs = [(destination, origin) for origin, destination in self.mapping]

        return sa.and_(*(right.c[r] == left.c[l] for l, r in pairs))  # noqa: E741


def foreign_key_mapping(
    origin: Any,
    destination: Any,
    using: Sequence[str] | None = None,
) -> ColumnMapping:
    """Resolve the column pairs of the foreign key from *origin* to *destination*.

    Args:
        origin: Table (or mapped class) holding the foreign key.
        destination: Table (or mapped class) referenced by the foreign key.
        using: Origin column keys of the wanted foreign key, to pick one when
            *origin* references *destination* several times.

    Returns:
        ``(origin_column, destination_column)`` key pairs.

    Raises:
        ForeignKeyError: If no foreign key, or more than one, matches.
    """
    origin_table = table_of(origin)
    destination_table = table_of(destination)
    if not isinstance(origin_table, sa.Table):
        raise ForeignKeyError(f"{origin_table!r} has no foreign key metadata")

    candidates: list[ColumnMapping] = []
    for constraint in origin_table.foreign_key_constraints:
        if constraint.referred_table is not destination_table:
            continue

        mapping = tuple((fk.parent.key, fk.column.key) for fk in constraint.elements)
        if using is not None and [origin_col for origin_col, _ in mapping] != list(using):
            continue

        candidates.append(mapping)

    names = f"{origin_table.name} -> {getattr(destination_table, 'name', destination_table)}"
    if not candidates:
        columns = f" using {list(using)}" if using is not None else ""
        raise ForeignKeyError(f"Could not infer foreign key {names}{columns}")
    if len(candidates) > 1:
        raise ForeignKeyError(
            f"Ambiguous foreign key {names}: "
            f"{[[origin_col for origin_col, _ in c] for c in candidates]}. Pass `using`."
        )

    return candidates[0]
