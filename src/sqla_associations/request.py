from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from typing import Any

import sqlalchemy as sa
from sqlalchemy.engine import Dialect

from .adapter import RowAdapter, ScopedRow
from .alias import TableAlias
from .association import Association
from .condition import JoinKind
from .errors import UnboundTableError
from .query import JoinQuery


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True, eq=False)
class QueryRequest:
    """A root query, composed with associations, ready to be prepared.

    Example::

        >>> request = (
        ...     QueryRequest.all(Player)
        ...     .including_required(player_team)
        ...     .order([Player.name])
        ... )
        >>> prepared = request.prepare()
        >>> print(prepared.sql())
        SELECT player.id, player.name, player.score, player.team_id,
        team.id AS id_1, team.name AS name_1, team.color, team.league_id
        FROM player JOIN team ON team.id = player.team_id ORDER BY player.name
    """

    query: JoinQuery

    @classmethod
    def all(cls, source: Any) -> QueryRequest:
        """Select every column of *source* (table, ORM class, subquery or ``Select``)."""
        return cls(JoinQuery.of(source))

    def select(self, selection: Sequence[Any]) -> QueryRequest:
        return replace(self, query=self.query.select(selection))

    def filter(self, predicate: Any | Callable[[Any], Any]) -> QueryRequest:
        return replace(self, query=self.query.filter(predicate))

    def order(self, terms: Sequence[Any] | Callable[[Any], Sequence[Any]]) -> QueryRequest:
        return replace(self, query=self.query.order(terms))

    def reversed(self) -> QueryRequest:
        return replace(self, query=self.query.reversed())

    def aliased(self, alias: TableAlias) -> QueryRequest:
        return replace(self, query=self.query.qualified(alias))

    def including_required(self, association: Association) -> QueryRequest:
        return replace(self, query=association.add(JoinKind.REQUIRED, self.query))

    def including_optional(self, association: Association) -> QueryRequest:
        return replace(self, query=association.add(JoinKind.OPTIONAL, self.query))

    def joining_required(self, association: Association) -> QueryRequest:
        return replace(self, query=association.select(()).add(JoinKind.REQUIRED, self.query))

    def joining_optional(self, association: Association) -> QueryRequest:
        return replace(self, query=association.select(()).add(JoinKind.OPTIONAL, self.query))

    def prepare(self, context: Any = None) -> PreparedRequest:
        """Finalize the request and build its statement.

        Args:
            context: Passed to deferred filters and orderings (usually the
                connection the statement will run on).

        Raises:
            AmbiguousAliasError: If two user-named aliases share a name.
            UnsupportedCompositionError: If a required association is nested
                under an optional one.
            UnboundTableError: If a column refers to a table that is not
                joined, or joined more than once without an alias.
        """
        query = self.query.finalized()
        statement = SelectBuilder(query, context=context).build()
        adapter = query.finalized_row_adapter(0, ())

        return PreparedRequest(
            statement=statement,
            aliases=query.finalized_aliases,
            adapter=adapter[0] if adapter is not None else None,
            columns=tuple(
                _column_name(element, index)
                for index, element in enumerate(query.finalized_selection)
            ),
        )


@dataclass(frozen=True, slots=True, eq=False)
class PreparedRequest:
    """A built statement, with what is needed to decode its rows.

    ``adapter`` is ``None`` when the request selects no column at all.
    """

    statement: sa.Select[Any]
    aliases: tuple[TableAlias, ...]
    adapter: RowAdapter | None
    columns: tuple[str, ...]

    def sql(self, dialect: Dialect | None = None, *, literal_binds: bool = True) -> str:
        compiled = self.statement.compile(
            dialect=dialect, compile_kwargs={"literal_binds": literal_binds}
        )
        return str(compiled)

    def decode(self, row: Sequence[Any]) -> ScopedRow:
        """Split a fetched row into nested scopes, one per association key."""
        if self.adapter is None:
            return ScopedRow(columns=(), values=tuple(row))

        return self.adapter.adapt(row, self.columns)


class SelectBuilder:
    """Builds the ``SELECT`` statement of a finalized join query.

    The root table comes first in the ``FROM`` clause, followed by the join
    clause of every association in the order they were added. The columns
    and the ``ORDER BY`` terms follow the same order, so that the result row
    matches ``finalized_row_adapter``.
    """

    __slots__ = ("context", "query")

    def __init__(self, query: JoinQuery, *, context: Any = None) -> None:
        if query.from_clause is None:
            raise ValueError("SelectBuilder needs a finalized query")

        self.query = query
        self.context = context

    def build(self) -> sa.Select[Any]:
        root = self.query
        assert root.from_clause is not None

        from_: sa.FromClause = root.from_clause
        for join in root.joins.values():
            from_ = join.join_clause(from_, root.from_clause, context=self.context)

        selection = root.finalized_selection
        statement = (
            sa.select(*selection) if selection else sa.select(sa.literal_column("1"))
        ).select_from(from_)

        if (where := root.filter_promise.resolve(self.context)) is not None:
            statement = statement.where(where)

        if ordering := root.finalized_ordering.resolve(self.context):
            statement = statement.order_by(*ordering)

        if stray := [table for table in statement.get_final_froms() if table is not from_]:
            names = ", ".join(str(getattr(table, "name", table)) for table in stray)
            raise UnboundTableError(
                f"The request refers to {names} outside of its joined tables; "
                "refer to a table joined more than once through its TableAlias, as in alias[\"column\"]"
            )

        logger.debug("Built select with %d columns over %d tables", len(selection), len(root.finalized_aliases))
        return statement


def _column_name(element: Any, index: int) -> str:
    name = getattr(element, "key", None) or getattr(element, "name", None)
    return name if isinstance(name, str) else str(index)
