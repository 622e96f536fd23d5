from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.sql.elements import ColumnClause

from .errors import AmbiguousAliasError


@dataclass(frozen=True, slots=True)
class TableAlias:
    """Identity of one table slot in a query.

    Two aliases denote the same table slot only if they share the same
    ``key``, even when they render under the same name. Give an alias a
    ``name`` to control how it is rendered in SQL::

        >>> custom = TableAlias(name="custom")
        >>> request = QueryRequest.all(Player).including_required(player_team.aliased(custom))
        >>> # SELECT ... FROM player JOIN team AS custom ON custom.id = player.team_id

    Index an alias to refer to the columns of its table from anywhere in
    the request, for example from the root filter::

        >>> sender, receiver = TableAlias(), TableAlias()
        >>> request = (
        ...     QueryRequest.all(Message)
        ...     .including_required(message_sender.aliased(sender))
        ...     .including_required(message_receiver.aliased(receiver))
        ...     .filter(sender["name"] == "alice")
        ... )
    """

    name: str | None = field(default=None, compare=False)
    key: uuid.UUID = field(default_factory=uuid.uuid4)

    def merged(self, other: TableAlias) -> TableAlias | None:
        """Return the alias that stands for both, or ``None`` on a name conflict."""
        if self.key == other.key:
            return self
        if self.name is not None and other.name is not None:
            return self if self.name == other.name else None

        return self if self.name is not None or other.name is None else other

    def __getitem__(self, column: str) -> AliasColumn:
        return AliasColumn(self, column)

    def __repr__(self) -> str:
        return f"<TableAlias {self.name or '?'} {self.key.hex[:8]}>"


class AliasColumn(ColumnClause[Any]):
    """Column *key* of the table behind *table_alias*.

    Bound to the rendered table when the request is finalized.
    """

    inherit_cache = True

    def __init__(self, table_alias: TableAlias, key: str) -> None:
        super().__init__(key)
        self.table_alias = table_alias


def resolve_alias_names(aliases: Iterable[tuple[TableAlias, str]]) -> dict[TableAlias, str]:
    """Assign a unique SQL name to every alias.

    Args:
        aliases: ``(alias, default_name)`` pairs, in query order. The default
            name is used for aliases without a user-defined name (usually
            the table name).

    Returns:
        Mapping from alias to rendered name. Names that appear once are
        kept. Unnamed aliases that clash get a numeric suffix (``player1``,
        ``player2``...), skipping names already in use.

    Raises:
        AmbiguousAliasError: If two distinct aliases carry the same
            user-defined name.
    """
    pairs = list(aliases)
    groups: dict[str, list[tuple[TableAlias, str]]] = {}
    for alias, default_name in pairs:
        groups.setdefault((alias.name or default_name).lower(), []).append((alias, default_name))

    names: dict[TableAlias, str] = {}
    taken = set(groups)
    for group in groups.values():
        if len(group) == 1:
            alias, default_name = group[0]
            names[alias] = alias.name or default_name
            continue

        user_named = [alias for alias, _ in group if alias.name is not None]
        if len(user_named) > 1:
            raise AmbiguousAliasError(
                f"Table alias name {user_named[0].name!r} is used more than once"
            )

        index = 1
        for alias, default_name in group:
            if alias.name is not None:
                names[alias] = alias.name
                continue

            while (candidate := f"{default_name}{index}").lower() in taken:
                index += 1
            taken.add(candidate.lower())
            names[alias] = candidate

    return names
