"""Associations: declared relationships that can be joined into a request.

An association wraps a :class:`JoinQuery` (what to fetch from the associated
table) and a :class:`JoinCondition` (how to link it to the origin table)
under a key. Two variants exist:

* :class:`JoinAssociation` joins one table (belongs-to, has-one, has-many).
* :class:`ThroughAssociation` reaches a target through a pivot association;
  the pivot table is joined but selects no column.

Associations are immutable. Every method returns a new association.
"""

from __future__ import annotations

import sys
from abc import ABC, abstractmethod
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, replace
from typing import Any


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

from .alias import TableAlias
from .condition import JoinCondition, JoinKind, foreign_key_mapping
from .query import Join, JoinQuery
from .tools import get_table_name


class Association(ABC):
    """Base class of associations.

    Attributes:
        key: The key of the association in the request, and of its row
            scope. Defaults to the associated table name; change it with
            :meth:`for_key`.
        query: What to fetch from the associated table.
        condition: How the associated table is linked to the origin table.
    """

    __slots__ = ()

    key: str
    query: JoinQuery
    condition: JoinCondition

    @abstractmethod
    def map_query(self, transform: Callable[[JoinQuery], JoinQuery]) -> Self: ...

    @abstractmethod
    def add(self, kind: JoinKind, query: JoinQuery) -> JoinQuery:
        """Attach this association to *query* under :attr:`key`.

        Raises:
            AmbiguousAssociationKeyError: If *query* already has a join at
                this key that can't be merged with this association.
        """

    @abstractmethod
    def for_key(self, key: str) -> Self:
        """Return the same association under another key.

        Use it when two different associations would otherwise share a key::

            >>> sender = belongs_to(Message, User, using=["sender_id"])
            >>> receiver = belongs_to(Message, User, using=["receiver_id"])
            >>> request = (
            ...     QueryRequest.all(Message)
            ...     .including_required(sender.for_key("sender"))
            ...     .including_required(receiver.for_key("receiver"))
            ... )
        """

    def select(self, selection: Sequence[Any]) -> Self:
        """Replace the selected columns of the associated table."""
        return self.map_query(lambda query: query.select(selection))

    def filter(self, predicate: Any | Callable[[Any], Any]) -> Self:
        """AND *predicate* into the ``ON`` clause of the association."""
        return self.map_query(lambda query: query.filter(predicate))

    def order(self, terms: Sequence[Any] | Callable[[Any], Sequence[Any]]) -> Self:
        """Replace the ordering of the associated table."""
        return self.map_query(lambda query: query.order(terms))

    def reversed(self) -> Self:
        return self.map_query(lambda query: query.reversed())

    def aliased(self, alias: TableAlias) -> Self:
        """Render the associated table under *alias*."""
        return self.map_query(lambda query: query.qualified(alias))

    def including_required(self, association: Association) -> Self:
        """Join *association*, selecting its columns; matching rows are required."""
        return self.map_query(lambda query: association.add(JoinKind.REQUIRED, query))

    def including_optional(self, association: Association) -> Self:
        """Join *association*, selecting its columns; matching rows are optional."""
        return self.map_query(lambda query: association.add(JoinKind.OPTIONAL, query))

    def joining_required(self, association: Association) -> Self:
        """Join *association* without selecting its columns; matching rows are required."""
        return self.map_query(lambda query: association.select(()).add(JoinKind.REQUIRED, query))

    def joining_optional(self, association: Association) -> Self:
        """Join *association* without selecting its columns; matching rows are optional."""
        return self.map_query(lambda query: association.select(()).add(JoinKind.OPTIONAL, query))

    def request_for(self, record: Mapping[str, Any] | Any) -> JoinQuery:
        """Query the rows associated with *record*.

        The join condition becomes a ``WHERE`` clause, with the origin
        columns replaced by the values of *record* (a mapping, or an object
        with matching attributes)::

            >>> team_players.request_for({"id": 1})
            >>> # SELECT player.* FROM player WHERE player.team_id = 1
        """
        query = self.query
        right = query.source.selectable
        condition = self.condition
        if condition.origin_is_left:
            pairs = [(origin, destination) for origin, destination in condition.mapping]
        else:
            pairs = [(destination, origin) for origin, destination in condition.mapping]

        for left_col, right_col in pairs:
            value = record[left_col] if isinstance(record, Mapping) else getattr(record, left_col)
            query = query.filter(right.c[right_col] == value)

        return query


@dataclass(frozen=True, slots=True, eq=False)
class JoinAssociation(Association):
    """An association backed by a single join."""

    key: str
    query: JoinQuery
    condition: JoinCondition

    def map_query(self, transform: Callable[[JoinQuery], JoinQuery]) -> Self:
        return replace(self, query=transform(self.query))

    def add(self, kind: JoinKind, query: JoinQuery) -> JoinQuery:
        return query.joined(Join(kind=kind, condition=self.condition, query=self.query), self.key)

    def for_key(self, key: str) -> Self:
        return replace(self, key=key)


@dataclass(frozen=True, slots=True, eq=False)
class ThroughAssociation(Association):
    """An association that reaches ``target`` through ``pivot``.

    From the outside it is one edge keyed by the target: it contributes the
    target columns only, while the SQL expands to two nested joins.
    """

    pivot: Association
    target: Association

    @property
    def key(self) -> str:
        return self.target.key

    @property
    def query(self) -> JoinQuery:
        return self._pivot_joining(JoinKind.REQUIRED).query

    @property
    def condition(self) -> JoinCondition:
        return self.pivot.condition

    def map_query(self, transform: Callable[[JoinQuery], JoinQuery]) -> Self:
        return replace(self, target=self.target.map_query(transform))

    def add(self, kind: JoinKind, query: JoinQuery) -> JoinQuery:
        return self._pivot_joining(kind).for_key(self.key).add(kind, query)

    def for_key(self, key: str) -> Self:
        return replace(self, target=self.target.for_key(key))

    def request_for(self, record: Mapping[str, Any] | Any) -> JoinQuery:
        """Query the target rows associated with *record*.

        The target table is the root; the pivot is joined without selecting
        any column, and filtered on *record*::

            >>> user_roles_through.request_for({"id": 1})
            >>> # SELECT roles.* FROM roles
            >>> # JOIN user_roles ON user_roles.role_id = roles.id AND user_roles.user_id = 1
        """
        condition = self.target.condition
        pivot = Join(
            kind=JoinKind.REQUIRED,
            condition=JoinCondition(condition.mapping, origin_is_left=not condition.origin_is_left),
            query=self.pivot.request_for(record).select(()),
        )
        return self.target.query.joined(pivot, self.pivot.key)

    def _pivot_joining(self, kind: JoinKind) -> Association:
        return self.pivot.map_query(lambda query: self.target.add(kind, query.select(())))


# Declarations


def belongs_to(
    origin: Any,
    destination: Any,
    *,
    key: str | None = None,
    using: Sequence[str] | None = None,
) -> JoinAssociation:
    """Declare that *origin* rows reference one *destination* row.

    The foreign key is read from *origin*'s table metadata::

        >>> player_team = belongs_to(Player, Team)
        >>> # JOIN team ON team.id = player.team_id

    Args:
        origin: Table or mapped class holding the foreign key.
        destination: Referenced table or mapped class.
        key: Association key. Defaults to the destination table name.
        using: Origin columns of the foreign key, when there are several.

    Raises:
        ForeignKeyError: If the foreign key is missing or ambiguous.
    """
    mapping = foreign_key_mapping(origin, destination, using)
    return JoinAssociation(
        key=key or get_table_name(destination),
        query=JoinQuery.of(destination),
        condition=JoinCondition(mapping, origin_is_left=True),
    )


def has_many(
    origin: Any,
    destination: Any,
    *,
    key: str | None = None,
    using: Sequence[str] | None = None,
) -> JoinAssociation:
    """Declare that *destination* rows reference *origin* rows.

    Here *destination* holds the foreign key; ``using`` names its columns.

    Raises:
        ForeignKeyError: If the foreign key is missing or ambiguous.
    """
    mapping = foreign_key_mapping(destination, origin, using)
    return JoinAssociation(
        key=key or get_table_name(destination),
        query=JoinQuery.of(destination),
        condition=JoinCondition(mapping, origin_is_left=False),
    )


has_one = has_many


def has_many_through(pivot: Association, target: Association) -> ThroughAssociation:
    """Declare an association to *target*, reached through *pivot*.

    *target* must be declared from the pivot table::

        >>> user_roles = has_many(User, UserRole)
        >>> roles = has_many_through(user_roles, belongs_to(UserRole, Role, key="roles"))
    """
    return ThroughAssociation(pivot=pivot, target=target)


has_one_through = has_many_through
