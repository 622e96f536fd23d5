from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

import sqlalchemy as sa
from sqlalchemy.sql.elements import ColumnClause

from .adapter import RowAdapter
from .alias import TableAlias, resolve_alias_names
from .condition import JoinCondition, JoinKind
from .datastructures import frozendict
from .errors import AmbiguousAssociationKeyError, UnboundTableError, UnsupportedCompositionError
from .ordering import QueryOrdering
from .promise import Immediate, Promise
from .source import Source, qualify


logger = logging.getLogger(__name__)

Predicate = sa.ColumnElement[bool]
FilterPromise = Promise["Predicate | None"]


def _and(lhs: Predicate | None, rhs: Predicate | None) -> Predicate | None:
    if lhs is None:
        return rhs
    if rhs is None:
        return lhs

    return sa.and_(lhs, rhs)


def _coerce(element: Any) -> Any:
    clause_element = getattr(element, "__clause_element__", None)
    return clause_element() if clause_element is not None else element


def _expanded(element: Any) -> Iterator[Any]:
    """Yield the columns *element* stands for in a selection.

    Tables, subqueries and mapped classes stand for all of their columns.

    Raises:
        ValueError: For ``*`` literals, whose width is unknown until the
            statement runs.
    """
    if isinstance(element, sa.FromClause):
        yield from element.c
        return

    if isinstance(table := getattr(element, "__table__", None), sa.FromClause):
        yield from table.c
        return

    element = _coerce(element)
    if isinstance(element, ColumnClause) and element.is_literal and element.name.split(".")[-1] == "*":
        raise ValueError(f"Can't select {element.name!r}: name the columns, or pass the table itself")

    yield element


@dataclass(frozen=True, slots=True, eq=False)
class JoinQuery:
    """A node of a joined request: one table, and the joins hanging from it.

    ``joins`` maps association keys to :class:`Join` edges. Its order is the
    order of the SQL joins and of the selected columns.

    Every transformation returns a new query. Finalization assigns table
    aliases and fills ``from_clause``; the ``finalized_*`` accessors are only
    meaningful on a finalized query.
    """

    source: Source
    selection: tuple[sa.ColumnElement[Any], ...] = ()
    filter_promise: FilterPromise = Immediate(None)
    ordering: QueryOrdering = QueryOrdering()
    joins: frozendict[str, Join] = field(default_factory=frozendict)
    from_clause: sa.FromClause | None = None

    @classmethod
    def of(cls, source: Any) -> JoinQuery:
        """Select all columns of *source* (table, ORM class, subquery or ``Select``)."""
        source = Source.of(source)
        return cls(source=source, selection=source.columns)

    @property
    def alias(self) -> TableAlias | None:
        return self.source.alias

    # Transformations

    def select(self, selection: Sequence[Any]) -> JoinQuery:
        """Replace the selected columns.

        Tables and mapped classes in *selection* are expanded to their columns.
        """
        return replace(self, selection=tuple(column for element in selection for column in _expanded(element)))

    def filter(self, predicate: Any | Callable[[Any], Any]) -> JoinQuery:
        """AND *predicate* with the current filter.

        *predicate* is an expression, or a function of the execution
        context returning one; the latter is only called at build time.
        """
        promise: FilterPromise = Promise.of(predicate).map(_coerce)
        return replace(self, filter_promise=self.filter_promise.combine(promise, _and))

    def order(self, terms: Sequence[Any] | Callable[[Any], Sequence[Any]]) -> JoinQuery:
        return replace(self, ordering=QueryOrdering.of(terms))

    def reversed(self) -> JoinQuery:
        return replace(self, ordering=self.ordering.reversed)

    def qualified(self, alias: TableAlias) -> JoinQuery:
        return replace(self, source=self.source.qualified(alias))

    def joined(self, join: Join, key: str) -> JoinQuery:
        """Attach *join* under *key*, merging with a join already there.

        Raises:
            AmbiguousAssociationKeyError: If the join at *key* can't be
                merged with *join*.
        """
        existing = self.joins.get(key)
        if existing is None:
            return replace(self, joins=self.joins.set(key, join))

        merged = existing.merged(join)
        if merged is None:
            raise AmbiguousAssociationKeyError(key)

        return replace(self, joins=self.joins.without(key).set(key, merged))

    def merged(self, other: JoinQuery) -> JoinQuery | None:
        """Combine two queries on the same table, or return ``None``.

        Filters are ANDed, joins are merged key by key. The selection and
        the ordering of *other* replace those of ``self`` unless empty.
        """
        source = self.source.merged(other.source)
        if source is None:
            logger.debug("Can't merge queries on %s and %s", self.source.name, other.source.name)
            return None

        joins: dict[str, Join] = {}
        for key, join in self.joins.items():
            if (other_join := other.joins.get(key)) is None:
                joins[key] = join
                continue

            if (merged_join := join.merged(other_join)) is None:
                logger.debug("Can't merge joins at key %r", key)
                return None

            joins[key] = merged_join

        for key, join in other.joins.items():
            joins.setdefault(key, join)

        return JoinQuery(
            source=source,
            selection=other.selection or self.selection,
            filter_promise=self.filter_promise.combine(other.filter_promise, _and),
            ordering=self.ordering if other.ordering.is_empty else other.ordering,
            joins=frozendict(joins),
        )

    # Finalization

    def finalized(self) -> JoinQuery:
        """Assign fresh aliases to every table of the tree and qualify columns.

        Each call allocates new alias identities, so a query must be
        finalized once per statement.

        Raises:
            AmbiguousAliasError: If two user-named aliases share a name.
            UnboundTableError: If a column refers to an alias that is not
                part of the tree.
        """
        allocated = self._allocated()
        names = resolve_alias_names(
            (node.source.alias, node.source.name)  # type: ignore[misc]
            for node in allocated._walk()
        )
        logger.debug("Finalized aliases: %s", list(names.values()))

        return allocated._bound(_Bindings.of(self, allocated, names))

    def _allocated(self) -> JoinQuery:
        user_alias = self.source.alias
        alias = TableAlias(name=user_alias.name if user_alias is not None else None)

        return replace(
            self,
            source=self.source.qualified(alias),
            joins=frozendict((key, join._allocated()) for key, join in self.joins.items()),
        )

    def _walk(self) -> Iterator[JoinQuery]:
        yield self
        for join in self.joins.values():
            yield from join.query._walk()

    def _bound(self, bindings: _Bindings) -> JoinQuery:
        assert self.source.alias is not None
        from_clause = bindings.from_clauses[self.source.alias]

        def adapt(element: Any) -> Any:
            return qualify(
                element,
                from_clause,
                selectable=self.source.selectable,
                tables=bindings.tables,
                resolve=bindings.resolve,
            )

        return replace(
            self,
            selection=tuple(adapt(element) for element in self.selection),
            filter_promise=self.filter_promise.map(lambda e: None if e is None else adapt(e)),
            ordering=self.ordering.qualified(adapt),
            joins=frozendict((key, join._bound(bindings)) for key, join in self.joins.items()),
            from_clause=from_clause,
        )

    @property
    def finalized_aliases(self) -> tuple[TableAlias, ...]:
        aliases: tuple[TableAlias, ...] = (self.alias,) if self.alias is not None else ()
        for join in self.joins.values():
            aliases += join.query.finalized_aliases

        return aliases

    @property
    def finalized_selection(self) -> tuple[sa.ColumnElement[Any], ...]:
        selection = self.selection
        for join in self.joins.values():
            selection += join.query.finalized_selection

        return selection

    @property
    def finalized_ordering(self) -> QueryOrdering:
        ordering = self.ordering
        for join in self.joins.values():
            ordering = ordering.appending(join.query.finalized_ordering)

        return ordering

    def finalized_row_adapter(
        self,
        start_index: int = 0,
        key_path: Sequence[str] = (),
    ) -> tuple[RowAdapter, int] | None:
        """Compute the column ranges of this level and of its joins.

        Returns:
            ``(adapter, end_index)``, or ``None`` when neither this level nor
            any join selects a column: rows can then be decoded directly.
        """
        width = len(self.selection)
        end_index = start_index + width
        scopes: dict[str, RowAdapter] = {}
        for key, join in self.joins.items():
            result = join.query.finalized_row_adapter(end_index, (*key_path, key))
            if result is not None:
                scopes[key], end_index = result

        if width == 0 and not scopes:
            return None

        adapter = RowAdapter(
            start=start_index,
            stop=start_index + width,
            scopes=frozendict(scopes),
            key_path=tuple(key_path),
        )
        return adapter, end_index


@dataclass(frozen=True, slots=True, eq=False)
class Join:
    """An edge of a joined request: how ``query`` is joined to its parent."""

    kind: JoinKind
    condition: JoinCondition
    query: JoinQuery

    def merged(self, other: Join) -> Join | None:
        """Merge two joins under the same key; ``REQUIRED`` wins over ``OPTIONAL``.

        Returns ``None`` when conditions differ or queries can't be merged.
        """
        if self.condition != other.condition:
            logger.debug("Can't merge joins with conditions %s and %s", self.condition, other.condition)
            return None

        if (query := self.query.merged(other.query)) is None:
            return None

        required = JoinKind.REQUIRED in (self.kind, other.kind)
        return Join(
            kind=JoinKind.REQUIRED if required else JoinKind.OPTIONAL,
            condition=self.condition,
            query=query,
        )

    def finalized(self) -> Join:
        return replace(self, query=self.query.finalized())

    def _allocated(self) -> Join:
        return replace(self, query=self.query._allocated())

    def _bound(self, bindings: _Bindings) -> Join:
        return replace(self, query=self.query._bound(bindings))

    def join_clause(
        self,
        from_: sa.FromClause,
        left: sa.FromClause,
        *,
        is_required_allowed: bool = True,
        context: Any = None,
    ) -> sa.FromClause:
        """Join this edge, and the joins below it, onto *from_*.

        Args:
            from_: The FROM tree built so far.
            left: The finalized parent table the join condition refers to.
            is_required_allowed: ``False`` once an optional join was crossed
                on the way from the root.
            context: Execution context used to resolve deferred filters.

        Raises:
            UnsupportedCompositionError: If a required join sits below an
                optional one.
            ValueError: If the query was not finalized.
        """
        right = self.query.from_clause
        if right is None:
            raise ValueError("Join query is not finalized")

        if self.kind is JoinKind.OPTIONAL:
            is_required_allowed = False
        elif not is_required_allowed:
            raise UnsupportedCompositionError(
                "Not implemented: chaining a required association behind an optional association"
            )

        onclause = _and(
            self.condition.sql_expression(left, right),
            self.query.filter_promise.resolve(context),
        )
        from_ = sa.join(from_, right, onclause, isouter=self.kind is JoinKind.OPTIONAL)

        for join in self.query.joins.values():
            from_ = join.join_clause(
                from_, right, is_required_allowed=is_required_allowed, context=context
            )

        return from_


@dataclass(frozen=True, slots=True)
class _Bindings:
    """The rendered tables of a finalized tree.

    ``from_clauses`` is keyed by the allocated aliases, ``user_aliases``
    maps the aliases given by the user to them, and ``tables`` maps the
    tables joined once to their rendered table.
    """

    from_clauses: dict[TableAlias, sa.FromClause]
    user_aliases: dict[TableAlias, TableAlias]
    tables: dict[sa.FromClause, sa.FromClause]

    @classmethod
    def of(cls, query: JoinQuery, allocated: JoinQuery, names: dict[TableAlias, str]) -> _Bindings:
        from_clauses: dict[TableAlias, sa.FromClause] = {}
        user_aliases: dict[TableAlias, TableAlias] = {}
        rendered: dict[sa.FromClause, list[sa.FromClause]] = {}
        for node, allocated_node in zip(query._walk(), allocated._walk()):
            alias = allocated_node.source.alias
            assert alias is not None
            from_clause = allocated_node.source.from_clause(names[alias])
            from_clauses[alias] = from_clause
            if node.source.alias is not None:
                user_aliases[node.source.alias] = alias
            rendered.setdefault(node.source.selectable, []).append(from_clause)

        tables = {
            selectable: from_clause
            for selectable, (from_clause, *others) in rendered.items()
            if not others and from_clause is not selectable
        }
        return cls(from_clauses, user_aliases, tables)

    def resolve(self, alias: TableAlias) -> sa.FromClause:
        """Find the rendered table of *alias*, by identity or else by name.

        Raises:
            UnboundTableError: If no table of the tree is rendered under *alias*.
        """
        allocated = self.user_aliases.get(alias)
        if allocated is None and alias.name is not None:
            allocated = next(
                (a for a in self.from_clauses if a.name is not None and a.name.lower() == alias.name.lower()),
                None,
            )
        if allocated is None:
            raise UnboundTableError(f"{alias!r} is not the alias of a joined table")

        return self.from_clauses[allocated]
