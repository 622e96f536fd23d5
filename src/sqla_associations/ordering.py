from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Union

import sqlalchemy as sa
from sqlalchemy.sql import operators
from sqlalchemy.sql.elements import UnaryExpression

from .promise import Promise


OrderingTerm = sa.ColumnElement[Any]
OrderingTerms = tuple[OrderingTerm, ...]

_NULLS_SWAP: dict[Any, Callable[[OrderingTerm], OrderingTerm]] = {
    operators.nulls_first_op: sa.nulls_last,
    operators.nulls_last_op: sa.nulls_first,
}


def reversed_term(term: OrderingTerm) -> OrderingTerm:
    """Flip the direction of a single ordering term.

    ``ASC`` becomes ``DESC`` and the other way around; an undecorated term is
    considered ascending. ``NULLS FIRST`` / ``NULLS LAST`` are swapped around
    the flipped inner term.
    """
    if isinstance(term, UnaryExpression):
        if term.modifier is operators.desc_op:
            return term.element.asc()  # type: ignore[attr-defined]
        if term.modifier is operators.asc_op:
            return term.element.desc()  # type: ignore[attr-defined]
        if (swap := _NULLS_SWAP.get(term.modifier)) is not None:
            return swap(reversed_term(term.element))  # type: ignore[arg-type]

    return term.desc()


@dataclass(frozen=True, slots=True)
class QueryOrdering:
    """Ordering of a join query, possibly deferred and possibly reversed.

    Elements are either promises of ordering terms or nested orderings, so
    that appending a child ordering keeps the child's own reversal state.
    """

    elements: tuple[Union[Promise[OrderingTerms], QueryOrdering], ...] = ()
    is_reversed: bool = False

    @classmethod
    def of(
        cls,
        terms: Sequence[Any] | Callable[[Any], Sequence[Any]],
    ) -> QueryOrdering:
        if callable(terms):
            fn = terms
            promise: Promise[OrderingTerms] = Promise.of(
                lambda context: tuple(_coerce(t) for t in fn(context))
            )
        else:
            promise = Promise.of(tuple(_coerce(t) for t in terms))

        return cls(elements=(promise,))

    @property
    def is_empty(self) -> bool:
        return not self.elements

    @property
    def reversed(self) -> QueryOrdering:
        if self.is_empty:
            return self

        return QueryOrdering(elements=self.elements, is_reversed=not self.is_reversed)

    def appending(self, other: QueryOrdering) -> QueryOrdering:
        if other.is_empty:
            return self
        if self.is_empty:
            return other

        return QueryOrdering(elements=(self, other))

    def qualified(self, adapt: Callable[[OrderingTerm], OrderingTerm]) -> QueryOrdering:
        """Apply *adapt* to every term, keeping deferred elements deferred."""
        elements: list[Union[Promise[OrderingTerms], QueryOrdering]] = []
        for element in self.elements:
            if isinstance(element, QueryOrdering):
                elements.append(element.qualified(adapt))
            else:
                elements.append(element.map(lambda terms: tuple(adapt(t) for t in terms)))

        return QueryOrdering(elements=tuple(elements), is_reversed=self.is_reversed)

    def resolve(self, context: Any = None) -> OrderingTerms:
        terms: list[OrderingTerm] = []
        for element in self.elements:
            terms.extend(element.resolve(context))

        if self.is_reversed:
            return tuple(reversed_term(term) for term in terms)

        return tuple(terms)


def _coerce(term: Any) -> OrderingTerm:
    clause_element = getattr(term, "__clause_element__", None)
    if clause_element is not None:
        return clause_element()

    return term
