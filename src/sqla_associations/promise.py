from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar


T = TypeVar("T")
U = TypeVar("U")
V = TypeVar("V")


class Promise(ABC, Generic[T]):
    """A value that is either known now, or computed from an execution context.

    Filters and orderings may depend on the connection a request eventually
    runs on. They are stored as promises, combined lazily, and only resolved
    when the statement is built::

        >>> Promise.of(3).resolve()
        3
        >>> Promise.of(lambda conn: conn.dialect.name).map(str.upper).resolve(conn)
        'SQLITE'
    """

    __slots__ = ()

    @staticmethod
    def of(value: T | Callable[[Any], T]) -> Promise[T]:
        """Wrap *value*: callables are deferred, anything else is immediate."""
        if callable(value):
            return Deferred(value)

        return Immediate(value)

    @abstractmethod
    def resolve(self, context: Any = None) -> T: ...

    @abstractmethod
    def map(self, fn: Callable[[T], U]) -> Promise[U]: ...

    @abstractmethod
    def combine(self, other: Promise[U], fn: Callable[[T, U], V]) -> Promise[V]:
        """Combine two promises; the result is deferred if either one is."""


@dataclass(frozen=True, slots=True)
class Immediate(Promise[T]):
    value: T

    def resolve(self, context: Any = None) -> T:
        return self.value

    def map(self, fn: Callable[[T], U]) -> Promise[U]:
        return Immediate(fn(self.value))

    def combine(self, other: Promise[U], fn: Callable[[T, U], V]) -> Promise[V]:
        if isinstance(other, Immediate):
            return Immediate(fn(self.value, other.value))

        value = self.value
        return Deferred(lambda context: fn(value, other.resolve(context)))


@dataclass(frozen=True, slots=True)
class Deferred(Promise[T]):
    fn: Callable[[Any], T]

    def resolve(self, context: Any = None) -> T:
        return self.fn(context)

    def map(self, fn: Callable[[T], U]) -> Promise[U]:
        inner = self.fn
        return Deferred(lambda context: fn(inner(context)))

    def combine(self, other: Promise[U], fn: Callable[[T, U], V]) -> Promise[V]:
        inner = self.fn
        return Deferred(lambda context: fn(inner(context), other.resolve(context)))
