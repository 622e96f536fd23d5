from __future__ import annotations

import sys
from collections.abc import Iterator, Mapping
from typing import Any, TypeVar


if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self


K = TypeVar("K")
V = TypeVar("V")


class frozendict(Mapping[K, V]):  # noqa: N801
    """Immutable, insertion-ordered mapping.

    Join queries keep their joins in a ``frozendict`` keyed by association
    key: the order of insertion is the order of the SQL joins and of the
    selected columns, and a transformed query never shares mutable state
    with the query it derives from.

    Updates return new instances::

        >>> joins = frozendict(team=1)
        >>> joins.set("league", 2)
        <frozendict {'team': 1, 'league': 2}>
        >>> joins.set("team", 3).without("league")
        <frozendict {'team': 3}>

    The hash is computed on first use, so values only need to be hashable
    when the mapping itself is hashed.
    """

    __slots__ = ("_dict", "_hash")

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self._dict: dict[K, V] = dict(*args, **kwargs)
        self._hash: int | None = None

    def __getitem__(self, key: K) -> V:
        return self._dict[key]

    def __contains__(self, key: Any) -> bool:
        return key in self._dict

    def __iter__(self) -> Iterator[K]:
        return iter(self._dict)

    def __len__(self) -> int:
        return len(self._dict)

    def set(self, key: K, value: V) -> Self:
        """Return a copy where *key* maps to *value*.

        An existing key keeps its position; a new key is appended.
        """
        items = dict(self._dict)
        items[key] = value
        return type(self)(items)

    def without(self, key: K) -> Self:
        """Return a copy without *key* (no error if it is missing)."""
        return type(self)((k, v) for k, v in self._dict.items() if k != key)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._dict!r}>"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, frozendict):
            return self._dict == other._dict

        if isinstance(other, dict):
            return self._dict == other

        return NotImplemented

    def __hash__(self) -> int:
        if self._hash is None:
            self._hash = hash(frozenset(self._dict.items()))

        return self._hash
