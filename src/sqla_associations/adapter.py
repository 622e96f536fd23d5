from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from .datastructures import frozendict


@dataclass(frozen=True, slots=True)
class ScopedRow:
    """One level of a decoded row: its own columns, and nested scopes by key."""

    columns: tuple[str, ...]
    values: tuple[Any, ...]
    scopes: Mapping[str, ScopedRow] = field(default_factory=frozendict)

    def __getitem__(self, column: str | int) -> Any:
        if isinstance(column, int):
            return self.values[column]
        try:
            return self.values[self.columns.index(column)]
        except ValueError:
            raise KeyError(column) from None

    def __len__(self) -> int:
        return len(self.values)

    def __iter__(self) -> Iterator[Any]:
        return iter(self.values)

    def as_dict(self) -> dict[str, Any]:
        """Nested plain dictionaries; scopes are stored under their key."""
        out: dict[str, Any] = dict(zip(self.columns, self.values))
        for key, scope in self.scopes.items():
            out[key] = scope.as_dict()

        return out


@dataclass(frozen=True, slots=True)
class RowAdapter:
    """Slices a flat result row into the nesting levels of a joined request.

    ``start``/``stop`` is the column range of this level; ``scopes`` holds the
    adapters of the joined associations, by association key. ``key_path``
    records where the level sits in the request (``()`` for the root,
    ``("team", "league")`` for a nested association).
    """

    start: int
    stop: int
    scopes: Mapping[str, RowAdapter] = field(default_factory=frozendict)
    key_path: tuple[str, ...] = ()

    @property
    def width(self) -> int:
        return self.stop - self.start

    def adapt(self, row: Sequence[Any], columns: Sequence[str] | None = None) -> ScopedRow:
        """Decode *row* into a tree of :class:`ScopedRow`.

        Args:
            row: The flat row, in ``finalized_selection`` order.
            columns: Column names for the full row. Defaults to positional
                names (``"0"``, ``"1"``...).
        """
        values = tuple(row)
        names = tuple(columns) if columns is not None else tuple(str(i) for i in range(len(values)))

        return self._adapt(values, names)

    def _adapt(self, values: tuple[Any, ...], names: tuple[str, ...]) -> ScopedRow:
        return ScopedRow(
            columns=names[self.start : self.stop],
            values=values[self.start : self.stop],
            scopes=frozendict({key: scope._adapt(values, names) for key, scope in self.scopes.items()}),
        )
