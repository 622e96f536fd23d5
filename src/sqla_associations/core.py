from __future__ import annotations

import sys
from collections import deque
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Final, Generic, TypeVar


if sys.version_info >= (3, 11):
    from typing import Required, TypedDict, Unpack
else:
    from typing_extensions import Required, TypedDict, Unpack

import sqlalchemy as sa
from sqlalchemy import orm

from .association import Association
from .condition import JoinKind
from .datastructures import frozendict
from .node import Edge, Node
from .request import QueryRequest


T = TypeVar("T", bound=orm.DeclarativeBase)
DEFAULT_JOIN_KIND: Final[JoinKind] = JoinKind.OPTIONAL


@dataclass(slots=True, frozen=True)
class _LoadParams(Generic[T]):
    __class_getitem__ = classmethod(lambda cls, *args: cls)

    model: type[T]
    loads: tuple[str, ...] = ()
    node: Node = field(default_factory=Node)
    required: bool = field(default=False)
    conditions: Mapping[str, Any] | None = field(default=None)
    query: QueryRequest | None = field(default=None)


class _LoadParamsType(TypedDict, Generic[T], total=False):
    model: Required[type[T]]
    loads: tuple[str, ...]
    node: Node
    required: bool
    conditions: Mapping[str, Any]
    query: QueryRequest


class RequestBuilder(Generic[T]):
    """Composes the associations named by load paths into one request.

    Each load path (``"team"``, ``"posts.comments"``) becomes a chain of
    nested associations, added to the request under the first key of the
    path. Paths sharing a prefix are merged into the same joins.
    """

    __slots__ = ("conditions", "kind", "model", "node", "_seen_paths")

    def __init__(
        self,
        model: type[T],
        node: Node,
        *,
        kind: JoinKind,
        conditions: Mapping[str, Any] | None,
    ) -> None:
        if orm.DeclarativeBase in getattr(model, "__bases__", ()) or model is orm.DeclarativeBase:
            raise TypeError("model must not be orm.DeclarativeBase")

        self.model = model
        self.node = node
        self.kind = kind
        self.conditions = conditions or {}
        self._seen_paths: set[str] = set()

    def build(
        self,
        loads: tuple[str, ...] = (),
        query: QueryRequest | None = None,
    ) -> QueryRequest:
        """Add every load path to *query* (a fresh request on the model by default).

        Unknown plain keys are skipped; a dotted path with an unknown segment
        raises ``ValueError``.
        """
        request = query if query is not None else QueryRequest.all(self.model)
        for load_key in loads:
            if "." in load_key:
                path = _resolve_dotted_path(self.model, load_key, self.node)
            else:
                path = _bfs_search(self.model, load_key, self.node)

            if path:
                association = self._chain(path)
                if self.kind is JoinKind.REQUIRED:
                    request = request.including_required(association)
                else:
                    request = request.including_optional(association)

        return request

    def _chain(self, path: Sequence[Edge]) -> Association:
        """Nest the associations of *path*, innermost first.

        The condition registered for a key is applied the first time its
        cumulative path is met: later paths merge into the same join, and
        merging ANDs the filters anyway.
        """
        cumulative = [edge.association.key for edge in path]
        chained: Association | None = None
        for depth in range(len(path) - 1, -1, -1):
            association = path[depth].association
            cumulative_path = ".".join(cumulative[: depth + 1])
            if (
                cumulative_path not in self._seen_paths
                and (condition := self.conditions.get(association.key)) is not None
            ):
                association = association.filter(condition)

            if chained is not None:
                association = self._including(association, chained)

            chained = association

        self._seen_paths.update(".".join(cumulative[: i + 1]) for i in range(len(path)))
        assert chained is not None
        return chained

    def _including(self, association: Association, nested: Association) -> Association:
        if self.kind is JoinKind.REQUIRED:
            return association.including_required(nested)

        return association.including_optional(nested)


@lru_cache(maxsize=2048)
def _bfs_search(
    start: type[T],
    end: str,
    node: Node,
) -> tuple[Edge, ...]:
    """Find the shortest chain of associations from *start* to the key *end*.

    Returns:
        The edges of the path, or ``()`` if no model reachable from *start*
        declares an association named *end*.
    """
    queue: deque[tuple[type[orm.DeclarativeBase], tuple[Edge, ...]]] = deque([(start, ())])
    seen: set[type[orm.DeclarativeBase]] = set()

    while queue:
        current, path = queue.popleft()
        if current in seen:
            continue
        seen.add(current)

        for key, edge in node.get(current).items():
            new_path = (*path, edge)
            if key == end:
                return new_path

            queue.append((edge.target, new_path))

    return ()


@lru_cache(maxsize=1028)
def _resolve_dotted_path(
    model: type[T],
    dotted: str,
    node: Node,
) -> tuple[Edge, ...]:
    """Resolve ``'posts.comments.reactions'`` into a chain of edges.

    Each segment must be an association key of the model reached so far.
    A path without dots falls back to :func:`_bfs_search`.
    """
    parts = dotted.split(".")
    if len(parts) == 1:
        return _bfs_search(model, dotted, node)

    result: list[Edge] = []
    current: type[orm.DeclarativeBase] = model
    for segment in parts:
        edge = node.get(current).get(segment)
        if edge is None:
            raise ValueError(
                f"No association '{segment}' on {current.__name__} "
                f"(resolving '{dotted}' from {model.__name__})"
            )
        result.append(edge)
        current = edge.target

    return tuple(result)


@lru_cache(maxsize=1028)
def _request_with_associations(params: _LoadParams[T]) -> QueryRequest:
    builder = RequestBuilder(
        model=params.model,
        node=params.node,
        kind=JoinKind.REQUIRED if params.required else DEFAULT_JOIN_KIND,
        conditions=params.conditions,
    )

    return builder.build(loads=params.loads, query=params.query)


def sqla_request(**params: Unpack[_LoadParamsType[T]]) -> QueryRequest:
    """Create a request on *model* joined with the associations named in *loads*.

    Args:
        model: type[T]
            The mapped class to select from.
        loads: tuple[str, ...]
            Association keys or dotted paths to join. Plain keys that are not
            declared on the model are looked up breadth-first through the
            association graph. Defaults to ().
        node: Node
            Association graph. Defaults to the ``Node`` singleton.
        required: bool
            Join with inner joins instead of left outer joins.
            Defaults to False.
        conditions: Mapping[str, Any]
            Extra ``ON`` criteria by association key: expressions, or
            functions of the execution context returning one.
        query: QueryRequest
            Existing request to extend. Defaults to all columns of *model*.

    Returns:
        An immutable :class:`QueryRequest`. Call ``prepare()`` to get the
        statement and its row adapter.

    Examples:
        Dotted paths share joins::

            request = sqla_request(model=Player, loads=("team", "team.league"))

        Filtered association::

            request = sqla_request(
                model=Team,
                loads=("players",),
                conditions={"players": Player.active.is_(True)},
            )
    """
    params["conditions"] = frozendict(params.get("conditions", {}))

    return _request_with_associations(_LoadParams[T](**params))


def sqla_select(**params: Unpack[_LoadParamsType[T]]) -> sa.Select[Any]:
    """Shorthand for ``sqla_request(**params).prepare().statement``."""
    return sqla_request(**params).prepare().statement


def sqla_cache_info() -> dict[str, Any]:
    """Return LRU cache statistics for all internal caches."""
    from .tools import _get_table_name

    return {
        fn.__name__: fn.cache_info()
        for fn in (
            _bfs_search,
            _resolve_dotted_path,
            _request_with_associations,
            _get_table_name,
        )
    }


def sqla_cache_clear() -> None:
    """Clear all internal LRU caches."""
    from .tools import _get_table_name

    for fn in (
        _bfs_search,
        _resolve_dotted_path,
        _request_with_associations,
        _get_table_name,
    ):
        fn.cache_clear()
