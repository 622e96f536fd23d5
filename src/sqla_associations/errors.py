from __future__ import annotations


class AssociationError(Exception):
    """Base class for configuration errors raised while composing associations."""


class AmbiguousAssociationKeyError(AssociationError, ValueError):
    """Two joins that can not be merged were attached under the same key."""

    def __init__(self, key: str) -> None:
        super().__init__(
            f"The association key {key!r} is ambiguous. "
            "Use the Association.for_key() method in order to disambiguate."
        )
        self.key = key


class UnsupportedCompositionError(AssociationError, NotImplementedError):
    """A required association was nested under an optional one."""


class ForeignKeyError(AssociationError, LookupError):
    """Foreign key metadata is missing or ambiguous for a declared association."""


class AmbiguousAliasError(AssociationError, ValueError):
    """Several user-defined table aliases share the same name in one query."""


class UnboundTableError(AssociationError, LookupError):
    """A column refers to a table that is not one of the joined tables of the request."""
