"""Basic sqla-associations usage examples.

Demonstrates hand-declared associations, merging, aliases, deferred
filters, row decoding, and ``sqla_request`` over ORM relationships.

NOTE: This file is illustrative; it won't run standalone
without a database and seeded data.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncConnection, create_async_engine

from sqla_associations import (
    PreparedRequest,
    QueryRequest,
    TableAlias,
    belongs_to,
    get_node,
    has_many,
    has_many_through,
    init_node,
    sqla_request,
)

from .models import Author, Base, Book, Country, Tag, book_tags


# ── 1. Initialize once at startup ────────────────────────────────────

engine = create_async_engine("sqlite+aiosqlite:///:memory:")


async def setup() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # Only needed by sqla_request: builds the association graph of all relationships
    init_node(get_node(Base))


# ── 2. Declare associations ──────────────────────────────────────────

book_author = belongs_to(Book, Author, key="author")
author_books = has_many(Author, Book, key="books")
author_country = belongs_to(Author, Country, key="country")
book_tags_pivot = has_many(Book, book_tags)
book_tag_list = has_many_through(book_tags_pivot, belongs_to(book_tags, Tag, key="tags"))


async def fetch(conn: AsyncConnection, prepared: PreparedRequest) -> list[dict[str, Any]]:
    result = await conn.execute(prepared.statement)
    return [prepared.decode(row).as_dict() for row in result.all()]


# ── 3. Include associations ──────────────────────────────────────────


async def get_books_with_author(conn: AsyncConnection) -> list[dict[str, Any]]:
    # SELECT books.*, authors.* FROM books JOIN authors ON authors.id = books.author_id
    request = QueryRequest.all(Book).including_required(book_author)
    return await fetch(conn, request.prepare())


async def get_books_with_author_and_country(conn: AsyncConnection) -> list[dict[str, Any]]:
    # Countries are optional: LEFT OUTER JOIN countries
    request = QueryRequest.all(Book).including_required(
        book_author.select([Author.name]).including_optional(author_country)
    )
    return await fetch(conn, request.prepare())


# ── 4. Merging: the same association twice is one join ──────────────


async def get_recent_books_names_only(conn: AsyncConnection) -> list[dict[str, Any]]:
    request = (
        QueryRequest.all(Book)
        .joining_required(book_author.filter(Author.name != "anonymous"))
        .including_optional(book_author.select([Author.name]))
        .filter(Book.year >= 2000)  # noqa: PLR2004
        .order([Book.year, Book.title])
    )
    return await fetch(conn, request.prepare())


# ── 5. Custom aliases ────────────────────────────────────────────────


async def get_books_with_aliased_author(conn: AsyncConnection) -> list[dict[str, Any]]:
    # ... JOIN authors AS writer ON writer.id = books.author_id
    writer = TableAlias(name="writer")
    request = QueryRequest.all(Book).including_required(book_author.aliased(writer))
    return await fetch(conn, request.prepare())


# ── 6. Through associations ─────────────────────────────────────────


async def get_books_with_tags(conn: AsyncConnection) -> list[dict[str, Any]]:
    # The book_tags pivot is joined but none of its columns are selected
    request = QueryRequest.all(Book).including_optional(book_tag_list)
    return await fetch(conn, request.prepare())


# ── 7. Deferred filters ─────────────────────────────────────────────


async def get_books_since(conn: AsyncConnection, year: int) -> list[dict[str, Any]]:
    # The filter is built when the request is prepared, from its context
    request = QueryRequest.all(Book).filter(lambda since: Book.year >= since)
    return await fetch(conn, request.prepare(year))


# ── 8. Associated records of one record ─────────────────────────────


async def get_books_of(conn: AsyncConnection, author: Author) -> list[dict[str, Any]]:
    query = author_books.request_for(author)
    return await fetch(conn, QueryRequest(query).prepare())


# ── 9. From ORM relationships ───────────────────────────────────────


async def get_authors_with_books_and_tags(conn: AsyncConnection) -> list[dict[str, Any]]:
    request = sqla_request(model=Author, loads=("books.tags", "country"))
    return await fetch(conn, request.prepare())
