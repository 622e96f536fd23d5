"""Example models used by the usage scripts."""

from __future__ import annotations

import sqlalchemy as sa
from sqlalchemy import orm


class Base(orm.DeclarativeBase):
    pass


book_tags = sa.Table(
    "book_tags",
    Base.metadata,
    sa.Column("book_id", sa.Integer, sa.ForeignKey("books.id"), primary_key=True),
    sa.Column("tag_id", sa.Integer, sa.ForeignKey("tags.id"), primary_key=True),
)


class Country(Base):
    __tablename__ = "countries"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    name: orm.Mapped[str] = orm.mapped_column(sa.String(100))


class Author(Base):
    __tablename__ = "authors"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    name: orm.Mapped[str] = orm.mapped_column(sa.String(100))
    country_id: orm.Mapped[int | None] = orm.mapped_column(sa.ForeignKey("countries.id"))

    # relationships
    country: orm.Mapped[Country | None] = orm.relationship(lazy="noload")
    books: orm.Mapped[list[Book]] = orm.relationship(back_populates="author", lazy="noload")


class Book(Base):
    __tablename__ = "books"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    title: orm.Mapped[str] = orm.mapped_column(sa.String(200))
    year: orm.Mapped[int] = orm.mapped_column()
    author_id: orm.Mapped[int] = orm.mapped_column(sa.ForeignKey("authors.id"))

    # relationships
    author: orm.Mapped[Author] = orm.relationship(back_populates="books", lazy="noload")
    tags: orm.Mapped[list[Tag]] = orm.relationship(secondary=book_tags, lazy="noload")


class Tag(Base):
    __tablename__ = "tags"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    label: orm.Mapped[str] = orm.mapped_column(sa.String(50))


class Employee(Base):
    __tablename__ = "employees"

    id: orm.Mapped[int] = orm.mapped_column(primary_key=True)
    name: orm.Mapped[str] = orm.mapped_column(sa.String(100))
    manager_id: orm.Mapped[int | None] = orm.mapped_column(sa.ForeignKey("employees.id"))

    # relationships
    manager: orm.Mapped[Employee | None] = orm.relationship(
        back_populates="reports", remote_side=[id], lazy="noload"
    )
    reports: orm.Mapped[list[Employee]] = orm.relationship(back_populates="manager", lazy="noload")
