from __future__ import annotations

import os
import warnings
from collections.abc import AsyncIterator, Iterator

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    create_async_engine,
)

from sqla_associations import sqla_cache_clear
from sqla_associations.node import Node, get_node, init_node

from .models import (
    Base,
    Category,
    League,
    Message,
    Player,
    Role,
    Team,
    User,
    user_roles,
)


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--db",
        default="sqlite",
        choices=["postgres", "mysql", "sqlite"],
        help="Database backend to test against",
    )


@pytest.fixture(scope="session")
def db_backend(request: pytest.FixtureRequest) -> str:
    value: str = request.config.getoption("--db")

    return value


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(scope="session", autouse=True)
def _init_node() -> None:
    """Initialize the Node singleton with the model associations.

    Sync, no DB needed -- safe to run for all tests including unit tests.
    """
    try:
        Node()
    except RuntimeError:
        Node.reset()
        with warnings.catch_warnings():
            # Team.attachments joins on a literal and is skipped on purpose
            warnings.simplefilter("ignore", UserWarning)
            init_node(get_node(Base))


@pytest.fixture(scope="session")
def db_config(db_backend: str, tmp_path_factory: pytest.TempPathFactory) -> Iterator[str]:
    match db_backend:
        case "postgres":
            from testcontainers.postgres import PostgresContainer

            pg = PostgresContainer(image="postgres:latest")
            if os.name == "nt":
                pg.get_container_host_ip = lambda: "127.0.0.1"
            with pg:
                host = pg.get_container_host_ip()
                dsn = (
                    f"postgresql+asyncpg://{pg.username}:{pg.password}"
                    f"@{host}:{pg.get_exposed_port(pg.port)}/{pg.dbname}"
                )
                yield dsn

        case "mysql":
            from testcontainers.mysql import MySqlContainer

            my = MySqlContainer(image="mysql:8.0")
            if os.name == "nt":
                my.get_container_host_ip = lambda: "127.0.0.1"
            with my:
                host = my.get_container_host_ip()
                port = my.get_exposed_port(my.port)
                dsn = (
                    f"mysql+asyncmy://{my.username}:{my.password}"
                    f"@{host}:{port}/{my.dbname}"
                )
                yield dsn

        case "sqlite":
            tmp = tmp_path_factory.mktemp("db")
            yield f"sqlite+aiosqlite:///{tmp}/test.db"


@pytest.fixture(scope="session")
def engine(db_config: str) -> AsyncEngine:
    return create_async_engine(db_config, echo=False)


@pytest.fixture(scope="session")
async def _create_tables(engine: AsyncEngine) -> AsyncIterator[None]:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def connection(
    engine: AsyncEngine, _create_tables: None
) -> AsyncIterator[AsyncConnection]:
    async with engine.connect() as conn:
        trans = await conn.begin()
        yield conn
        await trans.rollback()


@pytest.fixture
async def session(connection: AsyncConnection) -> AsyncIterator[AsyncSession]:
    sess = AsyncSession(bind=connection, expire_on_commit=False)
    yield sess
    await sess.close()


@pytest.fixture
async def seed_data(session: AsyncSession) -> dict[str, list[Base]]:
    premier = League(id=1, name="premier")
    session.add_all([premier])
    await session.flush()

    reds = Team(id=1, name="reds", color="red", league_id=1)
    blues = Team(id=2, name="blues", color="blue", league_id=1)
    greens = Team(id=3, name="greens", color="green", league_id=None)
    session.add_all([reds, blues, greens])
    await session.flush()

    arthur = Player(id=1, name="arthur", score=10, team_id=1)
    barbara = Player(id=2, name="barbara", score=20, team_id=1)
    craig = Player(id=3, name="craig", score=30, team_id=2)
    diane = Player(id=4, name="diane", score=40, team_id=3)
    eve = Player(id=5, name="eve", score=50, team_id=None)
    session.add_all([arthur, barbara, craig, diane, eve])
    await session.flush()

    alice = User(id=1, name="alice")
    bob = User(id=2, name="bob")
    session.add_all([alice, bob])
    await session.flush()

    admin = Role(id=1, name="admin", level=10)
    editor = Role(id=2, name="editor", level=5)
    session.add_all([admin, editor])
    await session.flush()

    await session.execute(
        user_roles.insert().values([
            {"user_id": 1, "role_id": 1},
            {"user_id": 1, "role_id": 2},
            {"user_id": 2, "role_id": 2},
        ])
    )
    await session.flush()

    hello = Message(id=1, content="Hello Bob", sender_id=1, receiver_id=2)
    hi = Message(id=2, content="Hi Alice", sender_id=2, receiver_id=1)
    session.add_all([hello, hi])
    await session.flush()

    root = Category(id=1, name="root", parent_id=None)
    child = Category(id=2, name="child", parent_id=1)
    grandchild = Category(id=3, name="grandchild", parent_id=2)
    session.add_all([root, child, grandchild])
    await session.flush()

    session.expunge_all()

    return {
        "leagues": [premier],
        "teams": [reds, blues, greens],
        "players": [arthur, barbara, craig, diane, eve],
        "users": [alice, bob],
        "roles": [admin, editor],
        "messages": [hello, hi],
        "categories": [root, child, grandchild],
    }


@pytest.fixture(autouse=True)
def clear_lru_caches() -> Iterator[None]:
    yield
    sqla_cache_clear()


@pytest.fixture
def reset_node_singleton() -> Iterator[None]:
    saved = Node._Node__instance  # type: ignore[attr-defined]
    yield
    Node._Node__instance = saved  # type: ignore[attr-defined]
