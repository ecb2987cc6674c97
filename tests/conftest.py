import sys
import textwrap
from pathlib import Path
from typing import AsyncGenerator, Callable, Generator

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lineu_core.config.settings import Settings
from lineu_server import database
from lineu_server.dependencies import get_db_session, get_readonly_db_session


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    repo = tmp_path / "repo"
    repo.mkdir()
    return Settings(
        _env_file=None,
        data_dir=str(tmp_path),
        repo_path=str(repo),
        linear_api_key="lin_test",
        dry_run=True,
    )


@pytest_asyncio.fixture
async def session_maker(tmp_path: Path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine, maker = database.create_session_maker(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    await database.create_all_tables(engine)
    yield maker
    await engine.dispose()


@pytest.fixture
def write_agent(tmp_path: Path) -> Callable[[str], list[str]]:
    """Write a fake agent script and return the command that runs it."""

    def _write(body: str) -> list[str]:
        script = tmp_path / f"fake_agent_{len(list(tmp_path.glob('fake_agent_*.py')))}.py"
        script.write_text(textwrap.dedent(body), encoding="utf-8")
        return [sys.executable, str(script)]

    return _write


@pytest.fixture
def client(settings: Settings, tmp_path: Path) -> Generator[TestClient, None, None]:
    from sqlalchemy import create_engine
    from sqlmodel import SQLModel
    from starlette.routing import _DefaultLifespan

    from lineu_server.app import create_app

    db_path = tmp_path / "api.db"
    sync_engine = create_engine(f"sqlite+pysqlite:///{db_path}")
    SQLModel.metadata.create_all(sync_engine)
    sync_engine.dispose()

    engine, session_maker = database.create_session_maker(f"sqlite+aiosqlite:///{db_path}")

    async def override_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with database.get_session(session_maker) as session:
            yield session

    async def override_readonly_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with database.get_session(session_maker, read_only=True) as session:
            yield session

    app = create_app(settings)

    app.router.lifespan_context = _DefaultLifespan(app.router)

    app.dependency_overrides[get_db_session] = override_db_session
    app.dependency_overrides[get_readonly_db_session] = override_readonly_db_session

    with TestClient(app) as test_client:
        yield test_client
        test_client.portal.call(engine.dispose)
