"""Shared fixtures: a throwaway SQLite database per test and seed helpers."""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Optional
from uuid import uuid4

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./data/test-bootstrap.db")
os.environ.setdefault("LOG_FILE", "")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker  # noqa: E402

from quizroster.config import get_settings  # noqa: E402
from quizroster.dependencies import build_engine  # noqa: E402
from quizroster.models import (  # noqa: E402
    Base,
    Group,
    Quiz,
    QuizInstance,
    User,
)

T0 = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    """A point in time ``seconds`` after the fixed test epoch."""
    return T0 + timedelta(seconds=seconds)


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'quizroster.db'}"


@pytest.fixture
async def engine(database_url: str) -> AsyncIterator[AsyncEngine]:
    engine = build_engine(database_url, get_settings())
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine: AsyncEngine) -> AsyncIterator[AsyncSession]:
    sessionmaker = async_sessionmaker(bind=engine, expire_on_commit=False)
    async with sessionmaker() as session:
        yield session


@pytest.fixture
def sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, expire_on_commit=False)


async def make_user(
    session: AsyncSession, email: str, *, role: str = "student", user_id: Optional[str] = None
) -> User:
    user = User(id=user_id or str(uuid4()), email=email.lower(), role=role, full_name=email)
    session.add(user)
    await session.commit()
    return user


async def make_group(
    session: AsyncSession, mentor: User, *, name: str = "Physics 101", archived: bool = False
) -> Group:
    group = Group(id=str(uuid4()), name=name, mentor_id=mentor.id, is_archived=archived)
    session.add(group)
    await session.commit()
    return group


async def make_instance(
    session: AsyncSession, group: Group, *, status: str = "scheduled", created_at: datetime = T0
) -> QuizInstance:
    quiz = Quiz(id=str(uuid4()), title=f"Quiz {status}", mentor_id=group.mentor_id)
    session.add(quiz)
    await session.flush()
    instance = QuizInstance(
        id=str(uuid4()),
        quiz_id=quiz.id,
        group_id=group.id,
        status=status,
        duration_seconds=600,
        created_at=created_at,
        updated_at=created_at,
    )
    session.add(instance)
    await session.commit()
    return instance


@pytest.fixture
async def mentor(session: AsyncSession) -> User:
    return await make_user(session, "mentor@school.test", role="mentor")


@pytest.fixture
async def student(session: AsyncSession) -> User:
    return await make_user(session, "ada@school.test")


@pytest.fixture
async def group(session: AsyncSession, mentor: User) -> Group:
    return await make_group(session, mentor)
