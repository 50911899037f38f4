from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("OPENAI_API_KEY", "sk-test")
os.environ.setdefault("FF_ENABLE_EMBEDDINGS", "false")

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from playbook.core.database import Base
from playbook.models import MiniPrompt, StageMiniPrompt, Workflow, WorkflowStage
from playbook.tools.registry import init_tools

init_tools()


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)

    # pysqlite defers BEGIN; emit it ourselves so SAVEPOINT rollbacks behave
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


async def make_workflow(
    db: AsyncSession,
    user_id: str = "user-1",
    name: str = "Release",
    stages: list[tuple[str, int, bool]] = (("Plan", 2, True), ("Ship", 1, True)),
    include_multi_agent_chat: bool = False,
) -> Workflow:
    """Saved workflow with stages given as (name, item_count, with_review)."""
    workflow = Workflow(user_id=user_id, name=name, include_multi_agent_chat=include_multi_agent_chat)
    for order, (stage_name, count, with_review) in enumerate(stages):
        stage = WorkflowStage(name=stage_name, order=order, with_review=with_review)
        for pos in range(count):
            mp = MiniPrompt(user_id=user_id, name=f"{stage_name} step {pos + 1}", content=f"Do {stage_name} {pos + 1}")
            stage.items.append(StageMiniPrompt(mini_prompt=mp, order=pos))
        workflow.stages.append(stage)
    db.add(workflow)
    await db.commit()
    return workflow


@pytest.fixture
def workflow_factory():
    return make_workflow
