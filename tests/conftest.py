"""
Pytest fixtures for coaching engine tests.

Database-backed tests run against a temp-file SQLite database (aiosqlite) so
every connection in a test sees the same data.
"""

import asyncio
import os
import tempfile
import uuid
from typing import AsyncGenerator, List, Optional, Sequence, Union

# Settings are read at import time by coach_engine.database; point them at
# SQLite before anything from the package is imported.
_tmp = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
_tmp.close()
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_tmp.name}"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.setdefault("LLM_PROVIDERS", '[{"name": "stub", "timeout_seconds": 1, "max_retries": 1}]')

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from coach_engine.ai.providers.base import LLMProvider
from coach_engine.ai.types import ProviderResponse
from coach_engine.ai.vendor_router import VendorRouter
from coach_engine.config import ProviderDescriptor
from coach_engine.engines.safety.policy import load_risk_policy
from coach_engine.engines.safety.resources import load_resource_directory
from coach_engine.engines.safety.risk_assessor import RiskAssessor
from coach_engine.kernel.models import Base
from coach_engine.orchestration.coaching_engine import CoachingEngine
from coach_engine.pedagogy.content_retriever import CurriculumDocument, InMemoryContentSearchBackend
from coach_engine.schemas.coach import ConversationTurn

HANG = object()  # script step: never answer (exercise the router's timeout)

ScriptStep = Union[str, BaseException, object]


class ScriptedProvider(LLMProvider):
    """Provider that plays back a script of replies, faults and hangs."""

    name = "scripted"

    def __init__(self, descriptor: ProviderDescriptor, script: Sequence[ScriptStep] = ("ok",)):
        super().__init__(descriptor)
        self.script: List[ScriptStep] = list(script)
        self.calls: List[dict] = []

    async def generate(
        self,
        system_prompt: str,
        turns: Sequence[ConversationTurn],
        max_tokens: int,
        temperature: float,
    ) -> ProviderResponse:
        step = self.script[min(len(self.calls), len(self.script) - 1)]
        self.calls.append({"system_prompt": system_prompt, "turns": list(turns)})
        if step is HANG:
            await asyncio.sleep(3600)
        if isinstance(step, BaseException):
            raise step
        return ProviderResponse(text=step, input_tokens=40, output_tokens=12)


def descriptor(name: str, timeout: float = 0.05, max_retries: int = 2) -> ProviderDescriptor:
    return ProviderDescriptor(name=name, model=f"{name}-model", timeout_seconds=timeout, max_retries=max_retries)


class SleepRecorder:
    """Stand-in for asyncio.sleep that records backoff delays without waiting."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


CURRICULUM = [
    CurriculumDocument(
        id="lesson-breath",
        title="Breathing Through Stress",
        course_title="Foundations of Mindfulness",
        learning_objectives=["Use the breath to settle the nervous system"],
        content_text="When stress rises the breath becomes shallow. In this lesson we practise "
                     "slow exhalations that signal safety to the body.",
    ),
    CurriculumDocument(
        id="lesson-body-scan",
        title="Body Scan Basics",
        course_title="Foundations of Mindfulness",
        learning_objectives=["Notice where stress and tension live in the body"],
        content_text="Move your attention slowly from the crown of the head to the feet.",
    ),
    CurriculumDocument(
        id="lesson-sleep",
        title="Mindful Sleep",
        course_title="Rest and Recovery",
        learning_objectives=["Build a calming bedtime routine"],
        content_text="Racing thoughts at night often carry the stress of the day.",
    ),
    CurriculumDocument(
        id="lesson-draft",
        title="Advanced Stress Work",
        course_title="Unreleased Course",
        learning_objectives=["Draft content"],
        content_text="Not yet published.",
        published=False,
    ),
]


@pytest.fixture
def curriculum_backend() -> InMemoryContentSearchBackend:
    return InMemoryContentSearchBackend(CURRICULUM)


@pytest.fixture
def assessor() -> RiskAssessor:
    return RiskAssessor(load_risk_policy())


@pytest.fixture
def resources():
    return load_resource_directory()


@pytest.fixture
def make_engine(assessor, resources, curriculum_backend):
    """Factory for engines wired to scripted providers and in-memory curriculum."""

    def _make(
        providers: Optional[Sequence[LLMProvider]] = None,
        sleep: Optional[SleepRecorder] = None,
        **kwargs,
    ) -> CoachingEngine:
        if providers is None:
            providers = [ScriptedProvider(descriptor("primary"), ["As covered in Breathing Through Stress, try a slow exhale."])]
        router = VendorRouter(
            [(p.descriptor, p) for p in providers],
            backoff_base_seconds=0.01,
            backoff_max_seconds=0.04,
            sleep=sleep or SleepRecorder(),
        )
        return CoachingEngine(
            assessor=assessor,
            router=router,
            resources=resources,
            search_backend_factory=lambda db: curriculum_backend,
            **kwargs,
        )

    return _make


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Fresh SQLite database file per test."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'coach.db'}",
        echo=False,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_pragmas(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.close()
        # Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest inside the
        # session transaction instead of starting their own.
        dbapi_conn.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _sqlite_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(db_engine):
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def user_id() -> uuid.UUID:
    return uuid.uuid4()
