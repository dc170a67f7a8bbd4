"""pytest fixtures for mediagen tests.

Provides:
- postgres_container: Session-scoped testcontainer PostgreSQL instance (migrated)
- pg_session_factory / pg_uow_factory: PostgreSQL-backed factories with cleanup
- utc_timezone: Autouse fixture enforcing UTC timezone
- session_factory: Function-scoped SQLite database with all tables created
- session: Database session for repository-level tests
- uow_factory: UnitOfWork factory over the test database
- settings / fake_gateway / fake_signer: Collaborators for the media service
- media_service / processor: Service wiring with fakes substituted
- project: A persisted project owned by OWNER_ID
"""

import os

os.environ["APP_ENV"] = "test"

import subprocess  # noqa: E402
import sys  # noqa: E402
from pathlib import Path  # noqa: E402
from typing import Any, AsyncGenerator, Optional  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy import text  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402
from testcontainers.postgres import PostgresContainer  # noqa: E402

from mediagen import models  # noqa: E402, F401
from mediagen.core.config import Settings  # noqa: E402
from mediagen.core.database import setup_db_session  # noqa: E402
from mediagen.models.project import Project  # noqa: E402
from mediagen.services.exceptions import SigningError  # noqa: E402
from mediagen.services.media.jobs import JobQueue  # noqa: E402
from mediagen.services.media.processor import MediaGenerationProcessor  # noqa: E402
from mediagen.services.media.service import MediaService  # noqa: E402
from mediagen.services.vertex_ai.types import (  # noqa: E402
    OperationStatus,
    Prediction,
    PredictionResponse,
    SpeechResult,
)
from mediagen.uow import create_uow_factory  # noqa: E402

OWNER_ID = "user-123"
SIGNED_PREFIX = "https://signed.example/"
PROJECT_ROOT = Path(__file__).resolve().parents[1]

# Children first so foreign keys never block the cleanup
POSTGRES_TABLES = ("media_results", "media_jobs", "media_generations", "projects")


class FakeGateway:
    """In-memory stand-in for VertexAIGateway.

    Each method records its keyword arguments in ``calls`` and either raises
    the configured error or returns the configured response.
    """

    def __init__(self):
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.predictions: list[Prediction] = []
        self.operation_name = (
            "projects/test-project/locations/us-central1/publishers/google"
            "/models/veo-2.0-generate-001/operations/op-1"
        )
        self.statuses: list[OperationStatus] = []
        self.speech = SpeechResult(
            storage_uri="gs://media-assets/audio/speech.mp3", path="audio/speech.mp3"
        )
        self.error: Optional[Exception] = None

    def _record(self, method: str, kwargs: dict[str, Any]) -> None:
        self.calls.append((method, kwargs))
        if self.error is not None:
            raise self.error

    def calls_to(self, method: str) -> list[dict[str, Any]]:
        return [kwargs for name, kwargs in self.calls if name == method]

    async def generate_image(self, **kwargs) -> PredictionResponse:
        self._record("generate_image", kwargs)
        return PredictionResponse(predictions=list(self.predictions))

    async def upscale_image(self, **kwargs) -> PredictionResponse:
        self._record("upscale_image", kwargs)
        return PredictionResponse(predictions=list(self.predictions))

    async def generate_music(self, **kwargs) -> PredictionResponse:
        self._record("generate_music", kwargs)
        return PredictionResponse(predictions=list(self.predictions))

    async def synthesize_speech(self, **kwargs) -> SpeechResult:
        self._record("synthesize_speech", kwargs)
        return self.speech

    async def initiate_video_generation(self, **kwargs) -> str:
        self._record("initiate_video_generation", kwargs)
        return self.operation_name

    async def check_operation_status(self, operation_name: str) -> OperationStatus:
        self._record("check_operation_status", {"operation_name": operation_name})
        return self.statuses.pop(0)


class FakeSigner:
    """Signs gs:// identifiers by rewriting them to an https prefix."""

    def __init__(self, failing: Optional[set[str]] = None):
        self.failing = failing or set()
        self.signed: list[str] = []

    async def sign(self, gcs_uri: str) -> str:
        if gcs_uri in self.failing:
            raise SigningError(f"Failed to generate signed URL for {gcs_uri}")
        self.signed.append(gcs_uri)
        return SIGNED_PREFIX + gcs_uri.removeprefix("gs://")


def gcs_predictions(*uris: str) -> list[Prediction]:
    return [Prediction(gcs_uri=uri, mime_type="image/png") for uri in uris]


@pytest.fixture(scope="session")
def postgres_container():
    """Provide a session-scoped PostgreSQL container with migrations applied.

    Migrations run in a subprocess so alembic's asyncio.run() does not clash
    with the test event loop. Tests using it skip when Docker is unreachable.
    """
    try:
        container = PostgresContainer(
            image="postgres:17",
            username="test",
            password="test",
            dbname="test_mediagen",
        )
        container.start()
    except Exception as e:
        pytest.skip(f"PostgreSQL container unavailable: {e}")

    try:
        env = os.environ.copy()
        env["DATABASE_URL"] = container.get_connection_url(driver="psycopg")
        subprocess.run(
            [sys.executable, "-m", "alembic", "upgrade", "head"],
            check=True,
            capture_output=True,
            text=True,
            env=env,
            cwd=PROJECT_ROOT,
        )
        yield container
    finally:
        container.stop()


@pytest_asyncio.fixture(scope="function")
async def pg_session_factory(postgres_container):
    """Provide a session factory on the migrated PostgreSQL database.

    Tables are emptied after each test.
    """
    factory = setup_db_session(postgres_container.get_connection_url(driver="psycopg"), 5)

    yield factory

    async with factory() as session:
        for table in POSTGRES_TABLES:
            await session.execute(text(f"DELETE FROM {table}"))
        await session.commit()
    await factory.kw["bind"].dispose()


@pytest.fixture
def pg_uow_factory(pg_session_factory):
    return create_uow_factory(pg_session_factory)


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest_asyncio.fixture(scope="function")
async def session_factory(tmp_path):
    """Provide a fresh SQLite database per test with every table created.

    A file database (rather than :memory:) gives each session its own
    connection, matching how the worker uses separate transactions.
    """
    factory = setup_db_session(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    engine = factory.kw["bind"]

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield factory

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def uow_factory(session_factory):
    return create_uow_factory(session_factory)


@pytest.fixture
def settings() -> Settings:
    return Settings(  # type: ignore[call-arg]
        DATABASE_URL="sqlite+aiosqlite:///:memory:",
        APP_ENV="test",
        VERTEX_AI_PROJECT_ID="test-project",
        VERTEX_AI_STORAGE_URI="gs://gen-bucket/output",
        VIDEO_POLL_INTERVAL_MS=5000,
        VIDEO_MAX_POLLING_ATTEMPTS=20,
    )


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def fake_signer() -> FakeSigner:
    return FakeSigner()


@pytest.fixture
def media_service(uow_factory, fake_gateway, fake_signer, settings) -> MediaService:
    return MediaService(
        uow_factory=uow_factory,
        gateway=fake_gateway,  # type: ignore[arg-type]
        signer=fake_signer,
        job_queue=JobQueue(uow_factory),
        settings=settings,
    )


@pytest.fixture
def processor(media_service, settings) -> MediaGenerationProcessor:
    return MediaGenerationProcessor(media_service, settings)


@pytest_asyncio.fixture
async def project(uow_factory) -> Project:
    async with await uow_factory() as uow:
        project = await uow.projects.add(Project(owner_id=OWNER_ID, name="Launch campaign"))
    return project
