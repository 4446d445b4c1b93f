"""Pytest configuration and fixtures."""

import os
from collections.abc import AsyncGenerator
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

# Set test environment before importing app
os.environ["ENVIRONMENT"] = "test"
os.environ["EMAIL_BACKEND"] = "console"

import pytest
from httpx import ASGITransport, AsyncClient

from gtovantage.api.deps import get_email_service, get_verification_service
from gtovantage.database import create_engine, init_db, make_session_factory
from gtovantage.main import app
from gtovantage.services.email import EmailService
from gtovantage.services.rate_limit import get_rate_limiter
from gtovantage.services.token_store import DatabaseTokenStore, FileTokenStore, TokenStore
from gtovantage.services.verification import VerificationService
from gtovantage.utils.clock import MS_PER_HOUR

# 2026-01-01T00:00:00Z
START_MS = 1_767_225_600_000


class FakeClock:
    """Controllable epoch-ms clock."""

    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, hours: float = 0, ms: int = 0) -> None:
        self.now += int(hours * MS_PER_HOUR) + ms


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    """Start every test with an empty rate limiter."""
    get_rate_limiter().reset()
    yield
    get_rate_limiter().reset()


@pytest.fixture(autouse=True)
def mock_queue():
    """Mock the SAQ queue to avoid Redis connections in tests."""
    mock_job = MagicMock()
    mock_job.id = "test-job-id"
    mock_job.key = "test-job-key"

    with patch("gtovantage.tasks.queue.queue.enqueue", new_callable=AsyncMock) as mock_enqueue:
        mock_enqueue.return_value = mock_job
        yield mock_enqueue


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def tokens_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "verification-tokens.json"


@pytest.fixture
def file_store(tokens_path: Path) -> FileTokenStore:
    return FileTokenStore(tokens_path)


@pytest.fixture
async def db_store(tmp_path: Path) -> AsyncGenerator[DatabaseTokenStore, None]:
    """Token store on a throwaway SQLite database."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'tokens.db'}")
    await init_db(engine)

    yield DatabaseTokenStore(session_factory=make_session_factory(engine))

    await engine.dispose()


@pytest.fixture(params=["file", "database"])
async def store(request, tmp_path: Path) -> AsyncGenerator[TokenStore, None]:
    """Each backend in turn, for behavior both must share."""
    if request.param == "file":
        yield FileTokenStore(tmp_path / "verification-tokens.json")
        return

    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'tokens.db'}")
    await init_db(engine)
    yield DatabaseTokenStore(session_factory=make_session_factory(engine))
    await engine.dispose()


@pytest.fixture
def service(file_store: FileTokenStore, clock: FakeClock) -> VerificationService:
    return VerificationService(store=file_store, clock=clock, base_url="http://test.local")


@pytest.fixture
def mock_email_service() -> AsyncMock:
    """Email service that records calls and reports success."""
    mock = AsyncMock(spec=EmailService)
    mock.send_verification_email.return_value = True
    return mock


@pytest.fixture
async def client(
    service: VerificationService,
    mock_email_service: AsyncMock,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""
    app.dependency_overrides[get_verification_service] = lambda: service
    app.dependency_overrides[get_email_service] = lambda: mock_email_service

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
