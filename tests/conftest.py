"""
Pytest configuration and fixtures for ShelfDesk tests.
"""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from shelfdesk.api.main import create_app
from shelfdesk.api.dependencies import Settings, init_services
from shelfdesk.circulation import CatalogService, CirculationManager, FineCalculator, InventoryLedger
from shelfdesk.notifications import ChangeNotifier, repository_sources
from shelfdesk.reporting import DefaulterClassifier, bind_defaulter_reconciliation
from shelfdesk.storage import LibraryRepository


START = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# =============================================================================
# Engine Fixtures
# =============================================================================

@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def repository(tmp_path):
    """File-backed SQLite repository, fresh per test."""
    repo = LibraryRepository(sqlite_path=tmp_path / "shelfdesk.db", lock_timeout=10.0)
    yield repo
    repo.dispose()


@pytest.fixture
def ledger() -> InventoryLedger:
    return InventoryLedger()


@pytest.fixture
def classifier(repository) -> DefaulterClassifier:
    return DefaulterClassifier(repository, late_return_threshold=2)


@pytest.fixture
def notifier(repository, classifier, clock) -> ChangeNotifier:
    """Notifier wired the way the application wires it."""
    notifier = ChangeNotifier(repository_sources(repository), clock=clock)
    bind_defaulter_reconciliation(notifier, classifier)
    return notifier


@pytest.fixture
def circulation(repository, ledger, notifier, clock) -> CirculationManager:
    return CirculationManager(
        repository=repository,
        ledger=ledger,
        fine_calculator=FineCalculator("0.50"),
        notifier=notifier,
        clock=clock,
        max_retries=10,
        retry_backoff=0.001,
    )


@pytest.fixture
def catalog(repository, ledger, notifier) -> CatalogService:
    return CatalogService(repository, ledger, notifier, max_retries=10, retry_backoff=0.001)


@pytest.fixture
def make_book(catalog):
    """Create a book with a given number of copies."""

    def _make(title: str = "Dune", copies: int = 1, **kwargs):
        kwargs.setdefault("author", "Frank Herbert")
        return catalog.create_book(title=title, total_copies=copies, **kwargs)

    return _make


@pytest.fixture
def make_user(catalog):
    """Create a borrower."""

    def _make(name: str = "Ada", role: str = "Student"):
        return catalog.create_user(name=name, role=role)

    return _make


# =============================================================================
# Application Fixtures
# =============================================================================

def get_test_settings(tmp_path) -> Settings:
    """Return settings configured for testing."""
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'api.db'}",
        database_echo=False,
        environment="test",
        debug=True,
        retry_backoff_ms=1,
        stream_keepalive_seconds=0.1,
    )


@pytest.fixture
def services(tmp_path, clock):
    """Service container backed by a temporary database and the frozen clock."""
    container = init_services(get_test_settings(tmp_path), clock=clock)
    yield container
    container.close()


@pytest_asyncio.fixture(scope="function")
async def app(services):
    """Create FastAPI application for testing."""
    application = create_app(services.settings)
    yield application


@pytest_asyncio.fixture(scope="function")
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Provide async HTTP client for API tests."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
