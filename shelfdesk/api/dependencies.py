"""
Dependency injection for FastAPI routes.

Provides injectable dependencies for:
- Configuration
- Service instances (catalog, circulation, reports, notifier)
"""

import os
import threading
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from functools import lru_cache
from typing import Optional

from fastapi import Depends
from loguru import logger

from shelfdesk.clock import Clock, utcnow


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class Settings:
    """Application settings loaded from environment."""

    # Database
    database_url: str = "sqlite:///./shelfdesk.db"
    database_echo: bool = False
    lock_timeout_seconds: float = 5.0

    # Circulation rules
    loan_period_days: int = 7
    fine_rate_per_day: str = "0.50"
    late_return_threshold: int = 2

    # Conflict handling
    max_retries: int = 5
    retry_backoff_ms: int = 20

    # Event streams
    stream_keepalive_seconds: float = 15.0

    # CORS
    cors_allowed_origins: str = ""

    # Environment
    environment: str = "development"
    debug: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables."""
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            database_echo=os.getenv("DATABASE_ECHO", "false").lower() == "true",
            lock_timeout_seconds=float(os.getenv("LOCK_TIMEOUT_SECONDS", cls.lock_timeout_seconds)),
            loan_period_days=int(os.getenv("LOAN_PERIOD_DAYS", cls.loan_period_days)),
            fine_rate_per_day=os.getenv("FINE_RATE_PER_DAY", cls.fine_rate_per_day),
            late_return_threshold=int(os.getenv("LATE_RETURN_THRESHOLD", cls.late_return_threshold)),
            max_retries=int(os.getenv("MAX_RETRIES", cls.max_retries)),
            retry_backoff_ms=int(os.getenv("RETRY_BACKOFF_MS", cls.retry_backoff_ms)),
            stream_keepalive_seconds=float(
                os.getenv("STREAM_KEEPALIVE_SECONDS", cls.stream_keepalive_seconds)
            ),
            cors_allowed_origins=os.getenv("CORS_ALLOWED_ORIGINS", cls.cors_allowed_origins),
            environment=os.getenv("SHELFDESK_ENV", cls.environment),
            debug=os.getenv("DEBUG", "true").lower() == "true",
        )

    @property
    def loan_period(self) -> timedelta:
        return timedelta(days=self.loan_period_days)

    @property
    def retry_backoff_seconds(self) -> float:
        return self.retry_backoff_ms / 1000.0


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings.from_env()


# =============================================================================
# Service Dependencies (Lazy Loading)
# =============================================================================

class ServiceContainer:
    """
    Container for lazy-loaded service instances.

    Services are built on first access and shared by every request.
    Construction is serialized so concurrent first requests still end up
    with one repository and one notifier.
    """

    def __init__(self, settings: Settings, clock: Clock = utcnow):
        self.settings = settings
        self.clock = clock
        self._lock = threading.RLock()
        self._repository = None
        self._notifier = None
        self._ledger = None
        self._fine_calculator = None
        self._circulation = None
        self._catalog = None
        self._classifier = None
        self._reports = None

    @property
    def repository(self):
        """Get library repository instance."""
        with self._lock:
            if self._repository is None:
                from ..storage.repository import LibraryRepository
                self._repository = LibraryRepository(
                    database_url=self.settings.database_url,
                    echo=self.settings.database_echo,
                    lock_timeout=self.settings.lock_timeout_seconds,
                )
            return self._repository

    @property
    def notifier(self):
        """Get change notifier, with defaulter reconciliation bound to it."""
        with self._lock:
            if self._notifier is None:
                from ..notifications.notifier import ChangeNotifier, repository_sources
                from ..reporting.defaulters import bind_defaulter_reconciliation

                notifier = ChangeNotifier(repository_sources(self.repository), clock=self.clock)
                bind_defaulter_reconciliation(notifier, self.classifier)
                self._notifier = notifier
            return self._notifier

    @property
    def ledger(self):
        """Get inventory ledger instance."""
        with self._lock:
            if self._ledger is None:
                from ..circulation.ledger import InventoryLedger
                self._ledger = InventoryLedger()
            return self._ledger

    @property
    def fine_calculator(self):
        """Get fine calculator instance."""
        with self._lock:
            if self._fine_calculator is None:
                from ..circulation.fines import FineCalculator
                self._fine_calculator = FineCalculator(Decimal(self.settings.fine_rate_per_day))
            return self._fine_calculator

    @property
    def circulation(self):
        """Get circulation manager instance."""
        with self._lock:
            if self._circulation is None:
                from ..circulation.manager import CirculationManager
                self._circulation = CirculationManager(
                    repository=self.repository,
                    ledger=self.ledger,
                    fine_calculator=self.fine_calculator,
                    notifier=self.notifier,
                    clock=self.clock,
                    loan_period=self.settings.loan_period,
                    max_retries=self.settings.max_retries,
                    retry_backoff=self.settings.retry_backoff_seconds,
                )
            return self._circulation

    @property
    def catalog(self):
        """Get catalog service instance."""
        with self._lock:
            if self._catalog is None:
                from ..circulation.catalog import CatalogService
                self._catalog = CatalogService(
                    repository=self.repository,
                    ledger=self.ledger,
                    notifier=self.notifier,
                    max_retries=self.settings.max_retries,
                    retry_backoff=self.settings.retry_backoff_seconds,
                )
            return self._catalog

    @property
    def classifier(self):
        """Get defaulter classifier instance."""
        with self._lock:
            if self._classifier is None:
                from ..reporting.defaulters import DefaulterClassifier
                self._classifier = DefaulterClassifier(
                    repository=self.repository,
                    late_return_threshold=self.settings.late_return_threshold,
                )
            return self._classifier

    @property
    def reports(self):
        """Get reports service instance."""
        with self._lock:
            if self._reports is None:
                from ..reporting.aggregator import LibraryReports, ReportAggregator
                self._reports = LibraryReports(
                    repository=self.repository,
                    aggregator=ReportAggregator(self.settings.late_return_threshold),
                    clock=self.clock,
                )
            return self._reports

    def close(self) -> None:
        """Release database connections."""
        with self._lock:
            if self._repository is not None:
                self._repository.dispose()
                logger.info("Repository connections disposed")


# Global service container
_service_container: Optional[ServiceContainer] = None


def init_services(settings: Settings, clock: Clock = utcnow) -> ServiceContainer:
    """Initialize service container."""
    global _service_container
    _service_container = ServiceContainer(settings, clock=clock)
    return _service_container


def get_service_container() -> ServiceContainer:
    """Get service container instance."""
    if _service_container is None:
        # Auto-initialize with default settings if not explicitly initialized
        return init_services(get_settings())
    return _service_container


# =============================================================================
# Individual Service Dependencies
# =============================================================================

def get_app_settings(
    container: ServiceContainer = Depends(get_service_container),
) -> Settings:
    """Dependency for the settings the running container was built with."""
    return container.settings


def get_catalog(
    container: ServiceContainer = Depends(get_service_container),
):
    """Dependency for catalog service."""
    return container.catalog


def get_circulation(
    container: ServiceContainer = Depends(get_service_container),
):
    """Dependency for circulation manager."""
    return container.circulation


def get_reports(
    container: ServiceContainer = Depends(get_service_container),
):
    """Dependency for reports service."""
    return container.reports


def get_classifier(
    container: ServiceContainer = Depends(get_service_container),
):
    """Dependency for defaulter classifier."""
    return container.classifier


def get_notifier(
    container: ServiceContainer = Depends(get_service_container),
):
    """Dependency for change notifier."""
    return container.notifier
