"""Pytest configuration and fixtures for the filing portal test suite."""

import os
import sys
from pathlib import Path

import pytest

# Set test environment BEFORE any other imports
os.environ.setdefault("PORTAL_ENVIRONMENT", "test")
os.environ.setdefault("DB_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("WIZARD_SAVE_DEBOUNCE_SECONDS", "0")

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from filing_portal.config.settings import PortalSettings, WizardSettings, get_settings  # noqa: E402
from filing_portal.domain.aggregates import FilingKind  # noqa: E402
from filing_portal.persistence.locks import FilingLockRegistry  # noqa: E402
from filing_portal.persistence.memory import InMemoryFilingBackend  # noqa: E402
from filing_portal.persistence.record_service import FilingRecordService  # noqa: E402
from filing_portal.schema.registry import SchemaRegistry  # noqa: E402
from filing_portal.wizard.orchestrator import WizardOrchestrator  # noqa: E402


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Settings are lru_cached; clear them around every test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> PortalSettings:
    return PortalSettings(wizard=WizardSettings(save_debounce_seconds=0))


@pytest.fixture
def registry() -> SchemaRegistry:
    return SchemaRegistry(default_year=2025)


@pytest.fixture
def individual_schema(registry):
    return registry.get_schema(2025, FilingKind.INDIVIDUAL)


@pytest.fixture
def corporate_schema(registry):
    return registry.get_schema(2025, FilingKind.CORPORATE)


@pytest.fixture
def backend() -> InMemoryFilingBackend:
    return InMemoryFilingBackend()


@pytest.fixture
def record_service(backend) -> FilingRecordService:
    return FilingRecordService(backend, locks=FilingLockRegistry())


@pytest.fixture
def make_wizard(backend, registry, record_service, settings):
    """Factory for orchestrators sharing the test backend."""

    def factory(filing_id, **kwargs) -> WizardOrchestrator:
        kwargs.setdefault("registry", registry)
        kwargs.setdefault("record_service", record_service)
        kwargs.setdefault("settings", settings)
        return WizardOrchestrator(filing_id, backend, **kwargs)

    return factory


