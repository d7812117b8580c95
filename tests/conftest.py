# tests/conftest.py
import os

from cryptography.fernet import Fernet

# channel_sync.database builds its engine at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CREDENTIAL_ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("BASIC_AUTH_PASSWORD", "test-password")

import pytest

from channel_sync.core.config import Settings, clear_settings_cache
from channel_sync.integrations.registry import ProviderRegistry
from channel_sync.integrations.retry import RetryPolicy
from channel_sync.services.credential_service import CredentialService
from channel_sync.services.notification_service import SyncAlertNotifier
from channel_sync.services.sync_services import SyncOrchestrator
from tests.mocks.in_memory_repository import InMemoryStore
from tests.mocks.mock_platform import FakeMarketplaceProvider

clear_settings_cache()


@pytest.fixture
def settings():
    """Provide test settings"""
    return Settings(
        DATABASE_URL=os.environ["DATABASE_URL"],
        CREDENTIAL_ENCRYPTION_KEY=os.environ["CREDENTIAL_ENCRYPTION_KEY"],
        MERCADOLIVRE_APP_ID="ml-app",
        MERCADOLIVRE_SECRET_KEY="ml-secret",
        AMAZON_CLIENT_ID="lwa-client",
        AMAZON_CLIENT_SECRET="lwa-secret",
        SHOPEE_PARTNER_ID=1000001,
        SHOPEE_PARTNER_KEY="shopee-partner-key",
        SYNC_RETRY_MAX_ATTEMPTS=3,
        SYNC_RETRY_BASE_DELAY=0,
        SYNC_RETRY_MAX_DELAY=0,
        SYNC_REQUEST_TIMEOUT_SECONDS=5,
        SYNC_MAX_CONCURRENT_CREDENTIALS=3,
        SYNC_MAX_CONCURRENT_SELLERS=2,
    )


@pytest.fixture
def no_delay_retry():
    return RetryPolicy(max_attempts=3, base_delay=0, max_delay=0)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def alerts():
    """Every alert published during the test, in order."""
    return []


@pytest.fixture
def notifier(alerts):
    return SyncAlertNotifier([alerts.append])


@pytest.fixture
def fake_provider():
    return FakeMarketplaceProvider()


@pytest.fixture
def registry(fake_provider):
    registry = ProviderRegistry()
    registry.register(fake_provider)
    return registry


@pytest.fixture
def credential_service(store, notifier, registry, settings):
    return CredentialService(store.factory, notifier, registry, settings)


@pytest.fixture
def orchestrator(store, registry, notifier, credential_service, settings):
    return SyncOrchestrator(
        store.factory,
        registry,
        notifier=notifier,
        credential_service=credential_service,
        settings=settings,
    )
