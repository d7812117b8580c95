"""
Purpose: Wires the sync engine together at application startup.

build_provider_registry: instantiates every marketplace provider with the shared
    settings and retry policy and registers it by platform name.
setup_sync_engine: builds the repository factory, notifier, credential service and
    SyncOrchestrator used by the API, the scheduler and the CLI.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from channel_sync.core.config import Settings, get_settings
from channel_sync.integrations.platforms.amazon import AmazonProvider
from channel_sync.integrations.platforms.mercadolivre import MercadoLivreProvider
from channel_sync.integrations.platforms.shopee import ShopeeProvider
from channel_sync.integrations.platforms.shopify import ShopifyProvider
from channel_sync.integrations.registry import ProviderRegistry
from channel_sync.integrations.retry import RetryPolicy
from channel_sync.services.credential_service import CredentialService
from channel_sync.services.notification_service import SyncAlertNotifier
from channel_sync.services.repository import sql_repository_factory
from channel_sync.services.sync_services import SyncOrchestrator

logger = logging.getLogger(__name__)


def build_provider_registry(settings: Optional[Settings] = None) -> ProviderRegistry:
    settings = settings or get_settings()
    retry_policy = RetryPolicy.from_settings(settings)
    registry = ProviderRegistry()

    for provider_class in (MercadoLivreProvider, AmazonProvider, ShopifyProvider, ShopeeProvider):
        registry.register(provider_class(settings=settings, retry_policy=retry_policy))

    if not settings.MERCADOLIVRE_APP_ID:
        logger.warning("MERCADOLIVRE_APP_ID not set; Mercado Livre tokens will not be refreshed")
    if not settings.AMAZON_CLIENT_ID:
        logger.warning("AMAZON_CLIENT_ID not set; Amazon tokens will not be refreshed")
    if not settings.SHOPEE_PARTNER_ID or not settings.SHOPEE_PARTNER_KEY:
        logger.warning("Shopee partner credentials not set; Shopee requests will be rejected")

    return registry


def setup_sync_engine(
    settings: Optional[Settings] = None,
    session_maker: Optional[async_sessionmaker] = None,
    registry: Optional[ProviderRegistry] = None,
) -> SyncOrchestrator:
    """Build a SyncOrchestrator over the application database."""
    settings = settings or get_settings()
    if session_maker is None:
        from channel_sync.database import async_session
        session_maker = async_session

    repository_factory = sql_repository_factory(session_maker)
    registry = registry or build_provider_registry(settings)
    notifier = SyncAlertNotifier()
    credential_service = CredentialService(repository_factory, notifier, registry, settings)

    orchestrator = SyncOrchestrator(
        repository_factory,
        registry,
        notifier=notifier,
        credential_service=credential_service,
        settings=settings,
    )
    logger.info(f"Sync engine ready for platforms: {', '.join(registry.platforms())}")
    return orchestrator
