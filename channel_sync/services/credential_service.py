"""
Credential Store service.

Owns the credential lifecycle: registration on handshake (the OAuth dance happens
elsewhere), decryption into a short-lived CredentialContext, scheduled token
rotation, and revocation. Rows are never deleted.
"""

import logging
from datetime import timedelta
from typing import Dict, List, Optional

from channel_sync.core.config import Settings, get_settings
from channel_sync.core.enums import AlertType, RevocationReason
from channel_sync.core.exceptions import (
    AuthExpiredError,
    PlatformServiceError,
    ProviderNotRegisteredError,
    RecordNotFoundError,
)
from channel_sync.core.security import decrypt_secret, encrypt_secret
from channel_sync.core.utils import ensure_utc, utcnow
from channel_sync.integrations.base import CredentialContext, TokenGrant
from channel_sync.integrations.events import SyncAlertEvent
from channel_sync.integrations.registry import ProviderRegistry
from channel_sync.models.credential import Credential
from channel_sync.schemas.credentials import CredentialCreate, CredentialStatus
from channel_sync.services.notification_service import SyncAlertNotifier
from channel_sync.services.repository import RepositoryFactory, SyncRepository

logger = logging.getLogger(__name__)


def open_context(credential: Credential) -> CredentialContext:
    """Decrypt a stored credential for the duration of one provider call."""
    return CredentialContext(
        credential_id=credential.id,
        seller_id=credential.seller_id,
        platform=credential.platform,
        external_account_id=credential.external_account_id,
        access_token=decrypt_secret(credential.encrypted_access_token),
        refresh_token=decrypt_secret(credential.encrypted_refresh_token),
        expires_at=ensure_utc(credential.expires_at),
        metadata=dict(credential.platform_metadata or {}),
    )


class CredentialService:
    def __init__(
        self,
        repository_factory: RepositoryFactory,
        notifier: SyncAlertNotifier,
        registry: Optional[ProviderRegistry] = None,
        settings: Optional[Settings] = None,
    ):
        self.repository_factory = repository_factory
        self.notifier = notifier
        self.registry = registry
        self.settings = settings or get_settings()

    async def register_credential(self, data: CredentialCreate) -> CredentialStatus:
        """
        Store the credential handed over after a successful authorization.

        Re-authorizing an account that already has an active credential updates
        that row in place, so there is never more than one active credential per
        (seller, platform, account) and the order watermark survives. A new row
        for an account whose credential was revoked inherits that row's listings
        and watermark.
        """
        platform = data.platform.value
        now = utcnow()
        async with self.repository_factory() as repo:
            credential = await repo.find_active_credential(data.seller_id, platform, data.external_account_id)
            if credential is None:
                credential = Credential(
                    seller_id=data.seller_id,
                    platform=platform,
                    external_account_id=data.external_account_id,
                    account_name=data.account_name,
                    encrypted_access_token=encrypt_secret(data.access_token),
                    encrypted_refresh_token=encrypt_secret(data.refresh_token) if data.refresh_token else None,
                    expires_at=ensure_utc(data.expires_at),
                    last_refreshed_at=now,
                    revoked=False,
                    revoked_at=None,
                    revoked_reason=None,
                    platform_metadata=dict(data.platform_metadata),
                    order_watermark=None,
                    last_sync_at=None,
                    last_sync_status=None,
                    last_sync_error=None,
                )
                await repo.add_credential(credential)
                logger.info(f"Registered {platform} credential for seller {data.seller_id} ({data.external_account_id})")
                await self._adopt_revoked(repo, credential)
            else:
                credential.encrypted_access_token = encrypt_secret(data.access_token)
                if data.refresh_token:
                    credential.encrypted_refresh_token = encrypt_secret(data.refresh_token)
                credential.expires_at = ensure_utc(data.expires_at)
                credential.last_refreshed_at = now
                if data.account_name:
                    credential.account_name = data.account_name
                credential.platform_metadata = {**(credential.platform_metadata or {}), **data.platform_metadata}
                await repo.save_credential(credential)
                logger.info(f"Updated {platform} credential {credential.id} for seller {data.seller_id}")
            return CredentialStatus.from_orm_model(credential)

    async def _adopt_revoked(self, repo: SyncRepository, credential: Credential) -> None:
        """Reconnecting a revoked account takes over its listings and order watermark."""
        previous = await repo.find_latest_revoked_credential(
            credential.seller_id, credential.platform, credential.external_account_id
        )
        if previous is None:
            return

        credential.order_watermark = previous.order_watermark
        await repo.save_credential(credential)

        listings = await repo.list_listings_for_credential(previous.id)
        for listing in listings:
            listing.integration_id = credential.id
            await repo.save_listing(listing)
        logger.info(
            f"Credential {credential.id} replaces revoked credential {previous.id}: "
            f"{len(listings)} listings moved"
        )

    async def list_for_seller(self, seller_id: str) -> List[CredentialStatus]:
        async with self.repository_factory() as repo:
            credentials = await repo.list_credentials_for_seller(seller_id)
            return [CredentialStatus.from_orm_model(c) for c in credentials]

    async def disconnect(self, credential_id: int) -> CredentialStatus:
        return await self.revoke(credential_id, RevocationReason.USER_DISCONNECT)

    async def revoke(
        self,
        credential_id: int,
        reason: RevocationReason,
        detail: Optional[str] = None,
        sync_run_id: Optional[str] = None,
    ) -> CredentialStatus:
        alert: Optional[SyncAlertEvent] = None
        async with self.repository_factory() as repo:
            credential = await repo.get_credential(credential_id)
            if credential is None:
                raise RecordNotFoundError(f"Credential {credential_id} not found")
            if not credential.revoked:
                now = utcnow()
                credential.revoked = True
                credential.revoked_at = now
                credential.revoked_reason = reason.value
                await repo.save_credential(credential)

                alert = SyncAlertEvent(
                    alert_type=AlertType.CREDENTIAL_REVOKED,
                    seller_id=credential.seller_id,
                    platform=credential.platform,
                    credential_id=credential.id,
                    external_id=credential.external_account_id,
                    sync_run_id=sync_run_id,
                    details={"reason": reason.value, "detail": detail},
                    detected_at=now,
                )
                await repo.add_sync_event(alert.to_record())
                logger.warning(f"Revoked {credential.platform} credential {credential.id}: {reason.value}")
            status = CredentialStatus.from_orm_model(credential)

        if alert is not None:
            await self.notifier.publish(alert)
        return status

    async def apply_token_grant(self, repo: SyncRepository, credential: Credential, grant: TokenGrant) -> None:
        credential.encrypted_access_token = encrypt_secret(grant.access_token)
        if grant.refresh_token:
            credential.encrypted_refresh_token = encrypt_secret(grant.refresh_token)
        credential.expires_at = ensure_utc(grant.expires_at)
        credential.last_refreshed_at = utcnow()
        await repo.save_credential(credential)

    async def refresh_expiring(self) -> Dict[str, int]:
        """
        Rotate tokens for every active credential expiring within the refresh margin.

        An invalid grant (or 401) revokes the credential; transient failures leave it
        for the next pass.
        """
        if self.registry is None:
            raise ProviderNotRegisteredError("No provider registry configured for token refresh")

        cutoff = utcnow() + timedelta(minutes=self.settings.TOKEN_REFRESH_MARGIN_MINUTES)
        async with self.repository_factory() as repo:
            due = [c.id for c in await repo.list_credentials_expiring_before(cutoff)]

        summary = {"checked": len(due), "refreshed": 0, "revoked": 0, "failed": 0, "skipped": 0}
        for credential_id in due:
            outcome = await self._refresh_one(credential_id)
            summary[outcome] += 1

        if due:
            logger.info(f"Token refresh: {summary}")
        return summary

    async def _refresh_one(self, credential_id: int) -> str:
        async with self.repository_factory() as repo:
            credential = await repo.get_credential(credential_id)
            if credential is None or credential.revoked:
                return "skipped"
            if not self.registry.has(credential.platform):
                return "skipped"
            provider = self.registry.get(credential.platform)
            if not provider.supports_token_refresh or not credential.encrypted_refresh_token:
                return "skipped"
            context = open_context(credential)

        try:
            grant = await provider.refresh_access_token(context)
        except AuthExpiredError as e:
            await self.revoke(credential_id, RevocationReason.INVALID_GRANT, detail=str(e))
            return "revoked"
        except PlatformServiceError as e:
            logger.error(f"Token refresh failed for credential {credential_id}: {e}")
            return "failed"

        async with self.repository_factory() as repo:
            credential = await repo.get_credential(credential_id)
            if credential is None or credential.revoked:
                # Disconnected while the refresh was in flight
                return "skipped"
            await self.apply_token_grant(repo, credential, grant)
        logger.info(f"Refreshed {context.platform} token for credential {credential_id}")
        return "refreshed"
