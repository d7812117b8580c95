"""
Storage boundary for the sync engine.

SyncRepository is the interface the orchestrator, reconciler and credential
service depend on; SQLAlchemyRepository implements it over an AsyncSession.
A repository factory opens one unit of work: everything done through the
yielded repository commits together, or rolls back on error.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncContextManager, AsyncIterator, Callable, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from channel_sync.core.exceptions import RepositoryError
from channel_sync.core.utils import utcnow
from channel_sync.models.credential import Credential
from channel_sync.models.order import Order
from channel_sync.models.product import Product
from channel_sync.models.product_listing import ProductListing
from channel_sync.models.sync_event import SyncEvent
from channel_sync.models.sync_run import SyncRun
from channel_sync.schemas.orders import CanonicalOrder

logger = logging.getLogger(__name__)


def order_columns(order: CanonicalOrder) -> dict:
    """Provider-owned order columns. Local annotations (notes, tags) are never written here."""
    customer = order.customer
    return {
        "status": order.status.value,
        "raw_status": order.raw_status,
        "customer_name": customer.name if customer else None,
        "customer_email": customer.email if customer else None,
        "shipping_address": customer.shipping_address if customer else None,
        "total_value": order.total_value,
        "currency": order.currency,
        "items": [item.model_dump(mode="json") for item in order.items],
        "ordered_at": order.ordered_at,
    }


class SyncRepository(ABC):

    # Credentials
    @abstractmethod
    async def get_credential(self, credential_id: int) -> Optional[Credential]: ...

    @abstractmethod
    async def find_active_credential(self, seller_id: str, platform: str, external_account_id: str) -> Optional[Credential]: ...

    @abstractmethod
    async def find_latest_revoked_credential(
        self, seller_id: str, platform: str, external_account_id: str
    ) -> Optional[Credential]: ...

    @abstractmethod
    async def list_active_credentials(self, seller_id: str, platform: Optional[str] = None) -> List[Credential]: ...

    @abstractmethod
    async def list_credentials_for_seller(self, seller_id: str) -> List[Credential]: ...

    @abstractmethod
    async def list_credentials_expiring_before(self, cutoff: datetime) -> List[Credential]: ...

    @abstractmethod
    async def list_sellers_with_active_credentials(self) -> List[str]: ...

    @abstractmethod
    async def add_credential(self, credential: Credential) -> Credential: ...

    @abstractmethod
    async def save_credential(self, credential: Credential) -> None: ...

    # Orders
    @abstractmethod
    async def upsert_order(self, seller_id: str, credential_id: int, order: CanonicalOrder) -> bool:
        """Insert or refresh an order by (platform, external_order_id). Returns True when created."""

    @abstractmethod
    async def get_order(self, platform: str, external_order_id: str) -> Optional[Order]: ...

    # Products and listings
    @abstractmethod
    async def get_product(self, product_id: int) -> Optional[Product]: ...

    @abstractmethod
    async def get_listing(self, listing_id: int) -> Optional[ProductListing]: ...

    @abstractmethod
    async def list_listings_for_credential(self, credential_id: int) -> List[ProductListing]: ...

    @abstractmethod
    async def list_listings_for_product(self, product_id: int) -> List[ProductListing]: ...

    @abstractmethod
    async def save_listing(self, listing: ProductListing) -> None: ...

    # Run bookkeeping
    @abstractmethod
    async def add_sync_run(self, run: SyncRun) -> None: ...

    @abstractmethod
    async def add_sync_event(self, event: SyncEvent) -> None: ...

    @abstractmethod
    async def delete_sync_events_before(self, cutoff: datetime) -> int: ...


RepositoryFactory = Callable[[], AsyncContextManager[SyncRepository]]


class SQLAlchemyRepository(SyncRepository):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _all(self, stmt) -> list:
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise RepositoryError(f"Query failed: {e}") from e
        return list(result.scalars().all())

    async def _first(self, stmt):
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as e:
            raise RepositoryError(f"Query failed: {e}") from e
        return result.scalars().first()

    async def _flush(self) -> None:
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Flush failed: {e}") from e

    # Credentials

    async def get_credential(self, credential_id: int) -> Optional[Credential]:
        return await self.session.get(Credential, credential_id)

    async def find_active_credential(self, seller_id: str, platform: str, external_account_id: str) -> Optional[Credential]:
        return await self._first(
            select(Credential).where(
                Credential.seller_id == seller_id,
                Credential.platform == platform,
                Credential.external_account_id == external_account_id,
                Credential.revoked.is_(False),
            )
        )

    async def find_latest_revoked_credential(
        self, seller_id: str, platform: str, external_account_id: str
    ) -> Optional[Credential]:
        return await self._first(
            select(Credential)
            .where(
                Credential.seller_id == seller_id,
                Credential.platform == platform,
                Credential.external_account_id == external_account_id,
                Credential.revoked.is_(True),
            )
            .order_by(Credential.id.desc())
        )

    async def list_active_credentials(self, seller_id: str, platform: Optional[str] = None) -> List[Credential]:
        stmt = select(Credential).where(Credential.seller_id == seller_id, Credential.revoked.is_(False))
        if platform:
            stmt = stmt.where(Credential.platform == platform)
        return await self._all(stmt.order_by(Credential.id))

    async def list_credentials_for_seller(self, seller_id: str) -> List[Credential]:
        return await self._all(
            select(Credential).where(Credential.seller_id == seller_id).order_by(Credential.id)
        )

    async def list_credentials_expiring_before(self, cutoff: datetime) -> List[Credential]:
        return await self._all(
            select(Credential).where(
                Credential.revoked.is_(False),
                Credential.expires_at.is_not(None),
                Credential.expires_at <= cutoff,
            ).order_by(Credential.expires_at)
        )

    async def list_sellers_with_active_credentials(self) -> List[str]:
        try:
            result = await self.session.execute(
                select(Credential.seller_id).where(Credential.revoked.is_(False)).distinct().order_by(Credential.seller_id)
            )
        except SQLAlchemyError as e:
            raise RepositoryError(f"Query failed: {e}") from e
        return list(result.scalars().all())

    async def add_credential(self, credential: Credential) -> Credential:
        self.session.add(credential)
        await self._flush()
        return credential

    async def save_credential(self, credential: Credential) -> None:
        self.session.add(credential)
        await self._flush()

    # Orders

    async def upsert_order(self, seller_id: str, credential_id: int, order: CanonicalOrder) -> bool:
        columns = order_columns(order)
        now = utcnow()
        try:
            # Savepoint: one bad record must not poison the credential's transaction
            async with self.session.begin_nested():
                existing = await self._first(
                    select(Order).where(
                        Order.platform == order.platform,
                        Order.external_order_id == order.external_order_id,
                    )
                )
                if existing is not None:
                    if existing.seller_id != seller_id:
                        raise RepositoryError(
                            f"Order {order.platform}/{order.external_order_id} belongs to another seller"
                        )
                    for key, value in columns.items():
                        setattr(existing, key, value)
                    existing.credential_id = credential_id
                    existing.last_sync_at = now
                    created = False
                else:
                    self.session.add(Order(
                        seller_id=seller_id,
                        credential_id=credential_id,
                        platform=order.platform,
                        external_order_id=order.external_order_id,
                        last_sync_at=now,
                        **columns,
                    ))
                    created = True
                await self.session.flush()
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to store order {order.external_order_id}: {e}") from e
        return created

    async def get_order(self, platform: str, external_order_id: str) -> Optional[Order]:
        return await self._first(
            select(Order).where(Order.platform == platform, Order.external_order_id == external_order_id)
        )

    # Products and listings

    async def get_product(self, product_id: int) -> Optional[Product]:
        return await self.session.get(Product, product_id)

    async def get_listing(self, listing_id: int) -> Optional[ProductListing]:
        return await self.session.get(ProductListing, listing_id)

    async def list_listings_for_credential(self, credential_id: int) -> List[ProductListing]:
        return await self._all(
            select(ProductListing).where(ProductListing.integration_id == credential_id).order_by(ProductListing.id)
        )

    async def list_listings_for_product(self, product_id: int) -> List[ProductListing]:
        return await self._all(
            select(ProductListing).where(ProductListing.product_id == product_id).order_by(ProductListing.id)
        )

    async def save_listing(self, listing: ProductListing) -> None:
        self.session.add(listing)
        await self._flush()

    # Run bookkeeping

    async def add_sync_run(self, run: SyncRun) -> None:
        self.session.add(run)
        await self._flush()

    async def add_sync_event(self, event: SyncEvent) -> None:
        self.session.add(event)
        await self._flush()

    async def delete_sync_events_before(self, cutoff: datetime) -> int:
        try:
            result = await self.session.execute(delete(SyncEvent).where(SyncEvent.detected_at < cutoff))
        except SQLAlchemyError as e:
            raise RepositoryError(f"Failed to purge sync events: {e}") from e
        return result.rowcount or 0


def sql_repository_factory(session_maker: async_sessionmaker) -> RepositoryFactory:
    """Build a factory yielding a SQLAlchemyRepository bound to a fresh session per unit of work."""

    @asynccontextmanager
    async def factory() -> AsyncIterator[SyncRepository]:
        async with session_maker() as session:
            try:
                yield SQLAlchemyRepository(session)
            except BaseException:
                await session.rollback()
                raise
            try:
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise RepositoryError(f"Commit failed: {e}") from e

    return factory
