"""
Shared enums and constants used across the sync engine.
"""

from enum import Enum


class PlatformName(str, Enum):
    MERCADOLIVRE = "mercadolivre"
    AMAZON = "amazon"
    SHOPIFY = "shopify"
    SHOPEE = "shopee"


class OrderStatus(str, Enum):
    """Canonical order status every provider maps into."""
    PENDING = "pending"
    PAID = "paid"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class ListingSyncStatus(str, Enum):
    """Agreement status between central stock and a remote listing."""
    SYNCHRONIZED = "synchronized"    # Remote stock matches central stock
    DIVERGENT = "divergent"          # Remote stock differs, reported only
    NOT_PUBLISHED = "not_published"  # No confirmed remote object yet
    TOKEN_EXPIRED = "token_expired"  # Credential-level failure
    ERROR = "error"                  # Transient/unknown failure, retryable
    DISCONNECTED = "disconnected"    # Remote object confirmed gone


class ListingEvent(str, Enum):
    """Inputs to the reconciliation state machine."""
    REMOTE_OBSERVED = "remote_observed"
    NOT_FOUND = "not_found"
    AUTH_EXPIRED = "auth_expired"
    TRANSIENT_ERROR = "transient_error"
    REPUBLISHED = "republished"


class RunOutcome(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"            # Some records or listings failed
    AUTH_EXPIRED = "auth_expired"  # Needs user reconnection
    FAILED = "failed"              # Will be retried on the next run
    SKIPPED = "skipped"            # No provider for the platform


class SyncTrigger(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class AlertType(str, Enum):
    LISTING_DISCONNECTED = "listing_disconnected"
    DIVERGENCE_DETECTED = "divergence_detected"
    DIVERGENCE_RESOLVED = "divergence_resolved"
    LISTING_REPUBLISHED = "listing_republished"
    CREDENTIAL_EXPIRED = "credential_expired"
    CREDENTIAL_REVOKED = "credential_revoked"


class RevocationReason(str, Enum):
    USER_DISCONNECT = "user_disconnect"
    REMOTE_UNAUTHORIZED = "remote_unauthorized"
    INVALID_GRANT = "invalid_grant"
    REPLACED = "replaced"
