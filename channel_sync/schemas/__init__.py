from .base import BaseSchema
from .orders import CanonicalOrder, CustomerInfo, OrderLineItem
from .listings import ListingDraft, ListingObservation, ListingSnapshot
from .credentials import CredentialCreate, CredentialStatus
from .sync import CredentialRunResult, PlatformRunSummary, RunReport, RunSyncRequest
