from fastapi import HTTPException, Request, status

from channel_sync.services.credential_service import CredentialService
from channel_sync.services.sync_services import SyncOrchestrator


def get_orchestrator(request: Request) -> SyncOrchestrator:
    """The orchestrator built in the application lifespan."""
    orchestrator = getattr(request.app.state, "sync_orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Sync engine not initialised")
    return orchestrator


def get_credential_service(request: Request) -> CredentialService:
    return get_orchestrator(request).credential_service
