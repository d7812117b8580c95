"""
Credential hand-off from the OAuth collaborator, and explicit disconnect.
"""

from fastapi import APIRouter, Depends, status

from channel_sync.core.exceptions import BaseServiceError
from channel_sync.dependencies import get_credential_service
from channel_sync.routes.errors import to_http_exception
from channel_sync.schemas.credentials import CredentialCreate, CredentialStatus
from channel_sync.services.credential_service import CredentialService

router = APIRouter(prefix="/api/credentials", tags=["credentials"])


@router.post("", response_model=CredentialStatus, status_code=status.HTTP_201_CREATED)
async def register_credential(
    data: CredentialCreate,
    service: CredentialService = Depends(get_credential_service),
):
    try:
        return await service.register_credential(data)
    except BaseServiceError as e:
        raise to_http_exception(e)


@router.delete("/{credential_id}", response_model=CredentialStatus)
async def disconnect_credential(
    credential_id: int,
    service: CredentialService = Depends(get_credential_service),
):
    """Revoke the credential. The row and its orders are kept."""
    try:
        return await service.disconnect(credential_id)
    except BaseServiceError as e:
        raise to_http_exception(e)
