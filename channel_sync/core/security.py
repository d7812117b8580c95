"""
Security helpers: HTTP Basic auth for the API surface and at-rest encryption
of marketplace credential secrets.
"""

import secrets
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from channel_sync.core.config import get_settings
from channel_sync.core.exceptions import CredentialEncryptionError

security = HTTPBasic()


def get_current_username(credentials: HTTPBasicCredentials = Depends(security)) -> str:
    """
    Simple HTTP Basic Auth - checks username/password from settings
    """
    settings = get_settings()
    correct_username = settings.BASIC_AUTH_USERNAME
    correct_password = settings.BASIC_AUTH_PASSWORD

    if not correct_password:
        if settings.ENVIRONMENT == "production":
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Basic auth password not configured"
            )
        # In development, allow a default password
        correct_password = "changeme"

    is_correct_username = secrets.compare_digest(
        credentials.username.encode("utf8"),
        correct_username.encode("utf8")
    )
    is_correct_password = secrets.compare_digest(
        credentials.password.encode("utf8"),
        correct_password.encode("utf8")
    )

    if not (is_correct_username and is_correct_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Basic"},
        )

    return credentials.username


def _get_fernet() -> Fernet:
    key = get_settings().CREDENTIAL_ENCRYPTION_KEY
    if not key:
        raise CredentialEncryptionError("CREDENTIAL_ENCRYPTION_KEY is not configured")
    try:
        return Fernet(key.encode("utf8"))
    except ValueError as e:
        raise CredentialEncryptionError(f"Invalid CREDENTIAL_ENCRYPTION_KEY: {e}") from e


def encrypt_secret(value: str) -> str:
    """Encrypt a token for storage. Plaintext never leaves process memory."""
    return _get_fernet().encrypt(value.encode("utf8")).decode("ascii")


def decrypt_secret(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    try:
        return _get_fernet().decrypt(value.encode("ascii")).decode("utf8")
    except InvalidToken as e:
        raise CredentialEncryptionError("Stored credential secret could not be decrypted") from e
