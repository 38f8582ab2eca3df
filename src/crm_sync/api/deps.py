"""FastAPI dependencies for authentication and sync wiring."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from src.crm_sync.core.security import verify_token
from src.crm_sync.crm.repository import CRMRepositories
from src.crm_sync.crm.sync import ClientFactory, CRMSyncManager


async def get_current_user_id(request: Request) -> str:
    """Extract the user id (``sub``) from the Bearer JWT.

    Raises:
        HTTPException(401): If the header is missing or the token is invalid.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    payload = verify_token(auth_header[7:])
    return str(payload["sub"])


def get_sync_manager(request: Request, user_id: str) -> CRMSyncManager:
    """Build a CRMSyncManager from app.state, 503 if sync is not initialized."""
    repositories: CRMRepositories | None = getattr(request.app.state, "crm_repositories", None)
    client_factory: ClientFactory | None = getattr(request.app.state, "crm_client_factory", None)
    if repositories is None or client_factory is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="CRM sync not initialized",
        )
    return CRMSyncManager(user_id, repositories, client_factory)
