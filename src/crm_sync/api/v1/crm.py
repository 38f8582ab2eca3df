"""REST endpoints for triggering CRM sync and reading sync status.

POST /crm/sync   sync a lead to one provider, or to every connected CRM
GET  /crm/sync   ``?lead_id=`` returns per-provider status for the lead;
                 without it, the user's connected CRM providers
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from src.crm_sync.api.deps import get_current_user_id, get_sync_manager
from src.crm_sync.crm.schemas import CRMProvider, SyncResult

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/crm", tags=["crm"])


# ── Request Schemas ──────────────────────────────────────────────────────────


class SyncRequest(BaseModel):
    """Sync a lead to ``provider``, or to all connected CRMs when omitted."""

    lead_id: str = Field(min_length=1)
    provider: CRMProvider | None = None


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post("/sync", response_model=dict[str, SyncResult])
async def sync_lead(
    body: SyncRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
) -> dict[str, SyncResult]:
    """Sync a lead and its sent actions. Results are keyed by provider."""
    manager = get_sync_manager(request, user_id)

    if body.provider is not None:
        result = await manager.sync_lead_to_crm(body.lead_id, body.provider.value)
        return {body.provider.value: result}
    return await manager.sync_lead_to_all_crms(body.lead_id)


@router.get("/sync")
async def get_sync_info(
    request: Request,
    lead_id: str | None = Query(default=None),
    user_id: str = Depends(get_current_user_id),
) -> dict:
    """Per-provider sync status for a lead, or the connected CRM list."""
    manager = get_sync_manager(request, user_id)

    try:
        if lead_id:
            sync_status = await manager.get_sync_status(lead_id)
            return {
                provider: entry.model_dump(mode="json")
                for provider, entry in sync_status.items()
            }
        return {"connected_crms": await manager.get_connected_crms()}
    except Exception as exc:
        logger.error("crm_api.status_failed", user_id=user_id, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get status",
        ) from exc
