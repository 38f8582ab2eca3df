"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.crm_sync.api.v1 import crm, health

router = APIRouter(prefix="/v1")

router.include_router(health.router)
router.include_router(crm.router)
