"""V1 commission setting routes (public read, admin read/write)."""

import asyncio

from fastapi import APIRouter, Body, Depends

from ...api.dependencies.auth import require_admin
from ...api.dependencies.services import get_commission_settings_service
from ...core.exceptions import DomainException
from ...errors import handle_domain_exception
from ...models.user import User
from ...schemas.commission import (
    CommissionSettingResponse,
    CommissionUpdateRequest,
    PublicCommissionResponse,
)
from ...services.commission_settings_service import (
    CommissionSettingSnapshot,
    CommissionSettingsService,
)

# Mounted at /api/v1/settings
router = APIRouter(tags=["settings"])

# Mounted at /api/v1/admin/settings
admin_router = APIRouter(tags=["admin-settings"])


def _admin_response(
    snapshot: CommissionSettingSnapshot, service: CommissionSettingsService
) -> CommissionSettingResponse:
    return CommissionSettingResponse(
        commission_percentage=float(snapshot.commission_percentage),
        updated_at=snapshot.updated_at,
        min_percentage=service.min_percentage,
        max_percentage=service.max_percentage,
    )


@router.get("/commission", response_model=PublicCommissionResponse)
async def get_public_commission(
    service: CommissionSettingsService = Depends(get_commission_settings_service),
) -> PublicCommissionResponse:
    """Return the commission percentage shown to doctors and patients."""
    percentage = await asyncio.to_thread(service.get_commission_percentage)
    return PublicCommissionResponse(commission_percentage=float(percentage))


@admin_router.get("/commission", response_model=CommissionSettingResponse)
async def get_admin_commission(
    _admin: User = Depends(require_admin),
    service: CommissionSettingsService = Depends(get_commission_settings_service),
) -> CommissionSettingResponse:
    snapshot = await asyncio.to_thread(service.get_commission_setting)
    return _admin_response(snapshot, service)


@admin_router.put("/commission", response_model=CommissionSettingResponse)
async def update_admin_commission(
    payload: CommissionUpdateRequest = Body(...),
    _admin: User = Depends(require_admin),
    service: CommissionSettingsService = Depends(get_commission_settings_service),
) -> CommissionSettingResponse:
    try:
        snapshot = await asyncio.to_thread(
            service.update_commission_percentage, payload.commission_percentage
        )
    except DomainException as e:
        handle_domain_exception(e)
    return _admin_response(snapshot, service)
