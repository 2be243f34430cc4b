"""Pydantic schemas for the platform commission setting."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field

from ._strict_base import StrictModel, StrictRequestModel


class CommissionSetting(StrictModel):
    """Stored shape of the commission platform_config row."""

    commission_percentage: float = Field(..., ge=0, le=100)


class CommissionUpdateRequest(StrictRequestModel):
    commission_percentage: float = Field(
        ..., description="Platform commission as a percentage of the appointment price"
    )


class PublicCommissionResponse(StrictModel):
    commission_percentage: float


class CommissionSettingResponse(StrictModel):
    """Admin view of the commission setting and its allowed range."""

    commission_percentage: float
    updated_at: Optional[datetime] = None
    min_percentage: float
    max_percentage: float
