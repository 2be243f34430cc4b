"""
Service for the platform commission setting.

The current percentage lives in a single ``platform_config`` row. Reads go
through a short-TTL cache; concurrent readers may briefly see the previous
value after an admin update.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.constants import COMMISSION_CONFIG_KEY
from ..core.exceptions import ValidationException
from ..core.timezone_utils import utc_now
from ..repositories.platform_config_repository import PlatformConfigRepository
from ..schemas.commission import CommissionSetting
from .base import BaseService
from .commission import to_decimal

if TYPE_CHECKING:
    from .cache_service import CacheService

COMMISSION_CACHE_KEY = "platform_config:commission_percentage"


@dataclass(frozen=True)
class CommissionSettingSnapshot:
    commission_percentage: Decimal
    updated_at: Optional[datetime]


class CommissionSettingsService(BaseService):
    """Business logic for reading and updating the commission percentage."""

    def __init__(self, db: Session, cache: Optional["CacheService"] = None) -> None:
        super().__init__(db, cache)
        self.repo = PlatformConfigRepository(db)

    @property
    def min_percentage(self) -> float:
        return settings.commission_min_percentage

    @property
    def max_percentage(self) -> float:
        return settings.commission_max_percentage

    @BaseService.measure_operation("get_commission_setting")
    def get_commission_setting(self) -> CommissionSettingSnapshot:
        """Read the stored setting, creating it with the default on first access."""
        record = self.repo.get_by_key(COMMISSION_CONFIG_KEY)
        if record is None or not record.value_json:
            default = CommissionSetting(
                commission_percentage=settings.default_commission_percentage
            ).model_dump()
            with self.transaction():
                record = self.repo.upsert(
                    key=COMMISSION_CONFIG_KEY, value=default, updated_at=utc_now()
                )
            self.logger.info(
                f"Created commission setting with default {settings.default_commission_percentage}%"
            )
        stored = CommissionSetting(**record.value_json)
        return CommissionSettingSnapshot(
            commission_percentage=to_decimal(stored.commission_percentage, field="percentage"),
            updated_at=record.updated_at,
        )

    @BaseService.measure_operation("get_commission_percentage")
    def get_commission_percentage(self) -> Decimal:
        """Current commission percentage, served from cache when fresh."""
        if self.cache is not None:
            cached = self.cache.get(COMMISSION_CACHE_KEY)
            if cached is not None:
                return to_decimal(cached, field="percentage")

        percentage = self.get_commission_setting().commission_percentage
        if self.cache is not None:
            self.cache.set(
                COMMISSION_CACHE_KEY,
                str(percentage),
                ttl=settings.commission_cache_ttl_seconds,
            )
        return percentage

    @BaseService.measure_operation("update_commission_percentage")
    def update_commission_percentage(self, value: float) -> CommissionSettingSnapshot:
        """
        Set a new commission percentage.

        Raises:
            ValidationException: value outside the configured admin range
        """
        if not (self.min_percentage <= value <= self.max_percentage):
            raise ValidationException(
                f"Commission percentage must be between {self.min_percentage} and {self.max_percentage}",
                code="INVALID_COMMISSION_PERCENTAGE",
                details={
                    "commission_percentage": value,
                    "min": self.min_percentage,
                    "max": self.max_percentage,
                },
            )

        validated = CommissionSetting(commission_percentage=value).model_dump()
        now = utc_now()
        with self.transaction():
            record = self.repo.upsert(key=COMMISSION_CONFIG_KEY, value=validated, updated_at=now)

        self.invalidate_cache(COMMISSION_CACHE_KEY)
        self.logger.info(f"Commission percentage updated to {value}%")
        return CommissionSettingSnapshot(
            commission_percentage=to_decimal(value, field="percentage"),
            updated_at=record.updated_at or now,
        )
