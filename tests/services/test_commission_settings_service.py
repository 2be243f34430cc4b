"""Tests for the platform commission setting and its cache."""

from decimal import Decimal

import pytest

from clinipay.core.constants import COMMISSION_CONFIG_KEY
from clinipay.core.exceptions import ValidationException
from clinipay.models.platform_config import PlatformConfig
from clinipay.services.cache_service import CacheService
from clinipay.services.commission_settings_service import (
    COMMISSION_CACHE_KEY,
    CommissionSettingsService,
)


@pytest.fixture
def cache(db) -> CacheService:
    return CacheService(db)


@pytest.fixture
def settings_service(db, cache) -> CommissionSettingsService:
    return CommissionSettingsService(db, cache)


def test_default_is_created_on_first_read(db, settings_service):
    snapshot = settings_service.get_commission_setting()

    assert snapshot.commission_percentage == Decimal("5.0")
    record = db.query(PlatformConfig).filter_by(key=COMMISSION_CONFIG_KEY).one()
    assert record.value_json == {"commission_percentage": 5.0}


def test_update_within_bounds(settings_service):
    snapshot = settings_service.update_commission_percentage(7.5)

    assert snapshot.commission_percentage == Decimal("7.5")
    assert snapshot.updated_at is not None
    assert settings_service.get_commission_setting().commission_percentage == Decimal("7.5")


@pytest.mark.parametrize("value", [0.5, 10.5, -1.0])
def test_update_outside_admin_range_is_rejected(settings_service, value):
    with pytest.raises(ValidationException) as exc_info:
        settings_service.update_commission_percentage(value)

    assert exc_info.value.code == "INVALID_COMMISSION_PERCENTAGE"
    assert exc_info.value.details["min"] == 1.0
    assert exc_info.value.details["max"] == 10.0


def test_bounds_are_inclusive(settings_service):
    assert settings_service.update_commission_percentage(1.0).commission_percentage == Decimal("1.0")
    assert settings_service.update_commission_percentage(10.0).commission_percentage == Decimal("10.0")


def test_percentage_is_served_from_cache(settings_service, cache):
    assert settings_service.get_commission_percentage() == Decimal("5.0")
    assert cache.get(COMMISSION_CACHE_KEY) == "5.0"

    cache.set(COMMISSION_CACHE_KEY, "4.25", ttl=60)

    assert settings_service.get_commission_percentage() == Decimal("4.25")


def test_update_invalidates_cached_percentage(settings_service, cache):
    settings_service.get_commission_percentage()

    settings_service.update_commission_percentage(8)

    assert cache.get(COMMISSION_CACHE_KEY) is None
    assert settings_service.get_commission_percentage() == Decimal("8")


def test_works_without_cache(db):
    service = CommissionSettingsService(db)

    service.update_commission_percentage(3)

    assert service.get_commission_percentage() == Decimal("3")
