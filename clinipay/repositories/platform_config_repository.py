"""Key/value platform settings (commission percentage and its bounds)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Optional

from sqlalchemy.orm import Session

from ..models.platform_config import PlatformConfig
from .base_repository import BaseRepository


class PlatformConfigRepository(BaseRepository[PlatformConfig]):
    def __init__(self, db: Session) -> None:
        super().__init__(db, PlatformConfig)

    def get_by_key(self, key: str) -> Optional[PlatformConfig]:
        with self._guard("load"):
            return self.db.get(PlatformConfig, key)

    def upsert(self, *, key: str, value: Mapping[str, Any], updated_at: datetime) -> PlatformConfig:
        """Insert or overwrite the JSON document stored under ``key``."""
        record = self.get_by_key(key)
        if record is None:
            return self.create(key=key, value_json=dict(value), updated_at=updated_at)

        record.value_json = dict(value)
        record.updated_at = updated_at
        self.flush()
        return record
