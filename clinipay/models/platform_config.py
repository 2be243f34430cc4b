"""Platform-wide settings row (one JSON document per key)."""

from sqlalchemy import JSON, Column, DateTime, String

from ..core.timezone_utils import utc_now
from ..database import Base


class PlatformConfig(Base):
    __tablename__ = "platform_config"

    key = Column(String(64), primary_key=True)
    value_json = Column(JSON, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now)

    def __repr__(self) -> str:
        return f"<PlatformConfig {self.key}={self.value_json!r}>"
