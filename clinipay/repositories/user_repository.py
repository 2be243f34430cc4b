"""Account lookups for token authentication."""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models.user import User
from .base_repository import BaseRepository


class UserRepository(BaseRepository[User]):
    def __init__(self, db: Session):
        super().__init__(db, User)

    def get_by_email(self, email: str) -> Optional[User]:
        # emails are stored lowercased
        with self._guard("load"):
            return self.db.scalars(select(User).where(User.email == email.lower())).first()
