# clinipay/repositories/base_repository.py
"""
Generic repository base for clinipay.

Repositories never commit; services own the transaction boundary. Every
SQLAlchemy failure leaves a repository as ``RepositoryException`` with the
original error chained as ``__cause__`` so callers can still tell a unique
constraint race (``IntegrityError``) from an outage.
"""

from contextlib import contextmanager
import logging
from typing import Any, Generic, Iterator, Optional, Type, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException

ModelT = TypeVar("ModelT")


class BaseRepository(Generic[ModelT]):
    """Lookup by primary key, create and flush for a single model class."""

    def __init__(self, db: Session, model: Type[ModelT]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    @contextmanager
    def _guard(self, action: str, *, rollback: bool = False) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to {action} {self.model.__name__}: {str(e)}")
            if rollback:
                self.db.rollback()
            raise RepositoryException(f"Failed to {action} {self.model.__name__}: {str(e)}") from e

    def get_by_id(self, id: str) -> Optional[ModelT]:
        with self._guard("load"):
            return self.db.query(self.model).filter(self.model.id == id).first()

    def create(self, **kwargs: Any) -> ModelT:
        """Add and flush a new row so its defaults and id are populated."""
        with self._guard("create", rollback=True):
            entity = self.model(**kwargs)
            self.db.add(entity)
            self.db.flush()
            return entity

    def flush(self) -> None:
        with self._guard("flush"):
            self.db.flush()
