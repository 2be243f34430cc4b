# clinipay/services/base.py
"""
Shared plumbing for clinipay services.

Every service owns a SQLAlchemy session (and optionally the request cache),
commits through ``transaction()`` and reports timings through
``measure_operation``. Domain rejections (not found, forbidden, already paid)
are counted separately from unexpected failures so the error rate on the
dashboards only moves when something is actually broken.
"""

from contextlib import contextmanager
from functools import wraps
import logging
import time
from typing import TYPE_CHECKING, Any, Callable, Iterator, Optional, TypeVar, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import DomainException, ServiceException
from ..monitoring.prometheus_metrics import prometheus_metrics

if TYPE_CHECKING:
    from .cache_service import CacheService

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

SLOW_OPERATION_SECONDS = 1.0


class BaseService:
    """Base class for payment, payout, refund and settings services."""

    def __init__(self, db: Session, cache: Optional["CacheService"] = None):
        self.db = db
        self.cache = cache
        self.logger = logging.getLogger(self.__class__.__name__)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Commit the session when the block exits cleanly, roll back otherwise.

        Database errors are re-raised as ``ServiceException``; domain errors
        raised inside the block pass through unchanged after the rollback.
        """
        try:
            yield self.db
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            self.logger.error(f"Database transaction rolled back: {str(e)}")
            raise ServiceException(f"Database operation failed: {str(e)}") from e
        except Exception:
            self.db.rollback()
            raise

    @staticmethod
    def measure_operation(operation_name: str) -> Callable[[F], F]:
        """
        Time a service method and export the result to Prometheus.

        Usage:
            @BaseService.measure_operation("create_payout")
            def create_payout(self, payment_id): ...
        """

        def decorator(func: F) -> F:
            @wraps(func)
            def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
                started = time.perf_counter()
                status = "success"
                error_type: Optional[str] = None
                try:
                    return func(self, *args, **kwargs)
                except DomainException as e:
                    status = "rejected"
                    error_type = e.code
                    raise
                except Exception as e:
                    status = "error"
                    error_type = type(e).__name__
                    raise
                finally:
                    elapsed = time.perf_counter() - started
                    if elapsed > SLOW_OPERATION_SECONDS:
                        logger.warning(
                            f"{self.__class__.__name__}.{operation_name} took {elapsed:.2f}s"
                        )
                    prometheus_metrics.record_service_operation(
                        service=self.__class__.__name__,
                        operation=operation_name,
                        duration=elapsed,
                        status=status,
                        error_type=error_type,
                    )

            return cast(F, wrapper)

        return decorator

    def invalidate_cache(self, *keys: str) -> None:
        """Drop cached values; a cache outage only costs a stale read."""
        if self.cache is None:
            return
        for key in keys:
            try:
                self.cache.delete(key)
            except Exception as e:
                self.logger.warning(f"Could not invalidate cache key {key}: {str(e)}")
