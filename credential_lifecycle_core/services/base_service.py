"""
Base class for services that work against a database session.
"""

from contextlib import contextmanager
from typing import Iterator, NoReturn

from sqlalchemy.orm import Session

from ..exceptions import BaseError, ErrorCode, ServiceError
from ..utils.logger import get_logger


class SessionService:
    """
    Service bound to a SQLAlchemy session.

    ``transaction()`` is the unit of work: the outermost block commits on
    success and rolls back on error; nested blocks join the outer one.
    """

    def __init__(self, session: Session, logger=None):
        self.session = session
        self.logger = logger or get_logger()
        self._depth = 0

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        self._depth += 1
        try:
            yield self.session
            if self._depth == 1:
                self.session.commit()
                self._after_commit()
        except Exception:
            if self._depth == 1:
                self.session.rollback()
                self._after_rollback()
            raise
        finally:
            self._depth -= 1

    def _after_commit(self) -> None:
        """Hook run after the outermost transaction commits."""

    def _after_rollback(self) -> None:
        """Hook run after the outermost transaction rolls back."""

    def _handle_service_exception(self, operation: str, exception: Exception, **context) -> NoReturn:
        """Re-raise our errors unchanged and wrap anything else in ServiceError."""
        if isinstance(exception, BaseError):
            raise exception
        self.logger.error(
            f"Error in {operation}: {str(exception)}",
            extra={"operation": operation, "error_type": type(exception).__name__, **context},
        )
        raise ServiceError(
            f"Error in {operation}: {str(exception)}",
            error_code=ErrorCode.INTERNAL_ERROR,
            operation=operation,
            cause=exception,
            **context,
        ) from exception
