"""Shared helpers for the repositories."""
import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from measly_notes.exceptions import ErrorCode, StorageError

logger = logging.getLogger(__name__)


@contextmanager
def storage_errors(operation: str, write: bool = True) -> Iterator[None]:
    """Translate SQLAlchemy failures into StorageError.

    Domain errors (validation, not-found, protected tag) pass through
    untouched; only database failures are wrapped.
    """
    try:
        yield
    except IntegrityError as e:
        logger.error(f"Constraint violation during {operation}: {e}")
        raise StorageError(
            f"Constraint violation during {operation}",
            operation=operation,
            code=ErrorCode.STORAGE_WRITE_FAILED,
            original_error=e,
        ) from e
    except SQLAlchemyError as e:
        logger.error(f"Database error during {operation}: {e}")
        raise StorageError(
            f"Database error during {operation}",
            operation=operation,
            code=ErrorCode.STORAGE_WRITE_FAILED if write else ErrorCode.STORAGE_READ_FAILED,
            original_error=e,
        ) from e
