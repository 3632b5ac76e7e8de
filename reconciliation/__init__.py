from .errors import (
    ReconciliationError, NotFoundError, InvalidStateError, PreconditionError, ValidationError,
)
from .database import Database
from .margin import calculate_margins, Margins
from .service import ReconciliationService

__all__ = [
    "ReconciliationError", "NotFoundError", "InvalidStateError", "PreconditionError", "ValidationError",
    "Database",
    "calculate_margins", "Margins",
    "ReconciliationService",
]
