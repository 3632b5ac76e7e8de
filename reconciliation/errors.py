"""
Typed exceptions for the reconciliation engine.

Every error carries a machine-readable ``code`` so callers (CLI, HTTP layer)
can translate it without parsing messages:

    ReconciliationError
    +-- NotFoundError        job / purchase order / invoice id does not resolve
    +-- InvalidStateError    operation not allowed in the job's (or document's) current state
    +-- PreconditionError    chain generation missing a required PO, or invoices already exist
    +-- ValidationError      malformed routing, negative margin, bad numbering input
"""
from typing import Optional


class ReconciliationError(Exception):
    code: str = "RECONCILIATION_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"code": self.code, "error": self.message}


class NotFoundError(ReconciliationError):
    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class InvalidStateError(ReconciliationError):
    code = "INVALID_STATE"

    def __init__(self, message: str, status: Optional[str] = None) -> None:
        super().__init__(message)
        self.status = status


class PreconditionError(ReconciliationError):
    code = "PRECONDITION_FAILED"


class ValidationError(ReconciliationError):
    code = "VALIDATION_FAILED"

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field
