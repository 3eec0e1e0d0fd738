"""Exceptions raised by the inventory and case modules.

Every error carries a machine-readable ``code``, a human message and a
``details`` dict, and knows the HTTP status the JSON layer answers with.
"""

from typing import Any, Dict, Iterable, Optional


class InventoryError(Exception):
    """Base exception for inventory and case operations."""

    status_code = 400

    def __init__(
        self,
        message: str,
        code: str = "INVENTORY_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(InventoryError):
    """Raised when input data is malformed or out of range."""

    def __init__(self, message: str, field: str = None):
        details = {"field": field} if field else {}
        super().__init__(message, code="VALIDATION_ERROR", details=details)


class NotFound(InventoryError):
    """Raised when a restock/edit/delete target does not exist."""

    status_code = 404

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="NOT_FOUND", details=details)


class PartNotFound(NotFound):
    def __init__(self, part_id: str):
        self.part_id = part_id
        super().__init__(f"Spare part not found: {part_id}", {"part_id": part_id})


class CaseNotFound(NotFound):
    def __init__(self, case_id: str):
        self.case_id = case_id
        super().__init__(f"Maintenance case not found: {case_id}", {"case_id": case_id})


class TechnicianNotFound(NotFound):
    def __init__(self, technician_id: str):
        self.technician_id = technician_id
        super().__init__(f"Technician not found: {technician_id}", {"technician_id": technician_id})


class InsufficientStock(InventoryError):
    """Raised when a usage ledger asks for more units than are available.

    Nothing has been written when this is raised.
    """

    status_code = 409

    def __init__(self, part_id: str, requested: int, available: int):
        self.part_id = part_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for part {part_id}: "
            f"requested {requested}, available {available}",
            code="INSUFFICIENT_STOCK",
            details={"part_id": part_id, "requested": requested, "available": available},
        )


class PersistenceError(InventoryError):
    """The storage gateway failed. Callers own the retry policy."""

    status_code = 503

    def __init__(self, message: str, code: str = "PERSISTENCE_ERROR",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)


class RecordMissing(PersistenceError):
    def __init__(self, collection: str, record_id: str):
        self.collection = collection
        self.record_id = record_id
        super().__init__(
            f"No record {record_id} in {collection}",
            code="RECORD_MISSING",
            details={"collection": collection, "id": record_id},
        )


class CompensationFailed(PersistenceError):
    """A write failed and restoring the catalog afterwards failed too.

    ``part_ids`` lists the parts whose stock no longer matches the case store.
    """

    def __init__(self, part_ids: Iterable[str], cause: Exception):
        self.part_ids = list(part_ids)
        self.cause = cause
        super().__init__(
            f"Stock restore failed for parts {', '.join(self.part_ids)}: {cause}",
            code="COMPENSATION_FAILED",
            details={"part_ids": self.part_ids},
        )
