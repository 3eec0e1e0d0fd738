"""Maintenance case lifecycle: staging, create, update, delete.

A case moves Staged (a ``CaseDraft`` being edited) -> Committed (after
create or update) -> Deleted (record removed, terminal). Every commit runs
the stock reconciler first, then writes the catalog, then writes the case.
If a write fails part-way, the parts already written are put back to the
exact snapshot they had before the operation.
"""

import logging
from dataclasses import dataclass, fields, replace
from datetime import datetime
from typing import Iterable, List, Optional

from errors import (
    CaseNotFound,
    CompensationFailed,
    InsufficientStock,
    PartNotFound,
    RecordMissing,
    ValidationError,
)
from extensions import stock_locks
from gateway import CASES, SPARE_PARTS, dedupe_by_id, get_gateway
from modules.cases.ledger import EMPTY_LEDGER, UsageLedger, UsageLine
from modules.cases.reconciler import ReconciliationPlan, reconcile
from modules.spare_parts.catalog import PartCatalog, SparePart, get_catalog
from modules.technicians.roster import TechnicianRoster
from utils import KeyedLocks, case_key, new_id, parse_int, part_key, utcnow

logger = logging.getLogger(__name__)

# ---------- Maintenance status values ----------
STATUS_RECEIVED = "Received"
STATUS_PENDING = "Pending"
STATUS_DELIVERED = "Delivered"
MAINTENANCE_STATUSES = (STATUS_RECEIVED, STATUS_PENDING, STATUS_DELIVERED)

REQUIRED_FIELDS = ("account_number", "product_name", "reference_number")
EDITABLE_FIELDS = (
    "account_number",
    "reference_number",
    "product_name",
    "product_type",
    "issue",
    "issue_details",
    "maintenance_status",
    "maintenance_action_taken",
    "technician_id",
    "district",
    "service_center",
)


@dataclass(frozen=True)
class MaintenanceCase:
    id: str
    account_number: str
    reference_number: str
    product_name: str
    product_type: Optional[str] = None
    issue: Optional[str] = None
    issue_details: Optional[str] = None
    maintenance_status: str = STATUS_RECEIVED
    maintenance_action_taken: Optional[str] = None
    technician_id: Optional[str] = None
    technician_name: Optional[str] = None
    district: Optional[str] = None
    service_center: Optional[str] = None
    spare_parts_used: UsageLedger = EMPTY_LEDGER
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: dict) -> "MaintenanceCase":
        known = {f.name for f in fields(cls)}
        data = {k: v for k, v in record.items() if k in known}
        data["spare_parts_used"] = UsageLedger.from_records(record.get("spare_parts_used"))
        return cls(**data)

    def to_record(self) -> dict:
        record = {f.name: getattr(self, f.name) for f in fields(self)}
        record["spare_parts_used"] = self.spare_parts_used.to_records()
        return record

    def as_json(self) -> dict:
        data = self.to_record()
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        data["updated_at"] = self.updated_at.isoformat() if self.updated_at else None
        return data


@dataclass(frozen=True)
class CommitResult:
    case: MaintenanceCase
    plan: ReconciliationPlan

    def as_json(self) -> dict:
        return {"case": self.case.as_json(), "stock": self.plan.as_json()}


def _clean_fields(raw: dict, creating: bool) -> dict:
    cleaned = {}
    for key in EDITABLE_FIELDS:
        if key not in raw:
            continue
        value = raw[key]
        cleaned[key] = (str(value).strip() or None) if value is not None else None

    if creating:
        for key in REQUIRED_FIELDS:
            if not cleaned.get(key):
                raise ValidationError(f"{key} is required", field=key)
        cleaned.setdefault("maintenance_status", STATUS_RECEIVED)
    else:
        for key in REQUIRED_FIELDS:
            if key in cleaned and not cleaned[key]:
                raise ValidationError(f"{key} cannot be blank", field=key)

    status = cleaned.get("maintenance_status")
    if "maintenance_status" in cleaned and status not in MAINTENANCE_STATUSES:
        raise ValidationError(
            f"maintenance_status must be one of {', '.join(MAINTENANCE_STATUSES)}",
            field="maintenance_status",
        )
    return cleaned


class CaseDraft:
    """A case's usage ledger while it is being edited, before commit.

    ``original`` is the committed case being edited, or ``None`` for a new
    case. Availability accounts for what the original already holds and
    for what this draft has already claimed.
    """

    def __init__(self, catalog: PartCatalog, original: Optional[MaintenanceCase] = None):
        self.catalog = catalog
        self.original = original
        self.usage = original.spare_parts_used if original else EMPTY_LEDGER

    @property
    def original_usage(self) -> UsageLedger:
        return self.original.spare_parts_used if self.original else EMPTY_LEDGER

    def available_for(self, part_id: str) -> int:
        part = self.catalog.find(part_id)
        if part is None:
            return 0
        return (part.remaining_stock
                + self.original_usage.quantity_for(part_id)
                - self.usage.quantity_for(part_id))

    def add_part(self, part_id: str, quantity) -> UsageLine:
        qty = parse_int(quantity, "quantity")
        if qty is None or qty <= 0:
            raise ValidationError("Quantity must be greater than 0", field="quantity")
        part = self.catalog.find(part_id)
        if part is None:
            raise PartNotFound(part_id)

        available = self.available_for(part_id)
        if qty > available:
            raise InsufficientStock(part_id, qty, available)

        self.usage = self.usage.with_added(part.id, part.name, qty)
        return self.usage.line_for(part_id)

    def set_quantity(self, part_id: str, quantity) -> None:
        qty = parse_int(quantity, "quantity", minimum=0)
        if qty is None:
            raise ValidationError("Quantity is required", field="quantity")
        self.usage = self.usage.with_quantity(part_id, qty)

    def remove_part(self, part_id: str) -> None:
        self.usage = self.usage.without(part_id)

    def set_usage(self, requested: Iterable[dict]) -> UsageLedger:
        """Replace the whole ledger from ``[{part_id, quantity}, ...]``.

        Parts already on the case keep the name they were attached under.
        A part deleted from the catalog is accepted only if the case already
        holds it. Stock checks are left to the commit.
        """
        lines = []
        for entry in requested:
            if not isinstance(entry, dict):
                raise ValidationError("Each usage line must be an object", field="spare_parts_used")
            part_id = entry.get("part_id")
            if not part_id:
                raise ValidationError("Usage line needs a part_id", field="part_id")
            qty = parse_int(entry.get("quantity"), "quantity")
            if qty is None or qty <= 0:
                raise ValidationError(f"Quantity for part {part_id} must be greater than 0",
                                      field="quantity")

            held = self.original_usage.line_for(part_id)
            if held is not None:
                name = held.part_name
            else:
                part = self.catalog.find(part_id)
                if part is None:
                    raise PartNotFound(part_id)
                name = part.name
            lines.append(UsageLine(part_id, name, qty))

        self.usage = UsageLedger(lines)
        return self.usage


class CaseLifecycleController:
    def __init__(self, gateway, catalog: PartCatalog, locks: KeyedLocks,
                 technicians: TechnicianRoster = None):
        self.gateway = gateway
        self.catalog = catalog
        self.locks = locks
        self.technicians = technicians if technicians is not None else TechnicianRoster(gateway)

    # ------ reads ------
    def all(self) -> List[MaintenanceCase]:
        return [MaintenanceCase.from_record(r) for r in dedupe_by_id(self.gateway.get(CASES))]

    def find(self, case_id: str) -> Optional[MaintenanceCase]:
        for case in self.all():
            if case.id == case_id:
                return case
        return None

    def get(self, case_id: str) -> MaintenanceCase:
        case = self.find(case_id)
        if case is None:
            raise CaseNotFound(case_id)
        return case

    def filter(self, status: str = None, technician_id: str = None,
               query: str = None) -> List[MaintenanceCase]:
        needle = (query or "").strip().lower()
        result = []
        for case in self.all():
            if status and case.maintenance_status != status:
                continue
            if technician_id and case.technician_id != technician_id:
                continue
            if needle and needle not in f"{case.account_number} {case.reference_number}".lower():
                continue
            result.append(case)
        return result

    def counts_by_status(self) -> dict:
        counts = {status: 0 for status in MAINTENANCE_STATUSES}
        cases = self.all()
        for case in cases:
            counts[case.maintenance_status] = counts.get(case.maintenance_status, 0) + 1
        counts["total"] = len(cases)
        return counts

    def stage(self, case_id: str = None) -> CaseDraft:
        original = self.get(case_id) if case_id else None
        return CaseDraft(self.catalog, original)

    def _assign_technician(self, cleaned: dict, current: MaintenanceCase = None) -> dict:
        """Resolve ``technician_id`` and snapshot the technician's name onto the case.

        Re-sending the id a case already carries keeps its stored name, even
        if that technician has since been removed.
        """
        if "technician_id" not in cleaned:
            return cleaned
        technician_id = cleaned["technician_id"]
        if technician_id is None:
            return {**cleaned, "technician_name": None}
        if current is not None and technician_id == current.technician_id:
            return cleaned
        technician = self.technicians.get(technician_id)
        return {**cleaned, "technician_name": technician.full_name}

    # ------ transitions ------
    def create(self, raw_fields: dict, usage: Iterable[UsageLine] = (),
               created_by: str = None) -> CommitResult:
        cleaned = self._assign_technician(_clean_fields(raw_fields, creating=True))
        now = utcnow()
        case = MaintenanceCase(
            id=new_id(),
            spare_parts_used=UsageLedger(usage),
            created_by=created_by,
            created_at=now,
            updated_at=now,
            **cleaned,
        )

        # no case lock: nobody else can know a new id yet
        plan, stored = self._commit(
            EMPTY_LEDGER,
            case.spare_parts_used,
            lambda: MaintenanceCase.from_record(self.gateway.add(CASES, case.to_record())),
        )

        logger.info("Created case %s with %d part line(s)", stored.id, len(stored.spare_parts_used))
        return CommitResult(stored, plan)

    def update(self, case_id: str, raw_fields: dict,
               usage: Optional[Iterable[UsageLine]] = None) -> CommitResult:
        cleaned = _clean_fields(raw_fields, creating=False)

        with self.locks.hold(case_key(case_id)):
            current = self.get(case_id)
            assigned = self._assign_technician(cleaned, current)
            new_usage = current.spare_parts_used if usage is None else UsageLedger(usage)
            updated = replace(current, spare_parts_used=new_usage, updated_at=utcnow(), **assigned)

            def write_case():
                record = updated.to_record()
                del record["id"]
                try:
                    self.gateway.update(CASES, case_id, record)
                except RecordMissing:
                    raise CaseNotFound(case_id) from None
                return updated

            plan, stored = self._commit(current.spare_parts_used, new_usage, write_case)

        logger.info("Updated case %s (%d stock adjustment(s))", case_id, len(plan.adjustments))
        return CommitResult(stored, plan)

    def delete(self, case_id: str) -> CommitResult:
        with self.locks.hold(case_key(case_id)):
            current = self.get(case_id)

            def remove_case():
                try:
                    self.gateway.delete(CASES, case_id)
                except RecordMissing:
                    raise CaseNotFound(case_id) from None
                return current

            plan, removed = self._commit(current.spare_parts_used, EMPTY_LEDGER, remove_case)

        logger.info("Deleted case %s, returned stock for %d part(s)", case_id, len(plan.adjustments))
        return CommitResult(removed, plan)

    # ------ the one write path ------
    def _commit(self, old_usage: UsageLedger, new_usage: UsageLedger, write_case):
        part_ids = list(dict.fromkeys(old_usage.part_ids() + new_usage.part_ids()))

        with self.locks.hold(*(part_key(pid) for pid in part_ids)):
            parts = self.catalog.snapshot(part_ids)
            plan = reconcile(old_usage, new_usage, parts)

            written: List[SparePart] = []
            try:
                for part in plan.updated_parts(parts, updated_at=utcnow()):
                    self.gateway.update(SPARE_PARTS, part.id, {
                        "remaining_stock": part.remaining_stock,
                        "updated_at": part.updated_at,
                    })
                    written.append(parts[part.id])
                result = write_case()
            except Exception as exc:
                self._compensate(written, exc)
                raise

        return plan, result

    def _compensate(self, originals: List[SparePart], cause: Exception) -> None:
        """Put already-written parts back to their pre-operation snapshot."""
        if not originals:
            return
        logger.warning("Case write failed (%s); restoring stock for %d part(s)", cause, len(originals))
        pending = [part.id for part in originals]
        try:
            for part in reversed(originals):
                self.gateway.update(SPARE_PARTS, part.id, {
                    "remaining_stock": part.remaining_stock,
                    "updated_at": part.updated_at,
                })
                pending.remove(part.id)
        except Exception as exc:
            logger.exception("Stock restore failed; parts %s are out of sync", pending)
            raise CompensationFailed(pending, cause) from exc


def get_controller() -> CaseLifecycleController:
    return CaseLifecycleController(get_gateway(), get_catalog(), stock_locks)
