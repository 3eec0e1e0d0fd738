"""Part catalog: spare part records and their stock counters.

The catalog owns creation, restock, administrative edits and deletion.
Stock consumed by maintenance cases is written by the case lifecycle
controller, never from here.
"""

import logging
from dataclasses import asdict, dataclass, fields, replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from flask import current_app

from errors import PartNotFound, RecordMissing, ValidationError
from extensions import stock_locks
from gateway import SPARE_PARTS, dedupe_by_id, get_gateway
from utils import KeyedLocks, new_id, parse_int, part_key, utcnow

logger = logging.getLogger(__name__)

DEFAULT_UNIT = "pcs"
DEFAULT_LOW_STOCK_THRESHOLD = 10

EDITABLE_FIELDS = (
    "name",
    "description",
    "unit",
    "total_stock",
    "remaining_stock",
    "low_stock_threshold",
)
COUNTER_FIELDS = ("total_stock", "remaining_stock", "low_stock_threshold")


@dataclass(frozen=True)
class SparePart:
    id: str
    name: str
    unit: str = DEFAULT_UNIT
    description: Optional[str] = None
    total_stock: int = 0
    remaining_stock: int = 0
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_low_stock(self) -> bool:
        return self.remaining_stock <= self.low_stock_threshold

    @property
    def consumed(self) -> int:
        return self.total_stock - self.remaining_stock

    @classmethod
    def from_record(cls, record: dict) -> "SparePart":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in record.items() if k in known})

    def to_record(self) -> dict:
        return asdict(self)

    def as_json(self) -> dict:
        data = self.to_record()
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        data["updated_at"] = self.updated_at.isoformat() if self.updated_at else None
        data["is_low_stock"] = self.is_low_stock
        data["consumed"] = self.consumed
        return data


def _text(value) -> str:
    return str(value).strip() if value is not None else ""


def _clean_name(value) -> str:
    name = _text(value)
    if not name:
        raise ValidationError("Part name is required", field="name")
    return name


class PartCatalog:
    def __init__(self, gateway, locks: KeyedLocks, default_unit: str = DEFAULT_UNIT,
                 default_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD):
        self.gateway = gateway
        self.locks = locks
        self.default_unit = default_unit
        self.default_threshold = default_threshold

    # ------ reads ------
    def all(self) -> List[SparePart]:
        return [SparePart.from_record(r) for r in dedupe_by_id(self.gateway.get(SPARE_PARTS))]

    def find(self, part_id: str) -> Optional[SparePart]:
        return self.snapshot([part_id]).get(part_id)

    def get(self, part_id: str) -> SparePart:
        part = self.find(part_id)
        if part is None:
            raise PartNotFound(part_id)
        return part

    def snapshot(self, part_ids: Iterable[str]) -> Dict[str, SparePart]:
        """Current state of the requested parts; missing ids are simply absent."""
        wanted = set(part_ids)
        return {part.id: part for part in self.all() if part.id in wanted}

    def search(self, query: str = "", low_only: bool = False) -> List[SparePart]:
        needle = (query or "").strip().lower()
        result = []
        for part in self.all():
            if low_only and not part.is_low_stock:
                continue
            haystack = f"{part.name} {part.description or ''}".lower()
            if needle and needle not in haystack:
                continue
            result.append(part)
        return result

    def low_stock(self) -> List[SparePart]:
        return self.search(low_only=True)

    def summary(self) -> dict:
        parts = self.all()
        return {
            "total_parts": len(parts),
            "total_remaining": sum(p.remaining_stock for p in parts),
            "low_stock_count": sum(1 for p in parts if p.is_low_stock),
            "units_consumed": sum(p.consumed for p in parts),
        }

    # ------ writes ------
    def create(self, name: str, unit: str = None, total_stock=0, remaining_stock=None,
               low_stock_threshold=None, description: str = None) -> SparePart:
        """Insert a part. ``remaining_stock`` defaults to ``total_stock``."""
        total = parse_int(total_stock, "total_stock", default=0, minimum=0)
        remaining = parse_int(remaining_stock, "remaining_stock", default=total, minimum=0)
        threshold = parse_int(low_stock_threshold, "low_stock_threshold",
                              default=self.default_threshold, minimum=0)
        now = utcnow()
        part = SparePart(
            id=new_id(),
            name=_clean_name(name),
            unit=_text(unit) or self.default_unit,
            description=_text(description) or None,
            total_stock=total,
            remaining_stock=remaining,
            low_stock_threshold=threshold,
            created_at=now,
            updated_at=now,
        )
        stored = SparePart.from_record(self.gateway.add(SPARE_PARTS, part.to_record()))
        logger.info("Created part %s (%s) with %d/%d %s",
                    stored.id, stored.name, stored.remaining_stock, stored.total_stock, stored.unit)
        return stored

    def restock(self, part_id: str, quantity) -> SparePart:
        qty = parse_int(quantity, "quantity")
        if qty is None or qty <= 0:
            raise ValidationError("Restock quantity must be greater than 0", field="quantity")

        with self.locks.hold(part_key(part_id)):
            part = self.get(part_id)
            restocked = replace(
                part,
                total_stock=part.total_stock + qty,
                remaining_stock=part.remaining_stock + qty,
                updated_at=utcnow(),
            )
            self._write(restocked, ("total_stock", "remaining_stock", "updated_at"))

        logger.info("Restocked part %s by %d %s", part_id, qty, part.unit)
        return restocked

    def edit(self, part_id: str, changes: dict) -> SparePart:
        """Overwrite any editable field, stock counters included.

        This is the administrative escape hatch: ``remaining_stock`` may be
        set above ``total_stock``. Renaming a part leaves the name snapshots
        on existing usage lines untouched.
        """
        updates = {}
        for key in EDITABLE_FIELDS:
            if key not in changes:
                continue
            value = changes[key]
            if key == "name":
                value = _clean_name(value)
            elif key in COUNTER_FIELDS:
                value = parse_int(value, key, minimum=0)
                if value is None:
                    raise ValidationError(f"{key} is required", field=key)
            elif key == "unit":
                value = _text(value) or self.default_unit
            else:
                value = _text(value) or None
            updates[key] = value

        with self.locks.hold(part_key(part_id)):
            part = self.get(part_id)
            edited = replace(part, updated_at=utcnow(), **updates)
            self._write(edited, tuple(updates) + ("updated_at",))

        if edited.remaining_stock > edited.total_stock:
            logger.warning("Part %s edited to remaining %d above total %d",
                           part_id, edited.remaining_stock, edited.total_stock)
        return edited

    def delete(self, part_id: str) -> SparePart:
        """Remove a part. Case ledgers that reference it are left as they are."""
        with self.locks.hold(part_key(part_id)):
            part = self.get(part_id)
            try:
                self.gateway.delete(SPARE_PARTS, part_id)
            except RecordMissing:
                raise PartNotFound(part_id) from None
        logger.info("Deleted part %s (%s)", part_id, part.name)
        return part

    def _write(self, part: SparePart, names: Iterable[str]) -> None:
        record = part.to_record()
        try:
            self.gateway.update(SPARE_PARTS, part.id, {name: record[name] for name in names})
        except RecordMissing:
            raise PartNotFound(part.id) from None


def get_catalog() -> PartCatalog:
    """Catalog bound to the current app's gateway and settings."""
    return PartCatalog(
        get_gateway(),
        stock_locks,
        default_unit=current_app.config.get("DEFAULT_PART_UNIT", DEFAULT_UNIT),
        default_threshold=current_app.config.get("DEFAULT_LOW_STOCK_THRESHOLD",
                                                 DEFAULT_LOW_STOCK_THRESHOLD),
    )
