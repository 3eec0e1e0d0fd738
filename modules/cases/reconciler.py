"""Stock reconciler.

Given the usage ledger a case currently has committed and the ledger the
user wants to commit, work out how every affected part's
``remaining_stock`` must change. Nothing here touches storage: the result is
a ``ReconciliationPlan`` that the lifecycle controller writes.

Every change uses the same restore-then-deduct step::

    restored  = remaining + old_qty      # undo the old commitment
    remaining = max(0, restored - new_qty)

so adding a part (``old_qty == 0``), removing one (``new_qty == 0``) and
changing a quantity need no special cases, and creating a case is just
reconciling against an empty ledger.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from errors import InsufficientStock
from modules.cases.ledger import UsageLine, check_line
from modules.spare_parts.catalog import SparePart

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockAdjustment:
    part_id: str
    old_quantity: int
    new_quantity: int
    remaining_before: int
    remaining_after: int
    # Units the clamp at zero swallowed; 0 whenever validation ran first.
    clamped: int = 0

    @property
    def delta(self) -> int:
        return self.new_quantity - self.old_quantity

    def as_json(self) -> dict:
        return {
            "part_id": self.part_id,
            "old_quantity": self.old_quantity,
            "new_quantity": self.new_quantity,
            "remaining_before": self.remaining_before,
            "remaining_after": self.remaining_after,
            "clamped": self.clamped,
        }


@dataclass(frozen=True)
class StockWarning:
    part_id: str
    shortfall: int

    @property
    def message(self) -> str:
        return (f"Stock for part {self.part_id} was clamped at 0; "
                f"{self.shortfall} unit(s) could not be deducted")

    def as_json(self) -> dict:
        return {"part_id": self.part_id, "shortfall": self.shortfall, "message": self.message}


@dataclass(frozen=True)
class ReconciliationPlan:
    adjustments: Tuple[StockAdjustment, ...] = ()
    # Parts whose quantity changed but that no longer exist in the catalog.
    orphaned: Tuple[str, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.adjustments)

    @property
    def warnings(self) -> Tuple[StockWarning, ...]:
        return tuple(StockWarning(a.part_id, a.clamped) for a in self.adjustments if a.clamped)

    def part_ids(self) -> List[str]:
        return [a.part_id for a in self.adjustments]

    def updated_parts(self, parts: Mapping[str, SparePart],
                      updated_at: Optional[datetime] = None) -> List[SparePart]:
        """New snapshots of the adjusted parts, in adjustment order."""
        result = []
        for adjustment in self.adjustments:
            part = parts[adjustment.part_id]
            changes = {"remaining_stock": adjustment.remaining_after}
            if updated_at is not None:
                changes["updated_at"] = updated_at
            result.append(replace(part, **changes))
        return result

    def as_json(self) -> dict:
        return {
            "adjustments": [a.as_json() for a in self.adjustments],
            "orphaned": list(self.orphaned),
            "warnings": [w.as_json() for w in self.warnings],
        }


def _totals(lines: Iterable[UsageLine]) -> Dict[str, int]:
    totals: Dict[str, int] = {}
    for line in lines:
        totals[line.part_id] = totals.get(line.part_id, 0) + line.quantity
    return totals


def compute_adjustment(part: SparePart, old_quantity: int, new_quantity: int) -> StockAdjustment:
    """Restore-then-deduct for a single part."""
    restored = part.remaining_stock + old_quantity
    target = restored - new_quantity
    remaining_after = max(0, target)
    return StockAdjustment(
        part_id=part.id,
        old_quantity=old_quantity,
        new_quantity=new_quantity,
        remaining_before=part.remaining_stock,
        remaining_after=remaining_after,
        clamped=remaining_after - target,
    )


def validate(old_usage: Iterable[UsageLine], new_usage: Iterable[UsageLine],
             parts: Mapping[str, SparePart]) -> None:
    """Check the whole candidate ledger before anything is written.

    For each new line the available amount is the part's remaining stock,
    plus what the case already holds, minus what earlier lines of the same
    candidate have claimed. A part missing from the catalog has nothing
    available: its quantity may shrink or stay, never grow.
    """
    old_totals = _totals(old_usage)
    staged: Dict[str, int] = {}

    for line in new_usage:
        check_line(line)
        part_id = line.part_id
        already = staged.get(part_id, 0)
        held = old_totals.get(part_id, 0)
        part = parts.get(part_id)

        if part is None:
            if already + line.quantity > held:
                raise InsufficientStock(part_id, line.quantity, 0)
        else:
            available = part.remaining_stock + held - already
            if line.quantity > available:
                raise InsufficientStock(part_id, line.quantity, available)

        staged[part_id] = already + line.quantity


def reconcile(old_usage: Iterable[UsageLine], new_usage: Iterable[UsageLine],
              parts: Mapping[str, SparePart]) -> ReconciliationPlan:
    """Validate ``new_usage`` against ``old_usage`` and compute the stock plan.

    ``parts`` holds the current snapshot of every part either ledger
    references (missing ids are treated as deleted). Raises
    ``InsufficientStock`` without computing anything when the candidate does
    not fit. A clamp at zero is reported in ``plan.warnings``.
    """
    old_lines = list(old_usage)
    new_lines = list(new_usage)
    validate(old_lines, new_lines, parts)

    old_totals = _totals(old_lines)
    new_totals = _totals(new_lines)
    ordered_ids = list(dict.fromkeys(list(old_totals) + list(new_totals)))

    adjustments = []
    orphaned = []
    for part_id in ordered_ids:
        old_qty = old_totals.get(part_id, 0)
        new_qty = new_totals.get(part_id, 0)
        if new_qty == old_qty:
            continue

        part = parts.get(part_id)
        if part is None:
            orphaned.append(part_id)
            continue

        adjustment = compute_adjustment(part, old_qty, new_qty)
        if adjustment.clamped:
            logger.warning("Clamped stock of part %s at 0 (short by %d)", part_id, adjustment.clamped)
        adjustments.append(adjustment)

    return ReconciliationPlan(tuple(adjustments), tuple(orphaned))
