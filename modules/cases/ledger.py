"""Usage ledger: the parts a maintenance case has consumed.

A ledger is embedded in its case record rather than stored on its own, so
reading a case's ``spare_parts_used`` is the only way to know how much of a
part that case currently holds.
"""

from dataclasses import dataclass, replace
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from errors import ValidationError


@dataclass(frozen=True)
class UsageLine:
    part_id: str
    # Name of the part when the line was attached. Not refreshed on rename.
    part_name: str
    quantity: int

    @classmethod
    def from_record(cls, record: dict) -> "UsageLine":
        return cls(
            part_id=record.get("part_id"),
            part_name=record.get("part_name") or "",
            quantity=record.get("quantity"),
        )

    def to_record(self) -> dict:
        return {"part_id": self.part_id, "part_name": self.part_name, "quantity": self.quantity}


def check_line(line: UsageLine) -> None:
    if not line.part_id:
        raise ValidationError("Usage line needs a part_id", field="part_id")
    if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) or line.quantity <= 0:
        raise ValidationError(
            f"Quantity for part {line.part_id} must be a whole number greater than 0",
            field="quantity",
        )


class UsageLedger:
    """Immutable, ordered set of usage lines, at most one per part.

    Lines that repeat a part id are merged by summing their quantities; the
    first line's name snapshot is kept.
    """

    __slots__ = ("_lines",)

    def __init__(self, lines: Iterable[UsageLine] = ()):
        merged: Dict[str, UsageLine] = {}
        for line in lines:
            check_line(line)
            existing = merged.get(line.part_id)
            if existing is None:
                merged[line.part_id] = line
            else:
                merged[line.part_id] = replace(existing, quantity=existing.quantity + line.quantity)
        self._lines: Tuple[UsageLine, ...] = tuple(merged.values())

    @classmethod
    def from_records(cls, records: Optional[Iterable[dict]]) -> "UsageLedger":
        return cls(UsageLine.from_record(r) for r in (records or ()))

    def to_records(self) -> List[dict]:
        return [line.to_record() for line in self._lines]

    def line_for(self, part_id: str) -> Optional[UsageLine]:
        for line in self._lines:
            if line.part_id == part_id:
                return line
        return None

    def quantity_for(self, part_id: str) -> int:
        line = self.line_for(part_id)
        return line.quantity if line else 0

    def part_ids(self) -> List[str]:
        return [line.part_id for line in self._lines]

    def with_added(self, part_id: str, part_name: str, quantity: int) -> "UsageLedger":
        """Attach ``quantity`` more of a part; an existing line is incremented."""
        return UsageLedger(self._lines + (UsageLine(part_id, part_name, quantity),))

    def with_quantity(self, part_id: str, quantity: int) -> "UsageLedger":
        """Set the quantity of an existing line; 0 removes it."""
        if quantity == 0:
            return self.without(part_id)
        if self.line_for(part_id) is None:
            raise ValidationError(f"Part {part_id} is not on this case", field="part_id")
        return UsageLedger(
            replace(line, quantity=quantity) if line.part_id == part_id else line
            for line in self._lines
        )

    def without(self, part_id: str) -> "UsageLedger":
        return UsageLedger(line for line in self._lines if line.part_id != part_id)

    @property
    def total_quantity(self) -> int:
        return sum(line.quantity for line in self._lines)

    def __iter__(self) -> Iterator[UsageLine]:
        return iter(self._lines)

    def __len__(self) -> int:
        return len(self._lines)

    def __eq__(self, other) -> bool:
        if not isinstance(other, UsageLedger):
            return NotImplemented
        return self._lines == other._lines

    def __hash__(self) -> int:
        return hash(self._lines)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"UsageLedger({list(self._lines)!r})"


EMPTY_LEDGER = UsageLedger()
