import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from errors import (
    CaseNotFound,
    CompensationFailed,
    InsufficientStock,
    PartNotFound,
    PersistenceError,
    TechnicianNotFound,
    ValidationError,
)
from gateway import CASES, SPARE_PARTS, MemoryGateway
from modules.cases.ledger import EMPTY_LEDGER, UsageLine
from modules.cases.lifecycle import CaseLifecycleController, STATUS_DELIVERED
from modules.spare_parts.catalog import PartCatalog
from utils import KeyedLocks

CASE_FIELDS = {
    "account_number": "ACC-001",
    "reference_number": "REF-001",
    "product_name": "Solar home kit",
}


class FlakyGateway(MemoryGateway):
    """Memory store whose case writes or numbered part updates can be made to fail."""

    def __init__(self):
        super().__init__()
        self.fail_case_writes = False
        self.fail_part_updates = set()
        self.part_update_calls = 0

    def _check_case(self, collection):
        if collection == CASES and self.fail_case_writes:
            raise PersistenceError("case store offline")

    def add(self, collection, item):
        self._check_case(collection)
        return super().add(collection, item)

    def update(self, collection, record_id, fields):
        self._check_case(collection)
        if collection == SPARE_PARTS:
            self.part_update_calls += 1
            if self.part_update_calls in self.fail_part_updates:
                raise PersistenceError("catalog offline")
        super().update(collection, record_id, fields)

    def delete(self, collection, record_id):
        self._check_case(collection)
        super().delete(collection, record_id)


@pytest.fixture()
def flaky():
    gateway = FlakyGateway()
    locks = KeyedLocks()
    catalog = PartCatalog(gateway, locks)
    return gateway, catalog, CaseLifecycleController(gateway, catalog, locks)


def _usage(*pairs):
    return [UsageLine(part.id, part.name, qty) for part, qty in pairs]


def _remaining(catalog, part):
    return catalog.get(part.id).remaining_stock


def _held(controller, part):
    return sum(case.spare_parts_used.quantity_for(part.id) for case in controller.all())


def test_case_stock_walkthrough(catalog, controller):
    p = catalog.create(name="Battery", total_stock=10)

    created = controller.create(CASE_FIELDS, _usage((p, 4)))
    assert _remaining(catalog, p) == 6
    assert created.case.spare_parts_used.quantity_for(p.id) == 4

    controller.update(created.case.id, {}, _usage((p, 7)))
    assert _remaining(catalog, p) == 3

    controller.delete(created.case.id)
    assert _remaining(catalog, p) == 10

    with pytest.raises(InsufficientStock) as info:
        controller.create(CASE_FIELDS, _usage((p, 12)))
    assert (info.value.part_id, info.value.requested, info.value.available) == (p.id, 12, 10)
    assert _remaining(catalog, p) == 10
    assert controller.all() == []


def test_create_fills_defaults(controller):
    result = controller.create(CASE_FIELDS, created_by="tech")
    case = result.case

    assert case.maintenance_status == "Received"
    assert case.created_by == "tech"
    assert case.spare_parts_used == EMPTY_LEDGER
    assert not result.plan.changed
    assert controller.get(case.id) == case


@pytest.mark.parametrize("fields", [
    {"account_number": "ACC-1", "product_name": "Kit"},
    {**CASE_FIELDS, "product_name": "  "},
    {**CASE_FIELDS, "maintenance_status": "Lost"},
])
def test_create_validates_fields(controller, fields):
    with pytest.raises(ValidationError):
        controller.create(fields)
    assert controller.all() == []


def test_stock_is_conserved_across_operations(catalog, controller):
    rng = random.Random(7)
    parts = [catalog.create(name=f"Part {n}", total_stock=15) for n in range(3)]
    case_ids = []

    for _ in range(60):
        action = rng.choice(["create", "update", "delete"]) if case_ids else "create"
        usage = _usage(*((part, rng.randint(1, 6)) for part in rng.sample(parts, rng.randint(0, 3))))
        try:
            if action == "create":
                case_ids.append(controller.create(CASE_FIELDS, usage).case.id)
            elif action == "update":
                controller.update(rng.choice(case_ids), {}, usage)
            else:
                case_id = rng.choice(case_ids)
                controller.delete(case_id)
                case_ids.remove(case_id)
        except InsufficientStock:
            pass

        for part in parts:
            stored = catalog.get(part.id)
            assert stored.total_stock == 15
            assert stored.remaining_stock >= 0
            assert stored.remaining_stock + _held(controller, part) == 15


def test_update_matches_delete_then_create(catalog, controller):
    a = catalog.create(name="A", total_stock=20)
    b = catalog.create(name="B", total_stock=20)
    first = controller.create(CASE_FIELDS, _usage((a, 5), (b, 2))).case
    controller.update(first.id, {}, _usage((a, 1), (b, 9)))
    via_update = (_remaining(catalog, a), _remaining(catalog, b))

    second = controller.create(CASE_FIELDS, _usage((a, 5), (b, 2))).case
    controller.delete(second.id)
    controller.delete(first.id)
    controller.create(CASE_FIELDS, _usage((a, 1), (b, 9)))

    assert (_remaining(catalog, a), _remaining(catalog, b)) == via_update == (19, 11)


def test_update_without_usage_keeps_stock(catalog, controller):
    p = catalog.create(name="Battery", total_stock=10)
    case = controller.create(CASE_FIELDS, _usage((p, 3))).case

    result = controller.update(case.id, {"maintenance_status": STATUS_DELIVERED})

    assert result.case.maintenance_status == STATUS_DELIVERED
    assert result.case.spare_parts_used.quantity_for(p.id) == 3
    assert not result.plan.changed
    assert _remaining(catalog, p) == 7


def test_rejected_commit_writes_nothing(catalog, controller):
    a = catalog.create(name="A", total_stock=10)
    b = catalog.create(name="B", total_stock=2)
    case = controller.create(CASE_FIELDS, _usage((a, 1))).case
    before = catalog.all()

    with pytest.raises(InsufficientStock):
        controller.update(case.id, {"product_name": "Changed"}, _usage((a, 8), (b, 3)))

    assert catalog.all() == before
    assert controller.get(case.id) == case


def test_deleted_case_is_terminal(catalog, controller):
    p = catalog.create(name="Battery", total_stock=5)
    case = controller.create(CASE_FIELDS, _usage((p, 2))).case
    controller.delete(case.id)

    with pytest.raises(CaseNotFound):
        controller.delete(case.id)
    with pytest.raises(CaseNotFound):
        controller.update(case.id, {}, [])
    assert _remaining(catalog, p) == 5


def test_renaming_a_part_keeps_the_line_snapshot(catalog, controller):
    p = catalog.create(name="Old name", total_stock=5)
    case = controller.create(CASE_FIELDS, _usage((p, 1))).case
    catalog.edit(p.id, {"name": "New name"})

    draft = controller.stage(case.id)
    draft.set_usage([{"part_id": p.id, "quantity": 2}])
    updated = controller.update(case.id, {}, draft.usage).case

    assert updated.spare_parts_used.line_for(p.id).part_name == "Old name"


def test_case_can_drop_a_deleted_part(catalog, controller):
    gone = catalog.create(name="Gone", total_stock=5)
    kept = catalog.create(name="Kept", total_stock=5)
    case = controller.create(CASE_FIELDS, _usage((gone, 2), (kept, 1))).case
    catalog.delete(gone.id)

    result = controller.update(case.id, {}, _usage((kept, 1)))
    assert result.plan.orphaned == (gone.id,)
    assert result.case.spare_parts_used.part_ids() == [kept.id]

    controller.delete(case.id)
    assert _remaining(catalog, kept) == 5


def test_case_cannot_grow_a_deleted_part(catalog, controller):
    gone = catalog.create(name="Gone", total_stock=5)
    case = controller.create(CASE_FIELDS, _usage((gone, 2))).case
    catalog.delete(gone.id)

    with pytest.raises(InsufficientStock) as info:
        controller.update(case.id, {}, _usage((gone, 3)))
    assert info.value.available == 0


def test_failed_case_write_restores_stock(flaky):
    gateway, catalog, controller = flaky
    a = catalog.create(name="A", total_stock=10)
    b = catalog.create(name="B", total_stock=10)
    before = catalog.all()

    gateway.fail_case_writes = True
    with pytest.raises(PersistenceError):
        controller.create(CASE_FIELDS, _usage((a, 3), (b, 4)))

    assert catalog.all() == before
    assert controller.all() == []


def test_failed_part_write_restores_earlier_parts(flaky):
    gateway, catalog, controller = flaky
    a = catalog.create(name="A", total_stock=10)
    b = catalog.create(name="B", total_stock=10)
    before = catalog.all()

    gateway.fail_part_updates = {2}
    with pytest.raises(PersistenceError) as info:
        controller.create(CASE_FIELDS, _usage((a, 3), (b, 4)))

    assert not isinstance(info.value, CompensationFailed)
    assert catalog.all() == before
    assert controller.all() == []


def test_failed_restore_names_out_of_sync_parts(flaky):
    gateway, catalog, controller = flaky
    a = catalog.create(name="A", total_stock=10)
    b = catalog.create(name="B", total_stock=10)

    # second part write fails, then so does the restore of the first
    gateway.fail_part_updates = {2, 3}
    with pytest.raises(CompensationFailed) as info:
        controller.create(CASE_FIELDS, _usage((a, 3), (b, 4)))

    # parts are written in ledger order, so only A had been written
    assert info.value.part_ids == [a.id]
    assert info.value.details == {"part_ids": [a.id]}
    assert _remaining(catalog, a) == 7
    assert _remaining(catalog, b) == 10


def test_failed_delete_keeps_case_and_stock(flaky):
    gateway, catalog, controller = flaky
    p = catalog.create(name="A", total_stock=10)
    case = controller.create(CASE_FIELDS, _usage((p, 6))).case

    gateway.fail_case_writes = True
    with pytest.raises(PersistenceError):
        controller.delete(case.id)

    assert _remaining(catalog, p) == 4
    assert controller.get(case.id) == case


def test_filter_and_counts(controller, roster):
    tech = roster.create({"full_name": "Amina Okello", "service_center": "Gulu"})
    one = controller.create({**CASE_FIELDS, "technician_id": tech.id}).case
    controller.create({**CASE_FIELDS, "account_number": "ACC-777",
                       "maintenance_status": STATUS_DELIVERED})

    assert [c.id for c in controller.filter(technician_id=tech.id)] == [one.id]
    assert len(controller.filter(query="acc-777")) == 1
    assert len(controller.filter(status=STATUS_DELIVERED)) == 1
    assert controller.counts_by_status() == {
        "Received": 1, "Pending": 0, "Delivered": 1, "total": 2,
    }


# ---------- technicians ----------
def test_case_takes_technician_name_from_roster(controller, roster):
    tech = roster.create({"full_name": "Amina Okello", "service_center": "Gulu"})

    case = controller.create({**CASE_FIELDS, "technician_id": tech.id,
                              "technician_name": "typed by hand"}).case

    assert case.technician_id == tech.id
    assert case.technician_name == "Amina Okello"


def test_unknown_technician_writes_nothing(catalog, controller):
    p = catalog.create(name="Battery", total_stock=5)

    with pytest.raises(TechnicianNotFound):
        controller.create({**CASE_FIELDS, "technician_id": "ghost"}, _usage((p, 2)))

    assert controller.all() == []
    assert _remaining(catalog, p) == 5


def test_technician_name_is_a_snapshot(controller, roster):
    tech = roster.create({"full_name": "Amina Okello", "service_center": "Gulu"})
    case = controller.create({**CASE_FIELDS, "technician_id": tech.id}).case

    roster.edit(tech.id, {"full_name": "Amina Okello-Achieng"})
    roster.delete(tech.id)
    updated = controller.update(case.id, {"technician_id": tech.id,
                                          "maintenance_status": STATUS_DELIVERED}).case

    assert updated.technician_name == "Amina Okello"


def test_reassign_and_clear_technician(controller, roster):
    first = roster.create({"full_name": "Amina Okello", "service_center": "Gulu"})
    second = roster.create({"full_name": "Peter Mugisha", "service_center": "Lira"})
    case = controller.create({**CASE_FIELDS, "technician_id": first.id}).case

    moved = controller.update(case.id, {"technician_id": second.id}).case
    assert moved.technician_name == "Peter Mugisha"

    cleared = controller.update(case.id, {"technician_id": ""}).case
    assert (cleared.technician_id, cleared.technician_name) == (None, None)


# ---------- failures outside the storage layer ----------
class BrokenTransportGateway(MemoryGateway):
    def add(self, collection, item):
        if collection == CASES:
            raise OSError("connection reset")
        return super().add(collection, item)


def test_unexpected_write_error_still_restores_stock():
    gateway = BrokenTransportGateway()
    locks = KeyedLocks()
    catalog = PartCatalog(gateway, locks)
    controller = CaseLifecycleController(gateway, catalog, locks)
    p = catalog.create(name="Battery", total_stock=10)
    before = catalog.all()

    with pytest.raises(OSError):
        controller.create(CASE_FIELDS, _usage((p, 4)))

    assert catalog.all() == before
    assert controller.all() == []


# ---------- concurrency ----------
class SlowPartWrites(MemoryGateway):
    """Widens the gap between reading a part and writing it back."""

    def update(self, collection, record_id, fields):
        if collection == SPARE_PARTS:
            time.sleep(0.001)
        super().update(collection, record_id, fields)


@pytest.fixture()
def slow():
    gateway = SlowPartWrites()
    locks = KeyedLocks()
    catalog = PartCatalog(gateway, locks)
    return catalog, CaseLifecycleController(gateway, catalog, locks), locks


def test_parallel_case_updates_conserve_stock(slow):
    catalog, controller, locks = slow
    p = catalog.create(name="Battery", total_stock=100)
    cases = [controller.create(CASE_FIELDS, _usage((p, 1))).case for _ in range(8)]
    barrier = threading.Barrier(len(cases))

    def edit(case):
        barrier.wait()
        for qty in (5, 2, 9, 3):
            controller.update(case.id, {}, _usage((p, qty)))

    with ThreadPoolExecutor(max_workers=len(cases)) as pool:
        for future in [pool.submit(edit, case) for case in cases]:
            future.result()

    assert _remaining(catalog, p) == 100 - 3 * len(cases)
    assert _remaining(catalog, p) + _held(controller, p) == 100
    assert len(locks) == 0


def test_restock_racing_case_commits(slow):
    catalog, controller, locks = slow
    p = catalog.create(name="Battery", total_stock=50)
    case = controller.create(CASE_FIELDS, _usage((p, 1))).case
    barrier = threading.Barrier(2)

    def restock():
        barrier.wait()
        for _ in range(20):
            catalog.restock(p.id, 1)

    def edit():
        barrier.wait()
        for qty in range(2, 22):
            controller.update(case.id, {}, _usage((p, qty)))

    with ThreadPoolExecutor(max_workers=2) as pool:
        for future in [pool.submit(restock), pool.submit(edit)]:
            future.result()

    stored = catalog.get(p.id)
    assert stored.total_stock == 70
    assert stored.remaining_stock + _held(controller, p) == 70
    assert stored.remaining_stock == 49


def test_lock_registry_does_not_grow(catalog, controller, locks):
    p = catalog.create(name="Battery", total_stock=5)

    for _ in range(50):
        case = controller.create(CASE_FIELDS, _usage((p, 1))).case
        controller.delete(case.id)

    assert controller.all() == []
    assert len(locks) == 0


def test_keyed_locks_serialise_one_key():
    locks = KeyedLocks()
    inside = []
    overlaps = []

    def work(n):
        with locks.hold("part:x", f"case:{n}"):
            inside.append(n)
            if len(inside) > 1:
                overlaps.append(tuple(inside))
            time.sleep(0.001)
            inside.remove(n)

    with ThreadPoolExecutor(max_workers=6) as pool:
        list(pool.map(work, range(30)))

    assert overlaps == []
    assert len(locks) == 0


# ---------- staging ----------
def test_draft_add_part_accumulates(catalog, controller):
    p = catalog.create(name="Battery", total_stock=5)
    draft = controller.stage()

    draft.add_part(p.id, 2)
    line = draft.add_part(p.id, "3")

    assert line.quantity == 5
    assert draft.available_for(p.id) == 0
    with pytest.raises(InsufficientStock) as info:
        draft.add_part(p.id, 1)
    assert info.value.available == 0


def test_draft_counts_what_the_case_holds(catalog, controller):
    p = catalog.create(name="Battery", total_stock=5)
    case = controller.create(CASE_FIELDS, _usage((p, 4))).case

    draft = controller.stage(case.id)
    assert draft.available_for(p.id) == 1

    draft.set_quantity(p.id, 5)
    assert draft.available_for(p.id) == 0
    draft.remove_part(p.id)
    assert draft.available_for(p.id) == 5

    controller.update(case.id, {}, draft.usage)
    assert _remaining(catalog, p) == 5


def test_draft_rejects_bad_lines(catalog, controller):
    p = catalog.create(name="Battery", total_stock=5)
    draft = controller.stage()

    with pytest.raises(ValidationError):
        draft.add_part(p.id, 0)
    with pytest.raises(PartNotFound):
        draft.add_part("missing", 1)
    with pytest.raises(ValidationError):
        draft.set_quantity(p.id, 1)
    with pytest.raises(PartNotFound):
        draft.set_usage([{"part_id": "missing", "quantity": 1}])
    with pytest.raises(ValidationError):
        draft.set_usage([{"part_id": p.id, "quantity": -2}])
    assert draft.usage == EMPTY_LEDGER
