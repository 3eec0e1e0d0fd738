import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from uuid import uuid4

from errors import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Opaque record key."""
    return uuid4().hex


def parse_int(value, field: str, default=None, minimum: int | None = None):
    """Parse an integer coming from a form or a JSON body.

    Blank values give ``default``; anything that is not a whole number
    raises ``ValidationError`` naming ``field``.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", field=field)
    if isinstance(value, int):
        number = value
    elif isinstance(value, float) and value.is_integer():
        number = int(value)
    elif isinstance(value, str):
        try:
            number = int(value.strip())
        except ValueError:
            raise ValidationError(f"{field} must be an integer", field=field) from None
    else:
        raise ValidationError(f"{field} must be an integer", field=field)

    if minimum is not None and number < minimum:
        raise ValidationError(f"{field} must be at least {minimum}", field=field)
    return number


class KeyedLocks:
    """Registry of per-key mutexes.

    ``hold`` takes all requested keys in sorted order so two callers asking
    for overlapping sets cannot deadlock each other. A key's entry lives
    only while someone holds or waits for it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        # key -> [lock, number of holders and waiters]
        self._locks: dict[str, list] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: str) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, *keys: str):
        held = []
        try:
            for key in sorted(set(keys)):
                lock = self._checkout(key)
                try:
                    lock.acquire()
                except BaseException:
                    self._checkin(key)
                    raise
                held.append((key, lock))
            yield
        finally:
            for key, lock in reversed(held):
                lock.release()
                self._checkin(key)


def part_key(part_id: str) -> str:
    return f"part:{part_id}"


def case_key(case_id: str) -> str:
    return f"case:{case_id}"
