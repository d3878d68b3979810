from contextlib import contextmanager
from threading import Lock
from typing import Hashable, Iterator


class KeyedLocks:
    """In-process mutex per key.

    Entries are dropped once no thread holds or waits on them, so the table
    only grows with the number of keys contended at the same moment.
    """

    def __init__(self) -> None:
        self._registry_lock = Lock()
        self._locks: dict[Hashable, Lock] = {}
        self._waiters: dict[Hashable, int] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._registry_lock:
            lock = self._locks.setdefault(key, Lock())
            self._waiters[key] = self._waiters.get(key, 0) + 1

        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._registry_lock:
                self._waiters[key] -= 1
                if self._waiters[key] == 0:
                    del self._waiters[key]
                    del self._locks[key]

    def active_keys(self) -> set[Hashable]:
        with self._registry_lock:
            return set(self._locks)


scheduling_locks = KeyedLocks()


# Nested holds are always taken in this order: slot, track-day, session.
def slot_key(availability_id: int) -> tuple:
    return ('slot', availability_id)


def session_key(session_id: int) -> tuple:
    return ('session', session_id)


def track_day_key(track_id: int, day) -> tuple:
    return ('track', track_id, day)


def week_key(instructor_id: int, track_id: int, week_start_date) -> tuple:
    return ('week', instructor_id, track_id, week_start_date)
