# Overview: Service-layer concurrency helpers; row locks, per-key locks, and retry on lost races.

from __future__ import annotations

import threading
import time
from contextlib import contextmanager

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db


_registry_guard = threading.Lock()
# (namespace, key) -> [lock, holders]; an entry lives only while someone holds or waits on it
_key_locks: dict[tuple[str, int], list] = {}


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    populate_existing() makes sure a row already in the identity map is
    refreshed from the locked read instead of served from a stale snapshot.
    """
    return query.with_for_update().populate_existing()


def _acquire_entry(entry_key: tuple[str, int]) -> list:
    with _registry_guard:
        entry = _key_locks.get(entry_key)
        if entry is None:
            entry = [threading.Lock(), 0]
            _key_locks[entry_key] = entry
        entry[1] += 1
        return entry


def _release_entry(entry_key: tuple[str, int], entry: list) -> None:
    with _registry_guard:
        entry[1] -= 1
        if entry[1] == 0:
            del _key_locks[entry_key]


@contextmanager
def keyed_lock(namespace: str, key: int):
    """
    Serialize critical sections per (namespace, key) inside this process.

    Different keys never block each other. Hold it across the commit so the
    next holder reads the committed state. The row lock from lock_for_update
    extends the same guarantee across processes on databases that honor it.
    """
    entry_key = (namespace, key)
    entry = _acquire_entry(entry_key)
    try:
        with entry[0]:
            yield
    finally:
        _release_entry(entry_key, entry)


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts). Any other exception rolls the session
    back and propagates: a domain failure aborts the whole unit of work.
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    if last_exc:
        raise last_exc
