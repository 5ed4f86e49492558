"""
Locking Service - exclusive, per-attempt read-modify-write scopes.

Every mutating operation on an attempt runs inside attempt_lock(). The scope:
1. Acquires an in-process mutex keyed by attempt id
2. Re-reads the row with SELECT ... FOR UPDATE
3. Commits on normal exit, rolls back if the body raises

On PostgreSQL the row lock serializes writers across processes. SQLite
ignores FOR UPDATE, so there the keyed mutex alone serializes writers inside
this process. Operations on different attempts never share a mutex.

Attempt creation has no row to lock yet; acquire_transaction_lock() gives it a
PostgreSQL advisory lock scoped to the creating transaction instead.
"""

import hashlib
import threading
import time
from contextlib import contextmanager

from sqlalchemy import text
from sqlalchemy.orm import Session

from quizengine.errors import AttemptNotFound
from quizengine.models.attempt import Attempt
from quizengine.logging_config import get_logger, log_with_context

logger = get_logger("db")


class KeyedLocks:
    """
    Reference-counted registry of mutexes keyed by string.

    An entry lives only while at least one caller holds or waits for it.
    """

    def __init__(self):
        self._registry_lock = threading.Lock()
        self._locks = {}

    def _checkout(self, key: str) -> threading.Lock:
        with self._registry_lock:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: str):
        with self._registry_lock:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, key: str):
        lock = self._checkout(key)
        try:
            with lock:
                yield
        finally:
            self._checkin(key)

    def __len__(self):
        with self._registry_lock:
            return len(self._locks)


attempt_locks = KeyedLocks()
creation_locks = KeyedLocks()


@contextmanager
def attempt_lock(db: Session, attempt_id: str):
    """
    Hold an exclusive lock on one attempt row for a single transaction.

    Yields the freshly loaded Attempt. Raises AttemptNotFound if the id does
    not resolve. Nothing slow (network, collaborator calls) may run inside.
    """
    start_time = time.time()
    with attempt_locks.hold(str(attempt_id)):
        try:
            attempt = (
                db.query(Attempt)
                .filter(Attempt.id == str(attempt_id))
                .with_for_update()
                .populate_existing()
                .first()
            )
            if attempt is None:
                raise AttemptNotFound(attempt_id)
            yield attempt
            db.commit()
        except Exception:
            db.rollback()
            raise

    log_with_context(logger, "DEBUG", "Attempt lock released",
                     context={"attempt_id": str(attempt_id)},
                     extra_data={"held_ms": round((time.time() - start_time) * 1000, 2)})


def advisory_key(name: str) -> int:
    """Stable signed 64-bit key for a lock name, identical in every process."""
    digest = hashlib.sha256(name.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


def acquire_transaction_lock(db: Session, name: str) -> bool:
    """
    Take a store-level lock that lasts until the current transaction ends.

    PostgreSQL gets pg_advisory_xact_lock, which serializes callers across
    workers and replicas. Other backends have no equivalent and rely on the
    in-process KeyedLocks alone. Returns True if a store lock was taken.
    """
    if db.get_bind().dialect.name != "postgresql":
        return False
    db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": advisory_key(name)})
    log_with_context(logger, "DEBUG", "Advisory lock acquired", context={"lock": name})
    return True
