"""Named locks scoped to a catalog or variable key.

On PostgreSQL the lock is a transaction-level advisory lock
(``pg_advisory_xact_lock``) on a 64-bit hash of the key. It serializes
sessions in every thread, process and host, is re-entrant within one session,
and is released by the database when the session's transaction ends. It
therefore outlives the ``with`` block until commit, covering the writes made
under it.

SQLite has no advisory locks, so there a process-local re-entrant lock per key
is held for the duration of the ``with`` block instead.
"""

import contextlib
import hashlib
import sqlalchemy as sa
import threading

_registry_lock = threading.Lock()
_locks = {}

def lock_key(*parts):
    """Joins `parts` into the string identifying one lock."""
    return ':'.join(str(p) for p in parts)


def advisory_id(key):
    """Signed 64-bit integer for `key`, stable across processes (unlike
    `hash()`)."""
    digest = hashlib.blake2b(key.encode('utf-8'), digest_size=8).digest()
    return int.from_bytes(digest, 'big', signed=True)


def _local_lock(key):
    with _registry_lock:
        lock = _locks.get(key)
        if lock is None:
            lock = _locks[key] = threading.RLock()
        return lock


@contextlib.contextmanager
def scoped_lock(sess, *parts):
    """Hold the lock named by `parts` while the block runs.

    Usage::

        with scoped_lock(sess, 'catalog', table_id, variable_id):
            ...check-then-create...
    """
    key = lock_key(*parts)
    if sess.get_bind().dialect.name == 'postgresql':
        # Advisory lock only. It is re-entrant per session and held until
        # commit; a thread lock released at block exit would not be.
        sess.execute(sa.select(sa.func.pg_advisory_xact_lock(
                advisory_id(key))))
        yield key
        return

    with _local_lock(key):
        yield key


def variable_lock(sess, variable_name):
    """Lock serializing exposure join and clear for one variable."""
    return scoped_lock(sess, 'exposure', variable_name)


def catalog_lock(sess, table_id):
    """Lock serializing catalog registration and instance builds for one
    dataset. Dataset scope (rather than dataset + variable) also covers the
    shared geometry rows every variable of the dataset depends on.
    """
    return scoped_lock(sess, 'catalog', table_id)
