import sqlite3
import threading
from contextlib import contextmanager
from datetime import timedelta

from ..utils import utc_now, to_iso, parse_iso


class KeyedLocks:
    """In-process mutex per key (holding id, or ``symbol:XYZ`` while opening).

    Entries are reference counted and dropped when the last holder leaves, so
    the table does not grow with every holding ever touched.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(key, None)

    def __len__(self):
        with self._guard:
            return len(self._locks)


def acquire_lock(conn: sqlite3.Connection, name: str, owner: str, ttl_seconds: int = 900) -> bool:
    """Lease a named lock in the DB; expired leases can be taken over."""
    cur = conn.cursor()
    cur.execute("""
    CREATE TABLE IF NOT EXISTS locks(
      name TEXT PRIMARY KEY,
      owner TEXT NOT NULL,
      acquired_at_utc TEXT NOT NULL,
      expires_at_utc TEXT NOT NULL
    )
    """)
    now = utc_now()
    exp = now + timedelta(seconds=ttl_seconds)
    row = cur.execute("SELECT owner, expires_at_utc FROM locks WHERE name=?", (name,)).fetchone()
    if not row:
        cur.execute(
            "INSERT OR IGNORE INTO locks(name, owner, acquired_at_utc, expires_at_utc) VALUES(?,?,?,?)",
            (name, owner, to_iso(now), to_iso(exp)),
        )
        return (cur.rowcount or 0) > 0
    expires = parse_iso(row[1])
    if expires is None or expires < now:
        cur.execute(
            "UPDATE locks SET owner=?, acquired_at_utc=?, expires_at_utc=? WHERE name=? AND expires_at_utc=?",
            (owner, to_iso(now), to_iso(exp), name, row[1]),
        )
        return (cur.rowcount or 0) > 0
    return False

def release_lock(conn: sqlite3.Connection, name: str, owner: str):
    cur = conn.cursor()
    cur.execute("DELETE FROM locks WHERE name=? AND owner=?", (name, owner))
