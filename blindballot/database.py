"""
Authority Database

Uses SQLite to keep the authority key pair and a log of which submission
channel has already obtained a blind signature for which election. It knows
WHO asked for a signature, but never sees the ballot or the final signature.
"""

import sqlite3
import threading
from contextlib import contextmanager

from . import config

DB_PATH = config.DB_PATH

# Thread-local connection cache
_local = threading.local()


def get_connection() -> sqlite3.Connection:
    if not hasattr(_local, "conn") or _local.conn is None:
        DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        _local.conn = sqlite3.connect(str(DB_PATH), check_same_thread=False)
        _local.conn.row_factory = sqlite3.Row
        _local.conn.execute("PRAGMA journal_mode=WAL")
    return _local.conn


def close_connection():
    conn = getattr(_local, "conn", None)
    if conn is not None:
        conn.close()
        _local.conn = None


@contextmanager
def get_db():
    conn = get_connection()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise


def init_db():
    """Create tables if they do not exist."""
    with get_db() as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS authority_keys (
                id          INTEGER PRIMARY KEY CHECK (id = 1),
                private_key TEXT NOT NULL,
                public_key  TEXT NOT NULL,
                created_at  TEXT NOT NULL DEFAULT (datetime('now'))
            );

            CREATE TABLE IF NOT EXISTS signing_requests (
                channel_id  TEXT NOT NULL,
                election_id INTEGER NOT NULL,
                signed_at   TEXT NOT NULL DEFAULT (datetime('now')),
                PRIMARY KEY (channel_id, election_id)
            );
        """)


# ---------------------------------------------------------------------------
# Signing log
# ---------------------------------------------------------------------------

def claim_signing_slot(channel_id: str, election_id: int) -> bool:
    """
    Atomically record that a channel is being issued a signature.

    Returns False if the channel already holds one for this election.
    """
    with get_db() as conn:
        cur = conn.execute(
            "INSERT OR IGNORE INTO signing_requests (channel_id, election_id) VALUES (?, ?)",
            (channel_id, election_id),
        )
        return cur.rowcount == 1


def release_signing_slot(channel_id: str, election_id: int):
    """Undo a claim when signing failed before anything was returned."""
    with get_db() as conn:
        conn.execute(
            "DELETE FROM signing_requests WHERE channel_id = ? AND election_id = ?",
            (channel_id, election_id),
        )


def get_channel_status(channel_id: str, election_id: int) -> dict:
    with get_db() as conn:
        row = conn.execute(
            "SELECT signed_at FROM signing_requests WHERE channel_id = ? AND election_id = ?",
            (channel_id, election_id),
        ).fetchone()
        return {
            "channel_id": channel_id,
            "election_id": election_id,
            "signed": row is not None,
            "signed_at": row["signed_at"] if row is not None else None,
        }


def count_signatures(election_id: int) -> int:
    with get_db() as conn:
        row = conn.execute(
            "SELECT COUNT(*) AS n FROM signing_requests WHERE election_id = ?",
            (election_id,),
        ).fetchone()
        return row["n"]


# ---------------------------------------------------------------------------
# Authority key operations
# ---------------------------------------------------------------------------

def store_authority_keys(private_key: str, public_key: str):
    with get_db() as conn:
        conn.execute(
            """INSERT INTO authority_keys (id, private_key, public_key)
               VALUES (1, ?, ?)
               ON CONFLICT(id) DO UPDATE
               SET private_key=excluded.private_key,
                   public_key=excluded.public_key,
                   created_at=datetime('now')""",
            (private_key, public_key),
        )


def get_authority_keys() -> tuple:
    """Return (private_key_pem, public_key_pem) or (None, None)."""
    with get_db() as conn:
        row = conn.execute(
            "SELECT private_key, public_key FROM authority_keys WHERE id=1"
        ).fetchone()
        if row is None:
            return None, None
        return row["private_key"], row["public_key"]
