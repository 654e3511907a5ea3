"""Database connection manager for SQLite."""

import sqlite3
from contextlib import contextmanager

from consult_desk import settings

from .schema import SCHEMA

DB_PATH = settings.DB_PATH

# Seconds a writer waits for another writer's transaction to finish
BUSY_TIMEOUT = 10.0


def get_connection() -> sqlite3.Connection:
    """Get a database connection with row factory enabled."""
    conn = sqlite3.connect(DB_PATH, timeout=BUSY_TIMEOUT)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_database() -> None:
    """Initialize the database with schema."""
    conn = get_connection()
    conn.executescript(SCHEMA)
    conn.commit()
    conn.close()


@contextmanager
def connect(conn: sqlite3.Connection | None = None):
    """Reuse conn when given, otherwise open one and close it afterwards."""
    if conn is not None:
        yield conn
        return
    conn = get_connection()
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction():
    """Serialized write transaction; commits on success, rolls back on error."""
    conn = get_connection()
    try:
        conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.commit()
    except BaseException:
        conn.rollback()
        raise
    finally:
        conn.close()
