"""SQLite database layer for panelkit."""

import sqlite3
from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from panelkit.config import get_config
from panelkit.errors import RecordNotFoundError

# Schema version for migrations
SCHEMA_VERSION = 1

SCHEMA_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

-- Settings table (key-value settings)
CREATE TABLE IF NOT EXISTS settings (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

-- Cron job execution records
CREATE TABLE IF NOT EXISTS job_records (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    cronjob_id INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'Waiting',
    message TEXT NOT NULL DEFAULT '',
    start_time TEXT NOT NULL
);

-- System snapshots (backup / recover / rollback)
CREATE TABLE IF NOT EXISTS snapshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'Waiting',
    message TEXT NOT NULL DEFAULT '',
    recover_status TEXT NOT NULL DEFAULT '',
    recover_message TEXT NOT NULL DEFAULT '',
    rollback_status TEXT NOT NULL DEFAULT '',
    rollback_message TEXT NOT NULL DEFAULT '',
    panel TEXT NOT NULL DEFAULT 'Waiting',
    panel_info TEXT NOT NULL DEFAULT 'Waiting',
    daemon_json TEXT NOT NULL DEFAULT 'Waiting',
    app_data TEXT NOT NULL DEFAULT 'Waiting',
    panel_data TEXT NOT NULL DEFAULT 'Waiting',
    backup_data TEXT NOT NULL DEFAULT 'Waiting',
    compress TEXT NOT NULL DEFAULT 'Waiting',
    upload TEXT NOT NULL DEFAULT 'Waiting',
    created_at TEXT NOT NULL
);

-- Backup accounts (vars holds JSON, e.g. {"dir": "/opt/1panel/backup"})
CREATE TABLE IF NOT EXISTS backup_accounts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    type TEXT NOT NULL UNIQUE,
    vars TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_job_records_status ON job_records(status);
CREATE INDEX IF NOT EXISTS idx_snapshots_status ON snapshots(status);
"""

# Columns that may appear in a snapshot update payload
SNAPSHOT_COLUMNS = frozenset(
    {
        "status",
        "message",
        "recover_status",
        "recover_message",
        "rollback_status",
        "rollback_message",
        "panel",
        "panel_info",
        "daemon_json",
        "app_data",
        "panel_data",
        "backup_data",
        "compress",
        "upload",
    }
)

SNAPSHOT_STATUS_COLUMNS = (
    "id",
    "panel",
    "panel_info",
    "daemon_json",
    "app_data",
    "panel_data",
    "backup_data",
    "compress",
    "upload",
)


class Database:
    """SQLite database manager for panelkit."""

    def __init__(self, db_path: Path | None = None) -> None:
        """Initialize database connection."""
        if db_path is None:
            db_path = get_config().db_path
        self.db_path = db_path
        self._ensure_parent_dir()

    def _ensure_parent_dir(self) -> None:
        """Ensure the parent directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _secure_db_permissions(self) -> None:
        """Set secure permissions on the database file (readable by owner only)."""
        import os

        if self.db_path.exists():
            try:
                os.chmod(self.db_path, 0o600)
            except OSError:
                pass  # May fail if not owner

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection with automatic cleanup."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Get a database connection with transaction support."""
        with self.connection() as conn:
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def initialize(self) -> None:
        """Initialize the database schema."""
        with self.transaction() as conn:
            cursor = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name='schema_version'"
            )
            if cursor.fetchone() is None:
                conn.executescript(SCHEMA_SQL)
                conn.execute(
                    "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                    (SCHEMA_VERSION, datetime.utcnow().isoformat()),
                )

        self._secure_db_permissions()

    # Settings operations
    def get_setting(self, key: str) -> str:
        """Get a setting value by key. Raises RecordNotFoundError if absent."""
        with self.connection() as conn:
            cursor = conn.execute("SELECT value FROM settings WHERE key = ?", (key,))
            row = cursor.fetchone()
        if row is None:
            raise RecordNotFoundError(
                f"Setting '{key}' not found",
                suggestion="Run 'panelkit init' to create default settings",
            )
        return row["value"]

    def create_setting(self, key: str, value: str) -> None:
        """Create a setting. Fails if the key already exists."""
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO settings (key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, datetime.utcnow().isoformat()),
            )

    def update_setting(self, key: str, value: str) -> None:
        """Update an existing setting in place."""
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE settings SET value = ?, updated_at = ? WHERE key = ?",
                (value, datetime.utcnow().isoformat(), key),
            )
            if cursor.rowcount == 0:
                raise RecordNotFoundError(f"Setting '{key}' not found")

    # Job record operations
    def create_job_record(self, cronjob_id: int, status: str, message: str = "") -> int:
        """Create a job execution record. Returns its id."""
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO job_records (cronjob_id, status, message, start_time)
                VALUES (?, ?, ?, ?)
                """,
                (cronjob_id, status, message, datetime.utcnow().isoformat()),
            )
            return cursor.lastrowid

    def get_job_record(self, record_id: int) -> dict[str, Any] | None:
        """Get a job record by id."""
        with self.connection() as conn:
            cursor = conn.execute("SELECT * FROM job_records WHERE id = ?", (record_id,))
            row = cursor.fetchone()
            return dict(row) if row else None

    def fail_job_records(self, from_status: str, to_status: str, message: str) -> int:
        """Move every job record in from_status to to_status. Returns count changed."""
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE job_records SET status = ?, message = ? WHERE status = ?",
                (to_status, message, from_status),
            )
            return cursor.rowcount

    # Snapshot operations
    def create_snapshot(self, name: str, **fields: str) -> int:
        """Create a snapshot record. Returns its id."""
        unknown = set(fields) - SNAPSHOT_COLUMNS
        if unknown:
            raise ValueError(f"Unknown snapshot columns: {', '.join(sorted(unknown))}")
        columns = ["name", "created_at", *fields]
        values = [name, datetime.utcnow().isoformat(), *fields.values()]
        placeholders = ", ".join("?" for _ in columns)
        with self.transaction() as conn:
            cursor = conn.execute(
                f"INSERT INTO snapshots ({', '.join(columns)}) VALUES ({placeholders})",
                values,
            )
            return cursor.lastrowid

    def get_snapshot(self, snapshot_id: int) -> dict[str, Any] | None:
        """Get a snapshot by id."""
        with self.connection() as conn:
            cursor = conn.execute("SELECT * FROM snapshots WHERE id = ?", (snapshot_id,))
            row = cursor.fetchone()
            return dict(row) if row else None

    def list_snapshot_statuses(self) -> list[dict[str, Any]]:
        """List the per-phase status columns of every snapshot."""
        with self.connection() as conn:
            cursor = conn.execute(
                f"SELECT {', '.join(SNAPSHOT_STATUS_COLUMNS)} FROM snapshots ORDER BY id"
            )
            return [dict(row) for row in cursor.fetchall()]

    def bulk_update_snapshots(self, column: str, match: str, updates: dict[str, str]) -> int:
        """Apply updates to every snapshot whose column equals match. Returns count changed."""
        self._check_snapshot_columns([column, *updates])
        assignments = ", ".join(f"{name} = ?" for name in updates)
        with self.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE snapshots SET {assignments} WHERE {column} = ?",
                [*updates.values(), match],
            )
            return cursor.rowcount

    def update_snapshot(self, snapshot_id: int, updates: dict[str, str]) -> bool:
        """Update selected columns of one snapshot. Returns True if updated."""
        if not updates:
            return False
        self._check_snapshot_columns(updates)
        assignments = ", ".join(f"{name} = ?" for name in updates)
        with self.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE snapshots SET {assignments} WHERE id = ?",
                [*updates.values(), snapshot_id],
            )
            return cursor.rowcount > 0

    def _check_snapshot_columns(self, columns: Any) -> None:
        unknown = set(columns) - SNAPSHOT_COLUMNS
        if unknown:
            raise ValueError(f"Unknown snapshot columns: {', '.join(sorted(unknown))}")

    # Backup account operations
    def create_backup_account(self, account_type: str, vars_json: str) -> int:
        """Create a backup account. Returns its id."""
        with self.transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO backup_accounts (type, vars, created_at) VALUES (?, ?, ?)",
                (account_type, vars_json, datetime.utcnow().isoformat()),
            )
            return cursor.lastrowid

    def get_backup_account(self, account_type: str) -> dict[str, Any]:
        """Get a backup account by type. Raises RecordNotFoundError if absent."""
        with self.connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM backup_accounts WHERE type = ?", (account_type,)
            )
            row = cursor.fetchone()
        if row is None:
            raise RecordNotFoundError(f"No such backup account `{account_type}` in db")
        return dict(row)


# Global database instance (loaded lazily)
_db: Database | None = None


def get_db() -> Database:
    """Get the global database instance."""
    global _db
    if _db is None:
        _db = Database()
        _db.initialize()
    return _db
