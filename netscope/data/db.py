"""Scan history persistence (SQLite via aiosqlite)."""
#
# PURPOSE:
# The session store forgets a scan ten minutes after it finishes; this table
# is where it lives afterwards. One row per scan, keyed by the same id as
# the live session, scoped to the owner who started it.
#
# KEY CONCEPTS:
# - Single persistent connection, WAL mode so history reads never wait on a write
# - asyncio.Lock around every statement (aiosqlite serialises anyway, the lock
#   keeps execute+commit pairs together)
# - JSON columns for config, summary and results
#
# STATUS LIFECYCLE:
#   pending -> running -> completed | failed
#

from __future__ import annotations

import asyncio
import json
import logging
import os
import sqlite3
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import aiosqlite

from netscope.base.config import get_config
from netscope.errors import ErrorCode, NetscopeError
from netscope.parsers.nmap_xml import ParsedScan

logger = logging.getLogger(__name__)

SCAN_COLUMNS = (
    "id, owner_id, name, target, profile, status, config, started_at, finished_at, "
    "duration_ms, summary, results, error_message"
)

_JSON_COLUMNS = ("config", "summary", "results")


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class Database:
    def __init__(self, db_path: Optional[str] = None):
        if db_path is None:
            db_path = str(get_config().storage.db_path)
        self.db_path = db_path
        if db_path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)

        self._initialized = False
        self._db_connection: Optional[aiosqlite.Connection] = None
        # Created lazily in init(); asyncio.Lock must be created on the running loop
        self._init_lock: Optional[asyncio.Lock] = None
        self._db_lock: Optional[asyncio.Lock] = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def init(self) -> None:
        if self._initialized:
            return
        if self._init_lock is None:
            self._init_lock = asyncio.Lock()
        if self._db_lock is None:
            self._db_lock = asyncio.Lock()

        async with self._init_lock:
            if self._initialized:
                return
            try:
                self._db_connection = await aiosqlite.connect(self.db_path, timeout=5.0)
                self._db_connection.row_factory = aiosqlite.Row
                await self._db_connection.execute("PRAGMA journal_mode=WAL;")
                await self._db_connection.execute("PRAGMA synchronous=NORMAL;")
                await self._db_connection.execute("PRAGMA busy_timeout=5000;")
                await self._create_tables()
                await self._db_connection.commit()
                self._initialized = True
                logger.info(f"[Database] Initialized at {self.db_path} (WAL mode)")
            except (sqlite3.Error, OSError) as e:
                logger.error(f"[Database] Init failed: {e}")
                raise NetscopeError(
                    ErrorCode.DB_INIT_FAILED,
                    "Database initialization failed",
                    details={"path": self.db_path, "error": str(e)},
                ) from e

    async def close(self) -> None:
        if self._db_connection is None:
            return
        try:
            await self._db_connection.close()
            logger.info("[Database] Connection closed.")
        except sqlite3.Error as e:
            logger.error(f"[Database] Error closing connection: {e}")
        finally:
            self._db_connection = None
            self._initialized = False

    async def _create_tables(self) -> None:
        await self._db_connection.execute("""
            CREATE TABLE IF NOT EXISTS scans (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                name TEXT,
                target TEXT NOT NULL,
                profile TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending',
                config TEXT,
                started_at TEXT NOT NULL,
                finished_at TEXT,
                duration_ms INTEGER,
                summary TEXT,
                results TEXT,
                error_message TEXT
            )
        """)
        await self._db_connection.execute("""
            CREATE INDEX IF NOT EXISTS idx_scans_owner_started ON scans(owner_id, started_at DESC)
        """)

    # -------- Low-level helpers --------

    async def execute(self, query: str, params: tuple = ()) -> int:
        """Run a write statement and commit. Returns the affected row count."""
        if not self._initialized:
            await self.init()
        try:
            async with self._db_lock:
                cursor = await self._db_connection.execute(query, params)
                await self._db_connection.commit()
                return cursor.rowcount
        except sqlite3.Error as e:
            logger.error(f"[Database] Write failed: {e}")
            raise NetscopeError(ErrorCode.DB_QUERY_FAILED, "Database write failed", details={"error": str(e)}) from e

    async def fetch_all(self, query: str, params: tuple = ()) -> List[Dict[str, Any]]:
        if not self._initialized:
            await self.init()
        try:
            async with self._db_lock:
                async with self._db_connection.execute(query, params) as cursor:
                    rows = await cursor.fetchall()
        except sqlite3.Error as e:
            logger.error(f"[Database] Read failed: {e}")
            raise NetscopeError(ErrorCode.DB_QUERY_FAILED, "Database read failed", details={"error": str(e)}) from e
        return [dict(row) for row in rows]

    # -------- Scan Record Methods --------

    async def create_scan_record(
        self,
        scan_id: str,
        owner_id: str,
        target: str,
        profile: str,
        name: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Insert a new scan row in status 'pending'."""
        await self.execute(
            """
            INSERT INTO scans (id, owner_id, name, target, profile, status, config, started_at)
            VALUES (?, ?, ?, ?, ?, 'pending', ?, ?)
            """,
            (
                scan_id,
                owner_id,
                name or f"Scan of {target}",
                target,
                profile,
                json.dumps(config) if config is not None else None,
                _utcnow(),
            ),
        )

    async def update_scan_status(self, scan_id: str, status: str) -> None:
        await self.execute("UPDATE scans SET status = ? WHERE id = ?", (status, scan_id))

    async def save_scan_results(self, scan_id: str, parsed: ParsedScan) -> None:
        """Store the parsed report and mark the scan completed."""
        await self.execute(
            """
            UPDATE scans
            SET status = 'completed', finished_at = ?, duration_ms = ?, summary = ?, results = ?,
                error_message = NULL
            WHERE id = ?
            """,
            (
                _utcnow(),
                int(round(parsed.stats.duration_seconds * 1000)),
                json.dumps(parsed.summary()),
                json.dumps([h.to_dict() for h in parsed.hosts]),
                scan_id,
            ),
        )

    async def fail_scan_record(self, scan_id: str, error_message: str) -> None:
        await self.execute(
            "UPDATE scans SET status = 'failed', finished_at = ?, error_message = ? WHERE id = ?",
            (_utcnow(), error_message, scan_id),
        )

    async def get_scan_record(self, scan_id: str, owner_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """
        Get a scan record by ID.

        When owner_id is given, another owner's scan reads as missing.
        """
        if owner_id is None:
            rows = await self.fetch_all(f"SELECT {SCAN_COLUMNS} FROM scans WHERE id = ?", (scan_id,))
        else:
            rows = await self.fetch_all(
                f"SELECT {SCAN_COLUMNS} FROM scans WHERE id = ? AND owner_id = ?",
                (scan_id, owner_id),
            )
        return _decode_row(rows[0]) if rows else None

    async def list_scans(self, owner_id: str, page: int = 1, limit: int = 10) -> Tuple[List[Dict[str, Any]], int]:
        """Newest-first page of the owner's scans (without results). Returns (rows, total)."""
        page = max(page, 1)
        limit = max(limit, 1)
        count_rows = await self.fetch_all("SELECT COUNT(*) AS total FROM scans WHERE owner_id = ?", (owner_id,))
        total = count_rows[0]["total"] if count_rows else 0
        rows = await self.fetch_all(
            """
            SELECT id, name, target, profile, status, started_at, finished_at, duration_ms, summary, error_message
            FROM scans WHERE owner_id = ?
            ORDER BY started_at DESC, rowid DESC
            LIMIT ? OFFSET ?
            """,
            (owner_id, limit, (page - 1) * limit),
        )
        return [_decode_row(r) for r in rows], total


def _decode_row(row: Dict[str, Any]) -> Dict[str, Any]:
    for column in _JSON_COLUMNS:
        if column in row and row[column] is not None:
            row[column] = json.loads(row[column])
    return row
