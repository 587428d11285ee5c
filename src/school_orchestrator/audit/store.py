"""
Audit record storage.

Storage backends for the append-only audit stream: in-memory (tests),
JSONL files rotated by day (development) and SQLite (production-like).
Stores expose append and read operations only.
"""

import asyncio
import json
import os
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import aiofiles
import aiosqlite

from school_orchestrator.audit.models import AuditFilter, AuditRecord


class AuditStore(ABC):
    """Append-only audit storage interface."""

    @abstractmethod
    async def append(self, record: AuditRecord) -> None:
        """Persist one record.

        Args:
            record: The record to append.
        """

    @abstractmethod
    async def query(self, filter: AuditFilter) -> list[AuditRecord]:
        """Return records matching the filter, sorted and paginated."""

    @abstractmethod
    async def count(self, filter: AuditFilter) -> int:
        """Count records matching the filter, ignoring pagination."""

    async def close(self) -> None:
        """Release resources held by the store."""


def _sort_and_page(records: list[AuditRecord], filter: AuditFilter) -> list[AuditRecord]:
    reverse = filter.sort_order == "desc"
    records.sort(key=lambda r: r.created_at, reverse=reverse)
    return records[filter.offset:filter.offset + filter.limit]


class MemoryAuditStore(AuditStore):
    """In-memory audit store.

    Suited to tests and development; records are lost on restart.
    """

    def __init__(self) -> None:
        self._records: list[AuditRecord] = []
        self._lock = asyncio.Lock()

    async def append(self, record: AuditRecord) -> None:
        async with self._lock:
            self._records.append(record)

    async def query(self, filter: AuditFilter) -> list[AuditRecord]:
        async with self._lock:
            matched = [r for r in self._records if filter.match(r)]
        return _sort_and_page(matched, filter)

    async def count(self, filter: AuditFilter) -> int:
        async with self._lock:
            return sum(1 for r in self._records if filter.match(r))

    @property
    def records(self) -> list[AuditRecord]:
        """Snapshot of every stored record."""
        return list(self._records)


class FileAuditStore(AuditStore):
    """JSONL audit store with one file per day."""

    def __init__(self, log_dir: str | Path = "./logs/audit") -> None:
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    def _get_log_file(self, date: datetime) -> Path:
        return self.log_dir / date.strftime("audit_%Y%m%d.jsonl")

    def _get_log_files(self, filter: AuditFilter) -> list[Path]:
        if filter.start_date is None or filter.end_date is None:
            return sorted(self.log_dir.glob("audit_*.jsonl"))

        files = []
        current = filter.start_date.date()
        end = filter.end_date.date()
        while current <= end:
            log_file = self.log_dir / current.strftime("audit_%Y%m%d.jsonl")
            if log_file.exists():
                files.append(log_file)
            current += timedelta(days=1)
        return files

    async def append(self, record: AuditRecord) -> None:
        log_file = self._get_log_file(record.created_at)
        async with self._lock:
            async with aiofiles.open(log_file, mode="a", encoding="utf-8") as f:
                await f.write(record.to_json() + "\n")

    async def _scan(self, filter: AuditFilter) -> list[AuditRecord]:
        records = []
        for log_file in self._get_log_files(filter):
            async with aiofiles.open(log_file, mode="r", encoding="utf-8") as f:
                async for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        record = AuditRecord.from_json(line)
                    except (json.JSONDecodeError, KeyError, TypeError, ValueError):
                        # Skip corrupted lines
                        continue
                    if filter.match(record):
                        records.append(record)
        return records

    async def query(self, filter: AuditFilter) -> list[AuditRecord]:
        return _sort_and_page(await self._scan(filter), filter)

    async def count(self, filter: AuditFilter) -> int:
        return len(await self._scan(filter))


class SqliteAuditStore(AuditStore):
    """SQLite-backed audit store.

    Each record is a single-row INSERT committed immediately.
    """

    _COLUMNS = (
        "record_id", "tenant_id", "actor_user_id", "action_type", "target_type",
        "target_id", "result", "ip", "user_agent", "request_id", "details",
        "created_at",
    )

    def __init__(self, db_path: str | Path = "./audit.db") -> None:
        self.db_path = str(db_path)
        self._conn: Optional[aiosqlite.Connection] = None
        self._init_lock = asyncio.Lock()

    async def _get_conn(self) -> aiosqlite.Connection:
        async with self._init_lock:
            if self._conn is None:
                self._conn = await aiosqlite.connect(self.db_path)
                await self._conn.execute("""
                    CREATE TABLE IF NOT EXISTS audit_log (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        record_id TEXT UNIQUE NOT NULL,
                        tenant_id TEXT NOT NULL,
                        actor_user_id TEXT,
                        action_type TEXT NOT NULL,
                        target_type TEXT NOT NULL,
                        target_id TEXT,
                        result TEXT NOT NULL,
                        ip TEXT,
                        user_agent TEXT,
                        request_id TEXT,
                        details TEXT,
                        created_at TEXT NOT NULL
                    )
                """)
                await self._conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_audit_tenant_created "
                    "ON audit_log (tenant_id, created_at)"
                )
                await self._conn.commit()
        return self._conn

    async def append(self, record: AuditRecord) -> None:
        conn = await self._get_conn()
        placeholders = ", ".join("?" for _ in self._COLUMNS)
        await conn.execute(
            f"INSERT INTO audit_log ({', '.join(self._COLUMNS)}) VALUES ({placeholders})",
            (
                record.record_id,
                record.tenant_id,
                record.actor_user_id,
                record.action_type,
                record.target_type,
                record.target_id,
                record.result.value,
                record.ip,
                record.user_agent,
                record.request_id,
                json.dumps(record.details, ensure_ascii=False),
                record.created_at.isoformat(),
            ),
        )
        await conn.commit()

    def _where(self, filter: AuditFilter) -> tuple[str, list]:
        clauses = ["tenant_id = ?"]
        params: list = [filter.tenant_id]
        if filter.start_date:
            clauses.append("created_at >= ?")
            params.append(filter.start_date.isoformat())
        if filter.end_date:
            clauses.append("created_at <= ?")
            params.append(filter.end_date.isoformat())
        if filter.action_type:
            clauses.append("action_type = ?")
            params.append(filter.action_type)
        if filter.target_type:
            clauses.append("target_type = ?")
            params.append(filter.target_type)
        if filter.actor_user_id:
            clauses.append("actor_user_id = ?")
            params.append(filter.actor_user_id)
        if filter.result:
            clauses.append("result = ?")
            params.append(filter.result.value)
        return " AND ".join(clauses), params

    async def query(self, filter: AuditFilter) -> list[AuditRecord]:
        conn = await self._get_conn()
        where, params = self._where(filter)
        order = "DESC" if filter.sort_order == "desc" else "ASC"
        sql = (
            f"SELECT {', '.join(self._COLUMNS)} FROM audit_log WHERE {where} "
            f"ORDER BY created_at {order} LIMIT ? OFFSET ?"
        )
        async with conn.execute(sql, [*params, filter.limit, filter.offset]) as cursor:
            rows = await cursor.fetchall()

        records = []
        for row in rows:
            data = dict(zip(self._COLUMNS, row))
            data["details"] = json.loads(data["details"]) if data["details"] else {}
            records.append(AuditRecord.from_dict(data))
        return records

    async def count(self, filter: AuditFilter) -> int:
        conn = await self._get_conn()
        where, params = self._where(filter)
        async with conn.execute(
            f"SELECT COUNT(*) FROM audit_log WHERE {where}", params
        ) as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None


# Global singleton
_audit_store: Optional[AuditStore] = None


def get_audit_store() -> AuditStore:
    """Get the audit store singleton.

    The backend is chosen with ORCHESTRATOR_AUDIT_STORE:
    - memory: in-memory store (tests)
    - file: JSONL files under ORCHESTRATOR_AUDIT_PATH (default)
    - sqlite: database file at ORCHESTRATOR_AUDIT_DB_PATH
    """
    global _audit_store

    if _audit_store is None:
        store_type = os.getenv("ORCHESTRATOR_AUDIT_STORE", "file").lower()

        if store_type == "memory":
            _audit_store = MemoryAuditStore()
        elif store_type == "sqlite":
            _audit_store = SqliteAuditStore(
                os.getenv("ORCHESTRATOR_AUDIT_DB_PATH", "./audit.db")
            )
        else:
            _audit_store = FileAuditStore(
                os.getenv("ORCHESTRATOR_AUDIT_PATH", "./logs/audit")
            )

    return _audit_store


def set_audit_store(store: Optional[AuditStore]) -> None:
    """Replace the audit store singleton (for testing)."""
    global _audit_store
    _audit_store = store
