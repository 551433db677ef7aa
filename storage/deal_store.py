"""
Deal Store: persistent record store for the sourcing pipeline.

Each collection is a SQLite table holding a JSON document plus the columns
the pipeline queries by (owning user, registry id, lifecycle stage, job
type/status, ...). Single-record writes run inside a transaction; nothing
spans multiple records atomically.

Tables:
  - companies, founders, investors, introductions
  - outreach_queue, outreach_history, templates
  - job_runs, rate_limits, user_settings

Usage:
    async with DealStore("dealflow.db") as store:
        company_id, created = await store.upsert_company(Company(...))
        founders = await store.founders_for_company(company_id)
        await store.patch(Founder, founders[0].id, email="ada@example.com")
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, fields
from datetime import datetime
from pathlib import Path
from typing import (
    Any,
    AsyncIterator,
    Dict,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
    Type,
    TypeVar,
)

import aiosqlite

from storage.models import (
    ROW_FIELDS,
    Company,
    CompanyStage,
    Founder,
    Introduction,
    Investor,
    JobRun,
    MessageTemplate,
    OutreachHistory,
    OutreachChannel,
    OutreachItem,
    OutreachStatus,
    RateLimitCounter,
    UserSettings,
    can_transition,
    encode_value,
    format_timestamp,
    from_document,
    to_document,
    utc_now,
)
from storage.sqlite_pragmas import apply_sqlite_pragmas

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InvalidTransitionError(ValueError):
    """Raised when a company stage change is not on the lifecycle graph."""


# =============================================================================
# SCHEMA
# =============================================================================

SCHEMA_VERSION = 2

MIGRATIONS = {
    1: """
    CREATE TABLE IF NOT EXISTS companies (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        company_number TEXT NOT NULL,
        stage TEXT NOT NULL,
        data TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE(user_id, company_number)
    );
    CREATE INDEX IF NOT EXISTS idx_companies_user_stage ON companies(user_id, stage);

    CREATE TABLE IF NOT EXISTS founders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        company_id INTEGER,
        email TEXT,
        data TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (company_id) REFERENCES companies(id) ON DELETE SET NULL
    );
    CREATE INDEX IF NOT EXISTS idx_founders_company ON founders(company_id);
    CREATE INDEX IF NOT EXISTS idx_founders_user_email ON founders(user_id, email);

    CREATE TABLE IF NOT EXISTS investors (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        firm_name TEXT NOT NULL,
        data TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_investors_user_firm ON investors(user_id, firm_name);

    CREATE TABLE IF NOT EXISTS introductions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        company_id INTEGER NOT NULL,
        investor_id INTEGER NOT NULL,
        status TEXT NOT NULL,
        data TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        FOREIGN KEY (company_id) REFERENCES companies(id) ON DELETE CASCADE,
        FOREIGN KEY (investor_id) REFERENCES investors(id) ON DELETE CASCADE
    );
    CREATE INDEX IF NOT EXISTS idx_introductions_pair
        ON introductions(user_id, company_id, investor_id);
    CREATE INDEX IF NOT EXISTS idx_introductions_status ON introductions(status);

    CREATE TABLE IF NOT EXISTS outreach_queue (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        founder_id INTEGER NOT NULL,
        status TEXT NOT NULL,
        scheduled_for TEXT NOT NULL,
        priority INTEGER NOT NULL DEFAULT 100,
        data TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_outreach_due ON outreach_queue(status, scheduled_for);
    CREATE INDEX IF NOT EXISTS idx_outreach_user_founder ON outreach_queue(user_id, founder_id);

    CREATE TABLE IF NOT EXISTS outreach_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        founder_id INTEGER NOT NULL,
        data TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_history_user_founder ON outreach_history(user_id, founder_id);

    CREATE TABLE IF NOT EXISTS job_runs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        job_type TEXT NOT NULL,
        status TEXT NOT NULL,
        completed_at TEXT,
        data TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_jobs_user_type_status ON job_runs(user_id, job_type, status);
    CREATE INDEX IF NOT EXISTS idx_jobs_completed_at ON job_runs(completed_at);

    CREATE TABLE IF NOT EXISTS rate_limits (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        api_name TEXT NOT NULL,
        data TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE(user_id, api_name)
    );

    CREATE TABLE IF NOT EXISTS user_settings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL UNIQUE,
        data TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS templates (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        is_default INTEGER NOT NULL DEFAULT 0,
        data TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_templates_user_default ON templates(user_id, is_default);

    CREATE TABLE IF NOT EXISTS schema_migrations (
        version INTEGER PRIMARY KEY,
        applied_at TEXT NOT NULL,
        description TEXT
    );
    """,
    2: """
    ALTER TABLE companies ADD COLUMN last_scored_at TEXT;
    UPDATE companies SET last_scored_at = json_extract(data, '$.last_scored_at');
    CREATE INDEX IF NOT EXISTS idx_companies_user_scored ON companies(user_id, last_scored_at);

    ALTER TABLE outreach_queue ADD COLUMN channel TEXT NOT NULL DEFAULT 'email';
    UPDATE outreach_queue SET channel = COALESCE(json_extract(data, '$.channel'), 'email');
    DROP INDEX IF EXISTS idx_outreach_due;
    CREATE INDEX IF NOT EXISTS idx_outreach_due ON outreach_queue(status, channel, scheduled_for);
    """,
}


@dataclass(frozen=True)
class Collection:
    """Maps a record type onto its table and indexed columns."""
    table: str
    columns: Tuple[str, ...]


COLLECTIONS: Dict[type, Collection] = {
    Company: Collection("companies", ("user_id", "company_number", "stage", "last_scored_at")),
    Founder: Collection("founders", ("user_id", "company_id", "email")),
    Investor: Collection("investors", ("user_id", "firm_name")),
    Introduction: Collection(
        "introductions", ("user_id", "company_id", "investor_id", "status")
    ),
    OutreachItem: Collection(
        "outreach_queue",
        ("user_id", "founder_id", "status", "channel", "scheduled_for", "priority"),
    ),
    OutreachHistory: Collection("outreach_history", ("user_id", "founder_id")),
    JobRun: Collection(
        "job_runs", ("user_id", "job_type", "status", "completed_at")
    ),
    RateLimitCounter: Collection("rate_limits", ("user_id", "api_name")),
    UserSettings: Collection("user_settings", ("user_id",)),
    MessageTemplate: Collection("templates", ("user_id", "is_default")),
}


def _collection(model: type) -> Collection:
    try:
        return COLLECTIONS[model]
    except KeyError:
        raise KeyError(f"{model.__name__} is not a stored collection") from None


# =============================================================================
# DEAL STORE
# =============================================================================

class DealStore:
    """
    Async SQLite record store.

    Generic operations work on any registered record type:
      insert / get / patch / save / query / count / delete

    Typed helpers cover the lookups the pipeline stages need.
    """

    def __init__(self, db_path: str | Path = "dealflow.db"):
        self.db_path = Path(db_path)
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def __aenter__(self) -> DealStore:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def initialize(self) -> None:
        """Open the connection and apply pending migrations. No-op when already open."""
        if self._db is not None:
            return
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(str(self.db_path))
        await apply_sqlite_pragmas(self._db)
        await self._apply_migrations()

        logger.info(f"DealStore initialized: {self.db_path}")

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if not self._db:
            raise RuntimeError("Database not initialized")
        return self._db

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Serialize writers on the shared connection."""
        conn = self.db
        async with self._lock:
            try:
                await conn.execute("BEGIN")
                yield conn
                await conn.commit()
            except Exception:
                await conn.rollback()
                raise

    async def _apply_migrations(self) -> None:
        try:
            cursor = await self.db.execute("SELECT MAX(version) FROM schema_migrations")
            row = await cursor.fetchone()
            current_version = row[0] if row and row[0] else 0
        except aiosqlite.OperationalError:
            current_version = 0

        for version in sorted(MIGRATIONS):
            if version <= current_version:
                continue

            logger.info(f"Applying deal store migration v{version}...")
            async with self.transaction() as conn:
                await conn.executescript(MIGRATIONS[version])
                await conn.execute(
                    "INSERT INTO schema_migrations (version, applied_at, description) "
                    "VALUES (?, ?, ?)",
                    (version, format_timestamp(utc_now()), f"Deal store schema v{version}"),
                )

    # =========================================================================
    # ROW CONVERSION
    # =========================================================================

    @staticmethod
    def _column_values(record: Any, spec: Collection) -> List[Any]:
        values = []
        for column in spec.columns:
            value = encode_value(getattr(record, column))
            if isinstance(value, bool):
                value = int(value)
            values.append(value)
        return values

    @staticmethod
    def _row_to_record(model: Type[T], row: aiosqlite.Row) -> T:
        record = from_document(model, json.loads(row["data"]))
        record.id = row["id"]
        record.created_at = datetime.fromisoformat(row["created_at"])
        record.updated_at = datetime.fromisoformat(row["updated_at"])
        return record

    async def _insert(self, conn: aiosqlite.Connection, record: Any) -> int:
        spec = _collection(type(record))
        now = utc_now()
        columns = list(spec.columns) + ["data", "created_at", "updated_at"]
        values = self._column_values(record, spec) + [
            json.dumps(to_document(record)),
            format_timestamp(now),
            format_timestamp(now),
        ]
        placeholders = ", ".join("?" for _ in columns)
        cursor = await conn.execute(
            f"INSERT INTO {spec.table} ({', '.join(columns)}) VALUES ({placeholders})",
            values,
        )
        record.id = cursor.lastrowid
        record.created_at = now
        record.updated_at = now
        return record.id

    async def _write(self, conn: aiosqlite.Connection, record: Any) -> None:
        spec = _collection(type(record))
        now = utc_now()
        assignments = ", ".join(f"{c} = ?" for c in spec.columns)
        values = self._column_values(record, spec) + [
            json.dumps(to_document(record)),
            format_timestamp(now),
            record.id,
        ]
        cursor = await conn.execute(
            f"UPDATE {spec.table} SET {assignments}, data = ?, updated_at = ? WHERE id = ?",
            values,
        )
        if cursor.rowcount == 0:
            raise KeyError(f"{type(record).__name__} {record.id} not found")
        record.updated_at = now

    async def _fetch(self, conn: aiosqlite.Connection, model: Type[T], record_id: int) -> Optional[T]:
        spec = _collection(model)
        cursor = await conn.execute(f"SELECT * FROM {spec.table} WHERE id = ?", (record_id,))
        row = await cursor.fetchone()
        return self._row_to_record(model, row) if row else None

    def _where(self, spec: Collection, criteria: Dict[str, Any]) -> Tuple[str, List[Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        for column, value in criteria.items():
            if column != "id" and column not in spec.columns:
                raise ValueError(f"{spec.table} is not indexed by {column}")
            if value is None:
                clauses.append(f"{column} IS NULL")
            elif isinstance(value, (list, tuple, set, frozenset)):
                encoded = [encode_value(v) for v in value]
                if not encoded:
                    clauses.append("0")
                    continue
                clauses.append(f"{column} IN ({', '.join('?' for _ in encoded)})")
                params.extend(encoded)
            else:
                encoded = encode_value(value)
                clauses.append(f"{column} = ?")
                params.append(int(encoded) if isinstance(encoded, bool) else encoded)
        sql = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        return sql, params

    def _order(self, spec: Collection, order_by: Optional[str]) -> str:
        if not order_by:
            return " ORDER BY id"
        direction = "DESC" if order_by.startswith("-") else "ASC"
        column = order_by.lstrip("-")
        if column not in spec.columns and column not in ROW_FIELDS:
            raise ValueError(f"Cannot order {spec.table} by {column}")
        return f" ORDER BY {column} {direction}, id {direction}"

    # =========================================================================
    # GENERIC OPERATIONS
    # =========================================================================

    async def insert(self, record: Any) -> int:
        """Insert a new record and return its id."""
        async with self.transaction() as conn:
            return await self._insert(conn, record)

    async def get(self, model: Type[T], record_id: int) -> Optional[T]:
        return await self._fetch(self.db, model, record_id)

    async def save(self, record: Any) -> Any:
        """Replace a stored record with the given one."""
        if record.id is None:
            await self.insert(record)
            return record
        async with self.transaction() as conn:
            await self._write(conn, record)
        return record

    async def patch(self, model: Type[T], record_id: int, **changes: Any) -> T:
        """Read-modify-write a single record atomically."""
        allowed = {f.name for f in fields(model)} - set(ROW_FIELDS)
        unknown = set(changes) - allowed
        if unknown:
            raise ValueError(f"Unknown {model.__name__} fields: {sorted(unknown)}")

        async with self.transaction() as conn:
            record = await self._fetch(conn, model, record_id)
            if record is None:
                raise KeyError(f"{model.__name__} {record_id} not found")
            for name, value in changes.items():
                setattr(record, name, value)
            await self._write(conn, record)
        return record

    async def query(
        self,
        model: Type[T],
        limit: Optional[int] = None,
        order_by: Optional[str] = None,
        **criteria: Any,
    ) -> List[T]:
        """Equality/IN query over indexed columns, in insertion order by default."""
        spec = _collection(model)
        where, params = self._where(spec, criteria)
        sql = f"SELECT * FROM {spec.table}{where}{self._order(spec, order_by)}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        cursor = await self.db.execute(sql, params)
        rows = await cursor.fetchall()
        return [self._row_to_record(model, row) for row in rows]

    async def first(self, model: Type[T], **criteria: Any) -> Optional[T]:
        records = await self.query(model, limit=1, **criteria)
        return records[0] if records else None

    async def count(self, model: type, **criteria: Any) -> int:
        spec = _collection(model)
        where, params = self._where(spec, criteria)
        cursor = await self.db.execute(f"SELECT COUNT(*) FROM {spec.table}{where}", params)
        row = await cursor.fetchone()
        return row[0]

    async def delete(self, model: type, record_id: int) -> bool:
        spec = _collection(model)
        async with self.transaction() as conn:
            cursor = await conn.execute(f"DELETE FROM {spec.table} WHERE id = ?", (record_id,))
            return cursor.rowcount > 0

    # =========================================================================
    # COMPANIES
    # =========================================================================

    async def upsert_company(self, company: Company) -> Tuple[int, bool]:
        """
        Insert a company unless one with the same registry id exists.

        Returns:
            (company_id, created). An existing record is left untouched.
        """
        async with self.transaction() as conn:
            cursor = await conn.execute(
                "SELECT id FROM companies WHERE user_id = ? AND company_number = ?",
                (company.user_id, company.company_number),
            )
            existing = await cursor.fetchone()
            if existing:
                return existing["id"], False
            company_id = await self._insert(conn, company)
            return company_id, True

    async def get_company_by_number(self, user_id: str, company_number: str) -> Optional[Company]:
        return await self.first(Company, user_id=user_id, company_number=company_number)

    async def existing_company_numbers(self, user_id: str) -> Set[str]:
        cursor = await self.db.execute(
            "SELECT company_number FROM companies WHERE user_id = ?", (user_id,)
        )
        return {row["company_number"] for row in await cursor.fetchall()}

    async def companies_in_stages(
        self,
        user_id: str,
        stages: Sequence[CompanyStage],
        limit: Optional[int] = None,
        order_by: Optional[str] = None,
    ) -> List[Company]:
        return await self.query(
            Company, user_id=user_id, stage=list(stages), limit=limit, order_by=order_by
        )

    async def advance_stage(self, company_id: int, target: CompanyStage) -> Company:
        """Move a company along the lifecycle graph; no-op if already there."""
        async with self.transaction() as conn:
            company = await self._fetch(conn, Company, company_id)
            if company is None:
                raise KeyError(f"Company {company_id} not found")
            if company.stage == target:
                return company
            if not can_transition(company.stage, target):
                raise InvalidTransitionError(
                    f"Company {company_id}: {company.stage.value} -> {target.value} not allowed"
                )
            company.stage = target
            await self._write(conn, company)
        return company

    async def pipeline_stats(self, user_id: str) -> Dict[str, Any]:
        """Per-stage counts plus score/stealth aggregates for one user."""
        companies = await self.query(Company, user_id=user_id)
        stats: Dict[str, Any] = {stage.value: 0 for stage in CompanyStage}
        stats.update(total=len(companies), stealth=0, recently_announced=0)

        scores = []
        for company in companies:
            stats[company.stage.value] += 1
            if company.overall_score is not None:
                scores.append(company.overall_score)
            if company.is_stealth_mode:
                stats["stealth"] += 1
            if company.recently_announced:
                stats["recently_announced"] += 1

        stats["average_score"] = round(sum(scores) / len(scores)) if scores else 0
        return stats

    # =========================================================================
    # FOUNDERS / INVESTORS / INTRODUCTIONS
    # =========================================================================

    async def founders_for_company(self, company_id: int) -> List[Founder]:
        return await self.query(Founder, company_id=company_id)

    async def investor_by_firm(self, user_id: str, firm_name: str) -> Optional[Investor]:
        return await self.first(Investor, user_id=user_id, firm_name=firm_name)

    async def find_introduction(
        self, user_id: str, company_id: int, investor_id: int
    ) -> Optional[Introduction]:
        return await self.first(
            Introduction, user_id=user_id, company_id=company_id, investor_id=investor_id
        )

    # =========================================================================
    # OUTREACH
    # =========================================================================

    async def due_outreach(
        self,
        now: Optional[datetime] = None,
        limit: int = 10,
        user_ids: Optional[Sequence[str]] = None,
        channel: OutreachChannel = OutreachChannel.EMAIL,
    ) -> List[OutreachItem]:
        """
        Queued items of one channel whose scheduled time has passed, earliest first.

        `user_ids` restricts the sweep to users that can send right now; an
        empty list matches nothing.
        """
        now = now or utc_now()
        sql = "SELECT * FROM outreach_queue WHERE status = ? AND channel = ? AND scheduled_for <= ?"
        params: List[Any] = [OutreachStatus.QUEUED.value, channel.value, format_timestamp(now)]
        if user_ids is not None:
            if not user_ids:
                return []
            sql += f" AND user_id IN ({', '.join('?' for _ in user_ids)})"
            params.extend(user_ids)
        sql += " ORDER BY scheduled_for ASC, priority ASC, id ASC LIMIT ?"
        params.append(limit)
        cursor = await self.db.execute(sql, params)
        return [self._row_to_record(OutreachItem, row) for row in await cursor.fetchall()]

    async def latest_outreach_time(self, user_id: str) -> Optional[datetime]:
        cursor = await self.db.execute(
            "SELECT MAX(scheduled_for) FROM outreach_queue WHERE user_id = ? AND status = ?",
            (user_id, OutreachStatus.QUEUED.value),
        )
        row = await cursor.fetchone()
        return datetime.fromisoformat(row[0]) if row and row[0] else None

    # =========================================================================
    # SETTINGS / TEMPLATES
    # =========================================================================

    async def get_settings(self, user_id: str) -> Optional[UserSettings]:
        return await self.first(UserSettings, user_id=user_id)

    async def save_settings(self, settings: UserSettings) -> UserSettings:
        """Create or replace the settings row for `settings.user_id`."""
        existing = await self.get_settings(settings.user_id)
        if existing:
            settings.id = existing.id
        return await self.save(settings)

    async def all_settings(self) -> List[UserSettings]:
        return await self.query(UserSettings)

    async def default_template(self, user_id: str) -> Optional[MessageTemplate]:
        settings = await self.get_settings(user_id)
        if settings and settings.default_template_id:
            template = await self.get(MessageTemplate, settings.default_template_id)
            if template:
                return template
        return await self.first(MessageTemplate, user_id=user_id, is_default=True)
