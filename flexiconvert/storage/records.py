"""SQLite store for processing records.

One row per conversion. Status moves ``pending -> processing -> completed``
or ``-> failed`` (a pending record may also fail directly); a completed row
always has progress 100 and an output path.
"""

import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from flexiconvert.core.exceptions import InvalidTransitionError, RecordNotFoundError

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUSES = (STATUS_PENDING, STATUS_PROCESSING, STATUS_COMPLETED, STATUS_FAILED)

DEFAULT_PER_PAGE = 15
MAX_PER_PAGE = 100

SORT_ORDERS = {
    "newest": "created_at DESC",
    "oldest": "created_at ASC",
    "name": "original_filename COLLATE NOCASE ASC",
    "size": "file_size DESC",
}

_SCHEMA = """
CREATE TABLE IF NOT EXISTS processing_records (
    id TEXT PRIMARY KEY,
    category TEXT NOT NULL,
    tool_name TEXT NOT NULL,
    original_filename TEXT NOT NULL,
    input_paths TEXT NOT NULL DEFAULT '[]',
    file_size INTEGER NOT NULL DEFAULT 0,
    settings TEXT NOT NULL DEFAULT '{}',
    status TEXT NOT NULL DEFAULT 'pending',  -- pending, processing, completed, failed
    progress INTEGER NOT NULL DEFAULT 0,
    stage TEXT NULL,
    output_path TEXT NULL,
    output_filename TEXT NULL,
    processed_file_size INTEGER NULL,
    error_type TEXT NULL,
    error_message TEXT NULL,
    processing_time REAL NULL,              -- seconds
    created_at TEXT NOT NULL,
    started_at TEXT NULL,
    completed_at TEXT NULL,
    updated_at TEXT NOT NULL
)
"""

_INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_records_status ON processing_records (status)",
    "CREATE INDEX IF NOT EXISTS idx_records_created ON processing_records (created_at)",
)

_JSON_COLUMNS = ("input_paths", "settings")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")


def new_record_id() -> str:
    return uuid.uuid4().hex


def _load_json(raw: Optional[str], empty: Any, record_id: str) -> Any:
    try:
        value = json.loads(raw) if raw else None
    except ValueError:
        logger.warning("[%s] Unreadable JSON column; treating as empty", record_id)
        value = None
    return value if isinstance(value, type(empty)) else empty


@dataclass
class ProcessingRecord:
    """A single conversion request and its outcome."""

    id: str
    category: str
    tool_name: str
    original_filename: str
    input_paths: List[str] = field(default_factory=list)
    file_size: int = 0
    settings: Dict[str, Any] = field(default_factory=dict)
    status: str = STATUS_PENDING
    progress: int = 0
    stage: Optional[str] = None
    output_path: Optional[str] = None
    output_filename: Optional[str] = None
    processed_file_size: Optional[int] = None
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    processing_time: Optional[float] = None
    created_at: str = ""
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    updated_at: str = ""

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "ProcessingRecord":
        data = dict(row)
        data["input_paths"] = _load_json(data["input_paths"], [], data["id"])
        data["settings"] = _load_json(data["settings"], {}, data["id"])
        return cls(**data)

    @property
    def is_finished(self) -> bool:
        return self.status in (STATUS_COMPLETED, STATUS_FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category,
            "tool": self.tool_name,
            "original_filename": self.original_filename,
            "file_size": self.file_size,
            "settings": self.settings,
            "status": self.status,
            "progress": self.progress,
            "stage": self.stage,
            "output_filename": self.output_filename,
            "processed_file_size": self.processed_file_size,
            "error_type": self.error_type,
            "error_message": self.error_message,
            "processing_time": self.processing_time,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "updated_at": self.updated_at,
        }


_COLUMNS = tuple(ProcessingRecord.__dataclass_fields__)
_UPDATABLE = frozenset(_COLUMNS) - {"id", "created_at"}

# target status -> statuses it may be reached from
_TRANSITIONS = {
    STATUS_PROCESSING: (STATUS_PENDING,),
    STATUS_COMPLETED: (STATUS_PROCESSING,),
    STATUS_FAILED: (STATUS_PENDING, STATUS_PROCESSING),
}


class RecordStore:
    """Processing records persisted in SQLite (one connection per operation)."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def init_schema(self) -> None:
        """Create the table and indexes if missing."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(_SCHEMA)
            for statement in _INDEXES:
                conn.execute(statement)
            conn.commit()
        finally:
            conn.close()
        logger.info("Record store ready at %s", self.db_path)

    def create(
        self,
        category: str,
        tool_name: str,
        original_filename: str,
        input_paths: Optional[List[str]] = None,
        file_size: int = 0,
        settings: Optional[Dict[str, Any]] = None,
        record_id: Optional[str] = None,
    ) -> ProcessingRecord:
        now = to_timestamp(utcnow())
        record = ProcessingRecord(
            id=record_id or new_record_id(),
            category=category,
            tool_name=tool_name,
            original_filename=original_filename,
            input_paths=list(input_paths or []),
            file_size=int(file_size or 0),
            settings=dict(settings or {}),
            created_at=now,
            updated_at=now,
        )
        values = self._serialize(record.__dict__)
        placeholders = ", ".join("?" for _ in _COLUMNS)
        conn = self._connect()
        try:
            conn.execute(
                f"INSERT INTO processing_records ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                tuple(values[c] for c in _COLUMNS),
            )
            conn.commit()
        finally:
            conn.close()
        logger.info(f"[{record.id}] Record created ({category}/{tool_name}: {original_filename})")
        return record

    def get(self, record_id: str) -> Optional[ProcessingRecord]:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT * FROM processing_records WHERE id = ?", (record_id,)
            ).fetchone()
        finally:
            conn.close()
        return ProcessingRecord.from_row(row) if row else None

    def require(self, record_id: str) -> ProcessingRecord:
        record = self.get(record_id)
        if record is None:
            raise RecordNotFoundError.for_id(record_id)
        return record

    @staticmethod
    def _serialize(fields: Dict[str, Any]) -> Dict[str, Any]:
        values = dict(fields)
        for column in _JSON_COLUMNS:
            if column in values:
                values[column] = json.dumps(values[column])
        return values

    def _allowed_sources(self, record_id: str, fields: Dict[str, Any], allowed_from: Optional[tuple]) -> tuple:
        target = fields["status"]
        if target not in STATUSES:
            raise ValueError(f"Unknown record status: {target!r}")
        if target == STATUS_COMPLETED and (fields.get("progress") != 100 or not fields.get("output_path")):
            raise ValueError("A completed record needs progress 100 and an output path")
        sources = _TRANSITIONS.get(target, ())
        if allowed_from:
            sources = tuple(s for s in allowed_from if s in sources)
        if not sources:
            current = self.require(record_id)
            raise InvalidTransitionError.for_status(record_id, current.status, target)
        return sources

    def update(self, record_id: str, *, allowed_from: Optional[tuple] = None, **fields: Any) -> ProcessingRecord:
        """Update columns of a record and return the fresh row.

        Raises:
            ValueError: Unknown column names or status, or a completion
                without progress 100 and an output path.
            RecordNotFoundError: No such record.
            InvalidTransitionError: Current status not in ``allowed_from``.
        """
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unknown record fields: {', '.join(sorted(unknown))}")
        if "status" in fields:
            allowed_from = self._allowed_sources(record_id, fields, allowed_from)
        fields["updated_at"] = to_timestamp(utcnow())
        values = self._serialize(fields)

        assignments = ", ".join(f"{column} = ?" for column in values)
        params: List[Any] = list(values.values()) + [record_id]
        sql = f"UPDATE processing_records SET {assignments} WHERE id = ?"
        if allowed_from:
            sql += f" AND status IN ({', '.join('?' for _ in allowed_from)})"
            params.extend(allowed_from)

        conn = self._connect()
        try:
            cursor = conn.execute(sql, params)
            conn.commit()
            changed = cursor.rowcount
        finally:
            conn.close()

        if not changed:
            current = self.require(record_id)
            raise InvalidTransitionError.for_status(record_id, current.status, fields.get("status", current.status))
        return self.require(record_id)

    def mark_processing(self, record_id: str) -> ProcessingRecord:
        return self.update(
            record_id,
            allowed_from=(STATUS_PENDING,),
            status=STATUS_PROCESSING,
            started_at=to_timestamp(utcnow()),
            progress=0,
            stage="starting",
        )

    def update_progress(self, record_id: str, percent: int, stage: Optional[str] = None) -> ProcessingRecord:
        percent = max(0, min(99, int(percent)))  # 100 is reserved for completion
        fields: Dict[str, Any] = {"progress": percent}
        if stage:
            fields["stage"] = stage
        return self.update(record_id, allowed_from=(STATUS_PROCESSING,), **fields)

    def mark_completed(
        self,
        record_id: str,
        output_path: str,
        output_filename: str,
        processed_file_size: int,
        processing_time: float,
    ) -> ProcessingRecord:
        if not output_path:
            raise ValueError("A completed record needs an output path")
        return self.update(
            record_id,
            allowed_from=(STATUS_PROCESSING,),
            status=STATUS_COMPLETED,
            progress=100,
            stage="completed",
            output_path=str(output_path),
            output_filename=output_filename,
            processed_file_size=int(processed_file_size),
            processing_time=round(float(processing_time), 3),
            completed_at=to_timestamp(utcnow()),
            error_type=None,
            error_message=None,
        )

    def mark_failed(
        self,
        record_id: str,
        error_message: str,
        error_type: str = "UnknownError",
        processing_time: Optional[float] = None,
    ) -> ProcessingRecord:
        fields: Dict[str, Any] = {
            "status": STATUS_FAILED,
            "stage": "failed",
            "error_type": error_type,
            "error_message": error_message or "Conversion failed",
            "completed_at": to_timestamp(utcnow()),
        }
        if processing_time is not None:
            fields["processing_time"] = round(float(processing_time), 3)
        return self.update(record_id, allowed_from=(STATUS_PENDING, STATUS_PROCESSING), **fields)

    def list_records(
        self,
        status: Optional[str] = None,
        search: Optional[str] = None,
        sort: str = "newest",
        page: int = 1,
        per_page: int = DEFAULT_PER_PAGE,
        category: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Paginated history. ``search`` matches filenames and tool names."""
        clauses: List[str] = []
        params: List[Any] = []
        if status:
            clauses.append("status = ?")
            params.append(status)
        if category:
            clauses.append("category = ?")
            params.append(category)
        if search:
            like = f"%{search}%"
            clauses.append("(original_filename LIKE ? OR output_filename LIKE ? OR tool_name LIKE ?)")
            params.extend([like, like, like])
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        order = SORT_ORDERS.get(sort, SORT_ORDERS["newest"])
        per_page = max(1, min(MAX_PER_PAGE, int(per_page)))
        page = max(1, int(page))

        conn = self._connect()
        try:
            total = conn.execute(f"SELECT COUNT(*) FROM processing_records {where}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM processing_records {where} ORDER BY {order}, id LIMIT ? OFFSET ?",
                params + [per_page, (page - 1) * per_page],
            ).fetchall()
        finally:
            conn.close()

        return {
            "items": [ProcessingRecord.from_row(row) for row in rows],
            "total": total,
            "page": page,
            "per_page": per_page,
            "pages": (total + per_page - 1) // per_page,
        }

    def stats(self) -> Dict[str, Any]:
        conn = self._connect()
        try:
            by_status = dict(conn.execute(
                "SELECT status, COUNT(*) FROM processing_records GROUP BY status"
            ).fetchall())
            by_category = dict(conn.execute(
                "SELECT category, COUNT(*) FROM processing_records GROUP BY category"
            ).fetchall())
            sizes = conn.execute(
                "SELECT COALESCE(SUM(file_size), 0), COALESCE(SUM(processed_file_size), 0) "
                "FROM processing_records WHERE status = ?",
                (STATUS_COMPLETED,),
            ).fetchone()
        finally:
            conn.close()

        result: Dict[str, Any] = {"total": sum(by_status.values())}
        for status in STATUSES:
            result[status] = by_status.get(status, 0)
        result["by_category"] = by_category
        result["input_bytes_completed"] = sizes[0]
        result["output_bytes_completed"] = sizes[1]
        return result

    def delete(self, record_id: str) -> bool:
        conn = self._connect()
        try:
            cursor = conn.execute("DELETE FROM processing_records WHERE id = ?", (record_id,))
            conn.commit()
            deleted = cursor.rowcount > 0
        finally:
            conn.close()
        if deleted:
            logger.info(f"[{record_id}] Record deleted")
        return deleted

    def expired(self, cutoff: datetime) -> List[ProcessingRecord]:
        """Finished or abandoned records created before ``cutoff``."""
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT * FROM processing_records WHERE created_at < ? ORDER BY created_at",
                (to_timestamp(cutoff),),
            ).fetchall()
        finally:
            conn.close()
        return [ProcessingRecord.from_row(row) for row in rows]

    def reset_stuck(self, older_than: datetime) -> int:
        """Fail pending/processing records not touched since ``older_than``."""
        now = to_timestamp(utcnow())
        conn = self._connect()
        try:
            cursor = conn.execute(
                "UPDATE processing_records SET status = ?, stage = ?, error_type = ?, error_message = ?, "
                "completed_at = ?, updated_at = ? WHERE status IN (?, ?) AND updated_at < ?",
                (
                    STATUS_FAILED,
                    "failed",
                    "Interrupted",
                    "Processing was interrupted. Please upload the file again.",
                    now,
                    now,
                    STATUS_PENDING,
                    STATUS_PROCESSING,
                    to_timestamp(older_than),
                ),
            )
            conn.commit()
            count = cursor.rowcount
        finally:
            conn.close()
        if count:
            logger.warning("Marked %s stuck record(s) as failed", count)
        return count
