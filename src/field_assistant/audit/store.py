"""
AuditStore -- durable, insert-only storage for AuditRecords.

  AuditStore         -- Protocol consumed by the orchestrator
  SQLiteAuditStore   -- SQLite (WAL) implementation
  InMemoryAuditStore -- list-backed implementation for tests and the CLI

Stores only insert and read. There is no update or delete path.

Security:
  - User message and response text are size-limited before storage
"""

import json
import logging
from dataclasses import asdict, fields
from pathlib import Path
from typing import Protocol, runtime_checkable

from ..config import DEFAULT_DB_PATH
from ..security.prompt_guard import sanitize_for_prompt
from .models import AuditRecord
from .schema import dict_from_row, get_connection, initialize_schema

logger = logging.getLogger(__name__)

MAX_STORED_TEXT = 50_000
SEQUENCE_FIELDS = (
    "document_names",
    "chunk_ids",
    "similarity_scores",
    "matched_patterns",
    "rules_triggered",
    "human_review_reasons",
)
BOOLEAN_FIELDS = (
    "blocked",
    "refused",
    "injection_detected",
    "has_citation",
    "human_review_required",
    "response_complete",
)


@runtime_checkable
class AuditStore(Protocol):
    """Durable sink for audit records."""

    def write(self, record: AuditRecord) -> None: ...


class InMemoryAuditStore:
    """Keeps records in a list, in write order."""

    def __init__(self):
        self.records: list[AuditRecord] = []

    def write(self, record: AuditRecord) -> None:
        self.records.append(record)


class SQLiteAuditStore:
    """
    Insert-only audit storage in SQLite.

    Usage:
        store = SQLiteAuditStore(Path("data/field_assistant.db"))
        store.write(record)
        recent = store.list_records(tenant_id="tenant-1", limit=20)
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self._db_path = db_path
        initialize_schema(db_path)

    def write(self, record: AuditRecord) -> None:
        """Insert one record."""
        row = asdict(record)
        row["user_message"] = sanitize_for_prompt(record.user_message, max_length=MAX_STORED_TEXT)
        row["response_text"] = sanitize_for_prompt(record.response_text, max_length=MAX_STORED_TEXT)
        for name in SEQUENCE_FIELDS:
            row[f"{name}_json"] = json.dumps(list(row.pop(name)))
        for name in BOOLEAN_FIELDS:
            row[name] = int(row[name])

        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        conn = get_connection(self._db_path)
        try:
            conn.execute(
                f"INSERT INTO audit_records ({columns}) VALUES ({placeholders})",
                tuple(row.values()),
            )
            conn.commit()
            logger.debug(
                f"[AuditStore] Recorded {record.terminal_state} "
                f"for tenant={record.tenant_id} blocked={record.blocked}"
            )
        finally:
            conn.close()

    def list_records(self, tenant_id: str, limit: int = 100) -> list[AuditRecord]:
        """Most recent records for a tenant, newest first."""
        conn = get_connection(self._db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM audit_records WHERE tenant_id = ? "
                "ORDER BY created_at DESC LIMIT ?",
                (tenant_id, limit),
            ).fetchall()
        finally:
            conn.close()
        return [_record_from_row(dict_from_row(r)) for r in rows]


def _record_from_row(data: dict) -> AuditRecord:
    known = {f.name for f in fields(AuditRecord)}
    values = {k: v for k, v in data.items() if k in known}
    for name in SEQUENCE_FIELDS:
        values[name] = tuple(values.get(name) or ())
    for name in BOOLEAN_FIELDS:
        values[name] = bool(values[name])
    return AuditRecord(**values)
