"""
Guardrail database schema -- SQLite tables for audit records and daily quotas.

Usage:
    initialize_schema(db_path)  # Creates tables if they don't exist
    get_connection(db_path)     # Returns a connection with WAL mode enabled

Audit rows are insert-only. Quota counters are keyed by (tenant_id, day)
and incremented with a single UPSERT so concurrent replicas stay correct.
JSON fields store lists as serialized strings.
"""

import json
import logging
import sqlite3
from pathlib import Path

from ..config import DEFAULT_DB_PATH

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
-- Audit trail: one row per request, never updated
CREATE TABLE IF NOT EXISTS audit_records (
    id TEXT PRIMARY KEY,
    tenant_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    conversation_id TEXT,
    terminal_state TEXT NOT NULL,
    context_type TEXT DEFAULT 'general',
    context_id TEXT,
    equipment_type TEXT,
    user_message TEXT DEFAULT '',
    response_text TEXT DEFAULT '',
    blocked INTEGER DEFAULT 0,
    block_reason TEXT,
    refused INTEGER DEFAULT 0,
    injection_detected INTEGER DEFAULT 0,
    documents_available INTEGER DEFAULT 0,
    documents_with_content INTEGER DEFAULT 0,
    document_names_json TEXT DEFAULT '[]',
    chunk_ids_json TEXT DEFAULT '[]',
    similarity_scores_json TEXT DEFAULT '[]',
    retrieval_quality_score INTEGER DEFAULT 0,
    matched_patterns_json TEXT DEFAULT '[]',
    rules_triggered_json TEXT DEFAULT '[]',
    has_citation INTEGER DEFAULT 0,
    human_review_required INTEGER DEFAULT 0,
    human_review_reasons_json TEXT DEFAULT '[]',
    system_prompt_hash TEXT,
    output_hash TEXT,
    prompt_tokens_estimate INTEGER DEFAULT 0,
    response_tokens_estimate INTEGER DEFAULT 0,
    response_latency_ms INTEGER DEFAULT 0,
    response_complete INTEGER DEFAULT 1,
    model TEXT DEFAULT '',
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_audit_tenant
    ON audit_records(tenant_id, created_at);
CREATE INDEX IF NOT EXISTS idx_audit_blocked
    ON audit_records(tenant_id, blocked);

-- Daily AI query counters per tenant (UTC day)
CREATE TABLE IF NOT EXISTS quota_counters (
    tenant_id TEXT NOT NULL,
    day TEXT NOT NULL,
    used INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (tenant_id, day)
);
"""


def get_connection(db_path: Path = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Get a SQLite connection with WAL mode enabled."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    conn.execute("PRAGMA journal_mode=WAL")
    conn.row_factory = sqlite3.Row
    return conn


def initialize_schema(db_path: Path = DEFAULT_DB_PATH) -> None:
    """Create audit and quota tables if they don't exist."""
    conn = get_connection(db_path)
    try:
        conn.executescript(SCHEMA_SQL)
        conn.commit()
        logger.info(f"[AuditSchema] Initialized at {db_path}")
    finally:
        conn.close()


def dict_from_row(row: sqlite3.Row) -> dict:
    """Convert a sqlite3.Row to a plain dict, parsing JSON fields."""
    d = dict(row)
    for key in list(d.keys()):
        if key.endswith("_json") and isinstance(d[key], str):
            try:
                d[key.removesuffix("_json")] = json.loads(d[key])
            except json.JSONDecodeError:
                d[key.removesuffix("_json")] = []
            del d[key]
    return d
