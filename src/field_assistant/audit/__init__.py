"""Audit trail -- immutable per-request records and their stores."""
from .models import AuditRecord, TerminalState, sha256_hex
from .store import AuditStore, InMemoryAuditStore, SQLiteAuditStore
