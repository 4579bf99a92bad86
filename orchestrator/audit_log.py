"""
Audit Log - Capped record of allow/deny routing decisions

Entries are kept as a single list under one store key, most recent first.
Appending beyond the cap evicts the oldest entry.
"""

import json
import logging
from threading import Lock
from typing import List

from shared.kv_store import KeyValueStore
from shared.schemas import AuditEntry

logger = logging.getLogger(__name__)

AUDIT_KEY = "audit:latest"
MAX_AUDIT_ENTRIES = 50


class AuditLog:
    """Append-only, capped audit trail backed by the key-value store"""

    def __init__(self, store: KeyValueStore, max_entries: int = MAX_AUDIT_ENTRIES):
        self.store = store
        self.max_entries = max_entries
        self._lock = Lock()

    def append(self, entry: AuditEntry) -> None:
        """
        Record an entry at the head of the log.

        Args:
            entry: Audit entry to record
        """
        with self._lock:
            entries = self._load()
            entries.insert(0, entry.to_dict())
            del entries[self.max_entries:]
            self.store.put(AUDIT_KEY, json.dumps(entries))

        logger.info(f"[AUDIT] {entry.action} {entry.description} (actor={entry.actor})")

    def list(self) -> List[AuditEntry]:
        with self._lock:
            return [AuditEntry.model_validate(item) for item in self._load()]

    def _load(self) -> List[dict]:
        raw = self.store.get(AUDIT_KEY)
        return json.loads(raw) if raw else []
