"""
Audit Logging Module.

Append-only log of every engine action. Entries are written as JSON lines to
daily files, or kept in memory when no directory is configured.
"""

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..models import AuditCategory, AuditEntry, AuditSeverity

logger = logging.getLogger(__name__)


class AuditLogger:
    """
    Append-only sink for audit entries.

    Entries are never updated or deleted. Reads return newest first.
    """

    def __init__(self, audit_dir: Optional[Union[str, Path]] = None):
        """
        Initialize the audit logger.

        Args:
            audit_dir: Directory to store audit logs. If None, entries are
                      kept in memory only.
        """
        self.audit_dir = Path(audit_dir) if audit_dir else None
        self._memory: List[AuditEntry] = []
        self._write_lock = threading.Lock()

        if self.audit_dir:
            self.audit_dir.mkdir(parents=True, exist_ok=True)

    def log_entry(self, entry: AuditEntry) -> str:
        """
        Append an audit entry.

        Args:
            entry: The audit entry to record

        Returns:
            The entry ID
        """
        with self._write_lock:
            if self.audit_dir is None:
                self._memory.append(entry)
            else:
                date_str = entry.timestamp.astimezone(timezone.utc).strftime("%Y-%m-%d")
                log_file = self.audit_dir / f"audit_{date_str}.jsonl"
                with open(log_file, "a", encoding="utf-8") as f:
                    f.write(json.dumps(entry.model_dump(mode="json")) + "\n")

        logger.info(f"Logged audit entry {entry.id}: {entry.action} by {entry.actor_email or 'system'}")
        return entry.id

    def _iter_newest_first(self):
        if self.audit_dir is None:
            yield from reversed(list(self._memory))
            return

        for log_file in sorted(self.audit_dir.glob("audit_*.jsonl"), reverse=True):
            try:
                with open(log_file, encoding="utf-8") as f:
                    lines = f.readlines()
            except OSError as e:
                logger.error(f"Failed to read log file {log_file}: {e}")
                continue

            for line in reversed(lines):
                if not line.strip():
                    continue
                try:
                    yield AuditEntry.model_validate(json.loads(line))
                except ValueError as e:
                    logger.warning(f"Failed to parse audit entry in {log_file}: {e}")

    def get_entries(
        self,
        actor_email: Optional[str] = None,
        action: Optional[str] = None,
        category: Optional[AuditCategory] = None,
        severity: Optional[AuditSeverity] = None,
        identity_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEntry]:
        """
        Retrieve audit entries with filtering, newest first.

        Args:
            actor_email: Filter by acting identity's email
            action: Filter by action kind
            category: Filter by category
            severity: Filter by severity
            identity_id: Filter by referenced identity
            start_date: Only entries at or after this time
            end_date: Only entries at or before this time
            limit: Maximum number of entries to return

        Returns:
            List of matching AuditEntry records
        """
        results = []

        for entry in self._iter_newest_first():
            if len(results) >= limit:
                break
            if actor_email and entry.actor_email != actor_email:
                continue
            if action and entry.action != action:
                continue
            if category and entry.category != category:
                continue
            if severity and entry.severity != severity:
                continue
            if identity_id and entry.identity_id != identity_id:
                continue
            if start_date and entry.timestamp < start_date:
                continue
            if end_date and entry.timestamp > end_date:
                continue
            results.append(entry)

        return results

    def summarize(self, start_date: datetime, end_date: datetime) -> Dict[str, Any]:
        """Count entries per action and severity over a period."""
        entries = self.get_entries(start_date=start_date, end_date=end_date, limit=10000)

        by_action: Dict[str, int] = {}
        by_severity: Dict[str, int] = {}
        for entry in entries:
            by_action[entry.action] = by_action.get(entry.action, 0) + 1
            by_severity[entry.severity.value] = by_severity.get(entry.severity.value, 0) + 1

        return {
            "period": {"start": start_date.isoformat(), "end": end_date.isoformat()},
            "total_entries": len(entries),
            "entries_by_action": by_action,
            "entries_by_severity": by_severity,
        }
