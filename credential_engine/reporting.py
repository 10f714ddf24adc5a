"""
Reporting for the Credential Lifecycle Engine.

Read-only aggregation over the grant store and the audit log for the
admin dashboard.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from .audit import AuditLogger
from .engine.derivation import count_grants, grant_display_status
from .engine.grant_store import GrantStore
from .models import AuditCategory, AuditEntry, AuditSeverity, IdentityStatus, utcnow

logger = logging.getLogger(__name__)


class ReportingService:
    """Builds dashboard statistics and reports. Never mutates state."""

    def __init__(self, store: GrantStore, audit_logger: AuditLogger):
        self.store = store
        self.audit_logger = audit_logger

    def dashboard_stats(self) -> Dict[str, Any]:
        """Identity counts per status and the number of problematic grants."""
        return {
            "total": self.store.count_identities(),
            "pending": self.store.count_identities(IdentityStatus.PENDING),
            "onboarded": self.store.count_identities(IdentityStatus.ONBOARDED),
            "offboarding": self.store.count_identities(IdentityStatus.OFFBOARDING_IN_PROGRESS),
            "offboarded": self.store.count_identities(IdentityStatus.OFFBOARDED),
            "issues": self.store.count_grants(predicate=lambda g: g.problematic),
            "total_grants": self.store.count_grants(),
            "credential_types": len(self.store.list_credential_types()),
        }

    def grant_lifecycle_report(self) -> List[Dict[str, Any]]:
        """One row per grant, newest first."""
        rows = []
        for grant in sorted(self.store.list_grants(), key=lambda g: g.created_at, reverse=True):
            identity = self.store.get_identity(grant.identity_id)
            credential_type = self.store.get_credential_type(grant.credential_type_id)
            rows.append({
                "id": grant.id,
                "identity_email": identity.email if identity else None,
                "identity_name": identity.name if identity else None,
                "identity_status": identity.status.value if identity else None,
                "credential_name": credential_type.name if credential_type else None,
                "credential_description": credential_type.description if credential_type else None,
                "status": grant_display_status(grant).value,
                "assigned_at": grant.created_at.isoformat(),
                "confirmed_at": grant.confirmed_at.isoformat() if grant.confirmed_at else None,
                "last_updated": grant.updated_at.isoformat(),
            })
        return rows

    def identity_activity_summary(self) -> List[Dict[str, Any]]:
        summary = []
        for identity in self.store.list_identities():
            counts = count_grants(self.store.list_grants(identity_id=identity.id))
            summary.append({
                "email": identity.email,
                "name": identity.name,
                "status": identity.status.value,
                "role": identity.role.value,
                "total_grants": counts.total,
                "confirmed_grants": counts.confirmed,
                "problematic_grants": counts.problematic,
                "inactive_grants": counts.inactive,
            })
        return summary

    def credential_status_summary(self) -> List[Dict[str, Any]]:
        summary = []
        for credential_type in self.store.list_credential_types():
            grants = self.store.list_grants(credential_type_id=credential_type.id)
            counts = count_grants(grants)
            summary.append({
                "name": credential_type.name,
                "description": credential_type.description,
                "total_grants": counts.total,
                "confirmed_grants": counts.confirmed,
                "problematic_grants": counts.problematic,
                "inactive_grants": counts.inactive,
                "pending_grants": sum(
                    1 for g in grants if not (g.confirmed or g.problematic or g.inactive)
                ),
            })
        return summary

    def activity_logs(
        self,
        actor_email: Optional[str] = None,
        action: Optional[str] = None,
        category: Optional[AuditCategory] = None,
        severity: Optional[AuditSeverity] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[AuditEntry]:
        return self.audit_logger.get_entries(
            actor_email=actor_email,
            action=action,
            category=category,
            severity=severity,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
        )

    def audit_summary(self, days: int = 30) -> Dict[str, Any]:
        """Audit entry counts per action and severity over the last ``days`` days."""
        end_date = utcnow()
        start_date = end_date - timedelta(days=days)
        return self.audit_logger.summarize(start_date, end_date)
