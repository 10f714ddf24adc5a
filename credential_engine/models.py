"""
Core data models for the Credential Lifecycle Engine.

This module defines the Pydantic models used throughout the system
for identities, credential types, grants, status transitions, and audit entries.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Current UTC time as an aware datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class IdentityStatus(str, Enum):
    """Lifecycle status of an identity."""
    PENDING = "Pending"
    ONBOARDED = "Onboarded"
    OFFBOARDING_IN_PROGRESS = "OffboardingInProgress"
    OFFBOARDED = "Offboarded"


class Role(str, Enum):
    """Role of an identity within the system."""
    ADMIN = "admin"
    MEMBER = "member"


class GrantDisplayStatus(str, Enum):
    """Single display label for a grant, derived from its flags."""
    INACTIVE = "Inactive"
    CONFIRMED = "Confirmed"
    PROBLEMATIC = "Problematic"
    PENDING = "Pending"


class TransitionKind(str, Enum):
    """Sources of identity status changes."""
    EXPLICIT_ONBOARD = "ExplicitOnboard"
    EXPLICIT_INITIATE_OFFBOARDING = "ExplicitInitiateOffboarding"
    EXPLICIT_COMPLETE_OFFBOARDING = "ExplicitCompleteOffboarding"
    DERIVED_RECOMPUTE = "DerivedRecompute"


class NotificationEvent(str, Enum):
    """Events fanned out to the notification channels."""
    ISSUE_REPORTED = "issueReported"
    OFFBOARDING_COMPLETE = "offboardingComplete"
    ONBOARDED = "onboarded"
    OFFBOARDING_INITIATED = "offboardingInitiated"


class AuditSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AuditCategory(str, Enum):
    AUTHENTICATION = "authentication"
    CREDENTIAL_MANAGEMENT = "credential_management"
    USER_MANAGEMENT = "user_management"
    ASSIGNMENT = "assignment"
    REPORT = "report"
    SYSTEM = "system"


class Identity(BaseModel):
    """An onboarding subject and its lifecycle status."""
    id: str = Field(default_factory=new_id)
    email: str = Field(..., description="Unique email address")
    name: str = Field(..., description="Display name")
    role: Role = Role.MEMBER
    status: IdentityStatus = IdentityStatus.PENDING
    onboarded_at: Optional[datetime] = Field(None, description="Last transition into Onboarded")
    offboarded_at: Optional[datetime] = Field(None, description="Last transition into Offboarded")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator('email')
    @classmethod
    def validate_email(cls, v: str) -> str:
        """Basic email validation."""
        if '@' not in v:
            raise ValueError('Invalid email format')
        return v.strip()

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError('Name is required')
        return v.strip()

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class CredentialType(BaseModel):
    """A named class of grantable access (e.g. "VPN access")."""
    id: str = Field(default_factory=new_id)
    name: str = Field(..., description="Human-readable credential name")
    description: Optional[str] = Field(None, description="What the credential grants")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError('Credential name is required')
        return v.strip()


class Grant(BaseModel):
    """
    Assignment of a credential type to an identity.

    The three flags are independent. Confirming clears ``problematic`` but
    reporting a problem leaves ``confirmed`` untouched, so a grant can carry
    both flags at once; see ``grant_display_status`` for how that is shown.
    """
    id: str = Field(default_factory=new_id)
    identity_id: str
    credential_type_id: str
    confirmed: bool = False
    problematic: bool = False
    inactive: bool = False
    confirmed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def pair(self) -> tuple:
        """Uniqueness key of the grant."""
        return (self.identity_id, self.credential_type_id)


class AuditEntry(BaseModel):
    """Immutable audit record of one engine action."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    timestamp: datetime = Field(default_factory=utcnow)
    actor_email: Optional[str] = Field(None, description="Who performed the action")
    action: str = Field(..., description="Action kind (assign, confirm, user_onboarded, ...)")
    details: Dict[str, Any] = Field(default_factory=dict)
    identity_id: Optional[str] = None
    credential_type_id: Optional[str] = None
    grant_id: Optional[str] = None
    severity: AuditSeverity = AuditSeverity.LOW
    category: AuditCategory = AuditCategory.SYSTEM


class StatusTransition(BaseModel):
    """Record of one status transition applied to an identity."""
    kind: TransitionKind
    identity_id: str
    previous_status: IdentityStatus
    new_status: IdentityStatus
    occurred_at: datetime = Field(default_factory=utcnow)

    @property
    def changed(self) -> bool:
        return self.previous_status != self.new_status


class OperationResult(BaseModel):
    """Outcome of a lifecycle engine mutation."""
    identity_id: str
    status: IdentityStatus
    grant: Optional[Grant] = None
    transition: Optional[StatusTransition] = None


class GrantView(BaseModel):
    """A grant joined with its credential type, as shown to consumers."""
    grant: Grant
    credential_type: Optional[CredentialType] = None
    display_status: GrantDisplayStatus


class IdentityDetails(BaseModel):
    """Identity with all of its grants."""
    identity: Identity
    grants: List[GrantView] = Field(default_factory=list)
