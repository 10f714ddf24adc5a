"""
FastAPI Server for the Credential Lifecycle Engine.

Thin REST adapter over the lifecycle engine: members confirm or report
problems with their grants, admins manage credentials, grants and
identity lifecycle. Token handling is out of scope; the caller is
identified by the X-Identity-Id header.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..config import load_config
from ..errors import (
    ConflictError,
    EngineError,
    InvalidTransitionError,
    LockTimeoutError,
    NotFoundError,
    UnauthorizedError,
)
from ..models import (
    AuditCategory,
    AuditEntry,
    AuditSeverity,
    CredentialType,
    GrantView,
    Identity,
    IdentityDetails,
    IdentityStatus,
    OperationResult,
    Role,
)
from ..services import EngineServices

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    NotFoundError.kind: 404,
    ConflictError.kind: 409,
    InvalidTransitionError.kind: 400,
    UnauthorizedError.kind: 403,
    LockTimeoutError.kind: 503,
}


# Pydantic models for API requests/responses
class RegisterIdentityRequest(BaseModel):
    """Identity registration request."""
    email: str = Field(..., description="Email address")
    name: str = Field(..., description="Display name")
    role: Role = Field(Role.MEMBER, description="admin or member")


class CredentialTypeRequest(BaseModel):
    """Credential type creation request."""
    name: str = Field(..., description="Credential name")
    description: Optional[str] = Field(None, description="Credential description")


class CredentialTypeUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class AssignRequest(BaseModel):
    """Grant a credential to an identity by id or by email/name."""
    identity_id: Optional[str] = None
    credential_type_id: Optional[str] = None
    email: Optional[str] = None
    credential_name: Optional[str] = None


class ReportProblemRequest(BaseModel):
    note: Optional[str] = Field(None, description="Free-text description of the problem")


class MyGrantsResponse(BaseModel):
    items: List[GrantView]
    status: IdentityStatus


services: Optional[EngineServices] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global services

    logger.info("Initializing Credential Engine API server components")
    if services is None:
        services = EngineServices(load_config())
    services.start()
    logger.info("Credential Engine API server components initialized")

    yield

    logger.info("Shutting down Credential Engine API server")
    services.stop()


app = FastAPI(
    title="Credential Engine API",
    description="Credential lifecycle engine - grants, onboarding and offboarding",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    status_code = ERROR_STATUS_CODES.get(exc.kind, 500)
    logger.warning(f"{request.method} {request.url.path} rejected ({exc.kind}): {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def get_services() -> EngineServices:
    if services is None:
        raise HTTPException(status_code=503, detail="Engine not available")
    return services


def current_identity(
    x_identity_id: Optional[str] = Header(None),
    svc: EngineServices = Depends(get_services),
) -> Identity:
    if not x_identity_id:
        raise HTTPException(status_code=401, detail="No caller identity")
    identity = svc.store.get_identity(x_identity_id)
    if identity is None:
        raise HTTPException(status_code=401, detail="Unknown caller identity")
    return identity


def require_admin(caller: Identity = Depends(current_identity)) -> Identity:
    if not caller.is_admin:
        raise HTTPException(status_code=403, detail="Forbidden")
    return caller


@app.get("/")
async def root():
    """Root endpoint."""
    return {"message": "Credential Engine API", "version": "1.0.0", "status": "running"}


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "components": {
            "grant_store": services is not None,
            "audit_logger": services is not None,
            "outbox_processor": services is not None and services.processor.running,
        },
        "pending_events": services.outbox.pending() if services else 0,
    }


# Member endpoints

@app.get("/me/grants", response_model=MyGrantsResponse)
def list_my_grants(caller: Identity = Depends(current_identity), svc: EngineServices = Depends(get_services)):
    """List the caller's grants with their display status."""
    details = svc.engine.get_identity_details(caller.id)
    return MyGrantsResponse(items=details.grants, status=details.identity.status)


@app.post("/me/grants/{grant_id}/confirm", response_model=OperationResult)
def confirm_grant(
    grant_id: str, caller: Identity = Depends(current_identity), svc: EngineServices = Depends(get_services)
):
    return svc.engine.confirm_grant(grant_id, caller.id)


@app.post("/me/grants/{grant_id}/report", response_model=OperationResult)
def report_problem(
    grant_id: str,
    request: ReportProblemRequest,
    caller: Identity = Depends(current_identity),
    svc: EngineServices = Depends(get_services),
):
    return svc.engine.report_problem(grant_id, caller.id, note=request.note)


# Admin endpoints: identities

@app.post("/admin/identities", response_model=Identity)
def register_identity(
    request: RegisterIdentityRequest, admin: Identity = Depends(require_admin), svc: EngineServices = Depends(get_services)
):
    return svc.engine.register_identity(request.email, request.name, request.role, actor_email=admin.email)


@app.get("/admin/identities", response_model=List[Identity])
def list_identities(
    status: Optional[IdentityStatus] = Query(None, description="Filter by status"),
    limit: int = Query(100, description="Maximum number of results"),
    admin: Identity = Depends(require_admin),
    svc: EngineServices = Depends(get_services),
):
    return svc.store.list_identities(status)[:limit]


@app.get("/admin/identities/{identity_id}", response_model=IdentityDetails)
def get_identity_details(
    identity_id: str, admin: Identity = Depends(require_admin), svc: EngineServices = Depends(get_services)
):
    return svc.engine.get_identity_details(identity_id)


@app.post("/admin/identities/{identity_id}/onboard", response_model=OperationResult)
def onboard_identity(
    identity_id: str, admin: Identity = Depends(require_admin), svc: EngineServices = Depends(get_services)
):
    return svc.engine.onboard_identity(identity_id, actor_email=admin.email)


@app.post("/admin/identities/{identity_id}/offboarding/initiate", response_model=OperationResult)
def initiate_offboarding(
    identity_id: str, admin: Identity = Depends(require_admin), svc: EngineServices = Depends(get_services)
):
    return svc.engine.initiate_offboarding(identity_id, actor_email=admin.email)


@app.post("/admin/identities/{identity_id}/offboarding/complete", response_model=OperationResult)
def complete_offboarding(
    identity_id: str, admin: Identity = Depends(require_admin), svc: EngineServices = Depends(get_services)
):
    return svc.engine.complete_offboarding(identity_id, actor_email=admin.email)


# Admin endpoints: credential types

@app.get("/admin/credentials", response_model=List[CredentialType])
def list_credentials(admin: Identity = Depends(require_admin), svc: EngineServices = Depends(get_services)):
    return svc.store.list_credential_types()


@app.post("/admin/credentials", response_model=CredentialType)
def add_credential(
    request: CredentialTypeRequest, admin: Identity = Depends(require_admin), svc: EngineServices = Depends(get_services)
):
    return svc.engine.create_credential_type(request.name, request.description, actor_email=admin.email)


@app.patch("/admin/credentials/{credential_type_id}", response_model=CredentialType)
def edit_credential(
    credential_type_id: str,
    request: CredentialTypeUpdateRequest,
    admin: Identity = Depends(require_admin),
    svc: EngineServices = Depends(get_services),
):
    return svc.engine.update_credential_type(
        credential_type_id, request.name, request.description, actor_email=admin.email
    )


@app.delete("/admin/credentials/{credential_type_id}")
def delete_credential(
    credential_type_id: str, admin: Identity = Depends(require_admin), svc: EngineServices = Depends(get_services)
):
    svc.engine.delete_credential_type(credential_type_id, actor_email=admin.email)
    return {"ok": True}


# Admin endpoints: grants

@app.post("/admin/grants", response_model=OperationResult)
def assign_credential(
    request: AssignRequest, admin: Identity = Depends(require_admin), svc: EngineServices = Depends(get_services)
):
    identity_id = request.identity_id
    if not identity_id and request.email:
        identity = svc.store.get_identity_by_email(request.email)
        if identity is None:
            raise HTTPException(status_code=404, detail="User not found")
        identity_id = identity.id

    credential_type_id = request.credential_type_id
    if not credential_type_id and request.credential_name:
        credential_type = svc.store.get_credential_type_by_name(request.credential_name)
        if credential_type is None:
            raise HTTPException(status_code=404, detail="Credential not found")
        credential_type_id = credential_type.id

    if not identity_id or not credential_type_id:
        raise HTTPException(
            status_code=400, detail="Provide identity_id/credential_type_id or email/credential_name"
        )

    return svc.engine.assign_credential(identity_id, credential_type_id, actor_email=admin.email)


@app.post("/admin/grants/{grant_id}/revoke", response_model=OperationResult)
def revoke_grant(grant_id: str, admin: Identity = Depends(require_admin), svc: EngineServices = Depends(get_services)):
    return svc.engine.revoke_grant(grant_id, actor_email=admin.email)


@app.delete("/admin/grants/{grant_id}", response_model=OperationResult)
def delete_grant(grant_id: str, admin: Identity = Depends(require_admin), svc: EngineServices = Depends(get_services)):
    return svc.engine.delete_grant(grant_id, actor_email=admin.email)


# Admin endpoints: reporting

@app.get("/admin/stats")
def get_stats(admin: Identity = Depends(require_admin), svc: EngineServices = Depends(get_services)) -> Dict[str, Any]:
    return svc.reports.dashboard_stats()


@app.get("/admin/audit", response_model=List[AuditEntry])
def get_audit_logs(
    actor_email: Optional[str] = Query(None, description="Filter by actor email"),
    action: Optional[str] = Query(None, description="Filter by action"),
    category: Optional[AuditCategory] = Query(None, description="Filter by category"),
    severity: Optional[AuditSeverity] = Query(None, description="Filter by severity"),
    limit: int = Query(100, description="Maximum number of results"),
    admin: Identity = Depends(require_admin),
    svc: EngineServices = Depends(get_services),
):
    svc.flush()
    return svc.reports.activity_logs(
        actor_email=actor_email, action=action, category=category, severity=severity, limit=limit
    )


@app.get("/admin/reports/grants")
def get_grant_report(admin: Identity = Depends(require_admin), svc: EngineServices = Depends(get_services)):
    return svc.reports.grant_lifecycle_report()


@app.get("/admin/reports/identities")
def get_identity_report(admin: Identity = Depends(require_admin), svc: EngineServices = Depends(get_services)):
    return svc.reports.identity_activity_summary()


@app.get("/admin/reports/credentials")
def get_credential_report(admin: Identity = Depends(require_admin), svc: EngineServices = Depends(get_services)):
    return svc.reports.credential_status_summary()


@app.get("/admin/reports/audit")
def get_audit_summary(
    days: int = Query(30, ge=1, description="Number of days to summarize"),
    admin: Identity = Depends(require_admin),
    svc: EngineServices = Depends(get_services),
):
    svc.flush()
    return svc.reports.audit_summary(days)


def start_server(host: str = "0.0.0.0", port: int = 8000, reload: bool = False):
    """Start the FastAPI server."""
    uvicorn.run(
        "credential_engine.api.server:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info"
    )


if __name__ == "__main__":
    start_server()
