"""
api.py

REST API layer for the Teaching Project Lifecycle system.

Framework : FastAPI
Actor     : Authentication happens upstream.  The authenticated user is
            forwarded in request headers and resolved to an ActorContext
            by the get_actor dependency:

              X-Actor-Id           user UUID (required)
              X-Actor-Roles        comma-separated roles, e.g. "admin,teacher"
              X-Actor-Permissions  comma-separated permission codes

Structure
---------
  Routers (all prefixed under /api/v1)
  ├── /projects                            create / read / update
  │   ├── /{project_id}/status             lifecycle transitions (+ cascade)
  │   ├── /{project_id}/continuations      continue into a later term
  │   ├── /{project_id}/chain              continuation lineage
  │   ├── /{project_id}/history            audit trail
  │   └── /{project_id}/attachments        attachment metadata
  ├── /admin/projects                      administrator create / update
  ├── /attachments/{attachment_id}         remove an attachment
  ├── /terms/{term_id}/projects            projects of a term
  │   └── /staff/{staff_id}                projects of a staff member in a term
  └── /users/{user_id}/history             audit entries written by a user

Error handling
--------------
  NotFoundError           → 404
  AuthorizationError      → 403
  ConflictError           → 409
  OperationCancelledError → 503
  ApplicationError        → 422
  ValueError              → 422
  Unhandled               → 500 (FastAPI default)

Response envelope
-----------------
  Success  : { "data": <payload> }
  Error    : { "detail": "<message>" }

Running
-------
  uvicorn main:app --reload
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Path, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi_mcp import FastApiMCP
from pydantic import BaseModel, Field, field_validator

from application import (
    # Exceptions
    ApplicationError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    OperationCancelledError,
    # Actor
    ActorContext,
    # Commands
    AddAttachmentCommand,
    ChangeProjectStatusCommand,
    ContinueProjectCommand,
    CreateProjectAsAdminCommand,
    CreateProjectCommand,
    UpdateProjectAsAdminCommand,
    UpdateProjectCommand,
    # Use cases
    AddAttachmentUseCase,
    ChangeProjectStatusUseCase,
    ContinueProjectUseCase,
    CreateProjectAsAdminUseCase,
    CreateProjectUseCase,
    GetActorHistoryUseCase,
    GetContinuationChainUseCase,
    GetProjectHistoryUseCase,
    GetProjectUseCase,
    ListAttachmentsUseCase,
    ListProjectsByTermUseCase,
    ListProjectsForStaffUseCase,
    RemoveAttachmentUseCase,
    UpdateProjectAsAdminUseCase,
    UpdateProjectUseCase,
    AbstractUnitOfWork,
)
from config import load_settings
from infrastructure import InMemoryUnitOfWork, seed_demo_data
from logconfig import setup_logging
from model import AttachmentType, HistoryAction, ParticipantSyncItem, ProjectStatus
from service import AuditService

settings = load_settings()
setup_logging(settings)
logger = logging.getLogger(__name__)

_audit_svc = AuditService(settings.label_language)


# ---------------------------------------------------------------------------
# App bootstrap
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Teaching Project Lifecycle API",
    version="1.0.0",
    description=(
        "REST API for academic teaching projects: lifecycle status, staff "
        "assignments, participant rosters, continuation into later terms, "
        "cascade completion and the append-only audit trail."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def seed_catalog():
    """Load the demo term / staff / assignment catalog into the in-memory store."""
    if settings.seed_demo_data:
        seed_demo_data()


# ---------------------------------------------------------------------------
# Global exception handlers
# ---------------------------------------------------------------------------

@app.exception_handler(NotFoundError)
async def not_found_handler(request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(AuthorizationError)
async def authorization_handler(request, exc: AuthorizationError):
    return JSONResponse(status_code=403, content={"detail": str(exc)})


@app.exception_handler(ConflictError)
async def conflict_handler(request, exc: ConflictError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(OperationCancelledError)
async def cancelled_handler(request, exc: OperationCancelledError):
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(ApplicationError)
async def application_error_handler(request, exc: ApplicationError):
    logger.warning("Request rejected: %s", exc)
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(ValueError)
async def value_error_handler(request, exc: ValueError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_uow() -> AbstractUnitOfWork:
    """Returns the in-memory Unit of Work (no database required)."""
    return InMemoryUnitOfWork()


def _split(raw: Optional[str]) -> frozenset:
    if not raw:
        return frozenset()
    return frozenset(part.strip().lower() for part in raw.split(",") if part.strip())


def get_actor(
    x_actor_id: Optional[str] = Header(default=None),
    x_actor_roles: Optional[str] = Header(default=None),
    x_actor_permissions: Optional[str] = Header(default=None),
) -> ActorContext:
    """Resolve the forwarded identity headers into an ActorContext."""
    if not x_actor_id:
        raise HTTPException(status_code=401, detail="Missing X-Actor-Id header.")
    try:
        user_id = uuid.UUID(x_actor_id)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail="X-Actor-Id must be a UUID.") from exc
    return ActorContext(
        user_id=user_id,
        roles=_split(x_actor_roles),
        permissions=_split(x_actor_permissions),
    )


# ---------------------------------------------------------------------------
# Envelope helper
# ---------------------------------------------------------------------------

def _ok(data: Any) -> Dict:
    """Wrap a DTO or list of DTOs in the standard success envelope."""
    if dataclasses.is_dataclass(data):
        return {"data": dataclasses.asdict(data)}
    if isinstance(data, list):
        return {
            "data": [
                dataclasses.asdict(item) if dataclasses.is_dataclass(item) else item
                for item in data
            ]
        }
    return {"data": data}


# ===========================================================================
# REQUEST BODY SCHEMAS  (Pydantic v2)
# ===========================================================================

class ParticipantItem(BaseModel):
    id: Optional[uuid.UUID] = Field(
        default=None, description="Existing participant id; omit to add a new participant."
    )
    name: str = Field(..., max_length=200)

    def to_item(self) -> ParticipantSyncItem:
        return ParticipantSyncItem(name=self.name, id=self.id)


class CreateProjectRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=300)
    term_id: uuid.UUID
    staff_assignment_ids: List[uuid.UUID] = Field(default_factory=list)
    participant_names: List[str] = Field(default_factory=list)
    general_objective: Optional[str] = None
    specific_objectives: Optional[str] = None
    description: Optional[str] = None


class AdminCreateProjectRequest(CreateProjectRequest):
    responsible_staff_id: uuid.UUID


class UpdateProjectRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=300)
    general_objective: Optional[str] = None
    specific_objectives: Optional[str] = None
    description: Optional[str] = None
    responsible_staff_id: Optional[uuid.UUID] = None
    staff_assignment_ids: Optional[List[uuid.UUID]] = None
    participants: Optional[List[ParticipantItem]] = None
    expected_version: Optional[int] = Field(default=None, ge=0)


class AdminUpdateProjectRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=300)
    responsible_staff_id: uuid.UUID
    staff_assignment_ids: List[uuid.UUID]
    participants: List[ParticipantItem]
    general_objective: Optional[str] = None
    specific_objectives: Optional[str] = None
    description: Optional[str] = None
    expected_version: Optional[int] = Field(default=None, ge=0)


class ChangeStatusRequest(BaseModel):
    status: str = Field(
        ..., description="One of: proposal, in_progress, completed, archived"
    )
    expected_version: Optional[int] = Field(default=None, ge=0)

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        valid = {s.value for s in ProjectStatus}
        if v not in valid:
            raise ValueError(f"status must be one of: {sorted(valid)}")
        return v


class ContinueProjectRequest(BaseModel):
    target_term_id: uuid.UUID
    new_title: Optional[str] = Field(default=None, max_length=300)
    new_responsible_staff_id: Optional[uuid.UUID] = None
    staff_assignment_ids: List[uuid.UUID] = Field(default_factory=list)
    participant_names: List[str] = Field(default_factory=list)


class AddAttachmentRequest(BaseModel):
    type: str = Field(..., description="One of the AttachmentType enum values.")
    name: str = Field(..., min_length=1, max_length=300)
    file_key: str = Field(..., min_length=1, max_length=500)
    content_type: Optional[str] = None

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        valid = {t.value for t in AttachmentType}
        if v not in valid:
            raise ValueError(f"type must be one of: {sorted(valid)}")
        return v


# ===========================================================================
# ROUTERS
# ===========================================================================

api_v1 = APIRouter(prefix="/api/v1")


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

project_router = APIRouter(prefix="/projects", tags=["Projects"])


@project_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Create a project as its responsible staff member",
)
def create_project(
    body: CreateProjectRequest,
    actor: ActorContext = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    The acting user becomes the responsible staff.  Every staff assignment
    must be active, belong to the term, and belong to the acting user.
    """
    cmd = CreateProjectCommand(
        title=body.title,
        term_id=body.term_id,
        staff_assignment_ids=body.staff_assignment_ids,
        participant_names=body.participant_names,
        general_objective=body.general_objective,
        specific_objectives=body.specific_objectives,
        description=body.description,
    )
    return _ok(CreateProjectUseCase(_audit_svc).execute(cmd, actor, uow))


@project_router.get("/{project_id}", summary="Get a project with its catalog details")
def get_project(
    project_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetProjectUseCase(settings.label_language).execute(project_id, uow))


@project_router.put("/{project_id}", summary="Update a project")
def update_project(
    body: UpdateProjectRequest,
    project_id: uuid.UUID = Path(...),
    actor: ActorContext = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    Scalar fields are always applied.  Responsible staff, staff assignments
    and participants are only touched when present in the body.
    """
    cmd = UpdateProjectCommand(
        project_id=project_id,
        title=body.title,
        general_objective=body.general_objective,
        specific_objectives=body.specific_objectives,
        description=body.description,
        responsible_staff_id=body.responsible_staff_id,
        staff_assignment_ids=body.staff_assignment_ids,
        participants=(
            [p.to_item() for p in body.participants] if body.participants is not None else None
        ),
        expected_version=body.expected_version,
    )
    return _ok(UpdateProjectUseCase(_audit_svc).execute(cmd, actor, uow))


@project_router.post("/{project_id}/status", summary="Change the lifecycle status of a project")
def change_status(
    body: ChangeStatusRequest,
    project_id: uuid.UUID = Path(...),
    actor: ActorContext = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    Completing a project requires a formal document attachment and
    completes every project that continues it.
    """
    cmd = ChangeProjectStatusCommand(
        project_id=project_id,
        status=ProjectStatus(body.status),
        expected_version=body.expected_version,
    )
    return _ok(ChangeProjectStatusUseCase(_audit_svc).execute(cmd, actor, uow))


@project_router.post(
    "/{project_id}/continuations",
    status_code=status.HTTP_201_CREATED,
    summary="Continue a project into a later term",
)
def continue_project(
    body: ContinueProjectRequest,
    project_id: uuid.UUID = Path(...),
    actor: ActorContext = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = ContinueProjectCommand(
        source_project_id=project_id,
        target_term_id=body.target_term_id,
        new_title=body.new_title,
        new_responsible_staff_id=body.new_responsible_staff_id,
        staff_assignment_ids=body.staff_assignment_ids,
        participant_names=body.participant_names,
    )
    return _ok(ContinueProjectUseCase(_audit_svc).execute(cmd, actor, uow))


@project_router.get("/{project_id}/chain", summary="Continuation lineage, oldest first")
def get_chain(
    project_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetContinuationChainUseCase().execute(project_id, uow))


@project_router.get("/{project_id}/history", summary="Audit trail of a project, newest first")
def get_history(
    project_id: uuid.UUID = Path(...),
    action: Optional[HistoryAction] = Query(default=None),
    actor: ActorContext = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(
        GetProjectHistoryUseCase(settings.label_language).execute(project_id, actor, uow, action)
    )


@project_router.get("/{project_id}/attachments", summary="List non-deleted attachments")
def list_attachments(
    project_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(ListAttachmentsUseCase().execute(project_id, uow))


@project_router.post(
    "/{project_id}/attachments",
    status_code=status.HTTP_201_CREATED,
    summary="Register an uploaded attachment",
)
def add_attachment(
    body: AddAttachmentRequest,
    project_id: uuid.UUID = Path(...),
    actor: ActorContext = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = AddAttachmentCommand(
        project_id=project_id,
        type=AttachmentType(body.type),
        name=body.name,
        file_key=body.file_key,
        content_type=body.content_type,
    )
    return _ok(AddAttachmentUseCase(_audit_svc).execute(cmd, actor, uow))


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------

admin_router = APIRouter(prefix="/admin/projects", tags=["Administration"])


@admin_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Create a project on behalf of a staff member",
)
def admin_create_project(
    body: AdminCreateProjectRequest,
    actor: ActorContext = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = CreateProjectAsAdminCommand(
        title=body.title,
        term_id=body.term_id,
        staff_assignment_ids=body.staff_assignment_ids,
        participant_names=body.participant_names,
        general_objective=body.general_objective,
        specific_objectives=body.specific_objectives,
        description=body.description,
        responsible_staff_id=body.responsible_staff_id,
    )
    return _ok(CreateProjectAsAdminUseCase(_audit_svc).execute(cmd, actor, uow))


@admin_router.put("/{project_id}", summary="Update every field of a project")
def admin_update_project(
    body: AdminUpdateProjectRequest,
    project_id: uuid.UUID = Path(...),
    actor: ActorContext = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = UpdateProjectAsAdminCommand(
        project_id=project_id,
        title=body.title,
        responsible_staff_id=body.responsible_staff_id,
        staff_assignment_ids=body.staff_assignment_ids,
        participants=[p.to_item() for p in body.participants],
        general_objective=body.general_objective,
        specific_objectives=body.specific_objectives,
        description=body.description,
        expected_version=body.expected_version,
    )
    return _ok(UpdateProjectAsAdminUseCase(_audit_svc).execute(cmd, actor, uow))


# ---------------------------------------------------------------------------
# Attachments
# ---------------------------------------------------------------------------

attachment_router = APIRouter(prefix="/attachments", tags=["Attachments"])


@attachment_router.delete("/{attachment_id}", summary="Remove (soft-delete) an attachment")
def remove_attachment(
    attachment_id: uuid.UUID = Path(...),
    actor: ActorContext = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(RemoveAttachmentUseCase(_audit_svc).execute(attachment_id, actor, uow))


# ---------------------------------------------------------------------------
# Terms
# ---------------------------------------------------------------------------

term_router = APIRouter(prefix="/terms", tags=["Terms"])


@term_router.get("/{term_id}/projects", summary="List the projects of a term")
def list_term_projects(
    term_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(ListProjectsByTermUseCase().execute(term_id, uow))


@term_router.get(
    "/{term_id}/staff/{staff_id}/projects",
    summary="List the projects a staff member works on in a term",
)
def list_staff_projects(
    term_id: uuid.UUID = Path(...),
    staff_id: uuid.UUID = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(ListProjectsForStaffUseCase().execute(staff_id, term_id, uow))


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

user_router = APIRouter(prefix="/users", tags=["Audit Trail"])


@user_router.get("/{user_id}/history", summary="Audit entries written by a user")
def get_user_history(
    user_id: uuid.UUID = Path(...),
    actor: ActorContext = Depends(get_actor),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    return _ok(GetActorHistoryUseCase(settings.label_language).execute(user_id, actor, uow))


# ---------------------------------------------------------------------------
# Register all routers
# ---------------------------------------------------------------------------

api_v1.include_router(project_router)
api_v1.include_router(admin_router)
api_v1.include_router(attachment_router)
api_v1.include_router(term_router)
api_v1.include_router(user_router)

app.include_router(api_v1)

# ---------------------------------------------------------------------------
# MCP Server: exposes all API routes as MCP tools
# Accessible at: http://localhost:8000/mcp
# ---------------------------------------------------------------------------
mcp = FastApiMCP(app)
mcp.mount()


# ===========================================================================
# Health check
# ===========================================================================

@app.get("/health", tags=["Health"], summary="Service health check")
def health():
    return {"status": "ok"}


# ===========================================================================
# OpenAPI tag descriptions
# ===========================================================================

tags_metadata = [
    {
        "name": "Projects",
        "description": (
            "Teaching projects within a term.  Creating a project makes the "
            "acting staff member responsible for it.  Every change is recorded "
            "in the project's audit trail."
        ),
    },
    {
        "name": "Administration",
        "description": "Administrator-only create and full update of any project.",
    },
    {
        "name": "Attachments",
        "description": (
            "Attachment metadata.  A completed project must keep at least one "
            "formal document."
        ),
    },
    {
        "name": "Terms",
        "description": "Project listings per term and per staff member.",
    },
    {
        "name": "Audit Trail",
        "description": "Immutable, append-only log of every project mutation.",
    },
]

app.openapi_tags = tags_metadata
