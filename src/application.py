"""
application.py

Application layer for the Teaching Project Lifecycle system.

Overview
--------
The application layer sits between the presentation layer (API) and the
domain / service layer.  It is responsible for:

  1. Defining clean output DTOs (dataclasses) that carry only the data
     the presentation layer needs; no raw domain objects are leaked upward.
  2. Declaring abstract Repository and lookup interfaces so that the
     application layer remains fully persistence-agnostic (implementations
     live in infrastructure.py).
  3. Declaring the UnitOfWork abstraction so that the aggregate write(s) and
     the history entries of one use case commit or roll back together.
  4. Implementing Use Case handlers, one class per user-facing operation,
     that validate against external catalogs, drive aggregate mutations and
     append audit history in the correct order.

Structure
---------
Actor
    ActorContext

DTOs
    ParticipantDTO, AssignmentDTO, ProjectDTO, ProjectDetailDTO
    StatusChangeResultDTO, ContinuationResultDTO
    HistoryEntryDTO, AttachmentDTO

Repository / lookup interfaces
    AbstractProjectRepository
    AbstractHistoryRepository
    AbstractTermLookup
    AbstractStaffAssignmentLookup
    AbstractUserLookup
    AbstractAttachmentRepository

Unit of Work
    AbstractUnitOfWork

Use Cases
    --- Project lifecycle ---
    CreateProjectUseCase, CreateProjectAsAdminUseCase
    UpdateProjectUseCase, UpdateProjectAsAdminUseCase
    ChangeProjectStatusUseCase  (+ CascadeCompleter)
    ContinueProjectUseCase

    --- Queries ---
    GetProjectUseCase
    ListProjectsByTermUseCase
    ListProjectsForStaffUseCase
    GetContinuationChainUseCase
    GetProjectHistoryUseCase
    GetActorHistoryUseCase

    --- Attachments ---
    AddAttachmentUseCase
    RemoveAttachmentUseCase
    ListAttachmentsUseCase

Design notes
------------
- Use cases return DTOs only; no domain objects cross the application boundary.
- Each mutating use case runs inside one `with uow:` block and receives the
  acting user as an ActorContext.  Role checks go through ActorContext only.
- Domain ValueErrors raised while orchestrating are re-raised as
  ValidationError.
- An optional threading.Event may be passed to cancel a use case
  cooperatively; it is checked before every persistence step.
- All timestamps flowing out are ISO-8601 strings (UTC).
"""

from __future__ import annotations

import abc
import contextlib
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import FrozenSet, Iterator, List, Optional, Sequence

from model import (
    Attachment,
    AttachmentType,
    HistoryAction,
    HistoryEntry,
    Participant,
    ParticipantSyncItem,
    Project,
    ProjectStatus,
    StaffAssignment,
    StaffMember,
    Term,
    action_label,
    status_label,
)
from service import (
    AuditService,
    LifecycleService,
    assignment_sets_differ,
    participant_rosters_differ,
    reconcile_participants,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ApplicationError(Exception):
    """Raised when a use case cannot complete due to a business rule violation."""


class NotFoundError(ApplicationError):
    """Raised when a referenced project, term, staff member or assignment does not exist."""


class ValidationError(ApplicationError):
    """Raised for malformed input, uniqueness violations, invalid transitions or unmet gates."""


class AuthorizationError(ApplicationError):
    """Raised when the actor is neither an administrator nor the project's responsible staff."""


class ConflictError(ApplicationError):
    """Raised when a project was modified by someone else since it was loaded."""


class OperationCancelledError(ApplicationError):
    """Raised when a use case is cancelled before one of its persistence steps."""


# ---------------------------------------------------------------------------
# Actor
# ---------------------------------------------------------------------------

ROLE_ADMIN = "admin"
ROLE_TEACHER = "teacher"
ROLE_INTERNAL_VIEWER = "internal_viewer"

PERMISSION_VIEW_ALL_HISTORY = "projects.history.view_all"


@dataclass(frozen=True)
class ActorContext:
    """
    The authenticated user a use case runs on behalf of.

    Authentication happens outside the core; this object only answers
    capability questions.
    """
    user_id: uuid.UUID
    roles: FrozenSet[str] = frozenset()
    permissions: FrozenSet[str] = frozenset()

    def is_admin(self) -> bool:
        return ROLE_ADMIN in self.roles

    def is_responsible_for(self, project: Project) -> bool:
        return project.responsible_staff_id == self.user_id

    def can_manage(self, project: Project) -> bool:
        return self.is_admin() or self.is_responsible_for(project)

    def has_permission(self, code: str) -> bool:
        return self.is_admin() or code in self.permissions


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _fmt(dt: Optional[datetime]) -> Optional[str]:
    """Convert a datetime to an ISO-8601 UTC string, or None."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def _opt_id(value: Optional[uuid.UUID]) -> Optional[str]:
    return str(value) if value else None


# ===========================================================================
# DTO DEFINITIONS
# ===========================================================================

@dataclass
class ParticipantDTO:
    id: str
    name: str


@dataclass
class AssignmentDTO:
    id: str
    staff_id: Optional[str]
    staff_name: Optional[str]
    subject_code: Optional[str]
    subject_name: Optional[str]
    is_active: Optional[bool]


@dataclass
class ProjectDTO:
    id: str
    title: str
    term_id: str
    responsible_staff_id: str
    status: str
    general_objective: Optional[str]
    specific_objectives: Optional[str]
    description: Optional[str]
    continuation_of: Optional[str]
    continued_by: Optional[str]
    staff_assignment_ids: List[str]
    participants: List[ParticipantDTO]
    created_at: str
    updated_at: Optional[str]
    version: int


@dataclass
class ProjectDetailDTO(ProjectDTO):
    term_code: Optional[str] = None
    responsible_staff_name: Optional[str] = None
    status_label: Optional[str] = None
    assignments: List[AssignmentDTO] = field(default_factory=list)


@dataclass
class StatusChangeResultDTO:
    project: ProjectDTO
    previous_status: str
    cascaded_project_ids: List[str]


@dataclass
class ContinuationResultDTO:
    source: ProjectDTO
    successor: ProjectDTO


@dataclass
class HistoryEntryDTO:
    id: str
    project_id: str
    actor_id: str
    actor_name: Optional[str]
    occurred_at: str
    action: str
    action_label: str
    old_value: Optional[str]
    new_value: Optional[str]
    note: Optional[str]


@dataclass
class AttachmentDTO:
    id: str
    project_id: str
    type: str
    name: str
    file_key: str
    content_type: Optional[str]
    uploaded_by_id: str
    uploaded_at: str
    is_deleted: bool
    deleted_at: Optional[str]


# ===========================================================================
# DTO ASSEMBLERS
# ===========================================================================

class _Assembler:
    """Converts domain model instances into DTOs."""

    @staticmethod
    def participant(p: Participant) -> ParticipantDTO:
        return ParticipantDTO(id=str(p.id), name=p.name)

    @staticmethod
    def project(p: Project) -> ProjectDTO:
        return ProjectDTO(
            id=str(p.id),
            title=p.title,
            term_id=str(p.term_id),
            responsible_staff_id=str(p.responsible_staff_id),
            status=p.status.value,
            general_objective=p.general_objective,
            specific_objectives=p.specific_objectives,
            description=p.description,
            continuation_of=_opt_id(p.continuation_of),
            continued_by=_opt_id(p.continued_by),
            staff_assignment_ids=[str(i) for i in p.assignment_ids_sorted()],
            participants=[
                _Assembler.participant(x)
                for x in sorted(p.participants, key=lambda x: x.name.casefold())
            ],
            created_at=_fmt(p.created_at),
            updated_at=_fmt(p.updated_at),
            version=p.version,
        )

    @staticmethod
    def assignment(assignment_id: uuid.UUID, a: Optional[StaffAssignment]) -> AssignmentDTO:
        if a is None:
            return AssignmentDTO(
                id=str(assignment_id), staff_id=None, staff_name=None,
                subject_code=None, subject_name=None, is_active=None,
            )
        return AssignmentDTO(
            id=str(a.id),
            staff_id=str(a.staff_id),
            staff_name=a.staff_name,
            subject_code=a.subject_code,
            subject_name=a.subject_name,
            is_active=a.is_active,
        )

    @staticmethod
    def project_detail(
        p: Project,
        term: Optional[Term],
        responsible: Optional[StaffMember],
        assignments: Sequence[AssignmentDTO],
        language: str,
    ) -> ProjectDetailDTO:
        base = _Assembler.project(p)
        return ProjectDetailDTO(
            **base.__dict__,
            term_code=term.code if term else None,
            responsible_staff_name=responsible.name if responsible else None,
            status_label=status_label(p.status, language),
            assignments=list(assignments),
        )

    @staticmethod
    def history(e: HistoryEntry, actor: Optional[StaffMember], language: str) -> HistoryEntryDTO:
        return HistoryEntryDTO(
            id=str(e.id),
            project_id=str(e.project_id),
            actor_id=str(e.actor_id),
            actor_name=actor.name if actor else None,
            occurred_at=_fmt(e.occurred_at),
            action=e.action.value,
            action_label=action_label(e.action, language),
            old_value=e.old_value,
            new_value=e.new_value,
            note=e.note,
        )

    @staticmethod
    def attachment(a: Attachment) -> AttachmentDTO:
        return AttachmentDTO(
            id=str(a.id),
            project_id=str(a.project_id),
            type=a.type.value,
            name=a.name,
            file_key=a.file_key,
            content_type=a.content_type,
            uploaded_by_id=str(a.uploaded_by_id),
            uploaded_at=_fmt(a.uploaded_at),
            is_deleted=a.is_deleted,
            deleted_at=_fmt(a.deleted_at),
        )


# ===========================================================================
# REPOSITORY INTERFACES
# ===========================================================================

class AbstractProjectRepository(abc.ABC):
    """
    Persistence for the Project aggregate.

    `update` and `update_basic` compare the project's `version` with the
    stored one, raise ConflictError on mismatch, and advance it on success.
    `update_basic` writes scalar fields, status and links only; the
    assignment set and participant roster are left untouched.
    """
    @abc.abstractmethod
    def get(self, project_id: uuid.UUID) -> Optional[Project]: ...
    @abc.abstractmethod
    def list_for_term(self, term_id: uuid.UUID) -> List[Project]: ...
    @abc.abstractmethod
    def list_for_responsible_in_term(self, staff_id: uuid.UUID, term_id: uuid.UUID) -> List[Project]: ...
    @abc.abstractmethod
    def list_for_staff_assignment(self, assignment_id: uuid.UUID) -> List[Project]: ...
    @abc.abstractmethod
    def list_continuations_of(self, project_id: uuid.UUID) -> List[Project]: ...
    @abc.abstractmethod
    def title_exists_in_term(
        self, title: str, term_id: uuid.UUID, exclude_id: Optional[uuid.UUID] = None
    ) -> bool: ...
    @abc.abstractmethod
    def add(self, project: Project) -> None: ...
    @abc.abstractmethod
    def update(self, project: Project) -> None: ...
    @abc.abstractmethod
    def update_basic(self, project: Project) -> None: ...


class AbstractHistoryRepository(abc.ABC):
    """Append-only.  List methods return entries newest first."""
    @abc.abstractmethod
    def append(self, entry: HistoryEntry) -> None: ...
    @abc.abstractmethod
    def append_many(self, entries: Sequence[HistoryEntry]) -> None: ...
    @abc.abstractmethod
    def list_for_project(self, project_id: uuid.UUID) -> List[HistoryEntry]: ...
    @abc.abstractmethod
    def list_for_project_and_action(
        self, project_id: uuid.UUID, action: HistoryAction
    ) -> List[HistoryEntry]: ...
    @abc.abstractmethod
    def list_for_actor(self, actor_id: uuid.UUID) -> List[HistoryEntry]: ...


class AbstractTermLookup(abc.ABC):
    @abc.abstractmethod
    def get(self, term_id: uuid.UUID) -> Optional[Term]: ...


class AbstractStaffAssignmentLookup(abc.ABC):
    @abc.abstractmethod
    def get(self, assignment_id: uuid.UUID) -> Optional[StaffAssignment]: ...
    @abc.abstractmethod
    def list_for_staff(self, staff_id: uuid.UUID) -> List[StaffAssignment]: ...


class AbstractUserLookup(abc.ABC):
    @abc.abstractmethod
    def get(self, user_id: uuid.UUID) -> Optional[StaffMember]: ...


class AbstractAttachmentRepository(abc.ABC):
    @abc.abstractmethod
    def get(self, attachment_id: uuid.UUID) -> Optional[Attachment]: ...
    @abc.abstractmethod
    def list_for_project(self, project_id: uuid.UUID, include_deleted: bool = False) -> List[Attachment]: ...
    @abc.abstractmethod
    def count_by_type(
        self, project_id: uuid.UUID, kind: AttachmentType, include_deleted: bool = False
    ) -> int: ...
    @abc.abstractmethod
    def add(self, attachment: Attachment) -> None: ...
    @abc.abstractmethod
    def update(self, attachment: Attachment) -> None: ...


# ===========================================================================
# UNIT OF WORK
# ===========================================================================

class AbstractUnitOfWork(abc.ABC):
    """
    Groups all repositories under a single transactional boundary.
    Use as a context manager:

        with uow:
            uow.projects.update(project)
            uow.history.append(entry)
            uow.commit()

    Leaving the block with an exception rolls back every write made inside it.
    """
    projects: AbstractProjectRepository
    history: AbstractHistoryRepository
    terms: AbstractTermLookup
    staff_assignments: AbstractStaffAssignmentLookup
    users: AbstractUserLookup
    attachments: AbstractAttachmentRepository

    def __enter__(self) -> "AbstractUnitOfWork":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type:
            self.rollback()
        else:
            self.commit()

    @abc.abstractmethod
    def commit(self) -> None: ...

    @abc.abstractmethod
    def rollback(self) -> None: ...


# ===========================================================================
# USE CASE HELPERS
# ===========================================================================

_lifecycle_svc = LifecycleService()


@contextlib.contextmanager
def _rule_violations() -> Iterator[None]:
    """Re-raise domain ValueErrors as ValidationError."""
    try:
        yield
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def _check_cancelled(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise OperationCancelledError("Operation cancelled before persisting changes.")


def _check_version(project: Project, expected_version: Optional[int]) -> None:
    if expected_version is not None and expected_version != project.version:
        raise ConflictError(
            f"Project {project.id} is at version {project.version}, "
            f"expected {expected_version}.  Reload and retry."
        )


def _get_project_or_raise(uow: AbstractUnitOfWork, project_id: uuid.UUID) -> Project:
    project = uow.projects.get(project_id)
    if project is None:
        raise NotFoundError(f"Project {project_id} not found.")
    return project


def _get_term_or_raise(uow: AbstractUnitOfWork, term_id: uuid.UUID) -> Term:
    term = uow.terms.get(term_id)
    if term is None:
        raise NotFoundError(f"Term {term_id} not found.")
    return term


def _get_active_term_or_raise(uow: AbstractUnitOfWork, term_id: uuid.UUID) -> Term:
    term = _get_term_or_raise(uow, term_id)
    if not term.is_active:
        raise ValidationError(f"Term '{term.code}' is not active.")
    return term


def _get_staff_or_raise(uow: AbstractUnitOfWork, staff_id: uuid.UUID) -> StaffMember:
    staff = uow.users.get(staff_id)
    if staff is None:
        raise NotFoundError(f"Staff member {staff_id} not found.")
    return staff


def _require_admin(actor: ActorContext) -> None:
    if not actor.is_admin():
        raise AuthorizationError(f"User {actor.user_id} is not an administrator.")


def _require_manager(actor: ActorContext, project: Project) -> None:
    if not actor.can_manage(project):
        raise AuthorizationError(
            f"User {actor.user_id} is neither an administrator nor the "
            f"responsible staff of project {project.id}."
        )


def _ensure_title_unique(
    uow: AbstractUnitOfWork,
    title: str,
    term: Term,
    exclude_id: Optional[uuid.UUID] = None,
) -> None:
    if uow.projects.title_exists_in_term(title, term.id, exclude_id=exclude_id):
        raise ValidationError(
            f"A project titled '{title.strip()}' already exists in term '{term.code}'."
        )


def _validate_assignments(
    uow: AbstractUnitOfWork,
    assignment_ids: Sequence[uuid.UUID],
    term: Term,
    owner_id: Optional[uuid.UUID] = None,
) -> List[StaffAssignment]:
    """
    Each assignment must exist, belong to `term` and be active; when
    `owner_id` is given it must also belong to that staff member.
    """
    result: List[StaffAssignment] = []
    for assignment_id in assignment_ids:
        assignment = uow.staff_assignments.get(assignment_id)
        if assignment is None:
            raise NotFoundError(f"Staff assignment {assignment_id} not found.")
        if assignment.term_id != term.id:
            raise ValidationError(
                f"Staff assignment {assignment_id} does not belong to term '{term.code}'."
            )
        if not assignment.is_active:
            raise ValidationError(f"Staff assignment {assignment_id} is not active.")
        if owner_id is not None and assignment.staff_id != owner_id:
            raise ValidationError(
                f"Staff assignment {assignment_id} does not belong to staff member {owner_id}."
            )
        result.append(assignment)
    return result


def _describe_assignments(uow: AbstractUnitOfWork, assignment_ids: Sequence[uuid.UUID]) -> str:
    parts = []
    for assignment_id in assignment_ids:
        a = uow.staff_assignments.get(assignment_id)
        parts.append(f"{a.subject_name} ({a.staff_name})" if a else str(assignment_id))
    return ", ".join(parts) if parts else "No assignments"


def _staff_name(uow: AbstractUnitOfWork, staff_id: uuid.UUID) -> str:
    staff = uow.users.get(staff_id)
    return staff.name if staff else str(staff_id)


class _UseCase:
    """Base for use cases that write audit history."""

    def __init__(self, audit: Optional[AuditService] = None):
        self.audit = audit or AuditService()


# ===========================================================================
# USE CASES: CREATE
# ===========================================================================

@dataclass
class CreateProjectCommand:
    title: str
    term_id: uuid.UUID
    staff_assignment_ids: List[uuid.UUID] = field(default_factory=list)
    participant_names: List[str] = field(default_factory=list)
    general_objective: Optional[str] = None
    specific_objectives: Optional[str] = None
    description: Optional[str] = None


@dataclass
class CreateProjectAsAdminCommand(CreateProjectCommand):
    responsible_staff_id: Optional[uuid.UUID] = None


class CreateProjectUseCase(_UseCase):
    """
    Create a project owned by the acting staff member.  Every staff
    assignment must belong to the actor.
    """

    def execute(
        self,
        cmd: CreateProjectCommand,
        actor: ActorContext,
        uow: AbstractUnitOfWork,
        cancel: Optional[threading.Event] = None,
    ) -> ProjectDTO:
        with uow:
            term = _get_active_term_or_raise(uow, cmd.term_id)
            _ensure_title_unique(uow, cmd.title, term)
            _validate_assignments(uow, cmd.staff_assignment_ids, term, owner_id=actor.user_id)
            project = _build_project(cmd, term, actor.user_id)
            note = (
                f"Project created with {len(project.staff_assignment_ids)} assignments "
                f"and {len(project.participants)} participants."
            )
            _check_cancelled(cancel)
            uow.projects.add(project)
            uow.history.append(self.audit.created(project, actor.user_id, term.code, note))
            uow.commit()
            logger.info("Project created. project_id=%s actor=%s", project.id, actor.user_id)
            return _Assembler.project(project)


class CreateProjectAsAdminUseCase(_UseCase):
    """Create a project on behalf of any existing staff member (administrators only)."""

    def execute(
        self,
        cmd: CreateProjectAsAdminCommand,
        actor: ActorContext,
        uow: AbstractUnitOfWork,
        cancel: Optional[threading.Event] = None,
    ) -> ProjectDTO:
        _require_admin(actor)
        if cmd.responsible_staff_id is None:
            raise ValidationError("responsible_staff_id is required.")
        with uow:
            term = _get_active_term_or_raise(uow, cmd.term_id)
            responsible = _get_staff_or_raise(uow, cmd.responsible_staff_id)
            _ensure_title_unique(uow, cmd.title, term)
            _validate_assignments(uow, cmd.staff_assignment_ids, term)
            project = _build_project(cmd, term, responsible.id)
            note = (
                f"Project created by administrator. Responsible: {responsible.name}, "
                f"Assignments: {len(project.staff_assignment_ids)}, "
                f"Participants: {len(project.participants)}"
            )
            _check_cancelled(cancel)
            uow.projects.add(project)
            uow.history.append(self.audit.created(project, actor.user_id, term.code, note))
            uow.commit()
            logger.info(
                "Project created by admin. project_id=%s actor=%s responsible=%s",
                project.id, actor.user_id, responsible.id,
            )
            return _Assembler.project(project)


def _build_project(cmd: CreateProjectCommand, term: Term, responsible_id: uuid.UUID) -> Project:
    with _rule_violations():
        project = Project.create(
            title=cmd.title,
            term_id=term.id,
            responsible_staff_id=responsible_id,
            general_objective=cmd.general_objective,
            specific_objectives=cmd.specific_objectives,
            description=cmd.description,
        )
        project.set_staff_assignments(cmd.staff_assignment_ids)
        project.set_participants(cmd.participant_names)
    return project


# ===========================================================================
# USE CASES: UPDATE
# ===========================================================================

@dataclass
class UpdateProjectCommand:
    """
    Full form update of the scalar fields.  `responsible_staff_id`,
    `staff_assignment_ids` and `participants` are left unchanged when None.
    """
    project_id: uuid.UUID
    title: str
    general_objective: Optional[str] = None
    specific_objectives: Optional[str] = None
    description: Optional[str] = None
    responsible_staff_id: Optional[uuid.UUID] = None
    staff_assignment_ids: Optional[List[uuid.UUID]] = None
    participants: Optional[List[ParticipantSyncItem]] = None
    expected_version: Optional[int] = None


@dataclass
class UpdateProjectAsAdminCommand:
    """Administrator update: every field is supplied; an empty roster removes all participants."""
    project_id: uuid.UUID
    title: str
    responsible_staff_id: uuid.UUID
    staff_assignment_ids: List[uuid.UUID]
    participants: List[ParticipantSyncItem]
    general_objective: Optional[str] = None
    specific_objectives: Optional[str] = None
    description: Optional[str] = None
    expected_version: Optional[int] = None


class _ProjectUpdater:
    """
    Field-by-field diff-and-record over one loaded project.

    Each apply_* method compares the proposed value with the current one
    and, on a genuine change, mutates the aggregate and queues one history
    entry whose old value is captured before the mutation.
    """

    def __init__(self, uow: AbstractUnitOfWork, project: Project, actor: ActorContext, audit: AuditService):
        self.uow = uow
        self.project = project
        self.actor = actor
        self.audit = audit
        self.entries: List[HistoryEntry] = []
        self.changed = False        # not every mutation produces an entry
        self._term: Optional[Term] = None

    @property
    def term(self) -> Term:
        if self._term is None:
            self._term = _get_term_or_raise(self.uow, self.project.term_id)
        return self._term

    def _record(self, action: HistoryAction, old: Optional[str], new: Optional[str], note: Optional[str] = None) -> None:
        self.changed = True
        self.entries.append(
            self.audit.record(self.project.id, self.actor.user_id, action, old, new, note)
        )

    def _check_unlocked(self, what: str) -> None:
        if self.project.is_edit_locked:
            raise ValidationError(
                f"Cannot change {what} of project {self.project.id} while it is "
                f"{self.project.status.value}."
            )

    def apply_title(self, title: str) -> None:
        new = (title or "").strip()
        if new == self.project.title:
            return
        _ensure_title_unique(self.uow, new, self.term, exclude_id=self.project.id)
        old = self.project.title
        with _rule_violations():
            self.project.update_title(new)
        self._record(HistoryAction.TITLE_UPDATED, old, self.project.title)

    def apply_text(self, action: HistoryAction, attr: str, value: Optional[str]) -> None:
        new = (value or "").strip() or None
        old = getattr(self.project, attr)
        if new == old:
            return
        getattr(self.project, f"update_{attr}")(new)
        self._record(action, old, new)

    def apply_responsible(self, staff_id: Optional[uuid.UUID]) -> None:
        if staff_id is None or staff_id == self.project.responsible_staff_id:
            return
        self._check_unlocked("the responsible staff")
        new_staff = _get_staff_or_raise(self.uow, staff_id)
        old_id = self.project.responsible_staff_id
        old_name = _staff_name(self.uow, old_id)
        with _rule_violations():
            self.project.change_responsible_staff(new_staff.id)
        self._record(
            HistoryAction.RESPONSIBLE_STAFF_CHANGED,
            old_name,
            new_staff.name,
            f"Previous staff: {old_id}, New staff: {new_staff.name}",
        )

    def apply_assignments(self, assignment_ids: Optional[Sequence[uuid.UUID]]) -> None:
        if assignment_ids is None:
            return
        _validate_assignments(self.uow, assignment_ids, self.term)
        if not assignment_sets_differ(self.project.staff_assignment_ids, assignment_ids):
            return
        self._check_unlocked("the staff assignments")
        old = _describe_assignments(self.uow, self.project.assignment_ids_sorted())
        with _rule_violations():
            self.project.set_staff_assignments(assignment_ids)
        self._record(
            HistoryAction.ASSIGNMENTS_UPDATED,
            old,
            _describe_assignments(self.uow, self.project.assignment_ids_sorted()),
            f"Total assignments: {len(self.project.staff_assignment_ids)}",
        )

    def apply_participants(self, items: Optional[Sequence[ParticipantSyncItem]]) -> None:
        if items is None:
            return
        with _rule_violations():
            _, preview = reconcile_participants(self.project.participants, items)
        if not preview.changed:
            return
        self._check_unlocked("the participants")
        old_names = self.project.participant_names_sorted()
        with _rule_violations():
            result = self.project.sync_participants(items)
        self.changed = True
        new_names = self.project.participant_names_sorted()
        if participant_rosters_differ(old_names, new_names):
            self.entries.append(
                self.audit.participants_updated(
                    self.project.id, self.actor.user_id, old_names, new_names, result
                )
            )


class _UpdateProjectBase(_UseCase):

    def _apply(
        self,
        cmd,
        actor: ActorContext,
        uow: AbstractUnitOfWork,
        cancel: Optional[threading.Event],
    ) -> ProjectDTO:
        project = _get_project_or_raise(uow, cmd.project_id)
        _require_manager(actor, project)
        _check_version(project, cmd.expected_version)

        updater = _ProjectUpdater(uow, project, actor, self.audit)
        updater.apply_title(cmd.title)
        updater.apply_text(HistoryAction.DESCRIPTION_UPDATED, "description", cmd.description)
        updater.apply_text(
            HistoryAction.GENERAL_OBJECTIVE_UPDATED, "general_objective", cmd.general_objective
        )
        updater.apply_text(
            HistoryAction.SPECIFIC_OBJECTIVES_UPDATED, "specific_objectives", cmd.specific_objectives
        )
        updater.apply_responsible(cmd.responsible_staff_id)
        updater.apply_assignments(cmd.staff_assignment_ids)
        updater.apply_participants(cmd.participants)

        if updater.changed:
            _check_cancelled(cancel)
            uow.projects.update(project)
            uow.history.append_many(updater.entries)
            logger.info(
                "Project updated. project_id=%s actor=%s changes=%d",
                project.id, actor.user_id, len(updater.entries),
            )
        return _Assembler.project(project)


class UpdateProjectUseCase(_UpdateProjectBase):
    """Update a project as its responsible staff (or an administrator)."""

    def execute(
        self,
        cmd: UpdateProjectCommand,
        actor: ActorContext,
        uow: AbstractUnitOfWork,
        cancel: Optional[threading.Event] = None,
    ) -> ProjectDTO:
        with uow:
            result = self._apply(cmd, actor, uow, cancel)
            uow.commit()
            return result


class UpdateProjectAsAdminUseCase(_UpdateProjectBase):
    """Administrator update with every field supplied."""

    def execute(
        self,
        cmd: UpdateProjectAsAdminCommand,
        actor: ActorContext,
        uow: AbstractUnitOfWork,
        cancel: Optional[threading.Event] = None,
    ) -> ProjectDTO:
        _require_admin(actor)
        with uow:
            result = self._apply(cmd, actor, uow, cancel)
            uow.commit()
            return result


# ===========================================================================
# USE CASES: STATUS & CASCADE
# ===========================================================================

class CascadeCompleter:
    """
    Completes every transitive continuation descendant of a project that
    has just been completed.

    Runs inside the caller's unit of work, so a failure anywhere in the
    chain rolls back the whole status change.  A visited set guards
    against revisiting a project.  Archived descendants cannot be
    completed; they are skipped but the walk continues to their successors.
    """

    def __init__(self, audit: AuditService):
        self.audit = audit

    def complete_descendants(
        self,
        origin: Project,
        actor_id: uuid.UUID,
        uow: AbstractUnitOfWork,
        cancel: Optional[threading.Event] = None,
    ) -> List[uuid.UUID]:
        completed: List[uuid.UUID] = []
        self._walk(origin.id, actor_id, uow, {origin.id}, completed, cancel)
        return completed

    def _walk(
        self,
        origin_id: uuid.UUID,
        actor_id: uuid.UUID,
        uow: AbstractUnitOfWork,
        visited: set,
        completed: List[uuid.UUID],
        cancel: Optional[threading.Event],
    ) -> None:
        for child in uow.projects.list_continuations_of(origin_id):
            if child.id in visited:
                logger.warning(
                    "Cascade revisited project; skipping. project_id=%s origin=%s",
                    child.id, origin_id,
                )
                continue
            visited.add(child.id)

            if child.status == ProjectStatus.COMPLETED:
                continue
            if child.status == ProjectStatus.ARCHIVED:
                logger.info(
                    "Cascade skipped archived project. project_id=%s origin=%s",
                    child.id, origin_id,
                )
                self._walk(child.id, actor_id, uow, visited, completed, cancel)
                continue

            old = child.status
            with _rule_violations():
                child.change_status(ProjectStatus.COMPLETED)
            _check_cancelled(cancel)
            uow.projects.update_basic(child)
            uow.history.append(self.audit.cascade_completed(child.id, actor_id, old, origin_id))
            completed.append(child.id)
            logger.info(
                "Project completed in cascade. project_id=%s origin=%s", child.id, origin_id
            )
            self._walk(child.id, actor_id, uow, visited, completed, cancel)


@dataclass
class ChangeProjectStatusCommand:
    project_id: uuid.UUID
    status: ProjectStatus
    expected_version: Optional[int] = None


class ChangeProjectStatusUseCase(_UseCase):
    """
    Move a project to another lifecycle status.

    Completing a project requires at least one non-deleted formal document
    attachment and completes its whole continuation chain.  Requesting the
    current status changes nothing and writes no history.
    """

    def execute(
        self,
        cmd: ChangeProjectStatusCommand,
        actor: ActorContext,
        uow: AbstractUnitOfWork,
        cancel: Optional[threading.Event] = None,
    ) -> StatusChangeResultDTO:
        with uow:
            project = _get_project_or_raise(uow, cmd.project_id)
            _require_manager(actor, project)
            _check_version(project, cmd.expected_version)

            with _rule_violations():
                target = ProjectStatus(cmd.status)
                _lifecycle_svc.check_status_request(project, target)

            previous = project.status
            if target == previous:
                return StatusChangeResultDTO(
                    project=_Assembler.project(project),
                    previous_status=previous.value,
                    cascaded_project_ids=[],
                )

            if target == ProjectStatus.COMPLETED:
                documents = uow.attachments.count_by_type(project.id, AttachmentType.FORMAL_DOCUMENT)
                with _rule_violations():
                    _lifecycle_svc.check_completion_gate(project, documents)

            with _rule_violations():
                project.change_status(target)
            _check_cancelled(cancel)
            uow.projects.update_basic(project)
            uow.history.append(
                self.audit.status_changed(project.id, actor.user_id, previous, target)
            )

            cascaded: List[uuid.UUID] = []
            if target == ProjectStatus.COMPLETED:
                cascaded = CascadeCompleter(self.audit).complete_descendants(
                    project, actor.user_id, uow, cancel
                )
            uow.commit()
            logger.info(
                "Project status changed. project_id=%s actor=%s from=%s to=%s cascaded=%d",
                project.id, actor.user_id, previous.value, target.value, len(cascaded),
            )
            return StatusChangeResultDTO(
                project=_Assembler.project(project),
                previous_status=previous.value,
                cascaded_project_ids=[str(i) for i in cascaded],
            )


# ===========================================================================
# USE CASES: CONTINUATION
# ===========================================================================

@dataclass
class ContinueProjectCommand:
    """
    Carry a project forward into a later term.  `new_title` and
    `new_responsible_staff_id` fall back to the source project's values.
    """
    source_project_id: uuid.UUID
    target_term_id: uuid.UUID
    new_title: Optional[str] = None
    new_responsible_staff_id: Optional[uuid.UUID] = None
    staff_assignment_ids: List[uuid.UUID] = field(default_factory=list)
    participant_names: List[str] = field(default_factory=list)


class ContinueProjectUseCase(_UseCase):

    def execute(
        self,
        cmd: ContinueProjectCommand,
        actor: ActorContext,
        uow: AbstractUnitOfWork,
        cancel: Optional[threading.Event] = None,
    ) -> ContinuationResultDTO:
        with uow:
            source = _get_project_or_raise(uow, cmd.source_project_id)
            if source.continued_by is not None:
                raise ValidationError(
                    f"Project {source.id} has already been continued by project "
                    f"{source.continued_by}."
                )
            _require_manager(actor, source)

            source_term = _get_term_or_raise(uow, source.term_id)
            target_term = _get_term_or_raise(uow, cmd.target_term_id)
            with _rule_violations():
                _lifecycle_svc.check_continuation_terms(source_term, target_term)

            new_title = (cmd.new_title or "").strip() or source.title
            _ensure_title_unique(uow, new_title, target_term)
            responsible = _get_staff_or_raise(
                uow, cmd.new_responsible_staff_id or source.responsible_staff_id
            )
            _validate_assignments(uow, cmd.staff_assignment_ids, target_term)

            previous_status = source.status
            with _rule_violations():
                successor = Project.create(
                    title=new_title,
                    term_id=target_term.id,
                    responsible_staff_id=responsible.id,
                    general_objective=source.general_objective,
                    specific_objectives=source.specific_objectives,
                    description=source.description,
                )
                successor.set_continuation_of(source.id)
                successor.set_staff_assignments(cmd.staff_assignment_ids)
                successor.set_participants(cmd.participant_names)
                source.mark_continued_by(successor.id, successor.term_id)
                source.change_status(ProjectStatus.IN_CONTINUING)

            _check_cancelled(cancel)
            uow.projects.add(successor)
            uow.projects.update(source)

            entries = [
                self.audit.record(
                    source.id,
                    actor.user_id,
                    HistoryAction.CONTINUATION_CREATED,
                    new_value=f"Continued in term '{target_term.code}' as project {successor.id}",
                    note=f"New project title: '{new_title}'. Responsible: {responsible.name}",
                ),
                self.audit.created(
                    successor,
                    actor.user_id,
                    target_term.code,
                    note=(
                        f"Created as continuation of '{source.title}' (ID: {source.id}) "
                        f"from term '{source_term.code}'. "
                        f"Assignments: {len(successor.staff_assignment_ids)}, "
                        f"Participants: {len(successor.participants)}"
                    ),
                ),
            ]
            if previous_status != source.status:
                entries.append(
                    self.audit.status_changed(source.id, actor.user_id, previous_status, source.status)
                )
            source_names = source.participant_names_sorted()
            successor_names = successor.participant_names_sorted()
            if participant_rosters_differ(source_names, successor_names):
                entries.append(
                    self.audit.participants_updated(
                        successor.id,
                        actor.user_id,
                        source_names,
                        successor_names,
                        note=f"Participants changed when continuing from term '{source_term.code}'",
                    )
                )
            uow.history.append_many(entries)
            uow.commit()
            logger.info(
                "Project continued. source=%s successor=%s target_term=%s actor=%s",
                source.id, successor.id, target_term.code, actor.user_id,
            )
            return ContinuationResultDTO(
                source=_Assembler.project(source),
                successor=_Assembler.project(successor),
            )


# ===========================================================================
# USE CASES: QUERIES
# ===========================================================================

class GetProjectUseCase:
    def __init__(self, language: str = "es"):
        self.language = language

    def execute(self, project_id: uuid.UUID, uow: AbstractUnitOfWork) -> ProjectDetailDTO:
        with uow:
            project = _get_project_or_raise(uow, project_id)
            assignments = [
                _Assembler.assignment(i, uow.staff_assignments.get(i))
                for i in project.assignment_ids_sorted()
            ]
            return _Assembler.project_detail(
                project,
                uow.terms.get(project.term_id),
                uow.users.get(project.responsible_staff_id),
                assignments,
                self.language,
            )


class ListProjectsByTermUseCase:
    def execute(self, term_id: uuid.UUID, uow: AbstractUnitOfWork) -> List[ProjectDTO]:
        with uow:
            _get_term_or_raise(uow, term_id)
            projects = sorted(uow.projects.list_for_term(term_id), key=lambda p: p.title.casefold())
            return [_Assembler.project(p) for p in projects]


class ListProjectsForStaffUseCase:
    """
    Projects a staff member works on in a term: those they are responsible
    for plus those linked through one of their staff assignments.
    Newest first.
    """

    def execute(
        self, staff_id: uuid.UUID, term_id: uuid.UUID, uow: AbstractUnitOfWork
    ) -> List[ProjectDTO]:
        with uow:
            _get_term_or_raise(uow, term_id)
            found = {p.id: p for p in uow.projects.list_for_responsible_in_term(staff_id, term_id)}
            for assignment in uow.staff_assignments.list_for_staff(staff_id):
                if assignment.term_id != term_id:
                    continue
                for p in uow.projects.list_for_staff_assignment(assignment.id):
                    found.setdefault(p.id, p)
            projects = sorted(found.values(), key=lambda p: p.created_at, reverse=True)
            return [_Assembler.project(p) for p in projects]


class GetContinuationChainUseCase:
    """Return the whole lineage of a project, oldest first."""

    def execute(self, project_id: uuid.UUID, uow: AbstractUnitOfWork) -> List[ProjectDTO]:
        with uow:
            project = _get_project_or_raise(uow, project_id)
            seen = {project.id}
            root = project
            while root.continuation_of is not None:
                parent = uow.projects.get(root.continuation_of)
                if parent is None or parent.id in seen:
                    break
                seen.add(parent.id)
                root = parent

            chain = [root]
            seen = {root.id}
            current = root
            while current.continued_by is not None:
                child = uow.projects.get(current.continued_by)
                if child is None or child.id in seen:
                    break
                seen.add(child.id)
                chain.append(child)
                current = child
            return [_Assembler.project(p) for p in chain]


class GetProjectHistoryUseCase:
    """
    History of one project, newest first, optionally filtered by action.
    Visible to administrators, the responsible staff, and holders of the
    history view-all permission.
    """

    def __init__(self, language: str = "es"):
        self.language = language

    def execute(
        self,
        project_id: uuid.UUID,
        actor: ActorContext,
        uow: AbstractUnitOfWork,
        action: Optional[HistoryAction] = None,
    ) -> List[HistoryEntryDTO]:
        with uow:
            project = _get_project_or_raise(uow, project_id)
            if not (actor.can_manage(project) or actor.has_permission(PERMISSION_VIEW_ALL_HISTORY)):
                raise AuthorizationError(
                    f"User {actor.user_id} may not view the history of project {project_id}."
                )
            if action is None:
                entries = uow.history.list_for_project(project_id)
            else:
                entries = uow.history.list_for_project_and_action(project_id, HistoryAction(action))
            return _history_dtos(uow, entries, self.language)


class GetActorHistoryUseCase:
    """Every history entry written by one user, newest first."""

    def __init__(self, language: str = "es"):
        self.language = language

    def execute(
        self, actor_id: uuid.UUID, actor: ActorContext, uow: AbstractUnitOfWork
    ) -> List[HistoryEntryDTO]:
        if actor.user_id != actor_id and not actor.has_permission(PERMISSION_VIEW_ALL_HISTORY):
            raise AuthorizationError(f"User {actor.user_id} may not view history of user {actor_id}.")
        with uow:
            return _history_dtos(uow, uow.history.list_for_actor(actor_id), self.language)


def _history_dtos(
    uow: AbstractUnitOfWork, entries: Sequence[HistoryEntry], language: str
) -> List[HistoryEntryDTO]:
    names = {}
    result = []
    for e in entries:
        if e.actor_id not in names:
            names[e.actor_id] = uow.users.get(e.actor_id)
        result.append(_Assembler.history(e, names[e.actor_id], language))
    return result


# ===========================================================================
# USE CASES: ATTACHMENTS
# ===========================================================================

@dataclass
class AddAttachmentCommand:
    project_id: uuid.UUID
    type: AttachmentType
    name: str
    file_key: str
    content_type: Optional[str] = None


class AddAttachmentUseCase(_UseCase):
    """Register metadata of an uploaded file and record it in the project history."""

    def execute(
        self,
        cmd: AddAttachmentCommand,
        actor: ActorContext,
        uow: AbstractUnitOfWork,
        cancel: Optional[threading.Event] = None,
    ) -> AttachmentDTO:
        with uow:
            project = _get_project_or_raise(uow, cmd.project_id)
            _require_manager(actor, project)
            _get_staff_or_raise(uow, actor.user_id)
            name = (cmd.name or "").strip()
            file_key = (cmd.file_key or "").strip()
            if not name:
                raise ValidationError("Attachment name must not be empty.")
            if not file_key:
                raise ValidationError("Attachment file key must not be empty.")
            with _rule_violations():
                kind = AttachmentType(cmd.type)
            attachment = Attachment(
                project_id=project.id,
                type=kind,
                name=name,
                file_key=file_key,
                content_type=(cmd.content_type or "").strip() or None,
                uploaded_by_id=actor.user_id,
            )
            _check_cancelled(cancel)
            uow.attachments.add(attachment)
            uow.history.append(
                self.audit.attachment(
                    project.id, actor.user_id, HistoryAction.ATTACHMENT_ADDED, kind, name
                )
            )
            uow.commit()
            logger.info(
                "Attachment added. project_id=%s attachment_id=%s type=%s",
                project.id, attachment.id, kind.value,
            )
            return _Assembler.attachment(attachment)


class RemoveAttachmentUseCase(_UseCase):
    """
    Soft-delete an attachment.  The last formal document of a completed
    project cannot be removed.
    """

    def execute(
        self,
        attachment_id: uuid.UUID,
        actor: ActorContext,
        uow: AbstractUnitOfWork,
        cancel: Optional[threading.Event] = None,
    ) -> AttachmentDTO:
        with uow:
            attachment = uow.attachments.get(attachment_id)
            if attachment is None or attachment.is_deleted:
                raise NotFoundError(f"Attachment {attachment_id} not found.")
            project = _get_project_or_raise(uow, attachment.project_id)
            _require_manager(actor, project)
            if (
                project.status == ProjectStatus.COMPLETED
                and attachment.type == AttachmentType.FORMAL_DOCUMENT
                and uow.attachments.count_by_type(project.id, AttachmentType.FORMAL_DOCUMENT) <= 1
            ):
                raise ValidationError(
                    f"Cannot remove the last formal document of completed project {project.id}."
                )
            with _rule_violations():
                attachment.mark_deleted()
            _check_cancelled(cancel)
            uow.attachments.update(attachment)
            uow.history.append(
                self.audit.attachment(
                    project.id, actor.user_id, HistoryAction.ATTACHMENT_REMOVED,
                    attachment.type, attachment.name,
                )
            )
            uow.commit()
            logger.info(
                "Attachment removed. project_id=%s attachment_id=%s", project.id, attachment.id
            )
            return _Assembler.attachment(attachment)


class ListAttachmentsUseCase:
    def execute(self, project_id: uuid.UUID, uow: AbstractUnitOfWork) -> List[AttachmentDTO]:
        with uow:
            _get_project_or_raise(uow, project_id)
            return [_Assembler.attachment(a) for a in uow.attachments.list_for_project(project_id)]
