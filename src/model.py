"""
model.py

Domain models for the Teaching Project Lifecycle system.

Entities
--------
- Project            (aggregate root)
- Participant        (owned by Project)
- HistoryEntry       (append-only audit record)
- Term               (external catalog record, weak reference)
- StaffAssignment    (external catalog record, weak reference)
- StaffMember        (external catalog record, weak reference)
- Attachment         (external file-metadata record)

All models use Python dataclasses for clean, framework-agnostic definitions.
UUID primary keys are used throughout for portability.
Timestamps are always stored in UTC.

The Project aggregate is the only place its local invariants are enforced:
every mutation of title, objectives, staff assignments, participants,
continuation links and status goes through one of its methods.
Violations raise InvalidArgumentError (a ValueError), or
InvalidTransitionError for lifecycle violations.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Dict, Iterable, List, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _clean(value: Optional[str]) -> Optional[str]:
    """Trim optional free text; blank collapses to None."""
    if value is None:
        return None
    value = value.strip()
    return value or None


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class InvalidArgumentError(ValueError):
    """An aggregate-local invariant would be violated by the requested change."""


class InvalidTransitionError(InvalidArgumentError):
    """The requested lifecycle status transition is not allowed."""


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ProjectStatus(str, Enum):
    """
    Lifecycle status of a project.

    PROPOSAL       – Initial state of every new project.
    IN_PROGRESS    – Work has started.
    COMPLETED      – Work finished; may only be archived or continued.
    ARCHIVED       – Terminal; no transition leaves this state.
    IN_CONTINUING  – Side-state set by the continuation workflow; the project
                     has been superseded by a successor in a later term.
    """
    PROPOSAL = "proposal"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ARCHIVED = "archived"
    IN_CONTINUING = "in_continuing"


# Restricted source states and the targets they may move to.
# States not listed may move to any other state.
ALLOWED_TRANSITIONS: Dict[ProjectStatus, frozenset] = {
    ProjectStatus.COMPLETED: frozenset({ProjectStatus.ARCHIVED, ProjectStatus.IN_CONTINUING}),
    ProjectStatus.ARCHIVED: frozenset(),
}


class HistoryAction(str, Enum):
    """Action tag of a history entry."""
    CREATED = "created"
    TITLE_UPDATED = "title_updated"
    DESCRIPTION_UPDATED = "description_updated"
    GENERAL_OBJECTIVE_UPDATED = "general_objective_updated"
    SPECIFIC_OBJECTIVES_UPDATED = "specific_objectives_updated"
    ASSIGNMENTS_UPDATED = "assignments_updated"
    PARTICIPANTS_UPDATED = "participants_updated"
    RESPONSIBLE_STAFF_CHANGED = "responsible_staff_changed"
    STATUS_CHANGED = "status_changed"
    CONTINUATION_CREATED = "continuation_created"
    CONTINUATION_SETTINGS_UPDATED = "continuation_settings_updated"
    ATTACHMENT_ADDED = "attachment_added"
    ATTACHMENT_REMOVED = "attachment_removed"


class AttachmentType(str, Enum):
    """
    Category of a project attachment.

    FORMAL_DOCUMENT is the formal project document; at least one non-deleted
    attachment of this type is required before a project may be completed.
    """
    FORMAL_DOCUMENT = "formal_document"
    STAFF_AUTHORIZATION = "staff_authorization"
    PARTICIPANT_AUTHORIZATION = "participant_authorization"
    SOURCE_CODE = "source_code"
    PRESENTATION = "presentation"
    INSTRUMENT = "instrument"
    EVIDENCE = "evidence"
    OTHER = "other"


# ---------------------------------------------------------------------------
# Localized labels (used in human-readable audit text)
# ---------------------------------------------------------------------------

SUPPORTED_LANGUAGES = ("es", "en")

STATUS_LABELS: Dict[str, Dict[ProjectStatus, str]] = {
    "es": {
        ProjectStatus.PROPOSAL: "Propuesta",
        ProjectStatus.IN_PROGRESS: "En Progreso",
        ProjectStatus.COMPLETED: "Completado",
        ProjectStatus.ARCHIVED: "Archivado",
        ProjectStatus.IN_CONTINUING: "En continuación",
    },
    "en": {
        ProjectStatus.PROPOSAL: "Proposal",
        ProjectStatus.IN_PROGRESS: "In Progress",
        ProjectStatus.COMPLETED: "Completed",
        ProjectStatus.ARCHIVED: "Archived",
        ProjectStatus.IN_CONTINUING: "In Continuing",
    },
}

ACTION_LABELS: Dict[str, Dict[HistoryAction, str]] = {
    "es": {
        HistoryAction.CREATED: "Creado",
        HistoryAction.TITLE_UPDATED: "Título Actualizado",
        HistoryAction.DESCRIPTION_UPDATED: "Descripción Actualizada",
        HistoryAction.GENERAL_OBJECTIVE_UPDATED: "Objetivo General Actualizado",
        HistoryAction.SPECIFIC_OBJECTIVES_UPDATED: "Objetivos Específicos Actualizados",
        HistoryAction.ASSIGNMENTS_UPDATED: "Asignaciones Actualizadas",
        HistoryAction.PARTICIPANTS_UPDATED: "Participantes Actualizados",
        HistoryAction.RESPONSIBLE_STAFF_CHANGED: "Responsable Cambiado",
        HistoryAction.STATUS_CHANGED: "Estado Cambiado",
        HistoryAction.CONTINUATION_CREATED: "Continuación Creada",
        HistoryAction.CONTINUATION_SETTINGS_UPDATED: "Configuración de Continuidad Actualizada",
        HistoryAction.ATTACHMENT_ADDED: "Anexo Agregado",
        HistoryAction.ATTACHMENT_REMOVED: "Anexo Eliminado",
    },
    "en": {
        HistoryAction.CREATED: "Created",
        HistoryAction.TITLE_UPDATED: "Title Updated",
        HistoryAction.DESCRIPTION_UPDATED: "Description Updated",
        HistoryAction.GENERAL_OBJECTIVE_UPDATED: "General Objective Updated",
        HistoryAction.SPECIFIC_OBJECTIVES_UPDATED: "Specific Objectives Updated",
        HistoryAction.ASSIGNMENTS_UPDATED: "Assignments Updated",
        HistoryAction.PARTICIPANTS_UPDATED: "Participants Updated",
        HistoryAction.RESPONSIBLE_STAFF_CHANGED: "Responsible Staff Changed",
        HistoryAction.STATUS_CHANGED: "Status Changed",
        HistoryAction.CONTINUATION_CREATED: "Continuation Created",
        HistoryAction.CONTINUATION_SETTINGS_UPDATED: "Continuation Settings Updated",
        HistoryAction.ATTACHMENT_ADDED: "Attachment Added",
        HistoryAction.ATTACHMENT_REMOVED: "Attachment Removed",
    },
}

ATTACHMENT_TYPE_LABELS: Dict[str, Dict[AttachmentType, str]] = {
    "es": {
        AttachmentType.FORMAL_DOCUMENT: "Documento Formal",
        AttachmentType.STAFF_AUTHORIZATION: "Autorización Docente",
        AttachmentType.PARTICIPANT_AUTHORIZATION: "Autorización Estudiantil",
        AttachmentType.SOURCE_CODE: "Código Fuente",
        AttachmentType.PRESENTATION: "Presentación",
        AttachmentType.INSTRUMENT: "Instrumento de Investigación",
        AttachmentType.EVIDENCE: "Evidencia",
        AttachmentType.OTHER: "Otro",
    },
    "en": {
        AttachmentType.FORMAL_DOCUMENT: "Formal Document",
        AttachmentType.STAFF_AUTHORIZATION: "Staff Authorization",
        AttachmentType.PARTICIPANT_AUTHORIZATION: "Participant Authorization",
        AttachmentType.SOURCE_CODE: "Source Code",
        AttachmentType.PRESENTATION: "Presentation",
        AttachmentType.INSTRUMENT: "Research Instrument",
        AttachmentType.EVIDENCE: "Evidence",
        AttachmentType.OTHER: "Other",
    },
}


def _labels(table: Dict[str, Dict], language: str) -> Dict:
    if language not in table:
        raise ValueError(
            f"Unsupported label language '{language}'. "
            f"Expected one of: {list(SUPPORTED_LANGUAGES)}"
        )
    return table[language]


def status_label(status: ProjectStatus, language: str = "es") -> str:
    return _labels(STATUS_LABELS, language)[status]


def action_label(action: HistoryAction, language: str = "es") -> str:
    return _labels(ACTION_LABELS, language)[action]


def attachment_type_label(kind: AttachmentType, language: str = "es") -> str:
    return _labels(ATTACHMENT_TYPE_LABELS, language)[kind]


# ---------------------------------------------------------------------------
# External catalog records (validated and owned elsewhere)
# ---------------------------------------------------------------------------


@dataclass
class Term:
    """An academic period a project is scheduled within."""
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    code: str = ""                      # e.g. "2024-1", used in audit text
    name: str = ""
    start_date: date = field(default_factory=lambda: _utcnow().date())
    end_date: Optional[date] = None
    is_active: bool = True


@dataclass
class StaffMember:
    """A staff member (teacher) that can be responsible for projects."""
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    name: str = ""
    email: str = ""
    is_active: bool = True


@dataclass
class StaffAssignment:
    """
    Links a staff member to a subject within a term.

    Subject and staff names are denormalized for audit text only.
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    staff_id: uuid.UUID = field(default_factory=uuid.uuid4)    # FK → StaffMember.id
    term_id: uuid.UUID = field(default_factory=uuid.uuid4)     # FK → Term.id
    subject_code: str = ""
    subject_name: str = ""
    staff_name: str = ""
    is_active: bool = True


@dataclass
class Attachment:
    """
    File metadata attached to a project.  The file itself lives in external
    storage under `file_key`.  Attachments are soft-deleted.
    """
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    project_id: uuid.UUID = field(default_factory=uuid.uuid4)  # FK → Project.id
    type: AttachmentType = AttachmentType.OTHER
    name: str = ""
    file_key: str = ""
    content_type: Optional[str] = None
    uploaded_by_id: uuid.UUID = field(default_factory=uuid.uuid4)
    uploaded_at: datetime = field(default_factory=_utcnow)
    is_deleted: bool = False
    deleted_at: Optional[datetime] = None

    def mark_deleted(self) -> None:
        if self.is_deleted:
            raise InvalidArgumentError(f"Attachment {self.id} is already deleted.")
        self.is_deleted = True
        self.deleted_at = _utcnow()


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HistoryEntry:
    """
    Immutable, append-only audit record of a single project mutation.

    Entries are written once after the mutation they describe succeeds and
    are never updated or deleted.  They are not used to rebuild state.
    """
    project_id: uuid.UUID
    actor_id: uuid.UUID
    action: HistoryAction
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    note: Optional[str] = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    occurred_at: datetime = field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Project aggregate
# ---------------------------------------------------------------------------


@dataclass
class Participant:
    """
    A participant (student) on a project roster.

    Participants are owned by their project and only created, renamed or
    removed through Project.set_participants / Project.sync_participants.
    """
    name: str
    id: uuid.UUID = field(default_factory=uuid.uuid4)


@dataclass(frozen=True)
class ParticipantSyncItem:
    """Desired roster entry: `id` set means rename that participant, None means create."""
    name: str
    id: Optional[uuid.UUID] = None


@dataclass
class ParticipantSyncResult:
    created: int = 0
    updated: int = 0
    deleted: int = 0
    renamed: int = 0        # updates whose name actually changed

    @property
    def changed(self) -> bool:
        return bool(self.created or self.deleted or self.renamed)


@dataclass
class Project:
    """
    An academic teaching project tracked through a lifecycle within a term.

    Collections (`staff_assignment_ids`, `participants`) and continuation
    links are read-only from the outside: use the mutation methods.
    `version` is an optimistic-concurrency revision, advanced by the
    repository on every successful write.
    """
    title: str
    term_id: uuid.UUID                                  # FK → Term.id (weak)
    responsible_staff_id: uuid.UUID                     # FK → StaffMember.id (weak)
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    general_objective: Optional[str] = None
    specific_objectives: Optional[str] = None
    description: Optional[str] = None
    status: ProjectStatus = ProjectStatus.PROPOSAL

    # Continuation graph: at most one predecessor and one successor
    continuation_of: Optional[uuid.UUID] = None         # FK → Project.id
    continued_by: Optional[uuid.UUID] = None            # FK → Project.id

    staff_assignment_ids: List[uuid.UUID] = field(default_factory=list)
    participants: List[Participant] = field(default_factory=list)

    created_at: datetime = field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None
    version: int = 0

    # -- factories -------------------------------------------------------

    @classmethod
    def create(
        cls,
        title: str,
        term_id: uuid.UUID,
        responsible_staff_id: uuid.UUID,
        general_objective: Optional[str] = None,
        specific_objectives: Optional[str] = None,
        description: Optional[str] = None,
    ) -> "Project":
        """Create a new project in status PROPOSAL."""
        title = (title or "").strip()
        if not title:
            raise InvalidArgumentError("Project title must not be empty.")
        if not term_id:
            raise InvalidArgumentError("Project term id must not be empty.")
        if not responsible_staff_id:
            raise InvalidArgumentError("Responsible staff id must not be empty.")
        return cls(
            title=title,
            term_id=term_id,
            responsible_staff_id=responsible_staff_id,
            general_objective=_clean(general_objective),
            specific_objectives=_clean(specific_objectives),
            description=_clean(description),
        )

    @classmethod
    def restore(
        cls,
        id: uuid.UUID,
        title: str,
        term_id: uuid.UUID,
        responsible_staff_id: uuid.UUID,
        status: ProjectStatus,
        created_at: datetime,
        staff_assignment_ids: Iterable[uuid.UUID] = (),
        participants: Iterable[Participant] = (),
        general_objective: Optional[str] = None,
        specific_objectives: Optional[str] = None,
        description: Optional[str] = None,
        continuation_of: Optional[uuid.UUID] = None,
        continued_by: Optional[uuid.UUID] = None,
        updated_at: Optional[datetime] = None,
        version: int = 0,
    ) -> "Project":
        """
        Rebuild a persisted project, child collections included.

        Collections are validated with the same rules the mutation methods
        apply, so a restored aggregate always satisfies its invariants.
        """
        from service import normalize_participant_names, validate_assignment_ids

        participants = list(participants)
        normalize_participant_names(p.name for p in participants)
        if continuation_of is not None and continuation_of == id:
            raise InvalidArgumentError("A project cannot continue itself.")
        if continued_by is not None and continued_by == id:
            raise InvalidArgumentError("A project cannot be continued by itself.")
        return cls(
            id=id,
            title=title,
            term_id=term_id,
            responsible_staff_id=responsible_staff_id,
            status=status,
            general_objective=general_objective,
            specific_objectives=specific_objectives,
            description=description,
            continuation_of=continuation_of,
            continued_by=continued_by,
            staff_assignment_ids=validate_assignment_ids(staff_assignment_ids),
            participants=[Participant(id=p.id, name=p.name.strip()) for p in participants],
            created_at=created_at,
            updated_at=updated_at,
            version=version,
        )

    # -- read helpers ----------------------------------------------------

    @property
    def is_edit_locked(self) -> bool:
        """Completed and archived projects no longer accept staff or roster edits."""
        return self.status in (ProjectStatus.COMPLETED, ProjectStatus.ARCHIVED)

    def participant_names_sorted(self) -> List[str]:
        return sorted((p.name for p in self.participants), key=str.casefold)

    def assignment_ids_sorted(self) -> List[uuid.UUID]:
        return sorted(self.staff_assignment_ids, key=str)

    def _touch(self) -> None:
        self.updated_at = _utcnow()

    # -- scalar fields ---------------------------------------------------

    def update_title(self, title: str) -> None:
        title = (title or "").strip()
        if not title:
            raise InvalidArgumentError("Project title must not be empty.")
        self.title = title
        self._touch()

    def update_description(self, description: Optional[str]) -> None:
        self.description = _clean(description)
        self._touch()

    def update_general_objective(self, objective: Optional[str]) -> None:
        self.general_objective = _clean(objective)
        self._touch()

    def update_specific_objectives(self, objectives: Optional[str]) -> None:
        self.specific_objectives = _clean(objectives)
        self._touch()

    # -- lifecycle -------------------------------------------------------

    def change_status(self, new_status: ProjectStatus) -> bool:
        """
        Move to `new_status`.  Returns False (and changes nothing) when the
        project is already in that status.

        ARCHIVED is terminal.  COMPLETED may only be archived, or be marked
        IN_CONTINUING when a successor takes the work into a later term.
        """
        new_status = ProjectStatus(new_status)
        if new_status == self.status:
            return False
        allowed = ALLOWED_TRANSITIONS.get(self.status)
        if allowed is not None and new_status not in allowed:
            if not allowed:
                raise InvalidTransitionError(
                    f"Project {self.id} is {self.status.value}; its status can no longer change."
                )
            raise InvalidTransitionError(
                f"Project {self.id} is {self.status.value}; it can only move to "
                f"{sorted(s.value for s in allowed)}."
            )
        self.status = new_status
        self._touch()
        return True

    def change_responsible_staff(self, staff_id: uuid.UUID) -> None:
        if not staff_id:
            raise InvalidArgumentError("Responsible staff id must not be empty.")
        if staff_id == self.responsible_staff_id:
            raise InvalidArgumentError(
                f"Staff member {staff_id} is already responsible for project {self.id}."
            )
        self.responsible_staff_id = staff_id
        self._touch()

    # -- collections -----------------------------------------------------

    def set_staff_assignments(self, assignment_ids: Iterable[uuid.UUID]) -> None:
        """Replace the whole staff-assignment set."""
        from service import validate_assignment_ids

        self.staff_assignment_ids = validate_assignment_ids(assignment_ids)
        self._touch()

    def set_participants(self, names: Iterable[str]) -> None:
        """Replace the whole roster from plain names; every participant is new."""
        from service import normalize_participant_names

        self.participants = [Participant(name=n) for n in normalize_participant_names(names)]
        self._touch()

    def sync_participants(self, items: Iterable[ParticipantSyncItem]) -> ParticipantSyncResult:
        """
        Reconcile the roster against `items`.

        Items with an id rename that participant in place, items without an
        id always create a new participant, and current participants not
        referenced by any item are removed.  Re-submitting unidentified names
        is therefore not idempotent: callers must echo back the ids they were
        given to keep participants stable.
        """
        from service import reconcile_participants

        roster, result = reconcile_participants(self.participants, items)
        self.participants = roster
        if result.changed:
            self._touch()
        return result

    # -- continuation graph ---------------------------------------------

    def set_continuation_of(self, predecessor_id: uuid.UUID) -> None:
        if not predecessor_id:
            raise InvalidArgumentError("Predecessor project id must not be empty.")
        if predecessor_id == self.id:
            raise InvalidArgumentError("A project cannot continue itself.")
        if self.continuation_of is not None:
            raise InvalidArgumentError(
                f"Project {self.id} already continues project {self.continuation_of}."
            )
        self.continuation_of = predecessor_id
        self._touch()

    def mark_continued_by(self, successor_id: uuid.UUID, successor_term_id: uuid.UUID) -> None:
        if not successor_id:
            raise InvalidArgumentError("Successor project id must not be empty.")
        if successor_id == self.id:
            raise InvalidArgumentError("A project cannot be continued by itself.")
        if successor_term_id == self.term_id:
            raise InvalidArgumentError(
                "A project cannot be continued within its own term."
            )
        if self.continued_by is not None:
            raise InvalidArgumentError(
                f"Project {self.id} has already been continued by project {self.continued_by}."
            )
        self.continued_by = successor_id
        self._touch()
