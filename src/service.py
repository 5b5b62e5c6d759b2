"""
service.py

Domain service layer for the Teaching Project Lifecycle system.

Responsibilities
----------------
Pure business logic that works on domain model instances (from model.py)
without touching persistence.  Callers load and store models through the
repositories declared in application.py.

Services
--------
- Participant reconciliation     – reconcile_participants, normalize_participant_names
- Staff-assignment set rules     – validate_assignment_ids, assignment_sets_differ
- LifecycleService               – cross-entity lifecycle rules (completion gate,
                                   continuation term ordering, manual status requests)
- AuditService                   – history entry creation, audit text and query helpers

Design notes
------------
- Business rule violations raise a ValueError (InvalidArgumentError for
  aggregate-local invariants) with a descriptive message.
- UTC datetimes are used throughout.
- Functions never mutate their inputs; they return new collections or
  new model instances for the caller to apply.
"""

from __future__ import annotations

import uuid
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from model import (
    AttachmentType,
    HistoryAction,
    HistoryEntry,
    InvalidArgumentError,
    Participant,
    ParticipantSyncItem,
    ParticipantSyncResult,
    Project,
    ProjectStatus,
    Term,
    attachment_type_label,
    status_label,
)

_NIL_UUID = uuid.UUID(int=0)

NO_PARTICIPANTS = "No participants"


# ---------------------------------------------------------------------------
# Participant reconciliation
# ---------------------------------------------------------------------------

def normalize_participant_names(names: Iterable[str]) -> List[str]:
    """
    Trim names, drop blank ones, and reject case-insensitive duplicates.
    Order of first appearance is preserved.
    """
    result: List[str] = []
    seen = set()
    for raw in names:
        name = (raw or "").strip()
        if not name:
            continue
        key = name.casefold()
        if key in seen:
            raise InvalidArgumentError(f"Duplicate participant name: '{name}'.")
        seen.add(key)
        result.append(name)
    return result


def reconcile_participants(
    current: Sequence[Participant],
    items: Iterable[ParticipantSyncItem],
) -> Tuple[List[Participant], ParticipantSyncResult]:
    """
    Compute the new roster for a desired list of participants.

    Items without an id are always created with a fresh identity, even when
    a current participant has the same name.  Items with an id rename the
    matching current participant.  Current participants not referenced by
    any item are deleted.

    Raises InvalidArgumentError for duplicate ids, duplicate names
    (case-insensitive) or an id that is not on the current roster.
    `current` is not modified.
    """
    cleaned = [
        ParticipantSyncItem(name=(item.name or "").strip(), id=item.id)
        for item in items
        if (item.name or "").strip()
    ]

    ids = [item.id for item in cleaned if item.id is not None]
    if len(ids) != len(set(ids)):
        raise InvalidArgumentError("Duplicate participant ids in update request.")
    normalize_participant_names(item.name for item in cleaned)

    by_id: Dict[uuid.UUID, Participant] = {p.id: p for p in current}
    unknown = [i for i in ids if i not in by_id]
    if unknown:
        raise InvalidArgumentError(
            f"Participant {unknown[0]} does not belong to this project."
        )

    result = ParticipantSyncResult()
    roster: List[Participant] = []
    for item in cleaned:
        if item.id is None:
            roster.append(Participant(name=item.name))
            result.created += 1
            continue
        existing = by_id[item.id]
        if existing.name != item.name:
            result.renamed += 1
        roster.append(Participant(id=existing.id, name=item.name))
        result.updated += 1

    result.deleted = len(current) - result.updated
    return roster, result


def participant_rosters_differ(a: Iterable[str], b: Iterable[str]) -> bool:
    """Compare two name lists as case-insensitive sorted sets."""
    return sorted(n.casefold() for n in a) != sorted(n.casefold() for n in b)


def format_participant_names(names: Sequence[str]) -> str:
    return ", ".join(names) if names else NO_PARTICIPANTS


# ---------------------------------------------------------------------------
# Staff-assignment set rules
# ---------------------------------------------------------------------------

def validate_assignment_ids(assignment_ids: Iterable[Optional[uuid.UUID]]) -> List[uuid.UUID]:
    """Return the ids as a list; raise on an empty or duplicate id."""
    result: List[uuid.UUID] = []
    for assignment_id in assignment_ids:
        if assignment_id is None or assignment_id == _NIL_UUID:
            raise InvalidArgumentError("Staff assignment id must not be empty.")
        if assignment_id in result:
            raise InvalidArgumentError(f"Duplicate staff assignment id: {assignment_id}.")
        result.append(assignment_id)
    return result


def assignment_sets_differ(a: Iterable[uuid.UUID], b: Iterable[uuid.UUID]) -> bool:
    return sorted(a, key=str) != sorted(b, key=str)


# ---------------------------------------------------------------------------
# LifecycleService
# ---------------------------------------------------------------------------

class LifecycleService:
    """
    Lifecycle rules that need information from outside the aggregate.
    The transition table itself lives in Project.change_status.
    """

    def check_status_request(self, project: Project, target: ProjectStatus) -> None:
        """Reject manual requests for states only the continuation workflow may set."""
        if target == ProjectStatus.IN_CONTINUING:
            raise ValueError(
                f"Status '{target.value}' is only set by continuing the project "
                "into a later term."
            )

    def check_completion_gate(self, project: Project, formal_document_count: int) -> None:
        if formal_document_count <= 0:
            raise ValueError(
                f"Project {project.id} cannot be completed without at least one "
                f"'{AttachmentType.FORMAL_DOCUMENT.value}' attachment."
            )

    def check_continuation_terms(self, source_term: Term, target_term: Term) -> None:
        """The successor's term must be active, different, and start strictly later."""
        if not target_term.is_active:
            raise ValueError(
                f"Target term '{target_term.code}' is not active; "
                "a project can only be continued into an active term."
            )
        if target_term.id == source_term.id:
            raise ValueError("A project cannot be continued within its own term.")
        if target_term.start_date <= source_term.start_date:
            raise ValueError(
                f"Target term '{target_term.code}' must start after source term "
                f"'{source_term.code}' ({target_term.start_date.isoformat()} <= "
                f"{source_term.start_date.isoformat()})."
            )


# ---------------------------------------------------------------------------
# AuditService
# ---------------------------------------------------------------------------

class AuditService:
    """
    Creates HistoryEntry records and the human-readable text stored in them.
    Entries are immutable once written.
    """

    def __init__(self, language: str = "es"):
        self.language = language

    def record(
        self,
        project_id: uuid.UUID,
        actor_id: uuid.UUID,
        action: HistoryAction,
        old_value: Optional[str] = None,
        new_value: Optional[str] = None,
        note: Optional[str] = None,
    ) -> HistoryEntry:
        """Mint a new entry stamped with the current UTC time (unsaved)."""

        def _t(v: Optional[str]) -> Optional[str]:
            if v is None:
                return None
            return v.strip() or None

        return HistoryEntry(
            project_id=project_id,
            actor_id=actor_id,
            action=HistoryAction(action),
            old_value=_t(old_value),
            new_value=_t(new_value),
            note=_t(note),
        )

    # -- audit text ------------------------------------------------------

    def created(
        self,
        project: Project,
        actor_id: uuid.UUID,
        term_code: str,
        note: str,
    ) -> HistoryEntry:
        return self.record(
            project.id,
            actor_id,
            HistoryAction.CREATED,
            new_value=f"Title: {project.title}, Term: {term_code}",
            note=note,
        )

    def status_changed(
        self,
        project_id: uuid.UUID,
        actor_id: uuid.UUID,
        old: ProjectStatus,
        new: ProjectStatus,
        note: Optional[str] = None,
    ) -> HistoryEntry:
        old_label = status_label(old, self.language)
        new_label = status_label(new, self.language)
        return self.record(
            project_id,
            actor_id,
            HistoryAction.STATUS_CHANGED,
            old_value=old_label,
            new_value=new_label,
            note=note or f"Status changed from {old_label} to {new_label}",
        )

    def cascade_completed(
        self,
        project_id: uuid.UUID,
        actor_id: uuid.UUID,
        old: ProjectStatus,
        origin_id: uuid.UUID,
    ) -> HistoryEntry:
        return self.status_changed(
            project_id,
            actor_id,
            old,
            ProjectStatus.COMPLETED,
            note=(
                f"Completed automatically in cascade because origin project "
                f"(ID: {origin_id}) was completed."
            ),
        )

    def participants_updated(
        self,
        project_id: uuid.UUID,
        actor_id: uuid.UUID,
        old_names: Sequence[str],
        new_names: Sequence[str],
        result: Optional[ParticipantSyncResult] = None,
        note: Optional[str] = None,
    ) -> HistoryEntry:
        if note is None and result is not None:
            if new_names:
                note = (
                    f"Total: {len(new_names)}. Created: {result.created}, "
                    f"Updated: {result.updated}, Deleted: {result.deleted}"
                )
            else:
                note = f"All participants ({len(old_names)}) were removed"
        return self.record(
            project_id,
            actor_id,
            HistoryAction.PARTICIPANTS_UPDATED,
            old_value=format_participant_names(old_names),
            new_value=format_participant_names(new_names),
            note=note,
        )

    def attachment(
        self,
        project_id: uuid.UUID,
        actor_id: uuid.UUID,
        action: HistoryAction,
        kind: AttachmentType,
        name: str,
    ) -> HistoryEntry:
        label = attachment_type_label(kind, self.language)
        value = f"{label}: {name}"
        if action == HistoryAction.ATTACHMENT_REMOVED:
            return self.record(project_id, actor_id, action, old_value=value)
        return self.record(project_id, actor_id, action, new_value=value)

    # -- queries ---------------------------------------------------------

    def newest_first(self, entries: Iterable[HistoryEntry]) -> List[HistoryEntry]:
        """Sort by timestamp descending; `entries` in append order breaks ties."""
        indexed = list(enumerate(entries))
        indexed.sort(key=lambda t: (t[1].occurred_at, t[0]), reverse=True)
        return [e for _, e in indexed]

    def for_project(
        self,
        project_id: uuid.UUID,
        entries: Iterable[HistoryEntry],
        action: Optional[HistoryAction] = None,
    ) -> List[HistoryEntry]:
        """Entries for one project, optionally filtered by action, newest first."""
        return self.newest_first(
            e for e in entries
            if e.project_id == project_id and (action is None or e.action == action)
        )

    def for_actor(
        self,
        actor_id: uuid.UUID,
        entries: Iterable[HistoryEntry],
    ) -> List[HistoryEntry]:
        return self.newest_first(e for e in entries if e.actor_id == actor_id)
