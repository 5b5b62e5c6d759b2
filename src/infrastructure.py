"""
infrastructure.py

In-memory implementation of all repository / lookup interfaces and the
Unit of Work.

This is a self-contained, zero-dependency backend that stores everything in
plain Python dicts keyed by UUID, for local development, demos and
integration testing without a real database.  Two properties make it behave
like a real store:

  - objects are deep-copied on the way in and out, so an aggregate changed
    in memory is not "saved" until a repository writes it, and the
    optimistic-concurrency version check sees stale copies;
  - a unit of work snapshots the whole database on enter and restores the
    snapshot on rollback, so a use case's aggregate writes and history
    entries are committed or discarded together.

To swap in a real database later, implement the same Abstract* interfaces
from application.py and override get_uow() in api.py:

    app.dependency_overrides[get_uow] = lambda: SqlAlchemyUnitOfWork(session)
"""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from datetime import date
from typing import Dict, Optional

from application import (
    AbstractAttachmentRepository,
    AbstractHistoryRepository,
    AbstractProjectRepository,
    AbstractStaffAssignmentLookup,
    AbstractTermLookup,
    AbstractUnitOfWork,
    AbstractUserLookup,
    ConflictError,
    NotFoundError,
)
from model import (
    AttachmentType,
    HistoryAction,
    Project,
    StaffAssignment,
    StaffMember,
    Term,
)
from service import AuditService

logger = logging.getLogger(__name__)

_audit_svc = AuditService()


# ---------------------------------------------------------------------------
# Generic in-memory store
# ---------------------------------------------------------------------------

class _Store(dict):
    """A plain dict with copying get/save/delete helpers."""

    def fetch(self, key: uuid.UUID):
        obj = self.get(key)
        return copy.deepcopy(obj) if obj is not None else None

    def put(self, obj) -> None:
        self[obj.id] = copy.deepcopy(obj)

    def remove(self, key: uuid.UUID) -> None:
        self.pop(key, None)

    def all(self) -> list:
        return [copy.deepcopy(v) for v in self.values()]


# ---------------------------------------------------------------------------
# Shared in-memory database (module-level singleton)
# Persists for the lifetime of the process; restarting uvicorn resets it.
# ---------------------------------------------------------------------------

class InMemoryDatabase:
    _STORES = ("projects", "history", "terms", "staff_assignments", "users", "attachments")

    def __init__(self):
        self.projects:          _Store = _Store()
        self.history:           _Store = _Store()
        self.terms:             _Store = _Store()
        self.staff_assignments: _Store = _Store()
        self.users:             _Store = _Store()
        self.attachments:       _Store = _Store()
        # One transaction at a time; re-entrant so a nested UoW on the same
        # thread does not deadlock.
        self.lock = threading.RLock()

    def snapshot(self) -> Dict[str, dict]:
        return {name: copy.deepcopy(dict(getattr(self, name))) for name in self._STORES}

    def restore(self, snapshot: Dict[str, dict]) -> None:
        for name, data in snapshot.items():
            store = getattr(self, name)
            store.clear()
            store.update(data)


# Module-level singleton, shared across all requests
_db = InMemoryDatabase()


# ---------------------------------------------------------------------------
# Repository implementations
# ---------------------------------------------------------------------------

class InMemoryProjectRepository(AbstractProjectRepository):
    def __init__(self, store: _Store): self._s = store
    def get(self, project_id):        return self._s.fetch(project_id)
    def list_for_term(self, term_id):
        return [p for p in self._s.all() if p.term_id == term_id]
    def list_for_responsible_in_term(self, staff_id, term_id):
        return [
            p for p in self._s.all()
            if p.responsible_staff_id == staff_id and p.term_id == term_id
        ]
    def list_for_staff_assignment(self, assignment_id):
        return [p for p in self._s.all() if assignment_id in p.staff_assignment_ids]
    def list_continuations_of(self, project_id):
        return [p for p in self._s.all() if p.continuation_of == project_id]

    def title_exists_in_term(self, title, term_id, exclude_id=None):
        wanted = (title or "").strip().casefold()
        return any(
            p.term_id == term_id
            and p.id != exclude_id
            and p.title.strip().casefold() == wanted
            for p in self._s.values()
        )

    def add(self, project):
        if project.id in self._s:
            raise ConflictError(f"Project {project.id} already exists.")
        self._s.put(project)

    def _check_version(self, project: Project) -> Project:
        stored = self._s.get(project.id)
        if stored is None:
            raise NotFoundError(f"Project {project.id} not found.")
        if stored.version != project.version:
            raise ConflictError(
                f"Project {project.id} was modified concurrently "
                f"(stored version {stored.version}, loaded version {project.version})."
            )
        return stored

    def update(self, project):
        self._check_version(project)
        project.version += 1
        self._s.put(project)

    def update_basic(self, project):
        stored = copy.deepcopy(self._check_version(project))
        for attr in (
            "title", "general_objective", "specific_objectives", "description",
            "status", "responsible_staff_id", "continuation_of", "continued_by",
            "updated_at",
        ):
            setattr(stored, attr, getattr(project, attr))
        project.version += 1
        stored.version = project.version
        self._s.put(stored)


class InMemoryHistoryRepository(AbstractHistoryRepository):
    """Dict insertion order is append order; queries sort newest first."""
    def __init__(self, store: _Store): self._s = store
    def append(self, entry):
        if entry.id in self._s:
            raise ConflictError(f"History entry {entry.id} already exists.")
        self._s.put(entry)
    def append_many(self, entries):
        for entry in entries:
            self.append(entry)
    def list_for_project(self, project_id):
        return _audit_svc.for_project(project_id, self._s.all())
    def list_for_project_and_action(self, project_id, action):
        return _audit_svc.for_project(project_id, self._s.all(), action=HistoryAction(action))
    def list_for_actor(self, actor_id):
        return _audit_svc.for_actor(actor_id, self._s.all())


class InMemoryTermLookup(AbstractTermLookup):
    def __init__(self, store: _Store): self._s = store
    def get(self, term_id):           return self._s.fetch(term_id)
    def add(self, term: Term):        self._s.put(term)


class InMemoryStaffAssignmentLookup(AbstractStaffAssignmentLookup):
    def __init__(self, store: _Store): self._s = store
    def get(self, assignment_id):     return self._s.fetch(assignment_id)
    def list_for_staff(self, staff_id):
        return [a for a in self._s.all() if a.staff_id == staff_id]
    def add(self, assignment: StaffAssignment): self._s.put(assignment)


class InMemoryUserLookup(AbstractUserLookup):
    def __init__(self, store: _Store): self._s = store
    def get(self, user_id):           return self._s.fetch(user_id)
    def add(self, user: StaffMember): self._s.put(user)


class InMemoryAttachmentRepository(AbstractAttachmentRepository):
    def __init__(self, store: _Store): self._s = store
    def get(self, attachment_id):     return self._s.fetch(attachment_id)
    def list_for_project(self, project_id, include_deleted=False):
        return sorted(
            (
                a for a in self._s.all()
                if a.project_id == project_id and (include_deleted or not a.is_deleted)
            ),
            key=lambda a: a.uploaded_at,
        )
    def count_by_type(self, project_id, kind, include_deleted=False):
        kind = AttachmentType(kind)
        return sum(
            1 for a in self._s.values()
            if a.project_id == project_id
            and a.type == kind
            and (include_deleted or not a.is_deleted)
        )
    def add(self, attachment):        self._s.put(attachment)
    def update(self, attachment):
        if attachment.id not in self._s:
            raise NotFoundError(f"Attachment {attachment.id} not found.")
        self._s.put(attachment)


# ---------------------------------------------------------------------------
# Unit of Work
# ---------------------------------------------------------------------------

class InMemoryUnitOfWork(AbstractUnitOfWork):
    """
    Wraps all in-memory repositories.

    Entering the context locks the database and takes a snapshot;
    rollback() restores it, commit() discards it.  Outside a `with` block
    repositories read and write the database directly.
    """

    def __init__(self, db: InMemoryDatabase = _db):
        self._db = db
        self._snapshot: Optional[Dict[str, dict]] = None
        self.projects          = InMemoryProjectRepository(db.projects)
        self.history           = InMemoryHistoryRepository(db.history)
        self.terms             = InMemoryTermLookup(db.terms)
        self.staff_assignments = InMemoryStaffAssignmentLookup(db.staff_assignments)
        self.users             = InMemoryUserLookup(db.users)
        self.attachments       = InMemoryAttachmentRepository(db.attachments)

    def __enter__(self) -> "InMemoryUnitOfWork":
        self._db.lock.acquire()
        self._snapshot = self._db.snapshot()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        try:
            super().__exit__(exc_type, exc_val, exc_tb)
        finally:
            self._db.lock.release()

    def commit(self) -> None:
        self._snapshot = None

    def rollback(self) -> None:
        if self._snapshot is not None:
            self._db.restore(self._snapshot)
            self._snapshot = None
            logger.info("Unit of work rolled back.")


# ---------------------------------------------------------------------------
# Demo catalog
# ---------------------------------------------------------------------------

DEMO_ADMIN_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
DEMO_TEACHER_ID = uuid.UUID("00000000-0000-0000-0000-000000000002")
DEMO_TEACHER_2_ID = uuid.UUID("00000000-0000-0000-0000-000000000003")
DEMO_TERM_1_ID = uuid.UUID("00000000-0000-0000-0000-000000000101")
DEMO_TERM_2_ID = uuid.UUID("00000000-0000-0000-0000-000000000102")
DEMO_ASSIGNMENT_1_ID = uuid.UUID("00000000-0000-0000-0000-000000000201")
DEMO_ASSIGNMENT_2_ID = uuid.UUID("00000000-0000-0000-0000-000000000202")


def seed_demo_data(db: InMemoryDatabase = _db) -> None:
    """Load a small term / staff / assignment catalog.  Idempotent."""
    uow = InMemoryUnitOfWork(db)
    if uow.users.get(DEMO_ADMIN_ID) is not None:
        return
    with uow:
        uow.users.add(StaffMember(id=DEMO_ADMIN_ID, name="Administrator", email="admin@example.edu"))
        uow.users.add(StaffMember(id=DEMO_TEACHER_ID, name="Ana Torres", email="ana.torres@example.edu"))
        uow.users.add(StaffMember(id=DEMO_TEACHER_2_ID, name="Luis Pérez", email="luis.perez@example.edu"))
        uow.terms.add(Term(
            id=DEMO_TERM_1_ID, code="2024-1", name="First term 2024",
            start_date=date(2024, 1, 1), end_date=date(2024, 6, 30),
        ))
        uow.terms.add(Term(
            id=DEMO_TERM_2_ID, code="2024-2", name="Second term 2024",
            start_date=date(2024, 7, 1), end_date=date(2024, 12, 15),
        ))
        uow.staff_assignments.add(StaffAssignment(
            id=DEMO_ASSIGNMENT_1_ID, staff_id=DEMO_TEACHER_ID, term_id=DEMO_TERM_1_ID,
            subject_code="SWE-101", subject_name="Software Engineering I", staff_name="Ana Torres",
        ))
        uow.staff_assignments.add(StaffAssignment(
            id=DEMO_ASSIGNMENT_2_ID, staff_id=DEMO_TEACHER_ID, term_id=DEMO_TERM_2_ID,
            subject_code="SWE-102", subject_name="Software Engineering II", staff_name="Ana Torres",
        ))
        uow.commit()
    logger.info("Demo catalog seeded. admin=%s teacher=%s", DEMO_ADMIN_ID, DEMO_TEACHER_ID)
