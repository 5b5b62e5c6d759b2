"""Shared fixtures: a fresh in-memory database with a small term / staff catalog."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date
from typing import Callable, List, Optional

import pytest

from application import (
    ROLE_ADMIN,
    ROLE_TEACHER,
    ActorContext,
    CreateProjectCommand,
    CreateProjectUseCase,
    ProjectDTO,
)
from infrastructure import InMemoryDatabase, InMemoryUnitOfWork
from model import Attachment, AttachmentType, StaffAssignment, StaffMember, Term


@dataclass
class Catalog:
    admin: StaffMember
    teacher: StaffMember
    other_teacher: StaffMember
    term1: Term            # 2024-01-01, active
    term2: Term            # 2024-07-01, active
    term3: Term            # 2025-01-01, active
    term_early: Term       # 2023-07-01, active
    term_same_start: Term  # 2024-01-01, active
    term_inactive: Term    # 2025-07-01, inactive
    a1: StaffAssignment    # teacher, term1
    a1b: StaffAssignment   # teacher, term1
    a2: StaffAssignment    # teacher, term2
    a3: StaffAssignment    # other_teacher, term1
    a_inactive: StaffAssignment  # teacher, term1, inactive


@pytest.fixture
def db() -> InMemoryDatabase:
    return InMemoryDatabase()


@pytest.fixture
def uow(db: InMemoryDatabase) -> InMemoryUnitOfWork:
    return InMemoryUnitOfWork(db)


@pytest.fixture
def catalog(uow: InMemoryUnitOfWork) -> Catalog:
    admin = StaffMember(name="Administrator", email="admin@example.edu")
    teacher = StaffMember(name="Ana Torres", email="ana@example.edu")
    other = StaffMember(name="Luis Pérez", email="luis@example.edu")
    for user in (admin, teacher, other):
        uow.users.add(user)

    term1 = Term(code="2024-1", start_date=date(2024, 1, 1))
    term2 = Term(code="2024-2", start_date=date(2024, 7, 1))
    term3 = Term(code="2025-1", start_date=date(2025, 1, 1))
    term_early = Term(code="2023-2", start_date=date(2023, 7, 1))
    term_same = Term(code="2024-1B", start_date=date(2024, 1, 1))
    term_inactive = Term(code="2025-2", start_date=date(2025, 7, 1), is_active=False)
    for term in (term1, term2, term3, term_early, term_same, term_inactive):
        uow.terms.add(term)

    def _assignment(staff: StaffMember, term: Term, code: str, active: bool = True) -> StaffAssignment:
        a = StaffAssignment(
            staff_id=staff.id, term_id=term.id, subject_code=code,
            subject_name=f"Subject {code}", staff_name=staff.name, is_active=active,
        )
        uow.staff_assignments.add(a)
        return a

    return Catalog(
        admin=admin,
        teacher=teacher,
        other_teacher=other,
        term1=term1,
        term2=term2,
        term3=term3,
        term_early=term_early,
        term_same_start=term_same,
        term_inactive=term_inactive,
        a1=_assignment(teacher, term1, "SWE-101"),
        a1b=_assignment(teacher, term1, "SWE-105"),
        a2=_assignment(teacher, term2, "SWE-102"),
        a3=_assignment(other, term1, "MAT-201"),
        a_inactive=_assignment(teacher, term1, "OLD-001", active=False),
    )


@pytest.fixture
def admin_actor(catalog: Catalog) -> ActorContext:
    return ActorContext(user_id=catalog.admin.id, roles=frozenset({ROLE_ADMIN}))


@pytest.fixture
def teacher_actor(catalog: Catalog) -> ActorContext:
    return ActorContext(user_id=catalog.teacher.id, roles=frozenset({ROLE_TEACHER}))


@pytest.fixture
def other_actor(catalog: Catalog) -> ActorContext:
    return ActorContext(user_id=catalog.other_teacher.id, roles=frozenset({ROLE_TEACHER}))


@pytest.fixture
def make_project(
    uow: InMemoryUnitOfWork, catalog: Catalog, teacher_actor: ActorContext
) -> Callable[..., ProjectDTO]:
    """Create a project as the teacher; defaults to term1 with no assignments."""

    def _make(
        title: str = "Robotics Lab",
        term: Optional[Term] = None,
        assignments: Optional[List[uuid.UUID]] = None,
        participants: Optional[List[str]] = None,
        actor: Optional[ActorContext] = None,
        **kwargs,
    ) -> ProjectDTO:
        cmd = CreateProjectCommand(
            title=title,
            term_id=(term or catalog.term1).id,
            staff_assignment_ids=assignments or [],
            participant_names=participants or [],
            **kwargs,
        )
        return CreateProjectUseCase().execute(cmd, actor or teacher_actor, uow)

    return _make


@pytest.fixture
def add_formal_document(uow: InMemoryUnitOfWork, catalog: Catalog) -> Callable[[str], Attachment]:
    def _add(project_id: str) -> Attachment:
        attachment = Attachment(
            project_id=uuid.UUID(project_id),
            type=AttachmentType.FORMAL_DOCUMENT,
            name="final-report.pdf",
            file_key=f"projects/{project_id}/final-report.pdf",
            uploaded_by_id=catalog.teacher.id,
        )
        uow.attachments.add(attachment)
        return attachment

    return _add
