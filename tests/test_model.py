"""Tests for the Project aggregate: factory, lifecycle, collections and links."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import pytest

from model import (
    InvalidArgumentError,
    InvalidTransitionError,
    Participant,
    ParticipantSyncItem,
    Project,
    ProjectStatus,
    action_label,
    status_label,
    HistoryAction,
)


def _project(**kwargs) -> Project:
    defaults = dict(title="Robotics Lab", term_id=uuid.uuid4(), responsible_staff_id=uuid.uuid4())
    defaults.update(kwargs)
    return Project.create(**defaults)


class TestCreate:
    def test_trims_and_starts_as_proposal(self) -> None:
        p = _project(title="  Robotics Lab  ", description="  ", general_objective=" Build ")
        assert p.title == "Robotics Lab"
        assert p.status == ProjectStatus.PROPOSAL
        assert p.description is None
        assert p.general_objective == "Build"
        assert p.updated_at is None
        assert p.version == 0

    def test_blank_title_rejected(self) -> None:
        with pytest.raises(InvalidArgumentError):
            _project(title="   ")

    def test_missing_term_rejected(self) -> None:
        with pytest.raises(InvalidArgumentError):
            _project(term_id=None)

    def test_missing_responsible_rejected(self) -> None:
        with pytest.raises(InvalidArgumentError):
            _project(responsible_staff_id=None)


class TestRestore:
    def test_restores_child_collections(self) -> None:
        pid, a1, a2 = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        ana = Participant(name="Ana")
        p = Project.restore(
            id=pid,
            title="Restored",
            term_id=uuid.uuid4(),
            responsible_staff_id=uuid.uuid4(),
            status=ProjectStatus.IN_PROGRESS,
            created_at=datetime(2024, 1, 2, tzinfo=timezone.utc),
            staff_assignment_ids=[a1, a2],
            participants=[ana],
            version=7,
        )
        assert p.id == pid
        assert p.staff_assignment_ids == [a1, a2]
        assert p.participants[0].id == ana.id
        assert p.version == 7

    def test_rejects_duplicate_participants(self) -> None:
        with pytest.raises(InvalidArgumentError):
            Project.restore(
                id=uuid.uuid4(),
                title="Restored",
                term_id=uuid.uuid4(),
                responsible_staff_id=uuid.uuid4(),
                status=ProjectStatus.PROPOSAL,
                created_at=datetime.now(timezone.utc),
                participants=[Participant(name="Ana"), Participant(name="ANA")],
            )


class TestScalarUpdates:
    def test_update_title_bumps_updated_at(self) -> None:
        p = _project()
        p.update_title("  Vision Lab ")
        assert p.title == "Vision Lab"
        assert p.updated_at is not None

    def test_update_title_blank_rejected(self) -> None:
        p = _project()
        with pytest.raises(InvalidArgumentError):
            p.update_title(" ")

    def test_objectives_and_description(self) -> None:
        p = _project()
        p.update_description(" About ")
        p.update_general_objective(" General ")
        p.update_specific_objectives(" Specific ")
        assert (p.description, p.general_objective, p.specific_objectives) == (
            "About", "General", "Specific",
        )


class TestChangeStatus:
    def test_same_status_is_noop(self) -> None:
        p = _project()
        assert p.change_status(ProjectStatus.PROPOSAL) is False
        assert p.updated_at is None

    def test_archived_is_terminal(self) -> None:
        p = _project()
        p.change_status(ProjectStatus.ARCHIVED)
        for target in (ProjectStatus.PROPOSAL, ProjectStatus.IN_PROGRESS, ProjectStatus.COMPLETED):
            with pytest.raises(InvalidTransitionError):
                p.change_status(target)
        assert p.status == ProjectStatus.ARCHIVED

    def test_completed_cannot_reopen(self) -> None:
        p = _project()
        p.change_status(ProjectStatus.COMPLETED)
        with pytest.raises(InvalidTransitionError):
            p.change_status(ProjectStatus.IN_PROGRESS)

    def test_completed_may_be_archived_or_continued(self) -> None:
        p = _project()
        p.change_status(ProjectStatus.COMPLETED)
        p.change_status(ProjectStatus.IN_CONTINUING)
        assert p.status == ProjectStatus.IN_CONTINUING

        q = _project()
        q.change_status(ProjectStatus.COMPLETED)
        q.change_status(ProjectStatus.ARCHIVED)
        assert q.status == ProjectStatus.ARCHIVED

    def test_edit_lock(self) -> None:
        p = _project()
        assert not p.is_edit_locked
        p.change_status(ProjectStatus.COMPLETED)
        assert p.is_edit_locked


class TestResponsibleStaff:
    def test_same_staff_rejected(self) -> None:
        p = _project()
        with pytest.raises(InvalidArgumentError):
            p.change_responsible_staff(p.responsible_staff_id)

    def test_change(self) -> None:
        p = _project()
        new_id = uuid.uuid4()
        p.change_responsible_staff(new_id)
        assert p.responsible_staff_id == new_id


class TestStaffAssignments:
    def test_full_replace(self) -> None:
        p = _project()
        a, b, c = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
        p.set_staff_assignments([a, b])
        p.set_staff_assignments([c])
        assert p.staff_assignment_ids == [c]

    def test_duplicate_rejected(self) -> None:
        p = _project()
        a = uuid.uuid4()
        with pytest.raises(InvalidArgumentError):
            p.set_staff_assignments([a, a])

    def test_empty_id_rejected(self) -> None:
        p = _project()
        with pytest.raises(InvalidArgumentError):
            p.set_staff_assignments([uuid.UUID(int=0)])


class TestSetParticipants:
    def test_blank_names_dropped(self) -> None:
        p = _project()
        p.set_participants([" Ana ", "", "  ", "Beto"])
        assert p.participant_names_sorted() == ["Ana", "Beto"]

    def test_duplicate_names_rejected_case_insensitively(self) -> None:
        p = _project()
        with pytest.raises(InvalidArgumentError):
            p.set_participants(["Ana", "aNA"])


class TestSyncParticipants:
    def _with_roster(self, *names: str) -> Project:
        p = _project()
        p.set_participants(names)
        p.updated_at = None
        return p

    def test_roster_size_and_deleted_count(self) -> None:
        p = self._with_roster("Ana", "Beto", "Carla")
        ana, beto, _ = sorted(p.participants, key=lambda x: x.name)
        items = [
            ParticipantSyncItem(id=ana.id, name="Ana"),
            ParticipantSyncItem(id=beto.id, name="Roberto"),
            ParticipantSyncItem(name="Diego"),
            ParticipantSyncItem(name="Elena"),
        ]
        result = p.sync_participants(items)
        assert len(p.participants) == result.created + result.updated == 4
        assert (result.created, result.updated, result.deleted, result.renamed) == (2, 2, 1, 1)

    def test_rename_keeps_identity(self) -> None:
        p = self._with_roster("Ana")
        ana = p.participants[0]
        p.sync_participants([ParticipantSyncItem(id=ana.id, name="Ana María")])
        assert p.participants == [Participant(id=ana.id, name="Ana María")]

    def test_unidentified_name_always_creates(self) -> None:
        p = self._with_roster("Ana")
        old_id = p.participants[0].id
        result = p.sync_participants([ParticipantSyncItem(name="Ana")])
        assert result.created == 1 and result.deleted == 1
        assert p.participants[0].id != old_id

    def test_echoed_ids_are_idempotent(self) -> None:
        p = self._with_roster("Ana", "Beto")
        items = [ParticipantSyncItem(id=x.id, name=x.name) for x in p.participants]
        result = p.sync_participants(items)
        assert not result.changed
        assert p.updated_at is None

    def test_unknown_id_rejected(self) -> None:
        p = self._with_roster("Ana")
        with pytest.raises(InvalidArgumentError):
            p.sync_participants([ParticipantSyncItem(id=uuid.uuid4(), name="Ghost")])

    def test_duplicate_names_rejected(self) -> None:
        p = self._with_roster("Ana")
        with pytest.raises(InvalidArgumentError):
            p.sync_participants([ParticipantSyncItem(name="Beto"), ParticipantSyncItem(name=" beto ")])

    def test_duplicate_ids_rejected(self) -> None:
        p = self._with_roster("Ana")
        ana = p.participants[0]
        with pytest.raises(InvalidArgumentError):
            p.sync_participants([
                ParticipantSyncItem(id=ana.id, name="Ana"),
                ParticipantSyncItem(id=ana.id, name="Ana Two"),
            ])

    def test_empty_list_deletes_everyone(self) -> None:
        p = self._with_roster("Ana", "Beto")
        result = p.sync_participants([])
        assert p.participants == []
        assert result.deleted == 2
        assert p.updated_at is not None

    def test_rejected_sync_leaves_roster_untouched(self) -> None:
        p = self._with_roster("Ana")
        before = list(p.participants)
        with pytest.raises(InvalidArgumentError):
            p.sync_participants([ParticipantSyncItem(name="X"), ParticipantSyncItem(name="x")])
        assert p.participants == before


class TestContinuationLinks:
    def test_set_continuation_of_self_rejected(self) -> None:
        p = _project()
        with pytest.raises(InvalidArgumentError):
            p.set_continuation_of(p.id)

    def test_set_continuation_of_only_once(self) -> None:
        p = _project()
        p.set_continuation_of(uuid.uuid4())
        with pytest.raises(InvalidArgumentError):
            p.set_continuation_of(uuid.uuid4())

    def test_mark_continued_by_rules(self) -> None:
        p = _project()
        with pytest.raises(InvalidArgumentError):
            p.mark_continued_by(p.id, uuid.uuid4())
        with pytest.raises(InvalidArgumentError):
            p.mark_continued_by(uuid.uuid4(), p.term_id)
        successor = uuid.uuid4()
        p.mark_continued_by(successor, uuid.uuid4())
        assert p.continued_by == successor
        with pytest.raises(InvalidArgumentError):
            p.mark_continued_by(uuid.uuid4(), uuid.uuid4())


class TestLabels:
    def test_spanish_and_english(self) -> None:
        assert status_label(ProjectStatus.IN_PROGRESS, "es") == "En Progreso"
        assert status_label(ProjectStatus.IN_PROGRESS, "en") == "In Progress"
        assert action_label(HistoryAction.CREATED, "es") == "Creado"

    def test_unknown_language(self) -> None:
        with pytest.raises(ValueError):
            status_label(ProjectStatus.PROPOSAL, "fr")
