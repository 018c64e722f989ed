"""Bulk add-students: outcome buckets, per-email isolation, re-invite suppression."""

from typing import List

import pytest
from sqlalchemy import func, select, text

from conftest import at, make_group, make_instance, make_user
from quizroster.errors import Conflict, Forbidden, InvalidInput, NotFound
from quizroster.models import GroupStudent, PendingInvite, TelemetryEvent
from quizroster.services import enrollment
from quizroster.services.bulk_invites import add_students_to_group, normalize_emails
from quizroster.services.users import UserDirectory


class RecordingNotifier:
    def __init__(self):
        self.invites: List[dict] = []
        self.notices: List[dict] = []

    async def send_invite(self, *, email, token, group_name, expires_at):
        self.invites.append({"email": email, "token": token, "expires_at": expires_at})

    async def send_assignment_notice(self, *, email, group_name, assignments):
        self.notices.append(
            {"email": email, "titles": sorted(item.quiz_title for item in assignments)}
        )


class ExplodingNotifier(RecordingNotifier):
    async def send_invite(self, *, email, token, group_name, expires_at):
        raise RuntimeError("smtp down")


class BrokenLookupDirectory(UserDirectory):
    """Runs an invalid statement for one address to poison its savepoint."""

    def __init__(self, poisoned: str):
        self.poisoned = poisoned

    async def find_user_id(self, session, email):
        if email == self.poisoned:
            await session.execute(text("SELECT * FROM no_such_table"))
        return await super().find_user_id(session, email)


@pytest.fixture
def notifier():
    return RecordingNotifier()


def _by_email(outcome):
    return {item.email: item for item in outcome.results}


class TestNormalizeEmails:
    def test_trims_lowercases_dedupes_in_order(self):
        assert normalize_emails([" B@x.io", "a@x.io", "b@X.io ", "", "   "]) == ["b@x.io", "a@x.io"]


class TestAddStudents:
    async def test_mixed_batch_buckets(self, session, group, mentor, notifier):
        await make_instance(session, group)
        await make_instance(session, group, status="active")
        existing = await make_user(session, "known@school.test")
        member = await make_user(session, "member@school.test")
        await enrollment.enroll(
            session,
            group_id=group.id,
            student_id=member.id,
            mentor_id=mentor.id,
            provenance="mentor_add",
        )
        await session.commit()

        outcome = await add_students_to_group(
            session,
            group_id=group.id,
            emails=["Known@School.test", "member@school.test", "new@school.test", "not-an-email"],
            mentor_id=mentor.id,
            identity=UserDirectory(),
            notifier=notifier,
            now=at(0),
        )

        results = _by_email(outcome)
        assert results["known@school.test"].status == "added"
        assert results["known@school.test"].student_id == existing.id
        assert results["known@school.test"].notes == "assigned 2 quizzes"
        assert results["member@school.test"].status == "already_member"
        assert results["new@school.test"].status == "invited"
        assert results["new@school.test"].expires_at is not None
        assert results["not-an-email"].status == "failed"
        assert "Invalid email" in results["not-an-email"].reason
        assert outcome.summary == {
            "added": 1,
            "invited": 1,
            "already_member": 1,
            "already_invited": 0,
            "failed": 1,
        }

        assert [item["email"] for item in notifier.invites] == ["new@school.test"]
        assert notifier.notices == [
            {"email": "known@school.test", "titles": ["Quiz active", "Quiz scheduled"]}
        ]
        bulk_events = (
            await session.execute(
                select(TelemetryEvent).where(TelemetryEvent.event_type == "group_invite_bulk")
            )
        ).scalars().all()
        assert len(bulk_events) == 1
        assert bulk_events[0].fields["total_emails"] == 4

    async def test_result_never_carries_token(self, session, group, mentor, notifier):
        outcome = await add_students_to_group(
            session,
            group_id=group.id,
            emails=["new@school.test"],
            mentor_id=mentor.id,
            identity=UserDirectory(),
            notifier=notifier,
        )
        token = notifier.invites[0]["token"]
        assert token not in repr(outcome)

    async def test_single_assignment_note(self, session, group, mentor, notifier):
        await make_instance(session, group)
        await make_user(session, "known@school.test")
        outcome = await add_students_to_group(
            session,
            group_id=group.id,
            emails=["known@school.test"],
            mentor_id=mentor.id,
            identity=UserDirectory(),
            notifier=notifier,
        )
        assert outcome.results[0].notes == "assigned 1 quiz"

    async def test_reinvite_is_suppressed(self, session, group, mentor, notifier):
        emails = ["new@school.test"]
        first = await add_students_to_group(
            session,
            group_id=group.id,
            emails=emails,
            mentor_id=mentor.id,
            identity=UserDirectory(),
            notifier=notifier,
            now=at(0),
        )
        stored_hash = (await session.execute(select(PendingInvite.token_hash))).scalar_one()

        second = await add_students_to_group(
            session,
            group_id=group.id,
            emails=emails,
            mentor_id=mentor.id,
            identity=UserDirectory(),
            notifier=notifier,
            now=at(3600),
        )
        assert first.results[0].status == "invited"
        assert second.results[0].status == "already_invited"
        assert second.summary["already_invited"] == 1
        assert len(notifier.invites) == 1
        assert (await session.execute(select(PendingInvite.token_hash))).scalar_one() == stored_hash

    async def test_expired_invite_is_reissued(self, session, group, mentor, notifier):
        for moment in (at(0), at(7 * 24 * 3600)):
            outcome = await add_students_to_group(
                session,
                group_id=group.id,
                emails=["new@school.test"],
                mentor_id=mentor.id,
                identity=UserDirectory(),
                notifier=notifier,
                now=moment,
            )
            assert outcome.results[0].status == "invited"
        assert len(notifier.invites) == 2
        count = await session.execute(select(func.count()).select_from(PendingInvite))
        assert count.scalar_one() == 1

    async def test_failing_statement_does_not_poison_batch(self, session, group, mentor, notifier):
        await make_user(session, "a@school.test")
        await make_user(session, "c@school.test")
        outcome = await add_students_to_group(
            session,
            group_id=group.id,
            emails=["a@school.test", "b@school.test", "c@school.test"],
            mentor_id=mentor.id,
            identity=BrokenLookupDirectory("b@school.test"),
            notifier=notifier,
        )
        results = _by_email(outcome)
        assert results["a@school.test"].status == "added"
        assert results["b@school.test"].status == "failed"
        assert results["c@school.test"].status == "added"
        members = await session.execute(
            select(func.count()).select_from(GroupStudent).where(GroupStudent.group_id == group.id)
        )
        assert members.scalar_one() == 2

    async def test_notifier_failure_does_not_fail_email(self, session, group, mentor):
        outcome = await add_students_to_group(
            session,
            group_id=group.id,
            emails=["new@school.test"],
            mentor_id=mentor.id,
            identity=UserDirectory(),
            notifier=ExplodingNotifier(),
        )
        assert outcome.results[0].status == "invited"


class TestAddStudentsPreconditions:
    async def test_empty_input_rejected(self, session, group, mentor, notifier):
        for emails in ([], ["", "  "]):
            with pytest.raises(InvalidInput):
                await add_students_to_group(
                    session,
                    group_id=group.id,
                    emails=emails,
                    mentor_id=mentor.id,
                    identity=UserDirectory(),
                    notifier=notifier,
                )

    async def test_unknown_group(self, session, mentor, notifier):
        with pytest.raises(NotFound):
            await add_students_to_group(
                session,
                group_id="missing",
                emails=["a@school.test"],
                mentor_id=mentor.id,
                identity=UserDirectory(),
                notifier=notifier,
            )

    async def test_foreign_group(self, session, group, notifier):
        other = await make_user(session, "other@school.test", role="mentor")
        with pytest.raises(Forbidden):
            await add_students_to_group(
                session,
                group_id=group.id,
                emails=["a@school.test"],
                mentor_id=other.id,
                identity=UserDirectory(),
                notifier=notifier,
            )

    async def test_archived_group(self, session, mentor, notifier):
        archived = await make_group(session, mentor, archived=True)
        with pytest.raises(Conflict):
            await add_students_to_group(
                session,
                group_id=archived.id,
                emails=["a@school.test"],
                mentor_id=mentor.id,
                identity=UserDirectory(),
                notifier=notifier,
            )
