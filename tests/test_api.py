"""HTTP surface: auth, camelCase bodies, status codes and Retry-After."""

from dataclasses import dataclass
from typing import Callable, Dict, List
from urllib.parse import parse_qs, urlparse
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

from quizroster.config import get_settings
from quizroster.dependencies import (
    build_engine,
    get_bulk_invite_limiter,
    get_db_session,
    get_notifier,
)
from quizroster.main import app
from quizroster.models import Base, User
from quizroster.security import create_session_token
from quizroster.services.rate_limits import FixedWindowRateLimiter


class CapturingNotifier:
    def __init__(self):
        self.tokens: Dict[str, str] = {}

    async def send_invite(self, *, email, token, group_name, expires_at):
        self.tokens[email] = token

    async def send_assignment_notice(self, *, email, group_name, assignments):
        return None


@dataclass
class Api:
    client: TestClient
    notifier: CapturingNotifier
    add_user: Callable[[str, str], str]

    def auth(self, user_id: str, role: str) -> Dict[str, str]:
        token = create_session_token(
            user_id, role, get_settings().auth_secret_key, ttl_seconds=3600
        )
        return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def api(tmp_path):
    path = tmp_path / "api.db"
    sync_engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(sync_engine)

    def add_user(email: str, role: str) -> str:
        user_id = str(uuid4())
        with Session(sync_engine) as seed:
            seed.add(User(id=user_id, email=email, role=role, full_name=email))
            seed.commit()
        return user_id

    engine = build_engine(f"sqlite+aiosqlite:///{path}", get_settings(), poolclass=NullPool)
    maker = async_sessionmaker(bind=engine, expire_on_commit=False)

    async def override_session():
        async with maker() as session:
            yield session

    limiter = FixedWindowRateLimiter(max_requests=2, window_seconds=60)
    notifier = CapturingNotifier()
    app.dependency_overrides[get_db_session] = override_session
    app.dependency_overrides[get_bulk_invite_limiter] = lambda: limiter
    app.dependency_overrides[get_notifier] = lambda: notifier
    with TestClient(app) as client:
        yield Api(client=client, notifier=notifier, add_user=add_user)
    app.dependency_overrides.clear()
    sync_engine.dispose()


def _create_group(api: Api, mentor_id: str, name: str = "Physics 101") -> Dict:
    response = api.client.post("/groups", json={"name": name}, headers=api.auth(mentor_id, "mentor"))
    assert response.status_code == 201
    return response.json()


class TestAuth:
    def test_anonymous_rejected(self, api):
        response = api.client.get("/groups")
        assert response.status_code == 401
        assert response.json()["code"] == "unauthorized"

    def test_student_cannot_manage_groups(self, api):
        student_id = api.add_user("ada@school.test", "student")
        response = api.client.post(
            "/groups", json={"name": "Nope"}, headers=api.auth(student_id, "student")
        )
        assert response.status_code == 403

    def test_public_endpoints(self, api):
        assert api.client.get("/health").json()["status"] == "ok"
        assert api.client.get("/metrics").status_code == 200


class TestGroups:
    def test_create_and_list_use_camel_case(self, api):
        mentor_id = api.add_user("mentor@school.test", "mentor")
        group = _create_group(api, mentor_id)
        assert group["mentorId"] == mentor_id
        assert group["isArchived"] is False

        listed = api.client.get("/groups", headers=api.auth(mentor_id, "mentor")).json()
        assert [item["id"] for item in listed] == [group["id"]]

    def test_blank_name_is_bad_request(self, api):
        mentor_id = api.add_user("mentor@school.test", "mentor")
        response = api.client.post(
            "/groups", json={"name": "   "}, headers=api.auth(mentor_id, "mentor")
        )
        assert response.status_code == 400
        assert response.json()["code"] == "invalid_input"

    def test_add_students_and_rate_limit(self, api):
        mentor_id = api.add_user("mentor@school.test", "mentor")
        api.add_user("ada@school.test", "student")
        group = _create_group(api, mentor_id)
        headers = api.auth(mentor_id, "mentor")
        url = f"/groups/{group['id']}/add-students"

        response = api.client.post(
            url, json={"emails": ["ada@school.test", "new@school.test", "bad"]}, headers=headers
        )
        assert response.status_code == 200
        body = response.json()
        statuses: List[str] = [item["status"] for item in body["results"]]
        assert statuses == ["added", "invited", "failed"]
        assert body["results"][0]["studentId"]
        assert body["results"][1]["expiresAt"]
        assert body["summary"]["failed"] == 1

        assert api.client.post(url, json={"emails": ["x@school.test"]}, headers=headers).status_code == 200
        limited = api.client.post(url, json={"emails": ["y@school.test"]}, headers=headers)
        assert limited.status_code == 429
        assert int(limited.headers["Retry-After"]) >= 1
        assert limited.json()["code"] == "rate_limited"

    def test_empty_email_list_is_bad_request(self, api):
        mentor_id = api.add_user("mentor@school.test", "mentor")
        group = _create_group(api, mentor_id)
        response = api.client.post(
            f"/groups/{group['id']}/add-students",
            json={"emails": []},
            headers=api.auth(mentor_id, "mentor"),
        )
        assert response.status_code == 400


class TestQrFlow:
    def test_open_poll_join_revoke(self, api):
        mentor_id = api.add_user("mentor@school.test", "mentor")
        student_id = api.add_user("ada@school.test", "student")
        group = _create_group(api, mentor_id)
        mentor = api.auth(mentor_id, "mentor")
        student = api.auth(student_id, "student")
        url = f"/groups/{group['id']}/qr-session"

        assert api.client.get(url, headers=mentor).json()["session"] is None

        opened = api.client.post(url, headers=mentor)
        assert opened.status_code == 201
        session = opened.json()["session"]
        assert opened.json()["ttlMinutes"] == 30
        assert session["joinUrl"].endswith(f"/join/{session['token']}")

        reopened = api.client.post(url, headers=mentor)
        assert reopened.status_code == 200
        assert reopened.json()["session"]["id"] == session["id"]

        joined = api.client.post("/join-with-token", json={"token": session["token"]}, headers=student)
        assert joined.status_code == 200
        assert joined.json()["joined"] is True
        assert joined.json()["groupName"] == "Physics 101"

        rejoined = api.client.post(
            "/join-with-token", json={"token": session["token"]}, headers=student
        )
        assert rejoined.json()["alreadyMember"] is True

        polled = api.client.get(url, headers=mentor).json()["session"]
        assert polled["consumedCount"] == 1

        revoked = api.client.request(
            "DELETE", url, json={"sessionId": session["id"]}, headers=mentor
        )
        assert revoked.status_code == 204
        assert api.client.get(url, headers=mentor).json()["session"] is None

        gone = api.client.post("/join-with-token", json={"token": session["token"]}, headers=student)
        assert gone.status_code == 410
        assert gone.json()["code"] == "gone"

    def test_unknown_token(self, api):
        student_id = api.add_user("ada@school.test", "student")
        response = api.client.post(
            "/join-with-token", json={"token": "0" * 32}, headers=api.auth(student_id, "student")
        )
        assert response.status_code == 404


class TestInviteFlow:
    def test_invite_link_redirects_then_accept(self, api):
        mentor_id = api.add_user("mentor@school.test", "mentor")
        group = _create_group(api, mentor_id)
        api.client.post(
            f"/groups/{group['id']}/add-students",
            json={"emails": ["late@school.test"]},
            headers=api.auth(mentor_id, "mentor"),
        )
        token = api.notifier.tokens["late@school.test"]

        redirect = api.client.get(f"/invites/{token}", follow_redirects=False)
        assert redirect.status_code == 302
        location = urlparse(redirect.headers["location"])
        assert location.path == "/signup"
        query = parse_qs(location.query)
        assert query["email"] == ["late@school.test"]
        assert query["group_id"] == [group["id"]]

        student_id = api.add_user("late@school.test", "student")
        accepted = api.client.post(
            "/invites/accept", json={"token": token}, headers=api.auth(student_id, "student")
        )
        assert accepted.status_code == 200
        assert accepted.json()["joined"] is True

        reused = api.client.post(
            "/invites/accept", json={"token": token}, headers=api.auth(student_id, "student")
        )
        assert reused.status_code == 410
        assert reused.json()["code"] == "inactive"


class TestQuizzes:
    def test_instance_fans_out_to_members(self, api):
        mentor_id = api.add_user("mentor@school.test", "mentor")
        api.add_user("ada@school.test", "student")
        group = _create_group(api, mentor_id)
        headers = api.auth(mentor_id, "mentor")
        api.client.post(
            f"/groups/{group['id']}/add-students", json={"emails": ["ada@school.test"]}, headers=headers
        )

        quiz = api.client.post("/quizzes", json={"title": "Kinematics"}, headers=headers).json()
        instance = api.client.post(
            f"/quizzes/{quiz['id']}/instances", json={"groupId": group["id"]}, headers=headers
        )
        assert instance.status_code == 201
        assert instance.json()["membersAssigned"] == 1

        events = api.client.get("/events", headers=headers).json()
        assert "quiz_instance_created" in {event["eventType"] for event in events}
