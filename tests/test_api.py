import time
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from api.main import app, sign_token, verify_token
from db.session import get_db, get_redis
from models.user import Role


@pytest.fixture
def redis():
    return AsyncMock()


@pytest_asyncio.fixture
async def client(session_factory, redis, quiz_data):
    async def override_db():
        async with session_factory() as session:
            yield session

    async def override_redis():
        yield redis

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_redis] = override_redis
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def auth(user):
    return {"X-Auth-Token": sign_token(user.id, Role(user.role).value)}


def test_token_round_trip():
    user = verify_token(sign_token(7, "INSTRUCTOR"))
    assert (user.id, user.role) == (7, Role.INSTRUCTOR)


@pytest.mark.parametrize("token", [
    None,
    "garbage",
    "7:INSTRUCTOR:123:deadbeef",
    "7:WIZARD:123:deadbeef",
])
def test_invalid_tokens_are_rejected(token):
    assert verify_token(token) is None


def test_tampered_or_expired_token_is_rejected():
    token = sign_token(7, "STUDENT")
    assert verify_token(token.replace("7:STUDENT", "8:STUDENT", 1)) is None
    assert verify_token(sign_token(7, "STUDENT", timestamp=int(time.time()) - 31 * 24 * 3600)) is None


@pytest.mark.asyncio
async def test_submit_attempt(client, redis, quiz_data):
    response = await client.post(
        f"/api/quizzes/{quiz_data.quiz_id}/attempts",
        json={"answers": {str(quiz_data.q1): "4", str(quiz_data.q2): True}, "time_spent": 45},
        headers=auth(quiz_data.student),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["score"] == 100
    assert body["passed"] is True
    assert body["total_points"] == 15
    assert len(body["answers"]) == 2
    redis.publish.assert_awaited_once()


@pytest.mark.asyncio
async def test_submit_requires_sign_in(client, redis, quiz_data):
    response = await client.post(f"/api/quizzes/{quiz_data.quiz_id}/attempts", json={"answers": {}})
    assert response.status_code == 401
    redis.publish.assert_not_awaited()


@pytest.mark.asyncio
async def test_attempt_limit_returns_conflict(client, quiz_data):
    headers = auth(quiz_data.student)
    url = f"/api/quizzes/{quiz_data.quiz_id}/attempts"
    for _ in range(2):
        assert (await client.post(url, json={"answers": {}}, headers=headers)).status_code == 200

    response = await client.post(url, json={"answers": {}}, headers=headers)
    assert response.status_code == 409
    assert response.json() == {"detail": "You have reached the maximum number of attempts (2)"}

    listed = await client.get(url, headers=headers)
    assert len(listed.json()) == 2


@pytest.mark.asyncio
async def test_start_quiz_reports_remaining_attempts(client, quiz_data):
    response = await client.post(f"/api/quizzes/{quiz_data.quiz_id}/start", headers=auth(quiz_data.student))
    assert response.status_code == 200
    assert response.json()["attempts_remaining"] == 2
    assert response.json()["question_count"] == 2

    response = await client.post(f"/api/quizzes/{quiz_data.quiz_id}/start", headers=auth(quiz_data.outsider))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_unsupported_answer_shape_is_rejected(client, quiz_data):
    response = await client.post(
        f"/api/quizzes/{quiz_data.quiz_id}/attempts",
        json={"answers": {str(quiz_data.q1): ["4"]}},
        headers=auth(quiz_data.student),
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_lesson_toggle_and_course_progress(client, redis, quiz_data):
    headers = auth(quiz_data.student)
    response = await client.post(
        f"/api/lessons/{quiz_data.lesson_ids[0]}/progress", json={"completed": True}, headers=headers
    )
    assert response.status_code == 200
    assert response.json()["completed"] is True
    assert response.json()["failed_follow_ups"] == []
    assert redis.delete.await_count == 1

    progress = (await client.get(f"/api/courses/{quiz_data.course_id}/progress", headers=headers)).json()
    assert progress["enrollment"]["progress"] == 50
    assert progress["stats"]["completed_lessons"] == 1

    module = (await client.get(f"/api/modules/{quiz_data.module_id}/progress", headers=headers)).json()
    assert module["progress_percentage"] == 50


@pytest.mark.asyncio
async def test_quiz_stats_are_for_the_owner(client, quiz_data):
    url = f"/api/quizzes/{quiz_data.quiz_id}/stats"
    assert (await client.get(url, headers=auth(quiz_data.student))).status_code == 403

    response = await client.get(url, headers=auth(quiz_data.instructor))
    assert response.status_code == 200
    assert response.json()["total_attempts"] == 0


@pytest.mark.asyncio
async def test_session_and_streak(client, quiz_data):
    headers = auth(quiz_data.student)
    started = await client.post("/api/sessions", json={"course_id": quiz_data.course_id}, headers=headers)
    assert started.status_code == 200

    ended = await client.post(f"/api/sessions/{started.json()['id']}/end", json={"completed": True}, headers=headers)
    assert ended.status_code == 200
    assert ended.json()["completed"] is True

    streak = (await client.get("/api/me/streak", headers=headers)).json()
    assert streak["current_streak"] == 1
    assert streak["is_active_today"] is True


@pytest.mark.asyncio
async def test_enrollment_endpoints(client, quiz_data):
    headers = auth(quiz_data.outsider)
    url = f"/api/courses/{quiz_data.course_id}/enrollment"

    assert (await client.post(url, headers=headers)).status_code == 200
    assert (await client.post(url, headers=headers)).status_code == 409
    assert (await client.delete(url, headers=headers)).json() == {"status": "success"}


@pytest.mark.asyncio
async def test_health(client):
    assert (await client.get("/api/health")).json() == {"status": "ok"}
