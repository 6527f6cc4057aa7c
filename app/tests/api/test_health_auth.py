from app.core.security import create_access_token
from app.models.enums import ParticipantRole
from app.models.user import User


def test_health(client):
    r = client.get("/api/v1/health", headers={"X-Request-Id": "rid-123"})
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert r.json()["database"] == "ok"
    assert r.json()["request_id"] == "rid-123"
    assert r.headers["X-Request-Id"] == "rid-123"


def test_me_requires_token(client):
    r = client.get("/api/v1/auth/me")
    assert r.status_code in (401, 403)

    bad = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert bad.status_code == 401


def test_me_reports_role_actions(client, auth, agency):
    r = client.get("/api/v1/auth/me", headers=auth(agency))

    assert r.status_code == 200
    body = r.json()
    assert body["participant_id"] == agency.participant_id
    assert body["role"] == "FUNDING_AGENCY"
    assert body["display_name"] == agency.display_name
    assert "PAY_STAGE" in body["actions"]


def test_token_for_unknown_user_is_rejected(client):
    token = create_access_token(participant_id="ghost", role="STARTUP")
    r = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401


def test_token_role_must_match_user(client, startup):
    token = create_access_token(participant_id=startup.participant_id, role="FUNDING_AGENCY")
    r = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401


def test_deactivated_user_is_rejected(client, auth, db, make_user):
    mentor = make_user("mentor-1", ParticipantRole.MENTOR)
    db.get(User, "mentor-1").is_active = False
    db.commit()

    assert client.get("/api/v1/auth/me", headers=auth(mentor)).status_code == 401


def test_expired_token(client, startup):
    token = create_access_token(participant_id=startup.participant_id, role="STARTUP", expires_minutes=-1)
    r = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 401
