"""Integration tests for /auth and /members endpoints."""

from decimal import Decimal

import pytest
from tests.factories import (
    CLIENT_SECRET,
    AccessTokenFactory,
    MemberFactory,
    PartnerClientFactory,
    member_headers,
    persist,
)


@pytest.mark.asyncio
@pytest.mark.integration
async def test_health(client):
    response = await client.get("/health", headers={"X-Request-ID": "req-123"})

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "points-bank"}
    assert response.headers["x-request-id"] == "req-123"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_unknown_route_uses_error_envelope(client):
    response = await client.get("/nope")

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


# ---------------------------------------------------------------------------
# Registration / login
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_register_then_login(client):
    payload = {
        "email": "New.Member@Example.com",
        "password": "a-long-password",
        "first_name": "Ada",
        "last_name": "Lovelace",
    }

    response = await client.post("/auth/register", json=payload)
    assert response.status_code == 201, response.text
    data = response.json()["data"]
    assert data["email"] == "new.member@example.com"
    assert data["firstName"] == "Ada"
    assert data["points"] == 0.0
    assert data["active"] is True
    assert "passwordHash" not in data

    response = await client.post("/auth/register", json=payload)
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "CONFLICT"

    response = await client.post(
        "/auth/login",
        json={"email": "new.member@example.com", "password": "a-long-password"},
    )
    assert response.status_code == 200, response.text
    session = response.json()["data"]
    assert session["tokenType"] == "Bearer"
    assert session["member"]["id"] == data["id"]

    response = await client.get(
        "/members/me", headers={"Authorization": f"Bearer {session['accessToken']}"}
    )
    assert response.status_code == 200
    assert response.json()["data"]["lastName"] == "Lovelace"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_register_validation(client):
    response = await client.post(
        "/auth/register", json={"email": "not-an-email", "password": "a-long-password"}
    )
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "UNPROCESSABLE_ENTITY"

    response = await client.post(
        "/auth/register", json={"email": "short@example.com", "password": "short"}
    )
    assert response.status_code == 422


@pytest.mark.asyncio
@pytest.mark.integration
async def test_login_with_wrong_password(client, db_session):
    member = await persist(db_session, MemberFactory.create())

    response = await client.post(
        "/auth/login", json={"email": member.email, "password": "wrong"}
    )

    assert response.status_code == 401
    assert response.json() == {
        "error": {
            "message": "Invalid email or password",
            "code": "INVALID_CREDENTIALS",
            "statusCode": 401,
        }
    }


@pytest.mark.asyncio
@pytest.mark.integration
async def test_logout_clears_cookie(client):
    response = await client.post("/auth/logout")

    assert response.status_code == 204
    assert "pb_member" in response.headers.get("set-cookie", "")


# ---------------------------------------------------------------------------
# Member portal
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_me_requires_session(client, db_session):
    response = await client.get("/members/me")
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "UNAUTHORIZED"

    response = await client.get("/members/me", headers={"Authorization": "Bearer junk"})
    assert response.status_code == 401

    inactive = await persist(db_session, MemberFactory.create(active=False))
    response = await client.get("/members/me", headers=member_headers(inactive))
    assert response.status_code == 401
    assert response.json()["error"]["message"] == "Member account is deactivated"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_transactions_history(client, db_session):
    member = MemberFactory.create(points=Decimal("100"))
    partner = PartnerClientFactory.create()
    await persist(db_session, member, partner)
    token = await persist(db_session, AccessTokenFactory.create(member.id, partner.id))

    response = await client.post(
        "/points/credit",
        json={
            "client_id": partner.client_id,
            "client_secret": CLIENT_SECRET,
            "member_id": str(member.id),
            "amount": 20,
        },
    )
    assert response.status_code == 200, response.text
    response = await client.post(
        "/points/redeem",
        json={"amount": 30, "description": "Lunch"},
        headers={"Authorization": f"Bearer {token.token}"},
    )
    assert response.status_code == 200, response.text

    response = await client.get("/members/me/transactions", headers=member_headers(member))

    assert response.status_code == 200
    rows = response.json()["data"]
    assert len(rows) == 2
    by_direction = {row["direction"]: row for row in rows}
    assert by_direction["debit"]["amount"] == -30.0
    assert by_direction["debit"]["description"] == "Lunch"
    assert by_direction["debit"]["balanceAfter"] == 90.0
    assert by_direction["credit"]["amount"] == 20.0
    assert by_direction["credit"]["clientName"] == "Test Partner"

    response = await client.get(
        "/members/me/transactions", params={"limit": 1}, headers=member_headers(member)
    )
    assert len(response.json()["data"]) == 1

    response = await client.get(
        "/members/me/transactions", params={"limit": 0}, headers=member_headers(member)
    )
    assert response.status_code == 422


@pytest.mark.asyncio
@pytest.mark.integration
async def test_sessions_list_and_revoke(client, db_session):
    member = MemberFactory.create()
    partner = PartnerClientFactory.create(client_name="Coffee Shop")
    await persist(db_session, member, partner)
    token = await persist(
        db_session,
        AccessTokenFactory.create(
            member.id, partner.id, scope=["points", "pay-with-points"], expires_at=None
        ),
    )
    headers = member_headers(member)

    response = await client.get("/members/me/sessions", headers=headers)
    assert response.status_code == 200
    sessions = response.json()["data"]
    assert len(sessions) == 1
    assert sessions[0]["id"] == str(token.id)
    assert sessions[0]["clientName"] == "Coffee Shop"
    assert sessions[0]["nonExpiring"] is True

    response = await client.delete(f"/members/me/sessions/{token.id}", headers=headers)
    assert response.status_code == 200, response.text
    assert response.json()["data"] == {"revoked": True}

    response = await client.get("/members/me/sessions", headers=headers)
    assert response.json()["data"] == []

    # The revoked token no longer authorises debits
    response = await client.post(
        "/points/redeem", json={"amount": 1}, headers={"Authorization": f"Bearer {token.token}"}
    )
    assert response.status_code == 401


@pytest.mark.asyncio
@pytest.mark.integration
async def test_revoke_unknown_session(client, db_session):
    member = await persist(db_session, MemberFactory.create())

    response = await client.delete(
        "/members/me/sessions/00000000-0000-0000-0000-000000000000",
        headers=member_headers(member),
    )

    assert response.status_code == 404
    assert response.json()["error"]["message"] == "Session not found"
