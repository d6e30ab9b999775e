import fakeredis
from fakeredis import aioredis as fake_aioredis

from authcore.db.database import get_redis
from authcore.main import app
from authcore.models import UserRole
from tests.conftest import PASSWORD

REGISTRATION = {
    "firstName": "Ada",
    "lastName": "Lovelace",
    "email": "ada@example.com",
    "password": PASSWORD,
    "phone": "+44 (20) 7946-0000",
}


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


async def login(client, email="ada@example.com", password=PASSWORD):
    response = await client.post("/api/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return response.json()


async def test_service_endpoints(client):
    root = await client.get("/")
    health = await client.get("/api/health")

    assert root.status_code == 200
    assert health.status_code == 200
    assert health.json()["checks"] == {"database": True, "redis": True}


async def test_health_reports_unreachable_redis(client):
    server = fakeredis.FakeServer()
    server.connected = False
    app.dependency_overrides[get_redis] = lambda: fake_aioredis.FakeRedis(server=server)

    health = await client.get("/api/health")

    assert health.status_code == 503
    assert health.json()["status"] == "degraded"
    assert health.json()["checks"]["redis"] is False


async def test_register_and_login(client):
    response = await client.post("/api/auth/register", json=REGISTRATION)

    assert response.status_code == 201
    body = response.json()
    assert body["message"] == "User registered successfully"
    assert body["data"]["firstName"] == "Ada"
    assert body["data"]["credits"] == 50
    assert body["data"]["emailVerified"] is False
    assert "hashedPassword" not in body["data"]

    body = await login(client)
    assert body["message"] == "Login successful"
    assert set(body["user"]) == {"id", "firstName", "lastName", "email", "role", "credits", "emailVerified"}
    assert body["accessToken"] and body["refreshToken"]


async def test_register_duplicate_email(client):
    await client.post("/api/auth/register", json=REGISTRATION)
    response = await client.post("/api/auth/register", json={**REGISTRATION, "email": "ADA@example.com"})

    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "EMAIL_EXISTS"}


async def test_register_validation(client):
    response = await client.post(
        "/api/auth/register",
        json={**REGISTRATION, "firstName": "A1", "password": "alllowercase1"},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["message"] == "VALIDATION_ERROR"
    assert any(error.startswith("firstName") for error in body["errors"])
    assert any(error.startswith("password") for error in body["errors"])


async def test_login_errors(client, make_user):
    await make_user()

    wrong = await client.post("/api/auth/login", json={"email": "ada@example.com", "password": "Wrong1234"})
    unknown = await client.post("/api/auth/login", json={"email": "nobody@example.com", "password": PASSWORD})

    assert wrong.status_code == unknown.status_code == 401
    assert wrong.json() == unknown.json() == {"success": False, "message": "INVALID_CREDENTIALS"}


async def test_protected_routes_require_a_token(client):
    missing = await client.post("/api/auth/verify-token")
    garbage = await client.post("/api/auth/verify-token", headers=bearer("garbage"))

    assert missing.status_code == 401
    assert missing.json()["message"] == "NO_TOKEN"
    assert garbage.status_code == 401
    assert garbage.json()["message"] == "INVALID_TOKEN"


async def test_verify_token(client, make_user):
    await make_user()
    tokens = await login(client)

    response = await client.post("/api/auth/verify-token", headers=bearer(tokens["accessToken"]))

    assert response.status_code == 200
    assert response.json()["message"] == "Token is valid"
    assert response.json()["user"]["email"] == "ada@example.com"


async def test_refresh_token_rotation(client, make_user):
    await make_user()
    tokens = await login(client)

    first = await client.post("/api/auth/refresh-token", json={"refreshToken": tokens["refreshToken"]})
    replay = await client.post("/api/auth/refresh-token", json={"refreshToken": tokens["refreshToken"]})

    assert first.status_code == 200
    assert first.json()["message"] == "Token refreshed successfully"
    assert replay.status_code == 401
    assert replay.json()["message"] == "INVALID_TOKEN"


async def test_password_reset_over_http(client, make_user, mailer):
    await make_user()

    unknown = await client.post("/api/auth/forgot-password", json={"email": "nobody@example.com"})
    known = await client.post("/api/auth/forgot-password", json={"email": "ada@example.com"})
    assert unknown.status_code == known.status_code == 200
    assert unknown.json() == known.json()

    code = mailer.last_code("password_reset")
    bad = await client.post("/api/auth/verify-otp", json={"email": "ada@example.com", "code": "ZZZZ"})
    assert bad.status_code == 400
    assert bad.json()["message"] == "INVALID_OTP"

    verified = await client.post("/api/auth/verify-otp", json={"email": "ada@example.com", "code": code})
    assert verified.status_code == 200
    reset_token = verified.json()["resetToken"]

    same = await client.post("/api/auth/reset-password", json={"resetToken": reset_token, "newPassword": PASSWORD})
    assert same.status_code == 400
    assert same.json()["message"] == "SAME_PASSWORD"

    reset = await client.post("/api/auth/reset-password", json={"resetToken": reset_token, "newPassword": "Fresh1234"})
    assert reset.status_code == 200
    assert reset.json()["message"] == "Password updated successfully"

    await login(client, password="Fresh1234")

    reused = await client.post("/api/auth/reset-password", json={"resetToken": reset_token, "newPassword": "Other1234"})
    assert reused.status_code == 401


async def test_email_verification_over_http(client, make_user, mailer):
    await make_user()
    tokens = await login(client)
    headers = bearer(tokens["accessToken"])

    requested = await client.post("/api/auth/request-verification", headers=headers)
    assert requested.status_code == 200
    code = mailer.last_code("email_verification")

    lowercase = await client.post("/api/auth/verify-email", json={"code": "abcd"}, headers=headers)
    assert lowercase.status_code == 400
    assert lowercase.json()["message"] == "VALIDATION_ERROR"

    verified = await client.post("/api/auth/verify-email", json={"code": code}, headers=headers)
    assert verified.status_code == 200
    assert verified.json()["message"] == "Email verified successfully"


async def test_email_verification_rate_limit_over_http(client, make_user):
    await make_user()
    headers = bearer((await login(client))["accessToken"])

    statuses = [
        (await client.post("/api/auth/request-verification", headers=headers)).status_code for _ in range(4)
    ]

    assert statuses == [200, 200, 200, 429]


async def test_change_password_over_http(client, make_user):
    await make_user()
    headers = bearer((await login(client))["accessToken"])
    other_device = bearer((await login(client))["accessToken"])

    wrong = await client.post(
        "/api/auth/change-password",
        json={"currentPassword": "Wrong1234", "newPassword": "Fresh1234"},
        headers=headers,
    )
    assert wrong.status_code == 400
    assert wrong.json()["message"] == "INVALID_PASSWORD"

    changed = await client.post(
        "/api/auth/change-password",
        json={"currentPassword": PASSWORD, "newPassword": "Fresh1234"},
        headers=headers,
    )
    assert changed.status_code == 200

    for stale in (headers, other_device):
        response = await client.post("/api/auth/verify-token", headers=stale)
        assert response.status_code == 401
        assert response.json()["message"] == "INVALID_TOKEN"

    fresh = bearer((await login(client, password="Fresh1234"))["accessToken"])
    assert (await client.post("/api/auth/verify-token", headers=fresh)).status_code == 200


async def test_logout(client, make_user):
    await make_user()
    tokens = await login(client)
    headers = bearer(tokens["accessToken"])

    response = await client.post("/api/auth/logout", json={"refreshToken": tokens["refreshToken"]}, headers=headers)
    assert response.status_code == 200

    after = await client.post("/api/auth/verify-token", headers=headers)
    refresh = await client.post("/api/auth/refresh-token", json={"refreshToken": tokens["refreshToken"]})
    assert after.status_code == 401
    assert refresh.status_code == 401


async def test_logout_without_body(client, make_user):
    await make_user()
    headers = bearer((await login(client))["accessToken"])

    assert (await client.post("/api/auth/logout", headers=headers)).status_code == 200
    assert (await client.post("/api/auth/verify-token", headers=headers)).status_code == 401


async def test_logout_all(client, make_user):
    await make_user()
    tokens = await login(client)
    headers = bearer(tokens["accessToken"])

    response = await client.post("/api/auth/logout-all", headers=headers)

    assert response.status_code == 200
    assert response.json()["message"] == "Logged out from all devices"

    after = await client.post("/api/auth/verify-token", headers=headers)
    refresh = await client.post("/api/auth/refresh-token", json={"refreshToken": tokens["refreshToken"]})
    assert after.status_code == 401
    assert refresh.status_code == 401


async def test_google_login_over_http(client):
    created = await client.post("/api/auth/google", json={"idToken": "google-new"})
    rejected = await client.post("/api/auth/google", json={"idToken": "forged"})

    assert created.status_code == 200
    assert created.json()["user"]["emailVerified"] is True
    assert rejected.status_code == 500
    assert rejected.json() == {"success": False, "message": "GOOGLE_LOGIN_ERROR"}


async def test_facebook_login_over_http(client):
    response = await client.post("/api/auth/facebook", json={"accessToken": "facebook-new"})

    assert response.status_code == 200
    assert response.json()["message"] == "Facebook login successful"


async def test_admin_routes_require_admin(client, make_user):
    user_id = await make_user()
    headers = bearer((await login(client))["accessToken"])

    response = await client.patch(f"/api/admin/users/{user_id}/status", json={"status": "blocked"}, headers=headers)

    assert response.status_code == 403
    assert response.json()["message"] == "FORBIDDEN"


async def test_admin_moderation(client, make_user):
    user_id = await make_user()
    await make_user(email="root@example.com", first_name="Root", role=UserRole.ADMIN)
    admin_headers = bearer((await login(client, email="root@example.com"))["accessToken"])

    blocked = await client.patch(
        f"/api/admin/users/{user_id}/status", json={"status": "blocked"}, headers=admin_headers
    )
    assert blocked.status_code == 200
    assert blocked.json()["data"]["status"] == "blocked"

    denied = await client.post("/api/auth/login", json={"email": "ada@example.com", "password": PASSWORD})
    assert denied.status_code == 403
    assert denied.json()["message"] == "ACCOUNT_BLOCKED"

    invalid = await client.patch(
        f"/api/admin/users/{user_id}/status", json={"status": "banished"}, headers=admin_headers
    )
    assert invalid.status_code == 400

    deleted = await client.delete(f"/api/admin/users/{user_id}", headers=admin_headers)
    assert deleted.status_code == 200

    missing = await client.delete(f"/api/admin/users/{user_id}", headers=admin_headers)
    assert missing.status_code == 404
    assert missing.json()["message"] == "USER_NOT_FOUND"

    restored = await client.post(f"/api/admin/users/{user_id}/restore", headers=admin_headers)
    assert restored.status_code == 200
    assert restored.json()["data"]["id"] == user_id


async def test_admin_credit_adjustments(client, make_user):
    user_id = await make_user()
    await make_user(email="root@example.com", first_name="Root", role=UserRole.ADMIN)
    admin_headers = bearer((await login(client, email="root@example.com"))["accessToken"])
    user_headers = bearer((await login(client))["accessToken"])

    added = await client.post(f"/api/admin/users/{user_id}/credits/add", json={"amount": 10}, headers=admin_headers)
    assert added.status_code == 200
    assert added.json()["data"]["credits"] == 60

    deducted = await client.post(
        f"/api/admin/users/{user_id}/credits/deduct", json={"amount": 15}, headers=admin_headers
    )
    assert deducted.status_code == 200
    assert deducted.json()["data"]["credits"] == 45

    overdraw = await client.post(
        f"/api/admin/users/{user_id}/credits/deduct", json={"amount": 46}, headers=admin_headers
    )
    assert overdraw.status_code == 400
    assert overdraw.json()["message"] == "INSUFFICIENT_CREDITS"

    negative = await client.post(f"/api/admin/users/{user_id}/credits/add", json={"amount": -5}, headers=admin_headers)
    assert negative.status_code == 400
    assert negative.json()["message"] == "VALIDATION_ERROR"

    forbidden = await client.post(f"/api/admin/users/{user_id}/credits/add", json={"amount": 5}, headers=user_headers)
    assert forbidden.status_code == 403


async def test_admin_purge(client, make_user):
    user_id = await make_user()
    await make_user(email="root@example.com", first_name="Root", role=UserRole.ADMIN)
    admin_headers = bearer((await login(client, email="root@example.com"))["accessToken"])
    user_headers = bearer((await login(client))["accessToken"])

    purged = await client.delete(f"/api/admin/users/{user_id}/permanent", headers=admin_headers)
    assert purged.status_code == 200
    assert purged.json()["message"] == "User permanently deleted"

    assert (await client.post("/api/auth/verify-token", headers=user_headers)).status_code == 401
    assert (await client.post(f"/api/admin/users/{user_id}/restore", headers=admin_headers)).status_code == 404

    again = await client.delete(f"/api/admin/users/{user_id}/permanent", headers=admin_headers)
    assert again.status_code == 404
    assert again.json()["message"] == "USER_NOT_FOUND"

    registered = await client.post("/api/auth/register", json=REGISTRATION)
    assert registered.status_code == 201
