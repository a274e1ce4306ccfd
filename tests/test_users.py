"""User administration API tests."""

import uuid
from datetime import UTC, datetime, timedelta

from connectkit.models.enums import UserRole
from connectkit.models.user import User


def _user(db, email: str) -> User:
    db.expire_all()
    return db.query(User).filter(User.email == email).one()


def test_get_own_profile(client, auth_headers):
    response = client.get("/api/v1/users/me", headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["email"] == auth_headers.email
    assert "passwordHash" not in response.json()


def test_get_profile_is_cached(client, auth_headers, fake_redis, settings):
    client.get("/api/v1/users/me", headers=auth_headers)
    assert fake_redis.get(f"{settings.redis_key_prefix}user:{auth_headers.user_id}") is not None


def test_update_own_profile(client, auth_headers):
    response = client.put(
        "/api/v1/users/me",
        headers=auth_headers,
        json={"firstName": "Renamed", "phone": "+1 555 123 4567"},
    )
    assert response.status_code == 200
    assert response.json()["firstName"] == "Renamed"

    # Cached copy was invalidated
    me = client.get("/api/v1/users/me", headers=auth_headers)
    assert me.json()["firstName"] == "Renamed"
    assert me.json()["phone"] == "+1 555 123 4567"


def test_user_cannot_change_own_role(client, auth_headers):
    response = client.put(
        f"/api/v1/users/{auth_headers.user_id}",
        headers=auth_headers,
        json={"role": "admin"},
    )
    assert response.status_code == 403


def test_username_conflict_on_update(client, auth_headers, create_user):
    create_user("other@example.com", "otheruser")
    response = client.put("/api/v1/users/me", headers=auth_headers, json={"username": "OtherUser"})
    assert response.status_code == 409


def test_list_users_requires_staff(client, auth_headers):
    response = client.get("/api/v1/users", headers=auth_headers)
    assert response.status_code == 403
    assert response.json()["code"] == "FORBIDDEN"


def test_list_users_as_admin(client, admin_headers, create_user):
    create_user("alice@example.com", "alice")
    create_user("bob@example.com", "bob")

    response = client.get("/api/v1/users?limit=2&sort=email&order=asc", headers=admin_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 3
    assert data["totalPages"] == 2
    assert data["hasNext"] is True
    assert [user["email"] for user in data["items"]] == ["admin@example.com", "alice@example.com"]


def test_list_users_filters(client, manager_headers, create_user):
    create_user("alice@example.com", "alice")

    response = client.get("/api/v1/users?search=alice", headers=manager_headers)
    assert [user["username"] for user in response.json()["items"]] == ["alice"]

    response = client.get("/api/v1/users?role=manager", headers=manager_headers)
    assert [user["username"] for user in response.json()["items"]] == ["manager"]


def test_list_users_bad_sort(client, admin_headers):
    response = client.get("/api/v1/users?sort=password_hash", headers=admin_headers)
    assert response.status_code == 400


def test_user_stats(client, admin_headers, auth_headers):
    response = client.get("/api/v1/users/stats", headers=admin_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert data["byRole"]["admin"] == 1
    assert data["byRole"]["user"] == 1
    assert data["recentSignups"] == 2


def test_export_users_admin_only(client, admin_headers, manager_headers):
    assert client.get("/api/v1/users/export", headers=manager_headers).status_code == 403

    response = client.get("/api/v1/users/export", headers=admin_headers)
    assert response.status_code == 200
    assert {user["email"] for user in response.json()} == {"admin@example.com", "manager@example.com"}
    assert all("passwordHash" not in user for user in response.json())


def test_get_other_user(client, auth_headers, admin_headers, create_user):
    other = create_user("other@example.com", "otheruser")

    assert client.get(f"/api/v1/users/{other.user_id}", headers=auth_headers).status_code == 403
    response = client.get(f"/api/v1/users/{other.user_id}", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["email"] == "other@example.com"


def test_get_missing_user(client, admin_headers):
    response = client.get(f"/api/v1/users/{uuid.uuid4()}", headers=admin_headers)
    assert response.status_code == 404


def test_manager_can_update_regular_user(client, manager_headers, auth_headers):
    response = client.put(
        f"/api/v1/users/{auth_headers.user_id}",
        headers=manager_headers,
        json={"lastName": "Managed"},
    )
    assert response.status_code == 200
    assert response.json()["lastName"] == "Managed"


def test_manager_cannot_update_admin(client, manager_headers, admin_headers):
    response = client.put(
        f"/api/v1/users/{admin_headers.user_id}",
        headers=manager_headers,
        json={"lastName": "Nope"},
    )
    assert response.status_code == 403


def test_manager_cannot_change_email(client, manager_headers, auth_headers):
    response = client.put(
        f"/api/v1/users/{auth_headers.user_id}",
        headers=manager_headers,
        json={"email": "changed@example.com"},
    )
    assert response.status_code == 403


def test_admin_changes_role(client, admin_headers, auth_headers):
    response = client.patch(
        f"/api/v1/users/{auth_headers.user_id}/role",
        headers=admin_headers,
        json={"role": "manager"},
    )
    assert response.status_code == 200
    assert response.json()["role"] == "manager"


def test_change_role_requires_admin(client, manager_headers, auth_headers):
    response = client.patch(
        f"/api/v1/users/{auth_headers.user_id}/role",
        headers=manager_headers,
        json={"role": "admin"},
    )
    assert response.status_code == 403


def test_last_admin_cannot_be_demoted(client, admin_headers):
    response = client.patch(
        f"/api/v1/users/{admin_headers.user_id}/role",
        headers=admin_headers,
        json={"role": "user"},
    )
    assert response.status_code == 400
    assert "last active administrator" in response.json()["error"]


def test_admin_can_be_demoted_when_another_exists(client, admin_headers, create_user):
    other_admin = create_user("admin2@example.com", "admin2", UserRole.ADMIN)
    response = client.patch(
        f"/api/v1/users/{other_admin.user_id}/role",
        headers=admin_headers,
        json={"role": "user"},
    )
    assert response.status_code == 200


def test_last_admin_cannot_be_deleted(client, admin_headers):
    response = client.delete(f"/api/v1/users/{admin_headers.user_id}", headers=admin_headers)
    assert response.status_code == 400


def test_deactivate_blocks_access(client, admin_headers, auth_headers):
    response = client.post(f"/api/v1/users/{auth_headers.user_id}/deactivate", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["isActive"] is False

    assert client.get("/api/v1/auth/me", headers=auth_headers).status_code == 401
    login = client.post("/api/v1/auth/login", json={"email": auth_headers.email, "password": "Passw0rd!"})
    assert login.status_code == 401
    refresh = client.post("/api/v1/auth/refresh", json={"refreshToken": auth_headers.refresh_token})
    assert refresh.status_code == 401

    activate = client.post(f"/api/v1/users/{auth_headers.user_id}/activate", headers=admin_headers)
    assert activate.status_code == 200
    login = client.post("/api/v1/auth/login", json={"email": auth_headers.email, "password": "Passw0rd!"})
    assert login.status_code == 200


def test_user_cannot_deactivate_others(client, auth_headers, create_user):
    other = create_user("other@example.com", "otheruser")
    response = client.post(f"/api/v1/users/{other.user_id}/deactivate", headers=auth_headers)
    assert response.status_code == 403


def test_delete_own_account(client, auth_headers):
    response = client.delete(f"/api/v1/users/{auth_headers.user_id}", headers=auth_headers)
    assert response.status_code == 204

    login = client.post("/api/v1/auth/login", json={"email": auth_headers.email, "password": "Passw0rd!"})
    assert login.status_code == 401
    # A deleted account still holds its email
    check = client.get(f"/api/v1/auth/check-email/{auth_headers.email}")
    assert check.json() == {"available": False}


def test_restore_deleted_user(client, admin_headers, auth_headers):
    client.delete(f"/api/v1/users/{auth_headers.user_id}", headers=admin_headers)

    response = client.post(f"/api/v1/users/{auth_headers.user_id}/restore", headers=admin_headers)
    assert response.status_code == 200

    login = client.post("/api/v1/auth/login", json={"email": auth_headers.email, "password": "Passw0rd!"})
    assert login.status_code == 200


def test_restore_live_user_rejected(client, admin_headers, auth_headers):
    response = client.post(f"/api/v1/users/{auth_headers.user_id}/restore", headers=admin_headers)
    assert response.status_code == 400


def test_admin_unlocks_account(client, db, admin_headers, auth_headers):
    user = _user(db, auth_headers.email)
    user.failed_login_attempts = 5
    user.locked_until = datetime.now(UTC) + timedelta(minutes=30)
    db.commit()

    locked = client.post("/api/v1/auth/login", json={"email": auth_headers.email, "password": "Passw0rd!"})
    assert locked.status_code == 423

    response = client.post(f"/api/v1/users/{auth_headers.user_id}/unlock", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["failedLoginAttempts"] == 0
    assert response.json()["lockedUntil"] is None

    login = client.post("/api/v1/auth/login", json={"email": auth_headers.email, "password": "Passw0rd!"})
    assert login.status_code == 200


def test_admin_verifies_email(client, db, admin_headers, auth_headers):
    response = client.post(f"/api/v1/users/{auth_headers.user_id}/verify-email", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["isVerified"] is True
    assert _user(db, auth_headers.email).verification_token is None


def test_cached_user_reflects_lockout(client, admin_headers, auth_headers, settings):
    url = f"/api/v1/users/{auth_headers.user_id}"
    assert client.get(url, headers=admin_headers).json()["failedLoginAttempts"] == 0

    for _ in range(settings.max_login_attempts):
        client.post("/api/v1/auth/login", json={"email": auth_headers.email, "password": "Wr0ng!pass"})

    data = client.get(url, headers=admin_headers).json()
    assert data["failedLoginAttempts"] == settings.max_login_attempts
    assert data["lockedUntil"] is not None
