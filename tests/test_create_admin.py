"""Tests for the admin bootstrap script."""

import importlib.util
from pathlib import Path

import pytest

from connectkit.cache import USER_KEY
from connectkit.models.enums import UserRole
from connectkit.models.user import User

SCRIPT_PATH = Path(__file__).resolve().parent.parent / "scripts" / "create_admin.py"
ADMIN_PASSWORD = "Adm1n!pass"


@pytest.fixture(scope="module")
def create_admin():
    module_spec = importlib.util.spec_from_file_location("create_admin_script", SCRIPT_PATH)
    module = importlib.util.module_from_spec(module_spec)
    module_spec.loader.exec_module(module)
    return module.create_admin


def _user(db, email: str) -> User:
    db.expire_all()
    return db.query(User).filter(User.email == email).one()


class TestCreateAdmin:
    """Tests for create_admin."""

    def test_creates_verified_admin(self, db, app_context, create_admin):
        assert create_admin("Root@Example.com", "root", ADMIN_PASSWORD, context=app_context) == "created"

        user = _user(db, "root@example.com")
        assert user.role == UserRole.ADMIN
        assert user.is_active
        assert user.is_verified
        assert user.password_hash.startswith("$2b$04$")

    def test_existing_admin_is_unchanged(self, db, app_context, create_admin):
        create_admin("root@example.com", "root", ADMIN_PASSWORD, context=app_context)
        assert create_admin("root@example.com", "root", ADMIN_PASSWORD, context=app_context) == "unchanged"

    def test_promotion_drops_cached_user(self, db, app_context, create_admin, auth_headers):
        key = USER_KEY.format(user_id=auth_headers.user_id)
        app_context.cache.set_json(key, {"role": "user"}, 300)

        assert create_admin(auth_headers.email, "ignored", ADMIN_PASSWORD, context=app_context) == "promoted"

        assert app_context.cache.get_json(key) is None
        assert _user(db, auth_headers.email).role == UserRole.ADMIN
