#!/usr/bin/env python3
"""Create or promote an administrator account.

Usage:
    # Using environment variables:
    ADMIN_EMAIL=admin@example.com ADMIN_USERNAME=admin ADMIN_PASSWORD='Adm1n!pass' \
        python scripts/create_admin.py

    # Or with command line args:
    python scripts/create_admin.py --email admin@example.com --username admin --password 'Adm1n!pass'

The account is created active and verified. An existing account with the same
email is promoted to admin instead; its password is left untouched.
"""

import argparse
import os
import sys

from connectkit.cache import USER_KEY
from connectkit.config import get_settings
from connectkit.context import AppContext
from connectkit.database import init_db
from connectkit.models.enums import UserRole
from connectkit.repositories.user import UserRepository
from connectkit.schemas.common import validate_password_strength
from connectkit.services.auth import get_password_hash


def create_admin(email: str, username: str, password: str, context: AppContext | None = None) -> str:
    """Create or promote the admin; returns 'created', 'promoted' or 'unchanged'."""
    owns_context = context is None
    if owns_context:
        context = AppContext(get_settings())
        init_db(context.engine)
    settings = context.settings
    session = context.session_factory()

    try:
        users = UserRepository(session)
        existing = users.get_by_email(email)
        if existing is not None:
            if existing.role == UserRole.ADMIN and existing.is_active:
                print(f"User {email} is already an active admin (id: {existing.id})")
                return "unchanged"
            existing.role = UserRole.ADMIN
            existing.is_active = True
            existing.is_verified = True
            session.commit()
            context.cache.invalidate(USER_KEY.format(user_id=existing.id))
            print(f"Promoted {email} to admin (id: {existing.id})")
            return "promoted"

        if users.username_exists(username):
            raise SystemExit(f"Username {username} is already taken")

        user = users.create(
            {
                "email": email,
                "username": username,
                "password_hash": get_password_hash(password, settings.bcrypt_rounds),
                "role": UserRole.ADMIN,
                "is_active": True,
                "is_verified": True,
            }
        )
        session.commit()
        print(f"Created admin {email} (id: {user.id})")
        return "created"
    finally:
        session.close()
        if owns_context:
            context.shutdown()


def main() -> int:
    parser = argparse.ArgumentParser(description="Create or promote a ConnectKit administrator")
    parser.add_argument("--email", default=os.getenv("ADMIN_EMAIL"))
    parser.add_argument("--username", default=os.getenv("ADMIN_USERNAME", "admin"))
    parser.add_argument("--password", default=os.getenv("ADMIN_PASSWORD"))
    args = parser.parse_args()

    if not args.email or not args.password:
        parser.error("--email and --password (or ADMIN_EMAIL and ADMIN_PASSWORD) are required")
    try:
        validate_password_strength(args.password)
    except ValueError as e:
        parser.error(str(e))

    create_admin(args.email, args.username, args.password)
    return 0


if __name__ == "__main__":
    sys.exit(main())
