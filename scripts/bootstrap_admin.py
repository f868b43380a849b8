#!/usr/bin/env python3
"""
Create the first staff admin. Admins cannot self-register, so every other
admin is activated by an existing one.
Run with: python -m scripts.bootstrap_admin --phone 0788000000 --name "Jane Admin"
"""

import argparse
import getpass
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.database import SessionLocal
from app.core.sanitization import (
    normalize_phone,
    password_policy_violation,
    sanitize_email,
    sanitize_name,
    validate_email,
    validate_phone,
)
from app.core.security import get_password_hash
from app.models import User, UserRole
from app.services.user_directory import UserDirectory


def create_admin(phone: str, full_name: str, password: str, email: str = None) -> int:
    """Create an active, verified staff admin. Returns a process exit code."""
    if not validate_phone(phone):
        print(f"Invalid phone number: {phone}")
        return 1
    email = sanitize_email(email)
    if email and not validate_email(email):
        print(f"Invalid email address: {email}")
        return 1
    violation = password_policy_violation(password)
    if violation:
        print(violation)
        return 1

    db = SessionLocal()
    try:
        users = UserDirectory(db)
        phone = normalize_phone(phone)
        if users.exists_for(email, phone):
            print("A user with this email or phone already exists. Skipping.")
            return 1

        user = users.save(User(
            email=email,
            phone=phone,
            full_name=sanitize_name(full_name),
            password_hash=get_password_hash(password),
            role=UserRole.ADMIN.value,
            is_verified=True,
            is_active=True,
        ))
        print(f"Created admin {user.id} ({user.phone})")
        print("The admin will be asked to complete a staff profile on first login.")
        return 0
    finally:
        db.close()


def main() -> int:
    parser = argparse.ArgumentParser(description="Create the first staff admin account")
    parser.add_argument("--phone", required=True)
    parser.add_argument("--name", required=True)
    parser.add_argument("--email", default=None)
    args = parser.parse_args()

    password = os.getenv("ADMIN_PASSWORD") or getpass.getpass("Admin password: ")
    return create_admin(args.phone, args.name, password, args.email)


if __name__ == "__main__":
    sys.exit(main())
