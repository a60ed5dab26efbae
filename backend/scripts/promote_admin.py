#!/usr/bin/env python3
"""
Grant or revoke the admin role for a user.

Usage:
    python scripts/promote_admin.py --email admin@example.com
    python scripts/promote_admin.py --email admin@example.com --revoke
"""

import argparse
import os
import sys

# Add parent directory to path to import backend modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.orm import Session

from app.db.session import SessionLocal
from app.models.user import User, UserRole


def set_role(email: str, role: UserRole, db: Session) -> bool:
    """Set a user's role by email. Returns False if the user does not exist."""
    user = db.query(User).filter(User.email == email.strip().lower()).first()
    if not user:
        print(f"ERROR: User with email '{email}' not found")
        return False

    if user.role == role:
        print(f"User '{email}' already has role '{role.value}'")
        return True

    user.role = role
    db.commit()
    print(f"Role '{role.value}' set for user: {email} (ID: {user.id})")
    return True


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Grant or revoke admin access")
    parser.add_argument("--email", required=True, help="Email of the user to update")
    parser.add_argument("--revoke", action="store_true", help="Demote the user back to a regular user")
    args = parser.parse_args(argv)

    role = UserRole.USER if args.revoke else UserRole.ADMIN
    db = SessionLocal()
    try:
        return 0 if set_role(args.email, role, db) else 1
    except Exception as e:
        print(f"ERROR: Failed to update role: {e}")
        db.rollback()
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
