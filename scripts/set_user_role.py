"""Utility to grant or revoke staff access for a user during local development."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Ensure the project root is on sys.path so ``app`` can be imported when the script is executed directly.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app import create_app  # noqa: E402
from app.extensions import db  # noqa: E402
from app.models import USER_ROLES  # noqa: E402
from app.storage import Storage  # noqa: E402


def set_role(user_id: str, role: str, email: str | None = None) -> None:
    app = create_app()

    with app.app_context():
        storage = Storage(db.session)
        existing = storage.get_user(user_id)
        if existing is None:
            print(f"Created new {role} user: {user_id}")
        elif existing.role != role:
            print(f"Updating user role from '{existing.role}' to '{role}'")

        data = {"id": user_id, "role": role}
        if email:
            data["email"] = email
        storage.upsert_user(data)

        print(f"User '{user_id}' now has role '{role}'.")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Set a user's role for local testing.")
    parser.add_argument("user_id", help="Identity provider subject (the user id)")
    parser.add_argument(
        "--role",
        choices=USER_ROLES,
        default="admin",
        help="User role (default: admin)",
    )
    parser.add_argument("--email", help="Email to store when the user does not exist yet")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    set_role(args.user_id, args.role, args.email)


if __name__ == "__main__":
    main()
