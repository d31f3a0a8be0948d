#!/usr/bin/env python3
"""Assign a role and, optionally, personal section grants to an existing user (idempotent).

Usage:
  python scripts/set_user_role.py --email coordinadora@ngo.org --role editor
  python scripts/set_user_role.py --email voluntario@ngo.org --role viewer --section voluntariado-tablero
"""

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.ngoadmin.audit import record_event
from app.ngoadmin.models import Role, User, UserSectionPermission
from app.ngoadmin.sections import ALL_SECTION_KEYS
from scripts._db_utils import database_url, script_session


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--email", required=True, help="Email of the account to update")
    parser.add_argument("--role", default="admin", help="Role key (admin, editor, viewer)")
    parser.add_argument("--section", action="append", default=[], help="Section key to grant; repeatable")
    args = parser.parse_args()

    unknown = sorted(set(args.section) - ALL_SECTION_KEYS)
    if unknown:
        print(f"Unknown section keys: {', '.join(unknown)}")
        sys.exit(2)

    with script_session(database_url()) as s:
        user = s.query(User).filter(User.email.ilike(args.email.strip())).one_or_none()
        if not user:
            print(f"User not found: {args.email}")
            sys.exit(1)
        role = s.query(Role).filter(Role.key == args.role).one_or_none()
        if not role:
            print(f"Role not found: {args.role}. Run python scripts/init_db.py first.")
            sys.exit(1)

        if user.role_id != role.id:
            old = user.role.key if user.role else None
            user.role = role
            record_event(
                s,
                actor=None,
                action="user.role_change",
                entity_type="User",
                entity_id=str(user.id),
                reason="set_user_role.py",
                metadata={"email": user.email, "old": old, "new": role.key},
            )
            print(f"Role {role.key} assigned to {user.email}")
        else:
            print(f"{user.email} already has role {role.key}")

        granted = {g.section_key for g in user.section_grants}
        for key in args.section:
            if key in granted:
                continue
            s.add(UserSectionPermission(user_id=user.id, section_key=key))
            print(f"Granted section {key}")


if __name__ == "__main__":
    main()
