#!/usr/bin/env python3
"""Emit deterministic SQL that promotes an existing member to approved admin.

The first admin cannot be approved through the API, so this runs once in a
privileged Postgres session after that person has signed in at least once.
"""

from __future__ import annotations

import argparse


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def render_sql(*, role: str, member_id: str | None, email: str | None, reason: str) -> str:
    role_value = _quote_sql(role)
    reason_value = _quote_sql(reason)

    if member_id:
        target_where = f"id = {_quote_sql(member_id)}::uuid"
    else:
        assert email is not None
        target_where = f"email = {_quote_sql(email.strip().lower())}"

    return f"""-- Alumni network admin bootstrap SQL
-- Run this in a privileged Postgres session against the application database.

begin;

update members
set role = {role_value}::member_role,
    approval_state = 'approved',
    rejection_reason = null,
    approved_by = id,
    approved_at = coalesce(approved_at, now()),
    updated_at = now()
where {target_where};

insert into moderation_log (actor_id, action_kind, target_kind, target_id, details)
select id, 'update_member', 'member', id, jsonb_build_object('fields', jsonb_build_array('role'), 'role', {role_value}, 'reason', {reason_value})
from members
where {target_where};

commit;
"""


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to bootstrap an alumni network admin.")
    parser.add_argument(
        "--role",
        choices=["guest", "student", "alumni", "admin"],
        default="admin",
        help="Role to assign on the members row",
    )
    identity_group = parser.add_mutually_exclusive_group(required=True)
    identity_group.add_argument("--member-id", help="members.id (UUID)")
    identity_group.add_argument("--email", help="members.email")
    parser.add_argument(
        "--reason",
        default="bootstrap",
        help="Reason recorded in the moderation log entry",
    )
    args = parser.parse_args()

    print(
        render_sql(
            role=args.role,
            member_id=args.member_id,
            email=args.email,
            reason=args.reason,
        )
    )


if __name__ == "__main__":
    main()
