from __future__ import annotations

import subprocess
import sys
from pathlib import Path


SCRIPT_PATH = Path(__file__).resolve().parents[2] / "scripts" / "bootstrap_admin.py"


def _run_script(*args: str) -> str:
    completed = subprocess.run(
        [sys.executable, str(SCRIPT_PATH), *args],
        check=True,
        capture_output=True,
        text=True,
    )
    return completed.stdout


def test_bootstrap_script_emits_sql_for_member_id_target() -> None:
    member_id = "00000000-0000-0000-0000-000000000123"
    output = _run_script("--member-id", member_id, "--reason", "first deploy")

    assert "update members" in output
    assert "set role = 'admin'::member_role," in output
    assert "approval_state = 'approved'" in output
    assert "approved_by = id" in output
    assert output.count(f"where id = '{member_id}'::uuid;") == 2
    assert "'reason', 'first deploy'" in output
    assert "insert into moderation_log" in output


def test_bootstrap_script_normalizes_email_target() -> None:
    output = _run_script("--email", " Admin@Example.EDU ", "--role", "alumni")

    assert "where email = 'admin@example.edu';" in output
    assert "set role = 'alumni'::member_role," in output


def test_bootstrap_script_escapes_quotes() -> None:
    output = _run_script("--email", "o'brien@example.edu")

    assert "where email = 'o''brien@example.edu';" in output
