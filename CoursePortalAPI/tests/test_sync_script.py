from unittest.mock import MagicMock, patch

import pytest
import requests

from CoursePortalAPI import sync_public_attendance
from CoursePortalAPI.sync_public_attendance import SyncError, fetch_public_attendance, main

BOARD = {
    "sessions": [
        {"id": "s2", "session_number": 2, "session_date": "2026-01-14", "day_of_week": "Wednesday"},
        {"id": "s1", "session_number": 1, "session_date": "2026-01-12", "day_of_week": "Monday"},
    ],
    "students": [
        {
            "class_no": "1",
            "student_name": "Aamina Ghias",
            "erp": "12345",
            "total_penalties": 0,
            "total_absences": 1,
            "session_status": {"s1": "absent", "s2": "present"},
            "penalty_entries": [],
        }
    ],
}


def _response(status_code=200, json_body=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.json.return_value = json_body
    response.text = text
    return response


@pytest.fixture
def sync_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ("SUPABASE_URL", "VITE_SUPABASE_URL", "SUPABASE_ANON_KEY", "VITE_SUPABASE_PUBLISHABLE_KEY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SUPABASE_URL", "https://portal.example.com/")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon-key")
    monkeypatch.setenv("GOOGLE_SCRIPT_URL", "https://script.example.com/exec")


def test_fetch_sends_procedure_headers():
    with patch("CoursePortalAPI.sync_public_attendance.requests.post", return_value=_response(json_body=BOARD)) as post:
        assert fetch_public_attendance("https://portal.example.com/", "anon-key") == BOARD

    url = post.call_args.args[0]
    headers = post.call_args.kwargs["headers"]
    assert url == "https://portal.example.com/rest/v1/rpc/get_public_attendance_board"
    assert headers["apikey"] == "anon-key"
    assert headers["Authorization"] == "Bearer anon-key"
    assert post.call_args.kwargs["data"] == "{}"


def test_fetch_raises_on_error_status():
    with patch("CoursePortalAPI.sync_public_attendance.requests.post", return_value=_response(500, text="boom")):
        with pytest.raises(SyncError, match=r"Supabase RPC failed \(500\): boom"):
            fetch_public_attendance("https://portal.example.com", "anon-key")


def test_dry_run_prints_payload_and_does_not_post(sync_env, capsys):
    with patch("CoursePortalAPI.sync_public_attendance.requests.post", return_value=_response(json_body=BOARD)), patch(
        "CoursePortalAPI.sync_public_attendance.post_to_google_sheet"
    ) as post_sheet:
        assert main(["--dry-run"]) == 0

    post_sheet.assert_not_called()
    out = capsys.readouterr().out
    assert "[dry-run] payload prepared" in out
    assert "students=1, sessions=2, headers=7" in out
    assert "[dry-run] first row sample: ['1', 'Aamina Ghias', '12345', 0, 1, 'A', 'P']" in out


def test_sync_posts_snapshot(sync_env, capsys):
    with patch("CoursePortalAPI.sync_public_attendance.requests.post", return_value=_response(json_body=BOARD)), patch(
        "CoursePortalAPI.sync_public_attendance.post_to_google_sheet"
    ) as post_sheet:
        assert main([]) == 0

    payload, url = post_sheet.call_args.args
    assert url == "https://script.example.com/exec"
    assert payload["headers"] == ["Class", "Name", "ERP", "Penalties", "Absences", "S1", "S2"]
    assert payload["metadata"] == {"students": 1, "sessions": 2, "source": "cli_sync"}
    assert "Synced 1 students across 2 sessions to Google Sheet via Apps Script." in capsys.readouterr().out


def test_missing_configuration_exits_non_zero(sync_env, monkeypatch, capsys):
    monkeypatch.delenv("SUPABASE_URL")
    assert main([]) == 1
    assert "Sync failed: Missing SUPABASE_URL or VITE_SUPABASE_URL in environment." in capsys.readouterr().err


def test_webhook_failure_exits_non_zero(sync_env, capsys):
    with patch(
        "CoursePortalAPI.sync_public_attendance.requests.post",
        side_effect=[_response(json_body=BOARD), _response(500, text="Script error")],
    ):
        assert main([]) == 1
    assert "Sync failed: Google Script failed (500): Script error" in capsys.readouterr().err


def test_network_failure_exits_non_zero(sync_env, capsys):
    with patch.object(sync_public_attendance.requests, "post", side_effect=requests.ConnectionError("refused")):
        assert main([]) == 1
    assert "Sync failed: Board request failed: refused" in capsys.readouterr().err
