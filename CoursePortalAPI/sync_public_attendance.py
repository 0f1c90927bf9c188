"""
Push the public attendance board to the Google Sheet snapshot.

Usage:
    python -m CoursePortalAPI.sync_public_attendance [--dry-run]
"""

import argparse
import logging
import os
import sys
from pathlib import Path

import requests
from dotenv import load_dotenv

from CoursePortalAPI.attendance import build_snapshot_payload, normalize_public_attendance_board_data
from CoursePortalAPI.config import DEFAULT_GOOGLE_SCRIPT_URL
from CoursePortalAPI.sheets_client import SheetSyncError, post_to_google_sheet

logger = logging.getLogger(__name__)

RPC_TIMEOUT_SECONDS = 30


class SyncError(Exception):
    pass


def fetch_public_attendance(base_url: str, api_key: str):
    """
    Call the `get_public_attendance_board` procedure over REST.

    Raises:
        SyncError: On network failure or a non-2xx response.
    """
    rpc_url = f"{base_url.rstrip('/')}/rest/v1/rpc/get_public_attendance_board"
    try:
        response = requests.post(
            rpc_url,
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "Prefer": "return=representation",
            },
            data="{}",
            timeout=RPC_TIMEOUT_SECONDS,
        )
    except requests.RequestException as exc:
        raise SyncError(f"Board request failed: {exc}") from exc
    if not response.ok:
        raise SyncError(f"Supabase RPC failed ({response.status_code}): {response.text}")
    return response.json()


def run(dry_run: bool = False) -> None:
    load_dotenv(Path.cwd() / ".env")

    base_url = os.getenv("SUPABASE_URL") or os.getenv("VITE_SUPABASE_URL")
    api_key = os.getenv("SUPABASE_ANON_KEY") or os.getenv("VITE_SUPABASE_PUBLISHABLE_KEY")
    script_url = os.getenv("GOOGLE_SCRIPT_URL") or os.getenv("VITE_GOOGLE_SCRIPT_URL") or DEFAULT_GOOGLE_SCRIPT_URL

    if not base_url:
        raise SyncError("Missing SUPABASE_URL or VITE_SUPABASE_URL in environment.")
    if not api_key:
        raise SyncError("Missing SUPABASE_ANON_KEY or VITE_SUPABASE_PUBLISHABLE_KEY in environment.")

    board = normalize_public_attendance_board_data(fetch_public_attendance(base_url, api_key))
    payload = build_snapshot_payload(board, source="cli_sync")
    students = len(board["students"])
    sessions = len(board["sessions"])

    if dry_run:
        print("[dry-run] payload prepared")
        print(f"students={students}, sessions={sessions}, headers={len(payload['headers'])}")
        if payload["rows"]:
            print("[dry-run] first row sample:", payload["rows"][0])
        return

    try:
        post_to_google_sheet(payload, script_url)
    except SheetSyncError as exc:
        raise SyncError(str(exc)) from exc
    print(f"Synced {students} students across {sessions} sessions to Google Sheet via Apps Script.")


def main(argv=None) -> int:
    logging.basicConfig(level=logging.INFO)
    parser = argparse.ArgumentParser(description="Sync the public attendance board to the Google Sheet snapshot.")
    parser.add_argument("--dry-run", action="store_true", help="Build the payload without posting it")
    args = parser.parse_args(argv)

    try:
        run(dry_run=args.dry_run)
    except (SyncError, ValueError) as exc:
        print(f"Sync failed: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
