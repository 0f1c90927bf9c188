import json
import logging
from typing import Any, Dict, Optional

import requests

from CoursePortalAPI import config

logger = logging.getLogger(__name__)

SHEETS_TIMEOUT_SECONDS = 30


class SheetSyncError(Exception):
    pass


def post_to_google_sheet(payload: Dict[str, Any], url: Optional[str] = None) -> None:
    """
    POST a JSON payload to the Apps Script web app.

    The body is sent as text/plain, which Apps Script accepts without a
    CORS pre-flight.

    Raises:
        SheetSyncError: On network errors or a non-2xx response.
    """
    target = url or config.GOOGLE_SCRIPT_URL
    try:
        response = requests.post(
            target,
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "text/plain;charset=utf-8"},
            timeout=SHEETS_TIMEOUT_SECONDS,
        )
    except requests.RequestException as exc:
        raise SheetSyncError(f"Google Script request failed: {exc}") from exc
    if not response.ok:
        raise SheetSyncError(f"Google Script failed ({response.status_code}): {response.text}")


def save_to_google_sheet(payload: Dict[str, Any], url: Optional[str] = None) -> bool:
    """Best-effort variant of `post_to_google_sheet`; returns False instead of raising."""
    try:
        post_to_google_sheet(payload, url)
    except SheetSyncError as exc:
        logger.warning("Error saving to Google Sheet: %s", exc)
        return False
    return True
