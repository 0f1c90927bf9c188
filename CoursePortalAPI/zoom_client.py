import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from CoursePortalAPI import config

logger = logging.getLogger(__name__)

ZOOM_REPORT_SCHEMA_VERSION = 1
ZOOM_ROW_KEYS = (
    "attendance_rows",
    "issues_rows",
    "absent_rows",
    "penalties_rows",
    "matches_rows",
    "raw_rows",
)
ZOOM_TIMEOUT_SECONDS = 120


class ZoomProcessingError(Exception):
    pass


def process_zoom_log(file_name: str, content: bytes, threshold: float = 0.8, roster: Optional[tuple] = None) -> Dict[str, Any]:
    """
    Send a Zoom participant log to the external processor.

    Args:
        file_name (str): Original upload name.
        content (bytes): File contents.
        threshold (float): Fraction of class time needed to count as present.
        roster (tuple, optional): (file_name, content) of a roster spreadsheet.

    Returns:
        dict: The processor's JSON body.

    Raises:
        ZoomProcessingError: If the processor is unreachable, answers non-2xx
        or returns something other than a JSON object.
    """
    files = {"file": (file_name, content)}
    if roster:
        files["roster"] = roster
    endpoint = f"{config.ZOOM_API_URL}/api/process"
    try:
        response = requests.post(endpoint, files=files, data={"threshold": str(threshold)}, timeout=ZOOM_TIMEOUT_SECONDS)
    except requests.RequestException as exc:
        raise ZoomProcessingError(f"Network error while reaching Zoom processor API: {exc}") from exc

    if not response.ok:
        message = response.text
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            message = body.get("error") or body.get("message") or message
        raise ZoomProcessingError(f"Backend error ({response.status_code}): {message}")

    try:
        data = response.json()
    except ValueError as exc:
        raise ZoomProcessingError("Backend returned non-JSON response. Check /api/process logs.") from exc
    if not isinstance(data, dict):
        raise ZoomProcessingError("Unexpected response shape from backend.")
    logger.info("Processed Zoom log %s: %s absent", file_name, len(data.get("absent_rows") or []))
    return data


def absent_erps(report: Dict[str, Any]) -> List[str]:
    """ERPs listed in a processed report's absent rows, in order."""
    erps = []
    for row in report.get("absent_rows") or []:
        if isinstance(row, dict) and row.get("ERP"):
            erps.append(str(row["ERP"]))
    return erps


def _to_record_array(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [row if isinstance(row, dict) else {"value": row} for row in value]


def _to_finite_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else None
    if isinstance(value, str) and value.strip():
        try:
            parsed = float(value)
        except ValueError:
            return None
        if not math.isfinite(parsed):
            return None
        return int(parsed) if parsed.is_integer() else parsed
    return None


def normalize_zoom_session_report(data: Any) -> Optional[Dict[str, Any]]:
    """
    Coerce a processed Zoom report into the stored per-session shape.

    Missing row arrays become empty lists and non-object rows are wrapped as
    {"value": row}. Optional numeric fields are kept only when finite.

    Returns:
        dict: The normalized report, or None when `data` is not an object.
    """
    if not isinstance(data, dict):
        return None

    generated_at = data.get("generated_at")
    if not isinstance(generated_at, str) or not generated_at.strip():
        generated_at = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

    report = {"schema_version": ZOOM_REPORT_SCHEMA_VERSION}
    for key in ZOOM_ROW_KEYS:
        report[key] = _to_record_array(data.get(key))
    report["generated_at"] = generated_at

    for key in ("total_class_minutes", "effective_threshold_minutes", "rows"):
        number = _to_finite_number(data.get(key))
        if number is not None:
            report[key] = number

    source = data.get("source_zoom_file_name")
    if isinstance(source, str) and source.strip():
        report["source_zoom_file_name"] = source.strip()
    return report
