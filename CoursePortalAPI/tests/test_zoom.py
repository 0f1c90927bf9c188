from unittest.mock import MagicMock, patch

import pytest
import requests

from CoursePortalAPI.zoom_client import (
    ZoomProcessingError,
    absent_erps,
    normalize_zoom_session_report,
    process_zoom_log,
)


def _response(status_code=200, json_body=None, text="", json_error=False):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.text = text
    if json_error:
        response.json.side_effect = ValueError("not json")
    else:
        response.json.return_value = json_body
    return response


def test_normalize_fills_missing_rows_and_wraps_scalars():
    report = normalize_zoom_session_report(
        {
            "absent_rows": [{"ERP": "12345"}, "stray"],
            "issues_rows": "not-a-list",
            "total_class_minutes": "90",
            "effective_threshold_minutes": float("inf"),
            "rows": 42.5,
            "source_zoom_file_name": "  participants.csv ",
            "generated_at": "2026-01-12T10:00:00Z",
        }
    )
    assert report["schema_version"] == 1
    assert report["absent_rows"] == [{"ERP": "12345"}, {"value": "stray"}]
    assert report["issues_rows"] == []
    assert report["matches_rows"] == []
    assert report["total_class_minutes"] == 90
    assert "effective_threshold_minutes" not in report
    assert report["rows"] == 42.5
    assert report["source_zoom_file_name"] == "participants.csv"
    assert report["generated_at"] == "2026-01-12T10:00:00Z"


def test_normalize_rejects_non_objects_and_stamps_time():
    assert normalize_zoom_session_report(["rows"]) is None
    assert normalize_zoom_session_report(None) is None
    assert normalize_zoom_session_report({})["generated_at"].endswith("Z")


def test_absent_erps():
    report = {"absent_rows": [{"ERP": "12345"}, {"Name": "Guest"}, {"ERP": 23456}]}
    assert absent_erps(report) == ["12345", "23456"]
    assert absent_erps({}) == []


def test_process_posts_file_and_threshold():
    body = {"absent_rows": [{"ERP": "12345"}]}
    with patch("CoursePortalAPI.zoom_client.requests.post", return_value=_response(json_body=body)) as post:
        assert process_zoom_log("zoom.csv", b"Name,Duration", threshold=0.75) == body

    assert post.call_args.args[0].endswith("/api/process")
    assert post.call_args.kwargs["files"] == {"file": ("zoom.csv", b"Name,Duration")}
    assert post.call_args.kwargs["data"] == {"threshold": "0.75"}


@pytest.mark.parametrize(
    "response, message",
    [
        (_response(500, json_body={"error": "bad csv"}), "Backend error (500): bad csv"),
        (_response(502, text="Bad Gateway", json_error=True), "Backend error (502): Bad Gateway"),
        (_response(200, json_error=True), "Backend returned non-JSON response. Check /api/process logs."),
        (_response(200, json_body=[1, 2]), "Unexpected response shape from backend."),
    ],
)
def test_process_failures(response, message):
    with patch("CoursePortalAPI.zoom_client.requests.post", return_value=response):
        with pytest.raises(ZoomProcessingError) as exc:
            process_zoom_log("zoom.csv", b"")
    assert str(exc.value) == message


def test_process_network_failure():
    with patch("CoursePortalAPI.zoom_client.requests.post", side_effect=requests.ConnectionError("refused")):
        with pytest.raises(ZoomProcessingError, match="Network error while reaching Zoom processor API"):
            process_zoom_log("zoom.csv", b"")


def test_upload_route_returns_absent_text(test_client, ta_headers):
    body = {"absent_rows": [{"ERP": "12345"}, {"ERP": "23456"}]}
    with patch("CoursePortalAPI.routes.zoom.process_zoom_log", return_value=body) as process:
        res = test_client.post(
            "/zoom/process",
            files={"file": ("zoom.csv", b"Name,Duration\n", "text/csv")},
            data={"threshold": "0.9"},
            headers=ta_headers,
        )
    assert res.status_code == 200, res.text
    assert res.json()["absent_text"] == "12345, 23456"
    assert process.call_args.args == ("zoom.csv", b"Name,Duration\n", 0.9)


def test_upload_route_maps_processor_failure(test_client, ta_headers):
    with patch("CoursePortalAPI.routes.zoom.process_zoom_log", side_effect=ZoomProcessingError("Backend error (500): x")):
        res = test_client.post("/zoom/process", files={"file": ("zoom.csv", b"", "text/csv")}, headers=ta_headers)
    assert res.status_code == 502
    assert res.json()["detail"] == "Backend error (500): x"
