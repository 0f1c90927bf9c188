import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status

from CoursePortalAPI.routes.auth import require_ta
from CoursePortalAPI.zoom_client import ZoomProcessingError, absent_erps, process_zoom_log

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/zoom/process")
def process_zoom_upload(
    file: UploadFile = File(...),
    threshold: float = Form(0.8),
    ta_email: str = Depends(require_ta),
):
    """
    Forward a Zoom participant log to the processor.

    Args:
        file (UploadFile): The Zoom CSV export.
        threshold (float): Fraction of class time needed to count as present.
        ta_email (str): The signed-in TA.

    Returns:
        dict: The processor's report plus `absent_text`, the absent ERPs ready
        to paste into the bulk marking form.

    Raises:
        HTTPException: 502 if the processor fails.
    """
    content = file.file.read()
    try:
        report = process_zoom_log(file.filename or "zoom.csv", content, threshold)
    except ZoomProcessingError as e:
        logger.warning("Zoom processing failed for %s: %s", ta_email, e)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    report["absent_text"] = ", ".join(absent_erps(report))
    return report
