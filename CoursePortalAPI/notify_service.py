import logging
from typing import List, Optional

import requests

from CoursePortalAPI import config

logger = logging.getLogger(__name__)

NOTIFICATION_TIMEOUT_SECONDS = 4


def can_send_ntfy() -> bool:
    return config.NTFY_ENABLED and bool(config.NTFY_BASE_URL)


def send_ntfy_notification(
    title: str,
    message: str,
    tags: Optional[List[str]] = None,
    priority: int = 3,
    topic: Optional[str] = None,
) -> bool:
    """
    Post a notification to the course ntfy topic.

    Returns True on success, False if skipped or failed. Never raises.
    """
    topic = (topic or config.NTFY_TOPIC or "").strip()
    title = (title or "").strip()
    message = (message or "").strip()
    if not can_send_ntfy() or not topic or not title or not message:
        return False

    headers = {
        "Content-Type": "text/plain;charset=utf-8",
        "Title": title,
        "Priority": str(priority),
    }
    if tags:
        headers["Tags"] = ",".join(tags)

    try:
        response = requests.post(
            f"{config.NTFY_BASE_URL}/{requests.utils.quote(topic, safe='')}",
            data=message.encode("utf-8"),
            headers=headers,
            timeout=NOTIFICATION_TIMEOUT_SECONDS,
        )
    except requests.RequestException as exc:
        logger.warning("ntfy notification failed: %s", exc)
        return False
    if not response.ok:
        logger.warning("ntfy notification rejected (%s)", response.status_code)
    return response.ok
