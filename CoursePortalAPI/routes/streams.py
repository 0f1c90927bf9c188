from typing import Optional

from fastapi.responses import StreamingResponse

from CoursePortalAPI.change_feed import change_feed


def change_stream(table: str, event: str = "*", filter: Optional[str] = None) -> StreamingResponse:
    """
    Serve change notifications for a table as Server-Sent Events.

    Args:
        table (str): Table to listen on.
        event (str): INSERT, UPDATE, DELETE or "*".
        filter (str, optional): `column=eq.value` filter.

    Returns:
        StreamingResponse: Server-Sent Events stream with heartbeat comments.
    """
    return StreamingResponse(change_feed.sse_events(table, event, filter), media_type="text/event-stream")
