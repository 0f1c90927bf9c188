from .attendance import router as attendance_router
from .late_days import router as late_days_router
from .public import router as public_router
from .roster import router as roster_router
from .sessions import router as sessions_router
from .settings import router as settings_router
from .tickets import router as tickets_router
from .zoom import router as zoom_router

__all__ = [
    "attendance_router",
    "late_days_router",
    "public_router",
    "roster_router",
    "sessions_router",
    "settings_router",
    "tickets_router",
    "zoom_router",
]
