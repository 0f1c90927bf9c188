import logging

from fastapi import FastAPI, Request
from contextlib import asynccontextmanager
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from CoursePortalAPI import config
from CoursePortalAPI.database import engine, Base
from CoursePortalAPI.errors import (
    AccessBlockedError,
    ConfirmationRequired,
    NotFoundError,
    PortalError,
)
from CoursePortalAPI.routes import (
    attendance_router,
    late_days_router,
    public_router,
    roster_router,
    sessions_router,
    settings_router,
    tickets_router,
    zoom_router,
)

ERROR_STATUS_CODES = {
    AccessBlockedError: 403,
    NotFoundError: 404,
    ConfirmationRequired: 409,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup logic
    logging.info("App startup event")
    yield
    # Shutdown logic
    logging.info("App shutdown event")


app = FastAPI(lifespan=lifespan)

# Create all the tables in the database (make sure models are imported)
Base.metadata.create_all(bind=engine)


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    """
    Render portal errors as `{"detail": {"error": code, "message": message}}`.

    Validation and procedure errors are 400; access, missing rows and
    unconfirmed destructive actions get their own status codes.
    """
    status_code = 400
    for error_type, code in ERROR_STATUS_CODES.items():
        if isinstance(exc, error_type):
            status_code = code
            break
    return JSONResponse(status_code=status_code, content={"detail": exc.to_detail()})


# Student and TA late-day routes
app.include_router(late_days_router)

# Session, attendance and Zoom routes
app.include_router(sessions_router)
app.include_router(attendance_router)
app.include_router(zoom_router)

# Roster routes
app.include_router(roster_router)

# Ticket routes
app.include_router(tickets_router)

# Settings, lists and rule exceptions
app.include_router(settings_router)

# Public board
app.include_router(public_router)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Root endpoint for testing
@app.get("/")
def read_root():
    return {"message": "Welcome to the Course Portal API"}

# Run the application (for development)
if __name__ == "__main__":
    uvicorn.run("CoursePortalAPI.main:app", host="0.0.0.0", port=8000, log_level="debug")
