import re
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
import jwt

from CoursePortalAPI import config
from CoursePortalAPI.database import get_db
from CoursePortalAPI.errors import AccessBlockedError, ConfirmationRequired
from CoursePortalAPI.procedures import check_ta_allowlist

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/v1/token")

_ERP_PATTERN = re.compile(r"(\d{5})@")


@dataclass
class StudentIdentity:
    email: str
    erp: str


def decode_email(token: str) -> str:
    """
    Verify an access token and return the email it was issued for.

    Raises:
        HTTPException: 401 if the token is invalid, expired or carries no email.
    """
    try:
        payload = jwt.decode(
            token,
            config.AUTH_JWT_SECRET,
            algorithms=[config.AUTH_JWT_ALGORITHM],
            options={"verify_aud": False},
        )
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    email = (payload.get("email") or "").strip().lower()
    if not email:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return email


def get_current_email(token: str = Depends(oauth2_scheme)) -> str:
    return decode_email(token)


def get_current_email_optional(request: Request) -> Optional[str]:
    """Email of the bearer token if one is present and valid, else None. Never raises."""
    auth: Optional[str] = request.headers.get("authorization")
    if not auth:
        return None
    parts = auth.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    try:
        return decode_email(parts[1])
    except HTTPException:
        return None


def extract_erp(email: str) -> Optional[str]:
    """
    Student ERP from a university email.

    Returns:
        str: The 5-digit ERP, or None if the email is not a student account.
    """
    email = (email or "").strip().lower()
    if not email.endswith(config.STUDENT_EMAIL_DOMAIN):
        return None
    match = _ERP_PATTERN.search(email)
    return match.group(1) if match else None


def require_ta(email: str = Depends(get_current_email), db: Session = Depends(get_db)) -> str:
    """
    Dependency for TA-only routes.

    Returns:
        str: The TA's email.

    Raises:
        AccessBlockedError: If the email has no active allowlist entry.
    """
    if not check_ta_allowlist(db, email):
        raise AccessBlockedError("This account is not on the TA allowlist.")
    return email


def require_student(email: str = Depends(get_current_email)) -> StudentIdentity:
    """
    Dependency for student routes.

    Raises:
        AccessBlockedError: If the email is not a student account of the university domain.
    """
    erp = extract_erp(email)
    if not erp:
        raise AccessBlockedError(f"Sign in with your {config.STUDENT_EMAIL_DOMAIN} student account.")
    return StudentIdentity(email=email, erp=erp)


def require_confirmation(confirmed: bool, message: str) -> None:
    if not confirmed:
        raise ConfirmationRequired(message)
