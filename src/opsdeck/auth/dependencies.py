"""FastAPI dependencies for dashboard session auth."""

import hmac

from fastapi import Cookie, Header, HTTPException, status

from opsdeck.config import get_settings
from opsdeck.runner.security import extract_bearer


def extract_session_token(
    authorization: str | None,
    opsdeck_session: str | None,
) -> str | None:
    bearer = extract_bearer(authorization)
    if bearer:
        return bearer.strip()
    if opsdeck_session:
        token = opsdeck_session.strip()
        if token:
            return token
    return None


def require_session(
    authorization: str | None = Header(default=None),
    opsdeck_session: str | None = Cookie(default=None),
) -> None:
    raw_token = extract_session_token(authorization, opsdeck_session)
    if not raw_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="missing session token",
        )
    expected = get_settings().dashboard_token.strip()
    if not expected or not hmac.compare_digest(raw_token.encode(), expected.encode()):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid session")
