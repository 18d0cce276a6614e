"""Shared FastAPI dependencies."""

from typing import Optional

from fastapi import Header, HTTPException, Request, status

def get_engine(request: Request):
    """The Engine the application was built with."""
    engine = getattr(request.app.state, 'engine', None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Engine is not initialized"
        )
    return engine

async def get_current_user(x_user_id: str = Header(None)) -> str:
    """Identity asserted by the upstream gateway in the X-User-Id header.

    Raises:
        HTTPException: If the header is missing or blank
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header"
        )
    return x_user_id.strip()

async def get_optional_user(x_user_id: str = Header(None)) -> Optional[str]:
    """The X-User-Id identity when one was sent."""
    if not x_user_id or not x_user_id.strip():
        return None
    return x_user_id.strip()
