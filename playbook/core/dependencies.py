"""
FastAPI dependencies. Injected into route handlers.
"""

from functools import lru_cache

from fastapi import Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import AuthenticatedUser, resolve_user
from .database import get_db as _get_db


async def get_db() -> AsyncSession:
    """Yields an async DB session per request."""
    async for session in _get_db():
        yield session


async def get_user(
    x_user_id: str = Header(default=""),
    x_user_email: str = Header(default=""),
) -> AuthenticatedUser:
    """Resolve the caller. Returns the dev user if FF_USE_HEADER_AUTH=false."""
    try:
        return resolve_user(x_user_id, x_user_email)
    except PermissionError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
        )


@lru_cache
def get_pipeline():
    """Shared AgentPipeline. Override in tests to swap the provider."""
    from ..pipeline.pipeline import AgentPipeline
    return AgentPipeline()
