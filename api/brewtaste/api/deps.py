import secrets

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from brewtaste.core.config import settings
from brewtaste.db.session import get_session
from brewtaste.services.update_scheduler import ProfileUpdateScheduler


async def get_db() -> AsyncSession:
    async for session in get_session():
        yield session


def get_update_scheduler(request: Request) -> ProfileUpdateScheduler:
    scheduler = getattr(request.app.state, "update_scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Update scheduler not running")
    return scheduler


async def require_ops_token(x_ops_token: str | None = Header(default=None)) -> None:
    """Guard operational endpoints when an ops token is configured."""
    expected = settings.ops_api_token
    if not expected:
        return
    if not x_ops_token or not secrets.compare_digest(x_ops_token, expected):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid ops token")
