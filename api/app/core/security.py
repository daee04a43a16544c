import hashlib
import hmac

from fastapi import Depends, Header, HTTPException, status

from app.core.config import Settings, get_settings


async def require_admin_key(
    settings: Settings = Depends(get_settings),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> None:
    if not settings.admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="admin operations are disabled: JB_ADMIN_API_KEY is not configured",
        )
    if not x_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="admin operations require X-API-Key",
        )

    presented = hashlib.sha256(x_api_key.encode("utf-8")).hexdigest()
    expected = hashlib.sha256(settings.admin_api_key.encode("utf-8")).hexdigest()
    if not hmac.compare_digest(presented, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid admin api key")


async def get_applicant_id(x_user_id: str | None = Header(default=None, alias="X-User-Id")) -> str:
    """Caller identity as asserted by the authenticating gateway in front of this service."""
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="request requires X-User-Id",
        )
    return user_id
