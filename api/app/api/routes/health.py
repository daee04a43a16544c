from fastapi import APIRouter, Depends

from app.services.repository import get_repository

router = APIRouter()


@router.get("/")
async def root() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/healthz")
async def healthz(repository=Depends(get_repository)) -> dict[str, str]:
    connected = await repository.ping()
    return {"status": "ok", "db": "connected" if connected else "not_connected"}
