from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.schemas.blogs import BlogCreateRequest, BlogOut
from app.services.publisher import Publisher, get_publisher
from app.services.repository import (
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
)

router = APIRouter()


@router.post("", response_model=BlogOut, status_code=status.HTTP_201_CREATED)
async def create_blog(payload: BlogCreateRequest, publisher: Publisher = Depends(get_publisher)) -> BlogOut:
    try:
        blog = await publisher.publish_blog(payload.model_dump())
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return BlogOut(**blog)


@router.get("", response_model=list[BlogOut])
async def list_blogs(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    repository=Depends(get_repository),
) -> list[BlogOut]:
    try:
        rows = await repository.list_blogs(limit=limit, offset=offset)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return [BlogOut(**row) for row in rows]


@router.get("/categories", response_model=list[str])
async def list_blog_categories(repository=Depends(get_repository)) -> list[str]:
    try:
        return await repository.list_blog_categories()
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


@router.get("/category/{category}", response_model=list[BlogOut])
async def list_blogs_by_category(category: str, repository=Depends(get_repository)) -> list[BlogOut]:
    try:
        rows = await repository.list_blogs_by_category(category)
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return [BlogOut(**row) for row in rows]


@router.get("/{blog_id}", response_model=BlogOut)
async def get_blog(blog_id: str, repository=Depends(get_repository)) -> BlogOut:
    try:
        blog = await repository.get_blog(blog_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return BlogOut(**blog)
