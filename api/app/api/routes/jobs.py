import math

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.core.security import get_applicant_id, require_admin_key
from app.schemas.jobs import (
    ApplyOut,
    ApplyStatusOut,
    JobCategoryListOut,
    JobCategoryOut,
    JobCreateRequest,
    JobListOut,
    JobOut,
    JobStatsOut,
    JobUpdateRequest,
)
from app.services.publisher import Publisher, get_publisher
from app.services.repository import (
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
)

router = APIRouter()


@router.post("", response_model=JobOut, status_code=status.HTTP_201_CREATED)
async def create_job(payload: JobCreateRequest, publisher: Publisher = Depends(get_publisher)) -> JobOut:
    try:
        job = await publisher.publish_job(payload.model_dump())
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return JobOut(**job)


@router.get("", response_model=JobListOut)
async def list_jobs(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    featured: bool | None = Query(default=None),
    repository=Depends(get_repository),
) -> JobListOut:
    try:
        rows, total = await repository.list_jobs(limit=limit, offset=(page - 1) * limit, featured=featured)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return JobListOut(
        jobs=[JobOut(**row) for row in rows],
        total_jobs=total,
        total_pages=max(1, math.ceil(total / limit)),
    )


@router.get("/categories", response_model=JobCategoryListOut)
async def list_job_categories(repository=Depends(get_repository)) -> JobCategoryListOut:
    try:
        rows = await repository.list_job_categories()
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return JobCategoryListOut(categories=[JobCategoryOut(**row) for row in rows], total_categories=len(rows))


@router.get("/stats", response_model=JobStatsOut)
async def get_job_stats(repository=Depends(get_repository)) -> JobStatsOut:
    try:
        stats = await repository.get_job_stats()
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return JobStatsOut(**stats)


@router.get("/{job_id}", response_model=JobOut)
async def get_job(job_id: str, repository=Depends(get_repository)) -> JobOut:
    try:
        job = await repository.get_job(job_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return JobOut(**job)


@router.put("/{job_id}", response_model=JobOut)
async def update_job(job_id: str, payload: JobUpdateRequest, repository=Depends(get_repository)) -> JobOut:
    try:
        job = await repository.update_job(job_id, payload.model_dump(exclude_unset=True))
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return JobOut(**job)


@router.delete("/{job_id}", dependencies=[Depends(require_admin_key)])
async def delete_job(job_id: str, repository=Depends(get_repository)) -> dict[str, bool]:
    try:
        await repository.delete_job(job_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return {"success": True}


@router.post("/{job_id}/apply", response_model=ApplyOut)
async def apply_to_job(
    job_id: str,
    user_id: str = Depends(get_applicant_id),
    repository=Depends(get_repository),
) -> ApplyOut:
    try:
        result = await repository.apply_to_job(job_id, user_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return ApplyOut(applied=result.applied, new=result.new, applications_count=result.applications_count)


@router.get("/{job_id}/apply/status", response_model=ApplyStatusOut)
async def get_apply_status(
    job_id: str,
    user_id: str = Depends(get_applicant_id),
    repository=Depends(get_repository),
) -> ApplyStatusOut:
    try:
        row = await repository.get_apply_status(job_id, user_id)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return ApplyStatusOut(**row)
