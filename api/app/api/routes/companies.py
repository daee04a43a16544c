from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.core.security import require_admin_key
from app.schemas.companies import CompanyListOut, CompanyOut, CompanySortBy, ReconcileOut
from app.services.companies import CompanyAggregateMaintainer
from app.services.publisher import get_maintainer
from app.services.repository import RepositoryUnavailableError

router = APIRouter()


@router.get("", response_model=CompanyListOut)
async def list_companies(
    featured: bool | None = Query(default=None),
    active: bool = Query(default=False),
    sort: CompanySortBy = Query(default="created_at"),
    limit: int = Query(default=20, ge=1, le=100),
    maintainer: CompanyAggregateMaintainer = Depends(get_maintainer),
) -> CompanyListOut:
    try:
        if active:
            rows = await maintainer.list_active_companies(
                limit=limit,
                sort_by_open_positions=sort == "open_positions",
            )
        else:
            rows = await maintainer.list_companies(
                limit=limit,
                featured=featured,
                sort_by_open_positions=sort == "open_positions",
            )
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return CompanyListOut(companies=[CompanyOut(**row) for row in rows], total_companies=len(rows))


@router.post("/reconcile", response_model=ReconcileOut, dependencies=[Depends(require_admin_key)])
async def reconcile_companies(
    maintainer: CompanyAggregateMaintainer = Depends(get_maintainer),
) -> ReconcileOut:
    try:
        summary = await maintainer.reconcile_all()
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    return ReconcileOut(
        companies_processed=summary.companies_processed,
        created=summary.created,
        updated=summary.updated,
        orphaned=summary.orphaned,
        orphan_policy=maintainer.orphan_policy,
    )
