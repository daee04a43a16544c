from datetime import datetime
from typing import Literal

from pydantic import BaseModel

CompanySortBy = Literal["created_at", "open_positions"]


class CompanyOut(BaseModel):
    id: str | None = None
    company_name: str
    logo: str | None = None
    location: str | None = None
    industry: str | None = None
    open_positions: int = 0
    featured: bool = False
    description: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class CompanyListOut(BaseModel):
    companies: list[CompanyOut]
    total_companies: int


class ReconcileOut(BaseModel):
    ok: bool = True
    companies_processed: int
    created: int
    updated: int
    orphaned: int
    orphan_policy: str
