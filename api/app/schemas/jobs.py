from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

JobStatus = Literal["Active", "Draft", "Expired"]


class JobCreateRequest(BaseModel):
    title: str
    company: str
    company_logo: str | None = None
    category: str
    job_type: str
    work_mode: str | None = None
    featured: bool = False
    country: str | None = None
    state: str | None = None
    city: str | None = None
    address: str | None = None
    remote: bool = False
    short_description: str | None = None
    long_description: str | None = None
    skills: list[str] | str = Field(default_factory=list)
    experience: str | None = None
    education: str | None = None
    employment_level: str | None = None
    salary_min: float | None = None
    salary_max: float | None = None
    currency: str | None = None
    salary_per: str | None = None
    benefits: str | None = None
    deadline: datetime | None = None
    posting_date: datetime | None = None
    end_date: datetime
    apply: str
    website: str | None = None
    tags: list[str] | str = Field(default_factory=list)
    posted_by: str | None = None
    status: JobStatus = "Active"
    schema_json_ld: str | dict[str, Any] | None = None


class JobUpdateRequest(BaseModel):
    title: str | None = None
    company: str | None = None
    company_logo: str | None = None
    category: str | None = None
    job_type: str | None = None
    work_mode: str | None = None
    featured: bool | None = None
    country: str | None = None
    state: str | None = None
    city: str | None = None
    address: str | None = None
    remote: bool | None = None
    short_description: str | None = None
    long_description: str | None = None
    skills: list[str] | str | None = None
    experience: str | None = None
    education: str | None = None
    employment_level: str | None = None
    salary_min: float | None = None
    salary_max: float | None = None
    currency: str | None = None
    salary_per: str | None = None
    benefits: str | None = None
    deadline: datetime | None = None
    end_date: datetime | None = None
    apply: str | None = None
    website: str | None = None
    tags: list[str] | str | None = None
    status: JobStatus | None = None
    schema_json_ld: str | dict[str, Any] | None = None


class JobOut(BaseModel):
    id: str
    title: str
    company: str
    company_logo: str | None = None
    category: str
    job_type: str
    work_mode: str | None = None
    featured: bool = False
    country: str | None = None
    state: str | None = None
    city: str | None = None
    address: str | None = None
    remote: bool = False
    short_description: str | None = None
    long_description: str | None = None
    skills: list[str] = Field(default_factory=list)
    experience: str | None = None
    education: str | None = None
    employment_level: str | None = None
    salary_min: float | None = None
    salary_max: float | None = None
    currency: str = "USD"
    salary_per: str = "Year"
    benefits: str | None = None
    deadline: datetime | None = None
    posting_date: datetime | None = None
    end_date: datetime
    apply: str
    website: str | None = None
    tags: list[str] = Field(default_factory=list)
    posted_by: str | None = None
    status: JobStatus = "Active"
    applications_count: int = 0
    schema_json_ld: str | None = None
    created_at: datetime
    updated_at: datetime


class JobListOut(BaseModel):
    jobs: list[JobOut]
    total_jobs: int
    total_pages: int


class ApplyOut(BaseModel):
    success: bool = True
    applied: bool
    new: bool
    applications_count: int


class ApplyStatusOut(BaseModel):
    applied: bool
    applications_count: int


class JobCategoryOut(BaseModel):
    name: str
    count: int


class JobCategoryListOut(BaseModel):
    categories: list[JobCategoryOut]
    total_categories: int


class RecentJobOut(BaseModel):
    id: str
    title: str
    status: str
    date: datetime
    company: str
    applications: int


class JobStatsOut(BaseModel):
    total_jobs: int
    active_jobs: int
    draft_jobs: int
    expired_jobs: int
    recent_jobs: list[RecentJobOut]
