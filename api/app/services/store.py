from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from app.services.repository import (
    DEFAULT_CHANNEL,
    ApplyResult,
    CompanyWriteResult,
    RepositoryBase,
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryValidationError,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryRepository(RepositoryBase):
    """Process-local backend used when no database is configured.

    Every mutation runs without suspension points, so each call is atomic with
    respect to other coroutines on the same event loop.
    """

    def __init__(self) -> None:
        self.jobs: dict[str, dict[str, Any]] = {}
        self.blogs: dict[str, dict[str, Any]] = {}
        self.companies: dict[str, dict[str, Any]] = {}
        self.subscriptions: dict[str, dict[str, Any]] = {}
        self.applications: set[tuple[str, str]] = set()

    async def create_job(self, payload: dict[str, Any], *, now: datetime | None = None) -> dict[str, Any]:
        current = now or _utcnow()
        record = self._prepare_job_create(payload, now=current)
        job_id = str(uuid4())
        self.jobs[job_id] = {
            "id": job_id,
            **record,
            "applications_count": 0,
            "created_at": _utcnow(),
            "updated_at": _utcnow(),
        }
        return copy.deepcopy(self.jobs[job_id])

    async def _fetch_job(self, job_id: str) -> dict[str, Any]:
        job = self.jobs.get(job_id)
        if job is None:
            raise RepositoryNotFoundError("job not found")
        return copy.deepcopy(job)

    async def mark_job_expired(self, job_id: str) -> None:
        job = self.jobs.get(job_id)
        if job is not None and job["status"] != "Expired":
            job["status"] = "Expired"
            job["updated_at"] = _utcnow()

    async def list_jobs(
        self,
        *,
        limit: int,
        offset: int,
        featured: bool | None = None,
        now: datetime | None = None,
    ) -> tuple[list[dict[str, Any]], int]:
        current = now or _utcnow()
        rows = [
            job
            for job in self.jobs.values()
            if (job["end_date"] is None or job["end_date"] >= current)
            and (featured is None or job["featured"] == featured)
        ]
        rows.sort(key=lambda job: job["created_at"], reverse=True)
        return [copy.deepcopy(job) for job in rows[offset : offset + limit]], len(rows)

    async def update_job(
        self,
        job_id: str,
        payload: dict[str, Any],
        *,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        updates = self._prepare_job_update(payload, now=now or _utcnow())
        job = self.jobs.get(job_id)
        if job is None:
            raise RepositoryNotFoundError("job not found")
        if updates:
            job.update(updates)
            job["updated_at"] = _utcnow()
        return await self.get_job(job_id, now=now)

    async def delete_job(self, job_id: str) -> None:
        if self.jobs.pop(job_id, None) is None:
            raise RepositoryNotFoundError("job not found")
        self.applications = {key for key in self.applications if key[0] != job_id}

    async def apply_to_job(self, job_id: str, user_id: str, *, now: datetime | None = None) -> ApplyResult:
        job = await self.get_job(job_id, now=now)
        if job["status"] == "Expired":
            raise RepositoryConflictError("job has expired")

        stored = self.jobs[job_id]
        key = (job_id, user_id)
        if key in self.applications:
            return ApplyResult(applied=True, new=False, applications_count=stored["applications_count"])
        self.applications.add(key)
        stored["applications_count"] += 1
        return ApplyResult(applied=True, new=True, applications_count=stored["applications_count"])

    async def get_apply_status(self, job_id: str, user_id: str) -> dict[str, Any]:
        job = await self._fetch_job(job_id)
        return {
            "applied": (job_id, user_id) in self.applications,
            "applications_count": job["applications_count"],
        }

    async def list_company_sources(self) -> list[dict[str, Any]]:
        ordered = sorted(self.jobs.values(), key=lambda job: job["created_at"])
        fields = ("company", "company_logo", "category", "remote", "city", "state", "country")
        return [{field: job.get(field) for field in fields} for job in ordered]

    async def list_job_categories(self, *, now: datetime | None = None) -> list[dict[str, Any]]:
        current = now or _utcnow()
        counts: dict[str, int] = {}
        for job in self.jobs.values():
            if job["end_date"] is None or job["end_date"] >= current:
                counts[job["category"]] = counts.get(job["category"], 0) + 1
        return [{"name": name, "count": counts[name]} for name in sorted(counts)]

    async def get_job_stats(self, *, now: datetime | None = None, recent_limit: int = 10) -> dict[str, Any]:
        current = now or _utcnow()
        jobs = list(self.jobs.values())
        recent = sorted(jobs, key=lambda job: job["created_at"], reverse=True)[:recent_limit]
        return {
            "total_jobs": len(jobs),
            "active_jobs": sum(
                1
                for job in jobs
                if (job["end_date"] is None or job["end_date"] >= current) and job["status"] != "Draft"
            ),
            "draft_jobs": sum(1 for job in jobs if job["status"] == "Draft"),
            "expired_jobs": sum(
                1
                for job in jobs
                if job["status"] == "Expired" or (job["end_date"] is not None and job["end_date"] < current)
            ),
            "recent_jobs": [self._recent_job(job) for job in recent],
        }

    async def list_active_company_counts(
        self,
        *,
        limit: int,
        sort_by_open_positions: bool = False,
        now: datetime | None = None,
    ) -> list[dict[str, Any]]:
        current = now or _utcnow()
        groups: dict[str, dict[str, Any]] = {}
        for job in sorted(self.jobs.values(), key=lambda job: job["created_at"]):
            if job["status"] == "Expired" or (job["end_date"] is not None and job["end_date"] < current):
                continue
            if not job["company"]:
                continue
            group = groups.get(job["company"])
            if group is None:
                groups[job["company"]] = {
                    "company_name": job["company"],
                    "open_positions": 1,
                    "company_logo": job["company_logo"],
                    "category": job["category"],
                }
            else:
                group["open_positions"] += 1
        rows = sorted(groups.values(), key=lambda group: group["company_name"])
        if sort_by_open_positions:
            rows.sort(key=lambda group: group["open_positions"], reverse=True)
        return rows[:limit]

    async def create_blog(self, payload: dict[str, Any], *, now: datetime | None = None) -> dict[str, Any]:
        record = self._prepare_blog_create(payload, now=now or _utcnow())
        blog_id = str(uuid4())
        self.blogs[blog_id] = {"id": blog_id, **record, "created_at": _utcnow(), "updated_at": _utcnow()}
        return copy.deepcopy(self.blogs[blog_id])

    async def get_blog(self, blog_id: str) -> dict[str, Any]:
        blog = self.blogs.get(blog_id)
        if blog is None:
            raise RepositoryNotFoundError("blog not found")
        return copy.deepcopy(blog)

    async def list_blogs(self, *, limit: int, offset: int) -> list[dict[str, Any]]:
        rows = sorted(self.blogs.values(), key=lambda blog: (blog["published_at"], blog["created_at"]), reverse=True)
        return [copy.deepcopy(blog) for blog in rows[offset : offset + limit]]

    async def list_blog_categories(self) -> list[str]:
        return sorted({blog["category"] for blog in self.blogs.values() if blog["category"]})

    async def list_blogs_by_category(self, category: str) -> list[dict[str, Any]]:
        normalized = self._require_category(category)
        rows = [blog for blog in self.blogs.values() if blog["category"] == normalized]
        rows.sort(key=lambda blog: (blog["published_at"], blog["created_at"]), reverse=True)
        return [copy.deepcopy(blog) for blog in rows]

    async def increment_company(
        self,
        *,
        company_name: str,
        logo: str | None,
        location: str | None,
        industry: str | None,
    ) -> CompanyWriteResult:
        company = self.companies.get(company_name)
        created = company is None
        if company is None:
            company = self._new_company(company_name)
            self.companies[company_name] = company
        company["open_positions"] += 1
        company.update(logo=logo, location=location, industry=industry, updated_at=_utcnow())
        return CompanyWriteResult(company=dict(company), created=created)

    async def set_company_aggregate(
        self,
        *,
        company_name: str,
        open_positions: int,
        logo: str | None,
        location: str | None,
        industry: str | None,
    ) -> CompanyWriteResult:
        values = {"open_positions": open_positions, "logo": logo, "location": location, "industry": industry}
        company = self.companies.get(company_name)
        created = company is None
        if company is None:
            company = self._new_company(company_name)
            self.companies[company_name] = company
            company.update(values)
        elif any(company[field] != value for field, value in values.items()):
            company.update(values)
            company["updated_at"] = _utcnow()
        return CompanyWriteResult(company=dict(company), created=created)

    async def zero_companies_except(self, company_names: list[str]) -> int:
        keep = set(company_names)
        orphaned = [company for name, company in self.companies.items() if name not in keep]
        for company in orphaned:
            if company["open_positions"] != 0:
                company["open_positions"] = 0
                company["updated_at"] = _utcnow()
        return len(orphaned)

    async def delete_companies_except(self, company_names: list[str]) -> int:
        keep = set(company_names)
        orphaned = [name for name in self.companies if name not in keep]
        for name in orphaned:
            del self.companies[name]
        return len(orphaned)

    async def get_company(self, company_name: str) -> dict[str, Any]:
        company = self.companies.get(company_name)
        if company is None:
            raise RepositoryNotFoundError("company not found")
        return dict(company)

    async def get_companies_by_names(self, company_names: list[str]) -> list[dict[str, Any]]:
        return [dict(self.companies[name]) for name in company_names if name in self.companies]

    async def list_companies(
        self,
        *,
        limit: int,
        featured: bool | None = None,
        sort_by_open_positions: bool = False,
    ) -> list[dict[str, Any]]:
        rows = [
            company for company in self.companies.values() if featured is None or company["featured"] == featured
        ]
        rows.sort(key=lambda company: company["created_at"], reverse=True)
        if sort_by_open_positions:
            rows.sort(key=lambda company: company["open_positions"], reverse=True)
        return [dict(company) for company in rows[:limit]]

    async def subscribe(self, *, email: str, channel: str | None, country: str | None = None) -> dict[str, Any]:
        normalized_email = self._normalize_email(email)
        normalized_channel = self._normalize_channel(channel)
        normalized_country = self._coerce_text(country)

        existing = self.subscriptions.get(normalized_email)
        if existing is None:
            self.subscriptions[normalized_email] = {
                "id": str(uuid4()),
                "email": normalized_email,
                "country": normalized_country or "",
                "channels": [normalized_channel],
                "unsubscribed": False,
                "created_at": _utcnow(),
                "updated_at": _utcnow(),
            }
            return copy.deepcopy(self.subscriptions[normalized_email])

        channels = self._effective_channels(existing)
        if not existing["unsubscribed"] and normalized_channel in channels:
            raise RepositoryConflictError("email already subscribed to this channel")

        if normalized_channel not in channels:
            channels.append(normalized_channel)
        existing["channels"] = channels
        existing["unsubscribed"] = False
        if normalized_country:
            existing["country"] = normalized_country
        existing["updated_at"] = _utcnow()
        return copy.deepcopy(existing)

    async def unsubscribe(self, *, email: str, channel: str | None = None) -> dict[str, Any]:
        normalized_email = (self._coerce_text(email) or "").lower()
        if not normalized_email:
            raise RepositoryValidationError("email is required")
        normalized_channel = self._normalize_optional_channel(channel)

        subscription = self.subscriptions.get(normalized_email)
        if subscription is None:
            raise RepositoryNotFoundError("subscriber not found")

        if normalized_channel is None:
            subscription["unsubscribed"] = True
        else:
            remaining = [item for item in self._effective_channels(subscription) if item != normalized_channel]
            subscription["channels"] = remaining
            if not remaining:
                subscription["unsubscribed"] = True
        subscription["updated_at"] = _utcnow()
        return copy.deepcopy(subscription)

    async def list_audience(self, channel: str) -> list[dict[str, Any]]:
        rows = [
            subscription
            for subscription in self.subscriptions.values()
            if not subscription["unsubscribed"] and self._is_channel_member(subscription, channel)
        ]
        rows.sort(key=lambda subscription: subscription["created_at"])
        return [copy.deepcopy(subscription) for subscription in rows]

    @classmethod
    def _is_channel_member(cls, subscription: dict[str, Any], channel: str) -> bool:
        return channel in cls._effective_channels(subscription)

    @staticmethod
    def _effective_channels(subscription: dict[str, Any]) -> list[str]:
        channels = subscription.get("channels")
        if channels is None:
            # Records from before per-channel subscriptions only ever received job alerts.
            return [DEFAULT_CHANNEL]
        return list(channels)

    @staticmethod
    def _new_company(company_name: str) -> dict[str, Any]:
        now = _utcnow()
        return {
            "id": str(uuid4()),
            "company_name": company_name,
            "logo": None,
            "location": None,
            "industry": None,
            "open_positions": 0,
            "featured": False,
            "description": None,
            "created_at": now,
            "updated_at": now,
        }
