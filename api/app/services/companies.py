"""Company aggregate maintenance.

Companies carry an ``open_positions`` counter derived from job posts. The
counter is maintained incrementally on every publish and can be recomputed
from the job table with :meth:`CompanyAggregateMaintainer.reconcile_all`.
Neither path is transactional with the job write, so the counter may drift.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from opentelemetry import trace

from app.core.config import OrphanPolicy
from app.services.repository import RepositoryBase

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

REMOTE_LOCATION = "Remote"


@dataclass(slots=True)
class ReconcileSummary:
    companies_processed: int
    created: int
    updated: int
    orphaned: int = 0


@dataclass(slots=True)
class _CompanyGroup:
    open_positions: int
    logo: str | None
    location: str | None
    industry: str | None


def derive_location(*, remote: Any, city: Any, state: Any, country: Any) -> str | None:
    if remote:
        return REMOTE_LOCATION
    parts = [part.strip() for part in (city, state, country) if isinstance(part, str) and part.strip()]
    return ", ".join(parts) or None


def company_metadata(job: dict[str, Any]) -> dict[str, str | None]:
    return {
        "logo": job.get("company_logo") or None,
        "location": derive_location(
            remote=job.get("remote"),
            city=job.get("city"),
            state=job.get("state"),
            country=job.get("country"),
        ),
        "industry": job.get("category") or None,
    }


class CompanyAggregateMaintainer:
    def __init__(self, repository: RepositoryBase, *, orphan_policy: OrphanPolicy = "keep") -> None:
        self.repository = repository
        self.orphan_policy = orphan_policy

    async def incremental_update(self, job: dict[str, Any]) -> dict[str, Any] | None:
        """Count one newly published job against its company.

        Never raises: the job is already stored and stays authoritative even
        when the aggregate write fails.
        """
        company_name = job.get("company")
        if not company_name:
            return None
        try:
            result = await self.repository.increment_company(company_name=company_name, **company_metadata(job))
        except Exception:
            logger.exception("company aggregate update failed for company=%s job_id=%s", company_name, job.get("id"))
            return None
        return result.company

    async def reconcile_all(self) -> ReconcileSummary:
        with tracer.start_as_current_span("companies.reconcile") as span:
            groups = self._group_by_company(await self.repository.list_company_sources())

            created = 0
            updated = 0
            for company_name, group in groups.items():
                result = await self.repository.set_company_aggregate(
                    company_name=company_name,
                    open_positions=group.open_positions,
                    logo=group.logo,
                    location=group.location,
                    industry=group.industry,
                )
                if result.created:
                    created += 1
                else:
                    updated += 1

            orphaned = 0
            if self.orphan_policy == "zero":
                orphaned = await self.repository.zero_companies_except(list(groups))
            elif self.orphan_policy == "delete":
                orphaned = await self.repository.delete_companies_except(list(groups))

            summary = ReconcileSummary(
                companies_processed=len(groups),
                created=created,
                updated=updated,
                orphaned=orphaned,
            )
            span.set_attribute("companies.processed", summary.companies_processed)
            logger.info(
                "company reconcile processed=%s created=%s updated=%s orphaned=%s policy=%s",
                summary.companies_processed,
                summary.created,
                summary.updated,
                summary.orphaned,
                self.orphan_policy,
            )
            return summary

    async def list_companies(
        self,
        *,
        limit: int,
        featured: bool | None = None,
        sort_by_open_positions: bool = False,
    ) -> list[dict[str, Any]]:
        companies = await self.repository.list_companies(
            limit=limit,
            featured=featured,
            sort_by_open_positions=sort_by_open_positions,
        )
        if featured is True and not companies:
            # No curated companies yet: fall back to the busiest ones.
            companies = await self.repository.list_companies(limit=limit, sort_by_open_positions=True)
        return companies

    async def list_active_companies(
        self,
        *,
        limit: int,
        sort_by_open_positions: bool = False,
    ) -> list[dict[str, Any]]:
        """Live open-position counts from unexpired jobs, decorated with stored company data.

        Read-only; the stored counters are left as they are.
        """
        counts = await self.repository.list_active_company_counts(
            limit=limit,
            sort_by_open_positions=sort_by_open_positions,
        )
        stored = await self.repository.get_companies_by_names([row["company_name"] for row in counts])
        by_name = {company["company_name"]: company for company in stored}

        companies = []
        for row in counts:
            company = by_name.get(row["company_name"], {})
            companies.append(
                {
                    "id": company.get("id"),
                    "company_name": row["company_name"],
                    "logo": company.get("logo") or row["company_logo"] or None,
                    "location": company.get("location"),
                    "industry": company.get("industry") or row["category"] or None,
                    "open_positions": row["open_positions"],
                    "featured": bool(company.get("featured")),
                    "description": company.get("description"),
                    "created_at": company.get("created_at"),
                    "updated_at": company.get("updated_at"),
                }
            )
        return companies

    @staticmethod
    def _group_by_company(sources: list[dict[str, Any]]) -> dict[str, _CompanyGroup]:
        groups: dict[str, _CompanyGroup] = {}
        for job in sources:
            company_name = job.get("company")
            if not company_name:
                continue
            group = groups.get(company_name)
            if group is None:
                groups[company_name] = _CompanyGroup(open_positions=1, **company_metadata(job))
            else:
                group.open_positions += 1
        return groups
