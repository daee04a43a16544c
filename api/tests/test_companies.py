from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from app.services.companies import CompanyAggregateMaintainer, derive_location
from app.services.repository import RepositoryNotFoundError, RepositoryUnavailableError
from app.services.store import InMemoryRepository


def _job_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "title": "Backend Engineer",
        "company": "Acme",
        "category": "Engineering",
        "job_type": "Full-time",
        "apply": "https://acme.example/apply",
        "end_date": datetime.now(timezone.utc) + timedelta(days=30),
    }
    payload.update(overrides)
    return payload


class FailingCompanyRepository(InMemoryRepository):
    async def increment_company(self, **kwargs: Any):
        raise RepositoryUnavailableError("database pool is not initialized")


def test_derive_location_prefers_remote_over_address_parts() -> None:
    assert derive_location(remote=True, city="Austin", state="TX", country="US") == "Remote"


def test_derive_location_joins_non_empty_parts() -> None:
    assert derive_location(remote=False, city="Austin", state="", country="US") == "Austin, US"
    assert derive_location(remote=False, city=" Berlin ", state=None, country=None) == "Berlin"


def test_derive_location_is_absent_without_parts() -> None:
    assert derive_location(remote=False, city=None, state="  ", country="") is None


def test_incremental_update_creates_company_from_remote_job() -> None:
    async def run() -> dict[str, Any]:
        repo = InMemoryRepository()
        maintainer = CompanyAggregateMaintainer(repo)
        job = await repo.create_job(_job_payload(remote=True, company_logo="https://acme.example/logo.png"))
        await maintainer.incremental_update(job)
        return await repo.get_company("Acme")

    company = asyncio.run(run())

    assert company["open_positions"] == 1
    assert company["location"] == "Remote"
    assert company["logo"] == "https://acme.example/logo.png"
    assert company["industry"] == "Engineering"


def test_incremental_updates_count_every_publish_and_keep_latest_metadata() -> None:
    async def run() -> dict[str, Any]:
        repo = InMemoryRepository()
        maintainer = CompanyAggregateMaintainer(repo)
        events = [
            _job_payload(city="Austin", country="US", category="Engineering"),
            _job_payload(remote=True, category="Design"),
            _job_payload(city="Berlin", country="DE", category="Data"),
        ]
        for payload in events:
            job = await repo.create_job(payload)
            await maintainer.incremental_update(job)
        return await repo.get_company("Acme")

    company = asyncio.run(run())

    assert company["open_positions"] == 3
    assert company["location"] == "Berlin, DE"
    assert company["industry"] == "Data"
    assert company["logo"] is None


def test_incremental_update_failure_is_logged_and_swallowed(caplog: pytest.LogCaptureFixture) -> None:
    async def run() -> tuple[dict[str, Any] | None, FailingCompanyRepository, str]:
        repo = FailingCompanyRepository()
        maintainer = CompanyAggregateMaintainer(repo)
        job = await repo.create_job(_job_payload())
        return await maintainer.incremental_update(job), repo, job["id"]

    result, repo, job_id = asyncio.run(run())

    assert result is None
    assert job_id in repo.jobs
    assert repo.companies == {}
    assert "company aggregate update failed" in caplog.text


def test_reconcile_rebuilds_counts_with_first_job_metadata() -> None:
    async def run() -> tuple[Any, InMemoryRepository]:
        repo = InMemoryRepository()
        await repo.create_job(_job_payload(city="Austin", country="US"))
        await repo.create_job(_job_payload(remote=True, category="Design"))
        await repo.create_job(_job_payload(company="Globex", category="Sales"))
        await repo.set_company_aggregate(
            company_name="Acme", open_positions=99, logo=None, location="Nowhere", industry=None
        )
        summary = await CompanyAggregateMaintainer(repo).reconcile_all()
        return summary, repo

    summary, repo = asyncio.run(run())

    assert summary.companies_processed == 2
    assert summary.created == 1
    assert summary.updated == 1
    assert summary.orphaned == 0
    assert repo.companies["Acme"]["open_positions"] == 2
    assert repo.companies["Acme"]["location"] == "Austin, US"
    assert repo.companies["Acme"]["industry"] == "Engineering"
    assert repo.companies["Globex"]["open_positions"] == 1


def test_reconcile_is_idempotent() -> None:
    async def run() -> tuple[dict[str, Any], dict[str, Any]]:
        repo = InMemoryRepository()
        maintainer = CompanyAggregateMaintainer(repo)
        await repo.create_job(_job_payload())
        await repo.create_job(_job_payload(company="Globex"))
        await maintainer.reconcile_all()
        first = {name: dict(company) for name, company in repo.companies.items()}
        await maintainer.reconcile_all()
        second = {name: dict(company) for name, company in repo.companies.items()}
        return first, second

    first, second = asyncio.run(run())

    assert first == second


def test_reconcile_keeps_orphaned_companies_untouched_by_default() -> None:
    async def run() -> tuple[Any, InMemoryRepository]:
        repo = InMemoryRepository()
        await repo.increment_company(company_name="Initech", logo=None, location=None, industry=None)
        await repo.create_job(_job_payload())
        summary = await CompanyAggregateMaintainer(repo).reconcile_all()
        return summary, repo

    summary, repo = asyncio.run(run())

    assert summary.orphaned == 0
    assert repo.companies["Initech"]["open_positions"] == 1


def test_reconcile_zero_policy_resets_orphaned_counters() -> None:
    async def run() -> tuple[Any, InMemoryRepository]:
        repo = InMemoryRepository()
        await repo.increment_company(company_name="Initech", logo=None, location=None, industry=None)
        await repo.create_job(_job_payload())
        summary = await CompanyAggregateMaintainer(repo, orphan_policy="zero").reconcile_all()
        return summary, repo

    summary, repo = asyncio.run(run())

    assert summary.orphaned == 1
    assert repo.companies["Initech"]["open_positions"] == 0
    assert repo.companies["Acme"]["open_positions"] == 1


def test_reconcile_delete_policy_drops_orphaned_companies() -> None:
    async def run() -> tuple[Any, InMemoryRepository]:
        repo = InMemoryRepository()
        await repo.increment_company(company_name="Initech", logo=None, location=None, industry=None)
        await repo.create_job(_job_payload())
        summary = await CompanyAggregateMaintainer(repo, orphan_policy="delete").reconcile_all()
        return summary, repo

    summary, repo = asyncio.run(run())

    assert summary.orphaned == 1
    with pytest.raises(RepositoryNotFoundError):
        asyncio.run(repo.get_company("Initech"))


def test_featured_listing_falls_back_to_busiest_companies() -> None:
    async def run() -> list[dict[str, Any]]:
        repo = InMemoryRepository()
        maintainer = CompanyAggregateMaintainer(repo)
        for company in ("Acme", "Globex", "Globex"):
            await maintainer.incremental_update(await repo.create_job(_job_payload(company=company)))
        return await maintainer.list_companies(limit=10, featured=True)

    companies = asyncio.run(run())

    assert [company["company_name"] for company in companies] == ["Globex", "Acme"]


def test_active_listing_uses_live_counts_without_touching_stored_counters() -> None:
    async def run() -> tuple[list[dict[str, Any]], dict[str, Any]]:
        repo = InMemoryRepository()
        maintainer = CompanyAggregateMaintainer(repo)
        first = await repo.create_job(_job_payload(company_logo="acme.png"))
        await maintainer.incremental_update(first)
        await repo.create_job(_job_payload(company_logo="acme-2.png"))
        expired = await repo.create_job(_job_payload())
        repo.jobs[expired["id"]]["end_date"] = datetime.now(timezone.utc) - timedelta(days=1)
        await repo.create_job(_job_payload(company="Globex", company_logo="globex.png", category="Energy"))
        listing = await maintainer.list_active_companies(limit=10, sort_by_open_positions=True)
        return listing, await repo.get_company("Acme")

    listing, stored = asyncio.run(run())

    assert [(row["company_name"], row["open_positions"]) for row in listing] == [("Acme", 2), ("Globex", 1)]
    acme, globex = listing
    assert acme["id"] == stored["id"]
    assert acme["logo"] == "acme.png"
    assert acme["industry"] == "Engineering"
    assert globex["id"] is None
    assert globex["logo"] == "globex.png"
    assert globex["industry"] == "Energy"
    assert globex["featured"] is False
    assert stored["open_positions"] == 1
