from __future__ import annotations

import logging
from functools import partial
from typing import Any

from fastapi import Depends

from app.core.config import Settings, get_settings
from app.services.background import BackgroundTaskRunner, get_task_runner
from app.services.companies import CompanyAggregateMaintainer
from app.services.mailer import Mailer, get_mailer
from app.services.notifications import NotificationDispatcher, render_blog, render_job, render_welcome
from app.services.repository import get_repository, normalize_channel

logger = logging.getLogger(__name__)


class Publisher:
    """Stores content, then drives the company aggregate and subscriber alerts.

    The content write is the only step whose failure reaches the caller. The
    aggregate update runs inline and swallows its errors; alerts run on the
    background runner and are never awaited here.
    """

    def __init__(
        self,
        repository: Any,
        maintainer: CompanyAggregateMaintainer,
        dispatcher: NotificationDispatcher,
        runner: BackgroundTaskRunner,
        *,
        frontend_base_url: str,
    ) -> None:
        self.repository = repository
        self.maintainer = maintainer
        self.dispatcher = dispatcher
        self.runner = runner
        self.frontend_base_url = frontend_base_url

    async def publish_job(self, payload: dict[str, Any]) -> dict[str, Any]:
        job = await self.repository.create_job(payload)
        await self.maintainer.incremental_update(job)
        render = partial(render_job, job, frontend_base_url=self.frontend_base_url)
        self.runner.spawn(self.dispatcher.notify("job", render), name=f"notify-job-{job['id']}")
        return job

    async def publish_blog(self, payload: dict[str, Any]) -> dict[str, Any]:
        blog = await self.repository.create_blog(payload)
        render = partial(render_blog, blog, frontend_base_url=self.frontend_base_url)
        self.runner.spawn(self.dispatcher.notify("blog", render), name=f"notify-blog-{blog['id']}")
        return blog

    async def subscribe(self, *, email: str, channel: str | None, country: str | None = None) -> dict[str, Any]:
        subscription = await self.repository.subscribe(email=email, channel=channel, country=country)
        joined_channel = normalize_channel(channel)
        self.runner.spawn(
            self.dispatcher.send_one(subscription["email"], render_welcome(joined_channel)),
            name=f"welcome-{joined_channel}",
        )
        logger.info("subscription updated email=%s channel=%s", subscription["email"], joined_channel)
        return subscription


def build_publisher(
    repository: Any,
    mailer: Mailer,
    runner: BackgroundTaskRunner,
    settings: Settings,
) -> Publisher:
    return Publisher(
        repository,
        CompanyAggregateMaintainer(repository, orphan_policy=settings.reconcile_orphan_policy),
        NotificationDispatcher(repository, mailer),
        runner,
        frontend_base_url=settings.frontend_base_url,
    )


def get_publisher(
    repository=Depends(get_repository),
    mailer: Mailer = Depends(get_mailer),
    runner: BackgroundTaskRunner = Depends(get_task_runner),
    settings: Settings = Depends(get_settings),
) -> Publisher:
    return build_publisher(repository, mailer, runner, settings)


def get_maintainer(
    repository=Depends(get_repository),
    settings: Settings = Depends(get_settings),
) -> CompanyAggregateMaintainer:
    return CompanyAggregateMaintainer(repository, orphan_policy=settings.reconcile_orphan_policy)
