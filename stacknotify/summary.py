"""Daily summary construction."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from stacknotify.constants import FREE_PLAN_ID, SUMMARY_MOST_FREQUENT_LIMIT, SUMMARY_NEWEST_LIMIT
from stacknotify.interfaces import (
    ErrorStatsHelper,
    Mailer,
    OrganizationRepository,
    ProjectRepository,
    StackRepository,
    TimeZoneResolver,
    UserRepository,
)
from stacknotify.messages import SummaryRequest
from stacknotify.models import ErrorStack, FrequentStack, Project, SummaryModel, User

logger = structlog.get_logger(__name__)


class ZoneInfoTimeZoneResolver:
    """Resolves project-local time from the project's IANA time zone.

    Results are naive local wall-clock times, the form the stats engine
    buckets by. Unknown zones fall back to UTC.
    """

    def __init__(self, projects: ProjectRepository) -> None:
        self._projects = projects

    async def _zone(self, project_id: str) -> ZoneInfo:
        project = await self._projects.get_by_id_cached(project_id)
        name = project.time_zone if project else "UTC"
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError, OSError):
            # Directory names such as "America" raise IsADirectoryError
            logger.warning("Unknown project time zone, using UTC", project_id=project_id, time_zone=name)
            return ZoneInfo("UTC")

    async def utc_to_local_time(self, project_id: str, utc_time: datetime) -> datetime:
        if utc_time.tzinfo is None:
            utc_time = utc_time.replace(tzinfo=timezone.utc)
        zone = await self._zone(project_id)
        return utc_time.astimezone(zone).replace(tzinfo=None)

    async def get_utc_offset(self, project_id: str) -> timedelta:
        zone = await self._zone(project_id)
        return datetime.now(zone).utcoffset() or timedelta(0)


def enrich_most_frequent(frequent: list[FrequentStack], stacks: list[ErrorStack]) -> list[FrequentStack]:
    """Fill in stack details, dropping entries whose stack no longer exists."""
    by_id = {stack.id: stack for stack in stacks}
    enriched: list[FrequentStack] = []
    for entry in frequent:
        stack = by_id.get(entry.id)
        if stack is None:
            continue
        signature = stack.signature_info
        enriched.append(
            entry.model_copy(
                update={
                    "type": signature.exception_type,
                    "method": signature.method,
                    "path": signature.path,
                    "is_404": signature.is_404,
                    "title": stack.title,
                    "first": stack.first_occurrence,
                    "last": stack.last_occurrence,
                }
            )
        )
    return enriched


class SummaryAggregator:
    """Builds a project's digest for a time range and mails it to subscribed users."""

    def __init__(
        self,
        *,
        projects: ProjectRepository,
        organizations: OrganizationRepository,
        stacks: StackRepository,
        users: UserRepository,
        time_zones: TimeZoneResolver,
        stats: ErrorStatsHelper,
        mailer: Mailer,
    ) -> None:
        self._projects = projects
        self._organizations = organizations
        self._stacks = stacks
        self._users = users
        self._time_zones = time_zones
        self._stats = stats
        self._mailer = mailer

    async def _recipients(self, project: Project) -> list[User]:
        user_ids = project.summary_user_ids()
        if not user_ids:
            return []
        users = await self._users.get_by_ids(user_ids)
        return [user for user in users if user.is_email_address_verified]

    async def build(self, request: SummaryRequest) -> tuple[SummaryModel, list[User]] | None:
        """Build the digest and its recipients, or None when nobody should get one."""
        log = logger.bind(project_id=request.project_id)

        project = await self._projects.get_by_id_cached(request.project_id)
        if project is None:
            log.error("Could not load project")
            return None

        organization = await self._organizations.get_by_id_cached(project.organization_id)
        if organization is None:
            log.error("Could not load organization", organization_id=project.organization_id)
            return None

        users = await self._recipients(project)
        if not users:
            log.debug("No daily summary recipients")
            return None

        newest, _ = await self._stacks.get_new(
            project.id, request.utc_start_time, request.utc_end_time, 0, SUMMARY_NEWEST_LIMIT
        )

        start = await self._time_zones.utc_to_local_time(project.id, request.utc_start_time)
        end = await self._time_zones.utc_to_local_time(project.id, request.utc_end_time)
        offset = await self._time_zones.get_utc_offset(project.id)
        result = await self._stats.get_project_error_stats(project.id, offset, start, end)

        most_frequent = result.most_frequent[:SUMMARY_MOST_FREQUENT_LIMIT]
        stacks = await self._stacks.get_by_ids([entry.id for entry in most_frequent]) if most_frequent else []
        most_frequent = enrich_most_frequent(most_frequent, stacks)

        summary = SummaryModel(
            project_id=project.id,
            project_name=project.name,
            start_date=start,
            end_date=end,
            total=result.total,
            per_hour_average=result.per_hour_average,
            new_total=result.new_total,
            new=newest[:SUMMARY_NEWEST_LIMIT],
            unique_total=result.unique_total,
            most_frequent=most_frequent,
            has_submitted_errors=project.total_error_count > 0,
            is_free_plan=organization.plan_id == FREE_PLAN_ID,
        )
        return summary, users

    async def send(self, request: SummaryRequest) -> int:
        """Build and mail the digest; returns the number of emails sent."""
        built = await self.build(request)
        if built is None:
            return 0

        summary, users = built
        sent = 0
        for user in users:
            if not user.email_notifications_enabled:
                continue
            await self._mailer.send_summary_notification(user.email_address, summary)
            sent += 1

        logger.info("Sent daily summary", project_id=request.project_id, recipients=sent)
        return sent
