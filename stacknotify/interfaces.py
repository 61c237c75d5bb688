"""Collaborator contracts.

Storage, mail rendering, the stats engine and the occurrence pipeline live
outside this package. Handlers only see them through these protocols; any
``get_*`` lookup may return ``None`` and callers treat that as a normal
outcome.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, Protocol

from stacknotify.messages import OccurrenceMessage
from stacknotify.models import (
    ErrorStack,
    NoticeModel,
    Organization,
    Project,
    ProjectErrorStats,
    SummaryModel,
    User,
)


class ProjectRepository(Protocol):
    async def get_by_id(self, project_id: str) -> Project | None: ...

    async def get_by_id_cached(self, project_id: str) -> Project | None: ...


class OrganizationRepository(Protocol):
    async def get_by_id(self, organization_id: str) -> Organization | None: ...

    async def get_by_id_cached(self, organization_id: str) -> Organization | None: ...


class UserRepository(Protocol):
    async def get_by_id(self, user_id: str) -> User | None: ...

    async def get_by_ids(self, user_ids: Iterable[str]) -> list[User]: ...


class StackRepository(Protocol):
    async def get_by_id(self, stack_id: str) -> ErrorStack | None: ...

    async def get_by_ids(self, stack_ids: Iterable[str]) -> list[ErrorStack]: ...

    async def get_new(
        self, project_id: str, utc_start: datetime, utc_end: datetime, skip: int, take: int
    ) -> tuple[list[ErrorStack], int]: ...


class HookRepository(Protocol):
    async def delete_by_url(self, url: str) -> int: ...


class TimeZoneResolver(Protocol):
    async def utc_to_local_time(self, project_id: str, utc_time: datetime) -> datetime: ...

    async def get_utc_offset(self, project_id: str) -> timedelta: ...


class ErrorStatsHelper(Protocol):
    async def get_project_error_stats(
        self, project_id: str, utc_offset: timedelta, local_start: datetime, local_end: datetime
    ) -> ProjectErrorStats: ...


class Mailer(Protocol):
    async def send_notice(self, email_address: str, notice: NoticeModel) -> None: ...

    async def send_summary_notification(self, email_address: str, summary: SummaryModel) -> None: ...


class OccurrencePipeline(Protocol):
    async def run(self, occurrence: OccurrenceMessage) -> None: ...
