"""Notification gate — decides which users get mailed about an occurrence.

The module is split in two layers. The functions at the top are pure: they
take already-loaded records and return a decision, so they can be tested
without a cache, repositories or logging. ``NotificationGate`` is the shell
that loads the records, asks the rate limiter, logs every decision and calls
the mailer.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum

import structlog

from stacknotify.config import NotificationConfig
from stacknotify.constants import (
    NOT_FOUND_CODE,
    PROJECT_THROTTLE_LIMIT,
    STACK_THROTTLE_MIN_OCCURRENCES,
    STACK_THROTTLE_WINDOW,
)
from stacknotify.interfaces import Mailer, OrganizationRepository, ProjectRepository, StackRepository, UserRepository
from stacknotify.messages import NotificationMessage
from stacknotify.models import ErrorStack, NoticeModel, NotificationMode, NotificationSettings, Organization, Project, User
from stacknotify.throttle import RateLimiter
from stacknotify.useragent import BotDetector, UaParserBotDetector

logger = structlog.get_logger(__name__)


class SkipReason(str, Enum):
    NO_PREMIUM_FEATURES = "no_premium_features"
    STACK_NOTIFICATIONS_DISABLED = "stack_notifications_disabled"
    STACK_HIDDEN = "stack_hidden"
    USER_NOT_FOUND = "user_not_found"
    NO_EMAIL_ADDRESS = "no_email_address"
    EMAIL_NOT_VERIFIED = "email_not_verified"
    EMAIL_NOTIFICATIONS_DISABLED = "email_notifications_disabled"
    NOT_ORGANIZATION_MEMBER = "not_organization_member"


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    reason: SkipReason | None = None

    @classmethod
    def allow(cls) -> "GateDecision":
        return cls(allowed=True)

    @classmethod
    def skip(cls, reason: SkipReason) -> "GateDecision":
        return cls(allowed=False, reason=reason)


@dataclass(frozen=True)
class ReportFlags:
    occurrence: bool
    critical: bool
    regression: bool

    @property
    def should_send(self) -> bool:
        return self.occurrence or self.critical or self.regression


def check_global_gates(organization: Organization, stack: ErrorStack) -> GateDecision:
    """Organization and stack level checks that apply to every recipient."""
    if not organization.has_premium_features:
        return GateDecision.skip(SkipReason.NO_PREMIUM_FEATURES)
    if stack.disable_notifications:
        return GateDecision.skip(SkipReason.STACK_NOTIFICATIONS_DISABLED)
    if stack.is_hidden:
        return GateDecision.skip(SkipReason.STACK_HIDDEN)
    return GateDecision.allow()


def is_stack_throttled(total_occurrences: int, is_regression: bool, last_sent: datetime | None, now: datetime) -> bool:
    """After the first occurrences, mail about the same stack at most once per window."""
    if total_occurrences <= STACK_THROTTLE_MIN_OCCURRENCES or is_regression or last_sent is None:
        return False
    return last_sent > now - STACK_THROTTLE_WINDOW


def is_project_throttled(notification_count: int, is_regression: bool) -> bool:
    return notification_count > PROJECT_THROTTLE_LIMIT and not is_regression


def check_recipient(user: User | None, organization_id: str) -> GateDecision:
    if user is None:
        return GateDecision.skip(SkipReason.USER_NOT_FOUND)
    if not user.email_address:
        return GateDecision.skip(SkipReason.NO_EMAIL_ADDRESS)
    if not user.is_email_address_verified:
        return GateDecision.skip(SkipReason.EMAIL_NOT_VERIFIED)
    if not user.email_notifications_enabled:
        return GateDecision.skip(SkipReason.EMAIL_NOTIFICATIONS_DISABLED)
    if organization_id not in user.organization_ids:
        return GateDecision.skip(SkipReason.NOT_ORGANIZATION_MEMBER)
    return GateDecision.allow()


def report_flags(settings: NotificationSettings, message: NotificationMessage) -> ReportFlags:
    """Flags from the user's settings, before bot classification.

    Critical and regression opt-ins are independent of the mode, so a
    "new only" user still hears about a critical repeat occurrence.
    """
    occurrence = settings.mode != NotificationMode.NONE
    if settings.mode == NotificationMode.NEW and not message.is_new:
        occurrence = False
    if occurrence and not settings.report_404_errors and message.code == NOT_FOUND_CODE:
        occurrence = False
    return ReportFlags(
        occurrence=occurrence,
        critical=settings.report_critical_errors and message.is_critical,
        regression=settings.report_regressions and message.is_regression,
    )


def needs_bot_check(flags: ReportFlags, settings: NotificationSettings, message: NotificationMessage) -> bool:
    return flags.occurrence and not settings.report_known_bot_errors and bool(message.user_agent)


def without_occurrence(flags: ReportFlags) -> ReportFlags:
    return replace(flags, occurrence=False)


def is_outbound_allowed(email_address: str, config: NotificationConfig) -> bool:
    """Outside production only allow-listed addresses may receive mail."""
    if config.is_production:
        return True
    email = email_address.lower()
    return any(allowed in email for allowed in config.allowed_outbound_addresses)


def build_notice(message: NotificationMessage, project: Project, total_occurrences: int) -> NoticeModel:
    return NoticeModel(
        project_id=message.project_id,
        project_name=project.name,
        error_id=message.error_id,
        error_stack_id=message.error_stack_id,
        total_occurrences=total_occurrences,
        code=message.code,
        user_agent=message.user_agent,
        url=message.url,
        title=message.title,
        type=message.type,
        message=message.message,
        occurrence_date=message.occurrence_date,
        is_new=message.is_new,
        is_regression=message.is_regression,
        is_critical=message.is_critical,
    )


_RECIPIENT_LOG_LEVELS = {
    SkipReason.USER_NOT_FOUND: "error",
    SkipReason.NO_EMAIL_ADDRESS: "error",
    SkipReason.EMAIL_NOT_VERIFIED: "info",
    SkipReason.EMAIL_NOTIFICATIONS_DISABLED: "debug",
}


class NotificationGate:
    """Loads context for a notification message and mails every eligible user."""

    def __init__(
        self,
        *,
        projects: ProjectRepository,
        organizations: OrganizationRepository,
        stacks: StackRepository,
        users: UserRepository,
        rate_limiter: RateLimiter,
        mailer: Mailer,
        config: NotificationConfig,
        bot_detector: BotDetector | None = None,
    ) -> None:
        self._projects = projects
        self._organizations = organizations
        self._stacks = stacks
        self._users = users
        self._rate_limiter = rate_limiter
        self._mailer = mailer
        self._config = config
        self._bot_detector = bot_detector or UaParserBotDetector()

    async def process(self, message: NotificationMessage) -> int:
        """Handle one notification message and return the number of emails sent."""
        log = logger.bind(project_id=message.project_id, error_id=message.error_id, stack_id=message.error_stack_id)
        log.debug("Process notification")

        project = await self._projects.get_by_id_cached(message.project_id)
        if project is None:
            log.error("Could not load project")
            return 0

        organization = await self._organizations.get_by_id_cached(project.organization_id)
        if organization is None:
            log.error("Could not load organization", organization_id=project.organization_id)
            return 0

        stack = await self._stacks.get_by_id(message.error_stack_id)
        if stack is None:
            log.error("Could not load stack")
            return 0

        decision = check_global_gates(organization, stack)
        if not decision.allowed:
            log.debug("Skipping notification", reason=decision.reason.value if decision.reason else None)
            return 0

        total_occurrences = stack.total_occurrences
        now = self._rate_limiter.now()
        last_sent = await self._rate_limiter.get_last_sent(message.error_stack_id)
        if is_stack_throttled(total_occurrences, message.is_regression, last_sent, now):
            log.info("Skipping notification because of stack throttling", last_sent=last_sent, occurrences=total_occurrences)
            return 0

        # Counted before per-user filtering: events that mail nobody still use up the window.
        count = await self._rate_limiter.increment_project_counter(message.project_id, now)
        if is_project_throttled(count, message.is_regression):
            log.info("Skipping notification because of project throttling", count=count)
            return 0

        notice = build_notice(message, project, total_occurrences)
        emails_sent = 0
        for user_id, settings in project.notification_settings.items():
            if await self._notify_user(user_id, settings, message, project, notice):
                emails_sent += 1

        if emails_sent > 0:
            await self._rate_limiter.set_last_sent(message.error_stack_id)
        return emails_sent

    async def _notify_user(
        self,
        user_id: str,
        settings: NotificationSettings,
        message: NotificationMessage,
        project: Project,
        notice: NoticeModel,
    ) -> bool:
        log = logger.bind(project_id=project.id, user_id=user_id, error_id=message.error_id)

        user = await self._users.get_by_id(user_id)
        decision = check_recipient(user, project.organization_id)
        if user is None or not decision.allowed:
            if decision.reason == SkipReason.NOT_ORGANIZATION_MEMBER:
                log.error("Unauthorized user", organization_id=project.organization_id)
            elif decision.reason is not None:
                getattr(log, _RECIPIENT_LOG_LEVELS[decision.reason])("Skipping user", reason=decision.reason.value)
            return False

        flags = report_flags(settings, message)
        if needs_bot_check(flags, settings, message) and self._is_bot(message):
            log.debug("Occurrence is from a known bot")
            flags = without_occurrence(flags)

        log.debug(
            "Notification flags",
            mode=settings.mode.value,
            occurrence=flags.occurrence,
            critical=flags.critical,
            regression=flags.regression,
        )
        if not flags.should_send:
            return False

        if not is_outbound_allowed(user.email_address, self._config):
            log.debug("Skipping because email is not on the outbound list and not in production mode")
            return False

        log.debug("Sending notice", email=user.email_address)
        await self._mailer.send_notice(user.email_address, notice)
        return True

    def _is_bot(self, message: NotificationMessage) -> bool:
        user_agent = message.user_agent or ""
        try:
            return self._bot_detector.is_bot(user_agent)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            logger.warning("Unable to parse user agent", project_id=message.project_id, user_agent=user_agent, error=str(exc))
            return False
