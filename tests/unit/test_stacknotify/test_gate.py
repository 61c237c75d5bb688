"""Tests for the notification gate."""

from __future__ import annotations

from datetime import timedelta

import pytest

from stacknotify.config import NotificationConfig, WebsiteMode
from stacknotify.gate import (
    NotificationGate,
    SkipReason,
    check_global_gates,
    check_recipient,
    is_outbound_allowed,
    is_project_throttled,
    is_stack_throttled,
    report_flags,
)
from stacknotify.messages import NotificationMessage
from stacknotify.models import ErrorStack, NotificationMode, NotificationSettings, Organization, Project, User
from stacknotify.throttle import RateLimiter

from tests.unit.test_stacknotify.fakes import START, FakeClock, FakeRepository, FakeStackRepository, RecordingMailer

PRODUCTION = NotificationConfig(website_mode=WebsiteMode.PRODUCTION)


class StubBotDetector:
    def __init__(self, result: bool = False, error: Exception | None = None) -> None:
        self.result = result
        self.error = error
        self.calls: list[str] = []

    def is_bot(self, user_agent: str) -> bool:
        self.calls.append(user_agent)
        if self.error:
            raise self.error
        return self.result


def _message(**overrides: object) -> NotificationMessage:
    values: dict[str, object] = {
        "project_id": "p1",
        "error_id": "e1",
        "error_stack_id": "s1",
        "code": "200",
        "is_new": True,
        "is_regression": False,
        "is_critical": False,
    }
    values.update(overrides)
    return NotificationMessage(**values)  # type: ignore[arg-type]


def _user(user_id: str = "u1", **overrides: object) -> User:
    values: dict[str, object] = {
        "id": user_id,
        "email_address": f"{user_id}@example.com",
        "is_email_address_verified": True,
        "email_notifications_enabled": True,
        "organization_ids": ["o1"],
    }
    values.update(overrides)
    return User(**values)  # type: ignore[arg-type]


class GateHarness:
    def __init__(
        self,
        rate_limiter: RateLimiter,
        mailer: RecordingMailer,
        settings: dict[str, NotificationSettings] | None = None,
        users: list[User] | None = None,
        total_occurrences: int = 1,
        config: NotificationConfig = PRODUCTION,
        bot_detector: StubBotDetector | None = None,
    ) -> None:
        if settings is None:
            settings = {"u1": NotificationSettings(mode=NotificationMode.NEW)}
        if users is None:
            users = [_user()]
        self.projects = FakeRepository(Project(id="p1", organization_id="o1", name="Shop", notification_settings=settings))
        self.organizations = FakeRepository(Organization(id="o1", name="Acme", has_premium_features=True))
        self.stacks = FakeStackRepository(ErrorStack(id="s1", project_id="p1", title="Boom", total_occurrences=total_occurrences))
        self.users = FakeRepository(*users)
        self.rate_limiter = rate_limiter
        self.mailer = mailer
        self.bot_detector = bot_detector or StubBotDetector()
        self.gate = NotificationGate(
            projects=self.projects,
            organizations=self.organizations,
            stacks=self.stacks,
            users=self.users,
            rate_limiter=rate_limiter,
            mailer=mailer,
            config=config,
            bot_detector=self.bot_detector,
        )


# ==================== Pure decision tests ====================


def test_global_gates_require_premium_features() -> None:
    stack = ErrorStack(id="s1", project_id="p1")
    decision = check_global_gates(Organization(id="o1", has_premium_features=False), stack)
    assert decision.allowed is False
    assert decision.reason == SkipReason.NO_PREMIUM_FEATURES


def test_global_gates_reject_disabled_and_hidden_stacks() -> None:
    org = Organization(id="o1", has_premium_features=True)
    disabled = check_global_gates(org, ErrorStack(id="s1", project_id="p1", disable_notifications=True))
    hidden = check_global_gates(org, ErrorStack(id="s1", project_id="p1", is_hidden=True))
    assert disabled.reason == SkipReason.STACK_NOTIFICATIONS_DISABLED
    assert hidden.reason == SkipReason.STACK_HIDDEN
    assert check_global_gates(org, ErrorStack(id="s1", project_id="p1")).allowed is True


@pytest.mark.parametrize("occurrences", [0, 1, 2])
def test_stack_throttle_never_applies_to_first_occurrences(occurrences: int) -> None:
    assert is_stack_throttled(occurrences, False, START - timedelta(seconds=1), START) is False


def test_stack_throttle_applies_within_window() -> None:
    assert is_stack_throttled(3, False, START - timedelta(minutes=29), START) is True
    assert is_stack_throttled(3, False, START - timedelta(minutes=31), START) is False
    assert is_stack_throttled(3, False, None, START) is False


def test_stack_throttle_ignores_regressions() -> None:
    assert is_stack_throttled(50, True, START - timedelta(minutes=1), START) is False


def test_project_throttle_threshold() -> None:
    assert is_project_throttled(10, False) is False
    assert is_project_throttled(11, False) is True
    assert is_project_throttled(11, True) is False


def test_check_recipient_reasons() -> None:
    assert check_recipient(None, "o1").reason == SkipReason.USER_NOT_FOUND
    assert check_recipient(_user(email_address=""), "o1").reason == SkipReason.NO_EMAIL_ADDRESS
    assert check_recipient(_user(is_email_address_verified=False), "o1").reason == SkipReason.EMAIL_NOT_VERIFIED
    assert (
        check_recipient(_user(email_notifications_enabled=False), "o1").reason
        == SkipReason.EMAIL_NOTIFICATIONS_DISABLED
    )
    assert check_recipient(_user(organization_ids=["other"]), "o1").reason == SkipReason.NOT_ORGANIZATION_MEMBER
    assert check_recipient(_user(), "o1").allowed is True


def test_mode_none_never_reports_occurrences() -> None:
    flags = report_flags(NotificationSettings(mode=NotificationMode.NONE), _message())
    assert flags.occurrence is False
    assert flags.should_send is False


def test_mode_new_blocks_repeat_occurrence_but_critical_still_reports() -> None:
    settings = NotificationSettings(mode=NotificationMode.NEW, report_critical_errors=True, report_regressions=True)
    flags = report_flags(settings, _message(is_new=False, is_critical=True))
    assert flags.occurrence is False
    assert flags.critical is True
    assert flags.should_send is True


def test_404_opt_out_blocks_occurrence_but_not_critical() -> None:
    settings = NotificationSettings(mode=NotificationMode.ALL, report_404_errors=False, report_critical_errors=True)
    plain = report_flags(settings, _message(code="404"))
    critical = report_flags(settings, _message(code="404", is_critical=True))
    assert plain.occurrence is False
    assert plain.should_send is False
    assert critical.occurrence is False
    assert critical.should_send is True


def test_regression_flag_requires_opt_in() -> None:
    message = _message(is_new=False, is_regression=True)
    assert report_flags(NotificationSettings(report_regressions=True), message).regression is True
    assert report_flags(NotificationSettings(report_regressions=False), message).regression is False


def test_outbound_allow_list_outside_production() -> None:
    config = NotificationConfig(website_mode=WebsiteMode.DEVELOPMENT, allowed_outbound_addresses=["@Example.com"])
    assert is_outbound_allowed("Dev@EXAMPLE.com", config) is True
    assert is_outbound_allowed("someone@customer.io", config) is False
    assert is_outbound_allowed("someone@customer.io", PRODUCTION) is True


# ==================== Gate shell tests ====================


@pytest.mark.asyncio
async def test_new_occurrence_sends_one_email(rate_limiter: RateLimiter, mailer: RecordingMailer) -> None:
    harness = GateHarness(rate_limiter, mailer)

    sent = await harness.gate.process(_message())

    assert sent == 1
    assert len(mailer.notices) == 1
    email, notice = mailer.notices[0]
    assert email == "u1@example.com"
    assert notice.project_name == "Shop"
    assert notice.total_occurrences == 1


@pytest.mark.asyncio
async def test_unverified_user_gets_nothing(rate_limiter: RateLimiter, mailer: RecordingMailer) -> None:
    harness = GateHarness(rate_limiter, mailer, users=[_user(is_email_address_verified=False)])

    sent = await harness.gate.process(_message())

    assert sent == 0
    assert mailer.notices == []
    assert await rate_limiter.get_last_sent("s1") is None


@pytest.mark.asyncio
async def test_missing_project_is_handled_without_mail(rate_limiter: RateLimiter, mailer: RecordingMailer) -> None:
    harness = GateHarness(rate_limiter, mailer)

    assert await harness.gate.process(_message(project_id="missing")) == 0
    assert mailer.notices == []


@pytest.mark.asyncio
async def test_missing_stack_or_organization_is_handled(rate_limiter: RateLimiter, mailer: RecordingMailer) -> None:
    harness = GateHarness(rate_limiter, mailer)
    assert await harness.gate.process(_message(error_stack_id="missing")) == 0

    harness.organizations.items.clear()
    assert await harness.gate.process(_message()) == 0
    assert mailer.notices == []


@pytest.mark.asyncio
async def test_non_member_is_skipped_and_others_still_notified(
    rate_limiter: RateLimiter, mailer: RecordingMailer
) -> None:
    settings = {
        "outsider": NotificationSettings(mode=NotificationMode.ALL),
        "u1": NotificationSettings(mode=NotificationMode.ALL),
    }
    users = [_user("outsider", organization_ids=["other-org"]), _user("u1")]
    harness = GateHarness(rate_limiter, mailer, settings=settings, users=users)

    sent = await harness.gate.process(_message())

    assert sent == 1
    assert [email for email, _ in mailer.notices] == ["u1@example.com"]


@pytest.mark.asyncio
async def test_unknown_user_is_skipped(rate_limiter: RateLimiter, mailer: RecordingMailer) -> None:
    settings = {"ghost": NotificationSettings(mode=NotificationMode.ALL)}
    harness = GateHarness(rate_limiter, mailer, settings=settings, users=[])

    assert await harness.gate.process(_message()) == 0


@pytest.mark.asyncio
async def test_hidden_stack_takes_no_project_slot(
    rate_limiter: RateLimiter, mailer: RecordingMailer, clock: FakeClock
) -> None:
    harness = GateHarness(rate_limiter, mailer)
    harness.stacks.items["s1"] = ErrorStack(id="s1", project_id="p1", is_hidden=True)

    assert await harness.gate.process(_message()) == 0
    assert await rate_limiter.increment_project_counter("p1") == 1


@pytest.mark.asyncio
async def test_stack_throttle_suppresses_repeat_within_window(
    rate_limiter: RateLimiter, mailer: RecordingMailer, clock: FakeClock
) -> None:
    harness = GateHarness(
        rate_limiter, mailer, settings={"u1": NotificationSettings(mode=NotificationMode.ALL)}, total_occurrences=5
    )

    assert await harness.gate.process(_message(is_new=False)) == 1
    clock.advance(timedelta(minutes=1))
    assert await harness.gate.process(_message(is_new=False)) == 0
    assert len(mailer.notices) == 1


@pytest.mark.asyncio
async def test_stack_throttle_lifts_when_marker_expires(
    rate_limiter: RateLimiter, mailer: RecordingMailer, clock: FakeClock
) -> None:
    harness = GateHarness(
        rate_limiter, mailer, settings={"u1": NotificationSettings(mode=NotificationMode.ALL)}, total_occurrences=5
    )

    await harness.gate.process(_message(is_new=False))
    clock.advance(timedelta(minutes=16))

    assert await harness.gate.process(_message(is_new=False)) == 1


@pytest.mark.asyncio
async def test_low_occurrence_stack_is_never_stack_throttled(
    rate_limiter: RateLimiter, mailer: RecordingMailer, clock: FakeClock
) -> None:
    harness = GateHarness(
        rate_limiter, mailer, settings={"u1": NotificationSettings(mode=NotificationMode.ALL)}, total_occurrences=2
    )

    first_sent_at = clock()
    await harness.gate.process(_message(is_new=False))
    clock.advance(timedelta(minutes=1))
    assert await harness.gate.process(_message(is_new=False)) == 1

    # Reprocessing refreshes the single marker rather than adding another
    last_sent = await rate_limiter.get_last_sent("s1")
    assert last_sent == clock()
    assert last_sent != first_sent_at


@pytest.mark.asyncio
async def test_regression_bypasses_stack_throttle(
    rate_limiter: RateLimiter, mailer: RecordingMailer, clock: FakeClock
) -> None:
    settings = {"u1": NotificationSettings(mode=NotificationMode.NONE, report_regressions=True)}
    harness = GateHarness(rate_limiter, mailer, settings=settings, total_occurrences=10)
    await rate_limiter.set_last_sent("s1")
    clock.advance(timedelta(minutes=1))

    assert await harness.gate.process(_message(is_new=False, is_regression=True)) == 1


@pytest.mark.asyncio
async def test_project_throttle_suppresses_eleventh_event(
    rate_limiter: RateLimiter, mailer: RecordingMailer
) -> None:
    harness = GateHarness(rate_limiter, mailer, settings={"u1": NotificationSettings(mode=NotificationMode.ALL)})
    for _ in range(10):
        await rate_limiter.increment_project_counter("p1")

    assert await harness.gate.process(_message()) == 0
    assert mailer.notices == []


@pytest.mark.asyncio
async def test_project_throttle_lets_regressions_through(rate_limiter: RateLimiter, mailer: RecordingMailer) -> None:
    harness = GateHarness(rate_limiter, mailer, settings={"u1": NotificationSettings(mode=NotificationMode.ALL)})
    for _ in range(10):
        await rate_limiter.increment_project_counter("p1")

    assert await harness.gate.process(_message(is_regression=True)) == 1


@pytest.mark.asyncio
async def test_project_window_counts_events_that_mail_nobody(
    rate_limiter: RateLimiter, mailer: RecordingMailer
) -> None:
    harness = GateHarness(rate_limiter, mailer, settings={"u1": NotificationSettings(mode=NotificationMode.NONE)})

    for _ in range(3):
        assert await harness.gate.process(_message()) == 0

    assert await rate_limiter.increment_project_counter("p1") == 4


@pytest.mark.asyncio
async def test_known_bot_is_skipped_when_user_opted_out(rate_limiter: RateLimiter, mailer: RecordingMailer) -> None:
    detector = StubBotDetector(result=True)
    settings = {"u1": NotificationSettings(mode=NotificationMode.ALL, report_known_bot_errors=False)}
    harness = GateHarness(rate_limiter, mailer, settings=settings, bot_detector=detector)

    assert await harness.gate.process(_message(user_agent="Googlebot/2.1")) == 0
    assert detector.calls == ["Googlebot/2.1"]


@pytest.mark.asyncio
async def test_bot_check_skipped_when_user_reports_bots(rate_limiter: RateLimiter, mailer: RecordingMailer) -> None:
    detector = StubBotDetector(result=True)
    settings = {"u1": NotificationSettings(mode=NotificationMode.ALL, report_known_bot_errors=True)}
    harness = GateHarness(rate_limiter, mailer, settings=settings, bot_detector=detector)

    assert await harness.gate.process(_message(user_agent="Googlebot/2.1")) == 1
    assert detector.calls == []


@pytest.mark.asyncio
async def test_bot_classification_failure_fails_open(rate_limiter: RateLimiter, mailer: RecordingMailer) -> None:
    detector = StubBotDetector(error=ValueError("bad agent"))
    settings = {"u1": NotificationSettings(mode=NotificationMode.ALL)}
    harness = GateHarness(rate_limiter, mailer, settings=settings, bot_detector=detector)

    assert await harness.gate.process(_message(user_agent="???")) == 1


@pytest.mark.asyncio
async def test_non_production_only_mails_allow_listed_addresses(
    rate_limiter: RateLimiter, mailer: RecordingMailer
) -> None:
    config = NotificationConfig(website_mode=WebsiteMode.QA, allowed_outbound_addresses=["@example.com"])
    settings = {
        "u1": NotificationSettings(mode=NotificationMode.ALL),
        "u2": NotificationSettings(mode=NotificationMode.ALL),
    }
    users = [_user("u1"), _user("u2", email_address="u2@customer.io")]
    harness = GateHarness(rate_limiter, mailer, settings=settings, users=users, config=config)

    assert await harness.gate.process(_message()) == 1
    assert [email for email, _ in mailer.notices] == ["u1@example.com"]


@pytest.mark.asyncio
async def test_no_emails_leaves_stack_marker_unset(rate_limiter: RateLimiter, mailer: RecordingMailer) -> None:
    harness = GateHarness(rate_limiter, mailer, settings={"u1": NotificationSettings(mode=NotificationMode.NEW)})

    assert await harness.gate.process(_message(is_new=False)) == 0
    assert await rate_limiter.get_last_sent("s1") is None
