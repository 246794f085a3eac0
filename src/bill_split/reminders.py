"""Balance reminders.

Works out which friends should be reminded about what they owe. Everything
here is pure: settings go in, a new value comes out, and the clock is always
passed by the caller.
"""

import logging
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime, timedelta

from .exceptions import ReminderSettingsError
from .models import (
    ReminderChannel,
    ReminderEvaluation,
    ReminderJob,
    ReminderSettings,
    ReminderTriggerLevel,
    SnoozedReminder,
)

logger = logging.getLogger(__name__)

REMINDER_TRIGGER_PRESETS: dict[ReminderTriggerLevel, int] = {
    "low": 1000,
    "medium": 2500,
    "high": 5000,
}
REMINDER_CHANNELS: tuple[ReminderChannel, ...] = ("email", "sms", "push")

# Re-check interval when nothing is due or snoozed
DEFAULT_REEVALUATE_HOURS = 6


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _earliest(current: datetime | None, candidate: datetime, now: datetime) -> datetime:
    candidate = max(candidate, now)
    if current is None:
        return candidate
    return min(current, candidate)


def evaluate_reminders(
    balances: Mapping[str, int],
    settings: ReminderSettings,
    now: datetime,
) -> ReminderEvaluation:
    """
    Decide which balance reminders are due.

    Only friends who owe the user at least the threshold are considered. A
    friend reminded less than ``snooze_hours`` ago is snoozed until the
    snooze runs out.

    Args:
        balances: Friend id to balance in cents (positive = friend owes you)
        settings: Threshold, snooze and last-sent times
        now: Current time

    Returns:
        Due and snoozed reminders plus when to evaluate again
    """
    now = _aware(now)
    snooze = timedelta(hours=max(1, settings.snooze_hours))
    threshold = max(0, settings.threshold_cents)

    due: list[ReminderJob] = []
    snoozed: list[SnoozedReminder] = []
    next_run_at: datetime | None = None

    for raw_id, raw_balance in balances.items():
        if not isinstance(raw_id, str) or not raw_id.strip():
            continue
        friend_id = raw_id.strip()
        balance = max(0, int(raw_balance))
        if balance <= 0 or balance < threshold:
            continue

        last_sent = settings.last_sent.get(friend_id)
        if last_sent is not None:
            last_sent = _aware(last_sent)
            retry_at = last_sent + snooze
            if retry_at > now:
                snoozed.append(
                    SnoozedReminder(
                        friend_id=friend_id,
                        balance_cents=balance,
                        last_sent_at=last_sent,
                        retry_at=retry_at,
                    )
                )
                next_run_at = _earliest(next_run_at, retry_at, now)
                continue

        due.append(
            ReminderJob(
                friend_id=friend_id,
                balance_cents=balance,
                overdue_by_cents=balance - threshold,
                channels=list(settings.channels),
                send_at=now,
                last_sent_at=last_sent,
            )
        )
        next_run_at = _earliest(next_run_at, now + snooze, now)

    if next_run_at is None:
        next_run_at = now + timedelta(hours=DEFAULT_REEVALUATE_HOURS)

    logger.debug(f"Reminders: {len(due)} due, {len(snoozed)} snoozed")
    return ReminderEvaluation(
        due=due,
        snoozed=snoozed,
        next_run_at=next_run_at,
        threshold_cents=threshold,
        snooze_hours=settings.snooze_hours,
    )


def mark_reminders_sent(
    settings: ReminderSettings, friend_ids: Iterable[str], when: datetime
) -> ReminderSettings:
    """Return settings with the given friends stamped as reminded at ``when``."""
    last_sent = dict(settings.last_sent)
    for friend_id in friend_ids:
        if isinstance(friend_id, str) and friend_id.strip():
            last_sent[friend_id.strip()] = _aware(when)
    return settings.model_copy(update={"last_sent": last_sent})


def configure_reminders(
    settings: ReminderSettings,
    *,
    trigger_level: str | None = None,
    threshold_cents: int | None = None,
    snooze_hours: int | None = None,
    channels: Iterable[str] | None = None,
) -> ReminderSettings:
    """
    Return settings with new preferences.

    Choosing a trigger level also sets its preset threshold unless an
    explicit threshold is given.

    Raises:
        ReminderSettingsError: If a level, threshold, snooze or channel is invalid
    """
    update: dict[str, object] = {}
    if trigger_level is not None:
        level = trigger_level.strip().lower()
        if level not in REMINDER_TRIGGER_PRESETS:
            raise ReminderSettingsError(
                f"Unknown trigger level '{trigger_level}' "
                f"(expected one of {', '.join(REMINDER_TRIGGER_PRESETS)})"
            )
        update["trigger_level"] = level
        update["threshold_cents"] = REMINDER_TRIGGER_PRESETS[level]
    if threshold_cents is not None:
        if threshold_cents < 0:
            raise ReminderSettingsError("Reminder threshold must not be negative")
        update["threshold_cents"] = threshold_cents
    if snooze_hours is not None:
        if snooze_hours < 1:
            raise ReminderSettingsError("Snooze must be at least one hour")
        update["snooze_hours"] = snooze_hours
    if channels is not None:
        selected = {channel.strip().lower() for channel in channels}
        unknown = selected - set(REMINDER_CHANNELS)
        if unknown:
            raise ReminderSettingsError(
                f"Unknown reminder channel(s): {', '.join(sorted(unknown))}"
            )
        if not selected:
            raise ReminderSettingsError("At least one reminder channel is required")
        update["channels"] = [channel for channel in REMINDER_CHANNELS if channel in selected]
    return settings.model_copy(update=update)
