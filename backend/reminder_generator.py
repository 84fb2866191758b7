"""
StatementWatch - Reminder Generator
===================================
Turns missing documents into user-facing reminders and dispatches them.

Reminders are derived, never stored: every pass rebuilds them from the
current state of the missing documents, the per-type reminder settings and
the reminder history (which is what enforces the per-document budget).

Escalation ladder (days past the expected date):
    not yet missing -> upcoming
    <= 7            -> overdue
    <= 14           -> follow_up
    beyond          -> final_notice
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from reminder_constants import (
    ACTIONABLE_CONFIDENCE,
    CRITICAL_AFTER_DAYS,
    DEFAULT_REMINDER_SCHEDULE,
    DEFAULT_SNOOZE_DAYS,
    DOCUMENT_TYPE_SCHEDULES,
    FOLLOW_UP_MAX_DAYS,
    OVERDUE_MAX_DAYS,
    REMINDER_DOCUMENT_LABELS,
    UPCOMING_HIGH_DAYS,
    UPCOMING_MEDIUM_DAYS,
    DocumentType,
    NotificationChannelType,
)
from models import (
    DocumentReminder,
    MissingDocument,
    MissingDocumentStatus,
    ReminderAction,
    ReminderActionType,
    ReminderGenerationResult,
    ReminderHistoryType,
    ReminderMessage,
    ReminderProcessingResult,
    ReminderSettings,
    ReminderType,
    ReminderUrgency,
)
from notifications import NotificationChannel, build_notification_channels
from calendar_integration import TaxCalendar
from store import ReminderStore

logger = logging.getLogger(__name__)


# =============================================================================
# CLASSIFICATION
# =============================================================================

def determine_reminder_type(missing: MissingDocument) -> ReminderType:
    if not missing.is_missing:
        return ReminderType.UPCOMING
    if missing.days_overdue <= OVERDUE_MAX_DAYS:
        return ReminderType.OVERDUE
    if missing.days_overdue <= FOLLOW_UP_MAX_DAYS:
        return ReminderType.FOLLOW_UP
    return ReminderType.FINAL_NOTICE


def determine_urgency(missing: MissingDocument, today: Optional[date] = None) -> ReminderUrgency:
    """Missing documents escalate with age; upcoming ones with proximity."""
    if missing.is_missing:
        if missing.days_overdue > CRITICAL_AFTER_DAYS:
            return ReminderUrgency.CRITICAL
        return ReminderUrgency.HIGH

    days_until = (missing.expected_date - (today or date.today())).days
    if days_until <= UPCOMING_HIGH_DAYS:
        return ReminderUrgency.HIGH
    if days_until <= UPCOMING_MEDIUM_DAYS:
        return ReminderUrgency.MEDIUM
    return ReminderUrgency.LOW


# =============================================================================
# MESSAGES AND ACTIONS
# =============================================================================

def _format_long_date(value: date) -> str:
    return f"{value.day} {value.strftime('%b %Y')}"


def _plural_days(days: int) -> str:
    return f"{days} day" if days == 1 else f"{days} days"


def build_reminder_message(missing: MissingDocument, reminder_type: ReminderType) -> ReminderMessage:
    label = REMINDER_DOCUMENT_LABELS[missing.document_type]
    subject = f"Your {missing.source} {label.lower()}"
    expected = _format_long_date(missing.expected_date)
    days = missing.days_overdue

    if reminder_type == ReminderType.UPCOMING:
        return ReminderMessage(
            title=f"{label} Expected Soon",
            body=f"{subject} is expected around {expected}.",
            details="Based on your upload history, we expect this document to arrive soon.",
            hint="You'll be reminded again if it doesn't arrive on time.",
        )

    if reminder_type == ReminderType.OVERDUE:
        return ReminderMessage(
            title=f"{label} Overdue",
            body=f"{subject} was expected on {expected}.",
            details=f"It's been {_plural_days(days)} since we expected this document.",
            hint="Please upload it when available or dismiss this reminder if not applicable.",
        )

    if reminder_type == ReminderType.FOLLOW_UP:
        return ReminderMessage(
            title=f"Reminder: {label} Still Missing",
            body=f"{subject} is still overdue ({_plural_days(days)}).",
            details="This document is important for your tax preparation.",
            hint=f"If you don't have this document, you may need to contact {missing.source} directly.",
        )

    return ReminderMessage(
        title=f"Final Notice: {label} Required",
        body=f"{subject} is significantly overdue ({_plural_days(days)}).",
        details="Without this document, your tax return may be incomplete.",
        hint="Please upload immediately or contact your tax agent for assistance.",
    )


def build_reminder_actions(missing: MissingDocument, reminder_type: ReminderType) -> List[ReminderAction]:
    context = {
        "missing_document_id": missing.id,
        "document_type": missing.document_type.value,
        "source": missing.source,
    }
    actions = [
        ReminderAction(id="upload", label="Upload Now", type=ReminderActionType.UPLOAD, data=context),
        ReminderAction(id="view", label="View Details", type=ReminderActionType.VIEW, data=context),
    ]

    # Nothing to snooze or dismiss before the document is actually late
    if reminder_type != ReminderType.UPCOMING:
        actions.append(ReminderAction(
            id="snooze",
            label="Remind Later",
            type=ReminderActionType.SNOOZE,
            data={**context, "days": DEFAULT_SNOOZE_DAYS},
        ))
        actions.append(ReminderAction(
            id="dismiss",
            label="Dismiss",
            type=ReminderActionType.DISMISS,
            data=context,
        ))

    return actions


def calculate_scheduled_time(
    missing: MissingDocument,
    reminder_type: ReminderType,
    settings: ReminderSettings,
    now: datetime,
) -> datetime:
    """Before-due offset for upcoming reminders, after-due otherwise. Never in the past."""
    expected = datetime.combine(missing.expected_date, time.min)
    if reminder_type == ReminderType.UPCOMING:
        scheduled = expected - timedelta(days=settings.reminder_days_before)
    else:
        scheduled = expected + timedelta(days=settings.reminder_days_after)
    return max(scheduled, now)


# =============================================================================
# REMINDER LADDERS
# =============================================================================

@dataclass
class ReminderSchedule:
    """Drip schedule for one document type."""
    before_due: List[int]
    after_due: List[int]
    max_reminders: int


def get_reminder_schedule(document_type: DocumentType) -> ReminderSchedule:
    schedule = DOCUMENT_TYPE_SCHEDULES.get(document_type, DEFAULT_REMINDER_SCHEDULE)
    return ReminderSchedule(
        before_due=list(schedule["before_due"]),
        after_due=list(schedule["after_due"]),
        max_reminders=schedule["max_reminders"],
    )


def calculate_next_reminder_date(
    missing: MissingDocument,
    reminder_count: int,
    now: Optional[datetime] = None,
) -> Optional[datetime]:
    """
    Next slot on the document type's ladder, or None once it is exhausted.

    Before the document goes missing the before-due rungs are used in order.
    Once missing, the after-due rungs continue from however many reminders
    were already spent past the before-due ones.
    """
    now = now or datetime.now()
    schedule = get_reminder_schedule(missing.document_type)
    if reminder_count >= schedule.max_reminders:
        return None

    expected = datetime.combine(missing.expected_date, time.min)

    if not missing.is_missing:
        if reminder_count >= len(schedule.before_due):
            return None
        next_date = expected - timedelta(days=schedule.before_due[reminder_count])
    else:
        index = max(0, reminder_count - len(schedule.before_due))
        if index >= len(schedule.after_due):
            return None
        next_date = expected + timedelta(days=schedule.after_due[index])

    return max(next_date, now)


# =============================================================================
# GROUPING
# =============================================================================

def group_reminders_by_urgency(reminders: Iterable[DocumentReminder]) -> Dict[ReminderUrgency, List[DocumentReminder]]:
    groups: Dict[ReminderUrgency, List[DocumentReminder]] = {urgency: [] for urgency in ReminderUrgency}
    for reminder in reminders:
        groups[reminder.urgency].append(reminder)
    return groups


def group_reminders_by_type(reminders: Iterable[DocumentReminder]) -> Dict[ReminderType, List[DocumentReminder]]:
    groups: Dict[ReminderType, List[DocumentReminder]] = {reminder_type: [] for reminder_type in ReminderType}
    for reminder in reminders:
        groups[reminder.reminder_type].append(reminder)
    return groups


# =============================================================================
# GENERATOR
# =============================================================================

class ReminderGenerator:
    """
    Builds and dispatches reminders against a ReminderStore.

    Example:
        generator = ReminderGenerator(store)
        result = await generator.generate_reminders(missing_documents)
        summary = await generator.process_due_reminders(result.reminders)
    """

    def __init__(
        self,
        store: ReminderStore,
        channels: Optional[Dict[NotificationChannelType, NotificationChannel]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.channels = channels if channels is not None else build_notification_channels()
        self.clock = clock or datetime.now

    async def _load_settings(
        self,
        document_type: DocumentType,
        cache: Dict[DocumentType, ReminderSettings],
    ) -> ReminderSettings:
        if document_type not in cache:
            cache[document_type] = await self.store.get_reminder_settings(document_type)
        return cache[document_type]

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    async def generate_reminders(
        self,
        missing_documents: List[MissingDocument],
        respect_settings: bool = True,
        calendar: Optional[TaxCalendar] = None,
        now: Optional[datetime] = None,
    ) -> ReminderGenerationResult:
        """
        Build one reminder per eligible missing document.

        With respect_settings, documents whose type is disabled or whose
        reminder budget is spent are skipped.
        """
        now = now or self.clock()
        settings_cache: Dict[DocumentType, ReminderSettings] = {}
        result = ReminderGenerationResult(generated_at=now, total_pending=len(missing_documents))

        for missing in missing_documents:
            if not missing.is_active:
                continue

            settings = await self._load_settings(missing.document_type, settings_cache)
            if respect_settings:
                if not settings.enabled:
                    continue
                sent = await self.store.get_reminder_count(missing.id)
                if sent >= settings.max_reminders:
                    logger.info(f"Reminder budget spent for {missing.id} ({sent}/{settings.max_reminders})")
                    continue

            reminder = self.build_reminder(missing, settings, now)
            result.reminders.append(reminder)
            result.by_type[reminder.reminder_type] += 1
            result.by_urgency[reminder.urgency] += 1

            if calendar is not None and missing.confidence in ACTIONABLE_CONFIDENCE:
                try:
                    await calendar.create_deadline_from_missing(missing)
                except Exception as e:
                    logger.warning(f"Calendar deadline for {missing.id} failed: {e}")

        result.total_reminders = len(result.reminders)
        logger.info(f"Generated {result.total_reminders} reminders from {result.total_pending} documents")
        return result

    def build_reminder(
        self,
        missing: MissingDocument,
        settings: ReminderSettings,
        now: datetime,
    ) -> DocumentReminder:
        reminder_type = determine_reminder_type(missing)
        return DocumentReminder(
            id=f"reminder-{missing.id}-{reminder_type.value}",
            missing_document_id=missing.id,
            document_type=missing.document_type,
            source=missing.source,
            reminder_type=reminder_type,
            urgency=determine_urgency(missing, now.date()),
            message=build_reminder_message(missing, reminder_type),
            actions=build_reminder_actions(missing, reminder_type),
            scheduled_for=calculate_scheduled_time(missing, reminder_type, settings, now),
        )

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    async def send_reminder(
        self,
        reminder: DocumentReminder,
        channel: NotificationChannelType,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Deliver one reminder over one channel, record it in the history and
        move a pending document to reminded. Returns False on any failure.
        """
        try:
            channel = NotificationChannelType(channel)
        except ValueError:
            logger.warning(f"Unknown notification channel {channel!r}")
            return False

        transport = self.channels.get(channel)
        if transport is None:
            logger.warning(f"No transport registered for channel {channel.value}")
            return False

        try:
            if not await transport.send(reminder):
                logger.warning(f"Channel {channel.value} rejected reminder {reminder.id}")
                return False

            await self.store.record_reminder_sent(
                reminder.missing_document_id,
                ReminderHistoryType.from_reminder_type(reminder.reminder_type),
                channel,
                now or self.clock(),
            )

            document = await self.store.get_missing_document(reminder.missing_document_id)
            if document is not None and document.status == MissingDocumentStatus.PENDING:
                await self.store.update_missing_document_status(
                    document.id, MissingDocumentStatus.REMINDED, now or self.clock()
                )
        except Exception as e:
            logger.error(f"Failed to send reminder {reminder.id} via {channel.value}: {e}")
            return False

        return True

    async def process_due_reminders(
        self,
        reminders: List[DocumentReminder],
        channels: Optional[List[NotificationChannelType]] = None,
        now: Optional[datetime] = None,
    ) -> ReminderProcessingResult:
        """
        Send every reminder whose time has come, once per channel.

        Channels default to each document type's enabled channels. The
        per-document budget is rechecked before every send, so fanning out
        over several channels never pushes the history past max_reminders.
        """
        now = now or self.clock()
        settings_cache: Dict[DocumentType, ReminderSettings] = {}
        result = ReminderProcessingResult()

        for reminder in reminders:
            if reminder.scheduled_for > now:
                continue
            result.processed += 1

            settings = await self._load_settings(reminder.document_type, settings_cache)
            targets = list(dict.fromkeys(channels if channels is not None else settings.channels_enabled))

            for channel in targets:
                try:
                    sent_so_far = await self.store.get_reminder_count(reminder.missing_document_id)
                except Exception as e:
                    logger.error(f"Could not read reminder history for {reminder.missing_document_id}: {e}")
                    result.failed += 1
                    continue

                if sent_so_far >= settings.max_reminders:
                    result.skipped += 1
                    continue

                if await self.send_reminder(reminder, channel, now):
                    result.sent += 1
                    result.by_channel[NotificationChannelType(channel)] += 1
                else:
                    result.failed += 1

        logger.info(
            f"Processed {result.processed} due reminders: {result.sent} sent, "
            f"{result.failed} failed, {result.skipped} skipped"
        )
        return result
