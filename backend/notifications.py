"""
StatementWatch - Notification Channels
======================================
Transports that deliver a reminder over one channel (app, email, push).

Delivery is pluggable: the reminder generator is handed a mapping of
channel type -> NotificationChannel. Out of the box every channel is a
LoggingNotificationChannel, which logs the reminder and keeps it in an
in-process outbox (replace with real email/push providers in production).
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from reminder_constants import NotificationChannelType
from models import DocumentReminder

logger = logging.getLogger(__name__)


@dataclass
class DeliveryRecord:
    """One reminder handed to a transport."""
    reminder_id: str
    missing_document_id: str
    channel: NotificationChannelType
    title: str
    delivered_at: datetime = field(default_factory=datetime.now)


class NotificationChannel(ABC):
    """A single delivery transport."""

    def __init__(self, channel_type: NotificationChannelType):
        self.channel_type = NotificationChannelType(channel_type)

    @abstractmethod
    async def send(self, reminder: DocumentReminder) -> bool:
        """Deliver the reminder. Returns False (or raises) when delivery fails."""


class LoggingNotificationChannel(NotificationChannel):
    """Logs each reminder and keeps it in memory."""

    def __init__(self, channel_type: NotificationChannelType):
        super().__init__(channel_type)
        self.outbox: List[DeliveryRecord] = []

    async def send(self, reminder: DocumentReminder) -> bool:
        self.outbox.append(DeliveryRecord(
            reminder_id=reminder.id,
            missing_document_id=reminder.missing_document_id,
            channel=self.channel_type,
            title=reminder.message.title,
        ))
        logger.info(
            f"[{self.channel_type.value}] {reminder.urgency.value} reminder "
            f"'{reminder.message.title}' for {reminder.source}"
        )
        return True


def build_notification_channels(
    channel_types: Optional[Iterable[NotificationChannelType]] = None,
) -> Dict[NotificationChannelType, NotificationChannel]:
    """One outbox transport per requested channel (all channels by default)."""
    if channel_types is None:
        channel_types = list(NotificationChannelType)
    return {
        NotificationChannelType(channel_type): LoggingNotificationChannel(channel_type)
        for channel_type in channel_types
    }
