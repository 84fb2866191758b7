"""
StatementWatch - Tax Calendar Integration
=========================================
Mirrors expected uploads into the user's tax calendar as CUSTOM deadlines.

Calendar writes are best-effort: the reminder generator only calls the
calendar for high/medium confidence documents and never lets a calendar
failure stop reminder generation.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from reminder_constants import REMINDER_DOCUMENT_LABELS
from models import MissingDocument, TaxCalendarDeadline

logger = logging.getLogger(__name__)

# Marks calendar entries that were created from an expected upload
UPLOAD_REMINDER_SOURCE = "upload_reminder"


def build_deadline_from_missing(missing: MissingDocument) -> TaxCalendarDeadline:
    """Calendar deadline describing one expected document."""
    label = REMINDER_DOCUMENT_LABELS[missing.document_type]
    return TaxCalendarDeadline(
        title=f"Upload {label}: {missing.source}",
        description=f"Expected {label.lower()} from {missing.source}",
        due_date=missing.expected_date,
        metadata={
            "source": UPLOAD_REMINDER_SOURCE,
            "missing_document_id": missing.id,
            "document_type": missing.document_type.value,
            "document_source": missing.source,
        },
    )


def is_upload_reminder_deadline(deadline: TaxCalendarDeadline) -> bool:
    return deadline.metadata.get("source") == UPLOAD_REMINDER_SOURCE


class TaxCalendar(ABC):
    """Anything that can accept custom deadlines."""

    @abstractmethod
    async def create_deadline_from_missing(self, missing: MissingDocument) -> TaxCalendarDeadline: ...


class InMemoryTaxCalendar(TaxCalendar):
    """
    Keeps deadlines in a dict keyed by missing document id, so mirroring
    the same document twice updates one entry instead of adding another.
    """

    def __init__(self):
        self.deadlines: Dict[str, TaxCalendarDeadline] = {}

    async def create_deadline_from_missing(self, missing: MissingDocument) -> TaxCalendarDeadline:
        deadline = build_deadline_from_missing(missing)
        existing = self.deadlines.get(missing.id)
        if existing is not None:
            deadline = deadline.model_copy(update={"id": existing.id})
        self.deadlines[missing.id] = deadline
        logger.info(f"Calendar deadline '{deadline.title}' due {deadline.due_date.isoformat()}")
        return deadline

    def get_deadline(self, missing_document_id: str) -> Optional[TaxCalendarDeadline]:
        return self.deadlines.get(missing_document_id)

    def list_deadlines(self) -> List[TaxCalendarDeadline]:
        return sorted(self.deadlines.values(), key=lambda d: (d.due_date, d.title))
