"""
StatementWatch - Missing Document Detection
===========================================
Decides, as of a given day, which expected documents have not arrived,
and which documents are coming up soon.

Only patterns we trust (high/medium confidence) can raise a missing
document. A pattern that is merely low-confidence stays quiet.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Sequence, Union

from reminder_constants import ACTIONABLE_CONFIDENCE, DocumentType, PatternConfidence
from models import (
    DocumentPattern,
    ExpectedDocument,
    MissingDocument,
    UploadRecord,
    make_missing_id,
)

logger = logging.getLogger(__name__)

DateLike = Union[date, datetime]


def _as_date(value: Optional[DateLike]) -> date:
    if value is None:
        return date.today()
    if isinstance(value, datetime):
        return value.date()
    return value


def has_qualifying_upload(
    document_type: DocumentType,
    source: str,
    uploads: Iterable[UploadRecord],
    expected_date: date,
) -> bool:
    """True if the source uploaded on or after the expected date."""
    return any(
        upload.document_type == document_type
        and upload.source == source
        and upload.upload_date >= expected_date
        for upload in uploads
    )


def refresh_missing_document(missing: MissingDocument, as_of_date: Optional[DateLike] = None) -> MissingDocument:
    """Recompute the overdue counters of a stored row as of a new day."""
    as_of = _as_date(as_of_date)
    return missing.model_copy(update={
        "days_overdue": max(0, (as_of - missing.expected_date).days),
        "is_missing": as_of > missing.grace_period_end,
    })


# =============================================================================
# MISSING DOCUMENTS
# =============================================================================

def detect_missing_documents(
    patterns: Sequence[DocumentPattern],
    recent_uploads: Sequence[UploadRecord],
    as_of_date: Optional[DateLike] = None,
) -> List[MissingDocument]:
    """
    Find documents that are due or overdue as of `as_of_date`.

    A row is returned from the expected date onwards. It only counts as
    missing (is_missing) once the grace period has run out, so rows inside
    the grace window are visible but not alert-worthy.

    Results are sorted most overdue first, then by expected date.
    """
    as_of = _as_date(as_of_date)
    missing: List[MissingDocument] = []

    for pattern in patterns:
        if pattern.confidence not in ACTIONABLE_CONFIDENCE:
            continue

        expected_date = pattern.next_expected_date
        if expected_date is None:
            continue

        # Document arrived for this cycle
        if has_qualifying_upload(pattern.document_type, pattern.source, recent_uploads, expected_date):
            continue

        if as_of < expected_date:
            continue

        grace_period_end = expected_date + timedelta(days=pattern.grace_period_days)

        missing.append(MissingDocument(
            id=make_missing_id(pattern.id, expected_date),
            pattern_id=pattern.id,
            document_type=pattern.document_type,
            source=pattern.source,
            expected_date=expected_date,
            grace_period_end=grace_period_end,
            days_overdue=max(0, (as_of - expected_date).days),
            is_missing=as_of > grace_period_end,
            confidence=pattern.confidence,
            last_upload_date=pattern.date_range.end,
            historical_uploads=pattern.uploads_analyzed,
        ))

    missing.sort(key=lambda doc: (-doc.days_overdue, doc.expected_date))

    if missing:
        flagged = sum(1 for doc in missing if doc.is_missing)
        logger.info(f"{len(missing)} documents due as of {as_of.isoformat()}, {flagged} past grace period")

    return missing


# =============================================================================
# EXPECTED DOCUMENTS (forward view)
# =============================================================================

def get_expected_documents(
    patterns: Sequence[DocumentPattern],
    look_ahead_days: int = 30,
    today: Optional[DateLike] = None,
) -> List[ExpectedDocument]:
    """
    Documents expected between today and today + look_ahead_days.

    Independent of missing state: a document shows here whether or not a
    reminder has gone out for it. Sorted soonest first.
    """
    start = _as_date(today)
    cutoff = start + timedelta(days=look_ahead_days)
    expected: List[ExpectedDocument] = []

    for pattern in patterns:
        expected_date = pattern.next_expected_date
        if expected_date is None or pattern.confidence == PatternConfidence.UNCERTAIN:
            continue
        if not start <= expected_date <= cutoff:
            continue

        expected.append(ExpectedDocument(
            id=f"expected-{pattern.id}-{expected_date.isoformat()}",
            pattern=pattern,
            estimated_arrival_date=expected_date,
            grace_period_end=expected_date + timedelta(days=pattern.grace_period_days),
            days_until_expected=(expected_date - start).days,
        ))

    expected.sort(key=lambda doc: (doc.days_until_expected, doc.pattern.id))
    return expected


def format_expected_date(expected_date: date, today: Optional[DateLike] = None) -> str:
    """Short relative phrasing for an expected date."""
    days_diff = (expected_date - _as_date(today)).days

    if days_diff == 0:
        return "Today"
    if days_diff == 1:
        return "Tomorrow"
    if days_diff < 0:
        return f"{abs(days_diff)} days ago"
    if days_diff <= 7:
        return f"In {days_diff} days"
    return f"{expected_date.day} {expected_date.strftime('%b')}"
