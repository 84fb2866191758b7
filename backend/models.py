"""
StatementWatch - Data Models
============================
Pydantic models for upload history, learned patterns, missing documents
and reminders.

These models serve as the contract between:
- The upload feed (ingestion, manual entry)
- Pattern detection and missing-document detection
- Reminder generation and dispatch
- The store and the HTTP API
"""

import hashlib
import re
import uuid
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field, field_validator, model_validator

from reminder_constants import (
    DocumentType,
    NotificationChannelType,
    PatternConfidence,
    PatternFrequency,
    PatternStability,
    PERIODIC_FREQUENCIES,
    get_default_settings_values,
)


# =============================================================================
# ENUMS
# =============================================================================

class MissingDocumentStatus(str, Enum):
    PENDING = "pending"
    REMINDED = "reminded"
    UPLOADED = "uploaded"
    DISMISSED = "dismissed"

    @property
    def is_terminal(self) -> bool:
        return self in (MissingDocumentStatus.UPLOADED, MissingDocumentStatus.DISMISSED)

    def can_transition_to(self, target: "MissingDocumentStatus") -> bool:
        return target in ALLOWED_STATUS_TRANSITIONS[self]


ALLOWED_STATUS_TRANSITIONS: Dict[MissingDocumentStatus, frozenset] = {
    MissingDocumentStatus.PENDING: frozenset({
        MissingDocumentStatus.REMINDED,
        MissingDocumentStatus.UPLOADED,
        MissingDocumentStatus.DISMISSED,
    }),
    MissingDocumentStatus.REMINDED: frozenset({
        MissingDocumentStatus.UPLOADED,
        MissingDocumentStatus.DISMISSED,
    }),
    MissingDocumentStatus.UPLOADED: frozenset(),
    MissingDocumentStatus.DISMISSED: frozenset(),
}


class ReminderType(str, Enum):
    UPCOMING = "upcoming"
    OVERDUE = "overdue"
    FOLLOW_UP = "follow_up"
    FINAL_NOTICE = "final_notice"


class ReminderUrgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ReminderActionType(str, Enum):
    UPLOAD = "upload"
    VIEW = "view"
    SNOOZE = "snooze"
    DISMISS = "dismiss"


class ReminderHistoryType(str, Enum):
    """How a dispatched reminder is filed in the reminder history."""
    BEFORE_DUE = "before_due"
    AFTER_DUE = "after_due"
    FOLLOW_UP = "follow_up"

    @classmethod
    def from_reminder_type(cls, reminder_type: ReminderType) -> "ReminderHistoryType":
        if reminder_type == ReminderType.UPCOMING:
            return cls.BEFORE_DUE
        if reminder_type == ReminderType.OVERDUE:
            return cls.AFTER_DUE
        return cls.FOLLOW_UP


# =============================================================================
# IDENTIFIERS
# =============================================================================

def _slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-") or "source"


def make_pattern_id(document_type: DocumentType, source: str) -> str:
    """
    Stable pattern id for a (document type, source) pair.

    The slug only aids reading. The digest of the exact source keeps names
    that slug alike apart.
    """
    digest = hashlib.sha1(source.encode("utf-8")).hexdigest()[:10]
    return f"pattern-{DocumentType(document_type).value}-{_slugify(source)}-{digest}"


def make_missing_id(pattern_id: str, expected_date: date) -> str:
    """Stable missing-document id for one expected cycle of a pattern."""
    return f"missing-{pattern_id}-{expected_date.isoformat()}"


# =============================================================================
# UPLOAD HISTORY
# =============================================================================

class UploadRecord(BaseModel):
    """A single document upload. Immutable once recorded."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    document_type: DocumentType
    source: str = Field(min_length=1, description="Bank, company or employer name")
    upload_date: date

    # Optional statement metadata, carried but not analysed
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    tax_year: Optional[str] = None

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "document_type": "bank_statement",
                "source": "Commonwealth Bank",
                "upload_date": "2026-01-15",
            }
        }

    @field_validator("source")
    @classmethod
    def strip_source(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("source must not be blank")
        return v

    @property
    def source_key(self) -> str:
        return f"{self.document_type.value}:{self.source}"


# =============================================================================
# PATTERN MODELS
# =============================================================================

class PatternStatistics(BaseModel):
    """Interval statistics for one source's upload history."""
    average_interval_days: float = Field(default=0.0, ge=0)
    interval_std_dev: float = Field(default=0.0, ge=0)
    min_interval_days: int = Field(default=0, ge=0)
    max_interval_days: int = Field(default=0, ge=0)
    coefficient_of_variation: float = Field(default=0.0, ge=0)
    consistency_score: float = Field(default=0.0, ge=0, le=1)


class PatternChange(BaseModel):
    """One frequency transition in a pattern's history."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    change_date: date
    from_frequency: PatternFrequency
    to_frequency: PatternFrequency
    reason: Optional[str] = None

    def same_transition(self, other: "PatternChange") -> bool:
        return (
            self.change_date == other.change_date
            and self.from_frequency == other.from_frequency
            and self.to_frequency == other.to_frequency
        )


class DateRange(BaseModel):
    start: date
    end: date


class DocumentPattern(BaseModel):
    """
    Learned upload cadence for a (document type, source) pair.

    Recomputed wholesale on every analysis run. Only pattern_changes
    survives across runs, as an append-only log.
    """

    id: str
    document_type: DocumentType
    source: str

    # Pattern details
    frequency: PatternFrequency
    confidence: PatternConfidence
    confidence_score: int = Field(ge=0, le=100)

    # Expected timing
    expected_day_of_month: Optional[int] = Field(default=None, ge=1, le=31)
    expected_months: Optional[List[int]] = None

    # Analysis metadata
    analysis_date: datetime = Field(default_factory=datetime.now)
    uploads_analyzed: int = Field(ge=1)
    date_range: DateRange

    # Stability
    pattern_stability: PatternStability = PatternStability.STABLE
    pattern_changes: List[PatternChange] = Field(default_factory=list)

    statistics: PatternStatistics = Field(default_factory=PatternStatistics)

    # Next expected
    next_expected_date: Optional[date] = None
    grace_period_days: int = Field(gt=0, description="Days after expected date before flagging as missing")

    @model_validator(mode="after")
    def check_next_expected_date(self):
        if self.next_expected_date is not None and self.next_expected_date < self.date_range.end:
            raise ValueError("next_expected_date cannot precede the last analysed upload")
        return self

    @computed_field
    @property
    def is_periodic(self) -> bool:
        return self.frequency in PERIODIC_FREQUENCIES


# =============================================================================
# MISSING / EXPECTED DOCUMENT MODELS
# =============================================================================

class MissingDocument(BaseModel):
    """A due-or-overdue document instance derived from a pattern."""

    id: str
    pattern_id: str
    document_type: DocumentType
    source: str
    expected_date: date
    grace_period_end: date
    days_overdue: int = Field(default=0, ge=0)
    is_missing: bool = Field(default=False, description="True only once past the grace period")
    confidence: PatternConfidence
    last_upload_date: Optional[date] = None
    historical_uploads: int = Field(default=0, ge=0)

    status: MissingDocumentStatus = MissingDocumentStatus.PENDING
    detected_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    @computed_field
    @property
    def is_active(self) -> bool:
        """Still eligible for reminders."""
        return not self.status.is_terminal


class ExpectedDocument(BaseModel):
    """A document due within a lookahead window."""
    id: str
    pattern: DocumentPattern
    estimated_arrival_date: date
    grace_period_end: date
    days_until_expected: int = Field(ge=0)

    @computed_field
    @property
    def document_type(self) -> DocumentType:
        return self.pattern.document_type

    @computed_field
    @property
    def source(self) -> str:
        return self.pattern.source

    @computed_field
    @property
    def confidence(self) -> PatternConfidence:
        return self.pattern.confidence


class PatternAnalysisResult(BaseModel):
    """Result of analysing a batch of grouped uploads."""
    patterns: List[DocumentPattern] = Field(default_factory=list)
    analyzed_at: datetime = Field(default_factory=datetime.now)
    total_sources: int = 0
    patterns_detected: int = 0
    errors: List[str] = Field(default_factory=list)


class AnalysisRun(BaseModel):
    """Bookkeeping record for one analysis pass."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    analysis_date: datetime = Field(default_factory=datetime.now)
    total_sources: int = 0
    patterns_detected: int = 0
    missing_detected: int = 0
    resolved: int = 0
    duration_ms: float = 0.0
    status: str = Field(default="completed", pattern="^(completed|failed)$")
    errors: List[str] = Field(default_factory=list)


class AnalysisPassResult(BaseModel):
    """What one analysis pass produced and persisted."""
    run: AnalysisRun
    patterns: List[DocumentPattern] = Field(default_factory=list)
    missing_documents: List[MissingDocument] = Field(default_factory=list)


# =============================================================================
# REMINDER SETTINGS
# =============================================================================

class ReminderSettings(BaseModel):
    """Per document type reminder preferences."""
    document_type: DocumentType
    enabled: bool = True
    reminder_days_before: int = Field(default=3, ge=0)
    reminder_days_after: int = Field(default=7, ge=0)
    max_reminders: int = Field(default=3, ge=0)
    channels_enabled: List[NotificationChannelType] = Field(
        default_factory=lambda: [NotificationChannelType.APP]
    )

    @classmethod
    def defaults_for(cls, document_type: DocumentType) -> "ReminderSettings":
        """Hard-coded settings used when nothing is stored for the type."""
        return cls(document_type=document_type, **get_default_settings_values(document_type))


class ReminderSettingsUpdate(BaseModel):
    """Partial settings update. Unset fields keep their current value."""
    enabled: Optional[bool] = None
    reminder_days_before: Optional[int] = Field(default=None, ge=0)
    reminder_days_after: Optional[int] = Field(default=None, ge=0)
    max_reminders: Optional[int] = Field(default=None, ge=0)
    channels_enabled: Optional[List[NotificationChannelType]] = None


# =============================================================================
# REMINDER MODELS
# =============================================================================

class ReminderMessage(BaseModel):
    title: str
    body: str
    details: Optional[str] = None
    hint: Optional[str] = None


class ReminderAction(BaseModel):
    id: str
    label: str
    type: ReminderActionType
    data: Dict[str, Any] = Field(default_factory=dict)


class DocumentReminder(BaseModel):
    """
    A reminder derived from a missing document's current state.
    Regenerated on every pass and never stored.
    """
    id: str
    missing_document_id: str
    document_type: DocumentType
    source: str
    reminder_type: ReminderType
    urgency: ReminderUrgency
    message: ReminderMessage
    actions: List[ReminderAction]
    scheduled_for: datetime
    expires_at: Optional[datetime] = None


def _zero_counts(enum_cls) -> Dict[Any, int]:
    return {member: 0 for member in enum_cls}


class ReminderGenerationResult(BaseModel):
    reminders: List[DocumentReminder] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=datetime.now)
    total_pending: int = 0
    total_reminders: int = 0
    by_type: Dict[ReminderType, int] = Field(default_factory=lambda: _zero_counts(ReminderType))
    by_urgency: Dict[ReminderUrgency, int] = Field(default_factory=lambda: _zero_counts(ReminderUrgency))


class ReminderProcessingResult(BaseModel):
    processed: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = Field(default=0, description="Sends withheld because the reminder budget ran out")
    by_channel: Dict[NotificationChannelType, int] = Field(
        default_factory=lambda: _zero_counts(NotificationChannelType)
    )


class ReminderHistoryEntry(BaseModel):
    """One recorded reminder dispatch."""
    id: int
    missing_document_id: str
    reminder_type: ReminderHistoryType
    sent_via: NotificationChannelType
    sent_at: datetime = Field(default_factory=datetime.now)
    acknowledged: bool = False
    acknowledged_at: Optional[datetime] = None


# =============================================================================
# TAX CALENDAR
# =============================================================================

class TaxCalendarDeadline(BaseModel):
    """A custom tax-calendar deadline mirroring an expected upload."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: str = "CUSTOM"
    title: str
    description: str
    due_date: date
    metadata: Dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# API REQUEST/RESPONSE MODELS
# =============================================================================

class UploadBatchRequest(BaseModel):
    """Uploads to record or analyse."""
    uploads: List[UploadRecord]


class AnalyzePatternsRequest(BaseModel):
    """Run an analysis pass. Omit uploads to analyse the stored history."""
    uploads: Optional[List[UploadRecord]] = None
    as_of_date: Optional[date] = None


class DetectMissingRequest(BaseModel):
    patterns: Optional[List[DocumentPattern]] = None
    recent_uploads: List[UploadRecord] = Field(default_factory=list)
    as_of_date: Optional[date] = None


class MissingDocumentStatusUpdate(BaseModel):
    status: MissingDocumentStatus


class ProcessRemindersRequest(BaseModel):
    channels: Optional[List[NotificationChannelType]] = None
