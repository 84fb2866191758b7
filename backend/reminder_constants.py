"""
StatementWatch - Reminder Constants
===================================
Hardcoded cadence bands, grace periods and reminder defaults.

These tables are the ONLY source of truth for how uploads are classified
and how reminders are paced. Tune them here, never inline.
"""

from enum import Enum
from typing import Dict, List, Tuple


# =============================================================================
# DOCUMENT TYPE / FREQUENCY ENUMS
# =============================================================================

class DocumentType(str, Enum):
    BANK_STATEMENT = "bank_statement"
    DIVIDEND_STATEMENT = "dividend_statement"
    PAYG_SUMMARY = "payg_summary"
    OTHER = "other"


class PatternFrequency(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    HALF_YEARLY = "half_yearly"
    YEARLY = "yearly"
    IRREGULAR = "irregular"
    UNKNOWN = "unknown"


class PatternConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    UNCERTAIN = "uncertain"


class PatternStability(str, Enum):
    STABLE = "stable"
    CHANGING = "changing"
    VOLATILE = "volatile"


class NotificationChannelType(str, Enum):
    APP = "app"
    EMAIL = "email"
    PUSH = "push"


PERIODIC_FREQUENCIES = (
    PatternFrequency.MONTHLY,
    PatternFrequency.QUARTERLY,
    PatternFrequency.HALF_YEARLY,
    PatternFrequency.YEARLY,
)


# =============================================================================
# FREQUENCY BANDS
# Format: (upper limit on the mean interval in days, frequency)
# A mean interval above the last limit is irregular.
# =============================================================================

FREQUENCY_BANDS: List[Tuple[float, PatternFrequency]] = [
    (35, PatternFrequency.MONTHLY),
    (100, PatternFrequency.QUARTERLY),
    (200, PatternFrequency.HALF_YEARLY),
    (400, PatternFrequency.YEARLY),
]

# A band only counts once this many uploads back it up
MIN_UPLOADS_FOR_DETECTION: Dict[PatternFrequency, int] = {
    PatternFrequency.MONTHLY: 3,
    PatternFrequency.QUARTERLY: 3,
    PatternFrequency.HALF_YEARLY: 2,
    PatternFrequency.YEARLY: 2,
    PatternFrequency.IRREGULAR: 3,
    PatternFrequency.UNKNOWN: 0,
}

# Coefficient of variation above which a cadence is reported as irregular
IRREGULAR_CV_THRESHOLD = 0.5

# Coefficient of variation above which a history is volatile
VOLATILE_CV_THRESHOLD = 1.0

# Minimum intervals needed to compare early vs. late cadence
MIN_INTERVALS_FOR_CHANGE_DETECTION = 4


# =============================================================================
# GRACE PERIODS (days after the expected date before a document is missing)
# =============================================================================

DEFAULT_GRACE_PERIOD_DAYS = 7

FREQUENCY_GRACE_PERIODS: Dict[PatternFrequency, int] = {
    PatternFrequency.MONTHLY: 5,
    PatternFrequency.QUARTERLY: 10,
    PatternFrequency.HALF_YEARLY: 14,
    PatternFrequency.YEARLY: 21,
    PatternFrequency.IRREGULAR: 14,
    PatternFrequency.UNKNOWN: DEFAULT_GRACE_PERIOD_DAYS,
}


# =============================================================================
# CONFIDENCE SCORING
# =============================================================================

CONFIDENCE_WEIGHTS = {
    "sample_size": 45,
    "consistency": 35,
    "stability": 20,
}

STABILITY_FACTORS: Dict[PatternStability, float] = {
    PatternStability.STABLE: 1.0,
    PatternStability.CHANGING: 0.5,
    PatternStability.VOLATILE: 0.0,
}

# Score ceilings for classifications that cannot be trusted to alert on
IRREGULAR_SCORE_CAP = 45
UNKNOWN_SCORE_CAP = 30
SINGLE_UPLOAD_SCORE = 10

# Format: (minimum score, confidence label), checked top-down
CONFIDENCE_BANDS: List[Tuple[int, PatternConfidence]] = [
    (80, PatternConfidence.HIGH),
    (50, PatternConfidence.MEDIUM),
    (25, PatternConfidence.LOW),
    (0, PatternConfidence.UNCERTAIN),
]

# Only these levels are trusted enough to alert on or mirror to a calendar
ACTIONABLE_CONFIDENCE = (PatternConfidence.HIGH, PatternConfidence.MEDIUM)


# =============================================================================
# REMINDER ESCALATION
# =============================================================================

OVERDUE_MAX_DAYS = 7        # daysOverdue <= 7 -> overdue
FOLLOW_UP_MAX_DAYS = 14     # daysOverdue <= 14 -> follow_up, beyond -> final notice
CRITICAL_AFTER_DAYS = 7     # missing and more overdue than this -> critical

UPCOMING_HIGH_DAYS = 1
UPCOMING_MEDIUM_DAYS = 3

DEFAULT_SNOOZE_DAYS = 3


# =============================================================================
# REMINDER SETTINGS DEFAULTS
# =============================================================================

DEFAULT_REMINDER_SETTINGS = {
    "enabled": True,
    "reminder_days_before": 3,
    "reminder_days_after": 7,
    "max_reminders": 3,
    "channels_enabled": [NotificationChannelType.APP],
}

# Per-type before/after-due offsets used when no settings row exists
DOCUMENT_TYPE_REMINDER_DEFAULTS: Dict[DocumentType, Dict[str, int]] = {
    DocumentType.BANK_STATEMENT: {"reminder_days_before": 3, "reminder_days_after": 5},
    DocumentType.DIVIDEND_STATEMENT: {"reminder_days_before": 7, "reminder_days_after": 14},
    DocumentType.PAYG_SUMMARY: {"reminder_days_before": 14, "reminder_days_after": 21},
    DocumentType.OTHER: {"reminder_days_before": 3, "reminder_days_after": 7},
}


# =============================================================================
# REMINDER LADDERS (drip schedule per document type)
# before_due: days before the expected date, in sending order
# after_due: days after the expected date, in sending order
# =============================================================================

DEFAULT_REMINDER_SCHEDULE = {
    "before_due": [7, 3, 1],
    "after_due": [1, 3, 7],
    "max_reminders": 5,
}

DOCUMENT_TYPE_SCHEDULES: Dict[DocumentType, Dict[str, object]] = {
    DocumentType.BANK_STATEMENT: {
        "before_due": [3, 1],
        "after_due": [3, 7],
        "max_reminders": 4,
    },
    DocumentType.DIVIDEND_STATEMENT: {
        "before_due": [7, 3],
        "after_due": [7, 14],
        "max_reminders": 4,
    },
    DocumentType.PAYG_SUMMARY: {
        "before_due": [14, 7, 3],
        "after_due": [7, 14, 21],
        "max_reminders": 6,
    },
    DocumentType.OTHER: {
        "before_due": [7, 3, 1],
        "after_due": [3, 7],
        "max_reminders": 5,
    },
}


# =============================================================================
# DISPLAY LABELS
# =============================================================================

FREQUENCY_LABELS: Dict[PatternFrequency, str] = {
    PatternFrequency.MONTHLY: "Monthly",
    PatternFrequency.QUARTERLY: "Quarterly",
    PatternFrequency.HALF_YEARLY: "Half-Yearly",
    PatternFrequency.YEARLY: "Yearly",
    PatternFrequency.IRREGULAR: "Irregular",
    PatternFrequency.UNKNOWN: "Unknown",
}

DOCUMENT_TYPE_LABELS: Dict[DocumentType, str] = {
    DocumentType.BANK_STATEMENT: "Bank Statement",
    DocumentType.DIVIDEND_STATEMENT: "Dividend Statement",
    DocumentType.PAYG_SUMMARY: "PAYG Summary",
    DocumentType.OTHER: "Other",
}

# Reminder copy says "Document" rather than "Other"
REMINDER_DOCUMENT_LABELS: Dict[DocumentType, str] = {
    **DOCUMENT_TYPE_LABELS,
    DocumentType.OTHER: "Document",
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def classify_interval(mean_interval: float) -> PatternFrequency:
    """Map a mean interval (days) onto its frequency band."""
    for limit, frequency in FREQUENCY_BANDS:
        if mean_interval <= limit:
            return frequency
    return PatternFrequency.IRREGULAR


def get_confidence_level(score: float) -> PatternConfidence:
    for minimum, level in CONFIDENCE_BANDS:
        if score >= minimum:
            return level
    return PatternConfidence.UNCERTAIN


def get_grace_period_days(frequency: PatternFrequency) -> int:
    return FREQUENCY_GRACE_PERIODS.get(frequency, DEFAULT_GRACE_PERIOD_DAYS)


def get_frequency_label(frequency: PatternFrequency) -> str:
    return FREQUENCY_LABELS[frequency]


def get_document_type_label(document_type: DocumentType) -> str:
    return DOCUMENT_TYPE_LABELS[document_type]


def get_default_settings_values(document_type: DocumentType) -> Dict[str, object]:
    """
    Hard-coded settings for a document type with no stored settings row.

    Type-specific before/after offsets win over the global defaults.
    """
    values = dict(DEFAULT_REMINDER_SETTINGS)
    values["channels_enabled"] = list(DEFAULT_REMINDER_SETTINGS["channels_enabled"])
    values.update(DOCUMENT_TYPE_REMINDER_DEFAULTS.get(document_type, {}))
    return values
