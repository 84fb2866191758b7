"""
StatementWatch - Pattern Detector
=================================
Learns the upload cadence of each document source.

Given every upload for one (document type, source) pair, the detector
works out:
1. How often documents arrive (monthly, quarterly, ...)
2. How regular that cadence is, and how much to trust it
3. When the next document should turn up, and how long to wait for it

Everything here is pure: no store access, no system clock except the
injectable one used to stamp the analysis date.
"""

import logging
import math
from collections import Counter
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from reminder_constants import (
    CONFIDENCE_WEIGHTS,
    DocumentType,
    IRREGULAR_CV_THRESHOLD,
    IRREGULAR_SCORE_CAP,
    MIN_INTERVALS_FOR_CHANGE_DETECTION,
    MIN_UPLOADS_FOR_DETECTION,
    PERIODIC_FREQUENCIES,
    PatternFrequency,
    PatternStability,
    SINGLE_UPLOAD_SCORE,
    STABILITY_FACTORS,
    UNKNOWN_SCORE_CAP,
    VOLATILE_CV_THRESHOLD,
    classify_interval,
    get_confidence_level,
    get_grace_period_days,
)
from models import (
    DateRange,
    DocumentPattern,
    PatternAnalysisResult,
    PatternChange,
    PatternStatistics,
    UploadRecord,
    make_pattern_id,
)

logger = logging.getLogger(__name__)


# Mean intervals shorter than this are too frequent for a statement cadence
MIN_PERIODIC_INTERVAL_DAYS = 20

SourceKey = Tuple[DocumentType, str]


# =============================================================================
# PATTERN DETECTION ENGINE
# =============================================================================

class PatternDetector:
    """
    Turns one source's upload history into a DocumentPattern.

    Example:
        detector = PatternDetector()
        pattern = detector.detect_pattern(DocumentType.BANK_STATEMENT, "Westpac", uploads)
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or datetime.now

    def detect_pattern(
        self,
        document_type: DocumentType,
        source: str,
        uploads: Sequence[UploadRecord],
    ) -> Optional[DocumentPattern]:
        """
        Detect the upload pattern for a single source.

        Returns None when there is nothing to learn from. The input is
        never mutated and its order does not matter.
        """
        if not uploads:
            return None

        document_type = DocumentType(document_type)
        dates = sorted(upload.upload_date for upload in uploads)

        if len(dates) == 1:
            return self._single_upload_pattern(document_type, source, dates[0])

        # Step 1: Interval statistics
        intervals = self._calculate_intervals(dates)
        statistics = self._calculate_statistics(intervals)

        # Step 2: Cadence classification
        frequency = self._classify_frequency(intervals, statistics, len(dates))

        # Step 3: Stability across the history
        stability, changes = self._assess_stability(dates, intervals, statistics)

        # Step 4: Confidence
        confidence_score = self._calculate_confidence_score(
            frequency, len(dates), statistics, stability
        )

        # Step 5: Timing and prediction
        last = dates[-1]
        next_expected_date = self._predict_next_expected_date(
            last, frequency, statistics, len(dates)
        )

        return DocumentPattern(
            id=make_pattern_id(document_type, source),
            document_type=document_type,
            source=source,
            frequency=frequency,
            confidence=get_confidence_level(confidence_score),
            confidence_score=confidence_score,
            expected_day_of_month=self._expected_day_of_month(dates, frequency),
            expected_months=self._expected_months(dates, frequency),
            analysis_date=self.clock(),
            uploads_analyzed=len(dates),
            date_range=DateRange(start=dates[0], end=last),
            pattern_stability=stability,
            pattern_changes=changes,
            statistics=statistics,
            next_expected_date=next_expected_date,
            grace_period_days=get_grace_period_days(frequency),
        )

    def _single_upload_pattern(
        self,
        document_type: DocumentType,
        source: str,
        upload_date: date,
    ) -> DocumentPattern:
        """One data point: record it, but claim nothing about cadence."""
        return DocumentPattern(
            id=make_pattern_id(document_type, source),
            document_type=document_type,
            source=source,
            frequency=PatternFrequency.UNKNOWN,
            confidence=get_confidence_level(SINGLE_UPLOAD_SCORE),
            confidence_score=SINGLE_UPLOAD_SCORE,
            analysis_date=self.clock(),
            uploads_analyzed=1,
            date_range=DateRange(start=upload_date, end=upload_date),
            pattern_stability=PatternStability.STABLE,
            statistics=PatternStatistics(),
            next_expected_date=None,
            grace_period_days=get_grace_period_days(PatternFrequency.UNKNOWN),
        )

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    @staticmethod
    def _calculate_intervals(dates: List[date]) -> List[int]:
        """Days between consecutive (sorted) uploads."""
        return [(dates[i] - dates[i - 1]).days for i in range(1, len(dates))]

    @staticmethod
    def _calculate_statistics(intervals: List[int]) -> PatternStatistics:
        mean = sum(intervals) / len(intervals)
        variance = sum((value - mean) ** 2 for value in intervals) / len(intervals)
        std_dev = math.sqrt(variance)
        cv = std_dev / mean if mean > 0 else 0.0

        return PatternStatistics(
            average_interval_days=round(mean, 2),
            interval_std_dev=round(std_dev, 2),
            min_interval_days=min(intervals),
            max_interval_days=max(intervals),
            coefficient_of_variation=round(cv, 4),
            consistency_score=round(consistency_from_cv(cv), 4),
        )

    # -------------------------------------------------------------------------
    # Classification
    # -------------------------------------------------------------------------

    @staticmethod
    def _band_for(mean_interval: float) -> PatternFrequency:
        if mean_interval < MIN_PERIODIC_INTERVAL_DAYS:
            return PatternFrequency.IRREGULAR
        return classify_interval(mean_interval)

    def _classify_frequency(
        self,
        intervals: List[int],
        statistics: PatternStatistics,
        upload_count: int,
    ) -> PatternFrequency:
        # Same-day duplicates only: no cadence to speak of
        if statistics.max_interval_days == 0:
            return PatternFrequency.UNKNOWN

        frequency = self._band_for(statistics.average_interval_days)

        # An erratic cadence is never reported as a periodic one
        if statistics.coefficient_of_variation > IRREGULAR_CV_THRESHOLD:
            frequency = PatternFrequency.IRREGULAR

        if upload_count < MIN_UPLOADS_FOR_DETECTION[frequency]:
            return PatternFrequency.UNKNOWN

        return frequency

    def _assess_stability(
        self,
        dates: List[date],
        intervals: List[int],
        statistics: PatternStatistics,
    ) -> Tuple[PatternStability, List[PatternChange]]:
        """
        Compare the cadence early in the history with the cadence late in it.

        Returns the stability verdict plus a change record when the two
        halves fall into different frequency bands.
        """
        if statistics.min_interval_days == 0 or statistics.coefficient_of_variation > VOLATILE_CV_THRESHOLD:
            return PatternStability.VOLATILE, []

        if len(intervals) < MIN_INTERVALS_FOR_CHANGE_DETECTION:
            return PatternStability.STABLE, []

        midpoint = len(intervals) // 2
        early, late = intervals[:midpoint], intervals[midpoint:]
        early_mean = sum(early) / len(early)
        late_mean = sum(late) / len(late)
        from_frequency = self._band_for(early_mean)
        to_frequency = self._band_for(late_mean)

        if from_frequency == to_frequency:
            return PatternStability.STABLE, []

        change = PatternChange(
            change_date=dates[midpoint],
            from_frequency=from_frequency,
            to_frequency=to_frequency,
            reason=f"Interval changed from {round(early_mean)} to {round(late_mean)} days",
        )
        return PatternStability.CHANGING, [change]

    @staticmethod
    def _calculate_confidence_score(
        frequency: PatternFrequency,
        upload_count: int,
        statistics: PatternStatistics,
        stability: PatternStability,
    ) -> int:
        """
        Score 0-100 from sample size, interval consistency and stability.

        Sample size saturates: each extra upload halves the remaining gap.
        """
        sample = 1 - 0.5 ** (upload_count - 1)
        score = (
            CONFIDENCE_WEIGHTS["sample_size"] * sample
            + CONFIDENCE_WEIGHTS["consistency"] * statistics.consistency_score
            + CONFIDENCE_WEIGHTS["stability"] * STABILITY_FACTORS[stability]
        )

        if frequency == PatternFrequency.IRREGULAR:
            score = min(score, IRREGULAR_SCORE_CAP)
        elif frequency == PatternFrequency.UNKNOWN:
            score = min(score, UNKNOWN_SCORE_CAP)

        return int(round(max(0.0, min(100.0, score))))

    # -------------------------------------------------------------------------
    # Timing
    # -------------------------------------------------------------------------

    @staticmethod
    def _expected_day_of_month(dates: List[date], frequency: PatternFrequency) -> Optional[int]:
        """Most common day of month; ties go to the earliest day."""
        if frequency not in PERIODIC_FREQUENCIES:
            return None
        counts = Counter(d.day for d in dates)
        return min(counts, key=lambda day: (-counts[day], day))

    @staticmethod
    def _expected_months(dates: List[date], frequency: PatternFrequency) -> Optional[List[int]]:
        """Calendar months (1-12) seen, for cadences longer than a month."""
        if frequency not in (
            PatternFrequency.QUARTERLY,
            PatternFrequency.HALF_YEARLY,
            PatternFrequency.YEARLY,
        ):
            return None
        return sorted({d.month for d in dates})

    @staticmethod
    def _predict_next_expected_date(
        last_upload: date,
        frequency: PatternFrequency,
        statistics: PatternStatistics,
        upload_count: int,
    ) -> Optional[date]:
        if frequency == PatternFrequency.UNKNOWN:
            return None
        if frequency == PatternFrequency.IRREGULAR and upload_count < MIN_UPLOADS_FOR_DETECTION[frequency]:
            return None
        return last_upload + timedelta(days=round(statistics.average_interval_days))


def consistency_from_cv(cv: float) -> float:
    """Regularity in (0, 1]; 1 means perfectly even intervals."""
    return 1.0 / (1.0 + 2.0 * max(0.0, cv))


# =============================================================================
# BATCH ANALYSIS
# =============================================================================

def detect_pattern(
    document_type: DocumentType,
    source: str,
    uploads: Sequence[UploadRecord],
) -> Optional[DocumentPattern]:
    """Convenience wrapper around PatternDetector.detect_pattern."""
    return PatternDetector().detect_pattern(document_type, source, uploads)


def group_uploads_by_source(uploads: Iterable[UploadRecord]) -> Dict[SourceKey, List[UploadRecord]]:
    """Group uploads by (document type, source)."""
    groups: Dict[SourceKey, List[UploadRecord]] = {}
    for upload in uploads:
        groups.setdefault((upload.document_type, upload.source), []).append(upload)
    return groups


def analyze_upload_patterns(
    grouped_uploads: Dict[SourceKey, List[UploadRecord]],
    detector: Optional[PatternDetector] = None,
) -> PatternAnalysisResult:
    """
    Detect a pattern for every source in a grouped batch.

    Sources are independent: a failure on one is reported in `errors`
    and the rest of the batch still completes.
    """
    detector = detector or PatternDetector()
    patterns: List[DocumentPattern] = []
    errors: List[str] = []

    for (document_type, source), uploads in grouped_uploads.items():
        try:
            pattern = detector.detect_pattern(document_type, source, uploads)
        except ValueError as e:
            logger.error(f"Pattern detection failed for {document_type.value}:{source}: {e}")
            errors.append(f"Error analyzing {document_type.value}:{source}: {e}")
            continue
        if pattern is not None:
            patterns.append(pattern)

    logger.info(f"Analyzed {len(grouped_uploads)} sources, detected {len(patterns)} patterns")

    return PatternAnalysisResult(
        patterns=patterns,
        analyzed_at=detector.clock(),
        total_sources=len(grouped_uploads),
        patterns_detected=len(patterns),
        errors=errors,
    )
