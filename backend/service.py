"""
StatementWatch - Upload Reminder Service
========================================
Orchestrates the engine over a ReminderStore.

Two passes:
- run_analysis: learn patterns, log cadence changes, detect missing
  documents and resolve the ones that have since arrived
- run_reminders: refresh active missing documents, generate reminders and
  dispatch the ones that are due
"""

import logging
import time
from datetime import date, datetime
from typing import Callable, List, Optional, Tuple

from reminder_constants import NotificationChannelType
from models import (
    AnalysisPassResult,
    AnalysisRun,
    DocumentPattern,
    ExpectedDocument,
    MissingDocument,
    MissingDocumentStatus,
    PatternChange,
    ReminderGenerationResult,
    ReminderProcessingResult,
    UploadRecord,
)
from pattern_detector import PatternDetector, analyze_upload_patterns, group_uploads_by_source
from missing_detector import (
    detect_missing_documents,
    get_expected_documents,
    has_qualifying_upload,
    refresh_missing_document,
)
from reminder_generator import ReminderGenerator
from calendar_integration import TaxCalendar
from store import ReminderStore

logger = logging.getLogger(__name__)


class UploadReminderService:
    """
    Runs analysis and reminder passes.

    Example:
        service = UploadReminderService(InMemoryReminderStore())
        await service.record_uploads(uploads)
        await service.run_analysis(as_of_date=date(2026, 2, 28))
        generated, processed = await service.run_reminders()
    """

    def __init__(
        self,
        store: ReminderStore,
        generator: Optional[ReminderGenerator] = None,
        calendar: Optional[TaxCalendar] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.clock = clock or datetime.now
        self.detector = PatternDetector(clock=self.clock)
        self.generator = generator or ReminderGenerator(store, clock=self.clock)
        self.calendar = calendar

    async def record_uploads(self, uploads: List[UploadRecord]) -> int:
        added = await self.store.add_uploads(uploads)
        logger.info(f"Recorded {added} new uploads")
        return added

    # -------------------------------------------------------------------------
    # Analysis pass
    # -------------------------------------------------------------------------

    async def run_analysis(
        self,
        uploads: Optional[List[UploadRecord]] = None,
        as_of_date: Optional[date] = None,
    ) -> AnalysisPassResult:
        """
        Analyse `uploads` (or the stored upload history) and persist the outcome.

        Pattern writes are independent per source. A store failure ends the
        pass, but patterns written before it stay valid.
        """
        started = time.perf_counter()
        now = self.clock()
        as_of = as_of_date or now.date()

        stored = await self.store.get_uploads()
        if uploads is None:
            uploads = stored
            known_uploads = stored
        else:
            known_uploads = list({upload.id: upload for upload in [*stored, *uploads]}.values())

        analysis = analyze_upload_patterns(group_uploads_by_source(uploads), self.detector)

        saved: List[DocumentPattern] = []
        for pattern in analysis.patterns:
            merged = await self._merge_pattern_changes(pattern, as_of)
            await self.store.save_pattern(merged)
            saved.append(merged)

        all_patterns = await self.store.get_all_patterns()
        detected = detect_missing_documents(all_patterns, known_uploads, as_of)

        missing: List[MissingDocument] = []
        for document in detected:
            missing.append(await self.store.save_missing_document(
                document.model_copy(update={"detected_at": now})
            ))

        resolved = await self._resolve_arrived_documents(known_uploads, now)

        run = AnalysisRun(
            analysis_date=now,
            total_sources=analysis.total_sources,
            patterns_detected=analysis.patterns_detected,
            missing_detected=len(missing),
            resolved=resolved,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
            errors=analysis.errors,
        )
        await self.store.record_analysis_run(run)

        logger.info(
            f"Analysis pass: {run.patterns_detected} patterns, "
            f"{run.missing_detected} missing, {run.resolved} resolved"
        )
        return AnalysisPassResult(run=run, patterns=saved, missing_documents=missing)

    async def _merge_pattern_changes(self, pattern: DocumentPattern, as_of: date) -> DocumentPattern:
        """Carry the stored change log forward and record a reclassification."""
        existing = await self.store.get_pattern(pattern.id)
        changes: List[PatternChange] = list(existing.pattern_changes) if existing else []

        for change in pattern.pattern_changes:
            if not any(change.same_transition(known) for known in changes):
                changes.append(change)

        if existing is not None and existing.frequency != pattern.frequency:
            reclassified = PatternChange(
                change_date=as_of,
                from_frequency=existing.frequency,
                to_frequency=pattern.frequency,
                reason="Frequency reclassified on re-analysis",
            )
            if not any(reclassified.same_transition(known) for known in changes):
                changes.append(reclassified)
                logger.info(
                    f"Pattern {pattern.id} changed from {existing.frequency.value} "
                    f"to {pattern.frequency.value}"
                )

        return pattern.model_copy(update={"pattern_changes": changes})

    async def _resolve_arrived_documents(self, uploads: List[UploadRecord], now: datetime) -> int:
        """Mark active rows uploaded once their cycle has a qualifying upload."""
        resolved = 0
        for document in await self.store.get_active_missing_documents():
            if has_qualifying_upload(document.document_type, document.source, uploads, document.expected_date):
                await self.store.update_missing_document_status(document.id, MissingDocumentStatus.UPLOADED, now)
                resolved += 1
        return resolved

    async def detect_missing(
        self,
        patterns: Optional[List[DocumentPattern]] = None,
        recent_uploads: Optional[List[UploadRecord]] = None,
        as_of_date: Optional[date] = None,
    ) -> List[MissingDocument]:
        """Detection without an analysis pass. Defaults to stored patterns and uploads."""
        if patterns is None:
            patterns = await self.store.get_all_patterns()
        if recent_uploads is None:
            recent_uploads = await self.store.get_uploads()
        as_of = as_of_date or self.clock().date()

        now = self.clock()
        missing = [
            await self.store.save_missing_document(document.model_copy(update={"detected_at": now}))
            for document in detect_missing_documents(patterns, recent_uploads, as_of)
        ]
        await self._resolve_arrived_documents(recent_uploads, now)
        return missing

    async def get_expected(self, look_ahead_days: int = 30) -> List[ExpectedDocument]:
        patterns = await self.store.get_all_patterns()
        return get_expected_documents(patterns, look_ahead_days, self.clock().date())

    # -------------------------------------------------------------------------
    # Reminder pass
    # -------------------------------------------------------------------------

    async def _current_missing_documents(self, now: datetime) -> List[MissingDocument]:
        """Active rows as of now, minus cycles whose document has since arrived."""
        uploads = await self.store.get_uploads()
        return [
            refresh_missing_document(document, now.date())
            for document in await self.store.get_active_missing_documents()
            if not has_qualifying_upload(document.document_type, document.source, uploads, document.expected_date)
        ]

    async def get_reminders(self, now: Optional[datetime] = None) -> ReminderGenerationResult:
        """Reminders for the active missing documents. Read-only: nothing is sent or mirrored."""
        now = now or self.clock()
        documents = await self._current_missing_documents(now)
        return await self.generator.generate_reminders(documents, now=now)

    async def run_reminders(
        self,
        channels: Optional[List[NotificationChannelType]] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[ReminderGenerationResult, ReminderProcessingResult]:
        now = now or self.clock()
        await self._resolve_arrived_documents(await self.store.get_uploads(), now)
        documents = await self._current_missing_documents(now)
        generated = await self.generator.generate_reminders(documents, calendar=self.calendar, now=now)
        processed = await self.generator.process_due_reminders(generated.reminders, channels, now)
        return generated, processed

    async def update_status(
        self,
        missing_document_id: str,
        status: MissingDocumentStatus,
    ) -> MissingDocument:
        return await self.store.update_missing_document_status(missing_document_id, status, self.clock())
