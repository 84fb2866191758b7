"""
StatementWatch - Reminder Store
===============================
Persistence for upload history, patterns, missing documents, reminder
settings, reminder history and analysis runs.

ReminderStore is the interface every engine component talks to.
InMemoryReminderStore keeps everything in process dicts, which is all the
API server and the test-suite need (replace with a database-backed store
in production).
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from reminder_constants import DocumentType, NotificationChannelType
from models import (
    AnalysisRun,
    DocumentPattern,
    MissingDocument,
    MissingDocumentStatus,
    ReminderHistoryEntry,
    ReminderHistoryType,
    ReminderSettings,
    ReminderSettingsUpdate,
    UploadRecord,
)

logger = logging.getLogger(__name__)


# =============================================================================
# ERRORS
# =============================================================================

class ReminderStoreError(Exception):
    """Base class for store failures."""


class PatternNotFoundError(ReminderStoreError):
    def __init__(self, pattern_id: str):
        super().__init__(f"Pattern not found: {pattern_id}")
        self.pattern_id = pattern_id


class MissingDocumentNotFoundError(ReminderStoreError):
    def __init__(self, missing_document_id: str):
        super().__init__(f"Missing document not found: {missing_document_id}")
        self.missing_document_id = missing_document_id


class InvalidStatusTransitionError(ReminderStoreError):
    def __init__(self, current: MissingDocumentStatus, target: MissingDocumentStatus):
        super().__init__(f"Cannot move a {current.value} document to {target.value}")
        self.current = current
        self.target = target


# =============================================================================
# STORE INTERFACE
# =============================================================================

class ReminderStore(ABC):
    """Async persistence contract used by the service, generator and API."""

    # Upload history
    @abstractmethod
    async def add_uploads(self, uploads: List[UploadRecord]) -> int: ...

    @abstractmethod
    async def get_uploads(
        self,
        document_type: Optional[DocumentType] = None,
        source: Optional[str] = None,
    ) -> List[UploadRecord]: ...

    # Patterns
    @abstractmethod
    async def save_pattern(self, pattern: DocumentPattern) -> DocumentPattern: ...

    @abstractmethod
    async def get_pattern(self, pattern_id: str) -> Optional[DocumentPattern]: ...

    @abstractmethod
    async def get_all_patterns(self) -> List[DocumentPattern]: ...

    @abstractmethod
    async def get_patterns_by_document_type(self, document_type: DocumentType) -> List[DocumentPattern]: ...

    @abstractmethod
    async def delete_pattern(self, pattern_id: str) -> None: ...

    # Missing documents
    @abstractmethod
    async def save_missing_document(self, document: MissingDocument) -> MissingDocument: ...

    @abstractmethod
    async def get_missing_document(self, missing_document_id: str) -> Optional[MissingDocument]: ...

    @abstractmethod
    async def get_active_missing_documents(self) -> List[MissingDocument]: ...

    @abstractmethod
    async def get_missing_documents_by_status(self, status: MissingDocumentStatus) -> List[MissingDocument]: ...

    @abstractmethod
    async def update_missing_document_status(
        self,
        missing_document_id: str,
        status: MissingDocumentStatus,
        when: Optional[datetime] = None,
    ) -> MissingDocument: ...

    # Reminder settings
    @abstractmethod
    async def get_reminder_settings(self, document_type: DocumentType) -> ReminderSettings: ...

    @abstractmethod
    async def get_all_reminder_settings(self) -> List[ReminderSettings]: ...

    @abstractmethod
    async def update_reminder_settings(
        self,
        document_type: DocumentType,
        update: ReminderSettingsUpdate,
    ) -> ReminderSettings: ...

    # Reminder history
    @abstractmethod
    async def record_reminder_sent(
        self,
        missing_document_id: str,
        reminder_type: ReminderHistoryType,
        channel: NotificationChannelType,
        sent_at: Optional[datetime] = None,
    ) -> ReminderHistoryEntry: ...

    @abstractmethod
    async def get_reminder_count(self, missing_document_id: str) -> int: ...

    @abstractmethod
    async def get_reminder_history(self, missing_document_id: str) -> List[ReminderHistoryEntry]: ...

    # Analysis runs
    @abstractmethod
    async def record_analysis_run(self, run: AnalysisRun) -> AnalysisRun: ...

    @abstractmethod
    async def get_latest_analysis_run(self) -> Optional[AnalysisRun]: ...


# =============================================================================
# IN-MEMORY IMPLEMENTATION
# =============================================================================

class InMemoryReminderStore(ReminderStore):
    """
    Dict-backed store. Returns copies so callers never mutate stored rows.
    """

    def __init__(self):
        self.uploads_db: Dict[str, UploadRecord] = {}
        self.patterns_db: Dict[str, DocumentPattern] = {}
        self.missing_db: Dict[str, MissingDocument] = {}
        self.settings_db: Dict[DocumentType, ReminderSettings] = {}
        self.history_db: List[ReminderHistoryEntry] = []
        self.runs_db: List[AnalysisRun] = []

    # -------------------------------------------------------------------------
    # Upload history
    # -------------------------------------------------------------------------

    async def add_uploads(self, uploads: List[UploadRecord]) -> int:
        added = 0
        for upload in uploads:
            if upload.id not in self.uploads_db:
                added += 1
            self.uploads_db[upload.id] = upload
        return added

    async def get_uploads(
        self,
        document_type: Optional[DocumentType] = None,
        source: Optional[str] = None,
    ) -> List[UploadRecord]:
        uploads = [
            upload for upload in self.uploads_db.values()
            if (document_type is None or upload.document_type == document_type)
            and (source is None or upload.source == source)
        ]
        return sorted(uploads, key=lambda upload: (upload.upload_date, upload.id))

    # -------------------------------------------------------------------------
    # Patterns (one per document type + source)
    # -------------------------------------------------------------------------

    async def save_pattern(self, pattern: DocumentPattern) -> DocumentPattern:
        key = (pattern.document_type, pattern.source)
        for existing_id, existing in list(self.patterns_db.items()):
            if (existing.document_type, existing.source) == key and existing_id != pattern.id:
                del self.patterns_db[existing_id]
        self.patterns_db[pattern.id] = pattern.model_copy(deep=True)
        return pattern

    async def get_pattern(self, pattern_id: str) -> Optional[DocumentPattern]:
        pattern = self.patterns_db.get(pattern_id)
        return pattern.model_copy(deep=True) if pattern else None

    async def get_all_patterns(self) -> List[DocumentPattern]:
        patterns = sorted(self.patterns_db.values(), key=self._pattern_sort_key)
        return [pattern.model_copy(deep=True) for pattern in patterns]

    async def get_patterns_by_document_type(self, document_type: DocumentType) -> List[DocumentPattern]:
        return [p for p in await self.get_all_patterns() if p.document_type == document_type]

    async def delete_pattern(self, pattern_id: str) -> None:
        if pattern_id not in self.patterns_db:
            raise PatternNotFoundError(pattern_id)
        del self.patterns_db[pattern_id]

        # Missing rows belong to their pattern
        orphaned = [key for key, doc in self.missing_db.items() if doc.pattern_id == pattern_id]
        for key in orphaned:
            del self.missing_db[key]
        logger.info(f"Deleted pattern {pattern_id} and {len(orphaned)} missing documents")

    @staticmethod
    def _pattern_sort_key(pattern: DocumentPattern) -> Tuple[str, str]:
        return (pattern.document_type.value, pattern.source)

    # -------------------------------------------------------------------------
    # Missing documents
    # -------------------------------------------------------------------------

    async def save_missing_document(self, document: MissingDocument) -> MissingDocument:
        """
        Upsert by id. Re-detection refreshes the overdue counters but keeps
        the lifecycle fields of the stored row.
        """
        existing = self.missing_db.get(document.id)
        if existing is not None:
            document = document.model_copy(update={
                "status": existing.status,
                "detected_at": existing.detected_at,
                "resolved_at": existing.resolved_at,
            })
        elif document.detected_at is None:
            document = document.model_copy(update={"detected_at": datetime.now()})

        self.missing_db[document.id] = document
        return document.model_copy()

    async def get_missing_document(self, missing_document_id: str) -> Optional[MissingDocument]:
        document = self.missing_db.get(missing_document_id)
        return document.model_copy() if document else None

    async def get_active_missing_documents(self) -> List[MissingDocument]:
        active = [doc for doc in self.missing_db.values() if doc.is_active]
        active.sort(key=lambda doc: (doc.expected_date, doc.id))
        return [doc.model_copy() for doc in active]

    async def get_missing_documents_by_status(self, status: MissingDocumentStatus) -> List[MissingDocument]:
        matching = [doc for doc in self.missing_db.values() if doc.status == status]
        matching.sort(key=lambda doc: (doc.expected_date, doc.id))
        return [doc.model_copy() for doc in matching]

    async def update_missing_document_status(
        self,
        missing_document_id: str,
        status: MissingDocumentStatus,
        when: Optional[datetime] = None,
    ) -> MissingDocument:
        document = self.missing_db.get(missing_document_id)
        if document is None:
            raise MissingDocumentNotFoundError(missing_document_id)

        if document.status == status:
            return document.model_copy()
        if not document.status.can_transition_to(status):
            raise InvalidStatusTransitionError(document.status, status)

        update = {"status": status}
        if status.is_terminal:
            update["resolved_at"] = when or datetime.now()
        document = document.model_copy(update=update)
        self.missing_db[missing_document_id] = document
        return document.model_copy()

    # -------------------------------------------------------------------------
    # Reminder settings
    # -------------------------------------------------------------------------

    async def get_reminder_settings(self, document_type: DocumentType) -> ReminderSettings:
        settings = self.settings_db.get(DocumentType(document_type))
        if settings is None:
            return ReminderSettings.defaults_for(document_type)
        return settings.model_copy(deep=True)

    async def get_all_reminder_settings(self) -> List[ReminderSettings]:
        return [await self.get_reminder_settings(document_type) for document_type in DocumentType]

    async def update_reminder_settings(
        self,
        document_type: DocumentType,
        update: ReminderSettingsUpdate,
    ) -> ReminderSettings:
        current = await self.get_reminder_settings(document_type)
        changes = update.model_dump(exclude_unset=True, exclude_none=True)
        settings = ReminderSettings(**{**current.model_dump(), **changes})
        self.settings_db[settings.document_type] = settings
        return settings.model_copy(deep=True)

    # -------------------------------------------------------------------------
    # Reminder history
    # -------------------------------------------------------------------------

    async def record_reminder_sent(
        self,
        missing_document_id: str,
        reminder_type: ReminderHistoryType,
        channel: NotificationChannelType,
        sent_at: Optional[datetime] = None,
    ) -> ReminderHistoryEntry:
        entry = ReminderHistoryEntry(
            id=len(self.history_db) + 1,
            missing_document_id=missing_document_id,
            reminder_type=reminder_type,
            sent_via=channel,
            sent_at=sent_at or datetime.now(),
        )
        self.history_db.append(entry)
        return entry

    async def get_reminder_count(self, missing_document_id: str) -> int:
        return sum(1 for entry in self.history_db if entry.missing_document_id == missing_document_id)

    async def get_reminder_history(self, missing_document_id: str) -> List[ReminderHistoryEntry]:
        entries = [entry for entry in self.history_db if entry.missing_document_id == missing_document_id]
        return sorted(entries, key=lambda entry: entry.sent_at, reverse=True)

    # -------------------------------------------------------------------------
    # Analysis runs
    # -------------------------------------------------------------------------

    async def record_analysis_run(self, run: AnalysisRun) -> AnalysisRun:
        self.runs_db.append(run)
        return run

    async def get_latest_analysis_run(self) -> Optional[AnalysisRun]:
        if not self.runs_db:
            return None
        return max(self.runs_db, key=lambda run: run.analysis_date)
