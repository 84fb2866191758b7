"""
StatementWatch - FastAPI Backend
================================
API server for upload pattern detection and document reminders.

Flow:
1. Uploads are recorded as they arrive
2. An analysis pass learns each source's cadence and flags documents that
   are due or missing
3. A reminder pass turns missing documents into reminders and sends the
   ones that are due
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import config
from reminder_constants import DocumentType, NotificationChannelType, get_document_type_label, get_frequency_label
from models import (
    AnalysisPassResult,
    AnalysisRun,
    AnalyzePatternsRequest,
    DetectMissingRequest,
    DocumentPattern,
    MissingDocument,
    MissingDocumentStatus,
    MissingDocumentStatusUpdate,
    ProcessRemindersRequest,
    ReminderSettings,
    ReminderSettingsUpdate,
    UploadBatchRequest,
    UploadRecord,
)
from missing_detector import format_expected_date
from notifications import NotificationChannel, build_notification_channels
from calendar_integration import InMemoryTaxCalendar, TaxCalendar
from reminder_generator import ReminderGenerator, group_reminders_by_type, group_reminders_by_urgency
from service import UploadReminderService
from store import (
    InMemoryReminderStore,
    InvalidStatusTransitionError,
    MissingDocumentNotFoundError,
    PatternNotFoundError,
    ReminderStore,
)

# Configure logging
logging.basicConfig(level=getattr(logging, config.LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION SETUP
# =============================================================================

# In-memory storage (replace with a database-backed store in production)
reminder_store = InMemoryReminderStore()
notification_channels = build_notification_channels(config.DEFAULT_CHANNELS)
tax_calendar = InMemoryTaxCalendar()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(
        f"{config.SERVICE_NAME} starting up "
        f"(channels: {', '.join(c.value for c in notification_channels)})"
    )
    yield
    logger.info(f"{config.SERVICE_NAME} shutting down...")


app = FastAPI(
    title=config.SERVICE_NAME,
    description="Upload pattern detection and document reminder API",
    version=config.VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_store() -> ReminderStore:
    return reminder_store


def get_clock() -> Callable[[], datetime]:
    return datetime.now


def get_channels() -> Dict[NotificationChannelType, NotificationChannel]:
    return notification_channels


def get_calendar() -> TaxCalendar:
    return tax_calendar


def get_service(
    store: ReminderStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
    channels: Dict[NotificationChannelType, NotificationChannel] = Depends(get_channels),
    calendar: TaxCalendar = Depends(get_calendar),
) -> UploadReminderService:
    generator = ReminderGenerator(store, channels=channels, clock=clock)
    return UploadReminderService(store, generator=generator, calendar=calendar, clock=clock)


# =============================================================================
# API ENDPOINTS
# =============================================================================

@app.get("/")
async def root():
    """API health check."""
    return {
        "service": config.SERVICE_NAME,
        "version": config.VERSION,
        "status": "healthy",
    }


@app.get("/api/health")
async def health_check(
    store: ReminderStore = Depends(get_store),
    channels: Dict[NotificationChannelType, NotificationChannel] = Depends(get_channels),
):
    """Detailed health check."""
    latest = await store.get_latest_analysis_run()
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "components": {
            "store": type(store).__name__,
            "channels": [channel.value for channel in channels],
            "calendar": "ready",
        },
        "last_analysis": latest.analysis_date.isoformat() if latest else None,
    }


# --- UPLOAD ENDPOINTS ---

@app.post("/api/uploads")
async def record_uploads(
    request: UploadBatchRequest,
    service: UploadReminderService = Depends(get_service),
):
    """Record uploads into the history used by analysis passes."""
    added = await service.record_uploads(request.uploads)
    return {"status": "recorded", "recorded": added, "received": len(request.uploads)}


@app.get("/api/uploads", response_model=List[UploadRecord])
async def list_uploads(
    document_type: Optional[DocumentType] = Query(None, alias="type"),
    source: Optional[str] = None,
    store: ReminderStore = Depends(get_store),
):
    return await store.get_uploads(document_type, source)


# --- PATTERN ENDPOINTS ---

def _describe_pattern(pattern: DocumentPattern) -> Dict:
    return {
        **pattern.model_dump(mode="json"),
        "frequency_label": get_frequency_label(pattern.frequency),
        "document_type_label": get_document_type_label(pattern.document_type),
    }


@app.get("/api/upload-patterns")
async def list_patterns(
    document_type: Optional[DocumentType] = Query(None, alias="type"),
    store: ReminderStore = Depends(get_store),
):
    """Stored patterns, optionally for one document type."""
    if document_type is not None:
        patterns = await store.get_patterns_by_document_type(document_type)
    else:
        patterns = await store.get_all_patterns()
    return {"patterns": [_describe_pattern(p) for p in patterns], "count": len(patterns)}


@app.post("/api/upload-patterns", response_model=AnalysisPassResult)
async def analyze_patterns(
    request: Optional[AnalyzePatternsRequest] = None,
    service: UploadReminderService = Depends(get_service),
):
    """Run an analysis pass over the posted uploads, or the stored history."""
    request = request or AnalyzePatternsRequest()
    return await service.run_analysis(request.uploads, request.as_of_date)


# Declared before /{pattern_id} so "analysis" is not taken for an id
@app.get("/api/upload-patterns/analysis", response_model=AnalysisRun)
async def latest_analysis(store: ReminderStore = Depends(get_store)):
    run = await store.get_latest_analysis_run()
    if run is None:
        raise HTTPException(status_code=404, detail="No analysis has been run yet")
    return run


@app.get("/api/upload-patterns/{pattern_id}")
async def get_pattern(pattern_id: str, store: ReminderStore = Depends(get_store)):
    pattern = await store.get_pattern(pattern_id)
    if pattern is None:
        raise PatternNotFoundError(pattern_id)
    return _describe_pattern(pattern)


@app.delete("/api/upload-patterns/{pattern_id}")
async def delete_pattern(pattern_id: str, store: ReminderStore = Depends(get_store)):
    await store.delete_pattern(pattern_id)
    return {"status": "deleted", "pattern_id": pattern_id}


# --- MISSING DOCUMENT ENDPOINTS ---

@app.get("/api/missing-documents", response_model=List[MissingDocument])
async def list_missing_documents(
    status: Optional[MissingDocumentStatus] = None,
    store: ReminderStore = Depends(get_store),
):
    """Active (pending or reminded) documents, or every document in one status."""
    if status is not None:
        return await store.get_missing_documents_by_status(status)
    return await store.get_active_missing_documents()


@app.post("/api/missing-documents/detect", response_model=List[MissingDocument])
async def detect_missing(
    request: Optional[DetectMissingRequest] = None,
    service: UploadReminderService = Depends(get_service),
):
    """Detect and store missing documents. Patterns default to the stored ones."""
    request = request or DetectMissingRequest()
    return await service.detect_missing(
        request.patterns,
        request.recent_uploads or None,
        request.as_of_date,
    )


@app.patch("/api/missing-documents/{missing_document_id}", response_model=MissingDocument)
async def update_missing_document(
    missing_document_id: str,
    request: MissingDocumentStatusUpdate,
    service: UploadReminderService = Depends(get_service),
):
    """Mark a document uploaded or dismissed."""
    return await service.update_status(missing_document_id, request.status)


# --- REMINDER SETTINGS ENDPOINTS ---

@app.get("/api/reminder-settings", response_model=List[ReminderSettings])
async def list_reminder_settings(store: ReminderStore = Depends(get_store)):
    return await store.get_all_reminder_settings()


@app.get("/api/reminder-settings/{document_type}", response_model=ReminderSettings)
async def get_reminder_settings(document_type: DocumentType, store: ReminderStore = Depends(get_store)):
    return await store.get_reminder_settings(document_type)


@app.put("/api/reminder-settings/{document_type}", response_model=ReminderSettings)
async def update_reminder_settings(
    document_type: DocumentType,
    request: ReminderSettingsUpdate,
    store: ReminderStore = Depends(get_store),
):
    settings = await store.update_reminder_settings(document_type, request)
    logger.info(f"Updated reminder settings for {document_type.value}")
    return settings


# --- REMINDER ENDPOINTS ---

@app.get("/api/reminders")
async def list_reminders(
    group_by: Optional[str] = Query(None, pattern="^(urgency|type)$"),
    service: UploadReminderService = Depends(get_service),
):
    """Reminders for the active missing documents, without sending anything."""
    result = await service.get_reminders()
    if group_by == "urgency":
        groups = group_reminders_by_urgency(result.reminders)
    elif group_by == "type":
        groups = group_reminders_by_type(result.reminders)
    else:
        return result

    return {
        "generated_at": result.generated_at,
        "total_reminders": result.total_reminders,
        "groups": {key.value: [r.model_dump(mode="json") for r in items] for key, items in groups.items()},
    }


@app.post("/api/reminders/process")
async def process_reminders(
    request: Optional[ProcessRemindersRequest] = None,
    service: UploadReminderService = Depends(get_service),
):
    """Generate reminders and send the ones that are due."""
    request = request or ProcessRemindersRequest()
    generated, processed = await service.run_reminders(request.channels)
    return {"generated": generated, "processed": processed}


# --- EXPECTED DOCUMENT ENDPOINTS ---

@app.get("/api/expected-documents")
async def list_expected_documents(
    days: int = Query(config.LOOKAHEAD_DAYS, ge=0, le=366),
    service: UploadReminderService = Depends(get_service),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    """Documents expected within the next `days` days."""
    expected = await service.get_expected(days)
    today = clock().date()
    return {
        "documents": [
            {
                **document.model_dump(mode="json"),
                "expected_label": format_expected_date(document.estimated_arrival_date, today),
            }
            for document in expected
        ],
        "count": len(expected),
        "look_ahead_days": days,
    }


# --- ERROR HANDLERS ---

@app.exception_handler(PatternNotFoundError)
@app.exception_handler(MissingDocumentNotFoundError)
async def not_found_handler(request, exc):
    return JSONResponse(status_code=404, content={"error": "Not found", "detail": str(exc)})


@app.exception_handler(InvalidStatusTransitionError)
async def invalid_transition_handler(request, exc):
    return JSONResponse(status_code=409, content={"error": "Invalid status transition", "detail": str(exc)})


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if config.DEBUG else "An error occurred"
        }
    )


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=config.HOST, port=config.PORT)
