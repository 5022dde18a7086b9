"""
Main application module for Farm Assistant.

This module defines the FastAPI application, routes, and middleware.
"""
import os
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, Depends, File, HTTPException, Query, UploadFile
from fastapi.staticfiles import StaticFiles
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from farm_assistant.auth import get_user_id
from farm_assistant.config import STATIC_DIR, configure_logging
from farm_assistant.schemas.bulk import BulkReport
from farm_assistant.schemas.conversation import ConversationMessage, ConversationSession
from farm_assistant.schemas.farm import (
    ManualEntry, ManualEntryUpdate, ProcessedSensorReading, SensorReading,
    StatusCounts, WeatherData, WeatherForecast
)
from farm_assistant.schemas.responses import (
    AiResponse, ChatRequest, ConversationInsights, ConversationSummary,
    LocationAdviceRequest, PerformanceStats, SensorAdviceRequest, TitleUpdate
)
from farm_assistant.services.ai_service import ai_service
from farm_assistant.services.bulk_evaluation import (
    DEFAULT_CONCURRENCY, BulkInputError, export_results, parse_bulk_csv, run_bulk_evaluation
)
from farm_assistant.services.db_operations import create_tables, get_engine
from farm_assistant.services.error_handler import error_handler
from farm_assistant.services.manual_entry_service import ManualEntryService, ManualEntryValidationError
from farm_assistant.services.weather_service import WeatherServiceError

configure_logging()
logger = logging.getLogger(__name__)

manual_entry_service = ManualEntryService()

# HTTP status for each error type reported by the error handler
ERROR_STATUS = {
    "timeout": 504,
    "llm_empty_response": 502,
    "weather_unavailable": 502,
    "llm_not_configured": 503,
    "internal_error": 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_tables(get_engine())
    logger.info("Database tables ready")
    yield


# Create FastAPI app
app = FastAPI(
    title="Farm Assistant",
    description="A conversational agricultural advisor grounded in live farm telemetry",
    version="1.0.0",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount static files directory (bulk evaluation reports)
os.makedirs(STATIC_DIR, exist_ok=True)
app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")


def raise_for_query_error(e: Exception, query: str, language: str = "en") -> None:
    """Track a failed query and turn it into an HTTPException."""
    if isinstance(e, HTTPException):
        raise e
    error_type = error_handler.handle(e, query)
    logger.error("Query failed (%s): %s: %s", error_type, type(e).__name__, str(e))
    raise HTTPException(
        status_code=ERROR_STATUS.get(error_type, 500),
        detail=error_handler.get_user_friendly_error(error_type, language)
    )


def to_summary(session: ConversationSession) -> ConversationSummary:
    return ConversationSummary(
        id=session.id,
        title=session.title,
        created_at=session.created_at,
        updated_at=session.updated_at,
        crop_type=session.context.crop_type,
    )


@app.get("/ping")
@app.head("/ping")
async def ping():
    """Health check endpoint. Supports both GET and HEAD methods."""
    return {"status": "ok"}


# ----------------------------------------------------------------------
# Chat
# ----------------------------------------------------------------------

@app.post("/chat", response_model=AiResponse)
async def chat(
    request: ChatRequest,
    user_id: Optional[str] = Depends(get_user_id)
):
    """
    Answer a farmer's question within a conversation.

    Args:
        request: Request body containing either 'query' or 'message' field
        user_id: User ID from the optional JWT token

    Returns:
        AiResponse with advice, parsed recommendations and conversation id
    """
    query = request.text
    if not query or not query.strip():
        raise HTTPException(status_code=400, detail="Missing 'query' or 'message' field")

    logger.info("Chat endpoint received query: '%s', user_id: %s", query, user_id)
    try:
        return await ai_service.process_query(
            query,
            conversation_id=request.conversation_id,
            user_id=user_id,
            language=request.language
        )
    except Exception as e:
        raise_for_query_error(e, query, request.language)


@app.post("/chat/stream")
async def chat_stream(
    request: ChatRequest,
    user_id: Optional[str] = Depends(get_user_id)
):
    """Stream the answer as server-sent events: chunk..., then done or error."""
    query = request.text
    if not query or not query.strip():
        raise HTTPException(status_code=400, detail="Missing 'query' or 'message' field")

    async def event_source():
        async for event in ai_service.stream_query(
            query,
            conversation_id=request.conversation_id,
            user_id=user_id,
            language=request.language
        ):
            yield f"data: {event.model_dump_json(exclude_none=True)}\n\n"

    return StreamingResponse(
        event_source(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
    )


# ----------------------------------------------------------------------
# Conversations
# ----------------------------------------------------------------------

@app.get("/conversations", response_model=List[ConversationSummary])
async def list_conversations(
    limit: int = Query(20, ge=1, le=100),
    user_id: Optional[str] = Depends(get_user_id)
):
    sessions = await ai_service.get_user_conversations(user_id, limit)
    return [to_summary(session) for session in sessions]


@app.get("/conversations/search", response_model=List[ConversationSummary])
async def search_conversations(
    q: str = Query(..., min_length=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: Optional[str] = Depends(get_user_id)
):
    sessions = await ai_service.search_conversations(user_id, q, limit)
    return [to_summary(session) for session in sessions]


@app.get("/conversations/{conversation_id}/messages", response_model=List[ConversationMessage])
async def conversation_messages(conversation_id: str):
    return await ai_service.get_conversation_history(conversation_id)


@app.get("/conversations/{conversation_id}/insights", response_model=ConversationInsights)
async def conversation_insights(conversation_id: str):
    insights = await ai_service.get_conversation_insights(conversation_id)
    if insights is None:
        raise HTTPException(status_code=404, detail=f"Conversation not found: {conversation_id}")
    return insights


@app.patch("/conversations/{conversation_id}")
async def rename_conversation(conversation_id: str, update: TitleUpdate):
    if not await ai_service.update_conversation_title(conversation_id, update.title):
        raise HTTPException(status_code=404, detail=f"Conversation not found: {conversation_id}")
    return {"id": conversation_id, "title": update.title}


@app.delete("/conversations/{conversation_id}")
async def delete_conversation(conversation_id: str):
    if not await ai_service.delete_conversation(conversation_id):
        raise HTTPException(status_code=500, detail=f"Failed to delete conversation: {conversation_id}")
    return {"id": conversation_id, "deleted": True}


# ----------------------------------------------------------------------
# Targeted advice
# ----------------------------------------------------------------------

@app.post("/advice/location", response_model=AiResponse)
async def location_advice(request: LocationAdviceRequest):
    try:
        return await ai_service.get_location_based_advice(
            request.latitude, request.longitude, request.conversation_id, request.language
        )
    except Exception as e:
        raise_for_query_error(e, f"location {request.latitude},{request.longitude}", request.language)


@app.post("/advice/sensor", response_model=AiResponse)
async def sensor_advice(request: SensorAdviceRequest):
    try:
        return await ai_service.get_sensor_based_recommendations(
            request.sensor_type, request.value, request.unit, request.conversation_id, request.language
        )
    except Exception as e:
        raise_for_query_error(e, f"sensor {request.sensor_type}={request.value}", request.language)


# ----------------------------------------------------------------------
# Sensors and weather
# ----------------------------------------------------------------------

@app.get("/sensors", response_model=List[ProcessedSensorReading])
async def list_sensor_data(
    location: Optional[str] = None,
    sensor_type: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(1000, ge=1, le=10000)
):
    return await ai_service.sensor_service.get_sensor_data(location, sensor_type, start, end, limit)


@app.get("/sensors/latest", response_model=List[ProcessedSensorReading])
async def latest_sensor_data(limit: Optional[int] = Query(None, ge=1)):
    return await ai_service.sensor_service.get_latest_readings(limit)


@app.get("/sensors/status", response_model=StatusCounts)
async def sensor_status():
    return await ai_service.sensor_service.get_status_counts()


@app.post("/sensors", response_model=ProcessedSensorReading)
async def add_sensor_reading(reading: SensorReading):
    return await ai_service.sensor_service.add_reading(reading)


def _require_weather() -> None:
    if not ai_service.weather_service.enabled:
        raise HTTPException(status_code=503, detail="Weather service is not configured (WEATHER_API_KEY)")


@app.get("/weather/current", response_model=WeatherData)
async def current_weather(lat: float = Query(..., ge=-90, le=90), lon: float = Query(..., ge=-180, le=180)):
    _require_weather()
    try:
        return await ai_service.weather_service.get_current_weather(lat, lon)
    except WeatherServiceError as e:
        error_handler.handle(e)
        raise HTTPException(status_code=502, detail=str(e))


@app.get("/weather/forecast", response_model=List[WeatherForecast])
async def weather_forecast(lat: float = Query(..., ge=-90, le=90), lon: float = Query(..., ge=-180, le=180)):
    _require_weather()
    try:
        return await ai_service.weather_service.get_weather_forecast(lat, lon)
    except WeatherServiceError as e:
        error_handler.handle(e)
        raise HTTPException(status_code=502, detail=str(e))


# ----------------------------------------------------------------------
# Manual entries
# ----------------------------------------------------------------------

@app.get("/manual-entries", response_model=List[ManualEntry])
async def list_manual_entries(
    entry_type: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000)
):
    return await manual_entry_service.get_manual_entries(entry_type, limit)


@app.post("/manual-entries", response_model=ManualEntry)
async def add_manual_entry(
    entry: ManualEntry,
    user_id: Optional[str] = Depends(get_user_id)
):
    if user_id:
        entry = entry.model_copy(update={"user_id": user_id})
    try:
        return await manual_entry_service.add_manual_entry(entry)
    except ManualEntryValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.patch("/manual-entries/{entry_id}", response_model=ManualEntry)
async def update_manual_entry(entry_id: int, update: ManualEntryUpdate):
    try:
        entry = await manual_entry_service.update_manual_entry(entry_id, update)
    except ManualEntryValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Manual entry not found: {entry_id}")
    return entry


@app.delete("/manual-entries/{entry_id}")
async def delete_manual_entry(entry_id: int):
    if not await manual_entry_service.delete_manual_entry(entry_id):
        raise HTTPException(status_code=404, detail=f"Manual entry not found: {entry_id}")
    return {"id": entry_id, "deleted": True}


# ----------------------------------------------------------------------
# Bulk evaluation
# ----------------------------------------------------------------------

@app.post("/bulk/evaluate", response_model=BulkReport)
async def bulk_evaluate(
    file: UploadFile = File(...),
    concurrency: int = Query(DEFAULT_CONCURRENCY, ge=1, le=10)
):
    """
    Run every row of an uploaded CSV through the assistant.

    Returns:
        BulkReport with per-case results and the CSV report download URL
    """
    try:
        text = (await file.read()).decode("utf-8")
        cases = parse_bulk_csv(text)
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="CSV file must be UTF-8 encoded")
    except BulkInputError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not cases:
        raise HTTPException(status_code=400, detail="CSV file has no test cases")

    logger.info("Bulk evaluation of %d cases from %s", len(cases), file.filename)
    results = await run_bulk_evaluation(cases, concurrency)
    export = export_results(results)
    succeeded = sum(1 for result in results if result.status == "success")

    return BulkReport(
        total=len(results),
        succeeded=succeeded,
        failed=len(results) - succeeded,
        results=results,
        download_url=export["download_url"],
    )


# ----------------------------------------------------------------------
# Monitoring
# ----------------------------------------------------------------------

@app.get("/stats/performance", response_model=PerformanceStats)
async def performance_stats():
    return await ai_service.get_performance_stats()


@app.get("/stats/errors")
async def error_stats():
    return error_handler.get_error_stats()


@app.delete("/cache")
async def clear_cache(older_than_minutes: Optional[float] = Query(None, gt=0)):
    """Clear the conversation cache, or only sessions idle longer than the given minutes."""
    if older_than_minutes is not None:
        return {"cleared": ai_service.purge_cache_older_than(older_than_minutes)}
    cleared = ai_service.get_cache_size()
    ai_service.clear_cache()
    return {"cleared": cleared}
