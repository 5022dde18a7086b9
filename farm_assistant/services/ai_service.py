"""
AI conversation orchestration for Farm Assistant.

This module provides the core functionality for:
1. Keeping multi-turn conversation sessions (cache + database)
2. Merging live sensor and weather telemetry into the LLM prompt
3. Calling the LLM, whole or streamed, and parsing its sectioned reply
4. Logging every query and reporting usage statistics
"""
import time
import uuid
import asyncio
import logging
from datetime import timedelta
from typing import AsyncIterator, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from farm_assistant.config import DEFAULT_LOCATION
from farm_assistant.schemas.conversation import (
    ConversationMessage, ConversationSession, MessageMetadata, QueryContext,
    SessionContext, utcnow
)
from farm_assistant.schemas.farm import FarmData, Location, WeatherData
from farm_assistant.schemas.responses import (
    AiResponse, ConversationInsights, ConversationStats, PerformanceStats, StreamEvent
)
from farm_assistant.services.conversation_store import ConversationStore
from farm_assistant.services.db_operations import as_utc
from farm_assistant.services.error_handler import error_handler
from farm_assistant.services.llm_provider import (
    get_llm_provider, get_model_name, llm_complete, llm_stream
)
from farm_assistant.services.prompt_builder import build_system_prompt, welcome_message
from farm_assistant.services.query_analysis import (
    analyze_query_with_context, extract_issue_from_query, extract_topic_from_message,
    get_current_season, update_session_context
)
from farm_assistant.services.response_parser import parse_ai_response
from farm_assistant.services.sensor_service import SensorService
from farm_assistant.services.weather_service import WeatherService

logger = logging.getLogger(__name__)

# Failures of the hosted database; these are logged rather than raised
STORAGE_ERRORS = (SQLAlchemyError, OSError)

CONFIDENCE = 0.9
LIVE_SOURCES = ["live_sensor_data", "live_weather_data", "conversation_context"]
FARM_SENSOR_LIMIT = 10
STATS_LOG_WINDOW = 100
STATS_CONVERSATION_WINDOW = 20


def location_key(lat: float, lon: float) -> str:
    return f"{lat:.4f},{lon:.4f}"


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


class AiService:
    MAX_CONTEXT_MESSAGES = 10

    def __init__(
        self,
        store: Optional[ConversationStore] = None,
        sensor_service: Optional[SensorService] = None,
        weather_service: Optional[WeatherService] = None
    ):
        self.store = store or ConversationStore()
        self.sensor_service = sensor_service or SensorService()
        self.weather_service = weather_service or WeatherService()
        self.conversation_cache: Dict[str, ConversationSession] = {}

    # ------------------------------------------------------------------
    # Query processing
    # ------------------------------------------------------------------

    async def process_query(
        self,
        query: str,
        conversation_id: Optional[str] = None,
        user_id: Optional[str] = None,
        language: str = "en",
        farm_data: Optional[FarmData] = None
    ) -> AiResponse:
        """
        Answer a farmer's question within a conversation.

        Args:
            query: The farmer's question
            conversation_id: Conversation to continue; a new one is started when omitted
            user_id: Owner recorded on new conversations
            language: "en" or "hi"
            farm_data: Telemetry to use instead of the live sensor/weather feeds

        Returns:
            AiResponse with the advice, parsed sections and conversation id
        """
        start = time.perf_counter()
        logger.info("[process_query] Processing query: '%s'", query)
        provider = get_llm_provider()
        session, context, messages = await self._prepare(query, conversation_id, user_id, language, farm_data)

        try:
            reply = await llm_complete(messages, provider)
        except Exception as e:
            logger.error("[process_query] LLM call failed: %s: %s", type(e).__name__, str(e))
            self._discard_last_user_message(session)
            await self.log_failure(query, session.id, language, _elapsed_ms(start), get_model_name(provider))
            raise

        return await self._finalize(session, context, query, reply, language, start, get_model_name(provider))

    async def stream_query(
        self,
        query: str,
        conversation_id: Optional[str] = None,
        user_id: Optional[str] = None,
        language: str = "en",
        farm_data: Optional[FarmData] = None
    ) -> AsyncIterator[StreamEvent]:
        """Like process_query, but yields the reply as it arrives, then the final response."""
        start = time.perf_counter()
        logger.info("[stream_query] Streaming query: '%s'", query)
        session = None
        model = None
        try:
            provider = get_llm_provider()
            model = get_model_name(provider)
            session, context, messages = await self._prepare(query, conversation_id, user_id, language, farm_data)

            parts: List[str] = []
            async for delta in llm_stream(messages, provider):
                parts.append(delta)
                yield StreamEvent(type="chunk", content=delta)

            response = await self._finalize(session, context, query, "".join(parts), language, start, model)
            yield StreamEvent(type="done", response=response)
        except Exception as e:
            logger.exception("[stream_query] Streaming failed")
            error_type = error_handler.handle(e, query)
            if session is not None:
                self._discard_last_user_message(session)
                await self.log_failure(query, session.id, language, _elapsed_ms(start), model)
            yield StreamEvent(
                type="error",
                content=error_handler.get_user_friendly_error(error_type, language, _elapsed_ms(start))
            )

    async def _prepare(
        self,
        query: str,
        conversation_id: Optional[str],
        user_id: Optional[str],
        language: str,
        farm_data: Optional[FarmData]
    ) -> Tuple[ConversationSession, QueryContext, List[Dict[str, str]]]:
        session = (
            await self.get_conversation_session(conversation_id)
            if conversation_id
            else await self.create_new_conversation(language)
        )
        if user_id and not session.user_id:
            session.user_id = user_id

        context = analyze_query_with_context(query, language, session)

        if farm_data is None:
            farm_data = await self.get_farm_data()

        session.messages.append(ConversationMessage(
            role="user",
            content=query,
            metadata=MessageMetadata(
                sensor_data=farm_data.sensor_data,
                weather_data=list(farm_data.weather_data_map.values()),
                query_type=context.type,
                urgency=context.urgency,
            ),
        ))

        system_prompt = build_system_prompt(language, context, farm_data, session)
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": query},
        ]
        return session, context, messages

    async def _finalize(
        self,
        session: ConversationSession,
        context: QueryContext,
        query: str,
        reply: str,
        language: str,
        start: float,
        model: str
    ) -> AiResponse:
        parsed = parse_ai_response(reply)

        session.messages.append(ConversationMessage(
            role="assistant",
            content=parsed.advice,
            metadata=MessageMetadata(query_type=context.type, urgency=context.urgency),
        ))

        update_session_context(session, query, parsed)
        await self.save_conversation(session)

        response = AiResponse(
            **parsed.model_dump(),
            conversation_id=session.id,
            confidence=CONFIDENCE,
            sources=[model] + LIVE_SOURCES,
            response_time=_elapsed_ms(start),
            intelligence_level="advanced",
            model_used=model,
        )
        await self.log_query(query, response, session.id, language)
        return response

    @staticmethod
    def _discard_last_user_message(session: ConversationSession) -> None:
        if session.messages and session.messages[-1].role == "user":
            session.messages.pop()

    # ------------------------------------------------------------------
    # Farm data
    # ------------------------------------------------------------------

    async def get_farm_data(self) -> FarmData:
        """Collect the latest sensor readings and the weather at every sensor location."""
        sensor_data = await self.sensor_service.get_latest_readings(limit=FARM_SENSOR_LIMIT)

        unique_locations: Dict[str, Location] = {}
        for reading in sensor_data:
            if reading.latitude and reading.longitude:
                key = location_key(reading.latitude, reading.longitude)
                unique_locations[key] = Location(
                    lat=reading.latitude,
                    lon=reading.longitude,
                    name=f"Sensor {reading.sensor_id or 'Location'}",
                    location_key=key,
                )

        if not unique_locations:
            key = location_key(DEFAULT_LOCATION["lat"], DEFAULT_LOCATION["lon"])
            unique_locations[key] = Location(location_key=key, **DEFAULT_LOCATION)

        locations = list(unique_locations.values())
        weather_data_map = await self.fetch_weather(locations)

        return FarmData(
            sensor_data=sensor_data,
            weather_data_map=weather_data_map,
            locations=locations,
            critical_alerts=[r for r in sensor_data if r.status == "critical"],
        )

    async def fetch_weather(self, locations: List[Location]) -> Dict[str, WeatherData]:
        """Current weather for each location, fetched concurrently."""
        if not self.weather_service.enabled:
            logger.warning("[fetch_weather] WEATHER_API_KEY not set; prompting without weather")
            return {}
        results = await asyncio.gather(*(
            self.weather_service.get_current_weather(loc.lat, loc.lon) for loc in locations
        ))
        return {loc.location_key: weather for loc, weather in zip(locations, results)}

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def create_new_conversation(self, language: str = "en") -> ConversationSession:
        session_id = f"conv_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
        session = ConversationSession(
            id=session_id,
            context=SessionContext(language=language, season=get_current_season()),
            messages=[ConversationMessage(role="system", content=welcome_message(language))],
        )
        self.conversation_cache[session_id] = session
        return session

    async def find_conversation_session(self, conversation_id: str) -> Optional[ConversationSession]:
        """Return the session from cache or database, or None when it does not exist."""
        if conversation_id in self.conversation_cache:
            return self.conversation_cache[conversation_id]

        try:
            row = await self.store.get_conversation(conversation_id)
        except STORAGE_ERRORS as e:
            logger.error("[find_conversation_session] Error loading conversation: %s", str(e))
            return None
        if row is None:
            return None

        try:
            message_rows = await self.store.get_messages(conversation_id)
        except STORAGE_ERRORS as e:
            logger.error("[find_conversation_session] Error loading messages: %s", str(e))
            message_rows = []

        session = ConversationSession(
            id=row["id"],
            title=row["title"],
            messages=[
                ConversationMessage(
                    id=msg["id"],
                    role=msg["role"],
                    content=msg["content"],
                    timestamp=msg["timestamp"],
                    metadata=msg.get("metadata"),
                )
                for msg in message_rows
            ],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            context=SessionContext.model_validate(row.get("context") or {}),
            user_id=row.get("user_id"),
        )
        self.conversation_cache[conversation_id] = session
        return session

    async def get_conversation_session(self, conversation_id: str) -> ConversationSession:
        """Return the session, starting a fresh one when it cannot be loaded."""
        session = await self.find_conversation_session(conversation_id)
        if session is None:
            logger.warning("[get_conversation_session] %s not found; starting a new conversation", conversation_id)
            session = await self.create_new_conversation()
        return session

    async def save_conversation(self, session: ConversationSession) -> None:
        """Upsert the conversation and its latest exchange."""
        conversation = {
            "id": session.id,
            "title": session.title,
            "context": session.context.model_dump(mode="json"),
            "user_id": session.user_id,
            "created_at": session.created_at,
            "updated_at": session.updated_at,
        }

        message_rows = []
        for msg in session.messages[-2:]:
            if msg.id is None:
                msg.id = f"{session.id}_{int(msg.timestamp.timestamp() * 1000)}_{msg.role}"
            message_rows.append({
                "id": msg.id,
                "conversation_id": session.id,
                "role": msg.role,
                "content": msg.content,
                "metadata": msg.metadata.model_dump(mode="json", exclude_none=True) if msg.metadata else None,
                "timestamp": msg.timestamp,
            })

        try:
            await self.store.save_conversation(conversation, message_rows)
        except STORAGE_ERRORS as e:
            logger.error("[save_conversation] Error saving conversation %s: %s", session.id, str(e))

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    async def log_query(self, query: str, response: AiResponse, conversation_id: str, language: str = "en") -> None:
        await self._insert_log({
            "query": query,
            "response": response.advice,
            "confidence": response.confidence,
            "response_time": round(response.response_time or 0),
            "language": language,
            "sources": response.sources,
            "intelligence_level": response.intelligence_level,
            "status": "success",
            "model_used": response.model_used,
            "user_feedback": None,
            "conversation_id": conversation_id,
            "created_at": utcnow(),
        })

    async def log_failure(
        self,
        query: str,
        conversation_id: str,
        language: str,
        response_time: float,
        model: Optional[str]
    ) -> None:
        await self._insert_log({
            "query": query,
            "response": None,
            "confidence": None,
            "response_time": round(response_time),
            "language": language,
            "sources": None,
            "intelligence_level": None,
            "status": "error",
            "model_used": model,
            "user_feedback": None,
            "conversation_id": conversation_id,
            "created_at": utcnow(),
        })

    async def _insert_log(self, entry: Dict) -> None:
        try:
            await self.store.insert_ai_log(entry)
        except STORAGE_ERRORS as e:
            logger.error("[log_query] Failed to insert AI log: %s", str(e))

    # ------------------------------------------------------------------
    # Conversation management
    # ------------------------------------------------------------------

    async def get_conversation_history(self, conversation_id: str) -> List[ConversationMessage]:
        session = await self.find_conversation_session(conversation_id)
        return session.messages if session else []

    @staticmethod
    def _session_from_row(row: Dict) -> ConversationSession:
        return ConversationSession(
            id=row["id"],
            title=row["title"],
            messages=[],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            context=SessionContext.model_validate(row.get("context") or {}),
            user_id=row.get("user_id"),
        )

    async def get_user_conversations(self, user_id: Optional[str] = None, limit: int = 20) -> List[ConversationSession]:
        """Saved conversations (without messages), most recently active first."""
        try:
            rows = await self.store.list_conversations(user_id, limit)
        except STORAGE_ERRORS as e:
            logger.error("[get_user_conversations] Error listing conversations: %s", str(e))
            return []
        return [self._session_from_row(row) for row in rows]

    async def search_conversations(
        self,
        user_id: Optional[str],
        search_query: str,
        limit: int = 10
    ) -> List[ConversationSession]:
        try:
            rows = await self.store.search_conversations(search_query, user_id, limit)
        except STORAGE_ERRORS as e:
            logger.error("[search_conversations] Error searching conversations: %s", str(e))
            return []
        return [self._session_from_row(row) for row in rows]

    async def delete_conversation(self, conversation_id: str) -> bool:
        try:
            await self.store.delete_conversation(conversation_id)
        except STORAGE_ERRORS as e:
            logger.error("[delete_conversation] Error deleting %s: %s", conversation_id, str(e))
            return False
        self.conversation_cache.pop(conversation_id, None)
        return True

    async def update_conversation_title(self, conversation_id: str, title: str) -> bool:
        """Rename a conversation; False when it is neither stored nor cached."""
        now = utcnow()
        try:
            updated = await self.store.update_title(conversation_id, title, now)
        except STORAGE_ERRORS as e:
            logger.error("[update_conversation_title] Error updating %s: %s", conversation_id, str(e))
            return False

        session = self.conversation_cache.get(conversation_id)
        if session is not None:
            session.title = title
            session.updated_at = now
        return bool(updated) or session is not None

    async def get_conversation_insights(self, conversation_id: str) -> Optional[ConversationInsights]:
        session = await self.find_conversation_session(conversation_id)
        if session is None:
            return None

        topics: List[str] = []
        issues: List[str] = []
        for msg in session.messages:
            if msg.role != "user":
                continue
            topic = extract_topic_from_message(msg.content)
            if topic and topic not in topics:
                topics.append(topic)
            issue = extract_issue_from_query(msg.content)
            if issue and issue not in issues:
                issues.append(issue)

        recommendations = list(dict.fromkeys(session.context.previous_recommendations))
        duration = round((as_utc(session.updated_at) - as_utc(session.created_at)).total_seconds() / 60)

        return ConversationInsights(
            total_messages=len(session.messages),
            topics=topics,
            issues=issues,
            recommendations=recommendations,
            duration=duration,
            last_activity=session.updated_at,
        )

    # ------------------------------------------------------------------
    # Location and sensor based advice
    # ------------------------------------------------------------------

    async def get_location_based_advice(
        self,
        latitude: float,
        longitude: float,
        conversation_id: Optional[str] = None,
        language: str = "en"
    ) -> AiResponse:
        if language == "hi":
            query = f"इस स्थान ({latitude:.4f}, {longitude:.4f}) के लिए खेती की सलाह दें"
        else:
            query = f"Provide farming advice for location ({latitude:.4f}, {longitude:.4f})"
        return await self.process_query(query, conversation_id, None, language)

    async def get_sensor_based_recommendations(
        self,
        sensor_type: str,
        value: float,
        unit: str,
        conversation_id: Optional[str] = None,
        language: str = "en"
    ) -> AiResponse:
        if language == "hi":
            query = f"{sensor_type} सेंसर {value}{unit} दिखा रहा है। क्या करना चाहिए?"
        else:
            query = f"{sensor_type} sensor showing {value}{unit}. What should I do?"
        return await self.process_query(query, conversation_id, None, language)

    # ------------------------------------------------------------------
    # Performance monitoring
    # ------------------------------------------------------------------

    async def get_performance_stats(self) -> PerformanceStats:
        try:
            logs = await self.store.recent_logs(STATS_LOG_WINDOW)
            activity = await self.store.conversation_activity()
            lengths = await asyncio.gather(*(
                self.store.count_messages(conv["id"])
                for conv in activity[:STATS_CONVERSATION_WINDOW]
            ))
        except STORAGE_ERRORS as e:
            logger.error("[get_performance_stats] Error fetching performance stats: %s", str(e))
            return PerformanceStats()

        total_queries = len(logs)
        successful = sum(1 for log in logs if log["status"] == "success")
        day_ago = utcnow() - timedelta(days=1)

        return PerformanceStats(
            total_queries=total_queries,
            avg_response_time=(
                sum(log["response_time"] or 0 for log in logs) / total_queries if total_queries else 0.0
            ),
            success_rate=successful / total_queries if total_queries else 0.0,
            last_query_time=logs[0]["created_at"] if logs else None,
            conversation_stats=ConversationStats(
                total_conversations=len(activity),
                avg_conversation_length=sum(lengths) / len(lengths) if lengths else 0.0,
                active_conversations=sum(1 for conv in activity if conv["updated_at"] > day_ago),
            ),
        )

    # ------------------------------------------------------------------
    # Cache management
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        self.conversation_cache.clear()
        logger.info("Conversation cache cleared")

    def get_cache_size(self) -> int:
        return len(self.conversation_cache)

    def purge_cache_older_than(self, minutes: float) -> int:
        """Drop sessions idle for longer than the given minutes; returns how many."""
        cutoff = utcnow() - timedelta(minutes=minutes)
        stale = [
            session_id for session_id, session in self.conversation_cache.items()
            if as_utc(session.updated_at) < cutoff
        ]
        for session_id in stale:
            del self.conversation_cache[session_id]
        return len(stale)


# Global service instance
ai_service = AiService()
