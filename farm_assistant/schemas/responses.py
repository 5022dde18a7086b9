"""
API request and response schemas for Farm Assistant.

This module defines the Pydantic models for the chat endpoints.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class Recommendations(BaseModel):
    immediate: List[str] = []
    short_term: List[str] = []
    long_term: List[str] = []


class ParsedResponse(BaseModel):
    """Sections extracted from the model's reply."""
    advice: str
    follow_up_questions: Optional[List[str]] = None
    recommendations: Optional[Recommendations] = None
    related_topics: Optional[List[str]] = None


class AiResponse(ParsedResponse):
    """Response model for the /chat endpoint."""
    confidence: float = Field(..., description="Confidence reported with the advice")
    sources: List[str] = Field(..., description="Data sources merged into the prompt")
    response_time: Optional[float] = Field(None, description="End-to-end processing time in ms")
    intelligence_level: Literal["advanced"] = "advanced"
    conversation_id: str
    model_used: Optional[str] = None


class ChatRequest(BaseModel):
    query: Optional[str] = None
    message: Optional[str] = None
    conversation_id: Optional[str] = None
    language: str = "en"

    @property
    def text(self) -> Optional[str]:
        # Accept either 'query' or 'message' field for compatibility
        return self.query or self.message


class StreamEvent(BaseModel):
    """One server-sent event of a streamed answer."""
    type: Literal["chunk", "done", "error"]
    content: Optional[str] = None
    response: Optional[AiResponse] = None


class TitleUpdate(BaseModel):
    title: str = Field(..., min_length=1)


class LocationAdviceRequest(BaseModel):
    latitude: float
    longitude: float
    conversation_id: Optional[str] = None
    language: str = "en"


class SensorAdviceRequest(BaseModel):
    sensor_type: str
    value: float
    unit: str = ""
    conversation_id: Optional[str] = None
    language: str = "en"


class ConversationSummary(BaseModel):
    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    crop_type: Optional[str] = None


class ConversationInsights(BaseModel):
    total_messages: int = 0
    topics: List[str] = []
    issues: List[str] = []
    recommendations: List[str] = []
    duration: int = Field(0, description="Minutes between creation and last update")
    last_activity: datetime


class ConversationStats(BaseModel):
    total_conversations: int = 0
    avg_conversation_length: float = 0.0
    active_conversations: int = 0


class PerformanceStats(BaseModel):
    total_queries: int = 0
    avg_response_time: float = 0.0
    success_rate: float = 0.0
    last_query_time: Optional[datetime] = None
    conversation_stats: ConversationStats = ConversationStats()
