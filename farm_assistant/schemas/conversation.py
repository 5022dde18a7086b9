"""
Schemas for conversation sessions.

A session is an ordered list of user/assistant/system turns plus the
context accumulated over the conversation (crop, farm size, open issues).
"""
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from farm_assistant.schemas.farm import Location, ProcessedSensorReading, WeatherData

QueryType = Literal[
    "irrigation", "health", "nutrition", "harvest", "weather",
    "general", "analysis", "soil_analysis", "follow_up"
]
Urgency = Literal["low", "medium", "high", "critical"]
Season = Literal["summer", "monsoon", "winter"]
TimeContext = Literal["morning", "afternoon", "evening", "night"]

NEW_CONVERSATION_TITLE = "New Farm Consultation"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageMetadata(BaseModel):
    sensor_data: Optional[List[ProcessedSensorReading]] = None
    weather_data: Optional[List[WeatherData]] = None
    query_type: Optional[str] = None
    urgency: Optional[str] = None
    location: Optional[Location] = None


class ConversationMessage(BaseModel):
    id: Optional[str] = None
    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: datetime = Field(default_factory=utcnow)
    metadata: Optional[MessageMetadata] = None


class SessionContext(BaseModel):
    farm_location: Optional[Location] = None
    crop_type: Optional[str] = None
    season: Optional[Season] = None
    language: Optional[str] = None
    farmer_experience: Optional[Literal["beginner", "intermediate", "expert"]] = None
    farm_size: Optional[str] = None
    previous_recommendations: List[str] = []
    current_issues: List[str] = []
    follow_up_needed: bool = False


class ConversationSession(BaseModel):
    id: str
    title: str = NEW_CONVERSATION_TITLE
    messages: List[ConversationMessage] = []
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    context: SessionContext = Field(default_factory=SessionContext)
    user_id: Optional[str] = None


class FarmerProfile(BaseModel):
    experience: str = "intermediate"
    crop_type: Optional[str] = None
    farm_size: Optional[str] = None


class ConversationContext(BaseModel):
    is_follow_up: bool = False
    previous_topics: List[str] = []
    unresolved_issues: List[str] = []
    farmer_profile: Optional[FarmerProfile] = None


class QueryContext(BaseModel):
    """How a single question was classified before prompting the model."""
    type: QueryType = "general"
    urgency: Urgency = "medium"
    language: str = "en"
    season: Season
    time_context: TimeContext
    conversation_context: Optional[ConversationContext] = None
