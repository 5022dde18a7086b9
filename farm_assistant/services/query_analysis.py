"""
Query analysis for Farm Assistant.

This module provides functionality for:
1. Classifying a farmer's question (type, urgency, follow-up)
2. Extracting topics and issues from messages
3. Folding what a question reveals back into the session context
"""
import re
from datetime import datetime
from typing import List, Optional

from farm_assistant.config import load_yaml_config
from farm_assistant.schemas.conversation import (
    NEW_CONVERSATION_TITLE, ConversationContext, ConversationSession,
    FarmerProfile, QueryContext, Season, TimeContext, utcnow
)
from farm_assistant.schemas.responses import ParsedResponse

KEYWORDS = load_yaml_config('query_keywords.yaml')
assert isinstance(KEYWORDS.get('query_types'), dict), "query_keywords.yaml must define 'query_types'"
assert isinstance(KEYWORDS.get('topics'), dict), "query_keywords.yaml must define 'topics'"

RECENT_MESSAGE_WINDOW = 5
MAX_PREVIOUS_RECOMMENDATIONS = 10
TITLE_WORDS = 4

ISSUE_PATTERNS = [
    re.compile(r"problem with (.+)", re.IGNORECASE),
    re.compile(r"issue with (.+)", re.IGNORECASE),
    re.compile(r"(.+) disease", re.IGNORECASE),
    re.compile(r"(.+) की समस्या", re.IGNORECASE),
    re.compile(r"(.+) बीमारी", re.IGNORECASE),
]


def _mentions(text: str, terms: List[str]) -> bool:
    return any(term in text for term in terms)


def get_current_season(now: Optional[datetime] = None) -> Season:
    month = (now or datetime.now()).month
    if 3 <= month <= 6:
        return "summer"
    if 7 <= month <= 10:
        return "monsoon"
    return "winter"


def get_time_context(now: Optional[datetime] = None) -> TimeContext:
    hour = (now or datetime.now()).hour
    if hour < 6:
        return "night"
    if hour < 12:
        return "morning"
    if hour < 17:
        return "afternoon"
    if hour < 21:
        return "evening"
    return "night"


def extract_topic_from_message(content: str) -> Optional[str]:
    lower_content = content.lower()
    for topic, keywords in KEYWORDS['topics'].items():
        if _mentions(lower_content, keywords):
            return topic
    return None


def extract_issue_from_query(query: str) -> Optional[str]:
    for pattern in ISSUE_PATTERNS:
        match = pattern.search(query)
        if match:
            return match.group(1).strip()

    lower_query = query.lower()
    if "problem" in lower_query or "समस्या" in lower_query:
        return query[:50] + ("..." if len(query) > 50 else "")

    return None


def analyze_query_with_context(
    query: str,
    language: str,
    session: ConversationSession,
    now: Optional[datetime] = None
) -> QueryContext:
    """Classify a question using the question itself and the recent conversation."""
    lower_query = query.lower()
    recent_messages = session.messages[-RECENT_MESSAGE_WINDOW:]

    is_follow_up = (
        _mentions(lower_query, KEYWORDS['follow_up_indicators'])
        or len(recent_messages) > 2
    )

    previous_topics = [
        topic for topic in (
            extract_topic_from_message(msg.content)
            for msg in recent_messages if msg.role == "user"
        )
        if topic
    ]

    query_type = "general"
    for candidate, keywords in KEYWORDS['query_types'].items():
        if _mentions(lower_query, keywords):
            query_type = candidate
            break
    else:
        if is_follow_up:
            query_type = "follow_up"

    has_recent_critical_alerts = any(
        reading.status == "critical"
        for msg in recent_messages
        if msg.metadata and msg.metadata.sensor_data
        for reading in msg.metadata.sensor_data
    )

    if has_recent_critical_alerts or _mentions(lower_query, KEYWORDS['critical_terms']):
        urgency = "critical"
    elif _mentions(lower_query, KEYWORDS['problem_terms']):
        urgency = "high"
    else:
        urgency = "medium"

    return QueryContext(
        type=query_type,
        urgency=urgency,
        language=language,
        season=get_current_season(now),
        time_context=get_time_context(now),
        conversation_context=ConversationContext(
            is_follow_up=is_follow_up,
            previous_topics=previous_topics,
            unresolved_issues=list(session.context.current_issues),
            farmer_profile=FarmerProfile(
                experience=session.context.farmer_experience or "intermediate",
                crop_type=session.context.crop_type,
                farm_size=session.context.farm_size,
            ),
        ),
    )


def generate_conversation_title(query: str) -> str:
    words = query.split(" ")
    return " ".join(words[:TITLE_WORDS]) + ("..." if len(words) > TITLE_WORDS else "")


def update_session_context(session: ConversationSession, query: str, response: ParsedResponse) -> None:
    """Record crop, farm size, issues and recommendations learned from one exchange."""
    lower_query = query.lower()
    context = session.context

    for keyword, crop in KEYWORDS['crops'].items():
        if keyword in lower_query:
            context.crop_type = crop
            break

    for keyword, size in KEYWORDS['farm_sizes'].items():
        if keyword in lower_query:
            context.farm_size = size
            break

    if _mentions(lower_query, KEYWORDS['issue_terms']):
        issue = extract_issue_from_query(query)
        if issue and issue not in context.current_issues:
            context.current_issues.append(issue)

    if response.recommendations:
        for recommendation in response.recommendations.immediate + response.recommendations.short_term:
            if recommendation and recommendation not in context.previous_recommendations:
                context.previous_recommendations.append(recommendation)
        context.previous_recommendations = context.previous_recommendations[-MAX_PREVIOUS_RECOMMENDATIONS:]

    if session.title == NEW_CONVERSATION_TITLE and len(session.messages) > 2:
        session.title = generate_conversation_title(query)

    context.follow_up_needed = bool(response.follow_up_questions)
    session.updated_at = utcnow()
