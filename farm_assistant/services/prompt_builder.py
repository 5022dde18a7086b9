"""
System prompt construction for Farm Assistant.

The prompt merges the conversation so far, the farmer's profile and the live
sensor and weather telemetry, then fixes the sectioned answer format that
response_parser understands.
"""
from typing import List, Optional

from farm_assistant.schemas.conversation import ConversationSession, QueryContext
from farm_assistant.schemas.farm import FarmData, ProcessedSensorReading, WeatherData

MAX_CONTEXT_MESSAGES = 10
MAX_PROMPT_RECOMMENDATIONS = 3

WELCOME_MESSAGES = {
    "en": "Hello! I'm your agricultural assistant. I can help solve your farming problems and provide expert advice.",
    "hi": "नमस्कार! मैं आपका कृषि सहायक हूं। मैं आपकी खेती से जुड़ी समस्याओं का समाधान और सलाह दे सकता हूं।",
}

RESPONSE_FORMAT = """FORMAT YOUR RESPONSE AS:
🌱 **Main Advice**: [Your detailed recommendation]
⚡ **Immediate Actions**: [What to do right now]
📅 **Next Steps**: [What to plan for coming days/weeks]
🌾 **Long-term Planning**: [What to plan for the season or next crop cycle]
❓ **Follow-up Questions**: [Questions to help farmer better, if any]
🔗 **Related Topics**: [Other areas farmer might want to explore]"""


def is_hindi(language: str) -> bool:
    return language == "hi"


def welcome_message(language: str) -> str:
    return WELCOME_MESSAGES["hi" if is_hindi(language) else "en"]


def _coordinate(value: Optional[float]) -> str:
    return f"{value:.4f}" if value is not None else "unknown"


def format_sensor_reading(reading: ProcessedSensorReading) -> str:
    return (
        f"{reading.sensor_type}: {reading.value}{reading.unit or ''} "
        f"(Status: {reading.status}, Location: "
        f"{_coordinate(reading.latitude)}, {_coordinate(reading.longitude)})"
    )


def format_weather(name: str, weather: WeatherData) -> str:
    line = (
        f"Location {name}: Temperature {weather.temperature}°C, "
        f"Humidity {weather.humidity}%, Wind Speed {weather.wind_speed}km/h, "
        f"Pressure {weather.pressure}hPa"
    )
    if weather.rainfall:
        line += f", Rainfall {weather.rainfall}mm"
    return line


def _block(title: str, lines: List[str]) -> str:
    if not lines:
        return ""
    return f"\n\n{title}:\n" + "\n".join(lines)


def build_system_prompt(
    language: str,
    context: QueryContext,
    farm_data: FarmData,
    session: ConversationSession
) -> str:
    hindi = is_hindi(language)

    if hindi:
        persona = (
            f"आप एक भारतीय कृषि विशेषज्ञ हैं जो पूरी बातचीत का संदर्भ याद रखते हैं। "
            f"{context.season} के मौसम में {context.time_context} के समय के लिए व्यावहारिक और तकनीकी सलाह दें।"
        )
    else:
        persona = (
            "You are an Indian agricultural expert with perfect conversation memory. "
            f"Provide practical and technical advice for {context.season} season during {context.time_context}."
        )

    history: List[str] = []
    recent_messages = session.messages[-MAX_CONTEXT_MESSAGES:]
    if len(recent_messages) > 1:
        history = [
            f"{'FARMER' if msg.role == 'user' else 'EXPERT'}: {msg.content}"
            for msg in recent_messages
            if msg.role != "system"
        ]

    profile: List[str] = []
    session_context = session.context
    if session_context.farmer_experience:
        profile.append(f"Experience: {session_context.farmer_experience}")
    if session_context.crop_type:
        profile.append(f"Crop: {session_context.crop_type}")
    if session_context.farm_size:
        profile.append(f"Farm Size: {session_context.farm_size}")
    if session_context.farm_location:
        profile.append(f"Location: {session_context.farm_location.name}")

    sensors = [format_sensor_reading(reading) for reading in farm_data.sensor_data]

    names = {loc.location_key: loc.name for loc in farm_data.locations}
    weather = [
        format_weather(names.get(key) or key, data)
        for key, data in farm_data.weather_data_map.items()
    ]

    alerts = [
        f"CRITICAL: {alert.sensor_type} showing {alert.value}{alert.unit or ''} - requires immediate attention"
        for alert in farm_data.critical_alerts
    ]

    recommendations = session_context.previous_recommendations[-MAX_PROMPT_RECOMMENDATIONS:]

    is_follow_up = bool(context.conversation_context and context.conversation_context.is_follow_up)
    response_language = "Hindi" if hindi else "English"

    return f"""{persona}

Query Type: {context.type}
Urgency Level: {context.urgency}
Is Follow-up: {'Yes' if is_follow_up else 'No'}
Language: {response_language}{_block('CONVERSATION HISTORY', history)}{_block('FARMER PROFILE', profile)}{_block('CURRENT SENSOR READINGS', sensors)}{_block('CURRENT WEATHER CONDITIONS', weather)}{_block('CRITICAL ALERTS', alerts)}{_block('ONGOING ISSUES', session_context.current_issues)}{_block('PREVIOUS RECOMMENDATIONS', recommendations)}

INSTRUCTIONS:
- Remember and reference the conversation history when relevant
- If this is a follow-up question, connect your answer to previous discussions
- Provide detailed, actionable advice based on real-time data and conversation context
- Address critical alerts with highest priority
- Consider the farmer's experience level and provide appropriate detail
- Include specific recommendations with quantities, timing, and methods
- Suggest follow-up questions or next steps when appropriate
- Respond in {response_language} language
- Use emojis to make the advice more readable and engaging
- Structure your response clearly with sections when appropriate

{RESPONSE_FORMAT}"""
