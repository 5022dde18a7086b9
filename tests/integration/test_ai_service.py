"""
Integration tests for conversation processing on a SQLite database.

The LLM is mocked; sessions, logs and sensor readings go through the real
storage layer.
"""
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from farm_assistant.schemas.conversation import utcnow
from farm_assistant.schemas.farm import SensorReading, WeatherData
from farm_assistant.services.ai_service import AiService, LIVE_SOURCES
from farm_assistant.services.conversation_store import ConversationStore
from farm_assistant.services.llm_provider import LLMResponseError

FIRST_QUERY = "How much water does my wheat need?"


def patch_llm(reply):
    return patch("farm_assistant.services.ai_service.llm_complete", new_callable=AsyncMock, return_value=reply)


async def test_process_query_answers_and_persists(ai, sample_reply):
    with patch_llm(sample_reply) as mock_llm:
        response = await ai.process_query(FIRST_QUERY, user_id="farmer-1")

    assert response.conversation_id.startswith("conv_")
    assert response.advice == sample_reply
    assert response.confidence == 0.9
    assert response.intelligence_level == "advanced"
    assert response.model_used == "gpt-4o"
    assert response.sources == ["gpt-4o"] + LIVE_SOURCES
    assert response.recommendations.immediate[0] == "Check soil moisture at 10 cm depth"
    assert response.follow_up_questions == ["How many acres are under wheat?"]
    assert response.response_time >= 0

    messages, provider = mock_llm.await_args.args
    assert provider == "openai"
    assert messages[0]["role"] == "system"
    assert "Query Type: irrigation" in messages[0]["content"]
    assert messages[1] == {"role": "user", "content": FIRST_QUERY}

    session = ai.conversation_cache[response.conversation_id]
    assert [msg.role for msg in session.messages] == ["system", "user", "assistant"]
    assert session.title == "How much water does..."
    assert session.context.crop_type == "wheat"
    assert session.user_id == "farmer-1"

    ai.clear_cache()
    history = await ai.get_conversation_history(response.conversation_id)
    assert [(msg.role, msg.content) for msg in history] == [
        ("user", FIRST_QUERY),
        ("assistant", sample_reply),
    ]
    assert history[0].id == f"{response.conversation_id}_{int(history[0].timestamp.timestamp() * 1000)}_user"
    assert history[0].metadata.query_type == "irrigation"

    logs = await ai.store.recent_logs()
    assert [log["status"] for log in logs] == ["success"]


async def test_follow_up_uses_stored_history(ai, sample_reply):
    with patch_llm(sample_reply):
        first = await ai.process_query(FIRST_QUERY)
    ai.clear_cache()

    with patch_llm(sample_reply) as mock_llm:
        second = await ai.process_query("What about fertilizer?", conversation_id=first.conversation_id)

    assert second.conversation_id == first.conversation_id
    prompt = mock_llm.await_args.args[0][0]["content"]
    assert "Query Type: nutrition" in prompt
    assert "Is Follow-up: Yes" in prompt
    assert f"FARMER: {FIRST_QUERY}" in prompt
    assert "Crop: wheat" in prompt
    assert "PREVIOUS RECOMMENDATIONS" in prompt
    assert await ai.store.count_messages(first.conversation_id) == 4


async def test_unknown_conversation_starts_a_new_one(ai, sample_reply):
    with patch_llm(sample_reply):
        response = await ai.process_query("Hello", conversation_id="conv_missing")

    assert response.conversation_id != "conv_missing"
    assert await ai.get_conversation_history("conv_missing") == []


async def test_llm_failure_is_logged_and_raised(ai):
    session = await ai.create_new_conversation()

    with patch("farm_assistant.services.ai_service.llm_complete",
               new_callable=AsyncMock, side_effect=LLMResponseError("empty")):
        with pytest.raises(LLMResponseError):
            await ai.process_query("Hello", conversation_id=session.id)

    assert [msg.role for msg in session.messages] == ["system"]
    logs = await ai.store.recent_logs()
    assert [log["status"] for log in logs] == ["error"]
    assert logs[0]["conversation_id"] == session.id


async def test_sensor_readings_reach_the_prompt(ai, sensor_service, sample_reply):
    await sensor_service.add_reading(SensorReading(
        sensor_id="S1", sensor_type="soil_moisture", sensor_location="North field",
        value=20, unit="%", latitude=30.9, longitude=75.85,
    ))

    farm_data = await ai.get_farm_data()
    assert [loc.name for loc in farm_data.locations] == ["Sensor S1"]
    assert farm_data.weather_data_map == {}
    assert [alert.sensor_type for alert in farm_data.critical_alerts] == ["soil_moisture"]

    with patch_llm(sample_reply) as mock_llm:
        response = await ai.process_query("How are my fields?")

    prompt = mock_llm.await_args.args[0][0]["content"]
    assert "CRITICAL: soil_moisture showing 20.0% - requires immediate attention" in prompt
    assert "Urgency Level: medium" in prompt

    session = ai.conversation_cache[response.conversation_id]
    assert session.messages[1].metadata.sensor_data[0].status == "critical"


async def test_farm_data_defaults_to_delhi(ai):
    farm_data = await ai.get_farm_data()

    assert farm_data.sensor_data == []
    assert [(loc.name, loc.location_key) for loc in farm_data.locations] == [
        ("Delhi, India", "28.6139,77.2090")
    ]


async def test_weather_is_fetched_for_every_location(db_engine):
    weather_service = MagicMock(enabled=True)
    weather_service.get_current_weather = AsyncMock(
        return_value=WeatherData(temperature=30, humidity=55, wind_speed=7.2, pressure=1009)
    )
    sensor_service = MagicMock()
    sensor_service.get_latest_readings = AsyncMock(return_value=[])
    ai = AiService(ConversationStore(db_engine), sensor_service, weather_service)

    farm_data = await ai.get_farm_data()

    assert list(farm_data.weather_data_map) == ["28.6139,77.2090"]
    weather_service.get_current_weather.assert_awaited_once_with(28.6139, 77.209)
    sensor_service.get_latest_readings.assert_awaited_once_with(limit=10)


async def test_stream_query_yields_chunks_then_response(ai):
    async def fake_stream(messages, provider=None):
        for part in ["🌱 **Main Advice**: Water early.\n", "⚡ **Immediate Actions**:\n", "- Open drip lines"]:
            yield part

    with patch("farm_assistant.services.ai_service.llm_stream", fake_stream):
        events = [event async for event in ai.stream_query("When should I water?")]

    assert [event.type for event in events] == ["chunk", "chunk", "chunk", "done"]
    response = events[-1].response
    assert response.advice == "".join(event.content for event in events[:-1])
    assert response.recommendations.immediate == ["Open drip lines"]
    assert await ai.store.count_messages(response.conversation_id) == 2


async def test_stream_query_reports_errors(ai):
    async def failing_stream(messages, provider=None):
        raise LLMResponseError("empty stream")
        yield  # pragma: no cover

    with patch("farm_assistant.services.ai_service.llm_stream", failing_stream):
        events = [event async for event in ai.stream_query("When should I water?", language="hi")]

    assert [event.type for event in events] == ["error"]
    assert "माफ करें" in events[0].content
    logs = await ai.store.recent_logs()
    assert [log["status"] for log in logs] == ["error"]


async def test_conversation_management(ai, sample_reply):
    with patch_llm(sample_reply):
        first = await ai.process_query("I have a problem with aphids on my wheat", user_id="farmer-1")
        await ai.process_query("Best time to sow rice?", user_id="farmer-2")

    mine = await ai.get_user_conversations("farmer-1")
    assert [conv.id for conv in mine] == [first.conversation_id]
    assert mine[0].messages == []
    assert len(await ai.get_user_conversations()) == 2

    found = await ai.search_conversations("farmer-1", "WHEAT")
    assert [conv.id for conv in found] == [first.conversation_id]
    assert await ai.search_conversations("farmer-2", "wheat") == []

    assert await ai.update_conversation_title(first.conversation_id, "Aphid control") is True
    assert ai.conversation_cache[first.conversation_id].title == "Aphid control"
    assert await ai.update_conversation_title("conv_missing", "Nothing") is False

    insights = await ai.get_conversation_insights(first.conversation_id)
    assert insights.total_messages == 3
    assert insights.issues == ["aphids on my wheat"]
    assert insights.recommendations[0] == "Check soil moisture at 10 cm depth"
    assert insights.duration == 0
    assert await ai.get_conversation_insights("conv_missing") is None

    assert await ai.delete_conversation(first.conversation_id) is True
    assert first.conversation_id not in ai.conversation_cache
    assert await ai.get_conversation_history(first.conversation_id) == []
    assert await ai.store.count_messages(first.conversation_id) == 0


async def test_location_and_sensor_advice_phrase_queries(ai, sample_reply):
    with patch_llm(sample_reply) as mock_llm:
        await ai.get_location_based_advice(28.6139, 77.209)
        location_query = mock_llm.await_args.args[0][1]["content"]
        await ai.get_sensor_based_recommendations("soil_ph", 5.2, "", language="hi")
        sensor_query = mock_llm.await_args.args[0][1]["content"]

    assert location_query == "Provide farming advice for location (28.6139, 77.2090)"
    assert sensor_query == "soil_ph सेंसर 5.2 दिखा रहा है। क्या करना चाहिए?"


async def test_performance_stats(ai, sample_reply):
    empty = await ai.get_performance_stats()
    assert empty.total_queries == 0
    assert empty.avg_response_time == 0.0
    assert empty.success_rate == 0.0
    assert empty.last_query_time is None

    with patch_llm(sample_reply):
        await ai.process_query(FIRST_QUERY)
    with patch("farm_assistant.services.ai_service.llm_complete",
               new_callable=AsyncMock, side_effect=LLMResponseError("empty")):
        with pytest.raises(LLMResponseError):
            await ai.process_query("Hello")

    stats = await ai.get_performance_stats()
    assert stats.total_queries == 2
    assert stats.success_rate == 0.5
    assert stats.last_query_time is not None
    assert stats.conversation_stats.total_conversations == 1
    assert stats.conversation_stats.avg_conversation_length == 2.0
    assert stats.conversation_stats.active_conversations == 1


async def test_cache_management(ai):
    fresh = await ai.create_new_conversation()
    stale = await ai.create_new_conversation("hi")
    stale.updated_at = utcnow() - timedelta(hours=2)

    assert ai.get_cache_size() == 2
    assert stale.messages[0].content.startswith("नमस्कार")
    assert ai.purge_cache_older_than(60) == 1
    assert list(ai.conversation_cache) == [fresh.id]

    ai.clear_cache()
    assert ai.get_cache_size() == 0
