"""
Test configuration and fixtures for Farm Assistant.

This module provides common test fixtures and configuration for both unit and integration tests.
Storage tests run against a throwaway SQLite database through aiosqlite.
"""
import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from farm_assistant.services.ai_service import AiService
from farm_assistant.services.conversation_store import ConversationStore
from farm_assistant.services.db_operations import create_tables
from farm_assistant.services.manual_entry_service import ManualEntryService
from farm_assistant.services.sensor_service import SensorService
from farm_assistant.services.weather_service import WeatherService

SAMPLE_REPLY = """🌱 **Main Advice**: Irrigate your wheat early in the morning.
⚡ **Immediate Actions**:
- Check soil moisture at 10 cm depth
- Open the drip lines for 30 minutes
📅 **Next Steps**:
1. Apply 20 kg/acre urea after irrigation
🌾 **Long-term Planning**: Plan a legume rotation for next season
❓ **Follow-up Questions**:
- How many acres are under wheat?
🔗 **Related Topics**:
- Drip irrigation
- Nitrogen management"""


@pytest.fixture(autouse=True)
def setup_test_environment(monkeypatch):
    """Set up test environment variables."""
    for var in ("OPEN_ROUTER_API_KEY", "ANTHROPIC_API_KEY", "MISTRAL_API_KEY",
                "DEEPSEEK_API_KEY", "LLM_MODEL", "WEATHER_API_KEY"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("LLM_PROVIDER", "openai")
    monkeypatch.setenv("OPENAI_API_KEY", "dummy_key_for_tests")
    monkeypatch.setenv("JWT_SECRET", "test_secret")


@pytest.fixture
def sample_reply():
    return SAMPLE_REPLY


@pytest.fixture
async def db_engine(tmp_path):
    """Create a database engine with all tables for testing."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'farm.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def sensor_service(db_engine):
    return SensorService(db_engine)


@pytest.fixture
def manual_entry_service(db_engine):
    return ManualEntryService(db_engine)


@pytest.fixture
def ai(db_engine, sensor_service):
    """AiService on the test database, with weather disabled."""
    return AiService(
        store=ConversationStore(db_engine),
        sensor_service=sensor_service,
        weather_service=WeatherService(api_key=""),
    )
