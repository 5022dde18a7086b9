"""
Configuration for Farm Assistant.

Settings come from environment variables (optionally from a .env file);
static agronomy tables come from YAML files in the services directory.
"""
import os
import logging

import yaml
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

SERVICES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "services")

# Static directory for bulk evaluation reports
STATIC_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "static")

# Database connection
DB_USER = os.getenv("DB_USER", "postgres")
DB_PASSWORD = os.getenv("DB_PASSWORD", "postgres")
DB_HOST = os.getenv("DB_HOST", "db")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "farm_assistant")
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+asyncpg://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
)

# Identification headers sent to OpenRouter
SITE_URL = os.getenv("SITE_URL", "https://yourfarm.app")
SITE_NAME = os.getenv("SITE_NAME", "Smart Farm Assistant")

# Fallback farm location when no sensor reports coordinates
DEFAULT_LOCATION = {"lat": 28.6139, "lon": 77.2090, "name": "Delhi, India"}

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def configure_logging(level: str = LOG_LEVEL) -> None:
    """Configure root logging once for the service."""
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )


def get_weather_api_key() -> str:
    return os.getenv("WEATHER_API_KEY", "").strip()


def get_jwt_secret() -> str:
    return os.getenv("JWT_SECRET", "").strip()


def load_yaml_config(filename: str, required_key: str = None) -> dict:
    """Load a YAML configuration file from the services directory."""
    filepath = os.path.join(SERVICES_DIR, filename)
    try:
        with open(filepath, 'r', encoding='utf-8') as file:
            config = yaml.safe_load(file)
    except FileNotFoundError:
        raise ValueError(f"Configuration file not found: {filename}")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {filename}: {str(e)}")
    if config is None:
        raise ValueError(f"Empty configuration file: {filename}")
    if required_key and required_key not in config:
        raise ValueError(f"Missing required key '{required_key}' in {filename}")
    return config[required_key] if required_key else config
