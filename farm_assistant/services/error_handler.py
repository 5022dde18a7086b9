"""
Error handling utilities for Farm Assistant.

This module provides functionality for:
1. Classifying failures of the assistant pipeline
2. Tracking error statistics
3. Generating user-friendly (English/Hindi) error messages
"""
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List

import httpx

from farm_assistant.services.llm_provider import LLMResponseError
from farm_assistant.services.weather_service import WeatherServiceError

# Replies slower than this are reported as timeouts to the farmer
SLOW_RESPONSE_MS = 25000
MAX_RECENT_ERRORS = 100

ERROR_MESSAGES = {
    "en": {
        "timeout": "⚠️ Sorry, response took too long (over 25 seconds). Please try again.",
        "default": "⚠️ Sorry, technical issue occurred. Please try again.",
    },
    "hi": {
        "timeout": "⚠️ माफ करें, जवाब देने में बहुत समय लग गया (25 सेकंड से अधिक)। कृपया फिर कोशिश करें।",
        "default": "⚠️ माफ करें, तकनीकी समस्या हो रही है। कृपया फिर कोशिश करें।",
    },
}


class ErrorHandler:
    def __init__(self):
        self.error_stats = defaultdict(int)
        self.recent_errors: List[Dict[str, Any]] = []

    def classify_error(self, error: Exception) -> str:
        """Map an exception raised by the pipeline to an error type."""
        if isinstance(error, (httpx.TimeoutException, TimeoutError)):
            return "timeout"
        if isinstance(error, LLMResponseError):
            return "llm_empty_response"
        if isinstance(error, WeatherServiceError):
            return "weather_unavailable"
        if isinstance(error, RuntimeError) and "LLM" in str(error):
            return "llm_not_configured"
        return "internal_error"

    def track_error(self, error_type: str, query: str = "", details: str = "") -> None:
        """Track error information"""
        error_info = {
            'error_type': error_type,
            'query': query,
            'details': details,
            'timestamp': datetime.now(timezone.utc).isoformat()
        }
        self.error_stats[error_type] += 1
        self.recent_errors.append(error_info)
        # Only keep the latest error records
        if len(self.recent_errors) > MAX_RECENT_ERRORS:
            self.recent_errors.pop(0)

    def handle(self, error: Exception, query: str = "") -> str:
        """Classify and track an error; returns its type."""
        error_type = self.classify_error(error)
        self.track_error(error_type, query, f"{type(error).__name__}: {str(error)}")
        return error_type

    def get_error_stats(self) -> Dict[str, Any]:
        """Get error statistics"""
        return {
            'total_errors': sum(self.error_stats.values()),
            'error_types': dict(self.error_stats),
            'recent_errors': self.recent_errors[-10:] if self.recent_errors else []
        }

    def get_user_friendly_error(self, error_type: str, language: str = "en", response_time: float = 0) -> str:
        """Generate user-friendly error message"""
        messages = ERROR_MESSAGES["hi" if language == "hi" else "en"]
        if error_type == "timeout" or response_time > SLOW_RESPONSE_MS:
            return messages["timeout"]
        return messages["default"]


# Global error handler instance
error_handler = ErrorHandler()
