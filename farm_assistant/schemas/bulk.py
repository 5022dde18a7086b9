"""
Schemas for bulk query evaluation.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel


class BulkTestCase(BaseModel):
    """One row of a bulk evaluation matrix."""
    case_id: str
    location: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    soil_ph: Optional[float] = None
    soil_moisture: Optional[float] = None
    nitrogen: Optional[float] = None
    phosphorus: Optional[float] = None
    potassium: Optional[float] = None
    crop_type: str
    question: Optional[str] = None
    language: str = "en"


class BulkResult(BaseModel):
    case_id: str
    status: Literal["success", "error"]
    query: str
    conversation_id: Optional[str] = None
    advice: Optional[str] = None
    immediate_count: int = 0
    short_term_count: int = 0
    long_term_count: int = 0
    follow_up_count: int = 0
    response_time: Optional[float] = None
    error: Optional[str] = None


class BulkReport(BaseModel):
    total: int
    succeeded: int
    failed: int
    results: List[BulkResult]
    download_url: Optional[str] = None
