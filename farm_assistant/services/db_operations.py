"""
Database operations for Farm Assistant.

This module provides:
1. Table definitions for conversations, messages, AI logs, sensor readings
   and manual entries
2. Engine creation and schema setup
3. Dialect-aware upserts and row mapping
4. Exporting result sets to CSV
"""
import os
import csv
import uuid
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from farm_assistant.config import DATABASE_URL, STATIC_DIR

logger = logging.getLogger(__name__)

metadata = sa.MetaData()

conversations = sa.Table(
    "conversations", metadata,
    sa.Column("id", sa.String(64), primary_key=True),
    sa.Column("title", sa.Text, nullable=False),
    sa.Column("context", sa.JSON, nullable=False, default=dict),
    sa.Column("user_id", sa.String(64), nullable=True, index=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, index=True),
)

conversation_messages = sa.Table(
    "conversation_messages", metadata,
    sa.Column("id", sa.String(128), primary_key=True),
    sa.Column("conversation_id", sa.String(64), nullable=False, index=True),
    sa.Column("role", sa.String(16), nullable=False),
    sa.Column("content", sa.Text, nullable=False),
    sa.Column("metadata", sa.JSON, nullable=True),
    sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
)

ai_log = sa.Table(
    "ai_log", metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("query", sa.Text, nullable=False),
    sa.Column("response", sa.Text, nullable=True),
    sa.Column("confidence", sa.Float, nullable=True),
    sa.Column("response_time", sa.Integer, nullable=True),
    sa.Column("language", sa.String(32), nullable=True),
    sa.Column("sources", sa.JSON, nullable=True),
    sa.Column("intelligence_level", sa.String(32), nullable=True),
    sa.Column("status", sa.String(16), nullable=False),
    sa.Column("model_used", sa.String(128), nullable=True),
    sa.Column("user_feedback", sa.Text, nullable=True),
    sa.Column("conversation_id", sa.String(64), nullable=True, index=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, index=True),
)

sensor_data = sa.Table(
    "sensor_data", metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("sensor_id", sa.String(64), nullable=True),
    sa.Column("sensor_type", sa.String(64), nullable=False, index=True),
    sa.Column("sensor_location", sa.String(128), nullable=True, index=True),
    sa.Column("value", sa.Float, nullable=False),
    sa.Column("unit", sa.String(32), nullable=True),
    sa.Column("latitude", sa.Float, nullable=True),
    sa.Column("longitude", sa.Float, nullable=True),
    sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, index=True),
)

manual_entries = sa.Table(
    "manual_entries", metadata,
    sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
    sa.Column("entry_type", sa.String(32), nullable=False, index=True),
    sa.Column("title", sa.Text, nullable=False),
    sa.Column("description", sa.Text, nullable=True),
    sa.Column("location", sa.Text, nullable=False),
    sa.Column("data", sa.JSON, nullable=False, default=dict),
    sa.Column("user_id", sa.String(64), nullable=True),
    sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, index=True),
)

_engine: Optional[AsyncEngine] = None


def get_engine() -> AsyncEngine:
    """Return the process-wide engine, creating it on first use."""
    global _engine
    if _engine is None:
        _engine = create_async_engine(DATABASE_URL)
    return _engine


async def create_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def row_to_dict(row: Any) -> Dict[str, Any]:
    """Convert any type of row to dict."""
    if isinstance(row, dict):
        return row
    if hasattr(row, '_mapping'):  # SQLAlchemy Row
        return dict(row._mapping)
    if hasattr(row, '_fields'):  # namedtuple
        return row._asdict()
    # Fallback: use index as key
    return {str(i): v for i, v in enumerate(row)}


async def upsert_rows(
    conn: AsyncConnection,
    table: sa.Table,
    rows: Sequence[Dict[str, Any]],
    key: str = "id"
) -> None:
    """Insert rows, overwriting every non-key column of existing ones."""
    if not rows:
        return
    dialect = conn.dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(table).values(list(rows))
    elif dialect == "sqlite":
        stmt = sqlite.insert(table).values(list(rows))
    else:
        raise ValueError(f"Upsert is not supported for dialect: {dialect}")
    updates = {
        name: stmt.excluded[name]
        for name in rows[0].keys()
        if name != key
    }
    await conn.execute(stmt.on_conflict_do_update(index_elements=[key], set_=updates))


def export_rows_to_csv(rows: List[Dict[str, Any]], prefix: str = "") -> Dict[str, Any]:
    """
    Write rows to a CSV file in the static directory.

    Args:
        rows: Result rows; the first row's keys become the header
        prefix: Optional filename prefix

    Returns:
        Dict with download URL and row count
    """
    os.makedirs(STATIC_DIR, exist_ok=True)
    filename = f"{prefix}{uuid.uuid4()}.csv"
    filepath = os.path.join(STATIC_DIR, filename)

    with open(filepath, 'w', newline='', encoding='utf-8') as f:
        if rows:
            writer = csv.DictWriter(f, fieldnames=list(rows[0].keys()))
            writer.writeheader()
            writer.writerows(rows)
        else:
            writer = csv.writer(f)
            writer.writerow(["No results"])

    logger.info("[export_rows_to_csv] wrote %d rows to %s", len(rows), filepath)
    return {
        "download_url": f"/static/{filename}",
        "row_count": len(rows)
    }
