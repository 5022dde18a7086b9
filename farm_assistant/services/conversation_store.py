"""
Persistence of conversations, messages and AI query logs.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncEngine

from farm_assistant.services.db_operations import (
    ai_log, as_utc, conversation_messages, conversations, get_engine,
    row_to_dict, upsert_rows
)

logger = logging.getLogger(__name__)


def _normalize_times(row: Dict[str, Any], *names: str) -> Dict[str, Any]:
    for name in names:
        if name in row:
            row[name] = as_utc(row[name])
    return row


class ConversationStore:
    """Reads and writes conversation rows through a SQLAlchemy async engine."""

    def __init__(self, engine: Optional[AsyncEngine] = None):
        self._engine = engine

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = get_engine()
        return self._engine

    async def get_conversation(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        query = sa.select(conversations).where(conversations.c.id == conversation_id)
        async with self.engine.connect() as conn:
            row = (await conn.execute(query)).first()
        if row is None:
            return None
        return _normalize_times(row_to_dict(row), "created_at", "updated_at")

    async def get_messages(self, conversation_id: str) -> List[Dict[str, Any]]:
        query = (
            sa.select(conversation_messages)
            .where(conversation_messages.c.conversation_id == conversation_id)
            .order_by(conversation_messages.c.timestamp.asc())
        )
        async with self.engine.connect() as conn:
            result = await conn.execute(query)
            return [_normalize_times(row_to_dict(row), "timestamp") for row in result]

    async def save_conversation(
        self,
        conversation: Dict[str, Any],
        messages: Sequence[Dict[str, Any]]
    ) -> None:
        """Upsert the conversation row and the given message rows in one transaction."""
        async with self.engine.begin() as conn:
            await upsert_rows(conn, conversations, [conversation])
            await upsert_rows(conn, conversation_messages, list(messages))

    async def list_conversations(
        self,
        user_id: Optional[str] = None,
        limit: int = 20
    ) -> List[Dict[str, Any]]:
        query = sa.select(conversations).order_by(conversations.c.updated_at.desc()).limit(limit)
        if user_id:
            query = query.where(conversations.c.user_id == user_id)
        async with self.engine.connect() as conn:
            result = await conn.execute(query)
            return [_normalize_times(row_to_dict(row), "created_at", "updated_at") for row in result]

    async def search_conversations(
        self,
        search_text: str,
        user_id: Optional[str] = None,
        limit: int = 10
    ) -> List[Dict[str, Any]]:
        pattern = f"%{search_text}%"
        query = (
            sa.select(conversations)
            .where(sa.or_(
                conversations.c.title.ilike(pattern),
                conversations.c.context["crop_type"].as_string().ilike(pattern),
            ))
            .order_by(conversations.c.updated_at.desc())
            .limit(limit)
        )
        if user_id:
            query = query.where(conversations.c.user_id == user_id)
        async with self.engine.connect() as conn:
            result = await conn.execute(query)
            return [_normalize_times(row_to_dict(row), "created_at", "updated_at") for row in result]

    async def delete_conversation(self, conversation_id: str) -> int:
        """Delete messages first, then the conversation. Returns conversations removed."""
        async with self.engine.begin() as conn:
            await conn.execute(
                sa.delete(conversation_messages)
                .where(conversation_messages.c.conversation_id == conversation_id)
            )
            result = await conn.execute(
                sa.delete(conversations).where(conversations.c.id == conversation_id)
            )
            return result.rowcount

    async def update_title(self, conversation_id: str, title: str, updated_at) -> int:
        async with self.engine.begin() as conn:
            result = await conn.execute(
                sa.update(conversations)
                .where(conversations.c.id == conversation_id)
                .values(title=title, updated_at=updated_at)
            )
            return result.rowcount

    async def insert_ai_log(self, entry: Dict[str, Any]) -> None:
        async with self.engine.begin() as conn:
            await conn.execute(sa.insert(ai_log).values(**entry))

    async def recent_logs(self, limit: int = 100) -> List[Dict[str, Any]]:
        query = (
            sa.select(
                ai_log.c.response_time, ai_log.c.created_at,
                ai_log.c.status, ai_log.c.conversation_id
            )
            .order_by(ai_log.c.created_at.desc())
            .limit(limit)
        )
        async with self.engine.connect() as conn:
            result = await conn.execute(query)
            return [_normalize_times(row_to_dict(row), "created_at") for row in result]

    async def conversation_activity(self) -> List[Dict[str, Any]]:
        query = (
            sa.select(conversations.c.id, conversations.c.created_at, conversations.c.updated_at)
            .order_by(conversations.c.updated_at.desc())
        )
        async with self.engine.connect() as conn:
            result = await conn.execute(query)
            return [_normalize_times(row_to_dict(row), "created_at", "updated_at") for row in result]

    async def count_messages(self, conversation_id: str) -> int:
        query = (
            sa.select(sa.func.count())
            .select_from(conversation_messages)
            .where(conversation_messages.c.conversation_id == conversation_id)
        )
        async with self.engine.connect() as conn:
            return (await conn.execute(query)).scalar_one()
