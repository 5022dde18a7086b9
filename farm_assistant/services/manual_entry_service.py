"""
Manually entered field records for Farm Assistant.

Each entry type accepts a fixed set of data fields (see
manual_entry_fields.yaml); entries are validated against that table before
they are stored.
"""
import math
import logging
from typing import Any, Dict, List, Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncEngine

from farm_assistant.config import load_yaml_config
from farm_assistant.schemas.conversation import utcnow
from farm_assistant.schemas.farm import ManualEntry, ManualEntryUpdate
from farm_assistant.services.db_operations import as_utc, get_engine, manual_entries, row_to_dict

logger = logging.getLogger(__name__)

ENTRY_TYPE_FIELDS: Dict[str, List[Dict[str, Any]]] = load_yaml_config(
    'manual_entry_fields.yaml', 'entry_types'
)


class ManualEntryValidationError(ValueError):
    """Raised when an entry or its data payload is invalid."""


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _validate_field(field: Dict[str, Any], value: Any) -> Any:
    label = field['label']
    if field['type'] == 'number':
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ManualEntryValidationError(f"{label} must be a number")
        if not math.isfinite(number):
            raise ManualEntryValidationError(f"{label} must be a finite number")
        if 'min' in field and number < field['min']:
            raise ManualEntryValidationError(f"{label} must be at least {field['min']}")
        if 'max' in field and number > field['max']:
            raise ManualEntryValidationError(f"{label} must be at most {field['max']}")
        return number
    if field['type'] == 'select':
        if value not in field['options']:
            raise ManualEntryValidationError(
                f"{label} must be one of: {', '.join(field['options'])}"
            )
        return value
    return str(value)


def validate_entry_data(entry_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Check a data payload against its entry type and return the cleaned copy."""
    fields = ENTRY_TYPE_FIELDS.get(entry_type)
    if fields is None:
        raise ManualEntryValidationError(f"Unknown entry type: {entry_type}")

    known = {field['key']: field for field in fields}
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise ManualEntryValidationError(
            f"Unknown fields for {entry_type}: {', '.join(unknown)}"
        )

    cleaned = {}
    for key, field in known.items():
        value = data.get(key)
        if _is_blank(value):
            if field.get('required'):
                raise ManualEntryValidationError(f"{field['label']} is required")
            continue
        cleaned[key] = _validate_field(field, value)
    return cleaned


def validate_entry(entry: ManualEntry) -> ManualEntry:
    if _is_blank(entry.title):
        raise ManualEntryValidationError("Title is required")
    if _is_blank(entry.location):
        raise ManualEntryValidationError("Location is required")
    return entry.model_copy(update={
        "title": entry.title.strip(),
        "location": entry.location.strip(),
        "data": validate_entry_data(entry.entry_type, entry.data),
    })


def _entry_from_row(row) -> ManualEntry:
    data = row_to_dict(row)
    data["timestamp"] = as_utc(data.get("timestamp"))
    return ManualEntry(**data)


class ManualEntryService:
    def __init__(self, engine: Optional[AsyncEngine] = None):
        self._engine = engine

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = get_engine()
        return self._engine

    async def add_manual_entry(self, entry: ManualEntry) -> ManualEntry:
        entry = validate_entry(entry)
        values = entry.model_dump(exclude={"id"})
        values["timestamp"] = values.get("timestamp") or utcnow()
        async with self.engine.begin() as conn:
            result = await conn.execute(sa.insert(manual_entries).values(**values))
            new_id = result.inserted_primary_key[0]
        logger.info("[add_manual_entry] stored %s entry %s", entry.entry_type, new_id)
        return entry.model_copy(update={"id": new_id, "timestamp": values["timestamp"]})

    async def get_manual_entries(
        self,
        entry_type: Optional[str] = None,
        limit: int = 100
    ) -> List[ManualEntry]:
        query = sa.select(manual_entries).order_by(manual_entries.c.timestamp.desc()).limit(limit)
        if entry_type:
            query = query.where(manual_entries.c.entry_type == entry_type)
        async with self.engine.connect() as conn:
            result = await conn.execute(query)
            return [_entry_from_row(row) for row in result]

    async def get_manual_entry(self, entry_id: int) -> Optional[ManualEntry]:
        query = sa.select(manual_entries).where(manual_entries.c.id == entry_id)
        async with self.engine.connect() as conn:
            row = (await conn.execute(query)).first()
        return _entry_from_row(row) if row is not None else None

    async def update_manual_entry(self, entry_id: int, update: ManualEntryUpdate) -> Optional[ManualEntry]:
        """Apply a partial update; returns None when the entry does not exist."""
        current = await self.get_manual_entry(entry_id)
        if current is None:
            return None
        changes = update.model_dump(exclude_unset=True, exclude_none=True)
        merged = validate_entry(current.model_copy(update=changes))
        async with self.engine.begin() as conn:
            await conn.execute(
                sa.update(manual_entries)
                .where(manual_entries.c.id == entry_id)
                .values(
                    title=merged.title,
                    description=merged.description,
                    location=merged.location,
                    data=merged.data,
                )
            )
        return merged

    async def delete_manual_entry(self, entry_id: int) -> bool:
        async with self.engine.begin() as conn:
            result = await conn.execute(
                sa.delete(manual_entries).where(manual_entries.c.id == entry_id)
            )
        return result.rowcount > 0
