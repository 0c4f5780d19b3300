import asyncio
import copy
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol
from loguru import logger
from bulkdeals.core.exceptions import RecordNotFoundError

BATCHES_TABLE = "bulk_deal_batches"
GENERATED_ASSETS_TABLE = "generated_assets"
PRODUCTS_TABLE = "products"
AI_TASKS_TABLE = "ai_tasks"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RecordStore(Protocol):
    """Tenant-scoped record persistence consumed by the pipeline."""

    async def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]: ...

    async def get_by_id(self, table: str, record_id: str, merchant_id: Optional[str] = None) -> Optional[Dict[str, Any]]: ...

    async def update(self, table: str, record_id: str, fields: Dict[str, Any], merchant_id: Optional[str] = None) -> Dict[str, Any]: ...

    async def update_where(self, table: str, match: Dict[str, Any], fields: Dict[str, Any]) -> int: ...

    async def select(
        self,
        table: str,
        match: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]: ...

    async def count(self, table: str, match: Optional[Dict[str, Any]] = None) -> int: ...


def _matches(record: Dict[str, Any], match: Dict[str, Any]) -> bool:
    for key, expected in match.items():
        value = record.get(key)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


class InMemoryStore:
    """
    Process-local RecordStore.

    Records are deep-copied on the way in and out so callers never hold a
    reference to stored state. Nothing survives a restart.
    """

    def __init__(self):
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self._lock = asyncio.Lock()

    async def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        async with self._lock:
            row = copy.deepcopy(record)
            row.setdefault("id", str(uuid.uuid4()))
            row.setdefault("created_at", utc_now())
            self._tables[table][row["id"]] = row
            logger.debug(f"Inserted {table}/{row['id']}")
            return copy.deepcopy(row)

    async def get_by_id(self, table: str, record_id: str, merchant_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        async with self._lock:
            row = self._tables[table].get(record_id)
            if row is None:
                return None
            if merchant_id is not None and row.get("merchant_id") != merchant_id:
                return None
            return copy.deepcopy(row)

    async def update(self, table: str, record_id: str, fields: Dict[str, Any], merchant_id: Optional[str] = None) -> Dict[str, Any]:
        async with self._lock:
            row = self._tables[table].get(record_id)
            if row is None or (merchant_id is not None and row.get("merchant_id") != merchant_id):
                raise RecordNotFoundError(table, record_id)
            row.update(copy.deepcopy(fields))
            return copy.deepcopy(row)

    async def update_where(self, table: str, match: Dict[str, Any], fields: Dict[str, Any]) -> int:
        async with self._lock:
            updated = 0
            for row in self._tables[table].values():
                if _matches(row, match):
                    row.update(copy.deepcopy(fields))
                    updated += 1
            logger.debug(f"Updated {updated} row(s) in {table}")
            return updated

    async def select(
        self,
        table: str,
        match: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        async with self._lock:
            rows = [row for row in self._tables[table].values() if _matches(row, match or {})]
            if order_by:
                rows.sort(key=lambda r: (r.get(order_by) is None, r.get(order_by)), reverse=descending)
            if limit is not None:
                rows = rows[:limit]
            return copy.deepcopy(rows)

    async def count(self, table: str, match: Optional[Dict[str, Any]] = None) -> int:
        async with self._lock:
            return sum(1 for row in self._tables[table].values() if _matches(row, match or {}))
