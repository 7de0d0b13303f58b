"""In-memory CRM connector."""

from __future__ import annotations

import asyncio
import copy
import re
import uuid
from typing import Any, Dict

from .connector import CrmConnector

_FROM_RE = re.compile(r"\bFROM\s+(\w+)", re.IGNORECASE)


class InMemoryConnector(CrmConnector):
    """Store CRM records in local memory.

    Useful for tests or local runs without a Salesforce org. ``latency``
    adds an awaited delay to every operation so interleavings between
    concurrent jobs can be reproduced.
    """

    def __init__(self, latency: float = 0.0) -> None:
        self._objects: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.latency = latency
        self.calls: list[tuple[str, str]] = []

    async def _tick(self, operation: str, object_name: str) -> None:
        self.calls.append((operation, object_name))
        if self.latency:
            await asyncio.sleep(self.latency)

    def records(self, object_name: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(r) for r in self._objects.get(object_name, {}).values()]

    def seed(self, object_name: str, fields: dict[str, Any]) -> str:
        record_id = fields.get("Id") or uuid.uuid4().hex[:18]
        self._objects.setdefault(object_name, {})[record_id] = {**fields, "Id": record_id}
        return record_id

    # ------------------------------------------------------------------
    async def find(
        self, object_name: str, field: str, value: str, fields: list[str]
    ) -> list[dict[str, Any]]:
        await self._tick("find", object_name)
        for record in self._objects.get(object_name, {}).values():
            if record.get(field) == value:
                return [{k: record.get(k) for k in ["Id", *fields]}]
        return []

    async def create(self, object_name: str, fields: dict[str, Any]) -> dict[str, Any]:
        await self._tick("create", object_name)
        record_id = self.seed(object_name, dict(fields))
        return {"id": record_id, "success": True, "errors": []}

    async def update(
        self, object_name: str, record_id: str, fields: dict[str, Any]
    ) -> None:
        await self._tick("update", object_name)
        record = self._objects.get(object_name, {}).get(record_id)
        if record is None:
            raise KeyError(f"{object_name} record {record_id} not found")
        record.update(fields)

    async def retrieve(self, object_name: str, record_id: str) -> dict[str, Any] | None:
        await self._tick("retrieve", object_name)
        record = self._objects.get(object_name, {}).get(record_id)
        return copy.deepcopy(record) if record is not None else None

    async def query(self, soql: str) -> list[dict[str, Any]]:
        """Return every record of the queried object. WHERE clauses are ignored."""
        match = _FROM_RE.search(soql)
        object_name = match.group(1) if match else ""
        await self._tick("query", object_name)
        return self.records(object_name)
