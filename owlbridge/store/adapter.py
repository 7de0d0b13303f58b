"""Tracking record lifecycle on top of a CRM connector."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional, Tuple

from ..assembler import append_history_item
from ..config import SalesforceConfig
from ..contracts import TrackingRecord
from ..errors import StoreError
from .connector import CrmConnector

logger = logging.getLogger(__name__)


class RecordLocks:
    """Per-record ``asyncio.Lock`` registry.

    A record's lock exists only while some task holds or waits on it, so the
    registry size is bounded by the number of in-flight appends.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, Tuple[asyncio.Lock, int]] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, record_id: str) -> AsyncIterator[None]:
        lock, users = self._locks.get(record_id, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[record_id] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[record_id]
            if users <= 1:
                del self._locks[record_id]
            else:
                self._locks[record_id] = (lock, users - 1)


class RecordStoreAdapter:
    """Find, create and patch tracking records keyed by parent record id.

    ``append_history`` is a read-modify-write of a single field. Two jobs
    appending to the same record at once can lose an update unless
    ``serialize_appends`` is enabled in the config, which guards each record
    with an ``asyncio.Lock``.
    """

    def __init__(
        self,
        connector: CrmConnector,
        config: Optional[SalesforceConfig] = None,
        locks: Optional[RecordLocks] = None,
    ) -> None:
        self._connector = connector
        self.config = config or SalesforceConfig()
        # shared across adapters so the guard holds process-wide
        self._locks = locks if locks is not None else RecordLocks()

    @property
    def _object(self) -> str:
        return self.config.object_name

    @property
    def _fields(self):
        return self.config.fields

    # ------------------------------------------------------------------
    async def find_tracking_record(self, external_key: str) -> TrackingRecord | None:
        """Look up the record for ``external_key``. Query failures yield ``None``."""
        f = self._fields
        try:
            rows = await self._connector.find(
                self._object,
                f.parent_record_id,
                external_key,
                [f.conversation_id],
            )
        except Exception as e:
            logger.error(f"Tracking record query failed for {external_key}: {e}")
            return None
        if not rows:
            return None
        row = rows[0]
        logger.info(
            f"Found tracking record {row['Id']} for {external_key} "
            f"(conversation={row.get(f.conversation_id)})"
        )
        return TrackingRecord(
            record_id=row["Id"],
            external_key=external_key,
            conversation_id=row.get(f.conversation_id) or None,
        )

    async def create_tracking_record(
        self, external_key: str, conversation_id: Optional[str] = None
    ) -> str:
        f = self._fields
        try:
            result = await self._connector.create(
                self._object,
                {
                    f.conversation_id: conversation_id,
                    f.parent_record_id: external_key,
                    f.done: False,
                },
            )
        except StoreError:
            raise
        except Exception as e:
            raise StoreError("Failed to create Salesforce record", details=str(e)) from e

        if not result or not result.get("success"):
            errors = (result or {}).get("errors") or []
            message = "Unknown error"
            if errors:
                first = errors[0]
                message = first.get("message", str(first)) if isinstance(first, dict) else str(first)
            raise StoreError("Failed to create Salesforce record", details=message)

        record_id = result["id"]
        logger.info(f"Created tracking record {record_id} for {external_key}")
        return record_id

    async def set_conversation_id(self, record_id: str, conversation_id: str) -> None:
        """Store the conversation id on an existing record. Best effort."""
        try:
            await self._connector.update(
                self._object, record_id, {self._fields.conversation_id: conversation_id}
            )
        except Exception as e:
            logger.error(f"Failed to update record {record_id} with conversation ID: {e}")

    async def mark_processing(self, record_id: str) -> None:
        """Reset the done flag and latest response. Best effort."""
        f = self._fields
        try:
            await self._connector.update(
                self._object, record_id, {f.done: False, f.latest_response: ""}
            )
        except Exception as e:
            logger.error(f"Failed to mark record {record_id} processing: {e}")

    async def get_tracking_record(self, record_id: str) -> TrackingRecord | None:
        f = self._fields
        row = await self._connector.retrieve(self._object, record_id)
        if row is None:
            return None
        return TrackingRecord(
            record_id=record_id,
            external_key=row.get(f.parent_record_id),
            conversation_id=row.get(f.conversation_id) or None,
            history=row.get(f.history) or "",
            done=bool(row.get(f.done)),
            latest_response=row.get(f.latest_response),
        )

    async def append_history(self, record_id: str, response_text: str) -> None:
        """Append ``response_text`` to the history and mark the record done."""
        if self.config.serialize_appends:
            async with self._locks.hold(record_id):
                await self._append_history(record_id, response_text)
        else:
            await self._append_history(record_id, response_text)

    async def _append_history(self, record_id: str, response_text: str) -> None:
        f = self._fields
        try:
            row = await self._connector.retrieve(self._object, record_id)
            current = (row or {}).get(f.history) or ""
            await self._connector.update(
                self._object,
                record_id,
                {
                    f.history: append_history_item(current, response_text),
                    f.done: True,
                    f.latest_response: response_text,
                },
            )
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(f"Failed to patch record {record_id}", details=str(e)) from e
        logger.info(f"Appended response to history of record {record_id}")
