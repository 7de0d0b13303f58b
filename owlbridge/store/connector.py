"""Narrow CRM capability used by the record store adapter."""

from __future__ import annotations

from typing import Any, Protocol


class CrmConnector(Protocol):
    """Protocol for CRM backends.

    Records are plain dicts keyed by field API name, with ``Id`` holding the
    record id.
    """

    async def find(
        self, object_name: str, field: str, value: str, fields: list[str]
    ) -> list[dict[str, Any]]:
        """Return records whose ``field`` equals ``value`` (at most one)."""

    async def create(self, object_name: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Create a record. Returns ``{"id", "success", "errors"}``."""

    async def update(
        self, object_name: str, record_id: str, fields: dict[str, Any]
    ) -> None:
        """Patch the given fields on a record."""

    async def retrieve(self, object_name: str, record_id: str) -> dict[str, Any] | None:
        """Fetch a record by id."""

    async def query(self, soql: str) -> list[dict[str, Any]]:
        """Run a read-only query and return all matching records."""
