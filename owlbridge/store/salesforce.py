"""Salesforce implementation of the CRM connector."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

import requests
from simple_salesforce import Salesforce, format_soql
from simple_salesforce.exceptions import SalesforceError

from ..config import RetryConfig, SalesforceConfig
from ..errors import StoreError
from ..utils.retry import (
    Failure,
    Fatal,
    Retryable,
    Sleep,
    attempt_call,
    call_with_retry,
    is_retryable_status,
)
from .connector import CrmConnector

logger = logging.getLogger(__name__)


def classify_salesforce_failure(exc: BaseException) -> Failure:
    """Connection problems and 5xx responses are retryable."""
    if isinstance(exc, SalesforceError):
        if is_retryable_status(exc.status):
            return Retryable(exc, exc.status, exc.content)
        return Fatal(exc, exc.status, exc.content)
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return Retryable(exc)
    return Fatal(exc)


def store_error_from(failure: Failure, action: str) -> StoreError:
    return StoreError(f"Salesforce {action} failed: {failure.error}", details=failure.body)


def _strip_attributes(record: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in record.items() if k != "attributes"}


class SalesforceConnector(CrmConnector):
    """Talk to Salesforce through ``simple_salesforce``.

    The library is synchronous, so each call runs in a worker thread.
    """

    def __init__(
        self,
        session_id: str,
        config: Optional[SalesforceConfig] = None,
        retry: Optional[RetryConfig] = None,
        sleep: Sleep = asyncio.sleep,
        client: Optional[Salesforce] = None,
    ) -> None:
        self.config = config or SalesforceConfig()
        self.retry = retry or RetryConfig()
        self._sleep = sleep
        self._sf = client or Salesforce(
            instance_url=self.config.instance_url,
            session_id=session_id,
            version=self.config.api_version,
        )

    async def _run(self, action: str, fn: Callable[[], Any]) -> Any:
        return await call_with_retry(
            lambda: attempt_call(
                lambda: asyncio.to_thread(fn), classify=classify_salesforce_failure
            ),
            self.retry,
            escalate=lambda failure: store_error_from(failure, action),
            sleep=self._sleep,
            description=f"salesforce {action}",
        )

    # ------------------------------------------------------------------
    async def find(
        self, object_name: str, field: str, value: str, fields: list[str]
    ) -> list[dict[str, Any]]:
        soql = format_soql(
            f"SELECT Id, {', '.join(fields)} FROM {object_name} WHERE {field} = {{}} LIMIT 1",
            value,
        )
        result = await self._run("find", lambda: self._sf.query(soql))
        return [_strip_attributes(r) for r in result.get("records", [])]

    async def create(self, object_name: str, fields: dict[str, Any]) -> dict[str, Any]:
        sobject = getattr(self._sf, object_name)
        return await self._run("create", lambda: sobject.create(fields))

    async def update(
        self, object_name: str, record_id: str, fields: dict[str, Any]
    ) -> None:
        sobject = getattr(self._sf, object_name)
        await self._run("update", lambda: sobject.update(record_id, fields))

    async def retrieve(self, object_name: str, record_id: str) -> dict[str, Any] | None:
        sobject = getattr(self._sf, object_name)
        record = await self._run("retrieve", lambda: sobject.get(record_id))
        return _strip_attributes(record) if record else None

    async def query(self, soql: str) -> list[dict[str, Any]]:
        result = await self._run("query", lambda: self._sf.query_all(soql))
        return [_strip_attributes(r) for r in result.get("records", [])]
