"""Typed client for the WiseOwl conversation API."""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import Any, Optional

import httpx

from ..assembler import parse_run_payload
from ..config import PollConfig, RetryConfig, WiseOwlConfig
from ..constants import DEFAULT_PAGE_CONTEXT, INGRESS
from ..contracts import RunStatus
from ..errors import UpstreamError, ValidationError
from ..utils.retry import (
    Sleep,
    attempt_call,
    call_with_retry,
    classify_poll_failure,
    poll_until_done,
    upstream_error_from,
)

logger = logging.getLogger(__name__)

_shared_client: httpx.AsyncClient | None = None


def get_http_client(timeout: float = 30.0) -> httpx.AsyncClient:
    """Return the process-wide keep-alive client, creating it on first use."""
    global _shared_client
    if _shared_client is None or _shared_client.is_closed:
        _shared_client = httpx.AsyncClient(timeout=timeout)
    return _shared_client


def encode_auth_token(access_token: str) -> str:
    """Base64 of ``{"authToken": ..., "authTokenType": "SALESFORCE"}``."""
    raw = json.dumps(
        {"authToken": access_token, "authTokenType": INGRESS}, separators=(",", ":")
    )
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def build_headers(access_token: str) -> dict[str, str]:
    return {
        "x-twilio-e2-ingress": INGRESS,
        "x-twilio-e2-auth-token": encode_auth_token(access_token),
        "Content-Type": "application/json",
    }


class WiseOwlClient:
    """Create conversations, submit input and poll runs for one caller."""

    def __init__(
        self,
        access_token: str,
        is_prod: bool = True,
        config: Optional[WiseOwlConfig] = None,
        retry: Optional[RetryConfig] = None,
        poll: Optional[PollConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if not access_token:
            raise ValidationError("Missing access_token for WiseOwl API")
        self.config = config or WiseOwlConfig()
        self.retry = retry or RetryConfig()
        self.poll = poll or PollConfig()
        self.base_url = self.config.base_url(is_prod)
        self._headers = build_headers(access_token)
        self._http = http_client or get_http_client(self.config.timeout)
        self._sleep = sleep

    # ------------------------------------------------------------------
    async def _request(self, method: str, path: str, body: Any = None) -> Any:
        response = await self._http.request(
            method, f"{self.base_url}{path}", json=body, headers=self._headers
        )
        response.raise_for_status()
        return response.json()

    async def _call(self, description: str, method: str, path: str, body: Any = None) -> Any:
        return await call_with_retry(
            lambda: attempt_call(lambda: self._request(method, path, body)),
            self.retry,
            escalate=lambda failure: upstream_error_from(failure, description),
            sleep=self._sleep,
            description=description,
        )

    # ------------------------------------------------------------------
    async def create_conversation(self) -> str:
        data = await self._call(
            "create conversation",
            "POST",
            "/conversations",
            {"applicationId": self.config.application_id},
        )
        conversation = data.get("conversation") if isinstance(data, dict) else None
        conversation_id = conversation.get("id") if isinstance(conversation, dict) else None
        if not conversation_id:
            raise UpstreamError(
                "Failed to obtain conversationId from WiseOwl API", details=data
            )
        logger.info(f"Created WiseOwl conversation {conversation_id}")
        return conversation_id

    async def submit_input(
        self,
        conversation_id: str,
        input: str,
        page_context: str = DEFAULT_PAGE_CONTEXT,
    ) -> str:
        data = await self._call(
            "submit input",
            "PUT",
            f"/conversations/{conversation_id}",
            {
                "applicationId": self.config.application_id,
                "input": input,
                "streamMode": "polling",
                "systemContext": {"pageContext": page_context},
            },
        )
        run_id = data.get("runId") if isinstance(data, dict) else None
        if not run_id:
            raise UpstreamError("Failed to start conversation run", details=data)
        logger.info(f"Started run {run_id} on conversation {conversation_id}")
        return run_id

    async def poll_run(self, conversation_id: str, run_id: str) -> RunStatus:
        """Fetch the run once. No retry; the poll loop owns failure counting."""
        body = await self._request(
            "GET", f"/conversations/{conversation_id}/runs/{run_id}"
        )
        return parse_run_payload(body)

    async def wait_for_run(self, conversation_id: str, run_id: str) -> Any:
        """Poll until the run is done and return its terminal payload."""
        return await poll_until_done(
            lambda: attempt_call(
                lambda: self.poll_run(conversation_id, run_id),
                classify=classify_poll_failure,
            ),
            self.poll,
            sleep=self._sleep,
            description=f"poll run {run_id}",
        )


async def close_http_client() -> None:
    global _shared_client
    if _shared_client is not None:
        await _shared_client.aclose()
        _shared_client = None
