"""Error taxonomy shared by the HTTP layer, orchestrator and adapters."""

from __future__ import annotations

from typing import Any, Optional


class OwlBridgeError(Exception):
    """Base error carrying the HTTP status it maps to."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Any = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(OwlBridgeError):
    """Required input missing from the request. Never retried."""

    status_code = 400


class UpstreamError(OwlBridgeError):
    """WiseOwl returned no usable identifier or a non-success status."""

    status_code = 500


class StoreError(OwlBridgeError):
    """The CRM rejected a read or write."""

    status_code = 500


class TransientNetworkError(OwlBridgeError):
    """A failure worth retrying: no response at all or a 5xx status."""

    status_code = 503
