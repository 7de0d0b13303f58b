"""CRM record store for owlbridge tracking records."""

from __future__ import annotations

from typing import Optional

from ..config import OwlBridgeConfig, load_config
from .adapter import RecordLocks, RecordStoreAdapter
from .connector import CrmConnector
from .inmemory import InMemoryConnector
from .salesforce import SalesforceConnector


def get_connector(
    session_id: Optional[str] = None, config: Optional[OwlBridgeConfig] = None
) -> CrmConnector:
    """Factory function to obtain a CRM connector.

    A Salesforce connector bound to ``session_id`` is returned when a session
    token is given; otherwise an in-memory connector.
    """

    config = config or load_config()
    if not session_id:
        return InMemoryConnector()
    return SalesforceConnector(
        session_id, config=config.salesforce, retry=config.retry
    )


__all__ = [
    "CrmConnector",
    "InMemoryConnector",
    "RecordLocks",
    "RecordStoreAdapter",
    "SalesforceConnector",
    "get_connector",
]
