"""WiseOwl conversation API client."""

from .client import (
    WiseOwlClient,
    build_headers,
    close_http_client,
    encode_auth_token,
    get_http_client,
)

__all__ = [
    "WiseOwlClient",
    "build_headers",
    "close_http_client",
    "encode_auth_token",
    "get_http_client",
]
