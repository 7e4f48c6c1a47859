"""
Streaming client contract.

A client owns configuration only: it builds the endpoint URL, dials the
websocket and hands the live TransportSession to a fresh Connection. Every
connect() is independent; clients hold no per-connection state and never
retry a failed dial.
"""

from __future__ import annotations

import urllib.parse
from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar

from config import ClientConfig
from constants import (
    API_KEY_HEADER,
    FORMAT_PCM_MESSAGEPACK,
    FORMAT_QUERY_PARAM,
)
from observability import logger
from observability.logger import log_event
from observability.metrics import timed
from session.connection import Connection
from session.transport import DialError, TransportSession


ConnectionT = TypeVar("ConnectionT", bound=Connection[Any])

_WEBSOCKET_SCHEMES = frozenset({"ws", "wss"})


def build_endpoint_url(
    base_url: str,
    path: str,
    extra_params: dict[str, str] | None = None,
) -> str:
    """
    Join the server base URL with an endpoint path and the query string.

    Query parameters already present on base_url are preserved; the wire
    format parameter is always forced to PcmMessagePack.

    Raises:
        ValueError if base_url is not a ws:// or wss:// URL.
    """
    parts = urllib.parse.urlsplit(base_url)
    if parts.scheme not in _WEBSOCKET_SCHEMES or not parts.netloc:
        raise ValueError(f"Expected a ws:// or wss:// server URL, got {base_url!r}")

    params = dict(urllib.parse.parse_qsl(parts.query))
    params.update(extra_params or {})
    params[FORMAT_QUERY_PARAM] = FORMAT_PCM_MESSAGEPACK

    return urllib.parse.urlunsplit((
        parts.scheme,
        parts.netloc,
        parts.path.rstrip("/") + path,
        urllib.parse.urlencode(sorted(params.items())),
        "",
    ))


class StreamingClient(ABC, Generic[ConnectionT]):
    """
    Base class for the TTS / STT clients.

    Subclasses provide the endpoint path, any extra query parameters and
    the Connection type to build.
    """

    endpoint: str = "unknown"
    path: str = "/"

    def __init__(self, config: ClientConfig | None = None) -> None:
        self._config = config or ClientConfig()
        logger.set_enabled(self._config.enable_json_logs)

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def url(self) -> str:
        return build_endpoint_url(self._config.url, self.path, self._query_params())

    def _headers(self) -> dict[str, str]:
        return {API_KEY_HEADER: self._config.api_key}

    def _query_params(self) -> dict[str, str]:
        return {}

    @abstractmethod
    def _new_connection(self, transport: TransportSession) -> ConnectionT:
        raise NotImplementedError

    async def connect(self) -> ConnectionT:
        """
        Dial the endpoint and start a new connection.

        Returns:
            A started Connection; its workers are already running.

        Raises:
            DialError if the handshake fails (never retried).
        """
        url = self.url
        try:
            with timed("connection_dial", endpoint=self.endpoint):
                transport = await TransportSession.open(
                    url,
                    self._headers(),
                    open_timeout_s=self._config.open_timeout_s,
                )
        except DialError as e:
            log_event({
                "event_type": "DIAL_FAILED",
                "endpoint": self.endpoint,
                "url": url,
                "error": str(e),
            })
            raise

        conn = self._new_connection(transport)
        conn.start()
        return conn
