"""Error taxonomy for talks with the local Better BibTeX server."""

from __future__ import annotations


class ZoteroConnectorError(Exception):
    """Base class for every failure raised by zotero_connector."""


class UnreachableError(ZoteroConnectorError):
    """Zotero (or the Better BibTeX endpoint) is not running."""


class TransportError(ZoteroConnectorError):
    """A request reached the transport layer and failed there."""

    def __init__(self, message: str, status: int | None = None, url: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.url = url


class RequestTimeoutError(TransportError):
    """The caller's operation timeout elapsed before a response arrived."""


class RpcError(TransportError):
    """The JSON-RPC endpoint answered with an ``error`` member."""


class MalformedResponseError(ZoteroConnectorError):
    """A response body could not be parsed or lacks an expected field."""
