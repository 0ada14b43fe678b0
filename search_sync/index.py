"""Typesense collection facade used to apply documents to the search index."""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlparse

import requests
import typesense
from typesense import exceptions as ts_exceptions

from .documents import Document
from .logging_setup import get_logger
from .metrics import apply_retries_total


log = get_logger(__name__)


class IndexApplyError(Exception):
    """Base class for failures applying an operation to a collection."""

    def __init__(self, collection: str, operation: str, document_id: str, message: str):
        super().__init__(f"{operation} {collection}/{document_id} failed: {message}")
        self.collection = collection
        self.operation = operation
        self.document_id = document_id


class DocumentExistsError(IndexApplyError):
    """``create`` was called for an id the collection already holds."""


class DocumentNotFoundError(IndexApplyError):
    """The addressed document is not in the collection."""


class IndexUnavailableError(IndexApplyError):
    """The backend could not be reached; the request was not applied."""


class IndexOutcomeUnknownError(IndexApplyError):
    """The request reached the backend but no answer came back (read timeout, 5xx).

    It may or may not have been applied, so it is never retried.
    """


class IndexRequestError(IndexApplyError):
    """The backend rejected the request."""


# Raised before the request is accepted by the server
_UNAPPLIED_ERRORS = (
    ts_exceptions.ServiceUnavailable,
    requests.exceptions.ConnectionError,
)

_AMBIGUOUS_ERRORS = (
    ts_exceptions.ServerError,
    requests.exceptions.Timeout,
)


def parse_node(url: str) -> Dict[str, str]:
    """Split an endpoint such as ``https://host:8108`` into a Typesense node config."""
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ValueError(f"invalid Typesense endpoint: {url!r}")

    port = parsed.port or (443 if parsed.scheme == "https" else 80)
    return {"host": parsed.hostname, "port": str(port), "protocol": parsed.scheme}


class LazyTypesenseClient:
    """A ``typesense.Client`` built on first use.

    The endpoint is checked up front. The client itself refuses an empty API
    key, so building it lazily turns a missing key into a ``ConfigError`` on
    each request rather than a failure at startup.
    """

    def __init__(self, url: str, api_key: str, timeout: float):
        self.config = {
            "api_key": api_key,
            "nodes": [parse_node(url)],
            # Bounds connect and read of every request
            "connection_timeout_seconds": timeout,
            # Retries are handled per operation by IndexCollection
            "num_retries": 0,
        }
        self._client: Optional[typesense.Client] = None
        self._lock = threading.Lock()

    @property
    def collections(self):
        with self._lock:
            if self._client is None:
                self._client = typesense.Client(self.config)
        return self._client.collections


def build_typesense_client(url: str, api_key: str, timeout: float) -> LazyTypesenseClient:
    return LazyTypesenseClient(url, api_key, timeout)


class IndexCollection:
    """create / upsert / delete against one named collection.

    Every call is one round trip to the backend, run in a worker thread and
    bounded by the client's own request timeout. Only failures where the
    request never reached the backend are retried, up to ``max_retries`` times
    with linear backoff; everything else is raised as an ``IndexApplyError``
    subclass on the first attempt.
    """

    def __init__(
        self,
        client: Any,
        name: str,
        max_retries: int = 0,
        retry_backoff: float = 0.2,
    ):
        self.client = client
        self.name = name
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff

    @property
    def _documents(self):
        return self.client.collections[self.name].documents

    async def create(self, document: Document) -> Dict[str, Any]:
        payload = document.to_payload()
        return await self._call("create", document.id, lambda: self._documents.create(payload))

    async def upsert(self, document: Document) -> Dict[str, Any]:
        payload = document.to_payload()
        return await self._call("upsert", document.id, lambda: self._documents.upsert(payload))

    async def delete_by_id(self, document_id: str) -> Dict[str, Any]:
        return await self._call("delete", document_id, lambda: self._documents[document_id].delete())

    async def retrieve(self, document_id: str) -> Dict[str, Any]:
        return await self._call("retrieve", document_id, lambda: self._documents[document_id].retrieve())

    async def _call(self, operation: str, document_id: str, request: Callable[[], Any]) -> Any:
        attempt = 0
        while True:
            try:
                return await self._attempt(operation, document_id, request)
            except IndexUnavailableError as e:
                attempt += 1
                if attempt > self.max_retries:
                    raise
                apply_retries_total.labels(operation=operation).inc()
                log.warning("index_retry",
                            collection=self.name,
                            operation=operation,
                            id=document_id,
                            attempt=attempt,
                            error=str(e))
                await asyncio.sleep(self.retry_backoff * attempt)

    async def _attempt(self, operation: str, document_id: str, request: Callable[[], Any]) -> Any:
        try:
            return await asyncio.to_thread(request)
        except ts_exceptions.ObjectAlreadyExists as e:
            raise DocumentExistsError(self.name, operation, document_id, str(e)) from e
        except ts_exceptions.ObjectNotFound as e:
            raise DocumentNotFoundError(self.name, operation, document_id, str(e)) from e
        except _UNAPPLIED_ERRORS as e:
            raise IndexUnavailableError(self.name, operation, document_id, str(e)) from e
        except _AMBIGUOUS_ERRORS as e:
            raise IndexOutcomeUnknownError(self.name, operation, document_id, str(e)) from e
        except (ts_exceptions.ConfigError, ts_exceptions.TypesenseClientError, requests.exceptions.RequestException) as e:
            raise IndexRequestError(self.name, operation, document_id, str(e)) from e
