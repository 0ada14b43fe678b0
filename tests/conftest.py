"""Shared fakes for the NATS connection and the Typesense client."""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import pytest
from typesense import exceptions as ts_exceptions

from search_sync.index import IndexCollection


@dataclass
class FakeMsg:
    subject: str
    data: bytes


class _FakeDocument:
    def __init__(self, collection: "_FakeDocuments", document_id: str):
        self._collection = collection
        self._id = document_id

    def retrieve(self) -> Dict[str, Any]:
        self._collection.record("retrieve", self._id)
        try:
            return copy.deepcopy(self._collection.store[self._id])
        except KeyError:
            raise ts_exceptions.ObjectNotFound("Could not find a document with id: " + self._id)

    def delete(self) -> Dict[str, Any]:
        self._collection.record("delete", self._id)
        try:
            document = self._collection.store.pop(self._id)
        except KeyError:
            raise ts_exceptions.ObjectNotFound("Could not find a document with id: " + self._id)
        self._collection.applied()
        return document


class _FakeDocuments:
    def __init__(self, backend: "FakeTypesense"):
        self.backend = backend
        self.store: Dict[str, Dict[str, Any]] = {}

    def record(self, operation: str, document_id: str) -> None:
        self.backend.calls.append((operation, document_id))
        if self.backend.hook is not None:
            self.backend.hook(operation, document_id)
        if self.backend.failures:
            raise self.backend.failures.pop(0)

    def applied(self) -> None:
        # The write has landed; the response is lost
        if self.backend.failures_after:
            raise self.backend.failures_after.pop(0)

    def create(self, document: Dict[str, Any]) -> Dict[str, Any]:
        self.record("create", document["id"])
        if document["id"] in self.store:
            raise ts_exceptions.ObjectAlreadyExists("A document with id " + document["id"] + " already exists.")
        self.store[document["id"]] = copy.deepcopy(document)
        self.applied()
        return document

    def upsert(self, document: Dict[str, Any]) -> Dict[str, Any]:
        self.record("upsert", document["id"])
        self.store[document["id"]] = copy.deepcopy(document)
        self.applied()
        return document

    def __getitem__(self, document_id: str) -> _FakeDocument:
        return _FakeDocument(self, document_id)


class _FakeCollection:
    def __init__(self, backend: "FakeTypesense"):
        self.documents = _FakeDocuments(backend)


class _Collections(dict):
    def __init__(self, backend: "FakeTypesense"):
        super().__init__()
        self.backend = backend

    def __missing__(self, name: str) -> _FakeCollection:
        collection = self[name] = _FakeCollection(self.backend)
        return collection


class FakeTypesense:
    """Stands in for ``typesense.Client``; documents live in memory."""

    def __init__(self):
        self.collections = _Collections(self)
        self.calls: List[tuple] = []
        self.failures: List[Exception] = []
        self.failures_after: List[Exception] = []
        self.hook: Optional[Callable[[str, str], None]] = None

    def store(self, name: str) -> Dict[str, Dict[str, Any]]:
        return self.collections[name].documents.store


class FakeSubscription:
    def __init__(self, nats: "FakeNats", subject: str):
        self.nats = nats
        self.subject = subject

    async def unsubscribe(self) -> None:
        self.nats.callbacks.pop(self.subject, None)


class FakeNats:
    """Minimal async NATS client: subscribe and synchronous test-side delivery."""

    def __init__(self, fail_on: Optional[str] = None):
        self.fail_on = fail_on
        self.callbacks: Dict[str, Callable] = {}

    async def subscribe(self, subject: str, cb=None):
        if subject == self.fail_on:
            raise ConnectionError("nats: connection closed")
        self.callbacks[subject] = cb
        return FakeSubscription(self, subject)

    async def deliver(self, subject: str, data: bytes) -> None:
        await self.callbacks[subject](FakeMsg(subject=subject, data=data))


@pytest.fixture
def typesense_client() -> FakeTypesense:
    return FakeTypesense()


@pytest.fixture
def users(typesense_client) -> IndexCollection:
    return IndexCollection(typesense_client, "users", max_retries=2, retry_backoff=0.0)


@pytest.fixture
def posts(typesense_client) -> IndexCollection:
    return IndexCollection(typesense_client, "posts", max_retries=2, retry_backoff=0.0)
