"""Wires subjects to decode → map → apply pipelines."""

from __future__ import annotations

import contextlib
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Type

from .dispatcher import Dispatcher, Handler, KeyedSequencer
from .documents import Document, post_to_document, user_to_document
from .index import (
    DocumentExistsError,
    DocumentNotFoundError,
    IndexApplyError,
    IndexCollection,
    IndexOutcomeUnknownError,
)
from .logging_setup import get_logger
from .metrics import apply_failures_total, applies_total, decode_failures_total
from .records import DecodeError, DeletionReference, PostRecord, UserRecord, decode


log = get_logger(__name__)


@dataclass(frozen=True)
class Subjects:
    user_created: str = "users.created"
    user_updated: str = "users.updated"
    user_deleted: str = "users.deleted"
    post_upsert: str = "posts.upsert"
    post_deleted: str = "posts.deleted"

    @classmethod
    def from_settings(cls, settings) -> "Subjects":
        return cls(
            user_created=settings.subject_user_created,
            user_updated=settings.subject_user_updated,
            user_deleted=settings.subject_user_deleted,
            post_upsert=settings.subject_post_upsert,
            post_deleted=settings.subject_post_deleted,
        )


class Synchronizer:
    """Keeps the users and posts collections in step with domain events.

    Every handler logs and drops on failure: a payload that cannot be decoded
    never reaches the backend, and a failed apply is not retried here (the
    index client only retries requests that never reached the backend). Nothing is
    negatively acknowledged.
    """

    def __init__(
        self,
        users: IndexCollection,
        posts: IndexCollection,
        subjects: Subjects = Subjects(),
        sequencer: Optional[KeyedSequencer] = None,
    ):
        self.users = users
        self.posts = posts
        self.subjects = subjects
        self.sequencer = sequencer

    @property
    def routes(self) -> Dict[str, Handler]:
        return {
            self.subjects.user_created: self.handle_user_created,
            self.subjects.user_updated: self.handle_user_updated,
            self.subjects.user_deleted: self.handle_user_deleted,
            self.subjects.post_upsert: self.handle_post_upsert,
            self.subjects.post_deleted: self.handle_post_deleted,
        }

    async def bind(self, dispatcher: Dispatcher) -> None:
        for subject, handler in self.routes.items():
            await dispatcher.bind(subject, handler)

    async def handle_user_created(self, msg) -> None:
        await self._save(self.subjects.user_created, msg.data, UserRecord, user_to_document, self.users, "create")

    async def handle_user_updated(self, msg) -> None:
        await self._save(self.subjects.user_updated, msg.data, UserRecord, user_to_document, self.users, "upsert")

    async def handle_user_deleted(self, msg) -> None:
        await self._delete(self.subjects.user_deleted, msg.data, self.users)

    async def handle_post_upsert(self, msg) -> None:
        await self._save(self.subjects.post_upsert, msg.data, PostRecord, post_to_document, self.posts, "upsert")

    async def handle_post_deleted(self, msg) -> None:
        await self._delete(self.subjects.post_deleted, msg.data, self.posts)

    def _lock(self, entity_id: str):
        if self.sequencer is None:
            return contextlib.nullcontext()
        return self.sequencer.lock_for(entity_id)

    def _decode(self, subject: str, data: bytes, kind: Type[Any]):
        try:
            return decode(subject, data, kind)
        except DecodeError as e:
            decode_failures_total.labels(subject=subject).inc()
            log.error("decode_failed", subject=subject, size=e.size, error=e.reason)
            return None

    async def _save(
        self,
        subject: str,
        data: bytes,
        kind: Type[Any],
        to_document: Callable[[Any], Document],
        collection: IndexCollection,
        operation: str,
    ) -> None:
        record = self._decode(subject, data, kind)
        if record is None:
            return

        document = to_document(record)
        apply = collection.create if operation == "create" else collection.upsert
        async with self._lock(record.id):
            try:
                await apply(document)
            except DocumentExistsError as e:
                # Left as-is until an update for the same id arrives
                apply_failures_total.labels(subject=subject, operation=operation).inc()
                log.warning("duplicate_create", subject=subject, collection=collection.name,
                            id=record.id, error=str(e))
                return
            except IndexOutcomeUnknownError as e:
                apply_failures_total.labels(subject=subject, operation=operation).inc()
                log.warning("apply_outcome_unknown", subject=subject, collection=collection.name,
                            operation=operation, id=record.id, error=str(e))
                return
            except IndexApplyError as e:
                apply_failures_total.labels(subject=subject, operation=operation).inc()
                log.error("apply_failed", subject=subject, collection=collection.name,
                          operation=operation, id=record.id, error=str(e))
                return

        applies_total.labels(subject=subject, operation=operation).inc()
        log.info("document_applied", subject=subject, collection=collection.name,
                 operation=operation, id=record.id)

    async def _delete(self, subject: str, data: bytes, collection: IndexCollection) -> None:
        reference = self._decode(subject, data, DeletionReference)
        if reference is None:
            return

        async with self._lock(reference.id):
            try:
                await collection.delete_by_id(reference.id)
            except DocumentNotFoundError as e:
                apply_failures_total.labels(subject=subject, operation="delete").inc()
                log.error("delete_not_found", subject=subject, collection=collection.name,
                          id=reference.id, error=str(e))
                return
            except IndexOutcomeUnknownError as e:
                apply_failures_total.labels(subject=subject, operation="delete").inc()
                log.warning("apply_outcome_unknown", subject=subject, collection=collection.name,
                            operation="delete", id=reference.id, error=str(e))
                return
            except IndexApplyError as e:
                apply_failures_total.labels(subject=subject, operation="delete").inc()
                log.error("apply_failed", subject=subject, collection=collection.name,
                          operation="delete", id=reference.id, error=str(e))
                return

        applies_total.labels(subject=subject, operation="delete").inc()
        log.info("document_deleted", subject=subject, collection=collection.name, id=reference.id)
