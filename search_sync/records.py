"""Typed domain records decoded from NATS message payloads."""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from typing import Annotated, Any, List, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictInt, StrictStr, ValidationError, field_validator

# Zero value of a timestamp field, matching the publisher's zero time.
ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

_RFC3339 = re.compile(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?(Z|[+-]\d{2}:\d{2})")

Int64 = Annotated[StrictInt, Field(ge=-(2 ** 63), le=2 ** 63 - 1)]


class DecodeError(Exception):
    """A payload could not be decoded into the record kind expected for its subject."""

    def __init__(self, subject: str, size: int, reason: str):
        super().__init__(f"cannot decode {size}-byte payload on {subject}: {reason}")
        self.subject = subject
        self.size = size
        self.reason = reason


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: StrictStr

    @field_validator("id")
    @classmethod
    def _non_empty_id(cls, value: str) -> str:
        if not value:
            raise ValueError("id must be a non-empty string")
        return value


class _Timestamped(_Record):
    created_at: datetime = ZERO_TIME
    updated_at: datetime = ZERO_TIME

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _rfc3339_only(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return value
        if not isinstance(value, str) or not _RFC3339.fullmatch(value):
            raise ValueError("timestamp must be an RFC 3339 string with an offset")
        return value

    @field_validator("created_at", "updated_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class UserRecord(_Timestamped):
    """Full snapshot of a user profile."""

    username: StrictStr = ""
    name: StrictStr = ""
    email: StrictStr = ""
    bio: StrictStr = ""
    picture: StrictStr = ""
    school: StrictStr = ""
    country: StrictStr = ""
    campus: StrictStr = ""
    info_updated: StrictBool = False
    program: StrictStr = ""
    year: Int64 = 0


class PostRecord(_Timestamped):
    """Full snapshot of a post, carrying a copy of its author's profile fields.

    The author fields are a point-in-time copy and are only refreshed by a
    later upsert of the same post.
    """

    user_id: StrictStr = ""
    username: StrictStr = ""
    user_picture: StrictStr = ""
    user_bio: StrictStr = ""
    user_programme: StrictStr = ""
    user_year: Int64 = 0
    user_campus: StrictStr = ""
    subject: StrictStr = ""
    title: StrictStr = ""
    content: StrictStr = ""
    images: List[StrictStr] = Field(default_factory=list)


class DeletionReference(_Record):
    """Identifies a user or post to remove from the index."""


R = TypeVar("R", UserRecord, PostRecord, DeletionReference)


def decode(subject: str, payload: bytes, kind: Type[R]) -> R:
    """Decode ``payload`` as ``kind``, raising ``DecodeError`` on any mismatch.

    Unknown fields are ignored and ``null`` leaves a field at its zero value.
    For ``DeletionReference`` only ``id`` is read.
    """
    size = len(payload) if payload else 0
    if not payload:
        raise DecodeError(subject, size, "empty payload")

    try:
        data = json.loads(payload)
    except ValueError as e:
        raise DecodeError(subject, size, f"invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise DecodeError(subject, size, f"expected a JSON object, got {type(data).__name__}")

    fields = {key: value for key, value in data.items() if value is not None}
    if kind is DeletionReference:
        fields = {"id": fields["id"]} if "id" in fields else {}

    try:
        return kind.model_validate(fields)
    except ValidationError as e:
        raise DecodeError(subject, size, _describe(e)) from e


def _describe(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "payload"
        parts.append(f"{location}: {item.get('msg')}")
    return "; ".join(parts)
