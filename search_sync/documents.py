"""Flat Typesense documents built from decoded records."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Tuple, Union

from .records import PostRecord, UserRecord

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def epoch_seconds(value: datetime) -> int:
    """Whole seconds since the Unix epoch, floored; naive values are read as UTC.

    Offsets are subtracted arithmetically, so an instant whose UTC form falls
    before year 1 still converts.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - EPOCH) // timedelta(seconds=1)


@dataclass(frozen=True)
class UserDocument:
    id: str
    username: str
    name: str
    email: str
    bio: str
    picture: str
    school: str
    country: str
    campus: str
    info_updated: bool
    program: str
    year: int
    created_at: int
    updated_at: int

    def to_payload(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PostDocument:
    id: str
    user_id: str
    user_name: str
    user_picture: str
    user_bio: str
    user_programme: str
    user_year: int
    user_campus: str
    subject: str
    title: str
    content: str
    images: Tuple[str, ...]
    created_at: int
    updated_at: int

    def to_payload(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["images"] = list(self.images)
        return payload


Document = Union[UserDocument, PostDocument]


def user_to_document(user: UserRecord) -> UserDocument:
    return UserDocument(
        id=user.id,
        username=user.username,
        name=user.name,
        email=user.email,
        bio=user.bio,
        picture=user.picture,
        school=user.school,
        country=user.country,
        campus=user.campus,
        info_updated=user.info_updated,
        program=user.program,
        year=user.year,
        created_at=epoch_seconds(user.created_at),
        updated_at=epoch_seconds(user.updated_at),
    )


def post_to_document(post: PostRecord) -> PostDocument:
    return PostDocument(
        id=post.id,
        user_id=post.user_id,
        user_name=post.username,
        user_picture=post.user_picture,
        user_bio=post.user_bio,
        user_programme=post.user_programme,
        user_year=post.user_year,
        user_campus=post.user_campus,
        subject=post.subject,
        title=post.title,
        content=post.content,
        images=tuple(post.images),
        created_at=epoch_seconds(post.created_at),
        updated_at=epoch_seconds(post.updated_at),
    )
