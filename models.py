from datetime import datetime, timezone
from typing import Optional

from beanie import Document, Indexed, PydanticObjectId
from pydantic import Field
from pymongo import ASCENDING, IndexModel


def utcnow() -> datetime:
    # MongoDB hands datetimes back as naive UTC, so everything is stored that way.
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class User(Document):
    name: str
    email: Indexed(str, unique=True)
    hashed_password: str
    created_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "users"


class Link(Document):
    slug: Indexed(str, unique=True)
    target: str
    title: Optional[str] = None
    user_id: Indexed(PydanticObjectId)
    expires_at: Optional[datetime] = None
    qr_url: Optional[str] = None
    clicks: int = 0
    deleted_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "links"

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        now = as_naive_utc(now) or utcnow()
        return as_naive_utc(self.expires_at) <= now

    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def is_active(self, now: Optional[datetime] = None) -> bool:
        return not self.is_deleted() and not self.is_expired(now)


class Redirect(Document):
    """
    One hit record per resolved redirect.
    Derived fields (country, device, browser) are computed once at write time.
    """

    link_id: PydanticObjectId
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    referrer: Optional[str] = None
    country: Optional[str] = None
    device: Optional[str] = None
    browser: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "redirects"
        indexes = [
            "link_id",
            IndexModel([("link_id", ASCENDING), ("created_at", ASCENDING)]),
            "created_at",
            "country",
            "device",
            "browser",
            "referrer",
        ]


DOCUMENT_MODELS = [User, Link, Redirect]


async def delete_link_cascade(link: Link) -> int:
    """
    Hard-deletes a link together with all of its hit records.
    Returns the number of hit records removed.

    Maintenance helper only: no route calls it, the API soft-deletes.
    """
    result = await Redirect.find(Redirect.link_id == link.id).delete()
    await link.delete()
    return result.deleted_count if result is not None else 0
