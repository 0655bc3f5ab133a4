from datetime import datetime
from typing import List, Optional

from config import get_settings
from models import Link, Redirect, User, as_naive_utc, utcnow
from pydantic import BaseModel, Field, HttpUrl, TypeAdapter, field_validator

_http_url = TypeAdapter(HttpUrl)

CUSTOM_SLUG_PATTERN = r"^[a-z0-9_-]+$"


def _validate_target(value: str) -> str:
    try:
        _http_url.validate_python(value)
    except ValueError:
        raise ValueError("The target must be a valid URL.")
    # Stored exactly as submitted, not in pydantic's normalized form.
    return value


def _validate_future(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    value = as_naive_utc(value)
    if value <= utcnow():
        raise ValueError("The expiration date must be in the future.")
    return value


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


class LinkCreate(BaseModel):
    target: str = Field(..., max_length=2048)
    user_id: str
    title: Optional[str] = Field(None, max_length=255)
    slug: Optional[str] = Field(None, max_length=50, pattern=CUSTOM_SLUG_PATTERN)
    expires_at: Optional[datetime] = None

    @field_validator("slug", "title", "expires_at", mode="before")
    @classmethod
    def blank_optional_fields(cls, value):
        return _blank_to_none(value)

    @field_validator("target")
    @classmethod
    def target_is_url(cls, value: str) -> str:
        return _validate_target(value)

    @field_validator("expires_at")
    @classmethod
    def expires_in_future(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _validate_future(value)


class LinkUpdate(BaseModel):
    """
    Partial update; only the fields present in the body are applied.
    An explicit `expires_at: null` removes the expiration.
    """

    target: Optional[str] = Field(None, max_length=2048)
    title: Optional[str] = Field(None, max_length=255)
    slug: Optional[str] = Field(None, max_length=50, pattern=CUSTOM_SLUG_PATTERN)
    expires_at: Optional[datetime] = None

    @field_validator("target")
    @classmethod
    def target_is_url(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            raise ValueError("The target URL cannot be empty.")
        return _validate_target(value)

    @field_validator("slug")
    @classmethod
    def slug_not_null(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            raise ValueError("The slug cannot be empty.")
        return value

    @field_validator("expires_at")
    @classmethod
    def expires_in_future(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _validate_future(value)


class BulkLinkIds(BaseModel):
    ids: List[str] = Field(..., min_length=1)


class LinkOut(BaseModel):
    id: str
    slug: str
    target: str
    title: Optional[str] = None
    user_id: str
    expires_at: Optional[datetime] = None
    qr_url: Optional[str] = None
    clicks: int
    is_expired: bool
    is_active: bool
    short_url: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_document(cls, link: Link) -> "LinkOut":
        return cls(
            id=str(link.id),
            slug=link.slug,
            target=link.target,
            title=link.title,
            user_id=str(link.user_id),
            expires_at=link.expires_at,
            qr_url=link.qr_url,
            clicks=link.clicks,
            is_expired=link.is_expired(),
            is_active=link.is_active(),
            short_url=f"{get_settings().app_url}/{link.slug}",
            created_at=link.created_at,
            updated_at=link.updated_at,
        )


class LinkSummary(BaseModel):
    id: str
    slug: str
    title: Optional[str] = None
    target: str


class RedirectOut(BaseModel):
    id: str
    link_id: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    referrer: Optional[str] = None
    country: Optional[str] = None
    device: Optional[str] = None
    browser: Optional[str] = None
    created_at: datetime
    link: Optional[LinkSummary] = None

    @classmethod
    def from_document(cls, redirect: Redirect, link: Optional[Link] = None) -> "RedirectOut":
        return cls(
            id=str(redirect.id),
            link_id=str(redirect.link_id),
            ip_address=redirect.ip_address,
            user_agent=redirect.user_agent,
            referrer=redirect.referrer,
            country=redirect.country,
            device=redirect.device,
            browser=redirect.browser,
            created_at=redirect.created_at,
            link=LinkSummary(id=str(link.id), slug=link.slug, title=link.title, target=link.target)
            if link is not None
            else None,
        )


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(..., min_length=8, max_length=72)


class LoginRequest(BaseModel):
    email: str
    password: str


class ChannelAuthRequest(BaseModel):
    channel_name: str


class UserOut(BaseModel):
    id: str
    name: str
    email: str
    created_at: datetime

    @classmethod
    def from_document(cls, user: User) -> "UserOut":
        return cls(id=str(user.id), name=user.name, email=user.email, created_at=user.created_at)
