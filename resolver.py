# link-analytics-service/resolver.py
import re
from datetime import datetime
from typing import Optional

from exceptions import LinkExpiredError, LinkNotFoundError
from models import Link, utcnow

SLUG_PATTERN = r"^[a-zA-Z0-9_-]+$"
_slug_re = re.compile(SLUG_PATTERN)


def is_valid_slug(slug: str) -> bool:
    return bool(slug) and _slug_re.match(slug) is not None


async def resolve_link(slug: str, now: Optional[datetime] = None) -> Link:
    """
    Looks up an active link by its exact slug.

    Raises LinkNotFoundError for unknown or soft-deleted slugs and
    LinkExpiredError when the link's expiration time has passed.
    Database errors propagate unchanged.
    """
    if not is_valid_slug(slug):
        raise LinkNotFoundError("Short link not found.")

    link = await Link.find_one(Link.slug == slug, Link.deleted_at == None)  # noqa: E711
    if link is None:
        raise LinkNotFoundError("Short link not found.")

    if link.is_expired(now or utcnow()):
        raise LinkExpiredError("Short link has expired.")

    return link
