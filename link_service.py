# link-analytics-service/link_service.py
import logging
import re
import secrets
import string
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote

from beanie import PydanticObjectId
from beanie.odm.operators.update.general import Set
from beanie.operators import In
from bson import ObjectId
from config import get_settings
from exceptions import InvalidInputError, LinkNotFoundError, SlugAlreadyExistsError
from models import Link, Redirect, User, utcnow
from pymongo.errors import DuplicateKeyError
from schemas import LinkCreate, LinkUpdate

logger = logging.getLogger(__name__)

SLUG_LENGTH = 6
SLUG_ALPHABET = string.ascii_letters + string.digits

SORTABLE_FIELDS = {"created_at", "updated_at", "slug", "target", "title", "clicks", "expires_at"}


def generate_slug(length: int = SLUG_LENGTH) -> str:
    return "".join(secrets.choice(SLUG_ALPHABET) for _ in range(length))


def short_url_for(slug: str) -> str:
    return f"{get_settings().app_url}/{slug}"


def qr_url_for(short_url: str) -> str:
    return f"{get_settings().qr_service_url}?size=300x300&data={quote(short_url, safe='')}"


def to_object_ids(values: List[str]) -> List[PydanticObjectId]:
    return [PydanticObjectId(value) for value in values if ObjectId.is_valid(value)]


async def slug_exists(slug: str, exclude_id: Optional[PydanticObjectId] = None) -> bool:
    query = Link.find(Link.slug == slug)
    if exclude_id is not None:
        query = query.find(Link.id != exclude_id)
    return await query.count() > 0


async def create_link(data: LinkCreate, owner: User) -> Link:
    """
    Creates a link for `owner`. Without a custom slug a random one is drawn
    until it does not collide with an existing link.
    """
    if data.user_id != str(owner.id):
        raise InvalidInputError("The specified user does not exist.")

    if data.slug:
        if await slug_exists(data.slug):
            raise SlugAlreadyExistsError()
        slug = data.slug
    else:
        slug = generate_slug()
        while await slug_exists(slug):
            slug = generate_slug()

    link = Link(
        slug=slug,
        target=data.target,
        title=data.title,
        user_id=owner.id,
        expires_at=data.expires_at,
        qr_url=qr_url_for(short_url_for(slug)),
    )
    try:
        await link.insert()
    except DuplicateKeyError:
        # Lost a race for the same slug against a concurrent request.
        raise SlugAlreadyExistsError()

    logger.info("Link created", extra={"link_id": str(link.id), "user_id": str(owner.id), "slug": slug})
    return link


async def get_owned_link(link_id: str, owner: User) -> Link:
    """
    Returns the caller's non-deleted link. Links that belong to someone else
    are reported exactly like missing ones.
    """
    if not ObjectId.is_valid(link_id):
        raise LinkNotFoundError()
    link = await Link.find_one(
        Link.id == PydanticObjectId(link_id),
        Link.user_id == owner.id,
        Link.deleted_at == None,  # noqa: E711
    )
    if link is None:
        raise LinkNotFoundError()
    return link


async def count_link_redirects(link: Link) -> int:
    return await Redirect.find(Redirect.link_id == link.id).count()


async def list_links(
    owner: User,
    page: int = 1,
    per_page: int = 10,
    active: Optional[bool] = None,
    keyword: Optional[str] = None,
    sort_by: str = "created_at",
    sort_dir: str = "desc",
) -> Tuple[List[Link], int]:
    if sort_by not in SORTABLE_FIELDS:
        raise InvalidInputError(
            "Invalid sort column. Must be one of: " + ", ".join(sorted(SORTABLE_FIELDS))
        )
    if sort_dir not in ("asc", "desc"):
        raise InvalidInputError("Invalid sort direction. Must be asc or desc.")

    clauses: List[Dict] = [{"user_id": owner.id}, {"deleted_at": None}]

    now = utcnow()
    if active is True:
        clauses.append({"$or": [{"expires_at": None}, {"expires_at": {"$gt": now}}]})
    elif active is False:
        clauses.append({"expires_at": {"$lte": now}})

    if keyword:
        pattern = {"$regex": re.escape(keyword), "$options": "i"}
        clauses.append({"$or": [{"slug": pattern}, {"target": pattern}, {"title": pattern}]})

    query = {"$and": clauses}
    total = await Link.find(query).count()
    links = (
        await Link.find(query)
        .sort(("-" if sort_dir == "desc" else "+") + sort_by)
        .skip((page - 1) * per_page)
        .limit(per_page)
        .to_list()
    )
    return links, total


async def update_link(link_id: str, data: LinkUpdate, owner: User) -> Link:
    link = await get_owned_link(link_id, owner)
    changes = data.model_dump(exclude_unset=True)

    new_slug = changes.get("slug")
    if new_slug and new_slug != link.slug:
        if await slug_exists(new_slug, exclude_id=link.id):
            raise SlugAlreadyExistsError()
        changes["qr_url"] = qr_url_for(short_url_for(new_slug))

    for field, value in changes.items():
        setattr(link, field, value)
    link.updated_at = utcnow()

    try:
        await link.save()
    except DuplicateKeyError:
        raise SlugAlreadyExistsError()

    logger.info("Link updated", extra={"link_id": str(link.id), "fields": sorted(changes)})
    return link


async def delete_link(link_id: str, owner: User) -> Link:
    """
    Soft delete: the link stops resolving and drops out of analytics,
    its hit records are kept.
    """
    link = await get_owned_link(link_id, owner)
    link.deleted_at = utcnow()
    link.updated_at = link.deleted_at
    await link.save()
    logger.info("Link deleted", extra={"link_id": str(link.id), "user_id": str(owner.id)})
    return link


async def bulk_delete_links(ids: List[str], owner: User) -> int:
    object_ids = to_object_ids(ids)
    if not object_ids:
        return 0
    now = utcnow()
    result = await Link.find(
        In(Link.id, object_ids),
        Link.user_id == owner.id,
        Link.deleted_at == None,  # noqa: E711
    ).update(Set({Link.deleted_at: now, Link.updated_at: now}))
    deleted = result.modified_count if result is not None else 0
    logger.info("Links bulk deleted", extra={"user_id": str(owner.id), "deleted": deleted})
    return deleted


async def bulk_export_links(ids: List[str], owner: User) -> List[Link]:
    object_ids = to_object_ids(ids)
    if not object_ids:
        return []
    return await Link.find(
        In(Link.id, object_ids),
        Link.user_id == owner.id,
        Link.deleted_at == None,  # noqa: E711
    ).sort("+created_at").to_list()


async def list_user_redirects(
    owner: User, limit: int = 10, cursor: Optional[str] = None
) -> Tuple[List[Tuple[Redirect, Link]], Optional[str]]:
    """
    The owner's hit records, newest first, older than `cursor` when given.
    Returns the page and the cursor for the next page (None on the last page).
    """
    if cursor is not None and not ObjectId.is_valid(cursor):
        raise InvalidInputError("Invalid cursor.")

    links = await Link.find(Link.user_id == owner.id, Link.deleted_at == None).to_list()  # noqa: E711
    links_by_id = {link.id: link for link in links}
    if not links_by_id:
        return [], None

    query = Redirect.find(In(Redirect.link_id, list(links_by_id)))
    if cursor is not None:
        query = query.find(Redirect.id < PydanticObjectId(cursor))
    redirects = await query.sort("-_id").limit(limit).to_list()

    items = [(redirect, links_by_id[redirect.link_id]) for redirect in redirects]
    next_cursor = str(redirects[-1].id) if len(redirects) == limit else None
    return items, next_cursor
