# link-analytics-service/links_router.py
from typing import Optional

import link_service
import redis
from auth import get_current_user
from cache import AnalyticsCache, get_redis_db
from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from models import User
from schemas import BulkLinkIds, LinkCreate, LinkOut, LinkUpdate, RedirectOut

router = APIRouter(prefix="/v1", tags=["Links"])


def _link_json(link) -> dict:
    return LinkOut.from_document(link).model_dump(mode="json")


@router.post("/links", status_code=status.HTTP_201_CREATED)
async def create_link(payload: LinkCreate, user: User = Depends(get_current_user)):
    link = await link_service.create_link(payload, user)
    data = _link_json(link)
    return {
        "status": "success",
        "data": data,
        "short_url": data["short_url"],
        "qr_url": link.qr_url,
        "message": "Short link created successfully.",
    }


@router.get("/links")
async def list_links(
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    active: Optional[bool] = Query(None, description="1 for links that have not expired, 0 for expired ones"),
    keyword: Optional[str] = Query(None, max_length=255),
    sort_by: str = Query("created_at"),
    sort_dir: str = Query("desc"),
    user: User = Depends(get_current_user),
):
    links, total = await link_service.list_links(
        user,
        page=page,
        per_page=per_page,
        active=active,
        keyword=keyword,
        sort_by=sort_by,
        sort_dir=sort_dir,
    )
    return {
        "status": "success",
        "data": [_link_json(link) for link in links],
        "meta": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "last_page": max(1, -(-total // per_page)),
        },
        "message": "Links retrieved successfully.",
    }


@router.post("/links/bulk-delete")
async def bulk_delete(
    payload: BulkLinkIds,
    user: User = Depends(get_current_user),
    redis_client: redis.Redis = Depends(get_redis_db),
):
    deleted = await link_service.bulk_delete_links(payload.ids, user)
    if deleted:
        AnalyticsCache(redis_client).invalidate(user.id)
    return {
        "status": "success",
        "data": {"deleted": deleted},
        "message": f"{deleted} link(s) deleted successfully.",
    }


@router.post("/links/bulk-export")
async def bulk_export(payload: BulkLinkIds, user: User = Depends(get_current_user)):
    links = await link_service.bulk_export_links(payload.ids, user)
    return {
        "status": "success",
        "data": [_link_json(link) for link in links],
        "message": "Links exported successfully.",
    }


@router.get("/links/{link_id}")
async def get_link(link_id: str, user: User = Depends(get_current_user)):
    link = await link_service.get_owned_link(link_id, user)
    data = _link_json(link)
    data["total_redirects"] = await link_service.count_link_redirects(link)
    return {"status": "success", "data": data, "message": "Link retrieved successfully."}


@router.put("/links/{link_id}")
async def update_link(link_id: str, payload: LinkUpdate, user: User = Depends(get_current_user)):
    link = await link_service.update_link(link_id, payload, user)
    return {"status": "success", "data": _link_json(link), "message": "Link updated successfully."}


@router.delete("/links/{link_id}")
async def delete_link(
    link_id: str,
    user: User = Depends(get_current_user),
    redis_client: redis.Redis = Depends(get_redis_db),
):
    await link_service.delete_link(link_id, user)
    AnalyticsCache(redis_client).invalidate(user.id)
    return {"status": "success", "data": None, "message": "Link deleted successfully."}


@router.get("/redirects")
async def list_redirects(
    user_id: Optional[str] = Query(None),
    limit: int = Query(10, ge=1, le=100),
    cursor: Optional[str] = Query(None),
    user: User = Depends(get_current_user),
):
    """
    Hit records across the caller's links, newest first.
    Pass the returned `next_cursor` to fetch the following page.
    """
    if not user_id:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"status": "error", "message": "user_id is required."},
        )
    if user_id != str(user.id):
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"status": "error", "message": "User not found."},
        )

    items, next_cursor = await link_service.list_user_redirects(user, limit=limit, cursor=cursor)
    return {
        "status": "success",
        "data": [RedirectOut.from_document(redirect, link).model_dump(mode="json") for redirect, link in items],
        "next_cursor": next_cursor,
        "message": "Redirects retrieved successfully.",
    }
