# link-analytics-service/analytics_router.py
import logging
from typing import List, Optional

import redis
from analytics import DEFAULT_LIMIT, DEFAULT_PERIOD, MAX_LIMIT, MIN_LIMIT, AnalyticsRepository, AnalyticsService
from auth import get_current_user
from cache import AnalyticsCache, get_redis_db
from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse, Response
from export import export_filename, render_csv
from models import User, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/analytics", tags=["Analytics"])


def get_analytics_service(redis_client: redis.Redis = Depends(get_redis_db)) -> AnalyticsService:
    return AnalyticsService(AnalyticsRepository(), AnalyticsCache(redis_client))


def _envelope(data, message: str, fresh: bool) -> dict:
    return {
        "success": True,
        "data": data,
        "message": message,
        "cache_info": {"fresh_request": fresh},
    }


@router.get("/dashboard")
async def dashboard(
    fresh: bool = False,
    user: User = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
):
    data = await service.dashboard(user.id, fresh=fresh)
    return _envelope(data, "Dashboard analytics retrieved successfully", fresh)


@router.get("/time-series")
async def time_series(
    period: str = DEFAULT_PERIOD,
    fresh: bool = False,
    user: User = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
):
    data = await service.time_series(user.id, period, fresh=fresh)
    return _envelope(data, "Time series data retrieved successfully", fresh)


@router.get("/devices")
async def devices(
    fresh: bool = False,
    user: User = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
):
    data = await service.device_stats(user.id, fresh=fresh)
    return _envelope(data, "Device statistics retrieved successfully", fresh)


@router.get("/referrers")
async def referrers(
    limit: int = Query(DEFAULT_LIMIT, ge=MIN_LIMIT, le=MAX_LIMIT),
    fresh: bool = False,
    user: User = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
):
    data = await service.referrer_stats(user.id, limit, fresh=fresh)
    return _envelope(data, "Referrer statistics retrieved successfully", fresh)


@router.get("/countries")
async def countries(
    limit: int = Query(DEFAULT_LIMIT, ge=MIN_LIMIT, le=MAX_LIMIT),
    fresh: bool = False,
    user: User = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
):
    data = await service.country_stats(user.id, limit, fresh=fresh)
    return _envelope(data, "Country statistics retrieved successfully", fresh)


@router.get("/links/{link_id}")
async def link_analytics(
    link_id: str,
    fresh: bool = False,
    user: User = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
):
    data = await service.link_analytics(user.id, link_id, fresh=fresh)
    if data is None:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"success": False, "message": "Link not found or access denied"},
        )
    return _envelope(data, "Link analytics retrieved successfully", fresh)


@router.get("/summary")
async def summary(
    period: str = DEFAULT_PERIOD,
    fresh: bool = False,
    user: User = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
):
    data = await service.summary(user.id, period, fresh=fresh)
    return _envelope(data, "Analytics summary retrieved successfully", fresh)


@router.post("/cache/clear")
async def clear_cache(
    user: User = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
):
    removed = service.clear_cache(user.id)
    logger.info("Analytics cache cleared", extra={"user_id": str(user.id), "removed_keys": removed})
    return {"success": True, "data": {"removed_keys": removed}, "message": "Analytics cache cleared successfully"}


@router.get("/export")
async def export(
    format: str = Query("json", pattern="^(json|csv)$"),
    period: str = DEFAULT_PERIOD,
    include: Optional[List[str]] = Query(None),
    fresh: bool = False,
    user: User = Depends(get_current_user),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """
    Export analytics as JSON or as a CSV attachment.
    `include` takes any of time_series, device_stats, referrer_stats, country_stats
    (repeated or comma separated); all sections by default.
    """
    sections = None
    if include:
        sections = [part.strip() for value in include for part in value.split(",") if part.strip()]

    data = await service.export(user.id, period, sections, fresh=fresh)

    if format == "csv":
        filename = export_filename(period, utcnow().strftime("%Y-%m-%d_%H-%M-%S"))
        return Response(
            content=render_csv(data),
            media_type="text/csv; charset=utf-8",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    return _envelope(data, "Analytics data exported successfully", fresh)
