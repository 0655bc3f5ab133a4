# link-analytics-service/analytics.py
"""
Click analytics over an owner's hit records.

AnalyticsRepository runs the owner-scoped queries; every query first narrows
down to the owner's non-deleted links, so another owner's records can never
leak into a result. AnalyticsService adds presentation (labels, percentages,
growth) and the short-lived per-owner cache.
"""
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from beanie import PydanticObjectId
from beanie.operators import In
from bson import ObjectId
from cache import AnalyticsCache
from classifiers import UNKNOWN, normalize_country, normalize_referrer
from exceptions import InvalidInputError
from models import Link, Redirect, utcnow

# period -> (length, bucket format)
PERIODS: Dict[str, Tuple[timedelta, str]] = {
    "7days": (timedelta(days=7), "%Y-%m-%d %H:00:00"),
    "30days": (timedelta(days=30), "%Y-%m-%d"),
    "90days": (timedelta(days=90), "%Y-%m-%d"),
    "1year": (timedelta(days=365), "%Y-%m"),
}
DEFAULT_PERIOD = "30days"
DAY_FORMAT = "%Y-%m-%d"

DEFAULT_LIMIT = 10
MIN_LIMIT = 1
MAX_LIMIT = 50
EXPORT_LIMIT = 50
LINK_COUNTRY_LIMIT = 10

DASHBOARD_TTL = 30
SUMMARY_TTL = 30
LINK_TTL = 30
BREAKDOWN_TTL = 60

EXPORT_SECTIONS = ("time_series", "device_stats", "referrer_stats", "country_stats")

CountRows = List[Tuple[str, int]]


def validate_period(period: str) -> str:
    if period not in PERIODS:
        raise InvalidInputError(
            "Invalid period. Must be one of: " + ", ".join(PERIODS)
        )
    return period


def validate_limit(limit: int) -> int:
    if not MIN_LIMIT <= limit <= MAX_LIMIT:
        raise InvalidInputError(f"Limit must be between {MIN_LIMIT} and {MAX_LIMIT}.")
    return limit


def percentage(count: int, total: int):
    if total <= 0:
        return 0
    return round(count / total * 100, 2)


def growth(current: int, previous: int) -> Tuple[float, str]:
    rate = round((current - previous) / previous * 100, 2) if previous > 0 else 0
    if rate > 0:
        direction = "up"
    elif rate < 0:
        direction = "down"
    else:
        direction = "stable"
    return rate, direction


def merge_counts(rows: Iterable[Tuple[Optional[str], int]], normalize: Callable) -> CountRows:
    """
    Folds raw group rows onto their display label, largest count first.
    """
    merged: Counter = Counter()
    for value, count in rows:
        merged[normalize(value)] += count
    return sorted(merged.items(), key=lambda item: (-item[1], item[0]))


def breakdown(rows: Sequence[Tuple[str, int]], label_key: str) -> dict:
    total = sum(count for _, count in rows)
    return {
        "total": total,
        "breakdown": [
            {label_key: label, "count": count, "percentage": percentage(count, total)}
            for label, count in rows
        ],
    }


def _label_or_unknown(value: Optional[str]) -> str:
    return value or UNKNOWN


class AnalyticsRepository:
    async def owner_link_ids(self, owner_id: PydanticObjectId) -> List[PydanticObjectId]:
        links = await Link.find(
            Link.user_id == owner_id, Link.deleted_at == None  # noqa: E711
        ).to_list()
        return [link.id for link in links]

    async def owned_link(self, link_id: Any, owner_id: PydanticObjectId) -> Optional[Link]:
        if not ObjectId.is_valid(str(link_id)):
            return None
        return await Link.find_one(
            Link.id == PydanticObjectId(str(link_id)),
            Link.user_id == owner_id,
            Link.deleted_at == None,  # noqa: E711
        )

    async def total_hits(self, link_ids: List[PydanticObjectId]) -> int:
        if not link_ids:
            return 0
        return await Redirect.find(In(Redirect.link_id, link_ids)).count()

    async def count_between(
        self, link_ids: List[PydanticObjectId], start: datetime, end: Optional[datetime] = None
    ) -> int:
        if not link_ids:
            return 0
        query = Redirect.find(In(Redirect.link_id, link_ids), Redirect.created_at >= start)
        if end is not None:
            query = query.find(Redirect.created_at < end)
        return await query.count()

    async def count_by(
        self, field: str, link_ids: List[PydanticObjectId]
    ) -> List[Tuple[Optional[str], int]]:
        if not link_ids:
            return []
        rows = await Redirect.find(In(Redirect.link_id, link_ids)).aggregate(
            [{"$group": {"_id": f"${field}", "count": {"$sum": 1}}}]
        ).to_list()
        return [(row["_id"], int(row["count"])) for row in rows]

    async def count_by_date(
        self,
        link_ids: List[PydanticObjectId],
        fmt: str,
        since: Optional[datetime] = None,
        top: Optional[int] = None,
    ) -> List[Tuple[str, int]]:
        """
        Groups hits into date buckets on the server. Buckets come back in
        ascending order, or busiest first (ties by earliest) when `top` is set.
        """
        if not link_ids:
            return []
        query = Redirect.find(In(Redirect.link_id, link_ids))
        if since is not None:
            query = query.find(Redirect.created_at >= since)
        pipeline = [
            {
                "$group": {
                    "_id": {"$dateToString": {"format": fmt, "date": "$created_at"}},
                    "count": {"$sum": 1},
                }
            }
        ]
        if top is None:
            pipeline.append({"$sort": {"_id": 1}})
        else:
            pipeline.extend([{"$sort": {"count": -1, "_id": 1}}, {"$limit": top}])
        rows = await query.aggregate(pipeline).to_list()
        return [(row["_id"], int(row["count"])) for row in rows]


class AnalyticsService:
    def __init__(self, repository: AnalyticsRepository, cache: AnalyticsCache):
        self.repository = repository
        self.cache = cache

    # --- query building blocks (uncached) ---

    async def _time_series(self, link_ids, period: str, now: datetime) -> List[dict]:
        length, fmt = PERIODS[period]
        rows = await self.repository.count_by_date(link_ids, fmt, since=now - length)
        return [{"date": date, "count": count} for date, count in rows]

    async def _top_performing_date(self, link_ids) -> Optional[dict]:
        rows = await self.repository.count_by_date(link_ids, DAY_FORMAT, top=1)
        if not rows:
            return None
        date, count = rows[0]
        parsed = datetime.strptime(date, DAY_FORMAT)
        return {
            "date": date,
            "count": count,
            "formatted_date": f"{parsed:%b} {parsed.day}, {parsed.year}",
        }

    async def _devices(self, link_ids) -> CountRows:
        return merge_counts(await self.repository.count_by("device", link_ids), _label_or_unknown)

    async def _referrers(self, link_ids, limit: int) -> CountRows:
        rows = await self.repository.count_by("referrer", link_ids)
        return merge_counts(rows, normalize_referrer)[:limit]

    async def _countries(self, link_ids, limit: int) -> CountRows:
        rows = await self.repository.count_by("country", link_ids)
        return merge_counts(rows, normalize_country)[:limit]

    # --- cached operations ---

    async def dashboard(self, owner_id: PydanticObjectId, fresh: bool = False) -> dict:
        async def compute():
            link_ids = await self.repository.owner_link_ids(owner_id)
            devices = await self._devices(link_ids)
            referrers = await self._referrers(link_ids, DEFAULT_LIMIT)
            return {
                "total_clicks_scans": await self.repository.total_hits(link_ids),
                "top_performing_date": await self._top_performing_date(link_ids),
                "device_breakdown": [
                    {"device_type": label, "count": count} for label, count in devices
                ],
                "referrer_breakdown": [
                    {"referrer": label, "count": count} for label, count in referrers
                ],
                "time_series": await self._time_series(link_ids, DEFAULT_PERIOD, utcnow()),
            }

        return await self.cache.remember(owner_id, "dashboard", DASHBOARD_TTL, compute, fresh)

    async def time_series(
        self, owner_id: PydanticObjectId, period: str = DEFAULT_PERIOD, fresh: bool = False
    ) -> List[dict]:
        validate_period(period)

        async def compute():
            link_ids = await self.repository.owner_link_ids(owner_id)
            return await self._time_series(link_ids, period, utcnow())

        return await self.cache.remember(
            owner_id, f"time_series:{period}", BREAKDOWN_TTL, compute, fresh
        )

    async def device_stats(self, owner_id: PydanticObjectId, fresh: bool = False) -> dict:
        async def compute():
            link_ids = await self.repository.owner_link_ids(owner_id)
            return breakdown(await self._devices(link_ids), "device_type")

        return await self.cache.remember(owner_id, "device_stats", BREAKDOWN_TTL, compute, fresh)

    async def referrer_stats(
        self, owner_id: PydanticObjectId, limit: int = DEFAULT_LIMIT, fresh: bool = False
    ) -> dict:
        validate_limit(limit)

        async def compute():
            link_ids = await self.repository.owner_link_ids(owner_id)
            return breakdown(await self._referrers(link_ids, limit), "referrer")

        return await self.cache.remember(
            owner_id, f"referrer_stats:{limit}", BREAKDOWN_TTL, compute, fresh
        )

    async def country_stats(
        self, owner_id: PydanticObjectId, limit: int = DEFAULT_LIMIT, fresh: bool = False
    ) -> dict:
        validate_limit(limit)

        async def compute():
            link_ids = await self.repository.owner_link_ids(owner_id)
            return breakdown(await self._countries(link_ids, limit), "country")

        return await self.cache.remember(
            owner_id, f"country_stats:{limit}", BREAKDOWN_TTL, compute, fresh
        )

    async def link_analytics(
        self, owner_id: PydanticObjectId, link_id: str, fresh: bool = False
    ) -> Optional[dict]:
        """
        Breakdown for one link. Returns None when the link does not exist,
        is deleted, or belongs to someone else.
        """

        async def compute():
            link = await self.repository.owned_link(link_id, owner_id)
            if link is None:
                return None
            link_ids = [link.id]
            devices = await self._devices(link_ids)
            browsers = merge_counts(
                await self.repository.count_by("browser", link_ids), _label_or_unknown
            )
            countries = await self._countries(link_ids, LINK_COUNTRY_LIMIT)
            device_stats = breakdown(devices, "device_type")["breakdown"]
            browser_stats = breakdown(browsers, "browser")["breakdown"]
            country_stats = breakdown(countries, "country")["breakdown"]
            return {
                "link_id": str(link.id),
                "slug": link.slug,
                "total_clicks": await self.repository.total_hits(link_ids),
                "device_stats": device_stats,
                "browser_stats": browser_stats,
                "country_stats": country_stats,
            }

        return await self.cache.remember(owner_id, f"link:{link_id}", LINK_TTL, compute, fresh)

    async def summary(
        self, owner_id: PydanticObjectId, period: str = DEFAULT_PERIOD, fresh: bool = False
    ) -> dict:
        """
        Compares the trailing period with the preceding period of the same length.
        """
        validate_period(period)

        async def compute():
            length, _ = PERIODS[period]
            now = utcnow()
            link_ids = await self.repository.owner_link_ids(owner_id)
            current = await self.repository.count_between(link_ids, now - length)
            previous = await self.repository.count_between(link_ids, now - 2 * length, now - length)
            rate, direction = growth(current, previous)
            return {
                "period": period,
                "current_period_total": current,
                "previous_period_total": previous,
                "growth_rate": rate,
                "growth_direction": direction,
            }

        return await self.cache.remember(owner_id, f"summary:{period}", SUMMARY_TTL, compute, fresh)

    def clear_cache(self, owner_id: PydanticObjectId) -> int:
        return self.cache.invalidate(owner_id)

    async def export(
        self,
        owner_id: PydanticObjectId,
        period: str = DEFAULT_PERIOD,
        include: Optional[Sequence[str]] = None,
        fresh: bool = False,
    ) -> dict:
        validate_period(period)
        include = list(include) if include else list(EXPORT_SECTIONS)
        unknown = [section for section in include if section not in EXPORT_SECTIONS]
        if unknown:
            raise InvalidInputError(
                "Invalid include value. Must be any of: " + ", ".join(EXPORT_SECTIONS)
            )

        data: Dict[str, Any] = {}
        if "time_series" in include:
            data["time_series"] = await self.time_series(owner_id, period, fresh)
        if "device_stats" in include:
            data["device_stats"] = await self.device_stats(owner_id, fresh)
        if "referrer_stats" in include:
            data["referrer_stats"] = await self.referrer_stats(owner_id, EXPORT_LIMIT, fresh)
        if "country_stats" in include:
            data["country_stats"] = await self.country_stats(owner_id, EXPORT_LIMIT, fresh)

        data["exported_at"] = utcnow().isoformat(timespec="seconds") + "Z"
        data["period"] = period
        data["cache_info"] = {"fresh_request": fresh}
        return data
