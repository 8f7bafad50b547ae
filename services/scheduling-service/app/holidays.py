import json
import time
from datetime import date

import httpx

from .config import HOLIDAYS_CACHE_TTL_SECONDS, HOLIDAYS_FEED_URL, SERVICE_NAME
from .errors import ValidationError
from .redis_client import get_redis

REGIONS = ("england-and-wales", "scotland", "northern-ireland")

HTTP_TIMEOUT = 3.0


def _cache_key(region: str) -> str:
    return f"holidays:{region}"


def fallback_holidays(year: int) -> list[dict]:
    """Fixed-date holidays used when the feed is unreachable."""
    return [
        {"title": "New Year's Day", "date": date(year, 1, 1).isoformat()},
        {"title": "Christmas Day", "date": date(year, 12, 25).isoformat()},
        {"title": "Boxing Day", "date": date(year, 12, 26).isoformat()},
    ]


class HolidayCalendar:
    """
    Read-only public holiday collaborator keyed by region, then filtered by year.

    The whole region feed is cached for a day (Redis when configured,
    in-process otherwise).
    """

    def __init__(self, feed_url: str = HOLIDAYS_FEED_URL, ttl_seconds: int = HOLIDAYS_CACHE_TTL_SECONDS):
        self.feed_url = feed_url
        self.ttl_seconds = ttl_seconds
        self._local: dict[str, tuple[float, list[dict]]] = {}

    async def _cached(self, region: str) -> list[dict] | None:
        redis_client = get_redis()
        if redis_client is not None:
            try:
                raw = await redis_client.get(_cache_key(region))
            except Exception as e:
                print(f"[{SERVICE_NAME}] holiday cache read failed: {e}")
                raw = None
            if raw:
                return json.loads(raw)

        hit = self._local.get(region)
        if hit and (time.time() - hit[0]) < self.ttl_seconds:
            return hit[1]
        return None

    async def _store(self, region: str, events: list[dict]):
        self._local[region] = (time.time(), events)
        redis_client = get_redis()
        if redis_client is None:
            return
        try:
            await redis_client.set(_cache_key(region), json.dumps(events), ex=self.ttl_seconds)
        except Exception as e:
            print(f"[{SERVICE_NAME}] holiday cache write failed: {e}")

    async def _fetch(self, region: str) -> list[dict] | None:
        try:
            async with httpx.AsyncClient(timeout=HTTP_TIMEOUT) as client:
                r = await client.get(self.feed_url)
                r.raise_for_status()
                data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            print(f"[{SERVICE_NAME}] holiday feed unavailable, using fallback: {e}")
            return None

        region_data = data.get(region) or {}
        return [
            {"title": ev.get("title"), "date": ev.get("date")}
            for ev in region_data.get("events", [])
            if ev.get("date")
        ]

    async def holidays_for(self, year: int, region: str) -> list[dict]:
        if region not in REGIONS:
            raise ValidationError(f"Invalid region '{region}'. Allowed: {list(REGIONS)}")

        events = await self._cached(region)
        if events is None:
            events = await self._fetch(region)
            if events is None:
                return fallback_holidays(year)
            await self._store(region, events)

        prefix = f"{year:04d}-"
        return [ev for ev in events if ev["date"].startswith(prefix)]

    async def holiday_dates(self, start: date, end: date, region: str) -> set[date]:
        dates: set[date] = set()
        for year in range(start.year, end.year + 1):
            for ev in await self.holidays_for(year, region):
                d = date.fromisoformat(ev["date"])
                if start <= d <= end:
                    dates.add(d)
        return dates

    async def is_public_holiday(self, d: date, region: str) -> bool:
        return d in await self.holiday_dates(d, d, region)


holiday_calendar = HolidayCalendar()
