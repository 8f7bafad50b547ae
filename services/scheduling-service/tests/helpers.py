import json
import time
from datetime import date, datetime, timezone

# Wednesday 2 January 2030, 09:00 UTC (GMT in London, so local time matches)
NOW = datetime(2030, 1, 2, 9, 0, tzinfo=timezone.utc)
MONDAY = date(2030, 1, 14)
SATURDAY = date(2030, 1, 12)
SUNDAY = date(2030, 1, 13)

CUSTOMER = {"X-User-Sub": "cust-1", "X-User-Roles": json.dumps(["customer"])}
OTHER_CUSTOMER = {"X-User-Sub": "cust-2", "X-User-Roles": json.dumps(["customer"])}
OWNER = {"X-User-Sub": "owner-1", "X-User-Roles": json.dumps(["garage_owner"])}
OTHER_OWNER = {"X-User-Sub": "owner-2", "X-User-Roles": json.dumps(["garage_owner"])}
ADMIN = {"X-User-Sub": "admin-1", "X-User-Roles": json.dumps(["admin"])}


class StaticHolidayCalendar:
    """Holiday calendar with a fixed set of dates and no network."""

    def __init__(self, dates=()):
        self.dates = set(dates)

    async def holiday_dates(self, start, end, region):
        return {d for d in self.dates if start <= d <= end}

    async def holidays_for(self, year, region):
        return [
            {"title": "Bank holiday", "date": d.isoformat()}
            for d in sorted(self.dates)
            if d.year == year
        ]


class FakeNotifier:
    """Records sends; raises queued errors first, one per call."""

    def __init__(self, errors=()):
        self.sent = []
        self.errors = list(errors)

    async def send_notification(self, recipient, kind, payload):
        if self.errors:
            raise self.errors.pop(0)
        self.sent.append((recipient, kind, payload))


class _FakePipeline:
    def __init__(self, redis):
        self.redis = redis
        self.ops = []

    def set(self, *args, **kwargs):
        self.ops.append(("set", args, kwargs))
        return self

    def delete(self, *args):
        self.ops.append(("delete", args, {}))
        return self

    async def execute(self):
        results = []
        for name, args, kwargs in self.ops:
            results.append(await getattr(self.redis, name)(*args, **kwargs))
        self.ops = []
        return results


class FakeRedis:
    """The handful of redis.asyncio calls the service makes, kept in a dict."""

    def __init__(self):
        self.store = {}
        self.expiry = {}

    def _alive(self, key):
        deadline = self.expiry.get(key)
        if deadline is not None and deadline <= time.time():
            self.store.pop(key, None)
            self.expiry.pop(key, None)
        return key in self.store

    async def get(self, key):
        return self.store.get(key) if self._alive(key) else None

    async def set(self, key, value, ex=None, nx=False):
        if nx and self._alive(key):
            return None
        self.store[key] = str(value)
        if ex is not None:
            self.expiry[key] = time.time() + ex
        else:
            self.expiry.pop(key, None)
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self._alive(key):
                removed += 1
            self.store.pop(key, None)
            self.expiry.pop(key, None)
        return removed

    async def incr(self, key):
        value = int(await self.get(key) or 0) + 1
        self.store[key] = str(value)
        return value

    async def expire(self, key, seconds):
        if self._alive(key):
            self.expiry[key] = time.time() + seconds
            return True
        return False

    def pipeline(self):
        return _FakePipeline(self)

    async def aclose(self):
        pass
