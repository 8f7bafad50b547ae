import json

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .config import SCHEDULE_CACHE_TTL_SECONDS, SERVICE_NAME
from .models import WeeklySchedule
from .redis_client import get_redis
from .slots import DaySchedule


def cache_key(garage_id: str) -> str:
    return f"schedule:{garage_id}"


def _to_cache(schedule: dict[int, DaySchedule]) -> str:
    return json.dumps({
        str(dow): {
            "is_open": s.is_open,
            "open_time": s.open_time,
            "close_time": s.close_time,
            "slot_duration_minutes": s.slot_duration_minutes,
        }
        for dow, s in schedule.items()
    })


def _from_cache(raw: str) -> dict[int, DaySchedule]:
    return {int(dow): DaySchedule(**row) for dow, row in json.loads(raw).items()}


async def _read_db(db: AsyncSession, garage_id: str) -> dict[int, DaySchedule]:
    res = await db.execute(select(WeeklySchedule).where(WeeklySchedule.garage_id == garage_id))
    return {
        row.day_of_week: DaySchedule(
            is_open=row.is_open,
            open_time=row.open_time,
            close_time=row.close_time,
            slot_duration_minutes=row.slot_duration_minutes,
        )
        for row in res.scalars().all()
    }


async def get_weekly_schedule(db: AsyncSession, garage_id: str, use_cache: bool = True) -> dict[int, DaySchedule]:
    """
    Weekly schedule keyed by day of week. Read-mostly, so it is cached until the owner changes it.
    """
    redis_client = get_redis()
    if not use_cache or redis_client is None:
        return await _read_db(db, garage_id)

    try:
        raw = await redis_client.get(cache_key(garage_id))
    except Exception as e:
        print(f"[{SERVICE_NAME}] schedule cache read failed: {e}")
        return await _read_db(db, garage_id)

    if raw:
        return _from_cache(raw)

    schedule = await _read_db(db, garage_id)
    try:
        await redis_client.set(cache_key(garage_id), _to_cache(schedule), ex=SCHEDULE_CACHE_TTL_SECONDS)
    except Exception as e:
        print(f"[{SERVICE_NAME}] schedule cache write failed: {e}")
    return schedule


async def invalidate_schedule(garage_id: str):
    redis_client = get_redis()
    if redis_client is None:
        return
    try:
        await redis_client.delete(cache_key(garage_id))
    except Exception as e:
        print(f"[{SERVICE_NAME}] schedule cache invalidation failed: {e}")
