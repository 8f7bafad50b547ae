import asyncio

from .config import DISPATCH_INTERVAL_SECONDS, SERVICE_NAME
from .dispatcher import dispatch_due


async def reminder_loop(stop_event: asyncio.Event, interval: float = DISPATCH_INTERVAL_SECONDS):
    while not stop_event.is_set():
        try:
            await dispatch_due()
        except Exception as e:
            # keep the loop alive; the next tick picks the same rows up again
            print(f"[{SERVICE_NAME}] reminder dispatch failed: {e}")
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            continue
