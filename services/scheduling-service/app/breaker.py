import time

from .redis_client import get_redis


class CircuitBreakerOpen(Exception):
    pass


class CircuitBreaker:
    """
    Redis-backed circuit breaker guarding an outbound dependency, shared by
    every worker of the service. Without Redis it lets all traffic through.

    States:
      - CLOSED: allow traffic, count failures
      - OPEN: block traffic for reset_timeout seconds
      - HALF_OPEN: after timeout, allow a probe request
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout_seconds: int = 30,
        failure_window_seconds: int = 60,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.reset_timeout_seconds = reset_timeout_seconds
        self.failure_window_seconds = failure_window_seconds

    def _key(self, part: str) -> str:
        return f"cb:{self.name}:{part}"

    async def state(self) -> str:
        redis_client = get_redis()
        if redis_client is None:
            return "CLOSED"
        return await redis_client.get(self._key("state")) or "CLOSED"

    async def allow_request(self) -> None:
        redis_client = get_redis()
        state = await self.state()

        if state == "OPEN":
            opened_at = await redis_client.get(self._key("opened_at"))
            if not opened_at:
                await self.close()
                return

            if (time.time() - float(opened_at)) >= self.reset_timeout_seconds:
                # one probe decides whether we close again
                await redis_client.set(self._key("state"), "HALF_OPEN")
                return

            raise CircuitBreakerOpen(f"Circuit breaker OPEN for {self.name}")

    async def record_success(self) -> None:
        if await self.state() != "CLOSED" or await self._failures():
            await self.close()

    async def record_failure(self) -> None:
        redis_client = get_redis()
        if redis_client is None:
            return

        if await self.state() == "HALF_OPEN":
            await self.open()
            return

        failures = await redis_client.incr(self._key("failures"))
        if failures == 1:
            await redis_client.expire(self._key("failures"), self.failure_window_seconds)

        if failures >= self.failure_threshold:
            await self.open()

    async def _failures(self) -> int:
        redis_client = get_redis()
        if redis_client is None:
            return 0
        return int(await redis_client.get(self._key("failures")) or 0)

    async def open(self) -> None:
        redis_client = get_redis()
        if redis_client is None:
            return
        pipe = redis_client.pipeline()
        pipe.set(self._key("state"), "OPEN", ex=self.reset_timeout_seconds + 30)
        pipe.set(self._key("opened_at"), str(time.time()), ex=self.reset_timeout_seconds + 30)
        await pipe.execute()

    async def close(self) -> None:
        redis_client = get_redis()
        if redis_client is None:
            return
        pipe = redis_client.pipeline()
        pipe.set(self._key("state"), "CLOSED", ex=3600)
        pipe.delete(self._key("failures"))
        pipe.delete(self._key("opened_at"))
        await pipe.execute()
