import httpx

from .breaker import CircuitBreaker, CircuitBreakerOpen
from .config import NOTIFICATION_SERVICE_URL, NOTIFICATION_TIMEOUT
from .errors import PermanentNotificationError, TransientDependencyError

# notification kinds
REMINDER_KINDS = {
    "REMINDER_1_MONTH": "BOOKING_REMINDER_1_MONTH",
    "REMINDER_1_WEEK": "BOOKING_REMINDER_1_WEEK",
    "REMINDER_1_DAY": "BOOKING_REMINDER_1_DAY",
}
BOOKING_APPROVED = "BOOKING_APPROVED"
BOOKING_CANCELLED = "BOOKING_CANCELLED"
BOOKING_COMPLETED_FOLLOWUP = "BOOKING_COMPLETED_FOLLOWUP"

# upstream answers worth another attempt
RETRYABLE_STATUS = {408, 425, 429}

cb_notifications = CircuitBreaker("notification-service", failure_threshold=5, reset_timeout_seconds=30)


class Notifier:
    """
    Thin client for the outbound notification service (email transport lives there).

    Raises TransientDependencyError for anything worth retrying and
    PermanentNotificationError when the upstream rejects the request outright.
    """

    def __init__(
        self,
        base_url: str | None = NOTIFICATION_SERVICE_URL,
        breaker: CircuitBreaker = cb_notifications,
        timeout: float = NOTIFICATION_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/") if base_url else None
        self.breaker = breaker
        self.timeout = timeout

    async def send_notification(self, recipient: str, kind: str, payload: dict) -> None:
        if not self.base_url:
            raise TransientDependencyError("Notification service is not configured")

        try:
            await self.breaker.allow_request()
        except CircuitBreakerOpen as e:
            raise TransientDependencyError(str(e))

        body = {"recipient": recipient, "kind": kind, "payload": payload}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(f"{self.base_url}/notifications", json=body)
        except httpx.TimeoutException:
            await self.breaker.record_failure()
            raise TransientDependencyError("Timeout calling notification service")
        except httpx.HTTPError as e:
            await self.breaker.record_failure()
            raise TransientDependencyError(f"Notification service unreachable: {e}")

        if resp.status_code >= 500 or resp.status_code in RETRYABLE_STATUS:
            await self.breaker.record_failure()
            raise TransientDependencyError(
                f"Notification service returned {resp.status_code}: {resp.text[:200]}"
            )

        # the dependency is healthy even when it refuses this particular message
        await self.breaker.record_success()

        if resp.status_code >= 400:
            raise PermanentNotificationError(
                f"Notification rejected with {resp.status_code}: {resp.text[:200]}"
            )


notifier = Notifier()
