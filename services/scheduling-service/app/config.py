import os

SERVICE_NAME = "scheduling-service"

DATABASE_URL = os.getenv("SCHEDULING_DB")
if not DATABASE_URL:
    raise RuntimeError("SCHEDULING_DB environment variable is not set")

SQL_ECHO = (os.getenv("SQL_ECHO") or "false").lower() == "true"

REDIS_URL = os.getenv("REDIS_URL")  # optional; disables caching, breaker state and the cross-process dispatch lock
RABBIT_URL = os.getenv("RABBIT_URL")  # optional in dev, required if you want events

NOTIFICATION_SERVICE_URL = os.getenv("NOTIFICATION_SERVICE_URL")
HOLIDAYS_FEED_URL = os.getenv("HOLIDAYS_FEED_URL") or "https://www.gov.uk/bank-holidays.json"

GARAGE_TIMEZONE = os.getenv("GARAGE_TIMEZONE") or "Europe/London"
DEFAULT_HOLIDAY_REGION = os.getenv("DEFAULT_HOLIDAY_REGION") or "england-and-wales"

SCHEDULE_CACHE_TTL_SECONDS = int(os.getenv("SCHEDULE_CACHE_TTL_SECONDS") or "300")
HOLIDAYS_CACHE_TTL_SECONDS = 24 * 60 * 60
MAX_AVAILABILITY_RANGE_DAYS = int(os.getenv("MAX_AVAILABILITY_RANGE_DAYS") or "62")

DISPATCH_INTERVAL_SECONDS = float(os.getenv("DISPATCH_INTERVAL_SECONDS") or "60")
DISPATCH_LOOKAHEAD_SECONDS = int(os.getenv("DISPATCH_LOOKAHEAD_SECONDS") or "60")
DISPATCH_MAX_RETRIES = int(os.getenv("DISPATCH_MAX_RETRIES") or "3")
DISPATCH_RETRY_DELAY_SECONDS = int(os.getenv("DISPATCH_RETRY_DELAY_SECONDS") or "300")
DISPATCH_LEASE_SECONDS = int(os.getenv("DISPATCH_LEASE_SECONDS") or "120")
DISPATCH_BATCH_SIZE = int(os.getenv("DISPATCH_BATCH_SIZE") or "100")

NOTIFICATION_TIMEOUT = 3.0

CRON_SECRET = os.getenv("CRON_SECRET")
