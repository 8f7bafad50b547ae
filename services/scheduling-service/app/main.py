import asyncio

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .config import SERVICE_NAME
from .errors import ConflictError, FatalInvariantViolation, SchedulingError
from .middleware import RequestLoggingMiddleware
from .rabbitmq import publisher
from .redis_client import close_redis
from .reminder_worker import reminder_loop
from .routes import router

OPENAPI_TAGS = [
    {"name": "System", "description": "Health and the on-demand reminder dispatch trigger."},
    {"name": "Garages", "description": "Garage records and booking policy."},
    {"name": "Availability", "description": "Bookable MOT slots and public holidays."},
    {"name": "Schedule", "description": "Weekly hours, date exceptions, slot blocks and holiday overrides."},
    {"name": "Bookings", "description": "Slot reservation and the booking lifecycle."},
]

app = FastAPI(title="Scheduling Service", openapi_tags=OPENAPI_TAGS)
app.add_middleware(RequestLoggingMiddleware)
app.include_router(router)

_stop_event = asyncio.Event()
_reminder_task = None


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError):
    body = {"detail": exc.detail}
    if isinstance(exc, ConflictError):
        body["refresh_availability"] = True
    if isinstance(exc, FatalInvariantViolation):
        print(f"[{SERVICE_NAME}] INVARIANT VIOLATION on {request.method} {request.url.path}: {exc.detail}")
    return JSONResponse(status_code=exc.status_code, content=body)


@app.get("/health", tags=["System"])
async def health():
    return {"status": "ok", "service": SERVICE_NAME, "events_enabled": publisher.enabled}


@app.on_event("startup")
async def startup():
    global _reminder_task
    try:
        await publisher.connect()
    except Exception as e:
        print(f"[{SERVICE_NAME}] RabbitMQ connect failed at startup; continuing: {e}")

    _stop_event.clear()
    _reminder_task = asyncio.create_task(reminder_loop(_stop_event))


@app.on_event("shutdown")
async def shutdown():
    global _reminder_task
    _stop_event.set()
    if _reminder_task:
        await _reminder_task
        _reminder_task = None

    await close_redis()
    await publisher.close()
