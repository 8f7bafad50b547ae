import asyncio

import aio_pika

from .events import build_event, to_json

EXCHANGE_NAME = "domain_events"


class RabbitPublisher:
    """
    Fire-and-forget publisher for domain events on a durable topic exchange.

    Without a broker URL every call is a no-op, so services run in dev and in
    tests with events switched off. A broker outage never fails the caller:
    connect errors surface only from an explicit connect(), publish errors are
    logged and dropped.
    """

    def __init__(self, rabbit_url: str | None, service_name: str):
        self.rabbit_url = rabbit_url
        self.service_name = service_name
        self.enabled = bool(rabbit_url)
        self._connection: aio_pika.abc.AbstractRobustConnection | None = None
        self._exchange: aio_pika.abc.AbstractExchange | None = None
        self._connect_lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._exchange is not None and self._connection is not None and not self._connection.is_closed

    def _log(self, message: str):
        print(f"[{self.service_name}] {message}")

    def _forget(self):
        self._connection = None
        self._exchange = None

    async def connect(self):
        if not self.enabled or self.connected:
            return

        async with self._connect_lock:
            if self.connected:
                return
            try:
                connection = await aio_pika.connect_robust(self.rabbit_url)
                channel = await connection.channel()
                self._exchange = await channel.declare_exchange(
                    EXCHANGE_NAME,
                    aio_pika.ExchangeType.TOPIC,
                    durable=True,
                )
                self._connection = connection
            except Exception as e:
                self._log(f"RabbitMQ connect failed: {e}")
                self._forget()
                raise

    async def publish(self, routing_key: str, message_body: str):
        if not self.enabled:
            return

        try:
            await self.connect()
        except Exception:
            return

        message = aio_pika.Message(
            body=message_body.encode("utf-8"),
            content_type="application/json",
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
        )
        try:
            await self._exchange.publish(message, routing_key=routing_key)
        except Exception as e:
            self._log(f"RabbitMQ publish of {routing_key} failed: {e}")

    async def publish_event(self, event_type: str, data: dict):
        """Wrap data in the shared envelope and publish it under its event type."""
        event = build_event(event_type, data, source=self.service_name)
        await self.publish(event_type, to_json(event))

    async def close(self):
        connection = self._connection
        self._forget()
        if connection and not connection.is_closed:
            await connection.close()
