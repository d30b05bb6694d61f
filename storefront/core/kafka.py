import json
from typing import Any, Optional

from aiokafka import AIOKafkaProducer
from loguru import logger

from storefront.core.config import settings
from storefront.core.metrics import KAFKA_PRODUCER_MESSAGES_TOTAL


class KafkaProducer:
    def __init__(self, bootstrap_servers: str | None = None):
        self._bootstrap_servers = bootstrap_servers or settings.KAFKA_BROKER
        self._producer: Optional[AIOKafkaProducer] = None

    @property
    def started(self) -> bool:
        return self._producer is not None

    async def start(self):
        logger.info("Kafka producer start requested")
        if self._producer is None:
            producer = AIOKafkaProducer(
                bootstrap_servers=self._bootstrap_servers,
                value_serializer=lambda v: json.dumps(v, ensure_ascii=False, default=str).encode(
                    "utf-8"
                ),
            )
            try:
                await producer.start()
            except Exception as e:
                logger.error("Kafka producer failed to start: {error}", error=str(e))
                return
            self._producer = producer
            logger.info("Kafka producer started")

    async def stop(self):
        logger.info("Kafka producer stop requested")
        if self._producer:
            await self._producer.stop()
            self._producer = None
            logger.info("Kafka producer stopped")

    async def send(self, topic: str, value: Any, key: str | None = None):
        KAFKA_PRODUCER_MESSAGES_TOTAL.labels(
            service=settings.SERVICE_NAME,
            result="attempt",
        ).inc()
        if not self._producer:
            logger.warning(
                "Kafka producer not initialized; skip send to topic='{topic}'",
                topic=topic,
            )
            KAFKA_PRODUCER_MESSAGES_TOTAL.labels(
                service=settings.SERVICE_NAME,
                result="not_initialized",
            ).inc()
            return
        try:
            await self._producer.send_and_wait(
                topic,
                value=value,
                key=(key.encode() if key else None),
            )
            logger.info(
                "Kafka message sent to topic='{topic}' with key='{key}'",
                topic=topic,
                key=key,
            )
            KAFKA_PRODUCER_MESSAGES_TOTAL.labels(
                service=settings.SERVICE_NAME,
                result="success",
            ).inc()
        except Exception as e:
            logger.exception(
                "Failed to send Kafka message to topic='{topic}' with key='{key}': {error}",
                topic=topic,
                key=key,
                error=str(e),
            )
            KAFKA_PRODUCER_MESSAGES_TOTAL.labels(
                service=settings.SERVICE_NAME,
                result="error",
            ).inc()


kafka_producer = KafkaProducer()


async def publish_order_event(event: str, order, **extra: Any) -> None:
    payload = {
        "event": event,
        "order_id": str(order.id),
        "order_number": order.order_number,
        "status": order.status,
        "payment_status": order.payment_status,
        "total": order.total,
        "currency": order.currency,
        "customer_email": order.customer_email,
        **extra,
    }
    await kafka_producer.send(settings.KAFKA_ORDER_TOPIC, payload, key=str(order.id))
