from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from loguru import logger

from storefront.core.config import settings
from storefront.core.errors import register_exception_handlers
from storefront.core.kafka import kafka_producer
from storefront.core.logging import setup_logging
from storefront.core.rate_limit import build_rate_limiter
from storefront.middleware.logging import LoggingMiddleware
from storefront.routers import metrics as metrics_router
from storefront.routers import orders as orders_router
from storefront.routers import shipping as shipping_router
from storefront.routers import webhooks as webhooks_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    if settings.KAFKA_ENABLED:
        await kafka_producer.start()
    if getattr(app.state, "rate_limiter", None) is None:
        app.state.rate_limiter = build_rate_limiter()
    logger.info("{service} started", service=settings.SERVICE_NAME)
    yield
    await app.state.rate_limiter.close()
    await kafka_producer.stop()
    logger.info("{service} stopped", service=settings.SERVICE_NAME)


app = FastAPI(
    title="Storefront Orders Service",
    swagger_ui_parameters={"persistAuthorization": True},
    lifespan=lifespan,
)
app.state.rate_limiter = None

register_exception_handlers(app)
app.add_middleware(LoggingMiddleware)

app.include_router(orders_router.router)
app.include_router(webhooks_router.router)
app.include_router(shipping_router.router)
app.include_router(metrics_router.router)


if __name__ == "__main__":
    uvicorn.run("storefront.main:app", host="0.0.0.0", port=8000, reload=True)
