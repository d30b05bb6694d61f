import logging
import sys

from loguru import logger

from storefront.core.config import settings


class InterceptHandler(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.opt(depth=6, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(service: str | None = None, extra_loggers: tuple[str, ...] = ()) -> None:
    service = service or settings.SERVICE_NAME
    log_level = settings.LOG_LEVEL.upper()
    logger.remove()
    logger.add(
        sys.stdout,
        format='{{"timestamp": "{time:YYYY-MM-DDTHH:mm:ssZ}", '
               '"level": "{level}", '
               '"service": "' + service + '", '
               '"message": "{message}"}}',
        level=log_level,
        serialize=True,
    )
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "sqlalchemy.engine", "aiokafka", *extra_loggers):
        log = logging.getLogger(name)
        log.handlers = [InterceptHandler()]
        log.propagate = False
