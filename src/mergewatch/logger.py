import logging

import notifiers.logging

from mergewatch.config import Settings

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s - %(message)s"


def get_log_handlers(logger: logging.Logger, settings: Settings):
    if settings.TELEGRAM_TOKEN is None:
        return []
    handler = notifiers.logging.NotificationHandler(
        "telegram",
        defaults={
            "token": settings.TELEGRAM_TOKEN,
            "chat_id": settings.TELEGRAM_CHAT_ID,
        },
    )
    handler.setLevel(logging.WARNING)
    logger.addHandler(handler)
    return [handler]


def configure_logging(settings: Settings) -> logging.Logger:
    logging.basicConfig(format=LOG_FORMAT, level=settings.log_level)
    logging.getLogger().setLevel(settings.log_level)
    logger = logging.getLogger("mergewatch")
    logger.setLevel(settings.log_level)
    for handler in get_log_handlers(logger, settings):
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return logger
