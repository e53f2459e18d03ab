# screenshot_service/logs.py
import logging
import os
from logging.handlers import RotatingFileHandler

from screenshot_service.config import Settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(settings: Settings) -> None:
    handlers = [logging.StreamHandler()]
    if settings.log_files:
        os.makedirs(settings.log_dir, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                os.path.join(settings.log_dir, "service.log"),
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
        )
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT, handlers=handlers, force=True)
