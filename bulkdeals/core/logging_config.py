import os
import sys
from loguru import logger
from bulkdeals.core.config import settings

def setup_logging():
    # Remove default handler
    logger.remove()

    # Add stdout handler with color and detailed info
    logger.add(
        sys.stdout,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level=settings.LOG_LEVEL,
        colorize=True
    )

    log_dir = os.path.dirname(settings.LOG_FILE)
    if log_dir and not os.path.exists(log_dir):
        os.makedirs(log_dir)

    # File handler keeps the pipeline trail at DEBUG for post-mortems of failed batches
    logger.add(
        settings.LOG_FILE,
        rotation="10 MB",
        retention="10 days",
        level="DEBUG",
        compression="zip",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {extra} - {message}"
    )

    logger.info("Logging initialized successfully.")
