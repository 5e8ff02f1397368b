import sys
from loguru import logger
from config import settings

def setup_logging():
    """
    Configures the Loguru logger for the relay service, including daily rotation.
    """
    logger.remove()  # Remove default handler to avoid duplicate logs

    level = settings.LOG_LEVEL.upper()

    logger.add(
        sys.stdout,
        level=level,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        )
    )

    # File sink is optional so tests and containers can log to stdout only.
    if settings.LOG_FILE:
        logger.add(
            settings.LOG_FILE,
            rotation=settings.LOG_ROTATION,
            retention="10 days",
            compression="zip",
            level=level,
            enqueue=True,  # Writes happen off the event loop
            backtrace=True,
            diagnose=True,
        )

    logger.info(f"Logger configured at level {level}.")
