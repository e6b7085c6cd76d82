import sys
from loguru import logger

from .config import settings


def setup_logging(level: str, *, serialize: bool = True) -> None:
    """Route engine events to stdout, one JSON record per line by default.

    The CLI passes ``serialize=False`` to get human-readable lines.
    """
    logger.remove()
    logger.configure(extra={"service": settings.service_name})
    logger.add(
        sys.stdout if serialize else sys.stderr,
        level=level,
        serialize=serialize,
        backtrace=False,
        diagnose=False,
        enqueue=True,
    )
