import logging
import sys

from troflow.core.config import settings


def configure_logging(level: str | None = None) -> None:
    """
    Configure logging for the whole service.
    Called once by the app factory; library code only asks for named loggers.
    """
    logging.basicConfig(
        level=getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


logger = logging.getLogger("troflow")
