"""Process-wide logging setup."""

import logging

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = "info") -> None:
    """Configure the root logger once, at application startup."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    # aio-pika / aiormq are chatty at INFO about reconnects
    logging.getLogger("aiormq").setLevel(logging.WARNING)
