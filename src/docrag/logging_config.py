"""Logging configuration.

Installs a single rich console handler on the root logger. Modules log via
``logging.getLogger(__name__)``.
"""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "asyncio", "PIL")


def configure_logging(level: str = "INFO", console: Optional[Console] = None) -> None:
    """Configure root logging with a rich console handler.

    Args:
        level: Root log level name, e.g. 'INFO' or 'DEBUG'.
        console: Optional rich console to write to (defaults to stderr).
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(name)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S"))

    root_logger.setLevel(level.upper())
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
