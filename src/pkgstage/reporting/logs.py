"""
Opt-in bridge that routes pkgstage log records through a rich handler.
This preserves stdlib logging semantics; modules only ever call
``logging.getLogger(__name__)``.

Do NOT install this at import time. Let hosts/CLIs opt in.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from rich.console import Console
from rich.logging import RichHandler

__all__ = ["ROOT_LOGGER_NAME", "configure_logging"]

ROOT_LOGGER_NAME = "pkgstage"


def configure_logging(
    level: int | str = logging.INFO,
    *,
    console: Console | None = None,
    rich_tracebacks: bool = True,
) -> Callable[[], None]:
    """
    Attach a RichHandler to the ``pkgstage`` logger.

    - Returns an `uninstall()` function restoring the previous level/handlers.
    - Records do not propagate to the root logger while installed, so a host
      with its own root handler does not see them twice.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)

    # Default to stderr per logging convention
    handler = RichHandler(
        console=console or Console(stderr=True),
        rich_tracebacks=rich_tracebacks,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))

    prev_level = logger.level
    prev_propagate = logger.propagate

    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False

    def uninstall() -> None:
        logger.removeHandler(handler)
        logger.setLevel(prev_level)
        logger.propagate = prev_propagate

    return uninstall
