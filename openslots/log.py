"""
Logging setup: stdlib logging rendered through rich.
"""

import logging

from rich.logging import RichHandler


def configure_logging(level: str = "INFO") -> None:
    """Route all log records to a RichHandler at the given level."""
    handler = RichHandler(rich_tracebacks=True, show_path=False)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    root.addHandler(handler)

    # Per-request connection chatter drowns the engine's own output.
    logging.getLogger("urllib3").setLevel(logging.WARNING)
