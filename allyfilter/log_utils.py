"""
log_utils.py

Logging setup for allyfilter commands. Library modules only ever call
logging.getLogger(__name__); handlers are installed here, by the CLI.
"""

import logging

from allyfilter import icons as icon_module


# Message-only; no per-line timestamps
LOG_FORMAT = "%(message)s"


def level_icons() -> dict:
    icons = icon_module.icons
    return {
        logging.DEBUG: icons.DEBUG,
        logging.INFO: icons.INFO,
        logging.WARNING: icons.WARNING,
        logging.ERROR: icons.ERROR,
        logging.CRITICAL: icons.CRITICAL,
    }


class IconLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        icon = level_icons().get(record.levelno, icon_module.icons.INFO)
        base = super().format(record)
        return f"{icon} {base}"


def setup_logging(verbosity: int) -> None:
    """
    Install the icon formatter on the root logger.

    verbosity 0 shows warnings, 1 adds info, 2+ adds debug (skipped
    elements, unresolved references, containers that never rendered).
    """
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    handler = logging.StreamHandler()
    formatter = IconLogFormatter(LOG_FORMAT)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(handler)
