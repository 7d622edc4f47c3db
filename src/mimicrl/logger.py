"""
Loguru sink shared by every engine component.

Components bind their own logger, e.g. ``logger.bind(component="collector")``,
and may add ``player=<index>`` for per-seat messages.
"""

import sys
from typing import Dict, Optional

from loguru import logger

COMPONENT_COLOURS = {
    "session": "cyan",
    "collector": "blue",
    "ppo_trainer": "green",
    "bc_trainer": "magenta",
    "model_manager": "yellow",
}

# Collectors log every finished game at DEBUG; keep that quiet unless asked
component_levels: Dict[str, str] = {
    "collector": "INFO",
}
default_level = "DEBUG"


def _min_level(component: str) -> int:
    return logger.level(component_levels.get(component, default_level)).no


def component_filter(record) -> bool:
    component = record["extra"].get("component", "")
    return record["level"].no >= _min_level(component)


def formatter(record) -> str:
    component = record["extra"].get("component", "")
    player = record["extra"].get("player", "")
    colour = COMPONENT_COLOURS.get(component, "white")

    seat = f" | p{player:<3}" if player != "" else ""
    # Colour tags must be in the template so loguru converts them to ANSI codes
    return (
        "{time:HH:mm:ss} | "
        f"<{colour}>{component:<13}{seat}</> | "
        "<level>{message}</level>\n"
    )


def configure_logging(
    level: str = "DEBUG",
    overrides: Optional[Dict[str, str]] = None,
    sink=sys.stderr,
) -> None:
    """Reinstall the sink with a new default level and per-component overrides."""
    global default_level
    default_level = level
    component_levels.update(overrides or {})

    logger.remove()
    logger.add(sink, format=formatter, filter=component_filter, colorize=sink is sys.stderr)


logger.remove()
logger.add(sys.stderr, format=formatter, filter=component_filter, colorize=True)
