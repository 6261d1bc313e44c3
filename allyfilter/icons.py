"""
icons.py - Icon/emoji definitions for allyfilter CLI and log output

Usage:
    from allyfilter.icons import icons
    click.echo(f"{icons.WRAP} Wrapped 3 file references")

All unicode characters used in output are defined here once.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Icons:
    """
    Icon definitions.

    Categories:
    - Status: SUCCESS, ERROR, WARNING, INFO, DEBUG, CRITICAL
    - Filter: WRAP, ANNOTATE, REPAIR
    - Progress: WATCH
    """

    # =========================================================================
    # Status Icons
    # =========================================================================
    SUCCESS: str = "✅"
    ERROR: str = "❌"
    WARNING: str = "⚠️"
    INFO: str = "ℹ️"
    DEBUG: str = "🔍"
    CRITICAL: str = "💥"

    # =========================================================================
    # Filter Icons
    # =========================================================================
    WRAP: str = "📦"        # Wrapper inserted
    ANNOTATE: str = "🏷️"    # Rich content annotation attached
    REPAIR: str = "🔧"      # Stripped wrapper attributes restored

    # =========================================================================
    # Progress Icons
    # =========================================================================
    WATCH: str = "👀"


icons = Icons()
