"""
cache.py - Read-through cache of area key -> path hashes

Looking up every file of an area is the expensive part of resolving a
reference, and the answer for an area rarely changes between requests. The
cache is never invalidated here; the host clears it when files change (or
the whole thing is bypassed with the omit_cache setting).
"""

import json
import logging
from pathlib import Path
from typing import Callable, Dict, Optional


logger = logging.getLogger(__name__)

AreaMap = Dict[str, str]


class AreaCache:
    """
    In-memory area cache with optional JSON persistence.

    Values are reference maps for one area: {map path: path hash}.
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path).expanduser() if path else None
        self._entries: Dict[str, AreaMap] = {}
        self.hits = 0
        self.misses = 0
        if self.path and self.path.exists():
            self._load()

    def _load(self):
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable area cache %s: %s", self.path, e)
            return
        if isinstance(data, dict):
            self._entries = {k: dict(v) for k, v in data.items() if isinstance(v, dict)}

    def get(self, key: str) -> Optional[AreaMap]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
        else:
            self.hits += 1
        return entry

    def set(self, key: str, value: AreaMap) -> None:
        self._entries[key] = dict(value)

    def get_or_build(self, key: str, build: Callable[[], AreaMap]) -> AreaMap:
        cached = self.get(key)
        if cached is not None:
            return cached
        value = build()
        self.set(key, value)
        return value

    def clear(self) -> None:
        self._entries.clear()

    def save(self) -> None:
        if not self.path:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._entries, indent=2, sort_keys=True), encoding="utf-8")
        logger.debug("Wrote %d area cache entries to %s", len(self._entries), self.path)

    def __len__(self) -> int:
        return len(self._entries)
