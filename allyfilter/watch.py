"""
watch.py (allyfilter)

- Watches one saved page (and an optional maps file) for changes.
- On change, reruns the client-side pass over the page and writes the
  result, once edits have settled for DEBOUNCE_SECONDS.
"""

import asyncio
import logging
import threading
import time
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import PatternMatchingEventHandler
from watchdog.observers import Observer

from allyfilter.bootstrap import PagePayload
from allyfilter.config_utils import ClientSettings
from allyfilter.errors import AllyFilterError
from allyfilter.icons import icons
from allyfilter.page.runner import PassReport, process_page


logger = logging.getLogger(__name__)

# Debounce window (seconds) for reprocessing
DEBOUNCE_SECONDS = 1.0

PayloadLoader = Callable[[], Optional[PagePayload]]


def process_page_file(
    source: Path,
    output: Path,
    payload_loader: Optional[PayloadLoader] = None,
    settings: Optional[ClientSettings] = None,
) -> PassReport:
    """Run the client-side pass over source and write the result to output."""
    html = source.read_text(encoding="utf-8")
    payload = payload_loader() if payload_loader else None
    result, report = asyncio.run(process_page(html, url=source.resolve().as_uri(), payload=payload, settings=settings))
    output.write_text(result, encoding="utf-8")
    logger.info("%s %s: %d wrapped, %d annotated -> %s",
                icons.WRAP, source.name, report.wrapped, report.annotated, output)
    return report


class PageChangeHandler(PatternMatchingEventHandler):
    def __init__(self, source: Path, output: Path, maps_file: Optional[Path] = None,
                 payload_loader: Optional[PayloadLoader] = None,
                 settings: Optional[ClientSettings] = None,
                 debounce: float = DEBOUNCE_SECONDS):
        patterns = [str(source.resolve())]
        if maps_file is not None:
            patterns.append(str(maps_file.resolve()))
        super().__init__(patterns=patterns, ignore_directories=True, case_sensitive=True)
        self.source = source
        self.output = output
        self.payload_loader = payload_loader
        self.settings = settings
        self.debounce = debounce
        self.runs = 0
        self._lock = threading.Lock()
        self._timer: Optional[threading.Timer] = None
        self._pending_log: bool = True

    def _debounced_run(self):
        try:
            process_page_file(self.source, self.output, self.payload_loader, self.settings)
        except (OSError, AllyFilterError) as e:
            logger.error("[watch] Processing %s failed: %s", self.source, e)
        with self._lock:
            self.runs += 1
            # Next burst should log again
            self._pending_log = True

    def schedule(self, src_path: str):
        with self._lock:
            if self._pending_log:
                logger.info("[watch] %s CHANGE DETECTED: %s", icons.WATCH, src_path)
                self._pending_log = False
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce, self._debounced_run)
            self._timer.daemon = True
            self._timer.start()

    def on_any_event(self, event):
        if event.is_directory:
            return
        if event.event_type not in ("modified", "created", "moved"):
            return
        self.schedule(str(event.src_path))

    def cancel(self):
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


def watch_page(source: Path, output: Path, maps_file: Optional[Path] = None,
               payload_loader: Optional[PayloadLoader] = None,
               settings: Optional[ClientSettings] = None) -> None:
    """Process once, then keep reprocessing on change until interrupted."""
    process_page_file(source, output, payload_loader, settings)

    handler = PageChangeHandler(source, output, maps_file, payload_loader, settings)
    observer = Observer()
    watched_dirs = {source.resolve().parent}
    if maps_file is not None:
        watched_dirs.add(maps_file.resolve().parent)
    for directory in watched_dirs:
        observer.schedule(handler, str(directory), recursive=False)
    observer.start()
    logger.warning("[watch] %s WATCHING: %s (Ctrl+C to stop)", icons.WATCH, source)

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.warning("[watch] Stopping...")
    finally:
        handler.cancel()
        observer.stop()
        observer.join()
