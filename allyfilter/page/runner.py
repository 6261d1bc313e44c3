"""
runner.py - The client-side pass over a live page

apply_placeholders() runs every placement strategy and every annotator
concurrently and reports once all of them have finished, including the
ones skipped because their map was empty.

start() wires the pass to the page: a debounced first run, then reruns on
ajax completions and content mutations, and a watch on the folder tree
(mutation observer, or a poller when observers are unavailable).
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional, Tuple

from bs4 import Tag

from allyfilter.bootstrap import PagePayload, extract_payload
from allyfilter.config_utils import ClientSettings
from allyfilter.course import Permissions
from allyfilter.errors import ObserverUnavailableError
from allyfilter.page.annotator import Annotator
from allyfilter.page.dom import LivePage
from allyfilter.page.scheduling import MUTATION, DebounceGate
from allyfilter.page.strategies import (
    ModuleKind,
    StrategyResult,
    StrategyStatus,
    strategy_for,
)
from allyfilter.wrapper import WrapperRenderer


logger = logging.getLogger(__name__)

FOLDER_TREE = ".foldertree > .filemanager"


@dataclass
class PassReport:
    strategies: List[StrategyResult] = field(default_factory=list)
    annotated: int = 0
    # Tasks that ran or were skipped; equals the task count once the pass is done
    completed: int = 0

    @property
    def wrapped(self) -> int:
        return sum(result.wrapped for result in self.strategies)

    def status_of(self, kind: ModuleKind) -> Optional[StrategyStatus]:
        for result in self.strategies:
            if result.kind is kind:
                return result.status
        return None


class PlaceholderRunner:
    def __init__(
        self,
        page: LivePage,
        payload: Optional[PagePayload],
        settings: Optional[ClientSettings] = None,
        renderer: Optional[WrapperRenderer] = None,
    ):
        self.page = page
        self.payload = payload
        self.settings = settings or ClientSettings()
        self.renderer = renderer
        self.initialised = False
        self.gate: Optional[DebounceGate] = None
        self.reports: List[PassReport] = []

    @property
    def permissions(self) -> Permissions:
        if self.payload is None:
            return Permissions()
        init = self.payload.init
        return Permissions(can_view_feedback=init.can_view_feedback, can_download=init.can_download)

    def strategy(self, kind: ModuleKind):
        maps = self.payload.maps
        return strategy_for(kind)(
            self.page,
            maps.module_maps.get(kind.value),
            self.permissions,
            params=self.payload.init.params,
            settings=self.settings,
            renderer=self.renderer,
        )

    # =========================================================================
    # One pass
    # =========================================================================

    async def apply_placeholders(self) -> PassReport:
        report = PassReport()
        if self.payload is None:
            return report

        maps = self.payload.maps
        init = self.payload.init
        annotator = Annotator(self.page, init.params, init.course_id)

        async def annotation(mapping, method: Callable[..., int], *args) -> None:
            if mapping:
                report.annotated += method(*args)
            report.completed += 1

        async def placement(kind: ModuleKind) -> None:
            report.strategies.append(await self.strategy(kind).run())
            report.completed += 1

        tasks: List[Awaitable[None]] = [placement(kind) for kind in ModuleKind]
        tasks.extend([
            annotation(maps.section_maps, annotator.annotate_sections, maps.section_maps),
            annotation(maps.annotation_maps, annotator.annotate_modules, maps.annotation_maps),
            annotation({"course_id": init.course_id}, annotator.annotate_snap_course_summary),
            annotation(maps.annotation_maps, annotator.annotate_html_blocks, maps.annotation_maps),
        ])
        await asyncio.gather(*tasks)

        logger.debug("Pass complete: %d wrapped, %d annotated", report.wrapped, report.annotated)
        self.reports.append(report)
        return report

    # =========================================================================
    # Reruns
    # =========================================================================

    async def rerun_folder(self) -> StrategyResult:
        return await self.strategy(ModuleKind.FOLDER_FILES).run()

    def watch_folder_tree(self) -> None:
        node = self.page.select_one(FOLDER_TREE)
        if node is None:
            return
        try:
            self.page.observe(node, self._on_folder_mutation)
        except ObserverUnavailableError:
            logger.debug("No mutation observers, polling the folder tree instead")
            self.page.start_poller(self.rerun_folder, self.settings.folder_poll_interval)

    def _on_folder_mutation(self, node: Tag) -> None:
        async def rerun():
            await self.rerun_folder()
            # Observers are one-shot; watch the same node again
            self.watch_folder_tree()

        task = asyncio.ensure_future(rerun())
        task.add_done_callback(self._on_folder_rerun)

    def _on_folder_rerun(self, future: asyncio.Future) -> None:
        if future.cancelled():
            return
        if future.exception() is not None:
            logger.error("Folder rerun failed: %s", future.exception())

    def _on_first_run(self, future: asyncio.Future) -> None:
        if future.cancelled():
            return
        if future.exception() is not None:
            logger.error("Placeholder pass failed: %s", future.exception())
            return
        self.watch_folder_tree()
        self.initialised = True

    def _on_ajax_complete(self, url: str) -> None:
        if not self.initialised:
            return
        self.gate.trigger("ajax")

    def _on_mutation(self, node: Tag) -> None:
        self.gate.trigger(MUTATION)

    def start(self) -> Optional[asyncio.Future]:
        """
        Start watching the page. Must be called with the event loop running.

        Returns:
            Future for the first pass, or None when the viewer may neither
            view feedback nor download (nothing is wrapped then).
        """
        permissions = self.permissions
        if not (permissions.can_view_feedback or permissions.can_download):
            return None

        self.gate = DebounceGate(
            self.apply_placeholders,
            wait=self.settings.debounce,
            startup_grace=self.settings.startup_grace,
        )
        self.gate.start()
        first = self.gate.trigger("start")
        first.add_done_callback(self._on_first_run)

        self.page.on_ajax_complete(self._on_ajax_complete)
        self.page.on_mutation(self._on_mutation)
        return first

    def stop(self) -> None:
        if self.gate is not None:
            self.gate.cancel()
        self.page.stop_pollers()


async def process_page(
    html: str,
    url: str = "",
    payload: Optional[PagePayload] = None,
    settings: Optional[ClientSettings] = None,
) -> Tuple[str, PassReport]:
    """
    One pass over a saved page, without debouncing or watching.

    payload defaults to the maps embedded in the page itself.
    """
    if payload is None:
        payload = extract_payload(html)
    page = LivePage(html, url=url)
    report = await PlaceholderRunner(page, payload, settings).apply_placeholders()
    return page.serialize(), report
