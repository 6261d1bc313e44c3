"""
strategies.py - Where each kind of module puts its files on the page

One strategy per module map kind. A strategy knows when its part of the
page exists (ready), which selectors find its file elements (locate) and
how to wrap them (apply). Some file trees are built by JavaScript after
load, so run() polls ready() for a bounded time and quietly does nothing if
the tree never shows up.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Type

from allyfilter.config_utils import ClientSettings
from allyfilter.course import Permissions
from allyfilter.mapper import (
    ASSIGNMENT_FILES,
    BOOK_FILES,
    FILE_RESOURCES,
    FOLDER_FILES,
    FORUM_FILES,
    GLOSSARY_FILES,
    LESSON_FILES,
    module_map_kinds,
)
from allyfilter.page.dom import LivePage
from allyfilter.page.placement import place_hold_selector, place_wrapper
from allyfilter.page.scheduling import when_true
from allyfilter.urls import FILE_URL_MARKER, url_encode_file_path
from allyfilter.wrapper import WrapperRenderer


logger = logging.getLogger(__name__)

FILE_LINK = f'a[href*="{FILE_URL_MARKER}"]'
FILE_IMAGE = f'img[src*="{FILE_URL_MARKER}"]'


class ModuleKind(Enum):
    FILE_RESOURCES = FILE_RESOURCES
    ASSIGNMENT_FILES = ASSIGNMENT_FILES
    FOLDER_FILES = FOLDER_FILES
    FORUM_FILES = FORUM_FILES
    GLOSSARY_FILES = GLOSSARY_FILES
    LESSON_FILES = LESSON_FILES
    BOOK_FILES = BOOK_FILES


class StrategyStatus(Enum):
    SKIPPED = "skipped"       # empty map
    NOT_READY = "not_ready"   # container never rendered
    DONE = "done"


@dataclass
class StrategyResult:
    kind: ModuleKind
    status: StrategyStatus
    wrapped: int = 0


def item_of(path: str) -> Optional[str]:
    """Item id segment of a "ctx/component/area/item/..." map path."""
    parts = path.split("/")
    return parts[3] if len(parts) > 4 else None


class PlacementStrategy:
    kind: ModuleKind

    def __init__(
        self,
        page: LivePage,
        mapping: Any,
        permissions: Permissions,
        params: Optional[Dict[str, Any]] = None,
        settings: Optional[ClientSettings] = None,
        renderer: Optional[WrapperRenderer] = None,
    ):
        self.page = page
        self.mapping = mapping or {}
        self.permissions = permissions
        self.params = params or {}
        self.settings = settings or ClientSettings()
        self.renderer = renderer

    def uses_theme(self, name: str) -> bool:
        if self.settings.theme:
            return self.settings.theme == name
        return self.page.has_body_class(f"theme-{name}")

    def ready(self) -> bool:
        return True

    def prepare(self) -> None:
        """Reshape the page before locating, if the markup needs it."""

    def locate(self) -> List[str]:
        raise NotImplementedError

    def apply(self) -> int:
        return sum(
            place_hold_selector(self.page, selector, self.mapping, self.permissions, self.renderer)
            for selector in self.locate()
        )

    async def run(self) -> StrategyResult:
        if not self.mapping:
            return StrategyResult(self.kind, StrategyStatus.SKIPPED)
        ready = await when_true(
            self.ready,
            max_iterations=self.settings.poll_max_iterations,
            interval=self.settings.poll_interval,
        )
        if not ready:
            logger.debug("%s: container never rendered, leaving files unwrapped", self.kind.value)
            return StrategyResult(self.kind, StrategyStatus.NOT_READY)
        self.prepare()
        wrapped = self.apply()
        if wrapped:
            logger.debug("%s: wrapped %d file(s)", self.kind.value, wrapped)
        return StrategyResult(self.kind, StrategyStatus.DONE, wrapped)


class ResourceLinkStrategy(PlacementStrategy):
    """
    The link to each file resource on the course page.

    The map gives one path hash per module; the link itself points at the
    module's view page, not at the file, so elements are found by module id.
    """
    kind = ModuleKind.FILE_RESOURCES

    def module_selector(self, cmid: str) -> str:
        if self.uses_theme("snap") and not self.page.has_body_class("format-tiles"):
            return (f"#module-{cmid}:not(.snap-native) .activityinstance "
                    ".snap-asset-link a:first-of-type:not(.clickable-region)")
        if self.page.has_body_class("format-tiles"):
            return f"#module-{cmid} .activityinstance a:first-of-type:not(.clickable-region,.editing_move)"
        return f"#module-{cmid} .activity-instance a:first-of-type:not(.clickable-region,.editing_move)"

    def locate(self) -> List[str]:
        return [self.module_selector(cmid) for cmid in self.mapping]

    def apply(self) -> int:
        wrapped = 0
        for cmid, areas in self.mapping.items():
            path_hash = (areas or {}).get("content")
            if not path_hash:
                continue
            for element in self.page.select(self.module_selector(cmid)):
                if element.select(".filter-ally-wrapper"):
                    continue
                if place_wrapper(self.page, element, path_hash, element.get("href", ""), False,
                                 self.permissions, self.renderer):
                    wrapped += 1
        return wrapped


class AssignmentTreeStrategy(PlacementStrategy):
    kind = ModuleKind.ASSIGNMENT_FILES

    def ready(self) -> bool:
        return bool(self.page.select('div[id*="assign_files_tree"] .ygtvitem'))

    def locate(self) -> List[str]:
        return [f'div[id*="assign_files_tree"] {FILE_LINK}']


class FolderTreeStrategy(PlacementStrategy):
    """Folder trees, including links inside expanded subfolders."""
    kind = ModuleKind.FOLDER_FILES

    TREE = ".foldertree > .filemanager"

    def ready(self) -> bool:
        return bool(self.page.select(f"{self.TREE} .ygtvitem"))

    def locate(self) -> List[str]:
        return [f"{self.TREE} span:not(.filter-ally-wrapper) > {FILE_LINK}"]


class ForumAttachmentStrategy(PlacementStrategy):
    kind = ModuleKind.FORUM_FILES

    def locate(self) -> List[str]:
        return [
            f".forumpost .attachedimages {FILE_IMAGE}",
            f".forumpost .body-content-container {FILE_LINK}",
        ]


def restructure_glossary_attachments(page: LivePage) -> int:
    """
    Group each glossary attachment's icon link and main link in a row.

    Glossary attachments render as icon link, link, <br>, repeated, with
    nothing around each one. Every <br> becomes a div.ally-glossary-attachment-row
    holding the two links before it. Output has no <br> left, so running
    this again changes nothing.
    """
    rows = 0
    for br in page.select(".entry .attachments > br"):
        main = br.find_previous_sibling()
        if main is not None and not (main.name == "a" and FILE_URL_MARKER in main.get("href", "")):
            main = None
        icon = None
        if main is not None:
            main["class"] = list(main.get("class") or []) + ["ally-glossary-attachment"]
            icon = main.find_previous_sibling()
            if icon is not None and not (icon.name == "a" and FILE_URL_MARKER in icon.get("href", "")):
                icon = None

        row = page.new_tag("div", {"class": "ally-glossary-attachment-row"})
        br.insert_after(row)
        for anchor in (icon, main):
            if anchor is not None:
                row.append(anchor.extract())
        br.decompose()
        rows += 1
    return rows


class GlossaryAttachmentStrategy(PlacementStrategy):
    kind = ModuleKind.GLOSSARY_FILES

    def prepare(self) -> None:
        restructure_glossary_attachments(self.page)

    def locate(self) -> List[str]:
        return [".entry .attachments .ally-glossary-attachment"]


class PathScopedStrategy(PlacementStrategy):
    """
    Files found by their own encoded path rather than by container.

    Used where the page shows one item at a time (a lesson page, a book
    chapter) and the map covers them all.
    """

    def path_selectors(self, paths, prefix: str = "") -> List[str]:
        selectors = []
        for path in paths:
            encoded = url_encode_file_path(path)
            selectors.append(f'{prefix}img[src*="{encoded}"], {prefix}a[href*="{encoded}"]')
        return selectors

    def place_paths(self, mapping: Mapping[str, str], prefix: str = "") -> int:
        return sum(
            place_hold_selector(self.page, selector, mapping, self.permissions, self.renderer)
            for selector in self.path_selectors(mapping, prefix)
        )


class LessonContentStrategy(PathScopedStrategy):
    """
    Lesson page contents, answers and responses.

    Each file area has its own map and its own part of the page. Page
    content is limited to the page being shown when its id is known.
    """
    kind = ModuleKind.LESSON_FILES

    # file area -> selector prefix (trailing space intended)
    AREAS = (
        ("page_contents", ""),
        ("page_answers", ".studentanswer table tr:nth-child(1) "),
        ("page_responses", ".studentanswer table tr.lastrow "),
    )

    def current_page_id(self) -> Optional[str]:
        pageid = self.params.get("pageid") or self.page.query.get("pageid")
        return str(pageid) if pageid else None

    def area_map(self, area: str) -> Dict[str, str]:
        mapping = dict(self.mapping.get(area) or {})
        pageid = self.current_page_id()
        if area == "page_contents" and pageid is not None:
            mapping = {path: h for path, h in mapping.items() if item_of(path) == pageid}
        return mapping

    def locate(self) -> List[str]:
        selectors = []
        for area, prefix in self.AREAS:
            selectors.extend(self.path_selectors(self.area_map(area), prefix))
        return selectors

    def apply(self) -> int:
        wrapped = 0
        for area, prefix in self.AREAS:
            mapping = self.area_map(area)
            if mapping:
                wrapped += self.place_paths(mapping, prefix)
        return wrapped


class BookChapterStrategy(PathScopedStrategy):
    """Files in the book chapter being shown."""
    kind = ModuleKind.BOOK_FILES

    PREFIX = ".book_content "

    def chapter_id(self) -> Optional[str]:
        chapterid = self.params.get("chapterid") or self.page.query.get("chapterid")
        return str(chapterid) if chapterid else None

    def chapter_map(self) -> Dict[str, str]:
        chapterid = self.chapter_id()
        if chapterid is None:
            return {}
        return {path: h for path, h in self.mapping.items() if item_of(path) == chapterid}

    def locate(self) -> List[str]:
        return self.path_selectors(self.chapter_map(), self.PREFIX)

    def apply(self) -> int:
        return self.place_paths(self.chapter_map(), self.PREFIX)


STRATEGIES: Dict[ModuleKind, Type[PlacementStrategy]] = {
    strategy.kind: strategy
    for strategy in (
        ResourceLinkStrategy,
        AssignmentTreeStrategy,
        FolderTreeStrategy,
        ForumAttachmentStrategy,
        GlossaryAttachmentStrategy,
        LessonContentStrategy,
        BookChapterStrategy,
    )
}

_unhandled = [kind.value for kind in ModuleKind if kind not in STRATEGIES]
_unknown = sorted(set(module_map_kinds()) - {kind.value for kind in ModuleKind})
if _unhandled or _unknown:
    raise ImportError(f"Module kinds without a strategy: {_unhandled + _unknown}")


def strategy_for(kind: ModuleKind) -> Type[PlacementStrategy]:
    return STRATEGIES[kind]
