"""
filter.py - Server-side text filter

TextFilter.filter() rewrites one rendered HTML fragment: every anchor or
image pointing at a stored file the viewer may get feedback on or download
is wrapped in placeholder markup. Nothing else in the fragment changes; an
element that cannot be resolved is left exactly as it was.

TextFilter.setup() runs once per page and produces the footer script with
the maps the page uses for content that never passes through the filter.
"""

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

from bs4 import BeautifulSoup, Tag
from markupsafe import escape

from allyfilter.bootstrap import PageInit, render_script
from allyfilter.config_utils import AllyConfig
from allyfilter.course import CourseModel, PageContext, Permissions
from allyfilter.extractor import Candidate, find_candidates
from allyfilter.files import FileStore
from allyfilter.guard import check_and_repair
from allyfilter.mapper import AnnotationSource, EntityMapper, course_annotation_maps
from allyfilter.markup import MarkupSource
from allyfilter.reentrancy import AnnotationLoopGuard, annotation_guard
from allyfilter.resolver import ReferenceSource, resolve
from allyfilter.urls import FILE_URL_MARKER, UrlProperties, decompose_file_url
from allyfilter.wrapper import MarkupPatch, WrapperDirective, WrapperRenderer, apply_patches


logger = logging.getLogger(__name__)

ANNOTATION_ATTR = "data-ally-richcontent"
ADMIN_PAGETYPES = frozenset({"admin-setting-additionalhtml", "admin-settings", "admin-search"})

_ANNOTATION_VALUE = re.compile(
    r"""(\s%s\s*=\s*)("[^"]*"|'[^']*'|[^\s>]+)""" % re.escape(ANNOTATION_ATTR)
)


@dataclass
class FilterRequest:
    """State shared by every filter instance during one request."""
    # URL -> path hash of every file wrapped so far
    file_ids_by_url: Dict[str, str] = field(default_factory=dict)
    js_initialised: bool = False
    footer_html: str = ""


@dataclass
class FilterStats:
    candidates: int = 0
    wrapped: int = 0
    repaired: int = 0
    skipped: int = 0


def annotate_fragment(text: str, annotation: Optional[str]) -> str:
    """
    Attach a rich content identifier to the fragment.

    A fragment whose only node is a div.no-overflow gets the attribute on
    that div; anything else is wrapped in a new div.no-overflow carrying it.
    """
    if not annotation:
        return text

    soup = BeautifulSoup(text, "html.parser")
    nodes = list(soup.contents)
    root = nodes[0] if len(nodes) == 1 else None
    should_wrap = (
        not isinstance(root, Tag)
        or root.name != "div"
        or "no-overflow" not in " ".join(root.get("class") or [])
    )
    if should_wrap:
        return f'<div class="no-overflow" {ANNOTATION_ATTR}="{escape(annotation)}">{text}</div>'

    if root.get(ANNOTATION_ATTR) == annotation:
        return text

    span = MarkupSource(text).span_for(root)
    if span is None:
        return text
    start_tag = text[span.start:span.start_tag_end]
    value = f'"{escape(annotation)}"'
    if root.has_attr(ANNOTATION_ATTR):
        new_tag = _ANNOTATION_VALUE.sub(lambda m: m.group(1) + value, start_tag, count=1)
    else:
        insert_at = len(start_tag) - (2 if start_tag.endswith("/>") else 1)
        new_tag = f"{start_tag[:insert_at].rstrip()} {ANNOTATION_ATTR}={value}{start_tag[insert_at:]}"
    return text[:span.start] + new_tag + text[span.start_tag_end:]


class TextFilter:
    """
    One filter instance per context in which text is filtered.

    Args:
        references: where contexts and reference maps come from
        permissions: viewer grants, per context
        config: settings (supported components, page type checks)
        annotation: rich content identifier of the text filtered here
        request: state shared across filter instances in this request
        url_properties: optional collaborator that decomposes file URLs
    """

    def __init__(
        self,
        references: ReferenceSource,
        permissions: Permissions,
        config: Optional[AllyConfig] = None,
        annotation: Optional[str] = None,
        request: Optional[FilterRequest] = None,
        url_properties: Optional[UrlProperties] = None,
        renderer: Optional[WrapperRenderer] = None,
        guard: AnnotationLoopGuard = annotation_guard,
    ):
        self.references = references
        self.permissions = permissions
        self.config = config or AllyConfig()
        self.annotation = annotation
        self.request = request or FilterRequest()
        self.url_properties = url_properties
        self.renderer = renderer or WrapperRenderer()
        self.guard = guard
        self.active = self.config.enabled
        self.stats = FilterStats()

    # =========================================================================
    # Page setup
    # =========================================================================

    def page_params(self, course: CourseModel, page: PageContext) -> dict:
        """Lesson or book parameters the page needs to pick the current content."""
        if "mod-lesson-view" in page.pagetype:
            pageid = page.param_int("pageid")
            if pageid is None:
                cm = course.module(page.param_int("id"))
                if cm is not None:
                    pageid = course.first_lesson_page(cm.instance)
            return {"pageid": pageid, "answerid": page.param_int("answerid")}

        if "mod-book" in page.pagetype and page.pagetype != "mod-book-edit":
            chapterid = page.param_int("chapterid")
            if chapterid is None:
                cmid = page.param_int("cmid")
                if cmid is None:
                    cmid = page.param_int("id")
                cm = course.module(cmid)
                if cm is not None:
                    chapterid = course.first_book_chapter(cm.instance)
                else:
                    logger.error("Could not resolve course module %s for book parameters", cmid)
            return {"chapterid": chapterid}

        return {}

    def setup(
        self,
        course: CourseModel,
        page: PageContext,
        store: FileStore,
        annotation_source: AnnotationSource = course_annotation_maps,
    ) -> Optional[str]:
        """
        Prepare the page. Returns the footer script the first time it is
        needed in this request, None otherwise.
        """
        if not course.filter_active:
            self.active = False
            return None
        if not self.active:
            return None

        if page.pagelayout == "embedded":
            return None
        if page.pagetype in ADMIN_PAGETYPES:
            return None
        # Course cache rebuilds can land back here while annotating
        if self.guard.is_annotating(course.id):
            return None

        if self.config.disable_check_pagetype or page.pagetype == "site-index":
            jsinit = not self.request.js_initialised
        else:
            jsinit = not self.request.js_initialised and course.id > 1
        if not jsinit:
            return None

        can_view_feedback, can_download = self.permissions.can_view_feedback, self.permissions.can_download
        maps = EntityMapper(course, store, page, annotation_source=annotation_source, guard=self.guard).get_maps()
        init = PageInit(can_view_feedback, can_download, course.id, self.page_params(course, page))

        script = render_script(maps, init)
        self.request.footer_html += script
        self.request.js_initialised = True
        logger.debug("Initialised page maps for course %s (%s)", course.id, page.pagetype)
        return script

    # =========================================================================
    # Filtering
    # =========================================================================

    def _directive(self, candidate: Candidate, html: str, fileid: str,
                   can_view_feedback: bool, can_download: bool) -> WrapperDirective:
        return WrapperDirective(
            fileid=fileid,
            url=candidate.url,
            html=html,
            isimage=candidate.is_image,
            canviewfeedback=can_view_feedback,
            candownload=can_download,
        )

    def _patch_for(self, candidate: Candidate, source: MarkupSource) -> Optional[MarkupPatch]:
        """Work out what, if anything, to do with one candidate."""
        url = candidate.url
        ref = decompose_file_url(url, self.url_properties)
        if ref is None:
            return None

        # Glossary attachments need their markup restructured; the page does it
        if ref.component == "mod_glossary" and ref.filearea == "attachment":
            return None

        if ref.contextid is None:
            return None
        context = self.references.context(ref.contextid)
        if context is None:
            logger.debug("Context %s not found for %s", ref.contextid, url)
            return None
        if context.blacklisted:
            logger.debug("Context %s is %s level, skipping %s", context.id, context.level.name, url)
            return None

        can_view_feedback, can_download = self.permissions.for_context(context.id)
        if not can_view_feedback and not can_download:
            return None
        if ref.component not in self.config.supported_components:
            can_view_feedback = False

        if ref.component == "mod_page" and ref.filearea == "content":
            ref = replace(ref, itemid=0)

        guarded = check_and_repair(candidate, source, self.request.file_ids_by_url)
        if guarded.skip:
            if guarded.patch is not None:
                self.stats.repaired += 1
            return guarded.patch

        fileid = resolve(ref, self.references.map_for(ref))
        if fileid is None:
            return None

        self.request.file_ids_by_url[url] = fileid

        span = source.span_for(candidate.element)
        if span is None:
            return None
        end = span.start_tag_end if candidate.is_image else span.element_end

        def render(current: str) -> str:
            return self.renderer.render(
                self._directive(candidate, current, fileid, can_view_feedback, can_download)
            )

        self.stats.wrapped += 1
        return MarkupPatch(span.start, end, render, label=url)

    def filter(self, text: str) -> str:
        if not self.active:
            return text

        text = annotate_fragment(text, self.annotation)

        if FILE_URL_MARKER not in text:
            return text

        soup = BeautifulSoup(text, "html.parser")
        source = MarkupSource(text)
        candidates = find_candidates(soup)
        self.stats.candidates += len(candidates)

        patches: List[MarkupPatch] = []
        repair_windows = set()
        for candidate in candidates:
            patch = self._patch_for(candidate, source)
            if patch is None:
                self.stats.skipped += 1
                continue
            # One repair per wrapper
            if patch.label.startswith("repair "):
                if patch.end in repair_windows:
                    continue
                repair_windows.add(patch.end)
            patches.append(patch)

        if not patches:
            return text

        text, applied = apply_patches(text, patches)
        logger.debug("Applied %d of %d patches", applied, len(patches))
        return text
