"""
mapper.py - Build the maps delivered to the page

Files whose markup never passes through the text filter (resource links on
the course page, assignment/folder trees built by JavaScript, forum and
glossary attachments, lesson and book files) are wrapped on the page
instead. The page needs a reference map per module kind to do that, plus
section ids and annotation identifiers for rich text blocks.

With page=None the mapper serves the on-demand web service: no request
parameters are available, so the maps that depend on them come back empty
(lesson files fall back to every lesson in the course).
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from allyfilter.course import CourseModel, CourseModule, PageContext
from allyfilter.files import FileStore
from allyfilter.reentrancy import AnnotationLoopGuard, annotation_guard
from allyfilter.resolver import ReferenceMap


logger = logging.getLogger(__name__)

# Module map keys, in the order the page processes them
FILE_RESOURCES = "file_resources"
ASSIGNMENT_FILES = "assignment_files"
FORUM_FILES = "forum_files"
FOLDER_FILES = "folder_files"
GLOSSARY_FILES = "glossary_files"
LESSON_FILES = "lesson_files"
BOOK_FILES = "book_files"

LESSON_FILEAREAS = ("page_contents", "page_answers", "page_responses")
BOOK_CHAPTER_FILEAREA = "chapter"

AnnotationSource = Callable[[CourseModel], Dict[str, Any]]


def course_annotation_maps(course: CourseModel) -> Dict[str, Any]:
    """Default annotation source: whatever the course fixture carries."""
    return course.annotation_maps


@dataclass
class EntityMaps:
    module_maps: Dict[str, Any] = field(default_factory=dict)
    section_maps: Dict[str, int] = field(default_factory=dict)
    annotation_maps: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "moduleMaps": self.module_maps,
            "sectionMaps": self.section_maps,
            "annotationMaps": self.annotation_maps,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EntityMaps":
        return cls(
            module_maps=dict(data.get("moduleMaps") or {}),
            section_maps=dict(data.get("sectionMaps") or {}),
            annotation_maps=dict(data.get("annotationMaps") or {}),
        )


class EntityMapper:
    def __init__(
        self,
        course: CourseModel,
        store: FileStore,
        page: Optional[PageContext] = None,
        annotation_source: AnnotationSource = course_annotation_maps,
        guard: AnnotationLoopGuard = annotation_guard,
    ):
        self.course = course
        self.store = store
        self.page = page
        self.annotation_source = annotation_source
        self.guard = guard

    # =========================================================================
    # Helpers
    # =========================================================================

    @property
    def pagetype(self) -> str:
        return self.page.pagetype if self.page else ""

    def _param(self, name: str) -> Optional[int]:
        return self.page.param_int(name) if self.page else None

    def _cm_from_param(self, modname: Optional[str] = None) -> Optional[CourseModule]:
        cm = self.course.module(self._param("id"))
        if cm is not None and modname is not None and cm.modname != modname:
            logger.debug("Module %s is a %s, not a %s", cm.id, cm.modname, modname)
            return None
        return cm

    def cm_file_map(self, cm: CourseModule, component: str, filearea: str,
                    mimetype: Optional[str] = None) -> Dict[str, str]:
        """Reference map of one module's files in one file area."""
        files = self.store.files_in(cm.contextid, component, filearea, mimetype=mimetype)
        return dict(ReferenceMap.from_files(files))

    # =========================================================================
    # Module maps
    # =========================================================================

    def map_course_module_files(self, modname: str) -> Dict[int, Dict[str, str]]:
        """
        First file of every visible module of one type: {cmid: {filearea: pathhash}}.

        "First" is the highest sortorder, then the lowest id.
        """
        modules = [cm for cm in self.course.instances_of(modname) if cm.visible]
        if not modules:
            return {}

        by_module: Dict[int, Dict[str, str]] = {}
        for cm in sorted(modules, key=lambda m: m.contextid):
            files = [
                f for f in self.store.files_in(cm.contextid, f"mod_{modname}")
                if f.mimetype is not None
            ]
            if not files:
                continue
            first = sorted(files, key=lambda f: (-f.sortorder, f.id))[0]
            by_module[cm.id] = {first.filearea: first.pathnamehash}
        return by_module

    def map_resource_files(self) -> Dict[int, Dict[str, str]]:
        if self.page is not None and not (
            self.page.is_course_page or self.page.ajax or self.pagetype == "site-index"
        ):
            return {}
        return self.map_course_module_files("resource")

    def map_assignment_files(self) -> Dict[str, str]:
        if self.pagetype != "mod-assign-view":
            return {}
        cm = self._cm_from_param("assign")
        if cm is None:
            return {}
        return self.cm_file_map(cm, "mod_assign", "introattachment")

    def _forum_cm(self) -> Optional[CourseModule]:
        if self.course.format == "social":
            for cm in self.course.instances_of("forum"):
                if cm.type == "social":
                    return cm
            return None

        if self.pagetype not in ("mod-forum-view", "mod-forum-discuss"):
            return None

        if self._param("id") is not None:
            return self._cm_from_param("forum")

        forum_id = self._param("forum") or self._param("f")
        if not forum_id:
            discussion_id = self._param("d")
            if discussion_id:
                forum_id = self.course.forum_discussions.get(discussion_id)
        return self.course.instance("forum", forum_id)

    def map_forum_files(self) -> Dict[str, str]:
        cm = self._forum_cm()
        if cm is None:
            return {}
        return self.cm_file_map(cm, "mod_forum", "attachment")

    def map_folder_files(self) -> Dict[str, str]:
        if self.pagetype == "mod-folder-view":
            cm = self._cm_from_param("folder")
            if cm is None:
                return {}
            return self.cm_file_map(cm, "mod_folder", "content")

        if self.pagetype.startswith("course-view") or self.pagetype == "site-index":
            merged: Dict[str, str] = {}
            for cm in self.course.instances_of("folder"):
                if not cm.name:
                    continue
                merged.update(self.cm_file_map(cm, "mod_folder", "content"))
            return merged

        return {}

    def map_glossary_files(self) -> Dict[str, str]:
        if self.pagetype != "mod-glossary-view":
            return {}
        cm = self._cm_from_param("glossary")
        if cm is None:
            return {}
        return self.cm_file_map(cm, "mod_glossary", "attachment")

    def map_lesson_files(self) -> Dict[str, Any]:
        if self.page is None:
            return self.map_course_module_files("lesson")
        if self.pagetype not in ("mod-lesson-view", "mod-lesson-continue"):
            return {}
        cm = self._cm_from_param("lesson")
        if cm is None:
            return {}
        return {area: self.cm_file_map(cm, "mod_lesson", area) for area in LESSON_FILEAREAS}

    def map_book_files(self) -> Dict[str, str]:
        if not self.pagetype.startswith("mod-book-view"):
            return {}
        cm = self.course.module(self._param("cmid") or self._param("id"))
        if cm is None or cm.modname != "book":
            return {}
        return self.cm_file_map(cm, "mod_book", BOOK_CHAPTER_FILEAREA)

    def map_sections(self) -> Dict[str, int]:
        """Section ids keyed by "section-{number}"."""
        if self.page is not None and not (self.page.ajax or self.pagetype.startswith("course-view-")):
            return {}
        return {f"section-{s.section}": int(s.id) for s in self.course.sections}

    def annotation_maps(self) -> Dict[str, Any]:
        """Ask the annotation source, holding the course in the loop guard."""
        with self.guard.annotating(self.course.id):
            return self.annotation_source(self.course)

    def get_maps(self) -> EntityMaps:
        section_maps = self.map_sections()
        annotation_maps = self.annotation_maps()

        module_maps = {
            FILE_RESOURCES: self.map_resource_files(),
            ASSIGNMENT_FILES: self.map_assignment_files(),
            FORUM_FILES: self.map_forum_files(),
            FOLDER_FILES: self.map_folder_files(),
            GLOSSARY_FILES: self.map_glossary_files(),
            LESSON_FILES: self.map_lesson_files(),
            BOOK_FILES: self.map_book_files(),
        }
        logger.debug(
            "Maps for course %s: %s",
            self.course.id,
            ", ".join(f"{k}={len(v)}" for k, v in module_maps.items()),
        )
        return EntityMaps(module_maps, section_maps, annotation_maps)


def module_map_kinds() -> List[str]:
    return [FILE_RESOURCES, ASSIGNMENT_FILES, FORUM_FILES, FOLDER_FILES,
            GLOSSARY_FILES, LESSON_FILES, BOOK_FILES]
