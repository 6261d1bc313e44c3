"""
course.py - Course, page and permission collaborators

Stand-ins for what the host LMS knows about the current request: the course
and its modules, the page being rendered (type, layout, query parameters),
and the viewer's feedback/download grants. Everything loads from a single
YAML course fixture:

    course:
      id: 2
      format: topics
      modules:
        - {id: 12, modname: resource, instance: 3, contextid: 5}
      sections:
        - {id: 31, section: 1}
    contexts: [...]          # see files.py
    files: [...]
    permissions:
      viewfeedback: true
      download: true
      contexts:
        5: {viewfeedback: false, download: true}
    page:
      pagetype: course-view-topics
      path: /course/view.php
      params: {id: 2}
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from allyfilter.files import FileStore, load_data_file


logger = logging.getLogger(__name__)

_COURSE_PAGE_PATH = re.compile(r"/course/view\.php$|/course/section\.php")


@dataclass
class Permissions:
    """Viewer capabilities: course-wide defaults with per-context overrides."""
    can_view_feedback: bool = False
    can_download: bool = False
    by_context: Dict[int, Tuple[bool, bool]] = field(default_factory=dict)

    def for_context(self, contextid: Optional[int]) -> Tuple[bool, bool]:
        """(can_view_feedback, can_download) for one context."""
        if contextid is not None and int(contextid) in self.by_context:
            return self.by_context[int(contextid)]
        return self.can_view_feedback, self.can_download

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "Permissions":
        data = data or {}
        by_context = {}
        for contextid, grants in (data.get("contexts") or {}).items():
            by_context[int(contextid)] = (
                bool(grants.get("viewfeedback", False)),
                bool(grants.get("download", False)),
            )
        return cls(
            can_view_feedback=bool(data.get("viewfeedback", False)),
            can_download=bool(data.get("download", False)),
            by_context=by_context,
        )


@dataclass
class CourseModule:
    id: int
    modname: str
    instance: int
    contextid: int
    name: str = ""
    visible: bool = True
    # Forum type ("social", "general", ...), where it matters
    type: Optional[str] = None


@dataclass
class Section:
    id: int
    section: int
    name: str = ""


@dataclass
class PageContext:
    """The page being rendered."""
    pagetype: str = "course-view-topics"
    pagelayout: str = "course"
    path: str = "/course/view.php"
    params: Dict[str, Any] = field(default_factory=dict)
    ajax: bool = False

    def param_int(self, name: str) -> Optional[int]:
        """Integer query parameter, None when absent or not an integer."""
        value = self.params.get(name)
        if value is None or value == "":
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    @property
    def is_course_page(self) -> bool:
        return bool(_COURSE_PAGE_PATH.search(self.path))

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PageContext":
        data = data or {}
        return cls(
            pagetype=data.get("pagetype", cls.pagetype),
            pagelayout=data.get("pagelayout", cls.pagelayout),
            path=data.get("path", cls.path),
            params=dict(data.get("params") or {}),
            ajax=bool(data.get("ajax", False)),
        )


@dataclass
class CourseModel:
    id: int
    format: str = "topics"
    filter_active: bool = True
    modules: List[CourseModule] = field(default_factory=list)
    sections: List[Section] = field(default_factory=list)
    # Discussion id -> forum instance id
    forum_discussions: Dict[int, int] = field(default_factory=dict)
    # Lesson instance id -> page ids / book instance id -> chapter ids
    lesson_pages: Dict[int, List[int]] = field(default_factory=dict)
    book_chapters: Dict[int, List[int]] = field(default_factory=dict)
    # What the annotation service returns for this course
    annotation_maps: Dict[str, Any] = field(default_factory=dict)
    # Context id -> rich content identifier of the text filtered in it
    content_annotations: Dict[int, str] = field(default_factory=dict)

    def module(self, cmid: Optional[int]) -> Optional[CourseModule]:
        if cmid is None:
            return None
        for cm in self.modules:
            if cm.id == cmid:
                return cm
        return None

    def instances_of(self, modname: str) -> List[CourseModule]:
        return [cm for cm in self.modules if cm.modname == modname]

    def instance(self, modname: str, instance_id: Optional[int]) -> Optional[CourseModule]:
        if instance_id is None:
            return None
        for cm in self.instances_of(modname):
            if cm.instance == instance_id:
                return cm
        return None

    def first_lesson_page(self, lesson_id: int) -> Optional[int]:
        pages = self.lesson_pages.get(lesson_id) or []
        return min(pages) if pages else None

    def first_book_chapter(self, book_id: int) -> Optional[int]:
        chapters = self.book_chapters.get(book_id) or []
        return min(chapters) if chapters else None

    def annotation_for(self, contextid: Optional[int]) -> Optional[str]:
        if contextid is None:
            return None
        return self.content_annotations.get(int(contextid))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CourseModel":
        modules = [
            CourseModule(
                id=int(m["id"]),
                modname=m["modname"],
                instance=int(m.get("instance", m["id"])),
                contextid=int(m["contextid"]),
                name=m.get("name", ""),
                visible=bool(m.get("visible", True)),
                type=m.get("type"),
            )
            for m in data.get("modules") or []
        ]
        sections = [
            Section(id=int(s["id"]), section=int(s["section"]), name=s.get("name", ""))
            for s in data.get("sections") or []
        ]
        return cls(
            id=int(data.get("id", 1)),
            format=data.get("format", "topics"),
            filter_active=bool(data.get("filter_active", True)),
            modules=modules,
            sections=sections,
            forum_discussions={int(k): int(v) for k, v in (data.get("forum_discussions") or {}).items()},
            lesson_pages={int(k): [int(p) for p in v] for k, v in (data.get("lesson_pages") or {}).items()},
            book_chapters={int(k): [int(c) for c in v] for k, v in (data.get("book_chapters") or {}).items()},
            annotation_maps=dict(data.get("annotation_maps") or {}),
            content_annotations={int(k): str(v) for k, v in (data.get("content_annotations") or {}).items()},
        )


@dataclass
class CourseBundle:
    """Everything one course fixture describes."""
    course: CourseModel
    store: FileStore
    permissions: Permissions
    page: PageContext


def load_course(path: Path) -> CourseBundle:
    data = load_data_file(Path(path), "course fixture")
    bundle = CourseBundle(
        course=CourseModel.from_dict(data.get("course") or {}),
        store=FileStore.from_dict(data),
        permissions=Permissions.from_dict(data.get("permissions")),
        page=PageContext.from_dict(data.get("page")),
    )
    logger.debug("Loaded course %s with %d modules", bundle.course.id, len(bundle.course.modules))
    return bundle
