# tests/conftest.py
"""
Pytest configuration and shared fixtures for allyfilter tests
"""
import logging
import pytest
from pathlib import Path
from typing import Dict

from allyfilter.course import Permissions, load_course
from allyfilter.reentrancy import AnnotationLoopGuard
from allyfilter.resolver import StaticReferenceSource


SITE = "https://lms.example.edu"
FILE_BASE = f"{SITE}/pluginfile.php"

IMG_URL = f"{FILE_BASE}/5/mod_resource/content/0/pic.png"
DOC_URL = f"{FILE_BASE}/5/mod_resource/content/0/notes.pdf"

COURSE_YAML = """
course:
  id: 2
  format: topics
  modules:
    - {id: 12, modname: resource, instance: 3, contextid: 5, name: Slides}
    - {id: 13, modname: folder, instance: 4, contextid: 6, name: Readings}
    - {id: 14, modname: assign, instance: 5, contextid: 7, name: Essay}
    - {id: 15, modname: forum, instance: 6, contextid: 8, name: News, type: general}
    - {id: 16, modname: lesson, instance: 7, contextid: 9, name: Intro lesson}
    - {id: 17, modname: book, instance: 8, contextid: 10, name: Handbook}
    - {id: 18, modname: glossary, instance: 9, contextid: 11, name: Terms}
  sections:
    - {id: 31, section: 1}
    - {id: 32, section: 2}
  forum_discussions: {70: 6}
  lesson_pages: {7: [41, 40]}
  book_chapters: {8: [51, 50]}
  annotation_maps:
    mod_forum:
      intros: {"15": "mod_forum:forum:intro:6"}
contexts:
  - {id: 2, level: course}
  - {id: 5, level: module, instance: 12}
  - {id: 6, level: module, instance: 13}
  - {id: 7, level: module, instance: 14}
  - {id: 8, level: module, instance: 15}
  - {id: 9, level: module, instance: 16}
  - {id: 10, level: module, instance: 17}
  - {id: 11, level: module, instance: 18}
  - {id: 99, level: user}
files:
  - {contextid: 5, component: mod_resource, filearea: content, itemid: 0, filename: slides.pdf, mimetype: application/pdf, sortorder: 1}
  - {contextid: 5, component: mod_resource, filearea: content, itemid: 0, filename: pic.png, mimetype: image/png}
  - {contextid: 6, component: mod_folder, filearea: content, itemid: 0, filename: a.pdf, mimetype: application/pdf}
  - {contextid: 6, component: mod_folder, filearea: content, itemid: 0, filepath: /sub/, filename: b.pdf, mimetype: application/pdf}
  - {contextid: 6, component: mod_folder, filearea: content, itemid: 0, filepath: /sub/, filename: "."}
  - {contextid: 7, component: mod_assign, filearea: introattachment, itemid: 0, filename: brief.docx}
  - {contextid: 8, component: mod_forum, filearea: attachment, itemid: 70, filename: post.pdf}
  - {contextid: 9, component: mod_lesson, filearea: page_contents, itemid: 40, filename: p40.png}
  - {contextid: 9, component: mod_lesson, filearea: page_contents, itemid: 41, filename: p41.png}
  - {contextid: 10, component: mod_book, filearea: chapter, itemid: 50, filename: c50.png}
  - {contextid: 10, component: mod_book, filearea: chapter, itemid: 51, filename: c51.png}
  - {contextid: 11, component: mod_glossary, filearea: attachment, itemid: 3, filename: term.pdf}
  - {contextid: 99, component: user, filearea: private, itemid: 0, filename: mine.pdf}
permissions:
  viewfeedback: true
  download: true
page:
  pagetype: course-view-topics
  path: /course/view.php
  params: {id: 2}
"""


@pytest.fixture
def course_file(tmp_path: Path) -> Path:
    """Course fixture with one module of every mapped kind"""
    path = tmp_path / "course.yaml"
    path.write_text(COURSE_YAML)
    return path


@pytest.fixture
def bundle(course_file: Path):
    return load_course(course_file)


@pytest.fixture
def file_map() -> Dict[str, str]:
    """Flat path -> path hash map for the two mod_resource files above"""
    return {
        "5/mod_resource/content/0/pic.png": "abc123",
        "5/mod_resource/content/0/notes.pdf": "def456",
    }


@pytest.fixture
def references(file_map):
    return StaticReferenceSource(file_map)


@pytest.fixture
def full_access() -> Permissions:
    return Permissions(can_view_feedback=True, can_download=True)


@pytest.fixture
def loop_guard() -> AnnotationLoopGuard:
    """Private guard so tests never share the process-wide registry"""
    return AnnotationLoopGuard()


@pytest.fixture(autouse=True)
def isolate_env(monkeypatch, tmp_path):
    """Keep real credentials and global config out of every test"""
    for name in (
        "ALLY_SERVICE_URL",
        "ALLY_SERVICE_TOKEN",
        "ALLY_CREDENTIAL_FILE",
        "ALLY_WWWROOT",
        "ALLY_THEME",
        "ALLY_OMIT_CACHE",
        "ALLY_DISABLE_CHECK_PAGETYPE",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


@pytest.fixture(autouse=True)
def restore_root_logger():
    """setup_logging() replaces root handlers; put pytest's back afterwards"""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
