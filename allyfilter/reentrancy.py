"""
reentrancy.py - Process-wide "currently annotating this course" registry

Building annotation maps can rebuild the course cache, which runs the text
filters again, which would build the annotation maps again. The registry
breaks that loop: setup is skipped for a course that is being annotated.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Hashable, Iterator, Set

from allyfilter.errors import annotation_loop_error


logger = logging.getLogger(__name__)


class AnnotationLoopGuard:
    def __init__(self):
        self._courses: Set[Hashable] = set()
        self._lock = threading.Lock()

    def is_annotating(self, course_id: Hashable) -> bool:
        with self._lock:
            return course_id in self._courses

    def start(self, course_id: Hashable) -> None:
        """
        Raises:
            AnnotationLoopError: if the course is already being annotated
        """
        with self._lock:
            if course_id in self._courses:
                raise annotation_loop_error(course_id, started=True)
            self._courses.add(course_id)
        logger.debug("Started annotating course %s", course_id)

    def end(self, course_id: Hashable) -> None:
        """
        Raises:
            AnnotationLoopError: if the course is not being annotated
        """
        with self._lock:
            if course_id not in self._courses:
                raise annotation_loop_error(course_id, started=False)
            self._courses.discard(course_id)
        logger.debug("Finished annotating course %s", course_id)

    @contextmanager
    def annotating(self, course_id: Hashable) -> Iterator[None]:
        """Hold the course for the duration of the block, releasing it on error too."""
        self.start(course_id)
        try:
            yield
        finally:
            self.end(course_id)


# Shared by every filter and mapper in the process
annotation_guard = AnnotationLoopGuard()
