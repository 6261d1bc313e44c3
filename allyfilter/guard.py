"""
guard.py - Don't wrap what is already wrapped

A candidate that already sits inside wrapper markup is never wrapped again.
If the wrapper's placeholders lost their data-file-id/data-file-url
attributes on the way (lesson answers are re-rendered through a transform
that strips them), the attributes are spliced back in, but only for URLs
already resolved earlier in the same request.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

from bs4 import Tag
from markupsafe import escape

from allyfilter.extractor import WRAPPER_CLASS, Candidate
from allyfilter.markup import MarkupSource
from allyfilter.wrapper import MarkupPatch


logger = logging.getLogger(__name__)

FILE_ID_ATTR = "data-file-id"
FILE_URL_ATTR = "data-file-url"

# Placeholder spans that carry the file data attributes
PLACEHOLDER_CLASSES = ("ally-image-cover", "ally-download", "ally-feedback")

_PLACEHOLDER_TAG = re.compile(
    r'(<span\b[^>]*?\bclass=["\'](?:%s)["\'])([^>]*>)' % "|".join(PLACEHOLDER_CLASSES)
)


class GuardOutcome(Enum):
    NOT_WRAPPED = "not_wrapped"
    ALREADY_PROCESSED = "already_processed"
    REPAIRED = "repaired"
    CANNOT_REPAIR = "cannot_repair"


@dataclass
class GuardResult:
    outcome: GuardOutcome
    wrapper: Optional[Tag] = None
    patch: Optional[MarkupPatch] = None

    @property
    def skip(self) -> bool:
        """True when the candidate must not be wrapped."""
        return self.outcome is not GuardOutcome.NOT_WRAPPED


def _has_class(tag: Tag, name: str) -> bool:
    classes = tag.get("class") or []
    if isinstance(classes, str):
        classes = classes.split()
    return name in classes


def find_wrapper(element: Tag) -> Optional[Tag]:
    """Nearest enclosing wrapper span, if any."""
    for parent in element.parents:
        if isinstance(parent, Tag) and parent.name == "span" and _has_class(parent, WRAPPER_CLASS):
            return parent
    return None


def has_file_data(tag: Tag) -> bool:
    return tag.has_attr(FILE_ID_ATTR) and tag.has_attr(FILE_URL_ATTR)


def wrapper_has_file_data(wrapper: Tag) -> bool:
    """True if the wrapper, or any span inside it, carries both data attributes."""
    if has_file_data(wrapper):
        return True
    return any(has_file_data(span) for span in wrapper.find_all("span"))


def repair_placeholders(segment: str, fileid: str, url: str) -> str:
    """Add the data attributes to every placeholder span in segment that lacks them."""
    attrs = f' {FILE_ID_ATTR}="{escape(fileid)}" {FILE_URL_ATTR}="{escape(url)}"'

    def splice(match: re.Match) -> str:
        if FILE_ID_ATTR in match.group(0):
            return match.group(0)
        return match.group(1) + attrs + match.group(2)

    return _PLACEHOLDER_TAG.sub(splice, segment)


def check_and_repair(
    candidate: Candidate,
    source: MarkupSource,
    file_ids_by_url: Dict[str, str],
) -> GuardResult:
    """
    Decide what to do with a candidate that may already be wrapped.

    The repair window runs from the end of the candidate element to the end
    of its wrapper, so placeholders belonging to other wrappers are never
    touched.
    """
    wrapper = find_wrapper(candidate.element)
    if wrapper is None:
        return GuardResult(GuardOutcome.NOT_WRAPPED)

    if wrapper_has_file_data(wrapper):
        return GuardResult(GuardOutcome.ALREADY_PROCESSED, wrapper)

    fileid = file_ids_by_url.get(candidate.url)
    if not fileid:
        logger.info("Wrapper for %s lost its file data and the file was not resolved in this request; leaving it", candidate.url)
        return GuardResult(GuardOutcome.CANNOT_REPAIR, wrapper)

    element_span = source.span_for(candidate.element)
    wrapper_span = source.span_for(wrapper)
    if element_span is None or wrapper_span is None or wrapper_span.end is None:
        return GuardResult(GuardOutcome.CANNOT_REPAIR, wrapper)

    patch = MarkupPatch(
        start=element_span.element_end,
        end=wrapper_span.end,
        render=lambda segment: repair_placeholders(segment, fileid, candidate.url),
        label=f"repair {candidate.url}",
    )
    return GuardResult(GuardOutcome.REPAIRED, wrapper, patch)
