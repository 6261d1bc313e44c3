"""
placement.py - Wrap elements in the live page

The page is never re-parsed from a string. The wrapper is rendered around a
marker span, inserted right after the target, and the target is then moved
into the marker's place. The target keeps its identity (and anything bound
to it) the whole time.
"""

import logging
from typing import Mapping, Optional

from bs4 import Tag

from allyfilter.course import Permissions
from allyfilter.guard import FILE_ID_ATTR, find_wrapper
from allyfilter.page.dom import LivePage
from allyfilter.urls import lookup_url
from allyfilter.wrapper import WrapperDirective, WrapperRenderer


logger = logging.getLogger(__name__)

TARGET_MARKER_PREFIX = "content-target-"

_default_renderer: Optional[WrapperRenderer] = None


def default_renderer() -> WrapperRenderer:
    global _default_renderer
    if _default_renderer is None:
        _default_renderer = WrapperRenderer()
    return _default_renderer


def _element_url(element: Tag) -> Optional[str]:
    if element.name == "a":
        return element.get("href")
    return element.get("src")


def place_wrapper(
    page: LivePage,
    target: Tag,
    fileid: str,
    url: str,
    is_image: bool,
    permissions: Permissions,
    renderer: Optional[WrapperRenderer] = None,
) -> bool:
    """
    Wrap target in placeholder markup.

    Returns:
        True if a wrapper was inserted, False if target was already wrapped.
    """
    if find_wrapper(target) is not None:
        return False

    # A wrapper for this file may already sit right after the target
    following = target.find_next_sibling()
    if following is not None and following.select(f'span[{FILE_ID_ATTR}="{fileid}"]'):
        return False

    marker_id = TARGET_MARKER_PREFIX + fileid
    directive = WrapperDirective(
        fileid=fileid,
        url=url,
        html=f'<span id="{marker_id}"></span>',
        isimage=is_image,
        canviewfeedback=permissions.can_view_feedback,
        candownload=permissions.can_download,
    )
    nodes = page.fragment((renderer or default_renderer()).render(directive))
    wrappers = [node for node in nodes if isinstance(node, Tag)]
    if not wrappers:
        return False
    wrapper = wrappers[0]
    marker = wrapper.find(id=marker_id)
    if marker is None:
        logger.warning("Wrapper template lost the target marker for %s", url)
        return False

    target.insert_after(wrapper)
    target.extract()
    marker.replace_with(target)
    return True


def place_hold_selector(
    page: LivePage,
    selector: str,
    mapping: Mapping[str, str],
    permissions: Permissions,
    renderer: Optional[WrapperRenderer] = None,
) -> int:
    """
    Wrap every element matching selector whose URL is in mapping.

    Returns:
        Number of wrappers inserted
    """
    placed = 0
    for element in page.select(selector):
        url = _element_url(element)
        if not url:
            continue
        fileid = lookup_url(url, mapping)
        if fileid is None:
            logger.debug("No map entry for %s", url)
            continue
        if place_wrapper(page, element, fileid, url, element.name != "a", permissions, renderer):
            placed += 1
    return placed
