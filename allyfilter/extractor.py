"""
extractor.py - Find file-bearing anchors and images in a parsed fragment
"""

from dataclasses import dataclass
from typing import List

from bs4 import BeautifulSoup, Tag

from allyfilter.urls import FILE_URL_MARKER


ANCHOR = "anchor"
IMAGE = "image"

WRAPPER_CLASS = "filter-ally-wrapper"


@dataclass
class Candidate:
    element: Tag
    type: str
    url: str

    @property
    def is_image(self) -> bool:
        return self.type == IMAGE


def thumbnail_to_full(src: str) -> str:
    """Small image variants live under an "s_" prefix."""
    return src.replace("/s_", "/")


def wraps_own_image(anchor: Tag) -> bool:
    """
    True if the anchor's only child is an image of the same file.

    Dragging an image onto a course page produces an anchor around the image
    pointing at the same URL. Only the image is interesting in that case,
    including after the image has been wrapped.
    """
    children = list(anchor.children)
    if len(children) != 1:
        return False
    child = children[0]
    if isinstance(child, Tag) and child.name == "span" and WRAPPER_CLASS in (child.get("class") or []):
        child = child.find("img", recursive=False)
    if not isinstance(child, Tag) or child.name != "img":
        return False
    src = child.get("src")
    if not src:
        return False
    href = anchor.get("href")
    return src == href or thumbnail_to_full(src) == href


def find_candidates(soup: BeautifulSoup) -> List[Candidate]:
    """
    Enumerate anchors then images whose URL contains the file marker.

    Order matters to callers only for logging; rewriting works on source
    offsets.
    """
    candidates = []
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"]
        if FILE_URL_MARKER not in href:
            continue
        if wraps_own_image(anchor):
            continue
        candidates.append(Candidate(anchor, ANCHOR, href))

    for image in soup.find_all("img", src=True):
        src = image["src"]
        if FILE_URL_MARKER in src:
            candidates.append(Candidate(image, IMAGE, src))

    return candidates
