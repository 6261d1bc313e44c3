"""
wrapper.py - Wrapper markup and exact-substring rewriting

The server side never re-serializes the parsed tree. Each matched element
becomes a MarkupPatch over its exact source span; apply_patches() splices
the rendered wrappers into the original text. Every element is replaced
once, by position, so identical markup appearing several times in a
fragment is handled without marking elements as visited.
"""

import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Tuple

from jinja2 import Environment, FileSystemLoader, StrictUndefined


logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).parent / "templates"
WRAPPER_TEMPLATE = "wrapper.html"


@dataclass
class WrapperDirective:
    """Data handed to the wrapper template for one matched element."""
    fileid: str
    url: str
    html: str
    isimage: bool
    canviewfeedback: bool
    candownload: bool

    @property
    def wrapper_type(self) -> str:
        return "image" if self.isimage else "anchor"

    def to_context(self) -> dict:
        context = asdict(self)
        context["wrapper_type"] = self.wrapper_type
        return context


class WrapperRenderer:
    """Render wrapper markup from templates/wrapper.html (or a replacement directory)."""

    def __init__(self, templates_dir: Optional[Path] = None):
        loader = FileSystemLoader(str(templates_dir or TEMPLATES_DIR))
        self.env = Environment(loader=loader, undefined=StrictUndefined, autoescape=True)

    def render(self, directive: WrapperDirective) -> str:
        tpl = self.env.get_template(WRAPPER_TEMPLATE)
        return str(tpl.render(**directive.to_context()))


@dataclass
class MarkupPatch:
    """
    Replace text[start:end] with render(current text of that span).

    render receives the span as it is at application time, so a patch that
    contains already-applied patches sees their output.
    """
    start: int
    end: int
    render: Callable[[str], str]
    label: str = ""


def apply_patches(text: str, patches: Iterable[MarkupPatch]) -> Tuple[str, int]:
    """
    Apply patches right to left.

    Nested patches are fine; a patch partially overlapping one already
    applied is skipped.

    Returns:
        (new text, number of patches applied)
    """
    # Outermost applied regions: (start, original end, total length delta)
    applied: List[Tuple[int, int, int]] = []
    count = 0

    # Right to left; for equal starts the inner (shorter) patch goes first
    for patch in sorted(patches, key=lambda p: (p.start, -p.end), reverse=True):
        if any(a[0] < patch.end < a[1] for a in applied):
            logger.debug("Skipping overlapping patch %s at %d-%d", patch.label, patch.start, patch.end)
            continue

        contained = [a for a in applied if a[0] < patch.end]
        end = patch.end + sum(a[2] for a in contained)
        current = text[patch.start:end]
        replacement = patch.render(current)
        if replacement is None or replacement == current:
            continue

        text = text[:patch.start] + replacement + text[end:]
        applied = [a for a in applied if a[0] >= patch.end]
        applied.append((patch.start, patch.end, len(replacement) - (patch.end - patch.start)))
        count += 1

    return text, count
