"""
markup.py - Source offsets for tags in a raw HTML fragment

BeautifulSoup (html.parser builder) tells us where each tag started as a
(line, column) pair. MarkupSource tokenizes the same text with the same
parser and records, for every start tag, where the start tag ends and where
the element's matching end tag ends. That lets the filter rewrite exact
substrings of the original text without re-serializing the tree, so
markup it did not touch stays byte-for-byte as it was.
"""

from dataclasses import dataclass
from html.parser import HTMLParser
from typing import Dict, List, Optional, Tuple

from bs4 import Tag


VOID_ELEMENTS = frozenset({
    "area", "base", "br", "col", "embed", "hr", "img", "input",
    "link", "meta", "param", "source", "track", "wbr",
})


@dataclass
class TagSpan:
    name: str
    start: int
    start_tag_end: int
    # End of the matching end tag; None for void or unclosed elements
    end: Optional[int] = None

    @property
    def element_end(self) -> int:
        return self.end if self.end is not None else self.start_tag_end


class _SpanRecorder(HTMLParser):
    def __init__(self, source: "MarkupSource"):
        super().__init__(convert_charrefs=True)
        self.source = source
        self.open: List[TagSpan] = []

    def _record(self, tag: str) -> TagSpan:
        line, col = self.getpos()
        start = self.source.offset(line, col)
        raw = self.get_starttag_text() or ""
        span = TagSpan(tag, start, start + len(raw))
        self.source.spans[(line, col)] = span
        return span

    def handle_starttag(self, tag, attrs):
        span = self._record(tag)
        if tag not in VOID_ELEMENTS:
            self.open.append(span)

    def handle_startendtag(self, tag, attrs):
        self._record(tag)

    def handle_endtag(self, tag):
        for index in range(len(self.open) - 1, -1, -1):
            if self.open[index].name == tag:
                line, col = self.getpos()
                start = self.source.offset(line, col)
                close = self.source.text.find(">", start)
                end = close + 1 if close != -1 else len(self.source.text)
                self.open[index].end = end
                # Anything opened after the match is implicitly closed
                del self.open[index:]
                return


class MarkupSource:
    """Raw fragment text plus the source span of every tag in it."""

    def __init__(self, text: str):
        self.text = text
        self.line_starts = [0]
        for index, char in enumerate(text):
            if char == "\n":
                self.line_starts.append(index + 1)
        self.spans: Dict[Tuple[int, int], TagSpan] = {}
        recorder = _SpanRecorder(self)
        recorder.feed(text)
        recorder.close()

    def offset(self, line: int, col: int) -> int:
        return self.line_starts[line - 1] + col

    def span_for(self, element: Tag) -> Optional[TagSpan]:
        """Span of a parsed element, or None if it was not in the source text."""
        line = getattr(element, "sourceline", None)
        col = getattr(element, "sourcepos", None)
        if line is None or col is None:
            return None
        span = self.spans.get((line, col))
        if span is None or span.name != element.name:
            return None
        return span
