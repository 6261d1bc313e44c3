"""
urls.py - File-serving URL decomposition

File URLs come in two shapes:

    .../pluginfile.php/{contextid}/{component}/{filearea}[/{itemid}]/{filename}[?query]
    .../pluginfile.php?file=/{contextid}/{component}/{filearea}[/{itemid}]/{filename}

The server side decomposes them into a FileReference. The page side never
decomposes; it only extracts the "{contextid}/{rest}" suffix and looks it up
in the reference map it was given.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional
from urllib.parse import quote, unquote, unquote_plus

from allyfilter.errors import UnresolvableReferenceError, unresolvable_reference_error


logger = logging.getLogger(__name__)

FILE_URL_MARKER = "pluginfile.php"

# Slash-argument suffix; the query-aware variant stops at the (last) "?"
_SLASH_ARGS_WITH_QUERY = re.compile(r"pluginfile\.php/(\d*)/(.*)(\?)")
_SLASH_ARGS = re.compile(r"pluginfile\.php/(\d*)/(.*)")
_FILE_PARAM_PATH = re.compile(r"/(\d*)/(.*)")
_QUERY_PAIRS = re.compile(r"[?&](.+?)=([^&#]*)")


@dataclass(frozen=True)
class FileReference:
    """Structural coordinate of one stored file."""
    contextid: int
    component: str
    filearea: str
    itemid: int
    filename: str

    def to_list(self) -> list:
        return [self.contextid, self.component, self.filearea, self.itemid, self.filename]


# A URL-property collaborator maps a URL to a FileReference, or None if it
# does not recognise the URL.
UrlProperties = Callable[[str], Optional[FileReference]]


def is_file_url(url: Optional[str]) -> bool:
    return bool(url) and FILE_URL_MARKER in url


def get_query(url: str) -> Dict[str, str]:
    """Return every key=value pair in the URL's query string, decoded."""
    query = {}
    for key, value in _QUERY_PAIRS.findall(url):
        query[key] = unquote_plus(value)
    return query


def _strip_query(value: str) -> str:
    return value.split("?", 1)[0].split("#", 1)[0]


def _file_path_part(url: str) -> str:
    """Return "/{contextid}/..." from either URL shape."""
    after = url.split(FILE_URL_MARKER, 1)[1]
    if after.startswith("/"):
        return _strip_query(after)
    file_param = get_query(url).get("file")
    if file_param:
        return _strip_query(file_param)
    raise unresolvable_reference_error(url, "no slash arguments and no file= parameter")


def parse_file_url(url: str) -> FileReference:
    """
    Decompose a file URL by counting its path segments.

    3 segments after the context id: component/filearea/filename, itemid 0.
    4 or more: the third segment is the itemid when numeric, otherwise the
    itemid is 0 and every remaining segment belongs to the filename.
    Question files carry a preview prefix; the itemid is always the segment
    before the filename.

    Raises:
        UnresolvableReferenceError: if the URL does not have one of these shapes
    """
    if not is_file_url(url):
        raise unresolvable_reference_error(url, f"no {FILE_URL_MARKER} marker")

    segments = [s for s in _file_path_part(url).split("/") if s != ""]
    if not segments or not segments[0].isdigit():
        raise unresolvable_reference_error(url, "missing numeric context id")

    contextid = int(segments[0])
    rest = [unquote(s) for s in segments[1:]]
    if len(rest) < 3:
        raise unresolvable_reference_error(url, f"expected at least 3 path segments, found {len(rest)}")

    component, filearea = rest[0], rest[1]

    if component == "question" and len(rest) >= 5:
        itemid = rest[-2]
        if not itemid.isdigit():
            raise unresolvable_reference_error(url, "question file without numeric item id")
        return FileReference(contextid, component, filearea, int(itemid), rest[-1])

    if len(rest) == 3:
        return FileReference(contextid, component, filearea, 0, rest[2])

    if rest[2].isdigit():
        return FileReference(contextid, component, filearea, int(rest[2]), "/".join(rest[3:]))

    # No item id segment: the filename has embedded path separators
    return FileReference(contextid, component, filearea, 0, "/".join(rest[2:]))


def decompose_file_url(url: str, url_properties: Optional[UrlProperties] = None) -> Optional[FileReference]:
    """
    Decompose a file URL, returning None when it has no recognisable shape.

    A URL-property collaborator, when supplied, is trusted first; the segment
    heuristic only runs when it returns nothing.
    """
    if url_properties is not None:
        ref = url_properties(url)
        if ref is not None:
            return ref

    try:
        return parse_file_url(url)
    except UnresolvableReferenceError as e:
        logger.debug("Skipping %s: %s", url, e.message)
        return None


def file_path_from_url(url: str) -> Optional[str]:
    """
    Extract the decoded "{contextid}/{rest}" suffix from a slash-argument URL.

    Returns None when the URL has no slash-argument path.
    """
    regex = _SLASH_ARGS_WITH_QUERY if "?" in url else _SLASH_ARGS
    match = regex.search(url)
    if not match:
        return None
    return unquote(f"{match.group(1)}/{match.group(2)}")


def file_path_from_query(url: str) -> Optional[str]:
    """Same as file_path_from_url, but read from a file= query parameter."""
    file_param = get_query(url).get("file")
    if not file_param:
        return None
    match = _FILE_PARAM_PATH.search(file_param)
    if not match:
        return None
    return f"{match.group(1)}/{match.group(2)}"


def client_file_paths(url: str) -> List[str]:
    """Paths to try, in order, when looking a URL up in a reference map."""
    paths = []
    for path in (file_path_from_url(url), file_path_from_query(url)):
        if path and path not in paths:
            paths.append(path)
    return paths


def url_encode_file_path(file_path: str) -> str:
    """Percent-encode each segment of a map path so it can be matched in a URL."""
    return "/".join(quote(part, safe="!*'()") for part in file_path.split("/"))


def lookup_url(url: str, mapping: Dict[str, str]) -> Optional[str]:
    """Return the path hash for a URL from a path -> hash map, if any."""
    for path in client_file_paths(url):
        path_hash = mapping.get(path)
        if isinstance(path_hash, str):
            return path_hash
    return None
