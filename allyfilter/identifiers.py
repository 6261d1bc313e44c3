"""
identifiers.py - Content identifiers and file path digests

Two kinds of identifier are produced here:

- Content identifiers name a piece of rich text for the annotation
  service: "component:table:field:id", e.g. "course:course_sections:summary:12".
- Path digests name stored files: the area key digests a file's directory
  ("/contextid/component/filearea/itemid"), the path hash digests the full
  path including the filename. SHA-1 is used for fixed-length identifiers,
  not for security.
"""

import hashlib
import re
from dataclasses import dataclass
from typing import Union

from allyfilter.errors import malformed_identifier_error


IDENT_DELIMITER = ":"

_DUPLICATE_SLASHES = re.compile(r"/{2,}")


@dataclass(frozen=True)
class ContentIdent:
    component: str
    table: str
    field: str
    id: str

    def __str__(self) -> str:
        return build_content_ident(self.component, self.table, self.field, self.id)


def build_content_ident(component: str, table: str, field: str, id: Union[str, int]) -> str:
    """Join the four parts of a content identifier."""
    return IDENT_DELIMITER.join([str(component), str(table), str(field), str(id)])


def parse_content_ident(ident: str) -> ContentIdent:
    """
    Split a content identifier back into its parts.

    Raises:
        MalformedIdentifierError: if fewer than four parts are present
    """
    parts = (ident or "").split(IDENT_DELIMITER, 3)
    if len(parts) < 4:
        raise malformed_identifier_error(ident)
    return ContentIdent(*parts)


def _digest(value: str) -> str:
    return hashlib.sha1(value.encode("utf-8")).hexdigest()


def collapse_slashes(path: str) -> str:
    return _DUPLICATE_SLASHES.sub("/", path)


def item_path(contextid: Union[int, str], component: str, filearea: str, itemid: Union[int, str]) -> str:
    return f"/{contextid}/{component}/{filearea}/{itemid}"


def area_key(contextid, component: str, filearea: str, itemid) -> str:
    """Digest of the directory all files of one area/item share."""
    return _digest(item_path(contextid, component, filearea, itemid))


def path_hash(contextid, component: str, filearea: str, itemid, filename: str) -> str:
    """Digest of one file's full path, as reconstructed from its URL."""
    return _digest(collapse_slashes(f"{item_path(contextid, component, filearea, itemid)}/{filename}"))


def pathname_hash(contextid, component: str, filearea: str, itemid, filepath: str, filename: str) -> str:
    """
    Digest of a stored file's path as the file store records it.

    filepath is the directory inside the area ("/" or "/sub/dir/"). For
    files at the area root this equals path_hash() for the same file.
    """
    return _digest(collapse_slashes(f"{item_path(contextid, component, filearea, itemid)}{filepath}{filename}"))


def map_path(contextid, component: str, filearea: str, itemid, filepath: str, filename: str) -> str:
    """
    Reference map key for a stored file: "5/mod_resource/content/0/pic.png".

    This is the URL path that follows pluginfile.php, percent-decoded.
    """
    path = f"{contextid}/{component}/{filearea}"
    if itemid is not None:
        path += f"/{itemid}"
    return collapse_slashes(f"{path}/{filepath}/{filename}")
