"""
files.py - In-memory stand-in for the host system's file store

The filter only needs three things from the host: which contexts exist and
at what level, which files live in a given context/component/filearea/item,
and each file's pathname hash. FileStore provides exactly that, loadable
from a YAML or JSON fixture:

    contexts:
      - {id: 5, level: module, instance: 12}
    files:
      - {contextid: 5, component: mod_resource, filearea: content,
         itemid: 0, filepath: /, filename: pic.png}
"""

import logging
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import yaml

from allyfilter.errors import input_file_error
from allyfilter.identifiers import map_path, pathname_hash


logger = logging.getLogger(__name__)


class ContextLevel(IntEnum):
    SYSTEM = 10
    USER = 30
    COURSECAT = 40
    COURSE = 50
    MODULE = 70
    BLOCK = 80

    @classmethod
    def from_value(cls, value) -> "ContextLevel":
        if isinstance(value, str) and not value.isdigit():
            return cls[value.upper()]
        return cls(int(value))


# Files stored at these levels never get wrappers
BLACKLISTED_LEVELS = frozenset({ContextLevel.USER, ContextLevel.COURSECAT, ContextLevel.SYSTEM})


@dataclass(frozen=True)
class Context:
    id: int
    level: ContextLevel
    instance: Optional[int] = None

    @property
    def blacklisted(self) -> bool:
        return self.level in BLACKLISTED_LEVELS


@dataclass
class StoredFile:
    contextid: int
    component: str
    filearea: str
    itemid: int
    filename: str
    filepath: str = "/"
    mimetype: Optional[str] = None
    sortorder: int = 0
    id: int = 0

    @property
    def is_directory(self) -> bool:
        return self.filename == "."

    @property
    def pathnamehash(self) -> str:
        return pathname_hash(self.contextid, self.component, self.filearea,
                             self.itemid, self.filepath, self.filename)

    @property
    def map_path(self) -> str:
        return map_path(self.contextid, self.component, self.filearea,
                        self.itemid, self.filepath, self.filename)


class FileStore:
    def __init__(self):
        self.contexts: Dict[int, Context] = {}
        self.files: List[StoredFile] = []

    def add_context(self, context: Context) -> Context:
        self.contexts[context.id] = context
        return context

    def add_file(self, stored: StoredFile) -> StoredFile:
        if not stored.id:
            stored.id = len(self.files) + 1
        self.files.append(stored)
        return stored

    def context(self, contextid: Optional[int]) -> Optional[Context]:
        if contextid is None:
            return None
        return self.contexts.get(int(contextid))

    def files_in(
        self,
        contextid: int,
        component: str,
        filearea: Optional[str] = None,
        itemid: Optional[int] = None,
        mimetype: Optional[str] = None,
        include_directories: bool = False,
    ) -> Iterator[StoredFile]:
        """Iterate files of one context/component, optionally narrowed."""
        for stored in self.files:
            if stored.contextid != contextid or stored.component != component:
                continue
            if filearea is not None and stored.filearea != filearea:
                continue
            if itemid is not None and stored.itemid != itemid:
                continue
            if mimetype is not None and stored.mimetype != mimetype:
                continue
            if stored.is_directory and not include_directories:
                continue
            yield stored

    # =========================================================================
    # Loading
    # =========================================================================

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileStore":
        store = cls()
        for ctx in data.get("contexts") or []:
            store.add_context(Context(
                id=int(ctx["id"]),
                level=ContextLevel.from_value(ctx.get("level", ContextLevel.MODULE)),
                instance=ctx.get("instance"),
            ))
        for entry in data.get("files") or []:
            store.add_file(StoredFile(
                contextid=int(entry["contextid"]),
                component=entry["component"],
                filearea=entry["filearea"],
                itemid=int(entry.get("itemid", 0)),
                filename=entry["filename"],
                filepath=entry.get("filepath", "/"),
                mimetype=entry.get("mimetype"),
                sortorder=int(entry.get("sortorder", 0)),
                id=int(entry.get("id", 0)),
            ))
        logger.debug("Loaded %d contexts and %d files", len(store.contexts), len(store.files))
        return store

    @classmethod
    def load(cls, path: Path) -> "FileStore":
        """Load a YAML (or JSON, which YAML accepts) fixture."""
        return cls.from_dict(load_data_file(path, "file store"))


def load_data_file(path: Path, what: str) -> Dict[str, Any]:
    """Read a YAML/JSON mapping from disk."""
    path = Path(path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as e:
        raise input_file_error(path, what, cause=e)
    if not isinstance(data, dict):
        raise input_file_error(path, what)
    return data
