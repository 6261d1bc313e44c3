"""
resolver.py - Resolve a FileReference to the path hash of a stored file

A reference map is {map path: path hash}. Map paths are built the same way
the file store builds file URLs ("5/mod_resource/content/0/pic.png"), so a
reference resolves by exact key lookup. A reference that is not in the map
is not an error: the file exists but is not one the current viewer is
expected to see (a private file of another user, for instance), and the element
is simply left alone.
"""

import logging
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, Mapping, Optional

from allyfilter.cache import AreaCache
from allyfilter.files import Context, ContextLevel, FileStore, StoredFile
from allyfilter.identifiers import area_key, map_path
from allyfilter.urls import FileReference


logger = logging.getLogger(__name__)


class ReferenceMap(Mapping):
    """Read-only path -> path hash mapping."""

    def __init__(self, entries: Optional[Mapping[str, str]] = None):
        self._entries = MappingProxyType(dict(entries or {}))

    def __getitem__(self, key: str) -> str:
        return self._entries[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"ReferenceMap({dict(self._entries)!r})"

    @classmethod
    def from_files(cls, files: Iterable[StoredFile]) -> "ReferenceMap":
        entries: Dict[str, str] = {}
        for stored in files:
            if stored.is_directory:
                continue
            # First file for a path wins
            entries.setdefault(stored.map_path, stored.pathnamehash)
        return cls(entries)


def reference_path(ref: FileReference) -> str:
    """Map key for a decomposed reference."""
    return map_path(ref.contextid, ref.component, ref.filearea, ref.itemid, "/", ref.filename)


def resolve(ref: FileReference, reference_map: Mapping[str, str]) -> Optional[str]:
    """Return the path hash for ref, or None when the map does not list it."""
    path_hash = reference_map.get(reference_path(ref))
    if path_hash is None:
        logger.debug("Not in reference map: %s", reference_path(ref))
    return path_hash


class ReferenceSource:
    """
    Where the filter gets contexts and reference maps from.

    Subclasses override context() and map_for().
    """

    def context(self, contextid: Optional[int]) -> Optional[Context]:
        raise NotImplementedError

    def map_for(self, ref: FileReference) -> Mapping[str, str]:
        raise NotImplementedError


class StaticReferenceSource(ReferenceSource):
    """
    One fixed reference map for every area.

    Without a contexts table every context id is taken to be a module
    context, which is what content pasted into course pages normally uses.
    """

    def __init__(self, mapping: Mapping[str, str], contexts: Optional[Mapping[int, Context]] = None):
        self.reference_map = mapping if isinstance(mapping, ReferenceMap) else ReferenceMap(mapping)
        self.contexts = dict(contexts) if contexts is not None else None

    def context(self, contextid: Optional[int]) -> Optional[Context]:
        if contextid is None:
            return None
        if self.contexts is None:
            return Context(int(contextid), ContextLevel.MODULE)
        return self.contexts.get(int(contextid))

    def map_for(self, ref: FileReference) -> Mapping[str, str]:
        return self.reference_map


class FileStoreReferenceSource(ReferenceSource):
    """
    Reference maps built per area from a FileStore.

    Maps are memoized for the lifetime of this object (one request) by area
    key, and read through the shared AreaCache unless omit_cache is set.
    """

    def __init__(self, store: FileStore, cache: Optional[AreaCache] = None, omit_cache: bool = False):
        self.store = store
        self.cache = cache
        self.omit_cache = omit_cache
        self._by_area_key: Dict[str, ReferenceMap] = {}

    def context(self, contextid: Optional[int]) -> Optional[Context]:
        return self.store.context(contextid)

    def _build(self, ref: FileReference) -> Dict[str, str]:
        files = self.store.files_in(ref.contextid, ref.component, ref.filearea, ref.itemid)
        return dict(ReferenceMap.from_files(files))

    def map_for(self, ref: FileReference) -> Mapping[str, str]:
        key = area_key(ref.contextid, ref.component, ref.filearea, ref.itemid)
        if key in self._by_area_key:
            return self._by_area_key[key]

        if self.cache is not None and not self.omit_cache:
            entries = self.cache.get_or_build(key, lambda: self._build(ref))
        else:
            entries = self._build(ref)

        reference_map = ReferenceMap(entries)
        self._by_area_key[key] = reference_map
        return reference_map
