"""
dom.py - The live page the client-side pass works on

LivePage holds a fully parsed document (lxml builder) and stands in for the
browser side of things: CSS selection, per-node data that lives as long as
the page, one-shot mutation observers, ajax-completion listeners and
interval pollers. Mutations are reported to it by whoever changes the page
(notify_mutation); wrapping done by the pass itself does not report any.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from bs4 import BeautifulSoup, Tag

from allyfilter.errors import ObserverUnavailableError
from allyfilter.urls import get_query


logger = logging.getLogger(__name__)

MutationCallback = Callable[[Tag], None]
AjaxCallback = Callable[[str], None]
PollCallback = Callable[[], Union[None, Awaitable[None]]]


@dataclass
class Observation:
    node: Tag
    callback: MutationCallback
    connected: bool = True


class LivePage:
    def __init__(self, html: str, url: str = "", supports_observers: bool = True):
        self.soup = BeautifulSoup(html, "lxml")
        self.url = url
        self.supports_observers = supports_observers
        # id(node) -> observation; the stored node is compared by identity
        self._observations: Dict[int, Observation] = {}
        self._mutation_listeners: List[MutationCallback] = []
        self._ajax_listeners: List[AjaxCallback] = []
        self._node_data: Dict[int, tuple] = {}
        self._pollers: List[asyncio.Task] = []

    # =========================================================================
    # Document
    # =========================================================================

    @property
    def body(self) -> Optional[Tag]:
        return self.soup.body

    def select(self, selector: str) -> List[Tag]:
        return self.soup.select(selector)

    def select_one(self, selector: str) -> Optional[Tag]:
        return self.soup.select_one(selector)

    def has_body_class(self, name: str) -> bool:
        body = self.body
        return body is not None and name in (body.get("class") or [])

    @property
    def body_id(self) -> str:
        body = self.body
        return body.get("id", "") if body is not None else ""

    @property
    def query(self) -> Dict[str, str]:
        return get_query(self.url)

    def new_tag(self, name: str, attrs: Optional[Dict[str, str]] = None) -> Tag:
        return self.soup.new_tag(name, attrs=attrs or {})

    def fragment(self, html: str) -> List[Any]:
        """Parse markup into detached nodes ready to insert into this page."""
        parsed = BeautifulSoup(html, "html.parser")
        return [node.extract() for node in list(parsed.contents)]

    def is_attached(self, node: Tag) -> bool:
        return any(parent is self.soup for parent in node.parents)

    def serialize(self) -> str:
        return str(self.soup)

    def node_data(self, node: Tag) -> Dict[str, Any]:
        """Data bag tied to one node for the lifetime of the page."""
        entry = self._node_data.get(id(node))
        if entry is None or entry[0] is not node:
            entry = (node, {})
            self._node_data[id(node)] = entry
        return entry[1]

    # =========================================================================
    # Mutation observers
    # =========================================================================

    def observe(self, node: Tag, callback: MutationCallback) -> Observation:
        """
        Call callback once on the first mutation at or under node.

        Observing a node that already has a live observation returns that
        observation instead of adding another one. A node that was removed
        and reinserted may be observed again.

        Raises:
            ObserverUnavailableError: the page cannot report mutations
        """
        if not self.supports_observers:
            raise ObserverUnavailableError(
                message="Mutation observers are not available on this page",
                suggestion="Fall back to polling.",
            )
        existing = self._observations.get(id(node))
        if existing is not None and existing.node is node and existing.connected and self.is_attached(node):
            return existing
        observation = Observation(node, callback)
        self._observations[id(node)] = observation
        return observation

    def disconnect(self, observation: Observation) -> None:
        observation.connected = False
        current = self._observations.get(id(observation.node))
        if current is observation:
            del self._observations[id(observation.node)]

    def is_observed(self, node: Tag) -> bool:
        observation = self._observations.get(id(node))
        return observation is not None and observation.node is node and observation.connected

    def on_mutation(self, listener: MutationCallback) -> None:
        """Page-wide listener, called for every reported mutation."""
        self._mutation_listeners.append(listener)

    def notify_mutation(self, node: Tag) -> None:
        """Report that node, or something under it, changed."""
        lineage = [node] + list(node.parents)
        fired = [
            obs for obs in list(self._observations.values())
            if obs.connected and any(obs.node is n for n in lineage)
        ]
        for observation in fired:
            self.disconnect(observation)
            observation.callback(node)
        for listener in list(self._mutation_listeners):
            listener(node)

    # =========================================================================
    # Ajax
    # =========================================================================

    def on_ajax_complete(self, listener: AjaxCallback) -> None:
        self._ajax_listeners.append(listener)

    def ajax_complete(self, url: str = "") -> None:
        for listener in list(self._ajax_listeners):
            listener(url)

    # =========================================================================
    # Pollers
    # =========================================================================

    def start_poller(self, callback: PollCallback, interval: float) -> asyncio.Task:
        """Run callback every interval seconds until stop_pollers()."""

        async def poll():
            while True:
                await asyncio.sleep(interval)
                result = callback()
                if asyncio.iscoroutine(result):
                    await result

        task = asyncio.ensure_future(poll())
        self._pollers.append(task)
        return task

    def stop_pollers(self) -> None:
        for task in self._pollers:
            task.cancel()
        self._pollers.clear()
