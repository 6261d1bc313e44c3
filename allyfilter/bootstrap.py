"""
bootstrap.py - The map payload embedded in the page footer

Maps are too large to pass as initialisation arguments, so they go into the
footer as global variables:

    <script>
        var ally_module_maps = {...};
        var ally_section_maps = {...};
        var ally_annotation_maps = {...};
        var ally_filter_init = {...};
    </script>

ally_filter_init carries the viewer's grants, the course id and the lesson
or book parameters the page needs to pick the right content.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from allyfilter.mapper import EntityMaps


_VAR_START = re.compile(r"var\s+(ally_(?:module|section|annotation)_maps|ally_filter_init)\s*=\s*")


@dataclass
class PageInit:
    can_view_feedback: bool = False
    can_download: bool = False
    course_id: int = 0
    params: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "canviewfeedback": self.can_view_feedback,
            "candownload": self.can_download,
            "courseid": self.course_id,
            "params": self.params,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PageInit":
        data = data or {}
        return cls(
            can_view_feedback=bool(data.get("canviewfeedback", False)),
            can_download=bool(data.get("candownload", False)),
            course_id=int(data.get("courseid") or 0),
            params=dict(data.get("params") or {}),
        )


@dataclass
class PagePayload:
    maps: EntityMaps
    init: PageInit


def _script_json(value: Any) -> str:
    # "</" would end the script element early
    return json.dumps(value, sort_keys=True).replace("</", "<\\/")


def render_script(maps: EntityMaps, init: Optional[PageInit] = None) -> str:
    lines = [
        "<script>",
        f"    var ally_module_maps = {_script_json(maps.module_maps)};",
        f"    var ally_section_maps = {_script_json(maps.section_maps)};",
        f"    var ally_annotation_maps = {_script_json(maps.annotation_maps)};",
    ]
    if init is not None:
        lines.append(f"    var ally_filter_init = {_script_json(init.to_dict())};")
    lines.append("</script>")
    return "\n".join(lines)


def extract_payload(html: str) -> Optional[PagePayload]:
    """
    Read the map variables back out of a rendered page.

    Returns None when the page carries no module or section maps.
    """
    decoder = json.JSONDecoder()
    found: Dict[str, Any] = {}
    for match in _VAR_START.finditer(html):
        try:
            value, _ = decoder.raw_decode(html, match.end())
        except json.JSONDecodeError:
            continue
        found[match.group(1)] = value

    if "ally_module_maps" not in found or "ally_section_maps" not in found:
        return None

    maps = EntityMaps(
        module_maps=found["ally_module_maps"] or {},
        section_maps=found["ally_section_maps"] or {},
        annotation_maps=found.get("ally_annotation_maps") or {},
    )
    return PagePayload(maps, PageInit.from_dict(found.get("ally_filter_init")))
