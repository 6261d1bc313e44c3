"""
service.py - On-demand module maps (filter_ally_get_module_maps)

The same maps the page gets in its footer, for clients that load content
after the page has rendered. Map values are JSON-encoded strings to keep the
response schema flat:

    {
      "modulemaps": [{"maptype": "forum_files", "mapdata": "{...}"}, ...],
      "sectionmaps": [{"sectionkey": "section-1", "sectionid": 31}, ...],
      "annotationmaps": "{...}",
      "success": true,
      "message": ""
    }
"""

import json
import logging
from typing import Any, Callable, Dict, Optional

from allyfilter.course import CourseBundle
from allyfilter.errors import AllyFilterError, maps_service_error
from allyfilter.mapper import AnnotationSource, EntityMapper, EntityMaps, course_annotation_maps


logger = logging.getLogger(__name__)

WS_FUNCTION = "filter_ally_get_module_maps"

CourseLookup = Callable[[int], Optional[CourseBundle]]


def format_module_maps(module_maps: Dict[str, Any]) -> list:
    return [
        {"maptype": maptype, "mapdata": json.dumps(mapdata)}
        for maptype, mapdata in module_maps.items()
    ]


def format_section_maps(section_maps: Dict[str, int]) -> list:
    return [
        {"sectionkey": key, "sectionid": int(section_id)}
        for key, section_id in section_maps.items()
    ]


def get_module_maps(
    course_id: int,
    lookup: CourseLookup,
    annotation_source: AnnotationSource = course_annotation_maps,
) -> Dict[str, Any]:
    """
    Build the service response for one course.

    Raises:
        MapsServiceError: unknown course, or the viewer may not view feedback.
            Failures while building the maps are reported in the response
            instead, with success false.
    """
    bundle = lookup(int(course_id))
    if bundle is None:
        raise maps_service_error(course_id, "course not found")
    if not bundle.permissions.can_view_feedback:
        raise maps_service_error(course_id, "viewfeedback capability required")

    try:
        mapper = EntityMapper(bundle.course, bundle.store, page=None, annotation_source=annotation_source)
        maps = mapper.get_maps()
        return {
            "modulemaps": format_module_maps(maps.module_maps),
            "sectionmaps": format_section_maps(maps.section_maps),
            "annotationmaps": json.dumps(maps.annotation_maps),
            "success": True,
            "message": "",
        }
    except (AllyFilterError, KeyError, ValueError, TypeError) as e:
        logger.error("Building module maps for course %s failed: %s", course_id, e)
        return {
            "modulemaps": [],
            "sectionmaps": [],
            "annotationmaps": "{}",
            "success": False,
            "message": getattr(e, "message", str(e)),
        }


def decode_module_maps_response(course_id: int, response: Dict[str, Any]) -> EntityMaps:
    """
    Turn a service response back into EntityMaps.

    Raises:
        MapsServiceError: if the response reports failure or is malformed
    """
    if not isinstance(response, dict):
        raise maps_service_error(course_id, "unexpected response type")
    if "exception" in response:
        raise maps_service_error(course_id, response.get("message") or response["exception"])
    if not response.get("success"):
        raise maps_service_error(course_id, response.get("message") or "service reported failure")

    try:
        module_maps = {
            entry["maptype"]: json.loads(entry["mapdata"]) or {}
            for entry in response.get("modulemaps") or []
        }
        section_maps = {
            entry["sectionkey"]: int(entry["sectionid"])
            for entry in response.get("sectionmaps") or []
        }
        annotation_maps = json.loads(response.get("annotationmaps") or "{}") or {}
    except (KeyError, TypeError, ValueError) as e:
        raise maps_service_error(course_id, "malformed map data", cause=e)

    return EntityMaps(module_maps, section_maps, annotation_maps)
