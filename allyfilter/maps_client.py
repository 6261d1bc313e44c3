"""
maps_client.py - Fetch module maps from a remote LMS

Calls the filter_ally_get_module_maps web service function over the REST
endpoint and decodes the response into EntityMaps.
"""

import logging
from typing import Any, Dict, Optional

import requests

from allyfilter.errors import maps_service_error
from allyfilter.mapper import EntityMaps
from allyfilter.security_utils import DEFAULT_TIMEOUT, mask_sensitive, validate_course_id, validate_url
from allyfilter.service import WS_FUNCTION, decode_module_maps_response


logger = logging.getLogger(__name__)

REST_PATH = "/webservice/rest/server.php"


class MapsServiceClient:
    def __init__(self, base_url: str, token: str, session: Optional[requests.Session] = None,
                 timeout=DEFAULT_TIMEOUT):
        self.base_url = validate_url(base_url)
        self.token = token
        self.session = session or requests.Session()
        self.timeout = timeout

    @property
    def endpoint(self) -> str:
        return self.base_url + REST_PATH

    def _call(self, course_id: int) -> Dict[str, Any]:
        params = {
            "wstoken": self.token,
            "wsfunction": WS_FUNCTION,
            "moodlewsrestformat": "json",
        }
        logger.debug("POST %s (token %s, course %s)", self.endpoint, mask_sensitive(self.token), course_id)
        try:
            resp = self.session.post(
                self.endpoint,
                params=params,
                data={"courseid": course_id},
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise maps_service_error(course_id, "request timed out", cause=e)
        except requests.exceptions.RequestException as e:
            raise maps_service_error(course_id, "request failed", cause=e)

        if resp.status_code != 200:
            raise maps_service_error(course_id, f"HTTP {resp.status_code}")

        try:
            return resp.json()
        except ValueError as e:
            raise maps_service_error(course_id, "response was not JSON", cause=e)

    def get_module_maps(self, course_id) -> EntityMaps:
        """
        Raises:
            MapsServiceError: on transport errors, service exceptions or success=false
        """
        course_id = validate_course_id(course_id)
        maps = decode_module_maps_response(course_id, self._call(course_id))
        logger.info("Fetched %d module maps for course %s", len(maps.module_maps), course_id)
        return maps
