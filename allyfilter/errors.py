# errors.py
"""
# allyfilter
# Copyright (c) 2026 Dale Chapman
# Licensed under the MIT License. See LICENSE in the project root.

Custom exception classes with improved error messages for allyfilter

All exceptions include:
- Clear error description
- Actionable suggestions
- Relevant context

Per-element failures inside a filter pass (unresolvable URLs, files missing
from the reference map, containers that never render) are NOT raised; they
are logged and the element is left untouched. The classes below are for
callers that hand us bad input or for misuse of process-wide state.
"""
from pathlib import Path
from typing import Optional, Dict, Any


class AllyFilterError(Exception):
    """Base exception for all allyfilter errors"""

    def __init__(
        self,
        message: str,
        suggestion: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        self.message = message
        self.suggestion = suggestion
        self.context = context or {}
        self.cause = cause
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format error with all details"""
        lines = [
            "",
            "=" * 70,
            f"❌ {self.__class__.__name__}",
            "=" * 70,
            "",
            self.message,
        ]

        if self.context:
            lines.append("")
            lines.append("Context:")
            for key, value in self.context.items():
                lines.append(f"  {key}: {value}")

        if self.suggestion:
            lines.append("")
            lines.append("💡 Suggestion:")
            lines.append(f"  {self.suggestion}")

        if self.cause:
            lines.append("")
            lines.append(f"Caused by: {type(self.cause).__name__}: {self.cause}")

        lines.append("")
        lines.append("=" * 70)
        lines.append("")

        return "\n".join(lines)


class ConfigurationError(AllyFilterError):
    """Configuration is missing or invalid"""
    pass


class CredentialError(AllyFilterError):
    """Maps service credentials cannot be loaded or are invalid"""
    pass


class MalformedIdentifierError(AllyFilterError):
    """A content identifier did not split into four parts"""
    pass


class UnresolvableReferenceError(AllyFilterError):
    """A file URL does not decompose into a known shape"""
    pass


class AnnotationLoopError(AllyFilterError):
    """The per-course annotation guard was started twice or ended without a start"""
    pass


class MapsServiceError(AllyFilterError):
    """Error retrieving module maps from the remote service"""
    pass


class InputFileError(AllyFilterError):
    """A fixture/manifest file given to the CLI could not be read"""
    pass


class ObserverUnavailableError(AllyFilterError):
    """The page cannot deliver mutation notifications"""
    pass


# Specific error factory functions

def malformed_identifier_error(ident: str) -> MalformedIdentifierError:
    """Create error for a content identifier with too few parts"""
    return MalformedIdentifierError(
        message=f"Malformed content identifier: {ident!r}",
        suggestion=(
            "Content identifiers have four colon-separated parts:\n"
            "  component:table:field:id\n\n"
            "Example:\n"
            "  course:course_sections:summary:12"
        ),
        context={
            "identifier": ident,
            "parts_found": len(ident.split(":")) if ident else 0,
            "parts_required": 4,
        }
    )


def unresolvable_reference_error(url: str, reason: str) -> UnresolvableReferenceError:
    """Create error for a file URL that cannot be decomposed"""
    return UnresolvableReferenceError(
        message=f"Cannot decompose file URL: {reason}",
        suggestion=(
            "File URLs must look like:\n"
            "  .../pluginfile.php/{contextid}/{component}/{filearea}[/{itemid}]/{filename}\n"
            "or:\n"
            "  .../pluginfile.php?file=/{contextid}/{component}/{filearea}[/{itemid}]/{filename}"
        ),
        context={"url": url}
    )


def annotation_loop_error(course_id: Any, started: bool) -> AnnotationLoopError:
    """Create error for misuse of the annotation reentrancy guard"""
    if started:
        message = f"Already annotating course with id: {course_id}"
        suggestion = (
            "Annotation maps are being rebuilt recursively.\n"
            "Check is_annotating() before starting, or use the annotating() context manager."
        )
    else:
        message = f"Not annotating course with id: {course_id}"
        suggestion = "end() must be paired with an earlier start() for the same course."
    return AnnotationLoopError(
        message=message,
        suggestion=suggestion,
        context={"course_id": course_id}
    )


def missing_service_config_error(checked: list[str]) -> ConfigurationError:
    """Create error for missing maps service URL/token"""
    return ConfigurationError(
        message="Maps service URL or token not configured",
        suggestion=(
            "Set both values using one of these methods:\n\n"
            "1. Environment variables:\n"
            "   export ALLY_SERVICE_URL=https://lms.example.edu\n"
            "   export ALLY_SERVICE_TOKEN=your_token\n\n"
            "2. allyfilter.yaml in the working directory:\n"
            "   service_url: https://lms.example.edu\n"
            "   credential_file: ~/.allyfilter/credentials.txt"
        ),
        context={"checked_locations": checked}
    )


def maps_service_error(course_id: int, message: str, cause: Optional[Exception] = None) -> MapsServiceError:
    """Create error for a failed or unsuccessful maps service call"""
    return MapsServiceError(
        message=f"Could not retrieve module maps for course {course_id}: {message}",
        suggestion=(
            "Check that:\n"
            "  - the service URL points at the LMS web root\n"
            "  - the token belongs to a user with the viewfeedback capability\n"
            "  - the web service function filter_ally_get_module_maps is enabled"
        ),
        context={"course_id": course_id},
        cause=cause
    )


def input_file_error(path: Path, what: str, cause: Optional[Exception] = None) -> InputFileError:
    """Create error for an unreadable input file"""
    return InputFileError(
        message=f"Could not read {what}: {path.name}",
        suggestion=f"Check that {path} exists and contains valid JSON or YAML.",
        context={"file": str(path)},
        cause=cause
    )
