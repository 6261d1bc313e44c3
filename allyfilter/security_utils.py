#!/usr/bin/env python3
"""
security_utils.py (allyfilter)

Credential loading for the maps service, token masking for logs, and input
validation for URLs and course ids.
"""

from __future__ import annotations

import os
import re
import stat
import warnings
from pathlib import Path
from typing import Optional, Tuple, Union

from allyfilter.errors import CredentialError


# ============================================================================
# Credential Loading (Safe - No exec())
# ============================================================================

def load_service_credentials_safe(cred_path: Optional[Union[str, Path]] = None) -> Tuple[str, str]:
    """
    Load maps service credentials without executing the credentials file.

    Supports:
    1. Environment variables (ALLY_SERVICE_URL, ALLY_SERVICE_TOKEN)
    2. KEY=VALUE, KEY = "value" or KEY: value lines in a credentials file

    Args:
        cred_path: Path to credentials file, or None to use ALLY_CREDENTIAL_FILE

    Returns:
        Tuple of (service_url, token)

    Raises:
        CredentialError: If credentials cannot be loaded
    """
    env_url = os.environ.get("ALLY_SERVICE_URL")
    env_token = os.environ.get("ALLY_SERVICE_TOKEN")
    if env_url and env_token:
        return env_url.rstrip("/"), env_token

    if cred_path is None:
        cred_path = os.environ.get("ALLY_CREDENTIAL_FILE")

    if not cred_path:
        raise CredentialError(
            message="No maps service credentials found",
            suggestion=(
                "Set ALLY_SERVICE_URL and ALLY_SERVICE_TOKEN, or point\n"
                "ALLY_CREDENTIAL_FILE at a file containing:\n"
                '  SERVICE_URL = "https://lms.example.edu"\n'
                '  SERVICE_TOKEN = "your_token"'
            ),
        )

    cred_file = Path(cred_path).expanduser()
    if not cred_file.is_file():
        raise CredentialError(
            message=f"Credentials file not found: {cred_file}",
            context={"credential_file": str(cred_file)},
        )

    check_file_permissions(cred_file)

    service_url, token = _parse_credentials_file(cred_file)
    if not service_url or not token:
        raise CredentialError(
            message=f"Credentials file must define SERVICE_URL and SERVICE_TOKEN: {cred_file}",
            context={"credential_file": str(cred_file)},
        )

    return service_url.rstrip("/"), token


def _parse_credentials_file(cred_file: Path) -> Tuple[Optional[str], Optional[str]]:
    content = cred_file.read_text(encoding="utf-8")

    def find(key: str) -> Optional[str]:
        patterns = [
            rf'{key}\s*=\s*["\']([^"\']+)["\']',
            rf'{key}\s*=\s*(\S+)',
            rf'{key}\s*:\s*["\']?([^"\'\n]+)["\']?',
        ]
        for pattern in patterns:
            match = re.search(pattern, content)
            if match:
                return match.group(1).strip()
        return None

    return find("SERVICE_URL"), find("SERVICE_TOKEN")


def check_file_permissions(file_path: Path, warn_only: bool = True) -> bool:
    """
    Check if file has secure permissions (not readable by group/others).

    Returns:
        True if permissions are secure, False otherwise
    """
    try:
        mode = os.stat(file_path).st_mode
        is_secure = not (mode & (stat.S_IRWXG | stat.S_IRWXO))

        if not is_secure:
            msg = (
                f"Credentials file has insecure permissions: {file_path}\n"
                f"Other users may be able to read your service token.\n"
                f"Fix with: chmod 600 {file_path}"
            )
            if warn_only:
                warnings.warn(msg, UserWarning)
            else:
                raise CredentialError(message=msg)

        return is_secure
    except OSError:
        # Can't check permissions (e.g., Windows)
        return True


# ============================================================================
# Token Masking for Logs
# ============================================================================

def mask_sensitive(value: Optional[str], visible_chars: int = 4) -> str:
    """
    Mask a sensitive value for safe logging.

    Returns:
        Masked string like "abc1****xyz9"
    """
    if not value:
        return "****"

    if len(value) <= visible_chars * 2:
        return "****"

    return f"{value[:visible_chars]}****{value[-visible_chars:]}"


# ============================================================================
# Input Validation
# ============================================================================

def validate_url(url: str) -> str:
    """
    Validate and normalize a service URL.

    Raises:
        ValueError: If URL is invalid
    """
    if not url:
        raise ValueError("URL cannot be empty")

    url = url.strip()

    if not url.startswith(('http://', 'https://')):
        raise ValueError(f"URL must start with http:// or https://: {url}")

    if '..' in url or '\x00' in url:
        raise ValueError(f"Invalid URL: {url}")

    return url.rstrip('/')


def validate_course_id(course_id: Union[str, int, None]) -> int:
    """
    Validate a course id given on the command line or in config.

    Raises:
        ValueError: If not a positive integer
    """
    if course_id is None:
        raise ValueError("Course ID cannot be empty")
    try:
        cid = int(course_id)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid course ID: {course_id}")
    if cid <= 0:
        raise ValueError(f"Course ID must be positive: {course_id}")
    return cid


# ============================================================================
# Request Timeout Constants
# ============================================================================

# Default timeouts for HTTP requests (connect, read)
DEFAULT_TIMEOUT = (10, 30)  # 10s connect, 30s read
