# config_utils.py - YAML Configuration System for allyfilter
"""
allyfilter configuration utilities with YAML file support.

Configuration Resolution Order (highest to lowest priority):
1. Environment variables (ALLY_SERVICE_URL, ALLY_OMIT_CACHE, etc.)
2. allyfilter.yaml in the working directory
3. ~/.allyfilter/config.yaml (global defaults)

Usage:
    from allyfilter.config_utils import get_config

    config = get_config()
    print(config.service_url)
    print(config.client.debounce)
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from allyfilter.errors import CredentialError, missing_service_config_error
from allyfilter.security_utils import load_service_credentials_safe


logger = logging.getLogger(__name__)

CONFIG_FILENAME = "allyfilter.yaml"

# Components whose files can receive accessibility feedback
DEFAULT_SUPPORTED_COMPONENTS = [
    "course",
    "block_html",
    "mod_assign",
    "mod_book",
    "mod_folder",
    "mod_forum",
    "mod_glossary",
    "mod_hsuforum",
    "mod_label",
    "mod_lesson",
    "mod_page",
    "mod_resource",
    "question",
]

TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class ClientSettings:
    """Page-side settings; times are in seconds"""
    debounce: float = 1.0
    startup_grace: float = 2.0
    poll_interval: float = 0.2
    poll_max_iterations: int = 10
    folder_poll_interval: float = 5.0
    # Overrides the page's theme-* body class when set
    theme: Optional[str] = None


@dataclass
class AllyConfig:
    """Complete allyfilter configuration"""
    # Site
    wwwroot: Optional[str] = None
    enabled: bool = True
    theme: Optional[str] = None

    # Maps service
    service_url: Optional[str] = None
    service_token: Optional[str] = None
    credential_file: Optional[Path] = None

    # Filter behaviour
    omit_cache: bool = False
    disable_check_pagetype: bool = False
    supported_components: List[str] = field(default_factory=lambda: list(DEFAULT_SUPPORTED_COMPONENTS))

    client: ClientSettings = field(default_factory=ClientSettings)
    cache_path: Optional[Path] = None

    # Paths (resolved at load time)
    config_root: Optional[Path] = None

    # Extra settings from config file
    extra: Dict[str, Any] = field(default_factory=dict)

    # Track where values came from (for debugging)
    _sources: Dict[str, str] = field(default_factory=dict)


class ConfigLoader:
    """Load configuration from multiple sources"""

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = Path(config_dir) if config_dir else Path.cwd()
        self.config = AllyConfig(config_root=self.config_dir)

    def load(self) -> AllyConfig:
        """Load configuration from all sources in priority order"""
        # Load in reverse priority (lowest first, higher overwrites)
        self._load_global_config()
        self._load_yaml_config()
        self._load_env_vars()
        self.config.client.theme = self.config.theme
        return self.config

    def _load_global_config(self):
        """Load ~/.allyfilter/config.yaml if it exists"""
        global_config = Path.home() / ".allyfilter" / "config.yaml"
        if global_config.exists():
            self._load_yaml_file(global_config, "global")

    def _load_yaml_config(self):
        """Load allyfilter.yaml from the working directory"""
        yaml_path = self.config_dir / CONFIG_FILENAME
        if yaml_path.exists():
            self._load_yaml_file(yaml_path, CONFIG_FILENAME)

    def _load_yaml_file(self, path: Path, source_name: str):
        """Load settings from a YAML file"""
        try:
            data = yaml.safe_load(path.read_text()) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning("[config:warn] Failed to parse %s: %s", path, e)
            return
        if not isinstance(data, dict):
            logger.warning("[config:warn] Ignoring %s: expected a mapping", path)
            return

        mappings = {
            "wwwroot": "wwwroot",
            "enabled": "enabled",
            "theme": "theme",
            "service_url": "service_url",
            "service_token": "service_token",
            "credential_file": "credential_file",
            "omit_cache": "omit_cache",
            "disable_check_pagetype": "disable_check_pagetype",
            "supported_components": "supported_components",
        }

        for yaml_key, attr in mappings.items():
            if yaml_key in data:
                value = data[yaml_key]
                if yaml_key == "credential_file":
                    value = Path(value).expanduser()
                elif yaml_key in ("enabled", "omit_cache", "disable_check_pagetype"):
                    value = bool(value)
                elif yaml_key == "supported_components":
                    value = [str(c) for c in value or []]
                setattr(self.config, attr, value)
                self.config._sources[attr] = source_name

        # Handle nested client settings
        if "client" in data and isinstance(data["client"], dict):
            client = data["client"]
            for key in ("debounce", "startup_grace", "poll_interval", "folder_poll_interval"):
                if key in client:
                    setattr(self.config.client, key, float(client[key]))
                    self.config._sources[f"client.{key}"] = source_name
            if "poll_max_iterations" in client:
                self.config.client.poll_max_iterations = int(client["poll_max_iterations"])
                self.config._sources["client.poll_max_iterations"] = source_name

        # Handle nested cache settings
        if "cache" in data and isinstance(data["cache"], dict):
            cache = data["cache"]
            if cache.get("path"):
                self.config.cache_path = Path(cache["path"]).expanduser()
                self.config._sources["cache_path"] = source_name

        # Store any extra settings
        known_keys = set(mappings) | {"client", "cache"}
        for key, value in data.items():
            if key not in known_keys:
                self.config.extra[key] = value

    def _load_env_vars(self):
        """Load from environment variables (highest priority)"""
        for env_name, attr in (
            ("ALLY_WWWROOT", "wwwroot"),
            ("ALLY_SERVICE_URL", "service_url"),
            ("ALLY_SERVICE_TOKEN", "service_token"),
            ("ALLY_THEME", "theme"),
        ):
            if os.environ.get(env_name):
                setattr(self.config, attr, os.environ[env_name])
                self.config._sources[attr] = f"env:{env_name}"

        if os.environ.get("ALLY_CREDENTIAL_FILE"):
            self.config.credential_file = Path(os.environ["ALLY_CREDENTIAL_FILE"]).expanduser()
            self.config._sources["credential_file"] = "env:ALLY_CREDENTIAL_FILE"

        for env_name, attr in (
            ("ALLY_OMIT_CACHE", "omit_cache"),
            ("ALLY_DISABLE_CHECK_PAGETYPE", "disable_check_pagetype"),
        ):
            value = os.environ.get(env_name)
            if value is not None:
                setattr(self.config, attr, value.lower() in TRUTHY)
                self.config._sources[attr] = f"env:{env_name}"


# ============================================================================
# Public API
# ============================================================================

def get_config(config_dir: Optional[Path] = None) -> AllyConfig:
    """
    Get complete allyfilter configuration.

    Args:
        config_dir: Directory holding allyfilter.yaml (defaults to cwd)

    Returns:
        AllyConfig with all settings resolved
    """
    loader = ConfigLoader(config_dir)
    return loader.load()


def get_service_credentials(config: Optional[AllyConfig] = None):
    """
    Resolve the maps service URL and token.

    Inline settings win; otherwise the credentials file is read.

    Returns:
        (service_url, token) tuple

    Raises:
        ConfigurationError: If neither source provides both values
    """
    if config is None:
        config = get_config()

    # The web service lives on the site itself unless told otherwise
    service_url = config.service_url or config.wwwroot
    if service_url and config.service_token:
        return service_url.rstrip("/"), config.service_token

    cred_file = config.credential_file or Path.home() / ".allyfilter" / "credentials.txt"
    try:
        url, token = load_service_credentials_safe(cred_file)
    except CredentialError as e:
        logger.debug("Credential file unusable: %s", e.message)
        raise missing_service_config_error([
            "ALLY_SERVICE_URL / ALLY_SERVICE_TOKEN environment variables",
            CONFIG_FILENAME,
            str(cred_file),
        ])
    return (config.service_url or url).rstrip("/"), config.service_token or token


def create_config_template(include_comments: bool = True) -> str:
    """
    Generate an allyfilter.yaml template.

    Args:
        include_comments: Whether to include explanatory comments

    Returns:
        YAML string ready to write to file
    """
    if include_comments:
        return '''# allyfilter Configuration File

# Site root; also the maps service URL when service_url is not set
wwwroot: https://lms.example.edu

# Turn the filter off without removing it
enabled: true

# Maps service (allyfilter fetch-maps)
# Option 1: Reference a credentials file (recommended)
credential_file: ~/.allyfilter/credentials.txt

# Option 2: Inline settings (less secure)
# service_url: https://lms.example.edu
# service_token: your_token_here

# Skip the area cache entirely
omit_cache: false

# Build page maps on the site front page and course id 1 as well
disable_check_pagetype: false

# Components whose files get a feedback control (others: download only)
# supported_components: [course, mod_page, mod_resource]

# Page theme, overriding the theme-* body class (e.g. snap, boost)
# theme: snap

# Page-side timing (seconds)
client:
  debounce: 1.0            # Settle delay before a rerun
  startup_grace: 2.0       # Ignore content mutations this long after start
  poll_interval: 0.2       # Interval while waiting for lazily built trees
  poll_max_iterations: 10  # Give up waiting after this many polls
  folder_poll_interval: 5.0

# Area cache persistence
cache:
  path: ~/.allyfilter/area-cache.json
'''
    return yaml.safe_dump({
        "wwwroot": "https://lms.example.edu",
        "enabled": True,
        "credential_file": "~/.allyfilter/credentials.txt",
        "omit_cache": False,
        "disable_check_pagetype": False,
        "client": {"debounce": 1.0, "startup_grace": 2.0},
    }, sort_keys=False)
