"""Configuration management for htmlwiki.

This module holds the configurable constants for the wiki and the discovery
of the layer directories. Magic numbers are documented here rather than
scattered throughout the codebase.

Example .wikiconfig file:
    directories:          # Highest priority first; the first one is writable
      - pages
      - ~/shared-wiki
    container: /_container.html
    exclude:
      - drafts/*
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


class ConfigurationError(Exception):
    """Raised when required configuration is missing."""

    pass


# Config filename (marks a directory as a wiki project root)
WIKI_CONFIG_FILENAME = ".wikiconfig"

# Maximum directories walked up from cwd looking for .wikiconfig
MAX_CONFIG_SEARCH_DEPTH = 50


# =============================================================================
# Content Paths
# =============================================================================

# "/" is an alias of this path in path-or-title lookups
INDEX_PATH = "/index.html"

# Request paths without an extension get this suffix
DEFAULT_EXTENSION = ".html"

# Page container template, rendered around pages unless they opt out
DEFAULT_CONTAINER_PATH = "/_container.html"

# Allowed characters in a single path segment. Anything else (backslashes,
# control characters, NUL, shell metacharacters) is rejected before touching disk.
FILENAME_PATTERN = re.compile(r"^[A-Za-z0-9 _\-.(),'!+@~]+$")

HTML_EXTENSIONS = frozenset({".html", ".htm"})
MARKDOWN_EXTENSIONS = frozenset({".md", ".markdown"})


# =============================================================================
# Search
# =============================================================================

# Match fragments shorter than this are ignored when scoring
SEARCH_MIN_MATCH_CHARS = 3

# Share of the query allowed to go unmatched (0 = exact substring only,
# 1 = anything). An entry needs at least 1 - SEARCH_THRESHOLD of the query
# covered by matching runs to be returned from site.search().
SEARCH_THRESHOLD = 0.6

# Default number of results returned by search
DEFAULT_SEARCH_LIMIT = 20


# =============================================================================
# Rendering
# =============================================================================

# Maximum nesting of render() inclusions. Pages that include themselves
# (directly or through other pages) fail with a directive error instead of
# recursing forever.
MAX_RENDER_DEPTH = 16


# =============================================================================
# File Watching
# =============================================================================

# Debounce window for batching filesystem events before re-indexing
WATCH_DEBOUNCE_SECONDS = 1.0


@dataclass
class WikiConfig:
    """Wiki configuration resolved from the environment and .wikiconfig."""

    directories: list[Path] = field(default_factory=list)
    """Layer directories in priority order. The first one receives writes."""

    container: str = DEFAULT_CONTAINER_PATH
    """Content path of the page container template."""

    exclude: list[str] = field(default_factory=list)
    """Glob patterns (against content paths) skipped when indexing."""

    source_file: Path | None = None
    """Path to the .wikiconfig file that was loaded."""

    @classmethod
    def from_dict(cls, data: dict[str, Any], source_file: Path | None = None) -> "WikiConfig":
        """Create WikiConfig from a parsed YAML dict."""
        base = source_file.parent if source_file else Path.cwd()
        directories = [
            (base / Path(d).expanduser()).resolve() for d in data.get("directories", []) or []
        ]
        return cls(
            directories=directories,
            container=data.get("container") or DEFAULT_CONTAINER_PATH,
            exclude=list(data.get("exclude", []) or []),
            source_file=source_file,
        )


def _discover_config_file(start_dir: Path | None = None) -> Path | None:
    """Walk up from start_dir looking for a .wikiconfig file."""
    current = Path(start_dir or os.getcwd()).resolve()

    for _ in range(MAX_CONFIG_SEARCH_DEPTH):
        config_file = current / WIKI_CONFIG_FILENAME
        if config_file.exists():
            return config_file

        parent = current.parent
        if parent == current:  # Reached filesystem root
            break
        current = parent

    return None


def load_wikiconfig(config_file: Path) -> WikiConfig | None:
    """Load a .wikiconfig file.

    Returns:
        WikiConfig if the file is valid YAML mapping, None otherwise.
    """
    try:
        data = yaml.safe_load(config_file.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError):
        return None

    # Empty or all-comments file
    if data is None:
        return WikiConfig(source_file=config_file)

    if not isinstance(data, dict):
        return None

    return WikiConfig.from_dict(data, source_file=config_file)


def get_wiki_config(
    directories: list[Path] | None = None,
    start_dir: Path | None = None,
) -> WikiConfig:
    """Resolve the wiki configuration.

    Discovery order for layer directories:
    1. Explicit ``directories`` argument (CLI --dir options)
    2. HTMLWIKI_DIRS environment variable (os.pathsep separated)
    3. ``directories`` in the nearest .wikiconfig walking up from cwd
    4. Error with helpful message

    Raises:
        ConfigurationError: If no layer directory can be found.
    """
    config_file = _discover_config_file(start_dir)
    config = load_wikiconfig(config_file) if config_file else None
    if config is None:
        config = WikiConfig()

    if directories:
        config.directories = [Path(d).expanduser().resolve() for d in directories]
    else:
        env_dirs = os.environ.get("HTMLWIKI_DIRS")
        if env_dirs:
            config.directories = [
                Path(d).expanduser().resolve() for d in env_dirs.split(os.pathsep) if d
            ]

    if not config.directories:
        raise ConfigurationError(
            "No wiki directories configured. Options:\n"
            "  1. Pass --dir (repeatable, highest priority first)\n"
            "  2. Set HTMLWIKI_DIRS to one or more directories\n"
            "  3. Add a .wikiconfig with a 'directories' list"
        )

    return config
