"""
config.py — YAML configuration plus environment secrets.

Defaults live here; config/config.yaml overrides any subset of them.
Secrets are never read from YAML: resolve them with the helpers below
(CLI flag > env var).
"""

import copy
import logging
import os
from pathlib import Path
from typing import Optional

import yaml

from creator_graph.errors import ConfigurationError

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = 'config/config.yaml'

DEFAULTS = {
    'discovery': {
        'engine': 'auto',
        'browser': 'chrome',
        'max_results_per_query': 10,
        'max_results_per_agent': 20,
        'max_results_per_agent_by_id': {},
        'google_num': 20,
        'query_delay_ms_min': 3000,
        'query_delay_ms_max': 8000,
        'relaxed_matching': False,
    },
    'extract': {
        'limit': 500,
        'preview_limit': 40,
        'extractor_version': 'v1',
    },
    'resolve': {
        'limit': 500,
    },
    'stan': {
        'limit': 100,
        'browser': 'chrome',
        'headless': True,
        'timeout_ms': 30000,
        'wait_after_load_ms': 1200,
    },
    'social': {
        'limit': 250,
        'min_follower_estimate': 0,
    },
}


def _deep_merge(base: dict, override: dict) -> dict:
    out = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = value
    return out


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> dict:
    """Load configuration from YAML, falling back to built-in defaults."""
    path = Path(config_path)
    if not path.exists():
        log.debug(f'Config file {path} not found, using defaults')
        return copy.deepcopy(DEFAULTS)

    with open(path, 'r') as f:
        loaded = yaml.safe_load(f) or {}

    if not isinstance(loaded, dict):
        raise ConfigurationError(f'{path} must contain a mapping at the top level')
    return _deep_merge(DEFAULTS, loaded)


def read_serp_api_key(explicit: Optional[str] = None) -> Optional[str]:
    """SerpAPI key: explicit value, then SERP_API_KEY / SERPAPI_API_KEY / serp_api_key."""
    for candidate in (
        explicit,
        os.environ.get('SERP_API_KEY'),
        os.environ.get('SERPAPI_API_KEY'),
        os.environ.get('serp_api_key'),
    ):
        key = (candidate or '').strip()
        if key:
            return key
    return None


def read_supabase_credentials(url: Optional[str] = None,
                              key: Optional[str] = None) -> tuple[str, str]:
    """Return (url, key) or raise ConfigurationError when either is missing."""
    url = url or os.environ.get('SUPABASE_URL')
    key = key or os.environ.get('SUPABASE_KEY')
    if not url or not key:
        raise ConfigurationError(
            'SUPABASE_URL and SUPABASE_KEY must be set (flags or environment)'
        )
    return url, key


def default_browser(env_var: str, configured: Optional[str] = None) -> str:
    return (os.environ.get(env_var) or configured or 'chrome').strip().lower()


def clamp_int(value, low: int, high: int, fallback: int) -> int:
    """Round and clamp a numeric option; non-numbers fall back to the default."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return fallback
    if value != value:  # NaN
        return fallback
    return max(low, min(high, int(round(value))))
