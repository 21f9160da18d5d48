# pt_aggregator/config.py

import json
import logging
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from .errors import ConfigError
from .models import SiteConfig

# --- Constants ---
DEFAULT_TIMEOUT = 30
DEFAULT_RATE_LIMIT = 1.0
DEFAULT_RATE_BURST = 3
DEFAULT_SITE_RELIABILITY = 0.5
SITE_TIMEZONE_OFFSET = "+08:00"
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/115.0 Safari/537.36"
)

# Setup basic logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)
logging.getLogger("httpx").setLevel(logging.WARNING)

# Cache for parsed site configuration files keyed by resolved path.
_config_cache: dict[Path, list[SiteConfig]] = {}

_REQUIRED_SITE_KEYS = {"type", "id"}


def load_sites_config(config_path: Path) -> list[SiteConfig]:
    """
    Reads the list of configured sites from a YAML file.

    The file is expected to contain a top-level ``sites`` list. Each entry
    needs at least ``type`` and ``id``; ``base_url`` may be omitted for
    sites whose built-in definition lists the URLs; ``options`` may be a
    mapping or a JSON string (the form used by older exports). Results are
    cached per resolved path so repeated calls avoid disk I/O.
    """
    resolved_path = config_path.resolve()
    cached = _config_cache.get(resolved_path)
    if cached is not None:
        return cached

    if not resolved_path.exists():
        raise FileNotFoundError(f"Sites config not found: {resolved_path}")

    with resolved_path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}

    raw_sites = data.get("sites")
    if not isinstance(raw_sites, list):
        raise ConfigError(f"'sites' must be a list in {resolved_path}")

    sites = [_parse_site_entry(entry) for entry in raw_sites]
    seen: set[str] = set()
    for site in sites:
        if site.id in seen:
            raise ConfigError(f"Duplicate site id '{site.id}' in {resolved_path}")
        seen.add(site.id)

    logger.info(f"[CONFIG] Loaded {len(sites)} site(s) from {resolved_path}")
    _config_cache[resolved_path] = sites
    return sites


def _parse_site_entry(entry: Any) -> SiteConfig:
    if not isinstance(entry, dict):
        raise ConfigError("Each site entry must be a mapping")

    missing = _REQUIRED_SITE_KEYS - entry.keys()
    if missing:
        raise ConfigError(
            f"Site entry missing keys: {', '.join(sorted(missing))}"
        )

    options = entry.get("options") or {}
    if isinstance(options, str):
        try:
            options = json.loads(options)
        except json.JSONDecodeError as exc:
            raise ConfigError(
                f"Invalid options JSON for site '{entry['id']}': {exc}"
            ) from exc
    if not isinstance(options, dict):
        raise ConfigError(f"Options for site '{entry['id']}' must be a mapping")

    base_url = entry.get("base_url") or []
    if isinstance(base_url, str):
        base_urls = [base_url]
    elif isinstance(base_url, list):
        base_urls = [url for url in base_url if isinstance(url, str)]
    else:
        raise ConfigError("base_url must be a string or list of strings")

    return SiteConfig(
        type=str(entry["type"]),
        id=str(entry["id"]),
        name=str(entry.get("name") or entry["id"]),
        base_urls=base_urls,
        options=options,
        # Zero defers to the site definition, then to the module defaults.
        rate_limit=float(entry.get("rate_limit") or 0),
        rate_burst=int(entry.get("rate_burst") or 0),
    )
