# pt_aggregator/services/registry.py

from __future__ import annotations

from pathlib import Path
from typing import Callable

from ..config import DEFAULT_RATE_BURST, DEFAULT_RATE_LIMIT, DEFAULT_TIMEOUT, logger
from ..errors import ConfigError, DefinitionError
from ..models import SiteConfig
from .definitions import (
    BUILTIN_DEFINITIONS_DIR,
    SiteDefinition,
    SiteSelectors,
    load_builtin_definitions,
)
from .drivers.base import Driver
from .drivers.mtorrent import DEFAULT_WEB_URL, MTorrentDriver
from .drivers.nexusphp import NexusPHPDriver
from .drivers.unit3d import Unit3DDriver
from .failover import FailoverExecutor
from .http_client import SiteHTTPClient
from .rate_limit import AsyncRateLimiter
from .site import Site

DriverFactory = Callable[[SiteConfig, SiteDefinition | None, FailoverExecutor], Driver]


def _timeout(config: SiteConfig) -> float:
    try:
        return float(config.options.get("timeout") or DEFAULT_TIMEOUT)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid timeout for site '{config.id}'") from exc


def create_nexusphp_driver(
    config: SiteConfig, definition: SiteDefinition | None, failover: FailoverExecutor
) -> Driver:
    cookie = str(config.options.get("cookie") or "").strip()
    if not cookie:
        raise ConfigError(f"NexusPHP site '{config.id}' requires a cookie")

    selectors = None
    raw_selectors = config.options.get("selectors")
    if raw_selectors:
        try:
            selectors = SiteSelectors.from_dict(raw_selectors)
        except DefinitionError as exc:
            raise ConfigError(f"Invalid selectors for site '{config.id}': {exc}") from exc

    http = SiteHTTPClient(
        config.id,
        headers={
            "Cookie": cookie,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        },
        timeout=_timeout(config),
    )
    return NexusPHPDriver(config.id, http, failover, definition, selectors)


def create_mtorrent_driver(
    config: SiteConfig, definition: SiteDefinition | None, failover: FailoverExecutor
) -> Driver:
    api_key = str(config.options.get("apiKey") or "").strip()
    if not api_key:
        raise ConfigError(f"mTorrent site '{config.id}' requires an apiKey")

    http = SiteHTTPClient(
        config.id,
        headers={"x-api-key": api_key, "Accept": "application/json"},
        timeout=_timeout(config),
    )
    web_url = str(config.options.get("webUrl") or DEFAULT_WEB_URL)
    return MTorrentDriver(config.id, http, failover, definition, web_url=web_url)


def create_unit3d_driver(
    config: SiteConfig, definition: SiteDefinition | None, failover: FailoverExecutor
) -> Driver:
    api_key = str(config.options.get("apiKey") or "").strip()
    if not api_key:
        raise ConfigError(f"Unit3D site '{config.id}' requires an apiKey")

    http = SiteHTTPClient(
        config.id,
        headers={"Authorization": f"Bearer {api_key}", "Accept": "application/json"},
        timeout=_timeout(config),
    )
    return Unit3DDriver(config.id, http, failover, definition)


class SiteRegistry:
    """
    Holds site definitions and driver factories keyed by schema.

    Built once at startup and treated as read-only afterwards; ``create_site``
    turns a user's ``SiteConfig`` into a ready-to-use ``Site``.
    """

    def __init__(self) -> None:
        self._definitions: dict[str, SiteDefinition] = {}
        self._drivers: dict[str, DriverFactory] = {}

    def register_definition(self, definition: SiteDefinition) -> None:
        if definition.id in self._definitions:
            raise DefinitionError(f"Definition '{definition.id}' is already registered")
        self._definitions[definition.id] = definition
        logger.debug(f"[REGISTRY] Registered definition '{definition.id}' ({definition.schema})")

    def get_definition(self, site_id: str) -> SiteDefinition | None:
        definition = self._definitions.get(site_id)
        if definition is not None:
            return definition
        # Fall back to alternative names such as "mteam" for "m-team".
        for candidate in self._definitions.values():
            if site_id in candidate.aka:
                return candidate
        return None

    def list_definitions(self) -> list[str]:
        return sorted(self._definitions)

    def register_driver(self, schema: str, factory: DriverFactory) -> None:
        self._drivers[schema.lower()] = factory

    def create_site(self, config: SiteConfig) -> Site:
        definition = self.get_definition(config.id)
        factory = self._drivers.get(config.type.lower())
        if factory is None:
            raise ConfigError(f"Unknown site type '{config.type}' for site '{config.id}'")
        if definition is not None and definition.schema.lower() != config.type.lower():
            logger.warning(
                f"[REGISTRY] {config.id}: configured type '{config.type}' differs from "
                f"definition schema '{definition.schema}'"
            )

        base_urls = list(config.base_urls)
        if not base_urls and definition is not None:
            base_urls = definition.all_urls
        if not base_urls:
            raise ConfigError(f"Site '{config.id}' has no base_url and no known definition")
        failover = FailoverExecutor(config.id, base_urls)

        rate = config.rate_limit or (definition.rate_limit if definition else 0) or DEFAULT_RATE_LIMIT
        burst = config.rate_burst or (definition.rate_burst if definition else 0) or DEFAULT_RATE_BURST

        driver = factory(config, definition, failover)
        name = config.name or (definition.name if definition else config.id)
        logger.info(
            f"[REGISTRY] Created site '{config.id}' ({driver.schema}) with "
            f"{len(failover.base_url_candidates)} base URL(s)"
        )
        return Site(config.id, name, driver, AsyncRateLimiter(rate, burst))

    def create_sites(self, configs: list[SiteConfig]) -> list[Site]:
        return [self.create_site(config) for config in configs]


def build_default_registry(definitions_dir: Path = BUILTIN_DEFINITIONS_DIR) -> SiteRegistry:
    """Registry with the built-in definitions and every schema driver."""
    registry = SiteRegistry()
    registry.register_driver(NexusPHPDriver.schema, create_nexusphp_driver)
    registry.register_driver(MTorrentDriver.schema, create_mtorrent_driver)
    registry.register_driver(Unit3DDriver.schema, create_unit3d_driver)
    for definition in load_builtin_definitions(definitions_dir):
        registry.register_definition(definition)
    return registry
