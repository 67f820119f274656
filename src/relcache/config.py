"""Catalog configuration loading."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ruamel.yaml import YAML

from relcache.catalog.invalidation import (
    DEFAULT_ATTEMPTS,
    DEFAULT_CATEGORY_PAGES,
    DEFAULT_TIMEOUT,
)
from relcache.catalog.store import DEFAULT_IN_QUERY_LIMIT, DEFAULT_MAX_BATCH_OPERATIONS

CONFIG_FILE_NAME = "catalog.yaml"
DEFAULT_DATABASE = "catalog.db"


@dataclass
class StoreConfig:
    """Limits of the backing document store."""

    in_query_limit: int = DEFAULT_IN_QUERY_LIMIT
    max_batch_operations: int = DEFAULT_MAX_BATCH_OPERATIONS

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StoreConfig:
        return cls(
            in_query_limit=int(data.get("in_query_limit", DEFAULT_IN_QUERY_LIMIT)),
            max_batch_operations=int(
                data.get("max_batch_operations", DEFAULT_MAX_BATCH_OPERATIONS)
            ),
        )


@dataclass
class RevalidationConfig:
    """Where and how hard to notify the public site.

    Resolution order for the URL:
    1. Environment variable RELCACHE_REVALIDATE_URL
    2. ``revalidation.url`` in the config file

    Attributes:
        url: Site base URL. None disables notification.
        attempts: Total tries per notification, first one included.
        timeout: Seconds per attempt.
    """

    url: str | None = None
    attempts: int = DEFAULT_ATTEMPTS
    timeout: float = DEFAULT_TIMEOUT

    def get_url(self) -> str | None:
        return os.getenv("RELCACHE_REVALIDATE_URL") or self.url

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RevalidationConfig:
        return cls(
            url=data.get("url"),
            attempts=int(data.get("attempts", DEFAULT_ATTEMPTS)),
            timeout=float(data.get("timeout", DEFAULT_TIMEOUT)),
        )


@dataclass
class CatalogConfig:
    """Configuration for one catalog.

    Attributes:
        name: Catalog name, shown by the CLI.
        database: SQLite file, relative to the config file's directory.
        store: Store limits.
        optimistic_concurrency: Reject edits made against an outdated
            snapshot. ``False`` lets the last writer win.
        revalidation: Public site notification settings.
        category_pages: Game category to the landing pages listing it.
        tokens: Accepted bearer tokens mapped to ``{uid, role}`` claims.
    """

    name: str
    database: str = DEFAULT_DATABASE
    store: StoreConfig = field(default_factory=StoreConfig)
    optimistic_concurrency: bool = True
    revalidation: RevalidationConfig = field(default_factory=RevalidationConfig)
    category_pages: dict[str, list[str]] = field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_CATEGORY_PAGES.items()}
    )
    tokens: dict[str, dict[str, str]] = field(default_factory=dict)

    def database_path(self, base_dir: Path) -> Path:
        """Resolve the database file, honouring RELCACHE_DATABASE."""
        path = Path(os.getenv("RELCACHE_DATABASE") or self.database)
        return path if path.is_absolute() else base_dir / path

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CatalogConfig:
        """Create config from dictionary.

        Args:
            data: Parsed ``catalog.yaml`` contents.

        Returns:
            CatalogConfig instance.
        """
        pages_data = data.get("category_pages")
        if pages_data is None:
            category_pages = {k: list(v) for k, v in DEFAULT_CATEGORY_PAGES.items()}
        else:
            category_pages = {str(k): [str(p) for p in v] for k, v in dict(pages_data).items()}

        auth_data = data.get("auth") or {}
        tokens = {
            str(token): {str(k): str(v) for k, v in dict(claims).items()}
            for token, claims in dict(auth_data.get("tokens") or {}).items()
        }

        return cls(
            name=data.get("name", "unnamed"),
            database=data.get("database", DEFAULT_DATABASE),
            store=StoreConfig.from_dict(dict(data.get("store") or {})),
            optimistic_concurrency=bool(data.get("optimistic_concurrency", True)),
            revalidation=RevalidationConfig.from_dict(dict(data.get("revalidation") or {})),
            category_pages=category_pages,
            tokens=tokens,
        )

    def to_dict(self) -> dict[str, Any]:
        """Plain-data form, as written to ``catalog.yaml``."""
        data: dict[str, Any] = {
            "name": self.name,
            "database": self.database,
            "store": {
                "in_query_limit": self.store.in_query_limit,
                "max_batch_operations": self.store.max_batch_operations,
            },
            "optimistic_concurrency": self.optimistic_concurrency,
            "revalidation": {
                "url": self.revalidation.url,
                "attempts": self.revalidation.attempts,
                "timeout": self.revalidation.timeout,
            },
            "category_pages": {k: list(v) for k, v in self.category_pages.items()},
        }
        if self.tokens:
            data["auth"] = {"tokens": {k: dict(v) for k, v in self.tokens.items()}}
        return data


class ConfigError(Exception):
    """Raised when catalog configuration cannot be loaded."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load catalog config at {path}: {reason}")


def load_config(config_path: Path) -> CatalogConfig:
    """Load catalog configuration from a YAML file.

    Args:
        config_path: Path to ``catalog.yaml``.

    Returns:
        CatalogConfig instance.

    Raises:
        ConfigError: If config cannot be loaded.
    """
    if not config_path.exists():
        raise ConfigError(config_path, "File not found")

    yaml = YAML()
    try:
        with config_path.open("r", encoding="utf-8") as f:
            data = yaml.load(f)

        if data is None:
            raise ConfigError(config_path, "Empty file")

        return CatalogConfig.from_dict(dict(data))
    except Exception as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(config_path, str(e)) from e


def create_default_config(name: str, revalidate_url: str | None = None) -> CatalogConfig:
    """Create a default catalog configuration.

    Args:
        name: Catalog name.
        revalidate_url: Optional public site base URL.

    Returns:
        CatalogConfig with default values.
    """
    return CatalogConfig(name=name, revalidation=RevalidationConfig(url=revalidate_url))


def write_config(config: CatalogConfig, config_path: Path) -> None:
    """Write *config* to *config_path* as YAML."""
    yaml = YAML()
    yaml.default_flow_style = False
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as f:
        yaml.dump(config.to_dict(), f)
