"""Configuration loader with type-safe dataclasses."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .models import CACHE_ROLES


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


# Default network-first race timeout in milliseconds.
DEFAULT_NETWORK_TIMEOUT_MS = 3000

# Assets fetched into the static cache on install. Served cache-first.
DEFAULT_CRITICAL_ASSETS = (
    "/",
    "/index.html",
    "/src/main.tsx",
    "/src/App.tsx",
    "/src/components/ConversionHero.tsx",
    "/src/index.css",
    "https://fonts.googleapis.com/css2?family=Inter:wght@400;500;600;700&display=swap",
    "https://fonts.googleapis.com/css2?family=Fraunces:ital,opsz,wght@0,9..144,400;0,9..144,600;0,9..144,700&display=swap",
)

# Conversion components fetched into the dynamic cache on install.
DEFAULT_PRECACHE_ASSETS = (
    "/src/components/InteractiveCTA.tsx",
    "/src/components/TrustSignals.tsx",
    "/src/components/UrgencyIndicators.tsx",
    "/src/components/StickyMicroCTA.tsx",
)

DEFAULT_CRITICAL_PATTERNS = ("main.", "App.", "ConversionHero.", "index.css", "fonts.googleapis.com")

DEFAULT_IMAGE_PATTERNS = ("/images/", "/assets/")

DEFAULT_API_ENDPOINTS = ("/api/generate", "/api/analytics", "/api/health")

DEFAULT_DYNAMIC_PATTERNS = (
    "/src/components/",
    "/src/lib/",
    "/src/hooks/",
    "/src/pages/",
    "/assets/",
    "/src/",
    "/components/",
    "/lib/",
    "/hooks/",
)

# Valid alert thresholds for the performance budget monitor
ALERT_THRESHOLDS = ("good", "needsImprovement", "poor")


def _check_tuple(value: object, name: str) -> None:
    if not isinstance(value, tuple) or not all(isinstance(item, str) and item for item in value):
        raise ConfigError(f"'{name}' must be a list of non-empty strings")


@dataclass(frozen=True)
class NetworkConfig:
    """Configuration for requests sent to the application origin."""

    origin: str
    timeout_ms: int = DEFAULT_NETWORK_TIMEOUT_MS  # network-first race timeout
    request_timeout: int = 30  # hard socket timeout for any fetch, seconds
    user_agent: str = "HookLineCache/0.1"

    def __post_init__(self) -> None:
        if not self.origin:
            raise ConfigError("Network origin cannot be empty")
        if not self.origin.startswith(("http://", "https://")):
            raise ConfigError(f"Network origin must start with http:// or https://, got '{self.origin}'")
        if self.timeout_ms < 1:
            raise ConfigError(f"Network timeout_ms must be at least 1, got {self.timeout_ms}")
        if self.request_timeout < 1:
            raise ConfigError(f"Network request_timeout must be at least 1 second, got {self.request_timeout}")
        if not self.user_agent:
            raise ConfigError("User-Agent cannot be empty")


@dataclass(frozen=True)
class CacheConfig:
    """Cache naming. Bumping the version invalidates every cache on next activation."""

    version: str = "1.0.0"
    prefix: str = ""

    def __post_init__(self) -> None:
        if not self.version:
            raise ConfigError("Cache version cannot be empty")

    def name_for(self, role: str) -> str:
        """Return the versioned cache name for a logical role."""
        if role not in CACHE_ROLES:
            raise ConfigError(f"Unknown cache role '{role}'. Must be one of: {CACHE_ROLES}")
        return f"{self.prefix}{role}-v{self.version}"

    @property
    def names(self) -> tuple[str, ...]:
        """Names of the caches that belong to the current version."""
        return tuple(self.name_for(role) for role in CACHE_ROLES)


def _get_default_db_path() -> str:
    """Get the default cache database path using XDG-compliant directory."""
    home = Path.home()
    return str(home / ".local" / "share" / "hooklinecache" / "caches.db")


DEFAULT_DB_PATH = _get_default_db_path()


@dataclass(frozen=True)
class StorageConfig:
    """Configuration for the SQLite cache store."""

    path: str = DEFAULT_DB_PATH

    def __post_init__(self) -> None:
        if not self.path:
            raise ConfigError("Storage path cannot be empty")


@dataclass(frozen=True)
class AssetsConfig:
    """URL lists and patterns used for pre-caching and classification."""

    critical: tuple[str, ...] = DEFAULT_CRITICAL_ASSETS
    precache: tuple[str, ...] = DEFAULT_PRECACHE_ASSETS
    critical_patterns: tuple[str, ...] = DEFAULT_CRITICAL_PATTERNS
    image_patterns: tuple[str, ...] = DEFAULT_IMAGE_PATTERNS
    api_endpoints: tuple[str, ...] = DEFAULT_API_ENDPOINTS
    dynamic_patterns: tuple[str, ...] = DEFAULT_DYNAMIC_PATTERNS
    offline_page: str = "/offline.html"

    def __post_init__(self) -> None:
        _check_tuple(self.critical, "assets.critical")
        _check_tuple(self.precache, "assets.precache")
        _check_tuple(self.critical_patterns, "assets.critical_patterns")
        _check_tuple(self.image_patterns, "assets.image_patterns")
        _check_tuple(self.api_endpoints, "assets.api_endpoints")
        _check_tuple(self.dynamic_patterns, "assets.dynamic_patterns")
        if not self.offline_page:
            raise ConfigError("Offline page URL cannot be empty")


@dataclass(frozen=True)
class SyncConfig:
    """Configuration for the analytics background sync."""

    tag: str = "analytics-sync"
    pending_key: str = "/api/analytics/pending"
    batch_endpoint: str = "/api/analytics/batch"

    def __post_init__(self) -> None:
        if not self.tag:
            raise ConfigError("Sync tag cannot be empty")
        if not self.pending_key:
            raise ConfigError("Sync pending_key cannot be empty")
        if not self.batch_endpoint:
            raise ConfigError("Sync batch_endpoint cannot be empty")


@dataclass(frozen=True)
class ProxyConfig:
    """Configuration for the caching proxy HTTP server."""

    enabled: bool = True
    host: str = ""
    port: int = 8080

    def __post_init__(self) -> None:
        if self.port < 1 or self.port > 65535:
            raise ConfigError(f"Proxy port must be between 1 and 65535, got {self.port}")


@dataclass(frozen=True)
class TasksConfig:
    """Configuration for detached background tasks."""

    max_workers: int = 4
    error_log_size: int = 100  # failures kept for inspection

    def __post_init__(self) -> None:
        if self.max_workers < 1:
            raise ConfigError(f"Tasks max_workers must be at least 1, got {self.max_workers}")
        if self.error_log_size < 1:
            raise ConfigError(f"Tasks error_log_size must be at least 1, got {self.error_log_size}")


@dataclass(frozen=True)
class BudgetConfig:
    """Configuration for the performance budget monitor."""

    enabled: bool = True
    alert_threshold: str = "needsImprovement"
    sample_rate: float = 1.0
    enable_alerts: bool = True  # log violations as warnings
    report_endpoint: str | None = None  # e.g. /api/analytics/performance-violation

    def __post_init__(self) -> None:
        if self.alert_threshold not in ALERT_THRESHOLDS:
            raise ConfigError(
                f"Invalid budget alert_threshold '{self.alert_threshold}'. Must be one of: {ALERT_THRESHOLDS}"
            )
        if not (0.0 <= self.sample_rate <= 1.0):
            raise ConfigError(f"Budget sample_rate must be between 0.0 and 1.0, got {self.sample_rate}")


@dataclass(frozen=True)
class Config:
    """Main configuration container."""

    network: NetworkConfig
    cache: CacheConfig = field(default_factory=CacheConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    assets: AssetsConfig = field(default_factory=AssetsConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    tasks: TasksConfig = field(default_factory=TasksConfig)
    budget: BudgetConfig = field(default_factory=BudgetConfig)


def _section(data: dict, name: str) -> dict:
    """Return a config section as a dict, treating a missing section as empty."""
    section = data.get(name)
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise ConfigError(f"'{name}' section must be a dictionary")
    return section


def _string_list(section: dict, key: str, default: tuple[str, ...], section_name: str) -> tuple[str, ...]:
    """Parse an optional list of strings into a tuple."""
    value = section.get(key)
    if value is None:
        return default
    if not isinstance(value, list):
        raise ConfigError(f"'{section_name}.{key}' must be a list")
    return tuple(str(item) for item in value)


def _parse_network_config(data: dict) -> NetworkConfig:
    """Parse network configuration section."""
    section = _section(data, "network")

    origin = section.get("origin")
    if origin is None:
        raise ConfigError("'network' section is missing 'origin' field")

    return NetworkConfig(
        origin=str(origin).rstrip("/"),
        timeout_ms=int(section.get("timeout_ms", DEFAULT_NETWORK_TIMEOUT_MS)),
        request_timeout=int(section.get("request_timeout", 30)),
        user_agent=str(section.get("user_agent", "HookLineCache/0.1")),
    )


def _parse_cache_config(data: dict) -> CacheConfig:
    """Parse cache configuration section."""
    section = _section(data, "cache")
    return CacheConfig(
        version=str(section.get("version", "1.0.0")),
        prefix=str(section.get("prefix", "")),
    )


def _parse_storage_config(data: dict) -> StorageConfig:
    """Parse storage configuration section."""
    section = _section(data, "storage")
    return StorageConfig(path=str(section.get("path", DEFAULT_DB_PATH)))


def _parse_assets_config(data: dict) -> AssetsConfig:
    """Parse assets configuration section."""
    section = _section(data, "assets")
    return AssetsConfig(
        critical=_string_list(section, "critical", DEFAULT_CRITICAL_ASSETS, "assets"),
        precache=_string_list(section, "precache", DEFAULT_PRECACHE_ASSETS, "assets"),
        critical_patterns=_string_list(section, "critical_patterns", DEFAULT_CRITICAL_PATTERNS, "assets"),
        image_patterns=_string_list(section, "image_patterns", DEFAULT_IMAGE_PATTERNS, "assets"),
        api_endpoints=_string_list(section, "api_endpoints", DEFAULT_API_ENDPOINTS, "assets"),
        dynamic_patterns=_string_list(section, "dynamic_patterns", DEFAULT_DYNAMIC_PATTERNS, "assets"),
        offline_page=str(section.get("offline_page", "/offline.html")),
    )


def _parse_sync_config(data: dict) -> SyncConfig:
    """Parse sync configuration section."""
    section = _section(data, "sync")
    return SyncConfig(
        tag=str(section.get("tag", "analytics-sync")),
        pending_key=str(section.get("pending_key", "/api/analytics/pending")),
        batch_endpoint=str(section.get("batch_endpoint", "/api/analytics/batch")),
    )


def _parse_proxy_config(data: dict) -> ProxyConfig:
    """Parse proxy configuration section."""
    section = _section(data, "proxy")
    return ProxyConfig(
        enabled=bool(section.get("enabled", True)),
        host=str(section.get("host", "")),
        port=int(section.get("port", 8080)),
    )


def _parse_tasks_config(data: dict) -> TasksConfig:
    """Parse tasks configuration section."""
    section = _section(data, "tasks")
    return TasksConfig(
        max_workers=int(section.get("max_workers", 4)),
        error_log_size=int(section.get("error_log_size", 100)),
    )


def _parse_budget_config(data: dict) -> BudgetConfig:
    """Parse budget configuration section."""
    section = _section(data, "budget")

    report_endpoint = section.get("report_endpoint")
    if report_endpoint is not None:
        report_endpoint = str(report_endpoint)

    return BudgetConfig(
        enabled=bool(section.get("enabled", True)),
        alert_threshold=str(section.get("alert_threshold", "needsImprovement")),
        sample_rate=float(section.get("sample_rate", 1.0)),
        enable_alerts=bool(section.get("enable_alerts", True)),
        report_endpoint=report_endpoint,
    )


def _apply_env_overrides(config_data: dict) -> dict:
    """Apply environment variable overrides to configuration.

    Supported overrides:
    - HOOKLINE_ORIGIN: Override network.origin
    - HOOKLINE_NETWORK_TIMEOUT_MS: Override network.timeout_ms
    - HOOKLINE_CACHE_VERSION: Override cache.version
    - HOOKLINE_PROXY_PORT: Override proxy.port
    - HOOKLINE_PROXY_ENABLED: Override proxy.enabled (true/false)
    - HOOKLINE_DB_PATH: Override storage.path
    """
    for section in ("network", "cache", "proxy", "storage"):
        if config_data.get(section) is None:
            config_data[section] = {}

    origin = os.environ.get("HOOKLINE_ORIGIN")
    if origin is not None:
        config_data["network"]["origin"] = origin

    timeout_ms = os.environ.get("HOOKLINE_NETWORK_TIMEOUT_MS")
    if timeout_ms is not None:
        config_data["network"]["timeout_ms"] = int(timeout_ms)

    version = os.environ.get("HOOKLINE_CACHE_VERSION")
    if version is not None:
        config_data["cache"]["version"] = version

    proxy_port = os.environ.get("HOOKLINE_PROXY_PORT")
    if proxy_port is not None:
        config_data["proxy"]["port"] = int(proxy_port)

    proxy_enabled = os.environ.get("HOOKLINE_PROXY_ENABLED")
    if proxy_enabled is not None:
        config_data["proxy"]["enabled"] = proxy_enabled.lower() in ("true", "1", "yes")

    db_path = os.environ.get("HOOKLINE_DB_PATH")
    if db_path is not None:
        config_data["storage"]["path"] = db_path

    return config_data


def load_config(config_path: str) -> Config:
    """Load and validate configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Validated Config object.

    Raises:
        ConfigError: If the file cannot be read or configuration is invalid.
    """
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML configuration: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read configuration file: {e}")

    if data is None:
        raise ConfigError("Configuration file is empty")

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a YAML dictionary")

    try:
        data = _apply_env_overrides(data)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid environment override: {e}")

    try:
        return Config(
            network=_parse_network_config(data),
            cache=_parse_cache_config(data),
            storage=_parse_storage_config(data),
            assets=_parse_assets_config(data),
            sync=_parse_sync_config(data),
            proxy=_parse_proxy_config(data),
            tasks=_parse_tasks_config(data),
            budget=_parse_budget_config(data),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration value: {e}")
