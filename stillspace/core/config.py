"""
Configuration management for Still Space.

Loads settings from a YAML config file, applies environment overrides and
provides typed access.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import yaml

# Load environment variables from .env file
from dotenv import load_dotenv
load_dotenv()


def _project_root() -> Path:
    """Return project root (parent of the stillspace package)."""
    return Path(__file__).resolve().parent.parent.parent


DEFAULT_CONFIG_PATH = _project_root() / "config" / "default.yaml"


@dataclass
class StillSpaceConfig:
    """Configuration for the offline caching layer."""

    # Where the gateway lives and where it forwards to
    origin: str = "http://localhost:8080"
    upstream_url: str = "http://localhost:3000"
    fetch_timeout: Optional[float] = None       # None = no internal timeout

    # Cache generations
    cache_prefix: str = "meditation-"           # reserved prefix, owned by this worker
    cache_version: str = "v1"
    cache_backend: str = "memory"               # "memory" or "redis"
    redis_namespace: str = "stillspace"
    precache: List[str] = field(default_factory=lambda: ["/", "/index.html", "/manifest.json"])
    skip_waiting_on_install: bool = True

    # Route classification
    audio_markers: List[str] = field(default_factory=lambda: ["/sounds/", "/audio/"])
    api_prefix: str = "/api/"
    static_destinations: List[str] = field(default_factory=lambda: ["script", "style", "image"])

    # Offline behaviour
    offline_fallback_path: str = "/"
    cache_api_responses: bool = False
    diagnostics_limit: int = 100
    probe_url: Optional[str] = None
    probe_interval_online: float = 30.0
    probe_interval_offline: float = 10.0

    # Background sync of meditation records
    records_path: str = "local_data/offline_records.json"
    records_sync_tag: str = "meditation-records"
    records_sync_path: str = "/api/trpc/meditation.createSession"

    # Push notifications
    notification_title: str = "Still Space reminder"
    notification_icon: str = "/icon-192x192.png"
    notification_badge: str = "/badge-72x72.png"
    notification_open_path: str = "/timer"

    @property
    def static_cache_name(self) -> str:
        return f"{self.cache_prefix}static-{self.cache_version}"

    @property
    def dynamic_cache_name(self) -> str:
        return f"{self.cache_prefix}dynamic-{self.cache_version}"

    @property
    def current_cache_names(self) -> List[str]:
        return [self.static_cache_name, self.dynamic_cache_name]

    @classmethod
    def from_yaml(cls, config_path: Optional[Path] = None) -> "StillSpaceConfig":
        """Load configuration from YAML file, then apply environment overrides."""
        path = config_path or DEFAULT_CONFIG_PATH
        data: Dict[str, Any] = {}
        if path.exists():
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}

        worker = data.get('worker', {})
        routing = data.get('routing', {})
        network = data.get('network', {})
        offline = data.get('offline', {})
        records = data.get('records', {})
        notifications = data.get('notifications', {})
        defaults = cls()

        config = cls(
            origin=network.get('origin', defaults.origin),
            upstream_url=network.get('upstream_url', defaults.upstream_url),
            fetch_timeout=network.get('fetch_timeout', defaults.fetch_timeout),
            cache_prefix=worker.get('cache_prefix', defaults.cache_prefix),
            cache_version=str(worker.get('cache_version', defaults.cache_version)),
            cache_backend=worker.get('cache_backend', defaults.cache_backend),
            redis_namespace=worker.get('redis_namespace', defaults.redis_namespace),
            precache=list(worker.get('precache', defaults.precache)),
            skip_waiting_on_install=worker.get('skip_waiting_on_install', defaults.skip_waiting_on_install),
            audio_markers=list(routing.get('audio_markers', defaults.audio_markers)),
            api_prefix=routing.get('api_prefix', defaults.api_prefix),
            static_destinations=list(routing.get('static_destinations', defaults.static_destinations)),
            offline_fallback_path=offline.get('fallback_path', defaults.offline_fallback_path),
            cache_api_responses=offline.get('cache_api_responses', defaults.cache_api_responses),
            diagnostics_limit=offline.get('diagnostics_limit', defaults.diagnostics_limit),
            probe_url=offline.get('probe_url', defaults.probe_url),
            probe_interval_online=offline.get('probe_interval_online', defaults.probe_interval_online),
            probe_interval_offline=offline.get('probe_interval_offline', defaults.probe_interval_offline),
            records_path=records.get('path', defaults.records_path),
            records_sync_tag=records.get('sync_tag', defaults.records_sync_tag),
            records_sync_path=records.get('sync_path', defaults.records_sync_path),
            notification_title=notifications.get('title', defaults.notification_title),
            notification_icon=notifications.get('icon', defaults.notification_icon),
            notification_badge=notifications.get('badge', defaults.notification_badge),
            notification_open_path=notifications.get('open_path', defaults.notification_open_path),
        )
        config.apply_env()
        return config

    def apply_env(self) -> None:
        """Override fields from STILLSPACE_* environment variables."""
        self.origin = os.getenv("STILLSPACE_ORIGIN", self.origin).rstrip("/")
        self.upstream_url = os.getenv("STILLSPACE_UPSTREAM_URL", self.upstream_url).rstrip("/")
        self.cache_version = os.getenv("STILLSPACE_CACHE_VERSION", self.cache_version)
        self.cache_backend = os.getenv("STILLSPACE_CACHE_BACKEND", self.cache_backend).lower()
        self.records_path = os.getenv("STILLSPACE_RECORDS_PATH", self.records_path)
        timeout = os.getenv("STILLSPACE_FETCH_TIMEOUT")
        if timeout:
            self.fetch_timeout = float(timeout)


# Global config instance
_config: Optional[StillSpaceConfig] = None


def get_config() -> StillSpaceConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = StillSpaceConfig.from_yaml()
    return _config


def set_config(config: StillSpaceConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
