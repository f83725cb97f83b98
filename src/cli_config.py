"""Configuration for an analysis run.

Settings come from, in increasing precedence: built-in defaults
(``Constants``), a YAML or JSON configuration file, ``--set KEY=VALUE``
overrides, and explicit CLI flags.
"""

from __future__ import annotations

import json
import logging
import os
import re
import urllib.parse
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional, Sequence

import yaml

from constants import Constants
from common.errors import ConfigError

logger = logging.getLogger(__name__)


@dataclass
class NetworkConfig:
    """Registry transport settings."""

    timeout: float = Constants.REQUEST_TIMEOUT
    retries: int = Constants.HTTP_RETRY_MAX
    retry_base_delay: float = Constants.HTTP_RETRY_BASE_DELAY_SEC
    proxy: Optional[str] = None
    strict_ssl: bool = True
    offline: bool = False


@dataclass
class CacheConfig:
    """Registry metadata cache settings."""

    ttl: float = Constants.HTTP_CACHE_TTL_SEC
    persist_to_disk: bool = False
    path: str = Constants.CACHE_FILE


@dataclass
class AnalysisOptions:
    """What gets analyzed."""

    include_dev_dependencies: bool = True
    skip_optional_peer_deps: bool = False
    exclude_packages: List[str] = field(default_factory=list)
    depth: int = Constants.DEFAULT_DEPTH
    check_deprecations: bool = True
    stale_after_days: int = Constants.STALE_AFTER_DAYS
    check_licenses: bool = True
    allowed_licenses: List[str] = field(default_factory=list)


@dataclass
class AnalyzerConfig:
    """Complete configuration of one run."""

    registry: str = Constants.REGISTRY_URL_NPM
    max_concurrent_requests: int = Constants.MAX_CONCURRENT_REQUESTS
    max_concurrent_units: int = Constants.MAX_CONCURRENT_UNITS
    run_timeout: Optional[float] = None
    network: NetworkConfig = field(default_factory=NetworkConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    analysis: AnalysisOptions = field(default_factory=AnalysisOptions)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AnalyzerConfig":
        """Build and validate a config from a (possibly camelCase) mapping.

        Raises:
            ConfigError: On unknown sections, wrong types or out-of-range values.
        """
        data = _snake_keys(data or {})
        if not isinstance(data, dict):
            raise ConfigError("configuration must be a mapping")
        sections = {"network": NetworkConfig, "cache": CacheConfig, "analysis": AnalysisOptions}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            if key in sections:
                if not isinstance(value, dict):
                    raise ConfigError(f"'{key}' must be a mapping")
                kwargs[key] = _build_section(sections[key], value, key)
            elif key in {f.name for f in fields(cls)}:
                kwargs[key] = value
            else:
                logger.warning("Ignoring unknown configuration key '%s'", key)
        config = cls(**kwargs)
        config.validate()
        return config

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def validate(self) -> None:
        """Check ranges and types; raise ConfigError on the first problem."""
        parsed = urllib.parse.urlparse(str(self.registry))
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigError(f"registry must be an http(s) URL, got '{self.registry}'")
        if not self.registry.endswith("/"):
            self.registry = self.registry + "/"
        self.max_concurrent_requests = _int_in_range("max_concurrent_requests", self.max_concurrent_requests, 1, 50)
        self.max_concurrent_units = _int_in_range("max_concurrent_units", self.max_concurrent_units, 1, 16)
        if self.run_timeout is not None:
            self.run_timeout = _float_in_range("run_timeout", self.run_timeout, 0.1, 86400)
        net = self.network
        net.timeout = _float_in_range("network.timeout", net.timeout, 1, 600)
        net.retries = _int_in_range("network.retries", net.retries, 0, 10)
        net.retry_base_delay = _float_in_range("network.retry_base_delay", net.retry_base_delay, 0, 60)
        net.strict_ssl = _bool("network.strict_ssl", net.strict_ssl)
        net.offline = _bool("network.offline", net.offline)
        self.cache.ttl = _float_in_range("cache.ttl", self.cache.ttl, 0, 7 * 86400)
        self.cache.persist_to_disk = _bool("cache.persist_to_disk", self.cache.persist_to_disk)
        opts = self.analysis
        opts.depth = _int_in_range("analysis.depth", opts.depth, 0, 10)
        opts.stale_after_days = _int_in_range("analysis.stale_after_days", opts.stale_after_days, 1, 36500)
        opts.include_dev_dependencies = _bool("analysis.include_dev_dependencies", opts.include_dev_dependencies)
        opts.skip_optional_peer_deps = _bool("analysis.skip_optional_peer_deps", opts.skip_optional_peer_deps)
        opts.check_deprecations = _bool("analysis.check_deprecations", opts.check_deprecations)
        opts.check_licenses = _bool("analysis.check_licenses", opts.check_licenses)
        if isinstance(opts.exclude_packages, str):
            opts.exclude_packages = [opts.exclude_packages]
        if not isinstance(opts.exclude_packages, list) or not all(isinstance(p, str) for p in opts.exclude_packages):
            raise ConfigError("analysis.exclude_packages must be a list of strings")
        if isinstance(opts.allowed_licenses, str):
            opts.allowed_licenses = [opts.allowed_licenses]
        if not isinstance(opts.allowed_licenses, list) or not all(isinstance(name, str) for name in opts.allowed_licenses):
            raise ConfigError("analysis.allowed_licenses must be a list of strings")


def _snake(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower().replace("-", "_")


def _snake_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {_snake(str(k)): _snake_keys(v) for k, v in value.items()}
    return value


def _build_section(section_cls, values: Dict[str, Any], name: str):
    known = {f.name for f in fields(section_cls)}
    kwargs = {}
    for key, value in values.items():
        if key in known:
            kwargs[key] = value
        else:
            logger.warning("Ignoring unknown configuration key '%s.%s'", name, key)
    return section_cls(**kwargs)


def _int_in_range(name: str, value: Any, low: int, high: int) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be an integer") from exc
    if not low <= number <= high:
        raise ConfigError(f"{name} must be between {low} and {high}, got {number}")
    return number


def _float_in_range(name: str, value: Any, low: float, high: float) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{name} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a number") from exc
    if not low <= number <= high:
        raise ConfigError(f"{name} must be between {low} and {high}, got {number}")
    return number


def _bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    raise ConfigError(f"{name} must be true or false")


def _deep_merge(dest: Dict[str, Any], src: Dict[str, Any]) -> None:
    """Deep-merge src into dest in-place."""
    for k, v in src.items():
        if isinstance(v, dict) and isinstance(dest.get(k), dict):
            _deep_merge(dest[k], v)
        else:
            dest[k] = v


def _coerce_value(text: str) -> Any:
    """Best-effort convert string to JSON/number/bool, else raw string."""
    s = str(text).strip()
    try:
        return json.loads(s)
    except ValueError:
        sl = s.lower()
        if sl in ("true", "yes", "on"):
            return True
        if sl in ("false", "no", "off"):
            return False
        return s


def _apply_dot_path(dct: Dict[str, Any], dot_path: str, value: Any) -> None:
    parts = [p for p in dot_path.split(".") if p]
    if not parts:
        return
    cur = dct
    for key in parts[:-1]:
        if key not in cur or not isinstance(cur.get(key), dict):
            cur[key] = {}
        cur = cur[key]
    cur[parts[-1]] = value


def collect_overrides(pairs: Optional[Sequence[str]]) -> Dict[str, Any]:
    """Turn ``["network.retries=5", ...]`` into a nested override mapping."""
    overrides: Dict[str, Any] = {}
    for item in pairs or []:
        if not isinstance(item, str) or "=" not in item:
            logger.warning("Ignoring malformed override '%s' (expected KEY=VALUE)", item)
            continue
        key, val = item.split("=", 1)
        _apply_dot_path(overrides, _snake(key.strip()), _coerce_value(val.strip()))
    return overrides


def load_config_file(path: str) -> Dict[str, Any]:
    """Read a YAML or JSON configuration file.

    Raises:
        ConfigError: When the file can't be read or doesn't hold a mapping.
    """
    try:
        with open(path, "r", encoding="utf-8") as fh:
            if path.lower().endswith(".json"):
                data = json.load(fh)
            else:
                data = yaml.safe_load(fh)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        raise ConfigError(f"Couldn't read configuration file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file {path} must contain a mapping")
    return data


def discover_config_file(project_root: str) -> Optional[str]:
    """First of ``Constants.CONFIG_FILES`` present in ``project_root``."""
    for name in Constants.CONFIG_FILES:
        candidate = os.path.join(project_root, name)
        if os.path.isfile(candidate):
            return candidate
    return None


def load_config(
    project_root: str,
    config_path: Optional[str] = None,
    overrides: Optional[Sequence[str]] = None,
) -> AnalyzerConfig:
    """Resolve the effective configuration for ``project_root``.

    Args:
        project_root: Project directory, searched for a default config file.
        config_path: Explicit configuration file; takes the place of discovery.
        overrides: ``KEY=VALUE`` strings applied on top of the file.
    """
    data: Dict[str, Any] = {}
    path = config_path or discover_config_file(project_root)
    if path:
        data = _snake_keys(load_config_file(path))
        logger.debug("Loaded configuration from %s", path)
    if overrides:
        _deep_merge(data, collect_overrides(overrides))
    return AnalyzerConfig.from_dict(data)


def apply_cli_overrides(config: AnalyzerConfig, args: Any) -> AnalyzerConfig:
    """Apply explicit CLI flags with highest precedence, then re-validate."""
    if getattr(args, "REGISTRY", None):
        config.registry = args.REGISTRY
    if getattr(args, "OFFLINE", False):
        config.network.offline = True
    if getattr(args, "PROXY", None):
        config.network.proxy = args.PROXY
    if getattr(args, "TIMEOUT", None) is not None:
        config.network.timeout = args.TIMEOUT
    if getattr(args, "RETRIES", None) is not None:
        config.network.retries = args.RETRIES
    if getattr(args, "DEPTH", None) is not None:
        config.analysis.depth = args.DEPTH
    if getattr(args, "NO_DEV", False):
        config.analysis.include_dev_dependencies = False
    if getattr(args, "EXCLUDE", None):
        config.analysis.exclude_packages = list(config.analysis.exclude_packages) + list(args.EXCLUDE)
    if getattr(args, "MAX_REQUESTS", None) is not None:
        config.max_concurrent_requests = args.MAX_REQUESTS
    if getattr(args, "RUN_TIMEOUT", None) is not None:
        config.run_timeout = args.RUN_TIMEOUT
    if getattr(args, "PERSIST_CACHE", False):
        config.cache.persist_to_disk = True
    config.validate()
    return config
