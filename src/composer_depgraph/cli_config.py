"""
Configuration management for composer-depgraph.

Settings come from dataclass defaults, then an optional config file
(JSON or YAML), then environment variables.
"""

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from rich.console import Console

console = Console(stderr=True)

ENV_PREFIX = "COMPOSER_DEPGRAPH_"


@dataclass
class DiscoveryConfig:
    """What to look for and how to label it."""

    organization: Optional[str] = None
    token: Optional[str] = field(default=None, repr=False)
    manifest_filename: str = "composer.json"
    lock_filename: str = "composer.lock"
    placeholder_version: str = "dev-main"
    active_window_days: int = 14
    fail_on_empty: bool = False


@dataclass
class NetworkConfig:
    """Forge API access configuration."""

    api_url: str = "https://api.github.com"
    host_marker: str = "github.com"
    user_agent: str = "composer-depgraph/1.0.0"
    timeout_seconds: float = 10.0
    rate_limit: float = 10.0
    tags_per_page: int = 100


@dataclass
class SecurityConfig:
    """Credential validation limits."""

    max_credential_length: int = 500
    min_credential_length: int = 8


@dataclass
class LoggingConfig:
    """Logging and error handling configuration."""

    log_level: str = "WARNING"
    enable_json: bool = True


@dataclass
class ComprehensiveConfig:
    """Main configuration containing all subsections."""

    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def to_dict(self, redact: bool = True) -> Dict[str, Any]:
        data = asdict(self)
        if redact and data["discovery"].get("token"):
            data["discovery"]["token"] = "[REDACTED]"
        return data


# Global configuration instance
_global_config: Optional[ComprehensiveConfig] = None


def validate_config_values(config: ComprehensiveConfig) -> List[str]:
    """
    Validate configuration values and return any errors.

    Args:
        config: Configuration to validate

    Returns:
        List[str]: List of validation errors (empty if valid)
    """
    errors = []

    if not config.discovery.manifest_filename:
        errors.append("discovery.manifest_filename must not be empty")
    if not config.discovery.lock_filename:
        errors.append("discovery.lock_filename must not be empty")
    if not config.discovery.placeholder_version:
        errors.append("discovery.placeholder_version must not be empty")
    if config.discovery.active_window_days <= 0:
        errors.append("discovery.active_window_days must be positive")

    if not config.network.api_url.startswith(("http://", "https://")):
        errors.append("network.api_url must be an http(s) URL")
    if not config.network.host_marker:
        errors.append("network.host_marker must not be empty")
    if config.network.timeout_seconds <= 0:
        errors.append("network.timeout_seconds must be positive")
    if config.network.rate_limit <= 0:
        errors.append("network.rate_limit must be positive")
    if not (1 <= config.network.tags_per_page <= 100):
        errors.append("network.tags_per_page must be between 1 and 100")

    if config.security.min_credential_length <= 0:
        errors.append("security.min_credential_length must be positive")
    if config.security.min_credential_length > config.security.max_credential_length:
        errors.append("security.min_credential_length must be <= max_credential_length")

    return errors


def load_config_file(config_path: Path) -> Optional[Dict[str, Any]]:
    """Load config from a JSON or YAML file."""
    if not config_path.exists():
        return None

    try:
        with open(config_path, encoding="utf-8") as f:
            if config_path.suffix.lower() in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except (OSError, ValueError, yaml.YAMLError) as e:
        console.print(f"⚠️  Error loading config from {config_path}: {e}", style="yellow")
        return None

    if not isinstance(data, dict):
        console.print(f"⚠️  Ignoring config {config_path}: not a mapping", style="yellow")
        return None
    return data


def find_config_file() -> Optional[Path]:
    """Find config file in standard locations."""
    locations = [
        Path.cwd() / ".composer-depgraph.json",
        Path.cwd() / ".composer-depgraph.yaml",
        Path.cwd() / ".composer-depgraph.yml",
        Path.home() / ".config" / "composer-depgraph" / "config.json",
        Path.home() / ".config" / "composer-depgraph" / "config.yaml",
    ]

    for location in locations:
        if location.exists():
            return location

    return None


def load_environment_overrides(config: ComprehensiveConfig) -> None:
    """Apply ``COMPOSER_DEPGRAPH_*`` environment variables (and ``GITHUB_TOKEN``)."""

    def get_env_bool(key: str, default: bool) -> bool:
        value = os.environ.get(key, "").lower()
        return value in ("true", "1", "yes", "on") if value else default

    def get_env_number(key: str, cast):
        if key not in os.environ:
            return None
        try:
            return cast(os.environ[key])
        except ValueError:
            console.print(f"⚠️  Invalid value for {key}, using default", style="yellow")
            return None

    token = os.environ.get(f"{ENV_PREFIX}TOKEN") or os.environ.get("GITHUB_TOKEN")
    if token:
        config.discovery.token = token.strip()
    if organization := os.environ.get(f"{ENV_PREFIX}ORGANIZATION"):
        config.discovery.organization = organization
    if window := get_env_number(f"{ENV_PREFIX}ACTIVE_WINDOW_DAYS", int):
        config.discovery.active_window_days = window
    config.discovery.fail_on_empty = get_env_bool(
        f"{ENV_PREFIX}FAIL_ON_EMPTY", config.discovery.fail_on_empty
    )

    if api_url := os.environ.get(f"{ENV_PREFIX}API_URL"):
        config.network.api_url = api_url
    if host_marker := os.environ.get(f"{ENV_PREFIX}HOST_MARKER"):
        config.network.host_marker = host_marker
    if timeout := get_env_number(f"{ENV_PREFIX}TIMEOUT", float):
        config.network.timeout_seconds = timeout
    if rate_limit := get_env_number(f"{ENV_PREFIX}RATE_LIMIT", float):
        config.network.rate_limit = rate_limit

    if log_level := os.environ.get(f"{ENV_PREFIX}LOG_LEVEL"):
        config.logging.log_level = log_level.upper()


def apply_config_section(config: Any, section_data: Dict[str, Any], section_name: str) -> None:
    """Apply configuration from dictionary to config section."""
    for key, value in section_data.items():
        if hasattr(config, key):
            setattr(config, key, value)
        else:
            console.print(f"⚠️  Unknown config key in {section_name}: {key}", style="yellow")


def load_config(config_path: Optional[Path] = None) -> ComprehensiveConfig:
    """Load configuration from file and environment."""
    global _global_config

    if _global_config is not None and config_path is None:
        return _global_config

    config = ComprehensiveConfig()

    config_file = config_path or find_config_file()
    if config_file:
        file_config = load_config_file(config_file)
        if file_config:
            for section_name in ("discovery", "network", "security", "logging"):
                section_data = file_config.get(section_name)
                if isinstance(section_data, dict):
                    apply_config_section(
                        getattr(config, section_name), section_data, section_name
                    )

    load_environment_overrides(config)

    validation_errors = validate_config_values(config)
    if validation_errors:
        console.print("⚠️  Configuration validation errors:", style="red")
        for error in validation_errors:
            console.print(f"  • {error}", style="red")
        console.print("Using default values for invalid settings.", style="yellow")
        config = _restore_invalid_defaults(config, validation_errors)

    _global_config = config
    return config


def _restore_invalid_defaults(
    config: ComprehensiveConfig, validation_errors: List[str]
) -> ComprehensiveConfig:
    defaults = ComprehensiveConfig()
    for error in validation_errors:
        section_name, _, rest = error.partition(".")
        key = rest.split(" ", 1)[0]
        section = getattr(config, section_name, None)
        if section is not None and hasattr(section, key):
            setattr(section, key, getattr(getattr(defaults, section_name), key))
    return config


def get_config() -> ComprehensiveConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _global_config
    _global_config = None


def create_sample_config() -> str:
    """Generate a sample configuration file (token deliberately left out)."""
    sample = ComprehensiveConfig().to_dict(redact=False)
    sample["discovery"].pop("token", None)
    sample["discovery"]["organization"] = "my-org"
    return json.dumps(sample, indent=2)
