"""
Configuration management for depo.

Provides configurable settings for discovery, installation, build integration
and logging. Values come from defaults, then an optional config file, then
DEPO_* environment variables.
"""

import json
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from rich.console import Console

console = Console(stderr=True)


@dataclass
class NetworkConfig:
    """Discovery service configuration."""

    search_url: str = "https://api.github.com/search/repositories"
    user_agent: str = "depo/1.0.0 (C++ package manager)"
    language: Optional[str] = "C++"
    max_results: int = 10
    connect_timeout: float = 10.0
    read_timeout: float = 30.0


@dataclass
class InstallConfig:
    """Layout and timing of dependency installation."""

    deps_dir: str = "deps"
    package_file: str = "package.yaml"
    release_delay_seconds: float = 0.2
    short_hash_length: int = 7


@dataclass
class BuildConfig:
    """Build system integration configuration."""

    backend: str = "cmake"
    cmake_executable: str = "cmake"
    link_target: str = "main"
    includes_file: str = "CMakeIncludes.cmake"
    links_file: str = "CMakeLinks.cmake"
    build_timeout_seconds: int = 1800


@dataclass
class SecurityConfig:
    """Credential validation limits."""

    min_credential_length: int = 8
    max_credential_length: int = 500
    token_file: str = ".depo.env"


@dataclass
class LoggingConfig:
    """Logging and error handling configuration."""

    log_level: str = "WARNING"
    enable_sensitive_data_masking: bool = True


@dataclass
class DepoConfig:
    """Main configuration containing all subsections."""

    network: NetworkConfig = field(default_factory=NetworkConfig)
    install: InstallConfig = field(default_factory=InstallConfig)
    build: BuildConfig = field(default_factory=BuildConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


_SECTIONS = ("network", "install", "build", "security", "logging")

_global_config: Optional[DepoConfig] = None


def validate_config_values(config: DepoConfig) -> List[str]:
    """
    Validate configuration values and return any errors.

    Returns:
        List[str]: List of validation errors (empty if valid)
    """
    errors = []

    if config.network.max_results <= 0:
        errors.append("network.max_results must be positive")
    if config.network.max_results > 100:
        errors.append("network.max_results must be at most 100")
    if config.network.connect_timeout <= 0:
        errors.append("network.connect_timeout must be positive")
    if config.network.read_timeout <= 0:
        errors.append("network.read_timeout must be positive")

    if not config.install.deps_dir or Path(config.install.deps_dir).is_absolute():
        errors.append("install.deps_dir must be a relative directory name")
    if not config.install.package_file:
        errors.append("install.package_file must not be empty")
    if config.install.release_delay_seconds < 0:
        errors.append("install.release_delay_seconds must be non-negative")
    if not (4 <= config.install.short_hash_length <= 40):
        errors.append("install.short_hash_length must be between 4 and 40")

    if not config.build.link_target:
        errors.append("build.link_target must not be empty")
    if config.build.build_timeout_seconds <= 0:
        errors.append("build.build_timeout_seconds must be positive")

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
            if config_path.suffix.lower() in [".yaml", ".yml"]:
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
        Path.cwd() / ".depo.json",
        Path.cwd() / ".depo.yaml",
        Path.cwd() / ".depo.yml",
        Path.home() / ".config" / "depo" / "config.json",
        Path.home() / ".config" / "depo" / "config.yaml",
    ]

    for location in locations:
        if location.exists():
            return location

    return None


def load_environment_overrides(config: DepoConfig) -> None:
    """Apply DEPO_* environment variable overrides."""

    def get_env_int(key: str) -> Optional[int]:
        try:
            return int(os.environ[key]) if key in os.environ else None
        except ValueError:
            console.print(f"⚠️  Invalid integer value for {key}, using default", style="yellow")
            return None

    def get_env_float(key: str) -> Optional[float]:
        try:
            return float(os.environ[key]) if key in os.environ else None
        except ValueError:
            console.print(f"⚠️  Invalid float value for {key}, using default", style="yellow")
            return None

    if search_url := os.environ.get("DEPO_SEARCH_URL"):
        config.network.search_url = search_url
    if user_agent := os.environ.get("DEPO_USER_AGENT"):
        config.network.user_agent = user_agent
    if (max_results := get_env_int("DEPO_MAX_RESULTS")) is not None:
        config.network.max_results = max_results
    if (read_timeout := get_env_float("DEPO_READ_TIMEOUT")) is not None:
        config.network.read_timeout = read_timeout

    if deps_dir := os.environ.get("DEPO_DEPS_DIR"):
        config.install.deps_dir = deps_dir
    if (delay := get_env_float("DEPO_RELEASE_DELAY")) is not None:
        config.install.release_delay_seconds = delay

    if cmake := os.environ.get("DEPO_CMAKE"):
        config.build.cmake_executable = cmake
    if link_target := os.environ.get("DEPO_LINK_TARGET"):
        config.build.link_target = link_target

    if log_level := os.environ.get("DEPO_LOG_LEVEL"):
        config.logging.log_level = log_level.upper()


def apply_config_section(config: Any, section_data: Dict[str, Any], section_name: str) -> None:
    """Apply configuration from dictionary to config section."""
    for key, value in section_data.items():
        if hasattr(config, key):
            setattr(config, key, value)
        else:
            console.print(f"⚠️  Unknown config key in {section_name}: {key}", style="yellow")


def load_config() -> DepoConfig:
    """Load configuration from file and environment."""
    global _global_config

    if _global_config is not None:
        return _global_config

    config = DepoConfig()

    config_file = find_config_file()
    if config_file:
        file_config = load_config_file(config_file)
        if file_config:
            for section in _SECTIONS:
                if isinstance(file_config.get(section), dict):
                    apply_config_section(getattr(config, section), file_config[section], section)

    load_environment_overrides(config)

    validation_errors = validate_config_values(config)
    if validation_errors:
        console.print("⚠️  Configuration validation errors:", style="red")
        for error in validation_errors:
            console.print(f"  • {error}", style="red")
        console.print("Using default values for invalid settings.", style="yellow")
        config = DepoConfig()

    _global_config = config
    return config


def get_config() -> DepoConfig:
    """Get the global configuration instance."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def set_config(config: DepoConfig) -> None:
    """Install an explicit configuration (used by tests and embedding hosts)."""
    global _global_config
    _global_config = config


def reset_config() -> None:
    """Reset the global configuration (useful for testing)."""
    global _global_config
    _global_config = None


def create_sample_config() -> str:
    """Generate a sample configuration with every default spelled out."""
    return json.dumps(DepoConfig().to_dict(), indent=2)
