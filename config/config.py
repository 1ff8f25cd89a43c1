"""
Unified Configuration Management System
Centralizes backend binary locations, probe limits and service settings with
validation and environment support
"""

import os
import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, field


# Environment variables naming the backend binaries
P4_BIN_ENV = "VCS_SYNC_P4_BIN"
GIT_BIN_ENV = "VCS_SYNC_GIT_BIN"


class ConfigValidationError(Exception):
    """Raised when configuration validation fails"""

    pass


@dataclass
class BackendConfig:
    """Locations of the version control binaries"""

    p4_bin: Optional[str] = None
    git_bin: Optional[str] = None

    @classmethod
    def from_environment(cls, environ: Optional[Dict[str, str]] = None) -> "BackendConfig":
        """Read binary locations from the process environment"""
        environ = os.environ if environ is None else environ
        return cls(
            p4_bin=environ.get(P4_BIN_ENV) or None,
            git_bin=environ.get(GIT_BIN_ENV) or None,
        )


@dataclass
class ProbeConfig:
    """File probe limits"""

    # Bytes sampled from the start of a file for binary detection
    binary_check_bytes: int = 4 * 1024 * 1024
    # Read size used while hashing
    hash_chunk_size: int = 1024 * 1024


@dataclass
class ServiceConfig:
    """Process runner settings"""

    # Longest output line the stream readers accept
    stream_line_limit: int = 1024 * 1024


@dataclass
class UnifiedConfig:
    """Main configuration container"""

    # Sub-configurations
    backends: BackendConfig = field(default_factory=BackendConfig)
    probe: ProbeConfig = field(default_factory=ProbeConfig)
    service: ServiceConfig = field(default_factory=ServiceConfig)

    # Environment settings
    debug: bool = False
    log_level: str = "INFO"

    # Application metadata
    version: str = "1.0.0"


class ConfigManager:
    """Manages configuration loading, validation, and access"""

    def __init__(
        self,
        config_dir: Optional[Path] = None,
        environ: Optional[Dict[str, str]] = None,
    ):
        self.config_dir = config_dir or Path(__file__).parent
        self.environ = os.environ if environ is None else environ
        self.config: Optional[UnifiedConfig] = None
        self.logger = logging.getLogger("ConfigManager")

        # Load configuration
        self._load_config()

    def _load_config(self):
        """Load configuration from files and environment"""
        # Start with default configuration
        self.config = UnifiedConfig()

        # Apply user overrides
        self._apply_user_overrides()

        # Apply environment overrides
        self._apply_environment_overrides()

        # Validate configuration
        self._validate_config()

    def _apply_user_overrides(self):
        """Apply user settings from user_settings.json"""
        user_settings_file = self.config_dir / "user_settings.json"

        if not user_settings_file.exists():
            return

        try:
            with open(user_settings_file, "r", encoding="utf-8") as f:
                user_settings = json.load(f)

            self._apply_settings_dict(user_settings)
            self.logger.info("Applied user settings overrides")

        except (json.JSONDecodeError, FileNotFoundError) as e:
            self.logger.warning(f"Could not load user settings: {e}")

    def _apply_environment_overrides(self):
        """Apply environment-specific overrides"""
        env = self.environ

        # Backend binaries are resolved once, here
        backends = BackendConfig.from_environment(env)
        if backends.p4_bin:
            self.config.backends.p4_bin = backends.p4_bin
        if backends.git_bin:
            self.config.backends.git_bin = backends.git_bin

        # Debug mode
        if env.get("DEBUG") is not None:
            self.config.debug = env.get("DEBUG").lower() in ("true", "1", "yes", "on")

        # Log level
        if env.get("LOG_LEVEL"):
            self.config.log_level = env.get("LOG_LEVEL").upper()

        # Binary detection sample size
        raw_check = env.get("VCS_SYNC_BINARY_CHECK_BYTES")
        if raw_check:
            try:
                self.config.probe.binary_check_bytes = int(raw_check.strip())
            except ValueError:
                self.logger.warning(
                    f"Ignoring non-numeric VCS_SYNC_BINARY_CHECK_BYTES: {raw_check}"
                )

    def _apply_settings_dict(self, settings: Dict[str, Any]):
        """Apply settings from a dictionary using dot notation"""
        for key, value in settings.items():
            self._set_nested_value(self.config, key, value)

    def _set_nested_value(self, obj: Any, key_path: str, value: Any):
        """Set a nested value using dot notation (e.g., 'backends.git_bin')"""
        keys = key_path.split(".")
        current = obj

        # Navigate to the parent object
        for key in keys[:-1]:
            if hasattr(current, key):
                current = getattr(current, key)
            else:
                self.logger.warning(
                    f"Unknown config path: {'.'.join(keys[:keys.index(key)+1])}"
                )
                return

        final_key = keys[-1]
        if hasattr(current, final_key):
            setattr(current, final_key, value)
        else:
            self.logger.warning(f"Unknown config key: {key_path}")

    def _validate_config(self):
        """Validate the loaded configuration"""
        if self.config.probe.binary_check_bytes <= 0:
            raise ConfigValidationError("Binary check size must be positive")
        if self.config.probe.hash_chunk_size <= 0:
            raise ConfigValidationError("Hash chunk size must be positive")
        if self.config.service.stream_line_limit <= 0:
            raise ConfigValidationError("Stream line limit must be positive")

        if not self.config.backends.p4_bin:
            self.logger.debug(f"{P4_BIN_ENV} is not set; Perforce projects unavailable")
        if not self.config.backends.git_bin:
            self.logger.debug(f"{GIT_BIN_ENV} is not set; Git projects unavailable")

        self.logger.debug("Configuration validation completed")

    def get_config(self) -> UnifiedConfig:
        """Get the current configuration"""
        if self.config is None:
            raise RuntimeError("Configuration not loaded")
        return self.config

    def reload_config(self):
        """Reload configuration from files and environment"""
        self._load_config()


# Global configuration manager instance
_config_manager: Optional[ConfigManager] = None


def initialize_config(
    config_dir: Optional[Path] = None, environ: Optional[Dict[str, str]] = None
) -> ConfigManager:
    """Initialize the global configuration manager"""
    global _config_manager
    _config_manager = ConfigManager(config_dir, environ)
    return _config_manager


def get_config() -> UnifiedConfig:
    """Get the current configuration"""
    if _config_manager is None:
        # Auto-initialize with default settings
        initialize_config()
    return _config_manager.get_config()


def get_config_manager() -> ConfigManager:
    """Get the configuration manager"""
    if _config_manager is None:
        initialize_config()
    return _config_manager


def reload_config():
    """Reload configuration from files and environment"""
    if _config_manager is not None:
        _config_manager.reload_config()


# Convenience functions for common access patterns
def get_backend_config() -> BackendConfig:
    """Get backend binary configuration"""
    return get_config().backends


def get_probe_config() -> ProbeConfig:
    """Get file probe configuration"""
    return get_config().probe


def get_service_config() -> ServiceConfig:
    """Get process runner configuration"""
    return get_config().service
