"""Configuration management for the onetime key ledger."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Any, Optional, List, Tuple
from enum import Enum
import logging
import os


class ConfigProfile(Enum):
    """Named configuration profiles."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"


@dataclass
class LedgerConfig:
    """Key history persistence settings."""

    include_digest: bool = True
    verify_digest_on_restore: bool = True
    digest_size: int = 32


@dataclass
class LockConfig:
    """Exclusive access settings for ledger writers."""

    timeout: float = 5.0
    retry_delays: Tuple[float, ...] = (0.05, 0.1, 0.2, 0.5)
    lease_seconds: float = 300.0  # 5 minutes


@dataclass
class KeyExchangeConfig:
    """Key exchange sizing hints."""

    default_segment_size: int = 64 * 1024  # 64KB
    low_key_threshold: int = 1024


@dataclass
class LogConfig:
    """Logging settings."""

    level: str = "WARNING"


@dataclass
class ProfileConfig:
    """Configuration bundle for a profile."""

    name: ConfigProfile
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    lock: LockConfig = field(default_factory=LockConfig)
    key_exchange: KeyExchangeConfig = field(default_factory=KeyExchangeConfig)
    log: LogConfig = field(default_factory=LogConfig)

    @classmethod
    def development(cls) -> ProfileConfig:
        """Create development profile configuration."""
        return cls(
            name=ConfigProfile.DEVELOPMENT,
            lock=LockConfig(timeout=1.0, lease_seconds=30.0),
            key_exchange=KeyExchangeConfig(default_segment_size=4 * 1024, low_key_threshold=256),
            log=LogConfig(level="DEBUG"),
        )

    @classmethod
    def production(cls) -> ProfileConfig:
        """Create production profile configuration."""
        return cls(name=ConfigProfile.PRODUCTION)


class Config:
    """
    Main configuration manager for the key ledger.

    Holds one configuration bundle per profile and supports custom values and
    environment overrides on top of the active profile.
    """

    ENV_OVERRIDES: Dict[str, Tuple[str, str, type]] = {
        "ONETIME_LOG_LEVEL": ("log", "level", str),
        "ONETIME_LOCK_TIMEOUT": ("lock", "timeout", float),
        "ONETIME_LOW_KEY_THRESHOLD": ("key_exchange", "low_key_threshold", int),
    }

    def __init__(self, profile: ConfigProfile = ConfigProfile.PRODUCTION) -> None:
        """
        Initialize configuration manager.

        Args:
            profile: Profile to use for default configurations.
        """
        self.profile = profile
        self._profile_configs: Dict[ConfigProfile, ProfileConfig] = {}
        self._custom_config: Dict[str, Any] = {}
        self._load_defaults()

    def _load_defaults(self) -> None:
        """Load default profile configurations."""
        self._profile_configs = {
            ConfigProfile.DEVELOPMENT: ProfileConfig.development(),
            ConfigProfile.PRODUCTION: ProfileConfig.production(),
        }

    def get_profile_config(self, profile: Optional[ConfigProfile] = None) -> ProfileConfig:
        """
        Get configuration for specified profile.

        Args:
            profile: Profile. If None, uses current profile.

        Returns:
            Profile configuration object.
        """
        profile = profile or self.profile
        if profile not in self._profile_configs:
            profile = ConfigProfile.PRODUCTION
        return self._profile_configs[profile]

    @property
    def ledger(self) -> LedgerConfig:
        return self.get_profile_config().ledger

    @property
    def lock(self) -> LockConfig:
        return self.get_profile_config().lock

    @property
    def key_exchange(self) -> KeyExchangeConfig:
        return self.get_profile_config().key_exchange

    @property
    def log(self) -> LogConfig:
        return self.get_profile_config().log

    def set_custom_config(self, key: str, value: Any) -> None:
        """
        Set custom configuration value.

        Args:
            key: Configuration key.
            value: Configuration value.
        """
        self._custom_config[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value.

        Checks custom config first, then the active profile. Dotted keys such
        as ``"lock.timeout"`` address a field of a settings group.

        Args:
            key: Configuration key.
            default: Default value if key not found.

        Returns:
            Configuration value or default.
        """
        if key in self._custom_config:
            return self._custom_config[key]

        target: Any = self.get_profile_config()
        for part in key.split("."):
            if not hasattr(target, part):
                return default
            target = getattr(target, part)
        return target

    def get_from_environment(self, key: str, env_var: str, default: Any = None) -> Any:
        """
        Get configuration value from environment variable or config.

        Args:
            key: Configuration key.
            env_var: Environment variable name.
            default: Default value.

        Returns:
            Configuration value from environment or config.
        """
        env_value = os.getenv(env_var)
        if env_value is not None:
            return env_value
        return self.get(key, default)

    def apply_environment(self) -> None:
        """
        Apply the ``ONETIME_*`` environment overrides to the active profile.

        Raises:
            ValueError: If an override cannot be converted to its field type.
        """
        profile_config = self.get_profile_config()
        for env_var, (group, name, cast) in self.ENV_OVERRIDES.items():
            raw = os.getenv(env_var)
            if raw is None:
                continue
            try:
                value = cast(raw)
            except ValueError as e:
                raise ValueError(f"invalid value for {env_var}: {raw!r}") from e
            setattr(getattr(profile_config, group), name, value)

    def validate(self) -> List[str]:
        """
        Validate current configuration.

        Returns:
            List of validation errors. Empty if valid.
        """
        errors = []
        profile_config = self.get_profile_config()

        if not (1 <= profile_config.ledger.digest_size <= 64):
            errors.append("digest_size must be in range 1..64")

        lock = profile_config.lock
        if lock.timeout < 0:
            errors.append("lock timeout must be non-negative")
        if lock.lease_seconds <= 0:
            errors.append("lease_seconds must be positive")
        if any(delay < 0 for delay in lock.retry_delays):
            errors.append("retry_delays must be non-negative")

        kex = profile_config.key_exchange
        if kex.default_segment_size <= 0:
            errors.append("default_segment_size must be positive")
        if kex.low_key_threshold < 0:
            errors.append("low_key_threshold must be non-negative")

        if not isinstance(logging.getLevelName(profile_config.log.level.upper()), int):
            errors.append(f"unknown log level: {profile_config.log.level}")

        return errors


def configure_logging(config: Optional[Config] = None) -> logging.Logger:
    """
    Apply the configured log level to the ``onetime`` logger.

    Args:
        config: Configuration manager. If None, a production config is used.

    Returns:
        The package logger.
    """
    config = config or Config()
    logger = logging.getLogger("onetime")
    logger.setLevel(config.log.level.upper())
    return logger
