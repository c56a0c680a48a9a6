"""
Configuration module for the group sync.

Loads configuration from a YAML file and environment variables. The file
carries the sync definition (container, mode, rules); environment variables
override any file value and are the place for credentials.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml

from reconciler import DEFAULT_GROUP_DESCRIPTION
from resolution import (
    DynamicResolver,
    GroupResolver,
    GroupSpec,
    MatchPrecedence,
    StaticResolver,
)
from validation import validate_config_document

STATIC_MODE = "static"
DYNAMIC_MODE = "dynamic"


def _parse_bool(value: str) -> bool:
    return value.lower() in ("1", "true", "yes")


# (environment variable, config section, key, converter)
ENV_OVERRIDES: List[Tuple[str, str, str, Callable[[str], Any]]] = [
    ("DIRECTORY_BACKEND", "directory", "backend", str),
    ("LDAP_SERVER", "directory", "server", str),
    ("LDAP_PORT", "directory", "port", int),
    ("LDAP_USE_SSL", "directory", "use_ssl", _parse_bool),
    ("LDAP_USER", "directory", "user", str),
    ("LDAP_PASSWORD", "directory", "password", str),
    ("LDAP_BASE_DN", "directory", "base_dn", str),
    ("DIRECTORY_SNAPSHOT", "directory", "snapshot_file", str),
    ("SYNC_CONTAINER", "sync", "container", str),
    ("SYNC_MODE", "sync", "mode", str),
    ("SYNC_SITE_PREFIX", "sync", "site_prefix", str),
    ("SYNC_NAME_PATTERN", "sync", "name_pattern", str),
    ("SYNC_OS_PREFIX", "sync", "os_prefix", str),
    ("SYNC_MATCH_PRECEDENCE", "sync", "match_precedence", str),
    ("LOG_LEVEL", "logging", "level", str),
    ("LOG_FILE", "logging", "file", str),
]


def env_overrides() -> Dict[str, Dict[str, Any]]:
    """
    Collect config values set through environment variables.

    Returns:
        Nested dict shaped like the config document, e.g.
        ``{"sync": {"container": "OU=..."}}``. Unset or empty variables are
        left out.

    Raises:
        ValueError: If a value cannot be converted (e.g. a non-numeric port).
    """
    overrides: Dict[str, Dict[str, Any]] = {}
    for env_var, section, key, convert in ENV_OVERRIDES:
        value = os.getenv(env_var)
        if value:
            overrides.setdefault(section, {})[key] = convert(value)
    return overrides


def merge_env_overrides(data: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of a config document with environment overrides applied."""
    merged = dict(data)
    for section, values in env_overrides().items():
        current = merged.get(section)
        if current is None:
            merged[section] = dict(values)
        elif isinstance(current, dict):
            merged[section] = {**current, **values}
    return merged


def _apply_section_env(target: Any, section: str) -> None:
    for key, value in env_overrides().get(section, {}).items():
        setattr(target, key, value)


@dataclass
class DirectoryConfig:
    """Directory backend configuration."""

    backend: str = "ldap"
    server: str = "localhost"
    port: Optional[int] = None
    use_ssl: bool = True
    user: str = ""
    password: str = field(default="", repr=False)  # Never log password
    base_dn: str = ""
    page_size: int = 500
    connect_timeout: int = 10
    snapshot_file: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DirectoryConfig":
        return cls(**data)

    def apply_env(self) -> None:
        """Override settings with LDAP_* environment variables when set."""
        _apply_section_env(self, "directory")


@dataclass
class RuleConfig:
    """A static-mode rule: a group and what it matches."""

    group: str
    pattern: Optional[str] = None
    os: Optional[str] = None

    def to_group_spec(self) -> GroupSpec:
        if self.pattern is not None:
            return GroupSpec.from_pattern(self.group, self.pattern)
        return GroupSpec(name=self.group, literal=self.os)


@dataclass
class SyncConfig:
    """What to synchronize and how groups are chosen."""

    container: str = ""
    mode: str = STATIC_MODE
    rules: List[RuleConfig] = field(default_factory=list)
    match_precedence: str = MatchPrecedence.LAST.value
    site_prefix: str = ""
    name_pattern: str = "*"
    os_prefix: Optional[str] = None
    group_description: str = DEFAULT_GROUP_DESCRIPTION

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncConfig":
        data = dict(data)
        data["rules"] = [RuleConfig(**rule) for rule in data.get("rules", [])]
        return cls(**data)

    def apply_env(self) -> None:
        """Override settings with SYNC_* environment variables when set."""
        _apply_section_env(self, "sync")

    def build_resolver(self) -> GroupResolver:
        """
        Build the group resolver for the configured mode.

        Raises:
            ValueError: On an unknown mode, an empty static rule list or an
                invalid pattern.
        """
        if self.mode == DYNAMIC_MODE:
            return DynamicResolver(self.site_prefix)
        if self.mode != STATIC_MODE:
            raise ValueError(
                f"Unknown sync mode: {self.mode}. "
                f"Expected '{STATIC_MODE}' or '{DYNAMIC_MODE}'"
            )
        if not self.rules:
            raise ValueError("Static mode requires at least one rule")
        return StaticResolver(
            [rule.to_group_spec() for rule in self.rules],
            MatchPrecedence(self.match_precedence),
        )


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str = "INFO"
    file: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoggingConfig":
        return cls(**data)

    def apply_env(self) -> None:
        _apply_section_env(self, "logging")


@dataclass
class Config:
    """Main configuration object."""

    directory: DirectoryConfig
    sync: SyncConfig
    logging: LoggingConfig

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """
        Build configuration from a parsed config document.

        Raises:
            ValueError: If the document does not match the config schema.
        """
        is_valid, error = validate_config_document(data)
        if not is_valid:
            raise ValueError(f"Invalid configuration: {error}")
        return cls(
            directory=DirectoryConfig.from_dict(data.get("directory", {})),
            sync=SyncConfig.from_dict(data.get("sync", {})),
            logging=LoggingConfig.from_dict(data.get("logging", {})),
        )

    @classmethod
    def from_file(cls, path: str) -> "Config":
        """
        Load a YAML config file with environment overrides.

        Environment values are merged into the document before validation,
        so a file may leave out settings (e.g. the container) that the
        environment supplies.
        """
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        if isinstance(data, dict):
            data = merge_env_overrides(data)
        return cls.from_dict(data)

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        cfg = cls.default()
        cfg.apply_env()
        return cfg

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            directory=DirectoryConfig(),
            sync=SyncConfig(),
            logging=LoggingConfig(),
        )

    def apply_env(self) -> None:
        self.directory.apply_env()
        self.sync.apply_env()
        self.logging.apply_env()


# Global config instance
config: Optional[Config] = None


def load_config(path: Optional[str] = None) -> Config:
    """
    Load configuration (singleton pattern).

    The file path defaults to the SYNC_CONFIG environment variable; without
    either, configuration comes from the environment alone.
    """
    global config
    if config is None:
        path = path or os.getenv("SYNC_CONFIG")
        config = Config.from_file(path) if path else Config.from_env()
    return config


def get_config() -> Config:
    """Get the current configuration."""
    if config is None:
        return load_config()
    return config


def reset_config() -> None:
    """Reset configuration (mainly for testing)."""
    global config
    config = None
