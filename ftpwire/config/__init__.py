"""Configuration management for ftpwire."""

from .base import Config, BaseRemoteConfig, ConfigError, RemoteNotFoundError, ValidationError
from .remotes import FtpConfig, ProxyConfig

__all__ = [
    "Config",
    "BaseRemoteConfig",
    "ConfigError",
    "RemoteNotFoundError",
    "ValidationError",
    "FtpConfig",
    "ProxyConfig",
]
