from dataclasses import dataclass
from typing import Dict, Any, Optional
from urllib.parse import urlparse, unquote

from .base import BaseRemoteConfig, ValidationError

DEFAULT_PORT = 21
DEFAULT_USERNAME = "anonymous"
DEFAULT_PASSWORD = "@anonymous"


@dataclass
class ProxyConfig:
    """SOCKS5 proxy configuration."""

    host: str
    port: int = 1080
    username: Optional[str] = None
    password: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProxyConfig":
        if "host" not in data:
            raise ValidationError("Proxy configuration requires 'host' field")

        return cls(
            host=data["host"],
            port=data.get("port", 1080),
            username=data.get("username"),
            password=data.get("password"),
        )

    def validate(self) -> None:
        if not self.host:
            raise ValidationError("Proxy host cannot be empty")

        if not isinstance(self.port, int) or self.port < 1 or self.port > 65535:
            raise ValidationError("Proxy port must be an integer between 1 and 65535")


def _validate_timeout(value: Any, label: str) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ValidationError(f"{label} must be a non-negative number of seconds")


@dataclass
class FtpConfig(BaseRemoteConfig):
    host: str
    port: int = DEFAULT_PORT
    username: str = DEFAULT_USERNAME
    password: str = DEFAULT_PASSWORD
    encoding: str = "utf-8"
    connect_timeout: float = 30.0
    data_timeout: float = 600.0
    keepalive_interval: float = 30.0
    use_list: bool = False
    proxy: Optional[ProxyConfig] = None

    @classmethod
    def from_dict(cls, name: str, data: Dict[str, Any]) -> "FtpConfig":
        if "host" not in data:
            raise ValidationError("FTP configuration requires 'host' field")

        proxy = None
        if "proxy" in data and isinstance(data["proxy"], dict):
            proxy = ProxyConfig.from_dict(data["proxy"])

        return cls(
            name=name,
            type="ftp",
            host=data["host"],
            port=data.get("port", DEFAULT_PORT),
            username=data.get("username", DEFAULT_USERNAME),
            password=data.get("password", DEFAULT_PASSWORD),
            encoding=data.get("encoding", "utf-8"),
            connect_timeout=data.get("connect_timeout", 30.0),
            data_timeout=data.get("data_timeout", 600.0),
            keepalive_interval=data.get("keepalive_interval", 30.0),
            use_list=data.get("use_list", False),
            proxy=proxy,
        )

    @classmethod
    def from_url(cls, url: str, name: str = "") -> "FtpConfig":
        """Build a configuration from ``ftp://[user[:pass]@]host[:port]``.

        Raises:
            ValidationError: If the URL is not an ftp:// URL with a host
        """
        parsed = urlparse(url)
        if parsed.scheme.lower() != "ftp":
            raise ValidationError(f"Unsupported URL scheme '{parsed.scheme}'")
        if not parsed.hostname:
            raise ValidationError(f"URL '{url}' has no host")

        try:
            port = parsed.port or DEFAULT_PORT
        except ValueError as e:
            raise ValidationError(f"Invalid port in URL '{url}': {e}")

        return cls(
            name=name or parsed.hostname,
            type="ftp",
            host=parsed.hostname,
            port=port,
            username=unquote(parsed.username) if parsed.username else DEFAULT_USERNAME,
            password=unquote(parsed.password) if parsed.password else DEFAULT_PASSWORD,
        )

    def validate(self) -> None:
        if self.type != "ftp":
            raise ValidationError(f"Expected type 'ftp', got '{self.type}'")

        if not self.host:
            raise ValidationError("FTP host cannot be empty")

        if not isinstance(self.port, int) or self.port < 1 or self.port > 65535:
            raise ValidationError("FTP port must be an integer between 1 and 65535")

        _validate_timeout(self.connect_timeout, "Connect timeout")
        _validate_timeout(self.data_timeout, "Data timeout")
        _validate_timeout(self.keepalive_interval, "Keep-alive interval")

        if not isinstance(self.use_list, bool):
            raise ValidationError("use_list setting must be a boolean")

        if self.proxy:
            self.proxy.validate()
