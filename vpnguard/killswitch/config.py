"""Configuration loading for the killswitch supervisor."""

import configparser
import ipaddress
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping, Optional

from .exceptions import ConfigMissingError, ConfigurationError
from ..logging_utility import logger

DEFAULT_CONFIG_FILE = Path("/etc/openvpn/killswitch.conf")
SECTION = "killswitch"

# Environment variable -> config key
ENV_OVERRIDES = {
    "OPENVPN_CONFIG": "tunnel_config",
    "VPN_DNS": "dns_servers",
    "KILLSWITCH_ENABLED": "killswitch_enabled",
    "AUTO_RECONNECT": "auto_reconnect",
    "RECONNECT_DELAY": "reconnect_delay",
    "CHECK_INTERVAL": "check_interval",
    "ALLOW_LOCAL_NETWORK": "allow_local_network",
    "VPN_STARTUP_TIMEOUT": "startup_timeout",
    "MAX_RECONNECT_ATTEMPTS": "max_reconnect_attempts",
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Config:
    """Supervisor settings, fixed for the lifetime of one run"""
    tunnel_config: Path = Path("/etc/openvpn/client.ovpn")
    dns_servers: tuple[str, ...] = ("1.1.1.1", "1.0.0.1")
    killswitch_enabled: bool = True
    auto_reconnect: bool = True
    reconnect_delay: float = 5.0
    check_interval: float = 10.0
    allow_local_network: Optional[str] = None
    startup_timeout: float = 30.0
    max_reconnect_attempts: int = 0
    vpn_ports: tuple[int, ...] = (1194, 443)
    allow_forwarding: bool = False
    ipv6: bool = True
    log_file: Path = Path("/var/log/openvpn-killswitch.log")
    status_file: Path = Path("/var/run/vpn-status")
    pid_file: Path = Path("/var/run/openvpn-killswitch.pid")
    tunnel_pid_file: Path = Path("/var/run/openvpn.pid")
    resolv_conf: Path = Path("/etc/resolv.conf")

    def __post_init__(self):
        if not self.dns_servers:
            raise ConfigurationError("dns_servers must list at least one server")
        for server in self.dns_servers:
            try:
                ipaddress.ip_address(server)
            except ValueError:
                raise ConfigurationError(f"dns_servers: '{server}' is not an IP address")
        if self.reconnect_delay < 0:
            raise ConfigurationError("reconnect_delay must be >= 0")
        if self.check_interval <= 0:
            raise ConfigurationError("check_interval must be > 0")
        if self.startup_timeout <= 0:
            raise ConfigurationError("startup_timeout must be > 0")
        if self.max_reconnect_attempts < 0:
            raise ConfigurationError("max_reconnect_attempts must be >= 0")
        if self.allow_local_network:
            try:
                ipaddress.ip_network(self.allow_local_network, strict=False)
            except ValueError:
                raise ConfigurationError(
                    f"allow_local_network: '{self.allow_local_network}' is not a CIDR network"
                )
        for port in self.vpn_ports:
            if not 0 < port < 65536:
                raise ConfigurationError(f"vpn_ports: {port} is out of range")


def _parse_bool(key: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ConfigurationError(f"{key}: expected true/false, got '{value}'")


def _parse_list(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _parse_value(key: str, value: str):
    """Convert a raw string from the file or environment to the field's type."""
    value = value.strip().strip('"').strip("'")
    try:
        if key in ("tunnel_config", "log_file", "status_file", "pid_file",
                   "tunnel_pid_file", "resolv_conf"):
            return Path(value)
        if key == "dns_servers":
            return _parse_list(value)
        if key == "vpn_ports":
            return tuple(int(port) for port in _parse_list(value))
        if key in ("killswitch_enabled", "auto_reconnect", "allow_forwarding", "ipv6"):
            return _parse_bool(key, value)
        if key in ("reconnect_delay", "check_interval", "startup_timeout"):
            return float(value)
        if key == "max_reconnect_attempts":
            return int(value)
        if key == "allow_local_network":
            return value or None
    except ValueError:
        raise ConfigurationError(f"{key}: invalid value '{value}'")
    raise ConfigurationError(f"Unknown configuration key '{key}'")


class ConfigProvider:
    """Resolves a Config from defaults, an INI file and the environment.

    Later sources win: built-in defaults, then the ``[killswitch]`` section of
    the file, then environment variables.
    """

    def __init__(self, config_file: Optional[Path] = None,
                 environ: Optional[Mapping[str, str]] = None):
        self.config_file = Path(config_file) if config_file else DEFAULT_CONFIG_FILE
        self.environ = os.environ if environ is None else environ

    def _read_file(self) -> dict:
        if not self.config_file.is_file():
            raise ConfigMissingError(f"Config file not found at {self.config_file}")

        parser = configparser.ConfigParser()
        try:
            parser.read(self.config_file)
        except configparser.Error as e:
            raise ConfigurationError(f"Cannot parse {self.config_file}: {e}")

        if not parser.has_section(SECTION):
            logger.warning(f"No [{SECTION}] section in {self.config_file}, using defaults")
            return {}
        return {key: _parse_value(key, raw) for key, raw in parser.items(SECTION)}

    def _read_environ(self) -> dict:
        values = {}
        for var, key in ENV_OVERRIDES.items():
            raw = self.environ.get(var)
            if raw is not None and raw != "":
                values[key] = _parse_value(key, raw)
        return values

    def load(self) -> Config:
        values = {}
        try:
            values.update(self._read_file())
            logger.info(f"Loaded configuration from {self.config_file}")
        except ConfigMissingError as e:
            logger.warning(f"{e}, using defaults")
        values.update(self._read_environ())
        return replace(Config(), **values)
