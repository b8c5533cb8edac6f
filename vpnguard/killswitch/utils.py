"""Utility functions for killswitch management."""

import os
import re
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Iterable, Optional, Tuple

import dns.exception
import dns.resolver
import psutil
import requests

from .command_factory import KillswitchCommandFactory
from .exceptions import CommandError, DependencyMissingError
from ..logging_utility import logger

TUNNEL_INTERFACE_PATTERN = re.compile(r"^(tun|tap)\d+$")
PUBLIC_IP_URL = "https://api.ipify.org"


def run_command(cmd: list[str], check: bool = True, timeout: float = 30) -> Tuple[str, str]:
    """
    Run an external command and return its output.

    Args:
        cmd: Command as list of strings
        check: Whether to raise CommandError on a non-zero exit status
        timeout: Seconds before the command is abandoned

    Returns:
        Tuple of (stdout, stderr)
    """
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=check, timeout=timeout)
        return result.stdout, result.stderr
    except subprocess.CalledProcessError as e:
        raise CommandError(f"Command failed: {' '.join(cmd)}\n{e.stderr}",
                           returncode=e.returncode, stderr=e.stderr or "")
    except subprocess.TimeoutExpired:
        raise CommandError(f"Command timed out after {timeout}s: {' '.join(cmd)}")
    except OSError as e:
        raise CommandError(f"Cannot execute {cmd[0]}: {e}")


def list_tunnel_interfaces() -> list[str]:
    """Names of point-to-point tunnel interfaces currently present."""
    return sorted(name for name in psutil.net_if_stats() if TUNNEL_INTERFACE_PATTERN.match(name))


def interface_exists(interface: str) -> bool:
    return interface in psutil.net_if_stats()


def get_default_interface() -> Optional[str]:
    """Get the name of the interface carrying the default route"""
    try:
        stdout, _ = run_command(KillswitchCommandFactory.show_default_route())
    except CommandError as e:
        logger.warning(f"Could not read default route: {e}")
        return None

    for line in stdout.splitlines():
        fields = line.split()
        if "dev" in fields:
            index = fields.index("dev")
            if index + 1 < len(fields):
                return fields[index + 1]
    return None


def get_public_ip(timeout: float = 5) -> Optional[str]:
    """Public-facing address as seen by an external echo service"""
    try:
        response = requests.get(PUBLIC_IP_URL, timeout=timeout)
        response.raise_for_status()
        return response.text.strip() or None
    except requests.RequestException as e:
        logger.warning(f"Failed to get public IP: {e}")
        return None


def resolve_host(host: str, resolv_conf: Path = Path("/etc/resolv.conf"), lifetime: float = 5.0) -> list[str]:
    """A and AAAA addresses of host using the nameservers in resolv_conf; empty on failure."""
    try:
        resolver = dns.resolver.Resolver(filename=str(resolv_conf))
    except (dns.resolver.NoResolverConfiguration, OSError) as e:
        logger.warning(f"Cannot resolve {host}: {e}")
        return []
    resolver.lifetime = lifetime

    addresses = []
    for rdtype in ("A", "AAAA"):
        try:
            addresses.extend(answer.address for answer in resolver.resolve(host, rdtype))
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            continue
        except dns.exception.DNSException as e:
            logger.warning(f"Failed to resolve {host} ({rdtype}): {e}")
    return addresses


def atomic_write(path: Path, data: bytes, mode: int = 0o644) -> None:
    """Replace path with data so that readers see either the old or the new content."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def check_dependencies(commands: Iterable[str], require_root: bool = True) -> None:
    """Fail fast when a required tool is missing or privileges are insufficient."""
    missing = [cmd for cmd in commands if shutil.which(cmd) is None]
    if missing:
        raise DependencyMissingError(f"Required command not found: {', '.join(missing)}")
    if require_root and os.geteuid() != 0:
        raise DependencyMissingError("The supervisor must be run as root")


def log_vpn_output(log_file: Path, lines: int = 20) -> None:
    """
    Log the last lines of the OpenVPN log file.

    Args:
        log_file: Path to log file
        lines: Number of trailing lines to include
    """
    log_path = Path(log_file)
    if log_path.exists():
        with open(log_path, "r", errors="replace") as f:
            tail = f.readlines()[-lines:]
        logger.error("OpenVPN output:\n" + "".join(tail))
