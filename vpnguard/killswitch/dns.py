"""Resolver configuration pinning with backup and restore."""

import os
import shutil
from pathlib import Path
from typing import Iterable

import dns.resolver

from .command_factory import KillswitchCommandFactory
from .exceptions import CommandError, DNSError
from .utils import atomic_write, run_command
from ..logging_utility import logger

HEADER = "# Generated by vpnguard\n"


class DNSGuard:
    """Pins the resolver to trusted servers and restores the original afterwards.

    The backup is taken once and survives crash-and-retry cycles: a second
    ``pin`` before ``restore`` never overwrites it.
    """

    def __init__(self, resolv_conf: Path = Path("/etc/resolv.conf")):
        self.resolv_conf = Path(resolv_conf)
        self.backup_path = self.resolv_conf.with_name(self.resolv_conf.name + ".backup")
        self.link_marker = self.resolv_conf.with_name(self.resolv_conf.name + ".backup.link")
        self.absent_marker = self.resolv_conf.with_name(self.resolv_conf.name + ".backup.absent")

    @property
    def has_backup(self) -> bool:
        return any(p.exists() for p in (self.backup_path, self.link_marker, self.absent_marker))

    def _set_immutable(self, immutable: bool) -> bool:
        if not self.resolv_conf.exists() or self.resolv_conf.is_symlink():
            return False
        try:
            run_command(KillswitchCommandFactory.set_immutable(self.resolv_conf, immutable))
            return True
        except CommandError as e:
            flag = "set" if immutable else "clear"
            logger.warning(f"Could not {flag} immutable flag on {self.resolv_conf}: {e}")
            return False

    def _backup(self) -> None:
        try:
            if self.resolv_conf.is_symlink():
                # The link target is left untouched, so recreating the link restores it
                self.link_marker.write_text(os.readlink(self.resolv_conf))
            elif self.resolv_conf.exists():
                shutil.copy2(self.resolv_conf, self.backup_path)
            else:
                self.absent_marker.touch()
        except OSError as e:
            raise DNSError(f"Failed to back up {self.resolv_conf}: {e}")
        logger.info("DNS configuration backed up")

    def render(self, servers: Iterable[str]) -> bytes:
        lines = [HEADER, f"# Original DNS backed up to {self.backup_path}\n"]
        lines.extend(f"nameserver {server}\n" for server in servers)
        return "".join(lines).encode()

    def pin(self, servers: Iterable[str]) -> None:
        servers = list(servers)
        logger.info("Setting VPN DNS servers...")
        if not self.has_backup:
            self._backup()

        self._set_immutable(False)
        try:
            if self.resolv_conf.is_symlink():
                self.resolv_conf.unlink()
            atomic_write(self.resolv_conf, self.render(servers))
        except OSError as e:
            raise DNSError(f"Failed to write {self.resolv_conf}: {e}")

        # Make it immutable to prevent other services from changing it
        self._set_immutable(True)
        logger.info(f"VPN DNS servers set: {','.join(servers)}")

    def restore(self) -> None:
        if not self.has_backup:
            logger.debug("No DNS backup present, nothing to restore")
            return

        logger.info("Restoring original DNS configuration...")
        self._set_immutable(False)
        try:
            if self.absent_marker.exists():
                self.resolv_conf.unlink(missing_ok=True)
                self.absent_marker.unlink()
                self.backup_path.unlink(missing_ok=True)
            elif self.link_marker.exists():
                target = self.link_marker.read_text()
                self.resolv_conf.unlink(missing_ok=True)
                os.symlink(target, self.resolv_conf)
                self.link_marker.unlink()
                self.backup_path.unlink(missing_ok=True)
            else:
                os.replace(self.backup_path, self.resolv_conf)
        except OSError as e:
            raise DNSError(f"Failed to restore {self.resolv_conf}: {e}")
        logger.info("Original DNS configuration restored")

    def active_servers(self) -> list[str]:
        """Nameservers currently in effect according to the resolver file."""
        try:
            return [str(ns) for ns in dns.resolver.Resolver(filename=str(self.resolv_conf)).nameservers]
        except (dns.resolver.NoResolverConfiguration, OSError) as e:
            logger.debug(f"Could not read nameservers from {self.resolv_conf}: {e}")
            return []
