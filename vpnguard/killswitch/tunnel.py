"""OpenVPN process lifecycle and tunnel interface detection."""

import threading
from pathlib import Path
from typing import Optional

import psutil

from .command_factory import KillswitchCommandFactory
from .config import Config
from .exceptions import CommandError, ShutdownRequested, TunnelStartError, TunnelStartReason
from .models import TunnelHandle
from .utils import interface_exists, list_tunnel_interfaces, log_vpn_output, run_command
from ..logging_utility import logger

PROCESS_NAME = "openvpn"


class TunnelProcessSupervisor:
    """Starts, health-checks and stops the external OpenVPN client.

    The supervisor owns the TunnelHandle it returns from ``launch``; callers
    only hand it back to ``is_alive`` and ``terminate``.
    """

    def __init__(self, log_file: Path, pid_file: Path, tunnel_config: Optional[Path] = None,
                 stop_event: Optional[threading.Event] = None,
                 poll_interval: float = 1.0, grace_period: float = 2.0):
        self.log_file = Path(log_file)
        self.pid_file = Path(pid_file)
        self.stop_event = stop_event or threading.Event()
        self.poll_interval = poll_interval
        self.grace_period = grace_period
        self.handle: Optional[TunnelHandle] = None
        self._config_path: Optional[Path] = Path(tunnel_config) if tunnel_config else None

    def _matching_processes(self) -> list[psutil.Process]:
        """OpenVPN processes started with our config file"""
        if self._config_path is None:
            return []
        config = str(self._config_path)
        matches = []
        for proc in psutil.process_iter(["name", "cmdline"]):
            try:
                if proc.info["name"] == PROCESS_NAME and config in (proc.info["cmdline"] or []):
                    matches.append(proc)
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
        return matches

    def _stop_process(self, proc: psutil.Process) -> None:
        try:
            proc.terminate()
            try:
                proc.wait(timeout=self.grace_period)
            except psutil.TimeoutExpired:
                logger.warning(f"OpenVPN (PID {proc.pid}) ignored SIGTERM, killing")
                proc.kill()
                proc.wait(timeout=self.grace_period)
        except psutil.NoSuchProcess:
            pass

    def _read_pid(self) -> Optional[int]:
        try:
            return int(self.pid_file.read_text().strip())
        except (OSError, ValueError):
            return None

    @staticmethod
    def _process_running(pid: int) -> bool:
        try:
            return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
        except psutil.NoSuchProcess:
            return False

    def launch(self, config: Config) -> TunnelHandle:
        """Start OpenVPN and wait for its tunnel interface to appear."""
        tunnel_config = Path(config.tunnel_config)
        if not tunnel_config.is_file():
            raise TunnelStartError(TunnelStartReason.CONFIG_MISSING,
                                   f"OpenVPN config file not found: {tunnel_config}")

        self._config_path = tunnel_config
        for proc in self._matching_processes():
            logger.info(f"Stopping leftover OpenVPN process (PID {proc.pid})")
            self._stop_process(proc)
        self.handle = None
        self.pid_file.unlink(missing_ok=True)

        logger.info(f"Starting OpenVPN using config: {tunnel_config}")
        try:
            run_command(KillswitchCommandFactory.start_vpn(tunnel_config, self.log_file, self.pid_file))
        except CommandError as e:
            log_vpn_output(self.log_file)
            raise TunnelStartError(TunnelStartReason.PROCESS_FAILED, f"Failed to start OpenVPN: {e}")

        attempts = max(1, int(config.startup_timeout / self.poll_interval))
        logger.info("Waiting for tunnel interface...")
        for i in range(attempts):
            pid = self._read_pid()
            if pid is not None and not self._process_running(pid):
                log_vpn_output(self.log_file)
                raise TunnelStartError(TunnelStartReason.PROCESS_FAILED,
                                       f"OpenVPN (PID {pid}) exited during startup")

            interfaces = list_tunnel_interfaces()
            if pid is not None and interfaces:
                self.handle = TunnelHandle(pid=pid, interface=interfaces[0])
                logger.info(f"VPN connected on interface: {self.handle.interface} (PID {pid})")
                return self.handle

            if self.stop_event.wait(self.poll_interval):
                raise ShutdownRequested("Stop requested while waiting for tunnel interface")
            logger.debug(f"Waiting for tunnel interface... ({i + 1}/{attempts})")

        log_vpn_output(self.log_file)
        raise TunnelStartError(TunnelStartReason.TIMEOUT,
                               f"VPN connection timeout after {config.startup_timeout:g}s")

    def is_alive(self, handle: Optional[TunnelHandle]) -> bool:
        """True iff the process is running and its interface is still present."""
        if handle is None:
            return False
        if not self._process_running(handle.pid):
            logger.warning(f"OpenVPN process {handle.pid} is gone")
            return False
        if not interface_exists(handle.interface):
            logger.warning(f"Tunnel interface {handle.interface} disappeared")
            return False
        return True

    def terminate(self, handle: Optional[TunnelHandle] = None) -> None:
        """Stop the tunnel process; a handle that is already stopped is a no-op."""
        if handle is not None:
            try:
                proc = psutil.Process(handle.pid)
            except psutil.NoSuchProcess:
                proc = None
            if proc is not None:
                logger.info(f"Stopping OpenVPN connection (PID {handle.pid})...")
                self._stop_process(proc)
        else:
            pid = self._read_pid()
            procs = self._matching_processes()
            if pid is not None and pid not in {p.pid for p in procs}:
                try:
                    proc = psutil.Process(pid)
                    if proc.name() == PROCESS_NAME:
                        procs.append(proc)
                except psutil.NoSuchProcess:
                    pass
            for proc in procs:
                logger.info(f"Stopping OpenVPN connection (PID {proc.pid})...")
                self._stop_process(proc)

        if handle is None or self.handle == handle:
            self.handle = None
        self.pid_file.unlink(missing_ok=True)
        logger.info("VPN connection stopped")
