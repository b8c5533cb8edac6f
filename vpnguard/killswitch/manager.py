"""Connection-protection state machine."""

import signal
import threading
from typing import Callable, Optional

from .config import Config
from .dns import DNSGuard
from .exceptions import KillswitchError, ShutdownRequested
from .firewall import FirewallManager
from .lock import InstanceLock
from .models import ConnectionState, StatusSnapshot, TunnelHandle
from .notify import ReadinessNotifier
from .status import StatusPublisher
from .tunnel import TunnelProcessSupervisor
from .utils import check_dependencies, get_public_ip
from ..logging_utility import logger

STOP_SIGNALS = (signal.SIGTERM, signal.SIGINT, signal.SIGHUP)


class ProtectionStateMachine:
    """Drives tunnel, DNS and firewall so the host is either fully protected or
    fully blocked.

    All mutations of firewall, resolver and tunnel happen on the thread that
    calls ``run``. Stop requests (signals or ``request_stop``) only set an
    event; every wait in the control loop watches that event, and the unwind
    runs before ``run`` returns.
    """

    def __init__(self, config: Config,
                 tunnel: Optional[TunnelProcessSupervisor] = None,
                 firewall: Optional[FirewallManager] = None,
                 dns: Optional[DNSGuard] = None,
                 publisher: Optional[StatusPublisher] = None,
                 lock: Optional[InstanceLock] = None,
                 notifier: Optional[ReadinessNotifier] = None,
                 stop_event: Optional[threading.Event] = None,
                 public_ip: Callable[[], Optional[str]] = get_public_ip):
        self.config = config
        self.stop_event = stop_event or threading.Event()
        self.tunnel = tunnel or TunnelProcessSupervisor(
            config.log_file, config.tunnel_pid_file, config.tunnel_config, stop_event=self.stop_event
        )
        self.firewall = firewall or FirewallManager(ipv6=config.ipv6)
        self.dns = dns or DNSGuard(config.resolv_conf)
        self.publisher = publisher or StatusPublisher(config.status_file)
        self.lock = lock or InstanceLock(config.pid_file)
        self.notifier = notifier or ReadinessNotifier()
        self._public_ip = public_ip

        self.state = ConnectionState.IDLE
        self.handle: Optional[TunnelHandle] = None
        self.reconnect_attempts = 0
        self.history: list[ConnectionState] = [self.state]

    # ---------- control ----------

    def request_stop(self, signum=None, frame=None) -> None:
        """Ask the control loop to unwind."""
        if signum is not None:
            logger.info(f"Received {signal.Signals(signum).name}, stopping")
        else:
            logger.info("Stop requested")
        self.stop_event.set()

    def _handle_signal(self, signum, frame) -> None:
        # Event.set takes the lock the interrupted thread may be holding inside Event.wait
        threading.Thread(target=self.request_stop, args=(signum,), daemon=True).start()

    def install_signal_handlers(self) -> None:
        for sig in STOP_SIGNALS:
            signal.signal(sig, self._handle_signal)

    def required_tools(self) -> list[str]:
        tools = ["openvpn", "ip", "iptables"]
        if self.config.ipv6:
            tools.append("ip6tables")
        return tools

    def _wait(self, seconds: float) -> bool:
        """Sleep for up to seconds; True if a stop was requested meanwhile."""
        return self.stop_event.wait(seconds)

    # ---------- status ----------

    def _snapshot(self) -> StatusSnapshot:
        protected = self.state is ConnectionState.PROTECTED
        return StatusSnapshot(
            state=self.state,
            public_ip=self._public_ip() if protected else None,
            dns_servers=self.dns.active_servers(),
            uptime=self.handle.uptime() if (protected and self.handle) else None,
            interface=self.handle.interface if self.handle else None,
            killswitch=self.firewall.armed,
        )

    def publish(self) -> None:
        self.publisher.publish(self._snapshot())

    def _transition(self, state: ConnectionState) -> None:
        previous, self.state = self.state, state
        self.history.append(state)
        logger.info(f"State transition: {previous.value} -> {state.value}")
        self.publish()

    # ---------- effects ----------

    def _arm_firewall(self, tunnel_interface: Optional[str]) -> None:
        if not self.config.killswitch_enabled:
            logger.warning("Killswitch disabled by configuration, firewall left untouched")
            return
        self.lock.verify()
        self.firewall.arm(self.config, tunnel_interface)

    def _establish(self) -> None:
        """Tunnel first, then DNS, firewall last."""
        self.handle = self.tunnel.launch(self.config)
        self.dns.pin(self.config.dns_servers)
        self._arm_firewall(self.handle.interface)

    def _lockdown(self) -> None:
        """Drop the tunnel exception rules while no live tunnel exists."""
        try:
            self._arm_firewall(None)
        except KillswitchError as e:
            logger.error(f"Failed to tighten firewall after connection loss: {e}")

    def _unwind(self) -> None:
        steps = []
        if self.config.killswitch_enabled:
            steps.append(("disarm firewall", self._disarm_firewall))
        steps.append(("restore DNS", self.dns.restore))
        steps.append(("terminate tunnel", lambda: self.tunnel.terminate(self.handle)))
        for name, step in steps:
            try:
                step()
            except Exception as e:
                logger.error(f"Cleanup step '{name}' failed: {e}")
        self.handle = None

    def _disarm_firewall(self) -> None:
        self.lock.verify()
        self.firewall.disarm()

    # ---------- loop ----------

    def _reconnect(self) -> bool:
        """Degraded -> Reconnecting -> Protected; False means stop."""
        while True:
            if not self.config.auto_reconnect:
                logger.warning("Auto-reconnect disabled, stopping")
                return False
            limit = self.config.max_reconnect_attempts
            if limit and self.reconnect_attempts >= limit:
                logger.error(f"Giving up after {self.reconnect_attempts} reconnect attempts")
                return False

            logger.info(f"Attempting to reconnect in {self.config.reconnect_delay:g} seconds...")
            if self._wait(self.config.reconnect_delay):
                return False

            self.reconnect_attempts += 1
            self._transition(ConnectionState.RECONNECTING)
            logger.info(f"Reconnect attempt {self.reconnect_attempts}")
            try:
                self.tunnel.terminate(self.handle)
                self.handle = None
                self._establish()
            except ShutdownRequested:
                return False
            except KillswitchError as e:
                logger.error(f"Reconnection failed: {e}")
                self._transition(ConnectionState.DEGRADED)
                if self.stop_event.is_set():
                    return False
                continue

            self.reconnect_attempts = 0
            self._transition(ConnectionState.PROTECTED)
            logger.info("Reconnected")
            return True

    def _monitor(self) -> bool:
        """Health-check loop; False if protection was lost for good."""
        logger.info("Starting VPN monitor...")
        while not self._wait(self.config.check_interval):
            if self.tunnel.is_alive(self.handle):
                self.publish()
                continue

            logger.warning("VPN disconnected!")
            self._transition(ConnectionState.DEGRADED)
            self._lockdown()
            if not self._reconnect():
                return self.stop_event.is_set()
        return True

    def run(self) -> bool:
        """Run until stopped. Returns False if protection failed or was lost for good.

        Raises DependencyMissingError, AlreadyRunningError or LockError before
        anything on the host has been changed.
        """
        check_dependencies(self.required_tools())
        self.lock.acquire()

        logger.info("=== OpenVPN Killswitch Starting ===")
        success = True
        try:
            self._transition(ConnectionState.ESTABLISHING)
            try:
                self._establish()
            except ShutdownRequested:
                logger.info("Stop requested during startup")
            except KillswitchError as e:
                logger.error(f"Failed to establish protection: {e}")
                success = False
            else:
                self._transition(ConnectionState.PROTECTED)
                self.notifier.notify_ready()
                logger.info(f"VPN is active on {self.handle.interface}")
                success = self._monitor()
        finally:
            self.shutdown()
        return success

    def recover(self) -> None:
        """Unwind state left behind by a supervisor that exited without cleaning up."""
        self.lock.acquire()
        logger.info("No running supervisor, cleaning up leftover state...")
        self.shutdown()

    def shutdown(self) -> None:
        """Unwind every effect in reverse order of establishment."""
        if self.state is ConnectionState.STOPPED:
            return
        self.notifier.notify_stopping()
        self._transition(ConnectionState.STOPPING)
        logger.info("Cleaning up...")
        self._unwind()
        self._transition(ConnectionState.STOPPED)
        try:
            self.lock.release()
        except KillswitchError as e:
            logger.error(f"Failed to release lock: {e}")
        logger.info("Cleanup completed")
