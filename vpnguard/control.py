"""Control commands: start, stop, restart, status."""

import signal
from typing import Optional

import psutil

from .killswitch.config import Config
from .killswitch.exceptions import KillswitchError
from .killswitch.lock import InstanceLock
from .killswitch.manager import ProtectionStateMachine
from .killswitch.models import StatusSnapshot
from .killswitch.status import StatusPublisher
from .logging_utility import logger


def start(config: Config) -> bool:
    """Run the supervisor in the foreground until it is stopped."""
    machine = ProtectionStateMachine(config)
    machine.install_signal_handlers()
    return machine.run()


def stop(config: Config, timeout: float = 30) -> bool:
    """Stop the running supervisor, or clean up after one that is gone.

    Returns False if the supervisor did not exit within timeout.
    """
    pid = InstanceLock(config.pid_file).holder()
    if pid is None:
        ProtectionStateMachine(config).recover()
        return True

    logger.info(f"Stopping supervisor (PID {pid})...")
    try:
        proc = psutil.Process(pid)
        proc.send_signal(signal.SIGTERM)
        proc.wait(timeout=timeout)
    except psutil.NoSuchProcess:
        pass
    except psutil.TimeoutExpired:
        logger.error(f"Supervisor (PID {pid}) did not stop within {timeout:g}s")
        return False
    logger.info("Supervisor stopped")
    return True


def restart(config: Config, timeout: float = 30) -> bool:
    if not stop(config, timeout=timeout):
        return False
    return start(config)


def status(config: Config) -> Optional[StatusSnapshot]:
    """Last published snapshot; does not touch live state."""
    return StatusPublisher(config.status_file).read()


def is_running(config: Config) -> bool:
    try:
        return InstanceLock(config.pid_file).holder() is not None
    except KillswitchError:
        return False
