"""Custom exceptions for killswitch management."""

from enum import Enum
from typing import Optional


class KillswitchError(Exception):
    """Base exception for killswitch-related errors."""
    pass


class ConfigurationError(KillswitchError):
    """Raised when there's an issue with the killswitch configuration"""
    pass


class ConfigMissingError(ConfigurationError):
    """Raised when the configuration file does not exist"""
    pass


class DependencyMissingError(KillswitchError):
    """Raised when a required external tool is not installed"""
    pass


class LockError(KillswitchError):
    """Raised when the instance lock cannot be created or validated"""
    pass


class AlreadyRunningError(LockError):
    """Raised when another live supervisor holds the instance lock"""

    def __init__(self, pid: Optional[int]):
        super().__init__(f"Supervisor is already running (PID: {pid if pid is not None else 'unknown'})")
        self.pid = pid


class CommandError(KillswitchError):
    """Raised when an external command fails"""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class TunnelStartReason(Enum):
    TIMEOUT = "timeout"
    CONFIG_MISSING = "config_missing"
    PROCESS_FAILED = "process_failed"


class TunnelStartError(KillswitchError):
    """Raised when the tunnel process could not be brought up"""

    def __init__(self, reason: TunnelStartReason, message: str):
        super().__init__(f"{message} ({reason.value})")
        self.reason = reason


class FirewallApplyError(KillswitchError):
    """Raised when a firewall rule could not be applied or removed"""
    pass


class DNSError(KillswitchError):
    """Raised when the resolver configuration could not be written"""
    pass


class ShutdownRequested(KillswitchError):
    """Raised from a wait that was interrupted by a stop request"""
    pass
