"""Data models for killswitch management."""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class ConnectionState(Enum):
    """Protection supervisor state"""
    IDLE = "idle"
    ESTABLISHING = "establishing"
    PROTECTED = "protected"
    DEGRADED = "degraded"
    RECONNECTING = "reconnecting"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass(frozen=True)
class TunnelHandle:
    """Running tunnel process and the interface it brought up"""
    pid: int
    interface: str
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def uptime(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return max(0.0, (now - self.started_at).total_seconds())


@dataclass
class StatusSnapshot:
    """Machine-readable status published for external readers"""
    state: ConnectionState
    public_ip: Optional[str] = None
    dns_servers: list[str] = field(default_factory=list)
    uptime: Optional[float] = None
    interface: Optional[str] = None
    killswitch: bool = False
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        data = asdict(self)
        data["state"] = self.state.value
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "StatusSnapshot":
        return cls(
            state=ConnectionState(data["state"]),
            public_ip=data.get("public_ip"),
            dns_servers=list(data.get("dns_servers") or []),
            uptime=data.get("uptime"),
            interface=data.get("interface"),
            killswitch=bool(data.get("killswitch", False)),
            timestamp=data.get("timestamp", ""),
        )
