"""Tunnel server endpoints named by an OpenVPN client configuration."""

import ipaddress
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# Inline file blocks such as <ca> or <tls-auth>; <connection> holds directives
INLINE_BLOCK = re.compile(r"^<([\w-]+)>$")


@dataclass(frozen=True)
class Endpoint:
    """One ``remote`` entry; port and protocol are None when left to defaults"""
    host: str
    port: Optional[int] = None
    protocol: Optional[str] = None

    @property
    def is_address(self) -> bool:
        try:
            ipaddress.ip_address(self.host)
            return True
        except ValueError:
            return False


def _protocol(value: str) -> Optional[str]:
    # udp, udp4, udp6, tcp-client, tcp4-client, ...
    value = value.lower()
    for base in ("udp", "tcp"):
        if value.startswith(base):
            return base
    return None


def _port(value: str) -> Optional[int]:
    return int(value) if value.isdigit() else None


def parse_remotes(path: Path) -> list[Endpoint]:
    """Remote endpoints in file order, with file-wide ``port``/``proto`` applied.

    Raises OSError when the file cannot be read.
    """
    entries = []
    default_port = None
    default_protocol = None
    block = None

    with open(path) as f:
        for raw in f:
            line = raw.strip()
            if not line or line[0] in "#;":
                continue
            if block:
                if line.lower() == f"</{block}>":
                    block = None
                continue
            match = INLINE_BLOCK.match(line.lower())
            if match:
                if match.group(1) != "connection":
                    block = match.group(1)
                continue

            words = line.split()
            key = words[0].lower()
            if key == "remote" and len(words) > 1:
                port = _port(words[2]) if len(words) > 2 else None
                protocol = _protocol(words[3]) if len(words) > 3 else None
                entries.append((words[1], port, protocol))
            elif key in ("port", "rport") and len(words) > 1:
                default_port = _port(words[1]) or default_port
            elif key == "proto" and len(words) > 1:
                default_protocol = _protocol(words[1]) or default_protocol

    return [
        Endpoint(host, port or default_port, protocol or default_protocol)
        for host, port, protocol in entries
    ]
