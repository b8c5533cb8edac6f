"""Factory for creating killswitch-related commands."""

from pathlib import Path
from .commands import (
    OPENVPN_START,
    IP_ROUTE,
    IPTABLES,
    IP6TABLES,
    CHATTR,
    Command,
)

POLICY_CHAINS = ("INPUT", "OUTPUT", "FORWARD")
MANAGED_TABLES = ("filter", "nat", "mangle")


class KillswitchCommandFactory:
    """Factory for creating killswitch management commands."""

    @staticmethod
    def start_vpn(config_path: Path, log_path: Path, pid_path: Path) -> list[str]:
        """Create OpenVPN start command."""
        return OPENVPN_START.with_options(
            config=str(config_path),
            log_append=str(log_path),
            writepid=str(pid_path),
        ).build()

    @staticmethod
    def show_default_route() -> list[str]:
        """Create default route show command."""
        return IP_ROUTE.with_args("show", "default").build()

    @staticmethod
    def set_immutable(path: Path, immutable: bool) -> list[str]:
        """Create command toggling the immutable attribute of a file."""
        return CHATTR.with_args("+i" if immutable else "-i", str(path)).build()


class FirewallCommandFactory:
    """Factory for iptables/ip6tables rule commands of one address family."""

    def __init__(self, ipv6: bool = False):
        self.ipv6 = ipv6
        self._base: Command = IP6TABLES if ipv6 else IPTABLES

    def set_policy(self, chain: str, target: str) -> list[str]:
        return self._base.with_args("-P", chain, target).build()

    def flush(self, table: str = "filter") -> list[str]:
        return self._base.with_options(t=table).with_arg("-F").build()

    def delete_chains(self, table: str = "filter") -> list[str]:
        return self._base.with_options(t=table).with_arg("-X").build()

    def allow_loopback_in(self) -> list[str]:
        return self._base.with_args("-A", "INPUT").with_options(i="lo", j="ACCEPT").build()

    def allow_loopback_out(self) -> list[str]:
        return self._base.with_args("-A", "OUTPUT").with_options(o="lo", j="ACCEPT").build()

    def allow_from(self, network: str) -> list[str]:
        return self._base.with_args("-A", "INPUT").with_options(s=network, j="ACCEPT").build()

    def allow_to(self, network: str) -> list[str]:
        return self._base.with_args("-A", "OUTPUT").with_options(d=network, j="ACCEPT").build()

    def allow_endpoint(self, interface: str, address: str, protocol: str, port: int) -> list[str]:
        return self._base.with_args("-A", "OUTPUT").with_options(
            o=interface, d=address, p=protocol, dport=port, j="ACCEPT"
        ).build()

    def allow_established_in(self, interface: str) -> list[str]:
        return self._base.with_args("-A", "INPUT").with_options(
            i=interface, m="state", state="ESTABLISHED,RELATED", j="ACCEPT"
        ).build()

    def allow_interface(self, chain: str, interface: str, inbound: bool) -> list[str]:
        cmd = self._base.with_args("-A", chain)
        cmd = cmd.with_options(i=interface) if inbound else cmd.with_options(o=interface)
        return cmd.with_options(j="ACCEPT").build()

    def allow_dns(self, interface: str, server: str, protocol: str) -> list[str]:
        return self._base.with_args("-A", "OUTPUT").with_options(
            o=interface, d=server, p=protocol, dport=53, j="ACCEPT"
        ).build()
