"""All-or-nothing iptables killswitch ruleset."""

import ipaddress
from typing import Callable, Iterable, NamedTuple, Optional, Sequence

from .command_factory import FirewallCommandFactory, MANAGED_TABLES, POLICY_CHAINS
from .config import Config
from .endpoints import Endpoint, parse_remotes
from .exceptions import CommandError, FirewallApplyError
from .utils import get_default_interface, resolve_host, run_command
from ..logging_utility import logger


class Target(NamedTuple):
    """Resolved tunnel server address the client may negotiate with"""
    address: str
    protocol: str
    port: int


def _version(address: str) -> int:
    return ipaddress.ip_network(address, strict=False).version


class FirewallManager:
    """Applies and removes the killswitch ruleset.

    The ruleset is write-only state: ``arm`` always rebuilds it from scratch and
    ``disarm`` always converges on default-allow with no rules, whatever was
    applied before.

    Outside the tunnel only the servers named by ``remote`` lines are reachable,
    on their negotiation port and protocol. Server hostnames are resolved once
    while the tunnel is up and again on every re-arm without a tunnel, after the
    trusted DNS servers have been opened on the default interface.
    """

    def __init__(self, ipv6: bool = True,
                 default_interface: Callable[[], Optional[str]] = get_default_interface,
                 resolve: Callable[..., list[str]] = resolve_host):
        self.families = [FirewallCommandFactory(ipv6=False)]
        if ipv6:
            self.families.append(FirewallCommandFactory(ipv6=True))
        self._default_interface = default_interface
        self._resolve = resolve
        self._resolved: dict[str, list[str]] = {}
        self.armed = False

    def endpoints(self, config: Config) -> list[Endpoint]:
        try:
            endpoints = parse_remotes(config.tunnel_config)
        except OSError as e:
            logger.warning(f"Cannot read VPN endpoints from {config.tunnel_config}: {e}")
            return []
        if not endpoints:
            logger.warning(f"No 'remote' entries in {config.tunnel_config}, VPN servers stay blocked")
        return endpoints

    def _refresh(self, config: Config, hosts: Iterable[str]) -> None:
        for host in hosts:
            addresses = self._resolve(host, config.resolv_conf)
            if addresses:
                self._resolved[host] = addresses
            elif host not in self._resolved:
                logger.warning(f"No known address for VPN server {host}")

    def targets(self, config: Config, endpoints: Iterable[Endpoint]) -> list[Target]:
        """Negotiation targets for endpoints; hostnames come from the last resolution."""
        targets = []
        for endpoint in endpoints:
            if endpoint.is_address:
                addresses = [endpoint.host]
            else:
                addresses = self._resolved.get(endpoint.host, [])
            ports = [endpoint.port] if endpoint.port else list(config.vpn_ports)
            for address in addresses:
                for port in ports:
                    target = Target(address, endpoint.protocol or "udp", port)
                    if target not in targets:
                        targets.append(target)
        return targets

    def build_rules(self, config: Config, tunnel_interface: Optional[str],
                    default_interface: Optional[str],
                    factory: FirewallCommandFactory,
                    targets: Sequence[Target] = (),
                    resolve_on_default: bool = False) -> list[list[str]]:
        """Ordered command batch for one address family.

        DNS goes to the trusted servers through the tunnel only. Without a
        tunnel and with resolve_on_default, they are reachable over the default
        interface instead so the client can look up its server again.
        """
        family = 6 if factory.ipv6 else 4

        # Deny before flushing so the old exception rules never outlive the old policy
        rules = [factory.set_policy(chain, "DROP") for chain in POLICY_CHAINS]
        for table in MANAGED_TABLES:
            rules.append(factory.flush(table))
            rules.append(factory.delete_chains(table))

        rules.append(factory.allow_loopback_in())
        rules.append(factory.allow_loopback_out())

        network = config.allow_local_network
        if network and _version(network) == family:
            rules.append(factory.allow_from(network))
            rules.append(factory.allow_to(network))

        if default_interface:
            rules.extend(self._endpoint_rules(factory, default_interface, targets))
            rules.append(factory.allow_established_in(default_interface))

        if tunnel_interface:
            rules.append(factory.allow_interface("INPUT", tunnel_interface, inbound=True))
            rules.append(factory.allow_interface("OUTPUT", tunnel_interface, inbound=False))
            if config.allow_forwarding:
                rules.append(factory.allow_interface("FORWARD", tunnel_interface, inbound=True))
                rules.append(factory.allow_interface("FORWARD", tunnel_interface, inbound=False))

        dns_interface = tunnel_interface
        if not tunnel_interface and resolve_on_default:
            dns_interface = default_interface
        if dns_interface:
            for server in config.dns_servers:
                if _version(server) == family:
                    rules.append(factory.allow_dns(dns_interface, server, "udp"))
                    rules.append(factory.allow_dns(dns_interface, server, "tcp"))
        return rules

    @staticmethod
    def _endpoint_rules(factory: FirewallCommandFactory, interface: str,
                        targets: Iterable[Target]) -> list[list[str]]:
        family = 6 if factory.ipv6 else 4
        return [
            factory.allow_endpoint(interface, t.address, t.protocol, t.port)
            for t in targets if _version(t.address) == family
        ]

    def _apply(self, commands: Iterable[list[str]]) -> None:
        for cmd in commands:
            try:
                run_command(cmd)
            except CommandError as e:
                raise FirewallApplyError(f"Failed to apply firewall rule: {e}")

    def arm(self, config: Config, tunnel_interface: Optional[str]) -> None:
        """Apply the killswitch; without a tunnel interface only control traffic passes."""
        if tunnel_interface:
            logger.info(f"Enabling killswitch for tunnel interface {tunnel_interface}...")
        else:
            logger.warning("Enabling killswitch without a tunnel interface, blocking all tunnel traffic")

        self.armed = False
        default_interface = self._default_interface()
        if not default_interface:
            logger.warning("No default route interface, VPN server ports stay blocked")

        endpoints = self.endpoints(config)
        hosts = [e.host for e in endpoints if not e.is_address]
        if tunnel_interface:
            self._refresh(config, [h for h in hosts if h not in self._resolved])
        targets = self.targets(config, endpoints)
        resolve_on_default = bool(hosts) and not tunnel_interface

        for factory in self.families:
            self._apply(self.build_rules(config, tunnel_interface, default_interface, factory,
                                         targets, resolve_on_default))

        if resolve_on_default and default_interface:
            logger.info("Resolving VPN servers through trusted DNS outside the tunnel")
            self._refresh(config, hosts)
            added = [t for t in self.targets(config, endpoints) if t not in targets]
            for factory in self.families:
                self._apply(self._endpoint_rules(factory, default_interface, added))

        if config.allow_local_network:
            logger.info(f"Allowing local network: {config.allow_local_network}")
        self.armed = True
        logger.info("Killswitch enabled successfully")

    def disarm(self) -> None:
        """Restore default-allow policies and remove every rule."""
        logger.info("Disabling killswitch...")
        failures = []
        for factory in self.families:
            commands = [factory.set_policy(chain, "ACCEPT") for chain in POLICY_CHAINS]
            for table in MANAGED_TABLES:
                commands.append(factory.flush(table))
                commands.append(factory.delete_chains(table))
            for cmd in commands:
                try:
                    run_command(cmd)
                except CommandError as e:
                    failures.append(str(e))

        self.armed = False
        if failures:
            raise FirewallApplyError("Failed to disable killswitch:\n" + "\n".join(failures))
        logger.info("Killswitch disabled successfully")
