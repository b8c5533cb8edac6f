"""Tests for command templates and factories."""

from pathlib import Path

import pytest

from vpnguard.killswitch.command_factory import FirewallCommandFactory, KillswitchCommandFactory
from vpnguard.killswitch.commands import IPTABLES, OPENVPN, Command, ValidationError


class TestCommand:
    def test_empty_command_rejected(self):
        with pytest.raises(ValidationError):
            Command.from_str("")

    def test_short_and_long_options(self):
        cmd = IPTABLES.with_args("-A", "OUTPUT").with_options(o="eth0", p="udp", dport=1194, j="ACCEPT")
        assert cmd.build() == ["iptables", "-A", "OUTPUT", "-o", "eth0", "-p", "udp",
                               "--dport", "1194", "-j", "ACCEPT"]

    def test_unknown_option_rejected(self):
        with pytest.raises(ValidationError, match="Invalid option"):
            IPTABLES.with_options(bogus="x")

    def test_typed_value_validated(self):
        with pytest.raises(ValidationError, match="Expected int"):
            IPTABLES.with_options(dport="dns")

    def test_flag_takes_no_value(self):
        with pytest.raises(ValidationError):
            OPENVPN.with_options(daemon="yes")
        assert OPENVPN.with_options(daemon=None).build() == ["openvpn", "--daemon"]

    def test_builders_do_not_mutate_template(self):
        IPTABLES.with_args("-F")
        assert IPTABLES.build() == ["iptables"]


class TestFactories:
    def test_start_vpn(self):
        cmd = KillswitchCommandFactory.start_vpn(Path("/etc/openvpn/client.ovpn"),
                                                 Path("/var/log/ks.log"), Path("/run/openvpn.pid"))
        assert cmd[0] == "openvpn"
        assert "--daemon" in cmd
        assert cmd[cmd.index("--config") + 1] == "/etc/openvpn/client.ovpn"
        assert cmd[cmd.index("--log-append") + 1] == "/var/log/ks.log"
        assert cmd[cmd.index("--writepid") + 1] == "/run/openvpn.pid"

    def test_default_route(self):
        assert KillswitchCommandFactory.show_default_route() == ["ip", "route", "show", "default"]

    def test_chattr(self):
        assert KillswitchCommandFactory.set_immutable(Path("/etc/resolv.conf"), True) == \
            ["chattr", "+i", "/etc/resolv.conf"]
        assert KillswitchCommandFactory.set_immutable(Path("/etc/resolv.conf"), False)[1] == "-i"

    def test_firewall_families(self):
        assert FirewallCommandFactory().set_policy("OUTPUT", "DROP") == ["iptables", "-P", "OUTPUT", "DROP"]
        v6 = FirewallCommandFactory(ipv6=True)
        assert v6.flush("nat") == ["ip6tables", "-t", "nat", "-F"]

    def test_allow_dns(self):
        assert FirewallCommandFactory().allow_dns("tun0", "1.1.1.1", "tcp") == [
            "iptables", "-A", "OUTPUT", "-o", "tun0", "-d", "1.1.1.1", "-p", "tcp", "--dport", "53", "-j", "ACCEPT"
        ]

    def test_allow_endpoint(self):
        assert FirewallCommandFactory(ipv6=True).allow_endpoint("eth0", "2001:db8::1", "udp", 1194) == [
            "ip6tables", "-A", "OUTPUT", "-o", "eth0", "-d", "2001:db8::1", "-p", "udp", "--dport", "1194", "-j", "ACCEPT"
        ]
