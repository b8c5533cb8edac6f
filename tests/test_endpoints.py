"""Tests for reading tunnel server endpoints from the client configuration."""

import pytest

from vpnguard.killswitch.endpoints import Endpoint, parse_remotes


def write_ovpn(tmp_path, text):
    path = tmp_path / "client.ovpn"
    path.write_text(text)
    return path


class TestParseRemotes:
    def test_remote_with_port_and_protocol(self, tmp_path):
        path = write_ovpn(tmp_path, "client\nremote vpn.example.com 443 tcp-client\n")
        assert parse_remotes(path) == [Endpoint("vpn.example.com", 443, "tcp")]

    def test_file_wide_port_and_proto_apply(self, tmp_path):
        path = write_ovpn(tmp_path, (
            "client\n"
            "proto udp6\n"
            "port 1195\n"
            "remote 198.51.100.10\n"
            "remote 198.51.100.11 1196\n"
            "remote 198.51.100.12 443 tcp\n"
        ))
        assert parse_remotes(path) == [
            Endpoint("198.51.100.10", 1195, "udp"),
            Endpoint("198.51.100.11", 1196, "udp"),
            Endpoint("198.51.100.12", 443, "tcp"),
        ]

    def test_defaults_left_open(self, tmp_path):
        path = write_ovpn(tmp_path, "remote 198.51.100.10\n")
        assert parse_remotes(path) == [Endpoint("198.51.100.10")]

    def test_comments_and_inline_blocks_skipped(self, tmp_path):
        path = write_ovpn(tmp_path, (
            "# remote 10.0.0.1 1194\n"
            "; remote 10.0.0.2 1194\n"
            "<ca>\n"
            "remote 10.0.0.3 1194\n"
            "</ca>\n"
            "<connection>\n"
            "remote 198.51.100.10 1194 udp\n"
            "</connection>\n"
        ))
        assert parse_remotes(path) == [Endpoint("198.51.100.10", 1194, "udp")]

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(OSError):
            parse_remotes(tmp_path / "absent.ovpn")

    def test_is_address(self):
        assert Endpoint("2001:db8::1").is_address
        assert not Endpoint("vpn.example.com").is_address
