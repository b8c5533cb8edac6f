"""Tests for resolver pinning."""

import os

import pytest

from vpnguard.killswitch.dns import DNSGuard
from vpnguard.killswitch.exceptions import CommandError, DNSError

from conftest import ORIGINAL_RESOLV


class TestDNSGuard:
    def test_pin_writes_trusted_servers(self, resolv_conf, no_chattr):
        guard = DNSGuard(resolv_conf)
        guard.pin(["1.1.1.1", "1.0.0.1"])
        content = resolv_conf.read_text()
        assert "nameserver 1.1.1.1\nnameserver 1.0.0.1\n" in content
        assert "192.168.1.1" not in content
        assert guard.backup_path.read_bytes() == ORIGINAL_RESOLV
        assert guard.active_servers() == ["1.1.1.1", "1.0.0.1"]

    def test_pin_then_restore_is_byte_identical(self, resolv_conf, no_chattr):
        guard = DNSGuard(resolv_conf)
        guard.pin(["9.9.9.9"])
        guard.restore()
        assert resolv_conf.read_bytes() == ORIGINAL_RESOLV
        assert not guard.has_backup

    def test_second_pin_keeps_first_backup(self, resolv_conf, no_chattr):
        guard = DNSGuard(resolv_conf)
        guard.pin(["9.9.9.9"])
        guard.pin(["1.1.1.1"])
        assert guard.backup_path.read_bytes() == ORIGINAL_RESOLV
        guard.restore()
        assert resolv_conf.read_bytes() == ORIGINAL_RESOLV

    def test_restore_without_backup_is_noop(self, resolv_conf, no_chattr):
        DNSGuard(resolv_conf).restore()
        assert resolv_conf.read_bytes() == ORIGINAL_RESOLV
        assert no_chattr == []

    def test_immutable_flag_toggled(self, resolv_conf, no_chattr):
        guard = DNSGuard(resolv_conf)
        guard.pin(["1.1.1.1"])
        assert no_chattr[-1] == ["chattr", "+i", str(resolv_conf)]
        guard.restore()
        assert ["chattr", "-i", str(resolv_conf)] in no_chattr

    def test_chattr_failure_is_not_fatal(self, resolv_conf, monkeypatch):
        def failing(cmd, check=True, timeout=30):
            raise CommandError("chattr: Operation not supported")

        monkeypatch.setattr("vpnguard.killswitch.dns.run_command", failing)
        guard = DNSGuard(resolv_conf)
        guard.pin(["1.1.1.1"])
        assert "nameserver 1.1.1.1" in resolv_conf.read_text()
        guard.restore()
        assert resolv_conf.read_bytes() == ORIGINAL_RESOLV

    def test_write_failure_raises(self, resolv_conf, no_chattr, monkeypatch):
        def broken_write(path, data, mode=0o644):
            raise PermissionError("read-only file system")

        monkeypatch.setattr("vpnguard.killswitch.dns.atomic_write", broken_write)
        with pytest.raises(DNSError):
            DNSGuard(resolv_conf).pin(["1.1.1.1"])

    def test_symlinked_resolver_is_relinked(self, tmp_path, no_chattr):
        stub = tmp_path / "stub-resolv.conf"
        stub.write_bytes(ORIGINAL_RESOLV)
        resolv_conf = tmp_path / "resolv.conf"
        os.symlink(stub, resolv_conf)

        guard = DNSGuard(resolv_conf)
        guard.pin(["1.1.1.1"])
        assert not resolv_conf.is_symlink()
        assert stub.read_bytes() == ORIGINAL_RESOLV

        guard.restore()
        assert resolv_conf.is_symlink()
        assert os.readlink(resolv_conf) == str(stub)
        assert resolv_conf.read_bytes() == ORIGINAL_RESOLV
        assert not guard.has_backup

    def test_active_servers_unreadable(self, tmp_path):
        assert DNSGuard(tmp_path / "missing.conf").active_servers() == []

    def test_absent_resolver_is_removed_on_restore(self, tmp_path, no_chattr):
        resolv_conf = tmp_path / "resolv.conf"
        guard = DNSGuard(resolv_conf)
        guard.pin(["1.1.1.1"])
        assert "nameserver 1.1.1.1" in resolv_conf.read_text()
        guard.pin(["1.0.0.1"])

        guard.restore()
        assert not resolv_conf.exists()
        assert not guard.has_backup
        assert not guard.backup_path.exists()
