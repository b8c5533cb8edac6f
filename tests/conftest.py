"""Shared test fixtures."""

import ipaddress
import subprocess
import sys
import threading
import time
from pathlib import Path

import pytest

from vpnguard.killswitch.config import Config
from vpnguard.killswitch.exceptions import CommandError, ShutdownRequested
from vpnguard.killswitch.models import TunnelHandle

ORIGINAL_RESOLV = b"# managed by NetworkManager\nsearch lan\nnameserver 192.168.1.1\n"


def wait_for(predicate, timeout: float = 10.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def _matches(opts, packet):
    for key, value in opts.items():
        if key == "-j":
            continue
        if key == "-d":
            if ipaddress.ip_address(packet["dst"]) not in ipaddress.ip_network(value, strict=False):
                return False
        elif key == "-o":
            if packet["out"] != value:
                return False
        elif key == "-p":
            if packet["proto"] != value:
                return False
        elif key == "--dport":
            if str(packet["dport"]) != value:
                return False
        else:
            # matches the model does not track never apply
            return False
    return True


class FakeIptables:
    """In-memory model of iptables/ip6tables, fed the argv lists run_command receives."""

    def __init__(self, fail_on=None):
        self.policies = {}
        self.rules = {}
        self.calls = []
        self.history = []
        self.fail_on = fail_on

    def policy(self, binary="iptables", chain="OUTPUT"):
        return self.policies.get((binary, chain), "ACCEPT")

    def chain_rules(self, binary="iptables", chain="OUTPUT"):
        return self.rules.get((binary, "filter", chain), [])

    def accepts(self, packet, binary="iptables", chain="OUTPUT", snapshot=None):
        """Verdict for a packet dict (out, dst, proto, dport) under first-match semantics."""
        policies, rules = snapshot or (self.policies, self.rules)
        for rule in rules.get((binary, "filter", chain), []):
            opts = dict(zip(rule[::2], rule[1::2]))
            if _matches(opts, packet):
                return opts["-j"] == "ACCEPT"
        return policies.get((binary, chain), "ACCEPT") == "ACCEPT"

    def rule_count(self):
        return sum(len(rules) for rules in self.rules.values())

    def __call__(self, cmd, check=True, timeout=30):
        self.calls.append(list(cmd))
        if self.fail_on and self.fail_on(cmd):
            raise CommandError(f"Command failed: {' '.join(cmd)}", returncode=1)

        binary, args = cmd[0], list(cmd[1:])
        table = "filter"
        if args[:1] == ["-t"]:
            table, args = args[1], args[2:]
        op = args[0]
        if op == "-P":
            self.policies[(binary, args[1])] = args[2]
        elif op == "-F":
            for key in [k for k in self.rules if k[0] == binary and k[1] == table]:
                del self.rules[key]
        elif op == "-A":
            self.rules.setdefault((binary, table, args[1]), []).append(args[2:])
        self.history.append((dict(self.policies), {k: list(v) for k, v in self.rules.items()}))
        return "", ""


class FakeTunnel:
    """Stand-in for TunnelProcessSupervisor with scriptable failures."""

    def __init__(self, stop_event=None, interface="tun0"):
        self.stop_event = stop_event or threading.Event()
        self.interface = interface
        self.alive = False
        self.launches = 0
        self.failures = []
        self.block_launches_from = None
        self.terminated = []

    def launch(self, config):
        self.launches += 1
        if self.block_launches_from is not None and self.launches >= self.block_launches_from:
            if self.stop_event.wait(30):
                raise ShutdownRequested("Stop requested while waiting for tunnel interface")
        if self.failures:
            raise self.failures.pop(0)
        self.alive = True
        return TunnelHandle(pid=4000 + self.launches, interface=self.interface)

    def is_alive(self, handle):
        return handle is not None and self.alive

    def terminate(self, handle=None):
        self.terminated.append(handle)
        self.alive = False


@pytest.fixture
def config(tmp_path: Path) -> Config:
    tunnel_config = tmp_path / "client.ovpn"
    tunnel_config.write_text("client\nproto udp\nremote 198.51.100.10 1194\nremote 198.51.100.20 443 tcp\n")
    return Config(
        tunnel_config=tunnel_config,
        dns_servers=("1.1.1.1", "2606:4700:4700::1111"),
        reconnect_delay=0.05,
        check_interval=0.02,
        startup_timeout=3,
        log_file=tmp_path / "killswitch.log",
        status_file=tmp_path / "run" / "vpn-status",
        pid_file=tmp_path / "run" / "killswitch.pid",
        tunnel_pid_file=tmp_path / "run" / "openvpn.pid",
        resolv_conf=tmp_path / "etc" / "resolv.conf",
    )


@pytest.fixture
def resolv_conf(config: Config) -> Path:
    config.resolv_conf.parent.mkdir(parents=True, exist_ok=True)
    config.resolv_conf.write_bytes(ORIGINAL_RESOLV)
    return config.resolv_conf


@pytest.fixture
def no_chattr(monkeypatch):
    """chattr succeeds without touching the file system."""
    calls = []

    def fake_run(cmd, check=True, timeout=30):
        calls.append(list(cmd))
        return "", ""

    monkeypatch.setattr("vpnguard.killswitch.dns.run_command", fake_run)
    return calls


@pytest.fixture
def iptables(monkeypatch) -> FakeIptables:
    fake = FakeIptables()
    monkeypatch.setattr("vpnguard.killswitch.firewall.run_command", fake)
    return fake


HOLDER_SCRIPT = """
import fcntl, os, sys, time
fd = os.open(sys.argv[1], os.O_RDWR | os.O_CREAT, 0o644)
fcntl.flock(fd, fcntl.LOCK_EX)
os.ftruncate(fd, 0)
os.write(fd, f"{os.getpid()}\\n".encode())
print("locked", flush=True)
time.sleep(60)
"""


@pytest.fixture
def lock_holder():
    """Starts another process that holds the pid-file lock the way a supervisor does."""
    procs = []

    def start(pid_file: Path) -> subprocess.Popen:
        pid_file.parent.mkdir(parents=True, exist_ok=True)
        proc = subprocess.Popen([sys.executable, "-c", HOLDER_SCRIPT, str(pid_file)],
                                stdout=subprocess.PIPE, text=True)
        procs.append(proc)
        assert proc.stdout.readline().strip() == "locked"
        return proc

    yield start
    for proc in procs:
        if proc.poll() is None:
            proc.kill()
        proc.wait()
        proc.stdout.close()
