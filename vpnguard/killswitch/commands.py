"""Command templates and builders for killswitch management."""

from typing import List, Optional, Dict
from dataclasses import dataclass
from pathlib import Path

from .exceptions import KillswitchError


class ValidationError(KillswitchError):
    """Raised when command validation fails."""
    pass


@dataclass(frozen=True)
class Command:
    """Command builder with validation."""
    base_cmd: List[str]
    _valid_options: Optional[Dict[str, type]] = None

    @staticmethod
    def _format_option(opt: str) -> str:
        """Single-letter options take one dash, long options two."""
        opt_name = opt.lstrip('-').replace('_', '-')
        return f"-{opt_name}" if len(opt_name) == 1 else f"--{opt_name}"

    def _validate_option(self, opt: str, value: Optional[str]) -> None:
        """Validate option and its value if validation rules exist."""
        if self._valid_options is None:
            return

        opt_name = opt.lstrip('-').replace('-', '_')
        if opt_name not in self._valid_options:
            valid_opts = ", ".join(self._format_option(o) for o in self._valid_options)
            raise ValidationError(
                f"Invalid option '{opt}' for command {self.base_cmd[0]}. "
                f"Valid options are: {valid_opts}"
            )

        expected_type = self._valid_options[opt_name]
        if expected_type is type(None):
            if value is not None:
                raise ValidationError(f"Option '{opt}' is a flag and takes no value")
            return
        if value is None:
            raise ValidationError(f"Option '{opt}' requires a value")
        try:
            expected_type(value)
        except ValueError:
            raise ValidationError(
                f"Invalid value '{value}' for option '{opt}'. Expected {expected_type.__name__}"
            )

    def _validate_executable(self) -> None:
        """Validate that base command exists."""
        if not self.base_cmd or not self.base_cmd[0]:
            raise ValidationError("Command cannot be empty")

    @classmethod
    def from_str(cls, cmd: str, valid_options: Optional[Dict[str, type]] = None) -> 'Command':
        """Create command from string with optional validation rules."""
        command = cls(cmd.split(), valid_options)
        command._validate_executable()
        return command

    def with_arg(self, arg: str) -> 'Command':
        """Add single argument."""
        return Command(self.base_cmd + [arg], self._valid_options)

    def with_args(self, *args: str) -> 'Command':
        """Add multiple arguments."""
        return Command(self.base_cmd + list(args), self._valid_options)

    def with_options(self, **kwargs: Optional[str]) -> 'Command':
        """Add multiple options with validation, keeping keyword order."""
        cmd = self.base_cmd.copy()
        for opt, value in kwargs.items():
            value = str(value) if value is not None else None
            self._validate_option(opt, value)
            cmd.append(self._format_option(opt))
            if value is not None:
                cmd.append(value)
        return Command(cmd, self._valid_options)

    def build(self) -> List[str]:
        """Get final command list."""
        self._validate_executable()
        return list(self.base_cmd)


IPTABLES_OPTIONS = {
    't': str,
    'i': str,
    'o': str,
    'p': str,
    's': str,
    'd': str,
    'dport': int,
    'm': str,
    'state': str,
    'j': str,
}

OPENVPN_OPTIONS = {
    'config': Path,
    'daemon': type(None),
    'verb': int,
    'log_append': Path,
    'writepid': Path,
}


CHATTR = Command.from_str("chattr")

IP = Command.from_str("ip")
IP_ROUTE = IP.with_arg("route")

IPTABLES = Command.from_str("iptables", valid_options=IPTABLES_OPTIONS)
IP6TABLES = Command.from_str("ip6tables", valid_options=IPTABLES_OPTIONS)

OPENVPN = Command.from_str("openvpn", valid_options=OPENVPN_OPTIONS)
OPENVPN_START = (
    OPENVPN
    .with_options(
        daemon=None,
        verb="3",
    )
)
