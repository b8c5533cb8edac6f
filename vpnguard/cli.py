"""Command line front end for the killswitch supervisor."""

import argparse
import logging
import sys
from pathlib import Path

import uvicorn

from . import control
from .killswitch.config import ConfigProvider, DEFAULT_CONFIG_FILE
from .killswitch.exceptions import AlreadyRunningError, KillswitchError
from .logging_utility import Logger, logger


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vpnguard",
        description="OpenVPN supervisor with firewall killswitch and DNS pinning",
    )
    parser.add_argument("-c", "--config", type=Path, default=DEFAULT_CONFIG_FILE,
                        help=f"configuration file (default: {DEFAULT_CONFIG_FILE})")
    parser.add_argument("-v", "--verbose", action="store_true", help="log debug output")
    parser.add_argument("command", nargs="?", default="start",
                        choices=["start", "stop", "restart", "status", "serve"])
    parser.add_argument("--host", default="127.0.0.1", help="bind address for 'serve'")
    parser.add_argument("--port", type=int, default=8000, help="port for 'serve'")
    return parser


def _print_status(snapshot) -> None:
    if snapshot is None:
        print("VPN status not available")
        return
    print(f"STATUS={snapshot.state.value.upper()}")
    print(f"IP={snapshot.public_ip or 'N/A'}")
    print(f"DNS={','.join(snapshot.dns_servers) or 'N/A'}")
    print(f"KILLSWITCH={'ACTIVE' if snapshot.killswitch else 'INACTIVE'}")
    print(f"INTERFACE={snapshot.interface or 'N/A'}")
    print(f"UPTIME={int(snapshot.uptime) if snapshot.uptime is not None else 'N/A'}")
    print(f"TIMESTAMP={snapshot.timestamp}")


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        Logger().set_level(logging.DEBUG)

    try:
        config = ConfigProvider(args.config).load()
    except KillswitchError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    if args.command == "status":
        _print_status(control.status(config))
        return 0

    if args.command == "serve":
        logger.info(f"Serving control API on {args.host}:{args.port}")
        uvicorn.run("vpnguard.main:app", host=args.host, port=args.port)
        return 0

    try:
        Logger().log_to_file(str(config.log_file))
    except OSError as e:
        logger.warning(f"Cannot write log file {config.log_file}: {e}")

    try:
        if args.command == "start":
            ok = control.start(config)
        elif args.command == "stop":
            ok = control.stop(config)
        else:
            ok = control.restart(config)
    except AlreadyRunningError as e:
        logger.error(str(e))
        return 1
    except KillswitchError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
