"""Readiness notification for an external service manager (systemd)."""

import os
import socket

from ..logging_utility import logger


class ReadinessNotifier:
    """Sends sd_notify messages; READY=1 goes out at most once per process."""

    def __init__(self):
        self.ready_sent = False

    @staticmethod
    def _sd_notify(state: str) -> None:
        notify_socket = os.environ.get('NOTIFY_SOCKET')
        if not notify_socket:
            return

        if notify_socket.startswith('@'):
            notify_socket = '\0' + notify_socket[1:]
        try:
            with socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM) as sock:
                sock.connect(notify_socket)
                sock.sendall(state.encode('utf-8'))
        except OSError as e:
            logger.warning(f"sd_notify failed: {e}")

    def notify_ready(self) -> None:
        if self.ready_sent:
            return
        self.ready_sent = True
        self._sd_notify("READY=1")
        logger.info("Readiness signalled")

    def notify_stopping(self) -> None:
        self._sd_notify("STOPPING=1")
