import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

MAX_LOG_SIZE = 10 * 1024 * 1024


class Logger:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(Logger, cls).__new__(cls)
            cls._instance._setup_logger()
        return cls._instance

    def _setup_logger(self):
        self.logger = logging.getLogger('vpnguard')
        self.logger.setLevel(logging.INFO)
        self.logger.propagate = False
        self.formatter = logging.Formatter('[%(asctime)s] [%(levelname)s] %(message)s',
                                           datefmt='%Y-%m-%d %H:%M:%S')
        self.file_handler: Optional[RotatingFileHandler] = None

        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(self.formatter)
        self.logger.addHandler(stream_handler)

    def log_to_file(self, log_file: str) -> None:
        """Append log entries to log_file, replacing any previous file handler."""
        if self.file_handler is not None:
            self.logger.removeHandler(self.file_handler)
            self.file_handler.close()

        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        # Use RotatingFileHandler to limit log file size
        self.file_handler = RotatingFileHandler(log_file, maxBytes=MAX_LOG_SIZE,
                                                backupCount=1)
        self.file_handler.setFormatter(self.formatter)
        self.logger.addHandler(self.file_handler)

    def set_level(self, level: int) -> None:
        self.logger.setLevel(level)

    def get_logger(self):
        return self.logger


logger = Logger().get_logger()
