"""Status snapshot publication for external readers."""

import json
from pathlib import Path
from typing import Optional

from .models import StatusSnapshot
from .utils import atomic_write
from ..logging_utility import logger


class StatusPublisher:
    def __init__(self, status_file: Path):
        self.status_file = Path(status_file)

    def publish(self, snapshot: StatusSnapshot) -> None:
        """Atomically replace the published snapshot. Failures are only logged."""
        try:
            data = json.dumps(snapshot.to_dict(), indent=2) + "\n"
            atomic_write(self.status_file, data.encode(), mode=0o644)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to publish status to {self.status_file}: {e}")

    def read(self) -> Optional[StatusSnapshot]:
        """Last published snapshot, or None if nothing readable was published."""
        try:
            with open(self.status_file, "r") as f:
                return StatusSnapshot.from_dict(json.load(f))
        except FileNotFoundError:
            return None
        except (OSError, ValueError, KeyError) as e:
            logger.warning(f"Unreadable status file {self.status_file}: {e}")
            return None
