"""Recorded expectations for scenario outcomes.

Outcomes of the platform are compared to values recorded on an earlier run.
A snapshot file is a YAML mapping from snapshot key to the recorded value.
Keys never seen before are recorded on first use; with update mode on,
mismatching values are overwritten instead of failing.
"""

import os
import threading
from pathlib import Path
from typing import Any

import yaml

from mqprobe.logger import get_logger

logger = get_logger(__name__)

UPDATE_ENV_VAR = "MQPROBE_UPDATE_SNAPSHOTS"


class SnapshotMismatchError(AssertionError):
    """Raised when an observed value differs from the recorded one."""

    def __init__(self, key: str, expected: Any, actual: Any):
        super().__init__(
            f"Snapshot '{key}' does not match\n"
            f"  recorded: {expected!r}\n"
            f"  observed: {actual!r}\n"
            f"Set {UPDATE_ENV_VAR}=1 to re-record."
        )
        self.key = key
        self.expected = expected
        self.actual = actual


def update_mode_from_env() -> bool:
    return os.environ.get(UPDATE_ENV_VAR, "").lower() in ("1", "true", "yes")


class SnapshotStore:
    """A YAML snapshot file shared by the scenarios of one test module.

    Thread-safe: concurrently running scenarios may assert and record
    against the same store.
    """

    def __init__(self, path: Path, update: bool | None = None):
        """Open (or prepare to create) a snapshot file.

        Args:
            path: YAML file holding the snapshots
            update: Overwrite mismatching snapshots; defaults to the
                MQPROBE_UPDATE_SNAPSHOTS environment variable
        """
        self.path = path
        self.update = update_mode_from_env() if update is None else update
        self._lock = threading.Lock()
        self._data: dict[str, Any] = self._load()

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        with open(self.path) as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"Snapshot file {self.path} must contain a mapping")
        return data

    def assert_match(self, key: str, value: Any) -> None:
        """Compare a value to its snapshot, recording it when new.

        Raises:
            SnapshotMismatchError: If the recorded value differs and update
                mode is off
        """
        with self._lock:
            if key not in self._data:
                logger.info(f"Recording new snapshot '{key}'")
                self._data[key] = value
                self._save_locked()
                return

            expected = self._data[key]
            if expected == value:
                return

            if self.update:
                logger.info(f"Updating snapshot '{key}'")
                self._data[key] = value
                self._save_locked()
                return

        raise SnapshotMismatchError(key, expected, value)

    def _save_locked(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            yaml.safe_dump(self._data, f, sort_keys=True, default_flow_style=False)
