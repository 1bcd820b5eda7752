from __future__ import annotations

import logging
import os
import time
from pathlib import Path

from tradecollector.core.errors import ConfigError, ExportError
from tradecollector.core.models import Checkpoint

log = logging.getLogger(__name__)


class CheckpointStore:
    """Durable, monotonic checkpoint kept in a small JSON file.

    Every advance rewrites the file atomically (tmp + fsync + replace), so a
    crash leaves either the previous or the new checkpoint, never a torn one.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._current: Checkpoint | None = None
        self._loaded = False

    def load(self) -> Checkpoint | None:
        """Read the checkpoint from disk; None when no run has exported yet."""
        if not self.path.exists():
            self._current = None
        else:
            try:
                self._current = Checkpoint.from_json(self.path.read_text())
            except (OSError, ValueError, KeyError, TypeError) as e:
                raise ConfigError(f"unreadable checkpoint {self.path}: {e}") from e
        self._loaded = True
        return self._current

    @property
    def last_exported_block(self) -> int | None:
        if not self._loaded:
            self.load()
        return self._current.last_exported_block if self._current else None

    def advance(self, block_number: int) -> bool:
        """Persist `block_number` if it is above the current checkpoint.

        Returns True when the checkpoint moved.
        """
        current = self.last_exported_block
        if current is not None and block_number <= current:
            return False
        cp = Checkpoint(last_exported_block=block_number, updated_at=time.time())
        self._atomic_write(cp)
        self._current = cp
        log.debug("checkpoint → %d", block_number)
        return True

    def _atomic_write(self, cp: Checkpoint) -> None:
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w") as f:
                f.write(cp.to_json())
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except OSError as e:
            raise ExportError(f"cannot write checkpoint {self.path}: {e}") from e
