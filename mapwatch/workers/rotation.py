"""MapWatch — Cold-Tier Rotation.

The cold population is too large to refresh in one cycle, so each cycle
takes the next slice of a stably ordered population and a durable cursor
remembers where to continue. The cursor is saved only after a cycle
finishes: a crash mid-cycle re-processes the same slice, which is harmless
because sample writes are upserts.
"""

import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import List, Sequence, Tuple

from pydantic import ValidationError

from mapwatch.core.logging import get_logger
from mapwatch.models.control_models import RotationCursor

logger = get_logger("workers.rotation")


def next_slice(
    population: Sequence[str],
    cursor: RotationCursor,
    slice_size: int,
    now: datetime,
) -> Tuple[List[str], RotationCursor]:
    """Return the next slice of ``population`` and the cursor to save after it.

    The slice is clamped at the end of the population, never wrapped within
    one call. Reaching the end resets the cursor to 0 and counts one
    completed rotation.
    """
    if slice_size <= 0:
        raise ValueError("slice_size must be positive")

    total = len(population)
    start = cursor.cursor_index
    cycles = cursor.cycles_completed
    if start >= total:
        # Population shrank past the cursor, so the last rotation already ended
        if total:
            cycles += 1
        start = 0

    end = min(start + slice_size, total)
    chunk = list(population[start:end])

    next_index = end
    if total and next_index >= total:
        next_index = 0
        cycles += 1

    return chunk, RotationCursor(
        cursor_index=next_index,
        total_population_size=total,
        last_run_at=now,
        cycles_completed=cycles,
    )


class RotationCheckpoint:
    """File-backed cursor storage. Single writer: the cold collector."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> RotationCursor:
        try:
            return RotationCursor.model_validate_json(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.info(f"No rotation state at {self.path}, starting from 0")
        except (OSError, ValueError, ValidationError) as e:
            logger.error(f"Unreadable rotation state at {self.path}, starting from 0: {e}")
        return RotationCursor()

    def save(self, cursor: RotationCursor) -> bool:
        """Write the cursor atomically. Failures are logged, never raised."""
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", dir=str(self.path.parent)
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(cursor.model_dump_json(indent=2))
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
            return True
        except OSError as e:
            logger.error(
                f"FAILED to persist rotation state to {self.path}: {e}. "
                "Cold-tier coverage will restart from the previous cursor."
            )
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            return False
