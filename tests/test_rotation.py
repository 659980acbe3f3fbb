"""Tests for cold-tier rotation slicing and the checkpoint file."""

from datetime import datetime, timezone

import pytest

from mapwatch.models.control_models import RotationCursor
from mapwatch.workers.rotation import RotationCheckpoint, next_slice

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
POPULATION = [f"m{i:03d}" for i in range(100)]


def test_first_slice_starts_at_zero():
    chunk, cursor = next_slice(POPULATION, RotationCursor(), 40, NOW)
    assert chunk == POPULATION[:40]
    assert cursor.cursor_index == 40
    assert cursor.total_population_size == 100
    assert cursor.cycles_completed == 0
    assert cursor.last_run_at == NOW


def test_last_slice_is_clamped_and_wraps():
    chunk, cursor = next_slice(POPULATION, RotationCursor(cursor_index=80), 40, NOW)
    assert chunk == POPULATION[80:]
    assert cursor.cursor_index == 0
    assert cursor.cycles_completed == 1


def test_full_rotation_visits_everything_once():
    cursor = RotationCursor()
    seen = []
    for _ in range(3):
        chunk, cursor = next_slice(POPULATION, cursor, 40, NOW)
        seen.extend(chunk)
    assert seen == POPULATION
    assert cursor.cursor_index == 0
    assert cursor.cycles_completed == 1


def test_cursor_past_end_resets():
    chunk, cursor = next_slice(POPULATION[:10], RotationCursor(cursor_index=50), 4, NOW)
    assert chunk == POPULATION[:4]
    assert cursor.cursor_index == 4
    assert cursor.cycles_completed == 1


def test_cursor_exactly_at_end_counts_rotation():
    chunk, cursor = next_slice(POPULATION[:4], RotationCursor(cursor_index=4, cycles_completed=2), 2, NOW)
    assert chunk == POPULATION[:2]
    assert cursor.cursor_index == 2
    assert cursor.cycles_completed == 3


def test_cursor_past_end_of_empty_population_does_not_count():
    chunk, cursor = next_slice([], RotationCursor(cursor_index=7), 2, NOW)
    assert chunk == []
    assert cursor.cursor_index == 0
    assert cursor.cycles_completed == 0


def test_empty_population():
    chunk, cursor = next_slice([], RotationCursor(), 10, NOW)
    assert chunk == []
    assert cursor.cursor_index == 0
    assert cursor.cycles_completed == 0


def test_slice_size_must_be_positive():
    with pytest.raises(ValueError):
        next_slice(POPULATION, RotationCursor(), 0, NOW)


def test_checkpoint_missing_file_starts_fresh(tmp_path):
    checkpoint = RotationCheckpoint(tmp_path / "state.json")
    assert checkpoint.load() == RotationCursor()


def test_checkpoint_round_trip(tmp_path):
    checkpoint = RotationCheckpoint(tmp_path / "nested" / "state.json")
    cursor = RotationCursor(
        cursor_index=25000, total_population_size=60000, last_run_at=NOW, cycles_completed=3
    )
    assert checkpoint.save(cursor) is True
    assert checkpoint.load() == cursor
    # No temp files left behind
    assert [p.name for p in (tmp_path / "nested").iterdir()] == ["state.json"]


def test_checkpoint_corrupt_file_starts_fresh(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{not json", encoding="utf-8")
    assert RotationCheckpoint(path).load() == RotationCursor()


def test_checkpoint_save_failure_returns_false(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("a file, not a directory", encoding="utf-8")
    checkpoint = RotationCheckpoint(blocker / "state.json")
    assert checkpoint.save(RotationCursor(cursor_index=5)) is False
