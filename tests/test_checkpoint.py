from pathlib import Path

import pytest

from tradecollector.core.errors import ConfigError
from tradecollector.storage.checkpoint import CheckpointStore


def test_missing_checkpoint_loads_none(tmp_path: Path) -> None:
    store = CheckpointStore(tmp_path / "cp.json")
    assert store.load() is None
    assert store.last_exported_block is None


def test_advance_persists(tmp_path: Path) -> None:
    path = tmp_path / "state" / "cp.json"
    assert CheckpointStore(path).advance(1_999) is True

    cp = CheckpointStore(path).load()
    assert cp is not None
    assert cp.last_exported_block == 1_999
    assert cp.updated_at > 0
    assert not (tmp_path / "state" / "cp.json.tmp").exists()


def test_advance_is_monotonic(tmp_path: Path) -> None:
    store = CheckpointStore(tmp_path / "cp.json")
    store.advance(100)

    assert store.advance(50) is False
    assert store.advance(100) is False
    assert store.last_exported_block == 100
    assert CheckpointStore(tmp_path / "cp.json").last_exported_block == 100

    assert store.advance(101) is True
    assert store.last_exported_block == 101


def test_corrupt_checkpoint_is_config_error(tmp_path: Path) -> None:
    path = tmp_path / "cp.json"
    path.write_text("{not json")
    with pytest.raises(ConfigError):
        CheckpointStore(path).load()
