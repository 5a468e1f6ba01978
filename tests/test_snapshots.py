"""Tests for the snapshot store."""

import threading

import pytest
import yaml

from mqprobe.snapshots import (
    UPDATE_ENV_VAR,
    SnapshotMismatchError,
    SnapshotStore,
    update_mode_from_env,
)

MAIN_COMMITS = ["Make feature 1", "Merge pull request #1"]


@pytest.fixture
def snapshot_file(tmp_path):
    """Fixture providing a snapshot file with one recorded scenario."""
    path = tmp_path / "__snapshots__" / "test_merge_queue.yaml"
    path.parent.mkdir()
    path.write_text(
        yaml.safe_dump(
            {
                "scenario a pr1": {"is_merged": True, "merged_at": 0},
                "scenario a main_commits": MAIN_COMMITS,
            }
        )
    )
    return path


@pytest.mark.unit
class TestUpdateMode:
    """Tests for update_mode_from_env."""

    @pytest.mark.parametrize("value", ["1", "true", "YES"])
    def test_enabled(self, monkeypatch, value):
        """Test truthy values enable update mode."""
        monkeypatch.setenv(UPDATE_ENV_VAR, value)
        assert update_mode_from_env() is True

    @pytest.mark.parametrize("value", ["", "0", "no"])
    def test_disabled(self, monkeypatch, value):
        """Test other values leave update mode off."""
        monkeypatch.setenv(UPDATE_ENV_VAR, value)
        assert update_mode_from_env() is False

    def test_store_defaults_to_env(self, monkeypatch, tmp_path):
        """Test the store reads update mode from the environment when not given."""
        monkeypatch.setenv(UPDATE_ENV_VAR, "1")
        assert SnapshotStore(tmp_path / "s.yaml").update is True


@pytest.mark.unit
class TestSnapshotStore:
    """Tests for SnapshotStore."""

    def test_missing_file_is_empty(self, tmp_path):
        """Test a store without a file has no snapshots and creates none on open."""
        path = tmp_path / "none.yaml"
        store = SnapshotStore(path, update=False)

        assert not path.exists()
        store.assert_match("anything", 1)
        assert yaml.safe_load(path.read_text()) == {"anything": 1}

    def test_empty_file_is_empty(self, tmp_path):
        """Test an empty file loads as no snapshots."""
        path = tmp_path / "empty.yaml"
        path.write_text("")

        SnapshotStore(path, update=False).assert_match("x", [1])

        assert yaml.safe_load(path.read_text()) == {"x": [1]}

    def test_non_mapping_rejected(self, tmp_path):
        """Test a file holding a list is an error."""
        path = tmp_path / "bad.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ValueError, match="mapping"):
            SnapshotStore(path, update=False)

    def test_matching_value_passes(self, snapshot_file):
        """Test an equal value passes and the file is left unchanged."""
        before = snapshot_file.read_text()
        store = SnapshotStore(snapshot_file, update=False)

        store.assert_match("scenario a main_commits", list(MAIN_COMMITS))

        assert snapshot_file.read_text() == before

    def test_mismatch_raises(self, snapshot_file):
        """Test a different value raises with both values."""
        store = SnapshotStore(snapshot_file, update=False)

        with pytest.raises(SnapshotMismatchError) as exc_info:
            store.assert_match("scenario a pr1", {"is_merged": False})

        error = exc_info.value
        assert isinstance(error, AssertionError)
        assert error.key == "scenario a pr1"
        assert error.expected == {"is_merged": True, "merged_at": 0}
        assert error.actual == {"is_merged": False}
        assert UPDATE_ENV_VAR in str(error)

    def test_mismatch_overwritten_in_update_mode(self, snapshot_file):
        """Test update mode re-records mismatching values."""
        store = SnapshotStore(snapshot_file, update=True)

        store.assert_match("scenario a pr1", {"is_merged": False})

        recorded = yaml.safe_load(snapshot_file.read_text())
        assert recorded["scenario a pr1"] == {"is_merged": False}
        assert recorded["scenario a main_commits"] == MAIN_COMMITS

    def test_new_key_recorded(self, snapshot_file):
        """Test unseen keys are recorded and persisted."""
        store = SnapshotStore(snapshot_file, update=False)

        store.assert_match("scenario b pr2", {"is_merged": False})

        recorded = yaml.safe_load(snapshot_file.read_text())
        assert recorded["scenario b pr2"] == {"is_merged": False}
        SnapshotStore(snapshot_file, update=False).assert_match(
            "scenario b pr2", {"is_merged": False}
        )

    def test_save_creates_parent_directory(self, tmp_path):
        """Test saving creates the snapshot directory."""
        path = tmp_path / "nested" / "__snapshots__" / "s.yaml"
        store = SnapshotStore(path, update=False)

        store.assert_match("key", [1, 2])

        assert yaml.safe_load(path.read_text()) == {"key": [1, 2]}

    def test_concurrent_recording(self, tmp_path):
        """Test scenarios recording concurrently all end up in the file."""
        path = tmp_path / "s.yaml"
        store = SnapshotStore(path, update=False)

        def record(i):
            store.assert_match(f"scenario {i}", {"is_merged": i % 2 == 0})

        threads = [threading.Thread(target=record, args=(i,)) for i in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        recorded = yaml.safe_load(path.read_text())
        assert len(recorded) == 10
        assert recorded["scenario 4"] == {"is_merged": True}
