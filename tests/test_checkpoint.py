"""Tests for warden.checkpoint module."""

import json
import stat
from pathlib import Path
from unittest.mock import patch

import pytest

from warden.checkpoint import (
    BEFORE_RISKY_OPERATION,
    MANUAL,
    CheckpointData,
    FileCheckpointStore,
    get_checkpoints_dir,
)
from warden.errors import Err, WardenError
from warden.git import GitContext


@pytest.fixture
def store(tmp_path: Path):
    """A store rooted in a temporary project."""
    return FileCheckpointStore(tmp_path)


def _write_record(directory: Path, checkpoint_id: str, created_at: str, **overrides) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    data = {
        "id": checkpoint_id,
        "name": f"cp-{checkpoint_id}",
        "created_at": created_at,
        "reason": MANUAL,
        "token_usage": None,
        "files_changed": [],
        "metadata": {},
        "summary": "",
    }
    data.update(overrides)
    path = directory / f"{checkpoint_id}.json"
    path.write_text(json.dumps(data))
    return path


class TestCreate:
    """Tests for FileCheckpointStore.create()."""

    def test_writes_json_record(self, store, tmp_path: Path):
        info = store.create(
            reason=BEFORE_RISKY_OPERATION,
            name="risk-high-git",
            metadata={"risk_level": "HIGH"},
            files_changed=["src/b.py", "src/a.py"],
            summary="Before git operation",
        )

        path = tmp_path / ".warden" / "checkpoints" / f"{info.id}.json"
        assert path.exists()

        data = json.loads(path.read_text())
        assert set(data) == {
            "id",
            "name",
            "created_at",
            "reason",
            "token_usage",
            "files_changed",
            "metadata",
            "summary",
        }
        assert data["name"] == "risk-high-git"
        assert data["reason"] == BEFORE_RISKY_OPERATION
        assert data["files_changed"] == ["src/a.py", "src/b.py"]
        assert data["metadata"] == {"risk_level": "HIGH"}
        assert data["summary"] == "Before git operation"

    def test_returns_info(self, store):
        info = store.create(reason=MANUAL, name="manual-save")
        assert info.name == "manual-save"
        assert info.reason == MANUAL
        assert info.size > 0
        assert info.created_at

    def test_ids_are_unique(self, store):
        first = store.create(reason=MANUAL)
        second = store.create(reason=MANUAL)
        assert first.id != second.id

    def test_default_name(self, store):
        info = store.create(reason=MANUAL)
        assert info.name.startswith("checkpoint-")

    def test_file_permissions(self, store, tmp_path: Path):
        info = store.create(reason=MANUAL)
        path = get_checkpoints_dir(tmp_path) / f"{info.id}.json"
        mode = path.stat().st_mode
        assert mode & stat.S_IRWXG == 0
        assert mode & stat.S_IRWXO == 0

    def test_unknown_reason_rejected(self, store):
        with pytest.raises(ValueError):
            store.create(reason="because")

    def test_records_token_usage(self, tmp_path: Path):
        store = FileCheckpointStore(tmp_path, token_usage=lambda: 12345)
        info = store.create(reason=MANUAL)
        assert info.token_usage == 12345
        assert store.load(info.id).token_usage == 12345

    def test_write_failure_raises_oserror(self, store):
        failure = Err(WardenError(code="ATOMIC_WRITE_FAILED", message="disk full"))
        with patch("warden.checkpoint.atomic_write_json", return_value=failure):
            with pytest.raises(OSError, match="disk full"):
                store.create(reason=MANUAL)

    def test_capture_git_merges_uncommitted_files(self, tmp_path: Path):
        store = FileCheckpointStore(tmp_path, capture_git=True)
        with (
            patch("warden.checkpoint.get_uncommitted_files", return_value=("b.py", "c.py")),
            patch(
                "warden.checkpoint.capture_git_context",
                return_value=GitContext(branch="main", commit="abc1234", dirty=True),
            ),
        ):
            info = store.create(reason=MANUAL, files_changed=["a.py", "b.py"])

        data = store.load(info.id)
        assert data.files_changed == ("a.py", "b.py", "c.py")
        assert data.metadata["git"] == {"branch": "main", "commit": "abc1234", "dirty": True}

    def test_capture_git_outside_repo(self, tmp_path: Path):
        store = FileCheckpointStore(tmp_path, capture_git=True)
        with (
            patch("warden.checkpoint.get_uncommitted_files", return_value=()),
            patch("warden.checkpoint.capture_git_context", return_value=None),
        ):
            info = store.create(reason=MANUAL, files_changed=["a.py"])

        data = store.load(info.id)
        assert data.files_changed == ("a.py",)
        assert "git" not in data.metadata


class TestLoad:
    """Tests for FileCheckpointStore.load()."""

    def test_load_created(self, store):
        info = store.create(reason=MANUAL, name="x", files_changed=["a.py"], summary="s")
        data = store.load(info.id)
        assert data.id == info.id
        assert data.name == "x"
        assert data.files_changed == ("a.py",)
        assert data.summary == "s"

    def test_load_nonexistent_returns_none(self, store):
        assert store.load("does-not-exist") is None

    def test_load_by_prefix(self, store):
        info = store.create(reason=MANUAL)
        data = store.load(info.id[:8])
        assert data is not None
        assert data.id == info.id

    def test_ambiguous_prefix_returns_none(self, store, tmp_path: Path):
        directory = get_checkpoints_dir(tmp_path)
        _write_record(directory, "abc-1", "2026-01-01T00:00:00+00:00")
        _write_record(directory, "abc-2", "2026-01-02T00:00:00+00:00")
        assert store.load("abc") is None

    @pytest.mark.parametrize("bad_id", ["../secrets", "a/b", "", "*"])
    def test_rejects_unsafe_ids(self, store, bad_id):
        assert store.load(bad_id) is None

    def test_malformed_json_returns_none(self, store, tmp_path: Path):
        directory = get_checkpoints_dir(tmp_path)
        directory.mkdir(parents=True)
        (directory / "broken.json").write_text("{not json")
        assert store.load("broken") is None

    def test_missing_keys_returns_none(self, store, tmp_path: Path):
        directory = get_checkpoints_dir(tmp_path)
        directory.mkdir(parents=True)
        (directory / "partial.json").write_text(json.dumps({"id": "partial"}))
        assert store.load("partial") is None


class TestListCheckpoints:
    """Tests for FileCheckpointStore.list_checkpoints()."""

    def test_empty_when_no_directory(self, store):
        assert store.list_checkpoints() == []

    def test_most_recent_first(self, store, tmp_path: Path):
        directory = get_checkpoints_dir(tmp_path)
        _write_record(directory, "old", "2026-01-01T00:00:00+00:00")
        _write_record(directory, "new", "2026-03-01T00:00:00+00:00")
        _write_record(directory, "mid", "2026-02-01T00:00:00+00:00")

        ids = [info.id for info in store.list_checkpoints()]
        assert ids == ["new", "mid", "old"]

    def test_respects_limit(self, store, tmp_path: Path):
        directory = get_checkpoints_dir(tmp_path)
        for day in range(1, 6):
            _write_record(directory, f"cp{day}", f"2026-01-0{day}T00:00:00+00:00")

        infos = store.list_checkpoints(limit=2)
        assert [info.id for info in infos] == ["cp5", "cp4"]

    def test_skips_malformed(self, store, tmp_path: Path):
        directory = get_checkpoints_dir(tmp_path)
        _write_record(directory, "good", "2026-01-01T00:00:00+00:00")
        (directory / "bad.json").write_text("[]")

        assert [info.id for info in store.list_checkpoints()] == ["good"]


class TestCheckpointData:
    def test_from_dict_defaults(self):
        data = CheckpointData.from_dict(
            {"id": "x", "name": "n", "created_at": "2026-01-01T00:00:00+00:00", "reason": MANUAL}
        )
        assert data.files_changed == ()
        assert data.metadata == {}
        assert data.summary == ""
        assert data.token_usage is None

    def test_from_dict_rejects_non_list_files(self):
        with pytest.raises(TypeError):
            CheckpointData.from_dict(
                {
                    "id": "x",
                    "name": "n",
                    "created_at": "t",
                    "reason": MANUAL,
                    "files_changed": "a.py",
                }
            )

    def test_is_frozen(self):
        data = CheckpointData(id="x", name="n", created_at="t", reason=MANUAL)
        with pytest.raises(AttributeError):
            data.name = "other"
