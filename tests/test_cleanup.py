"""Tests for scratch directory management."""

import os
import time

from osm2bundle.cleanup import (
    cleanup_current_pid,
    cleanup_stale_files,
    full_cleanup_check,
    get_pid_temp_dir,
    region_scratch_path,
)


class TestScratchPaths:

    def test_pid_dir(self, scratch_dir):
        pid_dir = get_pid_temp_dir(scratch_dir)
        assert pid_dir == scratch_dir / f"pid_{os.getpid()}"
        assert pid_dir.is_dir()

    def test_region_scratch_path(self, scratch_dir):
        path = region_scratch_path("europe-lithuania", "ways", scratch_dir)
        assert path.parent == get_pid_temp_dir(scratch_dir)
        assert path.name == "europe-lithuania-ways.ndjson"

    def test_different_regions_never_share_a_path(self, scratch_dir):
        a = region_scratch_path("a", "surfaces", scratch_dir)
        b = region_scratch_path("b", "surfaces", scratch_dir)
        assert a != b


class TestCleanup:
    """Tests for stale and per-process cleanup."""

    def _make_file(self, directory, name, age_hours):
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        path.write_text("x")
        mtime = time.time() - age_hours * 3600
        os.utime(path, (mtime, mtime))
        return path

    def test_stale_files_removed(self, scratch_dir):
        old = self._make_file(scratch_dir / "pid_1", "old.ndjson", age_hours=48)
        fresh = self._make_file(scratch_dir / "pid_2", "fresh.ndjson", age_hours=1)

        removed = cleanup_stale_files(retention_hours=24, base_dir=scratch_dir)

        assert removed == 1
        assert not old.exists()
        assert fresh.exists()
        assert not (scratch_dir / "pid_1").exists()

    def test_missing_root(self, tmp_path):
        assert cleanup_stale_files(24, tmp_path / "nothing") == 0

    def test_cleanup_current_pid(self, scratch_dir):
        path = region_scratch_path("r", "ways", scratch_dir)
        path.write_text("x")

        cleanup_current_pid(scratch_dir)

        assert not path.parent.exists()

    def test_full_cleanup_check_skip(self, scratch_dir):
        old = self._make_file(scratch_dir / "pid_1", "old.ndjson", age_hours=48)
        full_cleanup_check(retention_hours=24, base_dir=scratch_dir, skip_cleanup=True)
        assert old.exists()

    def test_full_cleanup_check(self, scratch_dir):
        old = self._make_file(scratch_dir / "pid_1", "old.ndjson", age_hours=48)
        full_cleanup_check(retention_hours=24, base_dir=scratch_dir)
        assert not old.exists()
