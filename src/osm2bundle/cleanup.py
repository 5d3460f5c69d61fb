"""Scratch file management for region pipeline runs."""

from __future__ import annotations

import logging
import os
import shutil
import signal
import tempfile
import time
from pathlib import Path
from typing import Optional


def get_scratch_root() -> Path:
    """Get the shared scratch directory for all pipeline processes."""
    return Path(tempfile.gettempdir()) / "osm2bundle"


def get_pid_temp_dir(base_dir: Optional[Path] = None) -> Path:
    """Get process-isolated scratch directory for current PID."""
    root = Path(base_dir) if base_dir else get_scratch_root()
    pid_dir = root / f"pid_{os.getpid()}"
    pid_dir.mkdir(parents=True, exist_ok=True)
    return pid_dir


def region_scratch_path(region_id: str, category: str, base_dir: Optional[Path] = None) -> Path:
    """
    Scratch spill path for one region and category.

    Keyed by region id inside a PID directory, so concurrent processes
    handling different regions never share a file.
    """
    return get_pid_temp_dir(base_dir) / f"{region_id}-{category}.ndjson"


def cleanup_stale_files(retention_hours: int = 24, base_dir: Optional[Path] = None) -> int:
    """
    Remove scratch files older than retention period.

    Args:
        retention_hours: Files older than this will be removed
        base_dir: Scratch root (defaults to the shared scratch directory)

    Returns:
        Number of files cleaned up
    """
    temp_dir = Path(base_dir) if base_dir else get_scratch_root()
    if not temp_dir.exists():
        return 0

    cutoff_time = time.time() - (retention_hours * 3600)
    cleaned_count = 0

    for item in temp_dir.rglob("*"):
        if item.is_file():
            try:
                if item.stat().st_mtime < cutoff_time:
                    item.unlink()
                    cleaned_count += 1
                    logging.debug(f"Cleaned stale scratch file: {item}")
            except OSError as e:
                logging.warning(f"Could not remove stale file {item}: {e}")

    # Remove empty PID directories
    for pid_dir in temp_dir.glob("pid_*"):
        if pid_dir.is_dir() and not any(pid_dir.iterdir()):
            try:
                pid_dir.rmdir()
                logging.debug(f"Removed empty PID directory: {pid_dir}")
            except OSError:
                logging.debug(f"PID directory in use, keeping: {pid_dir}")

    if cleaned_count > 0:
        logging.info(f"Cleaned up {cleaned_count} stale scratch files (>{retention_hours}h)")

    return cleaned_count


def cleanup_current_pid(base_dir: Optional[Path] = None) -> None:
    """Clean up scratch files for current process."""
    root = Path(base_dir) if base_dir else get_scratch_root()
    pid_dir = root / f"pid_{os.getpid()}"
    if pid_dir.exists():
        try:
            shutil.rmtree(pid_dir)
            logging.debug(f"Cleaned up PID scratch directory: {pid_dir}")
        except OSError as e:
            logging.warning(f"Could not clean PID scratch directory {pid_dir}: {e}")


def register_cleanup_handlers(base_dir: Optional[Path] = None) -> None:
    """Register signal handlers for graceful cleanup on interruption."""
    def signal_handler(signum: int, frame) -> None:
        logging.info(f"Received signal {signum}, cleaning up scratch files...")
        cleanup_current_pid(base_dir)
        raise SystemExit(1)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)


def full_cleanup_check(
    retention_hours: Optional[int] = None,
    base_dir: Optional[Path] = None,
    skip_cleanup: bool = False
) -> None:
    """
    Perform scratch directory housekeeping before a run.

    Args:
        retention_hours: Files older than this will be removed (uses config default if None)
        base_dir: Scratch root (uses config default if None)
        skip_cleanup: Skip the cleanup (for debugging)
    """
    if retention_hours is None or base_dir is None:
        from .config import Config
        temp_settings = Config().get_temp_settings()
        if retention_hours is None:
            retention_hours = temp_settings['retention_hours']
        if base_dir is None and temp_settings['scratch_dir']:
            base_dir = Path(temp_settings['scratch_dir'])

    if not skip_cleanup:
        cleanup_stale_files(retention_hours, base_dir)
