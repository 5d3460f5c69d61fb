"""
Tests for CLI commands using typer's CliRunner.

- TestExtractCommand: extract command tests
- TestBuildStoreCommand: build-store command tests
- TestRunCommand: extract + build-store in one call
"""

import pytest
from typer.testing import CliRunner

from osm2bundle import __version__
from osm2bundle.cli import app
from osm2bundle.pipeline.export import read_bundle
from osm2bundle.types import RegionPaths

from conftest import CONFIG_VARS, TEST_VERSION


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def runner(monkeypatch, scratch_dir):
    """CLI runner with a test-local scratch dir and no signal handler changes."""
    for name in CONFIG_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    monkeypatch.setenv("SCRATCH_DIR", str(scratch_dir))
    monkeypatch.setattr("osm2bundle.cli.register_cleanup_handlers", lambda base_dir=None: None)
    monkeypatch.setattr("osm2bundle.cli.setup_logging", lambda *args, **kwargs: None)
    return CliRunner()


class TestExtractCommand:

    def test_extract_split(self, runner, region_input, input_dir, output_dir):
        result = runner.invoke(app, [
            "extract", "test-region",
            "--input-dir", str(input_dir),
            "--output-dir", str(output_dir),
            "--version", TEST_VERSION,
        ])

        assert result.exit_code == 0, result.output
        layout = RegionPaths("test-region", output_dir)
        assert layout.core.exists()
        assert layout.surfaces.exists()
        assert layout.ways.exists()
        assert read_bundle(layout.core)["version"] == TEST_VERSION
        assert "Extracted test-region" in result.output

    def test_extract_single_mode(self, runner, region_input, input_dir, output_dir):
        result = runner.invoke(app, [
            "extract", "test-region", "-i", str(input_dir), "-o", str(output_dir), "--mode", "single",
        ])

        assert result.exit_code == 0, result.output
        layout = RegionPaths("test-region", output_dir)
        assert "roadWays" in read_bundle(layout.core)
        assert not layout.ways.exists()

    def test_extract_with_run_file(self, runner, region_input, input_dir, output_dir, tmp_path):
        run_file = tmp_path / "run.yml"
        run_file.write_text("mode: single\nversion: '2025-06-01'\n")

        result = runner.invoke(app, [
            "extract", "test-region", "-i", str(input_dir), "-o", str(output_dir), "-c", str(run_file),
        ])

        assert result.exit_code == 0, result.output
        assert read_bundle(RegionPaths("test-region", output_dir).core)["version"] == "2025-06-01"

    def test_missing_input_exits_1(self, runner, input_dir, output_dir):
        result = runner.invoke(app, ["extract", "nowhere", "-i", str(input_dir), "-o", str(output_dir)])
        assert result.exit_code == 1

    def test_invalid_run_file_exits_1(self, runner, region_input, input_dir, output_dir, tmp_path):
        run_file = tmp_path / "run.yml"
        run_file.write_text("threads: 4\n")

        result = runner.invoke(app, [
            "extract", "test-region", "-i", str(input_dir), "-o", str(output_dir), "-c", str(run_file),
        ])

        assert result.exit_code == 1

    def test_invalid_mode(self, runner, region_input, input_dir, output_dir):
        result = runner.invoke(app, [
            "extract", "test-region", "-i", str(input_dir), "-o", str(output_dir), "--mode", "tiled",
        ])
        assert result.exit_code != 0


class TestBuildStoreCommand:

    def test_build_store(self, runner, region_input, input_dir, output_dir):
        runner.invoke(app, ["extract", "test-region", "-i", str(input_dir), "-o", str(output_dir)])

        result = runner.invoke(app, ["build-store", "test-region", "-o", str(output_dir)])

        assert result.exit_code == 0, result.output
        layout = RegionPaths("test-region", output_dir)
        assert layout.store_gz.exists()
        assert not layout.store.exists()
        assert "hasSurfaceData=true" in result.output

    def test_missing_core_bundle_exits_1(self, runner, output_dir):
        result = runner.invoke(app, ["build-store", "test-region", "-o", str(output_dir)])
        assert result.exit_code == 1
        assert not RegionPaths("test-region", output_dir).store_gz.exists()


class TestRunCommand:

    def test_run(self, runner, region_input, input_dir, output_dir, scratch_dir):
        result = runner.invoke(app, ["run", "test-region", "-i", str(input_dir), "-o", str(output_dir)])

        assert result.exit_code == 0, result.output
        layout = RegionPaths("test-region", output_dir)
        assert layout.core.exists()
        assert layout.store_gz.exists()
        assert not list(scratch_dir.rglob("*.ndjson"))

    def test_version_command(self, runner):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output
