import logging
from pathlib import Path
from typing import Annotated, Optional

import typer

from .cleanup import cleanup_current_pid, full_cleanup_check, register_cleanup_handlers
from .config.settings import ConfigurationError
from .config_loader import load_run_options
from .domain.enums import BundleMode
from .domain.models import RunOptions
from .pipeline.runner import build_region_store, extract_region
from .types import ExtractResult, LoadResult, PipelineError
from .utils import format_size, setup_logging

app = typer.Typer(help="OSM feature extracts -> regional bundles -> SQLite stores")


RegionArg = Annotated[str, typer.Argument(help="Region identifier, e.g. 'europe-lithuania'")]
InputDirOpt = Annotated[Path, typer.Option("--input-dir", "-i", help="Directory holding {region}.geojsonseq")]
OutputDirOpt = Annotated[Path, typer.Option("--output-dir", "-o", help="Directory for bundles and the store")]
ModeOpt = Annotated[Optional[BundleMode], typer.Option("--mode", "-m", help="Bundle composition: split | single")]
VersionOpt = Annotated[Optional[str], typer.Option("--version", help="Bundle version (defaults to today's UTC date)")]
ConfigOpt = Annotated[Optional[Path], typer.Option("--config", "-c", help="Path to YAML run file")]
VerboseOpt = Annotated[bool, typer.Option("--verbose", "-v", help="Enable detailed logging output")]
LogToFileOpt = Annotated[bool, typer.Option("--log-to-file", help="Create timestamped log files")]
SkipCleanupOpt = Annotated[bool, typer.Option("--skip-cleanup", help="Skip stale scratch cleanup for debugging")]


def prepare_run(
    region: str,
    stage: str,
    config: Optional[Path],
    mode: Optional[BundleMode],
    version: Optional[str],
    verbose: bool,
    log_to_file: bool,
    skip_cleanup: bool,
) -> RunOptions:
    """Configure logging, load run options and prepare the scratch directory."""
    setup_logging(verbose, region, stage, log_to_file)

    try:
        options = load_run_options(config, mode=mode, version=version)
    except ConfigurationError as e:
        logging.error(f"Configuration error: {e}")
        raise typer.Exit(1)

    register_cleanup_handlers(options.scratch_dir)
    full_cleanup_check(base_dir=options.scratch_dir, skip_cleanup=skip_cleanup)
    return options


def report_extract(result: ExtractResult) -> None:
    typer.echo(f"Extracted {result.region_id} (version {result.version})")
    typer.echo(f"   features read: {result.features_read}, lines dropped: {result.lines_dropped}")
    typer.echo(
        f"   trafficCalming={result.traffic_calming} roundabouts={result.roundabouts} "
        f"roadSurfaces={result.road_surfaces} roadWays={result.road_ways}"
    )
    for bundle in result.bundles:
        typer.echo(f"   {bundle} ({format_size(bundle.stat().st_size)})")


def report_store(result: LoadResult) -> None:
    typer.echo(f"Built store {result.store_path} ({format_size(result.compressed_bytes)})")
    typer.echo(
        f"   hasSurfaceData={str(result.has_surface_data).lower()} "
        f"hasWayData={str(result.has_way_data).lower()}"
    )


@app.command("extract")
def extract(
    region: RegionArg,
    input_dir: InputDirOpt,
    output_dir: OutputDirOpt,
    mode: ModeOpt = None,
    version: VersionOpt = None,
    config: ConfigOpt = None,
    verbose: VerboseOpt = False,
    log_to_file: LogToFileOpt = False,
    skip_cleanup: SkipCleanupOpt = False,
):
    """
    Classify a region's feature export into compressed bundles.

    Examples:
        osm2bundle extract europe-lithuania -i extracts -o bundles
        osm2bundle extract europe-lithuania -i extracts -o bundles --mode single
    """
    options = prepare_run(region, "extract", config, mode, version, verbose, log_to_file, skip_cleanup)
    try:
        result = extract_region(region, input_dir, output_dir, options)
    except PipelineError as e:
        logging.error(f"Extraction failed: {e}")
        raise typer.Exit(1)
    finally:
        cleanup_current_pid(options.scratch_dir)
    report_extract(result)


@app.command("build-store")
def build_store(
    region: RegionArg,
    output_dir: OutputDirOpt,
    config: ConfigOpt = None,
    verbose: VerboseOpt = False,
    log_to_file: LogToFileOpt = False,
    skip_cleanup: SkipCleanupOpt = False,
):
    """
    Load a region's bundles into {region}.sqlite.gz.

    Examples:
        osm2bundle build-store europe-lithuania -o bundles
    """
    options = prepare_run(region, "build-store", config, None, None, verbose, log_to_file, skip_cleanup)
    try:
        result = build_region_store(region, output_dir, options)
    except PipelineError as e:
        logging.error(f"Store build failed: {e}")
        raise typer.Exit(1)
    finally:
        cleanup_current_pid(options.scratch_dir)
    report_store(result)


@app.command("run")
def run(
    region: RegionArg,
    input_dir: InputDirOpt,
    output_dir: OutputDirOpt,
    mode: ModeOpt = None,
    version: VersionOpt = None,
    config: ConfigOpt = None,
    verbose: VerboseOpt = False,
    log_to_file: LogToFileOpt = False,
    skip_cleanup: SkipCleanupOpt = False,
):
    """
    Extract bundles and build the store for one region.

    Examples:
        osm2bundle run europe-lithuania -i extracts -o bundles
    """
    options = prepare_run(region, "run", config, mode, version, verbose, log_to_file, skip_cleanup)
    try:
        extracted = extract_region(region, input_dir, output_dir, options)
        loaded = build_region_store(region, output_dir, options)
    except PipelineError as e:
        logging.error(f"Run failed: {e}")
        raise typer.Exit(1)
    finally:
        cleanup_current_pid(options.scratch_dir)
    report_extract(extracted)
    report_store(loaded)


@app.command("version")
def show_version():
    """Display version information."""
    from . import __version__
    typer.echo(f"osm2bundle version: {__version__}")


if __name__ == "__main__":
    app()
