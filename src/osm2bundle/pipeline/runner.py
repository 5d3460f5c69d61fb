"""
Region runner: Source -> Classify -> Accumulate -> Compose, then Load.

Each function processes exactly one region and either completes or raises a
PipelineError naming the region, with every intermediate file removed.
Running several regions is left to the caller.
"""

import logging
import time
from pathlib import Path
from typing import Optional

from ..domain.enums import Category
from ..domain.models import RunOptions
from ..types import ExtractResult, LoadResult
from ..utils import timer
from .accumulate import StreamingAccumulator
from .export import BundleComposer
from .source import FeatureSource
from .store import RelationalLoader
from .transform import FeatureClassifier

logger = logging.getLogger(__name__)


def extract_region(
    region_id: str,
    input_dir: Path,
    output_dir: Path,
    options: Optional[RunOptions] = None,
    classifier: Optional[FeatureClassifier] = None,
) -> ExtractResult:
    """
    Classify a region's feature stream and write its bundles.

    Args:
        region_id: Region identifier, also the input file stem
        input_dir: Directory holding ``{region_id}.geojsonseq`` (or .ndjson/.json)
        output_dir: Directory receiving the bundle files
        options: Run options (defaults apply when None)
        classifier: Classifier to use instead of the default rule table

    Returns:
        ExtractResult with per-category counts and written bundle paths
    """
    options = options or RunOptions()
    classifier = classifier or FeatureClassifier()
    start_time = time.time()

    source = FeatureSource.for_region(region_id, Path(input_dir))
    logger.info(f"Extracting {region_id} from {source.path.name} (mode={options.mode.value}, version={options.version})")

    composer = BundleComposer(
        region_id,
        Path(output_dir),
        version=options.version,
        mode=options.mode,
        compression_level=options.compression_level,
    )

    with StreamingAccumulator(region_id, scratch_dir=options.scratch_dir) as accumulator:
        accumulator.consume(classifier.classify_all(source))
        bundles = composer.compose(accumulator)
        counts = {category: accumulator.count(category) for category in Category}
        road_length_m = accumulator.road_length_m

    if classifier.rejected:
        logger.info(f"{classifier.rejected} classified records rejected for invalid geometry")

    duration = time.time() - start_time
    logger.info(f"Extraction of {region_id} completed in {duration:.2f} seconds")

    return ExtractResult(
        region_id=region_id,
        version=options.version,
        bundles=tuple(bundles),
        traffic_calming=counts[Category.TRAFFIC_CALMING],
        roundabouts=counts[Category.ROUNDABOUTS],
        road_surfaces=counts[Category.ROAD_SURFACES],
        road_ways=counts[Category.ROAD_WAYS],
        features_read=source.features_read,
        lines_dropped=source.lines_dropped,
        road_length_m=road_length_m,
        duration_s=duration,
    )


def build_region_store(
    region_id: str,
    output_dir: Path,
    options: Optional[RunOptions] = None,
    created_at: Optional[str] = None,
) -> LoadResult:
    """Build ``{region_id}.sqlite.gz`` from the bundles in ``output_dir``."""
    loader = RelationalLoader(region_id, Path(output_dir), options=options, created_at=created_at)
    return loader.build()


@timer
def run_region(
    region_id: str,
    input_dir: Path,
    output_dir: Path,
    options: Optional[RunOptions] = None,
) -> tuple[ExtractResult, LoadResult]:
    """Extract a region's bundles, then build its store from them."""
    options = options or RunOptions()
    extracted = extract_region(region_id, input_dir, output_dir, options)
    loaded = build_region_store(region_id, output_dir, options)
    return extracted, loaded
