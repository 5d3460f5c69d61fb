"""
BundleComposer - Versioned Compressed Bundle Export

Writes a region's accumulated records into gzip-compressed JSON bundles.
Supports both composition strategies:
- single: one ``{region}.json.gz`` holding every category
- split: a small core bundle plus one heavy bundle per heavy category

Heavy arrays are forwarded from their scratch sinks chunk by chunk, so the
uncompressed document never exists in memory. Output is byte-stable: the
gzip header carries no file name or timestamp.
"""

import gzip
import json
import logging
import os
from pathlib import Path
from typing import Any

from ..domain.enums import BundleMode, Category
from ..types import BundleWriteError, RegionPaths
from ..utils import ensure_directory, format_size, remove_file
from .accumulate import StreamingAccumulator
from .jsonstream import JsonStreamWriter

logger = logging.getLogger(__name__)

CORE_CATEGORIES = (Category.TRAFFIC_CALMING, Category.ROUNDABOUTS)
HEAVY_CATEGORIES = (Category.ROAD_SURFACES, Category.ROAD_WAYS)
PARTIAL_SUFFIX = ".partial"


class BundleComposer:
    """
    Compose one region's bundle files.

    All bundles written in a run share ``version``. A bundle is first written
    to a ``.partial`` file and renamed into place once complete; if any
    bundle fails, every file produced by the run is removed.
    """

    def __init__(
        self,
        region_id: str,
        output_dir: Path,
        version: str,
        mode: BundleMode = BundleMode.SPLIT,
        compression_level: int = 9,
    ):
        self.region_id = region_id
        self.paths = RegionPaths(region_id, Path(output_dir))
        self.version = version
        self.mode = BundleMode(mode)
        self.compression_level = compression_level

    def plan(self) -> list[tuple[Path, tuple[Category, ...]]]:
        """Target files and the category arrays each one carries."""
        if self.mode == BundleMode.SINGLE:
            return [(self.paths.core, CORE_CATEGORIES + HEAVY_CATEGORIES)]
        return [
            (self.paths.core, CORE_CATEGORIES),
            (self.paths.surfaces, (Category.ROAD_SURFACES,)),
            (self.paths.ways, (Category.ROAD_WAYS,)),
        ]

    def compose(self, accumulator: StreamingAccumulator) -> list[Path]:
        """
        Write every bundle for the region.

        Returns:
            Paths of the written bundles, core first

        Raises:
            BundleWriteError: If a bundle cannot be written
            SinkWriteError: If a scratch sink cannot be read back
        """
        ensure_directory(self.paths.output_dir)
        self._remove_stale_outputs()

        written: list[Path] = []
        try:
            for target, categories in self.plan():
                self._write_bundle(target, categories, accumulator)
                written.append(target)
        except BaseException:
            for path in written:
                remove_file(path)
            raise
        return written

    def _remove_stale_outputs(self) -> None:
        # Outputs of an earlier run in either mode
        for path in (self.paths.core, self.paths.surfaces, self.paths.ways):
            if remove_file(path):
                logger.debug(f"Removed previous bundle {path.name}")

    def _write_bundle(
        self,
        target: Path,
        categories: tuple[Category, ...],
        accumulator: StreamingAccumulator,
    ) -> None:
        partial = target.with_name(target.name + PARTIAL_SUFFIX)
        try:
            with open(partial, "wb") as raw:
                with gzip.GzipFile(
                    filename="", mode="wb", fileobj=raw,
                    compresslevel=self.compression_level, mtime=0,
                ) as gz:
                    writer = JsonStreamWriter(gz)
                    writer.begin_object()
                    writer.field("version", self.version)
                    writer.field("region", self.region_id)
                    for category in categories:
                        writer.key(category.value)
                        writer.begin_array()
                        if category.is_heavy:
                            sink = accumulator.sink(category)
                            writer.forward(sink.iter_chunks(), sink.count)
                        else:
                            for record in accumulator.records(category):
                                writer.value(record.to_bundle())
                        writer.end_array()
                    writer.end_object()
            os.replace(partial, target)
        except OSError as e:
            remove_file(partial)
            raise BundleWriteError(self.region_id, f"Failed to write bundle {target.name}", e) from e
        except BaseException:
            remove_file(partial)
            raise

        counts = ", ".join(f"{c.value}={accumulator.count(c)}" for c in categories)
        logger.info(f"Wrote {target.name} ({format_size(target.stat().st_size)}; {counts})")


def read_bundle(path: Path) -> dict[str, Any]:
    """Decompress and parse a whole bundle. Intended for small bundles and tests."""
    with gzip.open(path, "rt", encoding="utf-8") as fh:
        return json.load(fh)
