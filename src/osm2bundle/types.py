"""
Type definitions for the osm2bundle extraction and store-build stages.

This module provides the result objects returned by each stage and the
exception hierarchy used to abort a region's processing.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class RegionPaths:
    """File layout for one region's outputs.

    Heavy bundle names are derived from the region id with a fixed suffix,
    so every consumer can locate them without a manifest.
    """
    region_id: str
    output_dir: Path

    CORE_SUFFIX = ".json.gz"
    SURFACES_SUFFIX = "-surfaces.json.gz"
    WAYS_SUFFIX = "-ways.json.gz"

    @property
    def core(self) -> Path:
        return self.output_dir / f"{self.region_id}{self.CORE_SUFFIX}"

    @property
    def surfaces(self) -> Path:
        return self.output_dir / f"{self.region_id}{self.SURFACES_SUFFIX}"

    @property
    def ways(self) -> Path:
        return self.output_dir / f"{self.region_id}{self.WAYS_SUFFIX}"

    @property
    def store(self) -> Path:
        return self.output_dir / f"{self.region_id}.sqlite"

    @property
    def store_gz(self) -> Path:
        return self.output_dir / f"{self.region_id}.sqlite.gz"


@dataclass(frozen=True)
class ExtractResult:
    """Outcome of classifying a region's feature stream into bundles."""
    region_id: str
    version: str
    bundles: tuple[Path, ...] = ()
    traffic_calming: int = 0
    roundabouts: int = 0
    road_surfaces: int = 0
    road_ways: int = 0
    features_read: int = 0
    lines_dropped: int = 0
    road_length_m: float = 0.0
    duration_s: float = 0.0


@dataclass(frozen=True)
class LoadResult:
    """Outcome of a store build for one region."""
    region_id: str
    version: str
    store_path: Path
    traffic_calming: int = 0
    roundabouts: int = 0
    road_surfaces: int = 0
    road_ways: int = 0
    rejected: int = 0
    has_surface_data: bool = False
    has_way_data: bool = False
    store_bytes: int = 0
    compressed_bytes: int = 0
    duration_s: float = 0.0
    counts: dict = field(default_factory=dict)


# Region-level exception hierarchy
class PipelineError(Exception):
    """Base exception: aborts processing of one region."""
    def __init__(self, region_id: str, message: str, cause: Optional[BaseException] = None):
        self.region_id = region_id
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"[{region_id}] {message}{detail}")


class MissingRequiredInputError(PipelineError):
    """The region's feature stream or core bundle does not exist."""
    def __init__(self, region_id: str, path: Path):
        self.path = path
        super().__init__(region_id, f"Required input not found: {path}")


class SinkWriteError(PipelineError):
    """Writing a scratch spill file failed (disk full, permissions)."""
    pass


class BundleWriteError(PipelineError):
    """Writing a compressed bundle failed."""
    pass


class StoreWriteError(PipelineError):
    """Creating, writing or compressing the relational store failed."""
    pass


class TransactionError(StoreWriteError):
    """The bulk-load transaction failed and was rolled back."""
    pass


class MalformedRecordError(ValueError):
    """An input line or feature is unusable. Always recovered by dropping it."""
    pass
