"""
osm2bundle Pipeline Components

This module provides the per-region pipeline following the
Source -> Classify -> Accumulate -> Compose -> Load pattern.

Components:
- source: FeatureSource for line-delimited GeoJSON ingestion
- transform: FeatureClassifier for tag-driven classification
- accumulate: StreamingAccumulator with scratch spill sinks for heavy categories
- export: BundleComposer for versioned gzip bundles (single or split mode)
- store: RelationalLoader and StoreReader for the SQLite store
- runner: one-call region extraction and store build
"""

from .accumulate import ScratchSink, StreamingAccumulator
from .export import BundleComposer, read_bundle
from .runner import build_region_store, extract_region, run_region
from .source import FeatureSource
from .store import RelationalLoader, StoreReader, read_bundle_header
from .transform import FeatureClassifier

__all__ = [
    "FeatureSource",
    "FeatureClassifier",
    "ScratchSink",
    "StreamingAccumulator",
    "BundleComposer",
    "RelationalLoader",
    "StoreReader",
    "read_bundle",
    "read_bundle_header",
    "extract_region",
    "build_region_store",
    "run_region",
]
