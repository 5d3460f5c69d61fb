"""
Domain Models and Types

This module contains the core domain models and enumerations used throughout the pipeline.
These typed models ensure data integrity and provide clear interfaces for the pipeline components.

Models:
- GeographicFeature: One parsed upstream feature (immutable)
- TrafficCalmingRecord, RoundaboutRecord: Core category records
- RoadSurfaceRecord, RoadWayRecord: Heavy category records
- BundleHeader: Bundle envelope (version, region, categories)
- RunOptions: Runtime configuration

Enums:
- Category: Bundle array names
- BundleMode: Bundle composition strategies (single, split)
- SurfaceCategory: Normalized surface vocabulary
- LoadState: Store build progress
"""

from .enums import (
    BundleMode,
    Category,
    GeometryKind,
    LoadState,
    RoundaboutType,
    SurfaceCategory,
    TrafficCalmingType,
)
from .models import (
    BundleHeader,
    BundleRecord,
    FeatureId,
    GeographicFeature,
    RoadSurfaceRecord,
    RoadWayRecord,
    RoundaboutRecord,
    RunOptions,
    TrafficCalmingRecord,
    today_version,
)

__all__ = [
    "GeographicFeature", "FeatureId", "BundleRecord",
    "TrafficCalmingRecord", "RoundaboutRecord", "RoadSurfaceRecord", "RoadWayRecord",
    "BundleHeader", "RunOptions", "today_version",
    "GeometryKind", "Category", "TrafficCalmingType", "RoundaboutType",
    "SurfaceCategory", "BundleMode", "LoadState",
]
