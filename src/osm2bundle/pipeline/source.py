"""
FeatureSource - Line-delimited GeoJSON Feature Ingestion

Reads the upstream filtering tool's export (one GeoJSON feature per line,
optionally RS-prefixed as in RFC 8142) and yields immutable GeographicFeature
objects. Unusable lines are dropped and counted, never raised.
"""

import json
import logging
import math
import re
from collections.abc import Iterator
from pathlib import Path
from typing import Any, Optional

from shapely.errors import ShapelyError
from shapely.geometry import shape

from ..domain.enums import GeometryKind
from ..domain.models import FeatureId, GeographicFeature
from ..types import MalformedRecordError, MissingRequiredInputError

logger = logging.getLogger(__name__)

RECORD_SEPARATOR = "\x1e"

# Accepted id spellings: "way/123" (osmium type_id) and "w123" (short form)
_FEATURE_ID_RE = re.compile(r"^(?:(node|way|relation)/|([nwr]))(\d+)$")
_SHORT_KINDS = {"n": "node", "w": "way", "r": "relation"}


def parse_feature_id(raw: Any) -> Optional[FeatureId]:
    """Parse an OSM feature id string. Unrecognized ids yield None."""
    if not isinstance(raw, str):
        return None
    match = _FEATURE_ID_RE.match(raw.strip())
    if not match:
        return None
    kind = match.group(1) or _SHORT_KINDS[match.group(2)]
    return FeatureId(kind=kind, ref=int(match.group(3)))


def _normalize_tags(properties: Any) -> dict[str, str]:
    if properties is None:
        return {}
    if not isinstance(properties, dict):
        raise MalformedRecordError("properties must be an object")
    tags = {}
    for key, value in properties.items():
        if isinstance(value, str):
            tags[str(key)] = value
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            tags[str(key)] = str(value)
    return tags


def _flatten(coords) -> tuple[float, ...]:
    flat: list[float] = []
    for position in coords:
        lon, lat = float(position[0]), float(position[1])
        if not (math.isfinite(lon) and math.isfinite(lat)):
            raise MalformedRecordError("non-finite coordinate")
        flat.append(lon)
        flat.append(lat)
    return tuple(flat)


def feature_from_geojson(data: Any) -> Optional[GeographicFeature]:
    """
    Build a GeographicFeature from a decoded GeoJSON feature.

    Returns:
        The feature, or None for geometry kinds the pipeline does not use

    Raises:
        MalformedRecordError: If the feature lacks a usable geometry
    """
    if not isinstance(data, dict):
        raise MalformedRecordError("feature must be an object")

    geometry = data.get("geometry")
    if not isinstance(geometry, dict) or "type" not in geometry:
        raise MalformedRecordError("feature has no geometry")

    try:
        kind = GeometryKind(geometry["type"])
    except ValueError:
        return None

    try:
        geom = shape(geometry)
    except (ShapelyError, ValueError, TypeError, KeyError, IndexError, AttributeError) as e:
        raise MalformedRecordError(f"invalid {kind.value} geometry: {e}") from e

    if geom.is_empty:
        raise MalformedRecordError(f"empty {kind.value} geometry")

    if kind == GeometryKind.POINT:
        coords = _flatten(geom.coords[:1])
    elif kind == GeometryKind.LINESTRING:
        coords = _flatten(geom.coords)
    else:
        coords = _flatten(geom.exterior.coords)

    return GeographicFeature(
        kind=kind,
        coords=coords,
        tags=_normalize_tags(data.get("properties")),
        feature_id=parse_feature_id(data.get("id")),
    )


def parse_line(line: str) -> Optional[GeographicFeature]:
    """
    Parse one line of the feature stream.

    Returns:
        The feature, or None for blank lines and unused geometry kinds

    Raises:
        MalformedRecordError: If the line is not a usable GeoJSON feature
    """
    trimmed = line.strip().lstrip(RECORD_SEPARATOR).strip()
    if not trimmed:
        return None
    try:
        data = json.loads(trimmed)
    except json.JSONDecodeError as e:
        raise MalformedRecordError(f"invalid JSON: {e}") from e
    return feature_from_geojson(data)


class FeatureSource:
    """
    Streaming reader over one region's feature export.

    Iterating yields features in file order; ``features_read`` and
    ``lines_dropped`` are updated as the stream is consumed.
    """

    INPUT_SUFFIXES = (".geojsonseq", ".ndjson", ".json")

    def __init__(self, path: Path, region_id: Optional[str] = None):
        self.path = Path(path)
        self.region_id = region_id or self.path.name.split(".")[0]
        self.features_read = 0
        self.lines_dropped = 0

    @classmethod
    def for_region(cls, region_id: str, input_dir: Path) -> "FeatureSource":
        """
        Locate a region's export in ``input_dir``.

        Raises:
            MissingRequiredInputError: If no export exists for the region
        """
        input_dir = Path(input_dir)
        for suffix in cls.INPUT_SUFFIXES:
            candidate = input_dir / f"{region_id}{suffix}"
            if candidate.is_file():
                return cls(candidate, region_id)
        raise MissingRequiredInputError(region_id, input_dir / f"{region_id}{cls.INPUT_SUFFIXES[0]}")

    def __iter__(self) -> Iterator[GeographicFeature]:
        with open(self.path, encoding="utf-8", errors="replace") as fh:
            for line_no, line in enumerate(fh, start=1):
                try:
                    feature = parse_line(line)
                except MalformedRecordError as e:
                    self.lines_dropped += 1
                    logger.debug(f"{self.path.name}:{line_no} dropped ({e})")
                    continue
                if feature is None:
                    continue
                self.features_read += 1
                yield feature

        logger.info(
            f"Read {self.features_read} features from {self.path.name} "
            f"({self.lines_dropped} lines dropped)"
        )
