"""
RelationalLoader - SQLite Store Build from Bundles

Reads a region's bundle files back and bulk-loads them into an indexed
SQLite store inside one transaction:
- traffic_calming / roundabouts indexed on (lat, lon)
- road_surfaces / road_ways with a per-row bounding box, indexed on it
- metadata with version, region, build timestamp and presence flags

Bundles are streamed with ijson, so heavy arrays are never held in memory.
After commit the store is gzip-compressed to ``{region}.sqlite.gz`` and the
uncompressed file removed. Any failure rolls back and removes every file the
build created.

StoreReader is the read side: it opens a finished store and answers the
bounding-box lookups a consumer makes.
"""

import gzip
import json
import logging
import os
import shutil
import sqlite3
import time
import zlib
from collections.abc import Iterable, Iterator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

import ijson

from ..cleanup import get_pid_temp_dir
from ..domain.enums import Category, LoadState
from ..domain.models import BundleHeader, RunOptions
from ..types import (
    LoadResult,
    MissingRequiredInputError,
    PipelineError,
    RegionPaths,
    StoreWriteError,
    TransactionError,
)
from ..utils import compute_bbox, format_size, remove_file, validate_bbox
from .jsonstream import encode_json

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE traffic_calming (
    id INTEGER PRIMARY KEY,
    lat REAL NOT NULL,
    lon REAL NOT NULL,
    type TEXT NOT NULL,
    end_lat REAL,
    end_lon REAL,
    way_id INTEGER,
    tags_json TEXT
);

CREATE TABLE roundabouts (
    id INTEGER PRIMARY KEY,
    lat REAL NOT NULL,
    lon REAL NOT NULL,
    radius INTEGER,
    type TEXT NOT NULL
);

CREATE TABLE road_surfaces (
    id INTEGER PRIMARY KEY,
    surface TEXT NOT NULL,
    coords_json TEXT NOT NULL,
    min_lat REAL NOT NULL,
    max_lat REAL NOT NULL,
    min_lon REAL NOT NULL,
    max_lon REAL NOT NULL
);

CREATE TABLE road_ways (
    id INTEGER PRIMARY KEY,
    highway TEXT NOT NULL,
    coords_json TEXT NOT NULL,
    min_lat REAL NOT NULL,
    max_lat REAL NOT NULL,
    min_lon REAL NOT NULL,
    max_lon REAL NOT NULL
);

CREATE TABLE metadata (
    key TEXT PRIMARY KEY,
    value TEXT
);

CREATE INDEX idx_tc_lat_lon ON traffic_calming(lat, lon);
CREATE INDEX idx_ra_lat_lon ON roundabouts(lat, lon);
CREATE INDEX idx_surfaces_bbox ON road_surfaces(min_lat, max_lat, min_lon, max_lon);
CREATE INDEX idx_ways_bbox ON road_ways(min_lat, max_lat, min_lon, max_lon);
"""

TABLES = {
    Category.TRAFFIC_CALMING: "traffic_calming",
    Category.ROUNDABOUTS: "roundabouts",
    Category.ROAD_SURFACES: "road_surfaces",
    Category.ROAD_WAYS: "road_ways",
}

INSERT_SQL = {
    Category.TRAFFIC_CALMING: (
        "INSERT INTO traffic_calming (lat, lon, type, end_lat, end_lon, way_id, tags_json) "
        "VALUES (?, ?, ?, ?, ?, ?, ?)"
    ),
    Category.ROUNDABOUTS: "INSERT INTO roundabouts (lat, lon, radius, type) VALUES (?, ?, ?, ?)",
    Category.ROAD_SURFACES: (
        "INSERT INTO road_surfaces (surface, coords_json, min_lat, max_lat, min_lon, max_lon) "
        "VALUES (?, ?, ?, ?, ?, ?)"
    ),
    Category.ROAD_WAYS: (
        "INSERT INTO road_ways (highway, coords_json, min_lat, max_lat, min_lon, max_lon) "
        "VALUES (?, ?, ?, ?, ?, ?)"
    ),
}

# Errors that mean a bundle file is truncated or not a bundle at all
CORRUPT_BUNDLE_ERRORS = (gzip.BadGzipFile, EOFError, zlib.error, ijson.JSONError)


def _bool_text(value: bool) -> str:
    return "true" if value else "false"


# =============================================================================
# Bundle reading
# =============================================================================

def read_bundle_header(path: Path, scan_categories: bool = True) -> BundleHeader:
    """
    Read a bundle's envelope and the category arrays it carries.

    Scans the document with ijson's event parser without materializing any
    array. Listing the categories means parsing the whole file, heavy arrays
    included; with ``scan_categories=False`` the scan stops as soon as the
    envelope is known, which for bundles written by BundleComposer is before
    the first array.

    Raises:
        ValueError: If the bundle lacks a version or region
    """
    known = {c.value: c for c in Category}
    envelope: dict[str, str] = {}
    categories: list[Category] = []

    with gzip.open(path, "rb") as fh:
        for prefix, event, value in ijson.parse(fh):
            if prefix == "" and event == "map_key" and value in known:
                categories.append(known[value])
            elif prefix in ("version", "region") and event == "string":
                envelope[prefix] = value
                if not scan_categories and len(envelope) == 2:
                    break

    missing = [key for key in ("version", "region") if key not in envelope]
    if missing:
        raise ValueError(f"{path.name} has no {' or '.join(missing)}")
    return BundleHeader(version=envelope["version"], region=envelope["region"], categories=tuple(categories))


def _note_key(events: Iterator[tuple], key: str, seen: set[str]) -> Iterator[tuple]:
    for prefix, event, value in events:
        if prefix == "" and event == "map_key" and value == key:
            seen.add(key)
        yield prefix, event, value


def iter_bundle_items(path: Path, category: Category, seen: Optional[set[str]] = None) -> Iterator[Any]:
    """
    Stream the elements of one category array from a bundle.

    When ``seen`` is given, the category's key is added to it if the bundle
    carries the array at all, so an absent array can be told from an empty one.
    """
    with gzip.open(path, "rb") as fh:
        events = ijson.parse(fh, use_float=True)
        if seen is not None:
            events = _note_key(events, category.value, seen)
        yield from ijson.items(events, f"{category.value}.item")


# =============================================================================
# Row builders
# =============================================================================

def _number(item: dict, key: str) -> float:
    value = item[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def traffic_calming_row(item: dict) -> tuple:
    tags = item.get("tags")
    end_lat = item.get("endLat")
    end_lon = item.get("endLon")
    way_id = item.get("wayId")
    return (
        _number(item, "lat"),
        _number(item, "lon"),
        str(item["type"]),
        float(end_lat) if end_lat is not None else None,
        float(end_lon) if end_lon is not None else None,
        int(way_id) if way_id is not None else None,
        encode_json(tags).decode("utf-8") if tags else None,
    )


def roundabout_row(item: dict) -> tuple:
    radius = item.get("radius")
    return (
        _number(item, "lat"),
        _number(item, "lon"),
        int(radius) if radius is not None else None,
        str(item["type"]),
    )


def _line_row(label: str, item: dict) -> tuple:
    coords = item["coords"]
    if not isinstance(coords, list):
        raise ValueError("coords must be an array")
    min_lat, max_lat, min_lon, max_lon = compute_bbox(coords)
    return (
        str(label),
        encode_json(coords).decode("utf-8"),
        min_lat, max_lat, min_lon, max_lon,
    )


def road_surface_row(item: dict) -> tuple:
    return _line_row(item["surface"], item)


def road_way_row(item: dict) -> tuple:
    return _line_row(item["highway"], item)


ROW_BUILDERS: dict[Category, Callable[[dict], tuple]] = {
    Category.TRAFFIC_CALMING: traffic_calming_row,
    Category.ROUNDABOUTS: roundabout_row,
    Category.ROAD_SURFACES: road_surface_row,
    Category.ROAD_WAYS: road_way_row,
}


# =============================================================================
# Loader
# =============================================================================

class RelationalLoader:
    """
    Build the SQLite store for one region.

    Example:
        loader = RelationalLoader("europe-lithuania", Path("out"))
        result = loader.build()
        # out/europe-lithuania.sqlite.gz
    """

    def __init__(
        self,
        region_id: str,
        output_dir: Path,
        options: Optional[RunOptions] = None,
        created_at: Optional[str] = None,
    ):
        self.region_id = region_id
        self.paths = RegionPaths(region_id, Path(output_dir))
        self.options = options or RunOptions()
        self.created_at = created_at
        self.state = LoadState.INIT
        self.counts: dict[Category, int] = {c: 0 for c in Category}
        self.rejected = 0

    def _advance(self, state: LoadState) -> None:
        logger.debug(f"[{self.region_id}] store build: {self.state.value} -> {state.value}")
        self.state = state

    def build(self) -> LoadResult:
        """
        Load every available bundle into a fresh compressed store.

        Raises:
            MissingRequiredInputError: If the core bundle does not exist
            TransactionError: If the load transaction fails
            StoreWriteError: If the store cannot be written or compressed
            PipelineError: If a bundle is corrupt
        """
        start_time = time.time()
        core = self.paths.core
        if not core.is_file():
            raise MissingRequiredInputError(self.region_id, core)

        for stale in (self.paths.store, self.paths.store_gz):
            if remove_file(stale):
                logger.info(f"Removed previous store {stale.name}")

        conn: Optional[sqlite3.Connection] = None
        try:
            header = read_bundle_header(core, scan_categories=False)
            if header.region != self.region_id:
                logger.warning(f"Core bundle region '{header.region}' differs from '{self.region_id}'")

            conn = sqlite3.connect(str(self.paths.store), isolation_level=None)
            self._create_schema(conn)

            conn.execute("BEGIN")
            self._load(conn, core, Category.TRAFFIC_CALMING)
            self._load(conn, core, Category.ROUNDABOUTS)
            self._advance(LoadState.CORE_LOADED)

            self._load_heavy(conn, Category.ROAD_SURFACES, self.paths.surfaces,
                             LoadState.SURFACES_LOADED, LoadState.SURFACES_SKIPPED)
            self._load_heavy(conn, Category.ROAD_WAYS, self.paths.ways,
                             LoadState.WAYS_LOADED, LoadState.WAYS_SKIPPED)

            self._write_metadata(conn, header)
            conn.execute("COMMIT")
            self._advance(LoadState.COMMITTED)
            conn.close()
            conn = None

            store_bytes = self.paths.store.stat().st_size
            self._finalize()
        except PipelineError:
            self._abort(conn)
            raise
        except ValueError as e:
            self._abort(conn)
            raise PipelineError(self.region_id, "Invalid bundle", e) from e
        except CORRUPT_BUNDLE_ERRORS as e:
            self._abort(conn)
            raise PipelineError(self.region_id, "Corrupt bundle", e) from e
        except sqlite3.Error as e:
            self._abort(conn)
            raise TransactionError(self.region_id, "Store load transaction failed", e) from e
        except OSError as e:
            self._abort(conn)
            raise StoreWriteError(self.region_id, f"Failed to write store {self.paths.store.name}", e) from e
        except BaseException:
            self._abort(conn)
            raise

        compressed_bytes = self.paths.store_gz.stat().st_size
        duration = time.time() - start_time
        result = LoadResult(
            region_id=self.region_id,
            version=header.version,
            store_path=self.paths.store_gz,
            traffic_calming=self.counts[Category.TRAFFIC_CALMING],
            roundabouts=self.counts[Category.ROUNDABOUTS],
            road_surfaces=self.counts[Category.ROAD_SURFACES],
            road_ways=self.counts[Category.ROAD_WAYS],
            rejected=self.rejected,
            has_surface_data=self.counts[Category.ROAD_SURFACES] > 0,
            has_way_data=self.counts[Category.ROAD_WAYS] > 0,
            store_bytes=store_bytes,
            compressed_bytes=compressed_bytes,
            duration_s=duration,
            counts={TABLES[c]: n for c, n in self.counts.items()},
        )
        self._log_summary(result)
        return result

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        # DELETE journal keeps the file readable by older SQLite builds
        conn.execute("PRAGMA journal_mode=DELETE")
        conn.execute(f"PRAGMA synchronous={self.options.store_synchronous}")
        conn.execute(f"PRAGMA cache_size=-{int(self.options.store_cache_size_kb)}")
        conn.executescript(SCHEMA_SQL)
        self._advance(LoadState.SCHEMA_READY)

    def _rows(self, items: Iterable[Any], category: Category) -> Iterator[tuple]:
        build_row = ROW_BUILDERS[category]
        for item in items:
            try:
                if not isinstance(item, dict):
                    raise ValueError("record must be an object")
                row = build_row(item)
            except (KeyError, TypeError, ValueError) as e:
                self.rejected += 1
                logger.debug(f"Rejected {category.value} record: {e}")
                continue
            self.counts[category] += 1
            yield row

    def _load(
        self,
        conn: sqlite3.Connection,
        path: Path,
        category: Category,
        seen: Optional[set[str]] = None,
    ) -> None:
        items = iter_bundle_items(path, category, seen)
        conn.executemany(INSERT_SQL[category], self._rows(items, category))
        logger.info(f"Loaded {self.counts[category]} {TABLES[category]} rows from {path.name}")

    def _load_heavy(
        self,
        conn: sqlite3.Connection,
        category: Category,
        heavy_path: Path,
        loaded: LoadState,
        skipped: LoadState,
    ) -> None:
        if heavy_path.is_file():
            self._load(conn, heavy_path, category)
            self._advance(loaded)
        else:
            # Single-bundle mode carries heavy arrays in the core bundle
            seen: set[str] = set()
            self._load(conn, self.paths.core, category, seen)
            if seen:
                self._advance(loaded)
                return
            logger.warning(f"No {category.value} bundle for {self.region_id}, {TABLES[category]} left empty")
            self._advance(skipped)

    def _write_metadata(self, conn: sqlite3.Connection, header: BundleHeader) -> None:
        created_at = self.created_at or datetime.now(timezone.utc).isoformat()
        rows = [
            ("version", header.version),
            ("region", header.region),
            ("createdAt", created_at),
            ("hasSurfaceData", _bool_text(self.counts[Category.ROAD_SURFACES] > 0)),
            ("hasWayData", _bool_text(self.counts[Category.ROAD_WAYS] > 0)),
        ]
        conn.executemany("INSERT INTO metadata (key, value) VALUES (?, ?)", rows)
        self._advance(LoadState.METADATA_WRITTEN)

    def _finalize(self) -> None:
        partial = self.paths.store_gz.with_name(self.paths.store_gz.name + ".partial")
        with open(self.paths.store, "rb") as src, open(partial, "wb") as raw:
            with gzip.GzipFile(
                filename="", mode="wb", fileobj=raw,
                compresslevel=self.options.compression_level, mtime=0,
            ) as gz:
                shutil.copyfileobj(src, gz, length=1024 * 1024)
        os.replace(partial, self.paths.store_gz)
        self.paths.store.unlink()
        self._advance(LoadState.FINALIZED)

    def _abort(self, conn: Optional[sqlite3.Connection]) -> None:
        if conn is not None:
            try:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
            except sqlite3.Error as e:
                logger.warning(f"Rollback failed for {self.region_id}: {e}")
            finally:
                conn.close()
        remove_file(self.paths.store)
        remove_file(self.paths.store_gz.with_name(self.paths.store_gz.name + ".partial"))
        if self.state != LoadState.FINALIZED:
            remove_file(self.paths.store_gz)
        logger.error(f"Store build for {self.region_id} aborted in state {self.state.value}")
        self._advance(LoadState.FAILED)

    def _log_summary(self, result: LoadResult) -> None:
        ratio = result.compressed_bytes / result.store_bytes if result.store_bytes else 0.0
        logger.info(f"Store build complete for {self.region_id} in {result.duration_s:.2f} seconds")
        for table, count in result.counts.items():
            logger.info(f"   {table}: {count} rows")
        if result.rejected:
            logger.info(f"   rejected: {result.rejected} records")
        logger.info(
            f"   size: {format_size(result.store_bytes)} -> {format_size(result.compressed_bytes)} "
            f"({ratio:.1%})"
        )


# =============================================================================
# Reader
# =============================================================================

class StoreReader:
    """
    Read-only access to a finished store.

    A ``.sqlite.gz`` store is decompressed into the process scratch directory
    and removed again on close.

    Example:
        with StoreReader(Path("out/europe-lithuania.sqlite.gz")) as store:
            store.metadata()["hasWayData"]
            store.ways_in_bbox([54.6, 54.7, 25.2, 25.3])
    """

    def __init__(self, path: Path, scratch_dir: Optional[Path] = None):
        self.path = Path(path)
        self._temp_copy: Optional[Path] = None
        db_path = self.path
        if self.path.suffix == ".gz":
            self._temp_copy = get_pid_temp_dir(scratch_dir) / self.path.stem
            with gzip.open(self.path, "rb") as src, open(self._temp_copy, "wb") as dst:
                shutil.copyfileobj(src, dst, length=1024 * 1024)
            db_path = self._temp_copy
        self._conn = sqlite3.connect(f"{db_path.resolve().as_uri()}?mode=ro", uri=True)
        self._conn.row_factory = sqlite3.Row

    def __enter__(self) -> "StoreReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
        if self._temp_copy is not None:
            remove_file(self._temp_copy)
            self._temp_copy = None

    def metadata(self) -> dict[str, str]:
        return {row["key"]: row["value"] for row in self._conn.execute("SELECT key, value FROM metadata")}

    def count(self, table: str) -> int:
        if table not in TABLES.values():
            raise ValueError(f"Unknown table: {table}")
        return self._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    def index_names(self) -> set[str]:
        rows = self._conn.execute("SELECT name FROM sqlite_master WHERE type = 'index'")
        return {row["name"] for row in rows}

    @staticmethod
    def _check_bbox(bbox) -> tuple[float, float, float, float]:
        if not validate_bbox(bbox):
            raise ValueError(f"Invalid bbox {bbox}, expected [min_lat, max_lat, min_lon, max_lon]")
        return tuple(float(v) for v in bbox)

    def _points_in_bbox(self, table: str, bbox) -> list[dict[str, Any]]:
        min_lat, max_lat, min_lon, max_lon = self._check_bbox(bbox)
        rows = self._conn.execute(
            f"SELECT * FROM {table} WHERE lat BETWEEN ? AND ? AND lon BETWEEN ? AND ? ORDER BY id",
            (min_lat, max_lat, min_lon, max_lon),
        )
        return [dict(row) for row in rows]

    def _lines_in_bbox(self, table: str, bbox) -> list[dict[str, Any]]:
        min_lat, max_lat, min_lon, max_lon = self._check_bbox(bbox)
        rows = self._conn.execute(
            f"""
            SELECT * FROM {table}
            WHERE max_lat >= ? AND min_lat <= ?
              AND max_lon >= ? AND min_lon <= ?
            ORDER BY id
            """,
            (min_lat, max_lat, min_lon, max_lon),
        )
        results = []
        for row in rows:
            record = dict(row)
            record["coords"] = json.loads(record.pop("coords_json"))
            results.append(record)
        return results

    def traffic_calming_in_bbox(self, bbox) -> list[dict[str, Any]]:
        records = self._points_in_bbox("traffic_calming", bbox)
        for record in records:
            tags_json = record.pop("tags_json")
            record["tags"] = json.loads(tags_json) if tags_json else None
        return records

    def roundabouts_in_bbox(self, bbox) -> list[dict[str, Any]]:
        return self._points_in_bbox("roundabouts", bbox)

    def surfaces_in_bbox(self, bbox) -> list[dict[str, Any]]:
        """Road surfaces whose bounding box intersects ``bbox``."""
        return self._lines_in_bbox("road_surfaces", bbox)

    def ways_in_bbox(self, bbox) -> list[dict[str, Any]]:
        """Road ways whose bounding box intersects ``bbox``."""
        return self._lines_in_bbox("road_ways", bbox)
