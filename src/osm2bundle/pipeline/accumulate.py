"""
StreamingAccumulator - Memory-bounded Record Collection

Core categories (traffic calming, roundabouts) stay in memory; heavy
categories (road surfaces, road ways) are spilled to append-only scratch
sinks as they arrive. A single region can carry millions of heavy records,
so they are never held in memory.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Optional

from ..cleanup import region_scratch_path
from ..domain.enums import Category
from ..domain.models import BundleRecord
from ..types import SinkWriteError
from ..utils import remove_file, way_length_m
from .jsonstream import encode_json

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 1024 * 1024


class ScratchSink:
    """
    Append-only spill file of JSON object fragments.

    Fragments after the first are prefixed with ``,``, so the file content is
    the interior of a JSON array. The file is deleted when the context exits,
    whether the run succeeded or not.
    """

    SEPARATOR = b","

    def __init__(self, path: Path, region_id: str):
        self.path = Path(path)
        self.region_id = region_id
        self.count = 0
        self._fh = None

    def __enter__(self) -> "ScratchSink":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.discard()

    def open(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self.path, "wb")
        except OSError as e:
            raise SinkWriteError(self.region_id, f"Cannot create scratch file {self.path}", e) from e
        self.count = 0

    def append(self, fragment: dict) -> None:
        if self._fh is None:
            raise SinkWriteError(self.region_id, f"Scratch file {self.path.name} is not open for writing")
        data = encode_json(fragment)
        try:
            if self.count:
                self._fh.write(self.SEPARATOR)
            self._fh.write(data)
        except OSError as e:
            raise SinkWriteError(self.region_id, f"Write to scratch file {self.path} failed", e) from e
        self.count += 1

    def close(self) -> None:
        """Flush and close the writer; the file stays on disk for reading."""
        if self._fh is not None:
            try:
                self._fh.close()
            except OSError as e:
                raise SinkWriteError(self.region_id, f"Flush of scratch file {self.path} failed", e) from e
            finally:
                self._fh = None

    def iter_chunks(self, chunk_size: int = READ_CHUNK_SIZE) -> Iterator[bytes]:
        """Stream the spilled fragments back. Closes the writer first."""
        self.close()
        if self.count == 0:
            return
        with open(self.path, "rb") as fh:
            while True:
                chunk = fh.read(chunk_size)
                if not chunk:
                    break
                yield chunk

    def discard(self) -> None:
        if self._fh is not None:
            try:
                self._fh.close()
            except OSError as e:
                logger.warning(f"Could not close scratch file {self.path}: {e}")
            self._fh = None
        remove_file(self.path)


class StreamingAccumulator:
    """
    Collects classified records for one region.

    Usage:
        with StreamingAccumulator("europe-lithuania") as acc:
            acc.consume(classifier.classify_all(source))
            composer.compose(acc)
        # scratch sinks are deleted here
    """

    def __init__(
        self,
        region_id: str,
        scratch_dir: Optional[Path] = None,
        surface_sink: Optional[ScratchSink] = None,
        way_sink: Optional[ScratchSink] = None,
    ):
        self.region_id = region_id
        self.traffic_calming: list[BundleRecord] = []
        self.roundabouts: list[BundleRecord] = []
        self.road_length_m = 0.0
        self.sinks = {
            Category.ROAD_SURFACES: surface_sink or ScratchSink(
                region_scratch_path(region_id, "surfaces", scratch_dir), region_id
            ),
            Category.ROAD_WAYS: way_sink or ScratchSink(
                region_scratch_path(region_id, "ways", scratch_dir), region_id
            ),
        }
        self._open = False

    def __enter__(self) -> "StreamingAccumulator":
        try:
            for sink in self.sinks.values():
                sink.open()
        except BaseException:
            self.discard()
            raise
        self._open = True
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.discard()

    def discard(self) -> None:
        for sink in self.sinks.values():
            sink.discard()
        self._open = False

    def add(self, record: BundleRecord) -> None:
        category = record.category
        if category == Category.TRAFFIC_CALMING:
            self.traffic_calming.append(record)
        elif category == Category.ROUNDABOUTS:
            self.roundabouts.append(record)
        else:
            if not self._open:
                raise SinkWriteError(self.region_id, "Accumulator used outside of its context")
            self.sinks[category].append(record.to_bundle())
            if category == Category.ROAD_WAYS:
                self.road_length_m += way_length_m(record.coords)

    def consume(self, records: Iterable[BundleRecord]) -> "StreamingAccumulator":
        for record in records:
            self.add(record)
        logger.info(
            f"Accumulated {len(self.traffic_calming)} traffic calming, "
            f"{len(self.roundabouts)} roundabouts, "
            f"{self.count(Category.ROAD_SURFACES)} road surfaces, "
            f"{self.count(Category.ROAD_WAYS)} road ways ({self.road_length_m / 1000:.1f} km)"
        )
        return self

    def records(self, category: Category) -> list[BundleRecord]:
        if category == Category.TRAFFIC_CALMING:
            return self.traffic_calming
        if category == Category.ROUNDABOUTS:
            return self.roundabouts
        raise KeyError(f"{category.value} is spilled, use sink()")

    def sink(self, category: Category) -> ScratchSink:
        return self.sinks[category]

    def count(self, category: Category) -> int:
        if category.is_heavy:
            return self.sinks[category].count
        return len(self.records(category))
