"""Snapping of GPS-reported train positions onto rail corridor geometry."""

import json
import logging
import threading
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from .config import ON_SEGMENT_KM, SNAP_BBOX_DEGREES, STATION_TRACK_MAX_KM
from .dates import utc_now
from .geo import (
    BBox,
    Line,
    Point,
    bbox_around,
    clip_line,
    feature_lines,
    haversine_km,
    initial_bearing,
    line_length_km,
    locate_on_line,
    nearest_point_on_lines,
    nearest_vertex,
    normalize_bearing,
    point_along,
    slice_line,
)
from .models import Stop, TimeStatus, Train, TrackSnapPosition, TrainMeta
from .stations import StationIndex
from .status import arrival_time, get_train_meta

logger = logging.getLogger(__name__)


def load_track_geometry(path: str) -> Dict[str, Any]:
    """Load a GeoJSON FeatureCollection of track lines."""
    with open(path, "r", encoding="utf-8") as f:
        collection = json.load(f)
    if not isinstance(collection.get("features"), list):
        raise ValueError(f"{path} is not a GeoJSON FeatureCollection")
    return collection


def _line_bbox(line: Line) -> BBox:
    lons = [p[0] for p in line]
    lats = [p[1] for p in line]
    return (min(lons), min(lats), max(lons), max(lats))


def _overlaps(a: BBox, b: BBox) -> bool:
    return a[0] <= b[2] and b[0] <= a[2] and a[1] <= b[3] and b[1] <= a[3]


class TrackSnapper:
    """
    Snaps trains to the nearest track and derives their bearing.

    Results are cached per train and reused until the train's `updated`
    timestamp advances. The cache is safe to share between threads; two
    evaluations of the same snapshot produce the same result, so the last
    write wins.
    """

    def __init__(
        self,
        track: Dict[str, Any],
        stations: StationIndex,
        bbox_size: float = SNAP_BBOX_DEGREES,
    ):
        """
        Initialize the snapper.

        Args:
            track: GeoJSON FeatureCollection of LineString/MultiLineString features.
            stations: Station index used to locate each train's next station.
            bbox_size: Half-width of the search box in degrees.
        """
        self.stations = stations
        self.bbox_size = bbox_size
        self._lines: List[Tuple[Line, BBox]] = []
        for feature in track.get("features", []):
            for coords in feature_lines(feature):
                line = [(float(c[0]), float(c[1])) for c in coords]
                if len(line) >= 2:
                    self._lines.append((line, _line_bbox(line)))
        self._cache: Dict[str, TrackSnapPosition] = {}
        self._lock = threading.Lock()
        logger.debug(f"Indexed {len(self._lines)} track lines")

    def snap(
        self,
        train: Train,
        next_stop: Optional[Stop] = None,
        now: Optional[datetime] = None,
    ) -> Optional[TrackSnapPosition]:
        """
        Get the corridor-snapped position of a train.

        Args:
            train: Train to snap.
            next_stop: The train's next stop; derived from its timetable if
                not given.
            now: Current time used to derive the next stop.

        Returns:
            Snapped position, or None if the train reports no coordinates.
        """
        if not train.coordinates:
            return None

        cached = self._cache.get(train.id)
        if cached is not None and train.updated is not None and cached.updated is not None:
            # Equal: still valid. Newer: never replace with an older snapshot.
            if cached.updated >= train.updated:
                logger.debug(f"Using cached position for {train.id}")
                return cached

        if next_stop is None:
            next_stop = get_train_meta(train, now or utc_now()).next_stop

        position = self.compute(
            train.coordinates,
            next_stop.code if next_stop else None,
            updated=train.updated,
        )

        if train.updated is not None:
            with self._lock:
                current = self._cache.get(train.id)
                if current is None or current.updated is None or current.updated <= train.updated:
                    self._cache[train.id] = position
        return position

    def compute(
        self,
        coordinates: Tuple[float, float],
        next_station_code: Optional[str],
        updated: Optional[datetime] = None,
    ) -> TrackSnapPosition:
        """Snap raw coordinates without consulting the cache."""
        raw: Point = (float(coordinates[0]), float(coordinates[1]))
        nearby = self.nearby_track(raw)
        if not nearby:
            # No track close enough; keep the GPS position and skip bearing
            return TrackSnapPosition(coordinates=raw, bearing=None, updated=updated)

        snapped = nearest_point_on_lines(raw, nearby)
        bearing = self._bearing(raw, snapped, nearby, next_station_code)
        return TrackSnapPosition(coordinates=snapped, bearing=bearing, updated=updated)

    def snap_terminus(self, train: Train) -> Optional[TrackSnapPosition]:
        """Position a completed train on the track nearest its last station."""
        if not train.stops:
            return None
        station_coords = self.stations.coordinates(train.stops[-1].code)
        if station_coords is None:
            logger.warning(f"Terminus station not found: {train.stops[-1].code}")
            return None
        point: Point = (float(station_coords[0]), float(station_coords[1]))
        nearby = self.nearby_track(point)
        coordinates = nearest_point_on_lines(point, nearby) if nearby else point
        return TrackSnapPosition(coordinates=coordinates, bearing=None, updated=train.updated)

    def extrapolate(
        self,
        train: Train,
        meta: TrainMeta,
        now: Optional[datetime] = None,
    ) -> Optional[TrackSnapPosition]:
        """
        Estimate where a train is now from its timetable.

        The track between the previous (or current) and next stations is cut
        out and the train is placed along it by the elapsed share of the
        scheduled travel time. If the last GPS fix is not on that cut, the
        train is assumed to be running off its timetable and is moved from
        the GPS fix towards the next station instead, timed from `updated`.

        Args:
            train: Train to place.
            meta: Status of the train at `now`.
            now: Current time.

        Returns:
            Extrapolated position with the bearing of the track at that
            point, or None if the stations or timings needed are unknown.
        """
        if meta.code == TimeStatus.COMPLETE:
            return self.snap_terminus(train)

        prev_stop = meta.cur_stop or meta.prev_stop
        next_stop = meta.next_stop
        if prev_stop is None or next_stop is None:
            return None

        prev_coords = self.stations.coordinates(prev_stop.code)
        next_coords = self.stations.coordinates(next_stop.code)
        if prev_coords is None or next_coords is None:
            logger.warning(f"Cannot extrapolate {train.id}: station coordinates not found")
            return None

        line = self._corridor(prev_coords, next_coords)
        if line is None:
            logger.debug(f"No track links {prev_stop.code} and {next_stop.code}")
            return None

        segment = slice_line(line, prev_coords, next_coords)
        fraction = meta.progress.fraction

        if train.coordinates is not None:
            gps: Point = (float(train.coordinates[0]), float(train.coordinates[1]))
            _, _, nearest = locate_on_line(gps, segment)
            if haversine_km(gps, nearest) >= ON_SEGMENT_KM:
                arrival = arrival_time(next_stop)
                if train.updated is None or arrival is None:
                    return None
                segment = slice_line(line, gps, next_coords)
                total = (arrival - train.updated).total_seconds()
                elapsed = ((now or utc_now()) - train.updated).total_seconds()
                fraction = 1.0 if total <= 0 else max(0.0, min(1.0, elapsed / total))

        coordinates, bearing = point_along(segment, line_length_km(segment) * fraction)
        return TrackSnapPosition(coordinates=coordinates, bearing=bearing, updated=train.updated)

    def _corridor(self, a: Point, b: Point) -> Optional[Line]:
        """The track line passing closest to both points, if close enough."""
        reach = self.bbox_size
        bbox = (
            min(a[0], b[0]) - reach,
            min(a[1], b[1]) - reach,
            max(a[0], b[0]) + reach,
            max(a[1], b[1]) + reach,
        )
        best: Optional[Line] = None
        best_offset = STATION_TRACK_MAX_KM
        for line, line_bbox in self._lines:
            if not _overlaps(line_bbox, bbox):
                continue
            offset = max(
                haversine_km(a, locate_on_line(a, line)[2]),
                haversine_km(b, locate_on_line(b, line)[2]),
            )
            if offset <= best_offset:
                best, best_offset = line, offset
        return best

    def nearby_track(self, point: Point) -> List[Line]:
        """Clip the track geometry to a small box around point."""
        bbox = bbox_around(point, self.bbox_size)
        nearby: List[Line] = []
        for line, line_bbox in self._lines:
            if _overlaps(line_bbox, bbox):
                nearby.extend(clip_line(line, bbox))
        return nearby

    def _bearing(
        self,
        raw: Point,
        snapped: Point,
        nearby: List[Line],
        next_station_code: Optional[str],
    ) -> Optional[float]:
        if not next_station_code:
            return None

        station = self.stations.coordinates(next_station_code)
        if station is None:
            logger.warning(f"Station coordinates not found: {next_station_code}")
            return None

        vertex = nearest_vertex(raw, nearby, exclude=snapped)
        if vertex is None:
            return None

        # The vertex is behind the train if it is farther from the next station
        behind = haversine_km(vertex, station) > haversine_km(snapped, station)
        return normalize_bearing(initial_bearing(snapped, vertex) + (180 if behind else 0))

    def clear(self) -> None:
        """Drop all cached positions."""
        with self._lock:
            self._cache.clear()
