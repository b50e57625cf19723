"""Brightline GTFS-Realtime fetcher and parser."""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import requests
from google.protobuf.message import DecodeError as ProtobufDecodeError
from google.transit import gtfs_realtime_pb2

from .config import BRIGHTLINE_FEEDS, BRIGHTLINE_TIMEZONE, HTTP_TIMEOUT
from .dates import utc_now
from .errors import DecodeError, PartialRecordError, UpstreamUnavailable
from .feed_client import FeedClient
from .geo import haversine_km, normalize_bearing
from .models import Actual, Pending, Stop, StopEvent, Train, TrainState
from .stations import StationIndex
from .status import arrival_time, scheduled_time

logger = logging.getLogger(__name__)

AGENCY = "brightline"
ROUTE_NAME = "Brightline"
KM_PER_MILE = 1.609344


def decode_feed(raw: bytes) -> gtfs_realtime_pb2.FeedMessage:
    """
    Decode a GTFS-Realtime FeedMessage.

    Raises:
        DecodeError: If the payload is not a valid FeedMessage.
    """
    feed = gtfs_realtime_pb2.FeedMessage()
    try:
        feed.ParseFromString(raw)
    except ProtobufDecodeError as e:
        raise DecodeError(f"Invalid GTFS-Realtime payload: {e}", agency=AGENCY) from e
    return feed


def join_feeds(
    positions: gtfs_realtime_pb2.FeedMessage,
    trip_updates: gtfs_realtime_pb2.FeedMessage,
) -> List[Tuple[str, gtfs_realtime_pb2.VehiclePosition, gtfs_realtime_pb2.TripUpdate]]:
    """
    Pair vehicle positions with trip updates by trip id.

    Entities without a counterpart in the other feed are dropped.

    Returns:
        List of (trip_id, vehicle, trip_update) in position feed order.
    """
    updates_by_trip: Dict[str, gtfs_realtime_pb2.TripUpdate] = {}
    for entity in trip_updates.entity:
        if entity.HasField("trip_update") and entity.trip_update.trip.trip_id:
            updates_by_trip[entity.trip_update.trip.trip_id] = entity.trip_update

    joined = []
    matched = set()
    for entity in positions.entity:
        if not entity.HasField("vehicle"):
            continue
        trip_id = entity.vehicle.trip.trip_id
        trip_update = updates_by_trip.get(trip_id) if trip_id else None
        if trip_update is None:
            logger.debug(f"[{AGENCY}] No trip update for vehicle trip {trip_id!r}; dropping")
            continue
        joined.append((trip_id, entity.vehicle, trip_update))
        matched.add(trip_id)

    unmatched = set(updates_by_trip) - matched
    if unmatched:
        logger.debug(f"[{AGENCY}] {len(unmatched)} trip updates without a vehicle position")
    return joined


def infer_status(stops: Tuple[Stop, ...], now: datetime) -> TrainState:
    """Infer train state from the timetable: the first stop still ahead decides it."""
    for i, stop in enumerate(stops):
        arrival = arrival_time(stop)
        if arrival is not None and arrival > now:
            return TrainState.PREDEPARTURE if i == 0 else TrainState.ACTIVE
    return TrainState.COMPLETED


class BrightlineClient:
    """Fetches and normalizes the Brightline GTFS-Realtime feed pair."""

    def __init__(
        self,
        stations: Optional[StationIndex] = None,
        feeds: Optional[Dict[str, str]] = None,
        session: Optional[requests.Session] = None,
        timeout: float = HTTP_TIMEOUT,
    ):
        self.agency = AGENCY
        self.feeds = feeds or BRIGHTLINE_FEEDS
        self.stations = stations or StationIndex()
        self.client = FeedClient(AGENCY, session=session, timeout=timeout)

    def get_trains(self, now: Optional[datetime] = None) -> List[Train]:
        """
        Fetch both feeds and build the joined train list.

        Returns:
            List of trains, or an empty list if either feed is unavailable.
        """
        try:
            positions = decode_feed(self.client.fetch(self.feeds["positions"]))
            trip_updates = decode_feed(self.client.fetch(self.feeds["trips"]))
        except (UpstreamUnavailable, DecodeError) as e:
            logger.warning(f"[{AGENCY}] Feed unavailable this cycle: {e}")
            return []

        trains = self.parse_feeds(positions, trip_updates, now=now)
        logger.debug(f"[{AGENCY}] Parsed {len(trains)} trains")
        return trains

    def parse_feeds(
        self,
        positions: gtfs_realtime_pb2.FeedMessage,
        trip_updates: gtfs_realtime_pb2.FeedMessage,
        now: Optional[datetime] = None,
    ) -> List[Train]:
        """Join the two decoded feeds into trains, dropping malformed records."""
        now = now or utc_now()
        header_time = positions.header.timestamp or trip_updates.header.timestamp or None

        trains: List[Train] = []
        for trip_id, vehicle, trip_update in join_feeds(positions, trip_updates):
            try:
                trains.append(self.build_train(trip_id, vehicle, trip_update, now, header_time))
            except (PartialRecordError, KeyError, ValueError, OverflowError, OSError) as e:
                logger.warning(f"[{AGENCY}] Dropping trip {trip_id}: {e}")
        return trains

    def build_train(
        self,
        trip_id: str,
        vehicle: gtfs_realtime_pb2.VehiclePosition,
        trip_update: gtfs_realtime_pb2.TripUpdate,
        now: datetime,
        header_time: Optional[int] = None,
    ) -> Train:
        """
        Build a train from a joined position and trip update.

        Raises:
            PartialRecordError: If the trip update has no usable stops.
        """
        stops = self._parse_stops(trip_id, trip_update, now)
        if not stops:
            raise PartialRecordError(f"Trip {trip_id} has no stops", agency=AGENCY)

        status = infer_status(stops, now)

        coordinates = None
        heading = None
        if vehicle.HasField("position"):
            coordinates = (float(vehicle.position.longitude), float(vehicle.position.latitude))
            if vehicle.position.HasField("bearing"):
                heading = normalize_bearing(vehicle.position.bearing)

        timestamp = vehicle.timestamp or header_time
        updated = None
        if timestamp:
            try:
                updated = datetime.fromtimestamp(timestamp, tz=ZoneInfo("UTC"))
            except (OverflowError, OSError, ValueError) as e:
                logger.warning(f"[{AGENCY}] {trip_id}: timestamp {timestamp} out of range: {e}")

        return Train(
            id=f"{AGENCY}/{trip_id}",
            name=ROUTE_NAME,
            number=trip_id.split("_")[0],
            agency=AGENCY,
            status=status,
            stops=stops,
            updated=updated,
            coordinates=coordinates,
            speed=self.estimate_speed(coordinates, stops, status, now),
            heading=heading,
            alerts=(),
        )

    def estimate_speed(
        self,
        coordinates: Optional[Tuple[float, float]],
        stops: Tuple[Stop, ...],
        status: TrainState,
        now: datetime,
    ) -> Optional[float]:
        """
        Estimate speed in mph from the distance to the next station and the
        time left until its scheduled arrival.
        """
        if status == TrainState.COMPLETED:
            return 0.0
        if coordinates is None:
            return None

        next_stop = next(
            (s for s in stops if arrival_time(s) is not None and arrival_time(s) > now),
            None,
        )
        if next_stop is None:
            return None

        station_coords = self.stations.coordinates(next_stop.code)
        if station_coords is None:
            return None

        scheduled = scheduled_time(next_stop.arrival) or scheduled_time(next_stop.departure)
        if scheduled is None:
            return None
        hours = (scheduled - now).total_seconds() / 3600
        if hours <= 0:
            return None

        miles = haversine_km(coordinates, station_coords) / KM_PER_MILE
        return miles / hours

    def _parse_stops(self, trip_id: str, trip_update: gtfs_realtime_pb2.TripUpdate, now: datetime) -> Tuple[Stop, ...]:
        stops: List[Stop] = []
        for stu in trip_update.stop_time_update:
            try:
                stops.append(self._parse_stop(stu, now))
            except PartialRecordError as e:
                logger.warning(f"[{AGENCY}] {trip_id}: dropping stop {stu.stop_id}: {e}")
        return tuple(stops)

    def _timezone(self, tz_name: str) -> Tuple[str, ZoneInfo]:
        try:
            return tz_name, ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError) as e:
            logger.warning(f"[{AGENCY}] Unknown station timezone {tz_name!r}, using {BRIGHTLINE_TIMEZONE}: {e}")
            return BRIGHTLINE_TIMEZONE, ZoneInfo(BRIGHTLINE_TIMEZONE)

    def _parse_stop(self, stu: gtfs_realtime_pb2.TripUpdate.StopTimeUpdate, now: datetime) -> Stop:
        station = self.stations.get(stu.stop_id)
        tz_name, tz = self._timezone((station.timezone if station else None) or BRIGHTLINE_TIMEZONE)

        arrival = self._event(stu.arrival, now, tz) if stu.HasField("arrival") else Pending()
        departure = self._event(stu.departure, now, tz) if stu.HasField("departure") else Pending()

        return Stop(
            code=stu.stop_id,
            name=station.name if station else stu.stop_id,
            timezone=tz_name,
            arrival=arrival,
            departure=departure,
        )

    @staticmethod
    def _event(event: gtfs_realtime_pb2.TripUpdate.StopTimeEvent, now: datetime, tz: ZoneInfo) -> StopEvent:
        if not event.time:
            return Pending()
        delay_seconds = event.delay if event.HasField("delay") else 0
        try:
            estimated = datetime.fromtimestamp(event.time, tz=tz)
            scheduled = estimated - timedelta(seconds=delay_seconds)
        except (OverflowError, OSError, ValueError) as e:
            raise PartialRecordError(f"Stop time {event.time} out of range: {e}", agency=AGENCY) from e
        delay = round(delay_seconds / 60)
        if estimated <= now:
            return Actual(estimated, scheduled=scheduled, delay=delay)
        return Pending(scheduled=scheduled, estimated=estimated, delay=delay)
