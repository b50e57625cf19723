"""Tests for the Brightline GTFS-Realtime adapter."""

import unittest
from unittest.mock import MagicMock
from datetime import datetime, timedelta, timezone
import sys
from pathlib import Path

import requests
from google.transit import gtfs_realtime_pb2

# Add src to path so we can import railwatch
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from railwatch.brightline_client import BrightlineClient, decode_feed, infer_status, join_feeds
from railwatch.errors import DecodeError
from railwatch.geo import haversine_km
from railwatch.models import Actual, Pending, Station, TrainState
from railwatch.stations import StationIndex

NOW = datetime(2024, 10, 21, 14, 0, tzinfo=timezone.utc)

STATIONS = StationIndex([
    Station("MIA", "Miami", "America/New_York", (-80.1955, 25.7781)),
    Station("FLL", "Fort Lauderdale", "America/New_York", (-80.1450, 26.1196)),
    Station("WPB", "West Palm Beach", "America/New_York", (-80.0572, 26.7139)),
])


def ts(minutes: float) -> int:
    """Epoch seconds relative to NOW."""
    return int((NOW + timedelta(minutes=minutes)).timestamp())


def new_feed() -> gtfs_realtime_pb2.FeedMessage:
    feed = gtfs_realtime_pb2.FeedMessage()
    feed.header.gtfs_realtime_version = "2.0"
    feed.header.timestamp = ts(-1)
    return feed


def add_vehicle(feed, trip_id, lon=-80.17, lat=25.95, bearing=None, timestamp=None):
    entity = feed.entity.add()
    entity.id = f"v-{trip_id}"
    entity.vehicle.trip.trip_id = trip_id
    entity.vehicle.position.longitude = lon
    entity.vehicle.position.latitude = lat
    if bearing is not None:
        entity.vehicle.position.bearing = bearing
    if timestamp is not None:
        entity.vehicle.timestamp = timestamp
    return entity


def add_trip(feed, trip_id, stops):
    """Add a trip update; stops are (stop_id, arrival, departure) with (minutes, delay_seconds) or None."""
    entity = feed.entity.add()
    entity.id = f"t-{trip_id}"
    entity.trip_update.trip.trip_id = trip_id
    for stop_id, arrival, departure in stops:
        stu = entity.trip_update.stop_time_update.add()
        stu.stop_id = stop_id
        if arrival is not None:
            stu.arrival.time = ts(arrival[0])
            stu.arrival.delay = arrival[1]
        if departure is not None:
            stu.departure.time = ts(departure[0])
            stu.departure.delay = departure[1]
    return entity


ACTIVE_STOPS = [
    ("MIA", None, (-20, 120)),
    ("FLL", (10, 0), (12, 0)),
    ("WPB", (50, 60), None),
]


class TestBrightlineFeeds(unittest.TestCase):
    """Test decoding and joining of the two feeds."""

    def test_decode_invalid(self):
        """Test that a truncated payload raises DecodeError."""
        with self.assertRaises(DecodeError):
            decode_feed(b"\x0a\xff")

    def test_decode_valid(self):
        """Test that a serialized feed decodes."""
        feed = new_feed()
        add_vehicle(feed, "101_20241021")
        decoded = decode_feed(feed.SerializeToString())
        self.assertEqual(decoded.entity[0].vehicle.trip.trip_id, "101_20241021")

    def test_join_drops_unmatched(self):
        """Test that entities without a counterpart are dropped."""
        positions = new_feed()
        add_vehicle(positions, "101_20241021")
        add_vehicle(positions, "999_20241021")
        trips = new_feed()
        add_trip(trips, "555_20241021", ACTIVE_STOPS)
        add_trip(trips, "101_20241021", ACTIVE_STOPS)

        joined = join_feeds(positions, trips)

        self.assertEqual([trip_id for trip_id, _, _ in joined], ["101_20241021"])
        _, vehicle, trip_update = joined[0]
        self.assertEqual(vehicle.trip.trip_id, trip_update.trip.trip_id)


class TestBrightlineClient(unittest.TestCase):
    """Test Brightline train construction."""

    def setUp(self):
        self.client = BrightlineClient(stations=STATIONS, session=MagicMock())

    def build(self, stops, **vehicle):
        positions = new_feed()
        add_vehicle(positions, "101_20241021", **vehicle)
        trips = new_feed()
        add_trip(trips, "101_20241021", stops)
        trains = self.client.parse_feeds(positions, trips, now=NOW)
        self.assertEqual(len(trains), 1)
        return trains[0]

    def test_active_train(self):
        """Test an in-service train."""
        train = self.build(ACTIVE_STOPS, bearing=370.0, timestamp=ts(-0.5))

        self.assertEqual(train.id, "brightline/101_20241021")
        self.assertEqual(train.number, "101")
        self.assertEqual(train.name, "Brightline")
        self.assertEqual(train.agency, "brightline")
        self.assertEqual(train.status, TrainState.ACTIVE)
        self.assertAlmostEqual(train.coordinates[0], -80.17, places=4)
        self.assertAlmostEqual(train.coordinates[1], 25.95, places=4)
        self.assertAlmostEqual(train.heading, 10.0, places=3)
        self.assertEqual(train.updated, datetime.fromtimestamp(ts(-0.5), tz=timezone.utc))
        self.assertEqual([s.code for s in train.stops], ["MIA", "FLL", "WPB"])

    def test_stop_events(self):
        """Test that past events are actual and future ones pending."""
        stops = self.build(ACTIVE_STOPS).stops

        origin = stops[0]
        self.assertIsInstance(origin.departure, Actual)
        self.assertEqual(origin.departure.delay, 2)
        self.assertEqual(origin.departure.scheduled, NOW - timedelta(minutes=22))
        self.assertIsNone(origin.arrival.time)
        self.assertEqual(origin.timezone, "America/New_York")
        self.assertEqual(origin.name, "Miami")

        terminus = stops[2]
        self.assertIsInstance(terminus.arrival, Pending)
        self.assertEqual(terminus.arrival.estimated, NOW + timedelta(minutes=50))
        self.assertEqual(terminus.arrival.scheduled, NOW + timedelta(minutes=49))
        self.assertEqual(terminus.arrival.delay, 1)

    def test_header_timestamp_fallback(self):
        """Test that the header timestamp is used when the vehicle has none."""
        train = self.build(ACTIVE_STOPS)
        self.assertEqual(train.updated, datetime.fromtimestamp(ts(-1), tz=timezone.utc))

    def test_speed_estimate(self):
        """Test speed from distance to the next station over time remaining."""
        train = self.build(ACTIVE_STOPS)
        miles = haversine_km((-80.17, 25.95), (-80.1450, 26.1196)) / 1.609344
        self.assertAlmostEqual(train.speed, miles * 6, places=1)

    def test_speed_unknown_when_schedule_passed(self):
        """Test that a next stop whose scheduled time has passed gives no speed."""
        stops = [
            ("MIA", None, (-20, 0)),
            ("FLL", (5, 600), (7, 600)),
            ("WPB", (45, 600), None),
        ]
        self.assertIsNone(self.build(stops).speed)

    def test_speed_unknown_station(self):
        """Test that an unknown next station gives no speed."""
        stops = [("MIA", None, (-20, 0)), ("BOC", (10, 0), None)]
        train = self.build(stops)
        self.assertIsNone(train.speed)
        self.assertEqual(train.stops[1].timezone, "America/New_York")
        self.assertEqual(train.stops[1].name, "BOC")

    def test_predeparture(self):
        """Test a train that has not left its origin."""
        stops = [("MIA", None, (15, 0)), ("FLL", (45, 0), None)]
        train = self.build(stops)
        self.assertEqual(train.status, TrainState.PREDEPARTURE)

    def test_completed(self):
        """Test a train that has finished its trip."""
        stops = [("MIA", None, (-90, 0)), ("WPB", (-10, 0), None)]
        train = self.build(stops)
        self.assertEqual(train.status, TrainState.COMPLETED)
        self.assertEqual(train.speed, 0.0)

    def test_infer_status_empty_times(self):
        """Test that stops without any times count as passed."""
        stops = self.build(ACTIVE_STOPS).stops
        self.assertEqual(infer_status(stops, NOW + timedelta(hours=2)), TrainState.COMPLETED)
        self.assertEqual(infer_status(stops, NOW - timedelta(hours=2)), TrainState.PREDEPARTURE)

    def test_trip_without_stops_is_dropped(self):
        """Test that a trip update with no stops produces no train."""
        positions = new_feed()
        add_vehicle(positions, "101_20241021")
        add_vehicle(positions, "103_20241021")
        trips = new_feed()
        add_trip(trips, "101_20241021", ACTIVE_STOPS)
        add_trip(trips, "103_20241021", [])
        trains = self.client.parse_feeds(positions, trips, now=NOW)
        self.assertEqual([t.number for t in trains], ["101"])

    def test_unknown_station_timezone_degrades(self):
        """Test that a station with an unknown zone falls back to the agency zone."""
        stations = StationIndex([
            Station("MIA", "Miami", "America/New_York", (-80.1955, 25.7781)),
            Station("FLL", "Fort Lauderdale", "Mars/Base", (-80.1450, 26.1196)),
            Station("WPB", "West Palm Beach", "America/New_York", (-80.0572, 26.7139)),
        ])
        client = BrightlineClient(stations=stations, session=MagicMock())
        positions = new_feed()
        add_vehicle(positions, "101_20241021")
        trips = new_feed()
        add_trip(trips, "101_20241021", ACTIVE_STOPS)

        trains = client.parse_feeds(positions, trips, now=NOW)

        self.assertEqual(len(trains), 1)
        fll = trains[0].stops[1]
        self.assertEqual(fll.code, "FLL")
        self.assertEqual(fll.timezone, "America/New_York")
        self.assertEqual(fll.arrival.estimated, NOW + timedelta(minutes=10))

    def test_out_of_range_times_are_dropped(self):
        """Test that out-of-range epochs drop the stop or trip, never the feed."""
        positions = new_feed()
        add_vehicle(positions, "101_20241021", timestamp=10**15)
        add_vehicle(positions, "103_20241021")
        add_vehicle(positions, "105_20241021")
        trips = new_feed()
        bad_stop = add_trip(trips, "101_20241021", ACTIVE_STOPS)
        bad_stop.trip_update.stop_time_update[1].arrival.time = 10**15
        bad_trip = add_trip(trips, "103_20241021", [("MIA", None, (-20, 0))])
        bad_trip.trip_update.stop_time_update[0].departure.time = 10**15
        add_trip(trips, "105_20241021", ACTIVE_STOPS)

        trains = self.client.parse_feeds(positions, trips, now=NOW)

        self.assertEqual([t.number for t in trains], ["101", "105"])
        self.assertEqual([s.code for s in trains[0].stops], ["MIA", "WPB"])
        self.assertIsNone(trains[0].updated)
        self.assertEqual(len(trains[1].stops), 3)

    def test_get_trains(self):
        """Test the full fetch-decode-join path."""
        positions = new_feed()
        add_vehicle(positions, "101_20241021")
        trips = new_feed()
        add_trip(trips, "101_20241021", ACTIVE_STOPS)

        responses = []
        for feed in (positions, trips):
            response = MagicMock()
            response.content = feed.SerializeToString()
            responses.append(response)
        self.client.client.session.get.side_effect = responses

        trains = self.client.get_trains(now=NOW)

        self.assertEqual(len(trains), 1)
        self.assertEqual(trains[0].id, "brightline/101_20241021")
        urls = [c.args[0] for c in self.client.client.session.get.call_args_list]
        self.assertEqual(urls, [self.client.feeds["positions"], self.client.feeds["trips"]])

    def test_get_trains_upstream_failure(self):
        """Test that a failure on either feed yields no trains."""
        positions = new_feed()
        response = MagicMock()
        response.content = positions.SerializeToString()
        self.client.client.session.get.side_effect = [response, requests.ConnectionError("down")]
        self.assertEqual(self.client.get_trains(now=NOW), [])

    def test_get_trains_garbage(self):
        """Test that an undecodable feed yields no trains."""
        response = MagicMock()
        response.content = b"\x0a\xff"
        self.client.client.session.get.return_value = response
        self.assertEqual(self.client.get_trains(now=NOW), [])


if __name__ == "__main__":
    unittest.main()
