"""Tests for the Via Rail feed parser."""

import json
import unittest
from unittest.mock import MagicMock
from datetime import datetime, timezone
from zoneinfo import ZoneInfo
import sys
from pathlib import Path

import requests

# Add src to path so we can import railwatch
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from railwatch.models import Actual, Pending, Station, TrainState
from railwatch.stations import StationIndex
from railwatch.via_client import ViaClient, arrival_event, departure_event, english_alert
from railwatch.via_routes import route_name

TORONTO = ZoneInfo("America/Toronto")
NOW = datetime(2024, 10, 21, 16, 0, tzinfo=timezone.utc)  # 12:00 in Toronto


def make_train(**overrides) -> dict:
    info = {
        "lat": 43.6453,
        "lng": -79.3806,
        "speed": 95.0,
        "direction": 270.0,
        "poll": "2024-10-21T15:58:30Z",
        "departed": True,
        "arrived": False,
        "alerts": [],
        "times": [
            {
                "station": "Toronto Union",
                "code": "TRTO",
                "estimated": "2024-10-21T09:00:00-04:00",
                "scheduled": "2024-10-21T09:00:00-04:00",
                "eta": "ARR",
                "departure": {
                    "estimated": "2024-10-21T09:02:00-04:00",
                    "scheduled": "2024-10-21T09:00:00-04:00",
                },
            },
            {
                "station": "Kingston",
                "code": "KGON",
                "estimated": "2024-10-21T11:45:00-04:00",
                "scheduled": "2024-10-21T11:40:00-04:00",
                "eta": "ARR",
                "arrival": {
                    "estimated": "2024-10-21T11:45:00-04:00",
                    "scheduled": "2024-10-21T11:40:00-04:00",
                },
                "departure": {
                    "estimated": "2024-10-21T12:00:00-04:00",
                    "scheduled": "2024-10-21T11:42:00-04:00",
                },
            },
            {
                "station": "Ottawa",
                "code": "OTTW",
                "estimated": "2024-10-21T14:10:00-04:00",
                "scheduled": "2024-10-21T14:00:00-04:00",
                "eta": "2:10",
                "arrival": {
                    "estimated": "2024-10-21T14:10:00-04:00",
                    "scheduled": "2024-10-21T14:00:00-04:00",
                },
            },
        ],
    }
    info.update(overrides)
    return info


class TestViaEvents(unittest.TestCase):
    """Test arrival and departure promotion."""

    def setUp(self):
        self.scheduled = datetime(2024, 10, 21, 11, 40, tzinfo=TORONTO)
        self.estimated = datetime(2024, 10, 21, 11, 45, tzinfo=TORONTO)

    def test_arrived_promotes_estimate(self):
        """Test that an arrived stop keeps only the actual time."""
        event = arrival_event(self.scheduled, self.estimated, arrived=True)
        self.assertIsInstance(event, Actual)
        self.assertEqual(event.actual, self.estimated)
        self.assertIsNone(event.scheduled)
        self.assertIsNone(event.estimated)
        self.assertEqual(event.delay, 5)

    def test_not_arrived_is_pending(self):
        """Test that a stop not yet reached stays pending."""
        event = arrival_event(self.scheduled, self.estimated, arrived=False)
        self.assertIsInstance(event, Pending)
        self.assertEqual(event.scheduled, self.scheduled)
        self.assertEqual(event.estimated, self.estimated)
        self.assertIsNone(event.actual)

    def test_departure_in_past_is_actual(self):
        """Test that a departure estimate before now becomes actual."""
        now = datetime(2024, 10, 21, 12, 0, tzinfo=TORONTO)
        event = departure_event(self.scheduled, self.estimated, now)
        self.assertIsInstance(event, Actual)
        self.assertEqual(event.actual, self.estimated)

    def test_departure_exactly_now_is_actual(self):
        """Test that a departure estimate equal to now has happened."""
        event = departure_event(self.scheduled, self.estimated, self.estimated)
        self.assertIsInstance(event, Actual)

    def test_departure_in_future_is_pending(self):
        """Test that a future departure estimate stays pending."""
        now = datetime(2024, 10, 21, 11, 0, tzinfo=TORONTO)
        event = departure_event(self.scheduled, self.estimated, now)
        self.assertIsInstance(event, Pending)
        self.assertEqual(event.delay, 5)


class TestViaHelpers(unittest.TestCase):
    """Test alert and route helpers."""

    def test_english_alert(self):
        """Test that English parts are joined by newlines."""
        alert = {
            "header": {"en": "Service disruption", "fr": "Perturbation"},
            "description": {"en": "Expect delays near Kingston.", "fr": "Retards"},
            "url": {"en": "https://www.viarail.ca/en/status", "fr": ""},
        }
        self.assertEqual(
            english_alert(alert),
            "Service disruption\nExpect delays near Kingston.\nhttps://www.viarail.ca/en/status",
        )

    def test_english_alert_missing_parts(self):
        """Test that missing parts are skipped."""
        self.assertEqual(english_alert({"header": {"en": "Heads up"}}), "Heads up")
        self.assertEqual(english_alert({"header": {"fr": "Attention"}}), "")

    def test_english_alert_odd_shapes(self):
        """Test that plain-string fields are used and other shapes skipped."""
        self.assertEqual(english_alert({"header": "Service disruption"}), "Service disruption")
        self.assertEqual(english_alert({"header": ["en"], "description": 5}), "")
        self.assertEqual(english_alert("Service disruption"), "")
        self.assertEqual(english_alert(None), "")

    def test_route_name(self):
        """Test route lookup and the fallback name."""
        self.assertEqual(route_name(1), "The Canadian")
        self.assertEqual(route_name("97"), "Maple Leaf")
        self.assertEqual(route_name("692"), "Winnipeg – Churchill")
        self.assertEqual(route_name("9999"), "VIA Rail 9999")
        self.assertEqual(route_name("X1"), "VIA Rail X1")


class TestViaClient(unittest.TestCase):
    """Test Via Rail train normalization."""

    def setUp(self):
        self.stations = StationIndex([
            Station("TRTO", "Toronto", "America/Toronto", (-79.3806, 43.6453)),
            Station("KGON", "Kingston", "America/Toronto", (-76.5437, 44.2576)),
            Station("OTTW", "Ottawa", "America/Toronto", (-75.6514, 45.4166)),
        ])
        self.client = ViaClient(stations=self.stations, session=MagicMock())

    def test_parse_train(self):
        """Test a complete in-service train."""
        train = self.client.parse_train("46", make_train(), NOW)

        self.assertEqual(train.id, "via/46")
        self.assertEqual(train.number, "46")
        self.assertEqual(train.name, "Ottawa – Toronto")
        self.assertEqual(train.agency, "via")
        self.assertEqual(train.status, TrainState.ACTIVE)
        self.assertEqual(train.coordinates, (-79.3806, 43.6453))
        self.assertEqual(train.speed, 95.0)
        self.assertEqual(train.heading, 270.0)
        self.assertEqual(train.updated, datetime(2024, 10, 21, 15, 58, 30, tzinfo=timezone.utc))
        self.assertEqual([s.code for s in train.stops], ["TRTO", "KGON", "OTTW"])
        self.assertEqual(train.stops[0].timezone, "America/Toronto")

    def test_arrived_stop(self):
        """Test a stop the train has reached and left."""
        kingston = self.client.parse_train("46", make_train(), NOW).stops[1]

        self.assertIsInstance(kingston.arrival, Actual)
        self.assertEqual(kingston.arrival.actual, datetime(2024, 10, 21, 11, 45, tzinfo=TORONTO))
        self.assertIsNone(kingston.arrival.scheduled)
        self.assertIsNone(kingston.arrival.estimated)

        # 12:00 Toronto equals NOW, so the departure has happened
        self.assertIsInstance(kingston.departure, Actual)
        self.assertEqual(kingston.departure.delay, 18)

    def test_origin_has_no_arrival(self):
        """Test that a departure-only stop has no arrival times."""
        origin = self.client.parse_train("46", make_train(), NOW).stops[0]
        self.assertIsInstance(origin.arrival, Pending)
        self.assertIsNone(origin.arrival.time)
        self.assertIsInstance(origin.departure, Actual)

    def test_terminus_has_no_departure(self):
        """Test that an arrival-only stop has no departure times."""
        terminus = self.client.parse_train("46", make_train(), NOW).stops[2]
        self.assertIsInstance(terminus.arrival, Pending)
        self.assertEqual(terminus.arrival.delay, 10)
        self.assertIsNone(terminus.departure.time)

    def test_flat_times_fallback(self):
        """Test a stop that only carries the flat scheduled/estimated fields."""
        info = make_train(times=[{
            "station": "Belleville",
            "code": "BLVL",
            "scheduled": "2024-10-21T17:00:00",
            "estimated": "2024-10-21T17:04:00",
            "eta": "1:00",
        }])
        stop = self.client.parse_train("46", info, NOW).stops[0]
        self.assertIsNone(stop.timezone)
        self.assertEqual(stop.arrival.scheduled, datetime(2024, 10, 21, 17, 0, tzinfo=timezone.utc))
        self.assertEqual(stop.arrival.delay, 4)
        self.assertEqual(stop.departure.estimated, datetime(2024, 10, 21, 17, 4, tzinfo=timezone.utc))

    def test_key_with_day_suffix(self):
        """Test that the day suffix is kept in the id but not the number."""
        train = self.client.parse_train("2 (13)", make_train(), NOW)
        self.assertEqual(train.id, "via/2(13)")
        self.assertEqual(train.number, "2")
        self.assertEqual(train.name, "The Canadian")

    def test_status_flags(self):
        """Test status inference from the departed and arrived flags."""
        waiting = self.client.parse_train("46", make_train(departed=False), NOW)
        done = self.client.parse_train("46", make_train(arrived=True), NOW)
        self.assertEqual(waiting.status, TrainState.PREDEPARTURE)
        self.assertEqual(done.status, TrainState.COMPLETED)

    def test_heading_normalized(self):
        """Test that headings are reduced to 0-360."""
        train = self.client.parse_train("46", make_train(direction=370), NOW)
        self.assertEqual(train.heading, 10.0)

    def test_alerts(self):
        """Test that alerts carry their English text."""
        info = make_train(alerts=[
            {"header": {"en": "Delay"}, "description": {"en": "Signal problem."}},
            {"header": {"fr": "Retard"}},
        ])
        train = self.client.parse_train("46", info, NOW)
        self.assertEqual(train.alerts, ("Delay\nSignal problem.",))

    def test_bad_poll_time_degrades(self):
        """Test that an unparseable poll time leaves updated empty."""
        train = self.client.parse_train("46", make_train(poll="soon"), NOW)
        self.assertIsNone(train.updated)
        self.assertEqual(len(train.stops), 3)

    def test_train_without_stops_is_dropped(self):
        """Test that trains without usable stops are dropped."""
        data = {
            "46": make_train(),
            "48": make_train(times=[]),
            "50": make_train(times=[{"station": "Nowhere"}]),
        }
        trains = self.client.parse_trains(data, now=NOW)
        self.assertEqual([t.id for t in trains], ["via/46"])

    def test_malformed_records_are_dropped(self):
        """Test that entries of the wrong shape drop only themselves."""
        info = make_train(alerts=[{"header": "Service disruption"}, "oops", None])
        info["times"].insert(1, "KGON")
        info["times"].insert(2, {"code": "KGON", "arrival": "11:45"})
        data = {
            "46": info,
            "48": "oops",
            "50": None,
            "52": ["TRTO", "OTTW"],
        }
        trains = self.client.parse_trains(data, now=NOW)
        self.assertEqual([t.id for t in trains], ["via/46"])
        self.assertEqual([s.code for s in trains[0].stops], ["TRTO", "KGON", "OTTW"])
        self.assertEqual(trains[0].alerts, ("Service disruption",))

    def test_get_trains(self):
        """Test the full fetch-decode-parse path."""
        response = MagicMock()
        response.content = json.dumps({"46": make_train()}).encode("utf-8")
        self.client.client.session.get.return_value = response

        trains = self.client.get_trains(now=NOW)

        self.assertEqual(len(trains), 1)
        self.assertEqual(trains[0].id, "via/46")

    def test_get_trains_invalid_json(self):
        """Test that an undecodable feed yields no trains."""
        response = MagicMock()
        response.content = b"<html>Service Unavailable</html>"
        self.client.client.session.get.return_value = response
        self.assertEqual(self.client.get_trains(now=NOW), [])

    def test_get_trains_not_an_object(self):
        """Test that a JSON list is rejected."""
        response = MagicMock()
        response.content = b"[]"
        self.client.client.session.get.return_value = response
        self.assertEqual(self.client.get_trains(now=NOW), [])

    def test_get_trains_network_error(self):
        """Test that a network failure yields no trains."""
        self.client.client.session.get.side_effect = requests.Timeout("slow")
        self.assertEqual(self.client.get_trains(now=NOW), [])


if __name__ == "__main__":
    unittest.main()
