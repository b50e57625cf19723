"""Static configuration for railwatch feed ingestion."""

# Upstream feed URLs
AMTRAK_FEED_URL = "https://maps.amtrak.com/services/MapDataService/trains/getTrainsData"
VIA_FEED_URL = "https://tsimobile.viarail.ca/data/allData.json"
BRIGHTLINE_FEEDS = {
    "positions": "http://feed.gobrightline.com/position_updates.pb",
    "trips": "http://feed.gobrightline.com/trip_updates.pb",
}

# HTTP settings
USER_AGENT = "railwatch/0.1 (+https://github.com/railwatch/railwatch)"
HTTP_TIMEOUT = 10  # seconds, per request
POLL_TIMEOUT = 20  # seconds, per adapter call including decode
POLL_WORKERS = 3

# Status thresholds (minutes)
LONG_TRIP_HOURS = 12
LONG_TRIP_DELAY_THRESHOLD = 10
SHORT_TRIP_DELAY_THRESHOLD = 5
STALE_AFTER_MINUTES = 10

# Track snapping
# 0.01 degrees is roughly 1 km at mid latitudes
SNAP_BBOX_DEGREES = 0.01

# Extrapolation along the corridor
STATION_TRACK_MAX_KM = 1.0  # farthest a station may sit from the line it is cut from
ON_SEGMENT_KM = 0.1  # GPS closer than this to a segment counts as on it

# Brightline publishes GTFS times without a zone of their own
BRIGHTLINE_TIMEZONE = "America/New_York"
