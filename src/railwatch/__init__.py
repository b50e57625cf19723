"""railwatch - Live train feed ingestion for Amtrak, Via Rail and Brightline."""

__version__ = "0.1.0"

from .models import (
    Actual,
    Pending,
    SegmentProgress,
    Station,
    Stop,
    TimeStatus,
    TrackSnapPosition,
    Train,
    TrainMeta,
    TrainState,
    train_from_dict,
    train_to_dict,
)
from .amtrak_client import AmtrakClient
from .via_client import ViaClient
from .brightline_client import BrightlineClient
from .normalizer import TrainFeed
from .stations import StationIndex
from .status import get_train_meta
from .track_snapper import TrackSnapper, load_track_geometry

__all__ = [
    "AmtrakClient",
    "ViaClient",
    "BrightlineClient",
    "TrainFeed",
    "StationIndex",
    "TrackSnapper",
    "load_track_geometry",
    "get_train_meta",
    "Train",
    "Stop",
    "Station",
    "Pending",
    "Actual",
    "TrainState",
    "TimeStatus",
    "TrainMeta",
    "SegmentProgress",
    "TrackSnapPosition",
    "train_to_dict",
    "train_from_dict",
]
