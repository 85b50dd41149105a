"""Frame synchronization engine.

Import boundary: engine/ may import from calibration/, but calibration/
must never import from engine/.
"""

from rigsync.engine.config import (
    RigSyncConfig,
    SyncConfig,
    UndistortionConfig,
    load_config,
    serialize_config,
)
from rigsync.engine.console_observer import ConsoleObserver
from rigsync.engine.events import (
    BundleCompleted,
    BundleDiscarded,
    BundleEvicted,
    DuplicateImage,
    Event,
    ImageDropped,
    ImageReceived,
)
from rigsync.engine.frames import INVALID_TIMESTAMP, VisualFrame, VisualNFrame
from rigsync.engine.observers import EventBus, Observer
from rigsync.engine.processing import (
    ImageProcessor,
    PassthroughProcessor,
    UndistortingProcessor,
)
from rigsync.engine.stats_observer import SyncStatsObserver
from rigsync.engine.sync import BucketState, FrameSyncEngine

__all__ = [
    "INVALID_TIMESTAMP",
    "BucketState",
    "BundleCompleted",
    "BundleDiscarded",
    "BundleEvicted",
    "ConsoleObserver",
    "DuplicateImage",
    "Event",
    "EventBus",
    "FrameSyncEngine",
    "ImageDropped",
    "ImageProcessor",
    "ImageReceived",
    "Observer",
    "PassthroughProcessor",
    "RigSyncConfig",
    "SyncConfig",
    "SyncStatsObserver",
    "UndistortingProcessor",
    "UndistortionConfig",
    "VisualFrame",
    "VisualNFrame",
    "load_config",
    "serialize_config",
]
