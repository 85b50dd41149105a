"""Typed event dataclasses emitted by the frame synchronization engine.

Events fall into two tiers:
- Image level: ImageReceived, DuplicateImage, ImageDropped
- Bundle level: BundleCompleted, BundleEvicted, BundleDiscarded

All events are frozen dataclasses with an auto-populated timestamp field.
The engine emits them after releasing its lock, so observers may call back
into the engine.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field


@dataclass(frozen=True)
class Event:
    """Base class for all engine events.

    Subscribing to ``Event`` on an :class:`~rigsync.engine.observers.EventBus`
    receives every event.

    Attributes:
        timestamp: Unix timestamp (seconds) at event construction time.
    """

    timestamp: float = field(default_factory=time.time)


# ---------------------------------------------------------------------------
# Image-level events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ImageReceived(Event):
    """Emitted for every image accepted into a bundle slot.

    Attributes:
        camera_index: Slot the image was assigned to.
        timestamp_ns: Synchronization stamp used for matching.
        bundle_timestamp_ns: Stamp of the bundle the image joined.
    """

    camera_index: int = 0
    timestamp_ns: int = 0
    bundle_timestamp_ns: int = 0


@dataclass(frozen=True)
class DuplicateImage(Event):
    """Emitted when a camera reports twice for the same bundle.

    The newer image replaces the older one.

    Attributes:
        camera_index: Camera that reported twice.
        bundle_timestamp_ns: Stamp of the affected bundle.
        previous_timestamp_ns: Stamp of the image that was replaced.
        timestamp_ns: Stamp of the replacing image.
    """

    camera_index: int = 0
    bundle_timestamp_ns: int = 0
    previous_timestamp_ns: int = 0
    timestamp_ns: int = 0


@dataclass(frozen=True)
class ImageDropped(Event):
    """Emitted when an image is rejected without joining a bundle.

    Attributes:
        camera_index: Camera the image came from.
        timestamp_ns: Synchronization stamp of the image.
        reason: ``"stale"`` (older than the eviction horizon) or
            ``"emitted"`` (its bundle was already handed out).
    """

    camera_index: int = 0
    timestamp_ns: int = 0
    reason: str = ""


# ---------------------------------------------------------------------------
# Bundle-level events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BundleCompleted(Event):
    """Emitted when every camera slot of a bundle is filled.

    Attributes:
        bundle_timestamp_ns: Stamp of the bundle.
        queue_length: Output queue length after insertion.
    """

    bundle_timestamp_ns: int = 0
    queue_length: int = 0


@dataclass(frozen=True)
class BundleEvicted(Event):
    """Emitted when an incomplete bundle is promoted with missing slots.

    Attributes:
        bundle_timestamp_ns: Stamp of the bundle.
        missing_camera_indices: Slots left empty.
        queue_length: Output queue length after insertion.
    """

    bundle_timestamp_ns: int = 0
    missing_camera_indices: tuple[int, ...] = ()
    queue_length: int = 0


@dataclass(frozen=True)
class BundleDiscarded(Event):
    """Emitted when a ready bundle is dropped without being retrieved.

    Attributes:
        bundle_timestamp_ns: Stamp of the bundle.
        reason: ``"overflow"`` (queue above its maximum length) or
            ``"superseded"`` (cleared by ``get_latest_and_clear``).
    """

    bundle_timestamp_ns: int = 0
    reason: str = ""


__all__ = [
    "BundleCompleted",
    "BundleDiscarded",
    "BundleEvicted",
    "DuplicateImage",
    "Event",
    "ImageDropped",
    "ImageReceived",
]
