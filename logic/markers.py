"""
Marker handles for quests.

A marker is the visual handle a browser draws for a quest. The server keeps
one per quest so that removals and popup refreshes can be pushed to clients.
"""

from datetime import datetime
from typing import Callable, List, Optional

from logic.geo import LngLat

MarkerListener = Callable[[str, "Marker"], None]


class QuestMapError(Exception):
    """Base error for quest map invariant breaches."""


class MissingMarkerError(QuestMapError):
    """Raised when a popup refresh is requested for a quest with no marker."""


class Marker:
    """Opaque UI handle attached to a quest.

    Markers compare by identity. Every change is reported to the optional
    listener as ``(event, marker)`` where event is one of ``"popup"`` or
    ``"remove"``.
    """

    _counter = 0

    def __init__(self, location: LngLat, popup_html: str = "", on_change: Optional[MarkerListener] = None):
        Marker._counter += 1
        self.handle_id = Marker._counter
        self.location = location
        self.popup_html = popup_html
        self.removed = False
        self.on_change = on_change

    def set_popup_html(self, html: str) -> "Marker":
        self.popup_html = html
        self._emit("popup")
        return self

    def remove(self):
        """Release the handle. Releasing twice is harmless."""
        if self.removed:
            return
        self.removed = True
        self._emit("remove")

    def _emit(self, event: str):
        if self.on_change is not None:
            self.on_change(event, self)

    def to_dict(self):
        return {
            "handle_id": self.handle_id,
            "location": self.location.to_dict(),
            "popup": self.popup_html,
            "removed": self.removed,
        }


def popup_content(quest) -> str:
    """Text shown in a quest's popup."""
    created = datetime.fromisoformat(quest.timestamp.replace("Z", "+00:00"))
    return (
        f"Quest {quest.id}\n"
        f"Created at: {created.strftime('%Y-%m-%d %H:%M:%S %Z')}\n"
        f"Location: {quest.location.lng:.4f},{quest.location.lat:.4f}"
    )


def update_marker_popup(quest):
    """Refresh the popup of a quest's marker.

    Raises:
        MissingMarkerError: If the quest has no marker attached.
    """
    if quest.marker is None:
        raise MissingMarkerError(f"Expected marker to be defined for quest {quest.id}")

    quest.marker.set_popup_html(popup_content(quest))


def create_marker(quest, on_change: Optional[MarkerListener] = None) -> Marker:
    """Create a marker for a quest and attach it."""
    marker = Marker(quest.location, popup_content(quest), on_change=on_change)
    quest.marker = marker
    return marker


def cluster_center(cluster: List) -> Optional[LngLat]:
    """Mean coordinate of a cluster, or None for an empty one."""
    count = len(cluster)
    if count == 0:
        return None

    lng = sum(q.location.lng for q in cluster)
    lat = sum(q.location.lat for q in cluster)
    return LngLat(lng / count, lat / count)
