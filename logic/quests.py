"""
Quest sequence management.

This module owns the ordered collection of quests placed on the map. Quests
form a forward-linked chain whose ids always equal their 1-based position;
every mutation is followed by a full write through the persistence queue.
"""

import logging
import weakref
from datetime import datetime, timezone
from typing import List, Optional

from logic.geo import LngLat, Radius, radius_bound, radius_distance
from logic.markers import Marker, update_marker_popup

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    """Current time as an ISO-8601 string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class Quest:
    """A single geolocated entry in the quest sequence.

    Attributes:
        id: 1-based position in the sequence.
        location: Coordinate of the quest.
        timestamp: ISO-8601 creation time.
        marker: Optional UI handle.
    """

    def __init__(self, id: int, location: LngLat, timestamp: Optional[str] = None, marker: Optional[Marker] = None):
        self.id = id
        self.location = location
        self.timestamp = timestamp or utc_now_iso()
        self.marker = marker
        self._next = None

    @property
    def next(self) -> Optional["Quest"]:
        """The following quest, held weakly; the owning collection keeps it alive."""
        if self._next is None:
            return None
        return self._next()

    @next.setter
    def next(self, quest: Optional["Quest"]):
        self._next = weakref.ref(quest) if quest is not None else None

    def to_dict(self):
        nxt = self.next
        return {
            "id": self.id,
            "location": self.location.to_dict(),
            "timestamp": self.timestamp,
            "next": nxt.id if nxt is not None else None,
        }

    def __repr__(self):
        return f"Quest(id={self.id}, location=({self.location.lng}, {self.location.lat}))"


class QuestService:
    """In-memory quest sequence backed by a persistence queue.

    Args:
        writer: Object with ``submit(quests)`` that persists a full snapshot.
        repository: Object with ``load()`` used to hydrate on first access.
    """

    def __init__(self, writer, repository):
        self._writer = writer
        self._repository = repository
        self._quests: List[Quest] = []
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    def __len__(self):
        return len(self._quests)

    def _index_of(self, quest: Quest) -> Optional[int]:
        return next((i for i, q in enumerate(self._quests) if q is quest), None)

    def _contains(self, quest: Quest) -> bool:
        return self._index_of(quest) is not None

    async def _save(self):
        try:
            await self._writer.submit(self._quests)
        except Exception as e:
            logger.error("Error saving quests: %s", e)

    async def add(self, location: LngLat) -> Quest:
        """Append a quest at the tail of the sequence."""
        last_quest = self._quests[-1] if self._quests else None

        new_quest = Quest(len(self._quests) + 1, location)

        if last_quest is not None:
            last_quest.next = new_quest

        self._quests.append(new_quest)
        logger.debug("Added quest: %r", new_quest)

        await self._save()
        return new_quest

    async def remove(self, quest: Quest):
        """Remove a quest, relinking its predecessor and renumbering the tail.

        Quests that are not members of the sequence are ignored.
        """
        index = self._index_of(quest)
        if index is None:
            return

        del self._quests[index]

        before = self._quests[index - 1] if index > 0 else None
        after = self._quests[index] if index < len(self._quests) else None

        if before is not None:
            before.next = after

        if after is not None:
            self._renumber_from(after, index + 1)
            self._refresh_markers_from(after)

        if quest.marker is not None:
            quest.marker.remove()

        await self._save()
        logger.debug("Removed quest: %r", quest)

    def _renumber_from(self, quest: Quest, start_id: int):
        prev = quest
        prev.id = start_id

        current = quest.next
        while current is not None:
            current.id = prev.id + 1
            prev = current
            current = current.next

    def _refresh_markers_from(self, quest: Quest):
        current = quest
        while current is not None:
            update_marker_popup(current)
            current = current.next

    async def remove_all(self):
        for quest in self._quests:
            if quest.marker is not None:
                quest.marker.remove()

        self._quests.clear()
        await self._save()

        logger.debug("Removed all quests")

    def get_nearest(self, location: LngLat, within_radius: Radius) -> Optional[Quest]:
        """Closest quest by great-circle distance among those inside the radius.

        The radius filter is applied in its own unit (metres or pixels) while
        ranking always uses metres. Ties go to the quest met first.
        """
        nearest_so_far = None
        min_distance = float("inf")

        if not self._quests:
            return None

        bound = radius_bound(within_radius)

        for quest in self._quests:
            distance = location.distance_to(quest.location)

            if radius_distance(within_radius, location, quest.location) > bound:
                continue

            if nearest_so_far is None or distance < min_distance:
                nearest_so_far = quest
                min_distance = distance

        logger.debug("Found nearest quest: %r", nearest_so_far)
        return nearest_so_far

    async def get_all(self) -> List[Quest]:
        """All quests, hydrating from the store on the first successful load."""
        if self._loaded:
            logger.debug("Getting all quests...")
            return self._quests

        logger.debug("Getting all quests from database...")
        quests = await self._repository.load()

        if quests is not None:
            self._quests = sorted(quests, key=lambda q: q.id)
            self._loaded = True

        return self._quests

    async def update_quest(self, quest: Quest) -> Optional[Quest]:
        """Persist the sequence after a quest was changed in place."""
        if not self._contains(quest):
            return None

        await self._save()
        return quest

    def get_clusters(self, within_radius: Radius) -> List[List[Quest]]:
        """One cluster per quest: every quest strictly closer than the radius to it."""
        bound = radius_bound(within_radius)
        clusters = []

        for quest_a in self._quests:
            cluster = [
                quest_b
                for quest_b in self._quests
                if radius_distance(within_radius, quest_b.location, quest_a.location) < bound
            ]
            clusters.append(cluster)

        return clusters

    def find_by_marker(self, marker: Marker) -> Optional[Quest]:
        return next((q for q in self._quests if q.marker is marker), None)

    def find_by_id(self, quest_id: int) -> Optional[Quest]:
        return next((q for q in self._quests if q.id == quest_id), None)
